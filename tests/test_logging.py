"""Tests for the structured logging configuration."""

from __future__ import annotations

import json
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

import pytest
import structlog

from nanomuz.logging import setup_logging


@pytest.fixture(autouse=True)
def _reset_logging():
    """Reset logging state between tests."""
    yield
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(logging.WARNING)
    structlog.reset_defaults()


def _json_lines(path: Path) -> list[dict]:
    return [json.loads(line) for line in path.read_text().splitlines() if line.strip()]


# -- File creation ----------------------------------------------------------


def test_setup_creates_log_dir_and_files(tmp_path: Path):
    log_dir = tmp_path / "logs"
    setup_logging(log_level="info", log_dir=log_dir)

    structlog.get_logger("nanomuz.test").info("hello")

    assert log_dir.exists()
    assert (log_dir / "daemon.log").exists()
    assert (log_dir / "scrobble.log").exists()


# -- daemon.log format -----------------------------------------------------


def test_daemon_log_human_readable(tmp_path: Path):
    log_dir = tmp_path / "logs"
    setup_logging(log_level="info", log_dir=log_dir)

    structlog.get_logger("nanomuz.daemon").info("test_event", key="value")

    content = (log_dir / "daemon.log").read_text()
    assert "test_event" in content
    assert "key=value" in content


def test_daemon_log_not_json(tmp_path: Path):
    log_dir = tmp_path / "logs"
    setup_logging(log_level="info", log_dir=log_dir)

    structlog.get_logger("nanomuz.daemon").info("check_format")

    content = (log_dir / "daemon.log").read_text().strip()
    with pytest.raises(json.JSONDecodeError):
        json.loads(content)


# -- scrobble.log format ----------------------------------------------------


def test_scrobble_log_json(tmp_path: Path):
    log_dir = tmp_path / "logs"
    setup_logging(log_level="info", log_dir=log_dir)

    structlog.get_logger("nanomuz.scrobbler.service").info("scrobbled", artist="Radiohead")

    (data,) = _json_lines(log_dir / "scrobble.log")
    assert data["event"] == "scrobbled"
    assert data["artist"] == "Radiohead"
    assert data["level"] == "info"
    assert "timestamp" in data


def test_scrobble_log_includes_lastfm_events(tmp_path: Path):
    log_dir = tmp_path / "logs"
    setup_logging(log_level="info", log_dir=log_dir)

    structlog.get_logger("nanomuz.lastfm.client").warning("lastfm_api_error", code=9)

    (data,) = _json_lines(log_dir / "scrobble.log")
    assert data["event"] == "lastfm_api_error"
    assert data["code"] == 9


# -- Filtering --------------------------------------------------------------


def test_scrobble_log_excludes_other_events(tmp_path: Path):
    log_dir = tmp_path / "logs"
    setup_logging(log_level="info", log_dir=log_dir)

    structlog.get_logger("nanomuz.daemon").info("daemon_event")
    structlog.get_logger("nanomuz.scrobblerish").info("lookalike_event")
    structlog.get_logger("nanomuz.scrobbler.service").info("scrobble_event")

    content = (log_dir / "scrobble.log").read_text()
    assert "scrobble_event" in content
    assert "daemon_event" not in content
    assert "lookalike_event" not in content


def test_daemon_log_contains_all_events(tmp_path: Path):
    log_dir = tmp_path / "logs"
    setup_logging(log_level="info", log_dir=log_dir)

    structlog.get_logger("nanomuz.daemon").info("from_daemon")
    structlog.get_logger("nanomuz.scrobbler.service").info("from_scrobbler")

    content = (log_dir / "daemon.log").read_text()
    assert "from_daemon" in content
    assert "from_scrobbler" in content


# -- Log level filtering ----------------------------------------------------


def test_level_filtering_suppresses_lower(tmp_path: Path):
    log_dir = tmp_path / "logs"
    setup_logging(log_level="warning", log_dir=log_dir)

    log = structlog.get_logger("nanomuz.test")
    log.info("should_not_appear")
    log.warning("should_appear")

    content = (log_dir / "daemon.log").read_text()
    assert "should_not_appear" not in content
    assert "should_appear" in content


def test_debug_level_includes_debug(tmp_path: Path):
    log_dir = tmp_path / "logs"
    setup_logging(log_level="debug", log_dir=log_dir)

    structlog.get_logger("nanomuz.test").debug("debug_msg")

    assert "debug_msg" in (log_dir / "daemon.log").read_text()


def test_unknown_level_falls_back_to_info(tmp_path: Path):
    setup_logging(log_level="chatty", log_dir=tmp_path / "logs")
    assert logging.getLogger().level == logging.INFO


# -- RotatingFileHandler config --------------------------------------------


def test_rotation_parameters(tmp_path: Path):
    setup_logging(log_level="info", log_dir=tmp_path / "logs")

    rotating = [h for h in logging.getLogger().handlers if isinstance(h, RotatingFileHandler)]
    assert len(rotating) == 2

    for handler in rotating:
        assert handler.maxBytes == 10 * 1024 * 1024
        assert handler.backupCount == 5


def test_no_log_dir_no_handlers():
    setup_logging(log_level="info", log_dir=None)
    assert len(logging.getLogger().handlers) == 0


# -- Context variables -----------------------------------------------------


def test_context_variables_in_scrobble_log(tmp_path: Path):
    log_dir = tmp_path / "logs"
    setup_logging(log_level="info", log_dir=log_dir)

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(session="Radiohead|Airbag|OK Computer|1700000000")

    structlog.get_logger("nanomuz.scrobbler.service").info("with_context")

    structlog.contextvars.clear_contextvars()

    (data,) = _json_lines(log_dir / "scrobble.log")
    assert data["session"] == "Radiohead|Airbag|OK Computer|1700000000"
