"""Shared fixtures for nanomuz tests."""

from __future__ import annotations

from pathlib import Path

import pytest


@pytest.fixture()
def base_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Redirect all nanomuz runtime files to a temporary directory.

    Patches ``nanomuz.config.get_base_dir`` (and the re-imported references in
    ``nanomuz.daemon`` and ``nanomuz.cli``) so that nothing touches the real
    ``~/.nanomuz/``.
    """
    fake_base = tmp_path / ".nanomuz"
    fake_base.mkdir()
    (fake_base / "logs").mkdir()

    monkeypatch.setattr("nanomuz.config.get_base_dir", lambda: fake_base)
    monkeypatch.setattr("nanomuz.daemon.get_base_dir", lambda: fake_base)
    monkeypatch.setattr("nanomuz.cli.get_base_dir", lambda: fake_base)

    return fake_base
