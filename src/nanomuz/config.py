"""Configuration management for the nanomuz daemon."""

from __future__ import annotations

import os
import stat
import tomllib
import warnings
from pathlib import Path

from pydantic import BaseModel, Field, SecretStr


# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

_BASE_DIR_NAME = ".nanomuz"
_CONFIG_FILE = "config.toml"
_PID_FILE = "daemon.pid"
_SOCKET_FILE = "daemon.sock"
_LOG_DIR = "logs"


def get_base_dir() -> Path:
    """Return the base directory for all nanomuz runtime files (~/.nanomuz/)."""
    return Path.home() / _BASE_DIR_NAME


def get_config_path() -> Path:
    return get_base_dir() / _CONFIG_FILE


# ---------------------------------------------------------------------------
# Config models
# ---------------------------------------------------------------------------


class DaemonConfig(BaseModel):
    """Settings that control the daemon process itself."""

    log_level: str = Field(default="info", description="Logging level")


class PlayerConfig(BaseModel):
    """Settings for reading the local player's now-playing state."""

    poll_interval_seconds: int = Field(default=3, ge=1, description="Seconds between player polls")
    command: str = Field(default="", description="Command printing a JSON now-playing snapshot")


class LastfmConfig(BaseModel):
    """Last.fm API credentials and the persisted session."""

    enabled: bool = Field(default=True, description="Scrobbling switched on")
    api_key: str = Field(default="", description="Last.fm API account key")
    api_secret: SecretStr = Field(default=SecretStr(""), description="Last.fm API shared secret")
    username: str = Field(default="", description="Name of the connected Last.fm user")
    session_key: SecretStr = Field(default=SecretStr(""), description="Long-lived Last.fm session key")


class AppConfig(BaseModel):
    """Top-level application configuration."""

    daemon: DaemonConfig = Field(default_factory=DaemonConfig)
    player: PlayerConfig = Field(default_factory=PlayerConfig)
    lastfm: LastfmConfig = Field(default_factory=LastfmConfig)

    # -- derived paths (not stored in TOML) --------------------------------

    @property
    def base_dir(self) -> Path:
        return get_base_dir()

    @property
    def socket_path(self) -> Path:
        return self.base_dir / _SOCKET_FILE

    @property
    def pid_path(self) -> Path:
        return self.base_dir / _PID_FILE

    @property
    def log_dir(self) -> Path:
        return self.base_dir / _LOG_DIR

    def is_lastfm_configured(self) -> bool:
        """Return True if the Last.fm API key and secret are set."""
        return bool(self.lastfm.api_key and self.lastfm.api_secret.get_secret_value())

    def is_authenticated(self) -> bool:
        """Return True if a Last.fm session key has been stored."""
        return bool(self.lastfm.session_key.get_secret_value())


# ---------------------------------------------------------------------------
# Filesystem helpers
# ---------------------------------------------------------------------------


def ensure_dirs() -> None:
    """Create the base directory and log directory if they don't already exist."""
    base = get_base_dir()
    base.mkdir(mode=0o700, parents=True, exist_ok=True)
    (base / _LOG_DIR).mkdir(mode=0o700, parents=True, exist_ok=True)


def config_exists() -> bool:
    """Return True if a config file is present on disk."""
    return get_config_path().is_file()


def check_config_permissions() -> str | None:
    """Return a warning message if the config file is readable by group or others."""
    path = get_config_path()
    if not path.is_file():
        return None

    mode = stat.S_IMODE(path.stat().st_mode)
    if mode & (stat.S_IRWXG | stat.S_IRWXO):
        return (
            f"Config file {path} has permissive permissions ({oct(mode)}); "
            f"it stores your Last.fm session key. Run: chmod 600 {path}"
        )
    return None


# ---------------------------------------------------------------------------
# Load / save
# ---------------------------------------------------------------------------


def load_config() -> AppConfig:
    """Load configuration from TOML, falling back to defaults if the file is missing."""
    path = get_config_path()
    if not path.is_file():
        return AppConfig()

    warning = check_config_permissions()
    if warning:
        warnings.warn(warning, UserWarning, stacklevel=2)

    with open(path, "rb") as f:
        raw = tomllib.load(f)

    return AppConfig.model_validate(raw)


def _format_toml_value(value: object) -> str:
    """Format a single Python value as a TOML literal."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, SecretStr):
        raw = value.get_secret_value()
        escaped = raw.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    if isinstance(value, str):
        escaped = value.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    msg = f"Unsupported TOML value type: {type(value)}"
    raise TypeError(msg)


def _dump_toml(config: AppConfig) -> str:
    """Serialize an AppConfig to a minimal TOML string.

    Only handles the flat two-level structure we actually use (tables with
    scalar values).
    """
    lines: list[str] = []
    sections = [
        ("daemon", config.daemon),
        ("player", config.player),
        ("lastfm", config.lastfm),
    ]
    for section_name, section_model in sections:
        lines.append(f"[{section_name}]")
        for key, value in section_model.model_dump(mode="python").items():
            lines.append(f"{key} = {_format_toml_value(value)}")
        lines.append("")  # blank line between sections
    return "\n".join(lines)


def save_config(config: AppConfig) -> None:
    """Save configuration to TOML and restrict file permissions to owner-only.

    The file is written to a sibling temp file first and moved into place, so
    a concurrent reader (CLI vs. daemon) never sees a half-written config.
    """
    ensure_dirs()
    path = get_config_path()
    tmp = path.with_suffix(".toml.tmp")
    tmp.write_text(_dump_toml(config), encoding="utf-8")
    os.chmod(tmp, 0o600)
    os.replace(tmp, path)
