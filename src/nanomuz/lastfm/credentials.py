"""Persistence of the Last.fm session key in the nanomuz config file."""

from __future__ import annotations

from dataclasses import dataclass

import structlog
from pydantic import SecretStr

from nanomuz import config as config_mod

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Credential:
    session_key: str
    username: str


class CredentialStore:
    """Reads and writes the ``[lastfm]`` session fields of ``config.toml``.

    Every read reloads the file, so a login performed by the CLI process is
    picked up by a running daemon without a restart.
    """

    def save(self, session_key: str, username: str = "") -> bool:
        """Persist *session_key* (and *username*); return False if the write failed."""
        try:
            cfg = config_mod.load_config()
            cfg.lastfm.session_key = SecretStr(session_key)
            cfg.lastfm.username = username
            config_mod.save_config(cfg)
        except (OSError, ValueError) as exc:
            # ValueError covers TOMLDecodeError and pydantic's ValidationError.
            log.error("credential_save_failed", error=str(exc))
            return False
        return True

    def load(self) -> Credential | None:
        try:
            cfg = config_mod.load_config()
        except (OSError, ValueError) as exc:
            log.error("credential_load_failed", error=str(exc))
            return None
        key = cfg.lastfm.session_key.get_secret_value()
        if not key:
            return None
        return Credential(session_key=key, username=cfg.lastfm.username)

    def load_session_key(self) -> str | None:
        credential = self.load()
        return credential.session_key if credential else None

    def delete(self) -> bool:
        """Clear the session key and username in a single config write."""
        try:
            cfg = config_mod.load_config()
            cfg.lastfm.session_key = SecretStr("")
            cfg.lastfm.username = ""
            config_mod.save_config(cfg)
        except (OSError, ValueError) as exc:
            log.error("credential_delete_failed", error=str(exc))
            return False
        return True
