"""Out-of-band Last.fm authorization flow.

Flow:
  1. auth.getToken → request token
  2. Open https://www.last.fm/api/auth/?api_key=..&token=.. in the browser
  3. Poll auth.getSession every 2 seconds (60 attempts, ~2 minutes)
  4. On success persist the session key + username via the CredentialStore
"""

from __future__ import annotations

import asyncio
import contextlib
import webbrowser
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from nanomuz.lastfm.client import LastFMClient
    from nanomuz.lastfm.credentials import CredentialStore

log = structlog.get_logger(__name__)

_POLL_INTERVAL = 2.0
_MAX_ATTEMPTS = 60


@dataclass(frozen=True)
class AuthResult:
    success: bool
    username: str | None = None


class AuthService:
    """Drives the browser authorization flow and owns the stored credential."""

    def __init__(
        self,
        client: LastFMClient,
        store: CredentialStore,
        *,
        poll_interval: float = _POLL_INTERVAL,
        max_attempts: int = _MAX_ATTEMPTS,
    ) -> None:
        self._client = client
        self._store = store
        self._poll_interval = poll_interval
        self._max_attempts = max_attempts
        self._pending_token: str | None = None
        self._poll_task: asyncio.Task | None = None

    # -- credential reads --

    @property
    def is_authenticated(self) -> bool:
        return self._store.load_session_key() is not None

    @property
    def session_key(self) -> str | None:
        return self._store.load_session_key()

    @property
    def username(self) -> str | None:
        credential = self._store.load()
        return credential.username if credential else None

    @property
    def is_polling(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    # -- flow --

    async def start_authentication(
        self,
        open_url: Callable[[str], object] = webbrowser.open,
    ) -> AuthResult:
        """Run the full authorization flow and report the outcome.

        A cycle already in progress is cancelled and reports failure to its
        own caller.
        """
        token = await self._client.get_token()
        if token is None:
            log.warning("auth_token_failed")
            return AuthResult(success=False)

        self._cancel_poll()
        self._pending_token = token

        url = self._client.get_authorization_url(token)
        try:
            open_url(url)
            log.info("auth_browser_opened", url=url)
        except Exception as exc:
            log.warning("auth_browser_open_failed", url=url, error=str(exc))

        task = asyncio.create_task(self._poll_for_session(token))
        self._poll_task = task
        try:
            return await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            # Superseded before the poll loop got to run.
            return AuthResult(success=False)

    async def _poll_for_session(self, token: str) -> AuthResult:
        try:
            for attempt in range(1, self._max_attempts + 1):
                await asyncio.sleep(self._poll_interval)
                if self._pending_token != token:
                    log.info("auth_aborted", attempt=attempt)
                    return AuthResult(success=False)

                session = await self._client.get_session(token)
                if self._pending_token != token:
                    # Logged out (or restarted) while the request was in flight.
                    log.info("auth_aborted", attempt=attempt)
                    return AuthResult(success=False)
                if session is None:
                    continue

                if not self._store.save(session.key, session.name):
                    return AuthResult(success=False)
                log.info("auth_succeeded", username=session.name, attempts=attempt)
                return AuthResult(success=True, username=session.name)

            log.warning("auth_timed_out", attempts=self._max_attempts)
            return AuthResult(success=False)
        except asyncio.CancelledError:
            log.info("auth_cancelled")
            return AuthResult(success=False)
        finally:
            if self._pending_token == token:
                self._pending_token = None
            if self._poll_task is asyncio.current_task():
                self._poll_task = None

    def _cancel_poll(self) -> None:
        if self._poll_task is not None and not self._poll_task.done():
            self._poll_task.cancel()
        self._poll_task = None

    def logout(self) -> None:
        """Forget the pending flow and the stored credential.  Never fails."""
        self._cancel_poll()
        self._pending_token = None
        self._store.delete()
        log.info("logged_out")

    async def aclose(self) -> None:
        """Cancel a pending polling cycle and wait for it to finish."""
        task = self._poll_task
        self._cancel_poll()
        self._pending_token = None
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task
