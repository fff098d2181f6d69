"""Scrobble session state machine.

Tracks the single active :class:`PlaybackSession`, accumulates play time
across pause/resume cycles and decides when to send "now playing" updates
and scrobbles.

All entry points are synchronous and must be called from the event loop
that owns the service.  Network submissions are spawned as tasks, so the
ledger check-then-insert and the freeze-mark-submit sequence run without an
``await`` in between and cannot interleave with another entry point.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Coroutine
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any

import structlog

from nanomuz.scrobbler.session import DedupLedger, PlaybackSession, should_scrobble

if TYPE_CHECKING:
    from nanomuz.lastfm.auth import AuthService
    from nanomuz.lastfm.client import LastFMClient

log = structlog.get_logger(__name__)

NOW_PLAYING_RESEND_SECONDS = 15


@dataclass
class ScrobbleStats:
    now_playing_sent: int = 0
    now_playing_failed: int = 0
    scrobbled: int = 0
    scrobble_failed: int = 0


class ScrobbleService:
    """Decides when the current listening session is reported to Last.fm."""

    def __init__(
        self,
        client: LastFMClient,
        auth: AuthService,
        *,
        enabled: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client = client
        self._auth = auth
        self._enabled = enabled
        self._clock = clock
        self._session: PlaybackSession | None = None
        self._ledger = DedupLedger()
        self._last_now_playing_at: float | None = None
        self._tasks: set[asyncio.Task] = set()
        self._stats = ScrobbleStats()

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def session(self) -> PlaybackSession | None:
        return self._session

    @property
    def stats(self) -> ScrobbleStats:
        return self._stats

    def set_enabled(self, enabled: bool) -> None:
        """Switch scrobbling on or off; switching off drops the current session."""
        self._enabled = enabled
        if not enabled:
            self.reset()
        log.info("scrobbling_toggled", enabled=enabled)

    def get_status(self) -> dict:
        now = self._clock()
        return {
            "enabled": self._enabled,
            "authenticated": self._auth.is_authenticated,
            "session": self._session.to_dict(now) if self._session else None,
            "ledger_size": len(self._ledger),
            "pending_requests": len(self._tasks),
            "stats": asdict(self._stats),
        }

    # -- entry points -------------------------------------------------------

    def track_changed(
        self,
        artist: str,
        track: str,
        album: str,
        is_playing: bool,
        duration_seconds: int | None = None,
    ) -> None:
        """Handle a snapshot whose track identity may differ from the current session."""
        if not self._enabled:
            log.debug("track_ignored", reason="disabled")
            return
        if not artist.strip() or not track.strip():
            log.info("track_ignored", reason="empty_identity", artist=artist, track=track)
            return
        if not self._auth.is_authenticated:
            log.info("track_ignored", reason="not_authenticated")
            return

        session = self._session
        if session is not None and session.same_track(artist, track, album):
            if is_playing:
                self._resume()
            else:
                self._pause()
            return

        self._finalize_current()

        now = self._clock()
        self._session = PlaybackSession(
            artist=artist,
            track=track,
            album=album,
            started_at=now,
            last_resumed_at=now if is_playing else None,
            duration_seconds=duration_seconds,
        )
        log.info(
            "session_started",
            artist=artist,
            track=track,
            album=album,
            duration=duration_seconds,
            playing=is_playing,
        )
        if is_playing:
            self._send_now_playing()
        else:
            log.debug("now_playing_skipped", reason="paused")

    def playback_state_changed(self, is_playing: bool) -> None:
        if not self._enabled or self._session is None:
            return
        if is_playing:
            self._resume()
        else:
            self._pause()

    def tick(self) -> None:
        """Periodic heartbeat: scrobble a playing session once it crosses the threshold."""
        session = self._session
        if not self._enabled or session is None or session.last_resumed_at is None:
            return

        now = self._clock()
        total = session.played_seconds(now)
        if should_scrobble(session.duration_seconds, total) and not session.scrobbled:
            session.accumulated_play_seconds = total
            session.last_resumed_at = now
            session.scrobbled = True
            self._perform_scrobble(session)

    def reset(self) -> None:
        """Drop the current session without submitting anything."""
        if self._session is not None:
            log.debug("session_reset", key=self._session.unique_key)
        self._session = None
        self._last_now_playing_at = None

    async def drain(self) -> None:
        """Wait until every in-flight submission has completed."""
        while self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    # -- play / pause -------------------------------------------------------

    def _resume(self) -> None:
        session = self._session
        if session is None or session.last_resumed_at is not None:
            return

        now = self._clock()
        session.last_resumed_at = now
        log.debug("session_resumed", key=session.unique_key)
        if self._last_now_playing_at is None or now - self._last_now_playing_at >= NOW_PLAYING_RESEND_SECONDS:
            self._send_now_playing()

    def _pause(self) -> None:
        session = self._session
        if session is None or session.last_resumed_at is None:
            return

        now = self._clock()
        session.accumulated_play_seconds += now - session.last_resumed_at
        session.last_resumed_at = None
        log.debug("session_paused", key=session.unique_key, played=session.accumulated_play_seconds)

        if not session.scrobbled and should_scrobble(session.duration_seconds, session.accumulated_play_seconds):
            self._perform_scrobble(session)

    def _finalize_current(self) -> None:
        """Scrobble the outgoing session if it was played long enough."""
        session = self._session
        if session is None or session.scrobbled:
            return
        if should_scrobble(session.duration_seconds, session.played_seconds(self._clock())):
            self._perform_scrobble(session)

    # -- submissions --------------------------------------------------------

    def _send_now_playing(self) -> None:
        session = self._session
        session_key = self._auth.session_key
        if session is None or session_key is None:
            return

        self._last_now_playing_at = self._clock()
        self._spawn(
            self._submit_now_playing(
                session.artist,
                session.track,
                session.album or None,
                session.duration_seconds,
                session_key,
            )
        )

    def _perform_scrobble(self, session: PlaybackSession) -> None:
        key = session.unique_key
        if key in self._ledger:
            log.debug("scrobble_skipped", reason="duplicate", key=key)
            return
        session_key = self._auth.session_key
        if session_key is None:
            log.info("scrobble_skipped", reason="not_authenticated", key=key)
            return

        self._ledger.add(key)
        if self._session is not None and self._session.unique_key == key:
            self._session.scrobbled = True

        self._spawn(
            self._submit_scrobble(
                session.artist,
                session.track,
                session.album or None,
                int(session.started_at),
                session_key,
            )
        )

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _submit_now_playing(
        self,
        artist: str,
        track: str,
        album: str | None,
        duration: int | None,
        session_key: str,
    ) -> None:
        try:
            ok = await self._client.update_now_playing(artist, track, album, duration, session_key)
        except Exception as exc:
            log.error("now_playing_failed", artist=artist, track=track, error=str(exc))
            self._stats.now_playing_failed += 1
            return

        if ok:
            self._stats.now_playing_sent += 1
            log.info("now_playing_sent", artist=artist, track=track)
        else:
            self._stats.now_playing_failed += 1
            log.warning("now_playing_failed", artist=artist, track=track)

    async def _submit_scrobble(
        self,
        artist: str,
        track: str,
        album: str | None,
        timestamp: int,
        session_key: str,
    ) -> None:
        try:
            ok = await self._client.scrobble(artist, track, album, timestamp, session_key)
        except Exception as exc:
            log.error("scrobble_failed", artist=artist, track=track, error=str(exc))
            self._stats.scrobble_failed += 1
            return

        if ok:
            self._stats.scrobbled += 1
            log.info("scrobbled", artist=artist, track=track, album=album, timestamp=timestamp)
        else:
            self._stats.scrobble_failed += 1
            log.warning("scrobble_failed", artist=artist, track=track, timestamp=timestamp)
