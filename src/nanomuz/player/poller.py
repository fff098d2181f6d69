"""Playback poller: feeds player snapshots into the scrobble service."""

from __future__ import annotations

import asyncio
import contextlib
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from nanomuz.player.source import SnapshotSource
    from nanomuz.scrobbler.service import ScrobbleService

log = structlog.get_logger(__name__)


class PlaybackPoller:
    """Polls a snapshot source on an interval, with support for an immediate re-poll.

    Snapshots are delivered serially: a poll never starts before the
    previous one has been handed to the scrobble service.
    """

    def __init__(
        self,
        source: SnapshotSource,
        scrobbler: ScrobbleService,
        interval_seconds: float = 3.0,
    ) -> None:
        self._source = source
        self._scrobbler = scrobbler
        self._interval = interval_seconds
        self._stop_event = asyncio.Event()
        self._trigger_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self._last_identity: tuple[str, str, str] | None = None
        self._last_poll_at: datetime | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the polling loop."""
        if self.is_running:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._loop())
        log.info("poller_started", interval_seconds=self._interval)

    async def stop(self) -> None:
        """Stop the poller, waiting for an in-progress poll to complete."""
        if not self.is_running:
            return
        self._stop_event.set()
        self._trigger_event.set()  # wake up if sleeping
        if self._task:
            await self._task
            self._task = None
        log.info("poller_stopped")

    def trigger_now(self) -> None:
        """Re-poll immediately (e.g. on an OS "track changed" notification)."""
        self._trigger_event.set()

    def get_status(self) -> dict:
        identity = self._last_identity
        return {
            "running": self.is_running,
            "interval_seconds": self._interval,
            "last_poll_at": self._last_poll_at.isoformat() if self._last_poll_at else None,
            "now_playing": (
                {"artist": identity[0], "track": identity[1], "album": identity[2]} if identity else None
            ),
        }

    async def poll_once(self) -> None:
        """Fetch one snapshot and apply it to the scrobble service."""
        snapshot = await self._source.fetch()
        self._last_poll_at = datetime.now(UTC)

        if snapshot is None:
            if self._last_identity is not None:
                log.info("playback_stopped")
                self._last_identity = None
                self._scrobbler.reset()
            return

        if snapshot.identity != self._last_identity:
            self._last_identity = snapshot.identity
            log.info(
                "track_changed",
                artist=snapshot.artist,
                track=snapshot.track,
                album=snapshot.album,
            )
            self._scrobbler.track_changed(
                snapshot.artist,
                snapshot.track,
                snapshot.album,
                snapshot.is_playing,
                snapshot.duration_seconds,
            )
        else:
            self._scrobbler.playback_state_changed(snapshot.is_playing)
        self._scrobbler.tick()

    async def _loop(self) -> None:
        while not self._stop_event.is_set():
            # Cleared before polling so a trigger arriving mid-poll is not lost.
            self._trigger_event.clear()
            try:
                await self.poll_once()
            except Exception as exc:
                log.warning("poll_failed", error=str(exc))

            if self._stop_event.is_set():
                break

            # Interruptible sleep
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(
                    self._wait_for_trigger_or_stop(),
                    timeout=self._interval,
                )

    async def _wait_for_trigger_or_stop(self) -> None:
        """Wait until either trigger or stop event is set."""
        trigger_task = asyncio.create_task(self._trigger_event.wait())
        stop_task = asyncio.create_task(self._stop_event.wait())
        try:
            await asyncio.wait(
                {trigger_task, stop_task},
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for t in (trigger_task, stop_task):
                if not t.done():
                    t.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await t
