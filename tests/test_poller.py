"""Tests for the PlaybackPoller."""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

import pytest

from nanomuz.player.poller import PlaybackPoller
from nanomuz.player.source import PlaybackSnapshot, SourceError

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class ScriptedSource:
    """Returns queued snapshots (or raises queued errors); repeats the last item."""

    def __init__(self, *items: PlaybackSnapshot | Exception | None) -> None:
        self.items = list(items)
        self.fetch_count = 0

    async def fetch(self) -> PlaybackSnapshot | None:
        self.fetch_count += 1
        item = self.items.pop(0) if len(self.items) > 1 else self.items[0]
        if isinstance(item, Exception):
            raise item
        return item


def _snap(track: str = "Airbag", playing: bool = True, album: str = "OK Computer") -> PlaybackSnapshot:
    return PlaybackSnapshot(
        artist="Radiohead",
        track=track,
        album=album,
        is_playing=playing,
        duration_seconds=284,
    )


# ---------------------------------------------------------------------------
# poll_once
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_first_snapshot_reports_track_change():
    scrobbler = MagicMock()
    poller = PlaybackPoller(ScriptedSource(_snap()), scrobbler)

    await poller.poll_once()

    scrobbler.track_changed.assert_called_once_with("Radiohead", "Airbag", "OK Computer", True, 284)
    scrobbler.playback_state_changed.assert_not_called()
    scrobbler.tick.assert_called_once()


@pytest.mark.asyncio
async def test_same_identity_reports_playback_state():
    scrobbler = MagicMock()
    poller = PlaybackPoller(ScriptedSource(_snap(), _snap(playing=False)), scrobbler)

    await poller.poll_once()
    await poller.poll_once()

    scrobbler.track_changed.assert_called_once()
    scrobbler.playback_state_changed.assert_called_once_with(False)
    assert scrobbler.tick.call_count == 2


@pytest.mark.asyncio
async def test_album_change_is_a_track_change():
    scrobbler = MagicMock()
    poller = PlaybackPoller(ScriptedSource(_snap(), _snap(album="OKNOTOK")), scrobbler)

    await poller.poll_once()
    await poller.poll_once()

    assert scrobbler.track_changed.call_count == 2


@pytest.mark.asyncio
async def test_nothing_playing_resets_once():
    scrobbler = MagicMock()
    poller = PlaybackPoller(ScriptedSource(_snap(), None, None), scrobbler)

    await poller.poll_once()
    await poller.poll_once()
    await poller.poll_once()

    scrobbler.reset.assert_called_once()
    assert poller.get_status()["now_playing"] is None


@pytest.mark.asyncio
async def test_nothing_playing_from_start_does_not_reset():
    scrobbler = MagicMock()
    poller = PlaybackPoller(ScriptedSource(None), scrobbler)

    await poller.poll_once()

    scrobbler.reset.assert_not_called()
    scrobbler.tick.assert_not_called()


@pytest.mark.asyncio
async def test_same_track_after_stop_starts_new_session():
    scrobbler = MagicMock()
    poller = PlaybackPoller(ScriptedSource(_snap(), None, _snap()), scrobbler)

    for _ in range(3):
        await poller.poll_once()

    assert scrobbler.track_changed.call_count == 2


@pytest.mark.asyncio
async def test_source_error_keeps_previous_identity():
    scrobbler = MagicMock()
    poller = PlaybackPoller(ScriptedSource(_snap(), SourceError("bad json"), _snap()), scrobbler)

    await poller.poll_once()
    with pytest.raises(SourceError):
        await poller.poll_once()
    await poller.poll_once()

    scrobbler.track_changed.assert_called_once()
    scrobbler.reset.assert_not_called()
    scrobbler.playback_state_changed.assert_called_once_with(True)


# ---------------------------------------------------------------------------
# Loop
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_start_stop():
    poller = PlaybackPoller(ScriptedSource(None), MagicMock(), interval_seconds=60)

    await poller.start()
    assert poller.is_running

    await poller.stop()
    assert not poller.is_running


@pytest.mark.asyncio
async def test_double_start():
    poller = PlaybackPoller(ScriptedSource(None), MagicMock(), interval_seconds=60)

    await poller.start()
    task = poller._task
    await poller.start()
    assert poller._task is task

    await poller.stop()


@pytest.mark.asyncio
async def test_polls_on_interval():
    source = ScriptedSource(None)
    poller = PlaybackPoller(source, MagicMock(), interval_seconds=0.01)

    await poller.start()
    await asyncio.sleep(0.1)
    await poller.stop()

    assert source.fetch_count >= 3


@pytest.mark.asyncio
async def test_trigger_now_polls_immediately():
    source = ScriptedSource(None)
    poller = PlaybackPoller(source, MagicMock(), interval_seconds=60)

    await poller.start()
    await asyncio.sleep(0.05)
    assert source.fetch_count == 1

    poller.trigger_now()
    await asyncio.sleep(0.05)
    await poller.stop()

    assert source.fetch_count == 2


@pytest.mark.asyncio
async def test_errors_do_not_stop_the_loop():
    source = ScriptedSource(SourceError("boom"), RuntimeError("worse"), None)
    poller = PlaybackPoller(source, MagicMock(), interval_seconds=0.01)

    await poller.start()
    await asyncio.sleep(0.1)

    assert poller.is_running
    assert source.fetch_count >= 3

    await poller.stop()


@pytest.mark.asyncio
async def test_get_status():
    poller = PlaybackPoller(ScriptedSource(_snap()), MagicMock(), interval_seconds=3)

    status = poller.get_status()
    assert status["running"] is False
    assert status["interval_seconds"] == 3
    assert status["last_poll_at"] is None

    await poller.poll_once()
    status = poller.get_status()
    assert status["last_poll_at"] is not None
    assert status["now_playing"] == {"artist": "Radiohead", "track": "Airbag", "album": "OK Computer"}
