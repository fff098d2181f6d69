"""Playback session model, scrobble threshold and the recent-submission ledger."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass

# Last.fm rules: a track counts once it was played for half its length or
# four minutes, whichever comes first; tracks under 30 s (or of unknown
# length) need the full four minutes.
SCROBBLE_CAP_SECONDS = 240
MIN_TRACK_SECONDS = 30

LEDGER_CAPACITY = 100


def should_scrobble(duration_seconds: int | None, total_played_seconds: float) -> bool:
    """Return True once *total_played_seconds* crosses the scrobble threshold."""
    if duration_seconds is None or duration_seconds < MIN_TRACK_SECONDS:
        return total_played_seconds >= SCROBBLE_CAP_SECONDS
    return total_played_seconds >= min(duration_seconds * 0.5, SCROBBLE_CAP_SECONDS)


@dataclass
class PlaybackSession:
    """One continuous (possibly paused) listening interval for a single track."""

    artist: str
    track: str
    album: str
    started_at: float
    last_resumed_at: float | None = None
    accumulated_play_seconds: float = 0.0
    scrobbled: bool = False
    duration_seconds: int | None = None

    @property
    def unique_key(self) -> str:
        return f"{self.artist}|{self.track}|{self.album}|{int(self.started_at)}"

    @property
    def is_playing(self) -> bool:
        return self.last_resumed_at is not None

    def same_track(self, artist: str, track: str, album: str) -> bool:
        return self.artist == artist and self.track == track and self.album == album

    def played_seconds(self, now: float) -> float:
        """Accumulated play time plus the currently running stretch, if any."""
        if self.last_resumed_at is None:
            return self.accumulated_play_seconds
        return self.accumulated_play_seconds + (now - self.last_resumed_at)

    def to_dict(self, now: float) -> dict:
        return {
            "artist": self.artist,
            "track": self.track,
            "album": self.album,
            "started_at": int(self.started_at),
            "playing": self.is_playing,
            "played_seconds": round(self.played_seconds(now), 1),
            "duration_seconds": self.duration_seconds,
            "scrobbled": self.scrobbled,
        }


class DedupLedger:
    """Bounded FIFO of unique keys that were already submitted."""

    def __init__(self, capacity: int = LEDGER_CAPACITY) -> None:
        self._keys: deque[str] = deque(maxlen=capacity)

    def __contains__(self, key: str) -> bool:
        return key in self._keys

    def __len__(self) -> int:
        return len(self._keys)

    def add(self, key: str) -> None:
        # deque(maxlen=...) drops the oldest entry once full
        self._keys.append(key)
