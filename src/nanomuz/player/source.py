"""Now-playing snapshot sources.

The OS media subsystem is not read directly; a source is anything that can
produce a :class:`PlaybackSnapshot` on demand.  :class:`CommandSource` runs a
user-configured command that prints one JSON object, e.g. on macOS a JXA
script querying MediaRemote, on Linux ``playerctl`` with a JSON format
string::

    {"title": "Jóga", "artist": "Björk", "album": "Homogenic",
     "playbackRate": 1, "duration": 305.2}

``isPlaying`` (bool) may be given instead of ``playbackRate``.  Empty output
or ``null`` means nothing is playing.
"""

from __future__ import annotations

import asyncio
import json
import shlex
from dataclasses import dataclass
from typing import Protocol

import structlog

log = structlog.get_logger(__name__)

_COMMAND_TIMEOUT = 10.0


class SourceError(Exception):
    """Raised when a source could not determine the player state."""


@dataclass(frozen=True)
class PlaybackSnapshot:
    """What the local player reports at one instant."""

    artist: str
    track: str
    album: str
    is_playing: bool
    duration_seconds: int | None = None

    @property
    def identity(self) -> tuple[str, str, str]:
        return (self.artist, self.track, self.album)


class SnapshotSource(Protocol):
    async def fetch(self) -> PlaybackSnapshot | None: ...


class NullSource:
    """Source for setups without a player command; never reports a track."""

    async def fetch(self) -> PlaybackSnapshot | None:
        return None


def parse_snapshot(text: str) -> PlaybackSnapshot | None:
    """Parse the JSON printed by a player command."""
    text = text.strip()
    if not text:
        return None

    try:
        data = json.loads(text)
    except ValueError as exc:
        raise SourceError(f"Invalid JSON from player command: {text[:100]}") from exc

    if data is None:
        return None
    if not isinstance(data, dict):
        raise SourceError(f"Expected a JSON object, got {type(data).__name__}")

    title = data.get("title")
    if not isinstance(title, str):
        return None

    if "isPlaying" in data:
        is_playing = bool(data["isPlaying"])
    else:
        try:
            is_playing = float(data.get("playbackRate") or 0) > 0
        except (TypeError, ValueError):
            is_playing = False

    duration = data.get("duration")
    duration_seconds = int(duration) if isinstance(duration, int | float) and duration > 0 else None

    return PlaybackSnapshot(
        artist=str(data.get("artist") or ""),
        track=title,
        album=str(data.get("album") or ""),
        is_playing=is_playing,
        duration_seconds=duration_seconds,
    )


class CommandSource:
    """Runs *command* on every fetch and parses its JSON output."""

    def __init__(self, command: str, *, timeout: float = _COMMAND_TIMEOUT) -> None:
        self._argv = shlex.split(command)
        if not self._argv:
            raise ValueError("Player command must not be empty")
        self._timeout = timeout

    async def fetch(self) -> PlaybackSnapshot | None:
        try:
            proc = await asyncio.create_subprocess_exec(
                *self._argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as exc:
            raise SourceError(f"Could not run player command {self._argv[0]!r}: {exc}") from exc

        try:
            stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=self._timeout)
        except TimeoutError as exc:
            proc.kill()
            await proc.wait()
            raise SourceError(f"Player command timed out after {self._timeout}s") from exc

        if proc.returncode != 0:
            raise SourceError(f"Player command exited with status {proc.returncode}")

        return parse_snapshot(stdout.decode("utf-8", errors="replace"))


def create_source(command: str) -> SnapshotSource:
    """Build the source configured by ``player.command``."""
    if not command.strip():
        log.warning("player_command_not_configured")
        return NullSource()
    return CommandSource(command)
