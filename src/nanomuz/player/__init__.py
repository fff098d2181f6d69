"""Player module: now-playing sources and the playback poller."""

from nanomuz.player.poller import PlaybackPoller
from nanomuz.player.source import (
    CommandSource,
    NullSource,
    PlaybackSnapshot,
    SnapshotSource,
    SourceError,
    create_source,
    parse_snapshot,
)

__all__ = [
    "CommandSource",
    "NullSource",
    "PlaybackPoller",
    "PlaybackSnapshot",
    "SnapshotSource",
    "SourceError",
    "create_source",
    "parse_snapshot",
]
