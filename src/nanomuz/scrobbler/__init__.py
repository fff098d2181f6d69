"""Scrobbler module: session model and the scrobble state machine."""

from nanomuz.scrobbler.service import ScrobbleService, ScrobbleStats
from nanomuz.scrobbler.session import DedupLedger, PlaybackSession, should_scrobble

__all__ = ["DedupLedger", "PlaybackSession", "ScrobbleService", "ScrobbleStats", "should_scrobble"]
