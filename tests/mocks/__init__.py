"""Mock infrastructure for Mavin cache tests."""

from __future__ import annotations

from tests.mocks.clock import EpochClock, MutableClock
from tests.mocks.logger import MockLogger
from tests.mocks.payloads import deezer_track, soundcloud_track, spotify_track
from tests.mocks.providers import FakeArtistSource, FakeProvider, FakeRelatedSource

__all__ = [
    "EpochClock",
    "FakeArtistSource",
    "FakeProvider",
    "FakeRelatedSource",
    "MockLogger",
    "MutableClock",
    "deezer_track",
    "soundcloud_track",
    "spotify_track",
]
