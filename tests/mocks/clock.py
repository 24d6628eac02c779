"""Injectable clocks for TTL and expiry tests."""

from __future__ import annotations

from datetime import datetime, timedelta


class MutableClock:
    """UTC datetime clock that only moves when told to."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        """Move forward by ``timedelta(**delta)``."""
        self.now += timedelta(**delta)


class EpochClock:
    """Epoch-seconds clock for the device cache."""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds
