"""Base classes and utilities shared by the metadata provider clients.

- Moving-window rate limiting per provider
- The injected request function type
- A base client carrying the provider name, loggers and name normalization
"""

from __future__ import annotations

import asyncio
import re
import time
from collections.abc import Awaitable
from typing import TYPE_CHECKING, Any, Protocol

from mavin.core.logger import Loggable

if TYPE_CHECKING:
    import logging

    from mavin.core.models.records import ArtistCache, RelatedTrackInput, UnifiedMetadata


class ApiRequestFunc(Protocol):
    """Signature of the request function injected into provider clients."""

    def __call__(
        self,
        provider: str,
        url: str,
        params: dict[str, str] | None = None,
        *,
        headers: dict[str, str] | None = None,
        method: str = "GET",
        data: dict[str, str] | None = None,
    ) -> Awaitable[dict[str, Any] | None]: ...


class MetadataProvider(Protocol):
    """Capability every external metadata source exposes to the orchestrator.

    ``search`` returns the best raw match or None when nothing matched; it
    raises only on genuine transport failure and must tolerate cancellation.
    ``transform`` maps that raw payload to the unified schema and raises
    ``KeyError``/``TypeError``/``ValueError`` on malformed payloads.
    """

    name: str

    async def search(self, query: str) -> dict[str, Any] | None: ...

    def transform(self, raw: dict[str, Any]) -> UnifiedMetadata: ...


class RelatedTracksSource(Protocol):
    """Source of recommendation edges for a track."""

    async def get_related_tracks(self, artist: str, title: str, limit: int = 5) -> list[RelatedTrackInput]: ...


class ArtistSource(Protocol):
    """Source of denormalized artist snapshots."""

    async def get_artist_snapshot(self, name: str) -> ArtistCache | None: ...


class EnhancedRateLimiter:
    """Moving-window rate limiter for provider calls.

    Tracks call timestamps inside a sliding window and sleeps just long
    enough for the oldest call to fall out when the window is full.

    Attributes:
        requests_per_window: Maximum number of requests allowed in the window
        window_seconds: Size of the window in seconds
        call_times: Monotonic timestamps of calls still inside the window

    """

    def __init__(self, requests_per_window: int, window_seconds: float) -> None:
        """Initialize the rate limiter.

        Raises:
            ValueError: If parameters are not positive numbers

        """
        if requests_per_window <= 0:
            msg = "requests_per_window must be a positive integer"
            raise ValueError(msg)
        if window_seconds <= 0:
            msg = "window_seconds must be a positive number"
            raise ValueError(msg)

        self.requests_per_window = requests_per_window
        self.window_seconds = window_seconds
        self.call_times: list[float] = []
        self.lock = asyncio.Lock()
        self.total_requests = 0
        self.total_wait_time = 0.0

    async def acquire(self) -> float:
        """Wait for a free slot and claim it.

        Returns:
            Seconds spent waiting.

        """
        async with self.lock:
            wait_time = await self._wait_if_needed()
            self.call_times.append(time.monotonic())
            self.total_requests += 1
            self.total_wait_time += wait_time
            return wait_time

    def _prune(self, now: float) -> None:
        cutoff = now - self.window_seconds
        self.call_times = [t for t in self.call_times if t > cutoff]

    async def _wait_if_needed(self) -> float:
        now = time.monotonic()
        self._prune(now)
        if len(self.call_times) < self.requests_per_window:
            return 0.0

        # Small buffer so the oldest call is strictly outside the window after sleeping
        wait_time = max(0.0, self.call_times[0] + self.window_seconds - now) + 0.01
        await asyncio.sleep(wait_time)
        self._prune(time.monotonic())
        return wait_time

    def get_stats(self) -> dict[str, Any]:
        """Current window usage and lifetime totals."""
        self._prune(time.monotonic())
        return {
            "requests_per_window": self.requests_per_window,
            "window_seconds": self.window_seconds,
            "current_calls_in_window": len(self.call_times),
            "available_capacity": max(0, self.requests_per_window - len(self.call_times)),
            "total_requests": self.total_requests,
            "avg_wait_time": self.total_wait_time / max(1, self.total_requests),
        }


class BaseProviderClient(Loggable):
    """Common plumbing for provider clients.

    Subclasses set ``name`` and implement ``search`` and ``transform``.
    """

    name: str = ""

    def __init__(
        self,
        make_api_request: ApiRequestFunc,
        console_logger: logging.Logger | None = None,
        error_logger: logging.Logger | None = None,
    ) -> None:
        super().__init__(console_logger, error_logger)
        self._make_api_request = make_api_request

    @property
    def enabled(self) -> bool:
        """Whether the client has what it needs (credentials, ids) to search."""
        return True

    @staticmethod
    def _normalize_name(name: str) -> str:
        """Normalize an artist or title for case-insensitive matching.

        Uses casefold() for Unicode-aware comparison, maps '&' to 'and',
        strips punctuation (keeping non-ASCII letters) and collapses whitespace.
        """
        if not name:
            return ""
        normalized = name.casefold().replace("&", "and")
        normalized = re.sub(r"[^\w\s]", "", normalized)
        return re.sub(r"\s+", " ", normalized).strip()

    @staticmethod
    def _first(items: Any) -> dict[str, Any] | None:
        if isinstance(items, list) and items and isinstance(items[0], dict):
            return items[0]
        return None
