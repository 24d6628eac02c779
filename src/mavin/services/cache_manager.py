"""Cache manager: the single entry point over the device cache and the durable store.

Read path (``get_search``) is strictly local: device cache, then durable
store, then miss. It never calls a provider; resolving through providers is
the caller's explicit ``resolve`` + ``save_search`` step, which keeps
reads bounded by local I/O latency.

Write path (``save_search``) persists track, stream and search mapping to
the store, writes the composed result into the device cache, and schedules
related-track caching as a detached task whose failure never affects the
caller.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from mavin.core.exceptions import ProviderError
from mavin.core.keys import ensure_utc_aware, search_key, utc_now
from mavin.core.logger import Loggable, LogFormat
from mavin.core.models.records import ResultSource, SearchResult, Stream, Track
from mavin.core.tasks import BackgroundTaskGroup

if TYPE_CHECKING:
    import logging
    from collections.abc import Callable

    from mavin.core.models.records import ArtistCache, StreamSaveData, TrackMetadata
    from mavin.services.api.api_base import ArtistSource, RelatedTracksSource
    from mavin.services.cache.device_cache import DeviceCache, DeviceCacheStats
    from mavin.services.store.durable_store import DurableStore, DurableStoreStats

DEFAULT_RELATED_LIMIT = 5
WARM_MIN_HITS = 5


@dataclass
class CacheStats:
    """Combined statistics of both tiers plus manager counters."""

    device: DeviceCacheStats
    store: DurableStoreStats
    counters: dict[str, int] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


class CacheManager(Loggable):
    """L1 → L2 lookup chain with write-through and background related-track caching."""

    def __init__(
        self,
        device_cache: DeviceCache,
        store: DurableStore,
        *,
        related_source: RelatedTracksSource | None = None,
        artist_source: ArtistSource | None = None,
        related_limit: int = DEFAULT_RELATED_LIMIT,
        clock: Callable[[], datetime] | None = None,
        console_logger: logging.Logger | None = None,
        error_logger: logging.Logger | None = None,
    ) -> None:
        """Initialize the cache manager.

        Args:
            device_cache: L1 cache (initialized by the caller)
            store: L2 store (initialized by the caller)
            related_source: Where related tracks come from; None disables related caching
            artist_source: Where artist snapshots come from on a store miss
            related_limit: Related tracks fetched per saved search
            clock: Source of UTC datetimes for stream expiry checks (defaults to the store clock)
            console_logger: Logger for info/debug messages
            error_logger: Logger for warnings and errors

        """
        super().__init__(console_logger, error_logger)
        self.device = device_cache
        self.store = store
        self.related_source = related_source
        self.artist_source = artist_source
        self.related_limit = related_limit
        self.clock = clock or store.clock
        self._tasks = BackgroundTaskGroup("cache-manager", self.error_logger)

        self.l1_hits = 0
        self.l2_hits = 0
        self.misses = 0
        self.saves = 0

    # ------------------------------------------------------------------ search

    async def get_search(self, query: str, *, record_hit: bool = True) -> SearchResult | None:
        """Look a query up in L1, then L2. Never touches the network.

        Args:
            query: Free-text search query
            record_hit: Count this lookup on the search mapping (off for cache warming)

        Returns:
            The cached result tagged with the tier that served it, or None on a miss.

        """
        key = search_key(query)

        cached = await self.device.get(key)
        if cached is not None:
            result = self._decode_result(key, cached)
            if result is not None:
                result = await self._refresh_cached_stream(key, result)
                self.l1_hits += 1
                if record_hit:
                    self._tasks.spawn(self.store.record_search_hit(query), label="record-hit")
                self.console_logger.debug("[manager] L1 hit for '%s'", query)
                return result.model_copy(update={"source": ResultSource.DEVICE})

        track = await self.store.find_by_search(query)
        if track is None:
            self.misses += 1
            self.console_logger.debug("[manager] Miss for '%s'", query)
            return None

        stream = await self.store.get_stream(track.id)
        if record_hit:
            await self.store.record_search_hit(query)
        result = SearchResult(track=track, stream=stream, source=ResultSource.STORE)
        self.l2_hits += 1
        await self.device.set(key, result.model_dump(mode="json"))
        self.console_logger.debug("[manager] L2 hit for '%s', written through to L1", query)
        return result

    async def _refresh_cached_stream(self, key: str, result: SearchResult) -> SearchResult:
        """Swap a missing or expired L1 stream for the current best stream from L2."""
        stream = result.stream
        if stream is not None and ensure_utc_aware(stream.expires_at) > self.clock():
            return result
        fresh = await self.store.get_stream(result.track.id)
        if fresh == stream:
            return result
        updated = result.model_copy(update={"stream": fresh})
        await self.device.set(key, updated.model_dump(mode="json"))
        self.console_logger.debug("[manager] Replaced stale L1 stream for %s", result.track.id)
        return updated

    def _decode_result(self, key: str, cached: Any) -> SearchResult | None:
        try:
            return SearchResult.model_validate(cached)
        except ValidationError as e:
            self.error_logger.warning("[manager] Discarding undecodable L1 entry %s: %s", key, e.error_count())
            self._tasks.spawn(self.device.delete(key), label="drop-bad-entry")
            return None

    async def save_search(
        self,
        query: str,
        track: TrackMetadata,
        stream: StreamSaveData | None = None,
    ) -> SearchResult | None:
        """Persist a freshly resolved result through both tiers.

        Returns:
            The composed result (``source=provider``), or None when the track
            could not be stored.

        """
        track_id = await self.store.save_track(track)
        if track_id is None:
            self.error_logger.warning("[manager] Could not store track for '%s'", query)
            return None

        saved_stream: Stream | None = None
        if stream is not None:
            saved_stream = await self.store.save_stream(track_id, stream)
        await self.store.save_search(query, track_id)

        result = SearchResult(
            track=Track(id=track_id, **track.model_dump()),
            stream=saved_stream,
            source=ResultSource.PROVIDER,
        )
        await self.device.set(search_key(query), result.model_dump(mode="json"))
        self.saves += 1
        self.console_logger.info(
            "Cached %s - %s for '%s'",
            LogFormat.entity(track.artist),
            LogFormat.entity(track.title),
            query,
        )

        self._tasks.spawn(self.cache_related_tracks(track_id, track.artist, track.title), label="related")
        return result

    # ------------------------------------------------------------------ tracks

    async def get_track(self, track_id: str) -> Track | None:
        return await self.store.get_track(track_id)

    async def get_track_with_stream(self, track_id: str) -> tuple[Track | None, Stream | None]:
        track = await self.store.get_track(track_id)
        if track is None:
            return None, None
        return track, await self.store.get_stream(track_id)

    # ----------------------------------------------------------------- related

    async def get_related_tracks(self, track_id: str, limit: int = 10) -> list[Track]:
        return await self.store.get_related_tracks(track_id, limit)

    async def cache_related_tracks(self, track_id: str, artist: str, title: str) -> int:
        """Fetch and store related tracks unless the track already has some.

        Returns:
            Number of related tracks fetched (0 when skipped or on failure).

        """
        if self.related_source is None:
            return 0
        if await self.store.has_related_tracks(track_id):
            self.console_logger.debug("[manager] Related tracks already cached for %s", track_id)
            return 0
        try:
            related = await self.related_source.get_related_tracks(artist, title, self.related_limit)
        except ProviderError as e:
            self.error_logger.warning("[manager] Related tracks lookup failed for %s - %s: %s", artist, title, e)
            return 0
        if not related:
            return 0
        await self.store.save_related_tracks(track_id, related)
        self.console_logger.debug("[manager] Cached %d related tracks for %s - %s", len(related), artist, title)
        return len(related)

    # ----------------------------------------------------------------- artists

    async def get_artist_discography(self, name: str) -> ArtistCache | None:
        """Artist snapshot from the store, fetched and stored on a miss when a source is configured."""
        cached = await self.store.get_artist(name)
        if cached is not None or self.artist_source is None:
            return cached
        try:
            snapshot = await self.artist_source.get_artist_snapshot(name)
        except ProviderError as e:
            self.error_logger.warning("[manager] Artist lookup failed for %s: %s", name, e)
            return None
        if snapshot is None:
            return None
        await self.store.save_artist(
            name,
            top_tracks=snapshot.top_tracks,
            albums=snapshot.albums,
            similar_artists=snapshot.similar_artists,
        )
        return snapshot

    # ------------------------------------------------------------------ health

    async def report_stream_failure(self, stream_id: str, query: str | None = None) -> bool:
        """Penalize a stream; with ``query`` also drop its L1 entry so the next lookup re-reads L2."""
        updated = await self.store.report_stream_failure(stream_id)
        if query:
            await self.device.delete(search_key(query))
        return updated

    # ------------------------------------------------------------- maintenance

    async def warm_cache(self, limit: int = 50, min_hits: int = WARM_MIN_HITS) -> int:
        """Replay the most popular searches so L1 holds them.

        Returns:
            Number of searches that produced a result.

        """
        popular = await self.store.get_popular_searches(limit, min_hits)
        warmed = 0
        for record in popular:
            if await self.get_search(record.query, record_hit=False) is not None:
                warmed += 1
        self.console_logger.info(
            "Cache warming: %s of %s popular searches primed",
            LogFormat.number(warmed),
            LogFormat.number(len(popular)),
        )
        return warmed

    async def get_stats(self) -> CacheStats:
        return CacheStats(
            device=self.device.stats(),
            store=await self.store.get_stats(),
            counters={
                "l1_hits": self.l1_hits,
                "l2_hits": self.l2_hits,
                "misses": self.misses,
                "saves": self.saves,
                "background_failures": self._tasks.failures,
            },
        )

    async def clear_all(self) -> bool:
        """Clear the device cache. The durable store is shared and never wiped from a client."""
        cleared = await self.device.clear()
        self.console_logger.info("Device cache cleared: %s", LogFormat.success("yes") if cleared else LogFormat.error("no"))
        return cleared

    async def drain(self) -> None:
        """Wait for detached work (hit recording, related caching, L1 persistence)."""
        await self._tasks.drain()
        await self.device.drain()

    async def close(self) -> None:
        await self._tasks.close()
