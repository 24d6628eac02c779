"""Periodic cache maintenance.

Four jobs, each on its own loop:

- cache warming: prime the device cache with popular searches and fill in
  missing related tracks for them
- stream refresh: re-resolve tracks whose streams expire soon and store a
  fresh stream before the old one dies
- stale pruning: hard-delete tracks nobody accessed for a configured number of days
- stats reporting: log the combined cache statistics

Jobs share the durable store with foreground requests and rely on its
atomic upserts and conditional deletes. Every item is processed in its own
error boundary, so one bad track never aborts a batch, and a failing job
never stops its loop.
"""

from __future__ import annotations

import asyncio
import contextlib
from datetime import timedelta
from typing import TYPE_CHECKING

from mavin.core.keys import normalize_query, utc_now
from mavin.core.logger import Loggable, LogFormat
from mavin.services.api.transformers import stream_from_metadata, track_from_metadata

if TYPE_CHECKING:
    import logging
    from collections.abc import Awaitable, Callable
    from datetime import datetime

    from mavin.core.models.records import Stream, Track, UnifiedMetadata
    from mavin.core.models.settings import BackgroundJobsConfig, StreamConfig
    from mavin.services.api.orchestrator import ProviderOrchestrator
    from mavin.services.cache_manager import CacheManager, CacheStats
    from mavin.services.store.durable_store import DurableStore

SECONDS_PER_MINUTE = 60


class BackgroundJobs(Loggable):
    """Timer-driven maintenance over the durable store and the cache manager."""

    def __init__(
        self,
        config: BackgroundJobsConfig,
        stream_config: StreamConfig,
        *,
        manager: CacheManager,
        store: DurableStore,
        orchestrator: ProviderOrchestrator,
        console_logger: logging.Logger | None = None,
        error_logger: logging.Logger | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the jobs; nothing runs until ``start()`` or an explicit job call.

        Args:
            config: Intervals, batch sizes and thresholds
            stream_config: Provides the stream refresh threshold
            manager: Cache manager used for warming and related-track caching
            store: Durable store the jobs read candidates from
            orchestrator: Re-resolves tracks whose streams are expiring
            console_logger: Logger for info/debug messages
            error_logger: Logger for warnings and errors
            clock: Source of UTC datetimes for the pruning cutoff

        """
        super().__init__(console_logger, error_logger)
        self.config = config
        self.refresh_threshold_hours = stream_config.refresh_threshold_hours
        self.manager = manager
        self.store = store
        self.orchestrator = orchestrator
        self.clock = clock

        self._loops: list[asyncio.Task[None]] = []
        self.is_running = False

    @property
    def started(self) -> bool:
        return bool(self._loops)

    def start(self) -> None:
        """Start one loop task per job (no-op when disabled or already started)."""
        if not self.config.enabled:
            self.console_logger.info("%s disabled by configuration", LogFormat.entity("BackgroundJobs"))
            return
        if self._loops:
            return

        maintenance_interval = self.config.refresh_interval_minutes * SECONDS_PER_MINUTE
        schedule: list[tuple[str, Callable[[], Awaitable[object]], float]] = [
            ("cache-warming", self.run_cache_warming, maintenance_interval),
            ("stream-refresh", self.refresh_expiring_streams, maintenance_interval),
            ("stale-pruning", self.prune_stale_tracks, maintenance_interval),
            ("stats", self.report_stats, self.config.stats_interval_minutes * SECONDS_PER_MINUTE),
        ]
        for name, job, interval in schedule:
            self._loops.append(asyncio.create_task(self._run_periodically(name, job, interval), name=f"job:{name}"))
        self.console_logger.info(
            "%s started (maintenance every %s min, stats every %s min)",
            LogFormat.entity("BackgroundJobs"),
            LogFormat.number(self.config.refresh_interval_minutes),
            LogFormat.number(self.config.stats_interval_minutes),
        )

    async def stop(self) -> None:
        """Cancel every job loop and wait for them to unwind."""
        loops, self._loops = self._loops, []
        for task in loops:
            task.cancel()
        for task in loops:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if loops:
            self.console_logger.info("%s stopped", LogFormat.entity("BackgroundJobs"))

    async def _run_periodically(self, name: str, job: Callable[[], Awaitable[object]], interval: float) -> None:
        if not self.config.run_on_start:
            await asyncio.sleep(interval)
        while True:
            try:
                await job()
            except asyncio.CancelledError:
                self.console_logger.debug("[jobs] %s loop cancelled", name)
                raise
            except Exception as e:
                self.error_logger.exception("[jobs] %s failed: %s", name, e)
            await asyncio.sleep(interval)

    async def run_all_jobs(self) -> bool:
        """Run every job once, concurrently.

        Returns:
            False when a previous ``run_all_jobs`` is still in progress (nothing was run).

        """
        if self.is_running:
            self.console_logger.info("Background jobs already running, skipping")
            return False
        self.is_running = True
        try:
            names = ["stream-refresh", "cache-warming", "stale-pruning", "stats"]
            results = await asyncio.gather(
                self.refresh_expiring_streams(),
                self.run_cache_warming(),
                self.prune_stale_tracks(),
                self.report_stats(),
                return_exceptions=True,
            )
            for name, result in zip(names, results, strict=True):
                if isinstance(result, BaseException):
                    self.error_logger.error("[jobs] %s failed: %s: %s", name, type(result).__name__, result)
        finally:
            self.is_running = False
        return True

    # ------------------------------------------------------------------- jobs

    async def run_cache_warming(self) -> int:
        """Warm the device cache, then cache related tracks for popular searches lacking them.

        Returns:
            Number of searches that received related tracks.

        """
        await self.manager.warm_cache(self.config.max_pre_cache, min_hits=self.config.popular_threshold)

        popular = await self.store.get_popular_searches(self.config.max_pre_cache, self.config.popular_threshold)
        enriched = 0
        for record in popular:
            try:
                if await self.store.has_related_tracks(record.track_id):
                    continue
                track = await self.store.get_track(record.track_id, touch=False)
                if track is None:
                    continue
                if await self.manager.cache_related_tracks(track.id, track.artist, track.title):
                    enriched += 1
            except Exception as e:
                self.error_logger.exception("[jobs] Related caching failed for '%s': %s", record.query, e)
        if enriched:
            self.console_logger.info("Pre-cached related tracks for %s popular searches", LogFormat.number(enriched))
        return enriched

    async def refresh_expiring_streams(self) -> int:
        """Re-resolve tracks whose active streams expire within the refresh threshold.

        Returns:
            Number of streams replaced.

        """
        expiring = await self.store.get_expiring_streams(self.refresh_threshold_hours)
        if not expiring:
            self.console_logger.debug("[jobs] No expiring streams")
            return 0

        refreshed = 0
        for stream in expiring:
            try:
                if await self._refresh_stream(stream):
                    refreshed += 1
            except Exception as e:
                self.error_logger.exception("[jobs] Error refreshing stream %s: %s", stream.id, e)
        self.console_logger.info(
            "Stream refresh: %s of %s expiring streams replaced",
            LogFormat.number(refreshed),
            LogFormat.number(len(expiring)),
        )
        return refreshed

    async def _refresh_stream(self, stream: Stream) -> bool:
        track = await self.store.get_track(stream.track_id, touch=False)
        if track is None:
            return False

        resolution = await self.orchestrator.resolve(f"{track.artist} {track.title}")
        if not resolution.found or resolution.metadata is None:
            self.console_logger.debug("[jobs] No provider result while refreshing %s - %s", track.artist, track.title)
            return False
        if not self._same_track(track, resolution.metadata):
            self.error_logger.warning(
                "[jobs] Refresh for %s - %s resolved to a different track (%s - %s), skipping",
                track.artist,
                track.title,
                resolution.metadata.artist,
                resolution.metadata.title,
            )
            return False
        return await self.store.save_stream(track.id, stream_from_metadata(resolution.metadata)) is not None

    @staticmethod
    def _same_track(track: Track, meta: UnifiedMetadata) -> bool:
        if track_from_metadata(meta).identity_key == track.identity_key:
            return True
        return normalize_query(meta.title) == normalize_query(track.title) and normalize_query(meta.artist) == normalize_query(
            track.artist
        )

    async def prune_stale_tracks(self) -> int:
        """Hard-delete tracks not accessed within ``stale_track_days``.

        Returns:
            Number of tracks deleted.

        """
        days = self.config.stale_track_days
        older_than = self.clock() - timedelta(days=days)
        candidates = await self.store.get_stale_tracks(days)
        deleted = 0
        for track_id in candidates:
            try:
                if await self.store.delete_stale_track(track_id, older_than):
                    deleted += 1
            except Exception as e:
                self.error_logger.exception("[jobs] Error pruning track %s: %s", track_id, e)
        if candidates:
            self.console_logger.info(
                "Stale pruning: %s of %s candidates deleted",
                LogFormat.number(deleted),
                LogFormat.number(len(candidates)),
            )
        return deleted

    async def report_stats(self) -> CacheStats:
        stats = await self.manager.get_stats()
        self.console_logger.info(
            "Cache stats: device %s/%s items, %s tracks, %s active streams, %s searches",
            LogFormat.number(stats.device.size),
            LogFormat.number(stats.device.max_size),
            LogFormat.number(stats.store.tracks),
            LogFormat.number(stats.store.active_streams),
            LogFormat.number(stats.store.searches),
        )
        return stats
