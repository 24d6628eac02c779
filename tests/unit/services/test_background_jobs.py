"""Tests for the periodic maintenance jobs."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from datetime import timedelta

import allure
import pytest
import pytest_asyncio

from mavin.core.keys import search_key
from mavin.core.models.records import RelatedTrackInput, StreamSaveData, TrackMetadata
from mavin.core.models.settings import BackgroundJobsConfig, ProvidersConfig, StreamConfig
from mavin.services.api.orchestrator import ProviderOrchestrator, Resolution, ResolutionStatus
from mavin.services.api.transformers import from_spotify
from mavin.services.background_jobs import BackgroundJobs
from mavin.services.cache.device_cache import DeviceCache
from mavin.services.cache_manager import CacheManager
from mavin.services.store.durable_store import DurableStore

from tests.mocks import FakeProvider, FakeRelatedSource, MockLogger, MutableClock, spotify_track


class ScriptedOrchestrator:
    """Resolves from a query → outcome table; an exception outcome is raised."""

    def __init__(self, outcomes: dict[str, Resolution | Exception]) -> None:
        self.outcomes = outcomes
        self.queries: list[str] = []

    async def resolve(self, query: str) -> Resolution:
        self.queries.append(query)
        outcome = self.outcomes.get(query, Resolution(status=ResolutionStatus.NOT_FOUND))
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest_asyncio.fixture
async def manager(device_cache: DeviceCache, durable_store: DurableStore) -> AsyncIterator[CacheManager]:
    cache_manager = CacheManager(
        device_cache,
        durable_store,
        related_source=FakeRelatedSource(),
        console_logger=MockLogger(),
        error_logger=MockLogger(),
    )
    yield cache_manager
    await cache_manager.drain()
    await cache_manager.close()


def create_jobs(
    manager: CacheManager,
    store: DurableStore,
    orchestrator: object,
    clock: MutableClock,
    *,
    error_logger: MockLogger | None = None,
    **config: object,
) -> BackgroundJobs:
    return BackgroundJobs(
        BackgroundJobsConfig.model_validate(config),
        StreamConfig(),
        manager=manager,
        store=store,
        orchestrator=orchestrator,  # type: ignore[arg-type]
        console_logger=MockLogger(),
        error_logger=error_logger or MockLogger(),
        clock=clock,
    )


async def save_expiring(store: DurableStore, clock: MutableClock, title: str, artist: str, **ids: str) -> str:
    """Store a track with a spotify stream that expires in one hour."""
    track_id = await store.save_track(TrackMetadata(title=title, artist=artist, **ids))
    assert track_id is not None
    stream = await store.save_stream(
        track_id,
        StreamSaveData(source="spotify", stream_url=f"https://old.example/{track_id}", expires_at=clock() + timedelta(hours=1)),
    )
    assert stream is not None
    return track_id


@allure.epic("Mavin Cache")
@allure.feature("Background jobs")
@allure.sub_suite("Stream refresh")
class TestStreamRefresh:
    @allure.title("An expiring stream is replaced by a freshly resolved one")
    @pytest.mark.asyncio
    async def test_refresh_replaces_stream(
        self, manager: CacheManager, durable_store: DurableStore, store_clock: MutableClock
    ) -> None:
        track_id = await save_expiring(durable_store, store_clock, "City Boys", "Burna Boy", isrc="USAT22300123")
        orchestrator = ProviderOrchestrator(
            ProvidersConfig(),
            [FakeProvider("spotify", spotify_track())],
            console_logger=MockLogger(),
            error_logger=MockLogger(),
        )
        jobs = create_jobs(manager, durable_store, orchestrator, store_clock)

        assert await jobs.refresh_expiring_streams() == 1

        stream = await durable_store.get_stream(track_id)
        assert stream is not None
        assert stream.stream_url == "https://p.scdn.co/mp3-preview/cityboys"
        assert stream.expires_at == store_clock() + timedelta(hours=6)
        assert await durable_store.get_expiring_streams(6) == []

    @allure.title("A refresh that resolves to a different track is skipped")
    @pytest.mark.asyncio
    async def test_identity_mismatch_is_skipped(
        self, manager: CacheManager, durable_store: DurableStore, store_clock: MutableClock
    ) -> None:
        track_id = await save_expiring(durable_store, store_clock, "Essence", "Wizkid")
        orchestrator = ScriptedOrchestrator(
            {
                "Wizkid Essence": Resolution(
                    status=ResolutionStatus.FOUND, source="spotify", metadata=from_spotify(spotify_track())
                )
            }
        )
        error_logger = MockLogger()
        jobs = create_jobs(manager, durable_store, orchestrator, store_clock, error_logger=error_logger)

        assert await jobs.refresh_expiring_streams() == 0

        stream = await durable_store.get_stream(track_id)
        assert stream is not None
        assert stream.stream_url == f"https://old.example/{track_id}"
        assert any("different track" in message for message in error_logger.warning_messages)

    @allure.title("One failing item never aborts the batch")
    @pytest.mark.asyncio
    async def test_per_item_isolation(
        self, manager: CacheManager, durable_store: DurableStore, store_clock: MutableClock
    ) -> None:
        await save_expiring(durable_store, store_clock, "Last Last", "Burna Boy")
        good_id = await save_expiring(durable_store, store_clock, "City Boys", "Burna Boy", isrc="USAT22300123")
        orchestrator = ScriptedOrchestrator(
            {
                "Burna Boy Last Last": RuntimeError("provider exploded"),
                "Burna Boy City Boys": Resolution(
                    status=ResolutionStatus.FOUND, source="spotify", metadata=from_spotify(spotify_track())
                ),
            }
        )
        error_logger = MockLogger()
        jobs = create_jobs(manager, durable_store, orchestrator, store_clock, error_logger=error_logger)

        assert await jobs.refresh_expiring_streams() == 1

        assert sorted(orchestrator.queries) == ["Burna Boy City Boys", "Burna Boy Last Last"]
        refreshed = await durable_store.get_stream(good_id)
        assert refreshed is not None
        assert refreshed.stream_url == "https://p.scdn.co/mp3-preview/cityboys"
        assert any("provider exploded" in message for message in error_logger.error_messages)

    @pytest.mark.asyncio
    async def test_nothing_expiring(
        self, manager: CacheManager, durable_store: DurableStore, store_clock: MutableClock
    ) -> None:
        orchestrator = ScriptedOrchestrator({})
        jobs = create_jobs(manager, durable_store, orchestrator, store_clock)
        assert await jobs.refresh_expiring_streams() == 0
        assert orchestrator.queries == []


@allure.epic("Mavin Cache")
@allure.feature("Background jobs")
@allure.sub_suite("Maintenance")
class TestMaintenanceJobs:
    @pytest.mark.asyncio
    async def test_prune_stale_tracks(
        self, manager: CacheManager, durable_store: DurableStore, store_clock: MutableClock
    ) -> None:
        stale_id = await durable_store.save_track(TrackMetadata(title="Old Song", artist="Someone"))
        fresh_id = await durable_store.save_track(TrackMetadata(title="City Boys", artist="Burna Boy"))
        assert stale_id is not None and fresh_id is not None
        await durable_store.save_search("old song someone", stale_id)

        store_clock.advance(days=91)
        assert await durable_store.get_track(fresh_id) is not None

        jobs = create_jobs(manager, durable_store, ScriptedOrchestrator({}), store_clock)
        assert await jobs.prune_stale_tracks() == 1

        assert await durable_store.get_track(stale_id) is None
        assert await durable_store.find_by_search("old song someone") is None
        assert await durable_store.get_track(fresh_id) is not None

    @allure.title("Stream refresh never keeps an unplayed track from being pruned")
    @pytest.mark.asyncio
    async def test_refresh_attempt_does_not_count_as_access(
        self, manager: CacheManager, durable_store: DurableStore, store_clock: MutableClock
    ) -> None:
        track_id = await save_expiring(durable_store, store_clock, "Old Song", "Someone")
        store_clock.advance(days=91)

        orchestrator = ScriptedOrchestrator({})
        jobs = create_jobs(manager, durable_store, orchestrator, store_clock)
        assert await jobs.refresh_expiring_streams() == 0
        assert orchestrator.queries == ["Someone Old Song"]

        assert await jobs.prune_stale_tracks() == 1
        assert await durable_store.get_track(track_id) is None

    @pytest.mark.asyncio
    async def test_cache_warming_primes_device_and_related(
        self,
        manager: CacheManager,
        durable_store: DurableStore,
        device_cache: DeviceCache,
        store_clock: MutableClock,
    ) -> None:
        track_id = await durable_store.save_track(TrackMetadata(title="City Boys", artist="Burna Boy"))
        assert track_id is not None
        await durable_store.save_search("city boys", track_id)
        await durable_store.record_search_hit("city boys")
        manager.related_source = FakeRelatedSource([RelatedTrackInput(title="Last Last", artist="Burna Boy")])

        jobs = create_jobs(manager, durable_store, ScriptedOrchestrator({}), store_clock, popular_threshold=2)

        assert await jobs.run_cache_warming() == 1
        assert await device_cache.has(search_key("city boys"))
        assert await durable_store.has_related_tracks(track_id)

    @pytest.mark.asyncio
    async def test_report_stats(self, manager: CacheManager, durable_store: DurableStore, store_clock: MutableClock) -> None:
        jobs = create_jobs(manager, durable_store, ScriptedOrchestrator({}), store_clock)
        stats = await jobs.report_stats()
        assert stats.store.available
        assert stats.device.size == 0


@allure.epic("Mavin Cache")
@allure.feature("Background jobs")
@allure.sub_suite("Scheduling")
class TestScheduling:
    @allure.title("run_all_jobs refuses to overlap with itself")
    @pytest.mark.asyncio
    async def test_run_all_jobs_guard(
        self, manager: CacheManager, durable_store: DurableStore, store_clock: MutableClock
    ) -> None:
        gate = asyncio.Event()

        class SlowOrchestrator(ScriptedOrchestrator):
            async def resolve(self, query: str) -> Resolution:
                await gate.wait()
                return await super().resolve(query)

        await save_expiring(durable_store, store_clock, "City Boys", "Burna Boy")
        jobs = create_jobs(manager, durable_store, SlowOrchestrator({}), store_clock)

        first = asyncio.create_task(jobs.run_all_jobs())
        await asyncio.sleep(0.05)
        assert jobs.is_running
        assert not await jobs.run_all_jobs()

        gate.set()
        assert await first
        assert not jobs.is_running

    @pytest.mark.asyncio
    async def test_job_failure_is_logged(
        self, manager: CacheManager, durable_store: DurableStore, store_clock: MutableClock
    ) -> None:
        error_logger = MockLogger()
        jobs = create_jobs(manager, durable_store, ScriptedOrchestrator({}), store_clock, error_logger=error_logger)

        async def broken() -> int:
            msg = "store gone"
            raise RuntimeError(msg)

        jobs.prune_stale_tracks = broken  # type: ignore[method-assign]

        assert await jobs.run_all_jobs()
        assert any("stale-pruning failed" in message for message in error_logger.error_messages)

    @pytest.mark.asyncio
    async def test_disabled_jobs_do_not_start(
        self, manager: CacheManager, durable_store: DurableStore, store_clock: MutableClock
    ) -> None:
        jobs = create_jobs(manager, durable_store, ScriptedOrchestrator({}), store_clock, enabled=False)
        jobs.start()
        assert not jobs.started
        await jobs.stop()

    @pytest.mark.asyncio
    async def test_start_and_stop(
        self, manager: CacheManager, durable_store: DurableStore, store_clock: MutableClock
    ) -> None:
        jobs = create_jobs(manager, durable_store, ScriptedOrchestrator({}), store_clock, run_on_start=False)
        jobs.start()
        jobs.start()
        assert jobs.started
        assert len(jobs._loops) == 4

        await jobs.stop()
        assert not jobs.started
