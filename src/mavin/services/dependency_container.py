"""Dependency Injection Container Module.

Builds every service from one ``AppConfig``, initializes them in
dependency order and tears them down in reverse. There is no module-level
state: each container owns its own device cache, store, orchestrator,
manager and jobs, so tests can run isolated containers side by side.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from mavin.core.logger import LogFormat
from mavin.services.api.orchestrator import ProviderOrchestrator, create_provider_orchestrator
from mavin.services.background_jobs import BackgroundJobs
from mavin.services.cache.device_cache import DeviceCache
from mavin.services.cache_manager import CacheManager
from mavin.services.store.durable_store import DurableStore

if TYPE_CHECKING:
    import logging
    from collections.abc import Sequence

    from mavin.core.logger import SafeQueueListener
    from mavin.core.models.settings import AppConfig
    from mavin.services.api.api_base import ArtistSource, MetadataProvider, RelatedTracksSource


class DependencyContainer:
    """Owns the lifecycle of all cache services."""

    def __init__(
        self,
        config: AppConfig,
        console_logger: logging.Logger,
        error_logger: logging.Logger,
        *,
        logging_listener: SafeQueueListener | None = None,
        providers: Sequence[MetadataProvider] | None = None,
        related_source: RelatedTracksSource | None = None,
        artist_source: ArtistSource | None = None,
    ) -> None:
        """Initialize the dependency container.

        Args:
            config: Validated application configuration
            console_logger: Logger for console output
            error_logger: Logger for error messages
            logging_listener: Queue listener stopped on shutdown
            providers: Metadata providers to use instead of the HTTP clients
            related_source: Related-tracks source; defaults to the Deezer client
            artist_source: Artist snapshot source; defaults to the Deezer client

        """
        self._config = config
        self._console_logger = console_logger
        self._error_logger = error_logger
        self._listener = logging_listener
        self._providers = providers
        self._related_source = related_source
        self._artist_source = artist_source

        self._device_cache: DeviceCache | None = None
        self._store: DurableStore | None = None
        self._orchestrator: ProviderOrchestrator | None = None
        self._cache_manager: CacheManager | None = None
        self._background_jobs: BackgroundJobs | None = None

    @property
    def config(self) -> AppConfig:
        return self._config

    @property
    def console_logger(self) -> logging.Logger:
        return self._console_logger

    @property
    def error_logger(self) -> logging.Logger:
        return self._error_logger

    @property
    def device_cache(self) -> DeviceCache:
        """Get the device (L1) cache."""
        if self._device_cache is None:
            msg = "Device cache not initialized"
            raise RuntimeError(msg)
        return self._device_cache

    @property
    def store(self) -> DurableStore:
        """Get the durable (L2) store."""
        if self._store is None:
            msg = "Durable store not initialized"
            raise RuntimeError(msg)
        return self._store

    @property
    def orchestrator(self) -> ProviderOrchestrator:
        """Get the provider orchestrator."""
        if self._orchestrator is None:
            msg = "Provider orchestrator not initialized"
            raise RuntimeError(msg)
        return self._orchestrator

    @property
    def cache_manager(self) -> CacheManager:
        """Get the cache manager."""
        if self._cache_manager is None:
            msg = "Cache manager not initialized"
            raise RuntimeError(msg)
        return self._cache_manager

    @property
    def background_jobs(self) -> BackgroundJobs:
        """Get the background jobs."""
        if self._background_jobs is None:
            msg = "Background jobs not initialized"
            raise RuntimeError(msg)
        return self._background_jobs

    async def initialize(self) -> None:
        """Build and initialize services: device cache, store, orchestrator, manager, jobs.

        Raises:
            ConfigurationError: If the durable store URL is invalid

        """
        if self._cache_manager is not None:
            return
        self._console_logger.info("Starting async initialization of services...")
        loggers = {"console_logger": self._console_logger, "error_logger": self._error_logger}

        self._device_cache = DeviceCache(self._config.local_cache, **loggers)
        await self._device_cache.initialize()

        self._store = DurableStore(self._config.durable_store, self._config.streams, **loggers)
        await self._store.initialize()

        if self._providers is not None:
            self._orchestrator = ProviderOrchestrator(self._config.providers, self._providers, **loggers)
        else:
            self._orchestrator = create_provider_orchestrator(self._config.providers, **loggers)
        await self._orchestrator.initialize()

        related_source = self._related_source or self._orchestrator.deezer_client
        artist_source = self._artist_source or self._orchestrator.deezer_client
        self._cache_manager = CacheManager(
            self._device_cache,
            self._store,
            related_source=related_source,
            artist_source=artist_source,
            related_limit=self._config.background_jobs.related_tracks_per_search,
            **loggers,
        )

        self._background_jobs = BackgroundJobs(
            self._config.background_jobs,
            self._config.streams,
            manager=self._cache_manager,
            store=self._store,
            orchestrator=self._orchestrator,
            **loggers,
        )
        self._console_logger.info("%s All services initialized", LogFormat.success("✓"))

    async def close(self) -> None:
        """Tear services down in reverse order: jobs, manager, orchestrator, store, device cache."""
        self._console_logger.debug("Closing DependencyContainer...")
        if self._background_jobs is not None:
            await self._background_jobs.stop()
        if self._cache_manager is not None:
            await self._cache_manager.drain()
            await self._cache_manager.close()
        if self._orchestrator is not None:
            await self._orchestrator.close()
        if self._store is not None:
            await self._store.close()
        if self._device_cache is not None:
            await self._device_cache.close()

        self._background_jobs = None
        self._cache_manager = None
        self._orchestrator = None
        self._store = None
        self._device_cache = None
        self._console_logger.debug("DependencyContainer closed.")

    async def shutdown(self) -> None:
        """Close all services and stop the logging listener."""
        await self.close()
        if self._listener is not None:
            self._console_logger.debug("Stopping logging listener...")
            self._listener.stop()
            self._listener = None
