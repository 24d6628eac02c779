"""Provider orchestration.

Fans one query out to every enabled metadata provider concurrently and
picks the winner by fixed priority order, not by response time.

Higher-priority providers are assumed to carry richer metadata (ISRC,
artwork sizes, popularity), so a fast answer from a low-priority provider
never beats a slower answer from a higher one. The cost is that ``resolve``
always waits for every provider to settle, bounded by one global deadline
at which all still-running provider tasks are cancelled together.
"""

from __future__ import annotations

import asyncio
import ssl
import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import aiohttp
import certifi

from mavin.core.logger import Loggable, LogFormat
from mavin.core.models.records import UnifiedMetadata
from mavin.services.api.api_base import EnhancedRateLimiter
from mavin.services.api.deezer import DeezerClient
from mavin.services.api.request_executor import ApiRequestExecutor
from mavin.services.api.soundcloud import SoundCloudClient
from mavin.services.api.spotify import SpotifyClient

if TYPE_CHECKING:
    import logging
    from collections.abc import Sequence

    from mavin.core.models.settings import ProvidersConfig
    from mavin.services.api.api_base import MetadataProvider

# Exceptions a transformer raises for a payload it cannot map
TRANSFORM_ERRORS = (KeyError, TypeError, ValueError, AttributeError, IndexError)

DEFAULT_RATE_LIMITS: dict[str, tuple[int, float]] = {
    "spotify": (10, 1.0),
    "deezer": (50, 5.0),
    "soundcloud": (5, 1.0),
}


class ResolutionStatus(StrEnum):
    FOUND = "found"
    NOT_FOUND = "not_found"


@dataclass
class Resolution:
    """Outcome of one ``resolve`` call.

    ``NOT_FOUND`` covers "no provider matched", "every provider failed" and
    "deadline hit"; the provider lists tell those apart for diagnostics.
    """

    status: ResolutionStatus
    source: str | None = None
    metadata: UnifiedMetadata | None = None
    failed_providers: list[str] = field(default_factory=list)
    timed_out_providers: list[str] = field(default_factory=list)
    elapsed_seconds: float = 0.0

    @property
    def found(self) -> bool:
        return self.status is ResolutionStatus.FOUND


class ProviderOrchestrator(Loggable):
    """Concurrent, priority-ordered metadata resolution across providers."""

    def __init__(
        self,
        config: ProvidersConfig,
        providers: Sequence[MetadataProvider] | None = None,
        *,
        console_logger: logging.Logger | None = None,
        error_logger: logging.Logger | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            config: Provider settings (priority order, timeouts, credentials, rate limits)
            providers: Explicit providers in priority order; when omitted the
                HTTP-backed clients are built in ``initialize()`` from ``config``
            console_logger: Logger for info/debug messages
            error_logger: Logger for warnings and errors

        """
        super().__init__(console_logger, error_logger)
        self.config = config
        self.global_timeout = config.global_timeout_seconds
        self.user_agent = config.user_agent
        self.providers: list[MetadataProvider] = list(providers) if providers is not None else []
        self._owns_providers = providers is None

        self.session: aiohttp.ClientSession | None = None
        self.rate_limiters: dict[str, EnhancedRateLimiter] = {}
        self.request_executor: ApiRequestExecutor | None = None
        self.deezer_client: DeezerClient | None = None

        self.resolutions = 0
        self.not_found = 0
        self.wins: dict[str, int] = {}
        self.failures: dict[str, int] = {}
        self.timeouts: dict[str, int] = {}

    async def initialize(self) -> None:
        """Create the HTTP session and provider clients (only when none were injected)."""
        if not self._owns_providers or self.session is not None:
            return

        self._initialize_rate_limiters()
        self.session = self._create_client_session()
        self.request_executor = ApiRequestExecutor(
            rate_limiters=self.rate_limiters,
            max_retries=self.config.max_retries,
            retry_delay=self.config.retry_delay_seconds,
            console_logger=self.console_logger,
            error_logger=self.error_logger,
        )
        self.request_executor.set_session(self.session)
        self._initialize_api_clients()
        self.console_logger.info(
            "%s initialized with providers: %s (User-Agent: %s)",
            LogFormat.entity("ProviderOrchestrator"),
            ", ".join(p.name for p in self.providers) or "none",
            self.user_agent,
        )

    def _initialize_rate_limiters(self) -> None:
        for name, (requests, window) in DEFAULT_RATE_LIMITS.items():
            override = self.config.rate_limits.get(name)
            self.rate_limiters[name] = EnhancedRateLimiter(
                requests_per_window=override.requests_per_window if override else requests,
                window_seconds=override.window_seconds if override else window,
            )

    def _initialize_api_clients(self) -> None:
        assert self.request_executor is not None
        make_api_request = self.request_executor.execute_request
        self.deezer_client = DeezerClient(self.config.deezer, make_api_request, self.console_logger, self.error_logger)
        clients: dict[str, SpotifyClient | DeezerClient | SoundCloudClient] = {
            "spotify": SpotifyClient(self.config.spotify, make_api_request, self.console_logger, self.error_logger),
            "deezer": self.deezer_client,
            "soundcloud": SoundCloudClient(self.config.soundcloud, make_api_request, self.console_logger, self.error_logger),
        }
        self.providers = []
        for name in self.config.priority:
            client = clients[name]
            if client.enabled:
                self.providers.append(client)
            else:
                self.console_logger.info("[%s] Provider disabled (missing credentials or turned off)", name)

    def _create_client_session(self) -> aiohttp.ClientSession:
        """Create a new aiohttp ClientSession with certifi-backed TLS."""
        timeout = aiohttp.ClientTimeout(total=self.config.request_timeout_seconds)
        ssl_context = ssl.create_default_context(cafile=certifi.where())
        ssl_context.minimum_version = ssl.TLSVersion.TLSv1_2

        connector = aiohttp.TCPConnector(
            limit=self.config.connection_limit,
            limit_per_host=max(1, self.config.connection_limit // 2),
            ttl_dns_cache=300,
            ssl=ssl_context,
        )
        headers = {
            "User-Agent": self.user_agent,
            "Accept": "application/json",
            "Accept-Encoding": "gzip, deflate",
        }
        return aiohttp.ClientSession(timeout=timeout, connector=connector, headers=headers)

    async def close(self) -> None:
        """Close the HTTP session and log per-provider statistics."""
        if self.request_executor is not None:
            for provider, stats in self.request_executor.get_stats().items():
                self.console_logger.info(
                    "API: %-12s | Requests: %-5d | Avg Duration: %.3fs",
                    provider.title(),
                    int(stats["requests"]),
                    stats["avg_duration"],
                )
        if self.session is not None and not self.session.closed:
            await self.session.close()
            self.console_logger.info("Provider HTTP session closed")
        self.session = None

    async def resolve(self, query: str) -> Resolution:
        """Resolve a free-text query to unified metadata.

        Never raises for provider failures, malformed payloads or the
        deadline; all of those end in ``NOT_FOUND`` unless some
        other provider produced a usable result.
        """
        start = time.monotonic()
        self.resolutions += 1
        if not query or not query.strip() or not self.providers:
            self.not_found += 1
            return Resolution(status=ResolutionStatus.NOT_FOUND)

        tasks = {
            provider.name: asyncio.create_task(provider.search(query), name=f"search:{provider.name}")
            for provider in self.providers
        }
        done, pending = await asyncio.wait(tasks.values(), timeout=self.global_timeout)
        if pending:
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        resolution = Resolution(status=ResolutionStatus.NOT_FOUND)
        for provider in self.providers:
            task = tasks[provider.name]
            if task not in done:
                resolution.timed_out_providers.append(provider.name)
                self.timeouts[provider.name] = self.timeouts.get(provider.name, 0) + 1
                continue
            if task.cancelled() or task.exception() is not None:
                self._log_search_failure(provider.name, task, query)
                resolution.failed_providers.append(provider.name)
                continue
            raw = task.result()
            if resolution.found or not isinstance(raw, dict) or not raw:
                continue
            try:
                metadata = provider.transform(raw)
            except TRANSFORM_ERRORS as e:
                self.error_logger.warning("[%s] Dropping malformed payload for '%s': %s", provider.name, query, e)
                resolution.failed_providers.append(provider.name)
                continue
            resolution.status = ResolutionStatus.FOUND
            resolution.source = provider.name
            resolution.metadata = metadata

        resolution.elapsed_seconds = time.monotonic() - start
        if resolution.found and resolution.source:
            self.wins[resolution.source] = self.wins.get(resolution.source, 0) + 1
            self.console_logger.info(
                "Resolved '%s' via %s in %s",
                query,
                LogFormat.label(resolution.source),
                LogFormat.duration(resolution.elapsed_seconds),
            )
        else:
            self.not_found += 1
            self.console_logger.info(
                "No provider resolved '%s' (failed: %s, timed out: %s)",
                query,
                ", ".join(resolution.failed_providers) or "none",
                ", ".join(resolution.timed_out_providers) or "none",
            )
        return resolution

    def _log_search_failure(self, name: str, task: asyncio.Task[dict[str, Any] | None], query: str) -> None:
        self.failures[name] = self.failures.get(name, 0) + 1
        if task.cancelled():
            self.error_logger.warning("[%s] Search for '%s' was cancelled", name, query)
            return
        error = task.exception()
        self.error_logger.warning("[%s] Search failed for '%s': %s: %s", name, query, type(error).__name__, error)

    def get_statistics(self) -> dict[str, Any]:
        """Resolution counters, per-provider outcomes and rate limiter usage."""
        return {
            "providers": [p.name for p in self.providers],
            "resolutions": self.resolutions,
            "not_found": self.not_found,
            "wins": dict(self.wins),
            "failures": dict(self.failures),
            "timeouts": dict(self.timeouts),
            "rate_limiters": {name: limiter.get_stats() for name, limiter in self.rate_limiters.items()},
        }


def create_provider_orchestrator(
    config: ProvidersConfig,
    console_logger: logging.Logger,
    error_logger: logging.Logger,
) -> ProviderOrchestrator:
    """Create the configured ProviderOrchestrator instance.

    Args:
        config: Provider settings
        console_logger: Logger for general output
        error_logger: Logger for error messages and warnings

    Returns:
        The configured ProviderOrchestrator instance (call ``initialize()`` before use)

    """
    return ProviderOrchestrator(config, console_logger=console_logger, error_logger=error_logger)
