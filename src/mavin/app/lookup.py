"""Resolve-and-persist flow used by the CLI and UI collaborators.

The cache manager's read path never touches the network. This is the one
place that chains it with the orchestrator: local lookup first, provider
resolution on a miss, then the single write path.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from mavin.core.logger import Loggable
from mavin.services.api.transformers import stream_from_metadata, track_from_metadata

if TYPE_CHECKING:
    import logging

    from mavin.core.models.records import SearchResult
    from mavin.services.api.orchestrator import ProviderOrchestrator
    from mavin.services.cache_manager import CacheManager


class TrackLookup(Loggable):
    """Query → SearchResult, from cache when possible, from providers otherwise."""

    def __init__(
        self,
        manager: CacheManager,
        orchestrator: ProviderOrchestrator,
        console_logger: logging.Logger | None = None,
        error_logger: logging.Logger | None = None,
    ) -> None:
        super().__init__(console_logger, error_logger)
        self.manager = manager
        self.orchestrator = orchestrator

    async def search(self, query: str) -> SearchResult | None:
        """Return a result for ``query`` or None; never raises to the caller.

        Returns:
            A cached result (``device``/``store``), a freshly resolved one
            (``provider``), or None when nothing matched.

        """
        if not query or not query.strip():
            return None
        try:
            cached = await self.manager.get_search(query)
            if cached is not None:
                return cached

            resolution = await self.orchestrator.resolve(query)
            if not resolution.found or resolution.metadata is None:
                return None
            meta = resolution.metadata
            return await self.manager.save_search(query, track_from_metadata(meta), stream_from_metadata(meta))
        except Exception as e:
            self.error_logger.exception("Lookup failed for '%s': %s", query, e)
            return None
