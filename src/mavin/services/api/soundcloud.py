"""SoundCloud api-v2 search client.

Only streamable items of kind ``track`` are considered; playlists and
users that the search endpoint mixes in are skipped. The ``client_id`` is
taken from configuration and the provider stays disabled without it.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, TypedDict

from mavin.services.api.api_base import BaseProviderClient
from mavin.services.api.transformers import from_soundcloud

if TYPE_CHECKING:
    import logging

    from mavin.core.models.records import UnifiedMetadata
    from mavin.core.models.settings import SoundCloudConfig
    from mavin.services.api.api_base import ApiRequestFunc

SEARCH_LIMIT = 5


class SoundCloudUser(TypedDict, total=False):
    """Type definition for a track uploader from SoundCloud."""

    id: int
    username: str
    full_name: str
    avatar_url: str


class SoundCloudTrack(TypedDict, total=False):
    """Type definition for a track from SoundCloud api-v2."""

    id: int
    kind: str
    title: str
    duration: int
    streamable: bool
    artwork_url: str | None
    created_at: str
    release_date: str | None
    playback_count: int | None
    likes_count: int | None
    tag_list: str
    stream_url: str | None
    permalink_url: str
    publisher_metadata: dict[str, Any] | None
    user: SoundCloudUser


class SoundCloudClient(BaseProviderClient):
    """SoundCloud search client (priority 3 by default)."""

    name = "soundcloud"
    API_URL = "https://api-v2.soundcloud.com"

    def __init__(
        self,
        config: SoundCloudConfig,
        make_api_request: ApiRequestFunc,
        console_logger: logging.Logger | None = None,
        error_logger: logging.Logger | None = None,
    ) -> None:
        super().__init__(make_api_request, console_logger, error_logger)
        self.client_id = config.client_id

    @property
    def enabled(self) -> bool:
        return bool(self.client_id)

    async def search(self, query: str) -> dict[str, Any] | None:
        """Return the first streamable track for ``query``, or None.

        Raises:
            ProviderError: On transport failure

        """
        if not self.enabled:
            self.console_logger.debug("[soundcloud] Skipping search, no client_id configured")
            return None

        params = {"q": query, "client_id": self.client_id, "limit": str(SEARCH_LIMIT)}
        response = await self._make_api_request(self.name, f"{self.API_URL}/search/tracks", params)
        if not response:
            return None

        collection = response.get("collection")
        if not isinstance(collection, list):
            return None
        for item in collection:
            if isinstance(item, dict) and item.get("kind") == "track" and item.get("streamable"):
                return item
        self.console_logger.debug("[soundcloud] No streamable tracks for '%s'", query)
        return None

    def transform(self, raw: dict[str, Any]) -> UnifiedMetadata:
        return from_soundcloud(raw)
