"""Spotify Web API client.

Uses the client-credentials flow: an app token is fetched from the
accounts service and cached until shortly before it expires. Searches are
plain track searches; the first item is the best match.

API Reference: https://developer.spotify.com/documentation/web-api/reference/search
"""

from __future__ import annotations

import asyncio
import base64
import time
from typing import TYPE_CHECKING, Any, TypedDict

from mavin.core.exceptions import ProviderError
from mavin.services.api.api_base import BaseProviderClient
from mavin.services.api.transformers import from_spotify

if TYPE_CHECKING:
    import logging

    from mavin.core.models.records import UnifiedMetadata
    from mavin.core.models.settings import SpotifyConfig
    from mavin.services.api.api_base import ApiRequestFunc

# Refresh the token this many seconds before Spotify says it expires
TOKEN_EXPIRY_MARGIN = 60
SEARCH_LIMIT = 5


class SpotifyImage(TypedDict, total=False):
    """Type definition for an image from Spotify."""

    url: str
    height: int | None
    width: int | None


class SpotifyArtist(TypedDict, total=False):
    """Type definition for a simplified artist from Spotify."""

    id: str
    name: str


class SpotifyAlbum(TypedDict, total=False):
    """Type definition for a simplified album from Spotify."""

    id: str
    name: str
    release_date: str
    images: list[SpotifyImage]


class SpotifyTrack(TypedDict, total=False):
    """Type definition for a track object from Spotify."""

    id: str
    name: str
    artists: list[SpotifyArtist]
    album: SpotifyAlbum
    duration_ms: int
    explicit: bool
    popularity: int
    preview_url: str | None
    external_ids: dict[str, str]
    external_urls: dict[str, str]


class SpotifyClient(BaseProviderClient):
    """Spotify search client (priority 1 by default)."""

    name = "spotify"
    API_URL = "https://api.spotify.com/v1"
    TOKEN_URL = "https://accounts.spotify.com/api/token"  # noqa: S105

    def __init__(
        self,
        config: SpotifyConfig,
        make_api_request: ApiRequestFunc,
        console_logger: logging.Logger | None = None,
        error_logger: logging.Logger | None = None,
    ) -> None:
        """Initialize the Spotify client.

        Args:
            config: Client credentials and optional market
            make_api_request: Injected request function (rate limited, retried)
            console_logger: Logger for debug output
            error_logger: Logger for warnings

        """
        super().__init__(make_api_request, console_logger, error_logger)
        self.client_id = config.client_id
        self.client_secret = config.client_secret
        self.market = config.market

        self._access_token: str | None = None
        self._token_expires_at = 0.0
        self._token_lock = asyncio.Lock()

    @property
    def enabled(self) -> bool:
        return bool(self.client_id and self.client_secret)

    async def _get_access_token(self) -> str:
        """Return a cached app token, fetching a new one when it is about to expire.

        Raises:
            ProviderError: If the accounts service does not return a token

        """
        async with self._token_lock:
            if self._access_token and time.monotonic() < self._token_expires_at:
                return self._access_token

            credentials = base64.b64encode(f"{self.client_id}:{self.client_secret}".encode()).decode("ascii")
            response = await self._make_api_request(
                self.name,
                self.TOKEN_URL,
                headers={"Authorization": f"Basic {credentials}"},
                method="POST",
                data={"grant_type": "client_credentials"},
            )
            token = response.get("access_token") if response else None
            if not isinstance(token, str) or not token:
                raise ProviderError(self.name, "Token endpoint returned no access_token")

            expires_in = int(response.get("expires_in", 3600)) if response else 3600
            self._access_token = token
            self._token_expires_at = time.monotonic() + max(0, expires_in - TOKEN_EXPIRY_MARGIN)
            self.console_logger.debug("[spotify] Obtained app token (expires in %ds)", expires_in)
            return token

    async def search(self, query: str) -> dict[str, Any] | None:
        """Search tracks and return the first item, or None when nothing matched.

        Raises:
            ProviderError: On transport failure

        """
        if not self.enabled:
            self.console_logger.debug("[spotify] Skipping search, no client credentials configured")
            return None

        token = await self._get_access_token()
        params = {"q": query, "type": "track", "limit": str(SEARCH_LIMIT)}
        if self.market:
            params["market"] = self.market

        response = await self._make_api_request(
            self.name,
            f"{self.API_URL}/search",
            params,
            headers={"Authorization": f"Bearer {token}"},
        )
        if not response:
            return None

        tracks = response.get("tracks")
        items = tracks.get("items") if isinstance(tracks, dict) else None
        best = self._first(items)
        if best is None:
            self.console_logger.debug("[spotify] No tracks found for '%s'", query)
            return None
        return best

    def transform(self, raw: dict[str, Any]) -> UnifiedMetadata:
        return from_spotify(raw)
