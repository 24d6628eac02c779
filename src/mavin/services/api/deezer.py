"""Deezer public API client.

Deezer needs no authentication, which makes it the default source for
everything besides search that the cache needs from a provider:

- track search (priority 2 by default)
- related tracks: the artist's own top tracks plus top tracks of related artists
- artist snapshots: top tracks, albums and related artist names

API Reference: https://developers.deezer.com/api
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, TypedDict

from mavin.core.models.records import ArtistCache, RelatedReason, RelatedTrackInput
from mavin.services.api.api_base import BaseProviderClient
from mavin.services.api.transformers import from_deezer, track_from_metadata

if TYPE_CHECKING:
    import logging

    from mavin.core.models.records import UnifiedMetadata
    from mavin.core.models.settings import DeezerConfig
    from mavin.services.api.api_base import ApiRequestFunc

SEARCH_LIMIT = 5
RELATED_ARTISTS_LIMIT = 3
TRACKS_PER_RELATED_ARTIST = 2
SNAPSHOT_TOP_TRACKS = 10
SNAPSHOT_ALBUMS = 25

# Relevance decays with chart position; related artists rank below the artist's own tracks
SAME_ARTIST_RELEVANCE = 0.9
SIMILAR_RELEVANCE = 0.6
RELEVANCE_STEP = 0.05
MIN_RELEVANCE = 0.1


class DeezerArtist(TypedDict, total=False):
    """Type definition for an artist from Deezer."""

    id: int
    name: str
    picture_medium: str


class DeezerAlbum(TypedDict, total=False):
    """Type definition for an album from Deezer."""

    id: int
    title: str
    cover_small: str
    cover_medium: str
    cover_big: str
    release_date: str


class DeezerTrack(TypedDict, total=False):
    """Type definition for a track from Deezer."""

    id: int
    title: str
    duration: int
    isrc: str
    rank: int
    explicit_lyrics: bool
    preview: str
    release_date: str
    artist: DeezerArtist
    album: DeezerAlbum


class DeezerClient(BaseProviderClient):
    """Deezer search, related-tracks and artist client."""

    name = "deezer"
    API_URL = "https://api.deezer.com"

    def __init__(
        self,
        config: DeezerConfig,
        make_api_request: ApiRequestFunc,
        console_logger: logging.Logger | None = None,
        error_logger: logging.Logger | None = None,
    ) -> None:
        super().__init__(make_api_request, console_logger, error_logger)
        self.use_deezer = config.enabled

    @property
    def enabled(self) -> bool:
        return self.use_deezer

    async def _get_data(self, path: str, params: dict[str, str] | None = None) -> list[dict[str, Any]]:
        """GET ``path`` and return its ``data`` list (empty when missing or on a Deezer error object)."""
        response = await self._make_api_request(self.name, f"{self.API_URL}{path}", params)
        if not response:
            return []
        if "error" in response:
            self.error_logger.warning("[deezer] API error for %s: %s", path, response["error"])
            return []
        data = response.get("data")
        return [item for item in data if isinstance(item, dict)] if isinstance(data, list) else []

    async def search(self, query: str) -> dict[str, Any] | None:
        """Search tracks and return the first hit, or None.

        Raises:
            ProviderError: On transport failure

        """
        if not self.enabled:
            return None
        results = await self._get_data("/search", {"q": query, "limit": str(SEARCH_LIMIT)})
        if not results:
            self.console_logger.debug("[deezer] No tracks found for '%s'", query)
            return None
        return results[0]

    def transform(self, raw: dict[str, Any]) -> UnifiedMetadata:
        return from_deezer(raw)

    async def _find_artist(self, artist: str) -> DeezerArtist | None:
        results = await self._get_data("/search/artist", {"q": artist, "limit": "5"})
        if not results:
            return None
        wanted = self._normalize_name(artist)
        for candidate in results:
            if self._normalize_name(str(candidate.get("name", ""))) == wanted:
                return DeezerArtist(id=candidate["id"], name=candidate.get("name", artist))
        first = results[0]
        return DeezerArtist(id=first["id"], name=first.get("name", artist))

    async def get_related_tracks(self, artist: str, title: str, limit: int = 5) -> list[RelatedTrackInput]:
        """Collect tracks related to ``artist - title``.

        Args:
            artist: Artist of the source track
            title: Title of the source track (excluded from the results)
            limit: Maximum number of tracks taken from the artist's own top list

        Returns:
            Related tracks with relevance and reason, best first.

        Raises:
            ProviderError: On transport failure

        """
        if not self.enabled or limit <= 0:
            return []
        found = await self._find_artist(artist)
        if found is None:
            self.console_logger.debug("[deezer] Artist '%s' not found, no related tracks", artist)
            return []

        title_norm = self._normalize_name(title)
        related: list[RelatedTrackInput] = []
        seen: set[str] = set()

        top = await self._get_data(f"/artist/{found['id']}/top", {"limit": str(limit + 1)})
        for position, raw in enumerate(top):
            self._append_related(raw, RelatedReason.SAME_ARTIST, SAME_ARTIST_RELEVANCE - position * RELEVANCE_STEP, related, seen, title_norm)
        related = related[:limit]

        similar_artists = await self._get_data(f"/artist/{found['id']}/related", {"limit": str(RELATED_ARTISTS_LIMIT)})
        for rank, similar in enumerate(similar_artists):
            if "id" not in similar:
                continue
            tracks = await self._get_data(f"/artist/{similar['id']}/top", {"limit": str(TRACKS_PER_RELATED_ARTIST)})
            for raw in tracks:
                self._append_related(raw, RelatedReason.SIMILAR, SIMILAR_RELEVANCE - rank * RELEVANCE_STEP, related, seen, title_norm)

        self.console_logger.debug("[deezer] Collected %d related tracks for %s - %s", len(related), artist, title)
        return related

    def _append_related(
        self,
        raw: dict[str, Any],
        reason: RelatedReason,
        relevance: float,
        related: list[RelatedTrackInput],
        seen: set[str],
        title_norm: str,
    ) -> None:
        try:
            meta = from_deezer(raw)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            self.console_logger.debug("[deezer] Skipping malformed related track: %s", e)
            return
        if self._normalize_name(meta.title) == title_norm or meta.source_id in seen:
            return
        seen.add(meta.source_id)
        track = track_from_metadata(meta)
        related.append(
            RelatedTrackInput(
                **track.model_dump(),
                relevance=round(max(MIN_RELEVANCE, relevance), 2),
                reason=reason,
            )
        )

    async def get_artist_snapshot(self, name: str) -> ArtistCache | None:
        """Build a denormalized artist snapshot, or None when the artist is unknown.

        Raises:
            ProviderError: On transport failure

        """
        if not self.enabled:
            return None
        found = await self._find_artist(name)
        if found is None:
            return None
        artist_id = found["id"]

        top = await self._get_data(f"/artist/{artist_id}/top", {"limit": str(SNAPSHOT_TOP_TRACKS)})
        albums = await self._get_data(f"/artist/{artist_id}/albums", {"limit": str(SNAPSHOT_ALBUMS)})
        similar = await self._get_data(f"/artist/{artist_id}/related", {"limit": "10"})

        return ArtistCache(
            name=name.strip().lower(),
            top_tracks=[
                {"id": str(t.get("id")), "title": t.get("title"), "duration_seconds": t.get("duration"), "preview": t.get("preview")}
                for t in top
            ],
            albums=[
                {"id": str(a.get("id")), "title": a.get("title"), "release_date": a.get("release_date"), "cover": a.get("cover_medium")}
                for a in albums
            ],
            similar_artists=[str(a["name"]) for a in similar if a.get("name")],
        )
