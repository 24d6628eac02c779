"""Raw provider payload → UnifiedMetadata, and UnifiedMetadata → save records.

Missing optional fields fall back to the ``UnifiedMetadata`` defaults. A
payload without an id, or whose fields have the wrong type, raises
``KeyError``/``TypeError``/``ValueError`` (pydantic's ``ValidationError``
is a ``ValueError``) so the orchestrator can drop it and move on.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, cast

from mavin.core.models.records import (
    UNKNOWN_ALBUM,
    UNKNOWN_ARTIST,
    UNKNOWN_TITLE,
    ProviderIds,
    StreamSaveData,
    TrackMetadata,
    UnifiedMetadata,
)

if TYPE_CHECKING:
    from mavin.services.api.deezer import DeezerTrack
    from mavin.services.api.soundcloud import SoundCloudTrack
    from mavin.services.api.spotify import SpotifyTrack

SOUNDCLOUD_ALBUM = "SoundCloud Track"
SOUNDCLOUD_ARTWORK_SIZE = "t500x500"
SOUNDCLOUD_THUMBNAIL_SIZE = "t67x67"

# Canonical track pages used when a provider has no preview URL
TRACK_PAGE_URLS = {
    "spotify": "https://open.spotify.com/track/{id}",
    "deezer": "https://www.deezer.com/track/{id}",
    "soundcloud": "https://api.soundcloud.com/tracks/{id}",
}


def _required_id(raw: dict[str, Any]) -> str:
    value = raw["id"]
    if value is None or value == "":
        msg = "Provider payload has an empty id"
        raise ValueError(msg)
    return str(value)


def _text(value: Any, default: str) -> str:
    return value.strip() if isinstance(value, str) and value.strip() else default


def from_spotify(raw: dict[str, Any]) -> UnifiedMetadata:
    """Map a Spotify track object."""
    track = cast("SpotifyTrack", raw)
    artists = track.get("artists") or []
    album = track.get("album") or {}
    images = album.get("images") or []
    artwork = images[0].get("url", "") if images else ""
    thumbnail = images[2].get("url", "") if len(images) > 2 else artwork  # noqa: PLR2004

    return UnifiedMetadata(
        source="spotify",
        source_id=_required_id(raw),
        title=_text(track.get("name"), UNKNOWN_TITLE),
        artist=_text(artists[0].get("name") if artists else None, UNKNOWN_ARTIST),
        album=_text(album.get("name"), UNKNOWN_ALBUM),
        duration_seconds=int(track.get("duration_ms") or 0) // 1000,
        isrc=(track.get("external_ids") or {}).get("isrc") or None,
        artwork_url=artwork or "",
        artwork_thumbnail=thumbnail or "",
        release_date=album.get("release_date") or None,
        popularity=int(track.get("popularity") or 0),
        explicit=bool(track.get("explicit", False)),
        preview_url=track.get("preview_url") or None,
    )


def from_deezer(raw: dict[str, Any]) -> UnifiedMetadata:
    """Map a Deezer track object (search results and artist top tracks share the shape)."""
    track = cast("DeezerTrack", raw)
    artist = track.get("artist") or {}
    album = track.get("album") or {}

    return UnifiedMetadata(
        source="deezer",
        source_id=_required_id(raw),
        title=_text(track.get("title"), UNKNOWN_TITLE),
        artist=_text(artist.get("name"), UNKNOWN_ARTIST),
        album=_text(album.get("title"), UNKNOWN_ALBUM),
        duration_seconds=int(track.get("duration") or 0),
        isrc=track.get("isrc") or None,
        artwork_url=album.get("cover_big") or album.get("cover_medium") or "",
        artwork_thumbnail=album.get("cover_small") or "",
        release_date=track.get("release_date") or None,
        popularity=int(track.get("rank") or 0),
        explicit=bool(track.get("explicit_lyrics", False)),
        preview_url=track.get("preview") or None,
    )


def from_soundcloud(raw: dict[str, Any]) -> UnifiedMetadata:
    """Map a SoundCloud api-v2 track object."""
    track = cast("SoundCloudTrack", raw)
    user = track.get("user") or {}
    artwork = track.get("artwork_url") or user.get("avatar_url") or ""
    created_at = track.get("created_at") or ""
    release_date = track.get("release_date") or (created_at.split("T")[0] if created_at else None)
    tags = (track.get("tag_list") or "").lower()

    return UnifiedMetadata(
        source="soundcloud",
        source_id=_required_id(raw),
        title=_text(track.get("title"), UNKNOWN_TITLE),
        artist=_text(user.get("full_name") or user.get("username"), UNKNOWN_ARTIST),
        album=SOUNDCLOUD_ALBUM,
        duration_seconds=int(track.get("duration") or 0) // 1000,
        isrc=((track.get("publisher_metadata") or {}).get("isrc")) or None,
        artwork_url=artwork.replace("large", SOUNDCLOUD_ARTWORK_SIZE),
        artwork_thumbnail=artwork.replace("large", SOUNDCLOUD_THUMBNAIL_SIZE),
        release_date=release_date or None,
        popularity=int(track.get("playback_count") or track.get("likes_count") or 0),
        explicit="explicit" in tags,
        preview_url=track.get("stream_url") or None,
    )


def track_from_metadata(meta: UnifiedMetadata) -> TrackMetadata:
    """Build the durable-store track record for a resolved result."""
    provider_ids = ProviderIds()
    if meta.source in ProviderIds.model_fields:
        setattr(provider_ids, meta.source, meta.source_id)

    extra: dict[str, Any] = {
        "release_date": meta.release_date,
        "popularity": meta.popularity,
        "explicit": meta.explicit,
        "preview_url": meta.preview_url,
        "artwork_thumbnail": meta.artwork_thumbnail or None,
    }
    return TrackMetadata(
        title=meta.title,
        artist=meta.artist,
        album=None if meta.album == UNKNOWN_ALBUM else meta.album,
        isrc=meta.isrc,
        duration_seconds=meta.duration_seconds,
        artwork_url=meta.artwork_url or None,
        provider_ids=provider_ids,
        metadata={k: v for k, v in extra.items() if v is not None},
    )


def stream_from_metadata(meta: UnifiedMetadata) -> StreamSaveData:
    """Build the stream record: the preview URL, else the provider's track page."""
    if meta.preview_url:
        return StreamSaveData(source=meta.source, stream_url=meta.preview_url, format="mp3")
    page = TRACK_PAGE_URLS.get(meta.source, "{id}").format(id=meta.source_id)
    return StreamSaveData(source=meta.source, stream_url=page, format="page")
