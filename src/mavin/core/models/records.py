"""Domain records shared by the cache tiers, the orchestrator and the manager."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from mavin.core.keys import identity_key, is_expired, utc_now

UNKNOWN_TITLE = "Unknown Title"
UNKNOWN_ARTIST = "Unknown Artist"
UNKNOWN_ALBUM = "Unknown Album"


class ResultSource(StrEnum):
    """Tier that produced a search result."""

    DEVICE = "device"
    STORE = "store"
    PROVIDER = "provider"


class RelatedReason(StrEnum):
    """Why two tracks are linked in the recommendation cache."""

    SAME_ARTIST = "same_artist"
    SIMILAR = "similar"
    FEATURED = "featured"
    GENRE = "genre"
    POPULAR = "popular"


class CacheEntry(BaseModel):
    """Envelope stored by the device cache.

    Timestamps are epoch seconds. Serialized with camelCase aliases so the
    on-disk format reads ``{key, value, createdAt, expiresAt, lastAccessed, accessCount}``.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    key: str
    value: Any
    created_at: float
    expires_at: float
    last_accessed: float
    access_count: int = Field(default=0, ge=0)

    def is_expired(self, now: float) -> bool:
        return is_expired(self.expires_at, now)

    def touch(self, now: float) -> None:
        """Record an access."""
        self.access_count += 1
        self.last_accessed = now


class ProviderIds(BaseModel):
    """Per-provider identifiers for one track."""

    spotify: str | None = None
    youtube: str | None = None
    deezer: str | None = None
    soundcloud: str | None = None


class TrackMetadata(BaseModel):
    """Data needed to create or merge a Track."""

    title: str
    artist: str
    album: str | None = None
    isrc: str | None = None
    duration_seconds: int = Field(default=0, ge=0)
    artwork_url: str | None = None
    provider_ids: ProviderIds = Field(default_factory=ProviderIds)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def identity_key(self) -> str:
        return identity_key(self.title, self.artist, self.isrc)


class Track(TrackMetadata):
    """Canonical song metadata as persisted in the durable store."""

    id: str
    access_count: int = Field(default=0, ge=0)
    last_accessed_at: datetime = Field(default_factory=utc_now)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class TrackIdentifier(BaseModel):
    """Lookup handle for a track: ISRC, title+artist, or opaque id."""

    id: str | None = None
    isrc: str | None = None
    title: str | None = None
    artist: str | None = None


class StreamSaveData(BaseModel):
    """Input for creating or refreshing a Stream."""

    source: str
    stream_url: str
    quality: str = "128kbps"
    format: str = "webm"
    expires_at: datetime | None = None


class Stream(BaseModel):
    """A playable reference to a track from one source."""

    id: str
    track_id: str
    source: str
    stream_url: str
    quality: str = "128kbps"
    format: str = "webm"
    expires_at: datetime
    is_active: bool = True
    health_score: int = Field(default=100, ge=0, le=100)
    failure_count: int = Field(default=0, ge=0)
    last_verified_at: datetime = Field(default_factory=utc_now)


class SearchRecord(BaseModel):
    """Mapping from a normalized query to the track it resolved to."""

    query: str
    normalized_query: str
    track_id: str
    hit_count: int = Field(default=1, ge=0)
    first_seen_at: datetime = Field(default_factory=utc_now)
    last_hit_at: datetime = Field(default_factory=utc_now)


class RelatedTrackInput(TrackMetadata):
    """A related track to be upserted together with its edge."""

    relevance: float = Field(default=0.5, ge=0.0, le=1.0)
    reason: RelatedReason = RelatedReason.SIMILAR


class RelatedEdge(BaseModel):
    """Directed recommendation edge between two tracks."""

    source_track_id: str
    related_track_id: str
    relevance: float = Field(ge=0.0, le=1.0)
    reason: RelatedReason


class ArtistCache(BaseModel):
    """Denormalized artist snapshot; safe to regenerate at any time."""

    name: str
    top_tracks: list[dict[str, Any]] = Field(default_factory=list)
    albums: list[dict[str, Any]] = Field(default_factory=list)
    similar_artists: list[str] = Field(default_factory=list)
    last_updated_at: datetime = Field(default_factory=utc_now)


class SearchResult(BaseModel):
    """What the cache manager hands back to UI collaborators."""

    track: Track
    stream: Stream | None = None
    source: ResultSource


class UnifiedMetadata(BaseModel):
    """Provider-independent track metadata produced by the transformers."""

    source: str
    source_id: str
    title: str = UNKNOWN_TITLE
    artist: str = UNKNOWN_ARTIST
    album: str = UNKNOWN_ALBUM
    duration_seconds: int = Field(default=0, ge=0)
    isrc: str | None = None
    artwork_url: str = ""
    artwork_thumbnail: str = ""
    release_date: str | None = None
    popularity: int = Field(default=0, ge=0)
    explicit: bool = False
    preview_url: str | None = None
