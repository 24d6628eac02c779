"""Key derivation, query normalization and expiry arithmetic.

Every cache key in the system is produced here so that the device cache,
the durable store and the background jobs agree on identity:

- free-text queries map to ``search:<hash>`` keys,
- tracks map to ``track:isrc:<ISRC>``, else a hash of title and artist,
  else ``track:id:<id>``,
- the durable store identity key follows the same ISRC > title+artist rule.
"""

from __future__ import annotations

import hashlib
import re
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Mapping

    from mavin.core.models.records import TrackMetadata

KEY_HASH_LENGTH = 16

_WHITESPACE_RE = re.compile(r"\s+")
_BY_PATTERN = re.compile(r"^(?P<song>.+?)\s+by\s+(?P<artist>.+)$", re.IGNORECASE)
_DASH_PATTERN = re.compile(r"^(?P<artist>.+?)\s+-\s+(?P<song>.+)$")


def utc_now() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(UTC)


def ensure_utc_aware(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on round-trip)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def normalize_query(query: str) -> str:
    """Lower-case, trim and collapse whitespace runs to a single space."""
    return _WHITESPACE_RE.sub(" ", query.strip().lower())


def generate_key(kind: str, value: str) -> str:
    """Build ``<kind>:<first 16 hex chars of sha256(normalized value)>``."""
    digest = hashlib.sha256(normalize_query(value).encode("utf-8")).hexdigest()
    return f"{kind}:{digest[:KEY_HASH_LENGTH]}"


def search_key(query: str) -> str:
    """Cache key for a free-text search query."""
    return generate_key("search", query)


def track_key(identifier: Mapping[str, Any]) -> str:
    """Cache key for a track identifier (``isrc`` > ``title``+``artist`` > ``id``).

    Raises:
        ValueError: If the identifier carries none of the supported fields

    """
    if isrc := identifier.get("isrc"):
        return f"track:isrc:{str(isrc).strip().upper()}"
    title = identifier.get("title")
    artist = identifier.get("artist")
    if title and artist:
        return generate_key("track", f"{title} {artist}")
    if track_id := identifier.get("id"):
        return f"track:id:{track_id}"
    msg = "Invalid track identifier: need isrc, title+artist or id"
    raise ValueError(msg)


def stream_key(track_id: str) -> str:
    return f"stream:{track_id}"


def artist_key(artist_name: str) -> str:
    return generate_key("artist", artist_name)


def related_key(track_id: str) -> str:
    return f"related:{track_id}"


def identity_key(title: str, artist: str, isrc: str | None = None) -> str:
    """Canonical de-duplication key for a Track row.

    ISRC wins when present; otherwise the normalized (title, artist) pair is
    hashed so the key has a bounded length for the unique index.
    """
    if isrc and isrc.strip():
        return f"isrc:{isrc.strip().upper()}"
    pair = f"{normalize_query(title)}|{normalize_query(artist)}"
    digest = hashlib.sha256(pair.encode("utf-8")).hexdigest()
    return f"title_artist:{digest[:KEY_HASH_LENGTH]}"


def expiry_timestamp(ttl_seconds: float, now: float) -> float:
    """Absolute expiry for an entry created at ``now``."""
    return now + ttl_seconds


def is_expired(expires_at: float, now: float) -> bool:
    """An entry is fresh strictly before its expiry instant."""
    return now >= expires_at


def extract_artist_from_query(query: str) -> str | None:
    """Pull the artist out of ``"<song> by <artist>"`` or ``"<artist> - <song>"``."""
    stripped = query.strip()
    if match := _BY_PATTERN.match(stripped):
        return match.group("artist").strip()
    if match := _DASH_PATTERN.match(stripped):
        return match.group("artist").strip()
    return None


def extract_song_from_query(query: str) -> str | None:
    """Pull the song title out of the same patterns as the artist extractor."""
    stripped = query.strip()
    if match := _BY_PATTERN.match(stripped):
        return match.group("song").strip()
    if match := _DASH_PATTERN.match(stripped):
        return match.group("song").strip()
    return None


def merge_track_data(existing: TrackMetadata, new: TrackMetadata) -> TrackMetadata:
    """Merge two partial track records, preferring non-empty values from ``new``."""
    updates: dict[str, Any] = {
        field: value
        for field, value in new.model_dump(exclude={"provider_ids", "metadata"}).items()
        if value not in (None, "", 0)
    }
    provider_ids = existing.provider_ids.model_copy(
        update=new.provider_ids.model_dump(exclude_none=True),
    )
    metadata = {**existing.metadata, **new.metadata}
    return existing.model_copy(update={**updates, "provider_ids": provider_ids, "metadata": metadata})


def format_cache_key(key: str) -> str:
    """Flatten a key for use in filesystem-like namespaces (lossy)."""
    return key.replace(":", "_").replace("/", "_")


def parse_cache_key(key: str) -> tuple[str, str]:
    """Split a key into ``(kind, value)`` on the first colon."""
    kind, _, value = key.partition(":")
    return kind, value
