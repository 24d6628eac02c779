"""SQLAlchemy ORM tables for the durable store.

Uniqueness that the upserts rely on:

- ``tracks.identity_key`` (ISRC, else hashed normalized title+artist)
- ``streams (track_id, source)``
- ``searches.normalized_query``
- ``related_tracks (source_track_id, related_track_id)``
- ``artist_cache.name`` (lower-cased)
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

import sqlalchemy as sa
from sqlalchemy import JSON, Boolean, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from mavin.core.keys import utc_now


def new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    """Declarative base shared by all durable store tables."""


class TrackRow(Base):
    __tablename__ = "tracks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    identity_key: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    isrc: Mapped[str | None] = mapped_column(String(32), nullable=True, index=True)
    title: Mapped[str] = mapped_column(String(512), nullable=False)
    artist: Mapped[str] = mapped_column(String(512), nullable=False, index=True)
    album: Mapped[str | None] = mapped_column(String(512), nullable=True)
    duration_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    artwork_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    spotify_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    youtube_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    deezer_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    soundcloud_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    extra: Mapped[dict[str, Any] | None] = mapped_column(JSON(none_as_null=True), nullable=True)
    access_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    last_accessed_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), default=utc_now, index=True)
    created_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), default=utc_now)


class StreamRow(Base):
    __tablename__ = "streams"
    __table_args__ = (UniqueConstraint("track_id", "source", name="uq_streams_track_source"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    track_id: Mapped[str] = mapped_column(String(36), ForeignKey("tracks.id", ondelete="CASCADE"), nullable=False)
    source: Mapped[str] = mapped_column(String(32), nullable=False)
    stream_url: Mapped[str] = mapped_column(Text, nullable=False)
    quality: Mapped[str] = mapped_column(String(32), nullable=False, default="128kbps")
    format: Mapped[str] = mapped_column(String(16), nullable=False, default="webm")
    expires_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    health_score: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    failure_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_verified_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), default=utc_now)
    created_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), default=utc_now)


class SearchRow(Base):
    __tablename__ = "searches"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    query: Mapped[str] = mapped_column(Text, nullable=False)
    normalized_query: Mapped[str] = mapped_column(String(512), nullable=False, unique=True)
    track_id: Mapped[str] = mapped_column(String(36), ForeignKey("tracks.id", ondelete="CASCADE"), nullable=False)
    hit_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1, index=True)
    first_seen_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), default=utc_now)
    last_hit_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), default=utc_now)


class RelatedTrackRow(Base):
    __tablename__ = "related_tracks"

    source_track_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("tracks.id", ondelete="CASCADE"), primary_key=True
    )
    related_track_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("tracks.id", ondelete="CASCADE"), primary_key=True
    )
    relevance: Mapped[float] = mapped_column(Float, nullable=False, default=0.5)
    reason: Mapped[str] = mapped_column(String(32), nullable=False)
    created_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), default=utc_now)


class ArtistCacheRow(Base):
    __tablename__ = "artist_cache"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(512), nullable=False, unique=True)
    top_tracks: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    albums: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    similar_artists: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    last_updated_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), default=utc_now)
