"""Durable relational L2 store for tracks, streams, searches, related edges and artists.

Every write is a single atomic statement against a unique constraint
(``INSERT ... ON CONFLICT DO UPDATE`` or a conditional ``UPDATE``), so
foreground requests and background jobs can interleave the same operation
without creating duplicate rows or losing counter updates.

Storage failures never propagate: reads degrade to a miss (None or an
empty list) and writes to None/False, with the error logged.
"""

from __future__ import annotations

import contextlib
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Any, Self

import sqlalchemy as sa
from sqlalchemy import case, delete, func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from mavin.core.exceptions import ConfigurationError
from mavin.core.keys import ensure_utc_aware, identity_key, normalize_query, utc_now
from mavin.core.logger import Loggable, LogFormat
from mavin.core.models.records import (
    ArtistCache,
    ProviderIds,
    RelatedEdge,
    RelatedReason,
    RelatedTrackInput,
    SearchRecord,
    Stream,
    StreamSaveData,
    Track,
    TrackIdentifier,
    TrackMetadata,
)
from mavin.core.models.settings import StreamConfig
from mavin.services.store.tables import ArtistCacheRow, Base, RelatedTrackRow, SearchRow, StreamRow, TrackRow, new_id

if TYPE_CHECKING:
    import logging
    from collections.abc import AsyncIterator, Callable

    from mavin.core.models.settings import DurableStoreConfig

_INSERT_BY_DIALECT = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
}

# Columns where an empty incoming value keeps what is already stored
_MERGED_TRACK_COLUMNS = (
    "isrc",
    "album",
    "artwork_url",
    "spotify_id",
    "youtube_id",
    "deezer_id",
    "soundcloud_id",
    "extra",
)

STORAGE_ERRORS = (SQLAlchemyError, OSError)
EXPIRING_STREAMS_LIMIT = 100
STALE_TRACKS_LIMIT = 1000


@dataclass
class DurableStoreStats:
    """Row counts reported by the durable store."""

    available: bool
    tracks: int = 0
    active_streams: int = 0
    searches: int = 0
    related_edges: int = 0
    artists: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class DurableStore(Loggable):
    """Async SQLAlchemy implementation of the L2 store."""

    def __init__(
        self,
        config: DurableStoreConfig,
        stream_config: StreamConfig | None = None,
        *,
        console_logger: logging.Logger | None = None,
        error_logger: logging.Logger | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the store; nothing touches the database until ``initialize()``.

        Args:
            config: Connection and schema settings
            stream_config: Stream health/expiry rules (defaults when omitted)
            console_logger: Logger for info/debug messages
            error_logger: Logger for warnings and errors
            clock: Source of UTC datetimes, injectable for expiry tests

        """
        super().__init__(console_logger, error_logger)
        self.config = config
        self.stream_config = stream_config or StreamConfig()
        self.clock = clock

        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None
        self._insert: Callable[..., Any] = sqlite.insert
        self._available = False

    @property
    def available(self) -> bool:
        return self._available

    async def initialize(self) -> None:
        """Create the engine and (optionally) the schema.

        Raises:
            ConfigurationError: If the URL is malformed or names an unsupported dialect.

        """
        if not self.config.enabled:
            self.console_logger.info("%s disabled by configuration", LogFormat.entity("DurableStore"))
            return

        try:
            url = make_url(self.config.url)
        except ArgumentError as e:
            msg = f"Invalid durable store URL: {e}"
            raise ConfigurationError(msg) from e

        backend = url.get_backend_name()
        if backend not in _INSERT_BY_DIALECT:
            msg = f"Unsupported durable store backend '{backend}' (expected one of: {', '.join(_INSERT_BY_DIALECT)})"
            raise ConfigurationError(msg)
        self._insert = _INSERT_BY_DIALECT[backend]

        engine_kwargs: dict[str, Any] = {"echo": self.config.echo}
        if backend == "sqlite":
            if url.database and url.database != ":memory:":
                Path(url.database).expanduser().parent.mkdir(parents=True, exist_ok=True)
        else:
            engine_kwargs["pool_size"] = self.config.pool_size
            engine_kwargs["pool_pre_ping"] = True

        try:
            self._engine = create_async_engine(url, **engine_kwargs)
            if self.config.create_schema:
                async with self._engine.begin() as conn:
                    await conn.run_sync(Base.metadata.create_all)
        except STORAGE_ERRORS:
            self.error_logger.exception("[store] Durable store unavailable, reads will miss")
            await self.close()
            return

        self._session_factory = async_sessionmaker(self._engine, expire_on_commit=False)
        self._available = True
        self.console_logger.info(
            "%s initialized at %s",
            LogFormat.entity("DurableStore"),
            LogFormat.file(url.render_as_string(hide_password=True)),
        )

    async def close(self) -> None:
        self._available = False
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
        self._session_factory = None

    async def __aenter__(self) -> Self:
        await self.initialize()
        return self

    async def __aexit__(self, _exc_type: type[BaseException] | None, _exc: BaseException | None, _tb: object) -> None:
        await self.close()

    @contextlib.asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncSession]:
        if self._session_factory is None:
            msg = "Durable store is not initialized"
            raise SQLAlchemyError(msg)
        async with self._session_factory() as session, session.begin():
            yield session

    def _log_failure(self, operation: str, error: Exception) -> None:
        self.error_logger.warning("[store] %s failed: %s: %s", operation, type(error).__name__, error)

    # ------------------------------------------------------------------ tracks

    async def get_track(self, identifier: str | TrackIdentifier, *, touch: bool = True) -> Track | None:
        """Fetch a track by id or identifier, recording the access unless ``touch`` is False.

        A ``TrackIdentifier`` resolves by ISRC, else by title+artist, else by id.
        Maintenance reads pass ``touch=False`` so they never count as user access.
        """
        if not self._available:
            return None
        condition = self._identifier_condition(identifier)
        if condition is None:
            self.error_logger.warning("[store] get_track called with an empty identifier")
            return None
        try:
            async with self._transaction() as session:
                row = (await session.execute(select(TrackRow).where(condition).limit(1))).scalar_one_or_none()
                if row is None:
                    return None
                if not touch:
                    return self._to_track(row)
                return await self._touch_track(session, row)
        except STORAGE_ERRORS as e:
            self._log_failure("get_track", e)
            return None

    @staticmethod
    def _identifier_condition(identifier: str | TrackIdentifier) -> Any | None:
        if isinstance(identifier, str):
            return TrackRow.id == identifier if identifier else None
        if identifier.isrc:
            return TrackRow.identity_key == identity_key("", "", identifier.isrc)
        if identifier.title and identifier.artist:
            return sa.or_(
                TrackRow.identity_key == identity_key(identifier.title, identifier.artist),
                sa.and_(
                    func.lower(TrackRow.title) == identifier.title.strip().lower(),
                    func.lower(TrackRow.artist) == identifier.artist.strip().lower(),
                ),
            )
        if identifier.id:
            return TrackRow.id == identifier.id
        return None

    async def _touch_track(self, session: AsyncSession, row: TrackRow) -> Track:
        now = self.clock()
        await session.execute(
            update(TrackRow)
            .where(TrackRow.id == row.id)
            .values(access_count=TrackRow.access_count + 1, last_accessed_at=now)
            .execution_options(synchronize_session=False)
        )
        track = self._to_track(row)
        return track.model_copy(update={"access_count": track.access_count + 1, "last_accessed_at": now})

    async def save_track(self, data: TrackMetadata) -> str | None:
        """Upsert a track by identity key.

        New rows start with ``access_count=1``; an existing row is merged in
        place (empty incoming fields keep stored values) and its
        ``access_count`` is incremented in the same statement.

        Returns:
            The track id, or None on storage failure.

        """
        if not self._available:
            return None
        now = self.clock()
        values = self._track_values(data)
        stmt = self._insert(TrackRow).values(
            id=new_id(),
            identity_key=data.identity_key,
            access_count=1,
            last_accessed_at=now,
            created_at=now,
            updated_at=now,
            **values,
        )
        excluded = stmt.excluded
        merged = {column: func.coalesce(excluded[column], getattr(TrackRow, column)) for column in _MERGED_TRACK_COLUMNS}
        stmt = stmt.on_conflict_do_update(
            index_elements=["identity_key"],
            set_={
                **merged,
                "title": excluded.title,
                "artist": excluded.artist,
                "duration_seconds": func.coalesce(func.nullif(excluded.duration_seconds, 0), TrackRow.duration_seconds),
                "access_count": TrackRow.access_count + 1,
                "last_accessed_at": excluded.last_accessed_at,
                "updated_at": excluded.updated_at,
            },
        ).returning(TrackRow.id)
        try:
            async with self._transaction() as session:
                track_id: str = (await session.execute(stmt)).scalar_one()
        except STORAGE_ERRORS as e:
            self._log_failure("save_track", e)
            return None
        return track_id

    @staticmethod
    def _track_values(data: TrackMetadata) -> dict[str, Any]:
        return {
            "isrc": data.isrc.strip().upper() if data.isrc and data.isrc.strip() else None,
            "title": data.title,
            "artist": data.artist,
            "album": data.album or None,
            "duration_seconds": data.duration_seconds,
            "artwork_url": data.artwork_url or None,
            "spotify_id": data.provider_ids.spotify,
            "youtube_id": data.provider_ids.youtube,
            "deezer_id": data.provider_ids.deezer,
            "soundcloud_id": data.provider_ids.soundcloud,
            "extra": data.metadata or None,
        }

    @staticmethod
    def _to_track(row: TrackRow) -> Track:
        return Track(
            id=row.id,
            isrc=row.isrc,
            title=row.title,
            artist=row.artist,
            album=row.album,
            duration_seconds=row.duration_seconds,
            artwork_url=row.artwork_url,
            provider_ids=ProviderIds(
                spotify=row.spotify_id,
                youtube=row.youtube_id,
                deezer=row.deezer_id,
                soundcloud=row.soundcloud_id,
            ),
            metadata=row.extra or {},
            access_count=row.access_count,
            last_accessed_at=ensure_utc_aware(row.last_accessed_at),
            created_at=ensure_utc_aware(row.created_at),
            updated_at=ensure_utc_aware(row.updated_at),
        )

    # ----------------------------------------------------------------- streams

    async def get_stream(self, track_id: str) -> Stream | None:
        """Return the healthiest active, unexpired stream for a track.

        Active streams found past their expiry are deactivated in place
        while walking the candidates.
        """
        if not self._available:
            return None
        now = self.clock()
        try:
            async with self._transaction() as session:
                rows = (
                    await session.execute(
                        select(StreamRow)
                        .where(StreamRow.track_id == track_id, StreamRow.is_active.is_(True))
                        .order_by(StreamRow.health_score.desc(), StreamRow.expires_at.desc())
                    )
                ).scalars()
                expired: list[str] = []
                best: StreamRow | None = None
                for row in rows:
                    if ensure_utc_aware(row.expires_at) <= now:
                        expired.append(row.id)
                        continue
                    best = row
                    break
                if expired:
                    await session.execute(
                        update(StreamRow)
                        .where(StreamRow.id.in_(expired), StreamRow.expires_at <= now)
                        .values(is_active=False, updated_at=now)
                        .execution_options(synchronize_session=False)
                    )
                    self.console_logger.debug("[store] Deactivated %d expired stream(s) for %s", len(expired), track_id)
                return self._to_stream(best) if best is not None else None
        except STORAGE_ERRORS as e:
            self._log_failure("get_stream", e)
            return None

    async def save_stream(self, track_id: str, data: StreamSaveData) -> Stream | None:
        """Upsert the stream for ``(track_id, source)`` and reset its health.

        Returns:
            The stored stream, or None on storage failure.

        """
        if not self._available:
            return None
        now = self.clock()
        expires_at = data.expires_at or now + timedelta(hours=self.stream_config.default_expiry_hours)
        stmt = self._insert(StreamRow).values(
            id=new_id(),
            track_id=track_id,
            source=data.source,
            stream_url=data.stream_url,
            quality=data.quality,
            format=data.format,
            expires_at=expires_at,
            is_active=True,
            health_score=100,
            failure_count=0,
            last_verified_at=now,
            created_at=now,
            updated_at=now,
        )
        excluded = stmt.excluded
        stmt = stmt.on_conflict_do_update(
            index_elements=["track_id", "source"],
            set_={
                "stream_url": excluded.stream_url,
                "quality": excluded.quality,
                "format": excluded.format,
                "expires_at": excluded.expires_at,
                "is_active": True,
                "health_score": 100,
                "failure_count": 0,
                "last_verified_at": excluded.last_verified_at,
                "updated_at": excluded.updated_at,
            },
        ).returning(StreamRow.id)
        try:
            async with self._transaction() as session:
                stream_id: str = (await session.execute(stmt)).scalar_one()
        except STORAGE_ERRORS as e:
            self._log_failure("save_stream", e)
            return None
        return Stream(
            id=stream_id,
            track_id=track_id,
            source=data.source,
            stream_url=data.stream_url,
            quality=data.quality,
            format=data.format,
            expires_at=expires_at,
            last_verified_at=now,
        )

    async def report_stream_failure(self, stream_id: str) -> bool:
        """Penalize a stream after a playback failure.

        Health drops by the configured penalty (floored at 0) and the failure
        count increments; the same UPDATE deactivates the stream once health
        reaches 0 or failures reach ``max_failures``.

        Returns:
            True if the stream exists and was updated.

        """
        if not self._available:
            return False
        penalty = self.stream_config.failure_penalty
        new_health = StreamRow.health_score - penalty
        new_failures = StreamRow.failure_count + 1
        stmt = (
            update(StreamRow)
            .where(StreamRow.id == stream_id)
            .values(
                health_score=case((new_health <= 0, 0), else_=new_health),
                failure_count=new_failures,
                is_active=case(
                    (sa.or_(new_health <= 0, new_failures >= self.stream_config.max_failures), False),
                    else_=StreamRow.is_active,
                ),
                updated_at=self.clock(),
            )
            .returning(StreamRow.is_active, StreamRow.health_score, StreamRow.failure_count)
            .execution_options(synchronize_session=False)
        )
        try:
            async with self._transaction() as session:
                result = (await session.execute(stmt)).one_or_none()
        except STORAGE_ERRORS as e:
            self._log_failure("report_stream_failure", e)
            return False
        if result is None:
            self.error_logger.warning("[store] Stream %s not found while reporting failure", stream_id)
            return False
        is_active, health, failures = result
        if not is_active:
            self.console_logger.info("[store] Stream %s deactivated (health=%d, failures=%d)", stream_id, health, failures)
        return True

    def _to_stream(self, row: StreamRow) -> Stream:
        return Stream(
            id=row.id,
            track_id=row.track_id,
            source=row.source,
            stream_url=row.stream_url,
            quality=row.quality,
            format=row.format,
            expires_at=ensure_utc_aware(row.expires_at),
            is_active=row.is_active,
            health_score=max(0, min(100, row.health_score)),
            failure_count=row.failure_count,
            last_verified_at=ensure_utc_aware(row.last_verified_at),
        )

    # ---------------------------------------------------------------- searches

    async def save_search(self, query: str, track_id: str) -> bool:
        """Upsert the query → track mapping, incrementing ``hit_count`` on repeat."""
        if not self._available:
            return False
        now = self.clock()
        stmt = self._insert(SearchRow).values(
            id=new_id(),
            query=query.strip(),
            normalized_query=normalize_query(query),
            track_id=track_id,
            hit_count=1,
            first_seen_at=now,
            last_hit_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["normalized_query"],
            set_={
                "track_id": stmt.excluded.track_id,
                "hit_count": SearchRow.hit_count + 1,
                "last_hit_at": stmt.excluded.last_hit_at,
            },
        )
        try:
            async with self._transaction() as session:
                await session.execute(stmt)
        except STORAGE_ERRORS as e:
            self._log_failure("save_search", e)
            return False
        return True

    async def find_by_search(self, query: str) -> Track | None:
        """Resolve a query through the search mapping, refreshing ``last_hit_at``."""
        if not self._available:
            return None
        normalized = normalize_query(query)
        try:
            async with self._transaction() as session:
                row = (
                    await session.execute(
                        select(TrackRow)
                        .join(SearchRow, SearchRow.track_id == TrackRow.id)
                        .where(SearchRow.normalized_query == normalized)
                    )
                ).scalar_one_or_none()
                if row is None:
                    return None
                await session.execute(
                    update(SearchRow)
                    .where(SearchRow.normalized_query == normalized)
                    .values(last_hit_at=self.clock())
                    .execution_options(synchronize_session=False)
                )
                return await self._touch_track(session, row)
        except STORAGE_ERRORS as e:
            self._log_failure("find_by_search", e)
            return None

    async def record_search_hit(self, query: str) -> bool:
        """Count one more lookup of an already-mapped query."""
        if not self._available:
            return False
        stmt = (
            update(SearchRow)
            .where(SearchRow.normalized_query == normalize_query(query))
            .values(hit_count=SearchRow.hit_count + 1, last_hit_at=self.clock())
            .execution_options(synchronize_session=False)
        )
        try:
            async with self._transaction() as session:
                result = await session.execute(stmt)
        except STORAGE_ERRORS as e:
            self._log_failure("record_search_hit", e)
            return False
        return bool(result.rowcount)

    async def get_search(self, query: str) -> SearchRecord | None:
        """Return the raw search mapping without touching counters."""
        if not self._available:
            return None
        try:
            async with self._transaction() as session:
                row = (
                    await session.execute(select(SearchRow).where(SearchRow.normalized_query == normalize_query(query)))
                ).scalar_one_or_none()
        except STORAGE_ERRORS as e:
            self._log_failure("get_search", e)
            return None
        return self._to_search_record(row) if row is not None else None

    @staticmethod
    def _to_search_record(row: SearchRow) -> SearchRecord:
        return SearchRecord(
            query=row.query,
            normalized_query=row.normalized_query,
            track_id=row.track_id,
            hit_count=row.hit_count,
            first_seen_at=ensure_utc_aware(row.first_seen_at),
            last_hit_at=ensure_utc_aware(row.last_hit_at),
        )

    # ---------------------------------------------------------------- related

    async def save_related_tracks(self, source_track_id: str, related: list[RelatedTrackInput]) -> bool:
        """Upsert each related track and then its edge; safe to re-run.

        Returns:
            True only if every track and edge was stored.

        """
        if not self._available:
            return False
        all_saved = True
        for item in related:
            related_id = await self.save_track(item)
            if related_id is None:
                all_saved = False
                continue
            if related_id == source_track_id:
                continue
            edge = RelatedEdge(
                source_track_id=source_track_id,
                related_track_id=related_id,
                relevance=item.relevance,
                reason=item.reason,
            )
            stmt = self._insert(RelatedTrackRow).values(**edge.model_dump(mode="json"), created_at=self.clock())
            stmt = stmt.on_conflict_do_update(
                index_elements=["source_track_id", "related_track_id"],
                set_={"relevance": stmt.excluded.relevance, "reason": stmt.excluded.reason},
            )
            try:
                async with self._transaction() as session:
                    await session.execute(stmt)
            except STORAGE_ERRORS as e:
                self._log_failure("save_related_tracks", e)
                all_saved = False
        return all_saved

    async def get_related_tracks(self, track_id: str, limit: int = 10) -> list[Track]:
        """Related tracks ordered by relevance, most relevant first."""
        if not self._available:
            return []
        stmt = (
            select(TrackRow)
            .join(RelatedTrackRow, RelatedTrackRow.related_track_id == TrackRow.id)
            .where(RelatedTrackRow.source_track_id == track_id)
            .order_by(RelatedTrackRow.relevance.desc())
            .limit(limit)
        )
        try:
            async with self._transaction() as session:
                rows = (await session.execute(stmt)).scalars().all()
        except STORAGE_ERRORS as e:
            self._log_failure("get_related_tracks", e)
            return []
        return [self._to_track(row) for row in rows]

    async def get_related_edges(self, track_id: str) -> list[RelatedEdge]:
        """Outgoing edges of a track, most relevant first."""
        if not self._available:
            return []
        stmt = (
            select(RelatedTrackRow)
            .where(RelatedTrackRow.source_track_id == track_id)
            .order_by(RelatedTrackRow.relevance.desc())
        )
        try:
            async with self._transaction() as session:
                rows = (await session.execute(stmt)).scalars().all()
        except STORAGE_ERRORS as e:
            self._log_failure("get_related_edges", e)
            return []
        return [
            RelatedEdge(
                source_track_id=row.source_track_id,
                related_track_id=row.related_track_id,
                relevance=row.relevance,
                reason=RelatedReason(row.reason),
            )
            for row in rows
        ]

    async def has_related_tracks(self, track_id: str) -> bool:
        if not self._available:
            return False
        stmt = select(RelatedTrackRow.related_track_id).where(RelatedTrackRow.source_track_id == track_id).limit(1)
        try:
            async with self._transaction() as session:
                found = (await session.execute(stmt)).first()
        except STORAGE_ERRORS as e:
            self._log_failure("has_related_tracks", e)
            return False
        return found is not None

    # ----------------------------------------------------------------- artists

    async def get_artist(self, name: str) -> ArtistCache | None:
        if not self._available:
            return None
        try:
            async with self._transaction() as session:
                row = (
                    await session.execute(select(ArtistCacheRow).where(ArtistCacheRow.name == name.strip().lower()))
                ).scalar_one_or_none()
        except STORAGE_ERRORS as e:
            self._log_failure("get_artist", e)
            return None
        if row is None:
            return None
        return ArtistCache(
            name=row.name,
            top_tracks=row.top_tracks or [],
            albums=row.albums or [],
            similar_artists=row.similar_artists or [],
            last_updated_at=ensure_utc_aware(row.last_updated_at),
        )

    async def save_artist(
        self,
        name: str,
        *,
        top_tracks: list[dict[str, Any]] | None = None,
        albums: list[dict[str, Any]] | None = None,
        similar_artists: list[str] | None = None,
    ) -> bool:
        """Replace the artist snapshot stored under the lower-cased name."""
        if not self._available:
            return False
        stmt = self._insert(ArtistCacheRow).values(
            id=new_id(),
            name=name.strip().lower(),
            top_tracks=top_tracks or [],
            albums=albums or [],
            similar_artists=similar_artists or [],
            last_updated_at=self.clock(),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["name"],
            set_={
                "top_tracks": stmt.excluded.top_tracks,
                "albums": stmt.excluded.albums,
                "similar_artists": stmt.excluded.similar_artists,
                "last_updated_at": stmt.excluded.last_updated_at,
            },
        )
        try:
            async with self._transaction() as session:
                await session.execute(stmt)
        except STORAGE_ERRORS as e:
            self._log_failure("save_artist", e)
            return False
        return True

    # ------------------------------------------------------------- maintenance

    async def get_popular_searches(self, limit: int = 50, min_hits: int = 10) -> list[SearchRecord]:
        """Searches with at least ``min_hits`` hits, most popular first."""
        if not self._available:
            return []
        stmt = select(SearchRow).where(SearchRow.hit_count >= min_hits).order_by(SearchRow.hit_count.desc()).limit(limit)
        try:
            async with self._transaction() as session:
                rows = (await session.execute(stmt)).scalars().all()
        except STORAGE_ERRORS as e:
            self._log_failure("get_popular_searches", e)
            return []
        return [self._to_search_record(row) for row in rows]

    async def get_expiring_streams(self, hours_threshold: float = 6) -> list[Stream]:
        """Active streams expiring within ``hours_threshold`` hours, soonest first."""
        if not self._available:
            return []
        cutoff = self.clock() + timedelta(hours=hours_threshold)
        stmt = (
            select(StreamRow)
            .where(StreamRow.is_active.is_(True), StreamRow.expires_at < cutoff)
            .order_by(StreamRow.expires_at.asc())
            .limit(EXPIRING_STREAMS_LIMIT)
        )
        try:
            async with self._transaction() as session:
                rows = (await session.execute(stmt)).scalars().all()
        except STORAGE_ERRORS as e:
            self._log_failure("get_expiring_streams", e)
            return []
        return [self._to_stream(row) for row in rows]

    async def get_stale_tracks(self, days_threshold: int = 90) -> list[str]:
        """Ids of tracks not accessed within ``days_threshold`` days."""
        if not self._available:
            return []
        cutoff = self.clock() - timedelta(days=days_threshold)
        stmt = (
            select(TrackRow.id)
            .where(TrackRow.last_accessed_at < cutoff)
            .order_by(TrackRow.last_accessed_at.asc())
            .limit(STALE_TRACKS_LIMIT)
        )
        try:
            async with self._transaction() as session:
                return list((await session.execute(stmt)).scalars().all())
        except STORAGE_ERRORS as e:
            self._log_failure("get_stale_tracks", e)
            return []

    async def delete_stale_track(self, track_id: str, older_than: datetime) -> bool:
        """Hard-delete a track and its dependents if it is still unaccessed since ``older_than``.

        The staleness condition is re-checked inside the DELETE, so a track
        touched after it was selected for pruning survives.
        """
        if not self._available:
            return False
        try:
            async with self._transaction() as session:
                result = await session.execute(
                    delete(TrackRow)
                    .where(TrackRow.id == track_id, TrackRow.last_accessed_at < older_than)
                    .execution_options(synchronize_session=False)
                )
                if not result.rowcount:
                    return False
                await session.execute(delete(StreamRow).where(StreamRow.track_id == track_id))
                await session.execute(delete(SearchRow).where(SearchRow.track_id == track_id))
                await session.execute(
                    delete(RelatedTrackRow).where(
                        sa.or_(
                            RelatedTrackRow.source_track_id == track_id,
                            RelatedTrackRow.related_track_id == track_id,
                        )
                    )
                )
        except STORAGE_ERRORS as e:
            self._log_failure("delete_stale_track", e)
            return False
        return True

    async def get_stats(self) -> DurableStoreStats:
        if not self._available:
            return DurableStoreStats(available=False)
        try:
            async with self._transaction() as session:
                tracks = (await session.execute(select(func.count()).select_from(TrackRow))).scalar_one()
                active_streams = (
                    await session.execute(select(func.count()).select_from(StreamRow).where(StreamRow.is_active.is_(True)))
                ).scalar_one()
                searches = (await session.execute(select(func.count()).select_from(SearchRow))).scalar_one()
                edges = (await session.execute(select(func.count()).select_from(RelatedTrackRow))).scalar_one()
                artists = (await session.execute(select(func.count()).select_from(ArtistCacheRow))).scalar_one()
        except STORAGE_ERRORS as e:
            self._log_failure("get_stats", e)
            return DurableStoreStats(available=True)
        return DurableStoreStats(
            available=True,
            tracks=tracks,
            active_streams=active_streams,
            searches=searches,
            related_edges=edges,
            artists=artists,
        )
