"""Device-local L1 cache: in-memory LRU index mirrored to a durable local store."""

from __future__ import annotations

import asyncio
import time
from collections import OrderedDict
from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING, Any, Self

from mavin.core.json_utils import dumps_json, loads_json
from mavin.core.logger import Loggable, LogFormat
from mavin.core.models.records import CacheEntry
from mavin.core.tasks import BackgroundTaskGroup
from mavin.services.cache.local_store import LocalKeyValueStore

if TYPE_CHECKING:
    import logging
    from collections.abc import Callable, Mapping

    from mavin.core.models.settings import LocalCacheConfig


@dataclass
class DeviceCacheStats:
    """Snapshot of device cache counters."""

    size: int
    max_size: int
    enabled: bool
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    keys: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class DeviceCache(Loggable):
    """Size-bounded LRU cache with absolute TTL, persisted per key on local disk.

    The ``OrderedDict`` index is both the key map and the LRU order: every
    touch moves the key to the end and eviction pops the front. Index and
    order are only mutated between awaits, so an eviction decision never
    sees a stale size. TTL is checked lazily on read; there is no sweep.

    Any failure of the local store is logged and degrades to a cache miss.
    A cache that is disabled or failed to open always misses.
    """

    def __init__(
        self,
        config: LocalCacheConfig,
        store: LocalKeyValueStore | None = None,
        *,
        console_logger: logging.Logger | None = None,
        error_logger: logging.Logger | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the device cache.

        Args:
            config: Local cache settings (size bound, TTL, directory, key prefix)
            store: Durable local store; defaults to a file store in ``config.directory``
            console_logger: Logger for info/debug messages
            error_logger: Logger for warnings and errors
            clock: Source of epoch seconds, injectable for TTL tests

        """
        super().__init__(console_logger, error_logger)
        self.config = config
        self.max_items = config.max_items
        self.default_ttl = config.ttl_seconds
        self.prefix = config.key_prefix
        self.store = store or LocalKeyValueStore(config.directory)
        self.clock = clock

        self._index: OrderedDict[str, CacheEntry] = OrderedDict()
        self._io_lock = asyncio.Lock()
        self._tasks = BackgroundTaskGroup("device-cache", self.error_logger)
        self._available = False

        self.hits = 0
        self.misses = 0
        self.evictions = 0

    @property
    def available(self) -> bool:
        return self._available

    async def initialize(self) -> None:
        """Open the local store and rebuild the in-memory index from it.

        Expired or undecodable entries are deleted; the remainder is loaded
        in ``last_accessed`` order and trimmed to ``max_items``.
        """
        if not self.config.enabled:
            self.console_logger.info("%s disabled by configuration", LogFormat.entity("DeviceCache"))
            return

        try:
            await self.store.open()
            storage_keys = [k for k in await self.store.all_keys() if k.startswith(self.prefix)]
            now = self.clock()
            loaded: list[CacheEntry] = []
            stale: list[str] = []
            for storage_key in storage_keys:
                entry = self._decode(await self.store.get_item(storage_key))
                if entry is None or entry.is_expired(now):
                    stale.append(storage_key)
                else:
                    loaded.append(entry)
            await self.store.multi_remove(stale)
        except OSError:
            self.error_logger.exception("[device] Local store unavailable, cache will always miss")
            return

        loaded.sort(key=lambda e: e.last_accessed)
        overflow = loaded[: max(0, len(loaded) - self.max_items)]
        for entry in loaded[len(overflow) :]:
            self._index[entry.key] = entry
        if overflow:
            await self._remove_persisted([entry.key for entry in overflow])

        self._available = True
        self.console_logger.info(
            "%s initialized with %s entries (%s dropped)",
            LogFormat.entity("DeviceCache"),
            LogFormat.number(len(self._index)),
            LogFormat.number(len(stale) + len(overflow)),
        )

    async def get(self, key: str) -> Any | None:
        """Return the cached value for ``key``, or None on miss or expiry.

        A hit bumps the access counters, moves the key to the most-recent end
        and persists the new access metadata in the background.
        """
        if not self._available:
            self.misses += 1
            return None

        entry = self._index.get(key)
        if entry is None:
            entry = await self._load_persisted(key)
            if entry is None:
                self.misses += 1
                return None
            # Another coroutine may have written the key while we awaited the store
            if (current := self._index.get(key)) is not None:
                entry = current
            elif entry.is_expired(self.clock()):
                self._tasks.spawn(self._remove_persisted([key]), label="expire")
                self.misses += 1
                return None
            else:
                evicted = self._insert(key, entry)
                if evicted:
                    self._tasks.spawn(self._remove_persisted(evicted), label="evict")

        now = self.clock()
        if entry.is_expired(now):
            self._index.pop(key, None)
            self._tasks.spawn(self._remove_persisted([key]), label="expire")
            self.misses += 1
            return None

        entry.touch(now)
        self._index.move_to_end(key)
        self.hits += 1
        self._tasks.spawn(self._persist(key, entry), label="touch")
        return entry.value

    async def set(self, key: str, value: Any, ttl: float | None = None) -> bool:
        """Store ``value`` under ``key`` with an absolute TTL.

        When the index is full the least-recently-used entry is evicted before
        the insert, so the new write is never dropped.

        Returns:
            True when the entry is cached in memory; persistence failures are logged only.

        """
        if not self._available:
            return False

        ttl_seconds = self.default_ttl if ttl is None else ttl
        if ttl_seconds <= 0:
            self.error_logger.warning("[device] Refusing to cache %s with non-positive TTL %s", key, ttl_seconds)
            return False

        now = self.clock()
        entry = CacheEntry(
            key=key,
            value=value,
            created_at=now,
            expires_at=now + ttl_seconds,
            last_accessed=now,
            access_count=1,
        )
        try:
            self._encode(entry)
        except (TypeError, ValueError) as e:
            self.error_logger.warning("[device] Value for %s is not JSON serializable: %s", key, e)
            return False

        evicted = self._insert(key, entry)
        if evicted:
            await self._remove_persisted(evicted)
        await self._persist(key, entry)
        return True

    async def set_many(self, items: Mapping[str, Any], ttl: float | None = None) -> bool:
        """Store several entries; True only if every write succeeded."""
        results = [await self.set(key, value, ttl) for key, value in items.items()]
        return all(results)

    async def has(self, key: str) -> bool:
        """Return True if a fresh entry exists, without counting an access."""
        if not self._available:
            return False
        entry = self._index.get(key)
        if entry is None:
            entry = await self._load_persisted(key)
        return entry is not None and not entry.is_expired(self.clock())

    async def delete(self, key: str) -> bool:
        if not self._available:
            return False
        self._index.pop(key, None)
        return await self._remove_persisted([key])

    async def clear(self) -> bool:
        """Drop every entry from memory and from the local store."""
        if not self._available:
            return False
        self._index.clear()
        try:
            storage_keys = [k for k in await self.store.all_keys() if k.startswith(self.prefix)]
        except OSError:
            self.error_logger.exception("[device] Failed to list keys while clearing")
            return False
        return await self._remove_persisted([k[len(self.prefix) :] for k in storage_keys])

    def get_all_keys(self) -> list[str]:
        return list(self._index)

    def stats(self) -> DeviceCacheStats:
        return DeviceCacheStats(
            size=len(self._index),
            max_size=self.max_items,
            enabled=self._available,
            hits=self.hits,
            misses=self.misses,
            evictions=self.evictions,
            keys=list(self._index),
        )

    async def drain(self) -> None:
        """Wait for pending background persistence (completion signal for tests)."""
        await self._tasks.drain()

    async def close(self) -> None:
        await self._tasks.close()

    async def __aenter__(self) -> Self:
        await self.initialize()
        return self

    async def __aexit__(self, _exc_type: type[BaseException] | None, _exc: BaseException | None, _tb: object) -> None:
        await self.close()

    def _insert(self, key: str, entry: CacheEntry) -> list[str]:
        """Insert or replace ``key`` as most recent, evicting LRU entries first.

        Returns:
            Keys evicted to make room.

        """
        evicted: list[str] = []
        if key not in self._index:
            while len(self._index) >= self.max_items:
                evicted_key, _ = self._index.popitem(last=False)
                evicted.append(evicted_key)
                self.evictions += 1
                self.console_logger.debug("[device] LRU eviction: %s", evicted_key)
        self._index[key] = entry
        self._index.move_to_end(key)
        return evicted

    async def _persist(self, key: str, entry: CacheEntry) -> None:
        """Write ``entry`` unless it has since been replaced or removed."""
        async with self._io_lock:
            if self._index.get(key) is not entry:
                return
            try:
                await self.store.set_item(self.prefix + key, self._encode(entry))
            except OSError as e:
                self.error_logger.warning("[device] Failed to persist %s: %s", key, e)

    async def _remove_persisted(self, keys: list[str]) -> bool:
        async with self._io_lock:
            try:
                await self.store.multi_remove([self.prefix + key for key in keys])
            except OSError as e:
                self.error_logger.warning("[device] Failed to remove %d persisted entries: %s", len(keys), e)
                return False
        return True

    async def _load_persisted(self, key: str) -> CacheEntry | None:
        try:
            raw = await self.store.get_item(self.prefix + key)
        except OSError as e:
            self.error_logger.warning("[device] Failed to read %s: %s", key, e)
            return None
        entry = self._decode(raw)
        if raw is not None and entry is None:
            await self._remove_persisted([key])
        return entry

    @staticmethod
    def _encode(entry: CacheEntry) -> bytes:
        return dumps_json(entry.model_dump(mode="json", by_alias=True))

    @staticmethod
    def _decode(raw: bytes | None) -> CacheEntry | None:
        if raw is None:
            return None
        try:
            return CacheEntry.model_validate(loads_json(raw))
        except ValueError:
            return None
