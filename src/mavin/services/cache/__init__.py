"""Device-local (L1) cache and its on-disk key/value store."""

from .device_cache import DeviceCache, DeviceCacheStats
from .local_store import LocalKeyValueStore

__all__ = [
    "DeviceCache",
    "DeviceCacheStats",
    "LocalKeyValueStore",
]
