"""Durable relational (L2) store."""

from .durable_store import DurableStore, DurableStoreStats

__all__ = [
    "DurableStore",
    "DurableStoreStats",
]
