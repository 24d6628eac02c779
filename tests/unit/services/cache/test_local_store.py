"""Tests for the file-backed local key/value store."""

from __future__ import annotations

from pathlib import Path

import allure
import pytest

from mavin.services.cache.local_store import LocalKeyValueStore


@allure.epic("Mavin Cache")
@allure.feature("Device cache")
@allure.sub_suite("Local store")
class TestLocalKeyValueStore:
    @pytest.mark.asyncio
    async def test_round_trip_with_unsafe_key(self, tmp_path: Path) -> None:
        store = LocalKeyValueStore(tmp_path / "kv")
        await store.open()
        key = "@mavin_cache_search:0123/abcd"

        await store.set_item(key, b'{"a": 1}')

        assert await store.get_item(key) == b'{"a": 1}'
        assert await store.all_keys() == [key]
        assert not list((tmp_path / "kv").glob("*.tmp"))

    @pytest.mark.asyncio
    async def test_missing_and_remove(self, tmp_path: Path) -> None:
        store = LocalKeyValueStore(tmp_path)
        await store.open()

        assert await store.get_item("nope") is None
        await store.remove_item("nope")

        await store.set_item("a", b"1")
        await store.set_item("b", b"2")
        await store.multi_remove(["a", "b"])
        assert await store.all_keys() == []

    @pytest.mark.asyncio
    async def test_all_keys_before_open(self, tmp_path: Path) -> None:
        store = LocalKeyValueStore(tmp_path / "never-created")
        assert await store.all_keys() == []
