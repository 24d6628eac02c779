"""Pytest configuration and shared fixtures for the Mavin cache.

``src`` and the project root are put on the import path by the pytest
settings in pyproject.toml, so ``mavin`` and ``tests.mocks`` import without
installing.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING
from unittest.mock import MagicMock

import pytest
import pytest_asyncio

from mavin.core.config import build_config
from mavin.core.models.settings import AppConfig, DurableStoreConfig, LocalCacheConfig, StreamConfig
from mavin.services.cache.device_cache import DeviceCache
from mavin.services.store.durable_store import DurableStore

from tests.mocks import MockLogger, MutableClock

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

START_TIME = datetime(2026, 1, 15, 12, 0, tzinfo=UTC)


@pytest.fixture
def mock_console_logger() -> MagicMock:
    """Mock console logger for testing."""
    return MagicMock(spec=logging.Logger)


@pytest.fixture
def mock_error_logger() -> MagicMock:
    """Mock error logger for testing."""
    return MagicMock(spec=logging.Logger)


@pytest.fixture
def store_clock() -> MutableClock:
    """Controllable UTC clock for the durable store."""
    return MutableClock(START_TIME)


@pytest_asyncio.fixture
async def durable_store(tmp_path: Path, store_clock: MutableClock) -> AsyncIterator[DurableStore]:
    """Initialized SQLite-backed durable store in a temporary directory."""
    config = DurableStoreConfig(url=f"sqlite+aiosqlite:///{tmp_path / 'mavin.db'}")
    store = DurableStore(
        config,
        StreamConfig(),
        console_logger=MockLogger(),
        error_logger=MockLogger(),
        clock=store_clock,
    )
    await store.initialize()
    yield store
    await store.close()


@pytest_asyncio.fixture
async def device_cache(tmp_path: Path) -> AsyncIterator[DeviceCache]:
    """Initialized device cache persisting into a temporary directory."""
    config = LocalCacheConfig(directory=str(tmp_path / "device"), max_items=10)
    cache = DeviceCache(config, console_logger=MockLogger(), error_logger=MockLogger())
    await cache.initialize()
    yield cache
    await cache.drain()
    await cache.close()


@pytest.fixture
def app_config(tmp_path: Path) -> AppConfig:
    """Application config with every on-disk location inside ``tmp_path``."""
    return build_config(
        {
            "local_cache": {"directory": str(tmp_path / "device")},
            "durable_store": {"url": f"sqlite+aiosqlite:///{tmp_path / 'app.db'}"},
            "background_jobs": {"enabled": False},
            "logging": {"logs_base_dir": str(tmp_path / "logs")},
        }
    )
