"""Durable device-local key/value store backing the L1 cache.

One file per key inside a cache directory. File names are the URL-quoted
key so ``all_keys()`` can recover the original key without reading files.
Writes go to a temporary file first and are moved into place atomically.
"""

from __future__ import annotations

import uuid
from pathlib import Path
from urllib.parse import quote, unquote

import aiofiles
import aiofiles.os

ENTRY_SUFFIX = ".json"


class LocalKeyValueStore:
    """Async file-backed key/value store.

    All methods raise ``OSError`` on I/O failure; the device cache decides
    how to degrade.
    """

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory).expanduser()

    async def open(self) -> None:
        """Create the store directory."""
        await aiofiles.os.makedirs(self.directory, exist_ok=True)

    def _path_for(self, key: str) -> Path:
        return self.directory / f"{quote(key, safe='')}{ENTRY_SUFFIX}"

    async def get_item(self, key: str) -> bytes | None:
        path = self._path_for(key)
        try:
            async with aiofiles.open(path, "rb") as f:
                return await f.read()
        except FileNotFoundError:
            return None

    async def set_item(self, key: str, data: bytes) -> None:
        """Write ``data`` under ``key`` atomically."""
        path = self._path_for(key)
        temp_path = path.with_name(f".{uuid.uuid4().hex}.tmp")
        try:
            async with aiofiles.open(temp_path, "wb") as f:
                await f.write(data)
            await aiofiles.os.replace(temp_path, path)
        except OSError:
            if await aiofiles.os.path.exists(temp_path):
                await aiofiles.os.remove(temp_path)
            raise

    async def remove_item(self, key: str) -> None:
        try:
            await aiofiles.os.remove(self._path_for(key))
        except FileNotFoundError:
            return

    async def multi_remove(self, keys: list[str]) -> None:
        for key in keys:
            await self.remove_item(key)

    async def all_keys(self) -> list[str]:
        """Return every stored key (temporary files excluded)."""
        try:
            names = await aiofiles.os.listdir(self.directory)
        except FileNotFoundError:
            return []
        return [
            unquote(name[: -len(ENTRY_SUFFIX)])
            for name in names
            if name.endswith(ENTRY_SUFFIX) and not name.startswith(".")
        ]
