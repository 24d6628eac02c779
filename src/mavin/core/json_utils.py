"""Thin JSON helpers backed by orjson."""

from __future__ import annotations

from typing import Any, cast

import orjson


def dumps_json(data: Any) -> bytes:
    """Serialize Python data to compact JSON bytes."""
    return orjson.dumps(data)


def loads_json(data: bytes | str) -> Any:
    """Deserialize JSON bytes into Python data.

    Raises:
        orjson.JSONDecodeError: If the payload is not valid JSON (subclass of ValueError)

    """
    return cast(Any, orjson.loads(data))
