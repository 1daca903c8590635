"""
In-memory key/value store.

Backed by a plain dict guarded by an asyncio lock. Suitable for tests,
single-process tools and as a staging area before writing elsewhere.
Data is lost when the process exits.
"""

from __future__ import annotations

import asyncio
import logging

from temporalfix.stores.interface import KeyValueStore

logger = logging.getLogger(__name__)


class InMemoryKeyValueStore(KeyValueStore):
    """
    Dict-backed key/value store.

    Example:
        >>> store = InMemoryKeyValueStore({"note-1": '{"title": "x"}'})
        >>> await store.get("note-1")
        '{"title": "x"}'
    """

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> str | None:
        async with self._lock:
            return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise TypeError(f"Store values must be str, got {type(value).__name__}")
        async with self._lock:
            self._data[key] = value

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self._data.pop(key, None) is not None

    async def keys(self) -> list[str]:
        async with self._lock:
            return list(self._data)

    async def items(self) -> list[tuple[str, str]]:
        async with self._lock:
            return list(self._data.items())

    async def clear(self) -> None:
        """Remove every entry."""
        async with self._lock:
            self._data.clear()

    def snapshot(self) -> dict[str, str]:
        """Synchronous copy of the current contents, for assertions and debugging."""
        return dict(self._data)

    def __len__(self) -> int:
        return len(self._data)
