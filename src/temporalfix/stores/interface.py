"""
Key/value store interface.

The migration engine only needs to read, write, delete and enumerate
string values by key. Values are serialized records (JSON text), the
same shape a browser's localStorage or a simple key/value table holds.

Implementations:
- InMemoryKeyValueStore: dict-backed, for tests and embedded use
- SQLiteKeyValueStore: aiosqlite-backed single table
- SQLAlchemyKeyValueStore: any SQLAlchemy async engine (PostgreSQL, SQLite, ...)
"""

from __future__ import annotations

from abc import ABC, abstractmethod


class KeyValueStore(ABC):
    """
    Abstract async key/value store.

    Implementations raise temporalfix.exceptions.StoreError when the
    underlying storage fails.
    """

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """
        Read a value.

        Args:
            key: Entry key

        Returns:
            Stored value, or None if the key is absent
        """
        pass

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """
        Write a value, replacing any existing one.

        Args:
            key: Entry key
            value: Serialized value
        """
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """
        Remove a key.

        Returns:
            True if the key existed
        """
        pass

    @abstractmethod
    async def keys(self) -> list[str]:
        """
        Enumerate all keys.

        Returns:
            Keys in a stable order
        """
        pass

    async def items(self) -> list[tuple[str, str]]:
        """
        Enumerate all entries.

        The default implementation reads every key individually; backends
        override it with a single query.
        """
        result: list[tuple[str, str]] = []
        for key in await self.keys():
            value = await self.get(key)
            if value is not None:
                result.append((key, value))
        return result

    async def close(self) -> None:
        """Release resources held by the store."""
        return None
