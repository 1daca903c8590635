"""
Key/value store in a single SQLite table, accessed through aiosqlite.

The table has two TEXT columns, key (primary key) and value. Every write
commits immediately, so a migration that is interrupted leaves each record
either fully rewritten or untouched.
"""

from __future__ import annotations

import logging
import re
from typing import Any

import aiosqlite

from temporalfix.exceptions import StoreError
from temporalfix.stores.interface import KeyValueStore

logger = logging.getLogger(__name__)

_TABLE_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class SQLiteKeyValueStore(KeyValueStore):
    """
    Persistent KeyValueStore.

    Args:
        database: File path, or ":memory:"
        table: Table name; must be a plain SQL identifier
        wal_mode: Switch the database to write-ahead logging on connect
        busy_timeout: Milliseconds to wait on a locked database

    Example:
        >>> async with SQLiteKeyValueStore(":memory:") as store:
        ...     await store.initialize()
        ...     await store.set("note-1", '{"title": "x"}')
    """

    def __init__(
        self,
        database: str,
        *,
        table: str = "kv_entries",
        wal_mode: bool = True,
        busy_timeout: int = 5000,
    ) -> None:
        if not _TABLE_NAME_PATTERN.match(table):
            raise ValueError(f"Invalid table name {table!r}")
        self._database = database
        self._table = table
        self._wal_mode = wal_mode
        self._busy_timeout = busy_timeout
        self._connection: aiosqlite.Connection | None = None

    async def __aenter__(self) -> SQLiteKeyValueStore:
        await self._connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self.close()

    async def _connect(self) -> None:
        if self._connection is not None:
            return

        self._connection = await aiosqlite.connect(self._database)
        await self._connection.execute(f"PRAGMA busy_timeout = {int(self._busy_timeout)}")
        if self._wal_mode:
            await self._connection.execute("PRAGMA journal_mode = WAL")

        logger.debug(
            "Connected to SQLite database: %s (wal_mode=%s, busy_timeout=%d)",
            self._database,
            self._wal_mode,
            self._busy_timeout,
        )

    async def close(self) -> None:
        """Close the connection; no-op when already closed."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            logger.debug("Closed SQLite database connection: %s", self._database)

    async def initialize(self) -> None:
        """Connect if needed and create the table when missing."""
        await self._connect()
        conn = self._ensure_connected()
        await conn.execute(
            f"CREATE TABLE IF NOT EXISTS {self._table} ("
            "key TEXT PRIMARY KEY, "
            "value TEXT NOT NULL)"
        )
        await conn.commit()
        logger.info("Initialized SQLite key/value table %s in %s", self._table, self._database)

    def _ensure_connected(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise RuntimeError(
                "Not connected to database. Use 'async with store:' or call 'initialize()' first."
            )
        return self._connection

    async def get(self, key: str) -> str | None:
        conn = self._ensure_connected()
        try:
            async with conn.execute(
                f"SELECT value FROM {self._table} WHERE key = ?", (key,)
            ) as cursor:
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise StoreError("get", key, str(e)) from e
        return row[0] if row else None

    async def set(self, key: str, value: str) -> None:
        conn = self._ensure_connected()
        try:
            await conn.execute(
                f"INSERT INTO {self._table} (key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (key, value),
            )
            await conn.commit()
        except aiosqlite.Error as e:
            raise StoreError("set", key, str(e)) from e

    async def delete(self, key: str) -> bool:
        conn = self._ensure_connected()
        try:
            cursor = await conn.execute(f"DELETE FROM {self._table} WHERE key = ?", (key,))
            await conn.commit()
        except aiosqlite.Error as e:
            raise StoreError("delete", key, str(e)) from e
        return cursor.rowcount > 0

    async def keys(self) -> list[str]:
        conn = self._ensure_connected()
        try:
            async with conn.execute(f"SELECT key FROM {self._table} ORDER BY key") as cursor:
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise StoreError("keys", None, str(e)) from e
        return [row[0] for row in rows]

    async def items(self) -> list[tuple[str, str]]:
        conn = self._ensure_connected()
        try:
            async with conn.execute(
                f"SELECT key, value FROM {self._table} ORDER BY key"
            ) as cursor:
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise StoreError("items", None, str(e)) from e
        return [(row[0], row[1]) for row in rows]

    @property
    def database(self) -> str:
        return self._database

    @property
    def is_connected(self) -> bool:
        return self._connection is not None
