"""
SQLAlchemy key/value store.

Uses an async SQLAlchemy session factory, so any async driver works:
asyncpg for PostgreSQL, aiosqlite for SQLite, and so on. Entries live in
a single two-column table; writes use INSERT ... ON CONFLICT, which both
PostgreSQL and SQLite support.
"""

from __future__ import annotations

import logging
import re

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from temporalfix.exceptions import StoreError
from temporalfix.stores.interface import KeyValueStore

logger = logging.getLogger(__name__)

_TABLE_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class SQLAlchemyKeyValueStore(KeyValueStore):
    """
    Key/value store on top of an async SQLAlchemy engine.

    Attributes:
        _session_factory: SQLAlchemy async session factory
        _table: Table holding the entries

    Example:
        >>> from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
        >>>
        >>> engine = create_async_engine("postgresql+asyncpg://localhost/app")
        >>> session_factory = async_sessionmaker(engine, expire_on_commit=False)
        >>> store = SQLAlchemyKeyValueStore(session_factory)
        >>> await store.initialize()
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        table: str = "kv_entries",
    ) -> None:
        if not _TABLE_NAME_PATTERN.match(table):
            raise ValueError(f"Invalid table name {table!r}")
        self._session_factory = session_factory
        self._table = table

    async def initialize(self) -> None:
        """Create the entries table if it does not exist."""
        async with self._session_factory() as session:
            try:
                await session.execute(
                    text(
                        f"CREATE TABLE IF NOT EXISTS {self._table} ("
                        "key VARCHAR(512) PRIMARY KEY, "
                        "value TEXT NOT NULL)"
                    )
                )
                await session.commit()
            except SQLAlchemyError as e:
                raise StoreError("initialize", None, str(e)) from e
        logger.info("Initialized key/value table %s", self._table)

    async def get(self, key: str) -> str | None:
        async with self._session_factory() as session:
            try:
                result = await session.execute(
                    text(f"SELECT value FROM {self._table} WHERE key = :key"),
                    {"key": key},
                )
            except SQLAlchemyError as e:
                raise StoreError("get", key, str(e)) from e
            row = result.fetchone()
        return row[0] if row else None

    async def set(self, key: str, value: str) -> None:
        async with self._session_factory() as session:
            try:
                await session.execute(
                    text(
                        f"INSERT INTO {self._table} (key, value) VALUES (:key, :value) "
                        "ON CONFLICT (key) DO UPDATE SET value = excluded.value"
                    ),
                    {"key": key, "value": value},
                )
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                raise StoreError("set", key, str(e)) from e

    async def delete(self, key: str) -> bool:
        async with self._session_factory() as session:
            try:
                result = await session.execute(
                    text(f"DELETE FROM {self._table} WHERE key = :key"),
                    {"key": key},
                )
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                raise StoreError("delete", key, str(e)) from e
        return bool(result.rowcount)

    async def keys(self) -> list[str]:
        async with self._session_factory() as session:
            try:
                result = await session.execute(
                    text(f"SELECT key FROM {self._table} ORDER BY key")
                )
            except SQLAlchemyError as e:
                raise StoreError("keys", None, str(e)) from e
            return [row[0] for row in result.fetchall()]

    async def items(self) -> list[tuple[str, str]]:
        async with self._session_factory() as session:
            try:
                result = await session.execute(
                    text(f"SELECT key, value FROM {self._table} ORDER BY key")
                )
            except SQLAlchemyError as e:
                raise StoreError("items", None, str(e)) from e
            return [(row[0], row[1]) for row in result.fetchall()]
