"""
Shared test fixtures for the temporalfix library.

This module provides reusable test helpers:
- FakeClock: manually advanced clock in epoch milliseconds
- record / raw: JSON record builders for store contents
- GatedStore: in-memory store whose reads block until released
- FailingStore: in-memory store that fails writes for chosen keys

Usage:
    from tests.fixtures import FakeClock, GatedStore, raw
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

from temporalfix.exceptions import StoreError
from temporalfix.stores.in_memory import InMemoryKeyValueStore

# 2025-01-11T15:40:00.000Z
BASE_INSTANT = 1_736_610_000_000


class FakeClock:
    """Clock returning a controllable instant."""

    def __init__(self, start: int = BASE_INSTANT) -> None:
        self.value = start
        self.calls = 0

    def __call__(self) -> int:
        self.calls += 1
        return self.value

    def advance(self, ms: int) -> int:
        self.value += ms
        return self.value

    def set(self, value: int) -> None:
        self.value = value


class BrokenClock:
    """Clock that always raises."""

    def __call__(self) -> int:
        raise OSError("clock unavailable")


def raw(**fields: Any) -> str:
    """Serialize a record the way stores hold it."""
    return json.dumps(fields)


def record(value: str | None) -> dict[str, Any] | None:
    """Parse a stored value back into a record."""
    return None if value is None else json.loads(value)


class GatedStore(InMemoryKeyValueStore):
    """In-memory store whose items() waits until release() is called."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        super().__init__(initial)
        self.gate = asyncio.Event()
        self.entered = asyncio.Event()

    async def items(self) -> list[tuple[str, str]]:
        self.entered.set()
        await self.gate.wait()
        return await super().items()

    async def get(self, key: str) -> str | None:
        self.entered.set()
        await self.gate.wait()
        return await super().get(key)

    def release(self) -> None:
        self.gate.set()


class FailingStore(InMemoryKeyValueStore):
    """In-memory store that raises StoreError on writes to selected keys."""

    def __init__(
        self,
        initial: dict[str, str] | None = None,
        *,
        fail_set: set[str] | None = None,
        fail_items: bool = False,
    ) -> None:
        super().__init__(initial)
        self.fail_set = set(fail_set or ())
        self.fail_items = fail_items

    async def set(self, key: str, value: str) -> None:
        if key in self.fail_set:
            raise StoreError("set", key, "simulated write failure")
        await super().set(key, value)

    async def items(self) -> list[tuple[str, str]]:
        if self.fail_items:
            raise StoreError("items", None, "simulated read failure")
        return await super().items()


__all__ = [
    "BASE_INSTANT",
    "BrokenClock",
    "FailingStore",
    "FakeClock",
    "GatedStore",
    "raw",
    "record",
]
