"""
Shared pytest fixtures for the temporalfix library tests.

This module provides:
- Clock fixtures (clock, time_source)
- Component fixtures (cache, converter, stamper)
- Store fixtures (memory_store, sqlite_store)
- Migration fixtures (engine_factory)
- Context fixtures (context)

All fixtures build fresh component instances; nothing is shared between tests.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from typing import Any

import pytest
import pytest_asyncio

from temporalfix.cache import TimestampCache
from temporalfix.config import CacheConfig, MigrationConfig, create_testing_config
from temporalfix.context import TemporalContext
from temporalfix.legacy.converter import LegacyFormatConverter
from temporalfix.migration.engine import MigrationEngine
from temporalfix.stamping import Stamper
from temporalfix.stores.in_memory import InMemoryKeyValueStore
from temporalfix.stores.interface import KeyValueStore
from temporalfix.stores.sqlite import SQLiteKeyValueStore
from temporalfix.timesource import TimeSource
from tests.fixtures import FakeClock

# ============================================================================
# Clock Fixtures
# ============================================================================


@pytest.fixture
def clock() -> FakeClock:
    """Manually advanced clock starting at 2025-01-11T15:40:00Z."""
    return FakeClock()


@pytest.fixture
def time_source(clock: FakeClock) -> TimeSource:
    """TimeSource reading the fake clock with a generous performance budget."""
    return TimeSource(clock, performance_budget_ms=1000.0)


# ============================================================================
# Component Fixtures
# ============================================================================


@pytest.fixture
def cache(time_source: TimeSource) -> TimestampCache:
    return TimestampCache(time_source, CacheConfig(max_size=4), enable_metrics=False)


@pytest.fixture
def converter(time_source: TimeSource) -> LegacyFormatConverter:
    return LegacyFormatConverter(time_source, enable_metrics=False)


@pytest.fixture
def stamper(time_source: TimeSource) -> Stamper:
    return Stamper(time_source)


# ============================================================================
# Store Fixtures
# ============================================================================


@pytest.fixture
def memory_store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest_asyncio.fixture
async def sqlite_store() -> AsyncGenerator[SQLiteKeyValueStore, None]:
    """Initialized in-memory SQLite store, closed after the test."""
    store = SQLiteKeyValueStore(":memory:", wal_mode=False)
    await store.initialize()
    yield store
    await store.close()


# ============================================================================
# Migration Fixtures
# ============================================================================


@pytest.fixture
def engine_factory(
    time_source: TimeSource,
    converter: LegacyFormatConverter,
    stamper: Stamper,
) -> Callable[..., MigrationEngine]:
    """
    Build a MigrationEngine over a given store.

    Keyword arguments are passed to MigrationConfig; batch_size defaults to 2.
    """

    def _create(
        store: KeyValueStore,
        sources: dict[str, KeyValueStore] | None = None,
        **config: Any,
    ) -> MigrationEngine:
        config.setdefault("batch_size", 2)
        return MigrationEngine(
            store,
            time_source,
            converter,
            stamper,
            config=MigrationConfig(**config),
            sources=sources,
            enable_tracing=False,
            enable_metrics=False,
        )

    return _create


# ============================================================================
# Context Fixtures
# ============================================================================


@pytest.fixture
def context(clock: FakeClock, memory_store: InMemoryKeyValueStore) -> TemporalContext:
    """TemporalContext over the memory store with a fake clock and fixed memory reading."""
    return TemporalContext.create(
        memory_store,
        create_testing_config(),
        clock=clock,
        memory_probe=lambda: 10.0,
    )
