"""
Unit tests for TimestampCache.

Tests cover:
- get/put and TTL expiry
- Score-based eviction (25% rounded up, lowest score first)
- FIFO eviction fallback
- Measured metrics and the performance report
- Consistency recovery
- Background maintenance task
"""

import asyncio

import pytest

from temporalfix.cache import CacheEntry, TimestampCache
from temporalfix.config import CacheConfig
from temporalfix.timesource import TimeSource
from tests.fixtures import BASE_INSTANT, FakeClock


def _fill(cache: TimestampCache, keys: list[str]) -> None:
    for i, key in enumerate(keys):
        cache.put(key, BASE_INSTANT + i)


# =============================================================================
# Lookup and insert
# =============================================================================


class TestGetPut:
    """Tests for basic get/put behaviour."""

    def test_miss_returns_none(self, cache: TimestampCache):
        assert cache.get("absent") is None

    def test_put_then_get(self, cache: TimestampCache):
        """Test a stored instant is returned."""
        cache.put("order-1", BASE_INSTANT)

        assert cache.get("order-1") == BASE_INSTANT
        assert "order-1" in cache
        assert len(cache) == 1

    def test_put_replaces_existing(self, cache: TimestampCache):
        """Test re-putting a key replaces its value without eviction."""
        _fill(cache, ["a", "b", "c", "d"])
        cache.put("a", 42)

        assert cache.get("a") == 42
        assert len(cache) == 4
        assert cache.metrics().eviction_count == 0

    def test_hit_updates_access_bookkeeping(self, clock: FakeClock, cache: TimestampCache):
        """Test a hit increments access_count and refreshes last_accessed_at."""
        cache.put("a", BASE_INSTANT)
        clock.advance(500)
        cache.get("a")

        entry = cache.entry("a")
        assert isinstance(entry, CacheEntry)
        assert entry.access_count == 2
        assert entry.last_accessed_at == BASE_INSTANT + 500
        assert entry.created_at == BASE_INSTANT

    def test_expired_entry_is_a_miss(self, clock: FakeClock, cache: TimestampCache):
        """Test entries older than the TTL are removed lazily on access."""
        cache.put("a", BASE_INSTANT)
        clock.advance(cache.config.ttl_ms + 1)

        assert cache.get("a") is None
        assert "a" not in cache
        assert cache.metrics().eviction_count == 1

    def test_entry_at_ttl_boundary_is_a_hit(self, clock: FakeClock, cache: TimestampCache):
        cache.put("a", BASE_INSTANT)
        clock.advance(cache.config.ttl_ms)

        assert cache.get("a") == BASE_INSTANT

    def test_remove(self, cache: TimestampCache):
        """Test remove() drops the entry without counting an eviction."""
        cache.put("a", BASE_INSTANT)

        assert cache.remove("a") is True
        assert cache.remove("a") is False
        assert len(cache) == 0
        assert cache.metrics().eviction_count == 0
        assert cache.metrics().memory_usage_bytes == 0

    def test_get_or_create_uses_minute_bucket(self, clock: FakeClock, cache: TimestampCache):
        """Test get_or_create() caches one instant per minute bucket by default."""
        first = cache.get_or_create()
        clock.advance(1)
        second = cache.get_or_create()

        assert first == second == BASE_INSTANT
        assert f"ts_{BASE_INSTANT // 60_000}" in cache

    def test_get_or_create_with_key(self, clock: FakeClock, cache: TimestampCache):
        clock.advance(10)

        assert cache.get_or_create("k") == BASE_INSTANT + 10
        assert cache.get("k") == BASE_INSTANT + 10

    def test_clear(self, cache: TimestampCache):
        _fill(cache, ["a", "b"])
        cache.clear()

        assert len(cache) == 0
        assert cache.keys() == []


# =============================================================================
# Eviction
# =============================================================================


class TestEviction:
    """Tests for score-based and FIFO eviction."""

    def test_size_never_exceeds_max(self, time_source: TimeSource):
        """Test the cache stays within max_size for any number of puts."""
        cache = TimestampCache(time_source, CacheConfig(max_size=5), enable_metrics=False)

        for i in range(50):
            cache.put(f"k{i}", BASE_INSTANT + i)
            assert len(cache) <= 5

    def test_fifth_put_evicts_exactly_one_lowest_score(
        self, clock: FakeClock, cache: TimestampCache
    ):
        """Test a full 4-entry cache evicts one entry, the lowest scoring one."""
        _fill(cache, ["a", "b", "c", "d"])
        clock.advance(10_000)
        for key in ("a", "b", "c"):
            cache.get(key)

        now = clock.value
        scores = {key: cache.entry(key).score(now) for key in cache.keys()}
        assert min(scores, key=scores.get) == "d"

        cache.put("e", BASE_INSTANT)

        assert len(cache) == 4
        assert "d" not in cache
        assert set(cache.keys()) == {"a", "b", "c", "e"}
        assert cache.metrics().eviction_count == 1

    def test_evicts_quarter_rounded_up(self, clock: FakeClock, time_source: TimeSource):
        """Test an 8-entry cache evicts two entries, the two least used."""
        cache = TimestampCache(time_source, CacheConfig(max_size=8), enable_metrics=False)
        keys = [f"k{i}" for i in range(8)]
        _fill(cache, keys)
        clock.advance(10_000)
        for key in keys[2:]:
            cache.get(key)

        cache.put("new", BASE_INSTANT)

        assert len(cache) == 7
        assert "k0" not in cache
        assert "k1" not in cache
        assert cache.metrics().eviction_count == 2

    def test_score_formula(self):
        """Test the eviction score against a hand-computed value."""
        entry = CacheEntry(
            value=BASE_INSTANT,
            created_at=0,
            last_accessed_at=4000,
            access_count=3,
        )

        # frequency 3 / 10s = 0.3; age 10000/60000; idle 6000/30000
        expected = 0.3 - 10_000 / 60_000 - 6_000 / 30_000
        assert entry.score(10_000) == pytest.approx(expected)

    def test_young_entries_use_one_second_floor(self):
        entry = CacheEntry(value=0, created_at=0, last_accessed_at=0, access_count=2)

        assert entry.score(500) == pytest.approx(2 - 500 / 60_000 - 500 / 30_000)

    def test_identical_histories_evict_identically(self):
        """Test eviction is deterministic given identical access histories."""

        def run() -> list[str]:
            clock = FakeClock()
            cache = TimestampCache(
                TimeSource(clock, performance_budget_ms=1000.0),
                CacheConfig(max_size=6),
                enable_metrics=False,
            )
            for i in range(6):
                cache.put(f"k{i}", i)
                clock.advance(700)
                cache.get(f"k{i % 3}")
            for i in range(6, 12):
                cache.put(f"k{i}", i)
                clock.advance(300)
            return sorted(cache.keys())

        assert run() == run()

    def test_fifo_eviction_removes_oldest(self, time_source: TimeSource):
        """Test FIFO eviction removes the first inserted entry."""
        cache = TimestampCache(
            time_source,
            CacheConfig(max_size=3, intelligent_eviction=False),
            enable_metrics=False,
        )
        _fill(cache, ["a", "b", "c"])
        cache.get("a")
        cache.put("d", BASE_INSTANT)

        assert cache.keys() == ["b", "c", "d"]

    def test_purge_expired(self, clock: FakeClock, cache: TimestampCache):
        """Test purge_expired() removes only entries past the TTL."""
        cache.put("old", BASE_INSTANT)
        clock.advance(cache.config.ttl_ms - 100)
        cache.put("fresh", BASE_INSTANT)
        clock.advance(200)

        assert cache.purge_expired() == 1
        assert cache.keys() == ["fresh"]


# =============================================================================
# Metrics and reporting
# =============================================================================


class TestMetrics:
    """Tests for measured metrics and the performance report."""

    def test_counts_hits_and_misses(self, cache: TimestampCache):
        cache.put("a", BASE_INSTANT)
        cache.get("a")
        cache.get("a")
        cache.get("b")

        metrics = cache.metrics()
        assert metrics.total_requests == 3
        assert metrics.hits == 2
        assert metrics.misses == 1
        assert metrics.hit_rate == pytest.approx(200 / 3)
        assert metrics.size == 1

    def test_response_time_is_measured(self, cache: TimestampCache):
        """Test the average response time comes from real lookups."""
        assert cache.metrics().average_response_time_ms == 0.0

        cache.get("a")

        assert cache.metrics().average_response_time_ms > 0.0

    def test_memory_tracks_entries(self, cache: TimestampCache):
        cache.put("a", BASE_INSTANT)
        size = cache.metrics().memory_usage_bytes

        assert size > 0
        cache.put("b", BASE_INSTANT)
        assert cache.metrics().memory_usage_bytes == 2 * size

    def test_report_for_fresh_cache(self, cache: TimestampCache):
        report = cache.performance_report()

        assert report.health_score == 100
        assert report.recommendations == ()

    def test_report_penalizes_low_hit_rate(self, cache: TimestampCache):
        """Test a poor hit rate lowers the score and adds a recommendation."""
        for i in range(10):
            cache.get(f"missing-{i}")

        report = cache.performance_report()

        assert report.health_score <= 80
        assert any("Hit rate" in r for r in report.recommendations)
        assert report.to_dict()["metrics"]["misses"] == 10


# =============================================================================
# Consistency recovery
# =============================================================================


class TestConsistencyRecovery:
    """Tests for recovery from corrupted cache state."""

    def test_corrupted_entry_rebuilds_cache(self, cache: TimestampCache):
        """Test corruption is repaired silently and reported as a miss."""
        cache.put("a", BASE_INSTANT)
        cache._entries["b"] = "garbage"  # type: ignore[assignment]

        assert cache.get("b") is None
        assert len(cache) == 0
        assert cache.metrics().consistency_recoveries == 1

        cache.put("c", BASE_INSTANT)
        assert cache.get("c") == BASE_INSTANT


# =============================================================================
# Maintenance
# =============================================================================


class TestMaintenance:
    """Tests for the periodic maintenance task."""

    @pytest.mark.asyncio
    async def test_maintenance_purges_expired(self, clock: FakeClock, time_source: TimeSource):
        """Test the background task purges expired entries without access."""
        cache = TimestampCache(
            time_source,
            CacheConfig(maintenance_interval_s=0.01),
            enable_metrics=False,
        )
        cache.put("a", BASE_INSTANT)
        clock.advance(cache.config.ttl_ms + 1)

        await cache.start()
        await asyncio.sleep(0.05)
        await cache.stop()

        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_stop_without_start(self, cache: TimestampCache):
        await cache.stop()
