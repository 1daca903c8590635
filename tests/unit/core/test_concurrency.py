"""
Unit tests for thread safety of the synchronous components.

Tests cover:
- TimestampCache size bound and request accounting under concurrent put/get
- Stamper updates from many threads keeping updatedAt monotonic
- TimeSource instants never decreasing across threads
"""

from concurrent.futures import ThreadPoolExecutor

from temporalfix.cache import TimestampCache
from temporalfix.config import CacheConfig
from temporalfix.stamping import StampOperation, Stamper
from temporalfix.timesource import TimeSource

WORKERS = 8
ROUNDS = 400


# =============================================================================
# Cache
# =============================================================================


class TestCacheConcurrency:
    """Tests for TimestampCache shared between threads."""

    def test_size_bound_and_request_accounting(self):
        """Test concurrent put/get keeps the size bound and counts every lookup once."""
        time_source = TimeSource()
        cache = TimestampCache(time_source, CacheConfig(max_size=16), enable_metrics=False)

        def worker(worker_id: int) -> int:
            lookups = 0
            for i in range(ROUNDS):
                key = f"w{worker_id}-{i % 40}"
                cache.put(key, time_source.now())
                cache.get(key)
                cache.get(f"w{(worker_id + 1) % WORKERS}-{i % 40}")
                lookups += 2
                assert len(cache) <= 16
            return lookups

        with ThreadPoolExecutor(max_workers=WORKERS) as pool:
            lookups = sum(pool.map(worker, range(WORKERS)))

        metrics = cache.metrics()
        assert len(cache) <= 16
        assert metrics.size == len(cache)
        assert metrics.total_requests == lookups
        assert metrics.hits + metrics.misses == metrics.total_requests
        assert metrics.eviction_count > 0


# =============================================================================
# Stamper and time source
# =============================================================================


class TestStamperConcurrency:
    """Tests for Stamper and TimeSource shared between threads."""

    def test_updates_move_forward(self):
        """Test each thread's chain of updates never moves updatedAt backwards."""
        time_source = TimeSource()
        stamper = Stamper(time_source)

        def worker(worker_id: int) -> list[int]:
            current = stamper.stamp({"worker": worker_id})
            created = current["createdAt"]
            seen = [current["updatedAt"]]
            for _ in range(ROUNDS):
                current = stamper.apply_operation(StampOperation.UPDATE, current)
                assert current["createdAt"] == created
                seen.append(current["updatedAt"])
            return seen

        with ThreadPoolExecutor(max_workers=WORKERS) as pool:
            chains = list(pool.map(worker, range(WORKERS)))

        for seen in chains:
            assert seen == sorted(seen)
            assert all(time_source.is_valid(instant) for instant in seen)
        assert stamper.stats["stamped"] == WORKERS * (ROUNDS + 1)
        assert stamper.stats["fallbacks"] == 0

    def test_time_source_is_monotonic_per_thread(self):
        time_source = TimeSource()

        def worker(_: int) -> list[int]:
            return [time_source.now() for _ in range(ROUNDS)]

        with ThreadPoolExecutor(max_workers=WORKERS) as pool:
            for readings in pool.map(worker, range(WORKERS)):
                assert readings == sorted(readings)
