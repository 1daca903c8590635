"""
Timestamp cache with TTL and access-scored eviction.

Maps lookup keys to previously produced instants. Entries expire after
a TTL and are removed lazily on access or by a periodic maintenance
pass. When the cache is full an eviction pass removes the lowest-scoring
quarter of entries, where the score rewards frequent and recent access:

    access_frequency = access_count / max(age_seconds, 1)
    score = access_frequency - age_ms / 60000 - ms_since_last_access / 30000

Metrics are measured, not estimated: every lookup contributes to hit and
miss counts and to a rolling response-time window.

Example:
    >>> from temporalfix.cache import TimestampCache
    >>> from temporalfix.config import CacheConfig
    >>>
    >>> cache = TimestampCache(time_source, CacheConfig(max_size=4))
    >>> cache.put("order-1", time_source.now())
    >>> cache.get("order-1") is not None
    True
    >>> cache.metrics().hits
    1
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import math
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from temporalfix.config import CacheConfig
from temporalfix.exceptions import CacheConsistencyError
from temporalfix.observability.metrics import ComponentMetrics
from temporalfix.types import Instant

if TYPE_CHECKING:
    from temporalfix.timesource import TimeSource

logger = logging.getLogger(__name__)

EVICTION_FRACTION = 0.25
"""Fraction of the cache removed by one intelligent eviction pass."""

MEMORY_WARNING_BYTES = 50_000
"""Approximate footprint above which the performance report recommends cleanup."""


@dataclass
class CacheEntry:
    """
    A cached instant and its access bookkeeping.

    Attributes:
        value: The cached instant
        created_at: Instant the entry was inserted
        last_accessed_at: Instant of the most recent hit (or insert)
        access_count: Number of inserts plus hits
        approx_size_bytes: Estimated memory footprint
    """

    value: Instant
    created_at: Instant
    last_accessed_at: Instant
    access_count: int = 1
    approx_size_bytes: int = 0

    def age_ms(self, now: Instant) -> int:
        return max(now - self.created_at, 0)

    def score(self, now: Instant) -> float:
        """Eviction score at the given instant; lower scores are evicted first."""
        age_ms = self.age_ms(now)
        since_last_access_ms = max(now - self.last_accessed_at, 0)
        access_frequency = self.access_count / max(age_ms / 1000, 1)
        return access_frequency - age_ms / 60000 - since_last_access_ms / 30000


@dataclass(frozen=True)
class CacheMetrics:
    """
    Point-in-time cache metrics.

    Attributes:
        total_requests: Lookups performed via get()
        hits: Lookups answered from the cache
        misses: Lookups not answered (absent or expired)
        hit_rate: Hits as a percentage of total requests
        average_response_time_ms: Mean lookup time over the rolling window
        size: Current number of entries
        memory_usage_bytes: Sum of entry size estimates
        eviction_count: Entries removed by eviction or expiry
        consistency_recoveries: Times the cache was rebuilt after corruption
    """

    total_requests: int = 0
    hits: int = 0
    misses: int = 0
    hit_rate: float = 0.0
    average_response_time_ms: float = 0.0
    size: int = 0
    memory_usage_bytes: int = 0
    eviction_count: int = 0
    consistency_recoveries: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "total_requests": self.total_requests,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hit_rate,
            "average_response_time_ms": self.average_response_time_ms,
            "size": self.size,
            "memory_usage_bytes": self.memory_usage_bytes,
            "eviction_count": self.eviction_count,
            "consistency_recoveries": self.consistency_recoveries,
        }


@dataclass(frozen=True)
class CacheReport:
    """
    Cache performance report with a 0-100 health score.

    Attributes:
        metrics: Metrics the report was computed from
        health_score: 100 minus penalties for poor hit rate, slow lookups,
            high memory use and heavy eviction
        recommendations: Suggested configuration changes
    """

    metrics: CacheMetrics
    health_score: int
    recommendations: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "metrics": self.metrics.to_dict(),
            "health_score": self.health_score,
            "recommendations": list(self.recommendations),
        }


class TimestampCache:
    """
    Thread-safe TTL cache of instants with scored eviction.

    Attributes:
        config: Cache configuration

    Example:
        >>> cache = TimestampCache(time_source)
        >>> cache.get_or_create()  # cached per minute bucket
        1736610000000
    """

    def __init__(
        self,
        time_source: TimeSource,
        config: CacheConfig | None = None,
        *,
        enable_metrics: bool = True,
    ) -> None:
        self._time_source = time_source
        self.config = config or CacheConfig()
        self._lock = threading.RLock()
        self._entries: dict[str, CacheEntry] = {}
        self._memory_bytes = 0
        self._response_times: deque[float] = deque(maxlen=self.config.response_time_samples)
        self._total_requests = 0
        self._hits = 0
        self._misses = 0
        self._eviction_count = 0
        self._recoveries = 0
        self._metrics = ComponentMetrics("cache", enable_metrics=enable_metrics)
        self._maintenance_task: asyncio.Task[None] | None = None

    # =========================================================================
    # Lookup and insert
    # =========================================================================

    def get(self, key: str) -> Instant | None:
        """
        Look up a cached instant.

        Expired entries are removed and reported as a miss.

        Args:
            key: Lookup key

        Returns:
            The cached instant, or None on a miss
        """
        started = time.perf_counter()
        with self._lock:
            try:
                result = self._get_locked(key)
            except CacheConsistencyError as e:
                self._recover(e)
                result = None

            self._total_requests += 1
            if result is None:
                self._misses += 1
            else:
                self._hits += 1
            self._response_times.append((time.perf_counter() - started) * 1000)
        return result

    def _get_locked(self, key: str) -> Instant | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if not isinstance(entry, CacheEntry):
            raise CacheConsistencyError(key, f"unexpected entry type {type(entry).__name__}")

        now = self._time_source.now()
        if entry.age_ms(now) > self.config.ttl_ms:
            self._remove_locked(key)
            self._eviction_count += 1
            return None

        entry.access_count += 1
        entry.last_accessed_at = now
        return entry.value

    def put(self, key: str, value: Instant) -> None:
        """
        Insert or replace a cached instant.

        If the key is new and the cache is full, an eviction pass runs
        before the insert.

        Args:
            key: Lookup key
            value: Instant to cache
        """
        with self._lock:
            try:
                self._put_locked(key, value)
            except CacheConsistencyError as e:
                self._recover(e)
                self._put_locked(key, value)

    def _put_locked(self, key: str, value: Instant) -> None:
        if key in self._entries:
            self._remove_locked(key)
        elif len(self._entries) >= self.config.max_size:
            self._evict_locked()

        now = self._time_source.now()
        entry = CacheEntry(
            value=value,
            created_at=now,
            last_accessed_at=now,
            access_count=1,
            approx_size_bytes=_estimate_size(key, value),
        )
        self._entries[key] = entry
        self._memory_bytes += entry.approx_size_bytes

        if len(self._entries) > self.config.max_size:
            raise CacheConsistencyError(
                key,
                f"size {len(self._entries)} exceeds max_size {self.config.max_size}",
            )

    def get_or_create(self, key: str | None = None) -> Instant:
        """
        Return a cached instant, producing and caching one on a miss.

        Args:
            key: Lookup key (default: the current minute bucket, "ts_<minute>")

        Returns:
            Cached or freshly produced instant
        """
        if key is None:
            key = f"ts_{self._time_source.now() // 60_000}"
        cached = self.get(key)
        if cached is not None:
            return cached
        value = self._time_source.now()
        self.put(key, value)
        return value

    # =========================================================================
    # Eviction and maintenance
    # =========================================================================

    def _evict_locked(self) -> list[str]:
        if not self._entries:
            return []

        if self.config.intelligent_eviction:
            now = self._time_source.now()
            ranked = sorted(self._entries.items(), key=lambda item: item[1].score(now))
            count = max(1, math.ceil(len(ranked) * EVICTION_FRACTION))
            victims = [key for key, _ in ranked[:count]]
        else:
            victims = [next(iter(self._entries))]

        for key in victims:
            self._remove_locked(key)
        self._eviction_count += len(victims)
        self._metrics.record_operation("evict", 0.0)

        logger.debug(
            "Evicted %d cache entries (%s)",
            len(victims),
            "scored" if self.config.intelligent_eviction else "fifo",
            extra={"evicted": victims},
        )
        return victims

    def _remove_locked(self, key: str) -> None:
        entry = self._entries.pop(key)
        self._memory_bytes = max(self._memory_bytes - entry.approx_size_bytes, 0)

    def remove(self, key: str) -> bool:
        """
        Remove one entry without counting it as an eviction.

        Returns:
            True if the key was cached
        """
        with self._lock:
            if key not in self._entries:
                return False
            self._remove_locked(key)
            return True

    def purge_expired(self) -> int:
        """
        Remove every entry older than the TTL.

        Returns:
            Number of entries removed
        """
        with self._lock:
            now = self._time_source.now()
            expired = [
                key
                for key, entry in self._entries.items()
                if entry.age_ms(now) > self.config.ttl_ms
            ]
            for key in expired:
                self._remove_locked(key)
            self._eviction_count += len(expired)

        if expired:
            self._metrics.record_operation("purge", 0.0)
            logger.debug("Purged %d expired cache entries", len(expired))
        return len(expired)

    def _recover(self, error: CacheConsistencyError) -> None:
        logger.error("Cache state corrupted, rebuilding: %s", error)
        self._metrics.record_failure("consistency", type(error).__name__)
        self._entries = {}
        self._memory_bytes = 0
        self._recoveries += 1

    def clear(self) -> None:
        """Remove every entry. Metrics are kept."""
        with self._lock:
            self._entries.clear()
            self._memory_bytes = 0

    async def start(self) -> None:
        """Start the periodic maintenance task on the running event loop."""
        if self._maintenance_task is not None and not self._maintenance_task.done():
            return
        self._maintenance_task = asyncio.create_task(
            self._maintenance_loop(),
            name="temporalfix-cache-maintenance",
        )

    async def stop(self) -> None:
        """Stop the periodic maintenance task."""
        if self._maintenance_task is not None:
            self._maintenance_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._maintenance_task
            self._maintenance_task = None

    async def _maintenance_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.maintenance_interval_s)
            self.purge_expired()

    # =========================================================================
    # Metrics and reporting
    # =========================================================================

    def metrics(self) -> CacheMetrics:
        """Return current cache metrics."""
        with self._lock:
            average = (
                sum(self._response_times) / len(self._response_times)
                if self._response_times
                else 0.0
            )
            hit_rate = (
                self._hits / self._total_requests * 100 if self._total_requests else 0.0
            )
            return CacheMetrics(
                total_requests=self._total_requests,
                hits=self._hits,
                misses=self._misses,
                hit_rate=hit_rate,
                average_response_time_ms=average,
                size=len(self._entries),
                memory_usage_bytes=self._memory_bytes,
                eviction_count=self._eviction_count,
                consistency_recoveries=self._recoveries,
            )

    def performance_report(self) -> CacheReport:
        """
        Score the cache and suggest configuration changes.

        Returns:
            CacheReport with a 0-100 health score
        """
        metrics = self.metrics()
        score = 100
        recommendations: list[str] = []

        if metrics.total_requests and metrics.hit_rate < 50:
            score -= 20
            recommendations.append(
                "Hit rate below 50%: consider a longer ttl_ms or a larger max_size"
            )
        if metrics.average_response_time_ms > self.config.response_time_threshold_ms:
            score -= 30
            recommendations.append(
                "Average lookup time above threshold: reduce max_size or lookup frequency"
            )
        if metrics.memory_usage_bytes > MEMORY_WARNING_BYTES:
            score -= 10
            recommendations.append("High memory use: run purge_expired() more often")
        if metrics.total_requests and metrics.eviction_count > metrics.total_requests * 0.1:
            score -= 15
            recommendations.append("Frequent evictions: consider increasing max_size")

        return CacheReport(
            metrics=metrics,
            health_score=max(score, 0),
            recommendations=tuple(recommendations),
        )

    def keys(self) -> list[str]:
        """Keys currently cached, in insertion order."""
        with self._lock:
            return list(self._entries)

    def entry(self, key: str) -> CacheEntry | None:
        """Bookkeeping for a key, without counting as an access."""
        with self._lock:
            return self._entries.get(key)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries


def _estimate_size(key: str, value: Instant) -> int:
    return len(json.dumps({"key": key, "value": value})) * 2


__all__ = [
    "CacheEntry",
    "CacheMetrics",
    "CacheReport",
    "TimestampCache",
]
