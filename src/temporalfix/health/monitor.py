"""
Health monitor for the temporal subsystem.

Collects latency samples and error events from every component, turns
them into an overall health status and score, probes each component with
a cheap representative call, fires declarative alerts, and attempts
bounded auto-recovery on critical failures.

Responsibilities:
- Keep a rolling window of samples and errors (pruned by retention)
- Compute HealthSnapshot from the recent window and component probes
- Evaluate alert rules against every new sample
- Run registered recovery strategies for critical errors and alerts
- Re-evaluate health periodically on a background asyncio task

Example:
    >>> monitor = HealthMonitor(time_source, cache=cache, stamper=stamper)
    >>> with monitor.measure("stamper.stamp"):
    ...     stamper.stamp({"title": "draft"})
    >>> monitor.health().status
    <HealthStatus.HEALTHY: 'healthy'>
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
import os
import threading
import time
import tracemalloc
from collections import Counter, deque
from collections.abc import Awaitable, Callable, Generator, Iterable, Mapping
from typing import TYPE_CHECKING, Any, TypeVar

from temporalfix.cache import TimestampCache
from temporalfix.config import HealthConfig
from temporalfix.health.alerts import AlertManager, AlertRule, default_alert_rules
from temporalfix.health.models import (
    Alert,
    AlertSeverity,
    ComponentHealth,
    ErrorEvent,
    HealthSnapshot,
    HealthStatus,
    PerformanceSample,
    PerformanceTrends,
    RecoveryAttempt,
    ServiceStatus,
)
from temporalfix.migration.exceptions import MigrationInProgressError
from temporalfix.observability.metrics import ComponentMetrics
from temporalfix.timesource import instant_to_datetime
from temporalfix.types import Instant, Unsubscribe

if TYPE_CHECKING:
    from temporalfix.legacy.converter import LegacyFormatConverter
    from temporalfix.migration.engine import MigrationEngine
    from temporalfix.stamping import Stamper
    from temporalfix.timesource import TimeSource

logger = logging.getLogger(__name__)

R = TypeVar("R")

RecoveryStrategy = Callable[[str], Any]
"""Recovery callable; receives the failing operation name, may return an awaitable."""

PROBE_CACHE_KEY = "__temporalfix_health_probe__"
PROBE_LEGACY_VALUE = "15/01/2025"

_HOUR_MS = 3_600_000
_DAY_MS = 24 * _HOUR_MS
_RECENT_ERROR_LIMIT = 10
_MB = 1024 * 1024

_CRITICAL_OPERATION_MARKERS = ("timesource", "time_source", "get_timestamp")
_HIGH_MESSAGE_MARKERS = ("corruption", "migration")
_MEDIUM_MESSAGE_MARKERS = ("timeout", "performance")


def process_memory_mb() -> float:
    """
    Current memory use of this process in megabytes.

    Uses the traced allocation total when tracemalloc is running, otherwise
    the resident set size from /proc/self/statm. Returns 0.0 where neither
    is available.
    """
    if tracemalloc.is_tracing():
        return tracemalloc.get_traced_memory()[0] / _MB
    try:
        with open("/proc/self/statm") as statm:
            resident_pages = int(statm.read().split()[1])
        page_size = os.sysconf("SC_PAGE_SIZE")
    except (OSError, IndexError, ValueError, AttributeError):
        return 0.0
    return resident_pages * page_size / _MB


def classify_error(error: BaseException | str, operation: str) -> AlertSeverity:
    """
    Derive the severity of an error from its operation and message.

    Failures in timestamp generation are critical; corruption and
    migration failures are high; timeouts and performance problems are
    medium; everything else is low.
    """
    op = operation.lower()
    if any(marker in op for marker in _CRITICAL_OPERATION_MARKERS):
        return AlertSeverity.CRITICAL
    if op == "now" or op.endswith(".now"):
        return AlertSeverity.CRITICAL

    message = str(error).lower()
    if any(marker in message for marker in _HIGH_MESSAGE_MARKERS):
        return AlertSeverity.HIGH
    if any(marker in message for marker in _MEDIUM_MESSAGE_MARKERS):
        return AlertSeverity.MEDIUM
    return AlertSeverity.LOW


class HealthMonitor:
    """
    Tracks latency and errors and computes the health of the temporal subsystem.

    Every collaborator except the time source is optional; components that
    are not supplied are not probed.

    Attributes:
        config: Health configuration
    """

    def __init__(
        self,
        time_source: TimeSource,
        *,
        cache: TimestampCache | None = None,
        converter: LegacyFormatConverter | None = None,
        stamper: Stamper | None = None,
        engine: MigrationEngine | None = None,
        config: HealthConfig | None = None,
        memory_probe: Callable[[], float] | None = None,
        alert_rules: Iterable[AlertRule] | None = None,
        enable_metrics: bool = True,
    ) -> None:
        self._time_source = time_source
        self._cache = cache
        self._converter = converter
        self._stamper = stamper
        self._engine = engine
        self.config = config or HealthConfig()
        self._memory_probe = memory_probe or process_memory_mb

        self._lock = threading.RLock()
        self._samples: deque[PerformanceSample] = deque()
        self._errors: deque[ErrorEvent] = deque()
        self._history: deque[HealthSnapshot] = deque()
        self._recovery_log: deque[RecoveryAttempt] = deque(maxlen=100)
        self._recovery_times: dict[str, deque[Instant]] = {}
        self._strategies: dict[str, RecoveryStrategy] = {}
        self._pending: set[asyncio.Task[Any]] = set()
        self._last_status: HealthStatus | None = None
        self._started_at = time_source.now()
        self._task: asyncio.Task[None] | None = None
        self._metrics = ComponentMetrics("health", enable_metrics=enable_metrics)

        rules = default_alert_rules(self.config) if alert_rules is None else alert_rules
        self._alerts = AlertManager(time_source.now, rules)
        self._register_default_strategies()

    # =========================================================================
    # Observations
    # =========================================================================

    def record_latency(
        self,
        operation: str,
        duration_ms: float,
        success: bool = True,
        context: Mapping[str, Any] | None = None,
    ) -> PerformanceSample:
        """
        Record one timed operation and evaluate alert rules against it.

        Args:
            operation: Operation name (e.g., "cache.get")
            duration_ms: Measured duration
            success: Whether the operation succeeded
            context: Optional caller context

        Returns:
            The recorded sample
        """
        sample = PerformanceSample(
            timestamp=self._time_source.now(),
            operation=operation,
            duration_ms=float(duration_ms),
            memory_mb=self._read_memory(),
            success=success,
            context=context,
        )
        with self._lock:
            self._samples.append(sample)
            self._prune_locked(sample.timestamp)

        if success:
            self._metrics.record_operation(operation, sample.duration_ms)
        else:
            self._metrics.record_failure(operation, "operation_failure")

        for alert in self._alerts.evaluate(sample):
            if alert.severity is AlertSeverity.CRITICAL:
                self._attempt_recovery(operation)
        return sample

    def record_error(
        self,
        error: BaseException | str,
        operation: str,
        context: Mapping[str, Any] | None = None,
    ) -> ErrorEvent:
        """
        Record a failure and classify its severity.

        Critical errors trigger the recovery strategies that match the
        operation name.

        Args:
            error: Exception or message
            operation: Operation that failed
            context: Optional caller context

        Returns:
            The recorded event
        """
        severity = classify_error(error, operation)
        event = ErrorEvent(
            timestamp=self._time_source.now(),
            operation=operation,
            error=str(error),
            error_type=type(error).__name__ if isinstance(error, BaseException) else "Error",
            severity=severity,
            context=context,
        )
        with self._lock:
            self._errors.append(event)
            self._prune_locked(event.timestamp)

        logger.log(
            severity.log_level,
            "Temporal operation %s failed: %s",
            operation,
            event.error,
            extra={
                "operation": operation,
                "severity": severity.value,
                "error_type": event.error_type,
            },
        )

        if severity is AlertSeverity.CRITICAL:
            attempts = self._attempt_recovery(operation)
            if attempts and all(a.success for a in attempts):
                event.resolved = True
        return event

    @contextlib.contextmanager
    def measure(self, operation: str) -> Generator[None, None, None]:
        """
        Time a block and record it as a sample.

        An exception is recorded as a failed sample plus an error event
        and re-raised.

        Example:
            >>> with monitor.measure("legacy.convert"):
            ...     converter.convert("15/01/2025")
        """
        started = time.perf_counter()
        try:
            yield
        except Exception as e:
            self.record_latency(operation, (time.perf_counter() - started) * 1000, success=False)
            self.record_error(e, operation)
            raise
        self.record_latency(operation, (time.perf_counter() - started) * 1000)

    async def measure_async(self, operation: str, awaitable: Awaitable[R]) -> R:
        """Await an awaitable and record its duration like measure()."""
        with self.measure(operation):
            return await awaitable

    def _read_memory(self) -> float:
        try:
            return float(self._memory_probe())
        except Exception as e:
            logger.warning("Memory probe failed: %s", e)
            return 0.0

    # =========================================================================
    # Health
    # =========================================================================

    def health(self) -> HealthSnapshot:
        """
        Compute the current health snapshot and append it to the history.

        Returns:
            HealthSnapshot over the recent window
        """
        now = self._time_source.now()
        components = self.probe_components()
        memory_mb = self._read_memory()

        since = now - int(self.config.window_s * 1000)
        with self._lock:
            samples = tuple(s for s in self._samples if s.timestamp >= since)
            errors = tuple(e for e in self._errors if e.timestamp >= since)

        average = sum(s.duration_ms for s in samples) / len(samples) if samples else 0.0
        if samples:
            error_rate = min(len(errors) / len(samples), 1.0)
        else:
            error_rate = 1.0 if errors else 0.0

        status = self._status(samples, components, average, error_rate, memory_mb)
        score = self._score(status, components, average, error_rate, memory_mb)

        snapshot = HealthSnapshot(
            timestamp=now,
            status=status,
            score=score,
            components=components,
            average_latency_ms=average,
            error_rate=error_rate,
            memory_mb=memory_mb,
            uptime_s=max(now - self._started_at, 0) / 1000,
            sample_count=len(samples),
            recent_errors=errors[-_RECENT_ERROR_LIMIT:],
            recent_samples=samples,
        )

        with self._lock:
            self._history.append(snapshot)
            self._prune_locked(now)
            previous, self._last_status = self._last_status, status

        if previous is not status:
            logger.log(
                status.log_level,
                "Temporal health changed: %s -> %s (score %.1f)",
                previous.value if previous else "unknown",
                status.value,
                score,
                extra={"status": status.value, "score": score, "error_rate": error_rate},
            )
        return snapshot

    def _status(
        self,
        samples: tuple[PerformanceSample, ...],
        components: Mapping[str, ComponentHealth],
        average: float,
        error_rate: float,
        memory_mb: float,
    ) -> HealthStatus:
        cfg = self.config
        time_probe = components.get("time_source")
        if not samples and time_probe is not None and time_probe.status is ServiceStatus.OFFLINE:
            return HealthStatus.DOWN
        if components and all(c.status is ServiceStatus.OFFLINE for c in components.values()):
            return HealthStatus.OFFLINE

        if (
            error_rate > cfg.critical_error_rate
            or average > cfg.target_latency_ms * cfg.critical_latency_factor
        ):
            return HealthStatus.CRITICAL
        if (
            error_rate > cfg.warning_error_rate
            or average > cfg.target_latency_ms * cfg.warning_latency_factor
            or memory_mb > cfg.memory_budget_mb * cfg.warning_memory_ratio
        ):
            return HealthStatus.WARNING
        return HealthStatus.HEALTHY

    def _score(
        self,
        status: HealthStatus,
        components: Mapping[str, ComponentHealth],
        average: float,
        error_rate: float,
        memory_mb: float,
    ) -> float:
        if status in (HealthStatus.DOWN, HealthStatus.OFFLINE):
            return 0.0

        cfg = self.config
        score = 100.0
        score -= min(40.0, error_rate * 400)
        if average > cfg.target_latency_ms:
            score -= min(30.0, (average / cfg.target_latency_ms - 1) * 7.5)
        memory_ratio = memory_mb / cfg.memory_budget_mb
        if memory_ratio > cfg.warning_memory_ratio:
            score -= min(15.0, (memory_ratio - cfg.warning_memory_ratio) * 75)
        for component in components.values():
            if component.status is ServiceStatus.DEGRADED:
                score -= 5
            elif component.status is ServiceStatus.OFFLINE:
                score -= 15
        return round(min(max(score, 0.0), 100.0), 1)

    # =========================================================================
    # Component probes
    # =========================================================================

    def probe_components(self) -> dict[str, ComponentHealth]:
        """
        Call a cheap representative operation on every known component.

        Returns:
            ComponentHealth by component name
        """
        probes: dict[str, Callable[[], str | None]] = {"time_source": self._probe_time_source}
        if self._cache is not None:
            probes["cache"] = self._probe_cache
        if self._converter is not None:
            probes["legacy_converter"] = self._probe_converter
        if self._stamper is not None:
            probes["stamper"] = self._probe_stamper
        if self._engine is not None:
            probes["migration_engine"] = self._probe_engine

        return {name: self._run_probe(name, probe) for name, probe in probes.items()}

    def _run_probe(self, name: str, probe: Callable[[], str | None]) -> ComponentHealth:
        started = time.perf_counter()
        try:
            degraded_reason = probe()
        except Exception as e:
            latency = (time.perf_counter() - started) * 1000
            logger.warning("Health probe for %s failed: %s", name, e)
            return ComponentHealth(name, ServiceStatus.OFFLINE, latency, str(e))

        latency = (time.perf_counter() - started) * 1000
        if degraded_reason is not None:
            return ComponentHealth(name, ServiceStatus.DEGRADED, latency, degraded_reason)
        if latency > self.config.probe_degraded_ms:
            return ComponentHealth(
                name,
                ServiceStatus.DEGRADED,
                latency,
                f"probe took {latency:.3f}ms",
            )
        return ComponentHealth(name, ServiceStatus.ONLINE, latency)

    def _probe_time_source(self) -> str | None:
        fallbacks = self._time_source.stats["fallbacks"]
        instant = self._time_source.now()
        if not self._time_source.is_valid(instant):
            raise ValueError(f"time source produced invalid instant {instant!r}")
        if self._time_source.stats["fallbacks"] > fallbacks:
            return "clock fault, using platform clock"
        return None

    def _probe_cache(self) -> str | None:
        assert self._cache is not None
        # Round trip through a scratch cache; the live one is only read.
        scratch = TimestampCache(self._time_source, self._cache.config, enable_metrics=False)
        instant = self._time_source.now()
        scratch.put(PROBE_CACHE_KEY, instant)
        if scratch.get(PROBE_CACHE_KEY) != instant:
            return "cache returned a different value"
        if len(self._cache) > self._cache.config.max_size:
            return f"cache holds {len(self._cache)} entries, above max_size"
        return None

    def _probe_converter(self) -> str | None:
        assert self._converter is not None
        if not self._converter.detect(PROBE_LEGACY_VALUE).detected:
            raise ValueError(f"converter did not recognize {PROBE_LEGACY_VALUE!r}")
        return None

    def _probe_stamper(self) -> str | None:
        assert self._stamper is not None
        stamped = self._stamper.stamp({"probe": True})
        if not self._time_source.is_valid(stamped.get("createdAt")):
            raise ValueError("stamper produced an invalid createdAt")
        return None

    def _probe_engine(self) -> str | None:
        assert self._engine is not None
        if self._engine.is_running:
            return "migration in progress"
        return None

    # =========================================================================
    # Alerts
    # =========================================================================

    def add_alert_rule(self, rule: AlertRule) -> None:
        """Add or replace an alert rule."""
        self._alerts.add_rule(rule)

    def remove_alert_rule(self, rule_id: str) -> bool:
        return self._alerts.remove_rule(rule_id)

    def on_alert(self, listener: Callable[[Alert], Any]) -> Unsubscribe:
        """Register a listener for fired alerts."""
        return self._alerts.on_alert(listener)

    @property
    def alerts(self) -> AlertManager:
        return self._alerts

    # =========================================================================
    # Recovery
    # =========================================================================

    def register_recovery(self, keyword: str, strategy: RecoveryStrategy) -> None:
        """
        Register a recovery strategy for operations whose name contains keyword.

        A strategy receives the failing operation name. It may return an
        awaitable, which is scheduled on the running loop (or run to
        completion when no loop is running).
        """
        with self._lock:
            self._strategies[keyword.lower()] = strategy

    def _register_default_strategies(self) -> None:
        for keyword in ("timesource", "time_source", "timestamp"):
            self.register_recovery(keyword, self._refresh_time_source)
        if self._cache is not None:
            self.register_recovery("cache", self._rebuild_cache)
        if self._engine is not None:
            self.register_recovery("migration", self._schedule_rollback)

    def _refresh_time_source(self, operation: str) -> None:
        instant = self._time_source.now()
        if not self._time_source.is_valid(instant):
            raise ValueError(f"fresh read still invalid: {instant!r}")
        logger.info("Forced fresh time source read after %s failure", operation)

    def _rebuild_cache(self, operation: str) -> None:
        assert self._cache is not None
        self._cache.clear()
        logger.info("Cleared timestamp cache after %s failure", operation)

    async def _schedule_rollback(self, operation: str) -> None:
        assert self._engine is not None
        try:
            result = await self._engine.rollback()
        except MigrationInProgressError:
            logger.warning("Rollback after %s failure skipped: migration in progress", operation)
            return
        logger.info(
            "Rolled back migration after %s failure: restored %d entities",
            operation,
            result.restored_count,
        )

    def _attempt_recovery(self, operation: str) -> list[RecoveryAttempt]:
        op = operation.lower()
        now = self._time_source.now()
        window_ms = int(self.config.window_s * 1000)

        with self._lock:
            matching = [(k, s) for k, s in self._strategies.items() if k in op]

        attempts: list[RecoveryAttempt] = []
        for keyword, strategy in matching:
            with self._lock:
                times = self._recovery_times.setdefault(keyword, deque())
                while times and now - times[0] >= window_ms:
                    times.popleft()
                if len(times) >= self.config.max_recovery_attempts:
                    logger.warning(
                        "Recovery for %s skipped: %d attempts within %.0fs",
                        operation,
                        len(times),
                        self.config.window_s,
                    )
                    continue
                times.append(now)

            attempt = self._run_strategy(operation, keyword, strategy, now)
            with self._lock:
                self._recovery_log.append(attempt)
            attempts.append(attempt)
        return attempts

    def _run_strategy(
        self,
        operation: str,
        keyword: str,
        strategy: RecoveryStrategy,
        now: Instant,
    ) -> RecoveryAttempt:
        try:
            result = strategy(operation)
            if inspect.isawaitable(result):
                self._schedule(result)
        except Exception as e:
            logger.warning("Recovery strategy %s for %s failed: %s", keyword, operation, e)
            return RecoveryAttempt(operation, keyword, now, success=False, error=str(e))
        logger.info("Recovery strategy %s ran for %s", keyword, operation)
        return RecoveryAttempt(operation, keyword, now, success=True)

    def _schedule(self, awaitable: Awaitable[Any]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            asyncio.run(_await(awaitable))
            return
        task = loop.create_task(_await(awaitable))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    # =========================================================================
    # Retention and reporting
    # =========================================================================

    def prune(self) -> int:
        """
        Drop samples, errors and snapshots older than their retention.

        Returns:
            Number of items removed
        """
        with self._lock:
            return self._prune_locked(self._time_source.now())

    def _prune_locked(self, now: Instant) -> int:
        sample_cutoff = now - int(self.config.sample_retention_s * 1000)
        history_cutoff = now - int(self.config.history_retention_s * 1000)
        removed = 0
        while self._samples and self._samples[0].timestamp < sample_cutoff:
            self._samples.popleft()
            removed += 1
        while self._errors and self._errors[0].timestamp < sample_cutoff:
            self._errors.popleft()
            removed += 1
        while self._history and self._history[0].timestamp < history_cutoff:
            self._history.popleft()
            removed += 1
        return removed

    def trends(self, hours: float = 24) -> PerformanceTrends:
        """
        Aggregate samples over the last hours.

        Returns:
            PerformanceTrends; hourly distribution is keyed by UTC hour
        """
        since = self._time_source.now() - int(hours * _HOUR_MS)
        with self._lock:
            samples = [s for s in self._samples if s.timestamp >= since]

        if not samples:
            return PerformanceTrends(window_hours=hours)

        hourly = Counter(instant_to_datetime(s.timestamp).hour for s in samples)
        return PerformanceTrends(
            window_hours=hours,
            total_operations=len(samples),
            average_latency_ms=sum(s.duration_ms for s in samples) / len(samples),
            success_rate=sum(1 for s in samples if s.success) / len(samples),
            peak_latency_ms=max(s.duration_ms for s in samples),
            operation_breakdown=dict(Counter(s.operation for s in samples)),
            hourly_distribution=dict(sorted(hourly.items())),
            memory_trend=tuple((s.timestamp, s.memory_mb) for s in samples),
        )

    def dashboard(self) -> dict[str, Any]:
        """
        Collect health, trends, recent errors and alerts in one document.

        Returns:
            JSON-compatible dictionary
        """
        from temporalfix import __version__

        snapshot = self.health()
        now = snapshot.timestamp
        day_start = now - now % _DAY_MS
        with self._lock:
            recent_errors = [e.to_dict() for e in self._errors if e.timestamp >= now - _HOUR_MS]
            operations_today = sum(1 for s in self._samples if s.timestamp >= day_start)

        return {
            "timestamp": now,
            "health": snapshot.to_dict(),
            "performance": self.trends(24).to_dict(),
            "recent_errors": recent_errors,
            "alerts": [a.to_dict() for a in self._alerts.history],
            "system": {
                "version": __version__,
                "uptime_s": snapshot.uptime_s,
                "memory_mb": snapshot.memory_mb,
                "operations_today": operations_today,
            },
        }

    @property
    def history(self) -> list[HealthSnapshot]:
        """Computed snapshots within the history retention, oldest first."""
        with self._lock:
            return list(self._history)

    @property
    def recent_errors(self) -> list[ErrorEvent]:
        with self._lock:
            return list(self._errors)

    @property
    def samples(self) -> list[PerformanceSample]:
        with self._lock:
            return list(self._samples)

    @property
    def recovery_attempts(self) -> list[RecoveryAttempt]:
        with self._lock:
            return list(self._recovery_log)

    # =========================================================================
    # Background loop
    # =========================================================================

    async def start(self) -> None:
        """Start periodic health evaluation on the running event loop."""
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.create_task(self._loop(), name="temporalfix-health-monitor")
        logger.info("Health monitor started (interval %.0fs)", self.config.interval_s)

    async def stop(self) -> None:
        """Stop periodic evaluation and wait for scheduled recoveries."""
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
            logger.info("Health monitor stopped")
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.interval_s)
            try:
                self.health()
                self.prune()
            except Exception as e:
                logger.exception("Health evaluation failed: %s", e)


async def _await(awaitable: Awaitable[Any]) -> Any:
    return await awaitable


__all__ = [
    "HealthMonitor",
    "RecoveryStrategy",
    "classify_error",
    "process_memory_mb",
]
