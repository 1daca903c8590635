"""
TemporalContext - One explicitly constructed set of temporal components.

The context is the composition root of the library. It is built once at
process start and handed to whoever needs it; there are no module-level
instances. Every component receives its collaborators through its
constructor, so tests can build as many isolated contexts as they like.

Example:
    >>> from temporalfix import TemporalContext
    >>>
    >>> async with TemporalContext.create(store) as ctx:
    ...     record = ctx.stamp({"title": "draft"})
    ...     report = await ctx.migrate()
    ...     print(ctx.health().status)
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from temporalfix.cache import TimestampCache
from temporalfix.config import TemporalConfig
from temporalfix.health.models import HealthSnapshot
from temporalfix.health.monitor import HealthMonitor
from temporalfix.legacy.converter import CompatibilityResult, LegacyFormatConverter
from temporalfix.legacy.formats import LegacyFormat, LegacyFormatType
from temporalfix.migration.engine import MigrationEngine
from temporalfix.migration.models import (
    ExecutionResult,
    Inconsistency,
    MigrationPlan,
    MigrationProgress,
    MigrationReport,
    RollbackResult,
)
from temporalfix.stamping import StampOperation, Stamper
from temporalfix.stores.in_memory import InMemoryKeyValueStore
from temporalfix.stores.interface import KeyValueStore
from temporalfix.timesource import TimeSource
from temporalfix.types import Clock, Instant, Record, Unsubscribe

logger = logging.getLogger(__name__)


class TemporalContext:
    """
    Holds the time source, cache, converter, stamper, migration engine and
    health monitor that make up one temporal subsystem.

    Use create() to build a context from configuration; the constructor
    accepts already-built components.

    Attributes:
        config: Configuration the components were built from
        time_source: Single source of instants
        cache: Timestamp cache
        converter: Legacy format converter
        stamper: Record stamper
        engine: Migration engine over the store
        monitor: Health monitor observing the other components
    """

    def __init__(
        self,
        *,
        config: TemporalConfig,
        time_source: TimeSource,
        cache: TimestampCache,
        converter: LegacyFormatConverter,
        stamper: Stamper,
        engine: MigrationEngine,
        monitor: HealthMonitor,
    ) -> None:
        self.config = config
        self.time_source = time_source
        self.cache = cache
        self.converter = converter
        self.stamper = stamper
        self.engine = engine
        self.monitor = monitor
        self._started = False

    @classmethod
    def create(
        cls,
        store: KeyValueStore | None = None,
        config: TemporalConfig | None = None,
        *,
        clock: Clock | None = None,
        sources: Mapping[str, KeyValueStore] | None = None,
        memory_probe: Callable[[], float] | None = None,
    ) -> TemporalContext:
        """
        Build every component once from configuration.

        Args:
            store: Primary key/value store (default: a new in-memory store)
            config: Configuration (default: TemporalConfig())
            clock: Clock for the time source (default: the system clock)
            sources: Additional named stores scanned by the migration engine
            memory_probe: Memory reader for the health monitor

        Returns:
            A new, independent TemporalContext
        """
        config = config or TemporalConfig()
        time_source = TimeSource(
            clock,
            performance_budget_ms=config.performance_budget_ms,
            default_timezone=config.default_timezone,
        )
        cache = TimestampCache(time_source, config.cache, enable_metrics=config.enable_metrics)
        converter = LegacyFormatConverter(
            time_source, config.compatibility, enable_metrics=config.enable_metrics
        )
        stamper = Stamper(time_source, schema_version=config.migration.schema_version)
        engine = MigrationEngine(
            store if store is not None else InMemoryKeyValueStore(),
            time_source,
            converter,
            stamper,
            config=config.migration,
            sources=sources,
            enable_tracing=config.enable_tracing,
            enable_metrics=config.enable_metrics,
        )
        monitor = HealthMonitor(
            time_source,
            cache=cache,
            converter=converter,
            stamper=stamper,
            engine=engine,
            config=config.health,
            memory_probe=memory_probe,
            enable_metrics=config.enable_metrics,
        )
        logger.debug(
            "Created temporal context (sources=%s, tracing=%s, metrics=%s)",
            sorted(engine.sources),
            config.enable_tracing,
            config.enable_metrics,
        )
        return cls(
            config=config,
            time_source=time_source,
            cache=cache,
            converter=converter,
            stamper=stamper,
            engine=engine,
            monitor=monitor,
        )

    # =========================================================================
    # Time
    # =========================================================================

    def now(self) -> Instant:
        return self.time_source.now()

    def format(self, instant: Any, timezone: str | None = None) -> str:
        return self.time_source.format(instant, timezone)

    def is_valid(self, instant: Any) -> bool:
        return self.time_source.is_valid(instant)

    # =========================================================================
    # Stamping
    # =========================================================================

    def stamp(self, record: Mapping[str, Any]) -> Record:
        """Stamp a new record (createdAt, updatedAt, schemaVersion)."""
        with self.monitor.measure("stamper.stamp"):
            return self.stamper.stamp(record)

    def apply_operation(self, operation: StampOperation | str, record: Mapping[str, Any]) -> Record:
        """Apply a named stamping operation such as "update" or "custom-share"."""
        name = operation.value if isinstance(operation, StampOperation) else operation
        with self.monitor.measure(f"stamper.{name}"):
            return self.stamper.apply_operation(operation, record)

    # =========================================================================
    # Cache
    # =========================================================================

    def cache_get(self, key: str) -> Instant | None:
        return self.cache.get(key)

    def cache_put(self, key: str, instant: Instant) -> None:
        self.cache.put(key, instant)

    # =========================================================================
    # Legacy formats
    # =========================================================================

    def detect_legacy(self, value: Any) -> LegacyFormat:
        return self.converter.detect(value)

    def convert_legacy(
        self,
        value: Any,
        format: LegacyFormat | LegacyFormatType | None = None,
    ) -> Instant:
        """Convert a legacy value to an instant; never raises."""
        with self.monitor.measure("legacy.convert"):
            return self.converter.convert(value, format)

    def support_legacy(self, value: Any, function: str = "support_legacy") -> CompatibilityResult:
        return self.converter.support_legacy(value, function)

    # =========================================================================
    # Migration
    # =========================================================================

    async def scan(self) -> list[Inconsistency]:
        return await self.monitor.measure_async("migration.scan", self.engine.scan())

    def plan(self, inconsistencies: Sequence[Inconsistency]) -> MigrationPlan:
        return self.engine.plan(inconsistencies)

    async def execute(self, plan: MigrationPlan) -> ExecutionResult:
        """Execute a plan; step failures are reported in the result."""
        result = await self.monitor.measure_async("migration.execute", self.engine.execute(plan))
        for error in result.errors:
            self.monitor.record_error(error, "migration.execute")
        return result

    async def validate(self) -> bool:
        return await self.engine.validate()

    async def rollback(self) -> RollbackResult:
        return await self.engine.rollback()

    async def migrate(self) -> MigrationReport:
        """Run a full migration pass and return its report."""
        return await self.monitor.measure_async("migration.migrate", self.engine.migrate())

    def on_progress(self, callback: Callable[[MigrationProgress], Any]) -> Unsubscribe:
        return self.engine.on_progress(callback)

    # =========================================================================
    # Health
    # =========================================================================

    def health(self) -> HealthSnapshot:
        return self.monitor.health()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Start cache maintenance and periodic health evaluation."""
        if self._started:
            return
        await self.cache.start()
        await self.monitor.start()
        self._started = True
        logger.info("Temporal context started")

    async def stop(self) -> None:
        """Stop the background tasks started by start()."""
        if not self._started:
            return
        await self.monitor.stop()
        await self.cache.stop()
        self._started = False
        logger.info("Temporal context stopped")

    @property
    def is_started(self) -> bool:
        return self._started

    async def __aenter__(self) -> TemporalContext:
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        """Async context manager exit."""
        await self.stop()


__all__ = ["TemporalContext"]
