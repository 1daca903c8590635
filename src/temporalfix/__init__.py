"""
temporalfix - Trusted timestamps and timestamp migrations for key/value data.

This library provides:
- TimeSource: monotonic, validated instants with ISO-8601 formatting
- TimestampCache: TTL cache with access-scored eviction and real metrics
- LegacyFormatConverter: detection and conversion of legacy date values
- Stamper: createdAt/updatedAt/schemaVersion stamping with events
- MigrationEngine: scan, plan, backup, execute, validate and roll back
- HealthMonitor: latency/error tracking, probes, alerts and auto-recovery
- TemporalContext: one explicitly constructed set of all of the above
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("temporalfix")
except PackageNotFoundError:
    # Package not installed (running from source without install)
    __version__ = "0.0.0.dev0"

# Cache
from temporalfix.cache import CacheEntry, CacheMetrics, CacheReport, TimestampCache

# Observer channels
from temporalfix.channels import Channel

# Configuration
from temporalfix.config import (
    CacheConfig,
    CompatibilityConfig,
    HealthConfig,
    MigrationConfig,
    TemporalConfig,
    create_testing_config,
)

# Composition root
from temporalfix.context import TemporalContext

# Exceptions
from temporalfix.exceptions import (
    CacheConsistencyError,
    ConversionError,
    StoreError,
    TemporalFixError,
    ValidationError,
)

# Health
from temporalfix.health import (
    Alert,
    AlertChannel,
    AlertManager,
    AlertRule,
    AlertSeverity,
    ComponentHealth,
    ErrorEvent,
    HealthMonitor,
    HealthSnapshot,
    HealthStatus,
    PerformanceSample,
    PerformanceTrends,
    ServiceStatus,
    default_alert_rules,
)

# Legacy formats
from temporalfix.legacy import (
    CompatibilityResult,
    LegacyFormat,
    LegacyFormatConverter,
    LegacyFormatType,
)

# Migration
from temporalfix.migration import (
    BackupSnapshot,
    ExecutionResult,
    Inconsistency,
    MigrationEngine,
    MigrationError,
    MigrationFatalError,
    MigrationInProgressError,
    MigrationPhase,
    MigrationPlan,
    MigrationProgress,
    MigrationReport,
    MigrationStep,
    MigrationStepError,
    RollbackResult,
    Severity,
)

# Stamping
from temporalfix.stamping import StampEvent, StampOperation, Stamper

# Stores
from temporalfix.stores import (
    InMemoryKeyValueStore,
    KeyValueStore,
    SQLAlchemyKeyValueStore,
    SQLiteKeyValueStore,
)

# Time
from temporalfix.throttle import ExpiringKeyRegistry
from temporalfix.timesource import INVALID_DATE, TimeSource
from temporalfix.types import (
    CURRENT_SCHEMA_VERSION,
    MAX_VALID_INSTANT,
    MIN_VALID_INSTANT,
    Instant,
    Record,
)

__all__ = [
    "__version__",
    # Context
    "TemporalContext",
    # Types
    "CURRENT_SCHEMA_VERSION",
    "INVALID_DATE",
    "Instant",
    "MAX_VALID_INSTANT",
    "MIN_VALID_INSTANT",
    "Record",
    # Configuration
    "CacheConfig",
    "CompatibilityConfig",
    "HealthConfig",
    "MigrationConfig",
    "TemporalConfig",
    "create_testing_config",
    # Exceptions
    "CacheConsistencyError",
    "ConversionError",
    "StoreError",
    "TemporalFixError",
    "ValidationError",
    # Core components
    "Channel",
    "ExpiringKeyRegistry",
    "TimeSource",
    "CacheEntry",
    "CacheMetrics",
    "CacheReport",
    "TimestampCache",
    "CompatibilityResult",
    "LegacyFormat",
    "LegacyFormatConverter",
    "LegacyFormatType",
    "StampEvent",
    "StampOperation",
    "Stamper",
    # Stores
    "InMemoryKeyValueStore",
    "KeyValueStore",
    "SQLAlchemyKeyValueStore",
    "SQLiteKeyValueStore",
    # Migration
    "BackupSnapshot",
    "ExecutionResult",
    "Inconsistency",
    "MigrationEngine",
    "MigrationError",
    "MigrationFatalError",
    "MigrationInProgressError",
    "MigrationPhase",
    "MigrationPlan",
    "MigrationProgress",
    "MigrationReport",
    "MigrationStep",
    "MigrationStepError",
    "RollbackResult",
    "Severity",
    # Health
    "Alert",
    "AlertChannel",
    "AlertManager",
    "AlertRule",
    "AlertSeverity",
    "ComponentHealth",
    "ErrorEvent",
    "HealthMonitor",
    "HealthSnapshot",
    "HealthStatus",
    "PerformanceSample",
    "PerformanceTrends",
    "ServiceStatus",
    "default_alert_rules",
]
