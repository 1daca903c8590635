"""
Configuration classes for the temporalfix components.

This module provides:
- CacheConfig: Sizing, TTL and eviction policy of the timestamp cache
- CompatibilityConfig: Deprecation throttling and usage logging of the legacy converter
- MigrationConfig: Batching, backup and failure budget of a migration pass
- HealthConfig: Targets, budgets and retention windows of the health monitor
- TemporalConfig: Aggregate configuration consumed by TemporalContext

All configuration objects are immutable and validate themselves on
construction, raising ValueError with guidance on acceptable values.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any

from temporalfix.types import CURRENT_SCHEMA_VERSION

# Milliseconds per minute / second, used for defaults
_MINUTE_MS = 60_000
_DAY_S = 86_400.0


@dataclass(frozen=True)
class CacheConfig:
    """
    Configuration for the timestamp cache.

    Attributes:
        max_size: Maximum number of entries before an eviction pass runs
        ttl_ms: Entry lifetime in milliseconds; older entries are misses
        intelligent_eviction: Use score-based eviction (False selects FIFO)
        maintenance_interval_s: Seconds between background purge passes
        response_time_samples: Rolling window size for average response time
        response_time_threshold_ms: Average response time considered slow

    Example:
        >>> config = CacheConfig(max_size=500, ttl_ms=30_000)
    """

    max_size: int = 100
    ttl_ms: int = _MINUTE_MS
    intelligent_eviction: bool = True
    maintenance_interval_s: float = 300.0
    response_time_samples: int = 1000
    response_time_threshold_ms: float = 1.0

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.max_size < 1:
            raise ValueError(
                f"max_size must be positive, got {self.max_size}. "
                "Use a value like 100 (default)."
            )
        if self.ttl_ms <= 0:
            raise ValueError(
                f"ttl_ms must be positive, got {self.ttl_ms}. Use a value like 60000 (default)."
            )
        if self.maintenance_interval_s <= 0:
            raise ValueError(
                f"maintenance_interval_s must be positive, got {self.maintenance_interval_s}."
            )
        if self.response_time_samples < 1:
            raise ValueError(
                f"response_time_samples must be >= 1, got {self.response_time_samples}."
            )
        if self.response_time_threshold_ms <= 0:
            raise ValueError(
                f"response_time_threshold_ms must be positive, "
                f"got {self.response_time_threshold_ms}."
            )


@dataclass(frozen=True)
class CompatibilityConfig:
    """
    Configuration for the legacy format converter.

    Attributes:
        warning_window_ms: Minimum interval between repeated deprecation
            warnings for the same (function, format) pair
        usage_log_size: Number of most recent legacy calls kept for analytics
        emit_deprecation_warnings: Whether deprecation warnings are logged at all
        century_pivot: Two-digit years below this value map to 20xx, others to 19xx
    """

    warning_window_ms: int = 5 * _MINUTE_MS
    usage_log_size: int = 1000
    emit_deprecation_warnings: bool = True
    century_pivot: int = 50

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.warning_window_ms < 0:
            raise ValueError(f"warning_window_ms must be >= 0, got {self.warning_window_ms}.")
        if self.usage_log_size < 1:
            raise ValueError(
                f"usage_log_size must be >= 1, got {self.usage_log_size}. "
                "Use a value between 500 and 1000 for useful analytics."
            )
        if not 0 <= self.century_pivot <= 99:
            raise ValueError(f"century_pivot must be between 0 and 99, got {self.century_pivot}.")


@dataclass(frozen=True)
class MigrationConfig:
    """
    Configuration for a migration pass.

    Attributes:
        batch_size: Steps processed between cooperative yields
        validate_before_migration: Re-check each entity before mutating it
        create_backup: Snapshot touched entities before any mutation
        rollback_on_error: Restore the backup automatically when the pass fails
        dry_run: Plan and count steps without writing to the store
        max_errors_before_stop: Step failures tolerated before the pass aborts
        schema_version: Version tag written to migrated records

    Example:
        >>> config = MigrationConfig(batch_size=50, dry_run=True)
    """

    batch_size: int = 100
    validate_before_migration: bool = True
    create_backup: bool = True
    rollback_on_error: bool = True
    dry_run: bool = False
    max_errors_before_stop: int = 10
    schema_version: str = CURRENT_SCHEMA_VERSION

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.batch_size < 1:
            raise ValueError(
                f"batch_size must be positive, got {self.batch_size}. "
                "Use a value like 100 (default) or adjust based on store latency."
            )
        if self.max_errors_before_stop < 0:
            raise ValueError(
                f"max_errors_before_stop must be >= 0, got {self.max_errors_before_stop}."
            )
        if not self.schema_version:
            raise ValueError("schema_version must be a non-empty string.")


@dataclass(frozen=True)
class HealthConfig:
    """
    Thresholds and retention windows for the health monitor.

    Attributes:
        target_latency_ms: Expected latency of a single core operation
        memory_budget_mb: Process memory considered the full budget
        window_s: Recent window used to compute health status
        sample_retention_s: How long latency and error samples are kept
        history_retention_s: How long computed health snapshots are kept
        interval_s: Seconds between background health evaluations
        probe_degraded_ms: Probe latency above which a component is degraded
        max_recovery_attempts: Auto-recovery attempts per operation per window
    """

    target_latency_ms: float = 1.0
    memory_budget_mb: float = 100.0
    window_s: float = 300.0
    sample_retention_s: float = 7 * _DAY_S
    history_retention_s: float = _DAY_S
    interval_s: float = 60.0
    probe_degraded_ms: float = 10.0
    max_recovery_attempts: int = 3

    # Status thresholds
    warning_error_rate: float = 0.05
    critical_error_rate: float = 0.10
    warning_latency_factor: float = 2.0
    critical_latency_factor: float = 5.0
    warning_memory_ratio: float = 0.8

    def __post_init__(self) -> None:
        """Validate configuration values."""
        for name in (
            "target_latency_ms",
            "memory_budget_mb",
            "window_s",
            "sample_retention_s",
            "history_retention_s",
            "interval_s",
            "probe_degraded_ms",
        ):
            value = getattr(self, name)
            if value <= 0:
                raise ValueError(f"{name} must be positive, got {value}.")
        if self.max_recovery_attempts < 0:
            raise ValueError(
                f"max_recovery_attempts must be >= 0, got {self.max_recovery_attempts}."
            )
        if not 0.0 <= self.warning_error_rate <= self.critical_error_rate <= 1.0:
            raise ValueError(
                "error rate thresholds must satisfy "
                "0 <= warning_error_rate <= critical_error_rate <= 1, "
                f"got {self.warning_error_rate} and {self.critical_error_rate}."
            )
        if not 1.0 <= self.warning_latency_factor <= self.critical_latency_factor:
            raise ValueError(
                "latency factors must satisfy 1 <= warning <= critical, "
                f"got {self.warning_latency_factor} and {self.critical_latency_factor}."
            )


@dataclass(frozen=True)
class TemporalConfig:
    """
    Aggregate configuration for a TemporalContext.

    Attributes:
        cache: Timestamp cache settings
        compatibility: Legacy converter settings
        migration: Migration engine settings
        health: Health monitor settings
        default_timezone: Timezone used by format() when none is given
        performance_budget_ms: Budget for a single now() call before warning
        enable_tracing: Whether components create OpenTelemetry spans
        enable_metrics: Whether components record OpenTelemetry metrics

    Example:
        >>> config = TemporalConfig.from_dict({
        ...     "cache": {"max_size": 250},
        ...     "migration": {"batch_size": 20},
        ... })
    """

    cache: CacheConfig = field(default_factory=CacheConfig)
    compatibility: CompatibilityConfig = field(default_factory=CompatibilityConfig)
    migration: MigrationConfig = field(default_factory=MigrationConfig)
    health: HealthConfig = field(default_factory=HealthConfig)
    default_timezone: str = "UTC"
    performance_budget_ms: float = 1.0
    enable_tracing: bool = True
    enable_metrics: bool = True

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.performance_budget_ms <= 0:
            raise ValueError(
                f"performance_budget_ms must be positive, got {self.performance_budget_ms}."
            )
        if not self.default_timezone:
            raise ValueError("default_timezone must be a non-empty timezone name.")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TemporalConfig:
        """
        Build a configuration from a plain mapping (e.g. parsed JSON/TOML).

        Nested sections are converted to their dataclasses; unknown keys
        raise ValueError so typos do not silently fall back to defaults.

        Args:
            data: Mapping with optional "cache", "compatibility", "migration"
                and "health" sections plus top-level scalar options

        Returns:
            Validated TemporalConfig
        """
        sections: dict[str, type[Any]] = {
            "cache": CacheConfig,
            "compatibility": CompatibilityConfig,
            "migration": MigrationConfig,
            "health": HealthConfig,
        }
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown configuration keys: {sorted(unknown)}")

        kwargs: dict[str, Any] = {}
        for key, value in data.items():
            section_cls = sections.get(key)
            if section_cls is not None and isinstance(value, dict):
                section_known = {f.name for f in fields(section_cls)}
                bad = set(value) - section_known
                if bad:
                    raise ValueError(f"Unknown keys in '{key}' section: {sorted(bad)}")
                kwargs[key] = section_cls(**value)
            else:
                kwargs[key] = value
        return cls(**kwargs)


def create_testing_config() -> TemporalConfig:
    """
    Create a configuration suited to unit tests.

    Disables tracing and metrics and uses small batches so that
    batch boundaries are exercised with little data.

    Returns:
        TemporalConfig for tests
    """
    return TemporalConfig(
        migration=MigrationConfig(batch_size=2),
        enable_tracing=False,
        enable_metrics=False,
    )


__all__ = [
    "CacheConfig",
    "CompatibilityConfig",
    "MigrationConfig",
    "HealthConfig",
    "TemporalConfig",
    "create_testing_config",
]
