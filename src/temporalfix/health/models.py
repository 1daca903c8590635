"""
Data models for the health monitor.

Provides:
- HealthStatus / ServiceStatus: Overall and per-component status levels
- AlertSeverity / AlertChannel: How bad an alert is and where it goes
- PerformanceSample / ErrorEvent: Raw observations
- ComponentHealth / HealthSnapshot: Computed health
- PerformanceTrends: Aggregates over a longer window
- Alert / RecoveryAttempt: Records of alert firings and recovery attempts
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from temporalfix.types import Instant


class HealthStatus(Enum):
    """
    Overall health levels.

    Indicates the state of the temporal subsystem as a whole.
    """

    HEALTHY = "healthy"
    """All systems operating normally."""

    WARNING = "warning"
    """Elevated error rate, latency or memory; still operational."""

    CRITICAL = "critical"
    """Error rate or latency far beyond target."""

    DOWN = "down"
    """No activity recorded and the time source is failing."""

    OFFLINE = "offline"
    """Every component probe failed."""

    @property
    def is_operational(self) -> bool:
        """True for HEALTHY and WARNING."""
        return self in (HealthStatus.HEALTHY, HealthStatus.WARNING)

    @property
    def log_level(self) -> int:
        """Logging level used when the status is entered."""
        if self is HealthStatus.HEALTHY:
            return logging.INFO
        if self is HealthStatus.WARNING:
            return logging.WARNING
        return logging.ERROR


class ServiceStatus(Enum):
    """Result of probing one component."""

    ONLINE = "online"
    """Probe succeeded within the latency budget."""

    DEGRADED = "degraded"
    """Probe succeeded slowly or returned a questionable result."""

    OFFLINE = "offline"
    """Probe raised or returned an unusable result."""


class AlertSeverity(Enum):
    """Severity of errors and alerts."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def log_level(self) -> int:
        return {
            AlertSeverity.LOW: logging.INFO,
            AlertSeverity.MEDIUM: logging.WARNING,
            AlertSeverity.HIGH: logging.ERROR,
            AlertSeverity.CRITICAL: logging.CRITICAL,
        }[self]


class AlertChannel(Enum):
    """Delivery channel of an alert."""

    LOG = "log"
    EMAIL = "email"
    SMS = "sms"
    SLACK = "slack"


# =============================================================================
# Observations
# =============================================================================


@dataclass(frozen=True)
class PerformanceSample:
    """
    One timed operation.

    Attributes:
        timestamp: Instant the sample was recorded
        operation: Operation name (e.g., "stamper.stamp")
        duration_ms: Operation duration
        memory_mb: Process memory when the sample was recorded
        success: Whether the operation succeeded
        context: Caller-supplied context
    """

    timestamp: Instant
    operation: str
    duration_ms: float
    memory_mb: float
    success: bool = True
    context: Mapping[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "operation": self.operation,
            "duration_ms": self.duration_ms,
            "memory_mb": self.memory_mb,
            "success": self.success,
        }


@dataclass
class ErrorEvent:
    """
    One recorded error.

    Attributes:
        timestamp: Instant the error was recorded
        operation: Operation that failed
        error: Error message
        error_type: Exception class name
        severity: Classified severity
        context: Caller-supplied context
        resolved: Set once a recovery strategy ran successfully
    """

    timestamp: Instant
    operation: str
    error: str
    error_type: str
    severity: AlertSeverity
    context: Mapping[str, Any] | None = None
    resolved: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "operation": self.operation,
            "error": self.error,
            "error_type": self.error_type,
            "severity": self.severity.value,
            "resolved": self.resolved,
        }


# =============================================================================
# Computed health
# =============================================================================


@dataclass(frozen=True)
class ComponentHealth:
    """
    Probe result for one component.

    Attributes:
        name: Component name
        status: Probe outcome
        latency_ms: Probe duration
        message: Human-readable detail
    """

    name: str
    status: ServiceStatus
    latency_ms: float
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "latency_ms": self.latency_ms,
            "message": self.message,
        }


@dataclass(frozen=True)
class HealthSnapshot:
    """
    Health of the temporal subsystem at one instant.

    Attributes:
        timestamp: Instant the snapshot was computed
        status: Overall status
        score: 0 (down) to 100 (perfect)
        components: Probe results by component name
        average_latency_ms: Mean duration of samples in the window
        error_rate: Errors per sample in the window, in [0, 1]
        memory_mb: Current process memory
        uptime_s: Seconds since the monitor was created
        sample_count: Samples in the window
        recent_errors: Errors in the window, oldest first
        recent_samples: Samples in the window, oldest first
    """

    timestamp: Instant
    status: HealthStatus
    score: float
    components: Mapping[str, ComponentHealth] = field(default_factory=dict)
    average_latency_ms: float = 0.0
    error_rate: float = 0.0
    memory_mb: float = 0.0
    uptime_s: float = 0.0
    sample_count: int = 0
    recent_errors: tuple[ErrorEvent, ...] = ()
    recent_samples: tuple[PerformanceSample, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "timestamp": self.timestamp,
            "status": self.status.value,
            "score": self.score,
            "components": {name: c.to_dict() for name, c in self.components.items()},
            "metrics": {
                "average_latency_ms": self.average_latency_ms,
                "error_rate": self.error_rate,
                "memory_mb": self.memory_mb,
                "uptime_s": self.uptime_s,
                "sample_count": self.sample_count,
            },
            "recent_errors": [e.to_dict() for e in self.recent_errors],
        }


@dataclass(frozen=True)
class PerformanceTrends:
    """
    Aggregates over a longer window.

    Attributes:
        window_hours: Window length
        total_operations: Samples in the window
        average_latency_ms: Mean duration
        success_rate: Successful samples / all samples, in [0, 1]
        peak_latency_ms: Longest duration
        operation_breakdown: Sample count per operation
        hourly_distribution: Sample count per UTC hour of day
        memory_trend: (timestamp, memory_mb) pairs, oldest first
    """

    window_hours: float
    total_operations: int = 0
    average_latency_ms: float = 0.0
    success_rate: float = 0.0
    peak_latency_ms: float = 0.0
    operation_breakdown: Mapping[str, int] = field(default_factory=dict)
    hourly_distribution: Mapping[int, int] = field(default_factory=dict)
    memory_trend: tuple[tuple[Instant, float], ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "window_hours": self.window_hours,
            "total_operations": self.total_operations,
            "average_latency_ms": self.average_latency_ms,
            "success_rate": self.success_rate,
            "peak_latency_ms": self.peak_latency_ms,
            "operation_breakdown": dict(self.operation_breakdown),
            "hourly_distribution": dict(self.hourly_distribution),
            "memory_trend": [list(point) for point in self.memory_trend],
        }


@dataclass(frozen=True)
class Alert:
    """
    An alert rule firing.

    Attributes:
        rule_id: Identifier of the rule that fired
        name: Rule name
        severity: Rule severity
        channel: Delivery channel
        message: Human-readable message
        timestamp: Instant the rule fired
        sample: Sample that triggered the rule
    """

    rule_id: str
    name: str
    severity: AlertSeverity
    channel: AlertChannel
    message: str
    timestamp: Instant
    sample: PerformanceSample

    def to_dict(self) -> dict[str, Any]:
        return {
            "rule_id": self.rule_id,
            "name": self.name,
            "severity": self.severity.value,
            "channel": self.channel.value,
            "message": self.message,
            "timestamp": self.timestamp,
            "operation": self.sample.operation,
        }


@dataclass(frozen=True)
class RecoveryAttempt:
    """
    One auto-recovery attempt.

    Attributes:
        operation: Failing operation
        strategy: Keyword of the strategy that ran
        timestamp: Instant of the attempt
        success: Whether the strategy completed without raising
        error: Error raised by the strategy, if any
    """

    operation: str
    strategy: str
    timestamp: Instant
    success: bool
    error: str | None = None


__all__ = [
    "Alert",
    "AlertChannel",
    "AlertSeverity",
    "ComponentHealth",
    "ErrorEvent",
    "HealthSnapshot",
    "HealthStatus",
    "PerformanceSample",
    "PerformanceTrends",
    "RecoveryAttempt",
    "ServiceStatus",
]
