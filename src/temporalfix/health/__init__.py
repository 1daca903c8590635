"""
Health monitoring for the temporal subsystem.

- HealthMonitor: samples, errors, health status, probes, recovery
- AlertManager / AlertRule: declarative alerts with cooldowns
- Models: HealthSnapshot, PerformanceTrends, ErrorEvent, Alert, ...
"""

from temporalfix.health.alerts import AlertManager, AlertRule, default_alert_rules
from temporalfix.health.models import (
    Alert,
    AlertChannel,
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
from temporalfix.health.monitor import (
    HealthMonitor,
    RecoveryStrategy,
    classify_error,
    process_memory_mb,
)

__all__ = [
    # Monitor
    "HealthMonitor",
    "RecoveryStrategy",
    "classify_error",
    "process_memory_mb",
    # Alerts
    "AlertManager",
    "AlertRule",
    "default_alert_rules",
    # Models
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
