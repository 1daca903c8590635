"""
Declarative alert rules.

An AlertRule is a predicate over the latest performance sample plus a
severity, a delivery channel and a cooldown. The AlertManager evaluates
every rule against each new sample; a rule fires at most once per
cooldown, tracked with an ExpiringKeyRegistry keyed by rule id.

Delivery is pluggable per channel. Without a registered deliverer an
alert is written to the log at its severity's level.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from temporalfix.channels import Channel
from temporalfix.config import HealthConfig
from temporalfix.health.models import Alert, AlertChannel, AlertSeverity, PerformanceSample
from temporalfix.throttle import ExpiringKeyRegistry
from temporalfix.types import Clock, Instant, Unsubscribe

logger = logging.getLogger(__name__)

_ALERT_HISTORY = 100


@dataclass(frozen=True)
class AlertRule:
    """
    A rule evaluated against every performance sample.

    Attributes:
        id: Unique rule identifier, also the cooldown key
        name: Human-readable name
        predicate: Returns True when the sample should raise an alert
        severity: Alert severity
        channel: Delivery channel
        cooldown_minutes: Minimum minutes between two firings
    """

    id: str
    name: str
    predicate: Callable[[PerformanceSample], bool]
    severity: AlertSeverity
    channel: AlertChannel
    cooldown_minutes: float

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("Alert rule id must be non-empty")
        if self.cooldown_minutes < 0:
            raise ValueError(
                f"cooldown_minutes must be >= 0, got {self.cooldown_minutes} for rule {self.id!r}"
            )

    @property
    def cooldown_ms(self) -> int:
        return int(self.cooldown_minutes * 60_000)


def default_alert_rules(config: HealthConfig) -> list[AlertRule]:
    """
    Build the standard rule set for a health configuration.

    Rules:
        high_response_time: latency above the critical factor times target
        memory_leak: process memory above budget
        operation_failure: any failed operation
        performance_degradation: latency above target but within the critical factor
    """
    target = config.target_latency_ms
    critical = target * config.critical_latency_factor
    return [
        AlertRule(
            id="high_response_time",
            name="High Response Time",
            predicate=lambda s: s.duration_ms > critical,
            severity=AlertSeverity.HIGH,
            channel=AlertChannel.EMAIL,
            cooldown_minutes=5,
        ),
        AlertRule(
            id="memory_leak",
            name="Memory Leak Detected",
            predicate=lambda s: s.memory_mb > config.memory_budget_mb,
            severity=AlertSeverity.CRITICAL,
            channel=AlertChannel.SMS,
            cooldown_minutes=15,
        ),
        AlertRule(
            id="operation_failure",
            name="Operation Failure",
            predicate=lambda s: not s.success,
            severity=AlertSeverity.MEDIUM,
            channel=AlertChannel.SLACK,
            cooldown_minutes=2,
        ),
        AlertRule(
            id="performance_degradation",
            name="Performance Degradation",
            predicate=lambda s: target < s.duration_ms <= critical,
            severity=AlertSeverity.MEDIUM,
            channel=AlertChannel.LOG,
            cooldown_minutes=1,
        ),
    ]


class AlertManager:
    """
    Evaluates alert rules with per-rule cooldowns.

    Example:
        >>> manager = AlertManager(time_source.now, default_alert_rules(HealthConfig()))
        >>> manager.on_alert(lambda alert: print(alert.message))
        >>> manager.evaluate(sample)
    """

    def __init__(self, clock: Clock, rules: Iterable[AlertRule] = ()) -> None:
        self._clock = clock
        self._rules: dict[str, AlertRule] = {}
        self._cooldowns = ExpiringKeyRegistry(0, clock)
        self._alerts: Channel[Alert] = Channel("health.alerts")
        self._deliverers: dict[AlertChannel, Callable[[Alert], Any]] = {}
        self._history: deque[Alert] = deque(maxlen=_ALERT_HISTORY)
        self._lock = threading.RLock()
        for rule in rules:
            self.add_rule(rule)

    def add_rule(self, rule: AlertRule) -> None:
        """Add a rule, replacing any rule with the same id."""
        with self._lock:
            replaced = rule.id in self._rules
            self._rules[rule.id] = rule
            self._cooldowns.reset(rule.id)
        logger.debug("%s alert rule %s", "Replaced" if replaced else "Added", rule.id)

    def remove_rule(self, rule_id: str) -> bool:
        """
        Remove a rule.

        Returns:
            True if the rule existed
        """
        with self._lock:
            removed = self._rules.pop(rule_id, None) is not None
            self._cooldowns.reset(rule_id)
        return removed

    @property
    def rules(self) -> list[AlertRule]:
        with self._lock:
            return list(self._rules.values())

    def evaluate(self, sample: PerformanceSample) -> list[Alert]:
        """
        Check every rule against a sample and fire those outside their cooldown.

        Predicate exceptions are logged and treated as "no alert".

        Returns:
            Alerts fired by this sample
        """
        fired: list[Alert] = []
        for rule in self.rules:
            try:
                matched = bool(rule.predicate(sample))
            except Exception as e:
                logger.exception("Alert rule %s predicate failed: %s", rule.id, e)
                continue
            if not matched:
                continue
            if not self._cooldowns.should_fire(rule.id, rule.cooldown_ms):
                continue
            alert = Alert(
                rule_id=rule.id,
                name=rule.name,
                severity=rule.severity,
                channel=rule.channel,
                message=(
                    f"{rule.name}: operation {sample.operation} took "
                    f"{sample.duration_ms:.3f}ms (success={sample.success}, "
                    f"memory={sample.memory_mb:.1f}MB)"
                ),
                timestamp=int(self._clock()),
                sample=sample,
            )
            self._fire(alert)
            fired.append(alert)
        return fired

    def _fire(self, alert: Alert) -> None:
        with self._lock:
            self._history.append(alert)
            deliverer = self._deliverers.get(alert.channel)

        if deliverer is None:
            logger.log(
                alert.severity.log_level,
                "[%s] %s",
                alert.channel.value,
                alert.message,
                extra={"alert_rule": alert.rule_id, "severity": alert.severity.value},
            )
        else:
            try:
                deliverer(alert)
            except Exception as e:
                logger.exception(
                    "Delivery of alert %s via %s failed: %s",
                    alert.rule_id,
                    alert.channel.value,
                    e,
                )
        self._alerts.emit(alert)

    def register_delivery(self, channel: AlertChannel, deliverer: Callable[[Alert], Any]) -> None:
        """Route alerts for one channel to a custom deliverer instead of the log."""
        with self._lock:
            self._deliverers[channel] = deliverer

    def on_alert(self, listener: Callable[[Alert], Any]) -> Unsubscribe:
        """Register a listener for every fired alert."""
        return self._alerts.subscribe(listener)

    def last_triggered(self, rule_id: str) -> Instant | None:
        return self._cooldowns.last_fired(rule_id)

    @property
    def history(self) -> list[Alert]:
        """Most recent alerts, oldest first."""
        with self._lock:
            return list(self._history)


__all__ = [
    "AlertManager",
    "AlertRule",
    "default_alert_rules",
]
