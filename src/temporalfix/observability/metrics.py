"""
Operation metrics for temporalfix components.

The cache, the legacy converter, the migration engine and the health
monitor each own a ComponentMetrics. It feeds three OpenTelemetry
instruments, all labelled with the component name:

    temporalfix.operations           counter, by operation and status
    temporalfix.operations.failed    counter, by operation and error.type
    temporalfix.operation.duration   histogram in milliseconds

Nothing is exported until the host installs an SDK MeterProvider. With
``enable_metrics=False`` no instruments are created at all.
"""

from __future__ import annotations

import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from opentelemetry import metrics

METER_NAME = "temporalfix"


class OperationTimer:
    """Wall-clock timer yielded by ComponentMetrics.time_operation()."""

    def __init__(self) -> None:
        self._started = time.perf_counter()
        self._elapsed: float | None = None

    def stop(self) -> None:
        if self._elapsed is None:
            self._elapsed = time.perf_counter() - self._started

    @property
    def duration_ms(self) -> float:
        elapsed = self._elapsed
        if elapsed is None:
            elapsed = time.perf_counter() - self._started
        return elapsed * 1000


class ComponentMetrics:
    """
    Instruments for one component.

    Args:
        component: Value of the 'component' attribute on every measurement
        enable_metrics: Whether to create OpenTelemetry instruments

    Example:
        >>> component_metrics = ComponentMetrics("cache")
        >>> with component_metrics.time_operation() as timer:
        ...     cache.get("ts_1")
        >>> component_metrics.record_operation("get", timer.duration_ms)
    """

    def __init__(self, component: str, enable_metrics: bool = True) -> None:
        self.component = component
        self.enable_metrics = enable_metrics
        self._operations: Any = None
        self._failures: Any = None
        self._durations: Any = None
        if enable_metrics:
            meter = metrics.get_meter(METER_NAME)
            self._operations = meter.create_counter(
                "temporalfix.operations",
                unit="operations",
                description="Operations completed by a temporalfix component",
            )
            self._failures = meter.create_counter(
                "temporalfix.operations.failed",
                unit="operations",
                description="Operations that raised or reported failure",
            )
            self._durations = meter.create_histogram(
                "temporalfix.operation.duration",
                unit="ms",
                description="Operation duration",
            )

    def record_operation(
        self,
        operation: str,
        duration_ms: float,
        status: str = "success",
    ) -> None:
        """Count one finished operation and record its duration."""
        if not self.enable_metrics:
            return
        attrs = {"component": self.component, "operation": operation, "status": status}
        self._operations.add(1, attrs)
        self._durations.record(duration_ms, attrs)

    def record_failure(self, operation: str, error_type: str) -> None:
        """Count one failed operation, labelled with the error class name."""
        if not self.enable_metrics:
            return
        self._failures.add(
            1,
            {"component": self.component, "operation": operation, "error.type": error_type},
        )

    @contextmanager
    def time_operation(self) -> Iterator[OperationTimer]:
        timer = OperationTimer()
        try:
            yield timer
        finally:
            timer.stop()


__all__ = ["ComponentMetrics", "OperationTimer"]
