"""
Span creation for temporalfix components.

Components that trace (currently the migration engine) take a Tracer in
their constructor. Three tracers are provided:

- OpenTelemetryTracer hands out spans from the OpenTelemetry API. They
  are exported only once the host installs an SDK TracerProvider.
- NullTracer yields None from every span, so callers guard
  set_attribute() with ``if span is not None``.
- RecordingTracer keeps every span in memory for assertions.

Example:
    >>> tracer = RecordingTracer()
    >>> engine = MigrationEngine(store, time_source, converter, stamper, tracer=tracer)
    >>> await engine.migrate()
    >>> tracer.names()
    ['temporalfix.migration.scan', 'temporalfix.migration.plan', ...]
"""

from __future__ import annotations

import contextlib
from collections.abc import Iterator
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from opentelemetry import trace


@runtime_checkable
class Tracer(Protocol):
    """Anything that can open a named span with initial attributes."""

    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> AbstractContextManager[Any]:
        """Open a span; the context manager yields the span or None."""
        ...

    @property
    def enabled(self) -> bool:
        """True when spans are actually produced."""
        ...


class NullTracer:
    """Tracer used when tracing is switched off."""

    @contextlib.contextmanager
    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> Iterator[None]:
        yield None

    @property
    def enabled(self) -> bool:
        return False


class OpenTelemetryTracer:
    """
    Tracer backed by ``opentelemetry.trace``.

    Args:
        tracer_name: Instrumentation scope, usually the module's __name__
    """

    def __init__(self, tracer_name: str) -> None:
        self._tracer = trace.get_tracer(tracer_name)

    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> AbstractContextManager[Any]:
        return self._tracer.start_as_current_span(name, attributes=attributes or {})

    @property
    def enabled(self) -> bool:
        return True


@dataclass
class RecordedSpan:
    """
    A span captured by RecordingTracer.

    Attributes:
        name: Span name
        attributes: Initial attributes merged with later set_attribute() calls
        error: Exception that escaped the span, if any
    """

    name: str
    attributes: dict[str, Any] = field(default_factory=dict)
    error: BaseException | None = None

    def set_attribute(self, key: str, value: Any) -> None:
        self.attributes[key] = value

    @property
    def failed(self) -> bool:
        return self.error is not None


class RecordingTracer:
    """Tracer that keeps every span it opens, in opening order."""

    def __init__(self) -> None:
        self.spans: list[RecordedSpan] = []

    @contextlib.contextmanager
    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> Iterator[RecordedSpan]:
        recorded = RecordedSpan(name, dict(attributes or {}))
        self.spans.append(recorded)
        try:
            yield recorded
        except BaseException as e:
            recorded.error = e
            raise

    @property
    def enabled(self) -> bool:
        return True

    def names(self) -> list[str]:
        return [s.name for s in self.spans]

    def find(self, name: str) -> list[RecordedSpan]:
        """All recorded spans with the given name."""
        return [s for s in self.spans if s.name == name]

    def clear(self) -> None:
        self.spans.clear()


def create_tracer(name: str, enable_tracing: bool = True) -> Tracer:
    """
    Pick the tracer for a component.

    Args:
        name: Instrumentation scope (typically __name__)
        enable_tracing: False selects NullTracer

    Returns:
        OpenTelemetryTracer or NullTracer
    """
    if enable_tracing:
        return OpenTelemetryTracer(name)
    return NullTracer()


__all__ = [
    "NullTracer",
    "OpenTelemetryTracer",
    "RecordedSpan",
    "RecordingTracer",
    "Tracer",
    "create_tracer",
]
