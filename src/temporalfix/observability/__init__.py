"""
Tracing and metrics for temporalfix.

Example:
    >>> from temporalfix.observability import ComponentMetrics, create_tracer
    >>>
    >>> tracer = create_tracer(__name__, enable_tracing=True)
    >>> metrics = ComponentMetrics("migration")
"""

from temporalfix.observability.attributes import (
    ATTR_BATCH_SIZE,
    ATTR_DRY_RUN,
    ATTR_ENTITY_ID,
    ATTR_FAILED_COUNT,
    ATTR_INCONSISTENCY_COUNT,
    ATTR_MIGRATED_COUNT,
    ATTR_MIGRATION_PHASE,
    ATTR_RESTORED_COUNT,
    ATTR_STEP_COUNT,
)
from temporalfix.observability.metrics import ComponentMetrics, OperationTimer
from temporalfix.observability.tracer import (
    NullTracer,
    OpenTelemetryTracer,
    RecordedSpan,
    RecordingTracer,
    Tracer,
    create_tracer,
)

__all__ = [
    # Tracing
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "RecordingTracer",
    "RecordedSpan",
    "create_tracer",
    # Metrics
    "ComponentMetrics",
    "OperationTimer",
    # Span attributes
    "ATTR_BATCH_SIZE",
    "ATTR_DRY_RUN",
    "ATTR_ENTITY_ID",
    "ATTR_FAILED_COUNT",
    "ATTR_INCONSISTENCY_COUNT",
    "ATTR_MIGRATED_COUNT",
    "ATTR_MIGRATION_PHASE",
    "ATTR_RESTORED_COUNT",
    "ATTR_STEP_COUNT",
]
