"""
Span attribute keys used by the migration engine.

Example:
    >>> with tracer.span("temporalfix.migration.execute", {ATTR_STEP_COUNT: plan.step_count}):
    ...     ...
"""

ATTR_ENTITY_ID = "temporalfix.entity.id"
"""Entity being written, as "source:key"."""

ATTR_MIGRATION_PHASE = "temporalfix.migration.phase"
"""Phase the pass finished in."""

ATTR_STEP_COUNT = "temporalfix.migration.step_count"
ATTR_INCONSISTENCY_COUNT = "temporalfix.migration.inconsistency_count"
ATTR_BATCH_SIZE = "temporalfix.migration.batch_size"
ATTR_MIGRATED_COUNT = "temporalfix.migration.migrated_count"
ATTR_FAILED_COUNT = "temporalfix.migration.failed_count"
ATTR_DRY_RUN = "temporalfix.migration.dry_run"
ATTR_RESTORED_COUNT = "temporalfix.migration.restored_count"
