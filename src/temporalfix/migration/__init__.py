"""
Timestamp migration for key/value corpora.

This package finds records whose timestamps are stored in legacy formats,
plans and applies fixes, and can restore the original data:

- MigrationEngine: scan -> plan -> backup -> execute -> validate -> rollback
- RecordScanner / build_plan: classification and ordering of fixes
- Models: Inconsistency, MigrationPlan, BackupSnapshot, MigrationProgress, ...
- Exceptions: MigrationError hierarchy; each error carries a code and severity

Example:
    >>> from temporalfix.migration import MigrationEngine
    >>>
    >>> engine = MigrationEngine(store, time_source, converter, stamper)
    >>> engine.on_progress(lambda p: print(f"{p.phase.value} {p.percent:.0f}%"))
    >>> report = await engine.migrate()
"""

from temporalfix.migration.engine import DEFAULT_SOURCE, MigrationEngine
from temporalfix.migration.exceptions import (
    BackupError,
    ErrorSeverity,
    InvalidPhaseTransitionError,
    MigrationError,
    MigrationFatalError,
    MigrationInProgressError,
    MigrationStepError,
    RollbackError,
)
from temporalfix.migration.models import (
    BackupSnapshot,
    EntityRef,
    ExecutionResult,
    Inconsistency,
    MigrationPhase,
    MigrationPlan,
    MigrationProgress,
    MigrationReport,
    MigrationStep,
    MigrationSummary,
    RollbackResult,
    Severity,
    StepOperation,
)
from temporalfix.migration.scanner import (
    TIMESTAMP_FIELDS,
    RecordScanner,
    build_plan,
)

__all__ = [
    # Engine
    "DEFAULT_SOURCE",
    "MigrationEngine",
    "RecordScanner",
    "TIMESTAMP_FIELDS",
    "build_plan",
    # Models
    "BackupSnapshot",
    "EntityRef",
    "ExecutionResult",
    "Inconsistency",
    "MigrationPhase",
    "MigrationPlan",
    "MigrationProgress",
    "MigrationReport",
    "MigrationStep",
    "MigrationSummary",
    "RollbackResult",
    "Severity",
    "StepOperation",
    # Exceptions
    "BackupError",
    "ErrorSeverity",
    "InvalidPhaseTransitionError",
    "MigrationError",
    "MigrationFatalError",
    "MigrationInProgressError",
    "MigrationStepError",
    "RollbackError",
]
