"""
Data models for the timestamp migration engine.

Models in this module:

Enums:
    - MigrationPhase: Lifecycle phases of a migration pass
    - Severity: Severity of a detected inconsistency
    - StepOperation: What a migration step does to its entity

Scan and plan:
    - EntityRef: (source, key) address of an entity
    - Inconsistency: A timestamp problem found by a scan
    - MigrationStep: One planned unit of work (one entity field)
    - MigrationPlan: Ordered steps plus backup/rollback flags

Execution:
    - BackupSnapshot: Immutable pre-mutation copy of touched entities
    - MigrationProgress: Mutable progress of the running pass
    - ExecutionResult: Outcome of execute()
    - RollbackResult: Outcome of rollback()
    - MigrationSummary / MigrationReport: Outcome of a full migrate() pass
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, NamedTuple

from temporalfix.types import Instant

if TYPE_CHECKING:
    from temporalfix.legacy.formats import LegacyFormatType
    from temporalfix.migration.exceptions import MigrationError

# Estimated cost of one step, used for plan duration estimates
STEP_DURATION_ESTIMATE_MS = 100


class MigrationPhase(Enum):
    """
    Migration lifecycle phases.

    State machine transitions:
        SCANNING -> BACKING_UP -> MIGRATING -> VALIDATING -> COMPLETED
            |            |             |             |
            +------------+-------------+-------------+----> ERROR

    SCANNING may go straight to MIGRATING when no backup is required.
    A rollback after ERROR keeps the pass in ERROR.
    """

    SCANNING = "scanning"
    """Enumerating sources and collecting inconsistencies."""

    BACKING_UP = "backing-up"
    """Copying every entity the plan touches."""

    MIGRATING = "migrating"
    """Rewriting entities step by step."""

    VALIDATING = "validating"
    """Checking migrated entities against the backup."""

    COMPLETED = "completed"
    """Pass finished and validated."""

    ERROR = "error"
    """Pass failed or was stopped."""

    @property
    def is_terminal(self) -> bool:
        """True for COMPLETED and ERROR."""
        return self in (MigrationPhase.COMPLETED, MigrationPhase.ERROR)

    def can_transition_to(self, target: MigrationPhase) -> bool:
        """
        Check if transition to the target phase is valid.

        Args:
            target: The phase to transition to

        Returns:
            True if the transition is allowed
        """
        if self.is_terminal:
            return False
        if target is MigrationPhase.ERROR:
            return True
        return target in _TRANSITIONS[self]


_TRANSITIONS: dict[MigrationPhase, frozenset[MigrationPhase]] = {
    MigrationPhase.SCANNING: frozenset({MigrationPhase.BACKING_UP, MigrationPhase.MIGRATING}),
    MigrationPhase.BACKING_UP: frozenset({MigrationPhase.MIGRATING}),
    MigrationPhase.MIGRATING: frozenset({MigrationPhase.VALIDATING}),
    MigrationPhase.VALIDATING: frozenset({MigrationPhase.COMPLETED}),
}


class Severity(Enum):
    """Severity of an inconsistency; drives step priority."""

    LOW = "low"
    """Valid timestamps, missing schema version tag."""

    MEDIUM = "medium"
    """Recognized legacy value that converts cleanly."""

    HIGH = "high"
    """Recognized value that converts to an out-of-range instant."""

    CRITICAL = "critical"
    """Unrecognized or unparseable timestamp value."""

    @property
    def priority(self) -> int:
        """Step priority: critical=4, high=3, medium=2, low=1."""
        return _PRIORITIES[self]


_PRIORITIES = {
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}


class StepOperation(Enum):
    """What a migration step does."""

    FIX = "fix"
    """Replace an unusable value or add the missing schema tag."""

    CONVERT = "convert"
    """Convert a legacy value to a canonical instant."""

    VALIDATE = "validate"
    """Re-check an entity without changing it."""

    BACKUP = "backup"
    """Copy an entity into the backup snapshot."""


class EntityRef(NamedTuple):
    """Address of an entity: the source it lives in and its key."""

    source: str
    key: str

    def __str__(self) -> str:
        return f"{self.source}:{self.key}"


# =============================================================================
# Scan and plan
# =============================================================================


@dataclass(frozen=True)
class Inconsistency:
    """
    A timestamp problem found by a scan.

    Attributes:
        entity_id: Key of the entity within its source
        entity_type: Name of the source the entity lives in
        field: Offending field
        original_value: Value as stored
        issues: Human-readable problems with the value
        suggested_fix: What a migration would do about it
        severity: How bad the problem is
        fixable: Whether the value can be converted without guessing
        detected_format: Legacy format the value was recognized as, if any
    """

    entity_id: str
    entity_type: str
    field: str
    original_value: Any
    issues: tuple[str, ...]
    suggested_fix: str
    severity: Severity
    fixable: bool
    detected_format: LegacyFormatType | None = None

    @property
    def ref(self) -> EntityRef:
        return EntityRef(self.entity_type, self.entity_id)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "entity_id": self.entity_id,
            "entity_type": self.entity_type,
            "field": self.field,
            "original_value": repr(self.original_value),
            "issues": list(self.issues),
            "suggested_fix": self.suggested_fix,
            "severity": self.severity.value,
            "fixable": self.fixable,
            "detected_format": self.detected_format.value if self.detected_format else None,
        }


@dataclass(frozen=True)
class MigrationStep:
    """
    One planned unit of work.

    Attributes:
        id: Step identifier ("step-1", "step-2", ...)
        entity_id: Key of the entity the step touches
        entity_type: Source the entity lives in
        field: Field the step fixes
        operation: What the step does
        priority: 1 (low) to 4 (critical)
        description: Human-readable description
        inconsistency: Inconsistency the step resolves
    """

    id: str
    entity_id: str
    entity_type: str
    field: str
    operation: StepOperation
    priority: int
    description: str
    inconsistency: Inconsistency | None = None

    @property
    def ref(self) -> EntityRef:
        return EntityRef(self.entity_type, self.entity_id)


@dataclass(frozen=True)
class MigrationPlan:
    """
    Ordered migration steps, highest priority first.

    Attributes:
        steps: Steps sorted by descending priority (stable)
        backup_required: Whether a backup must exist before any step runs
        rollback_available: Whether a failed pass can be rolled back
        estimated_duration_ms: Rough duration estimate
        version: Schema version the plan migrates to
        created_at: Instant the plan was built
    """

    steps: tuple[MigrationStep, ...]
    backup_required: bool
    rollback_available: bool
    estimated_duration_ms: int
    version: str
    created_at: Instant

    @property
    def step_count(self) -> int:
        return len(self.steps)

    @property
    def is_empty(self) -> bool:
        return not self.steps

    @property
    def entity_refs(self) -> tuple[EntityRef, ...]:
        """Distinct entities the plan touches, in first-step order."""
        return tuple(dict.fromkeys(step.ref for step in self.steps))

    def steps_for(self, ref: EntityRef) -> tuple[MigrationStep, ...]:
        """All steps that touch one entity."""
        return tuple(step for step in self.steps if step.ref == ref)

    def __len__(self) -> int:
        return len(self.steps)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "steps": [
                {
                    "id": step.id,
                    "entity_id": step.entity_id,
                    "entity_type": step.entity_type,
                    "field": step.field,
                    "operation": step.operation.value,
                    "priority": step.priority,
                    "description": step.description,
                }
                for step in self.steps
            ],
            "backup_required": self.backup_required,
            "rollback_available": self.rollback_available,
            "estimated_duration_ms": self.estimated_duration_ms,
            "version": self.version,
            "created_at": self.created_at,
        }


# =============================================================================
# Backup
# =============================================================================


@dataclass(frozen=True)
class BackupSnapshot:
    """
    Immutable pre-mutation copy of every entity a plan touches.

    A value of None records that the entity did not exist when the
    backup was taken; rollback deletes such entities.

    Attributes:
        entries: Read-only mapping of entity reference to raw stored value
        created_at: Instant the backup was taken
        checksum: SHA-256 of the entries, for integrity verification
    """

    entries: Mapping[EntityRef, str | None]
    created_at: Instant
    checksum: str

    @classmethod
    def capture(
        cls,
        entries: Iterable[tuple[EntityRef, str | None]],
        created_at: Instant,
    ) -> BackupSnapshot:
        """Freeze entries into a snapshot and compute its checksum."""
        frozen = MappingProxyType(dict(entries))
        return cls(entries=frozen, created_at=created_at, checksum=_checksum(frozen))

    def verify(self) -> bool:
        """True if the entries still match the checksum."""
        return _checksum(self.entries) == self.checksum

    def get(self, ref: EntityRef) -> str | None:
        return self.entries.get(ref)

    @property
    def refs(self) -> tuple[EntityRef, ...]:
        return tuple(self.entries)

    @property
    def size_bytes(self) -> int:
        """Total length of the stored values."""
        return sum(len(value) for value in self.entries.values() if value is not None)

    def __len__(self) -> int:
        return len(self.entries)

    def __contains__(self, ref: object) -> bool:
        return ref in self.entries


def _checksum(entries: Mapping[EntityRef, str | None]) -> str:
    payload = json.dumps(
        sorted([ref.source, ref.key, value] for ref, value in entries.items()),
        ensure_ascii=False,
        separators=(",", ":"),
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


# =============================================================================
# Progress and results
# =============================================================================


@dataclass
class MigrationProgress:
    """
    Progress of the running pass.

    Owned by the engine; listeners receive copies from snapshot().

    Attributes:
        phase: Current phase
        total: Steps in the plan
        processed: Steps handled so far
        succeeded: Steps applied successfully
        failed: Steps that failed
        errors: Error messages, oldest first
        started_at: Instant the pass started
        current_entity: Entity being processed, if any
        migration_id: Identifier of the pass
    """

    phase: MigrationPhase
    total: int = 0
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)
    started_at: Instant = 0
    current_entity: str | None = None
    migration_id: str | None = None

    @property
    def percent(self) -> float:
        """Completion percentage, capped at 100."""
        if self.total <= 0:
            return 100.0 if self.phase is MigrationPhase.COMPLETED else 0.0
        return min(100.0, self.processed * 100.0 / self.total)

    def snapshot(self) -> MigrationProgress:
        """Independent copy for listeners."""
        return replace(self, errors=list(self.errors))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "phase": self.phase.value,
            "total": self.total,
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "errors": list(self.errors),
            "started_at": self.started_at,
            "current_entity": self.current_entity,
            "migration_id": self.migration_id,
            "percent": self.percent,
        }


@dataclass(frozen=True)
class ExecutionResult:
    """
    Outcome of MigrationEngine.execute().

    Attributes:
        success: True if every step succeeded and validation passed
        migrated_count: Steps applied successfully
        failed_count: Steps that failed
        data_loss: True if any non-timestamp field differs from the backup
        errors: Step and fatal errors, oldest first
        phase: Terminal phase of the pass
        aborted: True if the pass stopped before processing every step
        rolled_back: True if the backup was restored automatically
        dry_run: True if nothing was written
        migrated_entities: Entities rewritten by the pass
        duration_ms: Wall-clock duration of the pass
    """

    success: bool
    migrated_count: int
    failed_count: int
    data_loss: bool = False
    errors: tuple[MigrationError, ...] = ()
    phase: MigrationPhase = MigrationPhase.COMPLETED
    aborted: bool = False
    rolled_back: bool = False
    dry_run: bool = False
    migrated_entities: tuple[EntityRef, ...] = ()
    duration_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "success": self.success,
            "migrated_count": self.migrated_count,
            "failed_count": self.failed_count,
            "data_loss": self.data_loss,
            "errors": [error.to_dict() for error in self.errors],
            "phase": self.phase.value,
            "aborted": self.aborted,
            "rolled_back": self.rolled_back,
            "dry_run": self.dry_run,
            "migrated_entities": [str(ref) for ref in self.migrated_entities],
            "duration_ms": self.duration_ms,
        }


@dataclass(frozen=True)
class RollbackResult:
    """
    Outcome of MigrationEngine.rollback().

    Attributes:
        success: True if every entity was restored (or there was nothing to restore)
        restored_count: Entities restored or deleted
        failed_count: Entities that could not be restored
        errors: Messages for the failed entities
    """

    success: bool
    restored_count: int
    failed_count: int = 0
    errors: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "restored_count": self.restored_count,
            "failed_count": self.failed_count,
            "errors": list(self.errors),
        }


@dataclass(frozen=True)
class MigrationSummary:
    """
    Counts for a full migration pass.

    Attributes:
        total_scanned: Entities read by the scan
        total_migrated: Entities rewritten
        total_skipped: Scanned entities that needed no change
        total_errors: Step failures plus pass-level errors
        inconsistencies_fixed: Fixable inconsistencies on rewritten entities
        backup_size: Entities held in the backup
    """

    total_scanned: int = 0
    total_migrated: int = 0
    total_skipped: int = 0
    total_errors: int = 0
    inconsistencies_fixed: int = 0
    backup_size: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "total_scanned": self.total_scanned,
            "total_migrated": self.total_migrated,
            "total_skipped": self.total_skipped,
            "total_errors": self.total_errors,
            "inconsistencies_fixed": self.inconsistencies_fixed,
            "backup_size": self.backup_size,
        }


@dataclass(frozen=True)
class MigrationReport:
    """
    Outcome of MigrationEngine.migrate().

    Attributes:
        success: True if the pass completed and validated
        summary: Aggregate counts
        phase: Terminal phase
        inconsistencies: What the scan found
        plan: Plan that was executed, if the pass got that far
        execution: Result of execute(), if it ran
        rollback: Result of the rollback, if one ran
        validated: Whether validation passed
        errors: Pass-level error messages
        duration_ms: Wall-clock duration
    """

    success: bool
    summary: MigrationSummary
    phase: MigrationPhase
    inconsistencies: tuple[Inconsistency, ...] = ()
    plan: MigrationPlan | None = None
    execution: ExecutionResult | None = None
    rollback: RollbackResult | None = None
    validated: bool = False
    errors: tuple[str, ...] = ()
    duration_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "success": self.success,
            "summary": self.summary.to_dict(),
            "phase": self.phase.value,
            "inconsistencies": [i.to_dict() for i in self.inconsistencies],
            "plan": self.plan.to_dict() if self.plan else None,
            "execution": self.execution.to_dict() if self.execution else None,
            "rollback": self.rollback.to_dict() if self.rollback else None,
            "validated": self.validated,
            "errors": list(self.errors),
            "duration_ms": self.duration_ms,
        }


__all__ = [
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
    "STEP_DURATION_ESTIMATE_MS",
    "Severity",
    "StepOperation",
]
