"""
Errors raised and reported by the migration engine.

    MigrationError
    +-- MigrationInProgressError     raised: execute()/rollback() while locked
    +-- InvalidPhaseTransitionError  raised: engine state machine misuse
    +-- MigrationStepError           reported: one entity failed, pass continues
    +-- MigrationFatalError          reported: scan or store failure, pass aborts
        +-- BackupError
        +-- RollbackError

Reported errors end up in ExecutionResult.errors and in the engine log at
the level given by their severity.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from temporalfix.migration.models import MigrationPhase


class ErrorSeverity(Enum):
    """How loudly a migration error is logged."""

    CRITICAL = "critical"
    """Stored data may be inconsistent until someone intervenes."""

    ERROR = "error"
    WARNING = "warning"

    @property
    def log_level(self) -> int:
        return {
            ErrorSeverity.CRITICAL: logging.CRITICAL,
            ErrorSeverity.ERROR: logging.ERROR,
            ErrorSeverity.WARNING: logging.WARNING,
        }[self]


class MigrationError(Exception):
    """
    Base class for migration errors.

    Subclasses set ``error_code`` and ``severity`` as class attributes.

    Attributes:
        message: Description without the context suffix
        migration_id: Pass that produced the error, if known
        entity_id: Affected entity as "source:key", if any
        recoverable: True when the pass can carry on past this error
    """

    error_code = "MIGRATION_ERROR"
    severity = ErrorSeverity.ERROR

    def __init__(
        self,
        message: str,
        *,
        migration_id: str | None = None,
        entity_id: str | None = None,
        recoverable: bool = False,
    ) -> None:
        self.message = message
        self.migration_id = migration_id
        self.entity_id = entity_id
        self.recoverable = recoverable
        super().__init__(message)

    def __str__(self) -> str:
        text = self.message
        if self.entity_id:
            text += f" [entity {self.entity_id}]"
        if self.migration_id:
            text += f" [migration {self.migration_id}]"
        return text

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_code": self.error_code,
            "severity": self.severity.value,
            "message": self.message,
            "migration_id": self.migration_id,
            "entity_id": self.entity_id,
            "recoverable": self.recoverable,
        }


class MigrationInProgressError(MigrationError):
    """A second execute() or rollback() arrived while one was running."""

    error_code = "MIGRATION_IN_PROGRESS"
    severity = ErrorSeverity.WARNING

    def __init__(self, operation: str, migration_id: str | None = None) -> None:
        self.operation = operation
        super().__init__(
            f"Migration already in progress; cannot {operation}",
            migration_id=migration_id,
            recoverable=True,
        )


class InvalidPhaseTransitionError(MigrationError):
    error_code = "INVALID_PHASE_TRANSITION"

    def __init__(
        self,
        from_phase: MigrationPhase,
        to_phase: MigrationPhase,
        migration_id: str | None = None,
    ) -> None:
        self.from_phase = from_phase
        self.to_phase = to_phase
        super().__init__(
            f"Invalid phase transition: {from_phase.value} -> {to_phase.value}",
            migration_id=migration_id,
        )


class MigrationStepError(MigrationError):
    """
    One entity could not be migrated and was left as it was.

    Attributes:
        step_id: First plan step of the failing entity
        field: Timestamp field involved, when the failure is field-specific
    """

    error_code = "MIGRATION_STEP_FAILED"
    severity = ErrorSeverity.WARNING

    def __init__(
        self,
        step_id: str,
        entity_id: str,
        message: str,
        *,
        field: str | None = None,
        migration_id: str | None = None,
    ) -> None:
        self.step_id = step_id
        self.field = field
        super().__init__(
            f"Step {step_id} failed: {message}",
            migration_id=migration_id,
            entity_id=entity_id,
            recoverable=True,
        )


class MigrationFatalError(MigrationError):
    """The pass cannot continue: a scan, backup or store operation failed."""

    error_code = "MIGRATION_FATAL"
    severity = ErrorSeverity.CRITICAL

    def __init__(
        self,
        message: str,
        *,
        migration_id: str | None = None,
        entity_id: str | None = None,
    ) -> None:
        super().__init__(message, migration_id=migration_id, entity_id=entity_id)


class BackupError(MigrationFatalError):
    error_code = "MIGRATION_BACKUP_FAILED"


class RollbackError(MigrationFatalError):
    error_code = "MIGRATION_ROLLBACK_FAILED"


__all__ = [
    "BackupError",
    "ErrorSeverity",
    "InvalidPhaseTransitionError",
    "MigrationError",
    "MigrationFatalError",
    "MigrationInProgressError",
    "MigrationStepError",
    "RollbackError",
]
