"""
Record scanning and plan building.

The scanner inspects one parsed record at a time and reports every
timestamp field that is not in canonical form. The planner turns those
findings into an ordered MigrationPlan. Neither touches a store; the
MigrationEngine feeds them records and executes the plan.

Classification rules for a timestamp field:
    - canonical field holding a valid millisecond int: clean
    - legacy value that converts to a valid instant: medium, fixable
    - recognized value converting out of range: high, not fixable
    - unrecognized or unparseable value: critical, not fixable
    - valid createdAt and updatedAt but no schemaVersion: low, fixable

Records that are already canonical (valid createdAt, valid updatedAt and
a schemaVersion tag) have their legacy-named fields ignored, so a
migrated corpus scans clean.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Any

from temporalfix.exceptions import ConversionError
from temporalfix.legacy.formats import LegacyFormat, to_instant
from temporalfix.migration.models import (
    STEP_DURATION_ESTIMATE_MS,
    EntityRef,
    Inconsistency,
    MigrationPlan,
    MigrationStep,
    Severity,
    StepOperation,
)
from temporalfix.types import CREATED_AT, SCHEMA_VERSION, UPDATED_AT, Instant, Record

if TYPE_CHECKING:
    from temporalfix.legacy.converter import LegacyFormatConverter
    from temporalfix.timesource import TimeSource

logger = logging.getLogger(__name__)

TIMESTAMP = "timestamp"

CANONICAL_FIELDS: tuple[str, ...] = (CREATED_AT, UPDATED_AT, TIMESTAMP)
"""Fields rewritten in place by a migration."""

LEGACY_CREATED_FIELDS: tuple[str, ...] = ("created", "created_at", "date", "time")
"""Legacy names whose value seeds createdAt, in order of preference."""

LEGACY_UPDATED_FIELDS: tuple[str, ...] = ("updated", "updated_at", "modified", "lastModified")

LEGACY_FIELDS: tuple[str, ...] = LEGACY_CREATED_FIELDS + LEGACY_UPDATED_FIELDS

TIMESTAMP_FIELDS: frozenset[str] = frozenset(CANONICAL_FIELDS + LEGACY_FIELDS)

# Fields a migration may change; everything else must survive byte for byte
MANAGED_FIELDS: frozenset[str] = TIMESTAMP_FIELDS | {SCHEMA_VERSION}


def parse_record(raw: str | None) -> Record | None:
    """
    Parse a stored value as a JSON object.

    Returns:
        The object, or None if the value is missing, not JSON or not an object
    """
    if raw is None:
        return None
    try:
        value = json.loads(raw)
    except (TypeError, ValueError):
        return None
    return value if isinstance(value, dict) else None


def serialize_record(record: Mapping[str, Any]) -> str:
    """Serialize a record for storage."""
    return json.dumps(record, ensure_ascii=False)


def preserved_fields(record: Mapping[str, Any]) -> dict[str, Any]:
    """The fields of a record a migration must leave untouched."""
    return {k: v for k, v in record.items() if k not in MANAGED_FIELDS}


class RecordScanner:
    """
    Finds non-canonical timestamps in records and canonicalizes them.

    Attributes:
        schema_version: Tag a canonical record carries
    """

    def __init__(
        self,
        time_source: TimeSource,
        converter: LegacyFormatConverter,
        *,
        schema_version: str,
    ) -> None:
        self._time_source = time_source
        self._converter = converter
        self.schema_version = schema_version

    # =========================================================================
    # Classification
    # =========================================================================

    def is_canonical_instant(self, value: Any) -> bool:
        """True for an int (not bool) inside the valid instant range."""
        return isinstance(value, int) and not isinstance(value, bool) and (
            self._time_source.is_valid(value)
        )

    def is_canonical(self, record: Mapping[str, Any]) -> bool:
        """True if the record carries valid createdAt/updatedAt and a schema tag."""
        return (
            self.is_canonical_instant(record.get(CREATED_AT))
            and self.is_canonical_instant(record.get(UPDATED_AT))
            and bool(record.get(SCHEMA_VERSION))
        )

    def scan_record(self, ref: EntityRef, record: Mapping[str, Any]) -> list[Inconsistency]:
        """
        Report every non-canonical timestamp in one record.

        Fields holding None are treated as absent.

        Args:
            ref: Address of the record
            record: Parsed record

        Returns:
            Inconsistencies, in field order
        """
        canonical = self.is_canonical(record)
        fields = CANONICAL_FIELDS if canonical else CANONICAL_FIELDS + LEGACY_FIELDS

        found: list[Inconsistency] = []
        for name in fields:
            value = record.get(name)
            if value is None:
                continue
            if name in CANONICAL_FIELDS and self.is_canonical_instant(value):
                continue
            found.append(self.inspect_value(ref, name, value))

        if (
            self.is_canonical_instant(record.get(CREATED_AT))
            and self.is_canonical_instant(record.get(UPDATED_AT))
            and not record.get(SCHEMA_VERSION)
        ):
            found.append(
                Inconsistency(
                    entity_id=ref.key,
                    entity_type=ref.source,
                    field=SCHEMA_VERSION,
                    original_value=record.get(SCHEMA_VERSION),
                    issues=("missing schema version tag",),
                    suggested_fix=f"set schemaVersion to {self.schema_version}",
                    severity=Severity.LOW,
                    fixable=True,
                )
            )
        return found

    def inspect_value(self, ref: EntityRef, field: str, value: Any) -> Inconsistency:
        """Classify one non-canonical timestamp value."""
        fmt = self._converter.detect(value)
        if not fmt.detected:
            return self._inconsistency(
                ref,
                field,
                value,
                issues=(f"unrecognized timestamp format ({type(value).__name__})",),
                suggested_fix="replace with the migration instant",
                severity=Severity.CRITICAL,
                fixable=False,
                fmt=fmt,
            )

        try:
            instant = self._to_instant(fmt)
        except ConversionError as e:
            return self._inconsistency(
                ref,
                field,
                value,
                issues=(f"unparseable {fmt.type.value} value: {e.message}",),
                suggested_fix="replace with the migration instant",
                severity=Severity.CRITICAL,
                fixable=False,
                fmt=fmt,
            )

        issues = self._time_source.check(instant)
        if issues:
            return self._inconsistency(
                ref,
                field,
                value,
                issues=tuple(f"converted instant {instant} is {issue}" for issue in issues),
                suggested_fix="replace with the migration instant",
                severity=Severity.HIGH,
                fixable=False,
                fmt=fmt,
            )

        return self._inconsistency(
            ref,
            field,
            value,
            issues=(f"legacy {fmt.type.value} timestamp",),
            suggested_fix=f"convert to {instant}",
            severity=Severity.MEDIUM,
            fixable=True,
            fmt=fmt,
        )

    def _inconsistency(
        self,
        ref: EntityRef,
        field: str,
        value: Any,
        *,
        issues: tuple[str, ...],
        suggested_fix: str,
        severity: Severity,
        fixable: bool,
        fmt: LegacyFormat,
    ) -> Inconsistency:
        return Inconsistency(
            entity_id=ref.key,
            entity_type=ref.source,
            field=field,
            original_value=value,
            issues=issues,
            suggested_fix=suggested_fix,
            severity=severity,
            fixable=fixable,
            detected_format=fmt.type if fmt.detected else None,
        )

    def _to_instant(self, fmt: LegacyFormat) -> Instant:
        return to_instant(
            fmt,
            now=self._time_source.now(),
            century_pivot=self._converter.config.century_pivot,
        )

    # =========================================================================
    # Canonicalization
    # =========================================================================

    def resolve(self, value: Any) -> Instant | None:
        """
        Convert a timestamp value to a valid instant.

        Returns:
            The instant, or None if the value is unrecognized, unparseable
            or out of range
        """
        if self.is_canonical_instant(value):
            return int(value)
        fmt = self._converter.detect(value)
        if not fmt.detected:
            return None
        try:
            instant = self._to_instant(fmt)
        except ConversionError:
            return None
        return instant if self._time_source.is_valid(instant) else None

    def canonicalize(self, record: Mapping[str, Any], now: Instant) -> Record:
        """
        Rewrite the canonical timestamp fields of a record.

        createdAt, updatedAt and timestamp are replaced by their converted
        instant, or by now when they cannot be converted. A missing
        createdAt is seeded from the first convertible legacy creation
        field, then from timestamp. Legacy-named fields and every other
        field are left as they are.

        Returns:
            New record; the input is not mutated
        """
        result = dict(record)
        for name in CANONICAL_FIELDS:
            value = result.get(name)
            if value is None or self.is_canonical_instant(value):
                continue
            instant = self.resolve(value)
            result[name] = instant if instant is not None else now

        if not self.is_canonical_instant(result.get(CREATED_AT)):
            for name in LEGACY_CREATED_FIELDS + (TIMESTAMP,):
                value = result.get(name)
                if value is None:
                    continue
                instant = self.resolve(value)
                if instant is not None:
                    result[CREATED_AT] = instant
                    break
        return result


# =============================================================================
# Planning
# =============================================================================


def build_plan(
    inconsistencies: Iterable[Inconsistency],
    *,
    version: str,
    created_at: Instant,
    backup_required: bool = True,
    rollback_available: bool = True,
) -> MigrationPlan:
    """
    Build an ordered migration plan.

    One step per inconsistency, numbered in input order ("step-1", ...),
    then stably sorted by descending priority.

    Args:
        inconsistencies: Findings from a scan
        version: Schema version the plan migrates to
        created_at: Instant the plan is built
        backup_required: Whether execute() must back up before mutating
        rollback_available: Whether a failed pass can be rolled back

    Returns:
        MigrationPlan
    """
    steps: list[MigrationStep] = []
    for index, inconsistency in enumerate(inconsistencies, start=1):
        if inconsistency.fixable and inconsistency.field != SCHEMA_VERSION:
            operation = StepOperation.CONVERT
        else:
            operation = StepOperation.FIX
        steps.append(
            MigrationStep(
                id=f"step-{index}",
                entity_id=inconsistency.entity_id,
                entity_type=inconsistency.entity_type,
                field=inconsistency.field,
                operation=operation,
                priority=inconsistency.severity.priority,
                description=(
                    f"{operation.value} {inconsistency.field} on "
                    f"{inconsistency.ref}: {inconsistency.suggested_fix}"
                ),
                inconsistency=inconsistency,
            )
        )

    steps.sort(key=lambda step: step.priority, reverse=True)
    return MigrationPlan(
        steps=tuple(steps),
        backup_required=backup_required,
        rollback_available=rollback_available,
        estimated_duration_ms=len(steps) * STEP_DURATION_ESTIMATE_MS,
        version=version,
        created_at=created_at,
    )


__all__ = [
    "CANONICAL_FIELDS",
    "LEGACY_CREATED_FIELDS",
    "LEGACY_FIELDS",
    "LEGACY_UPDATED_FIELDS",
    "MANAGED_FIELDS",
    "RecordScanner",
    "TIMESTAMP",
    "TIMESTAMP_FIELDS",
    "build_plan",
    "parse_record",
    "preserved_fields",
    "serialize_record",
]
