"""
Unit tests for record scanning, planning and migration models.

Tests cover:
- Inconsistency classification by severity
- Canonical records scanning clean
- Canonicalization of timestamp fields
- Plan ordering and step numbering
- Phase transitions, backup checksums and progress percentages
"""

from datetime import datetime

import pytest

from temporalfix.legacy.converter import LegacyFormatConverter
from temporalfix.legacy.formats import LegacyFormatType
from temporalfix.migration.models import (
    BackupSnapshot,
    EntityRef,
    MigrationPhase,
    MigrationProgress,
    Severity,
    StepOperation,
)
from temporalfix.migration.scanner import (
    RecordScanner,
    build_plan,
    parse_record,
    preserved_fields,
)
from temporalfix.timesource import TimeSource, datetime_to_instant
from tests.fixtures import BASE_INSTANT

REF = EntityRef("records", "note-1")


@pytest.fixture
def scanner(time_source: TimeSource, converter: LegacyFormatConverter) -> RecordScanner:
    return RecordScanner(time_source, converter, schema_version="V8.1")


# =============================================================================
# Scanning
# =============================================================================


class TestScanRecord:
    """Tests for RecordScanner.scan_record()."""

    def test_unparseable_timestamp_is_critical(self, scanner: RecordScanner):
        """Test an unrecognized value is a critical, unfixable inconsistency."""
        found = scanner.scan_record(REF, {"timestamp": "invalid-date"})

        assert len(found) == 1
        assert found[0].field == "timestamp"
        assert found[0].severity is Severity.CRITICAL
        assert found[0].fixable is False
        assert found[0].detected_format is None
        assert found[0].entity_id == "note-1"
        assert found[0].entity_type == "records"

    def test_legacy_value_is_medium(self, scanner: RecordScanner):
        found = scanner.scan_record(REF, {"createdAt": "15/01/2025", "title": "x"})

        assert len(found) == 1
        assert found[0].severity is Severity.MEDIUM
        assert found[0].fixable is True
        assert found[0].detected_format is LegacyFormatType.MANUAL_STRING

    def test_out_of_range_conversion_is_high(self, scanner: RecordScanner):
        """Test a recognized value converting before 2000 is high severity."""
        found = scanner.scan_record(REF, {"createdAt": "15/01/75"})

        assert found[0].severity is Severity.HIGH
        assert found[0].fixable is False
        assert "before 2000" in found[0].issues[0]

    def test_impossible_date_is_critical(self, scanner: RecordScanner):
        found = scanner.scan_record(REF, {"updatedAt": "31/02/2025"})

        assert found[0].severity is Severity.CRITICAL
        assert found[0].detected_format is LegacyFormatType.MANUAL_STRING

    def test_missing_schema_version_is_low(self, scanner: RecordScanner):
        found = scanner.scan_record(REF, {"createdAt": BASE_INSTANT, "updatedAt": BASE_INSTANT})

        assert len(found) == 1
        assert found[0].field == "schemaVersion"
        assert found[0].severity is Severity.LOW
        assert found[0].fixable is True

    def test_canonical_record_is_clean(self, scanner: RecordScanner):
        """Test legacy-named fields are ignored once a record is canonical."""
        record = {
            "createdAt": BASE_INSTANT,
            "updatedAt": BASE_INSTANT,
            "schemaVersion": "V8.1",
            "created": "15/01/2025",
        }

        assert scanner.scan_record(REF, record) == []

    def test_legacy_named_fields_scanned_on_legacy_records(self, scanner: RecordScanner):
        found = scanner.scan_record(REF, {"created": "15/01/2025", "modified": 1736610000})

        assert [i.field for i in found] == ["created", "modified"]

    def test_none_fields_are_absent(self, scanner: RecordScanner):
        assert scanner.scan_record(REF, {"createdAt": None, "title": "x"}) == []

    def test_float_instant_is_not_canonical(self, scanner: RecordScanner):
        found = scanner.scan_record(REF, {"createdAt": 1736610000000.0})

        assert found[0].severity is Severity.MEDIUM
        assert found[0].detected_format is LegacyFormatType.UNIX_NUMBER


class TestCanonicalize:
    """Tests for RecordScanner.canonicalize()."""

    def test_converts_canonical_fields(self, scanner: RecordScanner):
        result = scanner.canonicalize({"createdAt": "15/01/2025", "title": "x"}, BASE_INSTANT)

        assert result == {"createdAt": datetime_to_instant(datetime(2025, 1, 15)), "title": "x"}

    def test_unconvertible_value_becomes_now(self, scanner: RecordScanner):
        """Test an unusable timestamp is replaced by the migration instant."""
        result = scanner.canonicalize({"timestamp": "invalid-date"}, BASE_INSTANT)

        assert result["timestamp"] == BASE_INSTANT
        assert result["createdAt"] == BASE_INSTANT

    def test_created_at_seeded_from_legacy_field(self, scanner: RecordScanner):
        record = {"created": "15/01/2025", "date": "junk"}

        result = scanner.canonicalize(record, BASE_INSTANT)

        assert result["createdAt"] == datetime_to_instant(datetime(2025, 1, 15))
        assert result["created"] == "15/01/2025"
        assert record == {"created": "15/01/2025", "date": "junk"}

    def test_resolve(self, scanner: RecordScanner):
        assert scanner.resolve(BASE_INSTANT) == BASE_INSTANT
        assert scanner.resolve(1736610000) == BASE_INSTANT
        assert scanner.resolve("invalid-date") is None
        assert scanner.resolve("15/01/75") is None


class TestRecordHelpers:
    """Tests for parse_record() and preserved_fields()."""

    @pytest.mark.parametrize("raw", [None, "not json", "[1, 2]", '"text"'])
    def test_parse_rejects_non_objects(self, raw):
        assert parse_record(raw) is None

    def test_parse_object(self):
        assert parse_record('{"a": 1}') == {"a": 1}

    def test_preserved_fields_exclude_managed(self):
        record = {"createdAt": 1, "created": "x", "schemaVersion": "V8.1", "title": "t", "n": 2}

        assert preserved_fields(record) == {"title": "t", "n": 2}


# =============================================================================
# Planning
# =============================================================================


class TestBuildPlan:
    """Tests for build_plan()."""

    def test_steps_ordered_by_priority(self, scanner: RecordScanner):
        """Test steps are numbered in scan order and sorted by descending priority."""
        clean_times = {"createdAt": BASE_INSTANT, "updatedAt": BASE_INSTANT}
        found = (
            scanner.scan_record(EntityRef("records", "a"), clean_times)
            + scanner.scan_record(EntityRef("records", "b"), {"timestamp": "invalid-date"})
            + scanner.scan_record(EntityRef("records", "c"), {"createdAt": "15/01/2025"})
        )

        plan = build_plan(found, version="V8.1", created_at=BASE_INSTANT)

        assert [s.id for s in plan.steps] == ["step-2", "step-3", "step-1"]
        assert [s.priority for s in plan.steps] == [4, 2, 1]
        assert [s.operation for s in plan.steps] == [
            StepOperation.FIX,
            StepOperation.CONVERT,
            StepOperation.FIX,
        ]
        assert plan.estimated_duration_ms == 300
        assert plan.version == "V8.1"
        assert plan.backup_required is True

    def test_entity_refs_are_distinct(self, scanner: RecordScanner):
        found = scanner.scan_record(REF, {"createdAt": "15/01/2025", "updatedAt": "16/01/2025"})

        plan = build_plan(found, version="V8.1", created_at=BASE_INSTANT)

        assert plan.step_count == 2
        assert plan.entity_refs == (REF,)
        assert len(plan.steps_for(REF)) == 2

    def test_empty_plan(self):
        plan = build_plan([], version="V8.1", created_at=BASE_INSTANT)

        assert plan.is_empty
        assert plan.to_dict()["steps"] == []


# =============================================================================
# Models
# =============================================================================


class TestMigrationModels:
    """Tests for phases, backups and progress."""

    def test_phase_transitions(self):
        assert MigrationPhase.SCANNING.can_transition_to(MigrationPhase.BACKING_UP)
        assert MigrationPhase.SCANNING.can_transition_to(MigrationPhase.MIGRATING)
        assert MigrationPhase.MIGRATING.can_transition_to(MigrationPhase.ERROR)
        assert not MigrationPhase.SCANNING.can_transition_to(MigrationPhase.COMPLETED)
        assert not MigrationPhase.COMPLETED.can_transition_to(MigrationPhase.ERROR)

    def test_severity_priority(self):
        assert [s.priority for s in Severity] == [1, 2, 3, 4]

    def test_backup_checksum(self):
        """Test the snapshot is immutable and verifies against its checksum."""
        entries = [(REF, '{"a": 1}'), (EntityRef("records", "new"), None)]
        snapshot = BackupSnapshot.capture(entries, created_at=1)

        assert snapshot.verify() is True
        assert len(snapshot) == 2
        assert REF in snapshot
        assert snapshot.size_bytes == len('{"a": 1}')
        with pytest.raises(TypeError):
            snapshot.entries[REF] = "x"  # type: ignore[index]

    def test_progress_percent(self):
        progress = MigrationProgress(phase=MigrationPhase.MIGRATING, total=4, processed=1)

        assert progress.percent == 25.0
        assert MigrationProgress(phase=MigrationPhase.COMPLETED).percent == 100.0
        assert MigrationProgress(phase=MigrationPhase.SCANNING).percent == 0.0

    def test_progress_snapshot_is_independent(self):
        progress = MigrationProgress(phase=MigrationPhase.MIGRATING, errors=["a"])
        copy = progress.snapshot()
        progress.errors.append("b")

        assert copy.errors == ["a"]
