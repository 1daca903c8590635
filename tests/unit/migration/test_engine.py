"""
Unit tests for MigrationEngine.

Tests cover:
- Full migrate() passes and their reports
- Non-timestamp fields surviving migration unchanged
- Backup, validate and rollback (including partial rollback failures)
- Failure budget, automatic rollback and request_stop()
- Dry runs
- Progress reporting
- Mutual exclusion of concurrent passes
- Additional named sources
- Spans recorded for each stage
"""

import asyncio
from collections.abc import Callable

import pytest

from temporalfix.config import MigrationConfig
from temporalfix.legacy.converter import LegacyFormatConverter
from temporalfix.migration.engine import MigrationEngine
from temporalfix.migration.exceptions import (
    MigrationFatalError,
    MigrationInProgressError,
    MigrationStepError,
)
from temporalfix.migration.models import EntityRef, MigrationPhase, MigrationProgress, Severity
from temporalfix.observability import ATTR_ENTITY_ID, ATTR_MIGRATED_COUNT, RecordingTracer
from temporalfix.stamping import Stamper
from temporalfix.stores.in_memory import InMemoryKeyValueStore
from temporalfix.timesource import TimeSource
from tests.fixtures import BASE_INSTANT, FailingStore, GatedStore, raw, record

EngineFactory = Callable[..., MigrationEngine]


def legacy_corpus() -> dict[str, str]:
    """Three records with convertible legacy timestamps."""
    return {
        "a": raw(createdAt="15/01/2025", title="A"),
        "b": raw(createdAt="16/01/2025", title="B", tags=["x"]),
        "c": raw(createdAt=1736610000, title="C"),
    }


# =============================================================================
# Full pass
# =============================================================================


class TestMigrate:
    """Tests for migrate()."""

    @pytest.mark.asyncio
    async def test_full_pass(self, engine_factory: EngineFactory, time_source: TimeSource):
        """Test a pass rewrites every flagged record and reports the counts."""
        store = InMemoryKeyValueStore(
            {
                "a": raw(createdAt="15/01/2025", title="A"),
                "b": raw(createdAt=BASE_INSTANT, updatedAt=BASE_INSTANT, schemaVersion="V8.1"),
                "c": raw(timestamp="invalid-date", body="c"),
            }
        )
        engine = engine_factory(store)

        report = await engine.migrate()

        assert report.success is True
        assert report.phase is MigrationPhase.COMPLETED
        assert report.validated is True
        assert report.summary.total_scanned == 3
        assert report.summary.total_migrated == 2
        assert report.summary.total_skipped == 1
        assert report.summary.inconsistencies_fixed == 1
        assert report.summary.backup_size == 2
        assert engine.summary() == report.summary

        migrated_a = record(await store.get("a"))
        assert time_source.is_valid(migrated_a["createdAt"])
        assert time_source.is_valid(migrated_a["updatedAt"])
        assert migrated_a["schemaVersion"] == "V8.1"
        assert migrated_a["title"] == "A"

        migrated_c = record(await store.get("c"))
        assert migrated_c["timestamp"] == BASE_INSTANT
        assert migrated_c["createdAt"] == BASE_INSTANT
        assert migrated_c["body"] == "c"

    @pytest.mark.asyncio
    async def test_migrated_corpus_scans_clean(self, engine_factory: EngineFactory):
        store = InMemoryKeyValueStore(legacy_corpus())
        engine = engine_factory(store)

        await engine.migrate()

        assert await engine.scan() == []

    @pytest.mark.asyncio
    async def test_non_timestamp_fields_unchanged(self, engine_factory: EngineFactory):
        """Test every non-timestamp field survives the pass byte for byte."""
        store = InMemoryKeyValueStore(legacy_corpus())
        engine = engine_factory(store)

        report = await engine.migrate()

        assert report.execution is not None
        assert report.execution.data_loss is False
        b = record(await store.get("b"))
        assert b["title"] == "B"
        assert b["tags"] == ["x"]

    @pytest.mark.asyncio
    async def test_backup_released_after_validation(self, engine_factory: EngineFactory):
        engine = engine_factory(InMemoryKeyValueStore(legacy_corpus()))

        await engine.migrate()

        assert engine.backup is None

    @pytest.mark.asyncio
    async def test_nothing_to_migrate(self, engine_factory: EngineFactory):
        store = InMemoryKeyValueStore(
            {"a": raw(createdAt=BASE_INSTANT, updatedAt=BASE_INSTANT, schemaVersion="V8.1")}
        )

        report = await engine_factory(store).migrate()

        assert report.success is True
        assert report.plan is not None and report.plan.is_empty
        assert report.summary.total_skipped == 1

    @pytest.mark.asyncio
    async def test_non_object_values_skipped(self, engine_factory: EngineFactory):
        store = InMemoryKeyValueStore({"x": "not json", "y": "[1, 2]"})

        assert await engine_factory(store).scan() == []

    @pytest.mark.asyncio
    async def test_scan_failure_reported(self, engine_factory: EngineFactory):
        """Test an unreadable source fails the report instead of raising."""
        engine = engine_factory(FailingStore(legacy_corpus(), fail_items=True))

        with pytest.raises(MigrationFatalError):
            await engine.scan()

        report = await engine.migrate()
        assert report.success is False
        assert report.phase is MigrationPhase.ERROR
        assert report.summary.total_errors == 1

    @pytest.mark.asyncio
    async def test_nan_timestamp_is_migrated(
        self, engine_factory: EngineFactory, time_source: TimeSource
    ):
        """Test a NaN createdAt is not mistaken for a value changed since the scan."""
        store = InMemoryKeyValueStore({"n": raw(createdAt=float("nan"), title="N")})
        engine = engine_factory(store)

        found = await engine.scan()
        assert [(i.field, i.severity) for i in found] == [("createdAt", Severity.CRITICAL)]

        result = await engine.execute(engine.plan(found))

        assert result.success is True
        assert result.failed_count == 0
        migrated = record(await store.get("n"))
        assert time_source.is_valid(migrated["createdAt"])
        assert migrated["title"] == "N"


# =============================================================================
# Execute, validate, rollback
# =============================================================================


class TestExecuteAndRollback:
    """Tests for execute(), validate() and rollback()."""

    @pytest.mark.asyncio
    async def test_rollback_restores_original(self, engine_factory: EngineFactory):
        original = legacy_corpus()
        store = InMemoryKeyValueStore(original)
        engine = engine_factory(store)
        result = await engine.execute(engine.plan(await engine.scan()))
        assert result.success is True
        assert store.snapshot() != original

        rollback = await engine.rollback()

        assert rollback.success is True
        assert rollback.restored_count == 3
        assert store.snapshot() == original
        assert engine.backup is None

    @pytest.mark.asyncio
    async def test_rollback_is_idempotent(self, engine_factory: EngineFactory):
        """Test rollback without a backup succeeds and restores nothing."""
        engine = engine_factory(InMemoryKeyValueStore(legacy_corpus()))

        first = await engine.rollback()
        second = await engine.rollback()

        assert (first.success, first.restored_count) == (True, 0)
        assert (second.success, second.restored_count) == (True, 0)

    @pytest.mark.asyncio
    async def test_validate_releases_backup(self, engine_factory: EngineFactory):
        engine = engine_factory(InMemoryKeyValueStore(legacy_corpus()))
        await engine.execute(engine.plan(await engine.scan()))
        assert engine.backup is not None

        assert await engine.validate() is True
        assert engine.backup is None

    @pytest.mark.asyncio
    async def test_validate_detects_data_loss(self, engine_factory: EngineFactory):
        """Test a changed non-timestamp field fails validation and keeps the backup."""
        store = InMemoryKeyValueStore(legacy_corpus())
        engine = engine_factory(store)
        await engine.execute(engine.plan(await engine.scan()))
        tampered = record(await store.get("a"))
        tampered["title"] = "changed"
        await store.set("a", raw(**tampered))

        assert await engine.validate() is False
        assert engine.backup is not None

    @pytest.mark.asyncio
    async def test_partial_rollback_keeps_backup(self, engine_factory: EngineFactory):
        """Test entities that fail to restore leave the backup in place for a retry."""
        original = legacy_corpus()
        store = FailingStore(original, fail_set={"b"})
        engine = engine_factory(store, rollback_on_error=False)

        result = await engine.execute(engine.plan(await engine.scan()))

        assert result.success is False
        assert result.phase is MigrationPhase.COMPLETED
        assert result.migrated_count == 2
        assert result.failed_count == 1
        assert isinstance(result.errors[0], MigrationStepError)
        assert result.errors[0].entity_id == "records:b"
        assert await store.get("b") == original["b"]

        partial = await engine.rollback()
        assert partial.success is False
        assert partial.restored_count == 2
        assert partial.failed_count == 1
        assert engine.backup is not None

        store.fail_set.clear()
        retry = await engine.rollback()
        assert retry.success is True
        assert retry.restored_count == 3
        assert store.snapshot() == original

    @pytest.mark.asyncio
    async def test_failure_budget_aborts_and_rolls_back(self, engine_factory: EngineFactory):
        """Test exceeding the failure budget aborts the pass and restores the backup."""
        store = InMemoryKeyValueStore(legacy_corpus())
        engine = engine_factory(store, max_errors_before_stop=0)
        plan = engine.plan(await engine.scan())
        await store.set("b", raw(createdAt="20/01/2025", title="B", tags=["x"]))
        before = store.snapshot()

        result = await engine.execute(plan)

        assert result.success is False
        assert result.aborted is True
        assert result.rolled_back is True
        assert result.phase is MigrationPhase.ERROR
        assert result.migrated_count == 1
        assert result.failed_count == 1
        assert "changed since the scan" in str(result.errors[0])
        assert store.snapshot() == before
        assert engine.backup is None

    @pytest.mark.asyncio
    async def test_request_stop(self, engine_factory: EngineFactory):
        """Test a stop request finishes the current entity and keeps the backup."""
        original = legacy_corpus()
        store = InMemoryKeyValueStore(original)
        engine = engine_factory(store, batch_size=1)

        def stop_after_first(progress: MigrationProgress) -> None:
            if progress.processed >= 1:
                engine.request_stop()

        engine.on_progress(stop_after_first)
        result = await engine.execute(engine.plan(await engine.scan()))

        assert result.aborted is True
        assert result.rolled_back is False
        assert result.migrated_count == 1
        assert result.migrated_entities == (EntityRef("records", "a"),)
        assert engine.backup is not None

        await engine.rollback()
        assert store.snapshot() == original

    @pytest.mark.asyncio
    async def test_dry_run_writes_nothing(self, engine_factory: EngineFactory):
        original = legacy_corpus()
        store = InMemoryKeyValueStore(original)
        engine = engine_factory(store, dry_run=True)

        report = await engine.migrate()

        assert report.success is True
        assert report.execution is not None
        assert report.execution.dry_run is True
        assert report.execution.migrated_count == 3
        assert store.snapshot() == original
        assert engine.backup is None


# =============================================================================
# Progress
# =============================================================================


class TestProgress:
    """Tests for progress reporting."""

    @pytest.mark.asyncio
    async def test_progress_is_monotonic_and_reaches_100(self, engine_factory: EngineFactory):
        engine = engine_factory(InMemoryKeyValueStore(legacy_corpus()))
        updates: list[MigrationProgress] = []
        engine.on_progress(updates.append)

        await engine.execute(engine.plan(await engine.scan()))

        percents = [p.percent for p in updates]
        assert percents == sorted(percents)
        assert updates[-1].percent == 100.0
        assert updates[-1].phase is MigrationPhase.COMPLETED
        assert [p.phase for p in updates][:2] == [
            MigrationPhase.BACKING_UP,
            MigrationPhase.MIGRATING,
        ]
        assert engine.progress is not None
        assert engine.progress.succeeded == 3

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_interrupt(self, engine_factory: EngineFactory):
        engine = engine_factory(InMemoryKeyValueStore(legacy_corpus()))

        def broken(progress: MigrationProgress) -> None:
            raise RuntimeError("listener bug")

        engine.on_progress(broken)
        result = await engine.execute(engine.plan(await engine.scan()))

        assert result.success is True


# =============================================================================
# Concurrency
# =============================================================================


class TestConcurrency:
    """Tests for mutual exclusion between passes."""

    @pytest.mark.asyncio
    async def test_second_execute_fails_immediately(self, engine_factory: EngineFactory):
        """Test a concurrent execute() or rollback() raises instead of waiting."""
        data = {"a": raw(createdAt="15/01/2025")}
        planner = engine_factory(InMemoryKeyValueStore(data))
        plan = planner.plan(await planner.scan())
        store = GatedStore(data)
        engine = engine_factory(store)

        first = asyncio.create_task(engine.execute(plan))
        await store.entered.wait()
        assert engine.is_running is True

        with pytest.raises(MigrationInProgressError):
            await engine.execute(plan)
        with pytest.raises(MigrationInProgressError):
            await engine.rollback()

        store.release()
        result = await first

        assert result.success is True
        assert engine.is_running is False


# =============================================================================
# Sources
# =============================================================================


class TestSources:
    """Tests for additional named sources."""

    @pytest.mark.asyncio
    async def test_legacy_source_is_migrated(self, engine_factory: EngineFactory, time_source):
        legacy = InMemoryKeyValueStore({"x": raw(date="15/01/2025", title="X")})
        engine = engine_factory(InMemoryKeyValueStore(), sources={"legacy": legacy})

        found = await engine.scan()
        assert [(i.entity_type, i.entity_id, i.field) for i in found] == [("legacy", "x", "date")]

        report = await engine.migrate()

        assert report.success is True
        migrated = record(await legacy.get("x"))
        assert time_source.is_valid(migrated["createdAt"])
        assert migrated["date"] == "15/01/2025"
        assert migrated["title"] == "X"

    def test_primary_source_name_reserved(self, engine_factory: EngineFactory):
        with pytest.raises(ValueError, match="reserved"):
            engine_factory(InMemoryKeyValueStore(), sources={"records": InMemoryKeyValueStore()})


# =============================================================================
# Tracing
# =============================================================================


class TestTracing:
    """Tests for spans opened during a pass."""

    @pytest.mark.asyncio
    async def test_spans_for_full_pass(
        self,
        time_source: TimeSource,
        converter: LegacyFormatConverter,
        stamper: Stamper,
    ):
        """Test each stage opens its own span and execute records the outcome."""
        tracer = RecordingTracer()
        store = InMemoryKeyValueStore({"a": raw(createdAt="15/01/2025", title="A")})
        engine = MigrationEngine(
            store,
            time_source,
            converter,
            stamper,
            config=MigrationConfig(batch_size=2),
            tracer=tracer,
            enable_metrics=False,
        )

        report = await engine.migrate()

        assert report.success is True
        assert tracer.names()[:3] == [
            "temporalfix.migration.scan",
            "temporalfix.migration.plan",
            "temporalfix.migration.execute",
        ]
        assert set(tracer.names()) == {
            "temporalfix.migration.scan",
            "temporalfix.migration.plan",
            "temporalfix.migration.execute",
            "temporalfix.migration.backup",
            "temporalfix.migration.write",
            "temporalfix.migration.validate",
        }
        (execute,) = tracer.find("temporalfix.migration.execute")
        assert execute.attributes[ATTR_MIGRATED_COUNT] == 1
        assert execute.failed is False
        (write,) = tracer.find("temporalfix.migration.write")
        assert write.attributes[ATTR_ENTITY_ID] == "records:a"

    @pytest.mark.asyncio
    async def test_failed_span_keeps_error(self):
        """Test an exception escaping a span is recorded on it and re-raised."""
        tracer = RecordingTracer()

        with pytest.raises(RuntimeError):
            with tracer.span("outer", {"k": 1}):
                raise RuntimeError("boom")

        assert tracer.spans[0].failed is True
        assert tracer.spans[0].attributes == {"k": 1}
