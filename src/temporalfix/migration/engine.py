"""
MigrationEngine - Moves a key/value corpus to canonical timestamps.

The engine orchestrates one migration pass over every declared source:

    scan -> plan -> backup -> migrate -> validate (-> rollback on failure)

Responsibilities:
    - Find non-canonical timestamps (scan)
    - Order the fixes by severity (plan)
    - Snapshot every touched entity before mutating it (create_backup)
    - Rewrite entities in batches, yielding between batches (execute)
    - Confirm no non-timestamp field changed (validate)
    - Restore the snapshot on demand or after a failed pass (rollback)
    - Report progress after every entity (on_progress)

Concurrency:
    Only the engine writes to the store during a pass. execute() and
    rollback() share an advisory asyncio.Lock; a second caller fails
    immediately with MigrationInProgressError instead of waiting.
    request_stop() stops scheduling further batches; the entity being
    processed always finishes.

Error reporting:
    Step and infrastructure failures are reported through result objects.
    Only MigrationInProgressError is raised from execute()/rollback().
    scan() and create_backup() raise MigrationFatalError / BackupError
    when used directly; migrate() turns those into a failed report.

Usage:
    >>> engine = MigrationEngine(store, time_source, converter, stamper)
    >>> report = await engine.migrate()
    >>> report.summary.total_migrated
    42
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
import uuid
from collections.abc import Callable, Mapping, Sequence
from dataclasses import replace
from typing import TYPE_CHECKING, Any

from temporalfix.channels import Channel
from temporalfix.config import MigrationConfig
from temporalfix.exceptions import StoreError
from temporalfix.migration.exceptions import (
    BackupError,
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
)
from temporalfix.migration.scanner import (
    RecordScanner,
    build_plan,
    parse_record,
    preserved_fields,
    serialize_record,
)
from temporalfix.observability import (
    ATTR_BATCH_SIZE,
    ATTR_DRY_RUN,
    ATTR_ENTITY_ID,
    ATTR_FAILED_COUNT,
    ATTR_INCONSISTENCY_COUNT,
    ATTR_MIGRATED_COUNT,
    ATTR_MIGRATION_PHASE,
    ATTR_RESTORED_COUNT,
    ATTR_STEP_COUNT,
    ComponentMetrics,
    Tracer,
    create_tracer,
)
from temporalfix.stamping import StampOperation
from temporalfix.types import CREATED_AT, UPDATED_AT, Record, Unsubscribe

if TYPE_CHECKING:
    from temporalfix.legacy.converter import LegacyFormatConverter
    from temporalfix.stamping import Stamper
    from temporalfix.stores.interface import KeyValueStore
    from temporalfix.timesource import TimeSource

logger = logging.getLogger(__name__)

DEFAULT_SOURCE = "records"
"""Source name of the primary store."""


class MigrationEngine:
    """
    Scans, backs up, migrates, validates and rolls back timestamp data.

    Attributes:
        config: Migration configuration
        sources: Source name -> store, primary store first

    Example:
        >>> engine = MigrationEngine(store, time_source, converter, stamper)
        >>> found = await engine.scan()
        >>> plan = engine.plan(found)
        >>> result = await engine.execute(plan)
        >>> if result.success and await engine.validate():
        ...     print("migrated", result.migrated_count)
        ... else:
        ...     await engine.rollback()
    """

    def __init__(
        self,
        store: KeyValueStore,
        time_source: TimeSource,
        converter: LegacyFormatConverter,
        stamper: Stamper,
        *,
        config: MigrationConfig | None = None,
        sources: Mapping[str, KeyValueStore] | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
        enable_metrics: bool = True,
    ) -> None:
        """
        Initialize the engine.

        Args:
            store: Primary key/value store, scanned as source "records"
            time_source: Source of the migration instant
            converter: Legacy format converter used for detection
            stamper: Stamper applying the "migrate" operation
            config: Migration configuration (defaults to MigrationConfig())
            sources: Additional named stores holding legacy records
            tracer: Optional custom Tracer instance
            enable_tracing: Whether to enable OpenTelemetry tracing.
                Ignored if tracer is explicitly provided.
            enable_metrics: Whether to record OpenTelemetry metrics
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._metrics = ComponentMetrics("migration", enable_metrics=enable_metrics)
        self.config = config or MigrationConfig()
        self._time_source = time_source
        self._converter = converter
        self._stamper = stamper
        self._scanner = RecordScanner(
            time_source, converter, schema_version=self.config.schema_version
        )

        self.sources: dict[str, KeyValueStore] = {DEFAULT_SOURCE: store}
        for name, source in (sources or {}).items():
            if name in self.sources:
                raise ValueError(f"Source name {name!r} is reserved for the primary store")
            self.sources[name] = source

        # Pass state
        self._lock = asyncio.Lock()
        self._stop_requested = False
        self._backup: BackupSnapshot | None = None
        self._progress: MigrationProgress | None = None
        self._progress_channel: Channel[MigrationProgress] = Channel("migration.progress")
        self._last_result: ExecutionResult | None = None
        self._last_scanned = 0
        self._summary = MigrationSummary()

    # =========================================================================
    # Scan and plan
    # =========================================================================

    async def scan(self) -> list[Inconsistency]:
        """
        Find every non-canonical timestamp in every source.

        Values that are not JSON objects are skipped.

        Returns:
            Inconsistencies in source then key order

        Raises:
            MigrationFatalError: If a source cannot be enumerated
        """
        with self._tracer.span("temporalfix.migration.scan", {}) as span:
            with self._metrics.time_operation() as timer:
                found: list[Inconsistency] = []
                scanned = 0
                skipped = 0
                for name, store in self.sources.items():
                    for key, raw in await self._read_items(name, store):
                        record = parse_record(raw)
                        if record is None:
                            skipped += 1
                            continue
                        scanned += 1
                        found.extend(self._scanner.scan_record(EntityRef(name, key), record))

            self._last_scanned = scanned
            self._metrics.record_operation("scan", timer.duration_ms)
            if span is not None:
                span.set_attribute(ATTR_INCONSISTENCY_COUNT, len(found))

        logger.info(
            "Scanned %d records (%d non-object values skipped), found %d inconsistencies",
            scanned,
            skipped,
            len(found),
            extra={"scanned": scanned, "inconsistencies": len(found)},
        )
        return found

    async def _read_items(self, name: str, store: KeyValueStore) -> list[tuple[str, str]]:
        try:
            return await store.items()
        except Exception as e:
            self._metrics.record_failure("scan", type(e).__name__)
            raise MigrationFatalError(f"Scan of source {name!r} failed: {e}") from e

    def plan(self, inconsistencies: Sequence[Inconsistency]) -> MigrationPlan:
        """
        Build a migration plan, highest severity first.

        Args:
            inconsistencies: Findings from scan()

        Returns:
            MigrationPlan with one step per inconsistency
        """
        with self._tracer.span(
            "temporalfix.migration.plan",
            {ATTR_INCONSISTENCY_COUNT: len(inconsistencies)},
        ):
            plan = build_plan(
                inconsistencies,
                version=self.config.schema_version,
                created_at=self._time_source.now(),
                backup_required=self.config.create_backup,
                rollback_available=self.config.create_backup,
            )
        logger.debug(
            "Planned %d steps for %d entities",
            plan.step_count,
            len(plan.entity_refs),
        )
        return plan

    # =========================================================================
    # Backup
    # =========================================================================

    async def create_backup(self, plan: MigrationPlan) -> BackupSnapshot:
        """
        Copy every entity the plan touches.

        The snapshot replaces any backup held from an earlier pass.

        Args:
            plan: Plan whose entities to copy

        Returns:
            Verified BackupSnapshot

        Raises:
            BackupError: If an entity cannot be read or the snapshot fails verification
        """
        refs = plan.entity_refs
        with self._tracer.span(
            "temporalfix.migration.backup",
            {ATTR_STEP_COUNT: plan.step_count},
        ):
            entries: list[tuple[EntityRef, str | None]] = []
            for ref in refs:
                store = self._store_for(ref)
                if store is None:
                    raise BackupError(f"Unknown source {ref.source!r}", entity_id=str(ref))
                try:
                    entries.append((ref, await store.get(ref.key)))
                except Exception as e:
                    self._metrics.record_failure("backup", type(e).__name__)
                    raise BackupError(
                        f"Could not back up entity: {e}", entity_id=str(ref)
                    ) from e

            snapshot = BackupSnapshot.capture(entries, created_at=self._time_source.now())
            if not snapshot.verify():
                raise BackupError("Backup snapshot failed checksum verification")

        self._backup = snapshot
        logger.info(
            "Backed up %d entities (%d bytes, checksum %s)",
            len(snapshot),
            snapshot.size_bytes,
            snapshot.checksum[:12],
            extra={"backup_size": len(snapshot)},
        )
        return snapshot

    # =========================================================================
    # Execute
    # =========================================================================

    async def execute(self, plan: MigrationPlan) -> ExecutionResult:
        """
        Run a migration plan.

        Entities are processed in plan order, batch_size entities at a
        time, yielding to the event loop between batches. Progress is
        published after every entity. When the failure budget is exceeded
        the pass aborts and, if rollback_on_error is set, the backup is
        restored. The backup is kept after a successful pass so the caller
        can still roll back; validate() releases it.

        Args:
            plan: Plan from plan()

        Returns:
            ExecutionResult describing the pass

        Raises:
            MigrationInProgressError: If another pass or rollback is running
        """
        if self._lock.locked():
            raise MigrationInProgressError("execute")

        async with self._lock:
            migration_id = str(uuid.uuid4())
            self._stop_requested = False
            started = time.perf_counter()
            progress = MigrationProgress(
                phase=MigrationPhase.SCANNING,
                total=plan.step_count,
                started_at=self._time_source.now(),
                migration_id=migration_id,
            )
            self._progress = progress

            with self._tracer.span(
                "temporalfix.migration.execute",
                {
                    ATTR_STEP_COUNT: plan.step_count,
                    ATTR_BATCH_SIZE: self.config.batch_size,
                    ATTR_DRY_RUN: self.config.dry_run,
                },
            ) as span:
                result = await self._run(plan, progress, migration_id)
                result = _with_duration(result, (time.perf_counter() - started) * 1000)
                if span is not None:
                    span.set_attribute(ATTR_MIGRATED_COUNT, result.migrated_count)
                    span.set_attribute(ATTR_FAILED_COUNT, result.failed_count)
                    span.set_attribute(ATTR_MIGRATION_PHASE, result.phase.value)

            if result.success:
                self._metrics.record_operation("execute", result.duration_ms)
            else:
                self._metrics.record_operation("execute", result.duration_ms, status="failed")
            self._last_result = result

        log = logger.info if result.success else logger.warning
        log(
            "Migration %s finished in phase %s: %d migrated, %d failed%s",
            migration_id,
            result.phase.value,
            result.migrated_count,
            result.failed_count,
            " (dry run)" if result.dry_run else "",
            extra={
                "migration_id": migration_id,
                "migrated": result.migrated_count,
                "failed": result.failed_count,
                "aborted": result.aborted,
                "rolled_back": result.rolled_back,
            },
        )
        return result

    async def _run(
        self,
        plan: MigrationPlan,
        progress: MigrationProgress,
        migration_id: str,
    ) -> ExecutionResult:
        dry_run = self.config.dry_run
        errors: list[MigrationError] = []

        # Backup
        backup: BackupSnapshot | None = None
        if plan.backup_required and self.config.create_backup and not dry_run:
            self._set_phase(progress, MigrationPhase.BACKING_UP)
            try:
                backup = await self.create_backup(plan)
            except BackupError as e:
                e.migration_id = migration_id
                return self._fail(progress, e, errors)

        # Migrate
        self._set_phase(progress, MigrationPhase.MIGRATING)
        by_entity: dict[EntityRef, list[MigrationStep]] = {}
        for step in plan.steps:
            by_entity.setdefault(step.ref, []).append(step)
        refs = list(by_entity)

        migrated_refs: list[EntityRef] = []
        entity_failures = 0
        aborted = False
        stopped = False
        batch_size = self.config.batch_size

        for start in range(0, len(refs), batch_size):
            if self._stop_requested:
                stopped = True
                break
            for ref in refs[start : start + batch_size]:
                steps = by_entity[ref]
                progress.current_entity = str(ref)
                try:
                    await self._migrate_entity(ref, steps, migration_id)
                except MigrationStepError as e:
                    entity_failures += 1
                    errors.append(e)
                    progress.failed += len(steps)
                    progress.errors.append(str(e))
                    logger.warning(
                        "Migration step failed: %s",
                        e,
                        extra={"migration_id": migration_id, "entity_id": str(ref)},
                    )
                else:
                    migrated_refs.append(ref)
                    progress.succeeded += len(steps)
                progress.processed += len(steps)
                self._publish(progress)

                if entity_failures > self.config.max_errors_before_stop:
                    aborted = True
                    break
            if aborted:
                break
            await asyncio.sleep(0)

        progress.current_entity = None

        if aborted or stopped:
            reason = (
                f"failure budget of {self.config.max_errors_before_stop} exceeded"
                if aborted
                else "stop requested"
            )
            logger.warning(
                "Migration %s aborted: %s",
                migration_id,
                reason,
                extra={"migration_id": migration_id},
            )
            self._set_phase(progress, MigrationPhase.ERROR)
            rolled_back = False
            if aborted and self.config.rollback_on_error and backup is not None:
                rolled_back = await self._auto_rollback(backup, errors, migration_id)
            return ExecutionResult(
                success=False,
                migrated_count=progress.succeeded,
                failed_count=progress.failed,
                data_loss=False if rolled_back else await self._data_loss(migrated_refs, backup),
                errors=tuple(errors),
                phase=MigrationPhase.ERROR,
                aborted=True,
                rolled_back=rolled_back,
                dry_run=dry_run,
                migrated_entities=tuple(migrated_refs),
            )

        # Validate
        self._set_phase(progress, MigrationPhase.VALIDATING)
        data_loss = False
        if not dry_run:
            invalid = await self._verify(migrated_refs, backup)
            data_loss = any(reason == "data_loss" for reason in invalid.values())
            if invalid:
                for ref, reason in invalid.items():
                    message = f"Validation failed for {ref}: {reason}"
                    progress.errors.append(message)
                    errors.append(MigrationFatalError(message, migration_id=migration_id))
                self._set_phase(progress, MigrationPhase.ERROR)
                rolled_back = False
                if self.config.rollback_on_error and backup is not None:
                    rolled_back = await self._auto_rollback(backup, errors, migration_id)
                return ExecutionResult(
                    success=False,
                    migrated_count=progress.succeeded,
                    failed_count=progress.failed,
                    data_loss=data_loss and not rolled_back,
                    errors=tuple(errors),
                    phase=MigrationPhase.ERROR,
                    rolled_back=rolled_back,
                    dry_run=dry_run,
                    migrated_entities=tuple(migrated_refs),
                )

        self._set_phase(progress, MigrationPhase.COMPLETED)
        return ExecutionResult(
            success=progress.failed == 0,
            migrated_count=progress.succeeded,
            failed_count=progress.failed,
            data_loss=data_loss,
            errors=tuple(errors),
            phase=MigrationPhase.COMPLETED,
            dry_run=dry_run,
            migrated_entities=tuple(migrated_refs),
        )

    def _fail(
        self,
        progress: MigrationProgress,
        error: MigrationError,
        errors: list[MigrationError],
    ) -> ExecutionResult:
        errors.append(error)
        progress.errors.append(str(error))
        logger.log(
            error.severity.log_level,
            "Migration failed: %s",
            error,
            extra={"migration_id": error.migration_id, "error_code": error.error_code},
        )
        self._set_phase(progress, MigrationPhase.ERROR)
        return ExecutionResult(
            success=False,
            migrated_count=0,
            failed_count=0,
            errors=tuple(errors),
            phase=MigrationPhase.ERROR,
            aborted=True,
            dry_run=self.config.dry_run,
        )

    async def _migrate_entity(
        self,
        ref: EntityRef,
        steps: list[MigrationStep],
        migration_id: str,
    ) -> None:
        """Rewrite one entity; raises MigrationStepError and leaves the entity as it was."""
        step_id = steps[0].id
        store = self._store_for(ref)
        if store is None:
            raise MigrationStepError(
                step_id, str(ref), f"unknown source {ref.source!r}", migration_id=migration_id
            )

        try:
            raw = await store.get(ref.key)
        except StoreError as e:
            raise MigrationStepError(step_id, str(ref), str(e), migration_id=migration_id) from e

        record = parse_record(raw)
        if record is None:
            raise MigrationStepError(
                step_id,
                str(ref),
                "entity is missing or no longer a JSON object",
                migration_id=migration_id,
            )

        if self.config.validate_before_migration:
            for step in steps:
                expected = step.inconsistency.original_value if step.inconsistency else None
                if not _same_value(record.get(step.field), expected):
                    raise MigrationStepError(
                        step.id,
                        str(ref),
                        f"field {step.field!r} changed since the scan",
                        field=step.field,
                        migration_id=migration_id,
                    )

        migrated = self._migrate_record(record)
        if preserved_fields(migrated) != preserved_fields(record):
            raise MigrationStepError(
                step_id,
                str(ref),
                "migration would alter non-timestamp fields",
                migration_id=migration_id,
            )

        if self.config.dry_run:
            return

        with self._tracer.span(
            "temporalfix.migration.write",
            {ATTR_ENTITY_ID: str(ref), ATTR_STEP_COUNT: len(steps)},
        ):
            try:
                await store.set(ref.key, serialize_record(migrated))
            except StoreError as e:
                raise MigrationStepError(
                    step_id, str(ref), str(e), migration_id=migration_id
                ) from e

    def _migrate_record(self, record: Record) -> Record:
        canonical = self._scanner.canonicalize(record, self._time_source.now())
        return self._stamper.apply_operation(StampOperation.MIGRATE, canonical)

    def request_stop(self) -> None:
        """
        Stop scheduling further batches of the running pass.

        The current batch finishes. The backup is kept so the caller can
        roll back what was already migrated.
        """
        self._stop_requested = True
        logger.info("Migration stop requested")

    # =========================================================================
    # Validate and rollback
    # =========================================================================

    async def validate(self, snapshot: BackupSnapshot | None = None) -> bool:
        """
        Check migrated entities against a backup.

        Every entity migrated by the last pass (or, without a pass, every
        entity in the snapshot) must carry a valid createdAt or updatedAt,
        and every non-timestamp field must equal the backup. Success
        releases the held backup.

        Args:
            snapshot: Backup to compare against (default: the held backup)

        Returns:
            True if every entity passes
        """
        backup = snapshot or self._backup
        if self._last_result is not None:
            refs = [] if self._last_result.dry_run else list(self._last_result.migrated_entities)
        elif backup is not None:
            refs = list(backup.refs)
        else:
            refs = []

        with self._tracer.span(
            "temporalfix.migration.validate",
            {ATTR_STEP_COUNT: len(refs)},
        ):
            invalid = await self._verify(refs, backup)

        for ref, reason in invalid.items():
            logger.warning(
                "Validation failed for %s: %s",
                ref,
                reason,
                extra={"entity_id": str(ref)},
            )
        if invalid:
            return False

        if self._backup is not None and (snapshot is None or snapshot is self._backup):
            self._backup = None
            logger.debug("Validation passed; backup released")
        return True

    async def _verify(
        self,
        refs: Sequence[EntityRef],
        backup: BackupSnapshot | None,
    ) -> dict[EntityRef, str]:
        """Map each failing entity to the reason it fails."""
        invalid: dict[EntityRef, str] = {}
        for ref in refs:
            store = self._store_for(ref)
            if store is None:
                invalid[ref] = "unknown source"
                continue
            try:
                current = parse_record(await store.get(ref.key))
            except StoreError as e:
                invalid[ref] = f"unreadable: {e}"
                continue
            if current is None:
                invalid[ref] = "missing or not a JSON object"
                continue
            if backup is not None and ref in backup:
                original = parse_record(backup.get(ref))
                if original is not None and preserved_fields(original) != preserved_fields(
                    current
                ):
                    invalid[ref] = "data_loss"
                    continue
            if not (
                self._scanner.is_canonical_instant(current.get(CREATED_AT))
                or self._scanner.is_canonical_instant(current.get(UPDATED_AT))
            ):
                invalid[ref] = "no valid createdAt or updatedAt"
        return invalid

    async def _data_loss(
        self,
        refs: Sequence[EntityRef],
        backup: BackupSnapshot | None,
    ) -> bool:
        if backup is None or self.config.dry_run:
            return False
        invalid = await self._verify(refs, backup)
        return any(reason == "data_loss" for reason in invalid.values())

    async def rollback(self) -> RollbackResult:
        """
        Restore every backed-up entity and clear the backup.

        Entities that did not exist when the backup was taken are deleted.
        Idempotent: without a backup this succeeds with nothing restored.
        If some entities cannot be restored the backup is kept for a retry.

        Returns:
            RollbackResult

        Raises:
            MigrationInProgressError: If a pass is running
        """
        if self._lock.locked():
            raise MigrationInProgressError("rollback")

        async with self._lock:
            if self._backup is None:
                logger.debug("Rollback requested without a backup; nothing to restore")
                return RollbackResult(success=True, restored_count=0)

            result = await self._restore(self._backup)
            if result.success:
                self._backup = None
                self._last_result = None
        return result

    async def _restore(self, backup: BackupSnapshot) -> RollbackResult:
        with self._tracer.span(
            "temporalfix.migration.rollback",
            {ATTR_STEP_COUNT: len(backup)},
        ) as span:
            restored = 0
            failures: list[str] = []
            for ref, raw in backup.entries.items():
                store = self._store_for(ref)
                try:
                    if store is None:
                        raise StoreError("restore", ref.key, f"unknown source {ref.source!r}")
                    if raw is None:
                        await store.delete(ref.key)
                    else:
                        await store.set(ref.key, raw)
                except StoreError as e:
                    failures.append(str(RollbackError(str(e), entity_id=str(ref))))
                    continue
                restored += 1

            if span is not None:
                span.set_attribute(ATTR_RESTORED_COUNT, restored)

        if failures:
            logger.error(
                "Rollback restored %d entities, %d failed",
                restored,
                len(failures),
                extra={"restored": restored, "failed": len(failures)},
            )
        else:
            logger.info("Rollback restored %d entities", restored, extra={"restored": restored})
        return RollbackResult(
            success=not failures,
            restored_count=restored,
            failed_count=len(failures),
            errors=tuple(failures),
        )

    async def _auto_rollback(
        self,
        backup: BackupSnapshot,
        errors: list[MigrationError],
        migration_id: str,
    ) -> bool:
        result = await self._restore(backup)
        if result.success:
            self._backup = None
            return True
        errors.append(
            RollbackError(
                f"Automatic rollback left {result.failed_count} entities unrestored",
                migration_id=migration_id,
            )
        )
        return False

    # =========================================================================
    # Full pass
    # =========================================================================

    async def migrate(self) -> MigrationReport:
        """
        Run a full pass: scan, plan, execute, validate, roll back on failure.

        Fatal errors are reported in the returned report, never raised.

        Returns:
            MigrationReport

        Raises:
            MigrationInProgressError: If another pass is running
        """
        started = time.perf_counter()
        self._last_result = None

        def elapsed() -> float:
            return (time.perf_counter() - started) * 1000

        try:
            inconsistencies = await self.scan()
        except MigrationFatalError as e:
            logger.error("Migration aborted during scan: %s", e)
            self._summary = MigrationSummary(total_errors=1)
            return MigrationReport(
                success=False,
                summary=self._summary,
                phase=MigrationPhase.ERROR,
                errors=(str(e),),
                duration_ms=elapsed(),
            )

        plan = self.plan(inconsistencies)
        if plan.is_empty:
            self._summary = MigrationSummary(
                total_scanned=self._last_scanned,
                total_skipped=self._last_scanned,
            )
            logger.info("Nothing to migrate")
            return MigrationReport(
                success=True,
                summary=self._summary,
                phase=MigrationPhase.COMPLETED,
                plan=plan,
                validated=True,
                duration_ms=elapsed(),
            )

        execution = await self.execute(plan)
        backup_size = len(self._backup) if self._backup is not None else 0
        if execution.rolled_back:
            backup_size = len(plan.entity_refs)

        rollback: RollbackResult | None = None
        validated = False
        errors: list[str] = []
        if execution.dry_run:
            validated = True
        elif execution.phase is MigrationPhase.COMPLETED:
            validated = await self.validate()
            if not validated:
                errors.append("post-migration validation failed")
                if self.config.rollback_on_error:
                    rollback = await self.rollback()
        elif not execution.rolled_back and self.config.rollback_on_error:
            rollback = await self.rollback()

        if rollback is not None and not rollback.success:
            errors.extend(rollback.errors)

        restored = execution.rolled_back or (rollback is not None and rollback.restored_count > 0)
        migrated_refs = () if restored else execution.migrated_entities
        migrated_set = set(migrated_refs)
        fixed = sum(
            1
            for step in plan.steps
            if step.ref in migrated_set and step.inconsistency and step.inconsistency.fixable
        )

        self._summary = MigrationSummary(
            total_scanned=self._last_scanned,
            total_migrated=len(migrated_refs),
            total_skipped=self._last_scanned - len(plan.entity_refs),
            total_errors=len(execution.errors) + len(errors),
            inconsistencies_fixed=fixed,
            backup_size=backup_size,
        )
        success = execution.success and validated and not errors
        phase = execution.phase
        if phase is MigrationPhase.COMPLETED and not validated:
            phase = MigrationPhase.ERROR
        return MigrationReport(
            success=success,
            summary=self._summary,
            phase=phase,
            inconsistencies=tuple(inconsistencies),
            plan=plan,
            execution=execution,
            rollback=rollback,
            validated=validated,
            errors=tuple(errors),
            duration_ms=elapsed(),
        )

    # =========================================================================
    # Progress and state
    # =========================================================================

    def on_progress(self, callback: Callable[[MigrationProgress], Any]) -> Unsubscribe:
        """
        Register a progress listener.

        The listener receives a copy of the progress after every entity
        and on every phase change. Listener exceptions are logged and
        never interrupt the pass.

        Returns:
            Callable that removes the listener
        """
        return self._progress_channel.subscribe(callback)

    def _publish(self, progress: MigrationProgress) -> None:
        self._progress_channel.emit(progress.snapshot())

    def _set_phase(self, progress: MigrationProgress, phase: MigrationPhase) -> None:
        if not progress.phase.can_transition_to(phase):
            raise InvalidPhaseTransitionError(progress.phase, phase, progress.migration_id)
        logger.debug(
            "Migration phase %s -> %s",
            progress.phase.value,
            phase.value,
            extra={"migration_id": progress.migration_id, "phase": phase.value},
        )
        progress.phase = phase
        self._publish(progress)

    def _store_for(self, ref: EntityRef) -> KeyValueStore | None:
        return self.sources.get(ref.source)

    @property
    def progress(self) -> MigrationProgress | None:
        """Copy of the progress of the current or last pass."""
        return self._progress.snapshot() if self._progress is not None else None

    @property
    def is_running(self) -> bool:
        """True while execute() or rollback() holds the lock."""
        return self._lock.locked()

    @property
    def backup(self) -> BackupSnapshot | None:
        """Backup held for rollback, if any."""
        return self._backup

    @property
    def last_result(self) -> ExecutionResult | None:
        return self._last_result

    def summary(self) -> MigrationSummary:
        """Summary of the last migrate() pass."""
        return self._summary


def _same_value(current: Any, expected: Any) -> bool:
    """Equality that treats two NaN floats as the same stored value."""
    if isinstance(current, float) and isinstance(expected, float):
        if math.isnan(current) and math.isnan(expected):
            return True
    return bool(current == expected)


def _with_duration(result: ExecutionResult, duration_ms: float) -> ExecutionResult:
    return replace(result, duration_ms=duration_ms)


__all__ = ["DEFAULT_SOURCE", "MigrationEngine"]
