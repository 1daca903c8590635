"""
Record stamping.

The Stamper writes creation, update and operation-specific instants onto
records. Input records are never mutated; every call returns a new dict.
Stamping never raises for data faults: if anything goes wrong the record
is returned with a fallback stamp taken from the raw platform clock.

Operations:
- create: createdAt = updatedAt = now, schemaVersion = current tag
- update: updatedAt = now (never earlier than the existing updatedAt);
  createdAt is left alone and never synthesized
- custom-share: sharedAt = now
- migrate: keeps a valid createdAt (synthesizing one if missing or
  invalid), updatedAt = now, schemaVersion = current tag

Further custom operations can be registered with register_operation().

Example:
    >>> stamper = Stamper(TimeSource(clock=lambda: 1736610000000))
    >>> stamper.stamp({"title": "x"})
    {'title': 'x', 'createdAt': 1736610000000, 'updatedAt': 1736610000000, 'schemaVersion': 'V8.1'}
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable, Mapping
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field

from temporalfix.channels import Channel
from temporalfix.types import (
    CREATED_AT,
    CURRENT_SCHEMA_VERSION,
    SCHEMA_VERSION,
    SHARED_AT,
    UPDATED_AT,
    Instant,
    Record,
    Unsubscribe,
)

if TYPE_CHECKING:
    from temporalfix.timesource import TimeSource

logger = logging.getLogger(__name__)


class StampOperation(str, Enum):
    """Built-in stamping operations."""

    CREATE = "create"
    """Set createdAt, updatedAt and schemaVersion."""

    UPDATE = "update"
    """Set updatedAt only."""

    SHARE = "custom-share"
    """Set sharedAt."""

    MIGRATE = "migrate"
    """Canonicalize a migrated record: ensure createdAt, set updatedAt and schemaVersion."""


class StampEvent(BaseModel):
    """
    Notification emitted after a record is stamped.

    Attributes:
        operation: Operation name (e.g., "create", "custom-share")
        timestamp: Instant written by the operation
        record: The stamped record
    """

    model_config = ConfigDict(frozen=True)

    operation: str = Field(..., description="Stamping operation name")
    timestamp: int = Field(..., description="Instant written by the operation")
    record: dict[str, Any] = Field(default_factory=dict, description="Stamped record")


class Stamper:
    """
    Injects timestamps into records.

    Attributes:
        schema_version: Version tag written by create and migrate

    Example:
        >>> stamper = Stamper(time_source)
        >>> created = stamper.stamp({"title": "draft"})
        >>> updated = stamper.apply_operation("update", created)
        >>> updated["createdAt"] == created["createdAt"]
        True
    """

    def __init__(
        self,
        time_source: TimeSource,
        *,
        schema_version: str = CURRENT_SCHEMA_VERSION,
    ) -> None:
        self._time_source = time_source
        self.schema_version = schema_version
        self._events: Channel[StampEvent] = Channel("stamp")
        self._custom_fields: dict[str, str] = {StampOperation.SHARE.value: SHARED_AT}
        self._lock = threading.Lock()
        self._stats = {
            "stamped": 0,
            "fallbacks": 0,
            "batches": 0,
        }

    # =========================================================================
    # Public API
    # =========================================================================

    def stamp(self, record: Mapping[str, Any]) -> Record:
        """
        Stamp a new record.

        Equivalent to apply_operation("create", record).

        Returns:
            Copy of the record with createdAt, updatedAt and schemaVersion
        """
        return self.apply_operation(StampOperation.CREATE, record)

    def apply_operation(self, operation: StampOperation | str, record: Mapping[str, Any]) -> Record:
        """
        Apply a stamping operation to a copy of a record.

        Never raises; on an internal fault the record is returned with a
        fallback stamp and the fault is logged.

        Args:
            operation: Built-in operation or registered custom operation name
            record: Record to stamp (not mutated)

        Returns:
            Stamped copy of the record
        """
        name = _operation_name(operation)
        try:
            now = self._time_source.now()
            stamped = self._apply(name, record, now)
        except Exception as e:
            logger.exception("Stamping %r failed, applying fallback stamp: %s", name, e)
            with self._lock:
                self._stats["fallbacks"] += 1
            now = int(time.time() * 1000)
            stamped = self._fallback(name, record, now)

        with self._lock:
            self._stats["stamped"] += 1
        self._notify(name, now, stamped)
        return stamped

    def stamp_batch(
        self,
        records: Iterable[Mapping[str, Any]],
        operation: StampOperation | str = StampOperation.CREATE,
    ) -> list[Record]:
        """
        Apply one operation to many records with a single clock read.

        Every record in the batch receives the same instant.

        Args:
            records: Records to stamp (not mutated)
            operation: Operation to apply (default "create")

        Returns:
            Stamped copies in input order
        """
        name = _operation_name(operation)
        started = time.perf_counter()
        now = self._time_source.now()
        notify = self._events.listener_count > 0

        results: list[Record] = []
        fallbacks = 0
        for record in records:
            try:
                stamped = self._apply(name, record, now)
            except Exception as e:
                logger.exception("Stamping %r failed in batch, applying fallback: %s", name, e)
                fallbacks += 1
                stamped = self._fallback(name, record, now)
            results.append(stamped)
            if notify:
                self._notify(name, now, stamped)

        with self._lock:
            self._stats["stamped"] += len(results)
            self._stats["fallbacks"] += fallbacks
            self._stats["batches"] += 1

        logger.debug(
            "Stamped batch of %d records with %r in %.3fms",
            len(results),
            name,
            (time.perf_counter() - started) * 1000,
        )
        return results

    def register_operation(self, name: str, field: str) -> None:
        """
        Register a custom operation that writes the current instant to a field.

        Args:
            name: Operation name (conventionally "custom-<verb>")
            field: Field the operation sets (e.g., "publishedAt")

        Raises:
            ValueError: If name collides with a built-in operation or field is reserved
        """
        builtin = {op.value for op in StampOperation if op is not StampOperation.SHARE}
        if name in builtin:
            raise ValueError(f"Cannot redefine built-in operation {name!r}")
        if field in (CREATED_AT, UPDATED_AT, SCHEMA_VERSION):
            raise ValueError(
                f"Field {field!r} is managed by the create/update operations; "
                "choose an operation-specific field such as 'publishedAt'."
            )
        with self._lock:
            self._custom_fields[name] = field

    def on_stamp(self, listener: Callable[[StampEvent], Any]) -> Unsubscribe:
        """
        Register a listener for stamp events.

        Listener exceptions are logged and never reach the caller of stamp().

        Returns:
            Callable that removes the listener
        """
        return self._events.subscribe(listener)

    @property
    def events(self) -> Channel[StampEvent]:
        """Channel carrying stamp events."""
        return self._events

    @property
    def stats(self) -> dict[str, int]:
        """Counters for stamped records, fallbacks and batches."""
        with self._lock:
            return dict(self._stats)

    # =========================================================================
    # Internals
    # =========================================================================

    def _apply(self, name: str, record: Mapping[str, Any], now: Instant) -> Record:
        stamped = dict(record)

        if name == StampOperation.CREATE.value:
            stamped[CREATED_AT] = now
            stamped[UPDATED_AT] = now
            stamped[SCHEMA_VERSION] = self.schema_version
        elif name == StampOperation.UPDATE.value:
            stamped[UPDATED_AT] = self._monotonic_update(stamped, now)
        elif name == StampOperation.MIGRATE.value:
            if not self._time_source.is_valid(stamped.get(CREATED_AT)):
                stamped[CREATED_AT] = now
            stamped[UPDATED_AT] = max(self._monotonic_update(stamped, now), stamped[CREATED_AT])
            stamped[SCHEMA_VERSION] = self.schema_version
        else:
            with self._lock:
                field = self._custom_fields.get(name)
            if field is None:
                raise ValueError(f"Unknown stamping operation {name!r}")
            stamped[field] = now

        return stamped

    def _monotonic_update(self, record: Mapping[str, Any], now: Instant) -> Instant:
        previous = record.get(UPDATED_AT)
        if self._time_source.is_valid(previous) and previous > now:
            return int(previous)
        return now

    def _fallback(self, name: str, record: Any, now: Instant) -> Record:
        stamped = dict(record) if isinstance(record, Mapping) else {}
        if name in (StampOperation.CREATE.value, StampOperation.MIGRATE.value):
            stamped.setdefault(CREATED_AT, now)
            stamped[SCHEMA_VERSION] = self.schema_version
            stamped[UPDATED_AT] = now
        elif name == StampOperation.UPDATE.value:
            stamped[UPDATED_AT] = now
        else:
            with self._lock:
                field = self._custom_fields.get(name)
            # Unknown operations fall back to an update stamp
            stamped[field or UPDATED_AT] = now
        return stamped

    def _notify(self, name: str, now: Instant, record: Record) -> None:
        if self._events.listener_count == 0:
            return
        try:
            event = StampEvent(operation=name, timestamp=now, record=record)
        except ValueError as e:
            logger.warning("Could not build stamp event for %r: %s", name, e)
            return
        self._events.emit(event)


def _operation_name(operation: StampOperation | str) -> str:
    if isinstance(operation, StampOperation):
        return operation.value
    return str(operation)


__all__ = [
    "StampEvent",
    "StampOperation",
    "Stamper",
]
