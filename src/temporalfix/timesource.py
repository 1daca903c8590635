"""
Trusted time source.

TimeSource is the single producer of instants for every other component.
It reads an injectable clock, never lets observed instants go backwards,
and never raises: on a clock fault it falls back to the raw platform clock.

Responsibilities:
- Produce the current instant (milliseconds since the Unix epoch)
- Format instants as ISO-8601 strings with millisecond precision
- Validate instants against the supported range (2000-01-01 .. 2100-01-01)
- Parse canonical strings back into instants

Example:
    >>> from temporalfix.timesource import TimeSource
    >>>
    >>> source = TimeSource(clock=lambda: 1736610000000)
    >>> source.now()
    1736610000000
    >>> source.format(1736610000000)
    '2025-01-11T15:40:00.000Z'
    >>> source.format(1736610000000, "America/Sao_Paulo")
    '2025-01-11T12:40:00.000-03:00'
"""

from __future__ import annotations

import functools
import logging
import math
import threading
import time
from datetime import UTC, datetime, timedelta, tzinfo
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from temporalfix.exceptions import ValidationError
from temporalfix.types import MAX_VALID_INSTANT, MIN_VALID_INSTANT, Clock, Instant

logger = logging.getLogger(__name__)

INVALID_DATE = "Invalid Date"
"""Literal returned by format() for instants that fail validation."""

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)
_ONE_MS = timedelta(milliseconds=1)
_UTC_NAMES = frozenset({"UTC", "Z", "Etc/UTC", "GMT"})


def system_clock() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return time.time_ns() // 1_000_000


@functools.lru_cache(maxsize=64)
def _resolve_zone(name: str) -> tzinfo | None:
    if name in _UTC_NAMES:
        return UTC
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return None


def instant_to_datetime(instant: Instant | float) -> datetime:
    """Convert an instant to an aware UTC datetime without float rounding."""
    return _EPOCH + timedelta(milliseconds=int(instant))


def datetime_to_instant(value: datetime) -> Instant:
    """
    Convert a datetime to an instant.

    Naive datetimes are interpreted as local time.
    """
    if value.tzinfo is None:
        value = value.astimezone()
    return (value - _EPOCH) // _ONE_MS


class TimeSource:
    """
    Single source of truth for the current instant.

    Attributes:
        performance_budget_ms: Budget for one now() call before a warning is logged
        default_timezone: Timezone used by format() when none is given

    Example:
        >>> source = TimeSource()
        >>> instant = source.now()
        >>> source.is_valid(instant)
        True
    """

    def __init__(
        self,
        clock: Clock | None = None,
        *,
        performance_budget_ms: float = 1.0,
        default_timezone: str = "UTC",
    ) -> None:
        self._clock: Clock = clock or system_clock
        self.performance_budget_ms = performance_budget_ms
        self.default_timezone = default_timezone
        self._last: Instant = 0
        self._lock = threading.Lock()
        self._stats = {
            "generated": 0,
            "fallbacks": 0,
            "slow_reads": 0,
        }

    def now(self) -> Instant:
        """
        Return the current instant.

        Never raises. Instants observed from one TimeSource never decrease;
        if the underlying clock steps backwards the previous value is
        returned until the clock catches up.

        Returns:
            Milliseconds since the Unix epoch
        """
        started = time.perf_counter()
        try:
            raw = int(self._clock())
            with self._lock:
                if raw < self._last:
                    raw = self._last
                else:
                    self._last = raw
                self._stats["generated"] += 1
        except Exception as e:
            raw = int(time.time() * 1000)
            with self._lock:
                self._stats["fallbacks"] += 1
            logger.warning("Clock read failed, using raw platform clock: %s", e)

        elapsed_ms = (time.perf_counter() - started) * 1000
        if elapsed_ms > self.performance_budget_ms:
            with self._lock:
                self._stats["slow_reads"] += 1
            logger.warning(
                "Timestamp generation took %.3fms (budget %.3fms)",
                elapsed_ms,
                self.performance_budget_ms,
            )
        return raw

    def format(self, instant: Any, timezone: str | None = None) -> str:
        """
        Format an instant as an ISO-8601 string with millisecond precision.

        UTC output uses the "Z" suffix; other timezones use a numeric
        offset. Unknown timezone names fall back to UTC.

        Args:
            instant: Milliseconds since the Unix epoch
            timezone: IANA timezone name (default: default_timezone)

        Returns:
            Formatted string, or "Invalid Date" if the instant is invalid
        """
        if not self.is_valid(instant):
            return INVALID_DATE

        name = timezone or self.default_timezone
        zone = _resolve_zone(name)
        if zone is None:
            logger.warning("Unknown timezone %r, formatting in UTC", name)
            zone = UTC

        value = instant_to_datetime(instant)
        if zone is UTC:
            return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")
        return value.astimezone(zone).isoformat(timespec="milliseconds")

    def parse(self, text: str) -> Instant:
        """
        Parse a canonical string produced by format() back into an instant.

        Strings without an offset are interpreted as UTC.

        Args:
            text: ISO-8601 string

        Returns:
            The instant the string denotes

        Raises:
            ValidationError: If the string is malformed or out of range
        """
        try:
            value = datetime.fromisoformat(text)
        except (TypeError, ValueError) as e:
            raise ValidationError(text, [f"not an ISO-8601 string: {e}"]) from e
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        instant = (value - _EPOCH) // _ONE_MS
        issues = self.check(instant)
        if issues:
            raise ValidationError(text, issues)
        return instant

    def is_valid(self, instant: Any) -> bool:
        """
        Check that a value is a usable instant.

        Rejects booleans, non-numeric values, NaN and infinities, negative
        values, and values outside 2000-01-01 .. 2100-01-01 (UTC).
        """
        return not self.check(instant)

    def check(self, instant: Any) -> list[str]:
        """
        Explain why a value is not a valid instant.

        Returns:
            Human-readable issues; empty when the instant is valid
        """
        if isinstance(instant, bool) or not isinstance(instant, (int, float)):
            return [f"not a number ({type(instant).__name__})"]
        if isinstance(instant, float) and not math.isfinite(instant):
            return ["not a finite number"]
        if instant < 0:
            return ["negative instant"]
        if instant < MIN_VALID_INSTANT:
            return ["before 2000-01-01T00:00:00Z"]
        if instant > MAX_VALID_INSTANT:
            return ["after 2100-01-01T00:00:00Z"]
        return []

    @property
    def stats(self) -> dict[str, int]:
        """Counters for generated instants, clock fallbacks and slow reads."""
        with self._lock:
            return dict(self._stats)


__all__ = [
    "INVALID_DATE",
    "TimeSource",
    "datetime_to_instant",
    "instant_to_datetime",
    "system_clock",
]
