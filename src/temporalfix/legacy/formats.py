"""
Legacy timestamp formats: classification and conversion rules.

Pure functions with no state. The converter in
temporalfix.legacy.converter layers fallback, throttled deprecation
reporting and usage analytics on top of them.

Recognized formats:
- manual-string: day-first dates such as "15/01/2025", "15-01-25", "15.01.2025 10:30"
- relative-string: "2 hours ago", "in 3 days", "há 2 dias", "em 1 semana", "3 meses atrás"
- iso-string: anything else datetime.fromisoformat or dateutil can parse
- unix-number: epoch seconds or milliseconds
- date-object: datetime.datetime / datetime.date instances
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import date, datetime, time
from enum import Enum
from typing import Any

from dateutil import parser as dateutil_parser

from temporalfix.exceptions import ConversionError
from temporalfix.timesource import datetime_to_instant
from temporalfix.types import MAX_VALID_INSTANT, Instant

UNIX_SECONDS_THRESHOLD = 10_000_000_000
"""Unix numbers below this are epoch seconds and are scaled by 1000."""


class LegacyFormatType(Enum):
    """Kinds of legacy timestamp representation."""

    MANUAL_STRING = "manual-string"
    """Day-first date typed by hand (DD/MM/YYYY, DD-MM-YY, ...)."""

    ISO_STRING = "iso-string"
    """Any other string a date parser accepts."""

    UNIX_NUMBER = "unix-number"
    """Epoch seconds or milliseconds."""

    DATE_OBJECT = "date-object"
    """Native datetime or date value."""

    RELATIVE_STRING = "relative-string"
    """Offset from now such as "2 hours ago" or "há 3 dias"."""

    UNKNOWN = "unknown"
    """Not recognized as a timestamp."""


CONFIDENCE: dict[LegacyFormatType, float] = {
    LegacyFormatType.MANUAL_STRING: 0.9,
    LegacyFormatType.ISO_STRING: 0.8,
    LegacyFormatType.RELATIVE_STRING: 0.7,
    LegacyFormatType.UNIX_NUMBER: 0.8,
    LegacyFormatType.DATE_OBJECT: 1.0,
    LegacyFormatType.UNKNOWN: 0.0,
}


@dataclass(frozen=True)
class LegacyFormat:
    """
    Result of classifying a value.

    Attributes:
        type: Detected format
        value: The original value
        confidence: Detection confidence in [0, 1]; 0 means not detected
    """

    type: LegacyFormatType
    value: Any
    confidence: float

    @property
    def detected(self) -> bool:
        return self.confidence > 0

    @classmethod
    def of(cls, format_type: LegacyFormatType, value: Any) -> LegacyFormat:
        """Build a LegacyFormat with the standard confidence for its type."""
        return cls(format_type, value, CONFIDENCE[format_type])


# =============================================================================
# Patterns
# =============================================================================

MANUAL_DATE_PATTERN = re.compile(
    r"^\s*(?P<day>\d{1,2})[/\-.](?P<month>\d{1,2})[/\-.](?P<year>\d{4}|\d{2})"
    r"(?:[\sT]+(?P<hour>\d{1,2}):(?P<minute>\d{2})(?::(?P<second>\d{2}))?)?\s*$"
)

_UNIT_PATTERN = (
    r"minutos?|minutes?|mins?|horas?|hours?|hrs?|dias?|days?|semanas?|weeks?"
    r"|meses|m[eê]s|months?|anos?|years?"
)

RELATIVE_PATTERN = re.compile(
    r"^\s*(?:(?P<prefix>há|ha|in|em)\s+)?(?P<amount>\d+)\s*(?P<unit>"
    + _UNIT_PATTERN
    + r")(?:\s+(?P<suffix>ago|atrás|atras))?\s*$",
    re.IGNORECASE,
)

MINUTE_MS = 60_000
HOUR_MS = 3_600_000
DAY_MS = 86_400_000
WEEK_MS = 604_800_000
MONTH_MS = 2_592_000_000
YEAR_MS = 31_536_000_000

# Unit prefixes checked in order; months must precede minutes ("mes" vs "min")
_UNIT_PREFIXES: tuple[tuple[tuple[str, ...], int], ...] = (
    (("mes", "mês", "month"), MONTH_MS),
    (("min",), MINUTE_MS),
    (("hor", "hour", "hr"), HOUR_MS),
    (("dia", "day"), DAY_MS),
    (("semana", "week"), WEEK_MS),
    (("ano", "year"), YEAR_MS),
)

_PAST_PREFIXES = frozenset({"há", "ha"})


def unit_to_ms(unit: str) -> int:
    """
    Milliseconds in one relative-time unit.

    Months are 30 days and years 365 days. Unrecognized units count as minutes.
    """
    lowered = unit.lower()
    for prefixes, ms in _UNIT_PREFIXES:
        if lowered.startswith(prefixes):
            return ms
    return MINUTE_MS


def match_relative(text: str) -> re.Match[str] | None:
    """Match a relative-time string; a direction word (prefix or suffix) is required."""
    match = RELATIVE_PATTERN.match(text)
    if match is None:
        return None
    if match.group("prefix") is None and match.group("suffix") is None:
        return None
    return match


def parse_date_string(text: str) -> datetime | None:
    """
    Parse a free-form date string.

    Tries ISO-8601 first, then dateutil. All-digit strings are not dates.

    Returns:
        Parsed datetime (possibly naive), or None if unparseable
    """
    stripped = text.strip()
    if not stripped or stripped.isdigit():
        return None
    try:
        return datetime.fromisoformat(stripped)
    except ValueError:
        pass
    try:
        return dateutil_parser.parse(stripped)
    except (ValueError, OverflowError):
        return None


# =============================================================================
# Detection
# =============================================================================


def detect_format(value: Any) -> LegacyFormat:
    """
    Classify a value as one of the legacy formats.

    Args:
        value: Any value found in a record

    Returns:
        LegacyFormat; confidence 0 and type UNKNOWN when not recognized
    """
    if value is None or isinstance(value, bool):
        return LegacyFormat.of(LegacyFormatType.UNKNOWN, value)

    if isinstance(value, date):
        return LegacyFormat.of(LegacyFormatType.DATE_OBJECT, value)

    if isinstance(value, (int, float)):
        if math.isfinite(value) and 0 < value < MAX_VALID_INSTANT:
            return LegacyFormat.of(LegacyFormatType.UNIX_NUMBER, value)
        return LegacyFormat.of(LegacyFormatType.UNKNOWN, value)

    if isinstance(value, str):
        if MANUAL_DATE_PATTERN.match(value):
            return LegacyFormat.of(LegacyFormatType.MANUAL_STRING, value)
        if match_relative(value):
            return LegacyFormat.of(LegacyFormatType.RELATIVE_STRING, value)
        if parse_date_string(value) is not None:
            return LegacyFormat.of(LegacyFormatType.ISO_STRING, value)

    return LegacyFormat.of(LegacyFormatType.UNKNOWN, value)


# =============================================================================
# Conversion
# =============================================================================


def resolve_year(year_text: str, century_pivot: int = 50) -> int:
    """Expand a 2-digit year: below the pivot is 20xx, otherwise 19xx."""
    year = int(year_text)
    if len(year_text) <= 2:
        return 2000 + year if year < century_pivot else 1900 + year
    return year


def to_instant(fmt: LegacyFormat, *, now: Instant, century_pivot: int = 50) -> Instant:
    """
    Convert a classified value to an instant.

    Manual dates and naive datetimes are interpreted in local time.

    Args:
        fmt: Classification of the value
        now: Reference instant for relative strings
        century_pivot: Pivot for 2-digit years

    Returns:
        Instant the value denotes (not range-checked)

    Raises:
        ConversionError: If the value cannot be converted
    """
    value = fmt.value
    try:
        if fmt.type is LegacyFormatType.MANUAL_STRING:
            return _convert_manual(str(value), century_pivot)
        if fmt.type is LegacyFormatType.ISO_STRING:
            parsed = parse_date_string(str(value))
            if parsed is None:
                raise ConversionError(value, fmt.type.value, "unparseable date string")
            return datetime_to_instant(parsed)
        if fmt.type is LegacyFormatType.UNIX_NUMBER:
            if not math.isfinite(value):
                raise ConversionError(value, fmt.type.value, "not a finite number")
            scaled = value * 1000 if value < UNIX_SECONDS_THRESHOLD else value
            return int(round(scaled))
        if fmt.type is LegacyFormatType.DATE_OBJECT:
            if isinstance(value, datetime):
                return datetime_to_instant(value)
            return datetime_to_instant(datetime.combine(value, time()))
        if fmt.type is LegacyFormatType.RELATIVE_STRING:
            return _convert_relative(str(value), now)
    except ConversionError:
        raise
    except (ValueError, TypeError, OverflowError, OSError) as e:
        raise ConversionError(value, fmt.type.value, str(e)) from e

    raise ConversionError(value, fmt.type.value, "format not recognized")


def _convert_manual(text: str, century_pivot: int) -> Instant:
    match = MANUAL_DATE_PATTERN.match(text)
    if match is None:
        raise ConversionError(text, LegacyFormatType.MANUAL_STRING.value, "not a day-first date")
    parsed = datetime(
        resolve_year(match.group("year"), century_pivot),
        int(match.group("month")),
        int(match.group("day")),
        int(match.group("hour") or 0),
        int(match.group("minute") or 0),
        int(match.group("second") or 0),
    )
    return datetime_to_instant(parsed)


def _convert_relative(text: str, now: Instant) -> Instant:
    match = match_relative(text)
    if match is None:
        raise ConversionError(
            text, LegacyFormatType.RELATIVE_STRING.value, "not a relative time expression"
        )
    offset = int(match.group("amount")) * unit_to_ms(match.group("unit"))
    prefix = (match.group("prefix") or "").lower()
    past = match.group("suffix") is not None or prefix in _PAST_PREFIXES
    return now - offset if past else now + offset


__all__ = [
    "CONFIDENCE",
    "LegacyFormat",
    "LegacyFormatType",
    "MANUAL_DATE_PATTERN",
    "RELATIVE_PATTERN",
    "detect_format",
    "match_relative",
    "parse_date_string",
    "resolve_year",
    "to_instant",
    "unit_to_ms",
]
