"""
Legacy format converter.

Turns legacy timestamp representations into canonical instants and keeps
track of who still relies on them.

Responsibilities:
- Detect the legacy format of a value (see temporalfix.legacy.formats)
- Convert values to instants, falling back to the current instant (never raises)
- Emit at most one deprecation notice per (function, format) pair per window
- Keep a bounded log of legacy calls for usage analytics
- Wrap legacy call sites so their arguments are converted transparently

Example:
    >>> converter = LegacyFormatConverter(time_source)
    >>> fmt = converter.detect("15/01/2025")
    >>> fmt.type, fmt.confidence
    (<LegacyFormatType.MANUAL_STRING: 'manual-string'>, 0.9)
    >>> result = converter.support_legacy("2 hours ago")
    >>> result.success
    True
"""

from __future__ import annotations

import functools
import logging
from collections import Counter, deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import TYPE_CHECKING, Any, ParamSpec, TypeVar

from temporalfix.config import CompatibilityConfig
from temporalfix.exceptions import ConversionError
from temporalfix.legacy.formats import (
    LegacyFormat,
    LegacyFormatType,
    detect_format,
    to_instant,
)
from temporalfix.observability.metrics import ComponentMetrics
from temporalfix.throttle import ExpiringKeyRegistry
from temporalfix.types import Instant

if TYPE_CHECKING:
    from temporalfix.timesource import TimeSource

logger = logging.getLogger(__name__)

P = ParamSpec("P")
R = TypeVar("R")

_PREVIEW_LENGTH = 64
_RECENT_USAGE = 10


class NoticeSeverity(Enum):
    """Severity of a deprecation notice."""

    INFO = "info"
    """Legacy value converted with high confidence."""

    WARNING = "warning"
    """Legacy value converted, but the format is ambiguous or lossy."""

    ERROR = "error"
    """Legacy value could not be converted; the current instant was used."""

    @property
    def log_level(self) -> int:
        return {
            NoticeSeverity.INFO: logging.INFO,
            NoticeSeverity.WARNING: logging.WARNING,
            NoticeSeverity.ERROR: logging.ERROR,
        }[self]


@dataclass(frozen=True)
class CompatibilityResult:
    """
    Outcome of support_legacy().

    Attributes:
        success: True if the value converted without falling back
        standardized_instant: Canonical instant (the current instant on failure)
        format: Detected format of the input
        error: Reason the conversion fell back, if it did
    """

    success: bool
    standardized_instant: Instant
    format: LegacyFormat
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "success": self.success,
            "standardized_instant": self.standardized_instant,
            "format": self.format.type.value,
            "confidence": self.format.confidence,
            "error": self.error,
        }


@dataclass(frozen=True)
class LegacyUsage:
    """One call through the legacy compatibility entry point."""

    function: str
    format: LegacyFormatType
    timestamp: Instant
    converted: bool
    value_preview: str


@dataclass(frozen=True)
class DeprecationNotice:
    """A deprecation notice that passed the throttle."""

    function: str
    format: LegacyFormatType
    severity: NoticeSeverity
    message: str
    timestamp: Instant


@dataclass(frozen=True)
class LegacyUsageStats:
    """
    Aggregated legacy usage.

    Attributes:
        total_calls: Calls currently held in the usage log
        unique_functions: Distinct function names seen
        most_used_function: Function with the most calls, if any
        conversion_rate: Fraction of calls converted without fallback
        calls_by_format: Call count per detected format
        recent_usage: Most recent calls, newest last
    """

    total_calls: int
    unique_functions: int
    most_used_function: str | None
    conversion_rate: float
    calls_by_format: dict[str, int] = field(default_factory=dict)
    recent_usage: tuple[LegacyUsage, ...] = ()


class LegacyFormatConverter:
    """
    Detects and converts legacy timestamps with throttled deprecation reporting.

    Attributes:
        config: Compatibility configuration
    """

    def __init__(
        self,
        time_source: TimeSource,
        config: CompatibilityConfig | None = None,
        *,
        enable_metrics: bool = True,
    ) -> None:
        self._time_source = time_source
        self.config = config or CompatibilityConfig()
        self._throttle = ExpiringKeyRegistry(self.config.warning_window_ms, time_source.now)
        self._usage_log: deque[LegacyUsage] = deque(maxlen=self.config.usage_log_size)
        self._notices: deque[DeprecationNotice] = deque(maxlen=self.config.usage_log_size)
        self._metrics = ComponentMetrics("legacy", enable_metrics=enable_metrics)

    # =========================================================================
    # Detection and conversion
    # =========================================================================

    def detect(self, value: Any) -> LegacyFormat:
        """
        Classify a value.

        Returns:
            LegacyFormat with confidence 0 when the value is not a timestamp
        """
        return detect_format(value)

    def try_convert(
        self,
        value: Any,
        format: LegacyFormat | LegacyFormatType | None = None,
    ) -> Instant:
        """
        Convert a value to a valid instant without falling back.

        Args:
            value: Legacy value
            format: Known format, or None to detect it

        Returns:
            Instant within the valid range

        Raises:
            ConversionError: If the value cannot be converted or lands out of range
        """
        fmt = self._resolve_format(value, format)
        instant = to_instant(
            fmt,
            now=self._time_source.now(),
            century_pivot=self.config.century_pivot,
        )
        issues = self._time_source.check(instant)
        if issues:
            raise ConversionError(value, fmt.type.value, "; ".join(issues))
        return instant

    def convert(
        self,
        value: Any,
        format: LegacyFormat | LegacyFormatType | None = None,
    ) -> Instant:
        """
        Convert a value to an instant, falling back to the current instant.

        Never raises.

        Args:
            value: Legacy value
            format: Known format, or None to detect it

        Returns:
            Converted instant, or now() if conversion failed
        """
        with self._metrics.time_operation() as timer:
            try:
                instant = self.try_convert(value, format)
            except ConversionError as e:
                self._metrics.record_failure("convert", type(e).__name__)
                logger.warning("%s; falling back to current instant", e)
                return self._time_source.now()
        self._metrics.record_operation("convert", timer.duration_ms)
        return instant

    def _resolve_format(
        self,
        value: Any,
        format: LegacyFormat | LegacyFormatType | None,
    ) -> LegacyFormat:
        if isinstance(format, LegacyFormat):
            return format
        if isinstance(format, LegacyFormatType):
            return LegacyFormat.of(format, value)
        return detect_format(value)

    # =========================================================================
    # Compatibility entry points
    # =========================================================================

    def support_legacy(self, value: Any, function: str = "support_legacy") -> CompatibilityResult:
        """
        Standardize a legacy value and record the call.

        Args:
            value: Legacy value
            function: Name of the calling function, used for throttling and analytics

        Returns:
            CompatibilityResult; success is False when the current instant was substituted
        """
        fmt = detect_format(value)
        error: str | None = None
        try:
            instant = self.try_convert(value, fmt)
        except ConversionError as e:
            error = str(e)
            instant = self._time_source.now()
            self._metrics.record_failure("support_legacy", type(e).__name__)
            logger.warning("%s; falling back to current instant", e)

        success = error is None
        self._record_usage(function, fmt, value, success)
        self._report_deprecation(function, fmt, success)
        return CompatibilityResult(
            success=success,
            standardized_instant=instant,
            format=fmt,
            error=error,
        )

    def wrap_legacy_call(
        self,
        func: Callable[P, R],
        name: str | None = None,
    ) -> Callable[P, R]:
        """
        Wrap a function that may receive legacy date arguments.

        String and date arguments recognized as legacy timestamps are
        converted to instants before the call. If the wrapped function
        rejects the converted arguments, it is called again with the
        original ones. Calls with nothing to convert run exactly once.

        Args:
            func: Function to wrap
            name: Name recorded in usage analytics (default: func.__qualname__)

        Returns:
            Wrapped function
        """
        function_name = name or getattr(func, "__qualname__", repr(func))

        @functools.wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            converted_args = tuple(self._convert_argument(a, function_name) for a in args)
            converted_kwargs = {
                k: self._convert_argument(v, function_name) for k, v in kwargs.items()
            }
            changed = any(c is not o for c, o in zip(converted_args, args)) or any(
                converted_kwargs[k] is not v for k, v in kwargs.items()
            )
            if not changed:
                return func(*args, **kwargs)
            try:
                return func(*converted_args, **converted_kwargs)  # type: ignore[arg-type]
            except Exception as e:
                logger.warning(
                    "%s rejected converted arguments (%s); retrying with originals",
                    function_name,
                    e,
                )
                return func(*args, **kwargs)

        return wrapper

    def _convert_argument(self, value: Any, function: str) -> Any:
        if not isinstance(value, (str, date)):
            return value
        fmt = detect_format(value)
        if not fmt.detected:
            return value
        return self.support_legacy(value, function).standardized_instant

    def _record_usage(
        self,
        function: str,
        fmt: LegacyFormat,
        value: Any,
        converted: bool,
    ) -> None:
        self._usage_log.append(
            LegacyUsage(
                function=function,
                format=fmt.type,
                timestamp=self._time_source.now(),
                converted=converted,
                value_preview=repr(value)[:_PREVIEW_LENGTH],
            )
        )

    def _report_deprecation(self, function: str, fmt: LegacyFormat, converted: bool) -> None:
        if not self.config.emit_deprecation_warnings:
            return
        if not self._throttle.should_fire((function, fmt.type.value)):
            return

        if not converted:
            severity = NoticeSeverity.ERROR
        elif fmt.confidence >= 0.8:
            severity = NoticeSeverity.INFO
        else:
            severity = NoticeSeverity.WARNING

        message = (
            f"{function} received a legacy {fmt.type.value} timestamp; "
            "store canonical millisecond instants instead"
        )
        self._notices.append(
            DeprecationNotice(
                function=function,
                format=fmt.type,
                severity=severity,
                message=message,
                timestamp=self._time_source.now(),
            )
        )
        logger.log(
            severity.log_level,
            message,
            extra={"function": function, "format": fmt.type.value},
        )

    # =========================================================================
    # Analytics
    # =========================================================================

    @property
    def deprecation_notices(self) -> list[DeprecationNotice]:
        """Notices emitted so far, oldest first."""
        return list(self._notices)

    def usage_stats(self) -> LegacyUsageStats:
        """Aggregate the usage log."""
        usage = list(self._usage_log)
        by_function = Counter(u.function for u in usage)
        by_format = Counter(u.format.value for u in usage)
        most_used = by_function.most_common(1)
        converted = sum(1 for u in usage if u.converted)
        return LegacyUsageStats(
            total_calls=len(usage),
            unique_functions=len(by_function),
            most_used_function=most_used[0][0] if most_used else None,
            conversion_rate=converted / len(usage) if usage else 0.0,
            calls_by_format=dict(by_format),
            recent_usage=tuple(usage[-_RECENT_USAGE:]),
        )

    def clear_logs(self) -> None:
        """Forget usage, notices and throttle state."""
        self._usage_log.clear()
        self._notices.clear()
        self._throttle.reset()


__all__ = [
    "CompatibilityResult",
    "DeprecationNotice",
    "LegacyFormatConverter",
    "LegacyUsage",
    "LegacyUsageStats",
    "NoticeSeverity",
]
