"""Library exceptions for the temporalfix package."""

from typing import Any


class TemporalFixError(Exception):
    """Base exception for temporalfix library."""

    pass


class ValidationError(TemporalFixError):
    """
    Raised when an instant is malformed or outside the valid range.

    Components that must always return a value (TimeSource, Stamper)
    catch this internally and substitute a fresh instant.
    """

    def __init__(self, value: Any, issues: list[str] | None = None) -> None:
        self.value = value
        self.issues = list(issues or [])
        detail = "; ".join(self.issues) if self.issues else "invalid instant"
        super().__init__(f"Invalid instant {value!r}: {detail}")


class ConversionError(TemporalFixError):
    """
    Raised when a legacy timestamp representation cannot be converted.

    The legacy converter recovers from this by falling back to the
    current instant and logging a warning.
    """

    def __init__(self, value: Any, format_type: str, message: str) -> None:
        self.value = value
        self.format_type = format_type
        self.message = message
        super().__init__(f"Cannot convert {value!r} as {format_type}: {message}")


class CacheConsistencyError(TemporalFixError):
    """
    Raised internally when cache bookkeeping is found to be corrupted.

    Never reaches callers: the cache clears and rebuilds itself.
    """

    def __init__(self, key: str | None, message: str) -> None:
        self.key = key
        super().__init__(f"Cache consistency error (key={key!r}): {message}")


class StoreError(TemporalFixError):
    """Raised when a key/value store operation fails."""

    def __init__(self, operation: str, key: str | None, message: str) -> None:
        self.operation = operation
        self.key = key
        target = f" for key {key!r}" if key is not None else ""
        super().__init__(f"Store {operation} failed{target}: {message}")


__all__ = [
    "TemporalFixError",
    "ValidationError",
    "ConversionError",
    "CacheConsistencyError",
    "StoreError",
]
