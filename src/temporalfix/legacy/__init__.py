"""
Legacy timestamp detection and conversion.

Example:
    >>> from temporalfix.legacy import LegacyFormatConverter, LegacyFormatType
    >>>
    >>> converter = LegacyFormatConverter(time_source)
    >>> converter.detect("há 2 dias").type is LegacyFormatType.RELATIVE_STRING
    True
"""

from temporalfix.legacy.converter import (
    CompatibilityResult,
    DeprecationNotice,
    LegacyFormatConverter,
    LegacyUsage,
    LegacyUsageStats,
    NoticeSeverity,
)
from temporalfix.legacy.formats import (
    LegacyFormat,
    LegacyFormatType,
    detect_format,
    to_instant,
)

__all__ = [
    "CompatibilityResult",
    "DeprecationNotice",
    "LegacyFormat",
    "LegacyFormatConverter",
    "LegacyFormatType",
    "LegacyUsage",
    "LegacyUsageStats",
    "NoticeSeverity",
    "detect_format",
    "to_instant",
]
