"""Common type definitions for the temporalfix library."""

from collections.abc import Callable
from typing import Any, TypeVar

# Milliseconds since the Unix epoch
Instant = int

# A record is an arbitrary JSON-compatible mapping
Record = dict[str, Any]

# Zero-argument callable returning the current time in epoch milliseconds
Clock = Callable[[], int | float]

# Callable that detaches a listener from a channel
Unsubscribe = Callable[[], None]

# Type variable for channel payloads
T = TypeVar("T")

# Valid instant range: 2000-01-01T00:00:00Z .. 2100-01-01T00:00:00Z
MIN_VALID_INSTANT: Instant = 946_684_800_000
MAX_VALID_INSTANT: Instant = 4_102_444_800_000

# Reserved fields written by the stamper
CREATED_AT = "createdAt"
UPDATED_AT = "updatedAt"
SCHEMA_VERSION = "schemaVersion"
SHARED_AT = "sharedAt"

# Current schema version tag applied to stamped records
CURRENT_SCHEMA_VERSION = "V8.1"
