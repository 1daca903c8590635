"""
Expiring-key registry for throttling repeated notifications.

Maps a key to the instant it last fired. A key may fire again only once
its window has elapsed. Deprecation warnings use it keyed by
(function, format); alert rules use it keyed by rule id with a per-rule
window.
"""

from __future__ import annotations

import threading
from collections.abc import Hashable

from temporalfix.types import Clock, Instant


class ExpiringKeyRegistry:
    """
    Registry of key -> last-fired instant with a fixed or per-call window.

    Attributes:
        window_ms: Default minimum interval between firings of one key

    Example:
        >>> registry = ExpiringKeyRegistry(300_000, clock=time_source.now)
        >>> registry.should_fire(("support_legacy", "manual-string"))
        True
        >>> registry.should_fire(("support_legacy", "manual-string"))
        False
    """

    def __init__(self, window_ms: int, clock: Clock) -> None:
        if window_ms < 0:
            raise ValueError(f"window_ms must be >= 0, got {window_ms}")
        self.window_ms = window_ms
        self._clock = clock
        self._last_fired: dict[Hashable, Instant] = {}
        self._lock = threading.Lock()

    def should_fire(self, key: Hashable, window_ms: int | None = None) -> bool:
        """
        Check whether key may fire now and, if so, record the firing.

        Args:
            key: Throttle key
            window_ms: Override of the default window for this check

        Returns:
            True if the key never fired or its window has elapsed
        """
        window = self.window_ms if window_ms is None else window_ms
        now = int(self._clock())
        with self._lock:
            last = self._last_fired.get(key)
            if last is not None and now - last < window:
                return False
            self._last_fired[key] = now
            return True

    def last_fired(self, key: Hashable) -> Instant | None:
        """Instant the key last fired, or None."""
        with self._lock:
            return self._last_fired.get(key)

    def prune(self) -> int:
        """
        Drop keys whose default window has elapsed.

        Returns:
            Number of keys removed
        """
        now = int(self._clock())
        with self._lock:
            expired = [k for k, t in self._last_fired.items() if now - t >= self.window_ms]
            for key in expired:
                del self._last_fired[key]
        return len(expired)

    def reset(self, key: Hashable | None = None) -> None:
        """Forget one key, or every key when none is given."""
        with self._lock:
            if key is None:
                self._last_fired.clear()
            else:
                self._last_fired.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._last_fired)


__all__ = ["ExpiringKeyRegistry"]
