"""
Typed observer channels.

A Channel delivers items of one type to every subscribed listener.
Listeners are plain callables; a listener that raises is logged and
counted but never interrupts delivery to the others or reaches the
emitter.

Used for:
- Stamp events emitted by the Stamper
- Progress updates emitted by the MigrationEngine
- Alerts emitted by the HealthMonitor

Example:
    >>> from temporalfix.channels import Channel
    >>>
    >>> progress: Channel[int] = Channel("progress")
    >>> unsubscribe = progress.subscribe(lambda value: print(value))
    >>> progress.emit(50)
    50
    1
    >>> unsubscribe()
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any, Generic

from temporalfix.types import T, Unsubscribe

logger = logging.getLogger(__name__)


def _listener_name(listener: Callable[..., Any]) -> str:
    return getattr(listener, "__qualname__", None) or type(listener).__name__


class Channel(Generic[T]):
    """
    Thread-safe publish/subscribe channel for a single payload type.

    Attributes:
        name: Channel name used in log messages
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._listeners: list[Callable[[T], Any]] = []
        self._lock = threading.RLock()
        self._stats = {
            "emitted": 0,
            "delivered": 0,
            "listener_errors": 0,
        }

    def subscribe(self, listener: Callable[[T], Any]) -> Unsubscribe:
        """
        Register a listener.

        Args:
            listener: Callable receiving each emitted item

        Returns:
            Callable that removes the listener again
        """
        with self._lock:
            self._listeners.append(listener)

        logger.debug(
            "Registered listener %s on channel %s",
            _listener_name(listener),
            self.name,
        )

        def _unsubscribe() -> None:
            self.unsubscribe(listener)

        return _unsubscribe

    def unsubscribe(self, listener: Callable[[T], Any]) -> bool:
        """
        Remove a listener.

        Returns:
            True if the listener was registered and removed
        """
        with self._lock:
            for i, existing in enumerate(self._listeners):
                if existing is listener:
                    self._listeners.pop(i)
                    return True
        return False

    def emit(self, item: T) -> int:
        """
        Deliver an item to every listener.

        Args:
            item: Payload to deliver

        Returns:
            Number of listeners that handled the item without raising
        """
        with self._lock:
            listeners = list(self._listeners)
            self._stats["emitted"] += 1

        delivered = 0
        for listener in listeners:
            try:
                listener(item)
                delivered += 1
            except Exception as e:
                with self._lock:
                    self._stats["listener_errors"] += 1
                logger.exception(
                    "Listener %s failed on channel %s: %s",
                    _listener_name(listener),
                    self.name,
                    e,
                    extra={"channel": self.name, "error": str(e)},
                )

        with self._lock:
            self._stats["delivered"] += delivered
        return delivered

    def clear(self) -> None:
        """Remove all listeners."""
        with self._lock:
            self._listeners.clear()

    @property
    def listener_count(self) -> int:
        """Number of registered listeners."""
        with self._lock:
            return len(self._listeners)

    @property
    def stats(self) -> dict[str, int]:
        """Copy of the delivery counters."""
        with self._lock:
            return dict(self._stats)


__all__ = ["Channel"]
