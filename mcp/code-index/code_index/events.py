"""Plain observer list for engine notifications.

Emission points (state transitions, file processing start/finish) fire
synchronously to every current listener. Subscribing or unsubscribing never
affects engine behavior, and a failing listener does not stop the others.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

__all__ = [
    'EventEmitter',
    'Subscription',
]

logger = logging.getLogger(__name__)


class Subscription:
    """Handle returned by EventEmitter.subscribe(). dispose() unsubscribes."""

    def __init__(self, unsubscribe: Callable[[], None]) -> None:
        self._unsubscribe: Callable[[], None] | None = unsubscribe

    def dispose(self) -> None:
        """Unsubscribe. Idempotent."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None


class EventEmitter[T]:
    """Broadcast values of type T to subscribed listeners."""

    def __init__(self, name: str) -> None:
        self._name = name
        self._listeners: list[Callable[[T], None]] = []

    def subscribe(self, listener: Callable[[T], None]) -> Subscription:
        """Register a listener. Returns a Subscription for removal."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return Subscription(unsubscribe)

    def emit(self, value: T) -> None:
        """Deliver value to every listener registered at call time."""
        for listener in list(self._listeners):
            try:
                listener(value)
            except Exception:
                logger.exception(f'[{self._name}] Listener {listener!r} failed')

    def clear(self) -> None:
        """Remove all listeners."""
        self._listeners.clear()

    @property
    def listener_count(self) -> int:
        return len(self._listeners)
