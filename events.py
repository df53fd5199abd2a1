"""Thread-safe observer channel used for session and controller events."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Generic, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


class Subscription:
    def __init__(self, cancel: Callable[[], None]) -> None:
        self._cancel = cancel
        self.active = True

    def cancel(self) -> None:
        if self.active:
            self.active = False
            self._cancel()


class EventChannel(Generic[T]):
    """Fan-out of one event type to any number of listeners.

    Listeners are called in subscription order on the emitting thread. A
    listener that raises is logged and does not stop delivery to the rest.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._lock = threading.Lock()
        self._listeners: list[Callable[[T], None]] = []

    def subscribe(self, listener: Callable[[T], None]) -> Subscription:
        with self._lock:
            self._listeners.append(listener)
        return Subscription(lambda: self._remove(listener))

    def emit(self, event: T) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception("%s listener failed", self.name)

    def clear(self) -> None:
        with self._lock:
            self._listeners.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._listeners)

    def _remove(self, listener: Callable[[T], None]) -> None:
        with self._lock:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass
