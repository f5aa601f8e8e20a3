"""Minimal synchronous publish/subscribe channel.

Listeners run on the event-loop thread in subscription order.  A
failing listener is logged and skipped so one bad consumer cannot stop
the others from being notified.
"""

from __future__ import annotations

from typing import Callable, Generic, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class EventEmitter(Generic[T]):
    """Fan a value out to every subscribed callback.

    Usage::

        changed: EventEmitter[CallGraphIndex | None] = EventEmitter("index_changed")
        unsubscribe = changed.subscribe(lambda index: ...)
        changed.emit(new_index)
        unsubscribe()
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._listeners: list[Callable[[T], None]] = []

    def subscribe(self, listener: Callable[[T], None]) -> Callable[[], None]:
        """Register *listener* and return a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def emit(self, value: T) -> None:
        for listener in list(self._listeners):
            try:
                listener(value)
            except Exception:
                logger.exception("event_listener_failed", emitter=self.name)

    def clear(self) -> None:
        self._listeners.clear()

    def __len__(self) -> int:
        return len(self._listeners)
