"""Priority-ordered event dispatcher shared by every role."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .errors import ListenerError

logger = logging.getLogger(__name__)


@dataclass(eq=False)
class EventListener:
    """A subscription to one event type.

    Setting ``active`` to False pauses the listener without removing it.
    """

    event_type: str
    callback: Callable[..., Any]
    priority: int = 0
    active: bool = True


class Emitter:
    """Synchronous publish/subscribe with descending-priority delivery.

    Listeners with equal priority run in subscription order. A listener that
    raises is logged and skipped; the publisher never sees the exception.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[EventListener]] = {}

    def add_listener(self, listener: EventListener) -> EventListener:
        """Insert a prepared listener.

        Args:
            listener: Listener to insert; inactive listeners are ignored

        Returns:
            The same listener, usable as a handle
        """
        if not listener.active:
            return listener
        key = str(listener.event_type)
        listeners = self._listeners.get(key, [])
        listeners.append(listener)
        # stable sort: equal priorities keep insertion order
        self._listeners[key] = sorted(listeners, key=lambda item: item.priority, reverse=True)
        return listener

    def subscribe(
        self, event_type: str, callback: Callable[..., Any], priority: int = 0
    ) -> EventListener:
        """Register a callback for an event type.

        Args:
            event_type: Event name (a GroupEvent member or its string value)
            callback: Callable invoked with the published arguments
            priority: Higher priorities run first

        Returns:
            Listener handle
        """
        return self.add_listener(EventListener(str(event_type), callback, priority))

    def unsubscribe(self, event_type: str, callback: Callable[..., Any] | None = None) -> None:
        """Remove listeners for an event type.

        Args:
            event_type: Event name
            callback: Remove only listeners with this callback; all when None
        """
        key = str(event_type)
        if key not in self._listeners:
            return
        if callback is None:
            del self._listeners[key]
            return
        self._listeners[key] = [item for item in self._listeners[key] if item.callback != callback]

    def listeners(self, event_type: str) -> list[EventListener]:
        return list(self._listeners.get(str(event_type), ()))

    def publish(self, event_type: str, *args: Any) -> None:
        """Invoke every active listener for an event type, in priority order."""
        key = str(event_type)
        for listener in list(self._listeners.get(key, ())):
            if not listener.active:
                continue
            try:
                listener.callback(*args)
            except Exception as e:
                err = ListenerError(key, e)
                logger.exception("%s", err)
