"""Synchronous in-process publish/subscribe.

Listeners run on the calling thread in registration order. Exceptions raised
by a listener propagate to whoever called ``dispatch``.
"""

import logging
from collections.abc import Callable
from typing import Any, Optional

logger = logging.getLogger(__name__)

Listener = Callable[[Any], None]


class EventDispatcher:
    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = {}

    def add_listener(self, event_name: str, listener: Listener) -> None:
        self._listeners.setdefault(event_name, []).append(listener)

    def remove_listener(self, event_name: str, listener: Listener) -> None:
        listeners = self._listeners.get(event_name)
        if not listeners:
            return
        self._listeners[event_name] = [
            registered for registered in listeners if registered != listener
        ]

    def clear_listeners(self, event_name: Optional[str] = None) -> None:
        if event_name is None:
            self._listeners.clear()
            return
        self._listeners.pop(event_name, None)

    def has_listeners(self, event_name: str) -> bool:
        return bool(self._listeners.get(event_name))

    def get_listeners(self, event_name: str) -> list[Listener]:
        return list(self._listeners.get(event_name, []))

    def dispatch(self, event: Any) -> None:
        event_name = event.event_name
        # snapshot so listeners may (un)subscribe while being notified
        listeners = self.get_listeners(event_name)
        if not listeners:
            return
        logger.debug(f"Dispatching {event_name} to {len(listeners)} listener(s)")
        for listener in listeners:
            listener(event)
