"""Synchronous event bus for task lifecycle notifications."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List

from one_more_time.domain.errors import InvalidArgument

logger = logging.getLogger(__name__)


class EventBus:
    """Synchronous publish-subscribe event bus.

    Listeners subscribe by event name (``retry``, ``timeout``, ``abort``) or
    receive every event through :meth:`on_all`. Events are dispatched in
    registration order, synchronously with the state transition that raised
    them. A failing listener is logged and skipped: notifications never feed
    back into retry decisions.
    """

    def __init__(self, event_names: tuple[str, ...]) -> None:
        self._event_names = event_names
        self._listeners: Dict[str, List[Callable[[Any], None]]] = {}
        self._global_listeners: List[Callable[[Any], None]] = []

    def subscribe(self, event_name: str, callback: Callable[[Any], None]) -> None:
        """Register a callback for a named event."""
        if event_name not in self._event_names:
            available = ", ".join(self._event_names)
            raise InvalidArgument(
                f"Unknown event: {event_name}. Available events: {available}", field="event"
            )
        if not callable(callback):
            raise InvalidArgument("callback must be callable", field="callback")
        self._listeners.setdefault(event_name, []).append(callback)

    def unsubscribe(self, event_name: str, callback: Callable[[Any], None]) -> bool:
        """Remove a named-event callback; returns False if it was not registered."""
        listeners = self._listeners.get(event_name, [])
        if callback in listeners:
            listeners.remove(callback)
            return True
        return False

    def on_all(self, callback: Callable[[Any], None]) -> None:
        """Register a callback that receives every event."""
        if not callable(callback):
            raise InvalidArgument("callback must be callable", field="callback")
        self._global_listeners.append(callback)

    def off_all(self, callback: Callable[[Any], None]) -> bool:
        """Remove an on_all callback; returns False if it was not registered."""
        if callback in self._global_listeners:
            self._global_listeners.remove(callback)
            return True
        return False

    def emit(self, event: Any) -> None:
        """Dispatch an event to all matching listeners."""
        for cb in list(self._global_listeners) + list(self._listeners.get(event.name, [])):
            try:
                cb(event)
            except Exception:
                logger.exception(f"Listener for '{event.name}' event failed")
