"""Observer channel for session events.

Listeners subscribe per event type ('state', 'progress', 'log') or to 'all'.
Events are pushed synchronously right after the mutation that produced them.
"""

import logging
from enum import Enum
from typing import Any, Callable, Dict, List


logger = logging.getLogger(__name__)


class SessionEvent(Enum):
    """Event types published by a flash session."""
    STATE = "state"
    PROGRESS = "progress"
    LOG = "log"
    ALL = "all"


Listener = Callable[[SessionEvent, Any], None]


class SessionEvents:
    """Synchronous publish/subscribe hub."""

    def __init__(self):
        self.listeners: Dict[SessionEvent, List[Listener]] = {}

    def add_listener(self, event_type: SessionEvent, callback: Listener) -> None:
        """Subscribe ``callback(event_type, payload)`` to an event type.

        Args:
            event_type: Event to listen for, or SessionEvent.ALL
            callback: Called with the event type and its payload
        """
        callbacks = self.listeners.setdefault(event_type, [])
        if callback not in callbacks:
            callbacks.append(callback)
            logger.debug(f"Listener added for '{event_type.value}': {_name(callback)}")

    def remove_listener(self, event_type: SessionEvent, callback: Listener) -> None:
        callbacks = self.listeners.get(event_type, [])
        if callback in callbacks:
            callbacks.remove(callback)
            logger.debug(f"Listener removed for '{event_type.value}': {_name(callback)}")

    def publish(self, event_type: SessionEvent, payload: Any) -> None:
        """Deliver an event to its listeners, then to 'all' listeners."""
        targets = list(self.listeners.get(event_type, []))
        if event_type is not SessionEvent.ALL:
            targets += self.listeners.get(SessionEvent.ALL, [])

        for callback in targets:
            try:
                callback(event_type, payload)
            except Exception as e:
                logger.error(f"Error in listener {_name(callback)}: {e}")


def _name(callback: Callable) -> str:
    return getattr(callback, "__name__", repr(callback))
