"""
Session-level events.

The orchestrator reports lifecycle changes, agent output, permission
traffic and peer presence to local subscribers (the CLI display, tests).
Delivery is synchronous and in order.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable

logger = logging.getLogger(__name__)


class SessionEventType(str, Enum):
    """Types of events a session emits."""
    STATE_CHANGED = "state_changed"
    AGENT_MESSAGE = "agent_message"
    PERMISSION_REQUESTED = "permission_requested"
    PERMISSION_RESOLVED = "permission_resolved"
    STATS_UPDATED = "stats_updated"
    MOBILE_CONNECTED = "mobile_connected"
    MOBILE_DISCONNECTED = "mobile_disconnected"


@dataclass
class SessionEvent:
    """A session event."""
    type: SessionEventType
    data: dict = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        data = {
            key: value.to_dict() if hasattr(value, "to_dict") else value
            for key, value in self.data.items()
        }
        return {
            "type": self.type.value,
            **data,
            "timestamp": self.timestamp.isoformat(),
        }


SessionEventHandler = Callable[[SessionEvent], Any]


class SessionEventEmitter:
    """
    Fan-out of session events to subscribers.

    A failing subscriber is logged and does not stop delivery to the rest.
    """

    def __init__(self):
        self._subscribers: list[SessionEventHandler] = []

    def emit(self, event_type: SessionEventType, data: dict | None = None) -> SessionEvent:
        """Deliver an event to all subscribers."""
        event = SessionEvent(type=event_type, data=data or {})

        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                logger.exception("Session event callback failed on %s", event_type.value)
        return event

    def subscribe(self, callback: SessionEventHandler) -> None:
        """Subscribe to all events."""
        self._subscribers.append(callback)

    def unsubscribe(self, callback: SessionEventHandler) -> None:
        """Unsubscribe from events."""
        try:
            self._subscribers.remove(callback)
        except ValueError:
            pass

    def clear(self) -> None:
        self._subscribers.clear()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)
