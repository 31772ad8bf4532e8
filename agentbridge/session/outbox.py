"""
Outbound event queue for an offline remote peer.

Events are held in order while the peer is away and replayed when it comes
back. The queue is bounded; when full the oldest event is dropped.
"""

import logging
from collections import deque

logger = logging.getLogger(__name__)


class Outbox:
    """Bounded FIFO of events waiting for the remote peer."""

    def __init__(self, limit: int = 500):
        self._limit = max(1, limit)
        self._events: deque[dict] = deque()
        self.dropped = 0

    def push(self, event: dict) -> None:
        if len(self._events) >= self._limit:
            dropped = self._events.popleft()
            self.dropped += 1
            logger.warning(
                "Outbox full (%d events), dropping oldest %s event",
                self._limit,
                dropped.get("type"),
            )
        self._events.append(event)

    def push_front(self, events: list[dict]) -> None:
        """Put events that failed to send back at the head, keeping their order."""
        for event in reversed(events):
            self._events.appendleft(event)
        while len(self._events) > self._limit:
            self._events.popleft()
            self.dropped += 1

    def drain(self) -> list[dict]:
        """Remove and return every queued event, oldest first."""
        events = list(self._events)
        self._events.clear()
        return events

    def __len__(self) -> int:
        return len(self._events)
