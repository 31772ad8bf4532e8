"""
Remote peer channel.

The orchestrator talks to the remote controller (the mobile app, through a
relay) over an opaque bidirectional channel. Events in both directions are
plain dicts with a "type" key:

Outbound: session_state, agent_message, permission_request, cost_update.
Inbound: presence, permission_response, chat, command, end_session.
"""

import logging
from typing import Callable, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

MOBILE = "mobile"

ChannelHandler = Callable[[dict], None]


@runtime_checkable
class RemoteChannel(Protocol):
    """Protocol for the transport between a session and its remote peer."""

    async def send(self, event: dict) -> None:
        """Send an event to the peer. May raise if the transport fails."""
        ...

    def on_event(self, handler: ChannelHandler) -> None:
        """Register a handler for inbound events."""
        ...

    def off_event(self, handler: ChannelHandler) -> None:
        ...

    def is_peer_online(self, kind: str = MOBILE) -> bool:
        """Whether a peer of the given device kind is present."""
        ...


def presence_event(kind: str, online: bool) -> dict:
    return {"type": "presence", "event": "join" if online else "leave", "device_type": kind}


class InMemoryChannel:
    """
    Channel that keeps everything in process.

    Sent events are recorded in `sent`; inbound events are injected with
    deliver(). Used by the local CLI and by tests.
    """

    def __init__(self, peers_online: tuple[str, ...] = ()):
        self.sent: list[dict] = []
        self._handlers: list[ChannelHandler] = []
        self._online: set[str] = set(peers_online)

    async def send(self, event: dict) -> None:
        self.sent.append(event)

    def on_event(self, handler: ChannelHandler) -> None:
        self._handlers.append(handler)

    def off_event(self, handler: ChannelHandler) -> None:
        try:
            self._handlers.remove(handler)
        except ValueError:
            pass

    def is_peer_online(self, kind: str = MOBILE) -> bool:
        return kind in self._online

    def deliver(self, event: dict) -> None:
        """Hand an inbound event to every handler."""
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception:
                logger.exception("Channel handler failed on %s", event.get("type"))

    def set_peer_online(self, kind: str = MOBILE, online: bool = True) -> None:
        """Change presence and announce it like a relay would."""
        if online:
            self._online.add(kind)
        else:
            self._online.discard(kind)
        self.deliver(presence_event(kind, online))

    def sent_of_type(self, event_type: str) -> list[dict]:
        return [event for event in self.sent if event.get("type") == event_type]
