"""
Session orchestrator.

Binds one agent backend to one user-facing session. On top of what the
backend does it keeps session-wide usage totals, tracks whether the remote
(mobile) peer is connected, queues outbound events while it is away, and
holds tool calls that need approval until the peer decides.

State machine:

    created -> starting -> (running <-> idle) -> stopped

error is reachable from every state except stopped, and a new prompt or a
vendor idle moves the session out of it again. stopped is terminal.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Coroutine, Optional
from uuid import uuid4

from agentbridge.agents.base import AgentBackend, PermissionResponder
from agentbridge.agents.messages import (
    AgentMessage,
    AgentStatus,
    FsEdit,
    PermissionResponse,
    StatusMessage,
    TokenCount,
    ToolCall,
    ToolResult,
)
from agentbridge.config import settings
from agentbridge.errors import (
    AgentBridgeError,
    AgentBusyError,
    InvalidTransitionError,
    PermissionTimeoutError,
    SessionStoppedError,
)
from agentbridge.session.channel import MOBILE, InMemoryChannel, RemoteChannel
from agentbridge.session.events import SessionEventEmitter, SessionEventHandler, SessionEventType
from agentbridge.session.outbox import Outbox
from agentbridge.session.policy import ApprovalRequirement, PermissionPolicy
from agentbridge.session.stats import SessionStats

logger = logging.getLogger(__name__)

# How long stop() waits for queued events to reach the peer
FLUSH_TIMEOUT_SECS = 5.0


class SessionState(str, Enum):
    """Session-level lifecycle, distinct from backend status."""

    CREATED = "created"
    STARTING = "starting"
    RUNNING = "running"
    IDLE = "idle"
    STOPPED = "stopped"
    ERROR = "error"


ALLOWED_TRANSITIONS: dict[SessionState, set[SessionState]] = {
    SessionState.CREATED: {SessionState.STARTING, SessionState.ERROR, SessionState.STOPPED},
    SessionState.STARTING: {SessionState.RUNNING, SessionState.IDLE, SessionState.ERROR, SessionState.STOPPED},
    SessionState.RUNNING: {SessionState.IDLE, SessionState.ERROR, SessionState.STOPPED},
    SessionState.IDLE: {SessionState.RUNNING, SessionState.ERROR, SessionState.STOPPED},
    SessionState.ERROR: {SessionState.RUNNING, SessionState.IDLE, SessionState.STOPPED},
    SessionState.STOPPED: set(),
}

# Backend statuses as session states. A vendor "stopped" only ends the
# current prompt; the session itself stops through stop().
BACKEND_STATUS_STATES: dict[str, SessionState] = {
    AgentStatus.STARTING.value: SessionState.STARTING,
    AgentStatus.RUNNING.value: SessionState.RUNNING,
    AgentStatus.IDLE.value: SessionState.IDLE,
    AgentStatus.STOPPED.value: SessionState.IDLE,
    AgentStatus.ERROR.value: SessionState.ERROR,
}


def can_transition(current: SessionState, target: SessionState) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def _payload(event: dict) -> dict:
    """Fields of a peer command, nested under "payload" or flat on the event."""
    payload = event.get("payload")
    return payload if isinstance(payload, dict) else event


@dataclass
class PendingPermission:
    """A tool call waiting for the remote peer's decision."""

    request_id: str
    call: ToolCall
    requirement: ApprovalRequirement
    expires_at: datetime
    held: list[AgentMessage] = field(default_factory=list)
    timer: Optional[asyncio.Task] = None
    resolving: bool = False

    def to_event(self, session_id: str | None, agent: str) -> dict:
        return {
            "type": "permission_request",
            "request_id": self.request_id,
            "session_id": session_id,
            "agent": agent,
            "tool_name": self.call.tool_name,
            "tool_args": self.call.args,
            "risk_level": self.requirement.risk_level,
            "description": self.requirement.description,
            "affected_files": list(self.requirement.affected_files),
            "expires_at": self.expires_at.isoformat(),
        }


class SessionOrchestrator:
    """
    Drives one backend for one session and bridges it to a remote peer.

    All backend messages arrive through a synchronous handler, in order.
    Work that has to wait (sending to the peer, permission timeouts,
    commands from the peer) runs in tasks owned by the orchestrator.
    """

    def __init__(
        self,
        backend: AgentBackend,
        channel: Optional[RemoteChannel] = None,
        policy: Optional[PermissionPolicy] = None,
        *,
        permission_timeout: Optional[float] = None,
        outbox_limit: Optional[int] = None,
    ):
        self._backend = backend
        self._channel = channel if channel is not None else InMemoryChannel()
        self._policy = policy if policy is not None else PermissionPolicy()
        self._permission_timeout = (
            settings.permission_timeout_secs if permission_timeout is None else permission_timeout
        )

        self._state = SessionState.CREATED
        self._session_id: str | None = None
        self._error_detail: str | None = None
        self._stats = SessionStats()
        self._events = SessionEventEmitter()

        self._mobile_connected = self._channel.is_peer_online(MOBILE)
        self._outbox = Outbox(settings.outbox_limit if outbox_limit is None else outbox_limit)
        self._flush_task: asyncio.Task | None = None

        self._pending_by_request: dict[str, PendingPermission] = {}
        self._pending_by_call: dict[str, PendingPermission] = {}
        self._denied_calls: set[str] = set()
        self._tasks: set[asyncio.Task] = set()

    # ==========================================
    # Accessors
    # ==========================================

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def stats(self) -> SessionStats:
        return self._stats

    @property
    def error_detail(self) -> str | None:
        return self._error_detail

    @property
    def mobile_connected(self) -> bool:
        return self._mobile_connected

    @property
    def backend(self) -> AgentBackend:
        return self._backend

    @property
    def pending_permissions(self) -> list[str]:
        return list(self._pending_by_request)

    @property
    def queued_events(self) -> int:
        return len(self._outbox)

    def on_event(self, handler: SessionEventHandler) -> None:
        self._events.subscribe(handler)

    def off_event(self, handler: SessionEventHandler) -> None:
        self._events.unsubscribe(handler)

    # ==========================================
    # Operations
    # ==========================================

    async def start(self, initial_prompt: Optional[str] = None) -> str:
        """
        Start the backend session.

        Args:
            initial_prompt: Prompt to run once the session is up.

        Returns:
            The session id.

        Raises:
            SessionStoppedError: If the session was stopped.
            InvalidTransitionError: If the session was already started.
        """
        self._ensure_not_stopped()
        if self._state != SessionState.CREATED:
            raise InvalidTransitionError(self._state.value, SessionState.STARTING.value)

        self._transition(SessionState.STARTING)
        self._backend.on_message(self._on_agent_message)
        self._channel.on_event(self._on_channel_event)

        try:
            result = await self._backend.start_session()
        except Exception as e:
            self._fail(f"Failed to start {self._backend.display_name}: {e}")
            raise

        self._session_id = result.session_id
        logger.info("Session %s started with %s", self._session_id, self._backend.display_name)
        self._send_remote(self._state_event())

        if initial_prompt:
            await self.send_prompt(initial_prompt)
        return self._session_id

    async def send_prompt(self, text: str) -> None:
        """
        Run a prompt and return when the agent has finished it.

        Raises:
            SessionStoppedError: If the session was stopped.
            InvalidTransitionError: If the session was never started.
            AgentBusyError: If a prompt is already running.
            AgentBackendError: If the backend failed; the session is left in error.
        """
        self._ensure_not_stopped()
        if self._session_id is None:
            raise InvalidTransitionError(self._state.value, SessionState.RUNNING.value)

        self._stats.prompts += 1
        try:
            await self._backend.send_prompt(self._session_id, text)
        except AgentBusyError:
            self._stats.prompts -= 1
            raise
        except Exception as e:
            if self._state != SessionState.STOPPED:
                self._fail(str(e))
            raise

    async def cancel(self) -> None:
        """Cancel the running prompt. Pending approvals are denied."""
        self._ensure_not_stopped()
        if self._session_id is None:
            return
        await self._deny_all_pending("cancelled")
        await self._backend.cancel(self._session_id)

    async def respond_to_permission(self, request_id: str, approved: bool) -> bool:
        """
        Apply a decision for a pending permission request.

        Returns:
            False if no request with that id is pending.
        """
        self._ensure_not_stopped()
        return await self._resolve_permission(request_id, approved, "local")

    async def stop(self) -> SessionStats:
        """
        Stop the session and release the backend.

        Idempotent. Pending approvals are denied, the backend is disposed and
        queued events get a bounded chance to reach the peer.

        Returns:
            Final session statistics.
        """
        if self._state == SessionState.STOPPED:
            return self._stats

        logger.info("Stopping session %s", self._session_id)
        await self._deny_all_pending("session stopped")
        self._backend.off_message(self._on_agent_message)
        try:
            await self._backend.dispose()
        finally:
            self._transition(SessionState.STOPPED)
            self._channel.off_event(self._on_channel_event)

        if self._flush_task is not None and not self._flush_task.done():
            done, _ = await asyncio.wait({self._flush_task}, timeout=FLUSH_TIMEOUT_SECS)
            if not done:
                logger.warning("Gave up delivering %d queued events", len(self._outbox))
        return self._stats

    # ==========================================
    # Backend messages
    # ==========================================

    def _on_agent_message(self, message: AgentMessage) -> None:
        if self._state == SessionState.STOPPED:
            return

        call_id = getattr(message, "call_id", None)

        if call_id and call_id in self._denied_calls:
            logger.debug("Dropping %s for denied call %s", message.type, call_id)
            return

        if call_id and call_id in self._pending_by_call:
            self._pending_by_call[call_id].held.append(message)
            return

        if isinstance(message, ToolCall):
            self._stats.tool_calls += 1
            requirement = self._policy.evaluate(message)
            if requirement.required:
                self._request_permission(message, requirement)
                return

        self._forward(message)

    def _forward(self, message: AgentMessage) -> None:
        """Apply a message to session state and pass it on."""
        if isinstance(message, StatusMessage):
            self._apply_backend_status(message)
        elif isinstance(message, TokenCount):
            self._stats.apply_snapshot(message)
        elif isinstance(message, FsEdit):
            self._stats.files_edited.add(message.path)

        self._events.emit(SessionEventType.AGENT_MESSAGE, {"message": message})
        self._send_remote(
            {"type": "agent_message", "session_id": self._session_id, "message": message.to_dict()}
        )

        if isinstance(message, TokenCount):
            stats = self._stats.to_dict()
            self._events.emit(SessionEventType.STATS_UPDATED, stats)
            self._send_remote({"type": "cost_update", "session_id": self._session_id, **stats})

    def _apply_backend_status(self, message: StatusMessage) -> None:
        target = BACKEND_STATUS_STATES.get(str(message.status))
        if target is None:
            return
        if target == SessionState.ERROR:
            self._fail(message.detail or f"{self._backend.display_name} reported an error")
        else:
            self._transition(target)

    # ==========================================
    # Permissions
    # ==========================================

    def _request_permission(self, call: ToolCall, requirement: ApprovalRequirement) -> None:
        pending = PendingPermission(
            request_id=str(uuid4()),
            call=call,
            requirement=requirement,
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=self._permission_timeout),
            held=[call],
        )
        self._pending_by_request[pending.request_id] = pending
        self._pending_by_call[call.call_id] = pending
        pending.timer = self._spawn(self._expire_permission(pending.request_id))

        logger.info("Permission requested for %s (%s)", call.tool_name, pending.request_id)
        self._events.emit(
            SessionEventType.PERMISSION_REQUESTED,
            {
                "request_id": pending.request_id,
                "call_id": call.call_id,
                "tool_name": call.tool_name,
                "description": requirement.description,
                "risk_level": requirement.risk_level,
            },
        )
        self._send_remote(pending.to_event(self._session_id, self._backend.agent_id))

    async def _expire_permission(self, request_id: str) -> None:
        await asyncio.sleep(self._permission_timeout)
        pending = self._pending_by_request.get(request_id)
        if pending is None or pending.resolving:
            return
        logger.warning("%s, denying", PermissionTimeoutError(request_id))
        self._stats.permissions_timed_out += 1
        await self._resolve_permission(request_id, False, "timeout")

    async def _resolve_permission(self, request_id: str, approved: bool, reason: str) -> bool:
        pending = self._pending_by_request.get(request_id)
        if pending is None or pending.resolving:
            logger.debug("No pending permission %s", request_id)
            return False

        # Still registered while the backend is told, so messages keep being held
        pending.resolving = True
        if pending.timer is not None and pending.timer is not asyncio.current_task():
            pending.timer.cancel()

        if isinstance(self._backend, PermissionResponder):
            try:
                await self._backend.respond_to_permission(request_id, approved)
            except AgentBridgeError as e:
                logger.warning("Backend did not take permission decision %s: %s", request_id, e)
        else:
            self._forward(PermissionResponse(id=request_id, approved=approved))

        del self._pending_by_request[request_id]
        del self._pending_by_call[pending.call.call_id]

        if approved:
            self._stats.permissions_approved += 1
            for message in pending.held:
                self._forward(message)
        else:
            self._stats.permissions_denied += 1
            self._denied_calls.add(pending.call.call_id)
            logger.info(
                "Denied %s (%s), dropped %d held messages",
                pending.call.tool_name,
                reason,
                len(pending.held),
            )

        resolution = {
            "request_id": request_id,
            "call_id": pending.call.call_id,
            "approved": approved,
            "reason": reason,
        }
        self._events.emit(SessionEventType.PERMISSION_RESOLVED, resolution)
        self._send_remote({"type": "permission_resolved", "session_id": self._session_id, **resolution})
        return True

    async def _deny_all_pending(self, reason: str) -> None:
        for request_id in list(self._pending_by_request):
            await self._resolve_permission(request_id, False, reason)

    # ==========================================
    # Remote peer
    # ==========================================

    def _on_channel_event(self, event: dict) -> None:
        if self._state == SessionState.STOPPED:
            return

        event_type = event.get("type")
        if event_type == "presence":
            if event.get("device_type", MOBILE) == MOBILE:
                self._set_mobile_connected(event.get("event") == "join")

        elif event_type == "permission_response":
            request_id = event.get("request_id")
            if request_id:
                self._spawn(self._resolve_permission(str(request_id), bool(event.get("approved")), "remote"))

        elif event_type == "chat":
            content = _payload(event).get("content")
            if content:
                self._spawn(self.send_prompt(str(content)))

        elif event_type == "command":
            payload = _payload(event)
            action = payload.get("action") or payload.get("command")
            if action in ("cancel", "interrupt"):
                self._spawn(self.cancel())
            elif action == "end_session":
                self._spawn(self.stop())
            else:
                logger.info("Ignoring unknown remote command: %s", action)

        elif event_type == "end_session":
            self._spawn(self.stop())

        else:
            logger.debug("Ignoring remote event type: %s", event_type)

    def _set_mobile_connected(self, online: bool) -> None:
        if online == self._mobile_connected:
            return
        self._mobile_connected = online
        logger.info("Mobile peer %s", "connected" if online else "disconnected")
        self._events.emit(
            SessionEventType.MOBILE_CONNECTED if online else SessionEventType.MOBILE_DISCONNECTED,
            {"queued": len(self._outbox)},
        )
        if online:
            self._schedule_flush()

    def _send_remote(self, event: dict) -> None:
        """Queue an event for the peer; it is sent right away when the peer is online."""
        self._outbox.push(event)
        if self._mobile_connected:
            self._schedule_flush()

    def _schedule_flush(self) -> None:
        if self._flush_task is None or self._flush_task.done():
            self._flush_task = self._spawn(self._flush_outbox())

    async def _flush_outbox(self) -> None:
        # One flusher at a time keeps delivery in order
        while self._mobile_connected:
            events = self._outbox.drain()
            if not events:
                return
            for index, event in enumerate(events):
                try:
                    await self._channel.send(event)
                except Exception as e:
                    logger.warning("Failed to send %s to peer, requeueing: %s", event.get("type"), e)
                    self._outbox.push_front(events[index:])
                    return

    # ==========================================
    # Internals
    # ==========================================

    def _transition(self, target: SessionState) -> bool:
        current = self._state
        if target == current:
            return False
        if not can_transition(current, target):
            logger.info("Ignoring session transition %s -> %s", current.value, target.value)
            return False

        self._state = target
        if target != SessionState.ERROR:
            self._error_detail = None
        self._events.emit(
            SessionEventType.STATE_CHANGED,
            {"state": target.value, "previous": current.value, "detail": self._error_detail},
        )
        if self._session_id is not None:
            self._send_remote(self._state_event())
        return True

    def _fail(self, detail: str) -> None:
        """Move to error with a readable reason."""
        if self._state == SessionState.STOPPED:
            return
        if self._state == SessionState.ERROR:
            self._error_detail = detail
            return
        self._error_detail = detail
        self._stats.errors += 1
        self._state, previous = SessionState.ERROR, self._state
        logger.warning("Session %s error: %s", self._session_id, detail)
        self._events.emit(
            SessionEventType.STATE_CHANGED,
            {"state": SessionState.ERROR.value, "previous": previous.value, "detail": detail},
        )
        if self._session_id is not None:
            self._send_remote(self._state_event())

    def _state_event(self) -> dict:
        return {
            "type": "session_state",
            "session_id": self._session_id,
            "agent": self._backend.agent_id,
            "state": self._state.value,
            "detail": self._error_detail,
        }

    def _ensure_not_stopped(self) -> None:
        if self._state == SessionState.STOPPED:
            raise SessionStoppedError(f"Session {self._session_id} has been stopped")

    def _spawn(self, coro: Coroutine) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("Session task failed: %s", exc, exc_info=exc)
