"""
Session layer.

- orchestrator: binds one backend to one session, tracks state and usage
- channel: the remote peer transport and an in-memory implementation
- policy: which tool calls need remote approval
"""

from agentbridge.session.channel import InMemoryChannel, RemoteChannel
from agentbridge.session.events import SessionEvent, SessionEventType
from agentbridge.session.orchestrator import SessionOrchestrator, SessionState
from agentbridge.session.policy import PermissionPolicy, describe_tool_call
from agentbridge.session.stats import SessionStats

__all__ = [
    "InMemoryChannel",
    "RemoteChannel",
    "SessionEvent",
    "SessionEventType",
    "SessionOrchestrator",
    "SessionState",
    "PermissionPolicy",
    "describe_tool_call",
    "SessionStats",
]
