"""
Exception hierarchy.

Backend errors are raised by agent backends, registry errors by the agent
registry and session errors by the session orchestrator. Everything derives
from AgentBridgeError so callers can catch the whole family.
"""


class AgentBridgeError(Exception):
    """Base class for all agentbridge errors."""


# ==========================================
# Backend Errors
# ==========================================


class AgentBackendError(AgentBridgeError):
    """Base class for errors raised by an agent backend."""


class DisposedError(AgentBackendError):
    """The backend was disposed and can no longer be used."""

    def __init__(self, agent: str = "backend"):
        super().__init__(f"{agent} has been disposed")
        self.agent = agent


class InvalidSessionError(AgentBackendError):
    """The session id does not match the backend's current session."""

    def __init__(self, session_id: str, expected: str | None):
        super().__init__(f"Invalid session id: {session_id} (current: {expected or 'none'})")
        self.session_id = session_id
        self.expected = expected


class AgentBusyError(AgentBackendError):
    """A prompt is already running for this session."""


class ProcessSpawnError(AgentBackendError):
    """The vendor executable could not be started."""

    def __init__(self, command: str, reason: str):
        super().__init__(f"Failed to start {command}: {reason}")
        self.command = command
        self.reason = reason


class VendorExitError(AgentBackendError):
    """The vendor process exited with a non-zero code."""

    def __init__(self, agent: str, exit_code: int):
        super().__init__(f"{agent} exited with code {exit_code}")
        self.agent = agent
        self.exit_code = exit_code


class ResponseTimeoutError(AgentBackendError, TimeoutError):
    """Waiting for the vendor process to finish took too long."""


# ==========================================
# Registry Errors
# ==========================================


class RegistryError(AgentBridgeError):
    """Base class for agent registry errors."""


class UnknownAgentError(RegistryError):
    """No agent was ever registered under this id."""

    def __init__(self, agent_id: str, available: list[str] | None = None):
        message = f"Unknown agent: {agent_id}"
        if available:
            message += f". Available: {', '.join(available)}"
        super().__init__(message)
        self.agent_id = agent_id
        self.available = available or []


class AgentUnavailableError(RegistryError):
    """The agent is known but its registration failed."""

    def __init__(self, agent_id: str, reason: str):
        super().__init__(f"Agent {agent_id} is not available: {reason}")
        self.agent_id = agent_id
        self.reason = reason


class BackendConstructionError(RegistryError):
    """A registered factory raised while building a backend."""

    def __init__(self, agent_id: str, reason: str):
        super().__init__(f"Failed to create {agent_id} backend: {reason}")
        self.agent_id = agent_id
        self.reason = reason


class RegistrySealedError(RegistryError):
    """Registration was attempted after initialization finished."""


# ==========================================
# Session Errors
# ==========================================


class SessionError(AgentBridgeError):
    """Base class for session orchestrator errors."""


class SessionStoppedError(SessionError):
    """The session has been stopped."""


class InvalidTransitionError(SessionError):
    """A requested state change is not allowed from the current state."""

    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot move session from {current} to {target}")
        self.current = current
        self.target = target


class PermissionTimeoutError(SessionError):
    """No decision arrived for a permission request before it expired."""

    def __init__(self, request_id: str):
        super().__init__(f"Permission request {request_id} timed out")
        self.request_id = request_id
