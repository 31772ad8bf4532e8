"""
Base classes and types for agent backends.

Defines the abstract interface that every agent backend must implement, plus
the optional permission capability.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Callable, Mapping, Optional

from agentbridge.agents.messages import AgentMessage


MessageHandler = Callable[[AgentMessage], None]


@dataclass(frozen=True)
class AgentBackendConfig:
    """
    Options a backend is constructed with.

    Immutable for the lifetime of the backend instance.
    """

    cwd: Optional[str] = None
    """Working directory for the vendor process. Defaults to the current one."""

    model: Optional[str] = None
    """Model override passed to the vendor CLI."""

    resume_session_id: Optional[str] = None
    """Vendor session to continue instead of starting a new conversation."""

    env: Mapping[str, str] = field(default_factory=dict)
    """Environment overrides layered on top of the parent environment."""

    extra_args: tuple[str, ...] = ()
    """Extra vendor CLI arguments, appended last."""

    api_key: Optional[str] = None
    """Credential injected into the vendor's API key variable."""

    files: tuple[str, ...] = ()
    """Files to add to the chat (Aider only)."""

    def __post_init__(self):
        object.__setattr__(self, "env", MappingProxyType(dict(self.env)))
        object.__setattr__(self, "extra_args", tuple(self.extra_args))
        object.__setattr__(self, "files", tuple(self.files))


@dataclass(frozen=True)
class StartSessionResult:
    session_id: str


class AgentBackend(ABC):
    """
    Abstract base class for agent backends.

    Each supported agent (Claude Code, Codex, Gemini CLI, OpenCode, Aider)
    implements this interface so the session orchestrator can drive any of
    them the same way. A backend serves one session at a time and owns at
    most one vendor process.
    """

    @property
    @abstractmethod
    def agent_id(self) -> str:
        """Return the registry identifier (e.g., 'claude', 'opencode')."""
        ...

    @property
    @abstractmethod
    def display_name(self) -> str:
        """Return human-readable name for the agent."""
        ...

    @abstractmethod
    def on_message(self, handler: MessageHandler) -> None:
        """Subscribe to canonical messages."""
        ...

    @abstractmethod
    def off_message(self, handler: MessageHandler) -> None:
        """Unsubscribe a handler. Unknown handlers are ignored."""
        ...

    @abstractmethod
    async def start_session(self, initial_prompt: Optional[str] = None) -> StartSessionResult:
        """
        Start a new session.

        Args:
            initial_prompt: Prompt to send right away. Without one the
                backend goes idle and waits for send_prompt.

        Returns:
            The new session id.

        Raises:
            DisposedError: If the backend was disposed.
        """
        ...

    @abstractmethod
    async def send_prompt(self, session_id: str, prompt: str) -> None:
        """
        Run one prompt and return when the vendor process has exited.

        Raises:
            DisposedError: If the backend was disposed.
            InvalidSessionError: If session_id is not the current session.
            ProcessSpawnError: If the vendor executable could not be started.
            VendorExitError: If the vendor exited with a non-zero code.
        """
        ...

    @abstractmethod
    async def cancel(self, session_id: str) -> None:
        """
        Stop the running prompt, if any, and go idle.

        Raises:
            InvalidSessionError: If session_id is not the current session.
        """
        ...

    @abstractmethod
    async def wait_for_response_complete(self, timeout: Optional[float] = None) -> None:
        """
        Wait until the active vendor process has exited.

        Returns at once when nothing is running. The timeout defaults to
        the response_timeout_secs setting (120 seconds).

        Raises:
            ResponseTimeoutError: If the process is still running after timeout seconds.
        """
        ...

    @abstractmethod
    async def dispose(self) -> None:
        """Terminate any process, drop subscribers and make the backend unusable."""
        ...


class PermissionResponder(ABC):
    """
    Capability for backends that accept permission decisions.

    Checked with isinstance() by callers; backends without it simply never
    receive decisions.
    """

    @abstractmethod
    async def respond_to_permission(self, request_id: str, approved: bool) -> None:
        """Deliver an approval or denial for a pending tool call."""
        ...
