"""
Agent backend registry.

Maps agent identifiers to backend factories. The built-in agents are listed
in a static table and registered by initialize_agents(). An agent whose
registration fails stays in the registry as "not available" with a reason,
so callers can tell an unknown id apart from a known but broken one.
"""

import logging
import shutil
from dataclasses import dataclass
from typing import Callable, Optional

from agentbridge.agents import aider_adapter, claude_adapter, codex_adapter, gemini_adapter, opencode_adapter
from agentbridge.agents.base import AgentBackend, AgentBackendConfig, PermissionResponder
from agentbridge.errors import (
    AgentUnavailableError,
    BackendConstructionError,
    RegistrySealedError,
    UnknownAgentError,
)

logger = logging.getLogger(__name__)

BackendFactory = Callable[[AgentBackendConfig], AgentBackend]


@dataclass
class AgentEntry:
    """One registry row."""

    agent_id: str
    display_name: str
    factory: Optional[BackendFactory] = None
    command: Optional[str] = None
    unavailable_reason: Optional[str] = None

    @property
    def available(self) -> bool:
        return self.factory is not None and self.unavailable_reason is None


class AgentRegistry:
    """
    Registry of agent backend factories.

    Append-only until sealed, read-only afterwards.
    """

    def __init__(self):
        self._entries: dict[str, AgentEntry] = {}
        self._sealed = False

    @staticmethod
    def _normalize(agent_id: str) -> str:
        return agent_id.strip().lower()

    def register(
        self,
        agent_id: str,
        factory: BackendFactory,
        *,
        display_name: Optional[str] = None,
        command: Optional[str] = None,
    ) -> None:
        """
        Register a backend factory.

        Args:
            agent_id: Identifier used to look the agent up (e.g., 'claude').
            factory: Callable taking an AgentBackendConfig and returning a backend.
            display_name: Human-readable name.
            command: Executable the backend runs, for install checks.

        Raises:
            RegistrySealedError: If the registry was already sealed.
            ValueError: If the id is empty or already registered.
        """
        if self._sealed:
            raise RegistrySealedError(f"Cannot register {agent_id}: registry is sealed")
        key = self._normalize(agent_id)
        if not key:
            raise ValueError("Agent id must not be empty")
        existing = self._entries.get(key)
        if existing is not None and existing.available:
            raise ValueError(f"Agent already registered: {key}")

        self._entries[key] = AgentEntry(
            agent_id=key,
            display_name=display_name or key,
            factory=factory,
            command=command,
        )
        logger.debug("Registered agent backend: %s", key)

    def mark_unavailable(self, agent_id: str, reason: str, display_name: Optional[str] = None) -> None:
        """Record a known agent that could not be registered."""
        if self._sealed:
            raise RegistrySealedError(f"Cannot change {agent_id}: registry is sealed")
        key = self._normalize(agent_id)
        self._entries[key] = AgentEntry(
            agent_id=key,
            display_name=display_name or key,
            unavailable_reason=reason,
        )

    def seal(self) -> None:
        self._sealed = True

    @property
    def sealed(self) -> bool:
        return self._sealed

    def create(self, agent_id: str, config: Optional[AgentBackendConfig] = None) -> AgentBackend:
        """
        Construct a backend for an agent.

        Args:
            agent_id: The agent identifier.
            config: Backend options. Defaults to an empty config.

        Returns:
            A new backend instance.

        Raises:
            UnknownAgentError: If the id was never registered.
            AgentUnavailableError: If the agent is known but its registration failed.
            BackendConstructionError: If the factory raised.
        """
        key = self._normalize(agent_id)
        entry = self._entries.get(key)
        if entry is None:
            raise UnknownAgentError(agent_id, self.list_agents())
        if not entry.available:
            raise AgentUnavailableError(key, entry.unavailable_reason or "not registered")

        try:
            return entry.factory(config or AgentBackendConfig())
        except Exception as e:
            logger.exception("Failed to construct %s backend", key)
            raise BackendConstructionError(key, str(e)) from e

    def get_entry(self, agent_id: str) -> AgentEntry:
        key = self._normalize(agent_id)
        entry = self._entries.get(key)
        if entry is None:
            raise UnknownAgentError(agent_id, self.list_agents())
        return entry

    def list_agents(self, include_unavailable: bool = False) -> list[str]:
        """List registered agent ids, sorted."""
        return sorted(
            key for key, entry in self._entries.items()
            if include_unavailable or entry.available
        )

    def is_available(self, agent_id: str) -> bool:
        entry = self._entries.get(self._normalize(agent_id))
        return entry is not None and entry.available

    def is_installed(self, agent_id: str) -> bool:
        """Check if the agent's executable is available on PATH."""
        entry = self._entries.get(self._normalize(agent_id))
        if entry is None or not entry.command:
            return False
        return shutil.which(entry.command) is not None

    def get_agent_info(self) -> list[dict]:
        """
        Get information about every known agent.

        Returns:
            List of dicts with agent info including:
            - id: Agent identifier
            - name: Display name
            - command: Executable name
            - available: Whether the backend is registered
            - installed: Whether the executable is on PATH
            - permissions: Whether the backend accepts permission decisions
            - reason: Why the agent is unavailable, if it is
        """
        result = []
        for key in self.list_agents(include_unavailable=True):
            entry = self._entries[key]
            result.append(
                {
                    "id": key,
                    "name": entry.display_name,
                    "command": entry.command,
                    "available": entry.available,
                    "installed": self.is_installed(key),
                    "permissions": _supports_permissions(entry.factory),
                    "reason": entry.unavailable_reason,
                }
            )
        return result


def _supports_permissions(factory: Optional[BackendFactory]) -> bool:
    return isinstance(factory, type) and issubclass(factory, PermissionResponder)


# Built-in agents, in display order: (agent id, display name, register function)
BUILTIN_AGENTS: tuple[tuple[str, str, Callable[[AgentRegistry], None]], ...] = (
    (claude_adapter.AGENT_ID, "Claude Code", claude_adapter.register),
    (codex_adapter.AGENT_ID, "Codex", codex_adapter.register),
    (gemini_adapter.AGENT_ID, "Gemini CLI", gemini_adapter.register),
    (opencode_adapter.AGENT_ID, "OpenCode", opencode_adapter.register),
    (aider_adapter.AGENT_ID, "Aider", aider_adapter.register),
)


def initialize_agents(
    registry: AgentRegistry,
    agents: tuple[tuple[str, str, Callable[[AgentRegistry], None]], ...] = BUILTIN_AGENTS,
) -> AgentRegistry:
    """
    Register every agent in the table and seal the registry.

    A registration that raises leaves that agent marked unavailable; the
    remaining agents are still registered.

    Args:
        registry: Registry to fill.
        agents: Registration table. Defaults to the built-in agents.

    Returns:
        The sealed registry.
    """
    for agent_id, display_name, register in agents:
        try:
            register(registry)
        except Exception as e:
            logger.warning("Agent %s is not available: %s", agent_id, e)
            registry.mark_unavailable(agent_id, str(e), display_name)
    registry.seal()
    return registry


_agent_registry: AgentRegistry | None = None


def get_agent_registry() -> AgentRegistry:
    """Get the process-wide registry, initializing it on first use."""
    global _agent_registry
    if _agent_registry is None:
        _agent_registry = initialize_agents(AgentRegistry())
    return _agent_registry


def create_backend(agent_id: str, config: Optional[AgentBackendConfig] = None) -> AgentBackend:
    """Create a backend from the process-wide registry."""
    return get_agent_registry().create(agent_id, config)
