"""
Agent Backend Package.

Provides a unified interface for driving different AI coding agent CLIs:
- Claude Code (Anthropic)
- Codex CLI (OpenAI)
- Gemini CLI (Google)
- OpenCode
- Aider

Each agent has its own backend that implements the AgentBackend interface,
handling command building, process lifecycle and output translation into
the canonical message model.
"""

from agentbridge.agents.base import (
    AgentBackend,
    AgentBackendConfig,
    PermissionResponder,
    StartSessionResult,
)
from agentbridge.agents.messages import (
    AgentMessage,
    AgentStatus,
    FsEdit,
    ModelOutput,
    PermissionResponse,
    StatusMessage,
    TokenCount,
    ToolCall,
    ToolResult,
    parse_agent_message,
)
from agentbridge.agents.registry import (
    AgentRegistry,
    create_backend,
    get_agent_registry,
    initialize_agents,
)

__all__ = [
    "AgentBackend",
    "AgentBackendConfig",
    "PermissionResponder",
    "StartSessionResult",
    "AgentMessage",
    "AgentStatus",
    "FsEdit",
    "ModelOutput",
    "PermissionResponse",
    "StatusMessage",
    "TokenCount",
    "ToolCall",
    "ToolResult",
    "parse_agent_message",
    "AgentRegistry",
    "create_backend",
    "get_agent_registry",
    "initialize_agents",
]
