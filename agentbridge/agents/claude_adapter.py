"""
Claude Code agent backend.

Runs Claude Code in print mode (-p) with stream-json output and translates
the stream into canonical messages.
"""

import logging

from agentbridge.agents.base import PermissionResponder
from agentbridge.agents.messages import AgentStatus, ModelOutput, PermissionResponse, status
from agentbridge.agents.state import add_usage, record_vendor_session, tool_call_args, tool_call_name
from agentbridge.agents.subprocess_backend import AgentCapabilities, SubprocessAgentBackend
from agentbridge.config import settings

logger = logging.getLogger(__name__)

AGENT_ID = "claude"

FILE_EDIT_TOOLS = {"Write", "Edit", "MultiEdit", "NotebookEdit"}


class ClaudeBackend(SubprocessAgentBackend, PermissionResponder):
    """
    Backend for Claude Code.

    Stream-json emits:
    - system/init with the session_id
    - assistant messages whose content blocks are text or tool_use
    - user messages carrying tool_result blocks
    - a final result with usage and total_cost_usd for the invocation

    Permissions follow the configured permission mode, so decisions are
    only reported back.
    """

    @property
    def agent_id(self) -> str:
        return AGENT_ID

    @property
    def display_name(self) -> str:
        return "Claude Code"

    @property
    def command_name(self) -> str:
        return settings.claude_command

    @property
    def credential_env_var(self) -> str:
        return "ANTHROPIC_API_KEY"

    @property
    def capabilities(self) -> AgentCapabilities:
        return AgentCapabilities(json_output=True, supports_resume=True, supports_model=True, reports_cost=True)

    def build_command(self, prompt: str) -> list[str]:
        cmd = [self.command_name, "-p", prompt, "--output-format", "stream-json"]

        # stream-json requires --verbose when using -p (print mode)
        cmd.append("--verbose")

        # Model
        if self.config.model:
            cmd.extend(["--model", self.config.model])

        # Session management
        if self.resume_token:
            cmd.extend(["--resume", self.resume_token])

        # Permission mode
        mode = settings.claude_permission_mode
        if mode == "bypassPermissions":
            cmd.append("--dangerously-skip-permissions")
        elif mode in ("plan", "acceptEdits"):
            cmd.extend(["--permission-mode", mode])

        cmd.extend(self.config.extra_args)
        return cmd

    def handle_line(self, line: str) -> None:
        data = self.parse_json_line(line)
        if data is None:
            return

        msg_type = data.get("type")
        if msg_type == "system":
            if data.get("subtype") == "init":
                record_vendor_session(self.state, data.get("session_id"))

        elif msg_type == "assistant":
            for block in self._content_blocks(data):
                if block.get("type") == "text" and block.get("text"):
                    self.emit(ModelOutput(text_delta=block["text"]))
                elif block.get("type") == "tool_use":
                    self.emit_tool_call(block.get("name"), block.get("id"), block.get("input"))

        elif msg_type == "user":
            for block in self._content_blocks(data):
                if block.get("type") == "tool_result":
                    self._handle_tool_result(block)

        elif msg_type == "result":
            self._handle_result(data)

        else:
            logger.debug("Ignoring Claude message type: %s", msg_type)

    @staticmethod
    def _content_blocks(data: dict) -> list[dict]:
        content = (data.get("message") or {}).get("content")
        if isinstance(content, str):
            return [{"type": "text", "text": content}]
        if isinstance(content, list):
            return [block for block in content if isinstance(block, dict)]
        return []

    def _handle_tool_result(self, block: dict) -> None:
        call_id = block.get("tool_use_id")
        tool_name = tool_call_name(self.state, str(call_id)) if call_id else None
        if not self.emit_tool_result(tool_name, call_id, block.get("content")):
            return

        if tool_name in FILE_EDIT_TOOLS and not block.get("is_error"):
            self.emit_fs_edit(tool_name, tool_call_args(self.state, str(call_id)), str(call_id))

    def _handle_result(self, data: dict) -> None:
        record_vendor_session(self.state, data.get("session_id"))
        usage = data.get("usage") or {}
        input_tokens = (
            (usage.get("input_tokens") or 0)
            + (usage.get("cache_creation_input_tokens") or 0)
            + (usage.get("cache_read_input_tokens") or 0)
        )
        add_usage(
            self.state,
            input_tokens=input_tokens,
            output_tokens=usage.get("output_tokens") or 0,
            cost_usd=data.get("total_cost_usd") or 0.0,
        )
        self.emit_token_count()

        if data.get("is_error"):
            detail = data.get("result") or data.get("subtype") or "Claude Code reported an error"
            self.emit(status(AgentStatus.ERROR, str(detail)))

    async def respond_to_permission(self, request_id: str, approved: bool) -> None:
        self._ensure_usable()
        logger.info(
            "Claude Code permission %s %s (mode %s)",
            request_id,
            "approved" if approved else "denied",
            settings.claude_permission_mode,
        )
        self.emit(PermissionResponse(id=request_id, approved=approved))


def register(registry) -> None:
    """Register the Claude Code backend factory."""
    registry.register(AGENT_ID, ClaudeBackend, display_name="Claude Code", command=settings.claude_command)
