"""
OpenCode agent backend.

Runs `opencode --format json` once per prompt and translates its JSON lines
into canonical messages.
"""

import logging
from typing import Any

from agentbridge.agents.base import PermissionResponder
from agentbridge.agents.messages import AgentStatus, ModelOutput, PermissionResponse, status
from agentbridge.agents.state import (
    apply_usage_snapshot,
    record_vendor_session,
    tool_call_args,
)
from agentbridge.agents.subprocess_backend import AgentCapabilities, SubprocessAgentBackend
from agentbridge.config import settings

logger = logging.getLogger(__name__)

AGENT_ID = "opencode"

STATUS_MAP: dict[str, AgentStatus] = {
    "starting": AgentStatus.STARTING,
    "running": AgentStatus.RUNNING,
    "idle": AgentStatus.IDLE,
    "complete": AgentStatus.IDLE,
    "stopped": AgentStatus.STOPPED,
    "error": AgentStatus.ERROR,
}

# Tools whose results mean a file was written
FILE_EDIT_TOOLS = {"write_file", "edit_file", "str_replace_editor"}


def map_status(value: Any) -> AgentStatus:
    """Map an OpenCode status string, treating unknown values as running."""
    mapped = STATUS_MAP.get(str(value))
    if mapped is None:
        logger.info("Unknown OpenCode status %r, treating as running", value)
        return AgentStatus.RUNNING
    return mapped


class OpenCodeBackend(SubprocessAgentBackend, PermissionResponder):
    """
    Backend for the OpenCode CLI.

    OpenCode prints one JSON object per line:
    - assistant: {"content"}
    - tool_use: {"tool_name", "tool_input", "call_id"}
    - tool_result: {"tool_name", "tool_result", "call_id", "tool_input"}
    - status: {"status"}
    - error: {"error"}
    - session: {"id", "Cost", "PromptTokens", "CompletionTokens", "TotalTokens"}

    Permissions are decided by OpenCode itself in non-interactive mode, so
    respond_to_permission only reports the decision back.
    """

    @property
    def agent_id(self) -> str:
        return AGENT_ID

    @property
    def display_name(self) -> str:
        return "OpenCode"

    @property
    def command_name(self) -> str:
        return settings.opencode_command

    @property
    def credential_env_var(self) -> str:
        return "ANTHROPIC_API_KEY"

    @property
    def capabilities(self) -> AgentCapabilities:
        return AgentCapabilities(json_output=True, supports_resume=True, supports_model=True, reports_cost=True)

    def build_command(self, prompt: str) -> list[str]:
        cmd = [self.command_name, "--format", "json", "--message", prompt, "--non-interactive"]

        # Model
        if self.config.model:
            cmd.extend(["--model", self.config.model])

        # Session to continue
        if self.resume_token:
            cmd.extend(["--session", self.resume_token])

        cmd.extend(self.config.extra_args)
        return cmd

    def handle_line(self, line: str) -> None:
        data = self.parse_json_line(line)
        if data is None:
            return

        msg_type = data.get("type")
        if msg_type == "assistant":
            content = data.get("content")
            if content:
                self.emit(ModelOutput(text_delta=str(content)))

        elif msg_type == "tool_use":
            self.emit_tool_call(data.get("tool_name"), data.get("call_id"), data.get("tool_input"))

        elif msg_type == "tool_result":
            self._handle_tool_result(data)

        elif msg_type == "status":
            self.emit(status(map_status(data.get("status"))))

        elif msg_type == "error":
            self.emit(status(AgentStatus.ERROR, str(data.get("error") or "Unknown error")))

        elif msg_type == "session":
            self._handle_session(data)

        else:
            logger.debug("Ignoring OpenCode message type: %s", msg_type)

    def _handle_tool_result(self, data: dict) -> None:
        tool_name = data.get("tool_name")
        call_id = data.get("call_id")
        if not self.emit_tool_result(tool_name, call_id, data.get("tool_result")):
            return

        if tool_name in FILE_EDIT_TOOLS:
            args = data.get("tool_input") or tool_call_args(self.state, str(call_id))
            self.emit_fs_edit(tool_name, args, str(call_id))

    def _handle_session(self, data: dict) -> None:
        # Usage lives under "session": {"id", "Cost", "PromptTokens", ...}
        session = data.get("session")
        if not isinstance(session, dict):
            logger.debug("OpenCode session line without session info")
            return

        record_vendor_session(self.state, session.get("id"))
        apply_usage_snapshot(
            self.state,
            input_tokens=session.get("PromptTokens"),
            output_tokens=session.get("CompletionTokens"),
            cost_usd=session.get("Cost"),
        )
        self.emit_token_count(session.get("TotalTokens"))

    async def respond_to_permission(self, request_id: str, approved: bool) -> None:
        self._ensure_usable()
        logger.info("OpenCode permission %s %s", request_id, "approved" if approved else "denied")
        self.emit(PermissionResponse(id=request_id, approved=approved))


def register(registry) -> None:
    """Register the OpenCode backend factory."""
    registry.register(AGENT_ID, OpenCodeBackend, display_name="OpenCode", command=settings.opencode_command)
