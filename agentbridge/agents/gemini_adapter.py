"""
Gemini CLI agent backend.

Runs `gemini --output-format stream-json` once per prompt. Gemini reports
token stats without a cost, so the cost is estimated from the pricing table.
"""

import logging

from agentbridge.agents.messages import AgentStatus, ModelOutput, status
from agentbridge.agents.pricing import estimate_cost
from agentbridge.agents.state import add_usage, record_vendor_session, tool_call_args, tool_call_name
from agentbridge.agents.subprocess_backend import AgentCapabilities, SubprocessAgentBackend
from agentbridge.config import settings

logger = logging.getLogger(__name__)

AGENT_ID = "gemini"

DEFAULT_MODEL = "gemini-2.5-pro"

FILE_EDIT_TOOLS = {"write_file", "replace"}


class GeminiBackend(SubprocessAgentBackend):
    """
    Backend for Google's Gemini CLI.

    Stream-json emits init, message, tool_use, tool_result, error and a final
    result with stats. Tool approvals follow the configured approval mode.
    """

    def __init__(self, config=None):
        super().__init__(config)
        self._model: str | None = None

    @property
    def agent_id(self) -> str:
        return AGENT_ID

    @property
    def display_name(self) -> str:
        return "Gemini CLI"

    @property
    def command_name(self) -> str:
        return settings.gemini_command

    @property
    def credential_env_var(self) -> str:
        return "GEMINI_API_KEY"

    @property
    def capabilities(self) -> AgentCapabilities:
        return AgentCapabilities(json_output=True, supports_resume=True, supports_model=True, reports_cost=False)

    def build_command(self, prompt: str) -> list[str]:
        cmd = [self.command_name, "--output-format", "stream-json"]

        # Model
        if self.config.model:
            cmd.extend(["--model", self.config.model])

        # Session to continue
        if self.resume_token:
            cmd.extend(["--resume", self.resume_token])

        # Approval mode
        cmd.extend(["--approval-mode", settings.gemini_approval_mode])

        cmd.extend(self.config.extra_args)
        cmd.extend(["--prompt", prompt])
        return cmd

    def handle_line(self, line: str) -> None:
        data = self.parse_json_line(line)
        if data is None:
            return

        msg_type = data.get("type")
        if msg_type == "init":
            record_vendor_session(self.state, data.get("session_id"))
            self._model = data.get("model") or self._model

        elif msg_type == "message":
            if data.get("role") == "assistant" and data.get("content"):
                self.emit(ModelOutput(text_delta=str(data["content"])))

        elif msg_type == "tool_use":
            self.emit_tool_call(data.get("tool_name"), data.get("tool_id"), data.get("parameters"))

        elif msg_type == "tool_result":
            self._handle_tool_result(data)

        elif msg_type == "error":
            self.emit(status(AgentStatus.ERROR, str(data.get("message") or "Unknown error")))

        elif msg_type == "result":
            self._handle_result(data)

        else:
            logger.debug("Ignoring Gemini message type: %s", msg_type)

    def _handle_tool_result(self, data: dict) -> None:
        call_id = data.get("tool_id")
        tool_name = data.get("tool_name") or (tool_call_name(self.state, str(call_id)) if call_id else None)
        result = data.get("output") if data.get("status") != "error" else data.get("error")
        if not self.emit_tool_result(tool_name, call_id, result):
            return

        if tool_name in FILE_EDIT_TOOLS and data.get("status") != "error":
            self.emit_fs_edit(tool_name, tool_call_args(self.state, str(call_id)), str(call_id))

    def _handle_result(self, data: dict) -> None:
        stats = data.get("stats") or {}
        input_tokens = stats.get("input_tokens") or 0
        output_tokens = stats.get("output_tokens") or 0
        if input_tokens or output_tokens:
            cost = estimate_cost(
                self.config.model or self._model or DEFAULT_MODEL,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
            )
            add_usage(self.state, input_tokens=input_tokens, output_tokens=output_tokens, cost_usd=cost)
            self.emit_token_count()

        if data.get("status") == "error":
            error = data.get("error") or {}
            detail = error.get("message") if isinstance(error, dict) else str(error)
            self.emit(status(AgentStatus.ERROR, detail or "Gemini CLI reported an error"))


def register(registry) -> None:
    """Register the Gemini CLI backend factory."""
    registry.register(AGENT_ID, GeminiBackend, display_name="Gemini CLI", command=settings.gemini_command)
