"""
Codex agent backend.

Runs `codex exec --json` once per prompt. Codex reports items (commands,
messages, file changes) as they start and complete, and token usage per
turn without a cost, so the cost is estimated from the pricing table.
"""

import logging

from agentbridge.agents.messages import AgentStatus, FsEdit, ModelOutput, status
from agentbridge.agents.pricing import estimate_cost
from agentbridge.agents.state import add_usage, has_tool_call, record_vendor_session
from agentbridge.agents.subprocess_backend import AgentCapabilities, SubprocessAgentBackend
from agentbridge.config import settings

logger = logging.getLogger(__name__)

AGENT_ID = "codex"

# Used for cost estimates when no model override is configured
DEFAULT_MODEL = "gpt-5-codex"

# Item types that map to tool calls, with the canonical tool name
TOOL_ITEMS = {
    "command_execution": "shell",
    "mcp_tool_call": "mcp",
    "web_search": "web_search",
}


class CodexBackend(SubprocessAgentBackend):
    """
    Backend for OpenAI's Codex CLI.

    Codex runs with its own sandbox and approval policy in exec mode, so
    this backend has no permission capability.
    """

    @property
    def agent_id(self) -> str:
        return AGENT_ID

    @property
    def display_name(self) -> str:
        return "Codex"

    @property
    def command_name(self) -> str:
        return settings.codex_command

    @property
    def credential_env_var(self) -> str:
        return "OPENAI_API_KEY"

    @property
    def capabilities(self) -> AgentCapabilities:
        return AgentCapabilities(json_output=True, supports_resume=True, supports_model=True, reports_cost=False)

    def build_command(self, prompt: str) -> list[str]:
        cmd = [self.command_name, "exec", "--json"]

        # Model
        if self.config.model:
            cmd.extend(["--model", self.config.model])

        # Session to continue
        if self.resume_token:
            cmd.extend(["resume", self.resume_token])

        cmd.append(prompt)
        cmd.extend(self.config.extra_args)
        return cmd

    def handle_line(self, line: str) -> None:
        data = self.parse_json_line(line)
        if data is None:
            return

        msg_type = data.get("type")
        if msg_type == "thread.started":
            record_vendor_session(self.state, data.get("thread_id"))

        elif msg_type == "turn.started":
            self.emit(status(AgentStatus.RUNNING))

        elif msg_type in ("item.started", "item.completed"):
            item = data.get("item") or {}
            self._handle_item(item, completed=msg_type == "item.completed")

        elif msg_type == "turn.completed":
            self._handle_usage(data.get("usage") or {})

        elif msg_type == "turn.failed":
            error = data.get("error") or {}
            self.emit(status(AgentStatus.ERROR, str(error.get("message") or "Codex turn failed")))

        elif msg_type == "error":
            self.emit(status(AgentStatus.ERROR, str(data.get("message") or "Unknown error")))

        else:
            logger.debug("Ignoring Codex event type: %s", msg_type)

    def _handle_item(self, item: dict, completed: bool) -> None:
        item_type = item.get("type")
        item_id = item.get("id")

        if item_type in TOOL_ITEMS:
            tool_name = TOOL_ITEMS[item_type]
            if item_type == "mcp_tool_call":
                tool_name = item.get("tool") or tool_name
            if not completed:
                self.emit_tool_call(tool_name, item_id, self._tool_args(item))
                return
            # Items that finish instantly never had a started event
            if item_id and not has_tool_call(self.state, str(item_id)):
                self.emit_tool_call(tool_name, item_id, self._tool_args(item))
            self.emit_tool_result(tool_name, item_id, self._tool_output(item))

        elif item_type == "agent_message" and completed:
            if item.get("text"):
                self.emit(ModelOutput(text_delta=item["text"]))

        elif item_type == "file_change" and completed:
            for change in item.get("changes") or []:
                path = change.get("path")
                if path:
                    self.emit(FsEdit(description=f"{change.get('kind', 'update')}: {path}", path=path))

        elif item_type == "error":
            self.emit(status(AgentStatus.ERROR, str(item.get("message") or "Codex error")))

        else:
            logger.debug("Ignoring Codex item type: %s", item_type)

    @staticmethod
    def _tool_args(item: dict) -> dict:
        if item.get("type") == "command_execution":
            return {"command": item.get("command")}
        if item.get("type") == "web_search":
            return {"query": item.get("query")}
        return {"server": item.get("server"), "arguments": item.get("arguments")}

    @staticmethod
    def _tool_output(item: dict):
        if item.get("type") == "command_execution":
            return {"output": item.get("aggregated_output"), "exit_code": item.get("exit_code")}
        return item.get("result") or {"status": item.get("status")}

    def _handle_usage(self, usage: dict) -> None:
        input_tokens = usage.get("input_tokens") or 0
        cached = usage.get("cached_input_tokens") or 0
        output_tokens = usage.get("output_tokens") or 0
        cost = estimate_cost(
            self.config.model or DEFAULT_MODEL,
            input_tokens=max(0, input_tokens - cached),
            output_tokens=output_tokens,
            cache_read_tokens=cached,
        )
        add_usage(self.state, input_tokens=input_tokens, output_tokens=output_tokens, cost_usd=cost)
        self.emit_token_count()


def register(registry) -> None:
    """Register the Codex backend factory."""
    registry.register(AGENT_ID, CodexBackend, display_name="Codex", command=settings.codex_command)
