"""
Permission policy for tool calls.

Decides which tool calls must be approved by the remote peer before their
output is forwarded, and describes them for the approval prompt.
"""

import fnmatch
import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

from agentbridge.agents.messages import ToolCall
from agentbridge.agents.subprocess_backend import extract_path
from agentbridge.config import settings

logger = logging.getLogger(__name__)

SHELL_TOOLS = {"Bash", "shell", "run_shell_command", "command_execution", "bash"}
WRITE_TOOLS = {
    "Write",
    "Edit",
    "MultiEdit",
    "NotebookEdit",
    "write_file",
    "edit_file",
    "str_replace_editor",
    "replace",
}


@dataclass(frozen=True)
class ApprovalRequirement:
    """Outcome of checking a tool call against the policy."""

    required: bool
    risk_level: str = "low"
    description: str = ""
    affected_files: tuple[str, ...] = ()


def describe_tool_call(tool_name: str, args: dict[str, Any]) -> str:
    """Build a human-readable one-line description of a tool call."""
    command = args.get("command")
    if tool_name in SHELL_TOOLS and command:
        if isinstance(command, list):
            command = " ".join(str(part) for part in command)
        return f"Run command: {command}"
    path = extract_path(args)
    if tool_name in WRITE_TOOLS and path:
        return f"{'Write' if 'write' in tool_name.lower() else 'Edit'} {path}"
    if tool_name.startswith("mcp__"):
        parts = tool_name.split("__", 2)
        return f"MCP tool: {parts[-1]}"
    args_str = json.dumps(args, default=str)
    if len(args_str) > 80:
        args_str = args_str[:77] + "..."
    return f"{tool_name}({args_str})"


def risk_level(tool_name: str) -> str:
    if tool_name in SHELL_TOOLS:
        return "high"
    if tool_name in WRITE_TOOLS:
        return "medium"
    return "low"


class PermissionPolicy:
    """
    Glob-pattern policy over tool names.

    A tool call needs approval when approvals are enabled and its tool name
    matches one of the patterns. Patterns may carry an argument filter in
    parentheses, e.g. "Bash(git push*)" only matches that command.
    """

    def __init__(self, patterns: Optional[list[str]] = None, enabled: Optional[bool] = None):
        self.patterns = list(patterns) if patterns is not None else settings.get_approval_tools()
        self.enabled = settings.require_approval if enabled is None else enabled

    def _matches(self, pattern: str, tool_name: str, args: dict[str, Any]) -> bool:
        if "(" in pattern and pattern.endswith(")"):
            name_pattern, arg_pattern = pattern[:-1].split("(", 1)
            if not fnmatch.fnmatchcase(tool_name, name_pattern):
                return False
            subject = args.get("command") or extract_path(args) or ""
            if isinstance(subject, list):
                subject = " ".join(str(part) for part in subject)
            return fnmatch.fnmatchcase(str(subject), arg_pattern)
        return fnmatch.fnmatchcase(tool_name, pattern)

    def evaluate(self, call: ToolCall) -> ApprovalRequirement:
        """Check whether a tool call must be approved before it is forwarded."""
        required = self.enabled and any(
            self._matches(pattern, call.tool_name, call.args) for pattern in self.patterns
        )
        path = extract_path(call.args)
        requirement = ApprovalRequirement(
            required=required,
            risk_level=risk_level(call.tool_name),
            description=describe_tool_call(call.tool_name, call.args),
            affected_files=(path,) if path else (),
        )
        logger.debug("Policy for %s: %s", call.tool_name, "approval" if required else "allow")
        return requirement

    def requires_approval(self, call: ToolCall) -> bool:
        return self.evaluate(call).required
