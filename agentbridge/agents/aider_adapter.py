"""
Aider agent backend.

Aider has no JSON output mode. It runs once per prompt with --message and
its plain text output is forwarded line by line. File writes and the token
report line are recognised by pattern. When no report is printed the usage
is estimated from word counts.
"""

import logging
import math
import re

from agentbridge.agents.base import PermissionResponder
from agentbridge.agents.messages import FsEdit, ModelOutput, PermissionResponse
from agentbridge.agents.state import add_usage
from agentbridge.agents.subprocess_backend import AgentCapabilities, SubprocessAgentBackend
from agentbridge.config import settings

logger = logging.getLogger(__name__)

AGENT_ID = "aider"

TOKENS_PER_WORD = 1.3

EDIT_PATTERN = re.compile(r"^(Wrote|Updated|Created|Applied edit to)\s+(.+?)\s*$")

# Tokens: 2.5k sent, 120 received. Cost: $0.01 message, $0.02 session.
USAGE_PATTERN = re.compile(
    r"^Tokens:\s+([\d.,]+[kKmM]?)\s+sent.*?,\s+([\d.,]+[kKmM]?)\s+received\."
    r"(?:\s+Cost:\s+\$([\d.,]+)\s+message)?"
)


def estimate_tokens(text: str) -> int:
    """Rough token estimate for text with no vendor-reported usage."""
    words = len(text.split())
    return math.ceil(words * TOKENS_PER_WORD)


def parse_token_amount(value: str) -> int:
    """Parse Aider's abbreviated counts such as '2.5k' or '1.2M'."""
    value = value.replace(",", "")
    multiplier = 1
    if value[-1] in "kK":
        multiplier, value = 1_000, value[:-1]
    elif value[-1] in "mM":
        multiplier, value = 1_000_000, value[:-1]
    return int(float(value) * multiplier)


class AiderBackend(SubprocessAgentBackend, PermissionResponder):
    """
    Backend for Aider.

    Aider runs with --yes, so every confirmation is accepted up front and
    respond_to_permission only reports the decision back. Each prompt is a
    fresh Aider process; conversation state lives in Aider's chat history
    file in the working directory.
    """

    def __init__(self, config=None):
        super().__init__(config)
        self._prompt_text = ""
        self._output_words = 0
        self._usage_reported = False

    @property
    def agent_id(self) -> str:
        return AGENT_ID

    @property
    def display_name(self) -> str:
        return "Aider"

    @property
    def command_name(self) -> str:
        return settings.aider_command

    @property
    def credential_env_var(self) -> str:
        return "OPENAI_API_KEY"

    @property
    def capabilities(self) -> AgentCapabilities:
        return AgentCapabilities(json_output=False, supports_resume=False, supports_model=True, reports_cost=True)

    def build_command(self, prompt: str) -> list[str]:
        cmd = [self.command_name, "--message", prompt, "--no-stream", "--yes"]

        # Model
        if self.config.model:
            cmd.extend(["--model", self.config.model])

        cmd.extend(self.config.extra_args)
        cmd.extend(self.config.files)
        return cmd

    def before_prompt(self, prompt: str) -> None:
        self._prompt_text = prompt
        self._output_words = 0
        self._usage_reported = False

    def handle_line(self, line: str) -> None:
        usage = USAGE_PATTERN.match(line.strip())
        if usage:
            self._usage_reported = True
            add_usage(
                self.state,
                input_tokens=parse_token_amount(usage.group(1)),
                output_tokens=parse_token_amount(usage.group(2)),
                cost_usd=float(usage.group(3).replace(",", "")) if usage.group(3) else 0.0,
            )
            return

        edit = EDIT_PATTERN.match(line.strip())
        if edit:
            path = edit.group(2)
            self.emit(FsEdit(description=f"{edit.group(1)} {path}", path=path))
            return

        self._output_words += len(line.split())
        self.emit(ModelOutput(text_delta=line + "\n"))

    def handle_exit(self, returncode: int) -> None:
        if not self._usage_reported:
            add_usage(
                self.state,
                input_tokens=estimate_tokens(self._prompt_text),
                output_tokens=math.ceil(self._output_words * TOKENS_PER_WORD),
            )
        self.emit_token_count()

    async def respond_to_permission(self, request_id: str, approved: bool) -> None:
        self._ensure_usable()
        logger.info("Aider auto-confirms (--yes); permission %s %s", request_id, "approved" if approved else "denied")
        self.emit(PermissionResponse(id=request_id, approved=approved))


def register(registry) -> None:
    """Register the Aider backend factory."""
    registry.register(AGENT_ID, AiderBackend, display_name="Aider", command=settings.aider_command)
