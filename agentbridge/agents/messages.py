"""
Canonical agent messages.

Every backend translates its vendor's output into these models and nothing
else. Field names are snake_case in Python and camelCase on the wire, which
is what the remote peer expects.
"""

from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel


class AgentStatus(str, Enum):
    """Canonical backend statuses."""

    STARTING = "starting"
    RUNNING = "running"
    IDLE = "idle"
    STOPPED = "stopped"
    ERROR = "error"


class _Message(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
        use_enum_values=True,
    )

    def to_dict(self) -> dict:
        """Convert to a camelCase dictionary for JSON serialization."""
        return self.model_dump(by_alias=True, exclude_none=True)


class ModelOutput(_Message):
    """A chunk of assistant text."""
    type: Literal["model-output"] = "model-output"
    text_delta: str


class ToolCall(_Message):
    """The agent invoked a tool."""
    type: Literal["tool-call"] = "tool-call"
    tool_name: str
    args: dict[str, Any] = {}
    call_id: str


class ToolResult(_Message):
    """A tool finished. Always follows a ToolCall with the same call_id."""
    type: Literal["tool-result"] = "tool-result"
    tool_name: str
    result: Any = None
    call_id: str


class FsEdit(_Message):
    """A file in the working directory was modified, by the tool call call_id when known."""
    type: Literal["fs-edit"] = "fs-edit"
    description: str
    path: str
    call_id: Optional[str] = None


class StatusMessage(_Message):
    type: Literal["status"] = "status"
    status: AgentStatus
    detail: Optional[str] = None


class TokenCount(_Message):
    """Full usage snapshot for the current session, never a delta."""
    type: Literal["token-count"] = "token-count"
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    cost_usd: float = 0.0


class PermissionResponse(_Message):
    type: Literal["permission-response"] = "permission-response"
    id: str
    approved: bool


AgentMessage = Annotated[
    Union[
        ModelOutput,
        ToolCall,
        ToolResult,
        FsEdit,
        StatusMessage,
        TokenCount,
        PermissionResponse,
    ],
    Field(discriminator="type"),
]

_message_adapter: TypeAdapter = TypeAdapter(AgentMessage)


def parse_agent_message(data: dict) -> AgentMessage:
    """
    Validate a dictionary into the matching message model.

    Accepts both camelCase (wire) and snake_case keys.

    Raises:
        pydantic.ValidationError: If the type is unknown or fields are missing.
    """
    return _message_adapter.validate_python(data)


def status(value: AgentStatus | str, detail: str | None = None) -> StatusMessage:
    """Shorthand for building a status message."""
    return StatusMessage(status=AgentStatus(value), detail=detail)
