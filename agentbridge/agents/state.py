"""
Per-session bookkeeping for agent backends.

A backend holds one BackendSessionState for the session it is currently
serving. The state is only changed through the functions in this module so
the accounting rules can be tested without spawning anything.
"""

from dataclasses import dataclass, field
from typing import Any

from agentbridge.agents.messages import TokenCount


@dataclass
class BackendSessionState:
    """Counters and correlation data for one backend session."""

    session_id: str
    """Id handed out by start_session."""

    vendor_session_id: str | None = None
    """The vendor's own conversation id, used to resume the next prompt."""

    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0.0

    tool_calls: dict[str, dict[str, Any]] = field(default_factory=dict)
    """Arguments of every tool call seen so far, keyed by call id."""

    tool_names: dict[str, str] = field(default_factory=dict)

    prompts: int = 0
    """Number of prompts sent in this session."""

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


def new_session_state(session_id: str, vendor_session_id: str | None = None) -> BackendSessionState:
    """Create zeroed state for a freshly started session."""
    return BackendSessionState(session_id=session_id, vendor_session_id=vendor_session_id)


def record_prompt(state: BackendSessionState) -> None:
    state.prompts += 1


def record_tool_call(
    state: BackendSessionState,
    call_id: str,
    args: dict[str, Any] | None,
    tool_name: str | None = None,
) -> None:
    """Remember a tool call so its result can be matched later."""
    state.tool_calls[call_id] = dict(args or {})
    if tool_name:
        state.tool_names[call_id] = tool_name


def has_tool_call(state: BackendSessionState, call_id: str) -> bool:
    return call_id in state.tool_calls


def tool_call_args(state: BackendSessionState, call_id: str) -> dict[str, Any]:
    return state.tool_calls.get(call_id, {})


def tool_call_name(state: BackendSessionState, call_id: str) -> str | None:
    return state.tool_names.get(call_id)


def record_vendor_session(state: BackendSessionState, vendor_session_id: str | None) -> None:
    if vendor_session_id:
        state.vendor_session_id = vendor_session_id


def add_usage(
    state: BackendSessionState,
    input_tokens: int = 0,
    output_tokens: int = 0,
    cost_usd: float = 0.0,
) -> None:
    """
    Add per-turn usage for vendors that report deltas.

    Negative values are ignored so the counters never go backwards.
    """
    state.input_tokens += max(0, int(input_tokens or 0))
    state.output_tokens += max(0, int(output_tokens or 0))
    state.cost_usd += max(0.0, float(cost_usd or 0.0))


def apply_usage_snapshot(
    state: BackendSessionState,
    input_tokens: int | None = None,
    output_tokens: int | None = None,
    cost_usd: float | None = None,
    *,
    reset: bool = False,
) -> None:
    """
    Apply cumulative totals for vendors that report running snapshots.

    A snapshot replaces the counters but never moves them below what was
    already recorded, unless the vendor explicitly reset its totals.

    Args:
        state: State to update.
        input_tokens: Vendor's cumulative input tokens, None if not reported.
        output_tokens: Vendor's cumulative output tokens, None if not reported.
        cost_usd: Vendor's cumulative cost, None if not reported.
        reset: Accept lower values because the vendor started counting over.
    """
    if input_tokens is not None:
        value = int(input_tokens)
        state.input_tokens = value if reset else max(state.input_tokens, value)
    if output_tokens is not None:
        value = int(output_tokens)
        state.output_tokens = value if reset else max(state.output_tokens, value)
    if cost_usd is not None:
        value = float(cost_usd)
        state.cost_usd = value if reset else max(state.cost_usd, value)


def token_count_message(state: BackendSessionState, total_tokens: int | None = None) -> TokenCount:
    """Build the full token-count snapshot for the current counters."""
    total = state.total_tokens
    if total_tokens is not None:
        total = max(total, int(total_tokens))
    return TokenCount(
        input_tokens=state.input_tokens,
        output_tokens=state.output_tokens,
        total_tokens=total,
        cost_usd=round(state.cost_usd, 6),
    )
