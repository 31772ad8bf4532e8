"""
Aggregate usage statistics for a session.

Backends report full snapshots, not deltas. A snapshot overwrites the
previous one; when a vendor starts counting from zero again the totals seen
so far are kept and later snapshots are added on top. Totals never decrease.
"""

from dataclasses import dataclass, field

from agentbridge.agents.messages import TokenCount


@dataclass
class SessionStats:
    """Cumulative usage across the whole session."""

    input_tokens: int = 0
    output_tokens: int = 0
    cost_usd: float = 0.0
    prompts: int = 0
    tool_calls: int = 0
    files_edited: set[str] = field(default_factory=set)
    permissions_approved: int = 0
    permissions_denied: int = 0
    permissions_timed_out: int = 0
    errors: int = 0

    # Totals frozen at the last vendor reset, plus the latest snapshot
    _base_input: int = field(default=0, repr=False)
    _base_output: int = field(default=0, repr=False)
    _base_cost: float = field(default=0.0, repr=False)
    _current: TokenCount = field(default_factory=TokenCount, repr=False)

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def apply_snapshot(self, snapshot: TokenCount) -> None:
        """Overwrite the current backend session's contribution."""
        current = self._current
        if (
            snapshot.input_tokens < current.input_tokens
            or snapshot.output_tokens < current.output_tokens
            or snapshot.cost_usd < current.cost_usd
        ):
            # The vendor started counting from zero again
            self.roll_over()
        self._current = snapshot
        self.input_tokens = max(self.input_tokens, self._base_input + snapshot.input_tokens)
        self.output_tokens = max(self.output_tokens, self._base_output + snapshot.output_tokens)
        self.cost_usd = max(self.cost_usd, self._base_cost + snapshot.cost_usd)

    def roll_over(self) -> None:
        """Freeze the current totals so the next snapshot is added on top."""
        self._base_input = self.input_tokens
        self._base_output = self.output_tokens
        self._base_cost = self.cost_usd
        self._current = TokenCount()

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "inputTokens": self.input_tokens,
            "outputTokens": self.output_tokens,
            "totalTokens": self.total_tokens,
            "costUsd": round(self.cost_usd, 6),
            "prompts": self.prompts,
            "toolCalls": self.tool_calls,
            "filesEdited": sorted(self.files_edited),
            "permissionsApproved": self.permissions_approved,
            "permissionsDenied": self.permissions_denied,
            "permissionsTimedOut": self.permissions_timed_out,
            "errors": self.errors,
        }
