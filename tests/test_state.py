"""Tests for per-session backend state transitions."""

from agentbridge.agents.state import (
    add_usage,
    apply_usage_snapshot,
    has_tool_call,
    new_session_state,
    record_tool_call,
    record_vendor_session,
    tool_call_args,
    tool_call_name,
    token_count_message,
)


class TestSessionState:
    """Tests for BackendSessionState helpers."""

    def test_new_state_is_zeroed(self):
        state = new_session_state("s1", "vendor-1")

        assert state.session_id == "s1"
        assert state.vendor_session_id == "vendor-1"
        assert state.total_tokens == 0
        assert state.cost_usd == 0.0
        assert state.tool_calls == {}

    def test_tool_calls_are_tracked(self):
        state = new_session_state("s1")
        record_tool_call(state, "c1", {"path": "a.py"}, "write_file")

        assert has_tool_call(state, "c1")
        assert not has_tool_call(state, "c2")
        assert tool_call_args(state, "c1") == {"path": "a.py"}
        assert tool_call_name(state, "c1") == "write_file"
        assert tool_call_args(state, "missing") == {}

    def test_vendor_session_ignores_empty(self):
        state = new_session_state("s1", "v1")
        record_vendor_session(state, None)
        assert state.vendor_session_id == "v1"
        record_vendor_session(state, "v2")
        assert state.vendor_session_id == "v2"


class TestUsage:
    """Tests for usage accounting."""

    def test_add_usage_accumulates(self):
        state = new_session_state("s1")
        add_usage(state, 100, 20, 0.01)
        add_usage(state, 50, 5, 0.02)

        assert state.input_tokens == 150
        assert state.output_tokens == 25
        assert abs(state.cost_usd - 0.03) < 1e-9

    def test_add_usage_ignores_negative(self):
        state = new_session_state("s1")
        add_usage(state, 10, 10, 0.1)
        add_usage(state, -5, -5, -0.1)

        assert state.input_tokens == 10
        assert state.output_tokens == 10
        assert state.cost_usd == 0.1

    def test_snapshot_overwrites_upward(self):
        state = new_session_state("s1")
        apply_usage_snapshot(state, 100, 10, 0.5)
        apply_usage_snapshot(state, 150, 12, 0.7)

        assert (state.input_tokens, state.output_tokens, state.cost_usd) == (150, 12, 0.7)

    def test_snapshot_never_regresses(self):
        """Counters are non-decreasing unless the vendor resets."""
        state = new_session_state("s1")
        apply_usage_snapshot(state, 100, 10, 0.5)
        apply_usage_snapshot(state, 40, 2, 0.1)

        assert (state.input_tokens, state.output_tokens, state.cost_usd) == (100, 10, 0.5)

    def test_snapshot_reset_allows_lower(self):
        state = new_session_state("s1")
        apply_usage_snapshot(state, 100, 10, 0.5)
        apply_usage_snapshot(state, 40, 2, 0.1, reset=True)

        assert (state.input_tokens, state.output_tokens, state.cost_usd) == (40, 2, 0.1)

    def test_snapshot_skips_missing_fields(self):
        state = new_session_state("s1")
        apply_usage_snapshot(state, 100, 10, 0.5)
        apply_usage_snapshot(state, cost_usd=0.6)

        assert state.input_tokens == 100
        assert state.cost_usd == 0.6

    def test_token_count_is_full_snapshot(self):
        state = new_session_state("s1")
        add_usage(state, 100, 20, 0.0123456789)
        msg = token_count_message(state)

        assert msg.input_tokens == 100
        assert msg.output_tokens == 20
        assert msg.total_tokens == 120
        assert msg.cost_usd == 0.012346

    def test_token_count_uses_vendor_total_when_larger(self):
        state = new_session_state("s1")
        add_usage(state, 10, 10)

        assert token_count_message(state, 25).total_tokens == 25
        assert token_count_message(state, 5).total_tokens == 20
