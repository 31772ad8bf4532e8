"""Tests for the Claude Code, Codex, Gemini CLI and Aider backends."""

import json
from unittest.mock import MagicMock, patch

import pytest

from agentbridge.agents.aider_adapter import AiderBackend, estimate_tokens, parse_token_amount
from agentbridge.agents.base import AgentBackendConfig, PermissionResponder
from agentbridge.agents.claude_adapter import ClaudeBackend
from agentbridge.agents.codex_adapter import CodexBackend
from agentbridge.agents.gemini_adapter import GeminiBackend
from agentbridge.agents.state import new_session_state


@pytest.fixture
def mock_settings():
    """Patch settings in every adapter module."""
    mock = MagicMock()
    mock.claude_command = "claude"
    mock.codex_command = "codex"
    mock.gemini_command = "gemini"
    mock.aider_command = "aider"
    mock.claude_permission_mode = "acceptEdits"
    mock.gemini_approval_mode = "auto_edit"
    with patch("agentbridge.agents.claude_adapter.settings", mock), \
         patch("agentbridge.agents.codex_adapter.settings", mock), \
         patch("agentbridge.agents.gemini_adapter.settings", mock), \
         patch("agentbridge.agents.aider_adapter.settings", mock):
        yield mock


def _live(backend_cls, config=None):
    """Create a backend with a started session and a message log."""
    backend = backend_cls(config)
    backend._state = new_session_state("s1")
    messages = []
    backend.on_message(messages.append)
    return backend, messages


def _feed(backend, *objects):
    for obj in objects:
        backend.handle_line(json.dumps(obj))


class TestClaudeBackend:
    """Tests for ClaudeBackend."""

    def test_build_command_default(self, mock_settings):
        cmd = ClaudeBackend().build_command("fix it")

        assert cmd[:5] == ["claude", "-p", "fix it", "--output-format", "stream-json"]
        assert "--verbose" in cmd
        idx = cmd.index("--permission-mode")
        assert cmd[idx + 1] == "acceptEdits"

    def test_build_command_bypass_permissions(self, mock_settings):
        mock_settings.claude_permission_mode = "bypassPermissions"

        cmd = ClaudeBackend(AgentBackendConfig(model="sonnet", resume_session_id="abc")).build_command("x")

        assert "--dangerously-skip-permissions" in cmd
        assert "--permission-mode" not in cmd
        assert cmd[cmd.index("--model") + 1] == "sonnet"
        assert cmd[cmd.index("--resume") + 1] == "abc"

    def test_build_command_default_mode_adds_nothing(self, mock_settings):
        mock_settings.claude_permission_mode = "default"

        cmd = ClaudeBackend().build_command("x")

        assert "--permission-mode" not in cmd
        assert "--dangerously-skip-permissions" not in cmd

    def test_stream_translation(self, mock_settings):
        backend, messages = _live(ClaudeBackend)

        _feed(
            backend,
            {"type": "system", "subtype": "init", "session_id": "cl-1"},
            {
                "type": "assistant",
                "message": {
                    "content": [
                        {"type": "text", "text": "Creating the file."},
                        {"type": "tool_use", "id": "t1", "name": "Write", "input": {"file_path": "x.py", "content": "pass"}},
                    ]
                },
            },
            {"type": "user", "message": {"content": [{"type": "tool_result", "tool_use_id": "t1", "content": "ok"}]}},
            {
                "type": "result",
                "subtype": "success",
                "session_id": "cl-1",
                "total_cost_usd": 0.03,
                "usage": {
                    "input_tokens": 10,
                    "cache_creation_input_tokens": 5,
                    "cache_read_input_tokens": 5,
                    "output_tokens": 7,
                },
            },
        )

        assert [m.type for m in messages] == ["model-output", "tool-call", "tool-result", "fs-edit", "token-count"]
        assert messages[2].tool_name == "Write"
        assert messages[3].description == "Write: x.py"
        assert (messages[4].input_tokens, messages[4].output_tokens, messages[4].total_tokens) == (20, 7, 27)
        assert messages[4].cost_usd == 0.03
        assert backend.resume_token == "cl-1"

    def test_failed_tool_has_no_edit(self, mock_settings):
        backend, messages = _live(ClaudeBackend)

        _feed(
            backend,
            {"type": "assistant", "message": {"content": [{"type": "tool_use", "id": "t1", "name": "Edit", "input": {"file_path": "a"}}]}},
            {"type": "user", "message": {"content": [{"type": "tool_result", "tool_use_id": "t1", "content": "nope", "is_error": True}]}},
        )

        assert [m.type for m in messages] == ["tool-call", "tool-result"]

    def test_usage_accumulates_across_prompts(self, mock_settings):
        backend, messages = _live(ClaudeBackend)
        result = {"type": "result", "total_cost_usd": 0.01, "usage": {"input_tokens": 10, "output_tokens": 1}}

        _feed(backend, result, result)

        assert messages[-1].input_tokens == 20
        assert messages[-1].cost_usd == 0.02

    def test_error_result(self, mock_settings):
        backend, messages = _live(ClaudeBackend)

        _feed(backend, {"type": "result", "is_error": True, "result": "Credit balance is too low"})

        assert messages[-1].status == "error"
        assert messages[-1].detail == "Credit balance is too low"

    def test_has_permission_capability(self):
        assert isinstance(ClaudeBackend(), PermissionResponder)


class TestCodexBackend:
    """Tests for CodexBackend."""

    def test_build_command(self, mock_settings):
        cmd = CodexBackend(AgentBackendConfig(model="gpt-5", extra_args=["--full-auto"])).build_command("add tests")

        assert cmd == ["codex", "exec", "--json", "--model", "gpt-5", "add tests", "--full-auto"]

    def test_resume_thread(self, mock_settings):
        backend, _ = _live(CodexBackend)
        _feed(backend, {"type": "thread.started", "thread_id": "th-1"})

        assert backend.build_command("more") == ["codex", "exec", "--json", "resume", "th-1", "more"]

    def test_item_translation(self, mock_settings):
        backend, messages = _live(CodexBackend)

        _feed(
            backend,
            {"type": "turn.started"},
            {"type": "item.started", "item": {"id": "i1", "type": "command_execution", "command": "ls"}},
            {"type": "item.completed", "item": {"id": "i1", "type": "command_execution", "command": "ls", "aggregated_output": "a.py\n", "exit_code": 0}},
            {"type": "item.completed", "item": {"id": "i2", "type": "agent_message", "text": "Done."}},
            {"type": "item.completed", "item": {"id": "i3", "type": "file_change", "changes": [{"path": "a.py", "kind": "add"}]}},
        )

        assert [m.type for m in messages] == ["status", "tool-call", "tool-result", "model-output", "fs-edit"]
        assert messages[0].status == "running"
        assert messages[1].tool_name == "shell"
        assert messages[1].args == {"command": "ls"}
        assert messages[2].result == {"output": "a.py\n", "exit_code": 0}
        assert messages[3].text_delta == "Done."
        assert messages[4].description == "add: a.py"

    def test_completed_without_start_emits_call_first(self, mock_settings):
        backend, messages = _live(CodexBackend)

        _feed(
            backend,
            {"type": "item.completed", "item": {"id": "m1", "type": "mcp_tool_call", "server": "docs", "tool": "search", "status": "completed"}},
        )

        assert [m.type for m in messages] == ["tool-call", "tool-result"]
        assert messages[0].tool_name == "search"
        assert messages[0].call_id == messages[1].call_id == "m1"

    def test_usage_is_estimated(self, mock_settings):
        backend, messages = _live(CodexBackend)

        _feed(backend, {"type": "turn.completed", "usage": {"input_tokens": 1000, "cached_input_tokens": 200, "output_tokens": 100}})

        msg = messages[-1]
        assert (msg.input_tokens, msg.output_tokens, msg.total_tokens) == (1000, 100, 1100)
        assert msg.cost_usd == pytest.approx(0.002025)

    def test_failures(self, mock_settings):
        backend, messages = _live(CodexBackend)

        _feed(backend, {"type": "turn.failed", "error": {"message": "stream disconnected"}}, {"type": "error"})

        assert [(m.status, m.detail) for m in messages] == [
            ("error", "stream disconnected"),
            ("error", "Unknown error"),
        ]

    def test_no_permission_capability(self):
        assert not isinstance(CodexBackend(), PermissionResponder)


class TestGeminiBackend:
    """Tests for GeminiBackend."""

    def test_build_command(self, mock_settings):
        cmd = GeminiBackend().build_command("explain")

        assert cmd == ["gemini", "--output-format", "stream-json", "--approval-mode", "auto_edit", "--prompt", "explain"]

    def test_resume_session(self, mock_settings):
        backend, _ = _live(GeminiBackend)
        _feed(backend, {"type": "init", "session_id": "g-1", "model": "gemini-2.5-flash"})

        cmd = backend.build_command("again")

        assert cmd[cmd.index("--resume") + 1] == "g-1"
        assert cmd[-2:] == ["--prompt", "again"]

    def test_stream_translation(self, mock_settings):
        backend, messages = _live(GeminiBackend)

        _feed(
            backend,
            {"type": "init", "session_id": "g-1", "model": "gemini-2.5-flash"},
            {"type": "message", "role": "user", "content": "write it"},
            {"type": "message", "role": "assistant", "content": "On it."},
            {"type": "tool_use", "tool_name": "write_file", "tool_id": "t1", "parameters": {"file_path": "a.py"}},
            {"type": "tool_result", "tool_id": "t1", "status": "success", "output": "ok"},
            {"type": "result", "status": "success", "stats": {"input_tokens": 1_000_000, "output_tokens": 0}},
        )

        assert [m.type for m in messages] == ["model-output", "tool-call", "tool-result", "fs-edit", "token-count"]
        assert messages[2].tool_name == "write_file"
        assert messages[3].path == "a.py"
        assert messages[4].cost_usd == pytest.approx(0.3)

    def test_failed_tool_result(self, mock_settings):
        backend, messages = _live(GeminiBackend)

        _feed(
            backend,
            {"type": "tool_use", "tool_name": "replace", "tool_id": "t1", "parameters": {"file_path": "a.py"}},
            {"type": "tool_result", "tool_id": "t1", "status": "error", "error": {"message": "no match"}},
        )

        assert [m.type for m in messages] == ["tool-call", "tool-result"]
        assert messages[1].result == {"message": "no match"}

    def test_error_result(self, mock_settings):
        backend, messages = _live(GeminiBackend)

        _feed(backend, {"type": "result", "status": "error", "error": {"message": "quota exhausted"}})

        assert len(messages) == 1
        assert (messages[0].status, messages[0].detail) == ("error", "quota exhausted")


class TestAiderBackend:
    """Tests for AiderBackend."""

    def test_build_command(self, mock_settings):
        config = AgentBackendConfig(model="gpt-4.1", extra_args=["--no-git"], files=["a.py", "b.py"])

        cmd = AiderBackend(config).build_command("refactor")

        assert cmd == ["aider", "--message", "refactor", "--no-stream", "--yes", "--model", "gpt-4.1", "--no-git", "a.py", "b.py"]

    def test_plain_text_and_edits(self, mock_settings):
        backend, messages = _live(AiderBackend)
        backend.before_prompt("fix")

        for line in ["Sure, updating it now.", "Applied edit to src/a.py", "Wrote notes.md"]:
            backend.handle_line(line)

        assert [m.type for m in messages] == ["model-output", "fs-edit", "fs-edit"]
        assert messages[0].text_delta == "Sure, updating it now.\n"
        assert (messages[1].path, messages[1].description) == ("src/a.py", "Applied edit to src/a.py")
        assert messages[2].path == "notes.md"

    def test_reported_usage(self, mock_settings):
        backend, messages = _live(AiderBackend)
        backend.before_prompt("fix")

        backend.handle_line("Tokens: 2.5k sent, 120 received. Cost: $0.01 message, $0.02 session.")
        backend.handle_exit(0)

        msg = messages[-1]
        assert (msg.input_tokens, msg.output_tokens, msg.cost_usd) == (2500, 120, 0.01)
        assert [m.type for m in messages] == ["token-count"]

    def test_estimated_usage(self, mock_settings):
        backend, messages = _live(AiderBackend)
        backend.before_prompt("fix the bug please")

        backend.handle_line("Sure thing")
        backend.handle_exit(0)

        msg = messages[-1]
        assert msg.input_tokens == 6
        assert msg.output_tokens == 3
        assert msg.cost_usd == 0.0

    def test_no_resume_capability(self):
        capabilities = AiderBackend().capabilities
        assert capabilities.json_output is False
        assert capabilities.supports_resume is False

    @pytest.mark.parametrize("value, expected", [("120", 120), ("2.5k", 2500), ("1.2M", 1_200_000), ("1,234", 1234)])
    def test_parse_token_amount(self, value, expected):
        assert parse_token_amount(value) == expected

    def test_estimate_tokens(self):
        assert estimate_tokens("") == 0
        assert estimate_tokens("one two three") == 4
