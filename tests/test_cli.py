"""Tests for the agentbridge command line."""

import json
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from agentbridge.cli import main

SCRIPT = """
import json, sys
print(json.dumps({"type": "assistant", "content": "Hello from the agent"}), flush=True)
print(json.dumps({"type": "session", "session": {"id": "ses_1", "Cost": 0.01, "PromptTokens": 10, "CompletionTokens": 5}}), flush=True)
"""


@pytest.fixture
def runner():
    with patch("agentbridge.cli.configure_logging"):
        yield CliRunner()


class TestAgentsCommand:
    """Tests for `agentbridge agents`."""

    def test_json_listing(self, runner):
        result = runner.invoke(main, ["agents", "--json"])

        assert result.exit_code == 0
        info = json.loads(result.output)
        assert [agent["id"] for agent in info] == ["aider", "claude", "codex", "gemini", "opencode"]
        assert all(agent["available"] for agent in info)

    def test_table_listing(self, runner):
        result = runner.invoke(main, ["agents"])

        assert result.exit_code == 0
        assert "opencode" in result.output
        assert "Claude Code" in result.output


class TestRunCommand:
    """Tests for `agentbridge run`."""

    def test_single_prompt(self, runner, fake_vendor):
        script = fake_vendor(SCRIPT)

        result = runner.invoke(main, ["run", "opencode", "say hello"], env={"AGENTBRIDGE_OPENCODE_COMMAND": script})

        assert result.exit_code == 0, result.output
        assert "Hello from the agent" in result.output
        assert "10 in / 5 out tokens" in result.output

    def test_vendor_failure_exit_code(self, runner, fake_vendor):
        script = fake_vendor("import sys\nsys.exit(3)\n")

        result = runner.invoke(main, ["run", "opencode", "fail"], env={"AGENTBRIDGE_OPENCODE_COMMAND": script})

        assert result.exit_code == 1
        assert "exited with code 3" in result.output

    def test_unknown_agent(self, runner):
        result = runner.invoke(main, ["run", "cursor", "hi"])

        assert result.exit_code != 0
        assert "Unknown agent: cursor" in result.output

    def test_interactive_loop(self, runner, fake_vendor):
        script = fake_vendor(SCRIPT)

        result = runner.invoke(
            main,
            ["run", "opencode"],
            input="first\n\nexit\n",
            env={"AGENTBRIDGE_OPENCODE_COMMAND": script},
        )

        assert result.exit_code == 0, result.output
        assert result.output.count("Hello from the agent") == 1

    def test_version(self, runner):
        result = runner.invoke(main, ["--version"])

        assert result.exit_code == 0
        assert "0.1.0" in result.output
