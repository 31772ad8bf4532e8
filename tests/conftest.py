"""Pytest configuration and fixtures for agentbridge tests."""

import stat
import sys
import textwrap
from pathlib import Path
from unittest.mock import MagicMock

import pytest

# Add the project root to the path so we can import from it
sys.path.insert(0, str(Path(__file__).parent.parent))


@pytest.fixture
def fake_vendor(tmp_path):
    """
    Write an executable Python script that stands in for a vendor CLI.

    Returns a function taking the script body and returning its path.
    """
    counter = {"n": 0}

    def _write(body: str, name: str | None = None) -> str:
        counter["n"] += 1
        path = tmp_path / (name or f"vendor_{counter['n']}")
        path.write_text(f"#!{sys.executable}\n" + textwrap.dedent(body))
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return str(path)

    return _write


@pytest.fixture
def fast_settings():
    """Settings with short timeouts for process tests."""
    mock_settings = MagicMock()
    mock_settings.cancel_grace_secs = 0.5
    mock_settings.response_timeout_secs = 5.0
    mock_settings.permission_timeout_secs = 1.0
    mock_settings.outbox_limit = 100
    return mock_settings
