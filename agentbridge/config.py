"""
Application settings.

Settings can be configured via:
1. Environment variables (highest priority)
2. ~/.agentbridge/config.json
3. .env file in the working directory
4. Default values

The ~/.agentbridge/config.json is the recommended place for persistent settings.
"""

import json
import os
from pathlib import Path
from typing import Literal


# Tools that are forwarded to the remote peer for approval before they run
DEFAULT_APPROVAL_TOOLS = [
    "Bash",
    "shell",
    "run_shell_command",
    "command_execution",
    "Write",
    "Edit",
    "MultiEdit",
    "write_file",
    "edit_file",
    "str_replace_editor",
    "replace",
]


def _get_config_path() -> Path:
    """Get the path to ~/.agentbridge/config.json."""
    return Path.home() / ".agentbridge" / "config.json"


def _load_config_file() -> dict:
    """Load config from ~/.agentbridge/config.json."""
    path = _get_config_path()
    if not path.exists():
        return {}
    try:
        with open(path) as f:
            return json.load(f)
    except (json.JSONDecodeError, IOError):
        return {}


def _save_config_file(config: dict) -> None:
    """Save config to ~/.agentbridge/config.json."""
    path = _get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump(config, f, indent=2)


def _get_env_file_path() -> Path:
    """Get the .env file path."""
    return Path.cwd() / ".env"


def _load_env_file() -> dict[str, str]:
    """Load settings from .env file."""
    env_path = _get_env_file_path()
    env_vars = {}

    if env_path.exists():
        with open(env_path) as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith("#") and "=" in line:
                    key, value = line.split("=", 1)
                    env_vars[key.strip()] = value.strip()

    return env_vars


class Settings:
    """
    Application settings with layered configuration.

    Priority (highest to lowest):
    1. Environment variables (AGENTBRIDGE_ prefixed)
    2. ~/.agentbridge/config.json
    3. .env file
    4. Default values
    """

    def __init__(self):
        self._file_config = _load_config_file()
        self._env_file = _load_env_file()

    def _get(self, key: str, default=None, env_key: str | None = None):
        """Get a config value from the layered config sources."""
        env_key = env_key or f"AGENTBRIDGE_{key.upper()}"
        if env_key in os.environ:
            return os.environ[env_key]

        if key in self._file_config:
            return self._file_config[key]

        if env_key in self._env_file:
            return self._env_file[env_key]

        return default

    def _get_bool(self, key: str, default: bool = False, env_key: str | None = None) -> bool:
        """Get a boolean config value."""
        value = self._get(key, default, env_key)
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.lower() in ("true", "1", "yes")
        return bool(value)

    def _get_int(self, key: str, default: int = 0, env_key: str | None = None) -> int:
        """Get an integer config value."""
        value = self._get(key, default, env_key)
        try:
            return int(value)
        except (TypeError, ValueError):
            return default

    def _get_float(self, key: str, default: float = 0.0, env_key: str | None = None) -> float:
        """Get a float config value."""
        value = self._get(key, default, env_key)
        try:
            return float(value)
        except (TypeError, ValueError):
            return default

    # ==========================================
    # Agent Commands
    # ==========================================

    @property
    def claude_command(self) -> str:
        return self._get("claude_command", "claude") or "claude"

    @property
    def codex_command(self) -> str:
        return self._get("codex_command", "codex") or "codex"

    @property
    def gemini_command(self) -> str:
        return self._get("gemini_command", "gemini") or "gemini"

    @property
    def opencode_command(self) -> str:
        return self._get("opencode_command", "opencode") or "opencode"

    @property
    def aider_command(self) -> str:
        return self._get("aider_command", "aider") or "aider"

    # ==========================================
    # Vendor Modes
    # ==========================================

    @property
    def claude_permission_mode(self) -> Literal["default", "plan", "acceptEdits", "bypassPermissions"]:
        mode = self._get("claude_permission_mode", "acceptEdits")
        if mode in ("default", "plan", "acceptEdits", "bypassPermissions"):
            return mode  # type: ignore
        return "acceptEdits"

    @property
    def gemini_approval_mode(self) -> str:
        mode = self._get("gemini_approval_mode", "auto_edit")
        if mode in ("default", "auto_edit", "yolo"):
            return mode
        return "auto_edit"

    # ==========================================
    # Timeouts
    # ==========================================

    @property
    def cancel_grace_secs(self) -> float:
        """Seconds between SIGTERM and the forced SIGKILL."""
        return self._get_float("cancel_grace_secs", 3.0)

    @property
    def response_timeout_secs(self) -> float:
        return self._get_float("response_timeout_secs", 120.0)

    @property
    def permission_timeout_secs(self) -> float:
        """Seconds to wait for a remote approval before denying."""
        return self._get_float("permission_timeout_secs", 60.0)

    # ==========================================
    # Remote Peer
    # ==========================================

    @property
    def outbox_limit(self) -> int:
        return self._get_int("outbox_limit", 500)

    @property
    def require_approval(self) -> bool:
        return self._get_bool("require_approval", True)

    @property
    def approval_tools(self) -> str:
        return self._get("approval_tools", "") or ""

    def get_approval_tools(self) -> list[str]:
        """Get the list of tool patterns that need remote approval."""
        if self.approval_tools:
            return [t.strip() for t in self.approval_tools.split(",") if t.strip()]
        return list(DEFAULT_APPROVAL_TOOLS)

    # ==========================================
    # Logging
    # ==========================================

    @property
    def log_level(self) -> str:
        return (self._get("log_level", "WARNING") or "WARNING").upper()

    def reload(self) -> None:
        """Reload settings from all sources."""
        self._file_config = _load_config_file()
        self._env_file = _load_env_file()

    def save(self, **values) -> None:
        """Persist values to ~/.agentbridge/config.json and reload."""
        config = _load_config_file()
        config.update(values)
        _save_config_file(config)
        self.reload()


settings = Settings()
