"""
Shared process handling for CLI-driven agent backends.

Every vendor adapter runs its CLI once per prompt in non-interactive mode and
reads the output as it streams. This module owns everything that is the same
across vendors: spawning, chunked line framing, stderr classification,
cancellation with a forced kill fallback, waiting and disposal. Adapters only
build the argv and translate single output lines.
"""

import asyncio
import asyncio.subprocess
import json
import logging
import os
from abc import abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional
from uuid import uuid4

from agentbridge.agents.base import (
    AgentBackend,
    AgentBackendConfig,
    MessageHandler,
    StartSessionResult,
)
from agentbridge.agents.line_buffer import LineBuffer
from agentbridge.agents.messages import (
    AgentMessage,
    AgentStatus,
    FsEdit,
    ToolCall,
    ToolResult,
    status,
)
from agentbridge.agents.state import (
    BackendSessionState,
    has_tool_call,
    new_session_state,
    record_prompt,
    record_tool_call,
    token_count_message,
)
from agentbridge.agents.stderr import classify_stderr
from agentbridge.config import settings
from agentbridge.errors import (
    AgentBusyError,
    DisposedError,
    InvalidSessionError,
    ProcessSpawnError,
    ResponseTimeoutError,
    VendorExitError,
)

logger = logging.getLogger(__name__)

READ_CHUNK_BYTES = 64 * 1024

# Argument keys vendors use for the file a tool touches
PATH_ARG_KEYS = ("path", "file_path", "filePath", "filename", "notebook_path")


@dataclass
class AgentCapabilities:
    """
    Describes what an agent backend supports.

    Shown by the CLI and used to decide how a session is driven.
    """

    json_output: bool = True
    """Whether the vendor emits newline-delimited JSON (False means plain text)."""

    supports_resume: bool = True
    """Whether a vendor session can be continued by a later prompt."""

    supports_model: bool = True
    """Whether a model override can be passed."""

    reports_cost: bool = True
    """Whether the vendor reports cost itself rather than it being estimated."""


@dataclass
class _ActiveRun:
    """One vendor process serving one prompt."""

    session_id: str
    process: Optional[asyncio.subprocess.Process] = None
    cancelled: bool = False
    exited: asyncio.Event = field(default_factory=asyncio.Event)


def extract_path(args: Any) -> str | None:
    """Find the file path in a tool's arguments, if there is one."""
    if not isinstance(args, dict):
        return None
    for key in PATH_ARG_KEYS:
        value = args.get(key)
        if isinstance(value, str) and value:
            return value
    return None


class SubprocessAgentBackend(AgentBackend):
    """
    Base class for backends that run a vendor CLI per prompt.

    Subclasses provide the command name, the credential variable, the argv
    for a prompt and the translation of one stdout line. The vendor's own
    session id is kept in the session state and passed back on the next
    prompt so that a conversation continues across prompts.
    """

    def __init__(self, config: AgentBackendConfig | None = None):
        self.config = config or AgentBackendConfig()
        self._handlers: list[MessageHandler] = []
        self._state: BackendSessionState | None = None
        self._run: _ActiveRun | None = None
        self._kill_task: asyncio.Task | None = None
        self._kill_target: Optional[asyncio.subprocess.Process] = None
        self._disposed = False

    # ==========================================
    # Vendor hooks
    # ==========================================

    @property
    @abstractmethod
    def command_name(self) -> str:
        """Return the vendor executable (e.g., 'opencode')."""
        ...

    @property
    @abstractmethod
    def credential_env_var(self) -> str | None:
        """Return the variable the config's api_key is injected into."""
        ...

    @property
    def capabilities(self) -> AgentCapabilities:
        return AgentCapabilities()

    @abstractmethod
    def build_command(self, prompt: str) -> list[str]:
        """
        Build the vendor argv for one prompt.

        Args:
            prompt: The user prompt.

        Returns:
            List of command arguments suitable for create_subprocess_exec().
        """
        ...

    @abstractmethod
    def handle_line(self, line: str) -> None:
        """Translate one complete stdout line into messages."""
        ...

    def before_prompt(self, prompt: str) -> None:
        """Called right before the process is spawned."""

    def handle_exit(self, returncode: int) -> None:
        """Called once the process exited, unless it was cancelled."""

    # ==========================================
    # Accessors
    # ==========================================

    @property
    def session_id(self) -> str | None:
        return self._state.session_id if self._state else None

    @property
    def state(self) -> BackendSessionState | None:
        return self._state

    @property
    def resume_token(self) -> str | None:
        """Vendor session to continue, if any."""
        if self._state is not None:
            return self._state.vendor_session_id
        return self.config.resume_session_id

    @property
    def is_running(self) -> bool:
        return self._run is not None

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    # ==========================================
    # Subscribers
    # ==========================================

    def on_message(self, handler: MessageHandler) -> None:
        self._ensure_usable()
        self._handlers.append(handler)

    def off_message(self, handler: MessageHandler) -> None:
        try:
            self._handlers.remove(handler)
        except ValueError:
            pass

    def emit(self, message: AgentMessage) -> None:
        """Deliver a message to every subscriber, isolating their failures."""
        if self._disposed:
            return
        for handler in list(self._handlers):
            try:
                handler(message)
            except Exception:
                logger.exception("%s message handler failed on %s", self.display_name, message.type)

    # ==========================================
    # Session lifecycle
    # ==========================================

    async def start_session(self, initial_prompt: Optional[str] = None) -> StartSessionResult:
        self._ensure_usable()

        # A new session never shares a process or a kill timer with the old one
        if self._run is not None:
            await self._stop_run(self._run)
        self._cancel_kill_task()

        session_id = str(uuid4())
        self._state = new_session_state(session_id, self.config.resume_session_id)
        logger.info("Started %s session %s", self.display_name, session_id)
        self.emit(status(AgentStatus.STARTING))

        if initial_prompt:
            await self.send_prompt(session_id, initial_prompt)
        else:
            self.emit(status(AgentStatus.IDLE))
        return StartSessionResult(session_id=session_id)

    async def send_prompt(self, session_id: str, prompt: str) -> None:
        self._ensure_usable()
        self._check_session(session_id)

        if self._run is not None:
            if not self._run.cancelled:
                raise AgentBusyError(f"{self.display_name} is already running a prompt")
            # Let the cancelled process finish before starting the next one
            await self._run.exited.wait()
            self._ensure_usable()
            self._check_session(session_id)

        state = self._state
        run = _ActiveRun(session_id=session_id)
        self._run = run

        try:
            cmd = self.build_command(prompt)
            record_prompt(state)
            self.before_prompt(prompt)
            self.emit(status(AgentStatus.RUNNING))
            logger.info("Running %s in %s", cmd[0], self.config.cwd or os.getcwd())
            logger.debug("Command: %s", cmd)

            try:
                process = await asyncio.create_subprocess_exec(
                    *cmd,
                    stdin=asyncio.subprocess.PIPE,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    cwd=self.config.cwd,
                    env=self.build_env(),
                )
            except OSError as e:
                self.emit(status(AgentStatus.ERROR, f"Failed to start {self.display_name}: {e}"))
                raise ProcessSpawnError(cmd[0], str(e)) from e

            run.process = process
            # The prompt travels in argv, nothing is written to stdin
            if process.stdin is not None:
                process.stdin.close()
            if run.cancelled:
                self._terminate(process)

            returncode = await self._supervise(run, process)
        finally:
            if self._run is run:
                self._run = None
            run.exited.set()

        if run.cancelled or self._disposed or self._state is not state:
            logger.info("%s stopped with exit code %s", self.display_name, returncode)
            return

        self.handle_exit(returncode)

        if returncode == 0:
            self.emit(status(AgentStatus.IDLE))
            return

        error = VendorExitError(self.display_name, returncode)
        self.emit(status(AgentStatus.ERROR, str(error)))
        raise error

    async def cancel(self, session_id: str) -> None:
        self._ensure_usable()
        self._check_session(session_id)

        run = self._run
        if run is not None and not run.cancelled:
            logger.info("Cancelling %s session %s", self.display_name, session_id)
            run.cancelled = True
            if run.process is not None:
                self._terminate(run.process)

        self.emit(status(AgentStatus.IDLE))

    async def wait_for_response_complete(self, timeout: float | None = None) -> None:
        self._ensure_usable()
        run = self._run
        if run is None:
            return

        timeout = settings.response_timeout_secs if timeout is None else timeout
        try:
            await asyncio.wait_for(run.exited.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            raise ResponseTimeoutError(
                f"{self.display_name} did not finish within {timeout:g}s"
            ) from None

    async def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        self._handlers.clear()
        self._cancel_kill_task()

        run = self._run
        if run is None:
            return
        run.cancelled = True
        process = run.process
        if process is None or process.returncode is not None:
            return

        logger.info("Disposing %s, terminating process %s", self.display_name, process.pid)
        try:
            process.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(process.wait(), timeout=settings.cancel_grace_secs)
        except asyncio.TimeoutError:
            logger.warning("%s ignored SIGTERM, killing process %s", self.display_name, process.pid)
            try:
                process.kill()
            except ProcessLookupError:
                return
            await process.wait()

    # ==========================================
    # Helpers for adapters
    # ==========================================

    def build_env(self) -> dict[str, str]:
        """Parent environment, then config overrides, then the credential."""
        env = dict(os.environ)
        env.update(self.config.env)
        if self.config.api_key and self.credential_env_var:
            env[self.credential_env_var] = self.config.api_key
        return env

    def parse_json_line(self, line: str) -> dict | None:
        """Decode a JSON object line, or log it as incidental output."""
        stripped = line.strip()
        if not stripped.startswith("{"):
            logger.debug("%s output: %s", self.display_name, stripped)
            return None
        try:
            data = json.loads(stripped)
        except json.JSONDecodeError:
            logger.debug("%s emitted malformed JSON: %s", self.display_name, stripped)
            return None
        return data if isinstance(data, dict) else None

    def emit_tool_call(self, tool_name: Any, call_id: Any, args: Any = None) -> bool:
        """Emit a tool-call if both the name and the call id are present."""
        if not tool_name or not call_id:
            logger.debug("Dropping partial %s tool call: %s %s", self.display_name, tool_name, call_id)
            return False
        args = args if isinstance(args, dict) else {}
        record_tool_call(self._state, str(call_id), args, str(tool_name))
        self.emit(ToolCall(tool_name=str(tool_name), args=args, call_id=str(call_id)))
        return True

    def emit_tool_result(self, tool_name: Any, call_id: Any, result: Any = None) -> bool:
        """Emit a tool-result, but only for a call this session has seen."""
        if not tool_name or not call_id:
            logger.debug("Dropping partial %s tool result: %s %s", self.display_name, tool_name, call_id)
            return False
        if not has_tool_call(self._state, str(call_id)):
            logger.debug("Dropping %s result for unknown call %s", self.display_name, call_id)
            return False
        self.emit(ToolResult(tool_name=str(tool_name), result=result, call_id=str(call_id)))
        return True

    def emit_fs_edit(self, tool_name: str, args: Any, call_id: Optional[str] = None) -> None:
        path = extract_path(args)
        if path:
            self.emit(FsEdit(description=f"{tool_name}: {path}", path=path, call_id=call_id))

    def emit_token_count(self, total_tokens: int | None = None) -> None:
        self.emit(token_count_message(self._state, total_tokens))

    # ==========================================
    # Internals
    # ==========================================

    def _ensure_usable(self) -> None:
        if self._disposed:
            raise DisposedError(self.display_name)

    def _check_session(self, session_id: str) -> None:
        current = self.session_id
        if current is None or session_id != current:
            raise InvalidSessionError(session_id, current)

    async def _supervise(self, run: _ActiveRun, process: asyncio.subprocess.Process) -> int:
        """Pump both pipes until EOF and reap the process."""
        try:
            await asyncio.gather(
                self._read_stdout(run, process.stdout),
                self._read_stderr(run, process.stderr),
            )
            return await process.wait()
        finally:
            if self._kill_target is process:
                self._cancel_kill_task()
            if process.returncode is None:
                # Our caller went away while the vendor was still running
                try:
                    process.kill()
                except ProcessLookupError:
                    pass
                await process.wait()

    async def _read_stdout(self, run: _ActiveRun, stream: asyncio.StreamReader) -> None:
        buffer = LineBuffer()
        while True:
            chunk = await stream.read(READ_CHUNK_BYTES)
            if not chunk:
                break
            for line in buffer.feed(chunk):
                self._dispatch_line(run, line)

        remainder = buffer.flush()
        if remainder is not None:
            self._dispatch_line(run, remainder)

    async def _read_stderr(self, run: _ActiveRun, stream: asyncio.StreamReader) -> None:
        buffer = LineBuffer()
        while True:
            chunk = await stream.read(READ_CHUNK_BYTES)
            if not chunk:
                break
            for line in buffer.feed(chunk):
                self._dispatch_stderr(run, line)

        remainder = buffer.flush()
        if remainder is not None:
            self._dispatch_stderr(run, remainder)

    def _dispatch_line(self, run: _ActiveRun, line: str) -> None:
        if run.cancelled or self._run is not run or not line.strip():
            return
        try:
            self.handle_line(line)
        except Exception:
            logger.exception("Failed to handle %s output line: %s", self.display_name, line[:200])

    def _dispatch_stderr(self, run: _ActiveRun, line: str) -> None:
        logger.debug("%s stderr: %s", self.display_name, line)
        if run.cancelled or self._run is not run:
            return
        error = classify_stderr(line)
        if error is not None:
            self.emit(status(AgentStatus.ERROR, error.detail))

    def _terminate(self, process: asyncio.subprocess.Process) -> None:
        """Send SIGTERM and arm the forced kill."""
        if process.returncode is not None:
            return
        try:
            process.terminate()
        except ProcessLookupError:
            return
        self._cancel_kill_task()
        self._kill_target = process
        self._kill_task = asyncio.create_task(self._force_kill(process))

    async def _force_kill(self, process: asyncio.subprocess.Process) -> None:
        await asyncio.sleep(settings.cancel_grace_secs)
        if process.returncode is None:
            logger.warning("%s did not exit after SIGTERM, killing process %s", self.display_name, process.pid)
            try:
                process.kill()
            except ProcessLookupError:
                pass

    def _cancel_kill_task(self) -> None:
        if self._kill_task is not None and not self._kill_task.done():
            self._kill_task.cancel()
        self._kill_task = None
        self._kill_target = None

    async def _stop_run(self, run: _ActiveRun) -> None:
        run.cancelled = True
        if run.process is not None:
            self._terminate(run.process)
        await run.exited.wait()
