"""
agentbridge command line.

`agentbridge agents` lists the known agents and whether they can run here.
`agentbridge run AGENT [PROMPT]` runs a session in the terminal, with the
terminal standing in for the remote peer that approves tool calls.
"""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

import click

from agentbridge import __version__
from agentbridge.agents.base import AgentBackendConfig
from agentbridge.agents.messages import FsEdit, ModelOutput, StatusMessage, ToolCall, ToolResult
from agentbridge.agents.registry import get_agent_registry
from agentbridge.config import settings
from agentbridge.errors import AgentBridgeError, RegistryError
from agentbridge.session.channel import MOBILE, InMemoryChannel
from agentbridge.session.events import SessionEvent, SessionEventType
from agentbridge.session.orchestrator import SessionOrchestrator, SessionState
from agentbridge.session.policy import PermissionPolicy

logger = logging.getLogger(__name__)


def configure_logging(debug: bool) -> None:
    level = logging.DEBUG if debug else getattr(logging, settings.log_level, logging.WARNING)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


class TerminalChannel(InMemoryChannel):
    """
    Channel whose peer is the person at the terminal.

    Permission requests are answered right away, either automatically or by
    asking on the terminal.
    """

    def __init__(self, auto_approve: bool = False):
        super().__init__(peers_online=(MOBILE,))
        self.auto_approve = auto_approve

    async def send(self, event: dict) -> None:
        await super().send(event)
        if event.get("type") != "permission_request":
            return

        if self.auto_approve:
            approved = True
        else:
            question = f"Allow {event['description']} [{event['risk_level']} risk]?"
            approved = await asyncio.to_thread(click.confirm, question, default=False)
        self.deliver(
            {"type": "permission_response", "request_id": event["request_id"], "approved": approved}
        )


def print_event(event: SessionEvent) -> None:
    """Render one session event on the terminal."""
    if event.type == SessionEventType.AGENT_MESSAGE:
        message = event.data["message"]
        if isinstance(message, ModelOutput):
            click.echo(message.text_delta, nl=False)
        elif isinstance(message, ToolCall):
            click.secho(f"\n> {message.tool_name} {json.dumps(message.args, default=str)[:120]}", fg="cyan")
        elif isinstance(message, ToolResult):
            click.secho(f"< {message.tool_name} done", fg="cyan", dim=True)
        elif isinstance(message, FsEdit):
            click.secho(f"~ {message.description}", fg="green")
        elif isinstance(message, StatusMessage) and message.status == "error":
            click.secho(f"! {message.detail or 'error'}", fg="red", err=True)

    elif event.type == SessionEventType.PERMISSION_RESOLVED and not event.data["approved"]:
        click.secho(f"Denied tool call {event.data['call_id']} ({event.data['reason']})", fg="yellow")


def print_summary(orchestrator: SessionOrchestrator) -> None:
    stats = orchestrator.stats
    click.echo()
    click.secho(
        f"{stats.input_tokens} in / {stats.output_tokens} out tokens, "
        f"${stats.cost_usd:.4f}, {len(stats.files_edited)} files edited",
        dim=True,
    )


async def run_session(
    orchestrator: SessionOrchestrator,
    prompt: Optional[str],
) -> int:
    """
    Run one prompt, or a prompt loop when no prompt is given.

    Returns:
        Process exit code.
    """
    orchestrator.on_event(print_event)
    exit_code = 0
    try:
        await orchestrator.start()
        if prompt:
            await orchestrator.send_prompt(prompt)
        else:
            while True:
                try:
                    text = await asyncio.to_thread(click.prompt, "you", default="", show_default=False)
                except click.Abort:
                    break
                if text.strip() in ("exit", "quit"):
                    break
                if not text.strip():
                    continue
                try:
                    await orchestrator.send_prompt(text)
                except AgentBridgeError as e:
                    click.secho(str(e), fg="red", err=True)
    except AgentBridgeError as e:
        click.secho(str(e), fg="red", err=True)
        exit_code = 1
    finally:
        if orchestrator.state == SessionState.ERROR:
            exit_code = 1
        await orchestrator.stop()
        print_summary(orchestrator)
    return exit_code


@click.group()
@click.version_option(__version__, "-v", "--version")
def main() -> None:
    """agentbridge - drive coding agent CLIs through one interface."""
    pass


@main.command()
@click.option("--json", "as_json", is_flag=True, help="Print machine-readable JSON")
def agents(as_json: bool) -> None:
    """List known agents and whether they are installed."""
    info = get_agent_registry().get_agent_info()
    if as_json:
        click.echo(json.dumps(info, indent=2))
        return

    for agent in info:
        if not agent["available"]:
            state = click.style(f"unavailable: {agent['reason']}", fg="red")
        elif agent["installed"]:
            state = click.style("installed", fg="green")
        else:
            state = click.style(f"'{agent['command']}' not found on PATH", fg="yellow")
        click.echo(f"{agent['id']:<10} {agent['name']:<12} {state}")


@main.command()
@click.argument("agent")
@click.argument("prompt", required=False)
@click.option(
    "--cwd",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    help="Working directory for the agent (default: current directory)",
)
@click.option("--model", "-m", help="Model override passed to the agent")
@click.option("--resume", "resume_session", help="Vendor session id to continue")
@click.option("--extra-arg", "extra_args", multiple=True, help="Extra argument for the agent CLI (repeatable)")
@click.option("--file", "files", multiple=True, help="File to add to the chat (Aider only, repeatable)")
@click.option("--api-key", envvar="AGENTBRIDGE_API_KEY", help="API key injected into the agent's environment")
@click.option(
    "--approve-tools/--no-approve-tools",
    default=False,
    help="Approve every tool call without asking",
)
@click.option("--permission-timeout", type=float, default=None, help="Seconds before an unanswered approval is denied")
@click.option("--debug", is_flag=True, help="Enable debug logging")
def run(
    agent: str,
    prompt: Optional[str],
    cwd: Optional[Path],
    model: Optional[str],
    resume_session: Optional[str],
    extra_args: tuple[str, ...],
    files: tuple[str, ...],
    api_key: Optional[str],
    approve_tools: bool,
    permission_timeout: Optional[float],
    debug: bool,
) -> None:
    """Run AGENT with PROMPT, or interactively when PROMPT is omitted."""
    configure_logging(debug)

    config = AgentBackendConfig(
        cwd=str(cwd) if cwd else None,
        model=model,
        resume_session_id=resume_session,
        extra_args=extra_args,
        files=files,
        api_key=api_key,
    )
    try:
        backend = get_agent_registry().create(agent, config)
    except RegistryError as e:
        raise click.ClickException(str(e))

    orchestrator = SessionOrchestrator(
        backend,
        TerminalChannel(auto_approve=approve_tools),
        PermissionPolicy(),
        permission_timeout=permission_timeout,
    )
    exit_code = asyncio.run(run_session(orchestrator, prompt))
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
