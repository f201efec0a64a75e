from __future__ import annotations

import asyncio
from pathlib import Path

import typer

from .agent.factory import Agent, build_registry, create_agent
from .agent.orchestrator import AgentObserver, TurnResult
from .config import settings
from .logging_setup import setup_logging
from .session import ChatSession
from .session_manager import SessionManager, SessionNotFoundError
from .tools.base import SessionToolPolicy, ToolCall, ToolResult
from .tools.confirmation import ConsoleConfirmationPort
from .tools.memory_tool import AgentsMemory
from .tools.web_tools import UrllibFetcher
from .vault.storage import LocalVaultStorage

app = typer.Typer(help="scribe-agent: a tool-using assistant for a markdown vault")

PRESETS = {
    "note-chat": SessionToolPolicy.note_chat,
    "agent": SessionToolPolicy.agent_session,
}


def _policy(preset: str) -> SessionToolPolicy:
    factory = PRESETS.get(preset)
    if factory is None:
        raise typer.BadParameter(f"Unknown preset {preset!r}, expected one of: {', '.join(PRESETS)}")
    return factory()


class ConsoleObserver(AgentObserver):
    def on_chunk(self, chunk: str) -> None:
        typer.echo(chunk, nl=False)

    def on_tool_start(self, call: ToolCall) -> None:
        typer.secho(f"-> {call.name} {dict(call.arguments)}", fg=typer.colors.CYAN, err=True)

    def on_tool_result(self, call: ToolCall, result: ToolResult) -> None:
        if result.success:
            typer.secho(f"   {call.name}: ok", fg=typer.colors.GREEN, err=True)
        else:
            typer.secho(f"   {call.name}: {result.error}", fg=typer.colors.RED, err=True)

    def on_warning(self, message: str) -> None:
        typer.secho(message, fg=typer.colors.YELLOW, err=True)


def _print_turn(result: TurnResult, streamed: bool) -> None:
    if result.error:
        typer.secho(f"Error: {result.error}", fg=typer.colors.RED, err=True)
        return
    if streamed:
        typer.echo("")
    elif result.text:
        typer.echo(result.text)


HELP = (
    "Commands: /context add PATH, /context remove PATH, /context, "
    "/promote, /reset, /exit"
)


def _open_session(
    agent: Agent,
    preset: str,
    title: str | None,
    context: list[str],
    note: str | None,
    resume: str | None,
) -> ChatSession:
    if resume:
        session = agent.sessions.load_session(resume)
        if session is None:
            raise typer.BadParameter(f"Could not load session from {resume}")
        return session
    if note:
        return agent.sessions.get_note_chat_session(note)
    return agent.sessions.create_agent_session(title, context_files=context, policy=_policy(preset))


def _handle_command(agent: Agent, session: ChatSession, command: str) -> ChatSession:
    name, _, argument = command.partition(" ")
    if name == "/reset":
        session.reset()
        agent.engine.clear_history(session.id)
        typer.echo("Session cleared.")
    elif name == "/context":
        action, _, path = argument.strip().partition(" ")
        if action == "add" and path:
            agent.sessions.add_context_files(session.id, [path])
        elif action == "remove" and path:
            agent.sessions.remove_context_files(session.id, [path])
        elif action:
            typer.echo(HELP)
            return session
        typer.echo("Context: " + (", ".join(session.context_files) or "(none)"))
    elif name == "/promote":
        try:
            session = agent.sessions.promote_to_agent_session(session.id)
        except SessionNotFoundError as exc:
            typer.secho(str(exc), fg=typer.colors.RED, err=True)
            return session
        typer.echo(f"Continuing as agent session {session.title!r}.")
    else:
        typer.echo(HELP)
    return session


async def _chat_loop(
    vault: Path,
    preset: str,
    stream: bool,
    web: bool,
    title: str | None = None,
    context: list[str] | None = None,
    note: str | None = None,
    resume: str | None = None,
) -> None:
    agent = create_agent(
        ConsoleConfirmationPort(),
        LocalVaultStorage(vault),
        settings=settings,
        observer=ConsoleObserver(),
        enable_web=web,
    )
    session = _open_session(agent, preset, title, context or [], note, resume)
    typer.echo(f"{session.type.value} {session.title!r} on {vault}. Type /exit to quit.")

    while True:
        message = await asyncio.to_thread(typer.prompt, "you", default="", show_default=False)
        command = message.strip()
        if command in {"/exit", "/quit"}:
            return
        if command.startswith("/"):
            session = _handle_command(agent, session, command)
            continue
        if not command:
            continue

        result = await agent.orchestrator.send_message(session, message, stream=stream)
        _print_turn(result, streamed=stream)


@app.command("chat")
def chat_command(
    vault: Path = typer.Option(settings.vault_path, exists=True, file_okay=False, dir_okay=True),
    preset: str = typer.Option("agent", help="Tool policy preset: note-chat or agent"),
    stream: bool = typer.Option(False, help="Print the answer as it streams"),
    web: bool = typer.Option(True, help="Register the web_search and web_fetch tools"),
    title: str = typer.Option(None, help="Title of a new agent session"),
    context: list[str] = typer.Option([], help="Vault note to add as context; repeatable"),
    note: str = typer.Option(None, help="Chat about one note (read-only tools)"),
    resume: str = typer.Option(None, help="Vault path of a saved session to continue"),
) -> None:
    setup_logging(settings.log_level, settings.log_format)
    try:
        asyncio.run(_chat_loop(vault, preset, stream, web, title, context, note, resume))
    except (KeyboardInterrupt, EOFError):
        typer.echo("")


@app.command("sessions")
def sessions_command(
    vault: Path = typer.Option(settings.vault_path, exists=True, file_okay=False, dir_okay=True),
    limit: int = typer.Option(10, min=1, help="How many sessions to list"),
) -> None:
    """List the most recently used agent sessions."""
    manager = SessionManager(LocalVaultStorage(vault), settings=settings)
    sessions = manager.recent_agent_sessions(limit)
    if not sessions:
        typer.echo("No saved agent sessions")
        return
    for session in sessions:
        typer.echo(f"{session.history_path}  {session.title} ({len(session.history)} messages)")


@app.command("tools")
def tools_command(
    vault: Path = typer.Option(settings.vault_path, exists=True, file_okay=False, dir_okay=True),
    preset: str = typer.Option("agent", help="Tool policy preset: note-chat or agent"),
) -> None:
    policy = _policy(preset)
    storage = LocalVaultStorage(vault)
    registry = build_registry(
        storage, AgentsMemory(storage, settings.memory_file), UrllibFetcher()
    )
    tools = registry.list_enabled(policy)
    if not tools:
        typer.echo("No tools enabled for this preset")
        return
    for tool in tools:
        marker = " (confirm)" if registry.requires_confirmation(tool.name, policy) else ""
        typer.echo(f"{tool.name} [{tool.category.value}]{marker}")


if __name__ == "__main__":
    app()
