"""
CLI interface for Session Chat.

This module provides the main CLI application using Typer, with support for:
- Listing active and archived sessions
- Sending messages into new or existing sessions
- Renaming, archiving and deleting sessions
- Rich output formatting
"""

import asyncio
import functools
from collections.abc import Awaitable, Callable
from typing import TypeVar

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from session_chat.config.settings import get_settings
from session_chat.core.errors import SessionChatError
from session_chat.core.models import (
    ChatMessage,
    ChatSession,
    MessageRole,
    SessionMode,
    TurnStatus,
)
from session_chat.orchestration import ConversationOrchestrator, build_orchestrator
from session_chat.utils.log_config import setup_logging

T = TypeVar("T")

# Initialize CLI components
app = typer.Typer(
    name="session-chat",
    help="Chat sessions with automatic mode routing",
    no_args_is_help=True,
)
console = Console()

OwnerOption = typer.Option(
    ..., "--owner", "-o", envvar="SESSION_CHAT_OWNER", help="Owner id the command acts for"
)


class CLIError(Exception):
    """User-friendly CLI error."""

    def __init__(self, message: str, exit_code: int = 1):
        self.message = message
        self.exit_code = exit_code
        super().__init__(message)


def run_async(coro):
    """Run async coroutine in sync context."""
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        # No running loop, use asyncio.run
        return asyncio.run(coro)

    # Already in an async context, run on a fresh loop in a worker thread
    import concurrent.futures

    with concurrent.futures.ThreadPoolExecutor() as executor:
        future = executor.submit(asyncio.run, coro)
        return future.result()


def handle_cli_error(func):
    """Decorator to handle CLI errors gracefully."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except (CLIError, SessionChatError) as e:
            console.print(f"[red]Error:[/red] {escape(e.message)}")
            raise typer.Exit(getattr(e, "exit_code", 1)) from None
        except KeyboardInterrupt:
            console.print("\n[yellow]Operation cancelled by user[/yellow]")
            raise typer.Exit(130) from None
        except Exception as e:
            console.print(f"[red]Unexpected error:[/red] {escape(str(e))}")
            console.print("[dim]Use --help for usage information[/dim]")
            raise typer.Exit(1) from e

    return wrapper


async def with_orchestrator(action: Callable[[ConversationOrchestrator], Awaitable[T]]) -> T:
    """Build an orchestrator, run one action against it and close it."""
    orchestrator = build_orchestrator()
    try:
        return await action(orchestrator)
    finally:
        await orchestrator.close()


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Chat sessions with automatic mode routing."""
    setup_logging("DEBUG" if verbose else get_settings().log_level)


@app.command("sessions")
@handle_cli_error
def sessions_command(
    owner: str = OwnerOption,
    archived: bool = typer.Option(False, "--archived", "-a", help="List archived sessions"),
):
    """List your sessions, newest first."""
    sessions = run_async(
        with_orchestrator(lambda o: o.list_sessions(owner, archived=archived))
    )

    if not sessions:
        label = "archived" if archived else "active"
        console.print(f"[dim]No {label} sessions[/dim]")
        return

    display_sessions(sessions, archived=archived)


@app.command("show")
@handle_cli_error
def show_command(
    session_id: str = typer.Argument(..., help="Session to display"),
    owner: str = OwnerOption,
):
    """Show the transcript of a session."""
    messages = run_async(with_orchestrator(lambda o: o.select_session(owner, session_id)))

    if not messages:
        console.print("[dim]No messages yet[/dim]")
        return

    for message in messages:
        display_message(message)


@app.command("send")
@handle_cli_error
def send_command(
    text: str = typer.Argument(..., help="Message to send"),
    owner: str = OwnerOption,
    session_id: str | None = typer.Option(
        None, "--session", "-s", help="Session to continue (starts a new one if omitted)"
    ),
):
    """Send a message and print the reply."""
    result = run_async(
        with_orchestrator(lambda o: o.submit_message(owner, session_id, text))
    )

    if result.status is TurnStatus.REJECTED:
        return

    if result.session_created:
        console.print(f"[dim]Started session {result.session.id}[/dim]")
    if result.mode_changed:
        console.print(f"[cyan]Session switched to {result.session.mode.value} mode[/cyan]")

    if result.user_message is not None:
        display_message(result.user_message)

    if result.status is TurnStatus.PARTIAL_FAILURE:
        console.print(
            f"[yellow]Warning:[/yellow] No reply was generated ({escape(result.error or '')}). "
            "Your message was saved."
        )
        return

    display_message(result.assistant_message)


@app.command("rename")
@handle_cli_error
def rename_command(
    session_id: str = typer.Argument(..., help="Session to rename"),
    title: str = typer.Argument(..., help="New title (empty for untitled)"),
    owner: str = OwnerOption,
):
    """Rename a session."""
    session = run_async(
        with_orchestrator(lambda o: o.rename_session(owner, session_id, title))
    )
    console.print(f"[green]Renamed[/green] {session.id} to '{escape(session.display_title)}'")


@app.command("archive")
@handle_cli_error
def archive_command(
    session_id: str = typer.Argument(..., help="Session to archive"),
    owner: str = OwnerOption,
):
    """Move a session to the archived list."""
    run_async(with_orchestrator(lambda o: o.archive_session(owner, session_id)))
    console.print(f"[green]Archived[/green] {escape(session_id)}")


@app.command("unarchive")
@handle_cli_error
def unarchive_command(
    session_id: str = typer.Argument(..., help="Session to restore"),
    owner: str = OwnerOption,
):
    """Move a session back to the active list."""
    run_async(with_orchestrator(lambda o: o.unarchive_session(owner, session_id)))
    console.print(f"[green]Unarchived[/green] {escape(session_id)}")


@app.command("delete")
@handle_cli_error
def delete_command(
    session_id: str = typer.Argument(..., help="Session to delete"),
    owner: str = OwnerOption,
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt"),
):
    """Permanently delete a session and its messages."""
    if not yes and not typer.confirm(f"Delete session {session_id} and all its messages?"):
        console.print("[dim]Cancelled[/dim]")
        return

    run_async(with_orchestrator(lambda o: o.delete_session(owner, session_id)))
    console.print(f"[green]Deleted[/green] {escape(session_id)}")


def display_sessions(sessions: list[ChatSession], archived: bool = False):
    """Display sessions as a table."""
    table = Table(
        title="Archived Sessions" if archived else "Sessions",
        show_header=True,
        header_style="bold magenta",
    )
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("Title", style="cyan")
    table.add_column("Mode", style="yellow", justify="center")
    table.add_column("Created", style="green", justify="right")

    for session in sessions:
        table.add_row(
            session.id,
            Text(session.display_title),
            session.mode.value,
            session.created_at.strftime("%Y-%m-%d %H:%M"),
        )

    console.print(table)


def display_message(message: ChatMessage):
    """Display a single transcript message."""
    if message.role is MessageRole.USER:
        console.print(f"[bold blue]You:[/bold blue] {escape(message.content)}")
        return

    console.print(
        Panel(
            Text(message.content),
            title="Assistant",
            subtitle=f"[dim]{escape(message.model)}[/dim]" if message.model else None,
            border_style="magenta" if message.mode is SessionMode.SPECIALIZED else "green",
        )
    )


# Entry point is handled by pyproject.toml script configuration
