"""CLI output formatters for Rich tables and JSON.

Provides human-readable Rich output (default) and machine-parseable
JSON output (--json flag). All formatting goes through these functions
so the CLI commands stay clean.
"""

import json

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from sessionstream.config import SessionStreamConfig
from sessionstream.models.session import Message, MessageType, Session
from sessionstream.utils.redaction import redact_for_logging

console = Console()

MESSAGE_COLORS = {
    MessageType.USER_MESSAGE: "green",
    MessageType.AGENT_RESPONSE: "cyan",
    MessageType.SYSTEM_EVENT: "yellow",
}

STATUS_COLORS = {
    "active": "blue",
    "completed": "green",
    "abandoned": "dim",
}


def _render(renderable) -> str:
    with console.capture() as capture:
        console.print(renderable)
    return capture.get()


def format_message(message: Message) -> str:
    """Format one message as a Rich panel."""
    color = MESSAGE_COLORS.get(message.type, "white")
    subtitle = message.type.value
    if message.metadata.streaming:
        subtitle += " (streaming)"
    return _render(
        Panel(
            Text(message.content) if message.content else Text("<empty>", style="dim"),
            title=f"[{color}]{message.agent}[/{color}]",
            subtitle=subtitle,
            border_style=color,
        )
    )


def format_history(session: Session, as_json: bool = False) -> str:
    """Format a session's conversation history.

    Args:
        session: Session to display.
        as_json: If True, return the session snapshot as JSON.

    Returns:
        Formatted string output.
    """
    if as_json:
        return json.dumps(session.snapshot(), indent=2)
    if not session.conversation_history:
        return "No messages."
    return "".join(format_message(m) for m in session.conversation_history)


def format_sessions_table(sessions: list[Session], as_json: bool = False) -> str:
    """Format stored sessions as a Rich table or JSON."""
    if as_json:
        return json.dumps(
            [
                {
                    "id": s.id,
                    "title": s.title,
                    "status": s.status.value,
                    "messages": len(s.conversation_history),
                    "lastActive": s.metadata.last_active.isoformat(),
                }
                for s in sessions
            ],
            indent=2,
        )

    if not sessions:
        return "No sessions found."

    table = Table(title="Sessions", show_lines=True)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Title", style="white")
    table.add_column("Status")
    table.add_column("Stage")
    table.add_column("Messages", justify="right")
    table.add_column("Last Active")

    for session in sessions:
        status = session.status.value
        color = STATUS_COLORS.get(status, "white")
        table.add_row(
            session.id,
            Text(session.title) if session.title else "-",
            f"[{color}]{status}[/{color}]",
            session.metadata.progress.current_stage,
            str(len(session.conversation_history)),
            session.metadata.last_active.isoformat()[:19],
        )
    return _render(table)


def format_config(cfg: SessionStreamConfig, as_json: bool = False) -> str:
    """Format the resolved config with secrets masked."""
    data = redact_for_logging(cfg.model_dump(mode="json"))
    if as_json:
        return json.dumps(data, indent=2)

    lines: list[str] = []
    for section, values in data.items():
        lines.append(f"[bold]{section}:[/bold]")
        for key, value in values.items():
            lines.append(f"  {key}: {value}")
    return _render(Panel("\n".join(lines), title="Configuration", border_style="cyan"))
