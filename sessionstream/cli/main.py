"""sessionstream CLI.

Usage:
    sessionstream chat                 Start an interactive chat
    sessionstream replay stream.txt    Reconcile a captured stream offline
    sessionstream sessions list        List stored sessions
    sessionstream config show          Show resolved configuration
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console

from sessionstream import __version__
from sessionstream.cli.output import format_config, format_history, format_sessions_table
from sessionstream.cli.repl import agent_policy, build_chat_system, run_repl
from sessionstream.client.http_client import ChatBackendClient
from sessionstream.config import LoggingConfig, SessionStreamConfig, resolve_config
from sessionstream.errors import SessionStreamError
from sessionstream.services.replay import replay_transcript

_log = logging.getLogger(__name__)

app = typer.Typer(
    name="sessionstream",
    help="Streaming conversation client for agent chat backends",
    no_args_is_help=True,
)
sessions_app = typer.Typer(help="Manage stored sessions")
config_app = typer.Typer(help="Configuration management")

app.add_typer(sessions_app, name="sessions")
app.add_typer(config_app, name="config")

console = Console()

# --- Global state ---
_config_path: str | None = None
_verbose: bool = False


class JsonLogFormatter(logging.Formatter):
    """One JSON object per log line."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "time": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def setup_logging(cfg: LoggingConfig, verbose: bool = False) -> None:
    """Configure root logging from the logging config section."""
    level = logging.DEBUG if verbose else getattr(logging, cfg.level.upper(), logging.INFO)
    handler: logging.Handler
    if cfg.file:
        handler = logging.FileHandler(Path(cfg.file).expanduser())
    else:
        handler = logging.StreamHandler()
    if cfg.format == "json":
        handler.setFormatter(JsonLogFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(levelname)s:%(name)s:%(message)s"))
    logging.basicConfig(level=level, handlers=[handler], force=True)


def _load() -> SessionStreamConfig:
    try:
        cfg = resolve_config(_config_path)
    except FileNotFoundError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    setup_logging(cfg.logging, _verbose)
    _log.debug("Config resolved from %s", _config_path or "default locations")
    return cfg


@app.callback()
def main(
    config: Optional[str] = typer.Option(
        None, "--config", help="Path to sessionstream.yaml config file"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """sessionstream: streaming conversation client."""
    global _config_path, _verbose
    _config_path = config
    _verbose = verbose


@app.command()
def version():
    """Show sessionstream version."""
    console.print(f"[bold]sessionstream[/bold] v{__version__}")


@app.command()
def chat(
    session: Optional[str] = typer.Option(None, "--session", help="Resume a stored session"),
    force_agent: Optional[str] = typer.Option(
        None, "--force-agent", help="Route every message to this agent"
    ),
):
    """Start an interactive chat session."""
    cfg = _load()
    try:
        asyncio.run(run_repl(cfg, session_id=session, force_agent=force_agent))
    except SessionStreamError as e:
        console.print(f"[red]Error [{e.code}]: {e}[/red]")
        raise typer.Exit(1)


@app.command()
def replay(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Captured stream body"),
    chunk_size: int = typer.Option(
        0, "--chunk-size", help="Re-chunk the stream at N bytes (0 = whole file)"
    ),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Reconcile a captured SSE stream offline and print the history."""
    cfg = _load()
    report = asyncio.run(
        replay_transcript(file.read_bytes(), chunk_size, agents=agent_policy(cfg))
    )
    typer.echo(format_history(report.session, as_json=json_output), nl=False)
    if not json_output:
        console.print(
            f"[dim]{report.frames} frames, {report.events} events, "
            f"{report.skipped} skipped[/dim]"
        )


@sessions_app.command("list")
def sessions_list(
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """List sessions stored on the backend."""
    cfg = _load()

    async def _run():
        async with ChatBackendClient(cfg.backend) as client:
            chat_system = build_chat_system(cfg, client)
            return await chat_system.load_sessions()

    sessions = asyncio.run(_run())
    typer.echo(format_sessions_table(sessions, as_json=json_output), nl=False)


@config_app.command("show")
def config_show(
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Display resolved configuration (secrets masked)."""
    cfg = _load()
    typer.echo(format_config(cfg, as_json=json_output), nl=False)
