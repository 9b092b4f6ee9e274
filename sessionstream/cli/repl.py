"""Interactive conversational REPL against a chat backend.

Streams replies live in the terminal using Rich; the conversation is
reconciled by the same ChatSystem used by library consumers.
"""

from typing import Any

from rich.console import Console
from rich.live import Live
from rich.text import Text

from sessionstream.cli.output import format_message
from sessionstream.client.http_client import ChatBackendClient
from sessionstream.config import SessionStreamConfig
from sessionstream.models.session import Session
from sessionstream.services.chat_system import ChatSystem, SendStatus
from sessionstream.services.reconciler import AgentPolicy, MergeOutcome
from sessionstream.services.retry import RetryPolicy

console = Console()


def agent_policy(config: SessionStreamConfig) -> AgentPolicy:
    """Build the merge-default agent policy from configuration."""
    return AgentPolicy(
        code_generation_agents=frozenset(config.agents.code_generation_agents),
        conversational_agents=frozenset(config.agents.conversational_agents),
    )


def build_chat_system(config: SessionStreamConfig, backend: Any) -> ChatSystem:
    """Create a ChatSystem wired from configuration."""
    return ChatSystem(
        backend,
        agents=agent_policy(config),
        retry_policy=RetryPolicy(
            max_retries=config.retry.max_retries,
            base_delay=config.retry.base_delay_seconds,
        ),
        on_request_mode_switch=lambda session_id, mode: console.print(
            f"\n[magenta]Session {session_id} is ready for {mode} mode[/magenta]"
        ),
    )


async def run_repl(
    config: SessionStreamConfig,
    session_id: str | None = None,
    force_agent: str | None = None,
) -> None:
    """Run the interactive chat REPL.

    Args:
        config: Resolved configuration.
        session_id: Optional stored session to resume. Creates new if None.
        force_agent: Route every message to this agent.
    """
    async with ChatBackendClient(config.backend) as client:
        chat = build_chat_system(config, client)

        if session_id is not None:
            await chat.load_sessions()
            chat.select_session(session_id)
        else:
            await chat.create_session()
        console.print(f"[dim]Session: {chat.current_session_id}[/dim]")

        console.print()
        console.print("[bold]sessionstream[/bold] interactive chat")
        console.print("Type your message. Ctrl+D to exit.")
        console.print()

        options = {"force_agent": force_agent} if force_agent else None

        try:
            while True:
                try:
                    user_input = console.input("[bold green]> [/bold green]")
                except EOFError:
                    break

                if not user_input.strip():
                    continue

                session = chat.current_session
                seen = len(session.conversation_history) + 1 if session else 0
                with Live(Text(""), console=console, refresh_per_second=12, transient=True) as live:

                    def render(session: Session, outcome: MergeOutcome) -> None:
                        if outcome.message is not None and outcome.content_changed:
                            live.update(Text(outcome.message.content))

                    chat.on_message_update = render
                    try:
                        result = await chat.send_message(user_input, options)
                    except KeyboardInterrupt:
                        console.print("\n[yellow]Interrupted[/yellow]")
                        continue
                    finally:
                        chat.on_message_update = None

                session = chat.current_session
                if session is not None:
                    for message in session.conversation_history[seen:]:
                        console.file.write(format_message(message))
                if result.status == SendStatus.FAILED:
                    console.print(f"[red]Send failed after {result.attempts} attempts[/red]")
        finally:
            await chat.drain()

        console.print("\n[dim]Session ended.[/dim]")
