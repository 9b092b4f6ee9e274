"""Chat system facade: session lifecycle and the send pipeline.

``ChatSystem`` owns the in-memory session store and wires the engine
together for each send:

    dedup claim -> user message -> retry loop
        [transport chunks -> frames -> events -> reconciler -> triggers]
    -> apology on exhaustion / empty-turn notice / end-of-turn sync

Each session gets its own reconciler, so concurrent sends to different
sessions never share an active streaming message.
"""

import asyncio
import logging
import secrets
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Any, Protocol

from pydantic import ValidationError

from sessionstream.errors import (
    ERROR_REGISTRY,
    SessionNotFoundError,
    TransportError,
    format_error_message,
)
from sessionstream.models.session import (
    Message,
    MessageMetadata,
    MessageType,
    Session,
    SessionStatus,
    generate_message_id,
    utc_now,
)
from sessionstream.services.agent_history import migrate_history, mirror_message
from sessionstream.services.background import BackgroundTasks
from sessionstream.services.dedup import InFlightGuard
from sessionstream.services.reconciler import (
    DEFAULT_AGENT_POLICY,
    AgentPolicy,
    MergeOutcome,
    MessageReconciler,
)
from sessionstream.services.retry import RetryController, RetryOutcome, RetryPolicy
from sessionstream.services.session_sync import SessionSynchronizer
from sessionstream.services.title_generation import HttpTitleGenerator
from sessionstream.services.triggers import (
    AdvanceCallback,
    ModeSwitchCallback,
    SessionCallback,
    TitleCallback,
    TriggerDispatcher,
)
from sessionstream.stream.frames import iter_frames
from sessionstream.stream.normalizer import ChunkNormalizer
from sessionstream.utils.redaction import preview_text

logger = logging.getLogger(__name__)

PROCESSING_NOTICE = "Your request is being processed, please wait..."
SESSION_RECOVERED = "session_recovered"
REGENERATE = "regenerate"
REGENERATE_DELAY_SECONDS = 0.1
SHARE_LINK_DAYS = 7
SHARE_DESCRIPTION = "Shared sessionstream conversation"


class ChatBackend(Protocol):
    """Backend operations the chat system depends on."""

    async def create_session(self) -> str: ...

    async def list_sessions(self) -> list[dict[str, Any]]: ...

    async def sync_session(self, session_id: str, session_data: dict[str, Any]) -> None: ...

    async def generate_title(
        self, conversation_id: str, message_count: int, max_length: int = 20
    ) -> str | None: ...

    def stream_message(
        self,
        session_id: str,
        message: str,
        *,
        force_agent: str | None = None,
        test_mode: Any = None,
        context: Any = None,
    ) -> AsyncIterator[bytes]: ...

    def stream_interaction(self, session_id: str, data: dict[str, Any]) -> AsyncIterator[bytes]: ...

    async def share_session(self, share_request: dict[str, Any]) -> dict[str, Any]: ...


class SendStatus(str, Enum):
    SENT = "sent"
    DUPLICATE = "duplicate"
    FAILED = "failed"
    RECOVERED = "recovered"


@dataclass
class SendResult:
    """Outcome of ``ChatSystem.send_message``.

    Attributes:
        status: What happened to the send.
        session_id: Session the send targeted.
        attempts: Network attempts made (0 for duplicates and recoveries).
        error: Last error text when the send failed.
    """

    status: SendStatus
    session_id: str
    attempts: int = 0
    error: str | None = None


def uses_interaction_route(options: dict[str, Any] | None) -> bool:
    """Options without force_agent/test_mode go to the interaction endpoint."""
    return bool(options) and not options.get("force_agent") and not options.get("test_mode")


def local_session_id() -> str:
    """Session id used when the backend cannot create one."""
    return f"session-{int(time.time() * 1000)}-{secrets.token_hex(4)}"


class ChatSystem:
    """Session store plus the streaming send pipeline.

    Args:
        backend: Transport collaborator (usually ChatBackendClient).
        agents: Known agent identities for merge defaults.
        retry_policy: Retry budget for a logical send.
        sleep: Coroutine used for backoff delays; patched in tests.
        normalizer: Frame normalizer; defaults to all five payload shapes.
        title_generator: Title trigger callback. Defaults to an
            HttpTitleGenerator that writes titles back via
            ``update_session_title``.
        on_ready_to_generate: Receives the session when the backend
            signals it is ready to generate.
        on_stage_advance: Receives (session, event) on stage advance.
        on_request_mode_switch: Receives (session_id, mode) when the
            session should switch modes.
        on_message_update: Receives (session, outcome) after every merged
            event; used by interactive front ends to render live text.
    """

    def __init__(
        self,
        backend: ChatBackend,
        *,
        agents: AgentPolicy = DEFAULT_AGENT_POLICY,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        normalizer: ChunkNormalizer | None = None,
        title_generator: TitleCallback | None = None,
        on_ready_to_generate: SessionCallback | None = None,
        on_stage_advance: AdvanceCallback | None = None,
        on_request_mode_switch: ModeSwitchCallback | None = None,
        on_message_update: Callable[[Session, MergeOutcome], Any] | None = None,
    ) -> None:
        self._backend = backend
        self._agents = agents
        self._sleep = sleep
        self._normalizer = normalizer or ChunkNormalizer()
        self._retry = RetryController(retry_policy, sleep=sleep, retry_on=(TransportError,))
        self._guard = InFlightGuard()
        self._session_lock = asyncio.Lock()
        self.tasks = BackgroundTasks()
        self.synchronizer = SessionSynchronizer(backend, self.tasks)
        if title_generator is None:
            title_generator = HttpTitleGenerator(
                backend, on_title_generated=self.update_session_title
            )
        self.dispatcher = TriggerDispatcher(
            self.tasks,
            on_title=title_generator,
            on_ready_to_generate=on_ready_to_generate,
            on_stage_advance=on_stage_advance,
            on_request_mode_switch=on_request_mode_switch,
        )
        self.sessions: dict[str, Session] = {}
        self.current_session_id: str | None = None
        self.current_error: str | None = None
        self._reconcilers: dict[str, MessageReconciler] = {}
        self.on_message_update = on_message_update

    @property
    def current_session(self) -> Session | None:
        if self.current_session_id is None:
            return None
        return self.sessions.get(self.current_session_id)

    def get_session(self, session_id: str) -> Session:
        """Return a known session.

        Raises:
            SessionNotFoundError: If the id is not in the local store.
        """
        session = self.sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def reconciler_for(self, session: Session) -> MessageReconciler:
        reconciler = self._reconcilers.get(session.id)
        if reconciler is None or reconciler.session is not session:
            reconciler = MessageReconciler(
                session,
                agents=self._agents,
                dispatcher=self.dispatcher,
                synchronizer=self.synchronizer,
            )
            self._reconcilers[session.id] = reconciler
        return reconciler

    # --- Session lifecycle ---

    async def create_session(self) -> Session:
        """Create a session on the backend and make it current.

        Falls back to a locally generated id when the backend is
        unreachable, so the user can keep working.
        """
        try:
            session_id = await self._backend.create_session()
        except Exception as e:
            session_id = local_session_id()
            self.current_error = str(e)
            logger.warning("Backend session creation failed, using local id %s: %s", session_id, e)

        existing = self.sessions.get(session_id)
        if existing is not None:
            logger.info("Session %s already known, reusing it", session_id)
            self.current_session_id = session_id
            return existing

        session = Session.new(session_id)
        self.sessions[session_id] = session
        self.current_session_id = session_id
        self.synchronizer.schedule(session, reason="created")
        logger.info("Created session %s", session_id)
        return session

    async def load_sessions(self) -> list[Session]:
        """Restore stored sessions from the backend.

        Sessions already held locally are kept as they are. When no
        session is selected, the most recently active one becomes
        current. Backend failures are logged and yield an empty list.
        """
        try:
            raw_sessions = await self._backend.list_sessions()
        except Exception as e:
            logger.warning("Could not load sessions: %s", e)
            return []

        loaded: list[Session] = []
        for data in raw_sessions:
            try:
                session = Session.from_snapshot(data)
            except ValidationError as e:
                logger.warning("Skipping unreadable session %s: %s", data.get("id"), e)
                continue
            loaded.append(self.sessions.setdefault(session.id, session))

        logger.info("Loaded %d sessions", len(loaded))
        if self.current_session is None and loaded:
            latest = max(loaded, key=lambda s: s.metadata.last_active)
            self.select_session(latest.id)
        return loaded

    def select_session(self, session_id: str) -> Session:
        """Make a session current, migrating legacy history if needed."""
        session = self.get_session(session_id)
        migrate_history(session)
        self.current_session_id = session_id
        self.current_error = None
        return session

    def delete_session(self, session_id: str) -> bool:
        """Forget a session locally. Returns False if it was unknown."""
        session = self.sessions.pop(session_id, None)
        self._reconcilers.pop(session_id, None)
        if session is None:
            return False
        if self.current_session_id == session_id:
            self.current_session_id = None
            self.current_error = None
        logger.info("Deleted session %s", session_id)
        return True

    def clear_chat(self) -> None:
        """Deselect the current session; the next send starts a new one."""
        self.current_session_id = None
        self.current_error = None

    def update_session_title(self, session_id: str, title: str) -> bool:
        session = self.sessions.get(session_id)
        if session is None:
            logger.debug("Title for unknown session %s ignored", session_id)
            return False
        session.title = title
        session.title_generated_at = utc_now()
        return True

    async def share_session(self, session_id: str) -> dict[str, Any]:
        """Publish a session as a link that expires after a week.

        Returns:
            The backend's share result, e.g. ``{"shareUrl": ...}``.

        Raises:
            SessionNotFoundError: If the id is not in the local store.
            TransportError: If the backend rejects the request.
        """
        session = self.get_session(session_id)
        title = session.title or f"Session {session_id[-6:]}"
        history = session.snapshot()["conversationHistory"]
        expires_at = utc_now() + timedelta(days=SHARE_LINK_DAYS)
        result = await self._backend.share_session({
            "type": "link",
            "config": {
                "title": title,
                "description": SHARE_DESCRIPTION,
                "expiresAt": expires_at.isoformat(),
                "allowedViewers": [],
                "analytics": True,
            },
            "pageId": session_id,
            "pageTitle": title,
            "pageContent": history,
            "conversationHistory": history,
        })
        logger.info("Shared session %s: %s", session_id, result.get("shareUrl"))
        return result

    async def retry_current_operation(self) -> SendResult | None:
        """Re-send the last user message after a failed send."""
        session = self.current_session
        if session is None or self.current_error is None:
            return None
        user_messages = [m for m in session.conversation_history if m.agent == "user"]
        if not user_messages:
            return None
        self.current_error = None
        return await self.send_message(user_messages[-1].content)

    async def drain(self) -> None:
        """Wait for background syncs and trigger callbacks."""
        await self.tasks.drain()

    async def aclose(self) -> None:
        await self.tasks.cancel_all()

    # --- Sending ---

    async def send_message(
        self, content: str, options: dict[str, Any] | None = None
    ) -> SendResult:
        """Send a user message and reconcile the streamed reply.

        Duplicate concurrent calls with the same (session, content,
        options) are no-ops, including a double submit on a fresh chat.
        Transport failures are retried; any other failure ends the send
        at once. A failed send appends an apology message instead of
        raising.

        Args:
            content: User message text.
            options: Send options: ``force_agent``, ``test_mode`` and
                ``context`` for the chat route, anything else (e.g. a
                selected form option) for the interaction route, or
                ``type: session_recovered`` to rename the session.

        Returns:
            SendResult describing the outcome.
        """
        async with self._session_lock:
            session = self.current_session
            if session is None or session.status == SessionStatus.ABANDONED:
                session = await self.create_session()

        with self._guard.claim(session.id, content, options) as admitted:
            if not admitted:
                return SendResult(status=SendStatus.DUPLICATE, session_id=session.id)
            self.current_error = None
            if options and options.get("type") == SESSION_RECOVERED:
                return self._recover_session(session, options)
            return await self._send(session, content, options)

    async def _send(
        self, session: Session, content: str, options: dict[str, Any] | None
    ) -> SendResult:
        user_message = Message(
            id=generate_message_id("user"),
            type=MessageType.USER_MESSAGE,
            agent="user",
            content=content,
            metadata=MessageMetadata(option=options),
        )
        session.conversation_history.append(user_message)
        session.metadata.metrics.user_interactions += 1
        session.touch()
        mirror_message(session, user_message)
        logger.info("Sending to session %s: %s", session.id, preview_text(content))

        reconciler = self.reconciler_for(session)
        streamed = False

        async def attempt() -> None:
            nonlocal streamed
            streamed = await self._run_turn(session, reconciler, content, options)

        def on_error(error: Exception, attempt_number: int) -> None:
            session.metadata.metrics.errors_encountered += 1
            self.current_error = str(error)

        outcome = await self._retry.run(
            attempt, on_error=on_error, label=f"send to session {session.id}"
        )
        if not outcome.succeeded:
            self._append_apology(session, outcome)
            return SendResult(
                status=SendStatus.FAILED,
                session_id=session.id,
                attempts=outcome.attempts,
                error=str(outcome.last_error),
            )

        self.current_error = None
        if streamed and not reconciler.message_received:
            self._append_system_event(session, PROCESSING_NOTICE)
        if not reconciler.saw_done:
            self.synchronizer.schedule(session, reason="turn_end")
        return SendResult(status=SendStatus.SENT, session_id=session.id, attempts=outcome.attempts)

    async def _run_turn(
        self,
        session: Session,
        reconciler: MessageReconciler,
        content: str,
        options: dict[str, Any] | None,
    ) -> bool:
        """One network attempt. Returns True if a reply body was streamed."""
        reconciler.begin_turn()
        chunk_count = 0

        async def counted(chunks: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
            nonlocal chunk_count
            async for chunk in chunks:
                chunk_count += 1
                yield chunk

        interaction = uses_interaction_route(options)
        if interaction:
            chunks = self._backend.stream_interaction(session.id, {**options, "message": content})
        else:
            opts = options or {}
            chunks = self._backend.stream_message(
                session.id,
                content,
                force_agent=opts.get("force_agent"),
                test_mode=opts.get("test_mode"),
                context=opts.get("context"),
            )

        try:
            async for frame in iter_frames(counted(chunks)):
                event = self._normalizer.normalize(frame)
                if event is None:
                    continue
                outcome = reconciler.apply(event)
                self._notify_update(session, outcome)
        finally:
            reconciler.finish()
        # A JSON-acknowledged interaction has no reply body.
        return not interaction or chunk_count > 0

    def _recover_session(self, session: Session, options: dict[str, Any]) -> SendResult:
        new_id = options.get("new_session_id")
        if new_id and new_id != session.id:
            old_id = session.id
            self.sessions.pop(old_id, None)
            reconciler = self._reconcilers.pop(old_id, None)
            session.id = new_id
            self.sessions[new_id] = session
            if reconciler is not None:
                self._reconcilers[new_id] = reconciler
            if self.current_session_id == old_id:
                self.current_session_id = new_id
            logger.info("Session %s recovered as %s", old_id, new_id)

            if options.get("needs_regenerate"):
                self.tasks.spawn(
                    self._regenerate(options.get("message_id")),
                    name=f"regenerate:{new_id}",
                )
        return SendResult(status=SendStatus.RECOVERED, session_id=session.id)

    async def _regenerate(self, message_id: str | None) -> None:
        await self._sleep(REGENERATE_DELAY_SECONDS)
        await self.send_message("", {"type": REGENERATE, "message_id": message_id})

    def _append_apology(self, session: Session, outcome: RetryOutcome) -> None:
        error = outcome.last_error
        logger.error(
            format_error_message(
                "E-4001", session_id=session.id, attempts=outcome.attempts, reason=error
            )
        )
        self._append_system_event(
            session,
            ERROR_REGISTRY["E-4001"].user_message,
            error=str(error) if error else None,
            retry_count=outcome.attempts - 1,
        )

    def _append_system_event(
        self,
        session: Session,
        content: str,
        error: str | None = None,
        retry_count: int | None = None,
    ) -> Message:
        message = Message(
            id=generate_message_id("system"),
            type=MessageType.SYSTEM_EVENT,
            agent="system",
            content=content,
            metadata=MessageMetadata(error=error, retry_count=retry_count),
        )
        session.conversation_history.append(message)
        session.touch()
        mirror_message(session, message)
        return message

    def _notify_update(self, session: Session, outcome: MergeOutcome) -> None:
        if self.on_message_update is None:
            return
        try:
            self.on_message_update(session, outcome)
        except Exception as e:
            logger.warning("Message update listener failed: %s", e)
