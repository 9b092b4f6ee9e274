"""Side-effect triggers evaluated after each reconciled event.

Triggers are evaluated independently; any number may fire for one event.
Callbacks may be sync or async. Async callbacks run in the background
and never block stream processing; failures are logged and swallowed so
a broken collaborator cannot corrupt the conversation.
"""

import logging
from collections.abc import Callable
from typing import Any

from sessionstream.models.events import StreamEvent
from sessionstream.models.session import Session, SessionStatus
from sessionstream.services.background import BackgroundTasks

logger = logging.getLogger(__name__)

TITLE_MIN_HISTORY = 3
ADVANCE_INTENT = "advance"
DONE_INTENT = "done"
CODE_MODE = "code"

TitleCallback = Callable[[str, int, bool], Any]
SessionCallback = Callable[[Session], Any]
AdvanceCallback = Callable[[Session, StreamEvent], Any]
ModeSwitchCallback = Callable[[str, str], Any]


class TriggerDispatcher:
    """Fires title, generation-readiness and stage-advance triggers.

    Attributes:
        on_title: Called with (session_id, conversation_length,
            has_existing_title) once history reaches the threshold and
            the session is untitled. Repeats are the callee's concern.
        on_ready_to_generate: Receives the whole session when the backend
            signals ``readyToGenerate`` / ``ready_for_design``.
        on_stage_advance: Informational; receives (session, event) when
            ``intent == "advance"``.
        on_request_mode_switch: Receives (session_id, mode) when the
            session should switch to code mode.
    """

    def __init__(
        self,
        tasks: BackgroundTasks | None = None,
        *,
        on_title: TitleCallback | None = None,
        on_ready_to_generate: SessionCallback | None = None,
        on_stage_advance: AdvanceCallback | None = None,
        on_request_mode_switch: ModeSwitchCallback | None = None,
    ) -> None:
        self._tasks = tasks or BackgroundTasks()
        self.on_title = on_title
        self.on_ready_to_generate = on_ready_to_generate
        self.on_stage_advance = on_stage_advance
        self.on_request_mode_switch = on_request_mode_switch

    def dispatch(self, session: Session, event: StreamEvent) -> list[str]:
        """Evaluate every trigger against the freshly merged state.

        Args:
            session: Session after the event was merged.
            event: The event that was merged.

        Returns:
            Names of the triggers that fired, in evaluation order.
        """
        fired: list[str] = []
        history_length = len(session.conversation_history)

        if history_length >= TITLE_MIN_HISTORY and not session.title:
            logger.info("Title trigger for session %s (%d messages)", session.id, history_length)
            self._invoke("title", self.on_title, session.id, history_length, bool(session.title))
            fired.append("title")

        if event.ready_to_generate:
            logger.info("Generation-readiness trigger for session %s", session.id)
            self._invoke("ready_to_generate", self.on_ready_to_generate, session)
            self._invoke("mode_switch", self.on_request_mode_switch, session.id, CODE_MODE)
            fired.append("ready_to_generate")

        if event.force_advance:
            logger.info("Forced stage advance for session %s (turn %s)", session.id, event.final_turn)
            session.metadata.turn_count = event.final_turn

        if event.collection_progress is not None:
            session.metadata.progress.collection_progress = event.collection_progress

        if event.intent == DONE_INTENT and event.is_done:
            logger.info("Session %s completed", session.id)
            session.status = SessionStatus.COMPLETED
            fired.append("completed")
        elif event.intent == ADVANCE_INTENT:
            logger.info("Stage advance signalled for session %s", session.id)
            self._invoke("stage_advance", self.on_stage_advance, session, event)
            fired.append("stage_advance")

        return fired

    def _invoke(self, name: str, callback: Callable[..., Any] | None, *args: Any) -> None:
        if callback is None:
            return
        try:
            self._tasks.spawn(callback(*args), name=f"trigger:{name}")
        except Exception as e:
            logger.error("Trigger %s failed: %s", name, e)
