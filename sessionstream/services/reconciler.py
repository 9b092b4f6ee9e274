"""Message reconciliation: merge stream events into a session's history.

Per session the reconciler is either Idle (no active streaming message)
or Streaming (one message being built in place). Each event either
starts a message, updates the active one, or only carries control data.

Whether new text is appended to or replaces the active message's content
is decided per event, in this precedence:

1. Declared complete: ``content_mode == complete``, ``stream_type ==
   complete``, or ``stream_type == start`` without incremental mode
   -> replace.
2. Declared incremental: ``content_mode == incremental``, a
   code-generation agent, ``stream_type == delta``, or ``is_update``
   with ``mode == incremental`` -> append.
3. Agent default: conversational (welcome) agents replace, everyone
   else appends. Frames with neither a content mode nor a known agent
   are logged as ambiguous.

Side-channel snapshots (interaction form, file manifest, file progress,
tool calls) replace the stored value only when their serialization
differs. User messages are never modified.
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from sessionstream.models.events import ContentMode, StreamEvent, StreamType
from sessionstream.models.session import (
    Message,
    MessageMetadata,
    MessageType,
    Session,
    generate_message_id,
    utc_now,
)
from sessionstream.models.side_channel import SideChannelKind
from sessionstream.services.agent_history import mirror_message
from sessionstream.services.session_sync import SessionSynchronizer
from sessionstream.services.triggers import TriggerDispatcher
from sessionstream.utils.redaction import preview_text

logger = logging.getLogger(__name__)


class MergePolicy(str, Enum):
    """How new reply text combines with the existing content."""

    APPEND = "append"
    REPLACE = "replace"


class ReconcilerState(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"


@dataclass(frozen=True)
class AgentPolicy:
    """Known agent identities and their streaming disciplines."""

    code_generation_agents: frozenset[str] = frozenset({"CodingAgent"})
    conversational_agents: frozenset[str] = frozenset(
        {"ConversationalWelcomeAgent", "WelcomeAgent"}
    )

    def is_known(self, agent_name: str) -> bool:
        return agent_name in self.code_generation_agents or agent_name in self.conversational_agents


DEFAULT_AGENT_POLICY = AgentPolicy()


@dataclass(frozen=True)
class MergeDecision:
    """Chosen merge policy and the rule tier that chose it."""

    policy: MergePolicy
    rule: str
    ambiguous: bool = False


def choose_merge_policy(
    event: StreamEvent, agents: AgentPolicy = DEFAULT_AGENT_POLICY
) -> MergeDecision:
    """Decide append vs replace for an event updating an existing message.

    Args:
        event: The incoming event.
        agents: Known agent identities.

    Returns:
        MergeDecision with the policy and the rule that matched.
    """
    mode = event.content_mode
    stream_type = event.stream_type
    agent = event.agent_name

    if (
        mode == ContentMode.COMPLETE
        or stream_type == StreamType.COMPLETE
        or (stream_type == StreamType.START and mode != ContentMode.INCREMENTAL)
    ):
        return MergeDecision(MergePolicy.REPLACE, "declared_complete")

    if (
        mode == ContentMode.INCREMENTAL
        or agent in agents.code_generation_agents
        or stream_type == StreamType.DELTA
        or (event.is_update and event.update_mode == "incremental")
    ):
        return MergeDecision(MergePolicy.APPEND, "declared_incremental")

    ambiguous = mode == ContentMode.UNSPECIFIED and not agents.is_known(agent)
    if agent in agents.conversational_agents:
        return MergeDecision(MergePolicy.REPLACE, "agent_default", ambiguous)
    return MergeDecision(MergePolicy.APPEND, "agent_default", ambiguous)


_SNAPSHOT_FIELDS: dict[SideChannelKind, str] = {
    SideChannelKind.INTERACTION_FORM: "interaction",
    SideChannelKind.FILE_MANIFEST: "project_files",
    SideChannelKind.FILE_PROGRESS: "file_creation_progress",
    SideChannelKind.TOOL_CALLS: "tool_calls",
}


def _serialized(value: Any) -> str:
    return json.dumps(value, sort_keys=True, default=str)


def apply_side_channel(metadata: MessageMetadata, event: StreamEvent, created: bool) -> bool:
    """Merge an event's side-channel payloads into message metadata.

    Args:
        metadata: Metadata of the message being built.
        event: Event carrying the payloads.
        created: True when the message is being created by this event.

    Returns:
        True if any snapshot field changed.
    """
    changed = False
    for payload in event.side_channel:
        if payload.kind in _SNAPSHOT_FIELDS:
            attr = _SNAPSHOT_FIELDS[payload.kind]
            if _serialized(getattr(metadata, attr)) != _serialized(payload.value):
                setattr(metadata, attr, payload.value)
                changed = True
        elif payload.kind == SideChannelKind.DIAGNOSTIC:
            metadata.diagnostics[payload.key] = payload.value
        elif payload.kind == SideChannelKind.PASSTHROUGH:
            if created:
                metadata.passthrough[payload.key] = payload.value
        else:
            raise ValueError(f"Unhandled side-channel kind: {payload.kind}")
    return changed


@dataclass
class MergeOutcome:
    """What one event did to the session.

    Attributes:
        message: Message created or updated, None for control-only events.
        created: A new message was appended.
        content_changed: The message content changed.
        metadata_changed: A side-channel snapshot changed.
        closed: The active streaming message was closed.
        decision: Merge decision applied to the content, if any.
        triggers: Triggers fired by the dispatcher.
    """

    message: Message | None = None
    created: bool = False
    content_changed: bool = False
    metadata_changed: bool = False
    closed: bool = False
    decision: MergeDecision | None = None
    triggers: list[str] = field(default_factory=list)


class MessageReconciler:
    """Per-session state machine building the conversation from events.

    The reconciler is the only writer of agent message content. Its merge
    step is synchronous so events are applied strictly in arrival order.
    """

    def __init__(
        self,
        session: Session,
        *,
        agents: AgentPolicy = DEFAULT_AGENT_POLICY,
        dispatcher: TriggerDispatcher | None = None,
        synchronizer: SessionSynchronizer | None = None,
    ) -> None:
        self.session = session
        self._agents = agents
        self._dispatcher = dispatcher
        self._synchronizer = synchronizer
        self._active_id: str | None = None
        self._active_index = -1
        self._backend_message_id: str | None = None
        self._ambiguity_logged = False
        self.events_applied = 0
        self.message_received = False
        self.saw_done = False

    @property
    def state(self) -> ReconcilerState:
        return ReconcilerState.STREAMING if self.active_message is not None else ReconcilerState.IDLE

    @property
    def active_message(self) -> Message | None:
        """The message currently being streamed, if any."""
        if self._active_id is None:
            return None
        history = self.session.conversation_history
        if 0 <= self._active_index < len(history):
            message = history[self._active_index]
            if message.id == self._active_id and message.type != MessageType.USER_MESSAGE:
                return message
        return None

    def begin_turn(self) -> None:
        """Reset per-turn flags before a new response stream."""
        self.message_received = False
        self.saw_done = False

    def apply(self, event: StreamEvent) -> MergeOutcome:
        """Merge one event, then run triggers and the done checkpoint.

        Args:
            event: Normalized, displayable event.

        Returns:
            MergeOutcome describing the mutation.
        """
        self.events_applied += 1
        if event.is_plain_text:
            outcome = self._append_plain_text(event)
        else:
            outcome = self._merge(event)

        if event.is_done:
            outcome.closed = self._close_active() or outcome.closed
            self.saw_done = True
            logger.info(
                "Stream done for session %s after %d events", self.session.id, self.events_applied
            )

        self.session.touch()
        if self._dispatcher is not None:
            outcome.triggers = self._dispatcher.dispatch(self.session, event)
        if event.is_done and self._synchronizer is not None:
            self._synchronizer.schedule(self.session, reason="done")
        return outcome

    def finish(self) -> bool:
        """Close any message left streaming when the transport ends.

        Returns:
            True if a streaming message was closed.
        """
        return self._close_active()

    def _merge(self, event: StreamEvent) -> MergeOutcome:
        active = self.active_message
        if active is not None and self._starts_new_message(event):
            logger.debug(
                "Message id changed %s -> %s; closing active message",
                self._backend_message_id,
                event.message_id,
            )
            self._close_active()
            active = None

        if active is None:
            if not event.reply_text:
                return MergeOutcome()
            return self._create(event)
        return self._update(active, event)

    def _starts_new_message(self, event: StreamEvent) -> bool:
        return (
            event.message_id is not None
            and self._backend_message_id is not None
            and event.message_id != self._backend_message_id
        )

    def _create(self, event: StreamEvent) -> MergeOutcome:
        message_id = generate_message_id("agent")
        metadata = MessageMetadata(
            streaming=True,
            stream_message_id=event.message_id or message_id,
            update_count=1,
            last_update=utc_now(),
        )
        apply_side_channel(metadata, event, created=True)
        message = Message(
            id=message_id,
            type=MessageType.AGENT_RESPONSE,
            agent=event.agent_name,
            content=event.reply_text or "",
            metadata=metadata,
        )
        history = self.session.conversation_history
        history.append(message)
        self._active_id = message.id
        self._active_index = len(history) - 1
        self._backend_message_id = event.message_id
        self._ambiguity_logged = False
        self.message_received = True
        logger.debug(
            "Created streaming message %s (agent=%s, len=%d)",
            message.id,
            message.agent,
            len(message.content),
        )
        return MergeOutcome(message=message, created=True, content_changed=True)

    def _update(self, active: Message, event: StreamEvent) -> MergeOutcome:
        outcome = MergeOutcome(message=active)
        new_content = active.content
        if event.reply_text:
            decision = choose_merge_policy(event, self._agents)
            outcome.decision = decision
            if decision.ambiguous and not self._ambiguity_logged:
                self._ambiguity_logged = True
                logger.warning(
                    "Ambiguous streaming discipline for agent %r in session %s "
                    "(no content_mode); defaulting to %s",
                    event.agent_name,
                    self.session.id,
                    decision.policy.value,
                )
            if decision.policy == MergePolicy.APPEND:
                new_content = active.content + event.reply_text
            else:
                new_content = event.reply_text
            self.message_received = True

        outcome.content_changed = new_content != active.content
        outcome.metadata_changed = apply_side_channel(active.metadata, event, created=False)
        if outcome.content_changed or outcome.metadata_changed:
            now = utc_now()
            active.content = new_content
            active.timestamp = now
            active.metadata.last_update = now
            active.metadata.update_count += 1
            logger.debug(
                "Updated message %s (%s, len=%d): %s",
                active.id,
                outcome.decision.policy.value if outcome.decision else "metadata",
                len(new_content),
                preview_text(event.reply_text),
            )
        return outcome

    def _append_plain_text(self, event: StreamEvent) -> MergeOutcome:
        message = Message(
            id=generate_message_id("text"),
            type=MessageType.AGENT_RESPONSE,
            agent=event.agent_name,
            content=event.reply_text or "",
            metadata=MessageMetadata(parse_error=True),
        )
        self.session.conversation_history.append(message)
        mirror_message(self.session, message)
        self.message_received = True
        return MergeOutcome(message=message, created=True, content_changed=True)

    def _close_active(self) -> bool:
        message = self.active_message
        self._active_id = None
        self._active_index = -1
        self._backend_message_id = None
        if message is None:
            return False
        message.metadata.streaming = False
        mirror_message(self.session, message)
        logger.debug("Closed streaming message %s (len=%d)", message.id, len(message.content))
        return True
