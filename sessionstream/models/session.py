"""Pydantic models for sessions and their conversation history.

Python attributes are snake_case; the wire form exchanged with the
backend (sync snapshots, restored session lists) uses camelCase aliases.
Unknown keys on a restored session, its messages and their metadata are
preserved so a snapshot written back never drops data owned by other
clients of the backend.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utc_now() -> datetime:
    """Return the current UTC time."""
    return datetime.now(timezone.utc)


def generate_message_id(kind: str) -> str:
    """Generate a client-side message id such as ``msg-<hex>-user``."""
    return f"msg-{uuid.uuid4().hex[:12]}-{kind}"


class _WireModel(BaseModel):
    """Base model exchanging camelCase keys with the backend."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class _OpenWireModel(_WireModel):
    """Wire model that keeps keys it does not declare."""

    model_config = ConfigDict(extra="allow")


class SessionStatus(str, Enum):
    """Lifecycle status of a session."""

    ACTIVE = "active"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


class MessageType(str, Enum):
    """Kinds of conversation entries."""

    USER_MESSAGE = "user_message"
    AGENT_RESPONSE = "agent_response"
    SYSTEM_EVENT = "system_event"


class MessageMetadata(_OpenWireModel):
    """Metadata bag attached to a message.

    Side-channel snapshots (interaction form, file manifest, file
    progress, tool calls) have dedicated fields. Diagnostic and
    unrecognized keys from the stream land in ``diagnostics`` and
    ``passthrough``.
    """

    streaming: bool = False
    stream_message_id: str | None = None
    update_count: int = 0
    last_update: datetime | None = None
    interaction: Any = None
    project_files: Any = None
    file_creation_progress: Any = None
    tool_calls: Any = None
    diagnostics: dict[str, Any] = Field(default_factory=dict)
    passthrough: dict[str, Any] = Field(default_factory=dict)
    parse_error: bool = False
    error: str | None = None
    retry_count: int | None = None
    option: dict[str, Any] | None = None


class Message(_OpenWireModel):
    """A single entry in a session's conversation history."""

    id: str
    type: MessageType
    agent: str
    content: str = ""
    timestamp: datetime = Field(default_factory=utc_now)
    metadata: MessageMetadata = Field(default_factory=MessageMetadata)

    @property
    def is_streaming(self) -> bool:
        return self.metadata.streaming


class Progress(_WireModel):
    """Stage progress reported by the backend agents."""

    current_stage: str = "welcome"
    completed_stages: list[str] = Field(default_factory=list)
    total_stages: int = 4
    percentage: float = 0
    collection_progress: Any = None


class Metrics(_WireModel):
    """Interaction counters for a session."""

    total_time: int = 0
    user_interactions: int = 0
    agent_transitions: int = 0
    errors_encountered: int = 0


class Settings(_WireModel):
    """Per-session user settings."""

    auto_save: bool = True
    reminder_enabled: bool = False
    privacy_level: str = "private"


class SessionMetadata(_WireModel):
    """Session-level metadata: progress, metrics, settings, bookkeeping."""

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    last_active: datetime = Field(default_factory=utc_now)
    version: str = "1.0.0"
    progress: Progress = Field(default_factory=Progress)
    metrics: Metrics = Field(default_factory=Metrics)
    settings: Settings = Field(default_factory=Settings)
    turn_count: Any = None
    agent_histories: dict[str, list[dict[str, str]]] = Field(default_factory=dict)


class Session(_OpenWireModel):
    """A conversation with the backend and its reconciled history.

    ``conversation_history`` is append-only apart from in-place updates
    to the single message currently being streamed.
    """

    id: str
    user_id: str | None = None
    status: SessionStatus = SessionStatus.ACTIVE
    title: str | None = None
    title_generated_at: datetime | None = None
    conversation_history: list[Message] = Field(default_factory=list)
    metadata: SessionMetadata = Field(default_factory=SessionMetadata)

    @classmethod
    def new(cls, session_id: str, user_id: str | None = None) -> "Session":
        """Build a fresh session at the welcome stage with zeroed metrics."""
        return cls(id=session_id, user_id=user_id)

    @classmethod
    def from_snapshot(cls, data: dict[str, Any]) -> "Session":
        """Restore a session from its wire form."""
        return cls.model_validate(data)

    def snapshot(self) -> dict[str, Any]:
        """Serialize to the JSON-ready wire form sent to the backend."""
        return self.model_dump(mode="json", by_alias=True)

    def streaming_messages(self) -> list[Message]:
        """Messages currently flagged as streaming (at most one)."""
        return [m for m in self.conversation_history if m.metadata.streaming]

    def touch(self) -> None:
        """Record activity on the session."""
        now = utc_now()
        self.metadata.last_active = now
        self.metadata.updated_at = now
