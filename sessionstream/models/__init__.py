"""Data models for sessions, messages and normalized stream events."""

from sessionstream.models.events import ContentMode, StreamEvent, StreamType
from sessionstream.models.session import (
    Message,
    MessageMetadata,
    MessageType,
    Metrics,
    Progress,
    Session,
    SessionMetadata,
    SessionStatus,
    Settings,
    generate_message_id,
    utc_now,
)
from sessionstream.models.side_channel import (
    SideChannelKind,
    SideChannelPayload,
    classify_side_channel,
)

__all__ = [
    "ContentMode",
    "StreamEvent",
    "StreamType",
    "Message",
    "MessageMetadata",
    "MessageType",
    "Metrics",
    "Progress",
    "Session",
    "SessionMetadata",
    "SessionStatus",
    "Settings",
    "generate_message_id",
    "utc_now",
    "SideChannelKind",
    "SideChannelPayload",
    "classify_side_channel",
]
