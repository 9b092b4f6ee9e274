"""Normalized stream events produced from individual response frames.

A ``StreamEvent`` is ephemeral: the normalizer builds one per usable
frame, the reconciler consumes it immediately, and it is never persisted.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from sessionstream.models.side_channel import SideChannelPayload


class StreamType(str, Enum):
    """Backend-declared position of a frame within a message."""

    START = "start"
    DELTA = "delta"
    COMPLETE = "complete"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Any) -> "StreamType":
        """Map a raw ``stream_type`` value, defaulting to UNKNOWN."""
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


class ContentMode(str, Enum):
    """Backend-declared meaning of a frame's reply text."""

    INCREMENTAL = "incremental"
    COMPLETE = "complete"
    UNSPECIFIED = "unspecified"

    @classmethod
    def parse(cls, value: Any) -> "ContentMode":
        """Map a raw ``content_mode`` value, defaulting to UNSPECIFIED."""
        try:
            return cls(value)
        except ValueError:
            return cls.UNSPECIFIED


@dataclass(frozen=True)
class StreamEvent:
    """One normalized frame.

    Attributes:
        agent_name: Agent or persona that produced the frame.
        reply_text: Visible text, or None for control-only frames.
        is_done: ``system_state.done``: the turn is finished.
        is_update: ``metadata.is_update`` flag.
        message_id: Backend message id, when the backend tracks one.
        stream_type: Declared stream position.
        content_mode: Declared content meaning.
        interaction: In-message form definition, if any.
        side_metadata: Raw ``system_state.metadata`` bag, untouched.
        side_channel: Typed payloads classified from the metadata.
        intent: Raw ``system_state.intent`` value.
        update_mode: ``metadata.mode`` (paired with ``is_update``).
        is_plain_text: Built from a frame that was not valid JSON.
        shape: Name of the payload shape that matched.
    """

    agent_name: str
    reply_text: str | None
    is_done: bool = False
    is_update: bool = False
    message_id: str | None = None
    stream_type: StreamType = StreamType.UNKNOWN
    content_mode: ContentMode = ContentMode.UNSPECIFIED
    interaction: Any = None
    side_metadata: dict[str, Any] = field(default_factory=dict)
    side_channel: tuple[SideChannelPayload, ...] = ()
    intent: str | None = None
    update_mode: str | None = None
    is_plain_text: bool = False
    shape: str = "canonical"

    @property
    def ready_to_generate(self) -> bool:
        """Whether the backend signalled that page generation can start."""
        return bool(
            self.side_metadata.get("readyToGenerate")
            or self.side_metadata.get("ready_for_design")
        )

    @property
    def force_advance(self) -> bool:
        return bool(self.side_metadata.get("force_advance"))

    @property
    def final_turn(self) -> Any:
        return self.side_metadata.get("final_turn")

    @property
    def collection_progress(self) -> Any:
        return self.side_metadata.get("collection_progress")
