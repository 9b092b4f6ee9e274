"""Typed side-channel payloads carried alongside streamed reply text.

The backend attaches structured data to ``system_state.metadata`` and to
the top-level ``interaction`` field. Each recognised key maps to one
``SideChannelKind``; anything else is kept as an explicit pass-through
payload so nothing the backend sends is silently lost.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any


class SideChannelKind(str, Enum):
    """Kinds of side-channel payload a message can carry."""

    INTERACTION_FORM = "interaction_form"
    FILE_MANIFEST = "file_manifest"
    FILE_PROGRESS = "file_progress"
    TOOL_CALLS = "tool_calls"
    DIAGNOSTIC = "diagnostic"
    PASSTHROUGH = "passthrough"


# Snapshot kinds are replaced wholesale on every event that carries them.
SNAPSHOT_KINDS = frozenset({
    SideChannelKind.INTERACTION_FORM,
    SideChannelKind.FILE_MANIFEST,
    SideChannelKind.FILE_PROGRESS,
    SideChannelKind.TOOL_CALLS,
})

_KEY_KINDS: dict[str, SideChannelKind] = {
    "projectFiles": SideChannelKind.FILE_MANIFEST,
    "fileCreationProgress": SideChannelKind.FILE_PROGRESS,
    "toolCalls": SideChannelKind.TOOL_CALLS,
    "is_final": SideChannelKind.DIAGNOSTIC,
    "llm_decision": SideChannelKind.DIAGNOSTIC,
    "debug": SideChannelKind.DIAGNOSTIC,
}

# Keys consumed by the normalizer and dispatcher, never stored on a message.
CONTROL_KEYS = frozenset({
    "message_id",
    "is_update",
    "stream_type",
    "content_mode",
    "mode",
    "readyToGenerate",
    "ready_for_design",
    "force_advance",
    "final_turn",
    "collection_progress",
})


@dataclass(frozen=True)
class SideChannelPayload:
    """One side-channel value extracted from a frame.

    Attributes:
        kind: Classification driving the merge rule.
        key: Wire key the value arrived under.
        value: The payload, untouched.
    """

    kind: SideChannelKind
    key: str
    value: Any


def classify_side_channel(
    metadata: dict[str, Any] | None,
    interaction: Any = None,
) -> tuple[SideChannelPayload, ...]:
    """Split raw frame metadata into typed side-channel payloads.

    Args:
        metadata: ``system_state.metadata`` dict from the frame, if any.
        interaction: Top-level ``interaction`` form definition, if any.

    Returns:
        Payloads in wire order, interaction form first. Control keys and
        null values are skipped.
    """
    payloads: list[SideChannelPayload] = []
    if interaction is not None:
        payloads.append(
            SideChannelPayload(SideChannelKind.INTERACTION_FORM, "interaction", interaction)
        )
    for key, value in (metadata or {}).items():
        if key in CONTROL_KEYS or value is None:
            continue
        kind = _KEY_KINDS.get(key, SideChannelKind.PASSTHROUGH)
        payloads.append(SideChannelPayload(kind, key, value))
    return tuple(payloads)
