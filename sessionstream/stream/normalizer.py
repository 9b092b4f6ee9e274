"""Chunk normalization: map heterogeneous frame payloads to StreamEvent.

Backends have emitted several payload shapes over time. Each shape has
its own extractor; extractors run in priority order and the first one
that finds reply text wins:

1. canonical   ``{"immediate_display": {"reply", "agent_name"}}``
2. legacy      ``{"type": "agent_response" | "agent response", "immediate_display": {...}}``
3. flat        ``{"content", "agent" | "agent_name"}``
4. nested      ``{"data": {"immediate_display": {...}}}``
5. heuristic   any top-level ``reply`` / ``message`` / ``text`` string

Control fields are read from ``system_state`` (or ``data.system_state``).
A frame without reply text but with a ``system_state`` still yields a
control-only event so ``done`` and triggers are honoured. Frames that are
not JSON become plain-text events; frames marked ``intent == "thinking"``
and frames with nothing usable are dropped (``None``).
"""

import json
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

from sessionstream.errors.registry import format_error_message
from sessionstream.models.events import ContentMode, StreamEvent, StreamType
from sessionstream.models.side_channel import classify_side_channel
from sessionstream.utils.redaction import preview_text

logger = logging.getLogger(__name__)

DEFAULT_AGENT = "system"
LEGACY_AGENT = "ConversationalWelcomeAgent"
THINKING_INTENT = "thinking"
_LEGACY_TYPE_TAGS = frozenset({"agent_response", "agent response"})


@dataclass(frozen=True)
class ExtractedReply:
    """Reply text and agent identity found by one extractor."""

    text: str
    agent_name: str
    shape: str


Extractor = Callable[[dict[str, Any]], ExtractedReply | None]


def _text(value: Any, allow_blank: bool = True) -> str | None:
    """Return value when it is a non-empty string (non-blank if required).

    Whitespace-only replies are legitimate deltas for incremental agents,
    so only the heuristic extractor insists on visible characters.
    """
    if not isinstance(value, str) or not value:
        return None
    if not allow_blank and not value.strip():
        return None
    return value


def _opaque(value: Any) -> str | None:
    """Backend ids and agent names arrive as strings or numbers; keep them as text."""
    if value is None or value == "":
        return None
    return str(value)


def _display_reply(display: Any) -> tuple[str, str | None] | None:
    if not isinstance(display, dict):
        return None
    reply = _text(display.get("reply"))
    if reply is None:
        return None
    return reply, _opaque(display.get("agent_name"))


def extract_canonical(chunk: dict[str, Any]) -> ExtractedReply | None:
    if chunk.get("type") in _LEGACY_TYPE_TAGS:
        return None
    found = _display_reply(chunk.get("immediate_display"))
    if found is None:
        return None
    reply, agent = found
    return ExtractedReply(reply, agent or DEFAULT_AGENT, "canonical")


def extract_legacy(chunk: dict[str, Any]) -> ExtractedReply | None:
    tag = chunk.get("type")
    if tag not in _LEGACY_TYPE_TAGS:
        return None
    found = _display_reply(chunk.get("immediate_display"))
    if found is None:
        return None
    reply, agent = found
    # The space-separated tag only ever came from the welcome agent.
    default = LEGACY_AGENT if tag == "agent response" else DEFAULT_AGENT
    return ExtractedReply(reply, agent or default, "legacy")


def extract_flat(chunk: dict[str, Any]) -> ExtractedReply | None:
    content = _text(chunk.get("content"))
    if content is None:
        return None
    agent = chunk.get("agent_name") or chunk.get("agent") or DEFAULT_AGENT
    return ExtractedReply(content, str(agent), "flat")


def extract_nested(chunk: dict[str, Any]) -> ExtractedReply | None:
    data = chunk.get("data")
    if not isinstance(data, dict):
        return None
    found = _display_reply(data.get("immediate_display"))
    if found is None:
        return None
    reply, agent = found
    return ExtractedReply(reply, agent or DEFAULT_AGENT, "nested")


def extract_heuristic(chunk: dict[str, Any]) -> ExtractedReply | None:
    for key in ("reply", "message", "text"):
        value = _text(chunk.get(key), allow_blank=False)
        if value is not None:
            agent = chunk.get("agent_name") or chunk.get("agent") or DEFAULT_AGENT
            return ExtractedReply(value, str(agent), "heuristic")
    return None


DEFAULT_EXTRACTORS: tuple[Extractor, ...] = (
    extract_canonical,
    extract_legacy,
    extract_flat,
    extract_nested,
    extract_heuristic,
)


def _system_state(chunk: dict[str, Any]) -> dict[str, Any] | None:
    state = chunk.get("system_state")
    if not isinstance(state, dict):
        data = chunk.get("data")
        state = data.get("system_state") if isinstance(data, dict) else None
    return state if isinstance(state, dict) else None


class ChunkNormalizer:
    """Turns one frame payload into a StreamEvent, or None when unusable.

    Never raises: malformed JSON falls back to plain text, unknown shapes
    are logged and skipped.
    """

    def __init__(self, extractors: Sequence[Extractor] = DEFAULT_EXTRACTORS) -> None:
        self._extractors = tuple(extractors)

    def normalize(self, payload: str) -> StreamEvent | None:
        """Normalize one frame payload.

        Args:
            payload: Text following ``data:`` on a frame line.

        Returns:
            A StreamEvent, or None for thinking frames and frames with
            no usable content.
        """
        try:
            chunk = json.loads(payload)
        except (json.JSONDecodeError, ValueError):
            return self._plain_text(payload)

        if not isinstance(chunk, dict):
            logger.warning(
                format_error_message("E-2002", keys=type(chunk).__name__)
            )
            return None

        state = _system_state(chunk)
        if state is not None and state.get("intent") == THINKING_INTENT:
            logger.debug("Skipping thinking frame")
            return None

        extracted = self._extract(chunk)
        if extracted is None and state is None:
            logger.warning(format_error_message("E-2002", keys=sorted(chunk)))
            return None

        metadata = (state or {}).get("metadata")
        if not isinstance(metadata, dict):
            metadata = {}
        interaction = chunk.get("interaction")

        event = StreamEvent(
            agent_name=extracted.agent_name if extracted else self._agent_hint(chunk),
            reply_text=extracted.text if extracted else None,
            is_done=bool((state or {}).get("done")),
            is_update=bool(metadata.get("is_update")),
            message_id=_opaque(metadata.get("message_id")),
            stream_type=StreamType.parse(metadata.get("stream_type")),
            content_mode=ContentMode.parse(metadata.get("content_mode")),
            interaction=interaction,
            side_metadata=metadata,
            side_channel=classify_side_channel(metadata, interaction),
            intent=(state or {}).get("intent"),
            update_mode=metadata.get("mode"),
            shape=extracted.shape if extracted else "control",
        )
        logger.debug(
            "Frame normalized: shape=%s agent=%s len=%d message_id=%s stream_type=%s done=%s",
            event.shape,
            event.agent_name,
            len(event.reply_text or ""),
            event.message_id,
            event.stream_type.value,
            event.is_done,
        )
        return event

    def _extract(self, chunk: dict[str, Any]) -> ExtractedReply | None:
        for extractor in self._extractors:
            found = extractor(chunk)
            if found is not None:
                return found
        return None

    @staticmethod
    def _agent_hint(chunk: dict[str, Any]) -> str:
        display = chunk.get("immediate_display")
        if isinstance(display, dict) and _opaque(display.get("agent_name")):
            return str(display["agent_name"])
        return str(chunk.get("agent_name") or chunk.get("agent") or DEFAULT_AGENT)

    @staticmethod
    def _plain_text(payload: str) -> StreamEvent | None:
        text = payload.strip()
        if not text or text == "undefined":
            return None
        logger.warning(format_error_message("E-2001", preview=preview_text(text)))
        return StreamEvent(
            agent_name=DEFAULT_AGENT,
            reply_text=text,
            is_plain_text=True,
            shape="plain_text",
        )
