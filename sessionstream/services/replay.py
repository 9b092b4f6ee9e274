"""Offline replay of captured response streams.

Feeds a recorded SSE transcript through the same splitter, normalizer
and reconciler used for live sends, re-chunked at a fixed byte size.
Useful for debugging backend payloads without a running backend.
"""

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field

from sessionstream.models.session import Session
from sessionstream.services.reconciler import (
    DEFAULT_AGENT_POLICY,
    AgentPolicy,
    MessageReconciler,
)
from sessionstream.services.triggers import TriggerDispatcher
from sessionstream.stream.frames import iter_frames
from sessionstream.stream.normalizer import ChunkNormalizer

logger = logging.getLogger(__name__)


@dataclass
class ReplayReport:
    """Result of replaying one transcript."""

    session: Session
    frames: int = 0
    events: int = 0
    skipped: int = 0
    triggers: list[str] = field(default_factory=list)


async def chunked(data: bytes, chunk_size: int) -> AsyncIterator[bytes]:
    """Yield ``data`` in slices of ``chunk_size`` bytes (whole if <= 0)."""
    if chunk_size <= 0:
        yield data
        return
    for offset in range(0, len(data), chunk_size):
        yield data[offset:offset + chunk_size]


async def replay_transcript(
    data: bytes,
    chunk_size: int = 0,
    session: Session | None = None,
    agents: AgentPolicy = DEFAULT_AGENT_POLICY,
) -> ReplayReport:
    """Reconcile a captured stream into a session.

    Args:
        data: Raw response body as captured from the wire.
        chunk_size: Transport chunk size to simulate; 0 feeds it whole.
        session: Session to reconcile into; a fresh one by default.
        agents: Known agent identities.

    Returns:
        ReplayReport with the reconciled session and counters.
    """
    session = session or Session.new("replay")
    reconciler = MessageReconciler(session, agents=agents, dispatcher=TriggerDispatcher())
    normalizer = ChunkNormalizer()
    report = ReplayReport(session=session)

    async for frame in iter_frames(chunked(data, chunk_size)):
        report.frames += 1
        event = normalizer.normalize(frame)
        if event is None:
            report.skipped += 1
            continue
        report.events += 1
        report.triggers.extend(reconciler.apply(event).triggers)
    reconciler.finish()

    logger.info(
        "Replayed %d frames (%d events, %d skipped) into %d messages",
        report.frames,
        report.events,
        report.skipped,
        len(session.conversation_history),
    )
    return report
