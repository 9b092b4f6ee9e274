"""In-flight guard against duplicate concurrent sends.

UI handlers can fire twice for one user action. A send is keyed by
(session, content, options); while a send with the same key is running,
further sends with that key are rejected. This is not semantic dedup:
an identical message sent after the first one finished goes through.
"""

import hashlib
import json
import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

logger = logging.getLogger(__name__)


def build_send_key(session_id: str, content: str, options: dict[str, Any] | None) -> str:
    """Build a deterministic key for a send.

    Args:
        session_id: Target session.
        content: User message text.
        options: Send options; key order does not matter.

    Returns:
        Key string '{session_id}:{sha256 of content+options}'.
    """
    canonical = json.dumps(
        {"content": content, "options": options or {}},
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )
    digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
    return f"{session_id}:{digest}"


class InFlightGuard:
    """Per-session registry of sends currently in flight."""

    def __init__(self) -> None:
        self._in_flight: dict[str, set[str]] = {}

    def is_in_flight(self, session_id: str, key: str) -> bool:
        return key in self._in_flight.get(session_id, set())

    def try_acquire(self, session_id: str, key: str) -> bool:
        """Register a send. Returns False if the key is already in flight."""
        keys = self._in_flight.setdefault(session_id, set())
        if key in keys:
            return False
        keys.add(key)
        return True

    def release(self, session_id: str, key: str) -> None:
        """Unregister a send. Idempotent."""
        keys = self._in_flight.get(session_id)
        if keys is None:
            return
        keys.discard(key)
        if not keys:
            del self._in_flight[session_id]

    @contextmanager
    def claim(
        self, session_id: str, content: str, options: dict[str, Any] | None
    ) -> Iterator[bool]:
        """Hold the send key for the duration of the block.

        Yields:
            True if this caller owns the send, False if it is a duplicate.
        """
        key = build_send_key(session_id, content, options)
        admitted = self.try_acquire(session_id, key)
        if not admitted:
            logger.info("Duplicate send ignored for session %s", session_id)
        try:
            yield admitted
        finally:
            if admitted:
                self.release(session_id, key)
