"""Fire-and-forget persistence of session snapshots.

The snapshot is serialized when the sync is scheduled, so later mutations
do not leak into an in-flight POST and concurrent syncs of one session
resolve last-write-wins on the backend. Failures are logged and
swallowed; this component never retries.
"""

import logging
from typing import Any, Protocol

from sessionstream.errors.registry import format_error_message
from sessionstream.models.session import Session
from sessionstream.services.background import BackgroundTasks

logger = logging.getLogger(__name__)


class SessionStore(Protocol):
    """Persistence collaborator accepting session snapshots."""

    async def sync_session(self, session_id: str, session_data: dict[str, Any]) -> None:
        """POST ``{sessionId, sessionData}`` to the persistence endpoint."""
        ...


class SessionSynchronizer:
    """Schedules and performs session snapshot syncs."""

    def __init__(self, store: SessionStore, tasks: BackgroundTasks | None = None) -> None:
        self._store = store
        self._tasks = tasks or BackgroundTasks()
        self.completed = 0
        self.failed = 0

    def schedule(self, session: Session, reason: str = "checkpoint") -> None:
        """Snapshot ``session`` now and persist it in the background."""
        snapshot = session.snapshot()
        self._tasks.spawn(
            self._push(session.id, snapshot, reason),
            name=f"sync:{session.id}:{reason}",
        )

    async def sync(self, session: Session, reason: str = "checkpoint") -> bool:
        """Snapshot and persist ``session``, awaiting the result.

        Returns:
            True on success, False if the backend call failed.
        """
        return await self._push(session.id, session.snapshot(), reason)

    async def _push(self, session_id: str, snapshot: dict[str, Any], reason: str) -> bool:
        message_count = len(snapshot.get("conversationHistory", []))
        logger.debug(
            "Syncing session %s (%s, %d messages)", session_id, reason, message_count
        )
        try:
            await self._store.sync_session(session_id, snapshot)
        except Exception as e:
            self.failed += 1
            logger.warning(
                format_error_message("E-3001", session_id=session_id, reason=e)
            )
            return False
        self.completed += 1
        logger.info("Session %s synced (%s, %d messages)", session_id, reason, message_count)
        return True
