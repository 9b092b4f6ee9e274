"""Title generation collaborator.

The trigger dispatcher may fire the title trigger on every merge until a
title exists. This collaborator owns idempotence: it suppresses requests
for sessions that already have a title and concurrent requests for the
same session.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

logger = logging.getLogger(__name__)

DEFAULT_MAX_LENGTH = 20


class TitleBackend(Protocol):
    async def generate_title(
        self, conversation_id: str, message_count: int, max_length: int = DEFAULT_MAX_LENGTH
    ) -> str | None: ...


class HttpTitleGenerator:
    """Requests conversation titles from the backend, one at a time per session.

    Args:
        backend: Object exposing ``generate_title`` (usually ChatBackendClient).
        on_title_generated: Called with (session_id, title) on success.
        max_length: Maximum title length requested from the backend.
    """

    def __init__(
        self,
        backend: TitleBackend,
        on_title_generated: Callable[[str, str], Any] | None = None,
        max_length: int = DEFAULT_MAX_LENGTH,
    ) -> None:
        self._backend = backend
        self._on_title_generated = on_title_generated
        self._max_length = max_length
        self._pending: set[str] = set()
        self.requests_made = 0

    def is_pending(self, session_id: str) -> bool:
        return session_id in self._pending

    def __call__(
        self, session_id: str, conversation_length: int, has_existing_title: bool
    ) -> Awaitable[str | None] | None:
        """Start title generation unless a title exists or one is pending.

        The pending mark is taken synchronously, so triggers fired for
        several events of one turn collapse into a single request.

        Returns:
            Coroutine resolving to the new title, or None when suppressed.
        """
        if has_existing_title or session_id in self._pending:
            return None
        self._pending.add(session_id)
        self.requests_made += 1
        return self._generate(session_id, conversation_length)

    async def _generate(self, session_id: str, conversation_length: int) -> str | None:
        try:
            title = await self._backend.generate_title(
                session_id, conversation_length, self._max_length
            )
        except Exception as e:
            logger.warning("Title generation failed for session %s: %s", session_id, e)
            return None
        finally:
            self._pending.discard(session_id)

        if not title:
            logger.debug("No title returned for session %s", session_id)
            return None
        logger.info("Generated title for session %s: %r", session_id, title)
        if self._on_title_generated is not None:
            self._on_title_generated(session_id, title)
        return title
