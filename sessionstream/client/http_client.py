"""HTTP transport for the chat backend.

Thin wrapper around httpx that maps the engine's collaborator calls to
the backend's REST endpoints. Failures raise TransportError (or a
subclass), never library exceptions, so the retry controller can treat
every transport problem uniformly.
"""

import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx

from sessionstream.config import BackendConfig
from sessionstream.errors import (
    InteractionError,
    StreamReadError,
    TransportError,
    format_error_message,
)

logger = logging.getLogger(__name__)

STREAM_CONTENT_TYPES = ("text/event-stream", "text/plain")


def is_stream_response(content_type: str | None) -> bool:
    """Whether a Content-Type header denotes a streamed reply."""
    content_type = (content_type or "").lower()
    return any(kind in content_type for kind in STREAM_CONTENT_TYPES)


class ChatBackendClient:
    """Async client for the session, chat and title endpoints.

    Use as an async context manager; the underlying ``httpx.AsyncClient``
    lives for the duration of the block.
    """

    def __init__(
        self,
        config: BackendConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize with backend settings.

        Args:
            config: Backend URL, credentials and endpoint paths.
            transport: Optional httpx transport, used by tests.
        """
        self._config = config or BackendConfig()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "ChatBackendClient":
        """Open httpx async client."""
        headers = {}
        if self._config.api_key:
            headers["X-API-Key"] = self._config.api_key
        self._client = httpx.AsyncClient(
            base_url=self._config.base_url,
            timeout=self._config.timeout,
            headers=headers,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Close httpx async client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("ChatBackendClient used outside 'async with'")
        return self._client

    def _raise_for_status(self, resp: httpx.Response, endpoint: str) -> None:
        """Raise TransportError on non-2xx responses.

        Args:
            resp: httpx.Response to check (body already read).
            endpoint: Request path, for the error message.

        Raises:
            TransportError: On non-2xx status codes.
        """
        if resp.status_code >= 400:
            try:
                body = resp.json()
                detail = body.get("error") or body.get("detail") or resp.text
            except Exception:
                detail = resp.text
            raise TransportError.from_status(endpoint, resp.status_code, str(detail))

    async def _post_json(self, endpoint: str, body: dict[str, Any]) -> Any:
        try:
            resp = await self.client.post(endpoint, json=body)
        except httpx.HTTPError as e:
            raise TransportError(
                format_error_message("E-1001", url=endpoint, reason=e)
            ) from e
        self._raise_for_status(resp, endpoint)
        return resp.json()

    async def create_session(self) -> str:
        """Create a backend session via POST /api/session.

        Returns:
            Session ID string.
        """
        data = await self._post_json(self._config.session_path, {})
        session_id = data.get("sessionId") if isinstance(data, dict) else None
        if not session_id:
            raise TransportError(
                format_error_message(
                    "E-1001", url=self._config.session_path, reason="response has no sessionId"
                )
            )
        logger.info("Backend created session %s", session_id)
        return session_id

    async def list_sessions(self) -> list[dict[str, Any]]:
        """List stored sessions via GET /api/sessions.

        Returns:
            Raw session snapshots, newest first as the backend orders them.
        """
        endpoint = self._config.sessions_path
        try:
            resp = await self.client.get(endpoint)
        except httpx.HTTPError as e:
            raise TransportError(format_error_message("E-1001", url=endpoint, reason=e)) from e
        self._raise_for_status(resp, endpoint)
        data = resp.json()
        if isinstance(data, dict):
            if data.get("success") is False:
                raise TransportError.from_status(endpoint, resp.status_code, str(data.get("error")))
            return list(data.get("sessions") or [])
        return list(data or [])

    async def sync_session(self, session_id: str, session_data: dict[str, Any]) -> None:
        """Persist a session snapshot via POST /api/session/sync."""
        await self._post_json(
            self._config.sync_path,
            {"sessionId": session_id, "sessionData": session_data},
        )

    async def generate_title(
        self, conversation_id: str, message_count: int, max_length: int = 20
    ) -> str | None:
        """Ask the backend to title a conversation.

        Returns:
            The generated title, or None if the backend produced none.
        """
        data = await self._post_json(
            self._config.title_path,
            {
                "conversationId": conversation_id,
                "messageCount": message_count,
                "maxLength": max_length,
            },
        )
        if not isinstance(data, dict) or not data.get("success"):
            return None
        return data.get("title") or None

    async def share_session(self, share_request: dict[str, Any]) -> dict[str, Any]:
        """Publish a conversation via POST /api/share.

        Returns:
            The backend's ``data`` object (usually holding ``shareUrl``).
        """
        data = await self._post_json(self._config.share_path, share_request)
        result = data.get("data") if isinstance(data, dict) else None
        return result if isinstance(result, dict) else {}

    async def stream_message(
        self,
        session_id: str,
        message: str,
        *,
        force_agent: str | None = None,
        test_mode: Any = None,
        context: Any = None,
    ) -> AsyncIterator[bytes]:
        """Send a chat message and yield the raw response body chunks.

        Args:
            session_id: Target session.
            message: User message text.
            force_agent: Route the message to a specific agent.
            test_mode: Backend test-mode flag, passed through.
            context: Extra context, passed through.

        Yields:
            Response body chunks, not aligned to frame boundaries.
        """
        body: dict[str, Any] = {"sessionId": session_id, "message": message}
        if force_agent:
            body["forceAgent"] = force_agent
        if test_mode:
            body["testMode"] = test_mode
        if context:
            body["context"] = context
        async for chunk in self._stream(self._config.stream_path, session_id, body):
            yield chunk

    async def stream_interaction(
        self, session_id: str, data: dict[str, Any]
    ) -> AsyncIterator[bytes]:
        """Submit a structured interaction and yield any streamed reply.

        A JSON (non-streamed) reply yields nothing; ``success: false``
        raises InteractionError.
        """
        body = {"sessionId": session_id, "interactionType": "interaction", "data": data}
        async for chunk in self._stream(
            self._config.interact_path, session_id, body, allow_json=True
        ):
            yield chunk

    async def _stream(
        self,
        endpoint: str,
        session_id: str,
        body: dict[str, Any],
        allow_json: bool = False,
    ) -> AsyncIterator[bytes]:
        # No read timeout: a turn may stream for as long as the agent works.
        timeout = httpx.Timeout(self._config.timeout, read=None)
        try:
            async with self.client.stream("POST", endpoint, json=body, timeout=timeout) as resp:
                if resp.status_code >= 400:
                    await resp.aread()
                    self._raise_for_status(resp, endpoint)

                content_type = resp.headers.get("content-type")
                if allow_json and not is_stream_response(content_type):
                    await resp.aread()
                    self._check_interaction_result(resp, session_id)
                    return

                logger.debug("Streaming %s for session %s (%s)", endpoint, session_id, content_type)
                try:
                    async for chunk in resp.aiter_bytes():
                        yield chunk
                except httpx.HTTPError as e:
                    raise StreamReadError(
                        format_error_message("E-1003", session_id=session_id, reason=e)
                    ) from e
        except httpx.HTTPError as e:
            raise TransportError(format_error_message("E-1001", url=endpoint, reason=e)) from e

    @staticmethod
    def _check_interaction_result(resp: httpx.Response, session_id: str) -> None:
        try:
            result = resp.json()
        except ValueError as e:
            raise InteractionError(
                format_error_message("E-1004", session_id=session_id, reason=e)
            ) from e
        if not isinstance(result, dict) or not result.get("success"):
            reason = result.get("error") if isinstance(result, dict) else None
            raise InteractionError(
                format_error_message(
                    "E-1004", session_id=session_id, reason=reason or "interaction failed"
                )
            )
        logger.info("Interaction accepted for session %s", session_id)
