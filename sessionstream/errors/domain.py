"""Typed exceptions raised by the streaming engine and its transport.

Every exception carries an E-XXXX code from the registry so callers can
log and classify failures without matching on message text.

Usage:
    # In the HTTP client
    raise TransportError.from_status("/api/chat/stream", 502, "Bad Gateway")

    # In the retry controller
    try:
        await attempt()
    except SessionStreamError as e:
        logger.warning("[%s] %s", e.code, e)
"""

from sessionstream.errors.registry import format_error_message


class SessionStreamError(Exception):
    """Base exception for all engine errors."""

    code = "E-4001"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class TransportError(SessionStreamError):
    """Network or HTTP failure talking to the backend. Retryable."""

    code = "E-1001"

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        code: str | None = None,
    ) -> None:
        super().__init__(message, code=code)
        self.status_code = status_code

    @classmethod
    def from_status(
        cls, endpoint: str, status_code: int, detail: str
    ) -> "TransportError":
        """Build the error for a non-2xx response.

        Args:
            endpoint: Request path that failed.
            status_code: HTTP status returned by the backend.
            detail: Response detail text.

        Returns:
            TransportError with code E-1002.
        """
        message = format_error_message(
            "E-1002", endpoint=endpoint, status_code=status_code, detail=detail
        )
        return cls(message, status_code=status_code, code="E-1002")


class StreamReadError(TransportError):
    """The response body reader failed mid-stream."""

    code = "E-1003"


class InteractionError(TransportError):
    """The interaction endpoint answered with a JSON failure body."""

    code = "E-1004"


class SessionNotFoundError(SessionStreamError):
    """A session id is not known to the local store."""

    code = "E-4002"

    def __init__(self, session_id: str) -> None:
        super().__init__(format_error_message("E-4002", session_id=session_id))
        self.session_id = session_id
