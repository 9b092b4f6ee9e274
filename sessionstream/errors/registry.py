"""Error code registry with E-XXXX format codes.

Organizes the failures the streaming engine can observe into categories:
- E-1xxx: Transport errors (network, HTTP status, reader failures)
- E-2xxx: Stream protocol errors (malformed frames, unknown shapes)
- E-3xxx: Persistence errors (session sync)
- E-4xxx: System/internal errors

Each error includes a code, title, message template, and the text shown
to the user when the error surfaces in the conversation.
"""

from dataclasses import dataclass
from enum import Enum


class ErrorCategory(str, Enum):
    """Categories for error codes."""

    TRANSPORT = "transport"  # E-1xxx
    PROTOCOL = "protocol"  # E-2xxx
    PERSISTENCE = "persistence"  # E-3xxx
    SYSTEM = "system"  # E-4xxx


@dataclass
class ErrorCode:
    """Definition of an error code with metadata.

    Attributes:
        code: Error code in E-XXXX format.
        category: Error category for grouping.
        title: Short title for display.
        message_template: Message with {placeholders} for context.
        user_message: Text appended to the conversation when surfaced.
        is_retryable: Whether the send can be retried without user action.
    """

    code: str
    category: ErrorCategory
    title: str
    message_template: str
    user_message: str
    is_retryable: bool = False


ERROR_REGISTRY: dict[str, ErrorCode] = {
    # Transport errors (E-1xxx)
    "E-1001": ErrorCode(
        code="E-1001",
        category=ErrorCategory.TRANSPORT,
        title="Backend Unreachable",
        message_template="Could not reach {url}: {reason}",
        user_message="The assistant could not be reached. Please try again.",
        is_retryable=True,
    ),
    "E-1002": ErrorCode(
        code="E-1002",
        category=ErrorCategory.TRANSPORT,
        title="Backend Rejected Request",
        message_template="{endpoint} returned HTTP {status_code}: {detail}",
        user_message="The assistant rejected the request. Please try again.",
        is_retryable=True,
    ),
    "E-1003": ErrorCode(
        code="E-1003",
        category=ErrorCategory.TRANSPORT,
        title="Stream Interrupted",
        message_template="Response stream for session {session_id} failed: {reason}",
        user_message="The reply was interrupted. Please try again.",
        is_retryable=True,
    ),
    "E-1004": ErrorCode(
        code="E-1004",
        category=ErrorCategory.TRANSPORT,
        title="Interaction Failed",
        message_template="Interaction for session {session_id} failed: {reason}",
        user_message="The interaction could not be processed. Please try again.",
        is_retryable=True,
    ),
    # Protocol errors (E-2xxx)
    "E-2001": ErrorCode(
        code="E-2001",
        category=ErrorCategory.PROTOCOL,
        title="Malformed Frame",
        message_template="Frame payload is not valid JSON: {preview}",
        user_message="",
    ),
    "E-2002": ErrorCode(
        code="E-2002",
        category=ErrorCategory.PROTOCOL,
        title="Unrecognized Payload Shape",
        message_template="No displayable text in payload with keys {keys}",
        user_message="",
    ),
    # Persistence errors (E-3xxx)
    "E-3001": ErrorCode(
        code="E-3001",
        category=ErrorCategory.PERSISTENCE,
        title="Session Sync Failed",
        message_template="Sync of session {session_id} failed: {reason}",
        user_message="",
    ),
    # System errors (E-4xxx)
    "E-4001": ErrorCode(
        code="E-4001",
        category=ErrorCategory.SYSTEM,
        title="Retries Exhausted",
        message_template="Send for session {session_id} failed after {attempts} attempts: {reason}",
        user_message="Sorry, something went wrong while processing your message. Please try again.",
    ),
    "E-4002": ErrorCode(
        code="E-4002",
        category=ErrorCategory.SYSTEM,
        title="Session Not Found",
        message_template="Session '{session_id}' is not known to this client.",
        user_message="",
    ),
}


def get_error(code: str) -> ErrorCode | None:
    """Get error definition by code.

    Args:
        code: Error code in E-XXXX format.

    Returns:
        ErrorCode if found, None otherwise.
    """
    return ERROR_REGISTRY.get(code)


def get_errors_by_category(category: ErrorCategory) -> list[ErrorCode]:
    """Get all errors in a category.

    Args:
        category: The error category to filter by.

    Returns:
        List of ErrorCode objects in the specified category.
    """
    return [e for e in ERROR_REGISTRY.values() if e.category == category]


def format_error_message(code: str, **context: object) -> str:
    """Render an error's message template with context values.

    Missing placeholders leave the template untouched rather than raising.

    Args:
        code: Error code in E-XXXX format.
        **context: Values substituted into the message template.

    Returns:
        Formatted message, or a generic message for unknown codes.
    """
    error_def = get_error(code)
    if error_def is None:
        return f"Unknown error: {code}"
    try:
        return error_def.message_template.format(**context)
    except KeyError:
        return error_def.message_template
