"""Error handling framework for sessionstream.

This package provides:
- Error code registry with E-XXXX format codes
- Typed exceptions carrying those codes

Error categories:
- E-1xxx: Transport errors
- E-2xxx: Stream protocol errors
- E-3xxx: Persistence errors
- E-4xxx: System/internal errors
"""

from sessionstream.errors.domain import (
    InteractionError,
    SessionNotFoundError,
    SessionStreamError,
    StreamReadError,
    TransportError,
)
from sessionstream.errors.registry import (
    ERROR_REGISTRY,
    ErrorCategory,
    ErrorCode,
    format_error_message,
    get_error,
    get_errors_by_category,
)

__all__ = [
    # Registry
    "ErrorCode",
    "ErrorCategory",
    "ERROR_REGISTRY",
    "get_error",
    "get_errors_by_category",
    "format_error_message",
    # Exceptions
    "SessionStreamError",
    "TransportError",
    "StreamReadError",
    "InteractionError",
    "SessionNotFoundError",
]
