"""Shared test helpers."""

from tests.helpers.streams import (
    FakeChatBackend,
    canonical_frame,
    split_bytes,
    sse_body,
)

__all__ = ["FakeChatBackend", "canonical_frame", "split_bytes", "sse_body"]
