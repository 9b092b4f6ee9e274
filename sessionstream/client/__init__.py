"""HTTP transport for the chat backend."""

from sessionstream.client.http_client import ChatBackendClient, is_stream_response

__all__ = ["ChatBackendClient", "is_stream_response"]
