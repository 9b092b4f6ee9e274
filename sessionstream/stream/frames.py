"""Frame splitting for SSE-style response bodies.

The transport delivers chunks at arbitrary byte offsets. ``FrameSplitter``
decodes them incrementally, carries any partial trailing line over to the
next chunk, and emits the payload of each complete ``data:`` line. A
literal ``[DONE]`` payload ends the stream; nothing after it is emitted.
"""

import codecs
import logging
from collections.abc import AsyncIterable, AsyncIterator

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"


class FrameSplitter:
    """Incremental splitter turning raw chunks into frame payloads.

    Undecodable bytes are dropped rather than aborting the stream, and a
    multi-byte character split across two chunks is reassembled.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="ignore")
        self._buffer = ""
        self.done = False
        self.frames_emitted = 0

    def feed(self, chunk: bytes | str) -> list[str]:
        """Add a chunk and return the payloads of every completed frame.

        Args:
            chunk: Raw bytes or already-decoded text from the transport.

        Returns:
            Frame payloads in arrival order. Empty once ``[DONE]`` was seen.
        """
        if self.done:
            return []
        text = self._decoder.decode(chunk) if isinstance(chunk, bytes) else chunk
        self._buffer += text
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        return self._collect(lines)

    def flush(self) -> list[str]:
        """Emit a final unterminated line once the transport is exhausted."""
        if self.done:
            return []
        tail = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        return self._collect([tail]) if tail else []

    def _collect(self, lines: list[str]) -> list[str]:
        payloads = []
        for raw_line in lines:
            line = raw_line.rstrip("\r")
            if not line.startswith(DATA_PREFIX):
                if line.strip():
                    logger.debug("Skipping non-data line: %.50s", line)
                continue
            payload = line[len(DATA_PREFIX):].strip()
            if not payload:
                continue
            if payload == DONE_SENTINEL:
                logger.debug("Stream sentinel reached after %d frames", self.frames_emitted)
                self.done = True
                break
            self.frames_emitted += 1
            payloads.append(payload)
        return payloads


async def iter_frames(chunks: AsyncIterable[bytes | str]) -> AsyncIterator[str]:
    """Lazily split an async chunk stream into frame payloads.

    Stops at the ``[DONE]`` sentinel without draining the rest of the
    transport.

    Args:
        chunks: Raw transport chunks in arrival order.

    Yields:
        One payload string per ``data:`` frame.
    """
    splitter = FrameSplitter()
    async for chunk in chunks:
        for payload in splitter.feed(chunk):
            yield payload
        if splitter.done:
            return
    for payload in splitter.flush():
        yield payload
