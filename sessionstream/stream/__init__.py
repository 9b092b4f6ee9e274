"""Frame splitting and payload normalization for response streams."""

from sessionstream.stream.frames import DONE_SENTINEL, FrameSplitter, iter_frames
from sessionstream.stream.normalizer import (
    DEFAULT_EXTRACTORS,
    ChunkNormalizer,
    ExtractedReply,
)

__all__ = [
    "DONE_SENTINEL",
    "FrameSplitter",
    "iter_frames",
    "DEFAULT_EXTRACTORS",
    "ChunkNormalizer",
    "ExtractedReply",
]
