"""Chained segment sources."""

from .base import ChunkSource
from .decorators import FixedAppendSize, ResetInit, SeekToSegment, SourceDecorator
from .segment_source import SegmentSource

__all__ = [
    "ChunkSource",
    "FixedAppendSize",
    "ResetInit",
    "SeekToSegment",
    "SegmentSource",
    "SourceDecorator",
]
