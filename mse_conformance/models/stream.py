"""Models describing the media streams used as test fixtures."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from mashumaro import DataClassDictMixin


class MediaKind(StrEnum):
    """Kind of media carried by a stream."""

    AUDIO = "audio"
    VIDEO = "video"


@dataclass(frozen=True)
class StreamDescriptor(DataClassDictMixin):
    """Immutable description of a remote media file used by the tests."""

    name: str
    codec: str
    mimetype: str
    mediatype: MediaKind
    src: str
    size: int
    duration: float
    # byte boundary of the initialization chunk, used when no index is available
    init_size: int = 0
    index_src: str | None = None
    properties: dict[str, Any] = field(default_factory=dict)

    def get(self, key: str | int, default: Any = None) -> Any:
        """Return a named expected value for this stream (keys are compared as str)."""
        return self.properties.get(str(key), default)

    @property
    def capital_mediatype(self) -> str:
        """Return the media type with a capital first letter (Audio/Video)."""
        return self.mediatype.value.capitalize()

    def __repr__(self) -> str:
        """Return a short representation."""
        return f"<StreamDescriptor {self.codec} {self.mediatype.value} {self.name}>"


@dataclass(frozen=True)
class ByteRange(DataClassDictMixin):
    """A range of bytes within a resource."""

    offset: int
    size: int

    @property
    def end(self) -> int:
        """Return the (exclusive) end offset."""
        return self.offset + self.size


@dataclass(frozen=True)
class SegmentEntry(DataClassDictMixin):
    """A single media segment within a resource."""

    offset: int
    size: int
    time: float
    duration: float

    @property
    def end(self) -> int:
        """Return the (exclusive) end offset."""
        return self.offset + self.size


@dataclass(frozen=True)
class SegmentIndex(DataClassDictMixin):
    """Precomputed segment table of a media resource."""

    init: ByteRange
    segments: list[SegmentEntry] = field(default_factory=list)
    total_size: int | None = None

    def segment_for_time(self, time: float) -> int:
        """Return the index of the last segment starting at or before time."""
        result = 0
        for idx, segment in enumerate(self.segments):
            if segment.time > time:
                break
            result = idx
        return result
