"""
Capabilities consumed from the host under test.

The host's segmented-buffer engine, its playback element, the frame-rate
sampler used by the rendering tests and the network are external to this
package. They are described here as protocols; the drivers only talk to a
host through these interfaces.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import IntEnum, StrEnum
from typing import Any, Protocol

from mse_conformance.models.time_ranges import TimeRanges

EventCallback = Callable[[str], None]
Unsubscribe = Callable[[], None]


class BufferEvent(StrEnum):
    """Events fired by a source buffer."""

    UPDATE_START = "updatestart"
    UPDATE = "update"
    UPDATE_END = "updateend"
    ERROR = "error"
    ABORT = "abort"


class MediaEvent(StrEnum):
    """Events fired by a media element."""

    TIME_UPDATE = "timeupdate"
    DURATION_CHANGE = "durationchange"
    LOADED_METADATA = "loadedmetadata"
    PLAY = "play"
    PAUSE = "pause"
    SEEKING = "seeking"
    SEEKED = "seeked"


class MediaSourceEvent(StrEnum):
    """Events fired by a media source."""

    SOURCE_OPEN = "sourceopen"
    SOURCE_ENDED = "sourceended"
    SOURCE_CLOSE = "sourceclose"


class ReadyState(IntEnum):
    """Ready state of a media element."""

    HAVE_NOTHING = 0
    HAVE_METADATA = 1
    HAVE_CURRENT_DATA = 2
    HAVE_FUTURE_DATA = 3
    HAVE_ENOUGH_DATA = 4


class EventTarget(Protocol):
    """Anything that fires named events."""

    def subscribe(self, callback: EventCallback, event: str) -> Unsubscribe:
        """
        Add a listener for event and return a function that removes it.

        Listeners may unsubscribe from within their own callback.
        """


class SourceBuffer(EventTarget, Protocol):
    """A host buffer accepting appended media data for one mimetype."""

    mimetype: str
    timestamp_offset: float

    @property
    def updating(self) -> bool:
        """Return whether an append/remove operation is in flight."""

    @property
    def buffered(self) -> TimeRanges:
        """Return the buffered time ranges."""

    def append_buffer(self, data: bytes) -> None:
        """Start appending data (raises InvalidStateError while updating)."""

    def abort(self) -> None:
        """Abort the current append and reset the segment parser."""

    def remove(self, start: float, end: float) -> None:
        """Start removing the media in [start, end)."""


class MediaSource(EventTarget, Protocol):
    """The host's media source object attached to a media element."""

    duration: float

    @property
    def ready_state(self) -> str:
        """Return open/ended/closed."""

    def add_source_buffer(self, mimetype: str) -> SourceBuffer:
        """Create a new source buffer for mimetype."""

    def end_of_stream(self) -> None:
        """Signal that no more data will be appended."""


class MediaElement(EventTarget, Protocol):
    """The host's playback element."""

    current_time: float

    @property
    def duration(self) -> float:
        """Return the duration (NaN when unknown)."""

    @property
    def paused(self) -> bool:
        """Return whether playback is paused."""

    @property
    def ready_state(self) -> ReadyState:
        """Return the ready state."""

    @property
    def video_width(self) -> int:
        """Return the intrinsic video width."""

    @property
    def video_height(self) -> int:
        """Return the intrinsic video height."""

    @property
    def decoded_frame_count(self) -> int | None:
        """Return the number of decoded frames (None if unsupported)."""

    def play(self) -> None:
        """Start or resume playback."""

    def pause(self) -> None:
        """Pause playback."""

    def detach(self) -> None:
        """Detach the media source (remove src and reload)."""


class FrameRateSampler(Protocol):
    """Samples the frame rate of a playing element and of its rendered output."""

    def play(self) -> None:
        """Start playback and sampling."""

    def video_frame_rate(self) -> float:
        """Return the decoded video frame rate (negative if nothing rendered)."""

    def render_frame_rate(self) -> float:
        """Return the rendered output frame rate (negative if nothing rendered)."""


@dataclass
class PlaybackContext:
    """An opened media element with its attached media source."""

    media: MediaElement
    media_source: MediaSource


class PlaybackHost(Protocol):
    """The host under test."""

    @property
    def supports_media_source(self) -> bool:
        """Return whether the host offers segmented media append at all."""

    def is_type_supported(self, mimetype: str) -> bool:
        """Return whether the host can play mimetype."""

    async def open(self) -> PlaybackContext:
        """Create a playback context; resolves once the source is open."""

    async def close(self, context: PlaybackContext) -> None:
        """Tear down a playback context."""

    def create_frame_rate_sampler(self, media: MediaElement) -> FrameRateSampler:
        """Return a frame-rate sampler bound to media."""


@dataclass(frozen=True)
class RangeResponse:
    """Result of a byte-range request."""

    data: bytes
    start: int
    total_size: int | None


class RangeFetcher(Protocol):
    """Network capability used to fetch (parts of) remote resources."""

    async def fetch(self, url: str, start: int = 0, end: int | None = None) -> RangeResponse:
        """Fetch bytes [start, end) of url (end None means until the end)."""

    async def fetch_json(self, url: str) -> Any:
        """Fetch and decode a json document."""
