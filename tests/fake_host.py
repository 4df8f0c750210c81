"""
In-process fake of a playback host, used to exercise the drivers and suites.

Media uses a toy container: an INIT box followed by SEGM boxes, each box
being a 4 byte tag, a 4 byte big endian payload length and the payload. A
SEGM payload starts with its start time and duration (two doubles).
"""

from __future__ import annotations

import asyncio
import math
import struct
from collections.abc import Callable, Sequence
from typing import Any

from mse_conformance.errors import InvalidStateError, NetworkError, QuotaExceededError
from mse_conformance.models.host import PlaybackContext, RangeResponse, ReadyState
from mse_conformance.models.stream import MediaKind, StreamDescriptor
from mse_conformance.models.time_ranges import TimeRanges

BASE_URL = "http://media.test/"

BOX_HEADER = struct.Struct(">4sI")
SEGMENT_HEADER = struct.Struct(">dd")
# ranges closer than this are reported as one (less than a frame)
MERGE_TOLERANCE = 0.05
# playback skips a gap this small in front of the position
GAP_JUMP = 0.1
VIDEO_WIDTH = 640
VIDEO_HEIGHT = 360

# how a source buffer completes appends: on the next loop iteration, within
# the append call, or on the next iteration while accepting overlapping appends
APPEND_DEFERRED = "deferred"
APPEND_SYNC = "sync"
APPEND_OVERLAPPING = "overlapping"


def make_box(tag: bytes, payload: bytes) -> bytes:
    """Return a toy container box."""
    return BOX_HEADER.pack(tag, len(payload)) + payload


def build_media(
    durations: Sequence[float],
    payload_size: int | Sequence[int] = 1000,
    init_size: int = 40,
) -> tuple[bytes, dict[str, Any]]:
    """
    Return a toy media file made of segments with the given durations, and its index.

    payload_size is the filler length of every segment, or one length per segment.
    """
    if isinstance(payload_size, int):
        payload_size = [payload_size] * len(durations)
    init = make_box(b"INIT", b"\x00" * (init_size - BOX_HEADER.size))
    data = bytearray(init)
    segments = []
    time = 0.0
    for duration, filler in zip(durations, payload_size, strict=True):
        box = make_box(b"SEGM", SEGMENT_HEADER.pack(time, duration) + b"\x00" * filler)
        segments.append({"offset": len(data), "size": len(box), "time": time, "duration": duration})
        data += box
        time += duration
    index = {
        "init": {"offset": 0, "size": len(init)},
        "segments": segments,
        "total_size": len(data),
    }
    return bytes(data), index


class FakeEventTarget:
    """Minimal event target."""

    def __init__(self) -> None:
        """Initialize without listeners."""
        self._listeners: dict[str, list[Callable[[str], None]]] = {}
        self.fired: list[str] = []

    def subscribe(self, callback: Callable[[str], None], event: str) -> Callable[[], None]:
        """Add a listener and return its remover."""
        self._listeners.setdefault(event, []).append(callback)

        def remove() -> None:
            if callback in self._listeners.get(event, []):
                self._listeners[event].remove(callback)

        return remove

    def listener_count(self, event: str) -> int:
        """Return the number of listeners for event."""
        return len(self._listeners.get(event, []))

    def fire(self, event: str) -> None:
        """Invoke the listeners of event."""
        self.fired.append(event)
        for callback in list(self._listeners.get(event, [])):
            callback(event)


class FakeSourceBuffer(FakeEventTarget):
    """Source buffer parsing the toy container."""

    def __init__(
        self,
        media_source: FakeMediaSource,
        mimetype: str,
        quota_bytes: int | None = None,
        append_mode: str = APPEND_DEFERRED,
    ) -> None:
        """Initialize an empty buffer."""
        super().__init__()
        self.media_source = media_source
        self.mimetype = mimetype
        self.timestamp_offset = 0.0
        self.quota_bytes = quota_bytes
        self.append_mode = append_mode
        # seconds before a removal completes (0 is the next loop iteration)
        self.remove_delay = 0.0
        self.has_init = False
        self.appended_bytes = 0
        self.append_calls = 0
        self._updating = False
        self._ranges: list[list[float]] = []
        self._pending = bytearray()
        self._handle: asyncio.Handle | None = None

    @property
    def updating(self) -> bool:
        """Return whether an operation is in flight."""
        return self._updating

    @property
    def buffered(self) -> TimeRanges:
        """Return the buffered ranges."""
        return TimeRanges.from_pairs((start, end) for start, end in self._ranges)

    def append_buffer(self, data: bytes) -> None:
        """Queue data for parsing."""
        if self._updating and self.append_mode != APPEND_OVERLAPPING:
            msg = f"{self.mimetype} source buffer is updating"
            raise InvalidStateError(msg)
        if self.quota_bytes is not None and self.appended_bytes + len(data) > self.quota_bytes:
            msg = f"{self.mimetype} source buffer is full"
            raise QuotaExceededError(msg)
        self.append_calls += 1
        self._updating = True
        self.fire("updatestart")
        if self.append_mode == APPEND_SYNC:
            self._finish_append(bytes(data))
            return
        self._handle = asyncio.get_running_loop().call_soon(self._finish_append, bytes(data))

    def abort(self) -> None:
        """Abort the pending operation and reset the parser."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
            self._updating = False
            self.fire("abort")
            self.fire("updateend")
        self._pending.clear()

    def remove(self, start: float, end: float) -> None:
        """Queue removal of [start, end)."""
        if self._updating:
            msg = f"{self.mimetype} source buffer is updating"
            raise InvalidStateError(msg)
        self._updating = True
        self.fire("updatestart")
        loop = asyncio.get_running_loop()
        if self.remove_delay:
            self._handle = loop.call_later(self.remove_delay, self._finish_remove, start, end)
        else:
            self._handle = loop.call_soon(self._finish_remove, start, end)

    def _finish_append(self, data: bytes) -> None:
        self._handle = None
        self.appended_bytes += len(data)
        self._pending += data
        try:
            self._parse()
        except ValueError:
            self._pending.clear()
            self._updating = False
            self.fire("error")
            self.fire("updateend")
            return
        self._updating = False
        self.media_source.on_buffer_changed()
        self.fire("update")
        self.fire("updateend")

    def _finish_remove(self, start: float, end: float) -> None:
        self._handle = None
        kept: list[list[float]] = []
        for range_start, range_end in self._ranges:
            if range_end <= start or range_start >= end:
                kept.append([range_start, range_end])
                continue
            if range_start < start:
                kept.append([range_start, start])
            if range_end > end:
                kept.append([end, range_end])
        self._ranges = kept
        self._updating = False
        self.fire("update")
        self.fire("updateend")

    def _parse(self) -> None:
        while len(self._pending) >= BOX_HEADER.size:
            tag, size = BOX_HEADER.unpack_from(self._pending)
            if len(self._pending) < BOX_HEADER.size + size:
                return
            payload = bytes(self._pending[BOX_HEADER.size : BOX_HEADER.size + size])
            del self._pending[: BOX_HEADER.size + size]
            if tag == b"INIT":
                if not self.has_init:
                    self.has_init = True
                    self.media_source.on_init_segment()
            elif tag == b"SEGM":
                if not self.has_init:
                    msg = "media segment before init segment"
                    raise ValueError(msg)
                start, duration = SEGMENT_HEADER.unpack_from(payload)
                self._add_range(start + self.timestamp_offset, start + self.timestamp_offset + duration)
            else:
                msg = f"unknown box {tag!r}"
                raise ValueError(msg)

    def _add_range(self, start: float, end: float) -> None:
        merged: list[list[float]] = []
        for range_start, range_end in sorted([*self._ranges, [start, end]]):
            if merged and range_start <= merged[-1][1] + MERGE_TOLERANCE:
                merged[-1][1] = max(merged[-1][1], range_end)
            else:
                merged.append([range_start, range_end])
        self._ranges = merged


class FakeMediaSource(FakeEventTarget):
    """Media source attached to a fake media element."""

    def __init__(self, media: FakeMediaElement, host: FakeHost) -> None:
        """Initialize an open media source."""
        super().__init__()
        self.media = media
        self.host = host
        self.source_buffers: list[FakeSourceBuffer] = []
        self._duration = math.nan
        self._ready_state = "open"

    @property
    def duration(self) -> float:
        """Return the duration."""
        return self._duration

    @duration.setter
    def duration(self, value: float) -> None:
        if value == self._duration:
            return
        self._duration = value
        self.media.fire("durationchange")

    @property
    def ready_state(self) -> str:
        """Return open/ended/closed."""
        return self._ready_state

    def add_source_buffer(self, mimetype: str) -> FakeSourceBuffer:
        """Create a source buffer."""
        if not self.host.is_type_supported(mimetype):
            msg = f"Unsupported type {mimetype}"
            raise ValueError(msg)
        buffer = FakeSourceBuffer(self, mimetype, self.host.quota_bytes, self.host.append_mode)
        self.source_buffers.append(buffer)
        return buffer

    def end_of_stream(self) -> None:
        """Set the duration to the highest buffered end and end the stream."""
        if (highest := self.highest_end()) is not None:
            self.duration = highest
        self._ready_state = "ended"
        asyncio.get_running_loop().call_soon(self.fire, "sourceended")

    def close(self) -> None:
        """Detach from the media element."""
        self._ready_state = "closed"
        self._duration = math.nan
        asyncio.get_running_loop().call_soon(self.fire, "sourceclose")

    def highest_end(self) -> float | None:
        """Return the highest buffered end over all buffers."""
        ends = [b.buffered.end(len(b.buffered) - 1) for b in self.source_buffers if len(b.buffered)]
        return max(ends) if ends else None

    def on_init_segment(self) -> None:
        """Signal metadata once every buffer received an init segment."""
        if all(buffer.has_init for buffer in self.source_buffers):
            self.media.on_metadata()

    def on_buffer_changed(self) -> None:
        """Grow the duration to cover the buffered data."""
        highest = self.highest_end()
        if highest is not None and (math.isnan(self._duration) or highest > self._duration):
            self.duration = highest


class FakeMediaElement(FakeEventTarget):
    """Media element playing faster than real time while its buffers allow it."""

    def __init__(self, host: FakeHost) -> None:
        """Initialize a paused element."""
        super().__init__()
        self.host = host
        self.media_source: FakeMediaSource | None = None
        self._position = 0.0
        self._paused = True
        self._has_metadata = False
        self._ticker: asyncio.Task[None] | None = None

    @property
    def current_time(self) -> float:
        """Return the playback position."""
        return self._position

    @current_time.setter
    def current_time(self, value: float) -> None:
        self._position = float(value)
        self.fire("seeking")
        self.fire("timeupdate")
        asyncio.get_running_loop().call_soon(self.fire, "seeked")

    @property
    def duration(self) -> float:
        """Return the duration (NaN before metadata)."""
        if not self._has_metadata or self.media_source is None:
            return math.nan
        return self.media_source.duration

    @property
    def paused(self) -> bool:
        """Return whether playback is paused."""
        return self._paused

    @property
    def ready_state(self) -> ReadyState:
        """Return the ready state."""
        if not self._has_metadata:
            return ReadyState.HAVE_NOTHING
        if self.playable_end() is None:
            return ReadyState.HAVE_METADATA
        return ReadyState.HAVE_ENOUGH_DATA

    @property
    def video_width(self) -> int:
        """Return the video width."""
        return VIDEO_WIDTH if self._has_metadata and self._has_video() else 0

    @property
    def video_height(self) -> int:
        """Return the video height."""
        return VIDEO_HEIGHT if self._has_metadata and self._has_video() else 0

    @property
    def decoded_frame_count(self) -> int | None:
        """Return the decoded frame count."""
        return self.host.decoded_frame_count

    def play(self) -> None:
        """Start playback."""
        if not self._paused:
            return
        self._paused = False
        loop = asyncio.get_running_loop()
        loop.call_soon(self.fire, "play")
        if self._ticker is None or self._ticker.done():
            self._ticker = loop.create_task(self._tick())

    def pause(self) -> None:
        """Pause playback."""
        if self._paused:
            return
        self._paused = True
        asyncio.get_running_loop().call_soon(self.fire, "pause")

    def detach(self) -> None:
        """Detach the media source."""
        self.stop()
        self._has_metadata = False
        if self.media_source is not None:
            self.media_source.close()

    def stop(self) -> None:
        """Stop playback and the ticker."""
        self._paused = True
        if self._ticker is not None:
            self._ticker.cancel()

    def on_metadata(self) -> None:
        """Switch to HAVE_METADATA."""
        if self._has_metadata:
            return
        self._has_metadata = True
        asyncio.get_running_loop().call_soon(self.fire, "loadedmetadata")

    def playable_end(self) -> float | None:
        """Return up to where playback can proceed from the current position."""
        if self.media_source is None or not self.media_source.source_buffers:
            return None
        ends = []
        for buffer in self.media_source.source_buffers:
            # video may underflow for a while, audio may not
            allowance = self.host.video_underflow if buffer.mimetype.startswith("video/") else 0.0
            for start, end in buffer.buffered:
                if start - GAP_JUMP <= self._position <= end + allowance:
                    ends.append(end + allowance)
                    break
            else:
                return None
        return min(ends)

    def _has_video(self) -> bool:
        return self.media_source is not None and any(
            buffer.mimetype.startswith("video/") for buffer in self.media_source.source_buffers
        )

    async def _tick(self) -> None:
        while not self._paused:
            await asyncio.sleep(self.host.tick)
            if self._paused or not self._has_metadata:
                continue
            limit = self.playable_end()
            if limit is None or limit <= self._position:
                continue
            self._position = min(self._position + self.host.tick * self.host.speed, limit)
            self.fire("timeupdate")


class FakeFrameRateSampler:
    """Frame-rate sampler reporting fixed rates."""

    def __init__(self, media: FakeMediaElement, video_rate: float, render_rate: float) -> None:
        """Initialize the sampler."""
        self.media = media
        self.video_rate = video_rate
        self.render_rate = render_rate

    def play(self) -> None:
        """Start playback."""
        self.media.play()

    def video_frame_rate(self) -> float:
        """Return the video frame rate."""
        return self.video_rate

    def render_frame_rate(self) -> float:
        """Return the render frame rate."""
        return self.render_rate


class FakeHost:
    """Fake playback host."""

    def __init__(
        self,
        *,
        supports_media_source: bool = True,
        supported_types: set[str] | None = None,
        speed: float = 50.0,
        tick: float = 0.005,
        quota_bytes: int | None = None,
        decoded_frame_count: int | None = 0,
        video_frame_rate: float = 30.0,
        render_frame_rate: float = 30.0,
        video_underflow: float = 0.0,
        append_mode: str = APPEND_DEFERRED,
    ) -> None:
        """Initialize the host."""
        self.append_mode = append_mode
        self._supports_media_source = supports_media_source
        self.video_underflow = video_underflow
        self.supported_types = supported_types
        self.speed = speed
        self.tick = tick
        self.quota_bytes = quota_bytes
        self.decoded_frame_count = decoded_frame_count
        self.video_frame_rate = video_frame_rate
        self.render_frame_rate = render_frame_rate
        self.opened: list[PlaybackContext] = []
        self.closed: list[PlaybackContext] = []

    @property
    def supports_media_source(self) -> bool:
        """Return whether media source is supported."""
        return self._supports_media_source

    def is_type_supported(self, mimetype: str) -> bool:
        """Return whether mimetype is supported."""
        return self.supported_types is None or mimetype in self.supported_types

    async def open(self) -> PlaybackContext:
        """Create a media element with an open media source."""
        media = FakeMediaElement(self)
        media.media_source = FakeMediaSource(media, self)
        context = PlaybackContext(media=media, media_source=media.media_source)
        self.opened.append(context)
        return context

    async def close(self, context: PlaybackContext) -> None:
        """Tear down a context."""
        context.media.stop()
        self.closed.append(context)

    def create_frame_rate_sampler(self, media: FakeMediaElement) -> FakeFrameRateSampler:
        """Return a sampler with the configured rates."""
        return FakeFrameRateSampler(media, self.video_frame_rate, self.render_frame_rate)


class MemoryFetcher:
    """Range fetcher serving in-memory resources."""

    def __init__(self, base_url: str = BASE_URL) -> None:
        """Initialize without resources."""
        self.base_url = base_url
        self.resources: dict[str, Any] = {}
        self.requests: list[tuple[str, int, int | None]] = []

    def add_stream(
        self,
        name: str,
        durations: Sequence[float],
        *,
        codec: str = "VP9",
        mimetype: str = 'video/webm; codecs="vp9"',
        mediatype: MediaKind = MediaKind.VIDEO,
        payload_size: int = 1000,
        with_index: bool = True,
        properties: dict[str, Any] | None = None,
    ) -> StreamDescriptor:
        """Register a toy media file and return its descriptor."""
        data, index = build_media(durations, payload_size)
        src = f"{name}.bin"
        self.resources[self.base_url + src] = data
        index_src = None
        if with_index:
            index_src = f"{name}.json"
            self.resources[self.base_url + index_src] = index
        return StreamDescriptor(
            name=name,
            codec=codec,
            mimetype=mimetype,
            mediatype=mediatype,
            src=src,
            size=len(data),
            duration=sum(durations),
            init_size=index["init"]["size"],
            index_src=index_src,
            properties=properties or {},
        )

    def add_catalog_stream(self, stream: StreamDescriptor, segments: int | None = None) -> None:
        """Register a toy media file (and its index) matching the size and duration of stream."""
        count = segments or max(1, round(stream.duration))
        init_size = stream.init_size or 40
        overhead = BOX_HEADER.size + SEGMENT_HEADER.size
        box_size, remainder = divmod(stream.size - init_size, count)
        fillers = [box_size - overhead] * count
        fillers[-1] += remainder
        data, index = build_media([stream.duration / count] * count, fillers, init_size)
        self.resources[self.base_url + stream.src] = data
        if stream.index_src:
            self.resources[self.base_url + stream.index_src] = index

    async def fetch(self, url: str, start: int = 0, end: int | None = None) -> RangeResponse:
        """Return bytes [start, end) of a resource."""
        self.requests.append((url, start, end))
        data = self.resources.get(url)
        if not isinstance(data, bytes):
            msg = f"404 for {url}"
            raise NetworkError(msg)
        await asyncio.sleep(0)
        return RangeResponse(data=data[start:end], start=start, total_size=len(data))

    async def fetch_json(self, url: str) -> Any:
        """Return a json resource."""
        data = self.resources.get(url)
        if data is None or isinstance(data, bytes):
            msg = f"404 for {url}"
            raise NetworkError(msg)
        await asyncio.sleep(0)
        return data
