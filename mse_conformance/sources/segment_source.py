"""Segment source: delivers a remote media file as init chunk + media chunks."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Self

from mse_conformance.constants import CONFORMANCE_LOGGER_NAME, DEFAULT_SEGMENT_SIZE, VERBOSE_LOG_LEVEL
from mse_conformance.errors import InvalidStateError, NetworkError, SourceExhaustedError
from mse_conformance.models.stream import SegmentIndex

if TYPE_CHECKING:
    from mse_conformance.models.host import RangeFetcher, SourceBuffer
    from mse_conformance.models.stream import StreamDescriptor

LOGGER = logging.getLogger(f"{CONFORMANCE_LOGGER_NAME}.source")


class SegmentSource:
    """
    Cursor over a remote media resource, fetched in byte ranges.

    The resource is described either by a precomputed segment index (one
    media chunk per segment) or by its size, duration and the boundary of
    its initialization chunk ("ratio mode": fixed size media chunks and a
    linear time to byte mapping).
    """

    def __init__(
        self,
        url: str,
        fetcher: RangeFetcher,
        *,
        index: SegmentIndex | None = None,
        index_url: str | None = None,
        size: int | None = None,
        duration: float | None = None,
        init_size: int | None = None,
        segment_size: int = DEFAULT_SEGMENT_SIZE,
    ) -> None:
        """Initialize the source; nothing is fetched before init()."""
        if segment_size <= 0:
            msg = "segment_size must be positive"
            raise ValueError(msg)
        self.url = url
        self.fetcher = fetcher
        self.index = index
        self.index_url = index_url
        self.size = size
        self.duration = duration
        self.init_size = init_size
        self.segment_size = segment_size
        self.offset = 0
        self.logger = LOGGER.getChild(url.rsplit("/", 1)[-1] or "resource")
        self._segment_idx = 0
        self._layout_loaded = False
        self._init_chunk: bytes | None = None
        self._pending_seek: float | None = None
        # until init() delivers it separately, the init chunk leads the first pull
        self._from_start = True

    @classmethod
    def for_stream(
        cls,
        stream: StreamDescriptor,
        fetcher: RangeFetcher,
        base_url: str | None = None,
        segment_size: int = DEFAULT_SEGMENT_SIZE,
    ) -> Self:
        """Create a source for a stream descriptor."""

        def _resolve(src: str) -> str:
            if base_url is None or "://" in src:
                return src
            return base_url.rstrip("/") + "/" + src.lstrip("/")

        return cls(
            _resolve(stream.src),
            fetcher,
            index_url=_resolve(stream.index_src) if stream.index_src else None,
            size=stream.size,
            duration=stream.duration,
            init_size=stream.init_size or None,
            segment_size=segment_size,
        )

    @property
    def init_end(self) -> int:
        """Return the byte boundary of the initialization chunk."""
        if self.index is not None:
            return self.index.init.end
        return self.init_size or 0

    @property
    def exhausted(self) -> bool:
        """Return whether the cursor reached the end of the resource."""
        if not self._layout_loaded:
            return False
        if self.index is not None:
            return self._segment_idx >= len(self.index.segments)
        return self.size is not None and self.offset >= self.size

    async def init(self, time: float | None = None) -> bytes:
        """
        Return the initialization chunk and position the cursor at time.

        The init chunk is fetched once and cached; a seek issued before the
        first init is applied when no explicit time is given.

        :param time: Logical time (seconds) to position the cursor at.
        """
        await self._load_layout()
        if self._init_chunk is None:
            resp = await self.fetcher.fetch(self.url, 0, self.init_end)
            if len(resp.data) != self.init_end:
                msg = (
                    f"Short read for init chunk of {self.url}: "
                    f"expected {self.init_end} bytes, got {len(resp.data)}"
                )
                raise NetworkError(msg)
            self._init_chunk = resp.data
            if self.size is None and resp.total_size is not None:
                self.size = resp.total_size
        if time is None:
            time = self._pending_seek or 0.0
        self._pending_seek = None
        self._from_start = False
        self._position(time)
        self.logger.debug("init: %s bytes, cursor at %s (t=%s)", self.init_end, self.offset, time)
        return self._init_chunk

    async def pull(self) -> bytes:
        """
        Return the next media chunk and advance the cursor past it.

        A source pulled from the start without a preceding init() delivers
        the initialization chunk as part of its first media chunk.
        """
        if not self._layout_loaded:
            await self._load_layout()
            self._position(self._pending_seek or 0.0)
            self._pending_seek = None
        if self.exhausted:
            msg = f"No more media chunks in {self.url} (offset {self.offset})"
            raise SourceExhaustedError(msg)
        if self.index is not None:
            segment = self.index.segments[self._segment_idx]
            start, end = segment.offset, segment.end
        else:
            start = self.offset
            end = start + self.segment_size
            if self.size is not None:
                end = min(end, self.size)
        if self._from_start:
            start = 0
        resp = await self.fetcher.fetch(self.url, start, end)
        if not resp.data:
            msg = f"Empty response for {self.url} at offset {start}"
            raise NetworkError(msg)
        self._from_start = False
        if self.size is None and resp.total_size is not None:
            self.size = resp.total_size
        if self.index is not None:
            self._segment_idx += 1
        self.offset = start + len(resp.data)
        if self.logger.isEnabledFor(VERBOSE_LOG_LEVEL):
            self.logger.log(
                VERBOSE_LOG_LEVEL, "pull: %s bytes at %s-%s", len(resp.data), start, self.offset
            )
        return resp.data

    def seek(self, time: float, buffer: SourceBuffer | None = None) -> None:
        """
        Reset the cursor to the chunk that holds time.

        When a buffer is given, its in-flight append is aborted first so
        stale parser state cannot corrupt the appends that follow.

        :param time: Logical time (seconds).
        :param buffer: Optional source buffer to abort.
        """
        if buffer is not None:
            buffer.abort()
            if buffer.updating:
                msg = f"Source buffer for {buffer.mimetype} still updating after abort"
                raise InvalidStateError(msg)
        self._from_start = time <= 0
        if not self._layout_loaded:
            self._pending_seek = time
            return
        self._position(time)
        self.logger.debug("seek to %s: cursor at %s", time, self.offset)

    async def _load_layout(self) -> None:
        """Load the segment index (if any) and validate the resource layout."""
        if self._layout_loaded:
            return
        if self.index is None and self.index_url is not None:
            self.index = SegmentIndex.from_dict(await self.fetcher.fetch_json(self.index_url))
        if self.index is not None:
            if self.index.total_size is not None:
                self.size = self.index.total_size
            elif self.index.segments:
                self.size = self.index.segments[-1].end
        elif not self.init_size:
            msg = f"Unknown init chunk boundary for {self.url}"
            raise ValueError(msg)
        self._layout_loaded = True

    def _position(self, time: float) -> None:
        """Move the cursor to the start of the chunk that holds time."""
        if self.index is not None:
            self._segment_idx = self.index.segment_for_time(time) if time > 0 else 0
            if self.index.segments:
                self.offset = self.index.segments[self._segment_idx].offset
            else:
                self.offset = self.init_end
            return
        init_end = self.init_end
        if time <= 0 or not self.duration or self.size is None:
            self.offset = init_end
            return
        media_bytes = self.size - init_end
        ratio = min(time / self.duration, 1.0)
        raw_offset = int(media_bytes * ratio)
        self.offset = init_end + (raw_offset // self.segment_size) * self.segment_size
