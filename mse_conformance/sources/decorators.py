"""
Decorators reshaping the delivery of a chunk source.

Every decorator exposes the same init/pull/seek contract as the source it
wraps and exclusively owns that source, so decorators chain linearly:

    chain = ResetInit(FixedAppendSize(SegmentSource(...), 65536))
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from mse_conformance.constants import CONFORMANCE_LOGGER_NAME, VERBOSE_LOG_LEVEL
from mse_conformance.errors import SourceExhaustedError

if TYPE_CHECKING:
    from mse_conformance.models.host import SourceBuffer
    from mse_conformance.sources.base import ChunkSource

LOGGER = logging.getLogger(f"{CONFORMANCE_LOGGER_NAME}.source")


class SourceDecorator:
    """Base decorator: delegates everything to the wrapped source."""

    def __init__(self, source: ChunkSource) -> None:
        """Initialize the decorator around source."""
        self.source = source

    @property
    def exhausted(self) -> bool:
        """Return whether the wrapped source is exhausted."""
        return self.source.exhausted

    async def init(self, time: float | None = None) -> bytes:
        """Return the initialization chunk of the wrapped source."""
        return await self.source.init(time)

    async def pull(self) -> bytes:
        """Return the next chunk of the wrapped source."""
        return await self.source.pull()

    def seek(self, time: float, buffer: SourceBuffer | None = None) -> None:
        """Seek the wrapped source."""
        self.source.seek(time, buffer)


class FixedAppendSize(SourceDecorator):
    """Re-buffer media chunks into chunks of (at most) a fixed size."""

    def __init__(self, source: ChunkSource, size: int) -> None:
        """Initialize the decorator; size is the maximum chunk length in bytes."""
        super().__init__(source)
        if size <= 0:
            msg = "size must be positive"
            raise ValueError(msg)
        self.size = size
        self._pending = bytearray()

    @property
    def exhausted(self) -> bool:
        """Return whether no more bytes can be pulled."""
        return not self._pending and self.source.exhausted

    async def init(self, time: float | None = None) -> bytes:
        """Drop pending bytes and return the initialization chunk."""
        self._pending.clear()
        return await self.source.init(time)

    async def pull(self) -> bytes:
        """Return exactly min(remaining, size) bytes."""
        while len(self._pending) < self.size and not self.source.exhausted:
            try:
                self._pending += await self.source.pull()
            except SourceExhaustedError:
                break
        if not self._pending:
            msg = "No more media chunks to re-buffer"
            raise SourceExhaustedError(msg)
        chunk = bytes(self._pending[: self.size])
        del self._pending[: self.size]
        if LOGGER.isEnabledFor(VERBOSE_LOG_LEVEL):
            LOGGER.log(
                VERBOSE_LOG_LEVEL,
                "FixedAppendSize: yielding %s bytes (%s pending)",
                len(chunk),
                len(self._pending),
            )
        return chunk

    def seek(self, time: float, buffer: SourceBuffer | None = None) -> None:
        """Drop pending bytes and seek the wrapped source."""
        self._pending.clear()
        self.source.seek(time, buffer)


class ResetInit(SourceDecorator):
    """Reset the wrapped source before every init, so repeated inits are idempotent."""

    async def init(self, time: float | None = None) -> bytes:
        """Seek the wrapped source to zero, then return its initialization chunk."""
        self.source.seek(0)
        return await self.source.init(time)


class SeekToSegment(SourceDecorator):
    """Start delivery at a given media chunk (instead of the first one)."""

    def __init__(self, source: ChunkSource, segment: int) -> None:
        """Initialize the decorator; segment is the 0-based chunk to start at."""
        super().__init__(source)
        if segment < 0:
            msg = "segment must not be negative"
            raise ValueError(msg)
        self.segment = segment

    async def init(self, time: float | None = None) -> bytes:
        """Return the initialization chunk and skip ahead to the configured chunk."""
        init_chunk = await self.source.init(time)
        for _ in range(self.segment):
            await self.source.pull()
        return init_chunk
