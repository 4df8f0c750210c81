"""
Append driver: feeds chunks from a source into a host source buffer.

Every operation issues at most one in-flight append or remove per buffer
and resolves once the host reported completion of that operation.
"""

from __future__ import annotations

import asyncio
import logging
import math
import weakref
from enum import StrEnum
from typing import TYPE_CHECKING

from mse_conformance.constants import CONFORMANCE_LOGGER_NAME, VERBOSE_LOG_LEVEL
from mse_conformance.errors import (
    InvalidStateError,
    QuotaExceededError,
    SourceExhaustedError,
    TestFailure,
    TestTimeout,
)
from mse_conformance.helpers.events import EventWaiter
from mse_conformance.models.host import BufferEvent

if TYPE_CHECKING:
    from mse_conformance.models.host import MediaElement, MediaSource, SourceBuffer
    from mse_conformance.models.test_case import TestResult
    from mse_conformance.sources.base import ChunkSource

LOGGER = logging.getLogger(f"{CONFORMANCE_LOGGER_NAME}.append")

DASH_MAX_ITERATIONS = 300
DASH_OVERFLOW_OFFSET = 1.0


class BufferState(StrEnum):
    """Driver-side state of a source buffer."""

    IDLE = "idle"
    APPENDING = "appending"
    REMOVING = "removing"


class AppendTracker:
    """Keeps track of the operation in flight on each source buffer."""

    def __init__(self) -> None:
        """Initialize an empty tracker."""
        self._states: weakref.WeakKeyDictionary[SourceBuffer, BufferState] = (
            weakref.WeakKeyDictionary()
        )

    def state(self, buffer: SourceBuffer) -> BufferState:
        """Return the state of buffer."""
        return self._states.get(buffer, BufferState.IDLE)

    def begin(self, buffer: SourceBuffer, state: BufferState) -> None:
        """Mark an operation as started on buffer."""
        if self.state(buffer) != BufferState.IDLE or buffer.updating:
            msg = f"Source buffer for {buffer.mimetype} is busy ({self.state(buffer)})"
            raise InvalidStateError(msg)
        self._states[buffer] = state

    def end(self, buffer: SourceBuffer) -> None:
        """Mark the operation on buffer as finished."""
        self._states.pop(buffer, None)


TRACKER = AppendTracker()


async def _run_operation(buffer: SourceBuffer, state: BufferState, operation: str, *args) -> str:
    """Issue one buffer operation and wait for its completion event."""
    TRACKER.begin(buffer, state)
    try:
        with EventWaiter(buffer, (BufferEvent.UPDATE_END, BufferEvent.ERROR)) as waiter:
            getattr(buffer, operation)(*args)
            return await waiter.wait()
    finally:
        TRACKER.end(buffer)


async def append_buffer(buffer: SourceBuffer, data: bytes) -> None:
    """
    Append data to buffer and wait until the host finished processing it.

    Raises InvalidStateError when an operation is still in flight on the
    buffer and TestFailure when the host rejects the data.
    """
    event = await _run_operation(buffer, BufferState.APPENDING, "append_buffer", data)
    if event == BufferEvent.ERROR:
        msg = f"Error while appending {len(data)} bytes to {buffer.mimetype} source buffer"
        raise TestFailure(msg)
    if LOGGER.isEnabledFor(VERBOSE_LOG_LEVEL):
        LOGGER.log(
            VERBOSE_LOG_LEVEL, "Appended %s bytes to %s: %s", len(data), buffer.mimetype, buffer.buffered
        )


async def append_init(
    result: TestResult,
    media: MediaElement,
    buffer: SourceBuffer,
    source: ChunkSource,
    time: float = 0.0,
) -> None:
    """Append the initialization chunk of source (positioned at time) to buffer."""
    init_chunk = await source.init(time)
    await append_buffer(buffer, init_chunk)
    result.logger.debug(
        "Appended %s byte init chunk to %s (current time %s)",
        len(init_chunk),
        buffer.mimetype,
        media.current_time,
    )


async def append_until(
    result: TestResult,
    media: MediaElement,
    buffer: SourceBuffer | None,
    source: ChunkSource,
    target: float,
    *,
    max_iterations: int | None = None,
) -> None:
    """
    Append media chunks until the first buffered range reaches target.

    :param result: Result handle of the running test.
    :param media: The media element the buffer feeds.
    :param buffer: The source buffer (None is a no-op).
    :param source: The chunk source to pull from.
    :param target: Time (seconds) the first buffered range must reach.
    :param max_iterations: Append cap; defaults to the cap of the result.
    """
    if buffer is None:
        return
    if max_iterations is None:
        max_iterations = result.append_iteration_cap

    def _reached() -> bool:
        ranges = buffer.buffered
        return len(ranges) > 0 and ranges.end(0) >= target

    for _ in range(max_iterations):
        if _reached():
            result.logger.debug(
                "%s buffered up to %s (target %s, current time %s)",
                buffer.mimetype,
                buffer.buffered.end(0),
                target,
                media.current_time,
            )
            return
        try:
            chunk = await source.pull()
        except SourceExhaustedError as err:
            msg = (
                f"Source for {buffer.mimetype} ran out of data before reaching "
                f"{target}s (buffered: {buffer.buffered})"
            )
            raise TestFailure(msg) from err
        await append_buffer(buffer, chunk)
    if _reached():
        return
    msg = (
        f"Gave up appending to {buffer.mimetype} after {max_iterations} chunks "
        f"(target {target}s, buffered: {buffer.buffered})"
    )
    raise TestTimeout(msg)


def safe_append(buffer: SourceBuffer, data: bytes) -> bool:
    """
    Start an append without waiting for it, tolerating a busy buffer.

    Returns False when the host refused the append because the buffer was
    still updating. Any other error propagates.
    """
    try:
        buffer.append_buffer(data)
    except InvalidStateError as err:
        LOGGER.debug("Append of %s bytes to %s refused: %s", len(data), buffer.mimetype, err)
        return False
    return True


async def set_duration(
    result: TestResult,
    duration: float,
    media_source: MediaSource,
    buffers: SourceBuffer | list[SourceBuffer] | tuple[SourceBuffer, ...],
) -> None:
    """
    Change the duration of media_source, truncating the buffers when it shrinks.

    Resolves only after every listed buffer completed its removal.
    """
    if not isinstance(buffers, list | tuple):
        buffers = [buffers]
    for buffer in buffers:
        if buffer.updating:
            msg = f"Cannot set duration while {buffer.mimetype} source buffer is updating"
            raise TestFailure(msg)
    current = media_source.duration
    if not math.isnan(current) and duration < current:

        async def _truncate(buffer: SourceBuffer) -> None:
            event = await _run_operation(buffer, BufferState.REMOVING, "remove", duration, current)
            if event == BufferEvent.ERROR:
                msg = f"Error while truncating {buffer.mimetype} source buffer to {duration}s"
                raise TestFailure(msg)

        await asyncio.gather(*(_truncate(buffer) for buffer in buffers))
    media_source.duration = duration
    result.logger.debug("Duration set to %s (was %s)", duration, current)


async def fill_until_full(
    result: TestResult,
    buffer: SourceBuffer,
    data: bytes,
    duration: float,
    *,
    max_iterations: int = DASH_MAX_ITERATIONS,
    overflow_offset: float = DASH_OVERFLOW_OFFSET,
) -> int:
    """
    Append the same media over and over at increasing offsets until the buffer is full.

    The buffer counts as full once the host evicted old data (the expected end
    lies beyond the buffered end) or refused an append with QuotaExceededError.
    Returns the number of iterations needed.

    :param result: Result handle of the running test.
    :param buffer: The source buffer to fill.
    :param data: A self-contained media fragment (init + media chunks).
    :param duration: Duration (seconds) of the media in data.
    """
    expected_time = 0.0
    iterations = 0
    await append_buffer(buffer, data)
    while True:
        expected_time += duration
        buffer.timestamp_offset = expected_time
        iterations += 1
        if iterations > max_iterations:
            msg = "Failed to fill up source buffer."
            raise TestFailure(msg)
        ranges = buffer.buffered
        if len(ranges) and expected_time > ranges.end(0) + overflow_offset:
            result.logger.debug("Buffer evicted data after %s appends", iterations)
            return iterations
        try:
            await append_buffer(buffer, data)
        except QuotaExceededError:
            result.logger.debug("Quota exceeded after %s appends", iterations)
            return iterations
