"""Playback driver: waits on the media element and keeps its buffers fed while playing."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from mse_conformance.constants import (
    CONFORMANCE_LOGGER_NAME,
    PLAYBACK_GAP_TOLERANCE,
    VERBOSE_LOG_LEVEL,
)
from mse_conformance.drivers.append import append_buffer
from mse_conformance.errors import SourceExhaustedError, TestTimeout
from mse_conformance.helpers.events import EventWaiter, wait_for_event
from mse_conformance.models.host import MediaEvent, ReadyState

if TYPE_CHECKING:
    from mse_conformance.models.host import MediaElement, SourceBuffer
    from mse_conformance.models.test_case import TestResult
    from mse_conformance.sources.base import ChunkSource

LOGGER = logging.getLogger(f"{CONFORMANCE_LOGGER_NAME}.playback")


async def wait_for_metadata(media: MediaElement) -> None:
    """Return once the media element loaded its metadata."""
    with EventWaiter(media, MediaEvent.LOADED_METADATA) as waiter:
        if media.ready_state >= ReadyState.HAVE_METADATA:
            return
        await waiter.wait()


async def wait_until(media: MediaElement, target: float) -> None:
    """
    Return once the playback position of media reached target.

    There is no timeout here: a stalled element is caught by the per-test timeout.
    """
    while media.current_time < target:
        await wait_for_event(media, MediaEvent.TIME_UPDATE)
    LOGGER.debug("Playback reached %s (target %s)", media.current_time, target)


async def _top_up(
    media: MediaElement, buffer: SourceBuffer, source: ChunkSource, data_ahead: float
) -> None:
    """
    Append chunks until the range holding the current time extends data_ahead seconds.

    A range starting just after the current time (priming, composition offset)
    is treated as holding it.
    """
    while not source.exhausted:
        current_time = media.current_time
        end = buffer.buffered.end_containing(current_time, PLAYBACK_GAP_TOLERANCE)
        if end is not None and end >= current_time + data_ahead:
            return
        try:
            chunk = await source.pull()
        except SourceExhaustedError:
            return
        await append_buffer(buffer, chunk)
        if LOGGER.isEnabledFor(VERBOSE_LOG_LEVEL):
            LOGGER.log(
                VERBOSE_LOG_LEVEL,
                "Topped up %s at %s: %s",
                buffer.mimetype,
                current_time,
                buffer.buffered,
            )


async def play_through(
    result: TestResult,
    media: MediaElement,
    data_ahead: float,
    until_time: float,
    buffer: SourceBuffer,
    source: ChunkSource,
    buffer2: SourceBuffer | None = None,
    source2: ChunkSource | None = None,
    *,
    ceiling: float | None = None,
) -> None:
    """
    Play media until until_time, feeding the buffer(s) along the way.

    On every time update each buffer is topped up so that the range holding
    the playback position reaches data_ahead seconds beyond it. The two
    buffers are fed concurrently; appends to a single buffer stay serialized.
    Underflow is tolerated and an exhausted source is no longer fed.

    :param result: Result handle of the running test.
    :param media: The media element to play.
    :param data_ahead: Seconds of media to keep buffered ahead of the playback position.
    :param until_time: Playback position (seconds) to reach.
    :param buffer: The (first) source buffer.
    :param source: The source feeding buffer.
    :param buffer2: Optional second source buffer.
    :param source2: The source feeding buffer2.
    :param ceiling: Wall clock limit in seconds; defaults to the limit of the result.
    """
    if ceiling is None:
        ceiling = result.play_through_ceiling
    feeds = [(buffer, source)]
    if buffer2 is not None and source2 is not None:
        feeds.append((buffer2, source2))
    if media.paused:
        media.play()
    result.logger.debug(
        "Playing through from %s to %s (%ss ahead)", media.current_time, until_time, data_ahead
    )
    try:
        async with asyncio.timeout(ceiling):
            while media.current_time < until_time:
                await asyncio.gather(*(_top_up(media, buf, src, data_ahead) for buf, src in feeds))
                if media.current_time >= until_time:
                    break
                await wait_for_event(media, MediaEvent.TIME_UPDATE)
    except TimeoutError as err:
        msg = (
            f"Playback did not reach {until_time}s within {ceiling}s "
            f"(stalled at {media.current_time}s)"
        )
        raise TestTimeout(msg) from err
