"""
MSE codec conformance suite.

Every create_*_test factory registers one test on a suite for the given
stream(s) and returns the registered TestCase; build_mse_codec_suite
registers the complete per-codec matrix.
"""

from __future__ import annotations

import asyncio
import math
from typing import TYPE_CHECKING

from mse_conformance.constants import MSE_VERSION, SMALL_APPEND_SIZE
from mse_conformance.drivers import (
    append_buffer,
    append_init,
    append_until,
    fill_until_full,
    play_through,
    safe_append,
    set_duration,
    wait_for_metadata,
    wait_until,
)
from mse_conformance.errors import TestFailure
from mse_conformance.helpers.events import EventWaiter, wait_for_event
from mse_conformance.media import Media
from mse_conformance.models.host import (
    BufferEvent,
    MediaEvent,
    MediaSourceEvent,
    ReadyState,
)
from mse_conformance.models.stream import MediaKind
from mse_conformance.runner import TestSuite
from mse_conformance.sources import FixedAppendSize, ResetInit

if TYPE_CHECKING:
    from mse_conformance.config import ConformanceConfig
    from mse_conformance.models.host import SourceBuffer
    from mse_conformance.models.stream import StreamDescriptor
    from mse_conformance.models.test_case import TestCase, TestContext

DASH_MAX_LATENCY = 1.0
OVERLAP_GAP = -0.1
SMALL_GAP = 0.01
LARGE_GAP = 0.3
# seconds of video underflow a host may play through while audio is present
VIDEO_UNDERFLOW_TIME = 3.0
BUF_UNBUF_SEEKS = 30
SEEKABLE_DURATION = 100000000.0


def _category(stream: StreamDescriptor) -> str:
    return f"MSE ({stream.codec})"


async def _append_and_wait_update(ctx: TestContext, buffer: SourceBuffer, data: bytes) -> None:
    """Start a non-blocking append and wait for its update event."""
    with EventWaiter(buffer, BufferEvent.UPDATE) as updated:
        ctx.result.check(safe_append(buffer, data), "safeAppend failed")
        await updated.wait()


def create_append_test(
    suite: TestSuite,
    stream: StreamDescriptor,
    unused_stream: StreamDescriptor,
    mandatory: bool = True,
) -> TestCase:
    """Append a whole file, then append twice in a row while the buffer is busy."""

    @suite.test(
        f"Append{stream.codec}{stream.capital_mediatype}",
        _category(stream),
        mandatory,
        [stream],
        title=f"Test if we can append a whole {stream.mediatype} file whose size is 1MB.",
    )
    async def test(ctx: TestContext) -> None:
        result = ctx.result
        sb = ctx.add_source_buffer(stream.mimetype)
        ctx.add_source_buffer(unused_stream.mimetype)
        data = await ctx.fetch(stream)
        await append_buffer(sb, data)
        result.check_eq(len(sb.buffered), 1, "Source buffer number")
        result.check_eq(sb.buffered.start(0), 0, "Range start")
        result.check_approx_eq(sb.buffered.end(0), stream.duration, "Range end")
        # the second append must be refused, unless the first one already finished
        if safe_append(sb, data) and safe_append(sb, data) and sb.updating:
            msg = "Implementation did not throw INVALID_STATE_ERR."
            raise TestFailure(msg)

    return test


def create_abort_test(
    suite: TestSuite,
    stream: StreamDescriptor,
    unused_stream: StreamDescriptor,
    mandatory: bool = True,
) -> TestCase:
    """Abort the current segment and append again."""

    @suite.test(
        f"Abort{stream.codec}{stream.capital_mediatype}",
        _category(stream),
        mandatory,
        [stream],
        title="Test if we can abort the current segment.",
    )
    async def test(ctx: TestContext) -> None:
        result = ctx.result
        sb = ctx.add_source_buffer(stream.mimetype)
        ctx.add_source_buffer(unused_stream.mimetype)
        data = await ctx.fetch(stream, 0, stream.size)
        with (
            EventWaiter(sb, BufferEvent.UPDATE) as updated,
            EventWaiter(sb, BufferEvent.UPDATE_END) as ended,
        ):
            sb.append_buffer(data)
            await updated.wait()
            sb.abort()
            await ended.wait()
        await append_buffer(sb, data)
        result.check_eq(len(sb.buffered), 1, "Source buffer number")
        result.check_eq(sb.buffered.start(0), 0, "Range start")
        result.check_gr(sb.buffered.end(0), 0, "Range end")

    return test


def create_timestamp_offset_test(
    suite: TestSuite,
    stream: StreamDescriptor,
    unused_stream: StreamDescriptor,
    mandatory: bool = True,
) -> TestCase:
    """Append a whole file with a timestamp offset of 5 seconds."""

    @suite.test(
        f"TimestampOffset{stream.codec}{stream.capital_mediatype}",
        _category(stream),
        mandatory,
        [stream],
        title="Test if we can set timestamp offset.",
    )
    async def test(ctx: TestContext) -> None:
        result = ctx.result
        sb = ctx.add_source_buffer(stream.mimetype)
        ctx.add_source_buffer(unused_stream.mimetype)
        data = await ctx.fetch(stream)
        sb.timestamp_offset = 5
        await append_buffer(sb, data)
        result.check_eq(len(sb.buffered), 1, "Source buffer number")
        result.check_eq(sb.buffered.start(0), 5, "Range start")
        result.check_approx_eq(sb.buffered.end(0), stream.duration + 5, "Range end")

    return test


def create_dash_latency_test(
    suite: TestSuite,
    video_stream: StreamDescriptor,
    audio_stream: StreamDescriptor,
    mandatory: bool = True,
) -> TestCase:
    """Fill the video buffer until it overflows, then measure the switch latency."""

    @suite.test(
        f"DASHLatency{video_stream.codec}",
        _category(video_stream),
        mandatory,
        [video_stream, audio_stream],
        title="Test SourceBuffer DASH switch latency",
    )
    async def test(ctx: TestContext) -> None:
        media = ctx.media
        video_sb = ctx.add_source_buffer(video_stream.mimetype)
        audio_sb = ctx.add_source_buffer(audio_stream.mimetype)
        await append_buffer(audio_sb, await ctx.fetch(audio_stream))
        video_content = await ctx.fetch(video_stream)
        loop_count = await fill_until_full(
            ctx.result, video_sb, video_content, video_stream.duration
        )
        ctx.log("Buffer size: %sMB", round(loop_count * video_stream.size / 1048576))
        new_content_start_time = video_sb.buffered.start(0) + 2
        ctx.log("Source buffer updated as exceeding buffer limit")
        media.play()
        await wait_for_event(
            media,
            MediaEvent.TIME_UPDATE,
            lambda _: media.current_time > new_content_start_time + DASH_MAX_LATENCY,
        )

    return test


def create_duration_after_append_test(
    suite: TestSuite,
    stream: StreamDescriptor,
    unused_stream: StreamDescriptor,
    mandatory: bool = True,
) -> TestCase:
    """Halve the duration after an append and check that appending expands it again."""

    @suite.test(
        f"DurationAfterAppend{stream.codec}{stream.capital_mediatype}",
        _category(stream),
        mandatory,
        [stream],
        title="Test if the duration expands after appending data.",
    )
    async def test(ctx: TestContext) -> None:
        result = ctx.result
        media = ctx.media
        ms = ctx.media_source
        sb = ctx.add_source_buffer(stream.mimetype)
        ctx.add_source_buffer(unused_stream.mimetype)
        data = await ctx.fetch(stream)
        await append_buffer(sb, data)
        sb.abort()
        result.check(not sb.updating, "Source buffer is updating after abort")

        # the duration as seen when the (first) durationchange event fires
        changed_durations: list[float] = []

        def _on_duration_change(_event: str) -> bool:
            changed_durations.append(ms.duration)
            return True

        half_duration = sb.buffered.end(0) / 2
        with EventWaiter(media, MediaEvent.DURATION_CHANGE, _on_duration_change) as changed:
            await set_duration(result, half_duration, ms, sb)
            ctx.log("Remove() complete.")
            result.check_approx_eq(ms.duration, half_duration, "ms.duration")
            result.check_approx_eq(sb.buffered.end(0), half_duration, "sb.buffered.end(0)")
            await append_buffer(sb, data)
            result.check_approx_eq(ms.duration, sb.buffered.end(0), "ms.duration")
            await changed.wait()
        ctx.log("Duration change complete.")
        result.check_approx_eq(changed_durations[0], half_duration, "ms.duration")

    return test


def create_paused_test(
    suite: TestSuite, stream: StreamDescriptor, mandatory: bool = True
) -> TestCase:
    """Check the paused state before and after appending data."""

    @suite.test(
        f"PausedStateWith{stream.codec}{stream.capital_mediatype}",
        _category(stream),
        mandatory,
        [stream],
        title="Test if the paused state is correct before or after appending data.",
    )
    async def test(ctx: TestContext) -> None:
        result = ctx.result
        media = ctx.media
        sb = ctx.add_source_buffer(stream.mimetype)
        result.check_eq(media.paused, True, "media.paused")
        data = await ctx.fetch(stream)
        result.check_eq(media.paused, True, "media.paused")
        with EventWaiter(sb, BufferEvent.UPDATE_END) as ended:
            sb.append_buffer(data)
            result.check_eq(media.paused, True, "media.paused")
            await ended.wait()
        result.check_eq(media.paused, True, "media.paused")

    return test


def create_video_dimension_test(
    suite: TestSuite,
    video_stream: StreamDescriptor,
    audio_stream: StreamDescriptor,
    mandatory: bool = True,
) -> TestCase:
    """Check the video dimensions before and after loading metadata."""

    @suite.test(
        f"VideoDimension{video_stream.codec}",
        _category(video_stream),
        mandatory,
        [video_stream, audio_stream],
        title="Test if video dimension is correct before or after appending data.",
    )
    async def test(ctx: TestContext) -> None:
        result = ctx.result
        media = ctx.media
        video_chain = ResetInit(
            FixedAppendSize(ctx.file_source(video_stream), ctx.config.append_chunk_size)
        )
        video_sb = ctx.add_source_buffer(video_stream.mimetype)
        audio_sb = ctx.add_source_buffer(audio_stream.mimetype)
        result.check_eq(media.video_width, 0, "video width")
        result.check_eq(media.video_height, 0, "video height")
        result.check_eq(media.ready_state, ReadyState.HAVE_NOTHING, "readyState")
        with EventWaiter(media, MediaEvent.LOADED_METADATA) as loaded:
            await append_buffer(audio_sb, await ctx.fetch(audio_stream))
            await append_init(result, media, video_sb, video_chain)
            await loaded.wait()
        ctx.log("loadedmetadata called")
        result.check_eq(media.video_width, 640, "video width")
        result.check_eq(media.video_height, 360, "video height")

    return test


def create_playback_state_test(
    suite: TestSuite, stream: StreamDescriptor, mandatory: bool = True
) -> TestCase:
    """Check the playback state transitions."""

    @suite.test(
        f"PlaybackState{stream.codec}",
        _category(stream),
        mandatory,
        [stream],
        title="Test if the playback state transition is correct.",
    )
    async def test(ctx: TestContext) -> None:
        result = ctx.result
        media = ctx.media
        audio_stream = Media.AAC.AudioTiny
        chunk_size = ctx.config.append_chunk_size
        video_chain = ResetInit(FixedAppendSize(ctx.file_source(stream), chunk_size))
        video_sb = ctx.add_source_buffer(stream.mimetype)
        audio_chain = ResetInit(FixedAppendSize(ctx.file_source(audio_stream), chunk_size))
        audio_sb = ctx.add_source_buffer(audio_stream.mimetype)

        media.play()
        result.check_eq(media.current_time, 0, "media.currentTime")
        media.pause()
        result.check_eq(media.current_time, 0, "media.currentTime")

        await append_init(result, media, audio_sb, audio_chain)
        await append_init(result, media, video_sb, video_chain)
        await wait_for_metadata(media)
        media.play()
        result.check_eq(media.current_time, 0, "media.currentTime")
        media.pause()
        result.check_eq(media.current_time, 0, "media.currentTime")
        media.play()
        await append_until(result, media, audio_sb, audio_chain, 5)
        await append_until(result, media, video_sb, video_chain, 5)
        await play_through(result, media, 1, 2, audio_sb, audio_chain, video_sb, video_chain)
        current_time = media.current_time
        media.pause()
        result.check_approx_eq(media.current_time, current_time, "media.currentTime")

    return test


def create_play_partial_segment_test(
    suite: TestSuite, stream: StreamDescriptor, mandatory: bool = True
) -> TestCase:
    """Play a partially appended video segment."""

    @suite.test(
        f"PlayPartial{stream.codec}Segment",
        _category(stream),
        mandatory,
        [stream],
        title="Test if we can play a partially appended video segment.",
    )
    async def test(ctx: TestContext) -> None:
        media = ctx.media
        audio_stream = Media.AAC.AudioTiny
        video_sb = ctx.add_source_buffer(stream.mimetype)
        audio_sb = ctx.add_source_buffer(audio_stream.mimetype)
        await append_buffer(audio_sb, await ctx.fetch(audio_stream, 0, 500000))
        await append_buffer(video_sb, await ctx.fetch(stream, 0, 1500000))
        media.play()
        await wait_for_event(
            media,
            MediaEvent.TIME_UPDATE,
            lambda _: not media.paused and media.current_time >= 2,
        )

    return test


def create_incremental_audio_test(suite: TestSuite, stream: StreamDescriptor) -> TestCase:
    """Play a partially appended audio segment."""

    @suite.test(
        f"Incremental{stream.codec}Audio",
        _category(stream),
        True,
        [stream],
        title="Test if we can play a partially appended audio segment.",
    )
    async def test(ctx: TestContext) -> None:
        result = ctx.result
        sb = ctx.add_source_buffer(stream.mimetype)
        ctx.add_source_buffer(Media.VP9.mimetype)
        await append_buffer(sb, await ctx.fetch(stream, 0, 200000))
        result.check_eq(len(sb.buffered), 1, "Source buffer number")
        result.check_eq(sb.buffered.start(0), 0, "Range start")
        result.check_approx_eq(sb.buffered.end(0), stream.get(200000), "Range end")

    return test


def create_append_audio_offset_test(
    suite: TestSuite, stream1: StreamDescriptor, stream2: StreamDescriptor
) -> TestCase:
    """Append audio at an offset, then a second stream at zero."""

    @suite.test(
        f"Append{stream1.codec}AudioOffset",
        _category(stream1),
        True,
        [stream1, stream2],
        title="Test if we can append audio data with an explicit offset.",
    )
    async def test(ctx: TestContext) -> None:
        result = ctx.result
        ctx.add_source_buffer(Media.VP9.mimetype)
        sb = ctx.add_source_buffer(stream1.mimetype)
        sb.timestamp_offset = 5
        await append_buffer(sb, await ctx.fetch(stream1, 0, 200000))
        data = await ctx.fetch(stream2, 0, 200000)
        sb.abort()
        sb.timestamp_offset = 0
        await append_buffer(sb, data)
        result.check_eq(len(sb.buffered), 1, "Source buffer number")
        result.check_eq(sb.buffered.start(0), 0, "Range start")
        result.check_approx_eq(sb.buffered.end(0), stream2.get("appendAudioOffset"), "Range end")

    return test


def create_append_video_offset_test(
    suite: TestSuite,
    stream1: StreamDescriptor,
    stream2: StreamDescriptor,
    audio_stream: StreamDescriptor,
    mandatory: bool = True,
) -> TestCase:
    """Append video at an offset, switch to a second stream and seek into it."""

    @suite.test(
        f"Append{stream1.codec}VideoOffset",
        _category(stream1),
        mandatory,
        [stream1, stream2],
        title="Test if we can append video data with an explicit offset.",
    )
    async def test(ctx: TestContext) -> None:
        result = ctx.result
        media = ctx.media
        sb = ctx.add_source_buffer(stream1.mimetype)
        audio_sb = ctx.add_source_buffer(audio_stream.mimetype)
        # allow seeking to any position
        ctx.media_source.duration = SEEKABLE_DURATION
        await append_buffer(audio_sb, await ctx.fetch(audio_stream))
        sb.timestamp_offset = 5
        await append_buffer(sb, await ctx.fetch(stream1, 0, 200000))
        data = await ctx.fetch(stream2, 0, 400000)
        sb.abort()
        sb.timestamp_offset = 0
        media.play()
        await append_buffer(sb, data)
        result.check_eq(len(sb.buffered), 1, "Source buffer number")
        result.check_eq(sb.buffered.start(0), 0, "Range start")
        result.check_approx_eq(sb.buffered.end(0), stream2.get("videoChangeRate"), "Range end")
        await wait_for_metadata(media)
        with EventWaiter(media, MediaEvent.SEEKED) as seeked:
            media.current_time = 6
            await seeked.wait()
        ctx.log("seeked called")
        await wait_for_event(
            media,
            MediaEvent.TIME_UPDATE,
            lambda _: not media.paused and media.current_time >= 6,
        )

    return test


def create_append_multiple_init_test(
    suite: TestSuite,
    stream: StreamDescriptor,
    unused_stream: StreamDescriptor,
    mandatory: bool = True,
) -> TestCase:
    """Append the init segment repeatedly around a media segment."""

    @suite.test(
        f"AppendMultipleInit{stream.codec}{stream.capital_mediatype}",
        _category(stream),
        mandatory,
        [stream],
        title="Test if we can append multiple init segments.",
    )
    async def test(ctx: TestContext) -> None:
        result = ctx.result
        chain = ctx.file_source(stream, segment_size=stream.size)
        sb = ctx.add_source_buffer(stream.mimetype)
        ctx.add_source_buffer(unused_stream.mimetype)
        init = await chain.init(0)
        media_chunk = await chain.pull()
        for _ in range(10):
            await append_buffer(sb, init)
        await append_buffer(sb, media_chunk)
        sb.abort()
        end = sb.buffered.end(0)
        for _ in range(10):
            await append_buffer(sb, init)
        result.check_eq(sb.buffered.end(0), end, "Range end")

    return test


def create_append_out_of_order_test(
    suite: TestSuite,
    stream: StreamDescriptor,
    unused_stream: StreamDescriptor,
    mandatory: bool = True,
) -> TestCase:
    """Append the first media segments out of order."""

    @suite.test(
        f"Append{stream.codec}{stream.capital_mediatype}OutOfOrder",
        _category(stream),
        mandatory,
        [stream],
        title="Test appending segments out of order.",
    )
    async def test(ctx: TestContext) -> None:
        result = ctx.result
        chain = ctx.file_source(stream)
        sb = ctx.add_source_buffer(stream.mimetype)
        ctx.add_source_buffer(unused_stream.mimetype)
        append_order = (0, 2, 1, 4, 3)
        # number of ranges after each append, as segments get merged
        buffered_length = (0, 1, 1, 2, 1)
        bufs = [await chain.init(0)]
        for _ in range(4):
            bufs.append(await chain.pull())
        for i, idx in enumerate(append_order):
            await append_buffer(sb, bufs[idx])
            result.check_eq(len(sb.buffered), buffered_length[i], "Source buffer number")
            if i == 1:
                result.check_gr(sb.buffered.start(0), 0, "Range start")
            elif i > 0:
                result.check_eq(sb.buffered.start(0), 0, "Range start")

    return test


def create_buffered_range_test(
    suite: TestSuite,
    stream: StreamDescriptor,
    unused_stream: StreamDescriptor,
    mandatory: bool = True,
) -> TestCase:
    """Check the buffered ranges while feeding data."""

    @suite.test(
        f"BufferedRange{stream.codec}{stream.capital_mediatype}",
        _category(stream),
        mandatory,
        [stream],
        title="Test SourceBuffer.buffered get updated correctly after feeding data.",
    )
    async def test(ctx: TestContext) -> None:
        result = ctx.result
        media = ctx.media
        chain = ResetInit(ctx.file_source(stream))
        sb = ctx.add_source_buffer(stream.mimetype)
        ctx.add_source_buffer(unused_stream.mimetype)
        result.check_eq(len(sb.buffered), 0, "Source buffer number")
        await append_init(result, media, sb, chain)
        result.check_eq(len(sb.buffered), 0, "Source buffer number")
        await append_until(result, media, sb, chain, 5)
        result.check_eq(len(sb.buffered), 1, "Source buffer number")
        result.check_eq(sb.buffered.start(0), 0, "Range start")
        result.check_ge(sb.buffered.end(0), 5, "Range end")

    return test


def create_media_source_duration_test(
    suite: TestSuite,
    video_stream: StreamDescriptor,
    audio_stream: StreamDescriptor,
    mandatory: bool = True,
) -> TestCase:
    """Set and read back the duration of the media source."""

    @suite.test(
        f"MediaSourceDuration{video_stream.codec}",
        _category(video_stream),
        mandatory,
        [video_stream, audio_stream],
        title="Test if the duration on MediaSource can be set and retrieved sucessfully.",
    )
    async def test(ctx: TestContext) -> None:
        result = ctx.result
        media = ctx.media
        ms = ctx.media_source
        video_chain = ResetInit(ctx.file_source(video_stream))
        video_sb = ctx.add_source_buffer(video_stream.mimetype)
        audio_sb = ctx.add_source_buffer(audio_stream.mimetype)
        buffers = [video_sb, audio_sb]
        half_duration = 5.0
        full_duration = half_duration * 2
        eps = 0.5

        await append_buffer(audio_sb, await ctx.fetch(audio_stream))
        result.check(math.isnan(media.duration), "Initial media duration not NaN")
        media.play()
        await append_init(result, media, video_sb, video_chain)
        await append_until(result, media, video_sb, video_chain, full_duration)
        await set_duration(result, half_duration, ms, buffers)
        result.check_approx_eq(ms.duration, half_duration, "ms.duration", eps)
        result.check_approx_eq(media.duration, half_duration, "media.duration", eps)
        result.check_le(video_sb.buffered.end(0), half_duration + 0.1, "Range end")

        video_sb.abort()
        video_chain.seek(0)
        await append_init(result, media, video_sb, video_chain)
        await append_until(result, media, video_sb, video_chain, full_duration)
        result.check_approx_eq(ms.duration, full_duration, "ms.duration", eps * 2)
        await set_duration(result, half_duration, ms, buffers)
        if video_sb.updating:
            msg = "Source buffer is updating on duration change"
            raise TestFailure(msg)

        duration = video_sb.buffered.end(0)
        with EventWaiter(ms, MediaSourceEvent.SOURCE_ENDED) as ended:
            ms.end_of_stream()
            result.check_approx_eq(ms.duration, duration, "ms.duration", 0.01)
            media.play()
            await ended.wait()
        result.check_approx_eq(ms.duration, duration, "ms.duration", 0.01)
        result.check_eq(media.duration, duration, "media.duration")
        with EventWaiter(ms, MediaSourceEvent.SOURCE_CLOSE) as closed:
            media.detach()
            await closed.wait()
        ctx.log("onsourceclose called")
        result.check(math.isnan(ms.duration), "ms.duration is not NaN after close")

    return test


async def _append_with_gap(
    ctx: TestContext, stream: StreamDescriptor, unused_stream: StreamDescriptor, gap: float
) -> tuple[SourceBuffer, float]:
    """
    Append a media segment, then the same segment again right after it, shifted by gap.

    Returns the source buffer and the duration of the segment.
    """
    result = ctx.result
    media = ctx.media
    chain = ResetInit(ctx.file_source(stream))
    sb = ctx.add_source_buffer(stream.mimetype)
    ctx.add_source_buffer(unused_stream.mimetype)
    await append_init(result, media, sb, chain)
    await _append_and_wait_update(ctx, sb, await chain.pull())
    result.check_eq(len(sb.buffered), 1, "Source buffer number")
    segment_duration = sb.buffered.end(0)
    sb.abort()
    sb.timestamp_offset = segment_duration + gap
    chain.seek(0)
    await _append_and_wait_update(ctx, sb, await chain.pull())
    return sb, segment_duration


def create_overlap_test(
    suite: TestSuite,
    stream: StreamDescriptor,
    unused_stream: StreamDescriptor,
    mandatory: bool = True,
) -> TestCase:
    """Overlapping media must be merged into one range."""

    @suite.test(
        f"{stream.codec}{stream.capital_mediatype}WithOverlap",
        _category(stream),
        mandatory,
        [stream],
        title="Test if media data with overlap will be merged into one range.",
    )
    async def test(ctx: TestContext) -> None:
        sb, segment_duration = await _append_with_gap(ctx, stream, unused_stream, OVERLAP_GAP)
        ctx.result.check_eq(len(sb.buffered), 1, "Source buffer number")
        ctx.result.check_approx_eq(
            sb.buffered.end(0), segment_duration * 2 + OVERLAP_GAP, "Range end"
        )

    return test


def create_small_gap_test(
    suite: TestSuite,
    stream: StreamDescriptor,
    unused_stream: StreamDescriptor,
    mandatory: bool = True,
) -> TestCase:
    """A gap smaller than a frame must be merged into one range."""

    @suite.test(
        f"{stream.codec}{stream.capital_mediatype}WithSmallGap",
        _category(stream),
        mandatory,
        [stream],
        title=(
            "Test if media data with a gap smaller than an media frame size "
            "will be merged into one buffered range."
        ),
    )
    async def test(ctx: TestContext) -> None:
        sb, segment_duration = await _append_with_gap(ctx, stream, unused_stream, SMALL_GAP)
        ctx.result.check_eq(len(sb.buffered), 1, "Source buffer number")
        ctx.result.check_approx_eq(
            sb.buffered.end(0), segment_duration * 2 + SMALL_GAP, "Range end"
        )

    return test


def create_large_gap_test(
    suite: TestSuite,
    stream: StreamDescriptor,
    unused_stream: StreamDescriptor,
    mandatory: bool = True,
) -> TestCase:
    """A gap larger than a frame must not be merged."""

    @suite.test(
        f"{stream.codec}{stream.capital_mediatype}WithLargeGap",
        _category(stream),
        mandatory,
        [stream],
        title=(
            "Test if media data with a gap larger than an media frame size "
            "will not be merged into one buffered range."
        ),
    )
    async def test(ctx: TestContext) -> None:
        sb, _ = await _append_with_gap(ctx, stream, unused_stream, LARGE_GAP)
        ctx.result.check_eq(len(sb.buffered), 2, "Source buffer number")

    return test


def create_seek_test(
    suite: TestSuite, video_stream: StreamDescriptor, mandatory: bool = True
) -> TestCase:
    """Seek while playing, including a seek issued before the previous one completed."""

    @suite.test(
        f"Seek{video_stream.codec}",
        _category(video_stream),
        mandatory,
        [video_stream],
        title=(
            "Test if we can seek during playing. It also tests if the implementation "
            "properly supports seek operation fired immediately after another seek "
            "that hasn't been completed."
        ),
    )
    async def test(ctx: TestContext) -> None:
        result = ctx.result
        media = ctx.media
        audio_stream = Media.AAC.AudioNormal
        video_chain = ResetInit(ctx.file_source(video_stream))
        video_sb = ctx.add_source_buffer(video_stream.mimetype)
        audio_chain = ResetInit(ctx.file_source(audio_stream))
        audio_sb = ctx.add_source_buffer(audio_stream.mimetype)
        ctx.media_source.duration = SEEKABLE_DURATION

        await append_until(result, media, video_sb, video_chain, 20)
        await append_until(result, media, audio_sb, audio_chain, 20)
        ctx.log("Seek to 17s")
        await wait_for_metadata(media)
        media.current_time = 17
        media.play()
        await play_through(result, media, 10, 19, video_sb, video_chain, audio_sb, audio_chain)
        result.check_ge(media.current_time, 19, "currentTime")

        ctx.log("Seek to 58s")
        media.current_time = 53
        media.current_time = 58
        await play_through(result, media, 10, 60, video_sb, video_chain, audio_sb, audio_chain)
        result.check_ge(media.current_time, 60, "currentTime")

        ctx.log("Seek to 7s")
        media.current_time = 0
        media.current_time = 7
        video_chain.seek(7, video_sb)
        audio_chain.seek(7, audio_sb)
        await play_through(result, media, 10, 9, video_sb, video_chain, audio_sb, audio_chain)
        result.check_ge(media.current_time, 9, "currentTime")

    return test


def create_buf_unbuf_seek_test(
    suite: TestSuite, video_stream: StreamDescriptor, mandatory: bool = True
) -> TestCase:
    """Seek back and forth between a buffered and an unbuffered position."""

    @suite.test(
        f"BufUnbufSeek{video_stream.codec}",
        _category(video_stream),
        mandatory,
        [video_stream],
        title="Seek into and out of a buffered region.",
    )
    async def test(ctx: TestContext) -> None:
        media = ctx.media
        audio_stream = Media.AAC.AudioNormal
        video_sb = ctx.add_source_buffer(video_stream.mimetype)
        audio_sb = ctx.add_source_buffer(audio_stream.mimetype)
        ctx.media_source.duration = SEEKABLE_DURATION
        await append_buffer(video_sb, await ctx.fetch(video_stream, 0, 1000000))
        await append_buffer(audio_sb, await ctx.fetch(audio_stream, 0, 100000))
        await wait_for_metadata(media)
        with EventWaiter(media, MediaEvent.PLAY) as played:
            media.play()
            await played.wait()
        for i in range(BUF_UNBUF_SEEKS + 1):
            media.current_time = (i % 2) * 1.0e6 + 1
            await asyncio.sleep(0.05)
        media.current_time = 1.005
        await wait_for_event(
            media,
            MediaEvent.TIME_UPDATE,
            lambda _: not media.paused and media.current_time > 3,
        )

    return test


def create_delayed_test(
    suite: TestSuite,
    delayed: StreamDescriptor,
    non_delayed: StreamDescriptor,
    mandatory: bool = True,
) -> TestCase:
    """Start playback while one of the buffers is short on data."""

    @suite.test(
        f"Delayed{delayed.codec}{delayed.capital_mediatype}",
        _category(delayed),
        mandatory,
        [delayed, non_delayed],
        title=(
            f"Test if we can play properly when there is not enough {delayed.mediatype} "
            f"data. The play should resume once {delayed.mediatype} data is appended."
        ),
    )
    async def test(ctx: TestContext) -> None:
        result = ctx.result
        media = ctx.media
        underflow_time = VIDEO_UNDERFLOW_TIME if delayed.mediatype == MediaKind.VIDEO else 0.0
        chain = FixedAppendSize(ResetInit(ctx.file_source(non_delayed)), SMALL_APPEND_SIZE)
        sb = ctx.add_source_buffer(non_delayed.mimetype)
        delayed_chain = FixedAppendSize(ResetInit(ctx.file_source(delayed)), SMALL_APPEND_SIZE)
        delayed_sb = ctx.add_source_buffer(delayed.mimetype)

        await append_until(result, media, sb, chain, 15)
        await append_until(result, media, delayed_sb, delayed_chain, 8)
        end = delayed_sb.buffered.end(0)
        limit = end + 1.0 + underflow_time
        ctx.log("Start play when there is only %s seconds of %s data.", end, delayed.mediatype)

        # positions seen beyond the limit while playing
        overruns: list[tuple[float, int]] = []

        def _on_time_update(_event: str) -> None:
            if not media.paused and media.current_time > limit:
                overruns.append((media.current_time, media.ready_state))

        unsubscribe = media.subscribe(_on_time_update, MediaEvent.TIME_UPDATE)
        try:
            media.play()
            await wait_until(media, end + 3)
        finally:
            unsubscribe()
        if overruns:
            current_time, ready_state = overruns[0]
            result.check_le(current_time, limit, f"media.currentTime ({ready_state})")
        result.check_le(media.current_time, limit, "media.currentTime")
        result.check_gr(media.current_time, end - 1.0 - underflow_time, "media.currentTime")

    return test


def create_single_source_buffer_playback_test(
    suite: TestSuite, stream: StreamDescriptor, mandatory: bool = True
) -> TestCase:
    """Play back an audio-only or video-only presentation."""

    @suite.test(
        f"PlaybackOnly{stream.codec}{stream.capital_mediatype}",
        _category(stream),
        mandatory,
        [stream],
        title="Test if we can playback a single source buffer.",
    )
    async def test(ctx: TestContext) -> None:
        media = ctx.media
        sb = ctx.add_source_buffer(stream.mimetype)
        await append_buffer(sb, await ctx.fetch(stream, 0, 300000))
        media.play()
        await wait_for_event(media, MediaEvent.TIME_UPDATE, lambda _: media.current_time > 5)

    return test


def build_mse_codec_suite(config: ConformanceConfig) -> TestSuite:
    """Register the codec test matrix on a new suite."""
    suite = TestSuite(
        "MSE Codec",
        viewtype="default",
        info=(
            f"MSE Spec Version: {MSE_VERSION} | "
            f"Default Timeout: {round(config.default_timeout * 1000)}ms"
        ),
    )
    aac, opus, vp9, h264, av1 = Media.AAC, Media.Opus, Media.VP9, Media.H264, Media.AV1

    # Opus
    create_append_test(suite, opus.SantaHigh, vp9.Video1MB)
    create_abort_test(suite, opus.SantaHigh, vp9.Video1MB)
    create_timestamp_offset_test(suite, opus.CarLow, vp9.Video1MB)
    create_duration_after_append_test(suite, opus.CarLow, vp9.Video1MB)
    create_paused_test(suite, opus.CarLow)
    create_incremental_audio_test(suite, opus.CarMed)
    create_append_audio_offset_test(suite, opus.CarMed, opus.CarHigh)
    create_append_multiple_init_test(suite, opus.CarLow, vp9.Video1MB)
    create_append_out_of_order_test(suite, opus.CarMed, vp9.Video1MB)
    create_buffered_range_test(suite, opus.CarMed, vp9.Video1MB)
    create_overlap_test(suite, opus.CarMed, vp9.Video1MB)
    create_small_gap_test(suite, opus.CarMed, vp9.Video1MB)
    create_large_gap_test(suite, opus.CarMed, vp9.Video1MB)
    create_delayed_test(suite, opus.CarMed, vp9.VideoNormal)
    create_single_source_buffer_playback_test(suite, opus.SantaHigh)

    # AAC
    create_append_test(suite, aac.Audio1MB, h264.Video1MB)
    create_abort_test(suite, aac.Audio1MB, h264.Video1MB)
    create_timestamp_offset_test(suite, aac.Audio1MB, h264.Video1MB)
    create_duration_after_append_test(suite, aac.Audio1MB, h264.Video1MB)
    create_paused_test(suite, aac.Audio1MB)
    create_incremental_audio_test(suite, aac.AudioNormal)
    create_append_audio_offset_test(suite, aac.AudioNormal, aac.AudioHuge)
    create_append_multiple_init_test(suite, aac.Audio1MB, h264.Video1MB)
    create_append_out_of_order_test(suite, aac.AudioNormal, h264.Video1MB)
    create_buffered_range_test(suite, aac.AudioNormal, h264.Video1MB)
    create_overlap_test(suite, aac.AudioNormal, h264.Video1MB)
    create_small_gap_test(suite, aac.AudioNormal, h264.Video1MB)
    create_large_gap_test(suite, aac.AudioNormal, h264.Video1MB)
    create_delayed_test(suite, aac.AudioNormal, vp9.VideoNormal)
    create_single_source_buffer_playback_test(suite, aac.Audio1MB)

    # VP9
    create_append_test(suite, vp9.Video1MB, aac.Audio1MB)
    create_abort_test(suite, vp9.Video1MB, aac.Audio1MB)
    create_timestamp_offset_test(suite, vp9.Video1MB, aac.Audio1MB)
    create_dash_latency_test(suite, vp9.VideoTiny, aac.Audio1MB)
    create_duration_after_append_test(suite, vp9.Video1MB, aac.Audio1MB)
    create_paused_test(suite, vp9.Video1MB)
    create_video_dimension_test(suite, vp9.VideoNormal, aac.AudioNormal)
    create_playback_state_test(suite, vp9.VideoNormal)
    create_play_partial_segment_test(suite, vp9.VideoTiny)
    create_append_video_offset_test(suite, vp9.VideoNormal, vp9.VideoTiny, aac.AudioNormal)
    create_append_multiple_init_test(suite, vp9.Video1MB, aac.Audio1MB)
    create_append_out_of_order_test(suite, vp9.VideoNormal, aac.AudioNormal)
    create_buffered_range_test(suite, vp9.VideoNormal, aac.AudioNormal)
    create_media_source_duration_test(suite, vp9.VideoNormal, aac.AudioNormal)
    create_overlap_test(suite, vp9.VideoNormal, aac.AudioNormal)
    create_small_gap_test(suite, vp9.VideoNormal, aac.AudioNormal)
    create_large_gap_test(suite, vp9.VideoNormal, aac.AudioNormal)
    create_seek_test(suite, vp9.VideoNormal)
    create_buf_unbuf_seek_test(suite, vp9.VideoNormal)
    create_delayed_test(suite, vp9.VideoNormal, aac.AudioNormal)
    create_single_source_buffer_playback_test(suite, vp9.VideoTiny)

    # H264
    create_append_test(suite, h264.Video1MB, aac.Audio1MB)
    create_abort_test(suite, h264.Video1MB, aac.Audio1MB)
    create_timestamp_offset_test(suite, h264.Video1MB, aac.Audio1MB)
    create_dash_latency_test(suite, h264.VideoTiny, aac.Audio1MB)
    create_duration_after_append_test(suite, h264.Video1MB, aac.Audio1MB)
    create_paused_test(suite, h264.Video1MB)
    create_video_dimension_test(suite, h264.VideoNormal, aac.Audio1MB)
    create_playback_state_test(suite, h264.VideoNormal)
    create_play_partial_segment_test(suite, h264.VideoTiny)
    create_append_video_offset_test(suite, h264.VideoNormal, h264.VideoTiny, aac.Audio1MB)
    create_append_multiple_init_test(suite, h264.Video1MB, aac.Audio1MB)
    create_append_out_of_order_test(suite, h264.CarMedium, aac.Audio1MB)
    create_buffered_range_test(suite, h264.VideoNormal, aac.Audio1MB)
    create_media_source_duration_test(suite, h264.VideoNormal, aac.Audio1MB)
    create_overlap_test(suite, h264.VideoNormal, aac.Audio1MB)
    create_small_gap_test(suite, h264.VideoNormal, aac.Audio1MB)
    create_large_gap_test(suite, h264.VideoNormal, aac.Audio1MB)
    create_seek_test(suite, h264.VideoNormal)
    create_buf_unbuf_seek_test(suite, h264.VideoNormal)
    create_delayed_test(suite, h264.VideoNormal, aac.AudioNormal)
    create_single_source_buffer_playback_test(suite, h264.VideoTiny)

    # AV1
    require_av1 = config.require_av1
    create_append_test(suite, av1.Bunny144p30fps, aac.Audio1MB, require_av1)
    create_abort_test(suite, av1.Bunny144p30fps, aac.Audio1MB, require_av1)
    create_timestamp_offset_test(suite, av1.Bunny144p30fps, aac.Audio1MB, require_av1)
    create_dash_latency_test(suite, av1.Bunny240p30fps, aac.Audio1MB, require_av1)
    create_duration_after_append_test(suite, av1.Bunny144p30fps, aac.Audio1MB, require_av1)
    create_paused_test(suite, av1.Bunny144p30fps, require_av1)
    create_video_dimension_test(suite, av1.Bunny360p30fps, aac.Audio1MB, require_av1)
    create_playback_state_test(suite, av1.Bunny360p30fps, require_av1)
    create_play_partial_segment_test(suite, av1.Bunny240p30fps, require_av1)
    create_append_video_offset_test(
        suite, av1.Bunny360p30fps, av1.Bunny240p30fps, aac.Audio1MB, require_av1
    )
    create_append_multiple_init_test(suite, av1.Bunny144p30fps, aac.Audio1MB, require_av1)
    create_append_out_of_order_test(suite, av1.Bunny360p30fps, aac.Audio1MB, require_av1)
    create_buffered_range_test(suite, av1.Bunny360p30fps, aac.Audio1MB, require_av1)
    create_media_source_duration_test(suite, av1.Bunny360p30fps, aac.Audio1MB, require_av1)
    create_overlap_test(suite, av1.Bunny360p30fps, aac.Audio1MB, require_av1)
    create_small_gap_test(suite, av1.Bunny360p30fps, aac.Audio1MB, require_av1)
    create_large_gap_test(suite, av1.Bunny360p30fps, aac.Audio1MB, require_av1)
    create_seek_test(suite, av1.Bunny360p30fps, require_av1)
    create_buf_unbuf_seek_test(suite, av1.Bunny360p30fps, require_av1)
    create_delayed_test(suite, av1.Bunny360p30fps, aac.AudioNormal, require_av1)
    create_single_source_buffer_playback_test(suite, av1.Bunny240p30fps, require_av1)

    return suite
