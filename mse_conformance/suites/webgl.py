"""WebGL performance suite: compares the playback and render frame rates with the stream's frame rate."""

from __future__ import annotations

from typing import TYPE_CHECKING

from mse_conformance.drivers import append_init, play_through
from mse_conformance.errors import TestFailure
from mse_conformance.media import Media
from mse_conformance.runner import TestSuite
from mse_conformance.sources import FixedAppendSize, ResetInit

if TYPE_CHECKING:
    from mse_conformance.config import ConformanceConfig
    from mse_conformance.models.stream import StreamDescriptor
    from mse_conformance.models.test_case import TestCase, TestContext

PLAYBACK_SECONDS = 15.0
PLAYBACK_DATA_AHEAD = 5.0
FRAME_RATE_THRESHOLD = 0.994
# screen refresh rates are capped at 60, so faster streams are held to this rate
MAX_EXPECTED_FRAME_RATE = 56


def expected_frame_rate(fps: float) -> float:
    """Return the minimal frame rate a stream of fps frames per second must reach."""
    if fps < MAX_EXPECTED_FRAME_RATE:
        return fps * FRAME_RATE_THRESHOLD
    return MAX_EXPECTED_FRAME_RATE


def create_webgl_performance_test(
    suite: TestSuite, video_stream: StreamDescriptor, mandatory: bool
) -> TestCase:
    """Play a stream for a while and check the decoded and rendered frame rates."""
    fps = video_stream.get("fps")

    @suite.test(
        f"WebGLPerformance.{video_stream.codec}.{video_stream.get('resolution')}{fps}",
        f"WebGL Performance {video_stream.codec}",
        mandatory,
        [video_stream],
        title="Test WebGL performance.",
    )
    async def test(ctx: TestContext) -> None:
        result = ctx.result
        media = ctx.media
        if media.decoded_frame_count is None:
            msg = "UserAgent needs to support the decoded frame count to execute this test."
            raise TestFailure(msg)
        chain = FixedAppendSize(
            ResetInit(ctx.file_source(video_stream)), ctx.config.append_chunk_size
        )
        sb = ctx.add_source_buffer(video_stream.mimetype)
        await append_init(result, media, sb, chain)
        sampler = ctx.host.create_frame_rate_sampler(media)
        sampler.play()
        await play_through(result, media, PLAYBACK_DATA_AHEAD, PLAYBACK_SECONDS, sb, chain)
        media.pause()

        video_frame_rate = sampler.video_frame_rate()
        render_frame_rate = sampler.render_frame_rate()
        ctx.log("Frame rates: video %.2f, webgl %.2f", video_frame_rate, render_frame_rate)
        if video_frame_rate < 0 or render_frame_rate < 0:
            msg = "UserAgent was unable to render any frames."
            raise TestFailure(msg)
        threshold = expected_frame_rate(fps)
        result.check_ge(video_frame_rate, threshold, "Video frame rate")
        result.check_ge(render_frame_rate, threshold, "WebGL frame rate")

    return test


def build_webgl_suite(config: ConformanceConfig) -> TestSuite:
    """Register the WebGL performance tests on a new suite."""
    suite = TestSuite(
        "WebGL Performance",
        viewtype="expanded-test-status",
        info=f"Default Timeout: {round(config.default_timeout * 1000)}ms",
    )
    vp9, h264 = Media.VP9, Media.H264
    streams = (
        vp9.Webgl144p30fps,
        vp9.Webgl240p30fps,
        vp9.Webgl360p30fps,
        vp9.Webgl480p30fps,
        vp9.Webgl720p30fps,
        vp9.Webgl720p60fps,
        vp9.Webgl1080p30fps,
        vp9.Webgl1080p60fps,
        vp9.Webgl1440p30fps,
        vp9.Webgl1440p60fps,
        vp9.Webgl2160p30fps,
        vp9.Webgl2160p60fps,
        h264.Webgl144p15fps,
        h264.Webgl240p30fps,
        h264.Webgl360p30fps,
        h264.Webgl480p30fps,
        h264.Webgl720p30fps,
        h264.Webgl720p60fps,
        h264.Webgl1080p30fps,
        h264.Webgl1080p60fps,
        h264.Webgl1440p30fps,
        h264.Webgl2160p30fps,
    )
    for stream in streams:
        create_webgl_performance_test(suite, stream, config.support_webgl)
    return suite
