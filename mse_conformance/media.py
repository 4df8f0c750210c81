"""
Catalog of the media streams used by the conformance suites.

Paths are relative to the configured media base url. Sizes are in bytes,
durations in seconds; the named properties hold the values some tests
expect after appending part of a stream. Every stream has a segment index
(a json SegmentIndex) served next to it, so sources deliver whole media
segments.
"""

from __future__ import annotations

from typing import Any

from mse_conformance.models.stream import MediaKind, StreamDescriptor

AAC_MIMETYPE = 'audio/mp4; codecs="mp4a.40.2"'
OPUS_MIMETYPE = 'audio/webm; codecs="opus"'
VP9_MIMETYPE = 'video/webm; codecs="vp9"'
H264_MIMETYPE = 'video/mp4; codecs="avc1.640028"'
AV1_MIMETYPE = 'video/mp4; codecs="av01.0.05M.08"'

INDEX_SUFFIX = ".index.json"
# webgl clips are only played from their start, their layout comes from the index
WEBGL_CLIP_DURATION = 60.0


def index_src_for(src: str) -> str:
    """Return the path of the segment index of a media file."""
    return src.rsplit(".", 1)[0] + INDEX_SUFFIX


def _audio(
    codec: str,
    mimetype: str,
    name: str,
    src: str,
    size: int,
    duration: float,
    init_size: int,
    properties: dict[str, Any] | None = None,
) -> StreamDescriptor:
    return StreamDescriptor(
        name=name,
        codec=codec,
        mimetype=mimetype,
        mediatype=MediaKind.AUDIO,
        src=src,
        size=size,
        duration=duration,
        init_size=init_size,
        index_src=index_src_for(src),
        properties=properties or {},
    )


def _video(
    codec: str,
    mimetype: str,
    name: str,
    src: str,
    size: int,
    duration: float,
    init_size: int,
    properties: dict[str, Any] | None = None,
) -> StreamDescriptor:
    return StreamDescriptor(
        name=name,
        codec=codec,
        mimetype=mimetype,
        mediatype=MediaKind.VIDEO,
        src=src,
        size=size,
        duration=duration,
        init_size=init_size,
        index_src=index_src_for(src),
        properties=properties or {},
    )


def _webgl(
    codec: str, mimetype: str, src: str, size: int, resolution: str, fps: int
) -> StreamDescriptor:
    return _video(
        codec,
        mimetype,
        f"Webgl{resolution}{fps}fps",
        src,
        size,
        WEBGL_CLIP_DURATION,
        0,
        properties={"resolution": resolution, "fps": fps},
    )


class AAC:
    """AAC audio streams (fragmented mp4)."""

    mimetype = AAC_MIMETYPE

    AudioTiny = _audio("AAC", AAC_MIMETYPE, "AudioTiny", "media/car-20120827-8b.mp4", 717881, 45.6, 592)
    Audio1MB = _audio("AAC", AAC_MIMETYPE, "Audio1MB", "media/car-20120827-8c.mp4", 1048576, 65.0, 592)
    AudioNormal = _audio(
        "AAC",
        AAC_MIMETYPE,
        "AudioNormal",
        "media/car-20120827-8d.mp4",
        2884572,
        181.6,
        592,
        properties={"200000": 12.42},
    )
    AudioHuge = _audio(
        "AAC",
        AAC_MIMETYPE,
        "AudioHuge",
        "media/car-20120827-8e.mp4",
        5843014,
        181.6,
        592,
        properties={"appendAudioOffset": 12.42},
    )


class Opus:
    """Opus audio streams (webm)."""

    mimetype = OPUS_MIMETYPE

    CarLow = _audio("Opus", OPUS_MIMETYPE, "CarLow", "media/car_opus_low.webm", 1205174, 181.48, 4473)
    CarMed = _audio(
        "Opus",
        OPUS_MIMETYPE,
        "CarMed",
        "media/car_opus_med.webm",
        1657817,
        181.48,
        4473,
        properties={"200000": 21.72},
    )
    CarHigh = _audio(
        "Opus",
        OPUS_MIMETYPE,
        "CarHigh",
        "media/car_opus_high.webm",
        3280277,
        181.48,
        4473,
        properties={"appendAudioOffset": 11.07},
    )
    SantaHigh = _audio(
        "Opus", OPUS_MIMETYPE, "SantaHigh", "media/santa_opus_high.webm", 1241093, 70.0, 4473
    )


class VP9:
    """VP9 video streams (webm)."""

    mimetype = VP9_MIMETYPE

    VideoTiny = _video(
        "VP9",
        VP9_MIMETYPE,
        "VideoTiny",
        "media/feelings_vp9-20130806-242.webm",
        4478156,
        135.2,
        4357,
        properties={"videoChangeRate": 11.47},
    )
    Video1MB = _video(
        "VP9", VP9_MIMETYPE, "Video1MB", "media/feelings_vp9-20130806-243.webm", 1048576, 7.76, 4357
    )
    VideoNormal = _video(
        "VP9", VP9_MIMETYPE, "VideoNormal", "media/feelings_vp9-20130806-244.webm", 7902885, 135.2, 4357
    )

    Webgl144p30fps = _webgl("VP9", VP9_MIMETYPE, "media/webgl/vp9-144p30.webm", 1366216, "144p", 30)
    Webgl240p30fps = _webgl("VP9", VP9_MIMETYPE, "media/webgl/vp9-240p30.webm", 2648700, "240p", 30)
    Webgl360p30fps = _webgl("VP9", VP9_MIMETYPE, "media/webgl/vp9-360p30.webm", 4735328, "360p", 30)
    Webgl480p30fps = _webgl("VP9", VP9_MIMETYPE, "media/webgl/vp9-480p30.webm", 8588922, "480p", 30)
    Webgl720p30fps = _webgl("VP9", VP9_MIMETYPE, "media/webgl/vp9-720p30.webm", 17213566, "720p", 30)
    Webgl720p60fps = _webgl("VP9", VP9_MIMETYPE, "media/webgl/vp9-720p60.webm", 25773040, "720p", 60)
    Webgl1080p30fps = _webgl("VP9", VP9_MIMETYPE, "media/webgl/vp9-1080p30.webm", 32089418, "1080p", 30)
    Webgl1080p60fps = _webgl("VP9", VP9_MIMETYPE, "media/webgl/vp9-1080p60.webm", 47995434, "1080p", 60)
    Webgl1440p30fps = _webgl("VP9", VP9_MIMETYPE, "media/webgl/vp9-1440p30.webm", 97213582, "1440p", 30)
    Webgl1440p60fps = _webgl("VP9", VP9_MIMETYPE, "media/webgl/vp9-1440p60.webm", 145310542, "1440p", 60)
    Webgl2160p30fps = _webgl("VP9", VP9_MIMETYPE, "media/webgl/vp9-2160p30.webm", 194872406, "2160p", 30)
    Webgl2160p60fps = _webgl("VP9", VP9_MIMETYPE, "media/webgl/vp9-2160p60.webm", 291830244, "2160p", 60)


class H264:
    """H264 video streams (fragmented mp4)."""

    mimetype = H264_MIMETYPE

    VideoTiny = _video(
        "H264",
        H264_MIMETYPE,
        "VideoTiny",
        "media/car-20120827-85.mp4",
        6015001,
        181.43,
        1421,
        properties={"videoChangeRate": 11.47},
    )
    Video1MB = _video("H264", H264_MIMETYPE, "Video1MB", "media/test-video-1MB.mp4", 1053406, 1.6, 1421)
    VideoNormal = _video(
        "H264", H264_MIMETYPE, "VideoNormal", "media/car-20120827-86.mp4", 15704736, 181.43, 1421
    )
    CarMedium = _video(
        "H264", H264_MIMETYPE, "CarMedium", "media/car-20120827-87.mp4", 33203414, 181.43, 1421
    )

    Webgl144p15fps = _webgl("H264", H264_MIMETYPE, "media/webgl/h264-144p15.mp4", 1050214, "144p", 15)
    Webgl240p30fps = _webgl("H264", H264_MIMETYPE, "media/webgl/h264-240p30.mp4", 2437398, "240p", 30)
    Webgl360p30fps = _webgl("H264", H264_MIMETYPE, "media/webgl/h264-360p30.mp4", 4862426, "360p", 30)
    Webgl480p30fps = _webgl("H264", H264_MIMETYPE, "media/webgl/h264-480p30.mp4", 9088126, "480p", 30)
    Webgl720p30fps = _webgl("H264", H264_MIMETYPE, "media/webgl/h264-720p30.mp4", 18006370, "720p", 30)
    Webgl720p60fps = _webgl("H264", H264_MIMETYPE, "media/webgl/h264-720p60.mp4", 27048310, "720p", 60)
    Webgl1080p30fps = _webgl("H264", H264_MIMETYPE, "media/webgl/h264-1080p30.mp4", 33826402, "1080p", 30)
    Webgl1080p60fps = _webgl("H264", H264_MIMETYPE, "media/webgl/h264-1080p60.mp4", 50703058, "1080p", 60)
    Webgl1440p30fps = _webgl("H264", H264_MIMETYPE, "media/webgl/h264-1440p30.mp4", 99630446, "1440p", 30)
    Webgl2160p30fps = _webgl("H264", H264_MIMETYPE, "media/webgl/h264-2160p30.mp4", 201822302, "2160p", 30)


class AV1:
    """AV1 video streams (fragmented mp4)."""

    mimetype = AV1_MIMETYPE

    Bunny144p30fps = _video(
        "AV1", AV1_MIMETYPE, "Bunny144p30fps", "media/av1/bunny_144p30.mp4", 1049234, 30.0, 862
    )
    Bunny240p30fps = _video(
        "AV1",
        AV1_MIMETYPE,
        "Bunny240p30fps",
        "media/av1/bunny_240p30.mp4",
        2271842,
        30.0,
        862,
        properties={"videoChangeRate": 12.0},
    )
    Bunny360p30fps = _video(
        "AV1", AV1_MIMETYPE, "Bunny360p30fps", "media/av1/bunny_360p30.mp4", 4305286, 30.0, 862
    )


class Media:
    """All stream families, addressed as Media.<Codec>.<Stream>."""

    AAC = AAC
    Opus = Opus
    VP9 = VP9
    H264 = H264
    AV1 = AV1
