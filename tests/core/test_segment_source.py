"""Tests for the segment source."""

from unittest.mock import Mock

import pytest

from mse_conformance.errors import InvalidStateError, NetworkError, SourceExhaustedError
from mse_conformance.models.stream import SegmentIndex
from mse_conformance.sources import SegmentSource
from tests.fake_host import BASE_URL, SEGMENT_HEADER, MemoryFetcher, build_media


def _source(fetcher: MemoryFetcher, name: str = "clip", **kwargs) -> SegmentSource:
    stream = fetcher.add_stream(name, [1.0, 1.0, 2.0, 1.0], payload_size=100)
    return SegmentSource.for_stream(stream, fetcher, BASE_URL, **kwargs)


async def test_index_mode_delivers_one_chunk_per_segment() -> None:
    """Test that an indexed source yields the init chunk and then every segment."""
    fetcher = MemoryFetcher()
    source = _source(fetcher)
    data = fetcher.resources[BASE_URL + "clip.bin"]
    init = await source.init()
    assert init == data[:40]
    chunks = []
    while not source.exhausted:
        chunks.append(await source.pull())
    assert len(chunks) == 4
    assert init + b"".join(chunks) == data
    with pytest.raises(SourceExhaustedError):
        await source.pull()


async def test_restart_is_idempotent() -> None:
    """Test that init(0) after pulling restarts the same byte sequence."""
    fetcher = MemoryFetcher()
    source = _source(fetcher)
    first_init = await source.init(0)
    first = [await source.pull(), await source.pull()]
    second_init = await source.init(0)
    second = [await source.pull(), await source.pull()]
    assert first_init == second_init
    assert first == second


async def test_init_positions_cursor_at_time() -> None:
    """Test that init(time) starts at the segment holding time."""
    fetcher = MemoryFetcher()
    source = _source(fetcher)
    await source.init(2.5)
    chunk = await source.pull()
    start, duration = SEGMENT_HEADER.unpack_from(chunk, 8)
    assert start == 2.0
    assert duration == 2.0


async def test_seek_before_init_is_applied_on_init() -> None:
    """Test that a seek issued before the first init positions the cursor."""
    fetcher = MemoryFetcher()
    source = _source(fetcher)
    source.seek(4.0)
    await source.init()
    chunk = await source.pull()
    assert SEGMENT_HEADER.unpack_from(chunk, 8)[0] == 4.0
    assert source.exhausted


async def test_pull_without_init_includes_init_chunk() -> None:
    """Test that pulling without init delivers the file from its first byte."""
    fetcher = MemoryFetcher()
    source = _source(fetcher)
    data = fetcher.resources[BASE_URL + "clip.bin"]
    chunks = []
    while not source.exhausted:
        chunks.append(await source.pull())
    assert len(chunks) == 4
    assert chunks[0].startswith(data[:40])
    assert SEGMENT_HEADER.unpack_from(chunks[0], 48)[0] == 0.0
    assert b"".join(chunks) == data


async def test_seek_zero_restores_fresh_state() -> None:
    """Test that seek(0) replays the same chunks as a freshly constructed source."""
    fetcher = MemoryFetcher()
    source = _source(fetcher)
    fresh = [await source.pull(), await source.pull()]
    await source.pull()
    source.seek(0)
    assert [await source.pull(), await source.pull()] == fresh


async def test_ratio_mode_fixed_chunks() -> None:
    """Test that a source without index delivers fixed size chunks after the init boundary."""
    fetcher = MemoryFetcher()
    stream = fetcher.add_stream("plain", [1.0] * 10, payload_size=100, with_index=False)
    source = SegmentSource.for_stream(stream, fetcher, BASE_URL, segment_size=256)
    data = fetcher.resources[BASE_URL + "plain.bin"]
    init = await source.init()
    assert init == data[: stream.init_size]
    chunks = []
    while not source.exhausted:
        chunks.append(await source.pull())
    assert all(len(chunk) == 256 for chunk in chunks[:-1])
    assert 0 < len(chunks[-1]) <= 256
    assert init + b"".join(chunks) == data


async def test_ratio_mode_seek_is_chunk_aligned() -> None:
    """Test that seeking in ratio mode maps time linearly and aligns to the chunk size."""
    fetcher = MemoryFetcher()
    stream = fetcher.add_stream("plain", [1.0] * 10, payload_size=100, with_index=False)
    source = SegmentSource.for_stream(stream, fetcher, BASE_URL, segment_size=100)
    await source.init()
    source.seek(5.0)
    media_bytes = stream.size - stream.init_size
    expected = stream.init_size + (media_bytes // 2 // 100) * 100
    assert source.offset == expected
    source.seek(100.0)
    assert source.offset <= stream.size


async def test_seek_aborts_buffer() -> None:
    """Test that seek aborts the given buffer and refuses one that keeps updating."""
    fetcher = MemoryFetcher()
    source = _source(fetcher)
    await source.init()
    buffer = Mock(updating=False, mimetype="video/webm")
    source.seek(1.0, buffer)
    buffer.abort.assert_called_once()
    busy = Mock(updating=True, mimetype="video/webm")
    with pytest.raises(InvalidStateError):
        source.seek(1.0, busy)


async def test_explicit_index() -> None:
    """Test a source constructed with an in-memory index."""
    fetcher = MemoryFetcher()
    data, index = build_media([0.5, 0.5])
    fetcher.resources[BASE_URL + "inline.bin"] = data
    source = SegmentSource(
        BASE_URL + "inline.bin", fetcher, index=SegmentIndex.from_dict(index)
    )
    await source.init()
    assert source.size == len(data)
    await source.pull()
    await source.pull()
    assert source.exhausted


async def test_missing_resource() -> None:
    """Test that fetch errors propagate as NetworkError."""
    fetcher = MemoryFetcher()
    source = SegmentSource(BASE_URL + "missing.bin", fetcher, size=100, duration=1.0, init_size=10)
    with pytest.raises(NetworkError):
        await source.init()


async def test_unknown_init_boundary() -> None:
    """Test that a source without index or init size cannot be initialized."""
    source = SegmentSource(BASE_URL + "x.bin", MemoryFetcher(), size=100, duration=1.0)
    with pytest.raises(ValueError):
        await source.init()


def test_invalid_segment_size() -> None:
    """Test that the chunk size must be positive."""
    with pytest.raises(ValueError):
        SegmentSource(BASE_URL + "x.bin", MemoryFetcher(), segment_size=0)
