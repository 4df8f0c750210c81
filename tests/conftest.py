"""Fixtures for testing the MSE conformance suite."""

import json
import logging
import pathlib
from collections.abc import AsyncGenerator

import aiofiles
import pytest

from mse_conformance.config import ConformanceConfig
from mse_conformance.models.test_case import TestResult
from mse_conformance.runner import TestRunner, TestSuite
from tests.fake_host import BASE_URL, FakeHost, MemoryFetcher


@pytest.fixture(name="caplog")
def caplog_fixture(caplog: pytest.LogCaptureFixture) -> pytest.LogCaptureFixture:
    """Set log level to debug for tests using the caplog fixture."""
    caplog.set_level(logging.DEBUG)
    return caplog


@pytest.fixture
def config() -> ConformanceConfig:
    """Return a config pointing at the in-memory media server, with short timeouts."""
    return ConformanceConfig(
        media_base_url=BASE_URL,
        default_timeout=5.0,
        play_through_ceiling=5.0,
        log_level="DEBUG",
    )


@pytest.fixture
def fetcher() -> MemoryFetcher:
    """Return an empty in-memory fetcher."""
    return MemoryFetcher()


@pytest.fixture
def host() -> FakeHost:
    """Return a fake host supporting every media type."""
    return FakeHost()


@pytest.fixture
def runner(host: FakeHost, config: ConformanceConfig, fetcher: MemoryFetcher) -> TestRunner:
    """Return a runner bound to the fake host."""
    return TestRunner(host, config, fetcher)


@pytest.fixture
def suite() -> TestSuite:
    """Return an empty suite."""
    return TestSuite("Fixture Suite")


@pytest.fixture
def result() -> TestResult:
    """Return an open result with small driver bounds."""
    return TestResult("fixture", append_iteration_cap=50, play_through_ceiling=2.0)


@pytest.fixture
async def playback(host: FakeHost) -> AsyncGenerator:
    """Open a playback context on the fake host.

    :param host: The fake host.
    """
    context = await host.open()
    try:
        yield context
    finally:
        await host.close(context)


@pytest.fixture
async def settings_file(tmp_path: pathlib.Path) -> pathlib.Path:
    """Write a settings file and return its path.

    :param tmp_path: Temporary directory for test data.
    """
    settings_path = tmp_path / "settings.json"
    settings_data = {
        "media_base_url": "http://example.test/media/",
        "default_timeout": 12.5,
        "support_webgl": True,
    }
    async with aiofiles.open(settings_path, "w") as f:
        await f.write(json.dumps(settings_data))
    return settings_path
