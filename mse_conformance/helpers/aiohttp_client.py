"""Helpers for setting up a aiohttp session and fetching byte ranges with it."""

from __future__ import annotations

import logging
import re
import sys
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Self

import aiohttp
from aiohttp.hdrs import CONTENT_RANGE, RANGE, USER_AGENT

from mse_conformance.constants import APPLICATION_NAME, CONFORMANCE_LOGGER_NAME, VERBOSE_LOG_LEVEL
from mse_conformance.errors import NetworkError
from mse_conformance.models.host import RangeResponse

from .json import JSON_DECODE_EXCEPTIONS, json_dumps, json_loads

if TYPE_CHECKING:
    from types import TracebackType

    from aiohttp.typedefs import JSONDecoder

    from mse_conformance.config import ConformanceConfig

LOGGER = logging.getLogger(f"{CONFORMANCE_LOGGER_NAME}.http")

MAXIMUM_CONNECTIONS = 64
MAXIMUM_CONNECTIONS_PER_HOST = 16

CONTENT_RANGE_RE = re.compile(r"bytes\s+(\d+)-(\d+)/(\d+|\*)")


def create_clientsession(
    config: ConformanceConfig,
    **kwargs: Any,
) -> aiohttp.ClientSession:
    """Create a new ClientSession with kwargs, i.e. for cookies."""
    clientsession = aiohttp.ClientSession(
        connector=aiohttp.TCPConnector(
            ssl=None if config.verify_ssl else False,
            limit=MAXIMUM_CONNECTIONS,
            limit_per_host=MAXIMUM_CONNECTIONS_PER_HOST,
        ),
        json_serialize=json_dumps,
        response_class=ConformanceClientResponse,
        **kwargs,
    )
    # Prevent packages accidentally overriding our default headers
    user_agent = (
        f"{APPLICATION_NAME} "
        f"aiohttp/{aiohttp.__version__} Python/{sys.version_info[0]}.{sys.version_info[1]}"
    )
    if config.user_agent_suffix:
        user_agent = f"{user_agent} {config.user_agent_suffix}"
    clientsession._default_headers = MappingProxyType(  # type: ignore[assignment]
        {USER_AGENT: user_agent},
    )
    return clientsession


class ConformanceClientResponse(aiohttp.ClientResponse):
    """aiohttp.ClientResponse with a json method that uses json_loads by default."""

    async def json(
        self,
        *args: Any,
        loads: JSONDecoder = json_loads,
        **kwargs: Any,
    ) -> Any:
        """Send a json request and parse the json response."""
        return await super().json(*args, loads=loads, **kwargs)


def parse_content_range(value: str | None) -> tuple[int, int, int | None] | None:
    """Parse a Content-Range header into (first, last, total)."""
    if not value:
        return None
    if not (match := CONTENT_RANGE_RE.match(value.strip())):
        return None
    total = None if match.group(3) == "*" else int(match.group(3))
    return int(match.group(1)), int(match.group(2)), total


class HTTPRangeFetcher:
    """Fetch byte ranges of remote resources (the network capability of a test run)."""

    def __init__(self, session: aiohttp.ClientSession, timeout: float = 30.0) -> None:
        """Initialize the fetcher with an (externally owned) client session."""
        self.session = session
        self.timeout = aiohttp.ClientTimeout(total=timeout)

    @classmethod
    def from_config(cls, config: ConformanceConfig) -> Self:
        """Create a fetcher with its own client session."""
        return cls(create_clientsession(config), timeout=config.default_timeout)

    async def close(self) -> None:
        """Close the underlying session."""
        await self.session.close()

    async def __aenter__(self) -> Self:
        """Enter context manager."""
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> bool | None:
        """Exit context manager."""
        await self.close()
        return None

    async def fetch(self, url: str, start: int = 0, end: int | None = None) -> RangeResponse:
        """
        Fetch bytes [start, end) of url.

        :param url: The resource url.
        :param start: First byte to fetch.
        :param end: Exclusive end offset, None to fetch until the end of the resource.
        """
        if end is not None and end <= start:
            return RangeResponse(data=b"", start=start, total_size=None)
        byte_range = f"bytes={start}-" if end is None else f"bytes={start}-{end - 1}"
        try:
            async with self.session.get(
                url, headers={RANGE: byte_range}, timeout=self.timeout
            ) as resp:
                if resp.status not in (200, 206):
                    msg = f"Fetching {url} ({byte_range}) failed with status {resp.status}"
                    raise NetworkError(msg)
                data = await resp.read()
                content_range = parse_content_range(resp.headers.get(CONTENT_RANGE))
        except aiohttp.ClientError as err:
            msg = f"Fetching {url} ({byte_range}) failed: {err}"
            raise NetworkError(msg) from err
        except TimeoutError as err:
            msg = f"Fetching {url} ({byte_range}) timed out"
            raise NetworkError(msg) from err
        if resp.status == 200:
            # server ignored the range request, slice locally
            total_size: int | None = len(data)
            data = data[start:end]
        elif content_range is not None:
            total_size = content_range[2]
        else:
            total_size = None
        if LOGGER.isEnabledFor(VERBOSE_LOG_LEVEL):
            LOGGER.log(
                VERBOSE_LOG_LEVEL,
                "Fetched %s bytes of %s (%s, total: %s)",
                len(data),
                url,
                byte_range,
                total_size,
            )
        return RangeResponse(data=data, start=start, total_size=total_size)

    async def fetch_json(self, url: str) -> Any:
        """Fetch and decode a json document."""
        try:
            async with self.session.get(url, timeout=self.timeout) as resp:
                if resp.status != 200:
                    msg = f"Fetching {url} failed with status {resp.status}"
                    raise NetworkError(msg)
                raw = await resp.read()
        except aiohttp.ClientError as err:
            msg = f"Fetching {url} failed: {err}"
            raise NetworkError(msg) from err
        except TimeoutError as err:
            msg = f"Fetching {url} timed out"
            raise NetworkError(msg) from err
        try:
            return json_loads(raw)
        except JSON_DECODE_EXCEPTIONS as err:
            msg = f"Document at {url} is not valid json"
            raise NetworkError(msg) from err
