"""Helpers to work with (de)serializing of json."""

from __future__ import annotations

import asyncio
from typing import Any

import orjson

JSON_DECODE_EXCEPTIONS = (orjson.JSONDecodeError,)

json_loads = orjson.loads


def json_dumps(data: Any, indent: bool = False) -> str:
    """Dump json string."""
    option = orjson.OPT_NON_STR_KEYS | orjson.OPT_SERIALIZE_DATACLASS
    if indent:
        option |= orjson.OPT_INDENT_2
    return orjson.dumps(data, option=option).decode("utf-8")


async def async_json_loads(data: str | bytes) -> Any:
    """Load json from string in an executor."""
    return await asyncio.to_thread(json_loads, data)
