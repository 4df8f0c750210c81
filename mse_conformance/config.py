"""Logic to load the (optional) settings of a conformance run."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields
from typing import Any

import aiofiles
from aiofiles.os import wrap
from mashumaro import DataClassDictMixin
from mashumaro.exceptions import InvalidFieldValue, MissingField

from mse_conformance.constants import (
    CONF_ENV_PREFIX,
    CONFORMANCE_LOGGER_NAME,
    DEFAULT_APPEND_ITERATION_CAP,
    DEFAULT_APPEND_SIZE,
    DEFAULT_MEDIA_BASE_URL,
    DEFAULT_PLAY_THROUGH_CEILING,
    DEFAULT_TEST_TIMEOUT,
    SETTINGS_FILENAME,
)
from mse_conformance.errors import SetupFailedError
from mse_conformance.helpers.json import JSON_DECODE_EXCEPTIONS, async_json_loads

LOGGER = logging.getLogger(f"{CONFORMANCE_LOGGER_NAME}.config")

isfile = wrap(os.path.isfile)

_TRUE_VALUES = ("1", "true", "yes", "on")


@dataclass
class ConformanceConfig(DataClassDictMixin):
    """Settings of a conformance run."""

    media_base_url: str = DEFAULT_MEDIA_BASE_URL
    default_timeout: float = DEFAULT_TEST_TIMEOUT
    append_iteration_cap: int = DEFAULT_APPEND_ITERATION_CAP
    play_through_ceiling: float = DEFAULT_PLAY_THROUGH_CEILING
    append_chunk_size: int = DEFAULT_APPEND_SIZE
    log_level: str = "INFO"
    support_webgl: bool = False
    require_av1: bool = False
    verify_ssl: bool = True
    user_agent_suffix: str | None = None

    def resolve_url(self, src: str) -> str:
        """Return the absolute url for a (relative) media path."""
        if "://" in src:
            return src
        return self.media_base_url.rstrip("/") + "/" + src.lstrip("/")


def _env_overrides(environ: dict[str, str] | os._Environ[str]) -> dict[str, Any]:
    """Collect config values from MSE_CONFORMANCE_* environment variables."""
    overrides: dict[str, Any] = {}
    for conf_field in fields(ConformanceConfig):
        raw_value = environ.get(f"{CONF_ENV_PREFIX}{conf_field.name.upper()}")
        if raw_value is None:
            continue
        # annotations are strings here (postponed evaluation)
        field_type = str(conf_field.type)
        try:
            if field_type == "bool":
                overrides[conf_field.name] = raw_value.strip().lower() in _TRUE_VALUES
            elif field_type == "int":
                overrides[conf_field.name] = int(raw_value)
            elif field_type == "float":
                overrides[conf_field.name] = float(raw_value)
            else:
                overrides[conf_field.name] = raw_value
        except ValueError as err:
            msg = f"Invalid value for {CONF_ENV_PREFIX}{conf_field.name.upper()}: {raw_value}"
            raise SetupFailedError(msg) from err
    return overrides


async def load_config(
    path: str | None = None,
    environ: dict[str, str] | None = None,
) -> ConformanceConfig:
    """
    Load the configuration from a settings file and the environment.

    Environment variables take precedence over values from the file.
    A directory path is resolved to the settings.json inside it.

    :param path: Optional path to a json settings file (or its directory).
    :param environ: Optional environment mapping (defaults to os.environ).
    """
    data: dict[str, Any] = {}
    if path is not None:
        if os.path.isdir(path):
            path = os.path.join(path, SETTINGS_FILENAME)
        if not await isfile(path):
            msg = f"Settings file {path} does not exist"
            raise SetupFailedError(msg)
        async with aiofiles.open(path, encoding="utf-8") as _file:
            raw = await _file.read()
        try:
            data = await async_json_loads(raw)
        except JSON_DECODE_EXCEPTIONS as err:
            msg = f"Settings file {path} is not valid json"
            raise SetupFailedError(msg) from err
        LOGGER.debug("Loaded settings from %s", path)
    data.update(_env_overrides(os.environ if environ is None else environ))
    try:
        config = ConformanceConfig.from_dict(data)
    except (InvalidFieldValue, MissingField, ValueError) as err:
        msg = f"Invalid conformance settings: {err}"
        raise SetupFailedError(msg) from err
    return config
