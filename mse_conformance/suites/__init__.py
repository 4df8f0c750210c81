"""Concrete conformance suites."""

from .mse_codec import build_mse_codec_suite
from .webgl import build_webgl_suite

__all__ = ["build_mse_codec_suite", "build_webgl_suite"]
