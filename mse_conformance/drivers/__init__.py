"""Drivers feeding host buffers and steering playback."""

from .append import (
    AppendTracker,
    BufferState,
    append_buffer,
    append_init,
    append_until,
    fill_until_full,
    safe_append,
    set_duration,
)
from .playback import play_through, wait_for_metadata, wait_until

__all__ = [
    "AppendTracker",
    "BufferState",
    "append_buffer",
    "append_init",
    "append_until",
    "fill_until_full",
    "play_through",
    "safe_append",
    "set_duration",
    "wait_for_metadata",
    "wait_until",
]
