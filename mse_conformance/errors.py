"""Errors raised by the conformance suite."""

from __future__ import annotations


class ConformanceError(Exception):
    """Base exception for the conformance suite."""


class SetupFailedError(ConformanceError):
    """Raised when the host cannot run the suite at all."""


class NetworkError(ConformanceError):
    """Raised when fetching a media resource fails."""


class InvalidStateError(ConformanceError):
    """Raised by a host buffer when it is used while busy."""


class QuotaExceededError(ConformanceError):
    """Raised by a host buffer that refuses data because it is full."""


class SourceExhaustedError(ConformanceError):
    """Raised when pulling from a source whose cursor reached the end."""


class TestFailure(ConformanceError):
    """Raised when a conformance check fails."""

    __test__ = False


class TestTimeout(ConformanceError):
    """Raised when a bounded wait elapsed before reaching its target."""

    __test__ = False


class TerminalStateError(ConformanceError):
    """Raised when a test result receives a second terminal call."""
