"""Registration of conformance tests and their sequential execution against a host."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from mashumaro import DataClassDictMixin

from mse_conformance.constants import CONFORMANCE_LOGGER_NAME
from mse_conformance.errors import (
    SetupFailedError,
    TerminalStateError,
    TestFailure,
    TestTimeout,
)
from mse_conformance.helpers.json import json_dumps
from mse_conformance.models.test_case import (
    EntryPoint,
    Outcome,
    TestCase,
    TestContext,
    TestResult,
)

if TYPE_CHECKING:
    from mse_conformance.config import ConformanceConfig
    from mse_conformance.models.host import PlaybackContext, PlaybackHost, RangeFetcher
    from mse_conformance.models.stream import StreamDescriptor

LOGGER = logging.getLogger(CONFORMANCE_LOGGER_NAME)
RUNNER_LOGGER = LOGGER.getChild("runner")


class TestSuite:
    """Ordered registry of conformance tests."""

    __test__ = False

    fields = ("passes", "failures", "timeouts")

    def __init__(self, name: str, *, viewtype: str = "default", info: str = "") -> None:
        """Initialize an empty suite."""
        self.name = name
        self.viewtype = viewtype
        self.info = info
        self._tests: list[TestCase] = []

    def test(
        self,
        name: str,
        category: str = "General",
        mandatory: bool = True,
        streams: Iterable[StreamDescriptor] = (),
        *,
        title: str = "",
        timeout: float | None = None,
    ) -> Callable[[EntryPoint], TestCase]:
        """Decorate a coroutine function as conformance test of this suite.

        :param name: Unique name of the test.
        :param category: Category used to group tests.
        :param mandatory: Whether the test is required to pass.
        :param streams: The streams the host must support to run the test.
        :param title: Human readable title (defaults to the name).
        :param timeout: Per-test timeout in seconds (defaults to the configured one).
        """

        def decorate(func: EntryPoint) -> TestCase:
            return self.add(
                TestCase(
                    name=name,
                    entry=func,
                    category=category,
                    mandatory=mandatory,
                    streams=tuple(streams),
                    title=title or name,
                    timeout=timeout,
                )
            )

        return decorate

    def add(self, test: TestCase) -> TestCase:
        """Register a test and assign its index."""
        if any(existing.name == test.name for existing in self._tests):
            msg = f"Test {test.name} is already registered in {self.name}"
            raise RuntimeError(msg)
        test.index = len(self._tests)
        self._tests.append(test)
        return test

    def get(self, name: str) -> TestCase:
        """Return the test registered as name."""
        for test in self._tests:
            if test.name == name:
                return test
        msg = f"Unknown test {name} in {self.name}"
        raise KeyError(msg)

    def __iter__(self) -> Iterator[TestCase]:
        """Iterate the tests in registration order."""
        return iter(self._tests)

    def __len__(self) -> int:
        """Return the number of registered tests."""
        return len(self._tests)


@dataclass
class TestRunRecord(DataClassDictMixin):
    """Outcome of a single test run."""

    __test__ = False

    name: str
    outcome: Outcome
    reason: str | None = None
    elapsed: float = 0.0
    mandatory: bool = True
    category: str = "General"


@dataclass
class RunReport(DataClassDictMixin):
    """Outcomes of a suite run."""

    suite: str
    records: list[TestRunRecord] = field(default_factory=list)

    def _count(self, outcome: Outcome) -> int:
        return sum(1 for record in self.records if record.outcome == outcome)

    @property
    def passed(self) -> int:
        """Return the number of passed tests."""
        return self._count(Outcome.PASS)

    @property
    def failed(self) -> int:
        """Return the number of failed tests."""
        return self._count(Outcome.FAIL)

    @property
    def timed_out(self) -> int:
        """Return the number of timed out tests."""
        return self._count(Outcome.TIMEOUT)

    @property
    def mandatory_failures(self) -> list[TestRunRecord]:
        """Return the records of mandatory tests that did not pass."""
        return [r for r in self.records if r.mandatory and r.outcome != Outcome.PASS]

    def get(self, name: str) -> TestRunRecord:
        """Return the record of the test named name."""
        for record in self.records:
            if record.name == name:
                return record
        raise KeyError(name)

    def to_json(self) -> str:
        """Serialize the report to json."""
        return json_dumps(self.to_dict(), indent=True)


class TestRunner:
    """Runs the tests of a suite one after another against a host."""

    __test__ = False

    def __init__(
        self, host: PlaybackHost, config: ConformanceConfig, fetcher: RangeFetcher
    ) -> None:
        """Initialize the runner."""
        self.host = host
        self.config = config
        self.fetcher = fetcher

    async def run(self, suite: TestSuite, names: Iterable[str] | None = None) -> RunReport:
        """
        Run (a selection of) the tests of suite and return the report.

        Raises SetupFailedError when the host cannot run the suite at all.

        :param suite: The suite to run.
        :param names: Optional names of the tests to run (all tests by default).
        """
        LOGGER.setLevel(self.config.log_level.upper())
        if not self.host.supports_media_source:
            msg = "Host does not support Media Source Extensions"
            raise SetupFailedError(msg)
        tests = list(suite) if names is None else [suite.get(name) for name in names]
        RUNNER_LOGGER.info("Running %s tests of %s", len(tests), suite.name)
        report = RunReport(suite=suite.name)
        for test in tests:
            report.records.append(await self.run_test(test))
        RUNNER_LOGGER.info(
            "Finished %s: %s passed, %s failed, %s timed out",
            suite.name,
            report.passed,
            report.failed,
            report.timed_out,
        )
        return report

    async def run_test(self, test: TestCase) -> TestRunRecord:
        """Run a single test and record its outcome."""
        result = TestResult(
            test.name,
            append_iteration_cap=self.config.append_iteration_cap,
            play_through_ceiling=self.config.play_through_ceiling,
        )
        start = time.monotonic()
        if unsupported := test.unsupported_streams(self.host):
            # a test the host cannot play is not held against it
            test.mandatory = False
            result.fail(
                "Unsupported stream(s): " + ", ".join(stream.mimetype for stream in unsupported)
            )
        else:
            result.logger.debug("Starting test %s (#%s)", test.name, test.index)
            await self._execute(test, result)
        if result.outcome is None:
            msg = f"Test {test.name} ended without an outcome"
            raise TerminalStateError(msg)
        test.record(result.outcome)
        return TestRunRecord(
            name=test.name,
            outcome=result.outcome,
            reason=result.reason,
            elapsed=round(time.monotonic() - start, 3),
            mandatory=test.mandatory,
            category=test.category,
        )

    async def _execute(self, test: TestCase, result: TestResult) -> None:
        """Open a playback context, run the entry point and classify how it ended."""
        timeout = test.timeout or self.config.default_timeout
        playback: PlaybackContext | None = None
        try:
            async with asyncio.timeout(timeout):
                playback = await self.host.open()
                context = TestContext(
                    test=test,
                    result=result,
                    config=self.config,
                    host=self.host,
                    playback=playback,
                    fetcher=self.fetcher,
                )
                await test.entry(context)
        except TestFailure as err:
            result.fail(str(err))
        except TestTimeout as err:
            result.time_out(str(err))
        except TimeoutError:
            result.time_out(f"Test did not finish within {timeout} seconds")
        except (SetupFailedError, TerminalStateError):
            raise
        except Exception as err:
            result.logger.warning(
                "Unexpected error in test %s: %s",
                test.name,
                str(err),
                exc_info=err if result.logger.isEnabledFor(logging.DEBUG) else None,
            )
            result.fail(f"{type(err).__name__}: {err}")
        else:
            if not result.done:
                result.succeed()
        finally:
            if playback is not None:
                await self.host.close(playback)
