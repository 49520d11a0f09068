"""Batch runner: suite lifecycle and bounded worker pool.

A :class:`Batch` takes a target set of tests, applies skip/only
selection, and drives the :class:`Executor` over the runnable tests with
at most ``max_concurrency`` of them in flight.  Workers share a single
queue and pull the next pending test as soon as a slot frees up.

Suite hooks wrap the tests of a batch exactly once per suite, or of a
whole pipeline run when its stages share one :class:`SuiteLifecycle`.
The first test of a suite to start triggers that suite's ``before_all``
chain (and every other test of the suite waits on the same run of it),
outermost ancestor first.  ``after_all`` runs once the last selected test of the
suite has finished, innermost suite first.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field

from gauntlet.core.errors import HookFailure
from gauntlet.core.executor import Executor, run_hook_chain
from gauntlet.core.models import (
    CapturedError,
    HookType,
    RunSummary,
    SuiteError,
    TestCase,
    TestResult,
    TestStatus,
    TestSuite,
)
from gauntlet.core.registry import Registry

logger = logging.getLogger(__name__)


@dataclass
class BatchResult:
    """Outcome of one batch.

    Attributes:
        results: One result per target test, in the order given.
        suite_errors: ``before_all``/``after_all`` failures.
        duration_ms: Wall-clock time of the batch.
        peak_concurrency: Highest number of tests observed in flight.
        timed_out: Whether the batch was abandoned before finishing.
    """

    results: list[TestResult] = field(default_factory=list)
    suite_errors: list[SuiteError] = field(default_factory=list)
    duration_ms: float = 0.0
    peak_concurrency: int = 0
    timed_out: bool = False

    def summary(self) -> RunSummary:
        return RunSummary.from_results(self.results, self.duration_ms)

    @property
    def failed(self) -> bool:
        return (
            self.timed_out
            or bool(self.suite_errors)
            or any(r.status.is_failure for r in self.results)
        )


class SuiteLifecycle:
    """Tracks ``before_all``/``after_all`` for the suites touched by a run.

    A lifecycle is normally private to one :class:`Batch`.  A pipeline
    shares one across all of its stages so that a suite whose tests span
    several stages is still set up and torn down exactly once: every
    planned test is counted in up front with :meth:`add`, and tests that
    will never run are counted out with :meth:`release`.
    """

    def __init__(self, registry: Registry, tests: Iterable[TestCase] = ()) -> None:
        self._registry = registry
        self._remaining: dict[str, int] = {}
        self._setups: dict[str, asyncio.Task[None]] = {}
        self._torn_down: set[str] = set()
        self.add(tests)

    def add(self, tests: Iterable[TestCase]) -> None:
        """Count *tests* in as tests that will pass through the lifecycle."""
        for test in tests:
            for suite in self._registry.ancestors(test.suite_id):
                self._remaining[suite.id] = self._remaining.get(suite.id, 0) + 1

    async def enter(self, test: TestCase, errors: list[SuiteError]) -> HookFailure | None:
        """Await every ``before_all`` the test depends on, outermost first.

        Returns the first failure, in which case inner suites are not set up.
        A ``before_all`` failure is appended to *errors* by the test that
        triggered the setup.
        """
        for suite in self._registry.ancestors(test.suite_id):
            task = self._setups.get(suite.id)
            if task is None:
                task = asyncio.ensure_future(self._set_up(suite, errors))
                self._setups[suite.id] = task
            try:
                await task
            except HookFailure as exc:
                return exc
        return None

    async def _set_up(self, suite: TestSuite, errors: list[SuiteError]) -> None:
        try:
            await run_hook_chain(suite.hooks.before_all, HookType.BEFORE_ALL, suite.name)
        except HookFailure as exc:
            errors.append(_suite_error(suite, HookType.BEFORE_ALL, exc))
            raise

    async def leave(self, test: TestCase, errors: list[SuiteError]) -> None:
        """Count the test out and tear down suites it was the last test of."""
        for suite in reversed(self._registry.ancestors(test.suite_id)):
            await self._count_out(suite, errors)

    async def release(self, tests: Iterable[TestCase], errors: list[SuiteError]) -> None:
        """Count out tests that were planned but will never run."""
        for test in tests:
            await self.leave(test, errors)

    async def _count_out(self, suite: TestSuite, errors: list[SuiteError]) -> None:
        remaining = self._remaining.get(suite.id, 0) - 1
        self._remaining[suite.id] = remaining
        if remaining > 0 or suite.id not in self._setups or suite.id in self._torn_down:
            return
        self._torn_down.add(suite.id)
        try:
            await run_hook_chain(suite.hooks.after_all, HookType.AFTER_ALL, suite.name)
        except HookFailure as exc:
            errors.append(_suite_error(suite, HookType.AFTER_ALL, exc))


def _suite_error(suite: TestSuite, hook_type: HookType, exc: HookFailure) -> SuiteError:
    return SuiteError(
        suite_id=suite.id,
        suite_name=suite.name,
        hook_type=hook_type,
        error=CapturedError.from_exception(exc),
    )


class Batch:
    """A single execution of a target set of tests.

    Args:
        registry: Registry owning the tests.
        executor: Engine used to run each test.
        tests: Target set, in the order results should be reported.
        parallel: Run up to *max_concurrency* tests at once.
        max_concurrency: Worker count when *parallel* is set.
        lifecycle: Shared suite lifecycle whose counts already include this
            batch's runnable tests.  A private one is created when omitted.
    """

    def __init__(
        self,
        registry: Registry,
        executor: Executor,
        tests: Iterable[TestCase],
        parallel: bool = False,
        max_concurrency: int = 1,
        lifecycle: SuiteLifecycle | None = None,
    ) -> None:
        self._registry = registry
        self._executor = executor
        self._tests = list(tests)
        self.selection = registry.select(self._tests)
        self.workers = max(1, max_concurrency) if parallel else 1
        if lifecycle is None:
            lifecycle = SuiteLifecycle(registry, self.selection.runnable)
        self._lifecycle = lifecycle
        self._suite_errors: list[SuiteError] = []
        self._results: dict[str, TestResult] = {}
        self._dispatched: set[str] = set()
        self._in_flight = 0
        self.peak_concurrency = 0
        self._closed = False
        self._started = 0.0

    @property
    def unstarted(self) -> list[TestCase]:
        """Runnable tests no worker has picked up."""
        return [t for t in self.selection.runnable if t.id not in self._dispatched]

    async def run(self) -> BatchResult:
        self._started = time.time()
        for test in self.selection.skipped:
            test.status = TestStatus.SKIPPED
            self._results[test.id] = TestResult.not_run(
                test, TestStatus.SKIPPED, self._suite_name(test)
            )

        pending = iter(self.selection.runnable)
        workers = min(self.workers, len(self.selection.runnable))
        logger.debug(
            "Running %d test(s) with %d worker(s), %d skipped",
            len(self.selection.runnable),
            workers,
            len(self.selection.skipped),
        )
        await asyncio.gather(*(self._worker(pending) for _ in range(workers)))
        return self._collect(timed_out=False)

    def snapshot(self, missing_error: BaseException) -> BatchResult:
        """Stop handing out tests and report what has finished so far.

        Tests without a result (in flight or never started) are reported
        ``error`` with *missing_error*.  In-flight tests are not stopped.
        """
        self._closed = True
        captured = CapturedError.from_exception(missing_error)
        for test in self._tests:
            if test.id not in self._results:
                self._results[test.id] = TestResult.not_run(
                    test, TestStatus.ERROR, self._suite_name(test), captured
                )
        return self._collect(timed_out=True)

    async def release_unstarted(self) -> list[SuiteError]:
        """Count never-started tests out of the lifecycle after :meth:`snapshot`.

        Returns the ``after_all`` failures this triggers.
        """
        errors: list[SuiteError] = []
        await self._lifecycle.release(self.unstarted, errors)
        return errors

    async def _worker(self, pending: Iterator[TestCase]) -> None:
        for test in pending:
            if self._closed:
                return
            await self._run_one(test)

    async def _run_one(self, test: TestCase) -> None:
        self._dispatched.add(test.id)
        failure = await self._lifecycle.enter(test, self._suite_errors)
        if failure is not None:
            test.status = TestStatus.ERROR
            test.error = CapturedError.from_exception(failure)
            result = TestResult.not_run(
                test, TestStatus.ERROR, self._suite_name(test), test.error
            )
        else:
            self._in_flight += 1
            self.peak_concurrency = max(self.peak_concurrency, self._in_flight)
            try:
                result = await self._executor.run(test)
            finally:
                self._in_flight -= 1
        self._results.setdefault(test.id, result)
        await self._lifecycle.leave(test, self._suite_errors)

    def _suite_name(self, test: TestCase) -> str:
        return self._registry.get_suite(test.suite_id).name

    def _collect(self, timed_out: bool) -> BatchResult:
        return BatchResult(
            results=[self._results[t.id] for t in self._tests if t.id in self._results],
            suite_errors=list(self._suite_errors),
            duration_ms=round((time.time() - self._started) * 1000, 3),
            peak_concurrency=self.peak_concurrency,
            timed_out=timed_out,
        )


class Runner:
    """Runs ad-hoc batches of tests outside of a pipeline."""

    def __init__(self, registry: Registry, executor: Executor | None = None) -> None:
        self.registry = registry
        self.executor = executor or Executor(registry)

    def batch(
        self,
        tests: Iterable[TestCase],
        parallel: bool = False,
        max_concurrency: int = 1,
    ) -> Batch:
        return Batch(
            self.registry,
            self.executor,
            tests,
            parallel=parallel,
            max_concurrency=max_concurrency,
        )

    async def run(
        self,
        tests: Iterable[TestCase],
        parallel: bool = False,
        max_concurrency: int = 1,
    ) -> BatchResult:
        return await self.batch(tests, parallel, max_concurrency).run()


async def run_suite(
    registry: Registry, name: str, executor: Executor | None = None
) -> BatchResult:
    """Run every test in the suite called *name*, nested suites included.

    Raises:
        KeyError: If no suite is called *name*.
    """
    tests = registry.filter(suite=name)
    logger.info("Running suite '%s' (%d tests)", name, len(tests))
    return await Runner(registry, executor).run(tests)


async def run_matching(
    registry: Registry, pattern: str, executor: Executor | None = None
) -> BatchResult:
    """Run tests whose full name contains *pattern* (case-insensitive)."""
    tests = registry.filter(pattern=pattern)
    logger.info("Running %d test(s) matching '%s'", len(tests), pattern)
    return await Runner(registry, executor).run(tests)


async def run_tagged(
    registry: Registry, tag: str, executor: Executor | None = None
) -> BatchResult:
    """Run tests carrying *tag*."""
    tests = registry.filter(tags=[tag])
    logger.info("Running %d test(s) tagged '%s'", len(tests), tag)
    return await Runner(registry, executor).run(tests)
