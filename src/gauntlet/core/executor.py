"""Execution engine.

Runs one :class:`TestCase` at a time: ``before_each`` hooks, the body
raced against its timeout, ``after_each`` hooks, and bounded automatic
retry.  Errors raised by bodies and hooks never escape; they become the
test's status and captured error.

Timeouts are cooperative.  When the timer wins the race the engine stops
waiting and records a :class:`TimeoutFailure`, but the body's task is
left to finish on its own and its outcome is discarded.  A body that
never yields to the event loop cannot be interrupted at all.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from gauntlet.core.errors import (
    AssertionFailure,
    ConcurrentRunError,
    GauntletError,
    HookFailure,
    TimeoutFailure,
)
from gauntlet.core.events import EventEmitter, EventType, LifecycleEvent
from gauntlet.core.models import (
    CapturedError,
    HookFn,
    HookType,
    TestCase,
    TestResult,
    TestStatus,
    TestSuite,
)
from gauntlet.core.registry import Registry

DEFAULT_TIMEOUT_MS = 5000
DEFAULT_MAX_RETRIES = 3

logger = logging.getLogger(__name__)


async def call_maybe_async(fn: Any) -> Any:
    """Call *fn* and await the result when it is awaitable."""
    result = fn()
    if inspect.isawaitable(result):
        result = await result
    return result


async def run_hook_chain(
    hooks: Sequence[HookFn], hook_type: HookType, suite_name: str = ""
) -> None:
    """Run *hooks* in order, stopping at the first failure.

    Raises:
        HookFailure: Wrapping the first exception raised by a hook.
    """
    for hook in hooks:
        try:
            await call_maybe_async(hook)
        except Exception as exc:
            where = f" of suite '{suite_name}'" if suite_name else ""
            logger.error("Error in %s hook%s: %s", hook_type.value, where, exc)
            raise HookFailure(
                f"{hook_type.value} hook{where} failed: {type(exc).__name__}: {exc}",
                hook_type=hook_type.value,
                suite_name=suite_name,
                cause=exc,
            ) from exc


def _discard_outcome(task: asyncio.Future[Any]) -> None:
    """Done-callback for abandoned bodies; retrieves and drops the outcome."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug("Discarded late failure of timed-out test body: %s", exc)


def _is_retryable(exc: BaseException) -> bool:
    """Foreign exceptions are retried; Gauntlet errors decide for themselves."""
    if isinstance(exc, GauntletError):
        return exc.is_retryable
    return True


def _extract_metrics(output: Any) -> dict[str, float]:
    if not isinstance(output, Mapping):
        return {}
    metrics = output.get("metrics")
    if not isinstance(metrics, Mapping):
        return {}
    return {
        str(k): float(v)
        for k, v in metrics.items()
        if isinstance(v, (int, float)) and not isinstance(v, bool)
    }


@dataclass
class _Attempt:
    error: BaseException | None = None
    output: Any = None
    aux_errors: list[CapturedError] = field(default_factory=list)


class Executor:
    """Runs test cases with hooks, timeouts and retry.

    Args:
        registry: Registry owning the tests; used to resolve the suite
            chain whose ``before_each``/``after_each`` hooks wrap a test.
        default_timeout_ms: Timeout for tests registered without one.
        default_max_retries: Retry budget for tests registered without one.
        event_emitter: Optional emitter for ``test:*`` events.
    """

    def __init__(
        self,
        registry: Registry,
        default_timeout_ms: int = DEFAULT_TIMEOUT_MS,
        default_max_retries: int = DEFAULT_MAX_RETRIES,
        event_emitter: EventEmitter | None = None,
    ) -> None:
        self._registry = registry
        self.default_timeout_ms = default_timeout_ms
        self.default_max_retries = default_max_retries
        self._event_emitter = event_emitter

    @property
    def registry(self) -> Registry:
        return self._registry

    async def _emit(self, event: LifecycleEvent) -> None:
        if self._event_emitter is not None:
            await self._event_emitter.emit(event)

    def effective_timeout_ms(self, test: TestCase) -> int:
        return test.timeout_ms if test.timeout_ms is not None else self.default_timeout_ms

    def effective_max_retries(self, test: TestCase) -> int:
        return test.max_retries if test.max_retries is not None else self.default_max_retries

    async def run(self, test: TestCase) -> TestResult:
        """Execute *test* and return a snapshot of its outcome.

        At most ``max_retries + 1`` attempts are made, back to back.  An
        attempt failing with a non-retryable :class:`GauntletError` ends
        the run early.  The returned result reflects the last attempt only.

        If the calling task is cancelled the test is marked ``error`` and
        the cancellation propagates.

        Raises:
            ConcurrentRunError: If a run of this test is already in flight.
            asyncio.CancelledError: If the calling task is cancelled.
        """
        if test.status == TestStatus.RUNNING:
            raise ConcurrentRunError(f"Test '{test.full_name}' is already running")

        timeout_ms = self.effective_timeout_ms(test)
        max_retries = self.effective_max_retries(test)
        suites = self._registry.ancestors(test.suite_id)

        test.status = TestStatus.RUNNING
        test.retry_count = 0
        test.error = None
        test.start_time = time.time()
        test.end_time = None
        test.duration_ms = None

        await self._emit(LifecycleEvent(
            type=EventType.TEST_START,
            stage=test.stage or "",
            test_name=test.full_name,
            data={"id": test.id},
        ))

        attempt = _Attempt()
        try:
            while True:
                attempt = await self._attempt(test, suites, timeout_ms)
                if attempt.error is None or test.retry_count >= max_retries:
                    break
                if not _is_retryable(attempt.error):
                    logger.info(
                        "Not retrying test '%s': %s is not retryable",
                        test.full_name,
                        type(attempt.error).__name__,
                    )
                    break
                test.retry_count += 1
                logger.warning(
                    "Retrying test '%s' (%d/%d) after %s",
                    test.full_name,
                    test.retry_count,
                    max_retries,
                    CapturedError.from_exception(attempt.error),
                )
                await self._emit(LifecycleEvent(
                    type=EventType.TEST_RETRY,
                    stage=test.stage or "",
                    test_name=test.full_name,
                    data={
                        "attempt": test.retry_count + 1,
                        "max_attempts": max_retries + 1,
                        "error": str(attempt.error),
                    },
                ))
        except asyncio.CancelledError:
            test.status = TestStatus.ERROR
            test.error = CapturedError(
                kind="CancelledError",
                message=f"Test '{test.full_name}' was cancelled before it finished",
            )
            logger.error("Test '%s' cancelled", test.full_name)
            raise
        finally:
            test.end_time = time.time()
            test.duration_ms = round((test.end_time - test.start_time) * 1000, 3)
            if test.status == TestStatus.RUNNING:
                if attempt.error is None:
                    test.status = TestStatus.PASSED
                else:
                    test.status = TestStatus.FAILED
                    test.error = CapturedError.from_exception(attempt.error)

        if test.status == TestStatus.FAILED:
            logger.error("Test '%s' failed: %s", test.full_name, test.error)
        else:
            logger.info("Test '%s' passed in %.1fms", test.full_name, test.duration_ms)

        result = self._snapshot(test, suites[-1], attempt)
        await self._emit(LifecycleEvent(
            type=EventType.TEST_COMPLETE,
            stage=test.stage or "",
            test_name=test.full_name,
            data={"status": result.status.value, "retry_count": result.retry_count},
        ))
        return result

    async def _attempt(
        self, test: TestCase, suites: list[TestSuite], timeout_ms: int
    ) -> _Attempt:
        """One pass of before_each, body and after_each."""
        attempt = _Attempt()
        try:
            for suite in suites:
                await run_hook_chain(suite.hooks.before_each, HookType.BEFORE_EACH, suite.name)
        except HookFailure as exc:
            attempt.error = exc

        if attempt.error is None:
            try:
                attempt.output = await self._run_body(test, timeout_ms)
                if attempt.output is False:
                    attempt.error = AssertionFailure("Test body returned False")
            except Exception as exc:
                attempt.error = exc

        # after_each always runs; its failures never overturn the body outcome
        for suite in reversed(suites):
            try:
                await run_hook_chain(suite.hooks.after_each, HookType.AFTER_EACH, suite.name)
            except HookFailure as exc:
                attempt.aux_errors.append(CapturedError.from_exception(exc))
                break
        return attempt

    async def _run_body(self, test: TestCase, timeout_ms: int) -> Any:
        """Run the body, racing awaitable results against *timeout_ms*."""
        outcome = test.fn()
        if not inspect.isawaitable(outcome):
            return outcome

        task = asyncio.ensure_future(outcome)
        try:
            done, _ = await asyncio.wait({task}, timeout=timeout_ms / 1000)
        except asyncio.CancelledError:
            task.cancel()
            raise
        if task in done:
            return task.result()

        task.add_done_callback(_discard_outcome)
        raise TimeoutFailure(
            f'Test "{test.name}" timed out after {timeout_ms}ms',
            timeout_ms=timeout_ms,
        )

    def _snapshot(self, test: TestCase, suite: TestSuite, attempt: _Attempt) -> TestResult:
        return TestResult(
            id=test.id,
            name=test.name,
            full_name=test.full_name,
            suite=suite.name,
            status=test.status,
            start_time=test.start_time,
            end_time=test.end_time,
            duration_ms=test.duration_ms or 0.0,
            error=test.error,
            retry_count=test.retry_count,
            retried=test.retry_count > 0,
            attempts=test.retry_count + 1,
            aux_errors=list(attempt.aux_errors),
            output=attempt.output,
            metrics=_extract_metrics(attempt.output),
            stage=test.stage,
        )
