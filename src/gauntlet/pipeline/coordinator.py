"""Pipeline coordinator.

Walks the stages in canonical order (setup, unit, integration, e2e,
performance, security, teardown).  For each enabled stage it:
1. Resolves the stage's test set (discovery adapter or registry scope).
2. Runs it through a :class:`Batch`, sequentially or on a bounded
   worker pool, with the stage timeout racing the whole batch.
3. Checks performance budgets against reported metrics.
4. Files the stage as completed or failed and emits lifecycle events.

Suite hooks are shared across stages: a suite whose tests are split over
several stages is set up and torn down once per run.

With ``bail_on_failure`` a failed stage skips every later stage except
``teardown``.  :meth:`PipelineCoordinator.cancel` stops the run from
advancing; the stage in flight still completes.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import Any, Union

from gauntlet.core.errors import ConcurrentRunError, TimeoutFailure
from gauntlet.core.events import EventEmitter, EventType, LifecycleEvent
from gauntlet.core.executor import Executor
from gauntlet.core.models import (
    CapturedError,
    RunSummary,
    SuiteError,
    TestCase,
    TestResult,
)
from gauntlet.core.registry import Registry
from gauntlet.core.runner import Batch, BatchResult, SuiteLifecycle
from gauntlet.pipeline.config import (
    PerformanceBudget,
    PipelineConfig,
    PipelineStage,
    StageName,
)
from gauntlet.pipeline.models import (
    BudgetViolation,
    PipelineRun,
    RunStatus,
    StageResult,
    StageStatus,
)
from gauntlet.pipeline.notifications import Notifier, notify_all
from gauntlet.pipeline.reporting import (
    PipelineReport,
    ReportSink,
    build_report,
    dispatch_report,
)
from gauntlet.pipeline.validator import validate_or_raise

logger = logging.getLogger(__name__)

Discovery = Union[
    Mapping[str, Sequence[str]],
    Callable[[StageName], Sequence[str]],
]

# A stage's resolved tests, or the lookup error that stops it from running.
_Plan = Union[list[TestCase], KeyError]


def check_performance_budget(
    budget: PerformanceBudget, results: Iterable[TestResult]
) -> list[BudgetViolation]:
    """Return one violation per result metric above its budget."""
    violations: list[BudgetViolation] = []
    for result in results:
        for metric, value in result.metrics.items():
            limit = budget.limits.get(metric)
            if limit is not None and value > limit:
                violations.append(
                    BudgetViolation(
                        test_name=result.full_name,
                        metric=metric,
                        value=value,
                        budget=limit,
                    )
                )
    return violations


def _discard_batch(task: asyncio.Future[Any]) -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.debug("Abandoned batch failed late: %s", task.exception())


class PipelineCoordinator:
    """Runs a registry's tests through the staged pipeline.

    Args:
        config: Default configuration for :meth:`run`.
        event_emitter: Receives pipeline, stage and test events.
        sinks: Report sinks called with the final report.
        notifiers: Notification channels called after the sinks.
    """

    def __init__(
        self,
        config: PipelineConfig | None = None,
        event_emitter: EventEmitter | None = None,
        sinks: Iterable[ReportSink] = (),
        notifiers: Iterable[Notifier] = (),
    ) -> None:
        self.config = config or PipelineConfig.default()
        self.event_emitter = event_emitter or EventEmitter()
        self.sinks = list(sinks)
        self.notifiers = list(notifiers)
        self._current_run: PipelineRun | None = None
        self._last_report: PipelineReport | None = None
        self._running = False
        self._cancel_requested = False
        self._released: set[str] = set()

    async def _emit(self, event: LifecycleEvent) -> None:
        await self.event_emitter.emit(event)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def status(self) -> RunStatus:
        if self._current_run is None:
            return RunStatus.IDLE
        return self._current_run.status

    @property
    def current_run(self) -> PipelineRun | None:
        return self._current_run

    @property
    def last_report(self) -> PipelineReport | None:
        return self._last_report

    @property
    def progress(self) -> int:
        return self._current_run.progress if self._current_run else 0

    def summary(self) -> RunSummary:
        """Counts over the current (or most recent) run's results."""
        if self._current_run is None:
            return RunSummary()
        return self._current_run.summary()

    def cancel(self) -> bool:
        """Stop the run from starting further stages.

        Returns:
            ``True`` if a run was in flight, ``False`` otherwise.
        """
        if not self._running or self._current_run is None:
            return False
        self._cancel_requested = True
        self._current_run.status = RunStatus.CANCELLED
        logger.warning("Pipeline run %s cancelled", self._current_run.id)
        return True

    def reset(self) -> None:
        """Forget the previous run and return to ``idle``.

        Raises:
            ConcurrentRunError: If a run is in flight.
        """
        if self._running:
            raise ConcurrentRunError("Cannot reset while a pipeline run is in flight")
        self._current_run = None
        self._last_report = None
        self._cancel_requested = False

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def run(
        self,
        registry: Registry,
        config: PipelineConfig | None = None,
        discovery: Discovery | None = None,
    ) -> PipelineRun:
        """Execute every enabled stage and return the sealed run.

        Every stage's test set is resolved before the first stage starts,
        so suite hooks can span stages: a suite's ``before_all`` runs once
        when the first of its tests starts in any stage, and its
        ``after_all`` once the last of them has finished or been dropped
        (bail, cancel, stage timeout).

        Args:
            registry: Registry holding the tests to run.
            config: Overrides the coordinator's configuration for this run.
            discovery: Per-stage test ids or full names.  Without it each
                stage runs the registry's tests scoped to that stage.

        Raises:
            ConcurrentRunError: If a run is already in flight.
            ConfigurationError: If *config* fails validation; raised
                before any stage runs.
            asyncio.CancelledError: If the calling task is cancelled.  The
                run is sealed as ``cancelled`` before the error propagates.
        """
        if self._running:
            raise ConcurrentRunError("A pipeline run is already in flight")
        config = config or self.config
        for finding in validate_or_raise(config):
            logger.warning("Config: %s", finding)

        self._running = True
        self._cancel_requested = False
        self._released = set()
        run = PipelineRun(
            id=f"run_{uuid.uuid4().hex[:12]}",
            status=RunStatus.RUNNING,
            start_time=time.time(),
            total_stages=len(config.enabled_stages),
        )
        self._current_run = run
        executor = Executor(
            registry,
            default_timeout_ms=config.default_test_timeout_ms,
            default_max_retries=config.default_max_retries,
            event_emitter=self.event_emitter,
        )

        try:
            logger.info("Starting pipeline run %s", run.id)
            plans = self._plan(registry, config, discovery)
            lifecycle = SuiteLifecycle(registry)
            for plan in plans.values():
                if isinstance(plan, list):
                    lifecycle.add(registry.select(plan).runnable)
            await self._emit(LifecycleEvent(
                type=EventType.PIPELINE_START,
                data={"run_id": run.id, "stages": [s.name for s in config.enabled_stages]},
            ))

            bailed = False
            for stage in config.enabled_stages:
                if self._cancel_requested:
                    await self._release_remaining(run, registry, lifecycle, plans)
                    break
                if bailed and stage.name != StageName.TEARDOWN.value:
                    logger.info("Skipping stage '%s' after earlier failure", stage.name)
                    await self._skip_stage(run, stage, "bail_on_failure")
                    continue

                detail = await self._run_stage(
                    run, registry, executor, stage, config, plans, lifecycle
                )
                if detail.status == StageStatus.FAILED and config.bail_on_failure:
                    bailed = True
        except asyncio.CancelledError:
            run.status = RunStatus.CANCELLED
            logger.warning("Pipeline run %s cancelled by its caller", run.id)
            raise
        except Exception:
            run.status = RunStatus.FAILURE
            logger.exception("Pipeline run %s aborted", run.id)
            raise
        finally:
            self._finish(run)
            self._running = False

        report = build_report(run)
        self._last_report = report
        if run.status == RunStatus.CANCELLED:
            await self._emit(LifecycleEvent(
                type=EventType.PIPELINE_CANCELLED,
                data={"run_id": run.id, "report": report},
            ))
        else:
            await self._emit(LifecycleEvent(
                type=EventType.PIPELINE_COMPLETE,
                data={"run_id": run.id, "status": run.status.value, "report": report},
            ))
        await dispatch_report(report, self.sinks)
        await notify_all(report, self.notifiers)
        return run

    def _finish(self, run: PipelineRun) -> None:
        run.current_stage = None
        run.end_time = time.time()
        if run.status == RunStatus.RUNNING:
            run.status = RunStatus.FAILURE if run.failed_stages else RunStatus.SUCCESS
        run.seal()
        logger.info(
            "Pipeline run %s finished: %s in %.0fms",
            run.id,
            run.status.value,
            run.duration_ms,
        )

    async def _skip_stage(self, run: PipelineRun, stage: PipelineStage, reason: str) -> None:
        run.record_stage(
            StageResult(name=stage.name, status=StageStatus.SKIPPED, skip_reason=reason)
        )
        await self._emit(LifecycleEvent(
            type=EventType.STAGE_SKIPPED,
            stage=stage.name,
            data={"reason": reason},
        ))

    def _plan(
        self, registry: Registry, config: PipelineConfig, discovery: Discovery | None
    ) -> dict[str, _Plan]:
        """Resolve each enabled stage's tests, keeping lookup errors for later."""
        plans: dict[str, _Plan] = {}
        for stage in config.enabled_stages:
            try:
                plans[stage.name] = self._resolve_tests(registry, stage.name, discovery)
            except KeyError as exc:
                plans[stage.name] = exc
        return plans

    def _resolve_tests(
        self, registry: Registry, stage: str, discovery: Discovery | None
    ) -> list[TestCase]:
        if discovery is None:
            return registry.tests_for_stage(stage)
        if isinstance(discovery, Mapping):
            identifiers = discovery.get(stage, ())
        else:
            identifiers = discovery(StageName(stage))
        return registry.resolve(identifiers)

    async def _release(
        self,
        registry: Registry,
        lifecycle: SuiteLifecycle,
        plans: dict[str, _Plan],
        names: Iterable[str],
    ) -> list[SuiteError]:
        """Count out the tests of stages in *names* that will not run."""
        errors: list[SuiteError] = []
        for name in names:
            plan = plans[name]
            if name in self._released or not isinstance(plan, list):
                continue
            self._released.add(name)
            await lifecycle.release(registry.select(plan).runnable, errors)
        return errors

    async def _release_remaining(
        self,
        run: PipelineRun,
        registry: Registry,
        lifecycle: SuiteLifecycle,
        plans: dict[str, _Plan],
    ) -> None:
        """Tear down suites left open when a cancel lands between stages.

        ``after_all`` failures are added to the last filed stage.
        """
        unrun = [name for name in plans if name not in run.stage_details]
        errors = await self._release(registry, lifecycle, plans, unrun)
        if not errors:
            return
        for error in errors:
            logger.error(
                "Suite '%s' %s failed: %s",
                error.suite_name,
                error.hook_type.value,
                error.error,
            )
        if run.stage_details:
            last = run.stage_details[list(run.stage_details)[-1]]
            last.suite_errors.extend(errors)

    async def _conclude_stage(
        self,
        run: PipelineRun,
        registry: Registry,
        detail: StageResult,
        config: PipelineConfig,
        plans: dict[str, _Plan],
        lifecycle: SuiteLifecycle,
    ) -> StageResult:
        """Release suites later stages will not reach, then file *detail*.

        ``teardown`` is kept on a bail and released on cancel.
        """
        failed = detail.status == StageStatus.FAILED
        if self._cancel_requested or (failed and config.bail_on_failure):
            names = list(plans)
            later = [
                name
                for name in names[names.index(detail.name) + 1:]
                if self._cancel_requested or name != StageName.TEARDOWN.value
            ]
            errors = await self._release(registry, lifecycle, plans, later)
            if errors:
                detail.suite_errors.extend(errors)
                detail.status = StageStatus.FAILED
        return await self._file_stage(run, detail)

    async def _run_stage(
        self,
        run: PipelineRun,
        registry: Registry,
        executor: Executor,
        stage: PipelineStage,
        config: PipelineConfig,
        plans: dict[str, _Plan],
        lifecycle: SuiteLifecycle,
    ) -> StageResult:
        name = stage.name
        tests = plans[name]
        if isinstance(tests, KeyError):
            logger.error("Stage '%s' could not resolve its tests: %s", name, tests)
            run.current_stage = name
            await self._emit(LifecycleEvent(type=EventType.STAGE_START, stage=name))
            detail = StageResult(
                name=name,
                status=StageStatus.FAILED,
                error=CapturedError.from_exception(tests),
            )
            return await self._conclude_stage(run, registry, detail, config, plans, lifecycle)

        if not tests:
            await self._skip_stage(run, stage, "no_tests")
            return run.stage_details[name]

        run.current_stage = name
        logger.info(
            "Starting stage '%s' (%d tests, %s)",
            name,
            len(tests),
            f"parallel x{stage.max_concurrency}" if stage.parallel else "sequential",
        )
        await self._emit(LifecycleEvent(
            type=EventType.STAGE_START,
            stage=name,
            data={
                "title": stage.title,
                "tests": len(tests),
                "parallel": stage.parallel,
                "max_concurrency": stage.max_concurrency,
            },
        ))

        batch = Batch(
            registry,
            executor,
            tests,
            parallel=stage.parallel,
            max_concurrency=stage.max_concurrency,
            lifecycle=lifecycle,
        )
        try:
            outcome = await self._race_stage(batch, stage)
        except asyncio.CancelledError:
            message = f"Stage '{name}' was cancelled before it finished"
            outcome = batch.snapshot(asyncio.CancelledError(message))
            run.record_stage(StageResult(
                name=name,
                status=StageStatus.FAILED,
                results=outcome.results,
                suite_errors=outcome.suite_errors,
                error=CapturedError(kind="CancelledError", message=message),
                duration_ms=outcome.duration_ms,
            ))
            raise

        suite_errors = list(outcome.suite_errors)
        if outcome.timed_out:
            suite_errors.extend(await batch.release_unstarted())
        violations = check_performance_budget(config.performance_budget, outcome.results)
        for violation in violations:
            logger.warning("Stage '%s': %s (%s)", name, violation.message, violation.test_name)

        failed = (
            outcome.failed
            or bool(suite_errors)
            or (bool(violations) and config.performance_budget.enforce)
        )
        detail = StageResult(
            name=name,
            status=StageStatus.FAILED if failed else StageStatus.PASSED,
            results=outcome.results,
            suite_errors=suite_errors,
            violations=violations,
            timed_out=outcome.timed_out,
            duration_ms=outcome.duration_ms,
        )
        if outcome.timed_out:
            detail.error = CapturedError(
                kind=TimeoutFailure.__name__,
                message=f"Stage '{name}' timed out after {stage.timeout_ms}ms",
            )
        return await self._conclude_stage(run, registry, detail, config, plans, lifecycle)

    async def _race_stage(self, batch: Batch, stage: PipelineStage) -> BatchResult:
        """Run *batch* bounded by the stage timeout."""
        task = asyncio.ensure_future(batch.run())
        try:
            done, _ = await asyncio.wait({task}, timeout=stage.timeout_ms / 1000)
        except asyncio.CancelledError:
            # Let the cancelled tests record their status before unwinding.
            task.cancel()
            await asyncio.wait({task})
            raise
        if task in done:
            return task.result()

        task.add_done_callback(_discard_batch)
        logger.error("Stage '%s' timed out after %dms", stage.name, stage.timeout_ms)
        return batch.snapshot(
            TimeoutFailure(
                f"Stage '{stage.name}' timed out after {stage.timeout_ms}ms",
                timeout_ms=stage.timeout_ms,
            )
        )

    async def _file_stage(self, run: PipelineRun, detail: StageResult) -> StageResult:
        run.record_stage(detail)
        summary = detail.summary
        if detail.status == StageStatus.FAILED:
            logger.error(
                "Stage '%s' failed: %d failed, %d errors",
                detail.name,
                summary.failed,
                summary.errors,
            )
            event_type = EventType.STAGE_FAIL
        else:
            logger.info("Stage '%s' passed (%d tests)", detail.name, summary.total)
            event_type = EventType.STAGE_COMPLETE
        await self._emit(LifecycleEvent(
            type=event_type,
            stage=detail.name,
            data={"summary": summary.to_dict(), "details": detail.to_dict()},
        ))
        return detail
