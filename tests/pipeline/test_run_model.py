"""Tests for the pipeline run aggregate."""

from dataclasses import FrozenInstanceError

import pytest

from gauntlet.core.models import TestResult, TestStatus
from gauntlet.pipeline.models import (
    BudgetViolation,
    PipelineRun,
    RunStatus,
    StageResult,
    StageStatus,
)


def _passed(name: str) -> TestResult:
    return TestResult(id=name, name=name, status=TestStatus.PASSED)


class TestRunStatus:
    def test_finished_states(self) -> None:
        assert not RunStatus.IDLE.is_finished
        assert not RunStatus.RUNNING.is_finished
        assert all(s.is_finished for s in (RunStatus.SUCCESS, RunStatus.FAILURE, RunStatus.CANCELLED))


class TestPipelineRun:
    def test_record_stage_files_by_status(self) -> None:
        run = PipelineRun(id="r", total_stages=3)
        run.record_stage(StageResult(name="unit", results=[_passed("a")]))
        run.record_stage(StageResult(name="e2e", status=StageStatus.FAILED))
        run.record_stage(StageResult(name="security", status=StageStatus.SKIPPED))

        assert run.completed_stages == ["unit"]
        assert run.failed_stages == ["e2e"]
        assert run.skipped_stages == ["security"]
        assert "security" not in run.stage_results
        assert set(run.stage_details) == {"unit", "e2e", "security"}
        assert run.progress == 100

    def test_progress_counts_finished_stages(self) -> None:
        run = PipelineRun(id="r", status=RunStatus.RUNNING, total_stages=4)
        assert run.progress == 0
        run.record_stage(StageResult(name="setup"))
        assert run.progress == 25

    def test_progress_without_stages(self) -> None:
        assert PipelineRun(id="r").progress == 0
        assert PipelineRun(id="r", status=RunStatus.SUCCESS).progress == 100

    def test_results_and_summary_span_stages(self) -> None:
        run = PipelineRun(id="r")
        run.record_stage(StageResult(name="unit", results=[_passed("a"), _passed("b")]))
        run.record_stage(
            StageResult(
                name="e2e",
                status=StageStatus.FAILED,
                results=[TestResult(id="c", name="c", status=TestStatus.FAILED)],
            )
        )
        assert [r.name for r in run.results] == ["a", "b", "c"]
        summary = run.summary()
        assert (summary.total, summary.passed, summary.failed) == (3, 2, 1)
        assert summary.success_rate == 67

    def test_duration(self) -> None:
        run = PipelineRun(id="r", start_time=10.0, end_time=10.25)
        assert run.duration_ms == 250.0
        assert PipelineRun(id="r").duration_ms == 0.0

    def test_seal_freezes_the_run(self) -> None:
        run = PipelineRun(id="r", status=RunStatus.SUCCESS)
        run.record_stage(StageResult(name="unit", results=[_passed("a")]))
        run.seal()
        run.seal()

        assert run.sealed
        assert run.completed_stages == ("unit",)
        assert run.stage_results["unit"] == (run.results[0],)
        with pytest.raises(FrozenInstanceError):
            run.status = RunStatus.FAILURE
        with pytest.raises(FrozenInstanceError):
            run.record_stage(StageResult(name="e2e"))
        with pytest.raises(TypeError):
            run.stage_details["e2e"] = StageResult(name="e2e")  # type: ignore[index]

    def test_to_dict(self) -> None:
        run = PipelineRun(id="r", status=RunStatus.FAILURE, start_time=1.0, end_time=2.0)
        run.record_stage(StageResult(name="unit", results=[_passed("a")]))
        data = run.to_dict()
        assert data["status"] == "failure"
        assert data["duration_ms"] == 1000.0
        assert data["completed_stages"] == ["unit"]
        assert data["stages"]["unit"][0]["name"] == "a"


class TestStageResult:
    def test_summary_and_to_dict(self) -> None:
        detail = StageResult(
            name="performance",
            results=[_passed("a")],
            violations=[BudgetViolation("a", "lcp", 3000.0, 2500.0)],
            duration_ms=5.0,
        )
        data = detail.to_dict()
        assert data["summary"]["passed"] == 1
        assert data["violations"][0]["message"] == "lcp 3000 exceeds budget of 2500"
        assert BudgetViolation.from_dict(data["violations"][0]) == detail.violations[0]
