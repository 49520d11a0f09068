"""Pipeline run data models.

:class:`PipelineRun` is the aggregate root of one pipeline execution.
It is mutated by the coordinator while the run is in flight and sealed
once the run finishes, after which any assignment raises
:class:`dataclasses.FrozenInstanceError`.
"""

from __future__ import annotations

import enum
import time
from dataclasses import FrozenInstanceError, dataclass, field
from types import MappingProxyType
from typing import Any

from gauntlet.core.models import CapturedError, RunSummary, SuiteError, TestResult


class RunStatus(str, enum.Enum):
    """``idle -> running -> {success, failure, cancelled}``."""

    IDLE = "idle"
    RUNNING = "running"
    SUCCESS = "success"
    FAILURE = "failure"
    CANCELLED = "cancelled"

    @property
    def is_finished(self) -> bool:
        return self in (RunStatus.SUCCESS, RunStatus.FAILURE, RunStatus.CANCELLED)


class StageStatus(str, enum.Enum):
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class BudgetViolation:
    """A result metric that exceeded its performance budget."""

    test_name: str
    metric: str
    value: float
    budget: float

    @property
    def message(self) -> str:
        return f"{self.metric} {self.value:g} exceeds budget of {self.budget:g}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "test_name": self.test_name,
            "metric": self.metric,
            "value": self.value,
            "budget": self.budget,
            "message": self.message,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BudgetViolation:
        return cls(
            test_name=data["test_name"],
            metric=data["metric"],
            value=data["value"],
            budget=data["budget"],
        )


@dataclass
class StageResult:
    """Everything that happened in one stage.

    Attributes:
        name: Stage name.
        status: Stage outcome.
        results: Per-test results in target order.
        suite_errors: ``before_all``/``after_all`` failures.
        violations: Performance budget violations.
        error: Stage-level failure (timeout, unresolvable discovery entry).
        timed_out: Whether the stage timeout fired.
        duration_ms: Wall-clock time of the stage.
        skip_reason: Why the stage did not run, when skipped.
    """

    name: str
    status: StageStatus = StageStatus.PASSED
    results: list[TestResult] = field(default_factory=list)
    suite_errors: list[SuiteError] = field(default_factory=list)
    violations: list[BudgetViolation] = field(default_factory=list)
    error: CapturedError | None = None
    timed_out: bool = False
    duration_ms: float = 0.0
    skip_reason: str = ""

    @property
    def summary(self) -> RunSummary:
        return RunSummary.from_results(self.results, self.duration_ms)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "status": self.status.value,
            "suite_errors": [e.to_dict() for e in self.suite_errors],
            "violations": [v.to_dict() for v in self.violations],
            "error": self.error.to_dict() if self.error else None,
            "timed_out": self.timed_out,
            "duration_ms": self.duration_ms,
            "skip_reason": self.skip_reason,
            "summary": self.summary.to_dict(),
        }


@dataclass
class PipelineRun:
    """One execution of the whole pipeline.

    Attributes:
        id: Run identifier.
        status: Current state of the run.
        start_time: UNIX epoch when the run started.
        end_time: UNIX epoch when the run finished.
        completed_stages: Stages that ran and passed, in order.
        failed_stages: Stages that ran and failed, in order.
        skipped_stages: Enabled stages that did not run (bail, no tests).
        stage_results: Stage name -> per-test results.
        stage_details: Stage name -> :class:`StageResult`.
        current_stage: Stage in flight, if any.
        total_stages: Number of enabled stages at start.
    """

    id: str
    status: RunStatus = RunStatus.IDLE
    start_time: float | None = None
    end_time: float | None = None
    completed_stages: list[str] = field(default_factory=list)
    failed_stages: list[str] = field(default_factory=list)
    skipped_stages: list[str] = field(default_factory=list)
    stage_results: dict[str, list[TestResult]] = field(default_factory=dict)
    stage_details: dict[str, StageResult] = field(default_factory=dict)
    current_stage: str | None = None
    total_stages: int = 0
    _sealed: bool = field(default=False, init=False, repr=False, compare=False)

    def __setattr__(self, name: str, value: Any) -> None:
        if getattr(self, "_sealed", False):
            raise FrozenInstanceError(f"cannot assign to field '{name}' of a finished run")
        super().__setattr__(name, value)

    @property
    def sealed(self) -> bool:
        return self._sealed

    def record_stage(self, detail: StageResult) -> None:
        """File a finished or skipped stage under the matching list."""
        if self._sealed:
            raise FrozenInstanceError(f"cannot record stage '{detail.name}' on a finished run")
        if detail.status == StageStatus.SKIPPED:
            self.skipped_stages.append(detail.name)
        else:
            self.stage_results[detail.name] = list(detail.results)
            if detail.status == StageStatus.FAILED:
                self.failed_stages.append(detail.name)
            else:
                self.completed_stages.append(detail.name)
        self.stage_details[detail.name] = detail

    def seal(self) -> None:
        """Freeze the run; collections become read-only views."""
        if self._sealed:
            return
        self.completed_stages = tuple(self.completed_stages)  # type: ignore[assignment]
        self.failed_stages = tuple(self.failed_stages)  # type: ignore[assignment]
        self.skipped_stages = tuple(self.skipped_stages)  # type: ignore[assignment]
        self.stage_results = MappingProxyType(  # type: ignore[assignment]
            {name: tuple(results) for name, results in self.stage_results.items()}
        )
        self.stage_details = MappingProxyType(dict(self.stage_details))  # type: ignore[assignment]
        self._sealed = True

    @property
    def duration_ms(self) -> float:
        if self.start_time is None:
            return 0.0
        end = self.end_time if self.end_time is not None else time.time()
        return round((end - self.start_time) * 1000, 3)

    @property
    def progress(self) -> int:
        """Percent of enabled stages that have finished (ran or were skipped)."""
        if not self.total_stages:
            return 100 if self.status.is_finished else 0
        done = len(self.completed_stages) + len(self.failed_stages) + len(self.skipped_stages)
        return min(100, round(done / self.total_stages * 100))

    @property
    def results(self) -> list[TestResult]:
        """All test results, stage by stage in run order."""
        return [r for results in self.stage_results.values() for r in results]

    def summary(self) -> RunSummary:
        return RunSummary.from_results(self.results, self.duration_ms)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status.value,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "duration_ms": self.duration_ms,
            "completed_stages": list(self.completed_stages),
            "failed_stages": list(self.failed_stages),
            "skipped_stages": list(self.skipped_stages),
            "current_stage": self.current_stage,
            "progress": self.progress,
            "stages": {
                name: [r.to_dict() for r in results]
                for name, results in self.stage_results.items()
            },
        }
