"""Pipeline reports and report sinks.

A :class:`PipelineReport` is the plain, serializable projection of a
finished :class:`PipelineRun`.  Sinks receive it once the run is sealed;
a sink that raises is logged and never changes the run's outcome.
"""

from __future__ import annotations

import inspect
import json
import logging
import time
import xml.etree.ElementTree as ET
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, Any, Awaitable, Callable, Protocol, Union, runtime_checkable

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from gauntlet.core.models import RunSummary, TestResult, TestStatus
from gauntlet.pipeline.models import PipelineRun

logger = logging.getLogger(__name__)


@dataclass
class PipelineReport:
    """Aggregated, serializable result of one pipeline run.

    Attributes:
        summary: Counts over every test result of the run.
        stages: Stage name -> test results, in run order.
        timestamp: UNIX epoch when the report was built.
        run_id: Id of the run the report describes.
        status: Final run status value.
        completed_stages: Stages that passed.
        failed_stages: Stages that failed.
        skipped_stages: Enabled stages that did not run.
        stage_details: Stage name -> stage-level details (errors,
            budget violations, timing).
    """

    summary: RunSummary
    stages: dict[str, list[TestResult]] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)
    run_id: str = ""
    status: str = ""
    completed_stages: list[str] = field(default_factory=list)
    failed_stages: list[str] = field(default_factory=list)
    skipped_stages: list[str] = field(default_factory=list)
    stage_details: dict[str, dict[str, Any]] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.status == "success"

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "status": self.status,
            "timestamp": self.timestamp,
            "summary": self.summary.to_dict(),
            "stages": {
                name: [r.to_dict() for r in results]
                for name, results in self.stages.items()
            },
            "completed_stages": list(self.completed_stages),
            "failed_stages": list(self.failed_stages),
            "skipped_stages": list(self.skipped_stages),
            "stage_details": dict(self.stage_details),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PipelineReport:
        return cls(
            summary=RunSummary(**data["summary"]),
            stages={
                name: [TestResult.from_dict(r) for r in results]
                for name, results in data.get("stages", {}).items()
            },
            timestamp=data.get("timestamp", 0.0),
            run_id=data.get("run_id", ""),
            status=data.get("status", ""),
            completed_stages=list(data.get("completed_stages", [])),
            failed_stages=list(data.get("failed_stages", [])),
            skipped_stages=list(data.get("skipped_stages", [])),
            stage_details=dict(data.get("stage_details", {})),
        )


def build_report(run: PipelineRun) -> PipelineReport:
    """Project *run* into a :class:`PipelineReport`."""
    return PipelineReport(
        summary=run.summary(),
        stages={name: list(results) for name, results in run.stage_results.items()},
        run_id=run.id,
        status=run.status.value,
        completed_stages=list(run.completed_stages),
        failed_stages=list(run.failed_stages),
        skipped_stages=list(run.skipped_stages),
        stage_details={name: d.to_dict() for name, d in run.stage_details.items()},
    )


# ---------------------------------------------------------------------------
# Exports
# ---------------------------------------------------------------------------


def report_to_json(report: PipelineReport, indent: int | None = 2) -> str:
    """Lossless JSON rendering of *report*."""
    return json.dumps(report.to_dict(), indent=indent)


def report_from_json(text: str) -> PipelineReport:
    return PipelineReport.from_dict(json.loads(text))


def report_to_junit_xml(report: PipelineReport) -> str:
    """Render *report* as JUnit XML, one ``<testsuite>`` per stage."""
    root = ET.Element(
        "testsuites",
        name=f"gauntlet {report.run_id}".strip(),
        tests=str(report.summary.total),
        failures=str(report.summary.failed),
        errors=str(report.summary.errors),
        skipped=str(report.summary.skipped),
        time=f"{report.summary.duration_ms / 1000:.3f}",
    )
    for stage, results in report.stages.items():
        summary = RunSummary.from_results(results)
        duration = sum(r.duration_ms for r in results)
        suite_el = ET.SubElement(
            root,
            "testsuite",
            name=stage,
            tests=str(summary.total),
            failures=str(summary.failed),
            errors=str(summary.errors),
            skipped=str(summary.skipped),
            time=f"{duration / 1000:.3f}",
        )
        for result in results:
            case_el = ET.SubElement(
                suite_el,
                "testcase",
                name=result.name,
                classname=result.suite or stage,
                time=f"{result.duration_ms / 1000:.3f}",
            )
            if result.status == TestStatus.SKIPPED:
                ET.SubElement(case_el, "skipped")
            elif result.status in (TestStatus.FAILED, TestStatus.ERROR):
                tag = "failure" if result.status == TestStatus.FAILED else "error"
                error_el = ET.SubElement(
                    case_el,
                    tag,
                    message=result.error.message if result.error else "",
                    type=result.error.kind if result.error else "",
                )
                if result.retried:
                    error_el.text = f"Failed after {result.attempts} attempts"
    return ET.tostring(root, encoding="unicode")


# ---------------------------------------------------------------------------
# Sinks
# ---------------------------------------------------------------------------


@runtime_checkable
class ReportSink(Protocol):
    """Anything that accepts a finished report (sync or async)."""

    def report(self, report: PipelineReport) -> Awaitable[None] | None: ...


class ConsoleReporter:
    """Prints a per-stage summary table with rich."""

    def __init__(self, console: Console | None = None, show_tests: bool = False) -> None:
        self.console = console or Console()
        self.show_tests = show_tests

    def report(self, report: PipelineReport) -> None:
        table = Table(title=f"Pipeline {report.status or 'report'}")
        table.add_column("Stage", style="cyan")
        table.add_column("Passed", justify="right")
        table.add_column("Failed", justify="right")
        table.add_column("Errors", justify="right")
        table.add_column("Skipped", justify="right")
        table.add_column("Duration (ms)", justify="right")

        for stage, results in report.stages.items():
            summary = RunSummary.from_results(results)
            style = "red" if stage in report.failed_stages else "green"
            duration = report.stage_details.get(stage, {}).get("duration_ms", 0.0)
            table.add_row(
                f"[{style}]{stage}[/{style}]",
                str(summary.passed),
                str(summary.failed),
                str(summary.errors),
                str(summary.skipped),
                f"{duration:.0f}",
            )
        for stage in report.skipped_stages:
            table.add_row(f"[dim]{stage}[/dim]", "-", "-", "-", "-", "[dim]skipped[/dim]")
        self.console.print(table)

        if self.show_tests:
            for results in report.stages.values():
                for result in results:
                    if result.status.is_failure:
                        detail = escape(f"{result.full_name}: {result.error}")
                        self.console.print(f"  [red]✗[/red] {detail}")

        s = report.summary
        colour = "green" if report.success else "red"
        self.console.print(
            f"[bold {colour}]{s.passed}/{s.total} passed[/bold {colour}] "
            f"({s.failed} failed, {s.errors} errors, {s.skipped} skipped) "
            f"in {s.duration_ms:.0f}ms"
        )


class JSONReporter:
    """Writes :func:`report_to_json` output to a file path or text stream."""

    def __init__(self, destination: str | Path | IO[str]) -> None:
        self.destination = destination

    def report(self, report: PipelineReport) -> None:
        text = report_to_json(report)
        if isinstance(self.destination, (str, Path)):
            path = Path(self.destination)
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(text)
            logger.info("Wrote JSON report to %s", path)
        else:
            self.destination.write(text)


class JUnitReporter:
    """Writes :func:`report_to_junit_xml` output to a file."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def report(self, report: PipelineReport) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(report_to_junit_xml(report))
        logger.info("Wrote JUnit report to %s", self.path)


ReportCallback = Callable[[PipelineReport], Union[Awaitable[None], None]]


class CallbackReporter:
    """Adapts a plain function (or coroutine function) into a sink."""

    def __init__(self, callback: ReportCallback) -> None:
        self.callback = callback

    def report(self, report: PipelineReport) -> Awaitable[None] | None:
        return self.callback(report)


async def dispatch_report(report: PipelineReport, sinks: Iterable[ReportSink]) -> None:
    """Hand *report* to every sink; sink errors are logged, not raised."""
    for sink in sinks:
        try:
            result = sink.report(report)
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            logger.error("Report sink %s failed: %s", type(sink).__name__, exc)
