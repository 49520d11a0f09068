"""Tests for post-run notification channels."""

import io
import logging

import pytest
from rich.console import Console

from gauntlet.core.models import RunSummary
from gauntlet.pipeline.notifications import (
    ConsoleNotifier,
    LoggingNotifier,
    Notifier,
    describe,
    notify_all,
)
from gauntlet.pipeline.reporting import PipelineReport


def _report(status: str = "success", **counts: int) -> PipelineReport:
    return PipelineReport(
        summary=RunSummary(**counts, duration_ms=1234.0),
        status=status,
        failed_stages=["unit"] if status == "failure" else [],
    )


class TestDescribe:
    def test_summary_line(self) -> None:
        text = describe(_report("failure", total=4, passed=3, failed=1))
        assert text == (
            "Pipeline failure: 3/4 passed, 1 failed, 0 errors, 0 skipped "
            "(75% success) in 1234ms"
        )


class TestNotifiers:
    def test_console_notifier_lists_failed_stages(self) -> None:
        buffer = io.StringIO()
        ConsoleNotifier(Console(file=buffer)).notify(_report("failure", total=1, failed=1))
        output = buffer.getvalue()
        assert "Pipeline failure" in output
        assert "Failed stages: unit" in output

    def test_logging_notifier_levels(self, caplog: pytest.LogCaptureFixture) -> None:
        target = logging.getLogger("gauntlet.tests.notify")
        notifier = LoggingNotifier(target)
        with caplog.at_level(logging.INFO, logger="gauntlet.tests.notify"):
            notifier.notify(_report("success", total=1, passed=1))
            notifier.notify(_report("failure", total=1, failed=1))
        assert [r.levelno for r in caplog.records] == [logging.INFO, logging.ERROR]
        assert caplog.records[0].getMessage().startswith("Pipeline success")

    def test_builtin_notifiers_satisfy_the_protocol(self) -> None:
        assert isinstance(ConsoleNotifier(Console(file=io.StringIO())), Notifier)
        assert isinstance(LoggingNotifier(), Notifier)


class TestNotifyAll:
    async def test_failing_channel_does_not_stop_the_rest(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        seen: list[str] = []

        class Broken:
            def notify(self, report: PipelineReport) -> None:
                raise ConnectionError("webhook unreachable")

        class Async:
            async def notify(self, report: PipelineReport) -> None:
                seen.append(report.status)

        with caplog.at_level(logging.ERROR, logger="gauntlet.pipeline.notifications"):
            await notify_all(_report(), [Broken(), Async()])
        assert seen == ["success"]
        assert "webhook unreachable" in caplog.text
