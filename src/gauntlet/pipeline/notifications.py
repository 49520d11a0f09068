"""Post-run notification channels.

Notifiers are told about a finished run after its report has been
built.  Real transports (email, chat, CI status) live outside this
package and plug in through the :class:`Notifier` protocol.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Iterable
from typing import Awaitable, Protocol, runtime_checkable

from rich.console import Console

from gauntlet.pipeline.reporting import PipelineReport

logger = logging.getLogger(__name__)


def describe(report: PipelineReport) -> str:
    """One-line human summary of a report."""
    s = report.summary
    return (
        f"Pipeline {report.status}: {s.passed}/{s.total} passed, "
        f"{s.failed} failed, {s.errors} errors, {s.skipped} skipped "
        f"({s.success_rate}% success) in {s.duration_ms:.0f}ms"
    )


@runtime_checkable
class Notifier(Protocol):
    def notify(self, report: PipelineReport) -> Awaitable[None] | None: ...


class ConsoleNotifier:
    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def notify(self, report: PipelineReport) -> None:
        colour = "green" if report.success else "red"
        self.console.print(f"[{colour}]{describe(report)}[/{colour}]")
        if report.failed_stages:
            self.console.print(f"  Failed stages: {', '.join(report.failed_stages)}")


class LoggingNotifier:
    """Logs the summary; failures at ERROR, everything else at INFO."""

    def __init__(self, target: logging.Logger | None = None) -> None:
        self.logger = target or logger

    def notify(self, report: PipelineReport) -> None:
        level = logging.INFO if report.success else logging.ERROR
        self.logger.log(level, "%s", describe(report))


async def notify_all(report: PipelineReport, notifiers: Iterable[Notifier]) -> None:
    """Notify every channel; a failing channel is logged and skipped."""
    for notifier in notifiers:
        try:
            result = notifier.notify(report)
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            logger.error("Notifier %s failed: %s", type(notifier).__name__, exc)
