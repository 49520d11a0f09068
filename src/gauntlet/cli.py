"""CLI entry point for the Gauntlet test pipeline.

Provides ``run`` and ``validate`` sub-commands using Click and Rich for
output formatting.

Usage::

    gauntlet run tests.suites:register --config pipeline.json --verbose
    gauntlet validate pipeline.json --strict
"""

from __future__ import annotations

import asyncio
import importlib
import inspect
import logging
import os
import sys
from typing import Any, Callable

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from gauntlet.core.errors import ConfigurationError
from gauntlet.core.registry import Registry
from gauntlet.pipeline.config import PipelineConfig, load_config
from gauntlet.pipeline.coordinator import PipelineCoordinator
from gauntlet.pipeline.models import PipelineRun, RunStatus
from gauntlet.pipeline.notifications import LoggingNotifier
from gauntlet.pipeline.reporting import (
    ConsoleReporter,
    JSONReporter,
    JUnitReporter,
    ReportSink,
)
from gauntlet.pipeline.validator import ValidationLevel, has_errors, validate_config

console = Console()


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def _load_target(target: str) -> Callable[[Registry], Any]:
    """Import ``module:function`` (the module may live in the working directory)."""
    module_name, sep, attr = target.partition(":")
    if not sep or not module_name or not attr:
        raise click.BadParameter("expected 'module:function'", param_hint="TARGET")
    if os.getcwd() not in sys.path:
        sys.path.insert(0, os.getcwd())
    module = importlib.import_module(module_name)
    fn = getattr(module, attr)
    if not callable(fn):
        raise click.BadParameter(f"'{target}' is not callable", param_hint="TARGET")
    return fn


async def _run_pipeline(
    register: Callable[[Registry], Any],
    config: PipelineConfig,
    sinks: list[ReportSink],
) -> PipelineRun:
    registry = Registry()
    discovery = register(registry)
    if inspect.isawaitable(discovery):
        discovery = await discovery
    coordinator = PipelineCoordinator(
        config=config,
        sinks=sinks,
        notifiers=[LoggingNotifier()],
    )
    return await coordinator.run(registry, discovery=discovery)


@click.group()
@click.version_option(package_name="gauntlet")
def main() -> None:
    """Gauntlet - staged test orchestration with timeouts and retry."""


@main.command()
@click.argument("target")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Pipeline configuration JSON file.",
)
@click.option(
    "--bail/--no-bail",
    default=None,
    help="Stop after the first failed stage (teardown still runs).",
)
@click.option(
    "--json-report",
    type=click.Path(dir_okay=False),
    default=None,
    help="Write a JSON report to this path.",
)
@click.option(
    "--junit",
    type=click.Path(dir_okay=False),
    default=None,
    help="Write a JUnit XML report to this path.",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging.")
def run(
    target: str,
    config_path: str | None,
    bail: bool | None,
    json_report: str | None,
    junit: str | None,
    verbose: bool,
) -> None:
    """Register tests via TARGET (module:function) and run the pipeline.

    TARGET is called with a fresh registry.  It may return a mapping of
    stage name to test ids or full names to drive discovery.
    """
    _setup_logging(verbose)

    try:
        register = _load_target(target)
    except (ImportError, AttributeError) as exc:
        console.print(f"[red]Failed to load target:[/red] {exc}")
        raise SystemExit(1) from exc

    try:
        config = load_config(config_path)
    except (OSError, ValueError) as exc:
        console.print(f"[red]Failed to load config:[/red] {exc}")
        raise SystemExit(1) from exc
    if bail is not None:
        config.bail_on_failure = bail

    sinks: list[ReportSink] = [ConsoleReporter(console=console, show_tests=True)]
    if json_report:
        sinks.append(JSONReporter(json_report))
    if junit:
        sinks.append(JUnitReporter(junit))

    try:
        pipeline_run = asyncio.run(_run_pipeline(register, config, sinks))
    except ConfigurationError as exc:
        console.print("[red]Pipeline configuration is invalid:[/red]")
        for finding in exc.findings:
            console.print(f"  {finding}", markup=False, soft_wrap=True)
        raise SystemExit(1) from exc

    if pipeline_run.status != RunStatus.SUCCESS:
        raise SystemExit(1)


@main.command()
@click.argument("config_path", type=click.Path(exists=True, dir_okay=False))
@click.option("--strict", is_flag=True, help="Treat warnings as errors.")
def validate(config_path: str, strict: bool) -> None:
    """Validate a pipeline configuration file without running anything."""
    try:
        config = load_config(config_path)
    except (OSError, ValueError) as exc:
        console.print(f"[red]Failed to load config:[/red] {exc}")
        raise SystemExit(1) from exc

    findings = validate_config(config)

    if not findings:
        console.print("[green]Configuration is valid.[/green]")
        return

    table = Table(title="Validation Results")
    table.add_column("Level", style="bold")
    table.add_column("Stage")
    table.add_column("Rule")
    table.add_column("Message")

    for f in findings:
        level_style = "red" if f.level == ValidationLevel.ERROR else "yellow"
        table.add_row(
            f"[{level_style}]{f.level.value}[/{level_style}]",
            f.stage or "",
            f.rule,
            escape(f.message),
        )

    console.print(table)

    if has_errors(findings) or (strict and findings):
        raise SystemExit(1)


if __name__ == "__main__":
    main()
