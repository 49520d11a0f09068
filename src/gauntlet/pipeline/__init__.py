"""Gauntlet pipeline - staged orchestration of registered tests.

Runs a registry's tests through the fixed stage sequence (setup, unit,
integration, e2e, performance, security, teardown) with per-stage
timeout and concurrency policy, bail-on-failure, lifecycle events,
reports and notifications.
"""

from gauntlet.pipeline.config import (
    STAGE_ORDER,
    PerformanceBudget,
    PipelineConfig,
    PipelineStage,
    StageName,
    load_config,
)
from gauntlet.pipeline.coordinator import PipelineCoordinator, check_performance_budget
from gauntlet.pipeline.models import (
    BudgetViolation,
    PipelineRun,
    RunStatus,
    StageResult,
    StageStatus,
)
from gauntlet.pipeline.notifications import ConsoleNotifier, LoggingNotifier, Notifier
from gauntlet.pipeline.reporting import (
    CallbackReporter,
    ConsoleReporter,
    JSONReporter,
    JUnitReporter,
    PipelineReport,
    ReportSink,
    build_report,
    report_to_json,
    report_to_junit_xml,
)
from gauntlet.pipeline.validator import (
    ConfigFinding,
    ValidationLevel,
    validate_config,
    validate_or_raise,
)

__all__ = [
    "BudgetViolation",
    "CallbackReporter",
    "ConfigFinding",
    "ConsoleNotifier",
    "ConsoleReporter",
    "JSONReporter",
    "JUnitReporter",
    "LoggingNotifier",
    "Notifier",
    "PerformanceBudget",
    "PipelineConfig",
    "PipelineCoordinator",
    "PipelineReport",
    "PipelineRun",
    "PipelineStage",
    "ReportSink",
    "RunStatus",
    "STAGE_ORDER",
    "StageName",
    "StageResult",
    "StageStatus",
    "ValidationLevel",
    "build_report",
    "check_performance_budget",
    "load_config",
    "report_to_json",
    "report_to_junit_xml",
    "validate_config",
    "validate_or_raise",
]
