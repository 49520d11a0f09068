"""Pipeline configuration validation.

Statically checks a :class:`PipelineConfig` for errors and warnings
before any stage runs.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

from gauntlet.core.errors import ConfigurationError
from gauntlet.pipeline.config import STAGE_ORDER, PipelineConfig, PipelineStage

_KNOWN_STAGES = {s.value for s in STAGE_ORDER}


class ValidationLevel(str, enum.Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


@dataclass
class ConfigFinding:
    """A single validation finding."""

    level: ValidationLevel
    message: str
    stage: str | None = None
    rule: str = ""
    fix: str | None = None

    def __str__(self) -> str:
        location = f" (stage '{self.stage}')" if self.stage else ""
        rule_tag = f" [{self.rule}]" if self.rule else ""
        return f"[{self.level.value.upper()}]{location}{rule_tag} {self.message}"


def validate_config(config: PipelineConfig) -> list[ConfigFinding]:
    """Run all validation checks on *config*.

    Returns:
        A list of :class:`ConfigFinding` findings, possibly empty.
    """
    findings: list[ConfigFinding] = []

    _check_stage_names(config, findings)
    for name, stage in config.stages.items():
        _check_stage(name, stage, config, findings)
    _check_globals(config, findings)
    _check_performance_budget(config, findings)
    _check_coverage_threshold(config, findings)
    _check_anything_enabled(config, findings)

    return findings


def has_errors(findings: list[ConfigFinding]) -> bool:
    """Return True if any finding is an error (not just a warning)."""
    return any(f.level == ValidationLevel.ERROR for f in findings)


def validate_or_raise(config: PipelineConfig) -> list[ConfigFinding]:
    """Run validation and raise on any ERROR-level finding.

    Returns:
        The full list of findings (only warnings/info if no exception).

    Raises:
        ConfigurationError: If any ERROR-level findings are found.
    """
    findings = validate_config(config)
    error_findings = [f for f in findings if f.level == ValidationLevel.ERROR]
    if error_findings:
        raise ConfigurationError(error_findings)
    return findings


# ---------------------------------------------------------------------------
# Individual checks
# ---------------------------------------------------------------------------


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _check_stage_names(config: PipelineConfig, findings: list[ConfigFinding]) -> None:
    for name in config.stages:
        if name not in _KNOWN_STAGES:
            findings.append(
                ConfigFinding(
                    level=ValidationLevel.ERROR,
                    message=f"Unknown stage '{name}'",
                    stage=name,
                    rule="stage_name",
                    fix=f"Use one of: {', '.join(s.value for s in STAGE_ORDER)}",
                )
            )
    for stage in STAGE_ORDER:
        if stage.value not in config.stages:
            findings.append(
                ConfigFinding(
                    level=ValidationLevel.ERROR,
                    message="Stage is missing from the configuration",
                    stage=stage.value,
                    rule="stage_name",
                )
            )


def _check_stage(
    name: str,
    stage: object,
    config: PipelineConfig,
    findings: list[ConfigFinding],
) -> None:
    if not isinstance(stage, PipelineStage):
        findings.append(
            ConfigFinding(
                level=ValidationLevel.ERROR,
                message=f"Invalid configuration for stage {name}",
                stage=name,
                rule="stage_shape",
            )
        )
        return

    if not isinstance(stage.enabled, bool):
        findings.append(
            ConfigFinding(
                level=ValidationLevel.ERROR,
                message=f"enabled must be a boolean, got {stage.enabled!r}",
                stage=name,
                rule="stage_enabled",
            )
        )
    if not _is_int(stage.timeout_ms) or stage.timeout_ms <= 0:
        findings.append(
            ConfigFinding(
                level=ValidationLevel.ERROR,
                message=f"timeout_ms must be a positive integer, got {stage.timeout_ms!r}",
                stage=name,
                rule="stage_timeout",
            )
        )
    elif (
        _is_int(config.default_test_timeout_ms)
        and stage.timeout_ms < config.default_test_timeout_ms
    ):
        findings.append(
            ConfigFinding(
                level=ValidationLevel.WARNING,
                message=(
                    f"Stage timeout {stage.timeout_ms}ms is shorter than the default "
                    f"test timeout {config.default_test_timeout_ms}ms"
                ),
                stage=name,
                rule="stage_timeout",
            )
        )
    if not isinstance(stage.parallel, bool):
        findings.append(
            ConfigFinding(
                level=ValidationLevel.ERROR,
                message=f"Invalid parallel setting {stage.parallel!r}",
                stage=name,
                rule="stage_parallel",
            )
        )
    if not _is_int(stage.max_concurrency) or stage.max_concurrency < 1:
        findings.append(
            ConfigFinding(
                level=ValidationLevel.ERROR,
                message=(
                    "max_concurrency must be an integer >= 1, "
                    f"got {stage.max_concurrency!r}"
                ),
                stage=name,
                rule="stage_concurrency",
            )
        )
    elif stage.parallel is False and stage.max_concurrency > 1:
        findings.append(
            ConfigFinding(
                level=ValidationLevel.INFO,
                message="max_concurrency is ignored for a sequential stage",
                stage=name,
                rule="stage_concurrency",
                fix="Set parallel to true or max_concurrency to 1",
            )
        )


def _check_globals(config: PipelineConfig, findings: list[ConfigFinding]) -> None:
    if not isinstance(config.bail_on_failure, bool):
        findings.append(
            ConfigFinding(
                level=ValidationLevel.ERROR,
                message=f"bail_on_failure must be a boolean, got {config.bail_on_failure!r}",
                rule="bail_on_failure",
            )
        )
    if not _is_int(config.default_test_timeout_ms) or config.default_test_timeout_ms <= 0:
        findings.append(
            ConfigFinding(
                level=ValidationLevel.ERROR,
                message=(
                    "default_test_timeout_ms must be a positive integer, "
                    f"got {config.default_test_timeout_ms!r}"
                ),
                rule="default_test_timeout",
            )
        )
    if not _is_int(config.default_max_retries) or config.default_max_retries < 0:
        findings.append(
            ConfigFinding(
                level=ValidationLevel.ERROR,
                message=(
                    "default_max_retries must be an integer >= 0, "
                    f"got {config.default_max_retries!r}"
                ),
                rule="default_max_retries",
            )
        )


def _check_performance_budget(
    config: PipelineConfig, findings: list[ConfigFinding]
) -> None:
    budget = config.performance_budget
    if not isinstance(budget.enforce, bool):
        findings.append(
            ConfigFinding(
                level=ValidationLevel.ERROR,
                message=f"performance_budget.enforce must be a boolean, got {budget.enforce!r}",
                rule="performance_budget",
            )
        )
    for metric, limit in budget.limits.items():
        if not _is_number(limit) or limit < 0:
            findings.append(
                ConfigFinding(
                    level=ValidationLevel.ERROR,
                    message=f"Budget for '{metric}' must be a non-negative number, got {limit!r}",
                    rule="performance_budget",
                )
            )


def _check_coverage_threshold(
    config: PipelineConfig, findings: list[ConfigFinding]
) -> None:
    threshold = config.coverage_threshold
    if threshold is None:
        return
    if not _is_number(threshold) or not 0 <= threshold <= 100:
        findings.append(
            ConfigFinding(
                level=ValidationLevel.ERROR,
                message="Coverage threshold must be between 0 and 100",
                rule="coverage_threshold",
            )
        )


def _check_anything_enabled(
    config: PipelineConfig, findings: list[ConfigFinding]
) -> None:
    stages = [s for s in config.stages.values() if isinstance(s, PipelineStage)]
    if stages and not any(s.enabled is True for s in stages):
        findings.append(
            ConfigFinding(
                level=ValidationLevel.WARNING,
                message="Every stage is disabled; the pipeline will run no tests",
                rule="no_enabled_stages",
            )
        )
