"""Tests for pipeline configuration validation."""

import pytest

from gauntlet.core.errors import ConfigurationError
from gauntlet.pipeline.config import PipelineConfig
from gauntlet.pipeline.validator import (
    ConfigFinding,
    ValidationLevel,
    has_errors,
    validate_config,
    validate_or_raise,
)


def _rules(findings: list[ConfigFinding], level: ValidationLevel) -> list[str]:
    return [f.rule for f in findings if f.level == level]


class TestValidateConfig:
    def test_default_config_is_clean(self) -> None:
        findings = validate_config(PipelineConfig.default())
        assert not has_errors(findings)
        assert _rules(findings, ValidationLevel.WARNING) == []

    def test_unknown_stage_is_an_error(self) -> None:
        config = PipelineConfig.from_dict({"stages": {"smoke": {}}})
        findings = validate_config(config)
        unknown = [f for f in findings if f.stage == "smoke"]
        assert unknown[0].level == ValidationLevel.ERROR
        assert "Unknown stage" in unknown[0].message
        assert unknown[0].fix is not None

    def test_missing_stage_is_an_error(self) -> None:
        config = PipelineConfig.default()
        del config.stages["security"]
        findings = validate_config(config)
        assert any(f.stage == "security" and f.rule == "stage_name" for f in findings)

    def test_non_mapping_stage_entry(self) -> None:
        config = PipelineConfig.from_dict({"stages": {"unit": "fast"}})
        findings = validate_config(config)
        shape = [f for f in findings if f.rule == "stage_shape"]
        assert len(shape) == 1
        assert shape[0].message == "Invalid configuration for stage unit"

    @pytest.mark.parametrize("timeout", [0, -1, "60s", 1.5, True])
    def test_invalid_stage_timeout(self, timeout: object) -> None:
        config = PipelineConfig.from_dict({"stages": {"unit": {"timeout_ms": timeout}}})
        assert "stage_timeout" in _rules(validate_config(config), ValidationLevel.ERROR)

    def test_stage_timeout_below_test_timeout_warns(self) -> None:
        config = PipelineConfig.from_dict({"stages": {"unit": {"timeout_ms": 1000}}})
        findings = validate_config(config)
        assert not has_errors(findings)
        assert _rules(findings, ValidationLevel.WARNING) == ["stage_timeout"]

    def test_invalid_parallel_flag(self) -> None:
        config = PipelineConfig.from_dict({"stages": {"e2e": {"parallel": "sometimes"}}})
        findings = validate_config(config)
        parallel = [f for f in findings if f.rule == "stage_parallel"]
        assert parallel[0].level == ValidationLevel.ERROR
        assert "Invalid parallel setting" in parallel[0].message

    @pytest.mark.parametrize("value", [0, -2, "4"])
    def test_invalid_max_concurrency(self, value: object) -> None:
        config = PipelineConfig.from_dict({"stages": {"unit": {"max_concurrency": value}}})
        assert "stage_concurrency" in _rules(validate_config(config), ValidationLevel.ERROR)

    def test_concurrency_on_sequential_stage_is_info(self) -> None:
        config = PipelineConfig.from_dict({"stages": {"e2e": {"max_concurrency": 3}}})
        findings = validate_config(config)
        assert not has_errors(findings)
        assert _rules(findings, ValidationLevel.INFO) == ["stage_concurrency"]

    def test_invalid_enabled_flag(self) -> None:
        config = PipelineConfig.from_dict({"stages": {"setup": {"enabled": "no"}}})
        assert "stage_enabled" in _rules(validate_config(config), ValidationLevel.ERROR)

    def test_invalid_globals(self) -> None:
        config = PipelineConfig.from_dict(
            {"bail_on_failure": "yes", "default_test_timeout_ms": 0, "default_max_retries": -1}
        )
        errors = _rules(validate_config(config), ValidationLevel.ERROR)
        assert {"bail_on_failure", "default_test_timeout", "default_max_retries"} <= set(errors)

    def test_invalid_budget(self) -> None:
        config = PipelineConfig.from_dict(
            {"performance_budget": {"limits": {"lcp": -1, "cls": "low"}, "enforce": 1}}
        )
        errors = _rules(validate_config(config), ValidationLevel.ERROR)
        assert errors.count("performance_budget") == 3

    @pytest.mark.parametrize("threshold", [-1, 101, "80"])
    def test_coverage_threshold_out_of_range(self, threshold: object) -> None:
        config = PipelineConfig.from_dict({"coverage_threshold": threshold})
        findings = validate_config(config)
        coverage = [f for f in findings if f.rule == "coverage_threshold"]
        assert coverage[0].message == "Coverage threshold must be between 0 and 100"

    @pytest.mark.parametrize("threshold", [0, 80, 100, 99.5])
    def test_coverage_threshold_in_range(self, threshold: float) -> None:
        config = PipelineConfig.from_dict({"coverage_threshold": threshold})
        assert not has_errors(validate_config(config))

    def test_all_stages_disabled_warns(self) -> None:
        config = PipelineConfig.default()
        for stage in config.stages.values():
            stage.enabled = False
        findings = validate_config(config)
        assert "no_enabled_stages" in _rules(findings, ValidationLevel.WARNING)

    def test_reports_every_problem_at_once(self) -> None:
        config = PipelineConfig.from_dict(
            {
                "stages": {"unit": {"timeout_ms": 0}, "e2e": {"max_concurrency": 0}},
                "coverage_threshold": 200,
            }
        )
        errors = _rules(validate_config(config), ValidationLevel.ERROR)
        assert set(errors) == {"stage_timeout", "stage_concurrency", "coverage_threshold"}


class TestValidateOrRaise:
    def test_raises_with_error_findings_only(self) -> None:
        config = PipelineConfig.from_dict(
            {"stages": {"unit": {"timeout_ms": -1}, "e2e": {"max_concurrency": 2}}}
        )
        with pytest.raises(ConfigurationError) as exc_info:
            validate_or_raise(config)
        findings = exc_info.value.findings
        assert [f.rule for f in findings] == ["stage_timeout"]
        assert "timeout_ms must be a positive integer" in str(exc_info.value)

    def test_returns_non_error_findings(self) -> None:
        config = PipelineConfig.from_dict({"stages": {"e2e": {"max_concurrency": 2}}})
        findings = validate_or_raise(config)
        assert [f.level for f in findings] == [ValidationLevel.INFO]


class TestFindingFormat:
    def test_str_includes_level_stage_and_rule(self) -> None:
        finding = ConfigFinding(
            level=ValidationLevel.ERROR, message="bad", stage="unit", rule="stage_timeout"
        )
        assert str(finding) == "[ERROR] (stage 'unit') [stage_timeout] bad"

    def test_str_without_stage(self) -> None:
        finding = ConfigFinding(level=ValidationLevel.WARNING, message="careful")
        assert str(finding) == "[WARNING] careful"
