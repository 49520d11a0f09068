"""Pipeline configuration.

Stage policy and global settings as plain dataclasses with
``to_dict``/``from_dict``, a JSON loader, and environment overrides
(``GAUNTLET_*`` variables, optionally read from a ``.env`` file).

Values are not checked here: malformed input is carried through as-is so
that :func:`gauntlet.pipeline.validator.validate_config` can report every
problem at once.
"""

from __future__ import annotations

import enum
import json
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from dotenv import dotenv_values

from gauntlet.core.executor import DEFAULT_MAX_RETRIES, DEFAULT_TIMEOUT_MS

logger = logging.getLogger(__name__)

ENV_PREFIX = "GAUNTLET_"


class StageName(str, enum.Enum):
    """The fixed, ordered set of pipeline stages."""

    SETUP = "setup"
    UNIT = "unit"
    INTEGRATION = "integration"
    E2E = "e2e"
    PERFORMANCE = "performance"
    SECURITY = "security"
    TEARDOWN = "teardown"


# Canonical execution order; configuration can disable stages, never reorder them.
STAGE_ORDER: tuple[StageName, ...] = tuple(StageName)


@dataclass
class PipelineStage:
    """Execution policy for one stage.

    Attributes:
        name: Stage name (one of :class:`StageName`).
        title: Human-readable title used in reports.
        description: What the stage covers.
        enabled: Disabled stages are skipped without running tests.
        timeout_ms: Bound on the whole stage, independent of test timeouts.
        parallel: Run the stage's tests on a bounded worker pool.
        max_concurrency: Worker count; only meaningful when ``parallel``.
    """

    name: str
    title: str = ""
    description: str = ""
    enabled: bool = True
    timeout_ms: int = 60000
    parallel: bool = False
    max_concurrency: int = 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "title": self.title,
            "description": self.description,
            "enabled": self.enabled,
            "timeout_ms": self.timeout_ms,
            "parallel": self.parallel,
            "max_concurrency": self.max_concurrency,
        }

    @classmethod
    def from_dict(cls, name: str, data: Mapping[str, Any]) -> PipelineStage:
        """Build a stage, filling unset keys from the stage's defaults."""
        base = default_stage(name)
        return cls(
            name=name,
            title=data.get("title", base.title),
            description=data.get("description", base.description),
            enabled=data.get("enabled", base.enabled),
            timeout_ms=data.get("timeout_ms", base.timeout_ms),
            parallel=data.get("parallel", base.parallel),
            max_concurrency=data.get("max_concurrency", base.max_concurrency),
        )


_STAGE_DEFAULTS: dict[StageName, PipelineStage] = {
    StageName.SETUP: PipelineStage(
        name="setup",
        title="Setup Environment",
        description="Initialize test environment and dependencies",
        timeout_ms=60000,
    ),
    StageName.UNIT: PipelineStage(
        name="unit",
        title="Unit Tests",
        description="Run unit tests for individual components",
        timeout_ms=120000,
        parallel=True,
        max_concurrency=4,
    ),
    StageName.INTEGRATION: PipelineStage(
        name="integration",
        title="Integration Tests",
        description="Run integration tests for component interactions",
        timeout_ms=180000,
        parallel=True,
        max_concurrency=4,
    ),
    StageName.E2E: PipelineStage(
        name="e2e",
        title="End-to-End Tests",
        description="Run end-to-end tests for user flows",
        timeout_ms=300000,
    ),
    StageName.PERFORMANCE: PipelineStage(
        name="performance",
        title="Performance Tests",
        description="Run performance and load tests",
        timeout_ms=240000,
    ),
    StageName.SECURITY: PipelineStage(
        name="security",
        title="Security Tests",
        description="Run security scanning and vulnerability tests",
        timeout_ms=180000,
        parallel=True,
        max_concurrency=4,
    ),
    StageName.TEARDOWN: PipelineStage(
        name="teardown",
        title="Teardown Environment",
        description="Clean up test environment and resources",
        timeout_ms=30000,
    ),
}


def default_stage(name: str) -> PipelineStage:
    """Return a fresh copy of the built-in policy for *name*.

    Unknown names get a generic sequential stage.
    """
    try:
        base = _STAGE_DEFAULTS[StageName(name)]
    except ValueError:
        return PipelineStage(name=name, title=name)
    return PipelineStage(**base.to_dict())


@dataclass
class PerformanceBudget:
    """Upper bounds for metrics reported by performance tests.

    A result metric above its limit is a violation.  Violations are
    always reported; they fail the stage only when ``enforce`` is set.
    """

    limits: dict[str, float] = field(
        default_factory=lambda: {"lcp": 2500.0, "cls": 0.1, "fid": 100.0}
    )
    enforce: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"limits": dict(self.limits), "enforce": self.enforce}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PerformanceBudget:
        budget = cls()
        if "limits" in data:
            budget.limits = dict(data["limits"])
        budget.enforce = data.get("enforce", budget.enforce)
        return budget


@dataclass
class PipelineConfig:
    """Whole-pipeline configuration.

    ``stages`` always holds an entry for every :class:`StageName`;
    entries under other names are kept so validation can flag them.
    """

    stages: dict[str, PipelineStage] = field(
        default_factory=lambda: {s.value: default_stage(s.value) for s in STAGE_ORDER}
    )
    bail_on_failure: bool = False
    default_test_timeout_ms: int = DEFAULT_TIMEOUT_MS
    default_max_retries: int = DEFAULT_MAX_RETRIES
    performance_budget: PerformanceBudget = field(default_factory=PerformanceBudget)
    coverage_threshold: float | None = None

    @classmethod
    def default(cls) -> PipelineConfig:
        return cls()

    def stage(self, name: str) -> PipelineStage:
        return self.stages[name]

    @property
    def enabled_stages(self) -> list[PipelineStage]:
        """Enabled stages in canonical order."""
        return [
            self.stages[s.value]
            for s in STAGE_ORDER
            if self.stages[s.value].enabled
        ]

    def to_dict(self) -> dict[str, Any]:
        return {
            "stages": {name: s.to_dict() for name, s in self.stages.items()},
            "bail_on_failure": self.bail_on_failure,
            "default_test_timeout_ms": self.default_test_timeout_ms,
            "default_max_retries": self.default_max_retries,
            "performance_budget": self.performance_budget.to_dict(),
            "coverage_threshold": self.coverage_threshold,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PipelineConfig:
        """Merge *data* over the defaults.

        Stages missing from ``data["stages"]`` keep their defaults; a stage
        given as a partial mapping has only those keys overridden.
        """
        config = cls()
        for name, stage_data in dict(data.get("stages", {})).items():
            if isinstance(stage_data, Mapping):
                config.stages[name] = PipelineStage.from_dict(name, stage_data)
            else:
                # Kept verbatim so validation can point at it.
                config.stages[name] = stage_data
        config.bail_on_failure = data.get("bail_on_failure", config.bail_on_failure)
        config.default_test_timeout_ms = data.get(
            "default_test_timeout_ms", config.default_test_timeout_ms
        )
        config.default_max_retries = data.get(
            "default_max_retries", config.default_max_retries
        )
        if "performance_budget" in data:
            config.performance_budget = PerformanceBudget.from_dict(
                data["performance_budget"]
            )
        config.coverage_threshold = data.get(
            "coverage_threshold", config.coverage_threshold
        )
        return config


def _parse_bool(raw: str) -> bool | str:
    lowered = raw.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    return raw


def _parse_int(raw: str) -> int | str:
    try:
        return int(raw.strip())
    except ValueError:
        return raw


_ENV_FIELDS = {
    "BAIL_ON_FAILURE": ("bail_on_failure", _parse_bool),
    "DEFAULT_TIMEOUT_MS": ("default_test_timeout_ms", _parse_int),
    "DEFAULT_MAX_RETRIES": ("default_max_retries", _parse_int),
}


def apply_env_overrides(
    config: PipelineConfig,
    environ: Mapping[str, str | None] | None = None,
) -> PipelineConfig:
    """Override global settings from ``GAUNTLET_*`` variables in place.

    Unparseable values are stored unchanged and rejected by validation.
    """
    if environ is None:
        environ = os.environ
    for suffix, (attr, parse) in _ENV_FIELDS.items():
        raw = environ.get(ENV_PREFIX + suffix)
        if raw is None or raw == "":
            continue
        setattr(config, attr, parse(raw))
        logger.debug("Config override from %s%s", ENV_PREFIX, suffix)
    return config


def load_config(
    path: str | Path | None = None,
    *,
    dotenv_path: str | Path | None = ".env",
    environ: Mapping[str, str | None] | None = None,
) -> PipelineConfig:
    """Build a configuration from an optional JSON file and the environment.

    Precedence, lowest first: built-in defaults, the JSON file, the
    ``.env`` file, then the process environment (or *environ*).

    Args:
        path: JSON file with a :meth:`PipelineConfig.to_dict`-shaped object.
        dotenv_path: ``.env`` file to read, or ``None`` to skip it.  A
            missing file is ignored.
        environ: Mapping used instead of ``os.environ``.

    Raises:
        OSError: If *path* cannot be read.
        ValueError: If *path* is not valid JSON or not a JSON object.
    """
    if path is not None:
        data = json.loads(Path(path).read_text())
        if not isinstance(data, Mapping):
            raise ValueError(f"{path} must contain a JSON object")
        logger.info("Loaded pipeline config from %s", path)
        config = PipelineConfig.from_dict(data)
    else:
        config = PipelineConfig.default()

    merged: dict[str, str | None] = {}
    if dotenv_path is not None and Path(dotenv_path).is_file():
        merged.update(dotenv_values(dotenv_path))
    merged.update(os.environ if environ is None else environ)
    return apply_env_overrides(config, merged)
