"""Core data models.

Defines the test registry entities (suites, test cases, hook sets) and
the result summaries returned by the execution engine.  Suites and tests
refer to each other by id through the registry's arena rather than by
object reference.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Callable

ROOT_SUITE_ID = "root"

# Test bodies and hooks may be plain functions or coroutine functions.
TestFn = Callable[[], Any]
HookFn = Callable[[], Any]


class TestStatus(str, enum.Enum):
    """Lifecycle status of a test case."""

    __test__ = False

    PENDING = "pending"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"
    ERROR = "error"

    @property
    def is_failure(self) -> bool:
        return self in (TestStatus.FAILED, TestStatus.ERROR)


class HookType(str, enum.Enum):
    """The four hook chains a suite can carry."""

    BEFORE_ALL = "before_all"
    BEFORE_EACH = "before_each"
    AFTER_EACH = "after_each"
    AFTER_ALL = "after_all"


def to_json_value(value: Any) -> Any:
    """Convert *value* to something :func:`json.dumps` accepts.

    JSON scalars pass through; mappings and sequences are converted
    element by element (mapping keys become strings, tuples and sets
    become lists).  Any other leaf is replaced by its ``repr``.
    """
    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, dict):
        return {str(k): to_json_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_json_value(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return [to_json_value(v) for v in sorted(value, key=repr)]
    return repr(value)


@dataclass(frozen=True)
class CapturedError:
    """The kind and message of an exception captured by the engine."""

    kind: str
    message: str

    @classmethod
    def from_exception(cls, exc: BaseException) -> CapturedError:
        return cls(kind=type(exc).__name__, message=str(exc))

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind, "message": self.message}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CapturedError:
        return cls(kind=data["kind"], message=data["message"])

    def __str__(self) -> str:
        return f"{self.kind}: {self.message}"


@dataclass
class HookSet:
    """Ordered hook chains for one suite (the root suite's set is global)."""

    before_all: list[HookFn] = field(default_factory=list)
    before_each: list[HookFn] = field(default_factory=list)
    after_each: list[HookFn] = field(default_factory=list)
    after_all: list[HookFn] = field(default_factory=list)

    def chain(self, hook_type: HookType) -> list[HookFn]:
        """Return the hook list for *hook_type*."""
        return getattr(self, hook_type.value)

    def add(self, hook_type: HookType, fn: HookFn) -> None:
        self.chain(hook_type).append(fn)


@dataclass
class TestSuite:
    """A named, nestable grouping of tests.

    Attributes:
        id: Arena identifier.
        name: Display name.
        parent_id: Id of the enclosing suite, ``None`` only for the root.
        test_ids: Owned tests in registration (default execution) order.
        child_ids: Nested suites in registration order.
        stage: Pipeline stage this suite's tests belong to, if scoped.
        hooks: The suite's hook chains.
    """

    __test__ = False

    id: str
    name: str
    parent_id: str | None = None
    test_ids: list[str] = field(default_factory=list)
    child_ids: list[str] = field(default_factory=list)
    stage: str | None = None
    hooks: HookSet = field(default_factory=HookSet)

    @property
    def is_root(self) -> bool:
        return self.id == ROOT_SUITE_ID


@dataclass
class TestCase:
    """A single registered unit of work.

    Mutated only by the execution engine while a run of it is in flight.
    ``timeout_ms`` and ``max_retries`` left as ``None`` fall back to the
    engine defaults.
    """

    __test__ = False

    id: str
    name: str
    fn: TestFn
    suite_id: str = ROOT_SUITE_ID
    full_name: str = ""
    timeout_ms: int | None = None
    max_retries: int | None = None
    status: TestStatus = TestStatus.PENDING
    start_time: float | None = None
    end_time: float | None = None
    duration_ms: float | None = None
    error: CapturedError | None = None
    retry_count: int = 0
    skip: bool = False
    only: bool = False
    tags: list[str] = field(default_factory=list)
    stage: str | None = None

    def __post_init__(self) -> None:
        if not self.full_name:
            self.full_name = self.name


@dataclass
class TestResult:
    """Immutable-by-convention summary of one test run.

    Attributes:
        id: The TestCase id.
        name: Test name.
        full_name: Suite path plus test name.
        suite: Name of the owning suite.
        status: Final status (reflects the last attempt only).
        start_time: UNIX epoch of the first attempt's start.
        end_time: UNIX epoch of the last attempt's end.
        duration_ms: Wall-clock time across all attempts.
        error: Error of the last attempt, if it failed.
        retry_count: Number of retries performed.
        retried: Whether at least one retry happened.
        attempts: Total attempts made (``retry_count + 1`` when run).
        aux_errors: Errors from ``after_each`` hooks that did not change
            the status.
        output: Whatever the body returned on its last attempt.
        metrics: Numeric metrics reported by the body, if any.
        stage: Pipeline stage the test ran in.
    """

    __test__ = False

    id: str
    name: str
    full_name: str = ""
    suite: str = ""
    status: TestStatus = TestStatus.PENDING
    start_time: float | None = None
    end_time: float | None = None
    duration_ms: float = 0.0
    error: CapturedError | None = None
    retry_count: int = 0
    retried: bool = False
    attempts: int = 0
    aux_errors: list[CapturedError] = field(default_factory=list)
    output: Any = None
    metrics: dict[str, float] = field(default_factory=dict)
    stage: str | None = None

    @classmethod
    def not_run(
        cls,
        test: TestCase,
        status: TestStatus,
        suite_name: str = "",
        error: CapturedError | None = None,
    ) -> TestResult:
        """Build a result for a test that was never executed."""
        return cls(
            id=test.id,
            name=test.name,
            full_name=test.full_name,
            suite=suite_name,
            status=status,
            error=error,
            stage=test.stage,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dictionary.

        ``output`` is converted with :func:`to_json_value`.
        """
        output = to_json_value(self.output)
        return {
            "id": self.id,
            "name": self.name,
            "full_name": self.full_name,
            "suite": self.suite,
            "status": self.status.value,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "duration_ms": self.duration_ms,
            "error": self.error.to_dict() if self.error else None,
            "retry_count": self.retry_count,
            "retried": self.retried,
            "attempts": self.attempts,
            "aux_errors": [e.to_dict() for e in self.aux_errors],
            "output": output,
            "metrics": dict(self.metrics),
            "stage": self.stage,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TestResult:
        """Reconstruct a result from :meth:`to_dict` output."""
        error = data.get("error")
        return cls(
            id=data["id"],
            name=data["name"],
            full_name=data.get("full_name", ""),
            suite=data.get("suite", ""),
            status=TestStatus(data["status"]),
            start_time=data.get("start_time"),
            end_time=data.get("end_time"),
            duration_ms=data.get("duration_ms", 0.0),
            error=CapturedError.from_dict(error) if error else None,
            retry_count=data.get("retry_count", 0),
            retried=data.get("retried", False),
            attempts=data.get("attempts", 0),
            aux_errors=[CapturedError.from_dict(e) for e in data.get("aux_errors", [])],
            output=data.get("output"),
            metrics=dict(data.get("metrics", {})),
            stage=data.get("stage"),
        )


@dataclass(frozen=True)
class SuiteError:
    """A ``before_all``/``after_all`` failure attributed to a whole suite."""

    suite_id: str
    suite_name: str
    hook_type: HookType
    error: CapturedError

    def to_dict(self) -> dict[str, Any]:
        return {
            "suite_id": self.suite_id,
            "suite_name": self.suite_name,
            "hook_type": self.hook_type.value,
            "error": self.error.to_dict(),
        }


@dataclass
class RunSummary:
    """Counts over a list of results."""

    total: int = 0
    passed: int = 0
    failed: int = 0
    skipped: int = 0
    errors: int = 0
    duration_ms: float = 0.0

    @classmethod
    def from_results(
        cls, results: list[TestResult], duration_ms: float = 0.0
    ) -> RunSummary:
        summary = cls(total=len(results), duration_ms=duration_ms)
        for result in results:
            if result.status == TestStatus.PASSED:
                summary.passed += 1
            elif result.status == TestStatus.FAILED:
                summary.failed += 1
            elif result.status == TestStatus.SKIPPED:
                summary.skipped += 1
            elif result.status == TestStatus.ERROR:
                summary.errors += 1
        return summary

    @property
    def success_rate(self) -> int:
        """Percentage of passed tests among those that ran."""
        ran = self.total - self.skipped
        return round(self.passed / ran * 100) if ran else 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "passed": self.passed,
            "failed": self.failed,
            "skipped": self.skipped,
            "errors": self.errors,
            "duration_ms": self.duration_ms,
        }
