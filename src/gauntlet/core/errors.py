"""Error hierarchy for the Gauntlet test engine.

Failures raised inside test bodies and hooks (:class:`AssertionFailure`,
:class:`TimeoutFailure`, :class:`HookFailure`) are recoverable: the
execution engine captures them and turns them into a test status.
:class:`ConcurrentRunError` and :class:`ConfigurationError` are fatal to
the call that raised them and propagate to the caller.
"""

from __future__ import annotations

from typing import Any


class GauntletError(Exception):
    """Base exception for all Gauntlet errors."""

    @property
    def is_retryable(self) -> bool:
        """Whether a test attempt failing with this error may be retried."""
        return False


class AssertionFailure(GauntletError, AssertionError):
    """An expected-vs-actual mismatch raised by the assertion library.

    Attributes:
        actual: The value under test.
        expected: The value it was compared against.
        diff: Optional human-readable diff of the two values.
    """

    def __init__(
        self,
        message: str,
        *,
        actual: Any = None,
        expected: Any = None,
        diff: str | None = None,
    ) -> None:
        full = f"{message}\n{diff}" if diff else message
        super().__init__(full)
        self.actual = actual
        self.expected = expected
        self.diff = diff

    @property
    def is_retryable(self) -> bool:
        return True


class TimeoutFailure(GauntletError, TimeoutError):
    """A test body or stage did not settle within its time bound."""

    def __init__(self, message: str, *, timeout_ms: int | None = None) -> None:
        super().__init__(message)
        self.timeout_ms = timeout_ms

    @property
    def is_retryable(self) -> bool:
        return True


class HookFailure(GauntletError):
    """A before/after hook raised; the remaining hooks of its chain are skipped.

    Attributes:
        hook_type: Which chain failed (``before_each``, ``after_all``...).
        suite_name: Name of the suite owning the failing hook.
        cause: The original exception raised by the hook.
    """

    def __init__(
        self,
        message: str,
        *,
        hook_type: str = "",
        suite_name: str = "",
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.hook_type = hook_type
        self.suite_name = suite_name
        self.cause = cause

    @property
    def is_retryable(self) -> bool:
        return True


class ConcurrentRunError(GauntletError):
    """A pipeline or test was started while a run of it was still in flight."""


class ConfigurationError(GauntletError):
    """Invalid stage or threshold configuration, raised before any stage runs.

    Attributes:
        findings: The ERROR-level validation findings that caused the raise.
    """

    def __init__(self, findings: list[Any]) -> None:
        self.findings = findings
        super().__init__("\n".join(str(f) for f in findings))
