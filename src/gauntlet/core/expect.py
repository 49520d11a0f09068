"""Fluent expectation wrapper over the assertion library.

``expect(value).equal(4)`` delegates to :func:`assertions.equal`.
``expect(value).not_`` toggles negation for the next assertion only:
a negated assertion passes exactly when the positive form fails, and
``.not_.not_`` restores the original polarity.
"""

from __future__ import annotations

import re
from typing import Any, Callable

from gauntlet.core import assertions
from gauntlet.core.errors import AssertionFailure


class Expectation:
    """Assertion chain bound to a single *actual* value."""

    def __init__(self, actual: Any) -> None:
        self.actual = actual
        self._negated = False

    @property
    def not_(self) -> Expectation:
        self._negated = not self._negated
        return self

    @property
    def negated(self) -> bool:
        return self._negated

    def _check(self, description: str, check: Callable[[], Any]) -> None:
        negated, self._negated = self._negated, False
        if not negated:
            check()
            return
        try:
            check()
        except AssertionFailure:
            return
        raise AssertionFailure(
            f"Expected {self.actual!r} not to {description}", actual=self.actual
        )

    def equal(self, expected: Any) -> Expectation:
        self._check(f"equal {expected!r}", lambda: assertions.equal(self.actual, expected))
        return self

    def strict_equal(self, expected: Any) -> Expectation:
        self._check(
            f"strictly equal {expected!r}",
            lambda: assertions.strict_equal(self.actual, expected),
        )
        return self

    def deep_equal(self, expected: Any) -> Expectation:
        self._check(
            f"deeply equal {expected!r}",
            lambda: assertions.deep_equal(self.actual, expected),
        )
        return self

    def be_true(self) -> Expectation:
        self._check("be True", lambda: assertions.is_true(self.actual))
        return self

    def be_false(self) -> Expectation:
        self._check("be False", lambda: assertions.is_false(self.actual))
        return self

    def be_none(self) -> Expectation:
        self._check("be None", lambda: assertions.is_null(self.actual))
        return self

    def be_undefined(self) -> Expectation:
        self._check("be undefined", lambda: assertions.is_undefined(self.actual))
        return self

    def be_defined(self) -> Expectation:
        self._check("be defined", lambda: assertions.is_defined(self.actual))
        return self

    def raises(
        self, expected: str | re.Pattern[str] | type[BaseException] | None = None
    ) -> Expectation:
        """The actual value must be a callable that raises *expected*."""
        self._check("raise", lambda: assertions.throws(self.actual, expected))
        return self

    def match(self, pattern: str | re.Pattern[str]) -> Expectation:
        self._check("match", lambda: assertions.matches(self.actual, pattern))
        return self

    def gt(self, expected: Any) -> Expectation:
        self._check(
            f"be greater than {expected!r}",
            lambda: assertions.greater_than(self.actual, expected),
        )
        return self

    def lt(self, expected: Any) -> Expectation:
        self._check(
            f"be less than {expected!r}",
            lambda: assertions.less_than(self.actual, expected),
        )
        return self

    def gte(self, expected: Any) -> Expectation:
        self._check(
            f"be greater than or equal to {expected!r}",
            lambda: assertions.greater_than_or_equal(self.actual, expected),
        )
        return self

    def lte(self, expected: Any) -> Expectation:
        self._check(
            f"be less than or equal to {expected!r}",
            lambda: assertions.less_than_or_equal(self.actual, expected),
        )
        return self

    def length(self, expected: int) -> Expectation:
        self._check(
            f"have length {expected}",
            lambda: assertions.has_length(self.actual, expected),
        )
        return self

    def contain(self, item: Any) -> Expectation:
        self._check(
            f"contain {item!r}", lambda: assertions.contains(self.actual, item)
        )
        return self

    def instance_of(self, expected: type | tuple[type, ...]) -> Expectation:
        self._check(
            "be an instance of the given type",
            lambda: assertions.is_instance_of(self.actual, expected),
        )
        return self


def expect(actual: Any) -> Expectation:
    """Start an expectation chain on *actual*."""
    return Expectation(actual)
