"""Assertion library.

Stateless comparison functions used by test bodies and by
:class:`~gauntlet.core.expect.Expectation`.  Each one returns ``None``
on success and raises :class:`~gauntlet.core.errors.AssertionFailure`
otherwise.

``deep_equal`` walks nested mappings and sequences.  Cyclic structures
are not guarded against and will recurse until Python's recursion limit.
"""

from __future__ import annotations

import difflib
import operator
import pprint
import re
from collections.abc import Mapping, Sequence, Set
from typing import Any, Callable

from gauntlet.core.errors import AssertionFailure


class _Undefined:
    """Sentinel for "no value", distinct from ``None``."""

    _instance: _Undefined | None = None

    def __new__(cls) -> _Undefined:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNDEFINED"

    def __bool__(self) -> bool:
        return False


UNDEFINED: Any = _Undefined()

_STRING_TYPES = (str, bytes, bytearray)


def _diff(actual: Any, expected: Any) -> str | None:
    """Return an ndiff of the pretty-printed values, or ``None`` for scalars."""
    if not isinstance(actual, (Mapping, Sequence, Set)) or isinstance(
        actual, _STRING_TYPES
    ):
        if not (isinstance(actual, str) and isinstance(expected, str)):
            return None
        if "\n" not in actual and "\n" not in expected:
            return None
    left = pprint.pformat(expected).splitlines()
    right = pprint.pformat(actual).splitlines()
    lines = difflib.ndiff(left, right)
    return "- expected\n+ actual\n" + "\n".join(lines)


def _fail(message: str, *, actual: Any = None, expected: Any = None) -> None:
    raise AssertionFailure(
        message, actual=actual, expected=expected, diff=_diff(actual, expected)
    )


def is_deep_equal(left: Any, right: Any) -> bool:
    """Structural equality over nested mappings and sequences.

    Mappings compare by key set and per-key deep equality regardless of
    concrete type; non-string sequences compare element-wise, so a list
    and a tuple with equal items are deeply equal.  Anything else falls
    back to ``==``.
    """
    if left is right:
        return True
    if left is None or right is None:
        return False
    if isinstance(left, Mapping) and isinstance(right, Mapping):
        if len(left) != len(right):
            return False
        for key in left:
            if key not in right:
                return False
            if not is_deep_equal(left[key], right[key]):
                return False
        return True
    if (
        isinstance(left, Sequence)
        and isinstance(right, Sequence)
        and not isinstance(left, _STRING_TYPES)
        and not isinstance(right, _STRING_TYPES)
    ):
        if len(left) != len(right):
            return False
        return all(is_deep_equal(a, b) for a, b in zip(left, right))
    if isinstance(left, (Mapping, Sequence)) != isinstance(right, (Mapping, Sequence)):
        return False
    return bool(left == right)


def equal(actual: Any, expected: Any, message: str = "Expected values to be equal") -> None:
    """Loose equality (``==``)."""
    if actual != expected:
        _fail(f"{message}: {actual!r} != {expected!r}", actual=actual, expected=expected)


def not_equal(
    actual: Any, expected: Any, message: str = "Expected values to differ"
) -> None:
    if actual == expected:
        _fail(f"{message}: {actual!r} == {expected!r}", actual=actual, expected=expected)


def strict_equal(
    actual: Any, expected: Any, message: str = "Expected values to be strictly equal"
) -> None:
    """Equality that also requires the exact same type.

    ``1``, ``1.0`` and ``True`` are loosely equal but not strictly equal.
    """
    if actual is expected:
        return
    if type(actual) is not type(expected) or actual != expected:
        _fail(
            f"{message}: {actual!r} ({type(actual).__name__}) is not "
            f"{expected!r} ({type(expected).__name__})",
            actual=actual,
            expected=expected,
        )


def deep_equal(
    actual: Any, expected: Any, message: str = "Expected values to be deeply equal"
) -> None:
    if not is_deep_equal(actual, expected):
        _fail(f"{message}: {actual!r} != {expected!r}", actual=actual, expected=expected)


def is_true(actual: Any, message: str = "Expected value to be True") -> None:
    if actual is not True:
        _fail(f"{message}: {actual!r} is not True", actual=actual, expected=True)


def is_false(actual: Any, message: str = "Expected value to be False") -> None:
    if actual is not False:
        _fail(f"{message}: {actual!r} is not False", actual=actual, expected=False)


def is_null(actual: Any, message: str = "Expected value to be None") -> None:
    if actual is not None:
        _fail(f"{message}: {actual!r} is not None", actual=actual, expected=None)


def is_undefined(actual: Any, message: str = "Expected value to be undefined") -> None:
    if actual is not UNDEFINED:
        _fail(f"{message}: {actual!r} is defined", actual=actual, expected=UNDEFINED)


def is_defined(actual: Any, message: str = "Expected value to be defined") -> None:
    if actual is UNDEFINED:
        _fail(f"{message}: value is undefined", actual=actual)


def throws(
    fn: Callable[[], Any],
    expected: str | re.Pattern[str] | type[BaseException] | None = None,
    message: str = "Expected function to raise",
) -> BaseException:
    """Call *fn* and require it to raise.

    Args:
        fn: Zero-argument callable.
        expected: Optional constraint on the raised exception: an exact
            message string, a compiled pattern searched in the message, or
            an exception class the error must be an instance of.
        message: Prefix for the failure message.

    Returns:
        The exception that was raised.
    """
    try:
        fn()
    except Exception as exc:  # noqa: BLE001 - every exception is a candidate
        error = exc
    else:
        raise AssertionFailure(f"{message}: function did not raise")

    if expected is None:
        return error
    if isinstance(expected, str):
        if str(error) != expected:
            _fail(
                f"{message}: expected error message {expected!r}, got {str(error)!r}",
                actual=str(error),
                expected=expected,
            )
    elif isinstance(expected, re.Pattern):
        if not expected.search(str(error)):
            _fail(
                f"{message}: error message {str(error)!r} does not match "
                f"pattern {expected.pattern!r}"
            )
    elif isinstance(expected, type) and issubclass(expected, BaseException):
        if not isinstance(error, expected):
            _fail(
                f"{message}: expected {expected.__name__}, got {type(error).__name__}"
            )
    else:
        raise TypeError("expected must be a str, compiled pattern or exception type")
    return error


def does_not_throw(
    fn: Callable[[], Any], message: str = "Expected function not to raise"
) -> Any:
    """Call *fn*, failing if it raises; returns its return value."""
    try:
        return fn()
    except Exception as exc:  # noqa: BLE001
        raise AssertionFailure(
            f"{message}: function raised {type(exc).__name__}: {exc}"
        ) from exc


def _pattern_matches(actual: Any, pattern: str | re.Pattern[str]) -> bool:
    if isinstance(pattern, re.Pattern):
        return isinstance(actual, str) and pattern.search(actual) is not None
    if isinstance(pattern, str):
        return actual == pattern
    raise TypeError("pattern must be a str or compiled pattern")


def matches(
    actual: Any,
    pattern: str | re.Pattern[str],
    message: str = "Expected value to match",
) -> None:
    """A plain string must equal *actual*; a compiled pattern is searched."""
    if not _pattern_matches(actual, pattern):
        shown = pattern.pattern if isinstance(pattern, re.Pattern) else pattern
        _fail(f"{message}: {actual!r} does not match {shown!r}")


def does_not_match(
    actual: Any,
    pattern: str | re.Pattern[str],
    message: str = "Expected value not to match",
) -> None:
    if _pattern_matches(actual, pattern):
        shown = pattern.pattern if isinstance(pattern, re.Pattern) else pattern
        _fail(f"{message}: {actual!r} matches {shown!r}")


def _ordered(compare: Callable[[Any, Any], bool], actual: Any, expected: Any) -> bool:
    try:
        return bool(compare(actual, expected))
    except TypeError as exc:
        raise AssertionFailure(
            f"Cannot compare {actual!r} with {expected!r}: {exc}",
            actual=actual,
            expected=expected,
        ) from exc


def greater_than(actual: Any, expected: Any, message: str | None = None) -> None:
    if not _ordered(operator.gt, actual, expected):
        _fail(message or f"Expected {actual!r} to be greater than {expected!r}")


def less_than(actual: Any, expected: Any, message: str | None = None) -> None:
    if not _ordered(operator.lt, actual, expected):
        _fail(message or f"Expected {actual!r} to be less than {expected!r}")


def greater_than_or_equal(actual: Any, expected: Any, message: str | None = None) -> None:
    if not _ordered(operator.ge, actual, expected):
        _fail(
            message or f"Expected {actual!r} to be greater than or equal to {expected!r}"
        )


def less_than_or_equal(actual: Any, expected: Any, message: str | None = None) -> None:
    if not _ordered(operator.le, actual, expected):
        _fail(message or f"Expected {actual!r} to be less than or equal to {expected!r}")


def _holds(container: Any, item: Any) -> bool:
    try:
        return item in container
    except TypeError as exc:
        raise AssertionFailure(
            f"Cannot look for {item!r} in {container!r}: {exc}",
            actual=container,
            expected=item,
        ) from exc


def contains(
    container: Any, item: Any, message: str = "Expected container to contain item"
) -> None:
    if not _holds(container, item):
        _fail(f"{message}: {container!r} does not contain {item!r}")


def does_not_contain(
    container: Any, item: Any, message: str = "Expected container not to contain item"
) -> None:
    if _holds(container, item):
        _fail(f"{message}: {container!r} contains {item!r}")


def has_length(actual: Any, length: int, message: str | None = None) -> None:
    try:
        size = len(actual)
    except TypeError as exc:
        raise AssertionFailure(f"{actual!r} has no length", actual=actual, expected=length) from exc
    if size != length:
        _fail(
            message or f"Expected length {length}, got {size}",
            actual=size,
            expected=length,
        )


def is_instance_of(
    actual: Any, expected: type | tuple[type, ...], message: str | None = None
) -> None:
    if not isinstance(actual, expected):
        names = (
            ", ".join(t.__name__ for t in expected)
            if isinstance(expected, tuple)
            else expected.__name__
        )
        _fail(message or f"Expected {actual!r} to be an instance of {names}")


def is_type_of(actual: Any, expected: type, message: str | None = None) -> None:
    """Exact type check; subclasses do not pass."""
    if type(actual) is not expected:
        _fail(
            message
            or f"Expected type {expected.__name__}, got {type(actual).__name__}"
        )
