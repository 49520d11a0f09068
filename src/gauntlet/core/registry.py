"""Test registry.

Owns every :class:`TestSuite`, :class:`TestCase` and :class:`HookSet`.
Suites live in an arena keyed by id; tests point at their suite by id
and suites point at their parent by id.  A synthetic root suite always
exists: tests registered outside any suite attach to it, and hooks
registered outside any suite are global.

A registry is an explicit value.  Create one per independent run (or
call :meth:`Registry.reset`) rather than sharing global state.
"""

from __future__ import annotations

import contextlib
import logging
import uuid
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from typing import Any

from gauntlet.core.models import (
    ROOT_SUITE_ID,
    HookFn,
    HookType,
    TestCase,
    TestFn,
    TestSuite,
)

logger = logging.getLogger(__name__)

NAME_SEPARATOR = " > "


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


@dataclass
class Selection:
    """Outcome of skip/only filtering over a target set of tests.

    Attributes:
        runnable: Tests to execute, in the order given.
        skipped: Tests flagged ``skip`` plus tests excluded because other
            tests in the set are flagged ``only``.
    """

    runnable: list[TestCase] = field(default_factory=list)
    skipped: list[TestCase] = field(default_factory=list)


class Registry:
    """Registration surface for suites, tests and hooks."""

    def __init__(self) -> None:
        self._suites: dict[str, TestSuite] = {}
        self._tests: dict[str, TestCase] = {}
        self._current: str = ROOT_SUITE_ID
        self.reset()

    def reset(self) -> None:
        """Drop every suite, test and hook, leaving only an empty root."""
        self._suites = {ROOT_SUITE_ID: TestSuite(id=ROOT_SUITE_ID, name="")}
        self._tests = {}
        self._current = ROOT_SUITE_ID

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    @property
    def root(self) -> TestSuite:
        return self._suites[ROOT_SUITE_ID]

    @property
    def current_suite(self) -> TestSuite:
        return self._suites[self._current]

    @property
    def tests(self) -> list[TestCase]:
        """All tests in registration order."""
        return list(self._tests.values())

    @property
    def suites(self) -> list[TestSuite]:
        """All non-root suites in registration order."""
        return [s for s in self._suites.values() if not s.is_root]

    def get_test(self, test_id: str) -> TestCase:
        try:
            return self._tests[test_id]
        except KeyError:
            raise KeyError(f"Unknown test id '{test_id}'") from None

    def get_suite(self, suite_id: str) -> TestSuite:
        try:
            return self._suites[suite_id]
        except KeyError:
            raise KeyError(f"Unknown suite id '{suite_id}'") from None

    def find_suite(self, name: str) -> TestSuite | None:
        """Return the first suite registered under *name*."""
        for suite in self._suites.values():
            if not suite.is_root and suite.name == name:
                return suite
        return None

    def ancestors(self, suite_id: str) -> list[TestSuite]:
        """Return the chain from the root down to *suite_id* (inclusive)."""
        chain: list[TestSuite] = []
        current: str | None = suite_id
        while current is not None:
            suite = self._suites[current]
            chain.append(suite)
            current = suite.parent_id
        chain.reverse()
        return chain

    def suite_path(self, suite_id: str) -> str:
        """Display path of a suite, e.g. ``"Math > Addition"``."""
        return NAME_SEPARATOR.join(s.name for s in self.ancestors(suite_id) if not s.is_root)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    @contextlib.contextmanager
    def suite(self, name: str, stage: str | None = None) -> Iterator[TestSuite]:
        """Open a suite; registrations inside the block attach to it.

        The previous current suite is restored on exit, including when
        the block raises.  Nested suites inherit the parent's stage
        unless *stage* is given.
        """
        parent = self.current_suite
        suite = TestSuite(
            id=_new_id("suite"),
            name=name,
            parent_id=parent.id,
            stage=stage if stage is not None else parent.stage,
        )
        self._suites[suite.id] = suite
        parent.child_ids.append(suite.id)

        previous = self._current
        self._current = suite.id
        try:
            yield suite
        finally:
            self._current = previous

    def define_suite(
        self, name: str, body: TestFn, stage: str | None = None
    ) -> TestSuite:
        """Create a suite and run *body* synchronously with it as current."""
        with self.suite(name, stage=stage) as suite:
            body()
        return suite

    def define_test(
        self,
        name: str,
        fn: TestFn,
        timeout_ms: int | None = None,
        *,
        max_retries: int | None = None,
        tags: Iterable[str] = (),
        stage: str | None = None,
    ) -> TestCase:
        """Register a test in the current suite and return it.

        Duplicate names are allowed; tests are identified by id.
        """
        suite = self.current_suite
        path = self.suite_path(suite.id)
        test = TestCase(
            id=_new_id("test"),
            name=name,
            fn=fn,
            suite_id=suite.id,
            full_name=f"{path}{NAME_SEPARATOR}{name}" if path else name,
            timeout_ms=timeout_ms,
            max_retries=max_retries,
            tags=list(tags),
            stage=stage if stage is not None else suite.stage,
        )
        self._tests[test.id] = test
        suite.test_ids.append(test.id)
        logger.debug("Registered test '%s' (%s)", test.full_name, test.id)
        return test

    def skip(
        self, name: str, fn: TestFn, timeout_ms: int | None = None, **kwargs: Any
    ) -> TestCase:
        test = self.define_test(name, fn, timeout_ms, **kwargs)
        test.skip = True
        return test

    def only(
        self, name: str, fn: TestFn, timeout_ms: int | None = None, **kwargs: Any
    ) -> TestCase:
        test = self.define_test(name, fn, timeout_ms, **kwargs)
        test.only = True
        return test

    def add_hook(self, hook_type: HookType, fn: HookFn) -> None:
        """Attach *fn* to the current suite's chain (global at the root)."""
        self.current_suite.hooks.add(hook_type, fn)

    def before_all(self, fn: HookFn) -> None:
        self.add_hook(HookType.BEFORE_ALL, fn)

    def before_each(self, fn: HookFn) -> None:
        self.add_hook(HookType.BEFORE_EACH, fn)

    def after_each(self, fn: HookFn) -> None:
        self.add_hook(HookType.AFTER_EACH, fn)

    def after_all(self, fn: HookFn) -> None:
        self.add_hook(HookType.AFTER_ALL, fn)

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def tests_in_suite(self, suite_id: str) -> list[TestCase]:
        """Tests of *suite_id* and all nested suites, depth-first in order."""
        suite = self.get_suite(suite_id)
        found = [self._tests[tid] for tid in suite.test_ids]
        for child_id in suite.child_ids:
            found.extend(self.tests_in_suite(child_id))
        return found

    def tests_for_stage(self, stage: str) -> list[TestCase]:
        """Tests whose stage is *stage*, in registration order."""
        return [t for t in self._tests.values() if t.stage == stage]

    def resolve(self, identifiers: Iterable[str]) -> list[TestCase]:
        """Map test ids or full names to tests, keeping the given order.

        A full name matching several tests yields all of them.

        Raises:
            KeyError: If an identifier matches nothing.
        """
        by_name: dict[str, list[TestCase]] = {}
        for test in self._tests.values():
            by_name.setdefault(test.full_name, []).append(test)

        resolved: list[TestCase] = []
        seen: set[str] = set()
        for ident in identifiers:
            if ident in self._tests:
                matches = [self._tests[ident]]
            elif ident in by_name:
                matches = by_name[ident]
            else:
                raise KeyError(f"No test matches identifier '{ident}'")
            for test in matches:
                if test.id not in seen:
                    seen.add(test.id)
                    resolved.append(test)
        return resolved

    def filter(
        self,
        pattern: str | None = None,
        suite: str | None = None,
        tags: Iterable[str] | None = None,
    ) -> list[TestCase]:
        """Narrow the registered tests.

        Args:
            pattern: Case-insensitive substring of the test's full name.
            suite: Name of a suite; keeps tests in it or nested below it.
            tags: Keeps tests carrying at least one of these tags.

        Raises:
            KeyError: If *suite* names no registered suite.
        """
        if suite is not None:
            found = self.find_suite(suite)
            if found is None:
                raise KeyError(f"Suite not found: {suite}")
            candidates = self.tests_in_suite(found.id)
        else:
            candidates = self.tests
        if pattern:
            needle = pattern.lower()
            candidates = [t for t in candidates if needle in t.full_name.lower()]
        if tags is not None:
            wanted = set(tags)
            candidates = [t for t in candidates if wanted.intersection(t.tags)]
        return candidates

    @staticmethod
    def select(tests: Iterable[TestCase]) -> Selection:
        """Apply skip/only flags to a target set.

        If any test in the set is flagged ``only``, exactly those tests are
        runnable.  Otherwise every test not flagged ``skip`` is.  ``skip``
        always wins over ``only``.
        """
        tests = list(tests)
        focused = any(t.only for t in tests)
        selection = Selection()
        for test in tests:
            if test.skip or (focused and not test.only):
                selection.skipped.append(test)
            else:
                selection.runnable.append(test)
        return selection
