"""Tests for the batch runner: suite lifecycle, selection and worker pool."""

import asyncio

import pytest

from gauntlet.core.errors import TimeoutFailure
from gauntlet.core.executor import Executor
from gauntlet.core.models import HookType, SuiteError, TestStatus
from gauntlet.core.registry import Registry
from gauntlet.core.runner import (
    Batch,
    Runner,
    SuiteLifecycle,
    run_matching,
    run_suite,
    run_tagged,
)


def _sleeper(seconds: float, log: list[str] | None = None, label: str = ""):
    async def body() -> None:
        if log is not None:
            log.append(f"start {label}")
        await asyncio.sleep(seconds)
        if log is not None:
            log.append(f"end {label}")

    return body


class TestMathScenario:
    async def test_pass_and_timeout(self, registry: Registry) -> None:
        async def adds() -> None:
            assert 1 + 1 == 2

        with registry.suite("Math"):
            registry.define_test("add passes", adds, 50)
            registry.define_test("slow", _sleeper(3600), 50, max_retries=1)

        result = await Runner(registry).run(registry.tests)
        summary = result.summary()
        assert (summary.total, summary.passed, summary.failed) == (2, 1, 1)

        add, slow = result.results
        assert add.status == TestStatus.PASSED
        assert add.suite == "Math"
        assert slow.status == TestStatus.FAILED
        assert slow.attempts == 2
        assert slow.error is not None
        assert slow.error.kind == "TimeoutFailure"
        assert result.failed


class TestSelection:
    async def test_skipped_tests_are_reported_not_run(self, registry: Registry) -> None:
        ran: list[str] = []
        registry.define_test("runs", lambda: ran.append("runs"))
        registry.skip("skipped", lambda: ran.append("skipped"))

        result = await Runner(registry).run(registry.tests)
        assert ran == ["runs"]
        assert [r.status for r in result.results] == [TestStatus.PASSED, TestStatus.SKIPPED]
        assert result.summary().skipped == 1
        assert not result.failed

    async def test_only_excludes_the_rest_as_skipped(self, registry: Registry) -> None:
        ran: list[str] = []
        registry.define_test("a", lambda: ran.append("a"))
        registry.only("b", lambda: ran.append("b"))
        registry.define_test("c", lambda: ran.append("c"))

        result = await Runner(registry).run(registry.tests)
        assert ran == ["b"]
        assert [r.status.value for r in result.results] == ["skipped", "passed", "skipped"]

    async def test_results_keep_target_order(self, registry: Registry) -> None:
        registry.define_test("slow", _sleeper(0.05), 1000)
        registry.define_test("fast", lambda: None)
        result = await Runner(registry).run(registry.tests, parallel=True, max_concurrency=2)
        assert [r.name for r in result.results] == ["slow", "fast"]


class TestSuiteLifecycle:
    async def test_all_hooks_run_once_around_the_suite(self, registry: Registry) -> None:
        order: list[str] = []
        with registry.suite("Outer"):
            registry.before_all(lambda: order.append("outer before_all"))
            registry.after_all(lambda: order.append("outer after_all"))
            with registry.suite("Inner"):
                registry.before_all(lambda: order.append("inner before_all"))
                registry.after_all(lambda: order.append("inner after_all"))
                registry.define_test("one", lambda: order.append("one"))
                registry.define_test("two", lambda: order.append("two"))

        await Runner(registry).run(registry.tests)
        assert order == [
            "outer before_all",
            "inner before_all",
            "one",
            "two",
            "inner after_all",
            "outer after_all",
        ]

    async def test_all_hooks_run_once_under_parallelism(self, registry: Registry) -> None:
        counts = {"before": 0, "after": 0}

        async def before() -> None:
            await asyncio.sleep(0.01)
            counts["before"] += 1

        def after() -> None:
            counts["after"] += 1

        with registry.suite("S"):
            registry.before_all(before)
            registry.after_all(after)
            for i in range(6):
                registry.define_test(f"t{i}", _sleeper(0.01), 1000)

        result = await Runner(registry).run(registry.tests, parallel=True, max_concurrency=3)
        assert counts == {"before": 1, "after": 1}
        assert result.summary().passed == 6

    async def test_after_all_waits_for_every_test(self, registry: Registry) -> None:
        log: list[str] = []
        with registry.suite("S"):
            registry.after_all(lambda: log.append("after_all"))
            registry.define_test("slow", _sleeper(0.05, log, "slow"), 1000)
            registry.define_test("fast", _sleeper(0, log, "fast"), 1000)

        await Runner(registry).run(registry.tests, parallel=True, max_concurrency=2)
        assert log[-1] == "after_all"

    async def test_skipped_suite_does_not_run_its_hooks(self, registry: Registry) -> None:
        calls: list[str] = []
        with registry.suite("S"):
            registry.before_all(lambda: calls.append("before_all"))
            registry.after_all(lambda: calls.append("after_all"))
            registry.skip("t", lambda: None)

        await Runner(registry).run(registry.tests)
        assert calls == []

    async def test_before_all_failure_marks_tests_error(self, registry: Registry) -> None:
        ran: list[str] = []

        def broken() -> None:
            raise RuntimeError("db down")

        with registry.suite("DB"):
            registry.before_all(broken)
            registry.after_all(lambda: ran.append("after_all"))
            registry.define_test("q1", lambda: ran.append("q1"))
            registry.define_test("q2", lambda: ran.append("q2"))
        registry.define_test("elsewhere", lambda: ran.append("elsewhere"))

        result = await Runner(registry).run(registry.tests)
        statuses = {r.name: r.status for r in result.results}
        assert statuses == {
            "q1": TestStatus.ERROR,
            "q2": TestStatus.ERROR,
            "elsewhere": TestStatus.PASSED,
        }
        assert "q1" not in ran
        assert "after_all" in ran
        assert len(result.suite_errors) == 1
        error = result.suite_errors[0]
        assert error.suite_name == "DB"
        assert error.hook_type == HookType.BEFORE_ALL
        assert "db down" in error.error.message
        assert result.summary().errors == 2

    async def test_after_all_failure_is_recorded_without_changing_tests(
        self, registry: Registry
    ) -> None:
        def broken() -> None:
            raise RuntimeError("teardown broke")

        with registry.suite("S"):
            registry.after_all(broken)
            registry.define_test("t", lambda: None)

        result = await Runner(registry).run(registry.tests)
        assert result.results[0].status == TestStatus.PASSED
        assert [e.hook_type for e in result.suite_errors] == [HookType.AFTER_ALL]
        assert result.failed


    async def test_shared_lifecycle_spans_batches(self, registry: Registry) -> None:
        calls: list[str] = []
        with registry.suite("Svc"):
            registry.before_all(lambda: calls.append("before_all"))
            registry.after_all(lambda: calls.append("after_all"))
            a = registry.define_test("a", lambda: calls.append("a"))
            b = registry.define_test("b", lambda: calls.append("b"))

        executor = Executor(registry)
        lifecycle = SuiteLifecycle(registry, [a, b])
        await Batch(registry, executor, [a], lifecycle=lifecycle).run()
        assert calls == ["before_all", "a"]

        await Batch(registry, executor, [b], lifecycle=lifecycle).run()
        assert calls == ["before_all", "a", "b", "after_all"]

    async def test_release_tears_down_suites_left_open(self, registry: Registry) -> None:
        calls: list[str] = []
        with registry.suite("Svc"):
            registry.before_all(lambda: calls.append("before_all"))
            registry.after_all(lambda: calls.append("after_all"))
            a = registry.define_test("a", lambda: calls.append("a"))
            b = registry.define_test("b", lambda: calls.append("b"))

        lifecycle = SuiteLifecycle(registry, [a, b])
        await Batch(registry, Executor(registry), [a], lifecycle=lifecycle).run()
        errors: list[SuiteError] = []
        await lifecycle.release([b], errors)
        await lifecycle.release([b], errors)

        assert calls == ["before_all", "a", "after_all"]
        assert errors == []

    async def test_release_without_setup_runs_no_hooks(self, registry: Registry) -> None:
        calls: list[str] = []
        with registry.suite("Svc"):
            registry.after_all(lambda: calls.append("after_all"))
            a = registry.define_test("a", lambda: None)

        errors: list[SuiteError] = []
        await SuiteLifecycle(registry, [a]).release([a], errors)
        assert calls == []


class TestConcurrency:
    async def test_sequential_by_default(self, registry: Registry) -> None:
        log: list[str] = []
        for label in ("a", "b"):
            registry.define_test(label, _sleeper(0.01, log, label), 1000)

        result = await Runner(registry).run(registry.tests)
        assert log == ["start a", "end a", "start b", "end b"]
        assert result.peak_concurrency == 1

    async def test_never_exceeds_max_concurrency(self, registry: Registry) -> None:
        for i in range(5):
            registry.define_test(f"t{i}", _sleeper(0.02), 1000)

        result = await Runner(registry).run(registry.tests, parallel=True, max_concurrency=2)
        assert result.peak_concurrency == 2
        assert result.summary().passed == 5

    async def test_next_test_starts_when_a_slot_frees(self, registry: Registry) -> None:
        log: list[str] = []
        registry.define_test("long", _sleeper(0.1, log, "long"), 1000)
        registry.define_test("short", _sleeper(0.01, log, "short"), 1000)
        registry.define_test("next", _sleeper(0, log, "next"), 1000)

        await Runner(registry).run(registry.tests, parallel=True, max_concurrency=2)
        assert log.index("start next") < log.index("end long")

    async def test_snapshot_reports_unfinished_tests(self, registry: Registry) -> None:
        registry.define_test("quick", lambda: None)
        registry.define_test("stuck", _sleeper(3600), 60_000)
        registry.define_test("never started", lambda: None)

        batch = Batch(registry, Executor(registry), registry.tests)
        task = asyncio.ensure_future(batch.run())
        await asyncio.sleep(0.05)
        result = batch.snapshot(TimeoutFailure("stage timed out"))

        assert result.timed_out
        assert [r.status for r in result.results] == [
            TestStatus.PASSED,
            TestStatus.ERROR,
            TestStatus.ERROR,
        ]
        assert result.results[1].error is not None
        assert result.results[1].error.message == "stage timed out"
        assert [t.name for t in batch.unstarted] == ["never started"]
        assert await batch.release_unstarted() == []
        task.cancel()


class TestHelpers:
    @pytest.fixture
    def populated(self, registry: Registry) -> Registry:
        with registry.suite("Auth"):
            registry.define_test("login", lambda: None, tags=["smoke"])
            registry.define_test("logout", lambda: False, max_retries=0)
        registry.define_test("home page", lambda: None, tags=["smoke"])
        return registry

    async def test_run_suite(self, populated: Registry) -> None:
        result = await run_suite(populated, "Auth")
        assert [r.name for r in result.results] == ["login", "logout"]
        assert result.summary().failed == 1

    async def test_run_suite_unknown_name(self, populated: Registry) -> None:
        with pytest.raises(KeyError):
            await run_suite(populated, "Missing")

    async def test_run_matching(self, populated: Registry) -> None:
        result = await run_matching(populated, "LOG")
        assert [r.name for r in result.results] == ["login", "logout"]

    async def test_run_tagged(self, populated: Registry) -> None:
        result = await run_tagged(populated, "smoke", Executor(populated))
        assert [r.name for r in result.results] == ["login", "home page"]
        assert not result.failed
