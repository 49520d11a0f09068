"""Gauntlet core - registry, execution engine and test utilities.

Provides the test registry (suites, tests, hooks), the execution engine
with cooperative timeouts and bounded retry, a batch runner with suite
lifecycle and a bounded worker pool, reversible mock/stub/spy
instrumentation, and the assertion library with its fluent wrapper.
"""

from gauntlet.core import assertions
from gauntlet.core.assertions import UNDEFINED
from gauntlet.core.errors import (
    AssertionFailure,
    ConcurrentRunError,
    ConfigurationError,
    GauntletError,
    HookFailure,
    TimeoutFailure,
)
from gauntlet.core.events import EventEmitter, EventType, LifecycleEvent
from gauntlet.core.executor import Executor
from gauntlet.core.expect import Expectation, expect
from gauntlet.core.mocking import (
    MockCall,
    MockHandle,
    MockRegistry,
    SpyHandle,
    StubHandle,
    mock,
    restore,
    restore_all,
    spy,
    stub,
)
from gauntlet.core.models import (
    CapturedError,
    HookSet,
    HookType,
    RunSummary,
    SuiteError,
    TestCase,
    TestResult,
    TestStatus,
    TestSuite,
)
from gauntlet.core.timing import Measurement, measure, wait_for_condition
from gauntlet.core.registry import Registry, Selection
from gauntlet.core.runner import (
    Batch,
    BatchResult,
    Runner,
    SuiteLifecycle,
    run_matching,
    run_suite,
    run_tagged,
)

__all__ = [
    "AssertionFailure",
    "Batch",
    "BatchResult",
    "CapturedError",
    "ConcurrentRunError",
    "ConfigurationError",
    "EventEmitter",
    "EventType",
    "Executor",
    "Expectation",
    "GauntletError",
    "HookFailure",
    "HookSet",
    "HookType",
    "LifecycleEvent",
    "Measurement",
    "MockCall",
    "MockHandle",
    "MockRegistry",
    "Registry",
    "RunSummary",
    "Runner",
    "Selection",
    "SpyHandle",
    "StubHandle",
    "SuiteError",
    "SuiteLifecycle",
    "TestCase",
    "TestResult",
    "TestStatus",
    "TestSuite",
    "TimeoutFailure",
    "UNDEFINED",
    "assertions",
    "expect",
    "measure",
    "mock",
    "restore",
    "restore_all",
    "run_matching",
    "run_suite",
    "run_tagged",
    "spy",
    "stub",
    "wait_for_condition",
]
