"""Shared fixtures for the Gauntlet test suite."""

from __future__ import annotations

import os
from collections.abc import Iterator

import pytest

from gauntlet.core.events import EventEmitter, EventType, LifecycleEvent
from gauntlet.core.mocking import MockRegistry, default_registry
from gauntlet.core.registry import Registry


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep GAUNTLET_* variables from the host out of config tests."""
    for key in list(os.environ):
        if key.startswith("GAUNTLET_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture(autouse=True)
def _restore_default_mocks() -> Iterator[None]:
    """Undo anything a test left instrumented on the shared mock registry."""
    yield
    default_registry().restore_all()


@pytest.fixture
def registry() -> Registry:
    return Registry()


@pytest.fixture
def mocks() -> Iterator[MockRegistry]:
    registry = MockRegistry()
    yield registry
    registry.restore_all()


class EventRecorder:
    """Collects every event it is subscribed to."""

    def __init__(self) -> None:
        self.events: list[LifecycleEvent] = []

    def __call__(self, event: LifecycleEvent) -> None:
        self.events.append(event)

    @property
    def types(self) -> list[str]:
        return [e.type.value for e in self.events]

    def of(self, event_type: EventType) -> list[LifecycleEvent]:
        return [e for e in self.events if e.type == event_type]


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def emitter(recorder: EventRecorder) -> EventEmitter:
    emitter = EventEmitter()
    for event_type in EventType:
        emitter.on(event_type, recorder)
    return emitter
