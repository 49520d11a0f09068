"""Lifecycle event system.

Typed events emitted by the execution engine and the pipeline
coordinator for console output, reporting and custom integrations.
"""

from __future__ import annotations

import enum
import inspect
import logging
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Union

logger = logging.getLogger(__name__)


class EventType(str, enum.Enum):
    """Typed event categories."""

    PIPELINE_START = "pipeline:start"
    PIPELINE_COMPLETE = "pipeline:complete"
    PIPELINE_CANCELLED = "pipeline:cancelled"
    STAGE_START = "stage:start"
    STAGE_COMPLETE = "stage:complete"
    STAGE_FAIL = "stage:fail"
    STAGE_SKIPPED = "stage:skipped"
    TEST_START = "test:start"
    TEST_RETRY = "test:retry"
    TEST_COMPLETE = "test:complete"


@dataclass
class LifecycleEvent:
    """A single lifecycle event.

    Attributes:
        type: The event category.
        stage: Stage name (empty outside stage-scoped events).
        test_name: Full test name for test-level events.
        timestamp: UNIX epoch when the event occurred.
        data: Event-specific payload.
    """

    type: EventType
    stage: str = ""
    test_name: str = ""
    timestamp: float = field(default_factory=time.time)
    data: dict[str, Any] = field(default_factory=dict)


# Callbacks may be plain functions or coroutine functions.
EventCallback = Callable[[LifecycleEvent], Union[Awaitable[None], None]]


class EventEmitter:
    """Observer-pattern emitter for lifecycle events.

    Register callbacks with :meth:`on` and fire events with :meth:`emit`.
    """

    def __init__(self) -> None:
        self._listeners: dict[EventType, list[EventCallback]] = defaultdict(list)

    @property
    def listeners(self) -> dict[EventType, list[EventCallback]]:
        """Return the mapping of event types to registered callbacks."""
        return dict(self._listeners)

    def on(self, event_type: EventType, callback: EventCallback) -> None:
        """Register a callback for a specific event type."""
        self._listeners[event_type].append(callback)

    def off(self, event_type: EventType, callback: EventCallback) -> None:
        """Remove a previously registered callback; unknown ones are ignored."""
        listeners = self._listeners.get(event_type, [])
        if callback in listeners:
            listeners.remove(callback)

    async def emit(self, event: LifecycleEvent) -> None:
        """Fire an event, invoking all registered callbacks in order.

        Exceptions in callbacks are logged but do not prevent
        other callbacks from running.
        """
        for callback in list(self._listeners.get(event.type, [])):
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                logger.error(
                    "Event callback error for %s: %s",
                    event.type.value,
                    exc,
                )
