"""Helpers for test bodies: polling for a condition and timing a callable."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Callable

from gauntlet.core.errors import TimeoutFailure
from gauntlet.core.executor import call_maybe_async


async def wait_for_condition(
    condition: Callable[[], Any],
    timeout_ms: int = 5000,
    interval_ms: int = 100,
) -> None:
    """Poll *condition* until it returns a truthy value.

    *condition* may be sync or async.  Exceptions it raises propagate.

    Raises:
        TimeoutFailure: If the condition is still falsy after *timeout_ms*.
    """
    deadline = time.monotonic() + timeout_ms / 1000
    while True:
        if await call_maybe_async(condition):
            return
        if time.monotonic() >= deadline:
            raise TimeoutFailure(
                f"Condition not met within {timeout_ms}ms", timeout_ms=timeout_ms
            )
        await asyncio.sleep(interval_ms / 1000)


@dataclass
class Measurement:
    """Timings of repeated calls, in milliseconds."""

    times: list[float] = field(default_factory=list)

    @property
    def iterations(self) -> int:
        return len(self.times)

    @property
    def average(self) -> float:
        return sum(self.times) / len(self.times) if self.times else 0.0

    @property
    def min(self) -> float:
        return min(self.times, default=0.0)

    @property
    def max(self) -> float:
        return max(self.times, default=0.0)

    def to_metrics(self, prefix: str = "") -> dict[str, float]:
        """Flatten into a ``metrics`` mapping a test body can return."""
        return {
            f"{prefix}avg": self.average,
            f"{prefix}min": self.min,
            f"{prefix}max": self.max,
        }


async def measure(fn: Callable[[], Any], iterations: int = 100) -> Measurement:
    """Call *fn* *iterations* times and record how long each call took."""
    if iterations < 1:
        raise ValueError("iterations must be at least 1")
    measurement = Measurement()
    for _ in range(iterations):
        start = time.perf_counter()
        await call_maybe_async(fn)
        measurement.times.append((time.perf_counter() - start) * 1000)
    return measurement
