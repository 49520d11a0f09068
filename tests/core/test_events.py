"""Tests for the lifecycle event emitter."""

from gauntlet.core.events import EventEmitter, EventType, LifecycleEvent


class TestEventEmitter:
    async def test_callbacks_receive_events_in_registration_order(self) -> None:
        emitter = EventEmitter()
        received: list[str] = []
        emitter.on(EventType.STAGE_START, lambda e: received.append(f"first {e.stage}"))
        emitter.on(EventType.STAGE_START, lambda e: received.append(f"second {e.stage}"))

        await emitter.emit(LifecycleEvent(type=EventType.STAGE_START, stage="unit"))
        assert received == ["first unit", "second unit"]

    async def test_only_matching_type_is_notified(self) -> None:
        emitter = EventEmitter()
        received: list[LifecycleEvent] = []
        emitter.on(EventType.TEST_COMPLETE, received.append)

        await emitter.emit(LifecycleEvent(type=EventType.TEST_START))
        assert received == []

    async def test_async_callbacks_are_awaited(self) -> None:
        emitter = EventEmitter()
        received: list[str] = []

        async def callback(event: LifecycleEvent) -> None:
            received.append(event.test_name)

        emitter.on(EventType.TEST_START, callback)
        await emitter.emit(LifecycleEvent(type=EventType.TEST_START, test_name="t"))
        assert received == ["t"]

    async def test_failing_callback_does_not_stop_others(self) -> None:
        emitter = EventEmitter()
        received: list[str] = []

        def broken(event: LifecycleEvent) -> None:
            raise RuntimeError("listener bug")

        emitter.on(EventType.PIPELINE_START, broken)
        emitter.on(EventType.PIPELINE_START, lambda e: received.append("ok"))
        await emitter.emit(LifecycleEvent(type=EventType.PIPELINE_START))
        assert received == ["ok"]

    async def test_off_removes_a_callback(self) -> None:
        emitter = EventEmitter()
        received: list[LifecycleEvent] = []
        emitter.on(EventType.STAGE_FAIL, received.append)
        emitter.off(EventType.STAGE_FAIL, received.append)
        emitter.off(EventType.STAGE_SKIPPED, received.append)

        await emitter.emit(LifecycleEvent(type=EventType.STAGE_FAIL))
        assert received == []
        assert emitter.listeners[EventType.STAGE_FAIL] == []

    def test_event_types_use_namespaced_values(self) -> None:
        assert EventType.PIPELINE_COMPLETE.value == "pipeline:complete"
        assert EventType("test:retry") is EventType.TEST_RETRY
