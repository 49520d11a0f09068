"""Reversible mock, stub and spy instrumentation of object attributes.

Every replacement goes through a :class:`MockRegistry`, which stores
exactly one original value per ``(target, key)`` pair.  Mocking a pair
that is already instrumented reuses the stored original, so the first
original is never lost.  Restoring any handle of a pair writes that
original back and deactivates every handle on the pair; restoring an
inactive handle is a no-op.

Callers own cleanup: acquire instrumentation at the start of a test and
restore it in an ``after_each`` hook (or use the handle as a context
manager).  The registry is shared, so tests that instrument the same
attribute must not run concurrently in a parallel stage.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Callable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MockCall:
    """One recorded invocation.

    Attributes:
        args: Positional arguments (excluding the bound instance).
        kwargs: Keyword arguments.
        this: The instance the call was bound to, or the instrumented
            target for unbound calls.
    """

    args: tuple[Any, ...]
    kwargs: dict[str, Any] = field(default_factory=dict)
    this: Any = None


@dataclass
class _Original:
    target: Any
    key: str
    value: Any
    own: bool
    handles: list[_Handle] = field(default_factory=list)


def _capture(target: Any, key: str) -> tuple[Any, bool]:
    """Return ``(value, own)`` for ``target.key``.

    ``own`` is ``True`` when the attribute lives in the target's own
    namespace; inherited attributes are restored by deleting the
    instance-level override instead of writing a copy back.
    """
    namespace = getattr(target, "__dict__", None)
    if namespace is not None and key in namespace:
        return namespace[key], True
    if not hasattr(target, key):
        raise AttributeError(f"{target!r} has no attribute {key!r}")
    if namespace is None:
        return getattr(target, key), True
    return getattr(target, key), False


class _Recorder:
    """Callable that logs its calls and delegates to an implementation.

    Installed on a class it behaves like a method: attribute access
    through an instance binds that instance as ``this``.
    """

    def __init__(
        self,
        target: Any,
        impl: Callable[..., Any] | None,
        pass_instance: bool = False,
    ) -> None:
        self._target = target
        self.impl = impl
        self.pass_instance = pass_instance
        self.calls: list[MockCall] = []

    def __call__(self, *args: Any, **kwargs: Any) -> Any:
        return self._invoke(self._target, False, args, kwargs)

    def __get__(self, instance: Any, owner: type | None = None) -> Any:
        if instance is None:
            return self

        def bound(*args: Any, **kwargs: Any) -> Any:
            return self._invoke(instance, True, args, kwargs)

        return bound

    def _invoke(
        self, this: Any, bound: bool, args: tuple[Any, ...], kwargs: dict[str, Any]
    ) -> Any:
        self.calls.append(MockCall(args=args, kwargs=dict(kwargs), this=this))
        if self.impl is None:
            return None
        if bound and self.pass_instance:
            return self.impl(this, *args, **kwargs)
        return self.impl(*args, **kwargs)


class _Handle:
    """Shared behaviour of mock, stub and spy handles."""

    def __init__(self, registry: MockRegistry, target: Any, key: str) -> None:
        self._registry = registry
        self.target = target
        self.key = key
        self.active = True

    def restore(self) -> None:
        """Put the original value back; a no-op when already restored."""
        self._registry.restore(self)

    def __enter__(self) -> _Handle:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.restore()


class _RecordingHandle(_Handle):
    _recorder: _Recorder

    @property
    def calls(self) -> list[MockCall]:
        return list(self._recorder.calls)

    @property
    def call_count(self) -> int:
        return len(self._recorder.calls)

    @property
    def was_called(self) -> bool:
        return bool(self._recorder.calls)

    def was_called_with(self, *args: Any, **kwargs: Any) -> bool:
        """Whether any recorded call had exactly these arguments."""
        return any(c.args == args and c.kwargs == kwargs for c in self._recorder.calls)

    def reset_calls(self) -> None:
        self._recorder.calls.clear()


class MockHandle(_RecordingHandle):
    """Replaces behaviour and records calls."""

    def __init__(
        self, registry: MockRegistry, target: Any, key: str, recorder: _Recorder
    ) -> None:
        super().__init__(registry, target, key)
        self._recorder = recorder

    @property
    def replacement(self) -> Callable[..., Any]:
        return self._recorder

    def mock_implementation(self, impl: Callable[..., Any]) -> MockHandle:
        self._recorder.impl = impl
        return self

    def mock_return_value(self, value: Any) -> MockHandle:
        self._recorder.impl = lambda *args, **kwargs: value
        return self

    def mock_resolved_value(self, value: Any) -> MockHandle:
        async def _resolved(*args: Any, **kwargs: Any) -> Any:
            return value

        self._recorder.impl = _resolved
        return self

    def mock_rejected_value(self, error: BaseException) -> MockHandle:
        async def _rejected(*args: Any, **kwargs: Any) -> Any:
            raise error

        self._recorder.impl = _rejected
        return self


class StubHandle(_Handle):
    """Plain reversible overwrite with no call recording."""

    def __init__(self, registry: MockRegistry, target: Any, key: str, value: Any) -> None:
        super().__init__(registry, target, key)
        self.value = value


class SpyHandle(_RecordingHandle):
    """Observes calls while keeping the original behaviour."""

    def __init__(
        self, registry: MockRegistry, target: Any, key: str, recorder: _Recorder
    ) -> None:
        super().__init__(registry, target, key)
        self._recorder = recorder


class MockRegistry:
    """Shared ``(target, key) -> original`` mapping behind all handles."""

    def __init__(self) -> None:
        self._originals: dict[tuple[int, str], _Original] = {}

    def __len__(self) -> int:
        return len(self._originals)

    def is_instrumented(self, target: Any, key: str) -> bool:
        return (id(target), key) in self._originals

    def original(self, target: Any, key: str) -> Any:
        """Return the stored original for a pair (raises ``KeyError``)."""
        return self._originals[(id(target), key)].value

    def _entry(self, target: Any, key: str) -> _Original:
        slot = (id(target), key)
        entry = self._originals.get(slot)
        if entry is None:
            value, own = _capture(target, key)
            entry = _Original(target=target, key=key, value=value, own=own)
            self._originals[slot] = entry
        return entry

    def mock(
        self, target: Any, key: str, impl: Callable[..., Any] | None = None
    ) -> MockHandle:
        """Replace ``target.key`` with a recording callable."""
        entry = self._entry(target, key)
        recorder = _Recorder(target, impl, pass_instance=isinstance(target, type))
        setattr(target, key, recorder)
        handle = MockHandle(self, target, key, recorder)
        entry.handles.append(handle)
        logger.debug("Mocked %s.%s", _describe(target), key)
        return handle

    def stub(self, target: Any, key: str, value: Any) -> StubHandle:
        """Overwrite ``target.key`` with *value*."""
        entry = self._entry(target, key)
        setattr(target, key, value)
        handle = StubHandle(self, target, key, value)
        entry.handles.append(handle)
        logger.debug("Stubbed %s.%s", _describe(target), key)
        return handle

    def spy(self, target: Any, key: str) -> SpyHandle:
        """Wrap the current implementation of ``target.key``, recording calls."""
        raw = inspect.getattr_static(target, key)
        # Plain functions on a class get the instance explicitly, like a method.
        pass_instance = isinstance(target, type) and inspect.isfunction(raw)
        impl = raw if pass_instance else getattr(target, key)
        if not callable(impl):
            raise TypeError(f"Cannot spy on non-callable {_describe(target)}.{key}")
        entry = self._entry(target, key)
        recorder = _Recorder(target, impl, pass_instance=pass_instance)
        setattr(target, key, recorder)
        handle = SpyHandle(self, target, key, recorder)
        entry.handles.append(handle)
        logger.debug("Spying on %s.%s", _describe(target), key)
        return handle

    def restore(self, handle: _Handle) -> None:
        """Write the pair's first original back and deactivate its handles."""
        if not handle.active:
            return
        entry = self._originals.pop((id(handle.target), handle.key), None)
        handle.active = False
        if entry is None:
            return
        if entry.own:
            setattr(entry.target, entry.key, entry.value)
        else:
            try:
                delattr(entry.target, entry.key)
            except AttributeError:
                pass
        for other in entry.handles:
            other.active = False
        logger.debug("Restored %s.%s", _describe(entry.target), entry.key)

    def restore_all(self) -> int:
        """Restore every instrumented pair; returns how many were restored."""
        entries = list(self._originals.values())
        for entry in entries:
            if entry.handles:
                self.restore(entry.handles[0])
        return len(entries)


def _describe(target: Any) -> str:
    return getattr(target, "__name__", type(target).__name__)


_default_registry = MockRegistry()


def default_registry() -> MockRegistry:
    """Return the process-wide registry used by the module-level helpers."""
    return _default_registry


def mock(target: Any, key: str, impl: Callable[..., Any] | None = None) -> MockHandle:
    return _default_registry.mock(target, key, impl)


def stub(target: Any, key: str, value: Any) -> StubHandle:
    return _default_registry.stub(target, key, value)


def spy(target: Any, key: str) -> SpyHandle:
    return _default_registry.spy(target, key)


def restore(handle: _Handle) -> None:
    handle.restore()


def restore_all() -> int:
    return _default_registry.restore_all()
