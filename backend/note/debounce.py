from __future__ import annotations

"""
Trailing-edge debounce primitives bound to the asyncio event loop.

Design intent:
- One cancelable timer per owner; scheduling again replaces exactly the active timer.
- Every schedule returns a token so stale timers can never cancel or fire over newer ones.
- Disposal is final: nothing scheduled before dispose() fires afterwards.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _delay_seconds(delay_ms: float) -> float:
    return max(0.0, float(delay_ms)) / 1000.0


@dataclass(frozen=True)
class TimerToken:
    generation: int
    delay_ms: float


class CancelableTimer:
    def __init__(self, *, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop
        self._generation = 0
        self._active: Optional[TimerToken] = None
        self._handle: Optional[asyncio.TimerHandle] = None
        self._disposed = False

    @property
    def pending(self) -> bool:
        return self._active is not None

    @property
    def disposed(self) -> bool:
        return self._disposed

    def schedule(self, delay_ms: float, fn: Callable[..., Any], *args: Any) -> TimerToken:
        if self._disposed:
            raise RuntimeError("Timer has been disposed.")
        loop = self._loop or asyncio.get_running_loop()
        self._cancel_active()
        self._generation += 1
        token = TimerToken(generation=self._generation, delay_ms=float(delay_ms))
        # call_later(0) still waits for the next loop iteration.
        self._handle = loop.call_later(_delay_seconds(delay_ms), self._fire, token, fn, args)
        self._active = token
        return token

    def cancel(self, token: Optional[TimerToken] = None) -> bool:
        if self._active is None:
            return False
        if token is not None and token != self._active:
            return False
        self._cancel_active()
        return True

    def dispose(self) -> None:
        self._cancel_active()
        self._disposed = True

    def _cancel_active(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
        self._handle = None
        self._active = None

    def _fire(self, token: TimerToken, fn: Callable[..., Any], args: tuple[Any, ...]) -> None:
        if self._disposed or token != self._active:
            return
        self._handle = None
        self._active = None
        fn(*args)


class DebouncedCallback:
    """
    Callable wrapper that runs `fn` once per quiescent period with the latest args.

    Coroutine functions are spawned as tasks when the timer fires; the tasks are
    tracked so callers can await them with `drain()`.
    """

    def __init__(
        self,
        fn: Callable[..., Any],
        delay_ms: float,
        *,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        self._fn = fn
        self._delay_ms = float(delay_ms)
        self._timer = CancelableTimer(loop=loop)
        self._loop = loop
        self._pending_args: Optional[tuple[tuple[Any, ...], dict[str, Any]]] = None
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def delay_ms(self) -> float:
        return self._delay_ms

    @delay_ms.setter
    def delay_ms(self, value: float) -> None:
        self._delay_ms = float(value)

    @property
    def pending(self) -> bool:
        return self._timer.pending

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def __call__(self, *args: Any, **kwargs: Any) -> TimerToken:
        self._pending_args = (args, kwargs)
        return self._timer.schedule(self._delay_ms, self._run_pending)

    def cancel(self) -> bool:
        self._pending_args = None
        return self._timer.cancel()

    async def flush(self) -> Any:
        """Run the pending invocation now, if any, and wait for it."""
        if not self._timer.pending or self._pending_args is None:
            return None
        self._timer.cancel()
        args, kwargs = self._pending_args
        self._pending_args = None
        result = self._fn(*args, **kwargs)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def dispose(self) -> None:
        self._pending_args = None
        self._timer.dispose()

    def _run_pending(self) -> None:
        if self._pending_args is None:
            return
        args, kwargs = self._pending_args
        self._pending_args = None
        result = self._fn(*args, **kwargs)
        if inspect.isawaitable(result):
            self._track(result)

    def _track(self, awaitable: Awaitable[Any]) -> None:
        loop = self._loop or asyncio.get_running_loop()
        task = loop.create_task(awaitable)  # type: ignore[arg-type]
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("debounced callback failed: %s", exc)


def debounce_callback(
    fn: Callable[..., Any],
    delay_ms: float,
    *,
    loop: Optional[asyncio.AbstractEventLoop] = None,
) -> DebouncedCallback:
    return DebouncedCallback(fn, delay_ms, loop=loop)


class DebouncedValue(Generic[T]):
    """Holds the latest input and exposes it as `value` once input goes quiet."""

    def __init__(
        self,
        initial: T,
        delay_ms: float,
        *,
        on_settle: Optional[Callable[[T], Any]] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        self._value = initial
        self._latest = initial
        self._delay_ms = float(delay_ms)
        self._on_settle = on_settle
        self._timer = CancelableTimer(loop=loop)

    @property
    def value(self) -> T:
        return self._value

    @property
    def latest(self) -> T:
        return self._latest

    @property
    def pending(self) -> bool:
        return self._timer.pending

    @property
    def delay_ms(self) -> float:
        return self._delay_ms

    @delay_ms.setter
    def delay_ms(self, value: float) -> None:
        self._delay_ms = float(value)
        if self._timer.pending:
            self._timer.schedule(self._delay_ms, self._settle)

    def set(self, value: T) -> TimerToken:
        self._latest = value
        return self._timer.schedule(self._delay_ms, self._settle)

    def dispose(self) -> None:
        self._timer.dispose()

    def _settle(self) -> None:
        self._value = self._latest
        if self._on_settle is not None:
            self._on_settle(self._value)


def debounce_value(
    initial: T,
    delay_ms: float,
    *,
    on_settle: Optional[Callable[[T], Any]] = None,
    loop: Optional[asyncio.AbstractEventLoop] = None,
) -> DebouncedValue[T]:
    return DebouncedValue(initial, delay_ms, on_settle=on_settle, loop=loop)
