"""Cancellable timer primitive and background task tracking for edit sessions.

Every delay in the coordinator (save debounce, typing quiet period, auto-tag
polling and countdown) goes through :class:`CancellableTimer`, which wraps
``loop.call_later``. Tests inject a fake scheduler exposing the same two
methods so timer behaviour can be driven without real sleeps.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Protocol

LOGGER = logging.getLogger(__name__)


class TimerHandle(Protocol):
    def cancel(self) -> None:
        ...


class TimerScheduler(Protocol):
    """Subset of :class:`asyncio.AbstractEventLoop` used by the timers."""

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle:
        ...

    def time(self) -> float:
        ...


class CancellableTimer:
    """Single-shot timer that can be re-armed or disarmed at any moment.

    Arming an already armed timer replaces the pending callback, so the timer
    always represents at most one future invocation.
    """

    __slots__ = ("_scheduler", "_handle", "_deadline", "_name")

    def __init__(self, scheduler: TimerScheduler | None = None, *, name: str = "timer") -> None:
        self._scheduler = scheduler
        self._handle: TimerHandle | None = None
        self._deadline: float | None = None
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    @property
    def armed(self) -> bool:
        return self._handle is not None

    @property
    def deadline(self) -> float | None:
        """Scheduler time at which the pending callback fires."""

        return self._deadline

    def now(self) -> float:
        return self._resolve_scheduler().time()

    def arm(self, delay: float, callback: Callable[..., Any], *args: Any) -> float:
        """Schedule ``callback(*args)`` after ``delay`` seconds and return the deadline."""

        self.disarm()
        scheduler = self._resolve_scheduler()
        delay = max(0.0, float(delay))
        self._deadline = scheduler.time() + delay
        self._handle = scheduler.call_later(delay, self._fire, callback, args)
        return self._deadline

    def disarm(self) -> bool:
        """Cancel the pending callback. Returns ``True`` when one was pending."""

        handle = self._handle
        self._handle = None
        self._deadline = None
        if handle is None:
            return False
        handle.cancel()
        return True

    def _fire(self, callback: Callable[..., Any], args: tuple[Any, ...]) -> None:
        self._handle = None
        self._deadline = None
        try:
            callback(*args)
        except Exception:
            LOGGER.exception("Timer %s callback failed", self._name)

    def _resolve_scheduler(self) -> TimerScheduler:
        if self._scheduler is None:
            self._scheduler = asyncio.get_running_loop()
        return self._scheduler


class BackgroundTasks:
    """Tracks the fire-and-forget tasks spawned by one session.

    Failures are logged when a task finishes; callers that need the outcome
    await the coroutine directly instead.
    """

    def __init__(self, *, name: str = "session") -> None:
        self._name = name
        self._tasks: set[asyncio.Task[Any]] = set()

    def spawn(self, coro: Awaitable[Any], *, name: str | None = None) -> asyncio.Task[Any]:
        loop = asyncio.get_running_loop()
        task = loop.create_task(coro, name=f"{self._name}:{name}" if name else None)  # type: ignore[arg-type]
        self._tasks.add(task)
        task.add_done_callback(self._on_task_finished)
        return task

    def cancel_all(self) -> int:
        pending = [task for task in self._tasks if not task.done()]
        for task in pending:
            task.cancel()
        return len(pending)

    async def drain(self) -> None:
        """Wait until every tracked task, including ones spawned meanwhile, is done."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def __len__(self) -> int:
        return len(self._tasks)

    def _on_task_finished(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.error("Background task %s failed", task.get_name(), exc_info=exc)


__all__ = [
    "BackgroundTasks",
    "CancellableTimer",
    "TimerHandle",
    "TimerScheduler",
]
