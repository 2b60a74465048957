"""Periodic task scheduling.

Background work (such as the cache's refresh loop) is scheduled through a
``Scheduler`` rather than bare timers. ``AsyncioScheduler`` runs tasks on
the event loop; ``ManualScheduler`` keeps a logical clock that tests
advance explicitly.
"""

import asyncio
from typing import Awaitable, Callable, List, Optional, Protocol

import structlog


logger = structlog.get_logger(__name__)

PeriodicCallback = Callable[[], Awaitable[None]]


class PeriodicTaskHandle:
    """Cancellable handle for a scheduled periodic task."""

    def __init__(self, interval: float, callback: PeriodicCallback) -> None:
        self.interval = interval
        self.callback = callback
        self._cancelled = False
        self._task: Optional[asyncio.Task] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """Stop future runs; a run already in progress is left to finish."""
        self._cancelled = True
        if self._task is not None and not self._task.done():
            self._task.cancel()


class Scheduler(Protocol):
    """Something that can run a coroutine function every ``interval`` seconds."""

    def schedule_periodic(self, interval: float, callback: PeriodicCallback) -> PeriodicTaskHandle:
        ...


class AsyncioScheduler:
    """Runs periodic callbacks as tasks on the running event loop."""

    def schedule_periodic(self, interval: float, callback: PeriodicCallback) -> PeriodicTaskHandle:
        """Start running ``callback`` every ``interval`` seconds.

        Must be called from within a running event loop.
        """
        if interval <= 0:
            raise ValueError("Interval must be positive")

        handle = PeriodicTaskHandle(interval, callback)
        handle._task = asyncio.get_running_loop().create_task(self._run(handle))
        return handle

    async def _run(self, handle: PeriodicTaskHandle) -> None:
        log = logger.bind(interval=handle.interval)
        while not handle.cancelled:
            await asyncio.sleep(handle.interval)
            if handle.cancelled:
                break
            try:
                await handle.callback()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log.error("Periodic task failed", error=str(e))


class ManualScheduler:
    """Deterministic scheduler driven by ``advance``.

    It also serves as the clock for components that need one, so expiry and
    periodic runs move together.

    Attributes:
        now: Current logical time in seconds
    """

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self._handles: List[PeriodicTaskHandle] = []
        self._next_run = {}

    def __call__(self) -> float:
        return self.now

    def schedule_periodic(self, interval: float, callback: PeriodicCallback) -> PeriodicTaskHandle:
        if interval <= 0:
            raise ValueError("Interval must be positive")
        handle = PeriodicTaskHandle(interval, callback)
        self._handles.append(handle)
        self._next_run[id(handle)] = self.now + interval
        return handle

    async def advance(self, seconds: float) -> int:
        """Move the clock forward, running every callback that falls due.

        Returns:
            Number of callback runs performed
        """
        target = self.now + seconds
        runs = 0
        while True:
            due = [
                (self._next_run[id(h)], i, h)
                for i, h in enumerate(self._handles)
                if not h.cancelled and self._next_run[id(h)] <= target
            ]
            if not due:
                break
            run_at, _, handle = min(due, key=lambda d: (d[0], d[1]))
            self.now = run_at
            self._next_run[id(handle)] = run_at + handle.interval
            await handle.callback()
            runs += 1
        self.now = target
        return runs

    @property
    def active_tasks(self) -> int:
        return sum(1 for h in self._handles if not h.cancelled)
