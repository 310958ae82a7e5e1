"""Clock and delayed-callback primitives shared by the store and retraction."""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional, Protocol, Set

log = logging.getLogger("music.timers")

Callback = Callable[[], Awaitable[None]]


class Clock(Protocol):
    def now(self) -> float:
        ...


class MonotonicClock:
    def now(self) -> float:
        return time.monotonic()


class TimerHandle(Protocol):
    def cancel(self) -> None:
        ...


class Scheduler(Protocol):
    """Runs ``callback`` once after ``delay`` seconds."""

    def call_later(self, delay: float, callback: Callback, *, name: str = "") -> TimerHandle:
        ...


class AsyncioScheduler:
    """Scheduler backed by ``asyncio`` tasks living on the running loop.

    Tasks are tracked so they are not garbage collected mid-flight and so
    :meth:`shutdown` can cancel whatever is still pending.
    """

    def __init__(self) -> None:
        self._tasks: Set[asyncio.Task[None]] = set()

    def call_later(self, delay: float, callback: Callback, *, name: str = "") -> asyncio.Task[None]:
        async def _runner() -> None:
            if delay > 0:
                await asyncio.sleep(delay)
            try:
                await callback()
            except asyncio.CancelledError:
                raise
            except Exception:
                log.exception("music.timer.failed", extra={"meta": {"timer": name}})

        task = asyncio.get_running_loop().create_task(_runner(), name=name or None)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def shutdown(self, timeout: Optional[float] = 1.0) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.wait(tasks, timeout=timeout)


__all__ = [
    "AsyncioScheduler",
    "Callback",
    "Clock",
    "MonotonicClock",
    "Scheduler",
    "TimerHandle",
]
