"""Timer scheduling behind a small interface so services can run on a fake clock."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

Job = Callable[[], Awaitable[Any]]


@runtime_checkable
class Scheduler(Protocol):
    """Interface for one-shot and repeating timers."""

    def schedule_repeating(self, interval: float, callback: Job) -> Any:
        """Run ``callback`` every ``interval`` seconds. Returns a handle for ``cancel``."""
        ...

    def schedule_once(self, delay: float, callback: Job) -> Any:
        """Run ``callback`` once after ``delay`` seconds. Returns a handle for ``cancel``."""
        ...

    def cancel(self, handle: Any) -> None: ...


class AsyncioScheduler:
    """Timers as tasks on the running event loop.

    A failing job is logged; a repeating job keeps its schedule. Scheduling
    requires a running event loop.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()

    def schedule_repeating(self, interval: float, callback: Job) -> asyncio.Task:
        return self._spawn(lambda: self._repeat(interval, callback))

    def schedule_once(self, delay: float, callback: Job) -> asyncio.Task:
        return self._spawn(lambda: self._once(delay, callback))

    def cancel(self, handle: asyncio.Task) -> None:
        handle.cancel()
        self._tasks.discard(handle)

    def cancel_all(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()

    def _spawn(self, make_coro: Callable[[], Awaitable[None]]) -> asyncio.Task:
        # Raises RuntimeError outside an event loop, before any coroutine is created.
        loop = asyncio.get_running_loop()
        task = loop.create_task(make_coro())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _repeat(self, interval: float, callback: Job) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await callback()
            except Exception:
                logger.exception("Scheduled job %r failed", callback)

    async def _once(self, delay: float, callback: Job) -> None:
        await asyncio.sleep(delay)
        try:
            await callback()
        except Exception:
            logger.exception("Scheduled job %r failed", callback)
