"""Deferred work: coalescing jobs and cancellable one-shot timers."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Hashable

logger = logging.getLogger("netenforce")

Job = Callable[[], Awaitable[Any]]


async def _run_job(name: str, func: Job) -> None:
    try:
        await func()
    except Exception:
        logger.exception("Deferred job '%s' failed", name)


class CoalescingQueue:
    """Run a job once per window, no matter how often it was requested.

    Requests for a key that is already waiting collapse into the pending run.
    A request made while the job is running schedules one more run.
    """

    def __init__(self, delay: float) -> None:
        self.delay = delay
        self._pending: dict[Hashable, asyncio.Task[None]] = {}
        self._running: set[asyncio.Task[None]] = set()

    def schedule(self, key: Hashable, func: Job) -> None:
        """Request a run of func for key."""
        if key in self._pending:
            logger.debug("Job '%s' already scheduled", key)
            return
        task = asyncio.get_running_loop().create_task(self._run(key, func))
        self._pending[key] = task
        self._running.add(task)
        task.add_done_callback(self._running.discard)

    def is_pending(self, key: Hashable) -> bool:
        return key in self._pending

    async def _run(self, key: Hashable, func: Job) -> None:
        try:
            await asyncio.sleep(self.delay)
        finally:
            self._pending.pop(key, None)
        await _run_job(str(key), func)

    async def drain(self) -> None:
        """Wait for every scheduled run to finish."""
        while self._running:
            await asyncio.gather(*list(self._running), return_exceptions=True)

    def cancel_all(self) -> None:
        for task in list(self._running):
            task.cancel()
        self._pending.clear()


class TimerRegistry:
    """One-shot timers keyed by an identifier.

    Scheduling a timer for a key cancels the one already pending for it.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self.clock = clock
        self._timers: dict[Hashable, asyncio.TimerHandle] = {}
        self._fired: set[asyncio.Task[None]] = set()

    def schedule_at(self, key: Hashable, deadline: float, func: Job) -> None:
        """Run func at deadline, a UNIX timestamp in seconds."""
        self.cancel(key)
        delay = max(deadline - self.clock(), 0)
        loop = asyncio.get_running_loop()
        self._timers[key] = loop.call_later(delay, self._fire, key, func)
        logger.debug("Timer '%s' fires in %.1f seconds", key, delay)

    def _fire(self, key: Hashable, func: Job) -> None:
        self._timers.pop(key, None)
        task = asyncio.ensure_future(_run_job(str(key), func))
        self._fired.add(task)
        task.add_done_callback(self._fired.discard)

    def cancel(self, key: Hashable) -> bool:
        """Cancel the timer of key. Return True if one was pending."""
        handle = self._timers.pop(key, None)
        if handle is None:
            return False
        handle.cancel()
        logger.debug("Timer '%s' cancelled", key)
        return True

    def is_pending(self, key: Hashable) -> bool:
        return key in self._timers

    def cancel_all(self) -> None:
        for key in list(self._timers):
            self.cancel(key)
