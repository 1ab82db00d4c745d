"""Periodic task scheduling with explicit cancellation.

``schedule`` returns a ``CancellationToken``.  Cancelling stops future
triggers; a run already in progress is allowed to finish.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Protocol

logger = logging.getLogger("fluxquant.scheduler")

TaskFn = Callable[[], Awaitable[None]]
Sleep = Callable[[float], Awaitable[None]]


class CancellationToken:
    """Handle for a scheduled task."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.task: Optional[asyncio.Task] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def wait_cancelled(self) -> None:
        await self._event.wait()

    async def finished(self) -> None:
        """Wait until the scheduling loop has exited."""
        if self.task is not None:
            await self.task


class Scheduler(Protocol):
    def schedule(self, interval_seconds: float, task: TaskFn) -> CancellationToken:
        ...


class AsyncioScheduler:
    """Runs *task* every *interval_seconds* on the running event loop.

    Args:
        sleep: Awaitable used between runs (inject a fake in tests).
        run_immediately: Trigger once at schedule time instead of after
            the first interval.
    """

    def __init__(self, sleep: Sleep = asyncio.sleep, run_immediately: bool = True) -> None:
        self._sleep = sleep
        self._run_immediately = run_immediately

    def schedule(self, interval_seconds: float, task: TaskFn) -> CancellationToken:
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive, got {interval_seconds}")
        token = CancellationToken()
        token.task = asyncio.get_running_loop().create_task(
            self._loop(interval_seconds, task, token)
        )
        return token

    async def _loop(self, interval: float, task: TaskFn, token: CancellationToken) -> None:
        if not self._run_immediately:
            await self._wait(interval, token)
        while not token.cancelled:
            try:
                await task()
            except Exception:
                logger.exception("Scheduled task failed; continuing")
            if token.cancelled:
                break
            await self._wait(interval, token)
        logger.info("Scheduler stopped")

    async def _wait(self, interval: float, token: CancellationToken) -> None:
        sleeper = asyncio.ensure_future(self._sleep(interval))
        waiter = asyncio.ensure_future(token.wait_cancelled())
        try:
            await asyncio.wait({sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for fut in (sleeper, waiter):
                if not fut.done():
                    fut.cancel()
