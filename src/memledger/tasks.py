"""Concurrency primitives for the orchestrator.

``AsyncInitializer`` memoizes one in-flight initialization so concurrent
callers await the same attempt instead of racing.  ``BackgroundTaskRunner``
launches detached work (on-chain indexing) with bounded concurrency and
keeps a reference to every task until it finishes.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Awaitable
from collections.abc import Callable
from typing import Generic
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AsyncInitializer(Generic[T]):
    """Lazy, memoized initializer shared by every caller.

    The first ``get()`` starts *factory*; later callers await the same
    task.  A failed attempt stays failed until ``reset()`` is called.
    """

    def __init__(self, factory: Callable[[], Awaitable[T]]) -> None:
        self._factory = factory
        self._task: asyncio.Task[T] | None = None
        self._guard = threading.Lock()

    @property
    def started(self) -> bool:
        return self._task is not None

    @property
    def done(self) -> bool:
        return self._task is not None and self._task.done()

    def peek(self) -> T | None:
        """The settled value, or None while pending, failed or never started."""
        task = self._task
        if task is None or not task.done() or task.cancelled() or task.exception():
            return None
        return task.result()

    async def get(self) -> T:
        with self._guard:
            if self._task is None:
                self._task = asyncio.ensure_future(self._factory())
            task = self._task
        # Shield so one cancelled waiter does not cancel the shared attempt
        return await asyncio.shield(task)

    def reset(self) -> None:
        with self._guard:
            self._task = None


class BackgroundTaskRunner:
    """Fire-and-forget task launcher with bounded concurrency.

    Exceptions escaping a task are logged here; callers that need the
    outcome record it themselves inside the coroutine.
    """

    def __init__(self, max_concurrency: int = 8) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Awaitable[None], *, name: str | None = None) -> asyncio.Task[None]:
        task = asyncio.ensure_future(self._run(coro))
        if name:
            task.set_name(name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, coro: Awaitable[None]) -> None:
        async with self._semaphore:
            try:
                await coro
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Background task failed")

    async def drain(self) -> None:
        """Wait until every launched task (including ones spawned meanwhile) ends."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel_all(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)
