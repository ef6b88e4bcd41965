"""
Background tasks — fire-and-forget work that can still be awaited.

Prediction initiation, fee accrual, inter-agent resolution and the
stragglers of a fast-mode consultation run detached from the request that
started them. Each is registered here so failures are logged as
:class:`BackgroundTaskFailed` and shutdown (or a test) can wait for them.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, List, Optional, Set

from orthoiq.agent.errors import BackgroundTaskFailed

logger = logging.getLogger(__name__)


class BackgroundTasks:
    def __init__(self) -> None:
        self._tasks: Set[asyncio.Task] = set()
        self.failures: List[BackgroundTaskFailed] = []

    def spawn(self, coro: Awaitable, name: str) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        task.set_name(name)
        self.track(task)
        return task

    def track(self, task: asyncio.Task) -> None:
        """Adopt an already-running task, e.g. a fast-mode straggler."""
        if task.done():
            self._on_done(task)
            return
        self._tasks.add(task)
        task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.debug("Background task %s cancelled", task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            failure = BackgroundTaskFailed(task.get_name(), exc)
            self.failures.append(failure)
            logger.error(str(failure))

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def join(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for every tracked task, including ones spawned while waiting.

        Returns False if the timeout expired first. Tasks are never
        cancelled here.
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while self._tasks:
            remaining = None if deadline is None else deadline - loop.time()
            if remaining is not None and remaining <= 0:
                return False
            _, still_pending = await asyncio.wait(set(self._tasks), timeout=remaining)
            if still_pending and deadline is not None and loop.time() >= deadline:
                return False
        return True
