# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
StatusRouter: single consumer of task status updates.

Platform callbacks only enqueue; one background task applies updates in
arrival order, so two updates for the same task can never be reordered.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from ..core.log import get_logger
from ..protocol.messages import TaskStatus
from ..transport.driver import SchedulerDriver

StatusHandler = Callable[[SchedulerDriver, TaskStatus], Awaitable[None]]


class StatusRouter:
    def __init__(self, handler: StatusHandler, *, logger: logging.LoggerAdapter | None = None) -> None:
        self._handler = handler
        self._queue: asyncio.Queue[tuple[SchedulerDriver, TaskStatus]] = asyncio.Queue()
        self._task: asyncio.Task | None = None
        self.log = logger or get_logger("scheduling.router")

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def submit(self, driver: SchedulerDriver, status: TaskStatus) -> None:
        self._queue.put_nowait((driver, status))

    async def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="status-router")

    async def stop(self) -> None:
        t, self._task = self._task, None
        if t is None:
            return
        t.cancel()
        try:
            await t
        except asyncio.CancelledError:
            pass

    async def join(self) -> None:
        """Wait until every submitted update has been applied."""
        await self._queue.join()

    async def _loop(self) -> None:
        while True:
            driver, status = await self._queue.get()
            try:
                await self._handler(driver, status)
            except Exception:
                self.log.exception(
                    "status handling failed",
                    event="status.apply.failed",
                    task_id=status.task_id,
                    state=status.state.value,
                )
            finally:
                self._queue.task_done()
