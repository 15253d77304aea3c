# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
StatusChannel: ordered, fire-and-forget status delivery to the executor driver.

`publish()` never blocks the caller; a single sender task drains the queue, so
a later status is never transmitted before an earlier one.
"""

import asyncio
import logging

from ..core.log import get_logger
from ..protocol.messages import TaskStatus
from ..transport.driver import ExecutorDriver


class StatusChannel:
    def __init__(self, driver: ExecutorDriver, *, logger: logging.LoggerAdapter | None = None) -> None:
        self.driver = driver
        self.log = logger or get_logger("executor.channel")
        self._queue: asyncio.Queue[TaskStatus] = asyncio.Queue()
        self._sender: asyncio.Task | None = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def publish(self, status: TaskStatus) -> None:
        if self._closed:
            self.log.debug(
                "status dropped after close",
                event="status.dropped",
                task_id=status.task_id,
                state=status.state.value,
            )
            return
        self._queue.put_nowait(status)

    async def start(self) -> None:
        if self._sender is None:
            self._sender = asyncio.create_task(self._send_loop(), name="status-sender")

    async def flush(self) -> None:
        await self._queue.join()

    async def close(self) -> None:
        """Stop accepting statuses, deliver what is queued, then stop the sender."""
        if self._closed:
            return
        self._closed = True
        if self._sender is not None:
            await self._queue.join()
            self._sender.cancel()
            try:
                await self._sender
            except asyncio.CancelledError:
                pass
            self._sender = None

    async def _send_loop(self) -> None:
        while True:
            status = await self._queue.get()
            try:
                await self.driver.send_status_update(status)
                self.log.debug(
                    "status sent",
                    event="status.sent",
                    task_id=status.task_id,
                    state=status.state.value,
                    mode=status.mode.value if status.mode else None,
                )
            except Exception:
                self.log.exception(
                    "status send failed", event="status.send.failed", task_id=status.task_id
                )
            finally:
                self._queue.task_done()
