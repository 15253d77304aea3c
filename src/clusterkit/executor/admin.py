# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
AdminTaskRunner: runs operator/scheduler admin tasks next to the daemon.

Each task runs in its own asyncio task so a long repair never blocks the
executor's callbacks. Reported states: running, then finished, failed or
killed (cancelled).

Task data keys:
    keyspaces        list of keyspaces (default: all non-system keyspaces)
    families         column families (default: all)
    options          repair options (repair only)
    snapshot_name    snapshot tag (snapshot only)
"""

import asyncio
import logging
from typing import Any

from ..api.errors import CommandError, InvalidArgumentError
from ..core.log import get_logger
from ..core.time import Clock, SystemClock
from ..protocol.messages import TaskInfo, TaskKind, TaskState, TaskStatus
from .channel import StatusChannel
from .daemon import NodeDaemon


class AdminTaskRunner:
    def __init__(
        self,
        *,
        channel: StatusChannel,
        clock: Clock | None = None,
        logger: logging.LoggerAdapter | None = None,
    ) -> None:
        self.channel = channel
        self.clock = clock or SystemClock()
        self.log = logger or get_logger("executor.admin")
        self._running: dict[str, asyncio.Task] = {}

    @property
    def active(self) -> list[str]:
        return list(self._running)

    def submit(self, task: TaskInfo, daemon: NodeDaemon) -> asyncio.Task:
        if task.task_id in self._running:
            raise RuntimeError(f"admin task {task.task_id} already running")
        t = asyncio.create_task(self._run(task, daemon), name=f"admin:{task.kind.value}:{task.task_id}")
        self._running[task.task_id] = t

        def _done(_: asyncio.Task) -> None:
            self._running.pop(task.task_id, None)

        t.add_done_callback(_done)
        return t

    async def cancel(self, task_id: str) -> bool:
        t = self._running.get(task_id)
        if t is None:
            return False
        t.cancel()
        try:
            await t
        except asyncio.CancelledError:
            pass
        return True

    async def stop(self) -> None:
        for task_id in list(self._running):
            await self.cancel(task_id)

    # ---- execution -----------------------------------------------------------

    def _publish(self, task: TaskInfo, state: TaskState, message: str, reason: str | None = None) -> None:
        self.channel.publish(
            TaskStatus(
                task_id=task.task_id,
                state=state,
                node_id=task.node_id,
                message=message,
                ts_ms=self.clock.now_ms(),
                reason=reason,
            )
        )

    async def _run(self, task: TaskInfo, daemon: NodeDaemon) -> None:
        self._publish(task, TaskState.running, f"{task.kind.value} started")
        try:
            message = await self._execute(task, daemon)
        except asyncio.CancelledError:
            self._publish(task, TaskState.killed, f"{task.kind.value} cancelled")
            raise
        except CommandError as e:
            self.log.warning(
                "admin task failed",
                event="admin.task.failed",
                task_id=task.task_id,
                kind=task.kind.value,
                keyspace=e.keyspace,
                error=type(e).__name__,
            )
            self._publish(task, TaskState.failed, str(e), reason=type(e).__name__)
            return
        self._publish(task, TaskState.finished, message)
        self.log.info("admin task finished", event="admin.task.finished", task_id=task.task_id, kind=task.kind.value)

    async def _execute(self, task: TaskInfo, daemon: NodeDaemon) -> str:
        data: dict[str, Any] = task.data
        keyspaces: list[str] = list(data.get("keyspaces") or await daemon.non_system_keyspaces())
        families: list[str] = list(data.get("families") or [])

        if task.kind is TaskKind.repair:
            options = {str(k): str(v) for k, v in (data.get("options") or {}).items()}
            if families:
                options.setdefault("columnFamilies", ",".join(families))
            outputs = [await daemon.repair(ks, options) for ks in keyspaces]
            return "\n".join(o for o in outputs if o) or f"repaired {len(keyspaces)} keyspace(s)"
        if task.kind is TaskKind.cleanup:
            for ks in keyspaces:
                await daemon.cleanup(ks, families)
            return f"cleaned {len(keyspaces)} keyspace(s)"
        if task.kind is TaskKind.compaction:
            for ks in keyspaces:
                await daemon.compact(ks, families)
            return f"compacted {len(keyspaces)} keyspace(s)"
        if task.kind is TaskKind.upgrade_sstables:
            for ks in keyspaces:
                await daemon.upgrade_sstables(ks, families)
            return f"upgraded sstables in {len(keyspaces)} keyspace(s)"
        if task.kind is TaskKind.snapshot:
            name = data.get("snapshot_name")
            if not name:
                raise InvalidArgumentError("snapshot task without snapshot_name", command="snapshot")
            for ks in keyspaces:
                await daemon.take_snapshot(str(name), ks)
            return f"snapshot {name} taken for {len(keyspaces)} keyspace(s)"
        raise InvalidArgumentError(f"task kind {task.kind.value} is not an admin task", command=task.kind.value)
