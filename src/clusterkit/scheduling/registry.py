# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
TaskRegistry: scheduler-side view of per-node task records.

Sits on top of the TaskStore persistence protocol and knows how launches and
status updates change a NodeTaskRecord. Daemon tasks own the record; repair
tasks only touch its repair bookkeeping.
"""

import logging

from ..core.log import get_logger
from ..core.time import Clock, SystemClock
from ..protocol.messages import Mode, TaskInfo, TaskKind, TaskState, TaskStatus
from ..storage.tasks import NodeTaskRecord, TaskStore


class TaskRegistry:
    def __init__(
        self,
        store: TaskStore,
        *,
        clock: Clock | None = None,
        logger: logging.LoggerAdapter | None = None,
    ) -> None:
        self.store = store
        self.clock = clock or SystemClock()
        self.log = logger or get_logger("registry")

    # ---- reads ---------------------------------------------------------------

    async def get(self, node_id: str) -> NodeTaskRecord | None:
        return await self.store.get(node_id)

    async def records(self) -> list[NodeTaskRecord]:
        return await self.store.list()

    async def find_by_task(self, task_id: str) -> NodeTaskRecord | None:
        for rec in await self.store.list():
            if task_id in (rec.task_id, rec.repair_task_id):
                return rec
        return None

    async def occupied_agents(self, *, exclude_node: str | None = None) -> set[str]:
        """Agents currently hosting a live daemon task of another node."""
        out: set[str] = set()
        for rec in await self.store.list():
            if rec.node_id == exclude_node or not rec.agent_id or rec.task_id is None:
                continue
            if not rec.state.terminal:
                out.add(rec.agent_id)
        return out

    # ---- writes --------------------------------------------------------------

    async def record_launch(self, task: TaskInfo, *, block_id: str | None = None) -> NodeTaskRecord:
        """Persist a task that is about to be launched (called before the driver accept)."""
        now = self.clock.now_ms()
        prev = await self.store.get(task.node_id)
        if task.kind is TaskKind.daemon:
            base = prev or NodeTaskRecord(node_id=task.node_id)
            rec = base.evolve(
                task_id=task.task_id,
                agent_id=task.agent_id,
                hostname=task.hostname,
                state=TaskState.staging,
                mode=Mode.STARTING,
                block_id=block_id if block_id is not None else base.block_id,
                persistence_id=task.persistence_id or base.persistence_id,
                updated_ms=now,
            )
        elif task.kind is TaskKind.repair:
            if prev is None:
                raise KeyError(f"repair launched for unknown node {task.node_id}")
            rec = prev.evolve(repair_task_id=task.task_id, updated_ms=now)
        else:
            # other admin tasks are operator-driven and not tracked per node
            return prev or NodeTaskRecord(node_id=task.node_id)
        await self.store.put(rec)
        return rec

    async def revert_launch(self, task: TaskInfo, prior: NodeTaskRecord | None = None) -> None:
        """
        Undo `record_launch` for a task whose offers were never accepted.
        `prior` is the record as it was before the launch (None if the node was new).
        Nothing changes once the record moved on to another task.
        """
        current = await self.store.get(task.node_id)
        if current is None:
            return
        if task.kind is TaskKind.repair:
            if current.repair_task_id != task.task_id:
                return
            await self.store.put(current.evolve(repair_task_id=None, updated_ms=self.clock.now_ms()))
        elif task.kind is TaskKind.daemon:
            if current.task_id != task.task_id:
                return
            if prior is None:
                await self.store.delete(task.node_id)
            else:
                await self.store.put(prior)
        else:
            return
        self.log.warning(
            "launch reverted", event="registry.launch.reverted", node_id=task.node_id, task_id=task.task_id
        )

    async def apply_status(self, status: TaskStatus) -> NodeTaskRecord | None:
        """Fold a status update into the owning record. Unknown tasks are ignored (returns None)."""
        rec = await self._owner(status)
        if rec is None:
            self.log.debug(
                "status for unknown task", event="registry.status.unknown", task_id=status.task_id
            )
            return None
        now = self.clock.now_ms()
        if status.task_id == rec.repair_task_id:
            if not status.state.terminal:
                return rec
            upd = rec.evolve(
                repair_task_id=None,
                last_repair_ms=now if status.state is TaskState.finished else rec.last_repair_ms,
                updated_ms=now,
            )
            self.log.info(
                "repair finished",
                event="registry.repair.finished",
                node_id=rec.node_id,
                task_id=status.task_id,
                state=status.state.value,
            )
        else:
            upd = rec.evolve(
                state=status.state,
                mode=status.mode if status.mode is not None else rec.mode,
                updated_ms=now,
            )
        await self.store.put(upd)
        return upd

    async def _owner(self, status: TaskStatus) -> NodeTaskRecord | None:
        if status.node_id:
            rec = await self.store.get(status.node_id)
            if rec is not None and status.task_id in (rec.task_id, rec.repair_task_id):
                return rec
        return await self.find_by_task(status.task_id)
