# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Persistence interfaces (backend-agnostic).

Responsibilities:
- Record the framework identity before any offer is processed.
- Keep one task record per logical node: where it runs, its last known Mode,
  the Block it is bound to, its persistent volume and repair bookkeeping.

Backends (ZooKeeper, etcd, a SQL table...) live outside this package and must
raise `PersistenceError` on failure.
"""

from dataclasses import dataclass, replace
from typing import Any, Protocol, runtime_checkable

from ..protocol.messages import Mode, TaskState

__all__ = [
    "IdentityStore",
    "NodeTaskRecord",
    "TaskStore",
]


@dataclass(frozen=True)
class NodeTaskRecord:
    """
    Last known facts about one logical node.

    Attributes:
        node_id: Logical node slot (stable across relaunches).
        task_id: Current daemon task id (None until first launch).
        agent_id: Agent hosting the daemon task.
        hostname: Agent hostname.
        state: Last platform task state.
        mode: Last reported operational mode.
        block_id: Plan Block the node is bound to, if any.
        persistence_id: Persistent volume holding the node's data.
        repair_task_id: Repair task in flight for this node, if any.
        last_repair_ms: Completion time of the last successful repair.
        updated_ms: Last update timestamp (epoch ms).
    """

    node_id: str
    task_id: str | None = None
    agent_id: str | None = None
    hostname: str = ""
    state: TaskState = TaskState.staging
    mode: Mode = Mode.STARTING
    block_id: str | None = None
    persistence_id: str | None = None
    repair_task_id: str | None = None
    last_repair_ms: int | None = None
    updated_ms: int = 0

    def evolve(self, **changes: Any) -> NodeTaskRecord:
        return replace(self, **changes)

    @property
    def repair_in_flight(self) -> bool:
        return self.repair_task_id is not None


@runtime_checkable
class IdentityStore(Protocol):
    """Durable framework identity. Failures raise PersistenceError."""

    async def register(self, framework_id: str) -> None: ...
    async def get(self) -> str | None: ...


@runtime_checkable
class TaskStore(Protocol):
    """
    Async CRUD for NodeTaskRecord keyed by node_id.

    Notes:
        - `put` is an upsert and must be idempotent.
        - `list` returns records in a stable order (insertion or node_id).
    """

    async def get(self, node_id: str) -> NodeTaskRecord | None: ...
    async def put(self, record: NodeTaskRecord) -> None: ...
    async def delete(self, node_id: str) -> None: ...
    async def list(self) -> list[NodeTaskRecord]: ...
