# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Plan structure: Plan → Phase → Block.

The structure is fixed at construction; only per-Block status mutates.

Block status transitions:
    Pending ──start(task_id)──▶ InProgress ──target mode reported──▶ Complete
       ▲                            │
       └──── terminal task state ───┘

Complete is final: no status update moves a Block out of it.
"""

from collections.abc import Iterable, Iterator
from enum import Enum

from ..protocol.messages import Mode, TaskKind, TaskRequirement, TaskState, TaskStatus


class BlockStatus(str, Enum):
    pending = "pending"
    in_progress = "in_progress"
    complete = "complete"


class Block:
    """
    One unit of plan work bound to a single logical node slot.

    Attributes:
        id: Stable block identifier.
        node_id: Logical node slot this block deploys (e.g. "node-1").
        requirement: Resource shape needed to place the node.
        kind: Task kind launched for this block.
        target_modes: Modes that confirm the block's goal once reported with a running state.
        task_id: Task bound to the block while it is InProgress.
    """

    def __init__(
        self,
        *,
        block_id: str,
        node_id: str,
        requirement: TaskRequirement,
        kind: TaskKind = TaskKind.daemon,
        target_modes: Iterable[Mode] = (Mode.NORMAL,),
    ) -> None:
        self.id = block_id
        self.node_id = node_id
        self.requirement = requirement
        self.kind = kind
        self.target_modes = frozenset(target_modes)
        self.task_id: str | None = None
        self._status = BlockStatus.pending

    def __repr__(self) -> str:
        return f"Block(id={self.id!r}, node_id={self.node_id!r}, status={self._status.value})"

    @property
    def status(self) -> BlockStatus:
        return self._status

    @property
    def is_pending(self) -> bool:
        return self._status is BlockStatus.pending

    @property
    def is_in_progress(self) -> bool:
        return self._status is BlockStatus.in_progress

    @property
    def is_complete(self) -> bool:
        return self._status is BlockStatus.complete

    def start(self, task_id: str) -> None:
        """Bind the block to a launched task (offers were accepted on its behalf)."""
        if not self.is_pending:
            raise RuntimeError(f"block {self.id} cannot start from status {self._status.value}")
        self.task_id = task_id
        self._status = BlockStatus.in_progress

    def update(self, status: TaskStatus) -> bool:
        """
        Apply a status update for the bound task. Returns True if the block status changed.
        Updates for other tasks are ignored.
        """
        if self.is_complete or self.task_id is None or status.task_id != self.task_id:
            return False
        if status.state is TaskState.running and status.mode in self.target_modes:
            self._status = BlockStatus.complete
            return True
        if status.state.terminal:
            self._status = BlockStatus.pending
            self.task_id = None
            return True
        return False


class Phase:
    """Ordered blocks that must all complete before the next phase starts."""

    def __init__(self, *, name: str, blocks: Iterable[Block]) -> None:
        self.name = name
        self.blocks: tuple[Block, ...] = tuple(blocks)

    def __repr__(self) -> str:
        return f"Phase(name={self.name!r}, blocks={len(self.blocks)})"

    @property
    def is_complete(self) -> bool:
        return all(b.is_complete for b in self.blocks)

    def in_progress(self) -> list[Block]:
        return [b for b in self.blocks if b.is_in_progress]


class Plan:
    """Ordered phases describing one deployment/upgrade/repair campaign."""

    def __init__(self, *, name: str, phases: Iterable[Phase]) -> None:
        self.name = name
        self.phases: tuple[Phase, ...] = tuple(phases)
        ids = [b.id for b in self.blocks()]
        if len(ids) != len(set(ids)):
            raise ValueError(f"plan {name!r} has duplicate block ids")

    def __repr__(self) -> str:
        return f"Plan(name={self.name!r}, phases={len(self.phases)})"

    @property
    def is_complete(self) -> bool:
        return all(p.is_complete for p in self.phases)

    def blocks(self) -> Iterator[Block]:
        for phase in self.phases:
            yield from phase.blocks

    def block_for_task(self, task_id: str) -> Block | None:
        for b in self.blocks():
            if b.task_id == task_id:
                return b
        return None
