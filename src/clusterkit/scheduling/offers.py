# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Offer evaluation and acceptance.

OfferEvaluator is a pure matcher: given offers (in input order) and a
requirement it returns a Placement or None. Rules:
- A node that already owns a persistent volume is placed back on that volume's
  agent: the offer carrying the volume is taken first, then other offers from
  the same agent (input order) until the requirement is covered.
- Otherwise the first single offer that covers the requirement wins; agents
  listed in `avoid_agents` are skipped.
- Fresh volumes are provisioned with reserve + create_volume + launch.

OfferAccepter runs the operation recorders, then issues the driver accept;
a refused accept rolls the recorders back.
"""

import logging
import uuid
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any, Protocol

from ..api.errors import PlacementError
from ..core.log import get_logger, swallow
from ..core.types import TASK_ID_SEPARATOR
from ..protocol.messages import (
    Offer,
    Operation,
    OperationKind,
    TaskInfo,
    TaskKind,
    TaskRequirement,
    Volume,
)
from ..storage.tasks import NodeTaskRecord
from ..transport.driver import SchedulerDriver
from .registry import TaskRegistry


def new_task_id(name: str) -> str:
    return f"{name}{TASK_ID_SEPARATOR}{uuid.uuid4()}"


@dataclass(frozen=True)
class Placement:
    """Offers claimed for one task and the operations to run against them."""

    offers: tuple[Offer, ...]
    operations: tuple[Operation, ...]
    task: TaskInfo
    block_id: str | None = None

    @property
    def offer_ids(self) -> list[str]:
        return [o.id for o in self.offers]

    @property
    def agent_id(self) -> str:
        return self.offers[0].agent_id


def _covers(offers: Sequence[Offer], req: TaskRequirement, *, extra_disk_mb: float = 0.0) -> bool:
    cpus = sum(o.cpus for o in offers)
    mem = sum(o.mem_mb for o in offers)
    disk = sum(o.disk_mb for o in offers)
    if cpus < req.cpus or mem < req.mem_mb or disk < req.disk_mb + extra_disk_mb:
        return False
    return all(any(o.has_port(p) for o in offers) for p in req.ports)


class OfferEvaluator:
    def evaluate(
        self,
        *,
        offers: Sequence[Offer],
        requirement: TaskRequirement,
        node_id: str,
        kind: TaskKind,
        name: str | None = None,
        prior: NodeTaskRecord | None = None,
        avoid_agents: Iterable[str] = (),
        block_id: str | None = None,
        data: dict[str, Any] | None = None,
    ) -> Placement | None:
        if requirement.volume is not None and kind is not TaskKind.daemon:
            raise PlacementError(f"{kind.value} tasks cannot own a persistent volume")
        name = name or node_id
        if requirement.volume is not None and prior is not None and prior.persistence_id and prior.agent_id:
            return self._reuse(offers, requirement, node_id, kind, name, prior, block_id, data)
        avoid = set(avoid_agents)
        extra = requirement.volume.size_mb if requirement.volume is not None else 0.0
        for offer in offers:
            if offer.agent_id in avoid:
                continue
            if _covers((offer,), requirement, extra_disk_mb=extra):
                return self._fresh(offer, requirement, node_id, kind, name, block_id, data)
        return None

    # ---- placements ----------------------------------------------------------

    def _reuse(
        self,
        offers: Sequence[Offer],
        req: TaskRequirement,
        node_id: str,
        kind: TaskKind,
        name: str,
        prior: NodeTaskRecord,
        block_id: str | None,
        data: dict[str, Any] | None,
    ) -> Placement | None:
        pid = prior.persistence_id
        same_agent = [o for o in offers if o.agent_id == prior.agent_id]
        anchor = next((o for o in same_agent if o.volume(pid) is not None), None)
        if anchor is None:
            return None
        chosen = [anchor]
        if not _covers(chosen, req):
            for o in same_agent:
                if o is anchor:
                    continue
                chosen.append(o)
                if _covers(chosen, req):
                    break
            else:
                return None
        task = self._task(chosen[0], req, node_id, kind, name, persistence_id=pid, data=data)
        launch = Operation(kind=OperationKind.launch, agent_id=task.agent_id, task=task)
        return Placement(offers=tuple(chosen), operations=(launch,), task=task, block_id=block_id)

    def _fresh(
        self,
        offer: Offer,
        req: TaskRequirement,
        node_id: str,
        kind: TaskKind,
        name: str,
        block_id: str | None,
        data: dict[str, Any] | None,
    ) -> Placement:
        ops: list[Operation] = []
        pid: str | None = None
        if req.volume is not None:
            pid = str(uuid.uuid4())
            volume = Volume(
                persistence_id=pid,
                size_mb=req.volume.size_mb,
                container_path=req.volume.container_path,
                role=req.role,
            )
            ops.append(
                Operation(
                    kind=OperationKind.reserve,
                    agent_id=offer.agent_id,
                    cpus=req.cpus,
                    mem_mb=req.mem_mb,
                    disk_mb=req.disk_mb + req.volume.size_mb,
                )
            )
            ops.append(Operation(kind=OperationKind.create_volume, agent_id=offer.agent_id, volume=volume))
        task = self._task(offer, req, node_id, kind, name, persistence_id=pid, data=data)
        ops.append(Operation(kind=OperationKind.launch, agent_id=offer.agent_id, task=task))
        return Placement(offers=(offer,), operations=tuple(ops), task=task, block_id=block_id)

    @staticmethod
    def _task(
        offer: Offer,
        req: TaskRequirement,
        node_id: str,
        kind: TaskKind,
        name: str,
        *,
        persistence_id: str | None,
        data: dict[str, Any] | None,
    ) -> TaskInfo:
        return TaskInfo(
            task_id=new_task_id(name),
            name=name,
            kind=kind,
            node_id=node_id,
            agent_id=offer.agent_id,
            hostname=offer.hostname,
            cpus=req.cpus,
            mem_mb=req.mem_mb,
            disk_mb=req.disk_mb,
            ports=req.ports,
            persistence_id=persistence_id,
            data=dict(data or {}),
        )


# ---- acceptance ----------------------------------------------------------------


class OperationRecorder(Protocol):
    async def record(self, placement: Placement) -> None: ...

    async def rollback(self, placement: Placement) -> None:
        """Undo `record` after the driver refused the accept."""
        ...


class LogOperationRecorder:
    def __init__(self, logger: logging.LoggerAdapter | None = None) -> None:
        self.log = logger or get_logger("offers.recorder")

    async def record(self, placement: Placement) -> None:
        for op in placement.operations:
            self.log.info(
                "offer operation",
                event="offer.operation",
                op=op.kind.value,
                agent_id=op.agent_id,
                task_id=op.task.task_id if op.task else None,
                persistence_id=op.volume.persistence_id if op.volume else None,
            )

    async def rollback(self, placement: Placement) -> None:
        self.log.warning(
            "offer operations not accepted",
            event="offer.operation.rolled_back",
            task_id=placement.task.task_id,
            offer_ids=placement.offer_ids,
        )


class PersistentOperationRecorder:
    """Writes launched tasks into the registry so status updates find their owner."""

    def __init__(self, registry: TaskRegistry) -> None:
        self.registry = registry
        # record before the latest launch per node, keyed by node_id
        self._prior: dict[str, tuple[str, NodeTaskRecord | None]] = {}

    async def record(self, placement: Placement) -> None:
        task = placement.task
        self._prior[task.node_id] = (task.task_id, await self.registry.get(task.node_id))
        await self.registry.record_launch(task, block_id=placement.block_id)

    async def rollback(self, placement: Placement) -> None:
        task = placement.task
        task_id, prior = self._prior.pop(task.node_id, (None, None))
        await self.registry.revert_launch(task, prior if task_id == task.task_id else None)


class OfferAccepter:
    """
    Records a placement, then accepts its offers. If recording or the accept
    fails, every recorder that already ran is rolled back (newest first) and
    the error propagates.
    """

    def __init__(
        self, recorders: Iterable[OperationRecorder], *, logger: logging.LoggerAdapter | None = None
    ) -> None:
        self.recorders = list(recorders)
        self.log = logger or get_logger("offers.accepter")

    async def accept(self, driver: SchedulerDriver, placement: Placement) -> list[str]:
        done: list[OperationRecorder] = []
        ids = placement.offer_ids
        try:
            for r in self.recorders:
                await r.record(placement)
                done.append(r)
            await driver.accept_offers(ids, list(placement.operations))
        except Exception:
            for r in reversed(done):
                with swallow(
                    logger=self.log,
                    code="offers.rollback",
                    msg="operation recorder rollback failed",
                    level=logging.ERROR,
                    extra={"task_id": placement.task.task_id},
                ):
                    await r.rollback(placement)
            raise
        return ids
