# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Opportunistic anti-entropy repair.

RepairScheduler launches repair tasks on offers left over by the plan stage.
It stands down while any plan Block is InProgress, so repairs never overlap a
deployment step. Eligible nodes are NORMAL, running, without a repair in
flight, and due according to the RepairPolicy; the least recently repaired
node goes first. A repair task always lands on its node's own agent.
"""

import logging
from collections.abc import Sequence
from typing import Protocol

from ..core.log import get_logger
from ..core.time import Clock, SystemClock
from ..observability.metrics import SchedulerMetrics
from ..plan.manager import PlanManager
from ..plan.model import Block
from ..protocol.messages import Mode, Offer, TaskKind, TaskRequirement, TaskState
from ..storage.tasks import NodeTaskRecord
from ..transport.driver import SchedulerDriver
from .offers import OfferAccepter, OfferEvaluator
from .registry import TaskRegistry


class RepairPolicy(Protocol):
    def is_due(self, record: NodeTaskRecord, now_ms: int) -> bool: ...


class IntervalRepairPolicy:
    """A node is due once `interval_ms` passed since its last successful repair (or it never had one)."""

    def __init__(self, interval_ms: int) -> None:
        if interval_ms <= 0:
            raise ValueError("interval_ms must be > 0")
        self.interval_ms = int(interval_ms)

    def is_due(self, record: NodeTaskRecord, now_ms: int) -> bool:
        if record.last_repair_ms is None:
            return True
        return now_ms - record.last_repair_ms >= self.interval_ms


class RepairScheduler:
    def __init__(
        self,
        *,
        accepter: OfferAccepter,
        registry: TaskRegistry,
        plan: PlanManager | None,
        policy: RepairPolicy,
        requirement: TaskRequirement,
        max_in_flight: int = 1,
        evaluator: OfferEvaluator | None = None,
        clock: Clock | None = None,
        metrics: SchedulerMetrics | None = None,
        logger: logging.LoggerAdapter | None = None,
    ) -> None:
        if max_in_flight < 1:
            raise ValueError("max_in_flight must be >= 1")
        self.accepter = accepter
        self.registry = registry
        self.plan = plan
        self.policy = policy
        self.requirement = requirement
        self.max_in_flight = int(max_in_flight)
        self.evaluator = evaluator or OfferEvaluator()
        self.clock = clock or SystemClock()
        self.metrics = metrics
        self.log = logger or get_logger("scheduling.repair")

    def _eligible(self, rec: NodeTaskRecord, now_ms: int) -> bool:
        return (
            rec.mode is Mode.NORMAL
            and rec.state is TaskState.running
            and not rec.repair_in_flight
            and bool(rec.agent_id)
            and self.policy.is_due(rec, now_ms)
        )

    async def resource_offers(
        self, driver: SchedulerDriver, offers: Sequence[Offer], block: Block | None
    ) -> list[str]:
        if not offers:
            return []
        if block is not None and block.is_in_progress:
            return []
        if self.plan is not None and self.plan.has_in_progress():
            return []

        records = await self.registry.records()
        budget = self.max_in_flight - sum(1 for r in records if r.repair_in_flight)
        if budget <= 0:
            return []

        now = self.clock.now_ms()
        skip_node = block.node_id if block is not None else None
        due = [r for r in records if r.node_id != skip_node and self._eligible(r, now)]
        due.sort(key=lambda r: (r.last_repair_ms if r.last_repair_ms is not None else -1, r.node_id))

        remaining = list(offers)
        accepted: list[str] = []
        for rec in due:
            if budget <= 0:
                break
            placement = self.evaluator.evaluate(
                offers=[o for o in remaining if o.agent_id == rec.agent_id],
                requirement=self.requirement,
                node_id=rec.node_id,
                kind=TaskKind.repair,
                name=f"repair-{rec.node_id}",
                data={"daemon_task_id": rec.task_id},
            )
            if placement is None:
                continue
            try:
                ids = await self.accepter.accept(driver, placement)
            except Exception as e:
                # offers of a refused accept stay unclaimed; the accepter rolled the record back
                self.log.error(
                    "repair launch failed",
                    event="repair.launch.failed",
                    node_id=rec.node_id,
                    task_id=placement.task.task_id,
                    exc_info=e,
                )
                continue
            taken = set(ids)
            remaining = [o for o in remaining if o.id not in taken]
            accepted.extend(ids)
            budget -= 1
            if self.metrics is not None:
                self.metrics.repairs_launched_total.inc()
            self.log.info(
                "repair launched",
                event="repair.launched",
                node_id=rec.node_id,
                task_id=placement.task.task_id,
                last_repair_ms=rec.last_repair_ms,
            )
        return accepted
