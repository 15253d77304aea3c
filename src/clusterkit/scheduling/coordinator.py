# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
SchedulingCoordinator: the scheduler's callback surface for the platform.

Responsibilities:
- Persist the framework identity on registration, then build the plan,
  PlanManager, schedulers and operation recorders.
- Run the per-batch offer pipeline:
      plan → repair → backup → decline
  Each stage only sees the offers left by the previous one; accepted ids are
  filtered against the stage's input, so the accepted sets are disjoint.
  A stage that raises claims nothing; its offers move on to the next stage
  and are declined if nobody takes them.
- Route status updates (through StatusRouter, one at a time) to the task
  registry and the PlanManager.

Offer passes and status application share one lock: the pipeline is the only
writer of Block state and never runs concurrently with itself.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Protocol

from ..api.errors import PersistenceError, RegistrationError
from ..core.config import SchedulerConfig
from ..core.log import bind_context, get_logger, swallow
from ..core.time import Clock, SystemClock
from ..observability.metrics import SchedulerMetrics
from ..observability.tracing import trace
from ..plan.manager import PlanManager
from ..plan.model import Plan
from ..plan.strategy import strategy_from_config
from ..protocol.messages import MasterInfo, Offer, TaskRequirement, TaskState, TaskStatus
from ..storage.tasks import IdentityStore, TaskStore
from ..transport.driver import SchedulerDriver
from .offers import LogOperationRecorder, OfferAccepter, PersistentOperationRecorder
from .plan_scheduler import OfferScheduler
from .registry import TaskRegistry
from .repair import IntervalRepairPolicy, RepairPolicy, RepairScheduler
from .router import StatusRouter


class PlanFactory(Protocol):
    """Builds the active plan; may consult the registry to mark already-deployed nodes."""

    async def build(self, registry: TaskRegistry) -> Plan: ...


class BackupManager(Protocol):
    """Lowest-priority offer consumer. Returns the offer ids it accepted."""

    async def resource_offers(self, driver: SchedulerDriver, offers: Sequence[Offer]) -> list[str]: ...


@dataclass(frozen=True)
class OfferPass:
    """Outcome of one offer batch."""

    plan: tuple[str, ...] = ()
    repair: tuple[str, ...] = ()
    backup: tuple[str, ...] = ()
    declined: tuple[str, ...] = ()

    @property
    def accepted(self) -> frozenset[str]:
        return frozenset(self.plan) | frozenset(self.repair) | frozenset(self.backup)


class SchedulingCoordinator:
    def __init__(
        self,
        *,
        identity: IdentityStore,
        tasks: TaskStore,
        plan_factory: PlanFactory,
        cfg: SchedulerConfig | None = None,
        backup: BackupManager | None = None,
        repair_policy: RepairPolicy | None = None,
        metrics: SchedulerMetrics | None = None,
        clock: Clock | None = None,
        logger: logging.LoggerAdapter | None = None,
    ) -> None:
        self.cfg = cfg or SchedulerConfig.load()
        self.identity = identity
        self.plan_factory = plan_factory
        self.backup = backup
        self.clock: Clock = clock or SystemClock()
        self.metrics = metrics or SchedulerMetrics.create()
        self.log = logger or get_logger("coordinator")
        self.registry = TaskRegistry(tasks, clock=self.clock)
        self._repair_policy = repair_policy

        self.framework_id: str | None = None
        self.plan: PlanManager | None = None
        self.offer_scheduler: OfferScheduler | None = None
        self.repair_scheduler: RepairScheduler | None = None

        self._driver: SchedulerDriver | None = None
        self._lock = asyncio.Lock()
        self.router = StatusRouter(self._apply_status, logger=self.log)
        bind_context(role="scheduler", framework=self.cfg.framework_name)

    @property
    def is_registered(self) -> bool:
        return self.plan is not None

    # ---- lifecycle -----------------------------------------------------------

    async def start(self) -> None:
        await self.router.start()
        self.log.debug("coordinator started", event="coord.start", strategy=self.cfg.phase_strategy)

    async def stop(self) -> None:
        await self.router.stop()
        if self._driver is not None:
            with swallow(logger=self.log, code="driver.abort", msg="driver abort failed", level=logging.ERROR):
                await self._driver.abort()
        self.log.debug("coordinator stopped", event="coord.stopped")

    # ---- platform callbacks --------------------------------------------------

    async def registered(self, driver: SchedulerDriver, framework_id: str, master: MasterInfo) -> None:
        try:
            await self.identity.register(framework_id)
        except PersistenceError as e:
            self.log.error(
                "failed to persist framework identity",
                event="framework.register.failed",
                framework_id=framework_id,
                exc_info=e,
            )
            raise RegistrationError(f"could not persist framework id {framework_id}") from e

        self._driver = driver
        self.framework_id = framework_id
        bind_context(framework_id=framework_id)

        plan = await self.plan_factory.build(self.registry)
        self.plan = PlanManager(plan, strategy=strategy_from_config(self.cfg))
        accepter = OfferAccepter([LogOperationRecorder(), PersistentOperationRecorder(self.registry)])
        self.offer_scheduler = OfferScheduler(accepter=accepter, registry=self.registry)
        if self.cfg.repair_enabled and self.cfg.max_concurrent_repairs > 0:
            self.repair_scheduler = RepairScheduler(
                accepter=accepter,
                registry=self.registry,
                plan=self.plan,
                policy=self._repair_policy or IntervalRepairPolicy(self.cfg.repair_interval_ms),
                requirement=TaskRequirement(
                    cpus=self.cfg.repair_cpus, mem_mb=self.cfg.repair_mem_mb, role=self.cfg.role
                ),
                max_in_flight=self.cfg.max_concurrent_repairs,
                clock=self.clock,
                metrics=self.metrics,
            )
        self.log.info(
            "framework registered",
            event="framework.registered",
            framework_id=framework_id,
            master=master.id,
            plan=plan.name,
        )

    async def reregistered(self, driver: SchedulerDriver, master: MasterInfo) -> None:
        self._driver = driver
        self.log.info("framework re-registered", event="framework.reregistered", master=master.id)

    @trace("scheduler.offers.pass")
    async def resource_offers(self, driver: SchedulerDriver, offers: Sequence[Offer]) -> OfferPass:
        async with self._lock:
            return await self._offer_pass(driver, list(offers))

    async def status_update(self, driver: SchedulerDriver, status: TaskStatus) -> None:
        self.metrics.status_updates_total.labels(state=status.state.value).inc()
        self.router.submit(driver, status)

    async def offer_rescinded(self, driver: SchedulerDriver, offer_id: str) -> None:
        self.log.info("offer rescinded", event="offer.rescinded", offer_id=offer_id)

    async def framework_message(self, driver: SchedulerDriver, executor_id: str, agent_id: str, data: bytes) -> None:
        self.log.info(
            "framework message",
            event="framework.message",
            executor_id=executor_id,
            agent_id=agent_id,
            size=len(data),
        )

    async def disconnected(self, driver: SchedulerDriver) -> None:
        self.log.warning("disconnected from master", event="framework.disconnected")

    async def slave_lost(self, driver: SchedulerDriver, agent_id: str) -> None:
        self.log.warning("agent lost", event="agent.lost", agent_id=agent_id)

    async def executor_lost(self, driver: SchedulerDriver, executor_id: str, agent_id: str, status: int) -> None:
        self.log.warning(
            "executor lost", event="executor.lost", executor_id=executor_id, agent_id=agent_id, status=status
        )

    async def error(self, driver: SchedulerDriver, message: str) -> None:
        self.log.error("driver error", event="framework.error", message=message)

    # ---- offer pipeline ------------------------------------------------------

    async def _offer_pass(self, driver: SchedulerDriver, offers: list[Offer]) -> OfferPass:
        self.metrics.offers_received_total.inc(len(offers))
        self.log.info(
            "offers received",
            event="offers.received",
            count=len(offers),
            offer_ids=[o.id for o in offers],
        )
        if self.plan is None or self.offer_scheduler is None:
            declined = await self._decline(driver, offers)
            return OfferPass(declined=declined)

        block = self.plan.current_block()

        offer_scheduler, repair_scheduler, backup = self.offer_scheduler, self.repair_scheduler, self.backup

        plan_ids = await self._stage("plan", offers, lambda: offer_scheduler.resource_offers(driver, offers, block))
        remainder = [o for o in offers if o.id not in plan_ids]

        repair_ids: tuple[str, ...] = ()
        if repair_scheduler is not None:
            repair_ids = await self._stage(
                "repair", remainder, lambda: repair_scheduler.resource_offers(driver, remainder, block)
            )
            remainder = [o for o in remainder if o.id not in repair_ids]

        backup_ids: tuple[str, ...] = ()
        if backup is not None:
            backup_ids = await self._stage("backup", remainder, lambda: backup.resource_offers(driver, remainder))
            remainder = [o for o in remainder if o.id not in backup_ids]

        declined = await self._decline(driver, remainder)
        self.metrics.blocks_in_progress.set(sum(1 for b in self.plan.plan.blocks() if b.is_in_progress))
        return OfferPass(plan=plan_ids, repair=repair_ids, backup=backup_ids, declined=declined)

    async def _stage(
        self, stage: str, stage_input: Sequence[Offer], call: Callable[[], Awaitable[Sequence[str]]]
    ) -> tuple[str, ...]:
        """Run one stage; a failing stage claims nothing and its offers flow on to the next stage."""
        if not stage_input:
            return ()
        try:
            ids = await call()
        except Exception as e:
            self.metrics.offer_stage_failures_total.labels(stage=stage).inc()
            self.log.error(
                "offer stage failed",
                event="offers.stage.failed",
                stage=stage,
                offer_ids=[o.id for o in stage_input],
                exc_info=e,
            )
            return ()
        return self._claimed(stage, stage_input, ids)

    def _claimed(self, stage: str, stage_input: Sequence[Offer], ids: Sequence[str]) -> tuple[str, ...]:
        known = {o.id for o in stage_input}
        out: list[str] = []
        for oid in ids:
            if oid not in known:
                self.log.warning(
                    "stage claimed an offer it was not given",
                    event="offers.claim.foreign",
                    stage=stage,
                    offer_id=oid,
                )
                continue
            if oid not in out:
                out.append(oid)
        if out:
            self.metrics.offers_accepted_total.labels(stage=stage).inc(len(out))
        return tuple(out)

    async def _decline(self, driver: SchedulerDriver, offers: Sequence[Offer]) -> tuple[str, ...]:
        for o in offers:
            await driver.decline_offer(o.id)
            self.log.debug("offer declined", event="offer.declined", offer_id=o.id)
        self.metrics.offers_declined_total.inc(len(offers))
        return tuple(o.id for o in offers)

    # ---- status --------------------------------------------------------------

    async def _apply_status(self, driver: SchedulerDriver, status: TaskStatus) -> None:
        async with self._lock:
            self.log.info(
                "status update",
                event="status.received",
                task_id=status.task_id,
                node_id=status.node_id,
                state=status.state.value,
                mode=status.mode.value if status.mode else None,
            )
            await self.registry.apply_status(status)
            if self.plan is not None:
                block = self.plan.on_status(status)
                if block is not None and block.is_complete:
                    self.metrics.blocks_completed_total.inc()
                    self.log.info(
                        "block completed", event="block.completed", block_id=block.id, node_id=block.node_id
                    )
            if status.state is TaskState.killing:
                self.log.warning(
                    "executor requested kill", event="task.kill.requested", task_id=status.task_id
                )
                await driver.kill_task(status.task_id)
