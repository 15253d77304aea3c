"""
Scenario tests: the per-batch offer pipeline (plan → repair → backup → decline).
"""

from __future__ import annotations

import random

import pytest

from clusterkit.core.config import SchedulerConfig
from clusterkit.core.time import ManualClock
from clusterkit.observability.metrics import SchedulerMetrics
from clusterkit.protocol.messages import MasterInfo, Mode, TaskState
from clusterkit.scheduling import SchedulingCoordinator
from clusterkit.storage.tasks import NodeTaskRecord
from tests.helpers import (
    InMemoryIdentityStore,
    InMemoryTaskStore,
    RecordingSchedulerDriver,
    RefusingSchedulerDriver,
    StaticPlanFactory,
    make_offer,
    small_offer,
    two_by_two_plan,
)

pytestmark = pytest.mark.scenario

MASTER = MasterInfo(id="master-1", hostname="master.example")


class GreedyBackup:
    """Takes every other offer it is shown; optionally also claims an offer it was not given."""

    def __init__(self, foreign: str | None = None) -> None:
        self.seen: list[list[str]] = []
        self.foreign = foreign

    async def resource_offers(self, driver, offers):
        ids = [o.id for o in offers]
        self.seen.append(ids)
        taken = ids[::2]
        if self.foreign:
            taken = [*taken, self.foreign]
        return taken


def _coordinator(store=None, *, backup=None, cfg=None):
    return SchedulingCoordinator(
        identity=InMemoryIdentityStore(),
        tasks=store or InMemoryTaskStore(),
        plan_factory=StaticPlanFactory(two_by_two_plan()),
        cfg=cfg or SchedulerConfig(repair_interval_sec=3600.0),
        backup=backup,
        metrics=SchedulerMetrics.create(),
        clock=ManualClock(10_000_000),
    )


@pytest.mark.asyncio
async def test_offers_declined_before_registration():
    coord = _coordinator()
    driver = RecordingSchedulerDriver()
    offers = [make_offer(offer_id="o-1"), make_offer(offer_id="o-2")]
    result = await coord.resource_offers(driver, offers)
    assert result.accepted == frozenset()
    assert sorted(driver.declined) == ["o-1", "o-2"]


@pytest.mark.asyncio
async def test_two_by_two_first_batch_places_block_one_only():
    coord = _coordinator()
    driver = RecordingSchedulerDriver()
    await coord.registered(driver, "fw-1", MASTER)

    offers = [
        make_offer(agent="agent-1", offer_id="o-big"),
        small_offer(agent="agent-2", offer_id="o-s1"),
        small_offer(agent="agent-3", offer_id="o-s2"),
    ]
    result = await coord.resource_offers(driver, offers)

    assert result.plan == ("o-big",)
    assert result.repair == () and result.backup == ()
    assert sorted(result.declined) == ["o-s1", "o-s2"]
    assert sorted(driver.declined) == ["o-s1", "o-s2"]

    blocks = {b.node_id: b for b in coord.plan.plan.blocks()}
    assert blocks["node-1"].is_in_progress
    assert all(blocks[n].is_pending for n in ("node-2", "node-3", "node-4"))


@pytest.mark.asyncio
async def test_serial_strategy_waits_for_in_progress_block():
    coord = _coordinator()
    driver = RecordingSchedulerDriver()
    await coord.registered(driver, "fw-1", MASTER)
    await coord.resource_offers(driver, [make_offer(agent="agent-1", offer_id="o-1")])

    result = await coord.resource_offers(driver, [make_offer(agent="agent-2", offer_id="o-2")])
    assert result.plan == ()
    assert result.declined == ("o-2",)


@pytest.mark.asyncio
async def test_stages_see_only_the_remainder_and_foreign_claims_are_dropped():
    store = InMemoryTaskStore(
        [
            NodeTaskRecord(
                node_id="old-node",
                task_id="old-node__d",
                agent_id="agent-r",
                state=TaskState.running,
                mode=Mode.NORMAL,
            )
        ]
    )
    backup = GreedyBackup(foreign="o-plan")
    coord = _coordinator(store, backup=backup)
    driver = RecordingSchedulerDriver()
    await coord.registered(driver, "fw-1", MASTER)

    offers = [
        make_offer(agent="agent-1", offer_id="o-plan"),
        small_offer(agent="agent-r", offer_id="o-repair"),
        small_offer(agent="agent-x", offer_id="o-b1"),
        small_offer(agent="agent-y", offer_id="o-b2"),
        small_offer(agent="agent-z", offer_id="o-b3"),
    ]
    result = await coord.resource_offers(driver, offers)

    # repair stands down while the plan block it just launched is InProgress
    assert result.plan == ("o-plan",)
    assert result.repair == ()
    assert backup.seen == [["o-repair", "o-b1", "o-b2", "o-b3"]]
    assert result.backup == ("o-repair", "o-b2")
    assert sorted(result.declined) == ["o-b1", "o-b3"]


@pytest.mark.asyncio
async def test_repair_gets_leftovers_once_plan_is_idle():
    store = InMemoryTaskStore(
        [
            NodeTaskRecord(
                node_id="old-node",
                task_id="old-node__d",
                agent_id="agent-r",
                state=TaskState.running,
                mode=Mode.NORMAL,
            )
        ]
    )
    coord = _coordinator(store)
    driver = RecordingSchedulerDriver()
    await coord.registered(driver, "fw-1", MASTER)
    coord.plan.interrupt()

    result = await coord.resource_offers(driver, [small_offer(agent="agent-r", offer_id="o-r")])
    assert result.repair == ("o-r",)
    assert driver.declined == []


@pytest.mark.asyncio
async def test_accepted_sets_are_disjoint_and_cover_input():
    rng = random.Random(7)
    for round_no in range(25):
        store = InMemoryTaskStore(
            [
                NodeTaskRecord(
                    node_id=f"n{i}",
                    task_id=f"n{i}__d",
                    agent_id=f"agent-{i}",
                    state=TaskState.running,
                    mode=Mode.NORMAL,
                )
                for i in range(3)
            ]
        )
        coord = _coordinator(store, backup=GreedyBackup(), cfg=SchedulerConfig(max_concurrent_repairs=3))
        driver = RecordingSchedulerDriver()
        await coord.registered(driver, "fw-1", MASTER)
        if rng.random() < 0.5:
            coord.plan.interrupt()

        offers = []
        for i in range(rng.randint(0, 8)):
            agent = f"agent-{rng.randint(0, 5)}"
            oid = f"r{round_no}-o{i}"
            offers.append(make_offer(agent=agent, offer_id=oid) if rng.random() < 0.3 else small_offer(agent=agent, offer_id=oid))

        result = await coord.resource_offers(driver, offers)

        plan, repair, backup = set(result.plan), set(result.repair), set(result.backup)
        assert not (plan & repair) and not (plan & backup) and not (repair & backup)
        ids = {o.id for o in offers}
        assert plan | repair | backup <= ids
        assert set(result.declined) == ids - (plan | repair | backup)
        assert sorted(driver.declined) == sorted(result.declined)
        assert set(driver.accepted_ids) == plan | repair


class BrokenBackup:
    async def resource_offers(self, driver, offers):
        raise RuntimeError("backup agent unreachable")


@pytest.mark.asyncio
async def test_failing_backup_still_declines_leftovers():
    coord = _coordinator(backup=BrokenBackup())
    driver = RecordingSchedulerDriver()
    await coord.registered(driver, "fw-1", MASTER)

    result = await coord.resource_offers(
        driver, [make_offer(agent="agent-1", offer_id="o-1"), small_offer(agent="agent-9", offer_id="o-2")]
    )

    assert result.plan == ("o-1",)
    assert result.backup == ()
    assert result.declined == ("o-2",)
    assert driver.declined == ["o-2"]
    failures = coord.metrics.registry.get_sample_value(
        "clusterkit_offer_stage_failures_total", {"stage": "backup"}
    )
    assert failures == 1.0


@pytest.mark.asyncio
async def test_refused_accept_declines_everything_and_retries_next_batch():
    store = InMemoryTaskStore()
    coord = _coordinator(store)
    driver = RefusingSchedulerDriver(refuse=1)
    await coord.registered(driver, "fw-1", MASTER)

    offers = [make_offer(agent="agent-1", offer_id="o-1"), small_offer(agent="agent-2", offer_id="o-2")]
    result = await coord.resource_offers(driver, offers)

    assert result.plan == ()
    assert sorted(result.declined) == ["o-1", "o-2"]
    assert sorted(driver.declined) == ["o-1", "o-2"]
    assert driver.refused == [["o-1"]]
    assert {b.node_id: b for b in coord.plan.plan.blocks()}["node-1"].is_pending
    assert await store.get("node-1") is None

    result = await coord.resource_offers(driver, [make_offer(agent="agent-1", offer_id="o-3")])
    assert result.plan == ("o-3",)
    assert (await store.get("node-1")).agent_id == "agent-1"
