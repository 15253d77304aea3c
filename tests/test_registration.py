"""
Scenario tests: framework registration is persisted before any scheduling,
and a persistence failure is fatal.
"""

from __future__ import annotations

import pytest

from clusterkit.api.errors import RegistrationError
from clusterkit.core.config import SchedulerConfig
from clusterkit.protocol.messages import MasterInfo
from clusterkit.scheduling import SchedulingCoordinator
from tests.helpers import (
    FailingIdentityStore,
    InMemoryIdentityStore,
    InMemoryTaskStore,
    RecordingSchedulerDriver,
    StaticPlanFactory,
    make_offer,
    two_by_two_plan,
)

pytestmark = pytest.mark.scenario

MASTER = MasterInfo(id="master-1", hostname="master.example")


@pytest.mark.asyncio
async def test_registration_persists_identity_and_builds_plan():
    identity = InMemoryIdentityStore()
    factory = StaticPlanFactory(two_by_two_plan())
    coord = SchedulingCoordinator(
        identity=identity, tasks=InMemoryTaskStore(), plan_factory=factory, cfg=SchedulerConfig()
    )
    assert not coord.is_registered

    await coord.registered(RecordingSchedulerDriver(), "fw-42", MASTER)

    assert await identity.get() == "fw-42"
    assert coord.is_registered
    assert coord.framework_id == "fw-42"
    assert factory.builds == 1
    assert coord.repair_scheduler is not None


@pytest.mark.asyncio
async def test_repair_stage_is_optional():
    coord = SchedulingCoordinator(
        identity=InMemoryIdentityStore(),
        tasks=InMemoryTaskStore(),
        plan_factory=StaticPlanFactory(two_by_two_plan()),
        cfg=SchedulerConfig(repair_enabled=False),
    )
    await coord.registered(RecordingSchedulerDriver(), "fw-1", MASTER)
    assert coord.repair_scheduler is None


@pytest.mark.asyncio
async def test_registration_failure_is_fatal_and_nothing_is_scheduled():
    factory = StaticPlanFactory(two_by_two_plan())
    coord = SchedulingCoordinator(
        identity=FailingIdentityStore(),
        tasks=InMemoryTaskStore(),
        plan_factory=factory,
        cfg=SchedulerConfig(),
    )
    driver = RecordingSchedulerDriver()

    with pytest.raises(RegistrationError):
        await coord.registered(driver, "fw-1", MASTER)

    assert not coord.is_registered
    assert factory.builds == 0

    result = await coord.resource_offers(driver, [make_offer(offer_id="o-1")])
    assert result.declined == ("o-1",)
    assert driver.accepted == []


@pytest.mark.asyncio
async def test_stop_aborts_the_driver_once_registered():
    coord = SchedulingCoordinator(
        identity=InMemoryIdentityStore(),
        tasks=InMemoryTaskStore(),
        plan_factory=StaticPlanFactory(two_by_two_plan()),
        cfg=SchedulerConfig(),
    )
    driver = RecordingSchedulerDriver()
    await coord.start()
    await coord.registered(driver, "fw-1", MASTER)
    await coord.stop()
    assert driver.aborted == 1
    assert not coord.router.running
