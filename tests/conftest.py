# conftest.py
from __future__ import annotations

import os
import uuid

import pytest
import pytest_asyncio

from clusterkit.core.config import ExecutorConfig, SchedulerConfig
from clusterkit.core.log import (
    bind_context,
    configure_from_env,
    enable_stdout_logging,
    get_logger,
    log_context,
)
from clusterkit.core.time import ManualClock
from clusterkit.observability.metrics import ExecutorMetrics, SchedulerMetrics
from clusterkit.scheduling.coordinator import SchedulingCoordinator
from tests.helpers import (
    InMemoryIdentityStore,
    InMemoryTaskStore,
    RecordingExecutorDriver,
    RecordingSchedulerDriver,
    StaticPlanFactory,
    two_by_two_plan,
)


def pytest_addoption(parser):
    parser.addoption(
        "--log-json",
        action="store_true",
        default=False,
        help="Emit clusterkit logs in JSON format during tests",
    )


@pytest.fixture(scope="session", autouse=True)
def _configure_clusterkit_logging(request):
    configure_from_env()
    prefer_json = request.config.getoption("--log-json")
    if os.getenv("CLUSTERKIT_LOG_STDOUT", "").lower() not in ("1", "true", "yes", "on"):
        enable_stdout_logging(
            level="DEBUG",
            json_output=prefer_json,
            pretty=not prefer_json,
            route_errors_to_stderr=True,
        )
    bind_context(role="pytest")


@pytest.fixture(scope="session")
def session_run_id():
    return uuid.uuid4().hex[:8]


@pytest.fixture(autouse=True)
def _test_log_context(request, session_run_id):
    log = get_logger("test")
    with log_context(pytest_nodeid=request.node.nodeid, test=request.node.name, test_run=session_run_id):
        log.debug("pytest.test.start", event="pytest.test.start")
        yield


@pytest.hookimpl(hookwrapper=True)
def pytest_runtest_makereport(item, call):
    outcome = yield
    rep = outcome.get_result()
    if rep.when == "call":
        log = get_logger("test")
        with log_context(pytest_nodeid=item.nodeid, test=item.name):
            log.debug(
                "pytest.test.finish",
                event="pytest.test.finish",
                outcome=rep.outcome,
                duration=getattr(rep, "duration", None),
            )


@pytest.fixture
def clock():
    return ManualClock(start_ms=1_700_000_000_000)


@pytest.fixture
def scheduler_cfg():
    return SchedulerConfig(repair_interval_sec=3600.0)


@pytest.fixture
def executor_cfg():
    return ExecutorConfig(
        mode_poll_interval_sec=0.01,
        mode_poll_initial_delay_sec=0.0,
        stop_grace_sec=2.0,
        drain_timeout_sec=1.0,
    )


@pytest.fixture
def scheduler_driver():
    return RecordingSchedulerDriver()


@pytest.fixture
def executor_driver():
    return RecordingExecutorDriver()


@pytest.fixture
def task_store():
    return InMemoryTaskStore()


@pytest_asyncio.fixture
async def coordinator(scheduler_cfg, task_store, clock):
    c = SchedulingCoordinator(
        identity=InMemoryIdentityStore(),
        tasks=task_store,
        plan_factory=StaticPlanFactory(two_by_two_plan()),
        cfg=scheduler_cfg,
        metrics=SchedulerMetrics.create(),
        clock=clock,
    )
    await c.start()
    try:
        yield c
    finally:
        await c.stop()


@pytest.fixture
def executor_metrics():
    return ExecutorMetrics.create()


@pytest.fixture
def tlog():
    return get_logger("test")
