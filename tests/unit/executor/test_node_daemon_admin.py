"""
Unit tests: NodeDaemon admin surface and AdminTaskRunner status reporting.
"""

from __future__ import annotations

import asyncio
import sys

import pytest

from clusterkit.api.errors import CommunicationError, InvalidArgumentError
from clusterkit.core.config import ExecutorConfig
from clusterkit.executor import AdminTaskRunner, NodeDaemon, StatusChannel
from clusterkit.observability.metrics import ExecutorMetrics
from clusterkit.protocol.messages import TaskInfo, TaskKind, TaskState
from tests.helpers import RecordingExecutorDriver, ScriptedProbe

pytestmark = pytest.mark.unit


def _task(kind: TaskKind = TaskKind.daemon, task_id: str = "node-1__d", **data) -> TaskInfo:
    return TaskInfo(task_id=task_id, name="node-1", kind=kind, node_id="node-1", agent_id="agent-1", data=data)


def _daemon(probe: ScriptedProbe, driver: RecordingExecutorDriver | None = None) -> NodeDaemon:
    return NodeDaemon(
        task=_task(),
        argv=[sys.executable, "-c", "pass"],
        probe=probe,
        channel=StatusChannel(driver or RecordingExecutorDriver()),
        cfg=ExecutorConfig(),
        metrics=ExecutorMetrics.create(),
    )


@pytest.mark.asyncio
async def test_non_system_keyspaces_filters_system_ones():
    d = _daemon(ScriptedProbe(keyspaces=["system", "system_schema", "system_auth", "app", "metrics"]))
    assert await d.keyspaces() == ["system", "system_schema", "system_auth", "app", "metrics"]
    assert await d.non_system_keyspaces() == ["app", "metrics"]


@pytest.mark.asyncio
async def test_cleanup_all_iterates_keyspace_by_keyspace():
    probe = ScriptedProbe(fail={})
    d = _daemon(probe)
    outcomes = [o async for o in d.cleanup_all()]
    assert [o.keyspace for o in outcomes] == ["app", "metrics"]
    assert all(o.ok for o in outcomes)
    assert [c for c in probe.calls if c[0] == "cleanup"] == [("cleanup", "app", ()), ("cleanup", "metrics", ())]


@pytest.mark.asyncio
async def test_sweep_reports_failures_per_keyspace_and_stops_on_request():
    probe = ScriptedProbe(
        keyspaces=["system", "a", "b", "c"],
        fail={"compaction": CommunicationError("boom", command="compact")},
    )
    d = _daemon(probe)
    seen = []
    async for outcome in d.compact_all():
        seen.append(outcome)
        if len(seen) == 2:
            break
    assert [o.keyspace for o in seen] == ["a", "b"]
    assert all(isinstance(o.error, CommunicationError) for o in seen)
    assert len([c for c in probe.calls if c[0] == "compaction"]) == 2


@pytest.mark.asyncio
async def test_admin_errors_propagate_typed_and_are_counted():
    probe = ScriptedProbe(fail={"repair": InvalidArgumentError("Unknown table nope", command="repair", keyspace="app")})
    d = _daemon(probe)
    with pytest.raises(InvalidArgumentError):
        await d.repair("app", {"columnFamilies": "nope"})
    assert (
        d.metrics.registry.get_sample_value(
            "clusterkit_admin_commands_total", {"command": "repair", "result": "InvalidArgumentError"}
        )
        == 1.0
    )


@pytest.mark.asyncio
async def test_admin_passthrough_commands():
    probe = ScriptedProbe()
    d = _daemon(probe)
    assert await d.repair("app") == "Repair completed successfully"
    await d.take_snapshot("snap", "app")
    await d.clear_snapshot("snap", "app", "metrics")
    await d.decommission()
    await d.assassinate("10.0.0.7")
    await d.upgrade_sstables("app")
    status = await d.status()

    assert ("snapshot", "snap", ("app",)) in probe.calls
    assert ("clear_snapshot", "snap", ("app", "metrics")) in probe.calls
    assert ("decommission",) in probe.calls
    assert ("assassinate", "10.0.0.7") in probe.calls
    assert ("upgrade_sstables", "app", (), True, 0) in probe.calls
    assert status.token_count == 256 and status.datacenter == "dc1"


@pytest.mark.asyncio
async def test_admin_runner_reports_running_then_finished():
    driver = RecordingExecutorDriver()
    channel = StatusChannel(driver)
    await channel.start()
    probe = ScriptedProbe()
    runner = AdminTaskRunner(channel=channel)

    task = _task(TaskKind.repair, task_id="repair-node-1__r", options={"primaryRange": "true"})
    await runner.submit(task, _daemon(probe))
    await channel.close()

    assert driver.states("repair-node-1__r") == ["running", "finished"]
    assert [c for c in probe.calls if c[0] == "repair"] == [
        ("repair", "app", {"primaryRange": "true"}),
        ("repair", "metrics", {"primaryRange": "true"}),
    ]


@pytest.mark.asyncio
async def test_admin_runner_reports_failure_reason():
    driver = RecordingExecutorDriver()
    channel = StatusChannel(driver)
    await channel.start()
    probe = ScriptedProbe(fail={"cleanup": CommunicationError("unreachable", command="cleanup", keyspace="app")})
    runner = AdminTaskRunner(channel=channel)

    await runner.submit(_task(TaskKind.cleanup, task_id="cleanup__1", keyspaces=["app"]), _daemon(probe))
    await channel.close()

    last = driver.statuses[-1]
    assert last.state is TaskState.failed
    assert last.reason == "CommunicationError"


@pytest.mark.asyncio
async def test_admin_runner_cancel_reports_killed():
    driver = RecordingExecutorDriver()
    channel = StatusChannel(driver)
    await channel.start()

    class SlowProbe(ScriptedProbe):
        async def force_keyspace_compaction(self, keyspace, families=()):
            await asyncio.sleep(30)

    runner = AdminTaskRunner(channel=channel)
    runner.submit(_task(TaskKind.compaction, task_id="compact__1"), _daemon(SlowProbe()))
    await asyncio.sleep(0.05)
    assert await runner.cancel("compact__1") is True
    assert await runner.cancel("compact__1") is False
    await channel.close()

    assert driver.states("compact__1") == ["running", "killed"]


@pytest.mark.asyncio
async def test_snapshot_task_requires_a_name():
    driver = RecordingExecutorDriver()
    channel = StatusChannel(driver)
    await channel.start()
    runner = AdminTaskRunner(channel=channel)
    await runner.submit(_task(TaskKind.snapshot, task_id="snap__1"), _daemon(ScriptedProbe()))
    await channel.close()
    assert driver.statuses[-1].state is TaskState.failed
    assert driver.statuses[-1].reason == "InvalidArgumentError"
