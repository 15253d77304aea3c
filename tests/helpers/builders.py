from __future__ import annotations

import itertools
from collections.abc import Iterable

from clusterkit.plan import Block, Phase, Plan
from clusterkit.protocol.messages import (
    Mode,
    Offer,
    PortRange,
    TaskRequirement,
    TaskState,
    TaskStatus,
    Volume,
    VolumeRequirement,
)

_ids = itertools.count(1)

NODE_PORTS = (7000, 9042)


def node_requirement(*, volume_mb: float | None = 1024.0) -> TaskRequirement:
    return TaskRequirement(
        cpus=1.0,
        mem_mb=2048.0,
        disk_mb=0.0,
        ports=NODE_PORTS,
        volume=VolumeRequirement(size_mb=volume_mb) if volume_mb else None,
    )


def make_offer(
    *,
    agent: str = "agent-1",
    cpus: float = 4.0,
    mem_mb: float = 8192.0,
    disk_mb: float = 10240.0,
    ports: Iterable[tuple[int, int]] = ((7000, 7001), (9042, 9042)),
    volumes: Iterable[Volume] = (),
    offer_id: str | None = None,
) -> Offer:
    return Offer(
        id=offer_id or f"offer-{next(_ids)}",
        agent_id=agent,
        hostname=f"{agent}.example",
        cpus=cpus,
        mem_mb=mem_mb,
        disk_mb=disk_mb,
        ports=tuple(PortRange(begin=b, end=e) for b, e in ports),
        volumes=tuple(volumes),
    )


def small_offer(*, agent: str = "agent-9", offer_id: str | None = None) -> Offer:
    """Too small for a node, large enough for a repair task."""
    return make_offer(agent=agent, cpus=0.5, mem_mb=256.0, disk_mb=0.0, ports=(), offer_id=offer_id)


def make_block(node_id: str, *, requirement: TaskRequirement | None = None) -> Block:
    return Block(block_id=f"block-{node_id}", node_id=node_id, requirement=requirement or node_requirement())


def two_by_two_plan() -> Plan:
    return Plan(
        name="deploy",
        phases=[
            Phase(name="seeds", blocks=[make_block("node-1"), make_block("node-2")]),
            Phase(name="nodes", blocks=[make_block("node-3"), make_block("node-4")]),
        ],
    )


def running(task_id: str, mode: Mode, *, node_id: str | None = None) -> TaskStatus:
    return TaskStatus(task_id=task_id, state=TaskState.running, mode=mode, node_id=node_id)


def terminal(task_id: str, state: TaskState = TaskState.failed, *, node_id: str | None = None) -> TaskStatus:
    return TaskStatus(task_id=task_id, state=state, node_id=node_id)


class StaticPlanFactory:
    def __init__(self, plan: Plan) -> None:
        self.plan = plan
        self.builds = 0

    async def build(self, registry) -> Plan:
        self.builds += 1
        return self.plan
