# src/clusterkit/protocol/messages.py
from __future__ import annotations

"""
clusterkit protocol models
==========================

Typed views of what flows between the resource-offer platform, the scheduler
and the per-node executor: offers, task requirements, launch operations, task
statuses and node status snapshots.

Design principles:
- The platform owns the wire encoding; these models are the decoded form the
  scheduler and executor work with.
- Pydantic v2 models with `extra="forbid"` to fail fast on unknown fields.
- Offers, requirements and statuses are immutable (`frozen=True`).
- All timestamps are epoch milliseconds (UTC).
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# --------------------------------------------------------------------------- #
# Enums
# --------------------------------------------------------------------------- #


class Mode(str, Enum):
    """Operational mode self-reported by a database node."""

    STARTING = "STARTING"
    JOINING = "JOINING"
    NORMAL = "NORMAL"
    LEAVING = "LEAVING"
    DECOMMISSIONED = "DECOMMISSIONED"
    MOVING = "MOVING"
    DRAINING = "DRAINING"
    DRAINED = "DRAINED"
    UNKNOWN = "UNKNOWN"


class TaskState(str, Enum):
    """Task states as reported to/by the resource-offer platform."""

    staging = "staging"
    starting = "starting"
    running = "running"
    killing = "killing"
    finished = "finished"
    failed = "failed"
    killed = "killed"
    lost = "lost"
    error = "error"

    @property
    def terminal(self) -> bool:
        return self in _TERMINAL_STATES


_TERMINAL_STATES = frozenset(
    {TaskState.finished, TaskState.failed, TaskState.killed, TaskState.lost, TaskState.error}
)


class TaskKind(str, Enum):
    """What a launched task runs on the executor."""

    daemon = "daemon"
    repair = "repair"
    cleanup = "cleanup"
    compaction = "compaction"
    snapshot = "snapshot"
    upgrade_sstables = "upgrade_sstables"


class OperationKind(str, Enum):
    reserve = "reserve"
    create_volume = "create_volume"
    launch = "launch"


_FROZEN = ConfigDict(extra="forbid", frozen=True)

# --------------------------------------------------------------------------- #
# Offers
# --------------------------------------------------------------------------- #


class PortRange(BaseModel):
    model_config = _FROZEN

    begin: int = Field(ge=1, le=65535)
    end: int = Field(ge=1, le=65535)

    @model_validator(mode="after")
    def _ordered(self) -> PortRange:
        if self.end < self.begin:
            raise ValueError(f"port range end {self.end} < begin {self.begin}")
        return self

    def __contains__(self, port: int) -> bool:
        return self.begin <= port <= self.end


class Volume(BaseModel):
    """A reserved persistent volume advertised inside an offer."""

    model_config = _FROZEN

    persistence_id: str
    size_mb: float = Field(ge=0)
    container_path: str = "data"
    role: str = "*"


class Offer(BaseModel):
    """
    A bundle of resources on one agent, valid for a single scheduling pass.

    Fields:
        id: Unique offer identifier.
        agent_id: Agent (host) the resources live on.
        hostname: Agent hostname (diagnostics and placement).
        cpus/mem_mb/disk_mb: Scalar resources usable by this framework (unreserved or reserved to its role).
        ports: Offered port ranges.
        volumes: Persistent volumes reserved for this framework on the agent.
    """

    model_config = _FROZEN

    id: str
    agent_id: str
    hostname: str = ""
    cpus: float = Field(default=0.0, ge=0)
    mem_mb: float = Field(default=0.0, ge=0)
    disk_mb: float = Field(default=0.0, ge=0)
    ports: tuple[PortRange, ...] = ()
    volumes: tuple[Volume, ...] = ()
    attributes: dict[str, str] = Field(default_factory=dict)

    def has_port(self, port: int) -> bool:
        return any(port in r for r in self.ports)

    def volume(self, persistence_id: str) -> Volume | None:
        for v in self.volumes:
            if v.persistence_id == persistence_id:
                return v
        return None


# --------------------------------------------------------------------------- #
# Requirements and tasks
# --------------------------------------------------------------------------- #


class VolumeRequirement(BaseModel):
    model_config = _FROZEN

    size_mb: float = Field(gt=0)
    container_path: str = "data"


class TaskRequirement(BaseModel):
    """Resource shape a Block needs. Immutable once the Block exists."""

    model_config = _FROZEN

    cpus: float = Field(ge=0)
    mem_mb: float = Field(ge=0)
    disk_mb: float = Field(default=0.0, ge=0)
    ports: tuple[int, ...] = ()
    volume: VolumeRequirement | None = None
    role: str = "*"

    @field_validator("ports")
    @classmethod
    def _valid_ports(cls, v: tuple[int, ...]) -> tuple[int, ...]:
        for p in v:
            if not (0 < p < 65536):
                raise ValueError(f"invalid port {p}")
        if len(set(v)) != len(v):
            raise ValueError("duplicate ports in requirement")
        return v


class TaskInfo(BaseModel):
    """A task the scheduler launches on an agent."""

    model_config = ConfigDict(extra="forbid")

    task_id: str
    name: str
    kind: TaskKind
    node_id: str
    agent_id: str
    hostname: str = ""
    cpus: float = 0.0
    mem_mb: float = 0.0
    disk_mb: float = 0.0
    ports: tuple[int, ...] = ()
    persistence_id: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)


class Operation(BaseModel):
    """One accept-offer operation: reserve resources, create a volume or launch a task."""

    model_config = _FROZEN

    kind: OperationKind
    agent_id: str
    cpus: float = 0.0
    mem_mb: float = 0.0
    disk_mb: float = 0.0
    volume: Volume | None = None
    task: TaskInfo | None = None


# --------------------------------------------------------------------------- #
# Statuses
# --------------------------------------------------------------------------- #


class TaskStatus(BaseModel):
    """
    Status update for a task.

    Fields:
        task_id: Task the update is about.
        state: Platform-level task state.
        node_id: Logical node slot, when the reporter knows it.
        mode: Node operational mode (daemon tasks only).
        message: Human-readable message.
        ts_ms: Emission timestamp (epoch ms).
        source: "executor" | "agent" | "master".
        reason: Optional platform reason code.
    """

    model_config = _FROZEN

    task_id: str
    state: TaskState
    node_id: str | None = None
    mode: Mode | None = None
    message: str = ""
    ts_ms: int = 0
    source: str = "executor"
    reason: str | None = None


class NodeStatus(BaseModel):
    """Snapshot emitted once per observed Mode transition of a node."""

    model_config = _FROZEN

    node_id: str
    task_id: str
    mode: Mode
    state: TaskState = TaskState.running
    ts_ms: int
    message: str = ""

    def to_task_status(self) -> TaskStatus:
        return TaskStatus(
            task_id=self.task_id,
            state=self.state,
            node_id=self.node_id,
            mode=self.mode,
            message=self.message,
            ts_ms=self.ts_ms,
            source="executor",
        )


class DaemonStatus(BaseModel):
    """Vital statistics of a running node, read through the admin channel."""

    model_config = _FROZEN

    mode: Mode
    joined: bool
    gossip_running: bool
    native_transport_running: bool
    host_id: str
    endpoint: str
    token_count: int
    datacenter: str
    rack: str
    release_version: str


class MasterInfo(BaseModel):
    model_config = _FROZEN

    id: str
    hostname: str = ""
    port: int = 5050
