from .builders import (
    NODE_PORTS,
    StaticPlanFactory,
    make_block,
    make_offer,
    node_requirement,
    running,
    small_offer,
    terminal,
    two_by_two_plan,
)
from .drivers import Accept, RecordingExecutorDriver, RecordingSchedulerDriver, RefusingSchedulerDriver
from .probe import ScriptedProbe
from .stores import FailingIdentityStore, InMemoryIdentityStore, InMemoryTaskStore

__all__ = [
    "NODE_PORTS",
    "Accept",
    "FailingIdentityStore",
    "InMemoryIdentityStore",
    "InMemoryTaskStore",
    "RecordingExecutorDriver",
    "RecordingSchedulerDriver",
    "RefusingSchedulerDriver",
    "ScriptedProbe",
    "StaticPlanFactory",
    "make_block",
    "make_offer",
    "node_requirement",
    "running",
    "small_offer",
    "terminal",
    "two_by_two_plan",
]
