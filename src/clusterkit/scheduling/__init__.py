# SPDX-License-Identifier: Apache-2.0
from .coordinator import BackupManager, OfferPass, PlanFactory, SchedulingCoordinator
from .offers import (
    LogOperationRecorder,
    OfferAccepter,
    OfferEvaluator,
    OperationRecorder,
    PersistentOperationRecorder,
    Placement,
    new_task_id,
)
from .plan_scheduler import OfferScheduler
from .registry import TaskRegistry
from .repair import IntervalRepairPolicy, RepairPolicy, RepairScheduler
from .router import StatusRouter

__all__ = [
    "BackupManager",
    "IntervalRepairPolicy",
    "LogOperationRecorder",
    "OfferAccepter",
    "OfferEvaluator",
    "OfferPass",
    "OfferScheduler",
    "OperationRecorder",
    "PersistentOperationRecorder",
    "Placement",
    "PlanFactory",
    "RepairPolicy",
    "RepairScheduler",
    "SchedulingCoordinator",
    "StatusRouter",
    "TaskRegistry",
    "new_task_id",
]
