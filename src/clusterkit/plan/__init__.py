# SPDX-License-Identifier: Apache-2.0
from .manager import PlanManager
from .model import Block, BlockStatus, Phase, Plan
from .strategy import ParallelStrategy, PhaseStrategy, SerialStrategy, strategy_from_config

__all__ = [
    "Block",
    "BlockStatus",
    "ParallelStrategy",
    "Phase",
    "PhaseStrategy",
    "Plan",
    "PlanManager",
    "SerialStrategy",
    "strategy_from_config",
]
