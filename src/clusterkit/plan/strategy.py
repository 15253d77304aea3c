# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Phase strategies: decide which Block of a phase is offered resources next.

- SerialStrategy: one in-flight block at a time, in declaration order
  (bounds blast radius during initial install).
- ParallelStrategy: up to `max_in_flight` blocks InProgress at once.

While a phase is saturated, the strategy returns an InProgress block so callers
can see which node is mid-deployment.
"""

from typing import Protocol

from ..core.config import SchedulerConfig
from .model import Block, Phase


class PhaseStrategy(Protocol):
    def select(self, phase: Phase) -> Block | None: ...


class SerialStrategy:
    def select(self, phase: Phase) -> Block | None:
        for b in phase.blocks:
            if not b.is_complete:
                return b
        return None


class ParallelStrategy:
    def __init__(self, max_in_flight: int) -> None:
        if max_in_flight < 1:
            raise ValueError("max_in_flight must be >= 1")
        self.max_in_flight = max_in_flight

    def select(self, phase: Phase) -> Block | None:
        running = phase.in_progress()
        if len(running) < self.max_in_flight:
            for b in phase.blocks:
                if b.is_pending:
                    return b
        return running[0] if running else None


def strategy_from_config(cfg: SchedulerConfig) -> PhaseStrategy:
    if cfg.phase_strategy == "parallel":
        return ParallelStrategy(cfg.max_parallel_blocks)
    return SerialStrategy()
