# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
PlanManager: owns the active Plan and answers "which Block is next".

Blocks are visited in phase order. A later phase's blocks are never returned
while an earlier phase has incomplete blocks. Within a phase the injected
strategy decides how many blocks may be InProgress at once.

Only the scheduling pipeline and the status router (serialized by the
coordinator) call into this class.
"""

import logging

from ..core.log import get_logger
from ..protocol.messages import TaskStatus
from .model import Block, Phase, Plan
from .strategy import PhaseStrategy, SerialStrategy


class PlanManager:
    def __init__(
        self,
        plan: Plan,
        *,
        strategy: PhaseStrategy | None = None,
        logger: logging.LoggerAdapter | None = None,
    ) -> None:
        self.plan = plan
        self.strategy = strategy or SerialStrategy()
        self.log = logger or get_logger("plan")
        self._interrupted = False

    # ---- queries -------------------------------------------------------------

    def current_phase(self) -> Phase | None:
        for phase in self.plan.phases:
            if not phase.is_complete:
                return phase
        return None

    def current_block(self) -> Block | None:
        """First eligible non-complete block of the first incomplete phase; None if finished or interrupted."""
        if self._interrupted:
            return None
        phase = self.current_phase()
        if phase is None:
            return None
        return self.strategy.select(phase)

    def is_complete(self) -> bool:
        return self.plan.is_complete

    def has_in_progress(self) -> bool:
        return any(b.is_in_progress for b in self.plan.blocks())

    # ---- controls ------------------------------------------------------------

    @property
    def interrupted(self) -> bool:
        return self._interrupted

    def interrupt(self) -> None:
        """Pause plan progress; in-flight blocks keep receiving status updates."""
        if not self._interrupted:
            self._interrupted = True
            self.log.info("plan interrupted", event="plan.interrupted", plan=self.plan.name)

    def proceed(self) -> None:
        if self._interrupted:
            self._interrupted = False
            self.log.info("plan resumed", event="plan.resumed", plan=self.plan.name)

    # ---- status --------------------------------------------------------------

    def on_status(self, status: TaskStatus) -> Block | None:
        """
        Route a status update to the block bound to the reporting task.
        Returns the block when its status changed, otherwise None.
        """
        block = self.plan.block_for_task(status.task_id)
        if block is None:
            return None
        before = block.status
        if not block.update(status):
            return None
        self.log.info(
            "block status changed",
            event="block.status",
            block_id=block.id,
            node_id=block.node_id,
            task_id=status.task_id,
            before=before.value,
            after=block.status.value,
        )
        if self.plan.is_complete:
            self.log.info("plan complete", event="plan.complete", plan=self.plan.name)
        return block
