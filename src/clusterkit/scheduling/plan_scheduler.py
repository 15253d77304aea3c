# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
OfferScheduler: places the current plan Block onto offers.

At most one placement per call. The Block is started (bound to the new task)
only after the driver accepted the offers.
"""

import logging
from collections.abc import Sequence

from ..core.log import get_logger, warn_once
from ..plan.model import Block
from ..protocol.messages import Offer
from ..transport.driver import SchedulerDriver
from .offers import OfferAccepter, OfferEvaluator
from .registry import TaskRegistry


class OfferScheduler:
    def __init__(
        self,
        *,
        accepter: OfferAccepter,
        registry: TaskRegistry,
        evaluator: OfferEvaluator | None = None,
        logger: logging.LoggerAdapter | None = None,
    ) -> None:
        self.accepter = accepter
        self.registry = registry
        self.evaluator = evaluator or OfferEvaluator()
        self.log = logger or get_logger("scheduling.plan")

    async def resource_offers(
        self, driver: SchedulerDriver, offers: Sequence[Offer], block: Block | None
    ) -> list[str]:
        """Returns the accepted offer ids (empty when nothing was placed)."""
        if block is None or not block.is_pending or not offers:
            return []
        prior = await self.registry.get(block.node_id)
        avoid = await self.registry.occupied_agents(exclude_node=block.node_id)
        placement = self.evaluator.evaluate(
            offers=offers,
            requirement=block.requirement,
            node_id=block.node_id,
            kind=block.kind,
            prior=prior,
            avoid_agents=avoid,
            block_id=block.id,
        )
        if placement is None:
            self.log.debug(
                "no offer fits block",
                event="plan.offers.unmatched",
                block_id=block.id,
                node_id=block.node_id,
                offers=len(offers),
                reuse=bool(prior and prior.persistence_id),
            )
            if prior is not None and prior.persistence_id and block.requirement.volume is not None:
                warn_once(
                    self.log,
                    f"plan.volume.wait.{block.node_id}",
                    "waiting for the node's persistent volume to be offered again",
                    node_id=block.node_id,
                    agent_id=prior.agent_id,
                    persistence_id=prior.persistence_id,
                )
            return []
        ids = await self.accepter.accept(driver, placement)
        block.start(placement.task.task_id)
        self.log.info(
            "block launched",
            event="plan.block.launched",
            block_id=block.id,
            node_id=block.node_id,
            task_id=placement.task.task_id,
            agent_id=placement.agent_id,
            offer_ids=ids,
        )
        return ids
