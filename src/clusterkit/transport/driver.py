# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Driver protocols for the resource-offer platform.

The platform owns the wire protocol. The scheduler and the executor only need
the narrow set of calls below; concrete drivers (and in-memory fakes for tests)
must satisfy these protocols.
"""

from collections.abc import Sequence
from typing import Protocol, runtime_checkable

from ..protocol.messages import Operation, TaskStatus


@runtime_checkable
class SchedulerDriver(Protocol):
    """
    Calls a framework scheduler may issue to the platform.

    Notes:
        - The platform does not auto-decline offers; every offer not accepted
          in a pass must be declined explicitly.
        - `accept_offers` accepts several offers from the same agent at once.
    """

    async def accept_offers(self, offer_ids: Sequence[str], operations: Sequence[Operation]) -> None: ...
    async def decline_offer(self, offer_id: str) -> None: ...
    async def kill_task(self, task_id: str) -> None: ...
    async def abort(self) -> None: ...


@runtime_checkable
class ExecutorDriver(Protocol):
    """Calls an executor may issue to the platform (status upstream, lifecycle)."""

    async def send_status_update(self, status: TaskStatus) -> None: ...
    async def stop(self) -> None: ...
    async def abort(self) -> None: ...
