# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
NodeLifecycleMonitor: polls a node's operational mode and reports transitions.

Per tick:
  - success: reset the retry counter; if the mode changed, store it and emit
    one NodeStatus (state=running).
  - ProbeUnavailable: bump the retry counter; at the ceiling switch to UNKNOWN,
    emit a killing status and reset the counter. The killing status is
    repeated on every ceiling hit while the node stays unreachable.
  - any other probe error: propagates out of `poll_once()`; the poll loop logs
    it and keeps going. No escalation.

Mode and the retry counter are owned by one instance and only changed under
`_lock`. The probe call itself runs outside the lock; results of a tick that
finishes after `stop()` are discarded.
"""

import asyncio
import logging
from collections.abc import Callable

from ..api.errors import CommandError, ProbeUnavailable
from ..core.log import get_logger
from ..core.time import Clock, SystemClock
from ..observability.metrics import ExecutorMetrics
from ..protocol.messages import Mode, NodeStatus, TaskState
from .probe import HealthProbe

StatusSink = Callable[[NodeStatus], None]


class NodeLifecycleMonitor:
    def __init__(
        self,
        *,
        node_id: str,
        task_id: str,
        probe: HealthProbe,
        sink: StatusSink,
        max_retries: int = 10,
        interval_ms: int = 1000,
        initial_delay_ms: int = 1000,
        clock: Clock | None = None,
        metrics: ExecutorMetrics | None = None,
        logger: logging.LoggerAdapter | None = None,
    ) -> None:
        if max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        self.node_id = node_id
        self.task_id = task_id
        self.probe = probe
        self.max_retries = int(max_retries)
        self.interval_ms = int(interval_ms)
        self.initial_delay_ms = int(initial_delay_ms)
        self.clock = clock or SystemClock()
        self.metrics = metrics
        self.log = logger or get_logger("executor.monitor")
        self._sink = sink

        self._lock = asyncio.Lock()
        self._mode = Mode.STARTING
        self._retries = 0
        self._closed = False
        self._task: asyncio.Task | None = None

    # ---- state ---------------------------------------------------------------

    @property
    def mode(self) -> Mode:
        return self._mode

    @property
    def retries(self) -> int:
        return self._retries

    @property
    def closed(self) -> bool:
        return self._closed

    async def snapshot(self) -> tuple[Mode, int]:
        async with self._lock:
            return self._mode, self._retries

    # ---- lifecycle -----------------------------------------------------------

    async def start(self) -> None:
        if self._task is None and not self._closed:
            self._task = asyncio.create_task(self._loop(), name=f"mode-monitor:{self.node_id}")

    async def stop(self) -> None:
        """No status is emitted once this returns."""
        async with self._lock:
            self._closed = True
        t, self._task = self._task, None
        if t is not None and t is not asyncio.current_task():
            t.cancel()
            try:
                await t
            except asyncio.CancelledError:
                pass
        self.log.debug("monitor stopped", event="monitor.stopped", node_id=self.node_id, mode=self._mode.value)

    async def _loop(self) -> None:
        await self.clock.sleep_ms(self.initial_delay_ms)
        while not self._closed:
            try:
                await self.poll_once()
            except CommandError as e:
                self.log.error(
                    "mode probe failed",
                    event="monitor.probe.failed",
                    node_id=self.node_id,
                    error=type(e).__name__,
                    exc_info=e,
                )
            await self.clock.sleep_ms(self.interval_ms)

    # ---- one tick ------------------------------------------------------------

    async def poll_once(self) -> NodeStatus | None:
        """Run one probe tick. Returns the emitted status, if any."""
        if self._closed:
            return None
        try:
            current = await self.probe.operation_mode()
        except ProbeUnavailable as e:
            return await self._on_unavailable(e)
        except CommandError as e:
            if self.metrics is not None:
                self.metrics.probe_failures_total.labels(kind=type(e).__name__).inc()
            raise

        async with self._lock:
            if self._closed:
                return None
            self._retries = 0
            if current == self._mode:
                return None
            previous, self._mode = self._mode, current
            status = self._emit(current, TaskState.running, f"Node mode is {current.value}")
        if self.metrics is not None:
            self.metrics.mode_transitions_total.labels(mode=current.value).inc()
        self.log.info(
            "node mode changed",
            event="monitor.mode.changed",
            node_id=self.node_id,
            task_id=self.task_id,
            before=previous.value,
            after=current.value,
        )
        return status

    async def _on_unavailable(self, err: ProbeUnavailable) -> NodeStatus | None:
        async with self._lock:
            if self._closed:
                return None
            self._retries += 1
            attempt = self._retries
            if self.metrics is not None:
                self.metrics.probe_failures_total.labels(kind="unavailable").inc()
            if attempt < self.max_retries:
                self.log.warning(
                    "mode probe unavailable",
                    event="monitor.probe.unavailable",
                    node_id=self.node_id,
                    attempt=attempt,
                    max_retries=self.max_retries,
                    error=str(err),
                )
                return None
            self._retries = 0
            # re-sent on every ceiling hit, even when already UNKNOWN
            previous, self._mode = self._mode, Mode.UNKNOWN
            status = self._emit(
                Mode.UNKNOWN,
                TaskState.killing,
                f"Mode probe unreachable after {attempt} attempts; node should be killed",
            )
        if self.metrics is not None:
            self.metrics.escalations_total.inc()
        self.log.error(
            "mode probe retry ceiling reached",
            event="monitor.escalated",
            node_id=self.node_id,
            task_id=self.task_id,
            attempts=attempt,
            before=previous.value,
        )
        return status

    def _emit(self, mode: Mode, state: TaskState, message: str) -> NodeStatus:
        # called under _lock so emission order matches transition order
        status = NodeStatus(
            node_id=self.node_id,
            task_id=self.task_id,
            mode=mode,
            state=state,
            ts_ms=self.clock.now_ms(),
            message=message,
        )
        self._sink(status)
        return status
