# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Low-cardinality Prometheus metrics for the scheduler and the executor.

Labels stay conservative (stage, state, mode, command, result) and never carry
offer/task/node ids. Each bundle binds to an explicit CollectorRegistry so
several coordinators or node executors can coexist in one process.
"""

from dataclasses import dataclass

from prometheus_client import CollectorRegistry, Counter, Gauge, start_http_server

from ..core.log import get_logger

__all__ = ["ExecutorMetrics", "MetricsService", "SchedulerMetrics"]

_log = get_logger("observability.metrics")


@dataclass
class SchedulerMetrics:
    registry: CollectorRegistry
    offers_received_total: Counter
    offers_accepted_total: Counter
    offers_declined_total: Counter
    offer_stage_failures_total: Counter
    status_updates_total: Counter
    blocks_completed_total: Counter
    repairs_launched_total: Counter
    blocks_in_progress: Gauge

    @classmethod
    def create(cls, registry: CollectorRegistry | None = None) -> SchedulerMetrics:
        reg = registry if registry is not None else CollectorRegistry()
        return cls(
            registry=reg,
            offers_received_total=Counter(
                "clusterkit_offers_received_total", "Offers received from the platform", registry=reg
            ),
            offers_accepted_total=Counter(
                "clusterkit_offers_accepted_total", "Offers accepted per pipeline stage", ["stage"], registry=reg
            ),
            offers_declined_total=Counter(
                "clusterkit_offers_declined_total", "Offers declined at the end of a pass", registry=reg
            ),
            offer_stage_failures_total=Counter(
                "clusterkit_offer_stage_failures_total", "Pipeline stages that raised", ["stage"], registry=reg
            ),
            status_updates_total=Counter(
                "clusterkit_status_updates_total", "Task status updates received", ["state"], registry=reg
            ),
            blocks_completed_total=Counter(
                "clusterkit_blocks_completed_total", "Plan blocks that reached Complete", registry=reg
            ),
            repairs_launched_total=Counter(
                "clusterkit_repairs_launched_total", "Repair tasks launched opportunistically", registry=reg
            ),
            blocks_in_progress=Gauge("clusterkit_blocks_in_progress", "Plan blocks InProgress", registry=reg),
        )


@dataclass
class ExecutorMetrics:
    registry: CollectorRegistry
    probe_failures_total: Counter
    mode_transitions_total: Counter
    escalations_total: Counter
    admin_commands_total: Counter

    @classmethod
    def create(cls, registry: CollectorRegistry | None = None) -> ExecutorMetrics:
        reg = registry if registry is not None else CollectorRegistry()
        return cls(
            registry=reg,
            probe_failures_total=Counter(
                "clusterkit_probe_failures_total", "Health probe failures", ["kind"], registry=reg
            ),
            mode_transitions_total=Counter(
                "clusterkit_mode_transitions_total", "Observed node mode transitions", ["mode"], registry=reg
            ),
            escalations_total=Counter(
                "clusterkit_probe_escalations_total", "Retry ceiling reached; kill requested", registry=reg
            ),
            admin_commands_total=Counter(
                "clusterkit_admin_commands_total", "Administrative commands", ["command", "result"], registry=reg
            ),
        )


class MetricsService:
    """
    Minimal Prometheus exposition server for one registry.

    Requires prometheus_client >= 0.20, where `start_http_server()` returns the
    (server, thread) pair used by `stop()`.
    """

    def __init__(self, *, registry: CollectorRegistry, address: str = "0.0.0.0", port: int = 9100) -> None:
        self.registry = registry
        self.address = address
        self.port = int(port)
        self._server = None

    def start(self) -> None:
        if self._server is not None:
            return
        self._server = start_http_server(self.port, addr=self.address, registry=self.registry)
        _log.info("metrics server started", event="metrics.started", address=self.address, port=self.port)

    def stop(self) -> None:
        if self._server is None:
            return
        server, _thread = self._server
        server.shutdown()
        self._server = None
        _log.info("metrics server stopped", event="metrics.stopped")
