# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
NodeDaemon: one database node process plus its admin surface.

Composition:
  - ProcessSupervisor runs the process; drain is its pre-stop hook.
  - NodeLifecycleMonitor polls the mode and publishes transitions on the
    StatusChannel.
  - HealthProbe carries every admin command.

Admin commands raise CommandError subclasses unchanged; nothing here retries.
"""

import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, TypeVar

from opentelemetry import trace as otel_trace

from ..api.errors import CommandError
from ..core.config import ExecutorConfig
from ..core.log import get_logger
from ..core.time import Clock, SystemClock
from ..observability.metrics import ExecutorMetrics
from ..protocol.messages import DaemonStatus, Mode, TaskInfo
from .channel import StatusChannel
from .monitor import NodeLifecycleMonitor
from .probe import HealthProbe
from .supervisor import ExitHook, LifecycleHooks, ProcessSupervisor

_T = TypeVar("_T")
_tracer = otel_trace.get_tracer("clusterkit")


@dataclass(frozen=True)
class KeyspaceOutcome:
    """Result of one keyspace in a keyspace-by-keyspace sweep."""

    keyspace: str
    error: CommandError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class NodeDaemon:
    def __init__(
        self,
        *,
        task: TaskInfo,
        argv: Sequence[str],
        probe: HealthProbe,
        channel: StatusChannel,
        cfg: ExecutorConfig | None = None,
        env: Mapping[str, str] | None = None,
        cwd: str | None = None,
        on_exit: ExitHook | None = None,
        clock: Clock | None = None,
        metrics: ExecutorMetrics | None = None,
        logger: logging.LoggerAdapter | None = None,
    ) -> None:
        self.task = task
        self.cfg = cfg or ExecutorConfig()
        self.probe = probe
        self.channel = channel
        self.metrics = metrics or ExecutorMetrics.create()
        self.log = logger or get_logger("executor.daemon")
        self._on_exit = on_exit
        self.system_keyspaces = frozenset(self.cfg.system_keyspaces)

        self.supervisor = ProcessSupervisor(
            argv=argv,
            env=env,
            cwd=cwd,
            hooks=LifecycleHooks(pre_stop=[self.drain], post_exit=[self._process_exited]),
            stop_grace_ms=self.cfg.stop_grace_ms,
            pre_stop_timeout_ms=int(self.cfg.drain_timeout_sec * 1000),
        )
        self.monitor = NodeLifecycleMonitor(
            node_id=task.node_id,
            task_id=task.task_id,
            probe=probe,
            sink=lambda st: channel.publish(st.to_task_status()),
            max_retries=self.cfg.max_probe_retries,
            interval_ms=self.cfg.mode_poll_interval_ms,
            initial_delay_ms=self.cfg.mode_poll_initial_delay_ms,
            clock=clock or SystemClock(),
            metrics=self.metrics,
        )

    # ---- lifecycle -----------------------------------------------------------

    @property
    def mode(self) -> Mode:
        return self.monitor.mode

    @property
    def is_open(self) -> bool:
        return self.supervisor.running

    async def start(self) -> None:
        await self.supervisor.start()
        await self.monitor.start()

    async def stop(self) -> int | None:
        """Stop polling first, then drain and stop the process."""
        await self.monitor.stop()
        return await self.supervisor.stop()

    async def _process_exited(self, returncode: int) -> None:
        await self.monitor.stop()
        if self._on_exit is not None:
            await self._on_exit(returncode)

    # ---- admin surface -------------------------------------------------------

    async def _run(self, command: str, call: Callable[[], Awaitable[_T]], **fields: Any) -> _T:
        with _tracer.start_as_current_span(f"node.admin.{command}"):
            try:
                result = await call()
            except CommandError as e:
                self.metrics.admin_commands_total.labels(command=command, result=type(e).__name__).inc()
                self.log.warning(
                    "admin command failed",
                    event="admin.failed",
                    command=command,
                    node_id=self.task.node_id,
                    error=str(e),
                    **fields,
                )
                raise
        self.metrics.admin_commands_total.labels(command=command, result="ok").inc()
        self.log.info("admin command done", event="admin.done", command=command, node_id=self.task.node_id, **fields)
        return result

    async def status(self) -> DaemonStatus:
        return await self.probe.status()

    async def keyspaces(self) -> list[str]:
        return await self.probe.keyspaces()

    async def non_system_keyspaces(self) -> list[str]:
        return [ks for ks in await self.probe.keyspaces() if ks not in self.system_keyspaces]

    async def cleanup(self, keyspace: str, families: Sequence[str] = ()) -> None:
        await self._run(
            "cleanup",
            lambda: self.probe.force_keyspace_cleanup(keyspace, families),
            keyspace=keyspace,
            families=list(families),
        )

    async def compact(self, keyspace: str, families: Sequence[str] = ()) -> None:
        await self._run(
            "compaction",
            lambda: self.probe.force_keyspace_compaction(keyspace, families),
            keyspace=keyspace,
            families=list(families),
        )

    async def cleanup_all(self) -> AsyncIterator[KeyspaceOutcome]:
        """Clean every non-system keyspace in turn; stop iterating to stop the sweep."""
        async for outcome in self._sweep(self.cleanup):
            yield outcome

    async def compact_all(self) -> AsyncIterator[KeyspaceOutcome]:
        async for outcome in self._sweep(self.compact):
            yield outcome

    async def _sweep(self, op: Callable[[str], Awaitable[None]]) -> AsyncIterator[KeyspaceOutcome]:
        for keyspace in await self.non_system_keyspaces():
            try:
                await op(keyspace)
            except CommandError as e:
                yield KeyspaceOutcome(keyspace=keyspace, error=e)
            else:
                yield KeyspaceOutcome(keyspace=keyspace)

    async def repair(self, keyspace: str, options: Mapping[str, str] | None = None) -> str:
        return await self._run("repair", lambda: self.probe.repair(keyspace, options), keyspace=keyspace)

    async def take_snapshot(self, name: str, keyspace: str) -> None:
        await self._run("snapshot", lambda: self.probe.take_snapshot(name, [keyspace]), keyspace=keyspace, snapshot=name)

    async def clear_snapshot(self, name: str, *keyspaces: str) -> None:
        await self._run(
            "clear_snapshot", lambda: self.probe.clear_snapshot(name, keyspaces), keyspaces=list(keyspaces), snapshot=name
        )

    async def decommission(self) -> None:
        await self._run("decommission", self.probe.decommission)

    async def drain(self) -> None:
        await self._run("drain", self.probe.drain)

    async def assassinate(self, address: str) -> None:
        await self._run("assassinate", lambda: self.probe.assassinate_endpoint(address), address=address)

    async def upgrade_sstables(self, keyspace: str, families: Sequence[str] = ()) -> None:
        await self._run(
            "upgrade_sstables",
            lambda: self.probe.upgrade_sstables(keyspace, families, exclude_current_version=True, jobs=0),
            keyspace=keyspace,
            families=list(families),
        )
