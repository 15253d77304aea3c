# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
NodeExecutor: the executor's callback surface for the platform.

- launch_task(daemon task): build the command line (injected), start the
  NodeDaemon and report `running`. Any launch failure (command construction
  or process spawn) reports `failed`, aborts the executor driver and
  propagates.
- launch_task(admin task): hand it to the AdminTaskRunner.
- kill_task: stop the daemon (drain first) or cancel an admin task.
- Daemon process exit: report a terminal status, flush the status channel and
  stop the executor driver.
"""

import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Protocol

from ..core.config import ExecutorConfig
from ..core.log import bind_context, get_logger, swallow
from ..core.time import Clock, SystemClock
from ..observability.metrics import ExecutorMetrics
from ..protocol.messages import Mode, TaskInfo, TaskKind, TaskState, TaskStatus
from ..transport.driver import ExecutorDriver
from .admin import AdminTaskRunner
from .channel import StatusChannel
from .daemon import NodeDaemon
from .probe import HealthProbe, NodetoolProbe


@dataclass(frozen=True)
class LaunchCommand:
    argv: Sequence[str]
    env: Mapping[str, str] | None = None
    cwd: str | None = None


class CommandBuilder(Protocol):
    """Builds the node's command line from the task (config rendering lives outside clusterkit)."""

    def build(self, task: TaskInfo) -> LaunchCommand: ...


ProbeFactory = Callable[[TaskInfo, ExecutorConfig], HealthProbe]


def default_probe_factory(task: TaskInfo, cfg: ExecutorConfig) -> HealthProbe:
    return NodetoolProbe.from_config(cfg, endpoint=task.hostname or None)


class NodeExecutor:
    def __init__(
        self,
        *,
        driver: ExecutorDriver,
        command_builder: CommandBuilder,
        cfg: ExecutorConfig | None = None,
        probe_factory: ProbeFactory | None = None,
        clock: Clock | None = None,
        metrics: ExecutorMetrics | None = None,
        logger: logging.LoggerAdapter | None = None,
    ) -> None:
        self.driver = driver
        self.command_builder = command_builder
        self.cfg = cfg or ExecutorConfig.load()
        self.probe_factory = probe_factory or default_probe_factory
        self.clock: Clock = clock or SystemClock()
        self.metrics = metrics or ExecutorMetrics.create()
        self.log = logger or get_logger("executor")
        self.channel = StatusChannel(driver)
        self.admin = AdminTaskRunner(channel=self.channel, clock=self.clock)
        self.daemon: NodeDaemon | None = None
        self._shutting_down = False

    async def start(self) -> None:
        await self.channel.start()

    def _publish(
        self, task: TaskInfo, state: TaskState, message: str, *, mode: Mode | None = None, reason: str | None = None
    ) -> None:
        self.channel.publish(
            TaskStatus(
                task_id=task.task_id,
                state=state,
                node_id=task.node_id,
                mode=mode,
                message=message,
                ts_ms=self.clock.now_ms(),
                reason=reason,
            )
        )

    # ---- platform callbacks --------------------------------------------------

    async def launch_task(self, task: TaskInfo) -> None:
        bind_context(node_id=task.node_id)
        if task.kind is TaskKind.daemon:
            await self._launch_daemon(task)
            return
        if self.daemon is None or not self.daemon.is_open:
            self.log.warning("admin task without a running node", event="admin.task.rejected", task_id=task.task_id)
            self._publish(task, TaskState.failed, "node is not running", reason="daemon_not_running")
            return
        self.admin.submit(task, self.daemon)
        self.log.info("admin task accepted", event="admin.task.accepted", task_id=task.task_id, kind=task.kind.value)

    async def _launch_daemon(self, task: TaskInfo) -> None:
        if self.daemon is not None and self.daemon.is_open:
            self._publish(task, TaskState.failed, "a node is already running on this executor", reason="duplicate")
            return
        try:
            cmd = self.command_builder.build(task)
            daemon = NodeDaemon(
                task=task,
                argv=cmd.argv,
                env=cmd.env,
                cwd=cmd.cwd,
                probe=self.probe_factory(task, self.cfg),
                channel=self.channel,
                cfg=self.cfg,
                on_exit=self._daemon_exited,
                clock=self.clock,
                metrics=self.metrics,
            )
            # bound before start so an immediate exit still finds it
            self.daemon = daemon
            await daemon.start()
        except Exception as e:
            self.daemon = None
            self.log.error("node launch failed", event="daemon.launch.failed", task_id=task.task_id, exc_info=e)
            self._publish(task, TaskState.failed, f"launch failed: {e}", reason="launch_failed")
            await self.channel.close()
            await self.driver.abort()
            raise
        self._publish(task, TaskState.running, "node process started", mode=Mode.STARTING)
        self.log.info("node launched", event="daemon.launched", task_id=task.task_id, pid=daemon.supervisor.pid)

    async def kill_task(self, task_id: str) -> None:
        if self.daemon is not None and self.daemon.task.task_id == task_id:
            self.log.info("killing node", event="daemon.kill", task_id=task_id)
            await self.daemon.stop()
            return
        if await self.admin.cancel(task_id):
            self.log.info("admin task cancelled", event="admin.task.cancelled", task_id=task_id)
            return
        self.log.warning("kill for unknown task", event="task.kill.unknown", task_id=task_id)

    async def shutdown(self) -> None:
        self._shutting_down = True
        await self.admin.stop()
        if self.daemon is not None:
            await self.daemon.stop()
        await self.channel.close()

    async def _daemon_exited(self, returncode: int) -> None:
        daemon = self.daemon
        if daemon is None:
            return
        if daemon.supervisor.stopping:
            state, message = TaskState.killed, "node stopped"
        elif returncode == 0:
            state, message = TaskState.finished, "node exited"
        else:
            state, message = TaskState.failed, f"node exited with code {returncode}"
        self._publish(daemon.task, state, message, mode=daemon.mode)
        await self.admin.stop()
        await self.channel.close()
        with swallow(logger=self.log, code="driver.stop", msg="executor driver stop failed", level=logging.ERROR):
            await self.driver.stop()
        self.log.info(
            "executor terminating after node exit",
            event="executor.terminating",
            returncode=returncode,
            state=state.value,
            shutdown=self._shutting_down,
        )
