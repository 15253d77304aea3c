# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
ProcessSupervisor: owns exactly one OS process.

Node-specific behaviour is supplied as hooks, not subclassing:
  - pre_stop hooks run before SIGTERM (drain); failures are logged and the stop
    continues.
  - post_exit hooks run once the process exited, whatever the cause.

A started stop sequence always runs to completion, even if the caller that
requested it is cancelled.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field

from ..core.log import get_logger, swallow

PreStopHook = Callable[[], Awaitable[None]]
ExitHook = Callable[[int], Awaitable[None]]


@dataclass
class LifecycleHooks:
    pre_stop: list[PreStopHook] = field(default_factory=list)
    post_exit: list[ExitHook] = field(default_factory=list)


class ProcessSupervisor:
    def __init__(
        self,
        *,
        argv: Sequence[str],
        env: Mapping[str, str] | None = None,
        cwd: str | None = None,
        hooks: LifecycleHooks | None = None,
        stop_grace_ms: int = 30_000,
        pre_stop_timeout_ms: int = 120_000,
        logger: logging.LoggerAdapter | None = None,
    ) -> None:
        if not argv:
            raise ValueError("argv must not be empty")
        self.argv = list(argv)
        self.env = dict(env) if env is not None else None
        self.cwd = cwd
        self.hooks = hooks or LifecycleHooks()
        self.stop_grace_ms = int(stop_grace_ms)
        self.pre_stop_timeout_ms = int(pre_stop_timeout_ms)
        self.log = logger or get_logger("executor.supervisor")

        self._proc: asyncio.subprocess.Process | None = None
        self._watcher: asyncio.Task | None = None
        self._stop_task: asyncio.Task | None = None
        self._exited = asyncio.Event()

    # ---- state ---------------------------------------------------------------

    @property
    def pid(self) -> int | None:
        return self._proc.pid if self._proc is not None else None

    @property
    def returncode(self) -> int | None:
        return self._proc.returncode if self._proc is not None else None

    @property
    def running(self) -> bool:
        return self._proc is not None and self._proc.returncode is None

    @property
    def stopping(self) -> bool:
        return self._stop_task is not None

    # ---- lifecycle -----------------------------------------------------------

    async def start(self) -> None:
        """Spawn the process. OSError (missing binary, bad cwd) propagates to the caller."""
        if self._proc is not None:
            raise RuntimeError("process already started")
        self._proc = await asyncio.create_subprocess_exec(*self.argv, env=self.env, cwd=self.cwd)
        self._watcher = asyncio.create_task(self._watch(self._proc), name=f"process-watch:{self._proc.pid}")
        self.log.info("process started", event="process.started", pid=self._proc.pid, argv=self.argv[0])

    async def wait(self) -> int:
        """Wait until the process exited and every post-exit hook ran."""
        proc = self._proc
        if proc is None:
            raise RuntimeError("process not started")
        await self._exited.wait()
        return proc.returncode if proc.returncode is not None else await proc.wait()

    async def stop(self) -> int | None:
        if self._proc is None:
            return None
        if self._stop_task is None:
            self._stop_task = asyncio.create_task(
                self._stop_sequence(self._proc), name=f"process-stop:{self._proc.pid}"
            )
        return await asyncio.shield(self._stop_task)

    async def _stop_sequence(self, proc: asyncio.subprocess.Process) -> int | None:
        if proc.returncode is None:
            for hook in self.hooks.pre_stop:
                with swallow(logger=self.log, code="process.pre_stop", msg="pre-stop hook failed"):
                    await asyncio.wait_for(hook(), timeout=self.pre_stop_timeout_ms / 1000)
        if proc.returncode is None:
            self.log.info("terminating process", event="process.terminate", pid=proc.pid)
            proc.terminate()
            try:
                await asyncio.wait_for(proc.wait(), timeout=self.stop_grace_ms / 1000)
            except TimeoutError:
                self.log.warning("process ignored SIGTERM; killing", event="process.kill", pid=proc.pid)
                proc.kill()
                await proc.wait()
        await self._exited.wait()
        return proc.returncode

    async def _watch(self, proc: asyncio.subprocess.Process) -> None:
        rc = await proc.wait()
        self.log.info("process exited", event="process.exited", pid=proc.pid, returncode=rc, requested=self.stopping)
        try:
            for hook in self.hooks.post_exit:
                try:
                    await hook(rc)
                except Exception:
                    self.log.exception("post-exit hook failed", event="process.post_exit.failed", pid=proc.pid)
        finally:
            self._exited.set()
