# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Administrative channel into a running node.

`HealthProbe` is the narrow surface the monitor and NodeDaemon need.
`NodetoolProbe` implements it by running `nodetool` against the node's JMX
port (host/port are per instance, never shared between nodes).

Failures are classified here, from their origin:
    connection refused / JMX unreachable / probe deadline  → ProbeUnavailable
    unknown keyspace or table / illegal argument          → InvalidArgumentError
    process killed by a signal / command deadline         → CommandInterrupted
    any other non-zero exit, nodetool missing             → CommunicationError
    unexpected output                                     → ProbeError
"""

import asyncio
import re
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from ..api.errors import (
    CommandError,
    CommandInterrupted,
    CommunicationError,
    InvalidArgumentError,
    ProbeError,
    ProbeUnavailable,
)
from ..core.config import ExecutorConfig
from ..protocol.messages import DaemonStatus, Mode


@runtime_checkable
class HealthProbe(Protocol):
    async def operation_mode(self) -> Mode: ...
    async def status(self) -> DaemonStatus: ...
    async def keyspaces(self) -> list[str]: ...
    async def force_keyspace_cleanup(self, keyspace: str, families: Sequence[str] = ()) -> None: ...
    async def force_keyspace_compaction(self, keyspace: str, families: Sequence[str] = ()) -> None: ...
    async def take_snapshot(self, name: str, keyspaces: Sequence[str]) -> None: ...
    async def clear_snapshot(self, name: str, keyspaces: Sequence[str] = ()) -> None: ...
    async def repair(self, keyspace: str, options: Mapping[str, str] | None = None) -> str: ...
    async def decommission(self) -> None: ...
    async def drain(self) -> None: ...
    async def assassinate_endpoint(self, address: str) -> None: ...
    async def upgrade_sstables(
        self,
        keyspace: str,
        families: Sequence[str] = (),
        *,
        exclude_current_version: bool = True,
        jobs: int = 0,
    ) -> None: ...


# ---- subprocess runner ---------------------------------------------------------


@dataclass(frozen=True)
class CommandResult:
    returncode: int
    stdout: str
    stderr: str


CommandRunner = Callable[[Sequence[str], float | None], Awaitable[CommandResult]]


async def run_command(argv: Sequence[str], timeout: float | None) -> CommandResult:
    """Run argv to completion; the child is killed on timeout or cancellation."""
    proc = await asyncio.create_subprocess_exec(
        *argv,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        out, err = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except (TimeoutError, asyncio.CancelledError):
        if proc.returncode is None:
            proc.kill()
            await proc.wait()
        raise
    return CommandResult(
        returncode=proc.returncode if proc.returncode is not None else -1,
        stdout=out.decode("utf-8", errors="replace"),
        stderr=err.decode("utf-8", errors="replace"),
    )


# ---- classification ------------------------------------------------------------

_UNAVAILABLE = re.compile(
    r"Failed to connect|Connection refused|ConnectException|No route to host|"
    r"connect timed out|Connection timed out|JMX connection closed|NoSuchObjectException",
    re.IGNORECASE,
)
_INVALID = re.compile(
    r"Keyspace \S+ does not exist|Unknown keyspace|Unknown (?:table|column family)|"
    r"Table \S+ does not exist|IllegalArgumentException|Invalid keyspace",
    re.IGNORECASE,
)
_MODE_LINE = re.compile(r"^\s*Mode:\s*(\w+)", re.MULTILINE)
_KEYSPACE_LINE = re.compile(r"^\s*Keyspace\s*:\s*(\S+)", re.MULTILINE)
_INFO_LINE = re.compile(r"^\s*([A-Za-z][A-Za-z ()]*?)\s*:\s*(.*?)\s*$", re.MULTILINE)
_RELEASE = re.compile(r"ReleaseVersion:\s*(\S+)")


def classify_failure(
    result: CommandResult, *, command: str, keyspace: str | None = None, families: Sequence[str] = ()
) -> CommandError:
    """Map a failed nodetool run to the error class callers branch on."""
    ctx = {"command": command, "keyspace": keyspace, "families": families}
    text = f"{result.stderr}\n{result.stdout}".strip()
    detail = text.splitlines()[-1] if text else f"exit code {result.returncode}"
    if result.returncode < 0:
        return CommandInterrupted(f"{command} killed by signal {-result.returncode}", **ctx)
    if _UNAVAILABLE.search(text):
        return ProbeUnavailable(f"{command}: node unreachable: {detail}", **ctx)
    if _INVALID.search(text):
        return InvalidArgumentError(f"{command}: {detail}", **ctx)
    return CommunicationError(f"{command} failed (exit {result.returncode}): {detail}", **ctx)


def _flag(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes")


def _csv(value: str) -> list[str]:
    return [v.strip() for v in value.split(",") if v.strip()]


def repair_arguments(keyspace: str, options: Mapping[str, str]) -> list[str]:
    """Translate repair options (primaryRange, incremental, parallelism...) into nodetool flags."""
    args: list[str] = []
    families: list[str] = []
    for key, value in options.items():
        if key == "primaryRange":
            if _flag(value):
                args.append("-pr")
        elif key == "incremental":
            if not _flag(value):
                args.append("-full")
        elif key == "parallelism":
            mode = value.strip().lower()
            if mode == "sequential":
                args.append("-seq")
            elif mode == "dc_parallel":
                args.append("-dcpar")
            elif mode != "parallel":
                raise InvalidArgumentError(f"unknown repair parallelism {value!r}", command="repair", keyspace=keyspace)
        elif key == "dataCenters":
            for dc in _csv(value):
                args += ["-dc", dc]
        elif key == "hosts":
            for host in _csv(value):
                args += ["-hosts", host]
        elif key == "jobThreads":
            args += ["-j", str(int(value))]
        elif key == "startToken":
            args += ["-st", value]
        elif key == "endToken":
            args += ["-et", value]
        elif key == "columnFamilies":
            families = _csv(value)
        else:
            raise InvalidArgumentError(f"unknown repair option {key!r}", command="repair", keyspace=keyspace)
    return [*args, keyspace, *families]


class NodetoolProbe:
    """HealthProbe backed by the `nodetool` CLI."""

    def __init__(
        self,
        *,
        host: str = "127.0.0.1",
        port: int = 7199,
        nodetool_path: str = "nodetool",
        probe_timeout_sec: float = 30.0,
        command_timeout_sec: float | None = None,
        endpoint: str | None = None,
        runner: CommandRunner | None = None,
    ) -> None:
        self.host = host
        self.port = int(port)
        self.nodetool_path = nodetool_path
        self.probe_timeout_sec = probe_timeout_sec
        self.command_timeout_sec = command_timeout_sec
        self.endpoint = endpoint or host
        self._runner = runner or run_command

    @classmethod
    def from_config(cls, cfg: ExecutorConfig, *, endpoint: str | None = None) -> NodetoolProbe:
        return cls(
            host=cfg.jmx_host,
            port=cfg.jmx_port,
            nodetool_path=cfg.nodetool_path,
            probe_timeout_sec=cfg.probe_timeout_sec,
            command_timeout_sec=cfg.command_timeout_sec,
            endpoint=endpoint,
        )

    def argv(self, command: str, *args: str) -> list[str]:
        return [self.nodetool_path, "-h", self.host, "-p", str(self.port), command, *args]

    async def _call(
        self,
        command: str,
        *args: str,
        keyspace: str | None = None,
        families: Sequence[str] = (),
        probe: bool = False,
    ) -> str:
        ctx = {"command": command, "keyspace": keyspace, "families": families}
        timeout = self.probe_timeout_sec if probe else self.command_timeout_sec
        try:
            result = await self._runner(self.argv(command, *args), timeout)
        except TimeoutError as e:
            if probe:
                raise ProbeUnavailable(f"{command}: no answer within {timeout}s", **ctx) from e
            raise CommandInterrupted(f"{command}: deadline of {timeout}s exceeded", **ctx) from e
        except OSError as e:
            raise CommunicationError(f"{command}: cannot run {self.nodetool_path}: {e}", **ctx) from e
        if result.returncode != 0:
            raise classify_failure(result, command=command, keyspace=keyspace, families=families)
        return result.stdout

    # ---- queries -------------------------------------------------------------

    async def operation_mode(self) -> Mode:
        out = await self._call("netstats", probe=True)
        m = _MODE_LINE.search(out)
        if m is None:
            raise ProbeError("netstats output has no Mode line", command="netstats")
        try:
            return Mode(m.group(1).upper())
        except ValueError as e:
            raise ProbeError(f"unknown operation mode {m.group(1)!r}", command="netstats") from e

    async def keyspaces(self) -> list[str]:
        out = await self._call("tablestats", probe=True)
        return list(dict.fromkeys(_KEYSPACE_LINE.findall(out)))

    async def status(self) -> DaemonStatus:
        mode = await self.operation_mode()
        info_out = await self._call("info", "-T", probe=True)
        version_out = await self._call("version", probe=True)
        info: dict[str, str] = {}
        tokens = 0
        for key, value in _INFO_LINE.findall(info_out):
            if key == "Token":
                tokens += 1
            else:
                info.setdefault(key, value)
        release = _RELEASE.search(version_out)
        return DaemonStatus(
            mode=mode,
            # nodetool has no "joined" flag; a node that reached the ring reports one of these modes
            joined=mode in (Mode.NORMAL, Mode.LEAVING, Mode.MOVING, Mode.DRAINING, Mode.DRAINED),
            gossip_running=_flag(info.get("Gossip active", "false")),
            native_transport_running=_flag(info.get("Native Transport active", "false")),
            host_id=info.get("ID", ""),
            endpoint=self.endpoint,
            token_count=tokens,
            datacenter=info.get("Data Center", ""),
            rack=info.get("Rack", ""),
            release_version=release.group(1) if release else "",
        )

    # ---- commands ------------------------------------------------------------

    async def force_keyspace_cleanup(self, keyspace: str, families: Sequence[str] = ()) -> None:
        await self._call("cleanup", "-j", "0", keyspace, *families, keyspace=keyspace, families=families)

    async def force_keyspace_compaction(self, keyspace: str, families: Sequence[str] = ()) -> None:
        await self._call("compact", keyspace, *families, keyspace=keyspace, families=families)

    async def take_snapshot(self, name: str, keyspaces: Sequence[str]) -> None:
        await self._call("snapshot", "-t", name, *keyspaces, keyspace=",".join(keyspaces) or None)

    async def clear_snapshot(self, name: str, keyspaces: Sequence[str] = ()) -> None:
        await self._call("clearsnapshot", "-t", name, *keyspaces, keyspace=",".join(keyspaces) or None)

    async def repair(self, keyspace: str, options: Mapping[str, str] | None = None) -> str:
        opts = dict(options or {})
        families = _csv(opts.get("columnFamilies", ""))
        return await self._call("repair", *repair_arguments(keyspace, opts), keyspace=keyspace, families=families)

    async def decommission(self) -> None:
        await self._call("decommission")

    async def drain(self) -> None:
        await self._call("drain")

    async def assassinate_endpoint(self, address: str) -> None:
        await self._call("assassinate", address)

    async def upgrade_sstables(
        self,
        keyspace: str,
        families: Sequence[str] = (),
        *,
        exclude_current_version: bool = True,
        jobs: int = 0,
    ) -> None:
        args = [] if exclude_current_version else ["-a"]
        args += ["-j", str(int(jobs)), keyspace, *families]
        await self._call("upgradesstables", *args, keyspace=keyspace, families=families)
