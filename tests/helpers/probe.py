from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from clusterkit.protocol.messages import DaemonStatus, Mode


class ScriptedProbe:
    """
    HealthProbe fake.

    `modes` is consumed one entry per operation_mode() call: a Mode is returned,
    an exception instance is raised. The last entry repeats once the script runs out.
    Admin commands are recorded in `calls`; `fail` maps a command name to the
    exception it raises.
    """

    def __init__(
        self,
        modes: Iterable[Any] = (Mode.NORMAL,),
        *,
        keyspaces: Sequence[str] = ("system", "system_schema", "app", "metrics"),
        fail: Mapping[str, Exception] | None = None,
        repair_output: str = "Repair completed successfully",
    ) -> None:
        self._modes = list(modes)
        self._keyspaces = list(keyspaces)
        self.fail = dict(fail or {})
        self.repair_output = repair_output
        self.calls: list[tuple[Any, ...]] = []
        self.mode_calls = 0

    async def operation_mode(self) -> Mode:
        self.mode_calls += 1
        item = self._modes.pop(0) if len(self._modes) > 1 else self._modes[0]
        if isinstance(item, Exception):
            raise item
        return item

    def _record(self, name: str, *args: Any) -> None:
        self.calls.append((name, *args))
        err = self.fail.get(name)
        if err is not None:
            raise err

    async def status(self) -> DaemonStatus:
        self._record("status")
        return DaemonStatus(
            mode=Mode.NORMAL,
            joined=True,
            gossip_running=True,
            native_transport_running=True,
            host_id="6b1c1bde-0000-4000-8000-000000000001",
            endpoint="10.0.0.1",
            token_count=256,
            datacenter="dc1",
            rack="rack1",
            release_version="3.11.4",
        )

    async def keyspaces(self) -> list[str]:
        self._record("keyspaces")
        return list(self._keyspaces)

    async def force_keyspace_cleanup(self, keyspace: str, families: Sequence[str] = ()) -> None:
        self._record("cleanup", keyspace, tuple(families))

    async def force_keyspace_compaction(self, keyspace: str, families: Sequence[str] = ()) -> None:
        self._record("compaction", keyspace, tuple(families))

    async def take_snapshot(self, name: str, keyspaces: Sequence[str]) -> None:
        self._record("snapshot", name, tuple(keyspaces))

    async def clear_snapshot(self, name: str, keyspaces: Sequence[str] = ()) -> None:
        self._record("clear_snapshot", name, tuple(keyspaces))

    async def repair(self, keyspace: str, options: Mapping[str, str] | None = None) -> str:
        self._record("repair", keyspace, dict(options or {}))
        return self.repair_output

    async def decommission(self) -> None:
        self._record("decommission")

    async def drain(self) -> None:
        self._record("drain")

    async def assassinate_endpoint(self, address: str) -> None:
        self._record("assassinate", address)

    async def upgrade_sstables(
        self,
        keyspace: str,
        families: Sequence[str] = (),
        *,
        exclude_current_version: bool = True,
        jobs: int = 0,
    ) -> None:
        self._record("upgrade_sstables", keyspace, tuple(families), exclude_current_version, jobs)
