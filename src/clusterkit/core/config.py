from __future__ import annotations

"""
clusterkit.core.config
======================

Strongly-typed configurations for the scheduler and the executor.
- Optional JSON file loading, then env overrides, then explicit overrides.
- Derives millisecond fields from seconds to avoid repeated conversions.

If a config file path is not provided or not found, sane defaults are used.
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .types import DEFAULT_SYSTEM_KEYSPACES

_STRATEGIES = ("serial", "parallel")


def _parse_csv_env(name: str) -> list[str]:
    val = os.getenv(name)
    if not val:
        return []
    return [s.strip() for s in val.split(",") if s.strip()]


def _try_load_json(path: Path | None) -> dict[str, Any]:
    if not path or not path.exists():
        return {}
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"config file {path} must contain a JSON object")
    return data


def _env_number(data: dict[str, Any], key: str, env: str, cast: type) -> None:
    raw = os.getenv(env)
    if raw:
        data[key] = cast(raw)


# ---------------------------------------------------------------------------


@dataclass
class SchedulerConfig:
    """Scheduler-side configuration (plan strategy, repair policy, framework identity)."""

    # ---- Framework
    framework_name: str = "clusterkit"
    role: str = "*"
    principal: str | None = None
    failover_timeout_sec: float = 7 * 24 * 3600.0

    # ---- Plan
    phase_strategy: str = "serial"
    max_parallel_blocks: int = 1

    # ---- Repair
    repair_enabled: bool = True
    repair_interval_sec: float = 7 * 24 * 3600.0
    max_concurrent_repairs: int = 1
    repair_cpus: float = 0.1
    repair_mem_mb: float = 32.0

    # ---- Observability
    metrics_port: int = 9100

    # ---- Derived (ms)
    repair_interval_ms: int = 0
    failover_timeout_ms: int = 0

    def __post_init__(self) -> None:
        if not self.framework_name:
            raise ValueError("framework_name must be a non-empty string")
        if self.phase_strategy not in _STRATEGIES:
            raise ValueError(f"phase_strategy must be one of {_STRATEGIES}, got {self.phase_strategy!r}")
        if self.max_parallel_blocks < 1:
            raise ValueError("max_parallel_blocks must be >= 1")
        if self.max_concurrent_repairs < 0:
            raise ValueError("max_concurrent_repairs must be non-negative")
        if self.repair_interval_sec <= 0:
            raise ValueError("repair_interval_sec must be positive")
        self.repair_interval_ms = int(self.repair_interval_sec * 1000)
        self.failover_timeout_ms = int(self.failover_timeout_sec * 1000)

    @classmethod
    def load(cls, path: Path | str | None = None, *, overrides: dict[str, Any] | None = None) -> SchedulerConfig:
        """
        Load config from JSON file (if provided), then apply env and overrides.

        Env overrides:
          - CLUSTERKIT_FRAMEWORK_NAME
          - CLUSTERKIT_PHASE_STRATEGY
          - CLUSTERKIT_REPAIR_INTERVAL_SEC
        """
        data: dict[str, Any] = {}
        data.update(_try_load_json(Path(path) if path else None))

        if os.getenv("CLUSTERKIT_FRAMEWORK_NAME"):
            data["framework_name"] = os.environ["CLUSTERKIT_FRAMEWORK_NAME"]
        if os.getenv("CLUSTERKIT_PHASE_STRATEGY"):
            data["phase_strategy"] = os.environ["CLUSTERKIT_PHASE_STRATEGY"].lower()
        _env_number(data, "repair_interval_sec", "CLUSTERKIT_REPAIR_INTERVAL_SEC", float)

        if overrides:
            data.update(overrides)
        return cls(**data)


# ---------------------------------------------------------------------------


@dataclass
class ExecutorConfig:
    """Executor-side configuration: mode polling, probe channel and stop behaviour."""

    # ---- Mode monitor
    mode_poll_interval_sec: float = 1.0
    mode_poll_initial_delay_sec: float = 1.0
    max_probe_retries: int = 10

    # ---- Admin channel (instance-scoped, one per node)
    nodetool_path: str = "nodetool"
    jmx_host: str = "127.0.0.1"
    jmx_port: int = 7199
    probe_timeout_sec: float = 30.0
    command_timeout_sec: float = 6 * 3600.0

    # ---- Process
    stop_grace_sec: float = 30.0
    drain_timeout_sec: float = 120.0

    system_keyspaces: list[str] = field(default_factory=lambda: list(DEFAULT_SYSTEM_KEYSPACES))

    # ---- Derived (ms)
    mode_poll_interval_ms: int = 0
    mode_poll_initial_delay_ms: int = 0
    stop_grace_ms: int = 0

    def __post_init__(self) -> None:
        if self.mode_poll_interval_sec <= 0:
            raise ValueError("mode_poll_interval_sec must be positive")
        if self.max_probe_retries < 1:
            raise ValueError("max_probe_retries must be >= 1")
        if not (0 < int(self.jmx_port) < 65536):
            raise ValueError("jmx_port must be a valid TCP port")
        if not self.nodetool_path:
            raise ValueError("nodetool_path must be a non-empty string")
        self.mode_poll_interval_ms = int(self.mode_poll_interval_sec * 1000)
        self.mode_poll_initial_delay_ms = int(self.mode_poll_initial_delay_sec * 1000)
        self.stop_grace_ms = int(self.stop_grace_sec * 1000)

    @classmethod
    def load(cls, path: Path | str | None = None, *, overrides: dict[str, Any] | None = None) -> ExecutorConfig:
        """
        Load config from JSON file (if provided), then apply env and overrides.

        Env overrides:
          - CLUSTERKIT_NODETOOL
          - CLUSTERKIT_JMX_PORT
          - CLUSTERKIT_MAX_PROBE_RETRIES
          - CLUSTERKIT_SYSTEM_KEYSPACES (comma-separated)
        """
        data: dict[str, Any] = {}
        data.update(_try_load_json(Path(path) if path else None))

        if os.getenv("CLUSTERKIT_NODETOOL"):
            data["nodetool_path"] = os.environ["CLUSTERKIT_NODETOOL"]
        _env_number(data, "jmx_port", "CLUSTERKIT_JMX_PORT", int)
        _env_number(data, "max_probe_retries", "CLUSTERKIT_MAX_PROBE_RETRIES", int)
        keyspaces = _parse_csv_env("CLUSTERKIT_SYSTEM_KEYSPACES")
        if keyspaces:
            data["system_keyspaces"] = keyspaces

        if overrides:
            data.update(overrides)
        return cls(**data)
