# SPDX-License-Identifier: Apache-2.0
from .admin import AdminTaskRunner
from .channel import StatusChannel
from .daemon import KeyspaceOutcome, NodeDaemon
from .executor import CommandBuilder, LaunchCommand, NodeExecutor, default_probe_factory
from .monitor import NodeLifecycleMonitor
from .probe import CommandResult, HealthProbe, NodetoolProbe, classify_failure, repair_arguments, run_command
from .supervisor import LifecycleHooks, ProcessSupervisor

__all__ = [
    "AdminTaskRunner",
    "CommandBuilder",
    "CommandResult",
    "HealthProbe",
    "KeyspaceOutcome",
    "LaunchCommand",
    "LifecycleHooks",
    "NodeDaemon",
    "NodeExecutor",
    "NodeLifecycleMonitor",
    "NodetoolProbe",
    "ProcessSupervisor",
    "StatusChannel",
    "classify_failure",
    "default_probe_factory",
    "repair_arguments",
    "run_command",
]
