from __future__ import annotations

try:
    from importlib.metadata import PackageNotFoundError
    from importlib.metadata import version as _pkg_version

    __version__ = _pkg_version("clusterkit")
except PackageNotFoundError:  # pragma: no cover
    # running from a source checkout without an install
    __version__ = "0.0.0"

from .core.config import ExecutorConfig, SchedulerConfig
from .executor.executor import NodeExecutor
from .scheduling.coordinator import SchedulingCoordinator

__all__ = [
    "ExecutorConfig",
    "NodeExecutor",
    "SchedulerConfig",
    "SchedulingCoordinator",
    "__version__",
]
