# SPDX-License-Identifier: Apache-2.0
from .driver import ExecutorDriver, SchedulerDriver

__all__ = ["ExecutorDriver", "SchedulerDriver"]
