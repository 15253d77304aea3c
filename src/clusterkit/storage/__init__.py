# SPDX-License-Identifier: Apache-2.0
from .tasks import IdentityStore, NodeTaskRecord, TaskStore

__all__ = ["IdentityStore", "NodeTaskRecord", "TaskStore"]
