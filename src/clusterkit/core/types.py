from __future__ import annotations

"""
clusterkit.core.types
=====================

Shared type aliases and small constants. Keep this module tiny and dependency-free.
"""

from typing import Final

# ---- Time --------------------------------------------------------------------

Millis = int
Seconds = float
TimestampMs = int  # wall-clock epoch timestamp (ms)
MonotonicMs = int  # process-local monotonic time (ms)

# ---- Identifiers (semantic sugar over str) -----------------------------------

FrameworkId = str
OfferId = str
AgentId = str
TaskId = str
NodeId = str  # logical node slot, e.g. "node-0"
BlockId = str
PersistenceId = str
Keyspace = str
ColumnFamily = str

# ---- Constants ---------------------------------------------------------------

# Separator between the logical name and the unique suffix of a task id.
TASK_ID_SEPARATOR: Final[str] = "__"

# Keyspaces owned by the database itself; never targeted by cleanup/compaction sweeps.
DEFAULT_SYSTEM_KEYSPACES: Final[tuple[str, ...]] = (
    "system",
    "system_schema",
    "system_auth",
    "system_distributed",
    "system_traces",
)
