from __future__ import annotations

from clusterkit.api.errors import PersistenceError
from clusterkit.storage.tasks import NodeTaskRecord


class InMemoryIdentityStore:
    def __init__(self) -> None:
        self.framework_id: str | None = None
        self.calls = 0

    async def register(self, framework_id: str) -> None:
        self.calls += 1
        self.framework_id = framework_id

    async def get(self) -> str | None:
        return self.framework_id


class FailingIdentityStore(InMemoryIdentityStore):
    async def register(self, framework_id: str) -> None:
        self.calls += 1
        raise PersistenceError("zookeeper unavailable")


class InMemoryTaskStore:
    """Insertion-ordered NodeTaskRecord store."""

    def __init__(self, records: list[NodeTaskRecord] | None = None) -> None:
        self._data: dict[str, NodeTaskRecord] = {}
        for r in records or []:
            self._data[r.node_id] = r

    async def get(self, node_id: str) -> NodeTaskRecord | None:
        return self._data.get(node_id)

    async def put(self, record: NodeTaskRecord) -> None:
        self._data[record.node_id] = record

    async def delete(self, node_id: str) -> None:
        self._data.pop(node_id, None)

    async def list(self) -> list[NodeTaskRecord]:
        return list(self._data.values())
