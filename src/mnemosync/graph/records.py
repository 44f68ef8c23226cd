"""Association repository backed by a generic ``RecordStore``."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from mnemosync.errors import NotFoundError
from mnemosync.models.memory import MemoryAssociation
from mnemosync.storage.base import RecordStore

_EDGE_KEY = ("from_memory_id", "to_memory_id", "association_type")


def _replace_edge(existing: MemoryAssociation, incoming: MemoryAssociation) -> dict:
    return incoming.model_dump(exclude={"id", "created_at"})


class RecordAssociationRepository:
    """Stores edges as ``MemoryAssociation`` records."""

    def __init__(self, store: RecordStore[MemoryAssociation]) -> None:
        self._store = store

    async def get(self, assoc_id: str) -> MemoryAssociation | None:
        return await self._store.get(assoc_id)

    async def save(self, association: MemoryAssociation) -> MemoryAssociation:
        saved, _ = await self._store.upsert(
            association, unique_on=_EDGE_KEY, merge=_replace_edge
        )
        return saved

    async def update(
        self,
        assoc_id: str,
        changes: Mapping[str, Any],
    ) -> MemoryAssociation | None:
        try:
            return await self._store.update(assoc_id, changes)
        except NotFoundError:
            return None

    async def delete(self, assoc_id: str) -> bool:
        return await self._store.delete(assoc_id)

    async def for_memory(
        self,
        memory_id: str,
        *,
        limit: int = 50,
    ) -> list[MemoryAssociation]:
        outgoing = await self._store.find({"from_memory_id": memory_id}, limit=limit)
        incoming = await self._store.find({"to_memory_id": memory_id}, limit=limit)
        edges = {edge.id: edge for edge in outgoing + incoming}
        ranked = sorted(edges.values(), key=lambda e: (-e.strength, e.id))
        return ranked[:limit]

    async def for_owner(
        self,
        owner_id: str,
        *,
        limit: int = 200,
        offset: int = 0,
    ) -> list[MemoryAssociation]:
        return await self._store.find(
            {"owner_id": owner_id}, limit=limit, offset=offset
        )

    async def delete_for_memory(self, memory_id: str) -> int:
        removed = 0
        for edge in await self.for_memory(memory_id, limit=10_000):
            if await self._store.delete(edge.id):
                removed += 1
        return removed

    async def count(self, owner_id: str | None = None) -> int:
        if owner_id is None:
            return await self._store.count()
        return await self._store.count({"owner_id": owner_id})

    async def clear(self) -> None:
        await self._store.clear()
