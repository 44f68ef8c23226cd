"""Association repository protocol and edge identity."""

from __future__ import annotations

import hashlib
from collections.abc import Mapping
from typing import Any
from typing import Protocol
from typing import runtime_checkable

from mnemosync.models.enums import AssociationType
from mnemosync.models.memory import MemoryAssociation


def association_id(
    from_memory_id: str,
    to_memory_id: str,
    association_type: AssociationType,
) -> str:
    """Deterministic id so each (from, to, type) triple maps to one edge."""
    raw = f"{from_memory_id}|{to_memory_id}|{association_type.value}"
    return f"assoc_{hashlib.sha256(raw.encode('utf-8')).hexdigest()[:32]}"


@runtime_checkable
class AssociationRepository(Protocol):
    """Storage for weighted edges between long-term memories."""

    async def get(self, assoc_id: str) -> MemoryAssociation | None: ...

    async def save(self, association: MemoryAssociation) -> MemoryAssociation:
        """Create the edge or overwrite the one with the same identity."""
        ...

    async def update(
        self,
        assoc_id: str,
        changes: Mapping[str, Any],
    ) -> MemoryAssociation | None: ...

    async def delete(self, assoc_id: str) -> bool: ...

    async def for_memory(
        self,
        memory_id: str,
        *,
        limit: int = 50,
    ) -> list[MemoryAssociation]:
        """Edges touching *memory_id* in either direction, strongest first."""
        ...

    async def for_owner(
        self,
        owner_id: str,
        *,
        limit: int = 200,
        offset: int = 0,
    ) -> list[MemoryAssociation]: ...

    async def delete_for_memory(self, memory_id: str) -> int: ...

    async def count(self, owner_id: str | None = None) -> int: ...

    async def clear(self) -> None: ...
