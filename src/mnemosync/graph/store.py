"""Neo4j-backed association repository.

Long-term memories appear as ``(:Memory {id, owner_id})`` stubs; the
memory documents themselves stay in the record store. Each association
is one ``[:ASSOCIATED]`` relationship carrying the full edge as
properties, keyed by the deterministic association id.
"""

from __future__ import annotations

from collections.abc import Mapping
from enum import Enum
from typing import Any

from neo4j import AsyncDriver
from neo4j import time as neo4j_time

from mnemosync.models.memory import MemoryAssociation

# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------


def _to_neo4j(value: object) -> object:
    if isinstance(value, Enum):
        return value.value
    return value


def _from_neo4j(value: object) -> object:
    """Convert Neo4j temporal values to stdlib ``datetime``."""
    if isinstance(value, neo4j_time.DateTime):
        return value.to_native()
    return value


def _serialize(data: Mapping[str, Any]) -> dict[str, object]:
    # None values are kept: ``SET r += $props`` removes those properties.
    return {key: _to_neo4j(value) for key, value in data.items()}


def _deserialize(props: Mapping[str, Any]) -> MemoryAssociation:
    return MemoryAssociation.model_validate(
        {key: _from_neo4j(value) for key, value in props.items()}
    )


_SAVE_QUERY = (
    "MERGE (a:Memory {id: $from_id}) ON CREATE SET a.owner_id = $owner_id "
    "MERGE (b:Memory {id: $to_id}) ON CREATE SET b.owner_id = $owner_id "
    "MERGE (a)-[r:ASSOCIATED {id: $id}]->(b) "
    "ON CREATE SET r.created_at = $created_at "
    "SET r += $props "
    "RETURN properties(r) AS props"
)


class Neo4jAssociationRepository:
    """``AssociationRepository`` on top of the async Neo4j driver."""

    def __init__(self, driver: AsyncDriver) -> None:
        self._driver = driver

    async def get(self, assoc_id: str) -> MemoryAssociation | None:
        query = "MATCH ()-[r:ASSOCIATED {id: $id}]->() RETURN properties(r) AS props"
        async with self._driver.session() as session:
            result = await session.run(query, id=assoc_id)
            record = await result.single()
            if record is None:
                return None
            return _deserialize(record["props"])

    async def save(self, association: MemoryAssociation) -> MemoryAssociation:
        props = _serialize(association.model_dump(exclude={"created_at"}))
        async with self._driver.session() as session:
            result = await session.run(
                _SAVE_QUERY,
                id=association.id,
                from_id=association.from_memory_id,
                to_id=association.to_memory_id,
                owner_id=association.owner_id,
                created_at=association.created_at,
                props=props,
            )
            record = await result.single()
            return _deserialize(record["props"])

    async def update(
        self,
        assoc_id: str,
        changes: Mapping[str, Any],
    ) -> MemoryAssociation | None:
        query = (
            "MATCH ()-[r:ASSOCIATED {id: $id}]->() "
            "SET r += $props RETURN properties(r) AS props"
        )
        async with self._driver.session() as session:
            result = await session.run(query, id=assoc_id, props=_serialize(changes))
            record = await result.single()
            if record is None:
                return None
            return _deserialize(record["props"])

    async def delete(self, assoc_id: str) -> bool:
        query = "MATCH ()-[r:ASSOCIATED {id: $id}]->() DELETE r RETURN count(r) AS cnt"
        async with self._driver.session() as session:
            result = await session.run(query, id=assoc_id)
            record = await result.single()
            return record["cnt"] > 0

    async def for_memory(
        self,
        memory_id: str,
        *,
        limit: int = 50,
    ) -> list[MemoryAssociation]:
        query = (
            "MATCH (:Memory {id: $id})-[r:ASSOCIATED]-() "
            "RETURN DISTINCT properties(r) AS props, "
            "r.strength AS strength, r.id AS rid "
            "ORDER BY strength DESC, rid LIMIT $limit"
        )
        async with self._driver.session() as session:
            result = await session.run(query, id=memory_id, limit=limit)
            return [_deserialize(record["props"]) async for record in result]

    async def for_owner(
        self,
        owner_id: str,
        *,
        limit: int = 200,
        offset: int = 0,
    ) -> list[MemoryAssociation]:
        query = (
            "MATCH ()-[r:ASSOCIATED {owner_id: $owner_id}]->() "
            "RETURN properties(r) AS props "
            "ORDER BY r.created_at, r.id SKIP $offset LIMIT $limit"
        )
        async with self._driver.session() as session:
            result = await session.run(
                query, owner_id=owner_id, offset=offset, limit=limit
            )
            return [_deserialize(record["props"]) async for record in result]

    async def delete_for_memory(self, memory_id: str) -> int:
        query = (
            "MATCH (m:Memory {id: $id}) "
            "OPTIONAL MATCH (m)-[r:ASSOCIATED]-() "
            "WITH m, count(r) AS cnt "
            "DETACH DELETE m RETURN cnt"
        )
        async with self._driver.session() as session:
            result = await session.run(query, id=memory_id)
            record = await result.single()
            return record["cnt"] if record is not None else 0

    async def count(self, owner_id: str | None = None) -> int:
        query = (
            "MATCH ()-[r:ASSOCIATED]->() "
            "WHERE $owner_id IS NULL OR r.owner_id = $owner_id "
            "RETURN count(r) AS cnt"
        )
        async with self._driver.session() as session:
            result = await session.run(query, owner_id=owner_id)
            record = await result.single()
            return record["cnt"]

    async def clear(self) -> None:
        async with self._driver.session() as session:
            await session.run("MATCH (m:Memory) DETACH DELETE m")
