"""Neo4j schema for the association graph.

Every statement uses ``IF NOT EXISTS`` so initialization is idempotent.
"""

from __future__ import annotations

from neo4j import AsyncDriver

_CONSTRAINTS = [
    "CREATE CONSTRAINT memory_unique_id IF NOT EXISTS "
    "FOR (n:Memory) REQUIRE n.id IS UNIQUE",
]

_NODE_INDEXES = [
    "CREATE INDEX memory_owner IF NOT EXISTS FOR (n:Memory) ON (n.owner_id)",
]

_REL_INDEXES = [
    "CREATE INDEX assoc_id IF NOT EXISTS FOR ()-[r:ASSOCIATED]-() ON (r.id)",
    "CREATE INDEX assoc_owner IF NOT EXISTS FOR ()-[r:ASSOCIATED]-() ON (r.owner_id)",
    "CREATE INDEX assoc_strength IF NOT EXISTS "
    "FOR ()-[r:ASSOCIATED]-() ON (r.strength)",
]


async def init_schema(driver: AsyncDriver) -> None:
    """Create constraints and indexes, one statement per transaction."""
    async with driver.session() as session:
        for stmt in _CONSTRAINTS + _NODE_INDEXES + _REL_INDEXES:
            await session.run(stmt)
