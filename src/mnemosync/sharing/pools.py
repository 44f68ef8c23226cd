"""Memory pools: shared spaces that participating agents contribute to."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from mnemosync.audit import AuditEventType
from mnemosync.audit import AuditLogger
from mnemosync.errors import InvalidInputError
from mnemosync.errors import NotFoundError
from mnemosync.errors import UnauthorizedError
from mnemosync.memory.long_term import LongTermStore
from mnemosync.models.base import utc_now
from mnemosync.models.enums import MemoryType
from mnemosync.models.enums import PoolEntryStatus
from mnemosync.models.enums import PoolPolicy
from mnemosync.models.sharing import MemoryPool
from mnemosync.models.sharing import MemoryPoolEntry
from mnemosync.sharing.profiles import SharingPolicyTable
from mnemosync.sharing.projection import project
from mnemosync.storage.base import RecordStore

logger = logging.getLogger(__name__)


@dataclass
class PoolMemory:
    memory: dict[str, Any]
    entry: MemoryPoolEntry
    pool_name: str


class PoolService:
    def __init__(
        self,
        pools: RecordStore[MemoryPool],
        entries: RecordStore[MemoryPoolEntry],
        long_term: LongTermStore,
        policy: SharingPolicyTable,
        *,
        audit_logger: AuditLogger | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._pools = pools
        self._entries = entries
        self._long_term = long_term
        self._policy = policy
        self._audit = audit_logger
        self._clock = clock or utc_now

    async def create_pool(
        self,
        name: str,
        participating_agents: list[str],
        memory_types: list[MemoryType],
        *,
        policy: PoolPolicy = PoolPolicy.open,
        description: str = "",
        created_by: str | None = None,
    ) -> MemoryPool:
        if not participating_agents:
            raise InvalidInputError("a pool needs at least one participant")
        if not memory_types:
            raise InvalidInputError("a pool needs at least one memory type")
        for agent_type in participating_agents:
            self._policy.require(agent_type)
        pool = await self._pools.insert(
            MemoryPool(
                name=name,
                description=description,
                participating_agents=list(dict.fromkeys(participating_agents)),
                memory_types=list(dict.fromkeys(memory_types)),
                policy=policy,
                created_at=self._clock(),
            )
        )
        if self._audit is not None:
            await self._audit.record(
                AuditEventType.POOL_CREATED,
                actor=created_by,
                pool_id=pool.id,
                name=name,
                policy=policy.value,
            )
        return pool

    async def get_pool(self, pool_id: str) -> MemoryPool:
        pool = await self._pools.get(pool_id)
        if pool is None:
            raise NotFoundError(f"memory pool {pool_id} not found")
        return pool

    async def add_to_pool(
        self,
        pool_id: str,
        memory_id: str,
        contributing_agent: str,
    ) -> MemoryPoolEntry:
        """Contribute a memory; open pools publish it immediately.

        Raises ``UnauthorizedError`` when the agent is not a participant or
        the memory's type is not accepted by the pool.
        """
        pool = await self.get_pool(pool_id)
        memory = await self._long_term.require(memory_id)
        if not pool.is_active:
            raise UnauthorizedError(f"memory pool {pool_id} is closed")
        if contributing_agent not in pool.participating_agents:
            raise UnauthorizedError(
                f"{contributing_agent} does not participate in pool {pool.name}"
            )
        if memory.memory_type not in pool.memory_types:
            raise UnauthorizedError(
                f"pool {pool.name} does not accept {memory.memory_type.value}"
            )

        now = self._clock()
        status = (
            PoolEntryStatus.active
            if pool.policy == PoolPolicy.open
            else PoolEntryStatus.pending
        )
        entry = await self._entries.insert(
            MemoryPoolEntry(
                pool_id=pool.id,
                memory_id=memory.id,
                contributed_by=contributing_agent,
                contributed_at=now,
                status=status,
            )
        )

        def count_contribution(current: MemoryPool) -> dict[str, Any]:
            stats = current.stats
            stats.memory_count += 1
            stats.contributions_by_agent[contributing_agent] = (
                stats.contributions_by_agent.get(contributing_agent, 0) + 1
            )
            stats.last_activity_at = now
            return {"stats": stats}

        await self._pools.modify(pool.id, count_contribution)

        if self._audit is not None:
            await self._audit.record(
                AuditEventType.POOL_CONTRIBUTION,
                actor=contributing_agent,
                pool_id=pool.id,
                memory_id=memory.id,
                entry_id=entry.id,
                status=status.value,
            )
        return entry

    async def review_pool_entry(
        self,
        entry_id: str,
        reviewer: str,
        *,
        approve: bool,
    ) -> MemoryPoolEntry:
        """Activate or reject a pending entry; the reviewer must participate."""
        entry = await self._entries.get(entry_id)
        if entry is None:
            raise NotFoundError(f"pool entry {entry_id} not found")
        pool = await self.get_pool(entry.pool_id)
        if reviewer not in pool.participating_agents:
            raise UnauthorizedError(f"{reviewer} does not participate in {pool.name}")
        status = PoolEntryStatus.active if approve else PoolEntryStatus.rejected
        reviewed = await self._entries.compare_and_set(
            entry_id,
            field="status",
            expected=PoolEntryStatus.pending,
            changes={
                "status": status,
                "reviewed_by": reviewer,
                "reviewed_at": self._clock(),
            },
        )
        if self._audit is not None:
            await self._audit.record(
                AuditEventType.POOL_REVIEW,
                actor=reviewer,
                pool_id=pool.id,
                entry_id=entry_id,
                status=status.value,
            )
        return reviewed

    async def get_pool_memories(
        self,
        pool_id: str,
        agent_type: str,
        *,
        limit: int = 100,
    ) -> list[PoolMemory]:
        """Active pool entries with their memories; empty for non-participants."""
        pool = await self._pools.get(pool_id)
        if pool is None or agent_type not in pool.participating_agents:
            return []
        entries = await self._entries.find(
            {"pool_id": pool_id, "status": PoolEntryStatus.active}, limit=limit
        )
        memories = {
            m.id: m
            for m in await self._long_term.get_many([e.memory_id for e in entries])
        }
        level = self._policy.require(agent_type).default_access_level
        return [
            PoolMemory(
                memory=project(memories[e.memory_id], level),
                entry=e,
                pool_name=pool.name,
            )
            for e in entries
            if e.memory_id in memories
        ]

    async def pending_entries(
        self,
        pool_id: str,
        *,
        limit: int = 100,
    ) -> list[MemoryPoolEntry]:
        return await self._entries.find(
            {"pool_id": pool_id, "status": PoolEntryStatus.pending}, limit=limit
        )
