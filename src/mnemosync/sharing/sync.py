"""Bidirectional knowledge sync between two agent types."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from datetime import timedelta

from mnemosync.audit import AuditEventType
from mnemosync.audit import AuditLogger
from mnemosync.config import SharingConfig
from mnemosync.errors import MemoryEngineError
from mnemosync.errors import NotFoundError
from mnemosync.memory.long_term import LongTermStore
from mnemosync.models.base import utc_now
from mnemosync.models.enums import MemoryType
from mnemosync.models.enums import SyncStatus
from mnemosync.models.enums import SyncType
from mnemosync.models.memory import LongTermMemory
from mnemosync.models.sharing import SyncCriteria
from mnemosync.models.sharing import SyncSession
from mnemosync.models.sharing import SyncStats
from mnemosync.sharing.profiles import AgentProfile
from mnemosync.sharing.service import SharingService
from mnemosync.storage.base import RecordStore

logger = logging.getLogger(__name__)


class KnowledgeSync:
    """Exchanges what each agent provides and the other needs."""

    def __init__(
        self,
        sharing: SharingService,
        long_term: LongTermStore,
        sessions: RecordStore[SyncSession],
        *,
        audit_logger: AuditLogger | None = None,
        config: SharingConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._sharing = sharing
        self._long_term = long_term
        self._sessions = sessions
        self._audit = audit_logger
        self._config = config or SharingConfig()
        self._clock = clock or utc_now

    async def sync_agent_knowledge(
        self,
        agent1_type: str,
        agent2_type: str,
        sync_type: SyncType = SyncType.full,
        criteria: SyncCriteria | None = None,
    ) -> SyncSession:
        """Share eligible memories in both directions and return the session.

        One item failing is counted in ``stats.errors``; anything else that
        goes wrong ends the session as ``failed`` with the error recorded.
        """
        first = self._sharing.policy.require(agent1_type)
        second = self._sharing.policy.require(agent2_type)
        session = await self._sessions.insert(
            SyncSession(
                agent1_type=agent1_type,
                agent2_type=agent2_type,
                sync_type=sync_type,
                criteria=criteria,
                started_at=self._clock(),
            )
        )
        session = await self._sessions.compare_and_set(
            session.id,
            field="status",
            expected=SyncStatus.pending,
            changes={"status": SyncStatus.in_progress},
        )

        stats = SyncStats()
        changes: dict[str, object] = {"status": SyncStatus.completed}
        try:
            stats.agent1_to_agent2 = await self._push(
                first, second, sync_type, criteria, stats
            )
            stats.agent2_to_agent1 = await self._push(
                second, first, sync_type, criteria, stats
            )
        except Exception as exc:
            logger.exception("Sync %s failed", session.id)
            changes = {
                "status": SyncStatus.failed,
                "error": str(exc) or type(exc).__name__,
            }

        session = await self._sessions.compare_and_set(
            session.id,
            field="status",
            expected=SyncStatus.in_progress,
            changes={**changes, "stats": stats, "completed_at": self._clock()},
        )
        if self._audit is not None:
            await self._audit.record(
                AuditEventType.KNOWLEDGE_SYNC,
                actor=agent1_type,
                sync_id=session.id,
                agent2_type=agent2_type,
                sync_type=sync_type.value,
                status=session.status.value,
                error=session.error,
                **stats.model_dump(),
            )
        return session

    async def get_session(self, sync_id: str) -> SyncSession:
        session = await self._sessions.get(sync_id)
        if session is None:
            raise NotFoundError(f"sync session {sync_id} not found")
        return session

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _push(
        self,
        source: AgentProfile,
        target: AgentProfile,
        sync_type: SyncType,
        criteria: SyncCriteria | None,
        stats: SyncStats,
    ) -> int:
        types = [t for t in source.provides if target.needs_type(t)]
        shared = 0
        for memory in await self._eligible(types, sync_type, criteria):
            level = self._sharing.effective_access_level(target, memory)
            try:
                result = await self._sharing.share_memory(
                    memory.id,
                    source.agent_type,
                    target.agent_type,
                    f"knowledge sync: {sync_type.value}",
                    level,
                )
            except MemoryEngineError:
                logger.exception(
                    "Sync of %s to %s failed", memory.id, target.agent_type
                )
                stats.errors += 1
                continue
            if not result.shared:
                continue
            shared += 1
            if not result.created:
                stats.conflicts += 1
        return shared

    async def _eligible(
        self,
        types: list[MemoryType],
        sync_type: SyncType,
        criteria: SyncCriteria | None,
    ) -> list[LongTermMemory]:
        if criteria is not None and criteria.memory_types is not None:
            types = [t for t in types if t in criteria.memory_types]
        page = self._config.sync_page_size
        memories: list[LongTermMemory] = []
        for memory_type in types:
            if criteria is not None and criteria.owner_id:
                memories.extend(
                    await self._long_term.list_memories(
                        criteria.owner_id, memory_type=memory_type, limit=page
                    )
                )
            else:
                memories.extend(
                    await self._long_term.list_by_type(memory_type, limit=page)
                )

        if criteria is not None:
            if criteria.min_importance is not None:
                floor = criteria.min_importance
                memories = [m for m in memories if m.importance.at_least(floor)]
            if criteria.after is not None:
                memories = [m for m in memories if m.created_at > criteria.after]
        if sync_type == SyncType.differential:
            window = timedelta(hours=self._config.differential_window_hours)
            cutoff = self._clock() - window
            memories = [m for m in memories if m.updated_at > cutoff]
        return memories
