"""Session-scoped short-term memory buffer.

Writes are deduplicated on (owner, session, type, content): a repeat write
merges into the existing record instead of inserting a new one. Expiry
is derived from importance via ``ShortTermConfig.ttl_minutes``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from datetime import timedelta

from mnemosync.config import ShortTermConfig
from mnemosync.errors import InvalidInputError
from mnemosync.errors import InvalidStateError
from mnemosync.errors import NotFoundError
from mnemosync.models.base import utc_now
from mnemosync.models.enums import Importance
from mnemosync.models.enums import MemoryType
from mnemosync.models.enums import SessionStatus
from mnemosync.models.memory import ConversationSession
from mnemosync.models.memory import ShortTermMemory
from mnemosync.storage.base import RecordStore

logger = logging.getLogger(__name__)

_DEDUP_KEY = ("owner_id", "session_id", "memory_type", "content")
_SESSION_KEY = ("owner_id", "session_id")
_CONSOLIDATE_TIERS = {Importance.critical, Importance.high}


def _merge_repeat(existing: ShortTermMemory, incoming: ShortTermMemory) -> dict:
    """Changes applied when the same observation is written again."""
    expires_at = existing.expires_at
    if incoming.expires_at is not None and (
        expires_at is None or incoming.expires_at > expires_at
    ):
        expires_at = incoming.expires_at
    return {
        "access_count": existing.access_count + 1,
        "last_accessed_at": incoming.last_accessed_at,
        "confidence": max(existing.confidence, incoming.confidence),
        "importance": incoming.importance,
        "should_consolidate": existing.should_consolidate
        or incoming.should_consolidate,
        "expires_at": expires_at,
    }


def _touch_session(
    existing: ConversationSession,
    incoming: ConversationSession,
) -> dict:
    if existing.status == SessionStatus.archived:
        msg = f"session {existing.session_id} is archived"
        raise InvalidStateError(msg)
    return {"last_activity_at": incoming.last_activity_at}


class ShortTermStore:
    """Short-term memory operations over injected record stores."""

    def __init__(
        self,
        store: RecordStore[ShortTermMemory],
        sessions: RecordStore[ConversationSession],
        config: ShortTermConfig | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._sessions = sessions
        self._config = config or ShortTermConfig()
        self._clock = clock or utc_now

    def ttl_for(self, importance: Importance) -> timedelta:
        return timedelta(minutes=self._config.ttl_minutes[importance.value])

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    async def write(self, entry: ShortTermMemory) -> str:
        """Store *entry* and return its id, or the id it was merged into.

        Raises ``InvalidStateError`` when the session is archived.
        """
        now = self._clock()
        session, _ = await self._sessions.upsert(
            ConversationSession(
                owner_id=entry.owner_id,
                session_id=entry.session_id,
                started_at=now,
                last_activity_at=now,
            ),
            unique_on=_SESSION_KEY,
            merge=_touch_session,
        )

        record = entry.model_copy(
            update={
                "created_at": now,
                "last_accessed_at": now,
                "access_count": 1,
                "expires_at": now + self.ttl_for(entry.importance),
                "should_consolidate": entry.should_consolidate
                or entry.importance in _CONSOLIDATE_TIERS,
                "consolidated_at": None,
            }
        )
        stored, created = await self._store.upsert(
            record, unique_on=_DEDUP_KEY, merge=_merge_repeat
        )
        if created:
            await self._sessions.modify(
                session.id, lambda current: {"memory_count": current.memory_count + 1}
            )
        else:
            logger.debug(
                "Merged repeat short-term write into %s (access_count=%d)",
                stored.id,
                stored.access_count,
            )
        return stored.id

    async def mark_for_consolidation(self, owner_id: str, memory_ids: list[str]) -> int:
        """Flag the owner's listed entries for consolidation."""
        marked = 0
        for memory in await self._store.get_many(memory_ids):
            if memory.owner_id != owner_id or memory.should_consolidate:
                continue
            await self._store.update(memory.id, {"should_consolidate": True})
            marked += 1
        return marked

    async def mark_consolidated(self, memory_ids: list[str]) -> None:
        now = self._clock()
        for memory_id in memory_ids:
            try:
                await self._store.update(memory_id, {"consolidated_at": now})
            except NotFoundError:
                logger.debug("Short-term memory %s vanished before marking", memory_id)

    async def delete(self, memory_id: str) -> bool:
        return await self._store.delete(memory_id)

    async def cleanup_expired(self, owner_id: str | None = None) -> int:
        """Delete expired entries, page by page; returns the number removed.

        Entries still waiting for consolidation are kept. Running twice in
        a row removes nothing the second time.
        """
        now = self._clock()
        owners = [owner_id] if owner_id else await self._store.distinct("owner_id")
        page_size = self._config.cleanup_page_size
        removed = 0
        for owner in owners:
            offset = 0
            while True:
                page = await self._store.find(
                    {"owner_id": owner}, limit=page_size, offset=offset
                )
                if not page:
                    break
                deleted_here = 0
                for memory in page:
                    if not self._is_expired(memory, now):
                        continue
                    if await self._store.delete(memory.id):
                        deleted_here += 1
                removed += deleted_here
                if len(page) < page_size:
                    break
                offset += page_size - deleted_here
        if removed:
            logger.info("Removed %d expired short-term memories", removed)
        return removed

    @staticmethod
    def _is_expired(memory: ShortTermMemory, now: datetime) -> bool:
        if memory.expires_at is None or memory.expires_at > now:
            return False
        return not (memory.should_consolidate and not memory.is_consolidated)

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def get(self, memory_id: str) -> ShortTermMemory | None:
        return await self._store.get(memory_id)

    async def get_many(self, memory_ids: list[str]) -> list[ShortTermMemory]:
        return await self._store.get_many(memory_ids)

    async def get_session_memories(
        self,
        owner_id: str,
        session_id: str,
        *,
        memory_type: MemoryType | None = None,
        limit: int = 50,
    ) -> list[ShortTermMemory]:
        where: dict[str, object] = {"owner_id": owner_id, "session_id": session_id}
        if memory_type is not None:
            where["memory_type"] = memory_type
        return await self._store.find(where, limit=limit, newest_first=True)

    async def get_recent(
        self,
        owner_id: str,
        *,
        memory_types: list[MemoryType] | None = None,
        min_importance: Importance | None = None,
        limit: int = 50,
    ) -> list[ShortTermMemory]:
        """Newest unexpired entries, optionally filtered by type and importance."""
        now = self._clock()
        window = await self._store.find(
            {"owner_id": owner_id},
            limit=self._config.cleanup_page_size,
            newest_first=True,
        )
        results = [
            m
            for m in window
            if (m.expires_at is None or m.expires_at > now)
            and (memory_types is None or m.memory_type in memory_types)
            and (min_importance is None or m.importance.at_least(min_importance))
        ]
        return results[:limit]

    async def search(
        self,
        owner_id: str,
        term: str,
        *,
        session_id: str | None = None,
        limit: int = 20,
    ) -> list[ShortTermMemory]:
        """Case-insensitive substring search over the owner's recent entries."""
        needle = term.strip().casefold()
        if not needle:
            raise InvalidInputError("search term must not be empty")
        where: dict[str, object] = {"owner_id": owner_id}
        if session_id is not None:
            where["session_id"] = session_id
        window = await self._store.find(
            where, limit=self._config.cleanup_page_size, newest_first=True
        )
        return [m for m in window if needle in m.content.casefold()][:limit]

    async def pending_consolidation(
        self,
        owner_id: str,
        *,
        session_id: str | None = None,
        limit: int = 100,
    ) -> list[ShortTermMemory]:
        where: dict[str, object] = {
            "owner_id": owner_id,
            "should_consolidate": True,
            "is_consolidated": False,
        }
        if session_id is not None:
            where["session_id"] = session_id
        return await self._store.find(where, limit=limit)

    async def list_entries(
        self,
        owner_id: str,
        *,
        limit: int = 200,
        offset: int = 0,
    ) -> list[ShortTermMemory]:
        """One page of the owner's entries, oldest first."""
        return await self._store.find(
            {"owner_id": owner_id}, limit=limit, offset=offset
        )

    async def owners(self) -> list[str]:
        return await self._store.distinct("owner_id")

    async def count(self, owner_id: str, *, pending_only: bool = False) -> int:
        where: dict[str, object] = {"owner_id": owner_id}
        if pending_only:
            where.update({"should_consolidate": True, "is_consolidated": False})
        return await self._store.count(where)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def list_sessions(
        self,
        owner_id: str,
        *,
        include_archived: bool = False,
        limit: int = 100,
    ) -> list[ConversationSession]:
        sessions = await self._sessions.find(
            {"owner_id": owner_id}, limit=limit, newest_first=True
        )
        if include_archived:
            return sessions
        return [s for s in sessions if s.status != SessionStatus.archived]

    async def set_session_status(
        self,
        owner_id: str,
        session_id: str,
        status: SessionStatus,
    ) -> ConversationSession:
        """Move a session to *status*. Archived sessions cannot change."""
        matches = await self._sessions.find(
            {"owner_id": owner_id, "session_id": session_id}, limit=1
        )
        if not matches:
            raise NotFoundError(f"session {session_id} not found")
        session = matches[0]
        if session.status == SessionStatus.archived:
            raise InvalidStateError(f"session {session_id} is archived")
        return await self._sessions.compare_and_set(
            session.id,
            field="status",
            expected=session.status,
            changes={"status": status},
        )

    async def idle_sessions(
        self,
        owner_id: str,
        cutoff: datetime,
        *,
        limit: int = 200,
    ) -> list[ConversationSession]:
        """Non-archived sessions with no activity since *cutoff*, oldest first."""
        sessions = await self._sessions.find({"owner_id": owner_id}, limit=limit)
        return [
            s
            for s in sessions
            if s.status != SessionStatus.archived and s.last_activity_at < cutoff
        ]

    async def session_owners(self) -> list[str]:
        return await self._sessions.distinct("owner_id")
