"""Durable long-term memory: reinforcement, embeddings and search.

Long-term entries are created only by the consolidation pipeline. Reads
never change stored knowledge apart from a best-effort access bump on
search hits.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from mnemosync.config import SimilarityConfig
from mnemosync.errors import InvalidInputError
from mnemosync.errors import MemoryEngineError
from mnemosync.errors import NotFoundError
from mnemosync.graph.base import AssociationRepository
from mnemosync.models.base import utc_now
from mnemosync.models.enums import Importance
from mnemosync.models.enums import MemoryType
from mnemosync.models.memory import LongTermMemory
from mnemosync.similarity.embedding import Embedder
from mnemosync.similarity.kernel import cosine_similarity
from mnemosync.storage.base import RecordStore
from mnemosync.text import tokenize

logger = logging.getLogger(__name__)

_REINFORCE_STEP = 0.1
_VERIFY_STEP = 0.2
_KEYWORD_BOOST = {Importance.critical: 2.0, Importance.high: 1.5}


@dataclass
class SearchHit:
    """A long-term memory and how well it matched a query."""

    memory: LongTermMemory
    score: float


class LongTermStore:
    """Long-term memory operations over an injected record store."""

    def __init__(
        self,
        store: RecordStore[LongTermMemory],
        associations: AssociationRepository,
        embedder: Embedder,
        config: SimilarityConfig | None = None,
        *,
        weak_floor: float = 0.2,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._store = store
        self._associations = associations
        self._embedder = embedder
        self._config = config or SimilarityConfig()
        self._weak_floor = weak_floor
        self._clock = clock or utc_now

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    async def get(self, memory_id: str) -> LongTermMemory | None:
        return await self._store.get(memory_id)

    async def require(self, memory_id: str) -> LongTermMemory:
        memory = await self._store.get(memory_id)
        if memory is None:
            raise NotFoundError(f"long-term memory {memory_id} not found")
        return memory

    async def get_many(self, memory_ids: list[str]) -> list[LongTermMemory]:
        return await self._store.get_many(memory_ids)

    async def create(self, memory: LongTermMemory) -> LongTermMemory:
        return await self._store.insert(memory)

    async def update(self, memory_id: str, changes: dict) -> LongTermMemory:
        return await self._store.update(memory_id, changes)

    async def delete(self, memory_id: str) -> bool:
        """Delete a memory together with every association touching it."""
        removed = await self._store.delete(memory_id)
        if removed:
            await self._associations.delete_for_memory(memory_id)
        return removed

    async def list_memories(
        self,
        owner_id: str,
        *,
        memory_type: MemoryType | None = None,
        limit: int = 100,
        offset: int = 0,
        newest_first: bool = True,
    ) -> list[LongTermMemory]:
        where: dict[str, object] = {"owner_id": owner_id}
        if memory_type is not None:
            where["memory_type"] = memory_type
        return await self._store.find(
            where, limit=limit, offset=offset, newest_first=newest_first
        )

    async def list_by_type(
        self,
        memory_type: MemoryType,
        *,
        limit: int = 100,
    ) -> list[LongTermMemory]:
        return await self._store.find(
            {"memory_type": memory_type}, limit=limit, newest_first=True
        )

    async def weak(self, owner_id: str, *, limit: int = 200) -> list[LongTermMemory]:
        return await self._store.find(
            {"owner_id": owner_id, "is_weak": True}, limit=limit
        )

    async def owners(self) -> list[str]:
        return await self._store.distinct("owner_id")

    async def count(self, owner_id: str, *, weak_only: bool = False) -> int:
        where: dict[str, object] = {"owner_id": owner_id}
        if weak_only:
            where["is_weak"] = True
        return await self._store.count(where)

    # ------------------------------------------------------------------
    # Reinforcement
    # ------------------------------------------------------------------

    async def reinforce(
        self,
        memory_id: str,
        *,
        amount: float = _REINFORCE_STEP,
        changes: dict | None = None,
    ) -> LongTermMemory:
        """Raise strength by *amount* (capped at 1) and reset its decay clock."""
        memory = await self.require(memory_id)
        now = self._clock()
        strength = min(1.0, memory.strength + amount)
        update = {
            "strength": strength,
            "reinforcement_count": memory.reinforcement_count + 1,
            "last_reinforced_at": now,
            "decayed_at": None,
            "updated_at": now,
            "is_weak": strength < self._weak_floor,
        }
        update.update(changes or {})
        return await self._store.update(memory_id, update)

    async def verify(self, memory_id: str) -> LongTermMemory:
        """Mark a memory as confirmed: full confidence, stronger, decay-exempt."""
        memory = await self.require(memory_id)
        now = self._clock()
        strength = min(1.0, memory.strength + _VERIFY_STEP)
        return await self._store.update(
            memory_id,
            {
                "confidence": 1.0,
                "strength": strength,
                "is_verified": True,
                "is_weak": strength < self._weak_floor,
                "last_reinforced_at": now,
                "updated_at": now,
            },
        )

    async def _record_access(self, memories: list[LongTermMemory]) -> None:
        """Best-effort access bump for search hits."""
        now = self._clock()
        for memory in memories:
            try:
                await self._store.update(
                    memory.id,
                    {"access_count": memory.access_count + 1, "last_accessed_at": now},
                )
            except MemoryEngineError as exc:
                logger.debug("Skipped access bump for %s: %s", memory.id, exc)

    # ------------------------------------------------------------------
    # Embeddings
    # ------------------------------------------------------------------

    async def index_embeddings(self, owner_id: str) -> int:
        """Embed the owner's memories that lack a vector; returns how many."""
        window = await self.list_memories(
            owner_id, limit=self._config.candidate_window
        )
        pending = [m for m in window if not m.embedding]
        if not pending:
            return 0
        texts = [m.embedding_text() for m in pending]
        vectors = await self._embedder.embed_batch(texts)
        for memory, vector in zip(pending, vectors):
            await self._store.update(memory.id, {"embedding": vector})
        logger.info("Indexed %d embeddings for owner %s", len(pending), owner_id)
        return len(pending)

    async def embed_memories(self, memories: list[LongTermMemory]) -> None:
        if not memories:
            return
        texts = [m.embedding_text() for m in memories]
        vectors = await self._embedder.embed_batch(texts)
        for memory, vector in zip(memories, vectors):
            await self._store.update(memory.id, {"embedding": vector})

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def _candidates(
        self,
        owner_id: str,
        memory_types: list[MemoryType] | None,
    ) -> list[LongTermMemory]:
        window = self._config.candidate_window
        if not memory_types:
            return await self.list_memories(owner_id, limit=window)
        candidates: list[LongTermMemory] = []
        for memory_type in dict.fromkeys(memory_types):
            candidates.extend(
                await self.list_memories(
                    owner_id, memory_type=memory_type, limit=window
                )
            )
        return candidates

    async def semantic_search(
        self,
        owner_id: str,
        query: str,
        *,
        memory_types: list[MemoryType] | None = None,
        limit: int | None = None,
        min_similarity: float | None = None,
    ) -> list[SearchHit]:
        """Rank the owner's embedded memories by cosine similarity to *query*."""
        if not query.strip():
            raise InvalidInputError("query must not be empty")
        limit = limit or self._config.search_limit
        threshold = (
            self._config.min_similarity if min_similarity is None else min_similarity
        )
        query_vector = await self._embedder.embed(query)
        hits = self._rank(
            query_vector, await self._candidates(owner_id, memory_types), threshold
        )[:limit]
        await self._record_access([hit.memory for hit in hits])
        return hits

    async def find_similar(
        self,
        memory_id: str,
        *,
        limit: int | None = None,
        min_similarity: float | None = None,
    ) -> list[SearchHit]:
        """Memories of the same owner closest to *memory_id*'s embedding."""
        memory = await self.require(memory_id)
        limit = limit or self._config.similar_limit
        threshold = (
            self._config.min_similarity if min_similarity is None else min_similarity
        )
        vector = memory.embedding
        if not vector:
            vector = await self._embedder.embed(memory.embedding_text())
            await self._store.update(memory.id, {"embedding": vector})
        window = await self._candidates(memory.owner_id, None)
        candidates = [m for m in window if m.id != memory.id]
        return self._rank(vector, candidates, threshold)[:limit]

    @staticmethod
    def _rank(
        vector: list[float],
        candidates: list[LongTermMemory],
        threshold: float,
    ) -> list[SearchHit]:
        hits = []
        for candidate in candidates:
            if not candidate.embedding:
                continue
            score = cosine_similarity(vector, candidate.embedding)
            if score >= threshold:
                hits.append(SearchHit(memory=candidate, score=score))
        hits.sort(key=lambda hit: (-hit.score, hit.memory.id))
        return hits

    async def keyword_search(
        self,
        owner_id: str,
        query: str,
        *,
        memory_types: list[MemoryType] | None = None,
        limit: int = 20,
    ) -> list[SearchHit]:
        """Term-match ranking weighted by strength and importance.

        Per query term: +3 for content, +2 for summary, +1.5 for a keyword
        and +1 for a tag. The total is multiplied by strength, then by 2 for
        critical and 1.5 for high importance.
        """
        terms = tokenize(query)
        if not terms:
            raise InvalidInputError("query must contain at least one word")
        hits: list[SearchHit] = []
        for memory in await self._candidates(owner_id, memory_types):
            content = tokenize(memory.content)
            summary = tokenize(memory.summary or "")
            keywords = {k.lower() for k in memory.keywords}
            tags = {t.lower() for t in memory.context.tags}
            score = 0.0
            for term in terms:
                score += 3.0 if term in content else 0.0
                score += 2.0 if term in summary else 0.0
                score += 1.5 if term in keywords else 0.0
                score += 1.0 if term in tags else 0.0
            if score <= 0:
                continue
            score *= memory.strength * _KEYWORD_BOOST.get(memory.importance, 1.0)
            hits.append(SearchHit(memory=memory, score=score))
        hits.sort(key=lambda hit: (-hit.score, hit.memory.id))
        hits = hits[:limit]
        await self._record_access([hit.memory for hit in hits])
        return hits
