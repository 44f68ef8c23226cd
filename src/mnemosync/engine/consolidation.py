"""Consolidation pipeline: short-term entries into long-term knowledge.

``consolidate(owner_id)`` snapshots the owner's flagged, unconsolidated
short-term entries into a ``ConsolidationJob`` and processes it. Within a
job, near-duplicate entries of the same type are merged into one
long-term memory, or used to reinforce an existing one when it already
covers the same content.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from collections import defaultdict
from collections.abc import AsyncIterator
from collections.abc import Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from dataclasses import field
from datetime import datetime
from itertools import combinations

from mnemosync.audit import AuditEventType
from mnemosync.audit import AuditLogger
from mnemosync.config import ConsolidationConfig
from mnemosync.errors import InvalidStateError
from mnemosync.errors import NotFoundError
from mnemosync.memory.long_term import LongTermStore
from mnemosync.memory.short_term import ShortTermStore
from mnemosync.models.base import utc_now
from mnemosync.models.enums import Importance
from mnemosync.models.enums import JobStatus
from mnemosync.models.jobs import ConsolidationJob
from mnemosync.models.memory import LongTermContext
from mnemosync.models.memory import LongTermMemory
from mnemosync.models.memory import ShortTermMemory
from mnemosync.similarity.embedding import Embedder
from mnemosync.similarity.kernel import cosine_similarity
from mnemosync.storage.base import RecordStore
from mnemosync.text import extract_keywords
from mnemosync.text import jaccard
from mnemosync.text import normalize_content
from mnemosync.text import split_sentences
from mnemosync.text import summarize

logger = logging.getLogger(__name__)

_GROUP_BONUS_STEP = 0.05
_GROUP_BONUS_CAP = 0.3
_LARGE_GROUP_SIZE = 3
_LARGE_GROUP_CONFIDENCE_BONUS = 0.1


# ---------------------------------------------------------------------------
# Result dataclass
# ---------------------------------------------------------------------------


@dataclass
class ConsolidationRunResult:
    """Summary of one job execution. ``job_id`` is None when nothing was pending."""

    job_id: str | None = None
    status: JobStatus | None = None
    memories_processed: int = 0
    memories_consolidated: int = 0
    memories_reinforced: int = 0
    created_long_term_memory_ids: list[str] = field(default_factory=list)
    error: str | None = None

    @classmethod
    def from_job(cls, job: ConsolidationJob) -> ConsolidationRunResult:
        return cls(
            job_id=job.id,
            status=job.status,
            memories_processed=job.memories_processed,
            memories_consolidated=job.memories_consolidated,
            memories_reinforced=job.memories_reinforced,
            created_long_term_memory_ids=list(job.created_long_term_memory_ids),
            error=job.error,
        )


@dataclass
class _JobOutcome:
    processed: int = 0
    consolidated: int = 0
    reinforced: int = 0
    created_ids: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Synthesis helpers
# ---------------------------------------------------------------------------


def _merge_sentences(base: list[str], extra: list[str]) -> list[str]:
    """Append sentences from *extra* that are not already in *base*."""
    seen = {normalize_content(s) for s in base}
    merged = list(base)
    for sentence in extra:
        key = normalize_content(sentence)
        if key not in seen:
            seen.add(key)
            merged.append(sentence)
    return merged


def _unique(values: list[str | None]) -> list[str]:
    return list(dict.fromkeys(v for v in values if v))


def _group_context(group: list[ShortTermMemory]) -> LongTermContext:
    domain = None
    for entry in group:
        candidate = (entry.structured_data or {}).get("domain")
        if isinstance(candidate, str) and candidate:
            domain = candidate
            break
    return LongTermContext(
        domain=domain,
        contract_ids=_unique([e.context.contract_id for e in group]),
        vendor_ids=_unique([e.context.vendor_id for e in group]),
        agent_ids=_unique([e.context.agent_id for e in group]),
        tags=_unique([tag for e in group for tag in e.context.related_entities]),
    )


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class ConsolidationPipeline:
    """Promotes flagged short-term memories into long-term memories."""

    def __init__(
        self,
        short_term: ShortTermStore,
        long_term: LongTermStore,
        jobs: RecordStore[ConsolidationJob],
        embedder: Embedder,
        *,
        audit_logger: AuditLogger | None = None,
        config: ConsolidationConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._short_term = short_term
        self._long_term = long_term
        self._jobs = jobs
        self._embedder = embedder
        self._audit = audit_logger
        self._config = config or ConsolidationConfig()
        self._clock = clock or utc_now
        self._owner_locks: dict[str, asyncio.Lock] = {}
        self._owner_lock_users: Counter[str] = Counter()

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def consolidate(
        self,
        owner_id: str,
        *,
        session_id: str | None = None,
    ) -> ConsolidationRunResult:
        """Create and process a job over the owner's pending entries."""
        async with self._owner_lock(owner_id):
            pending = await self._short_term.pending_consolidation(
                owner_id, session_id=session_id, limit=self._config.max_batch_size
            )
            if not pending:
                return ConsolidationRunResult()
            job = await self._jobs.insert(
                ConsolidationJob(
                    owner_id=owner_id,
                    short_term_memory_ids=[entry.id for entry in pending],
                    created_at=self._clock(),
                )
            )
            return await self._process(job)

    async def process_job(self, job_id: str) -> ConsolidationRunResult:
        """Run a pending job. Raises ``InvalidStateError`` for any other status."""
        job = await self._jobs.get(job_id)
        if job is None:
            raise NotFoundError(f"consolidation job {job_id} not found")
        async with self._owner_lock(job.owner_id):
            return await self._process(job)

    async def consolidate_pending_owners(self) -> list[ConsolidationRunResult]:
        """Consolidate every owner that has flagged entries waiting."""
        results = []
        for owner_id in await self._short_term.owners():
            result = await self.consolidate(owner_id)
            if result.job_id is not None:
                results.append(result)
        return results

    @asynccontextmanager
    async def _owner_lock(self, owner_id: str) -> AsyncIterator[None]:
        """Serialize runs per owner, dropping the lock once it has no users."""
        lock = self._owner_locks.setdefault(owner_id, asyncio.Lock())
        self._owner_lock_users[owner_id] += 1
        try:
            async with lock:
                yield
        finally:
            self._owner_lock_users[owner_id] -= 1
            if not self._owner_lock_users[owner_id]:
                del self._owner_lock_users[owner_id]
                del self._owner_locks[owner_id]

    async def get_job(self, job_id: str) -> ConsolidationJob:
        job = await self._jobs.get(job_id)
        if job is None:
            raise NotFoundError(f"consolidation job {job_id} not found")
        return job

    async def list_jobs(
        self,
        owner_id: str,
        *,
        status: JobStatus | None = None,
        limit: int = 50,
    ) -> list[ConsolidationJob]:
        where: dict[str, object] = {"owner_id": owner_id}
        if status is not None:
            where["status"] = status
        return await self._jobs.find(where, limit=limit, newest_first=True)

    # ------------------------------------------------------------------
    # Job lifecycle
    # ------------------------------------------------------------------

    async def _process(self, job: ConsolidationJob) -> ConsolidationRunResult:
        if job.status != JobStatus.pending:
            msg = f"consolidation job {job.id} is {job.status.value}, not pending"
            raise InvalidStateError(msg)
        job = await self._jobs.compare_and_set(
            job.id,
            field="status",
            expected=JobStatus.pending,
            changes={"status": JobStatus.running, "started_at": self._clock()},
        )

        try:
            outcome = await self._run(job)
        except Exception as exc:
            logger.exception("Consolidation job %s failed", job.id)
            job = await self._jobs.update(
                job.id,
                {
                    "status": JobStatus.failed,
                    "error": str(exc) or type(exc).__name__,
                    "error_count": job.error_count + 1,
                    "completed_at": self._clock(),
                },
            )
        else:
            job = await self._jobs.compare_and_set(
                job.id,
                field="status",
                expected=JobStatus.running,
                changes={
                    "status": JobStatus.completed,
                    "memories_processed": outcome.processed,
                    "memories_consolidated": outcome.consolidated,
                    "memories_reinforced": outcome.reinforced,
                    "created_long_term_memory_ids": outcome.created_ids,
                    "completed_at": self._clock(),
                },
            )

        if self._audit is not None:
            await self._audit.record(
                AuditEventType.CONSOLIDATION_RUN,
                actor="consolidation",
                job_id=job.id,
                owner_id=job.owner_id,
                status=job.status.value,
                memories_processed=job.memories_processed,
                memories_consolidated=job.memories_consolidated,
                memories_reinforced=job.memories_reinforced,
                error=job.error,
            )
        return ConsolidationRunResult.from_job(job)

    async def _run(self, job: ConsolidationJob) -> _JobOutcome:
        entries = [
            entry
            for entry in await self._short_term.get_many(job.short_term_memory_ids)
            if entry.owner_id == job.owner_id and not entry.is_consolidated
        ]
        outcome = _JobOutcome(processed=len(entries))
        to_embed: list[LongTermMemory] = []

        for group in await self._group(entries):
            draft = self._synthesize(job.owner_id, group)
            target = await self._reinforcement_target(draft)
            if target is None:
                created = await self._long_term.create(draft)
                outcome.consolidated += 1
                outcome.created_ids.append(created.id)
                to_embed.append(created)
            else:
                updated = await self._reinforce(target, draft)
                outcome.reinforced += 1
                if updated.embedding is None:
                    to_embed.append(updated)
            await self._short_term.mark_consolidated([entry.id for entry in group])

        if self._config.embed_created and to_embed:
            await self._long_term.embed_memories(to_embed)
        logger.info(
            "Job %s: processed=%d created=%d reinforced=%d",
            job.id,
            outcome.processed,
            outcome.consolidated,
            outcome.reinforced,
        )
        return outcome

    # ------------------------------------------------------------------
    # Grouping and synthesis
    # ------------------------------------------------------------------

    async def _group(
        self,
        entries: list[ShortTermMemory],
    ) -> list[list[ShortTermMemory]]:
        """Union near-duplicate entries within each memory type."""
        vectors: dict[str, list[float]] = {}
        if self._config.embedding_grouping and entries:
            embedded = await self._embedder.embed_batch([e.content for e in entries])
            vectors = {e.id: v for e, v in zip(entries, embedded)}

        by_type: dict[str, list[ShortTermMemory]] = defaultdict(list)
        for entry in entries:
            by_type[entry.memory_type.value].append(entry)

        groups: list[list[ShortTermMemory]] = []
        for members in by_type.values():
            parent = list(range(len(members)))

            def find(i: int) -> int:
                while parent[i] != i:
                    parent[i] = parent[parent[i]]
                    i = parent[i]
                return i

            for i, j in combinations(range(len(members)), 2):
                if self._near_duplicate(members[i], members[j], vectors):
                    parent[find(j)] = find(i)

            clusters: dict[int, list[ShortTermMemory]] = defaultdict(list)
            for index, member in enumerate(members):
                clusters[find(index)].append(member)
            groups.extend(clusters.values())
        return groups

    def _near_duplicate(
        self,
        left: ShortTermMemory,
        right: ShortTermMemory,
        vectors: dict[str, list[float]],
    ) -> bool:
        if normalize_content(left.content) == normalize_content(right.content):
            return True
        overlap = jaccard(left.content, right.content)
        if overlap >= self._config.near_duplicate_threshold:
            return True
        if left.id in vectors and right.id in vectors:
            similarity = cosine_similarity(vectors[left.id], vectors[right.id])
            return similarity >= self._config.embedding_duplicate_threshold
        return False

    def _synthesize(
        self,
        owner_id: str,
        group: list[ShortTermMemory],
    ) -> LongTermMemory:
        ordered = sorted(
            group,
            key=lambda e: (-e.importance.rank, -e.confidence, e.created_at),
        )
        sentences: list[str] = []
        for entry in ordered:
            sentences = _merge_sentences(sentences, split_sentences(entry.content))
        content = " ".join(sentences)

        importance = Importance.highest([e.importance for e in group])
        size = len(group)
        confidence = sum(e.confidence for e in group) / size
        if size > _LARGE_GROUP_SIZE:
            confidence += _LARGE_GROUP_CONFIDENCE_BONUS
        confidence = min(1.0, confidence)
        base = self._config.initial_strength[importance.value]
        bonus = min(_GROUP_BONUS_CAP, _GROUP_BONUS_STEP * (size - 1))
        strength = min(1.0, (base + confidence) / 2 + bonus)

        sources = Counter(e.source for e in ordered)
        now = self._clock()
        return LongTermMemory(
            owner_id=owner_id,
            memory_type=ordered[0].memory_type,
            content=content,
            summary=summarize(content, self._config.summary_length),
            keywords=extract_keywords(content, self._config.max_keywords),
            context=_group_context(ordered),
            importance=importance,
            strength=strength,
            confidence=confidence,
            decay_rate=self._config.decay_rates[importance.value],
            last_accessed_at=now,
            last_reinforced_at=now,
            created_at=now,
            updated_at=now,
            consolidated_from=[e.id for e in ordered],
            source=sources.most_common(1)[0][0],
            source_chain=_unique([e.source.value for e in ordered]),
        )

    async def _reinforcement_target(
        self,
        draft: LongTermMemory,
    ) -> LongTermMemory | None:
        candidates = await self._long_term.list_memories(
            draft.owner_id,
            memory_type=draft.memory_type,
            limit=self._config.reinforce_candidate_limit,
        )
        best: LongTermMemory | None = None
        best_score = 0.0
        for candidate in candidates:
            score = jaccard(candidate.content, draft.content)
            if score >= self._config.reinforce_threshold and score > best_score:
                best, best_score = candidate, score
        return best

    async def _reinforce(
        self,
        target: LongTermMemory,
        draft: LongTermMemory,
    ) -> LongTermMemory:
        sentences = _merge_sentences(
            split_sentences(target.content), split_sentences(draft.content)
        )
        content = " ".join(sentences)
        importance = Importance.highest([target.importance, draft.importance])
        changes: dict = {
            "importance": importance,
            "confidence": max(target.confidence, draft.confidence),
            "consolidated_from": _unique(
                target.consolidated_from + draft.consolidated_from
            ),
            "source_chain": _unique(target.source_chain + draft.source_chain),
        }
        if importance != target.importance:
            changes["decay_rate"] = self._config.decay_rates[importance.value]
        if content != target.content:
            changes.update(
                {
                    "content": content,
                    "summary": summarize(content, self._config.summary_length),
                    "keywords": extract_keywords(content, self._config.max_keywords),
                    "embedding": None,
                }
            )
        return await self._long_term.reinforce(target.id, changes=changes)
