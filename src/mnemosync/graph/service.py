"""Association graph operations: linking, clustering and traversal."""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from dataclasses import field
from datetime import datetime
from itertools import combinations

from mnemosync.config import SimilarityConfig
from mnemosync.errors import NotFoundError
from mnemosync.graph.base import association_id
from mnemosync.graph.base import AssociationRepository
from mnemosync.memory.long_term import LongTermStore
from mnemosync.models.base import utc_now
from mnemosync.models.enums import AssociationType
from mnemosync.models.enums import MemoryType
from mnemosync.models.memory import LongTermMemory
from mnemosync.models.memory import MemoryAssociation
from mnemosync.similarity.kernel import cosine_similarity
from mnemosync.similarity.kernel import greedy_cluster

logger = logging.getLogger(__name__)


@dataclass
class ClusterRunResult:
    """Outcome of one clustering or indexing pass."""

    clusters: list[list[str]] = field(default_factory=list)
    associations_created: int = 0
    associations_reinforced: int = 0


@dataclass
class RelatedMemory:
    memory: LongTermMemory
    association: MemoryAssociation


def _clamp(value: float) -> float:
    return min(1.0, max(0.0, value))


class AssociationGraph:
    """Builds and reads weighted edges between an owner's long-term memories."""

    def __init__(
        self,
        repository: AssociationRepository,
        long_term: LongTermStore,
        config: SimilarityConfig | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._repo = repository
        self._long_term = long_term
        self._config = config or SimilarityConfig()
        self._clock = clock or utc_now

    @property
    def repository(self) -> AssociationRepository:
        return self._repo

    async def link(
        self,
        owner_id: str,
        from_memory_id: str,
        to_memory_id: str,
        association_type: AssociationType,
        *,
        strength: float,
        confidence: float,
    ) -> tuple[MemoryAssociation, bool]:
        """Create the edge, or reinforce it keeping the larger strength.

        Returns the stored edge and whether it was newly created.
        """
        now = self._clock()
        assoc_id = association_id(from_memory_id, to_memory_id, association_type)
        existing = await self._repo.get(assoc_id)
        edge = MemoryAssociation(
            id=assoc_id,
            owner_id=owner_id,
            from_memory_id=from_memory_id,
            to_memory_id=to_memory_id,
            association_type=association_type,
            strength=_clamp(
                max(existing.strength, strength) if existing else strength
            ),
            confidence=_clamp(confidence),
            created_at=existing.created_at if existing else now,
            last_reinforced_at=now,
            decayed_at=None,
        )
        return await self._repo.save(edge), existing is None

    async def reinforce_edge(
        self,
        assoc_id: str,
        *,
        amount: float = 0.1,
    ) -> MemoryAssociation:
        edge = await self._repo.get(assoc_id)
        if edge is None:
            raise NotFoundError(f"association {assoc_id} not found")
        updated = await self._repo.update(
            assoc_id,
            {
                "strength": _clamp(edge.strength + amount),
                "last_reinforced_at": self._clock(),
                "decayed_at": None,
            },
        )
        if updated is None:
            raise NotFoundError(f"association {assoc_id} not found")
        return updated

    async def cluster_memories(
        self,
        owner_id: str,
        *,
        memory_type: MemoryType | None = None,
        threshold: float | None = None,
    ) -> ClusterRunResult:
        """Greedy-cluster the owner's newest memories and link cluster pairs.

        Memories without an embedding are embedded first. The window is
        capped at ``max_cluster_window``.
        """
        threshold = self._config.cluster_threshold if threshold is None else threshold
        await self._long_term.index_embeddings(owner_id)
        window = await self._long_term.list_memories(
            owner_id, memory_type=memory_type, limit=self._config.max_cluster_window
        )
        candidates = [(m.id, m.embedding) for m in window if m.embedding]
        clusters = greedy_cluster(
            candidates, threshold, max_window=self._config.max_cluster_window
        )

        result = ClusterRunResult(clusters=[c.member_ids for c in clusters])
        for cluster in clusters:
            for (left, right), similarity in cluster.pair_similarity.items():
                _, created = await self.link(
                    owner_id,
                    left,
                    right,
                    AssociationType.similar,
                    strength=similarity,
                    confidence=self._config.cluster_confidence,
                )
                if created:
                    result.associations_created += 1
                else:
                    result.associations_reinforced += 1
        logger.info(
            "Clustered %d memories for %s into %d clusters",
            len(candidates),
            owner_id,
            len(clusters),
        )
        return result

    async def index_by_domain(self, owner_id: str) -> ClusterRunResult:
        """Link memories sharing a context domain when they are similar enough."""
        await self._long_term.index_embeddings(owner_id)
        window = await self._long_term.list_memories(
            owner_id, limit=self._config.max_cluster_window
        )
        by_domain: dict[str, list[LongTermMemory]] = defaultdict(list)
        for memory in window:
            if memory.context.domain and memory.embedding:
                by_domain[memory.context.domain].append(memory)

        result = ClusterRunResult()
        for members in by_domain.values():
            linked: list[str] = []
            for left, right in combinations(members, 2):
                similarity = cosine_similarity(left.embedding, right.embedding)
                if similarity < self._config.min_similarity:
                    continue
                _, created = await self.link(
                    owner_id,
                    left.id,
                    right.id,
                    AssociationType.related,
                    strength=similarity,
                    confidence=self._config.related_confidence,
                )
                if created:
                    result.associations_created += 1
                else:
                    result.associations_reinforced += 1
                linked.extend(m for m in (left.id, right.id) if m not in linked)
            if linked:
                result.clusters.append(linked)
        return result

    async def related(self, memory_id: str, *, limit: int = 10) -> list[RelatedMemory]:
        """Neighbours of *memory_id*, strongest edge first."""
        await self._long_term.require(memory_id)
        edges = await self._repo.for_memory(memory_id, limit=limit)
        other_ids = [
            e.to_memory_id if e.from_memory_id == memory_id else e.from_memory_id
            for e in edges
        ]
        memories = {m.id: m for m in await self._long_term.get_many(other_ids)}
        return [
            RelatedMemory(memory=memories[other], association=edge)
            for edge, other in zip(edges, other_ids)
            if other in memories
        ]
