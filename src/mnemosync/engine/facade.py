"""``MemoryEngine``: one object wiring every memory component together.

Components receive their repositories, embedder, clock and audit logger
through the constructor. ``MemoryEngine.in_memory()`` builds an
in-process engine; ``MemoryEngine.connect()`` builds one on Redis with an
optional Neo4j association graph.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from dataclasses import field
from datetime import datetime
from typing import Any

from neo4j import AsyncDriver
from neo4j import AsyncGraphDatabase
from redis.asyncio import Redis  # type: ignore[import-untyped]

from mnemosync.audit import AuditLogger
from mnemosync.config import AuditConfig
from mnemosync.config import ConsolidationConfig
from mnemosync.config import EmbeddingConfig
from mnemosync.config import MaintenanceConfig
from mnemosync.config import SharingConfig
from mnemosync.config import ShortTermConfig
from mnemosync.config import SimilarityConfig
from mnemosync.config import StorageConfig
from mnemosync.engine.consolidation import ConsolidationPipeline
from mnemosync.engine.consolidation import ConsolidationRunResult
from mnemosync.engine.maintenance import MaintenanceEngine
from mnemosync.engine.maintenance import MaintenanceReport
from mnemosync.engine.maintenance import MaintenanceScheduler
from mnemosync.graph.base import AssociationRepository
from mnemosync.graph.records import RecordAssociationRepository
from mnemosync.graph.schema import init_schema
from mnemosync.graph.service import AssociationGraph
from mnemosync.graph.service import ClusterRunResult
from mnemosync.graph.service import RelatedMemory
from mnemosync.graph.store import Neo4jAssociationRepository
from mnemosync.memory.long_term import LongTermStore
from mnemosync.memory.long_term import SearchHit
from mnemosync.memory.short_term import ShortTermStore
from mnemosync.models.base import utc_now
from mnemosync.models.enums import AccessLevel
from mnemosync.models.enums import BroadcastPolicy
from mnemosync.models.enums import Importance
from mnemosync.models.enums import MemorySource
from mnemosync.models.enums import MemoryType
from mnemosync.models.enums import PoolPolicy
from mnemosync.models.enums import SyncType
from mnemosync.models.jobs import ConsolidationJob
from mnemosync.models.memory import ConversationSession
from mnemosync.models.memory import LongTermMemory
from mnemosync.models.memory import MemoryAssociation
from mnemosync.models.memory import MemoryContext
from mnemosync.models.memory import ShortTermMemory
from mnemosync.models.sharing import AccessRequest
from mnemosync.models.sharing import MemoryPool
from mnemosync.models.sharing import MemoryPoolEntry
from mnemosync.models.sharing import SharingRecord
from mnemosync.models.sharing import SyncCriteria
from mnemosync.models.sharing import SyncSession
from mnemosync.observability import measure
from mnemosync.sharing.pools import PoolMemory
from mnemosync.sharing.pools import PoolService
from mnemosync.sharing.profiles import SharingPolicyTable
from mnemosync.sharing.service import AccessRequestResult
from mnemosync.sharing.service import BroadcastResult
from mnemosync.sharing.service import SharedMemory
from mnemosync.sharing.service import ShareResult
from mnemosync.sharing.service import SharingService
from mnemosync.sharing.sync import KnowledgeSync
from mnemosync.similarity.embedding import build_embedding_provider
from mnemosync.similarity.embedding import Embedder
from mnemosync.storage.base import RecordStore
from mnemosync.storage.memory import InMemoryRecordStore
from mnemosync.storage.redis_store import RedisRecordStore

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


@dataclass
class EngineStores:
    """One record store per collection."""

    short_term: RecordStore[ShortTermMemory]
    sessions: RecordStore[ConversationSession]
    long_term: RecordStore[LongTermMemory]
    associations: RecordStore[MemoryAssociation]
    jobs: RecordStore[ConsolidationJob]
    sharing: RecordStore[SharingRecord]
    requests: RecordStore[AccessRequest]
    pools: RecordStore[MemoryPool]
    pool_entries: RecordStore[MemoryPoolEntry]
    sync_sessions: RecordStore[SyncSession]

    @classmethod
    def in_memory(cls) -> EngineStores:
        return cls(
            short_term=InMemoryRecordStore(ShortTermMemory),
            sessions=InMemoryRecordStore(ConversationSession),
            long_term=InMemoryRecordStore(LongTermMemory),
            associations=InMemoryRecordStore(MemoryAssociation),
            jobs=InMemoryRecordStore(ConsolidationJob),
            sharing=InMemoryRecordStore(SharingRecord),
            requests=InMemoryRecordStore(AccessRequest),
            pools=InMemoryRecordStore(MemoryPool),
            pool_entries=InMemoryRecordStore(MemoryPoolEntry),
            sync_sessions=InMemoryRecordStore(SyncSession),
        )

    @classmethod
    def redis(cls, client: Redis, *, prefix: str = "mnemosync") -> EngineStores:
        return cls(
            short_term=RedisRecordStore(client, ShortTermMemory, prefix=prefix),
            sessions=RedisRecordStore(client, ConversationSession, prefix=prefix),
            long_term=RedisRecordStore(client, LongTermMemory, prefix=prefix),
            associations=RedisRecordStore(client, MemoryAssociation, prefix=prefix),
            jobs=RedisRecordStore(client, ConsolidationJob, prefix=prefix),
            sharing=RedisRecordStore(client, SharingRecord, prefix=prefix),
            requests=RedisRecordStore(client, AccessRequest, prefix=prefix),
            pools=RedisRecordStore(client, MemoryPool, prefix=prefix),
            pool_entries=RedisRecordStore(client, MemoryPoolEntry, prefix=prefix),
            sync_sessions=RedisRecordStore(client, SyncSession, prefix=prefix),
        )

    def all(self) -> list[RecordStore[Any]]:
        return [
            self.short_term,
            self.sessions,
            self.long_term,
            self.associations,
            self.jobs,
            self.sharing,
            self.requests,
            self.pools,
            self.pool_entries,
            self.sync_sessions,
        ]


@dataclass(frozen=True)
class EngineConfig:
    short_term: ShortTermConfig = field(default_factory=ShortTermConfig)
    consolidation: ConsolidationConfig = field(default_factory=ConsolidationConfig)
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    similarity: SimilarityConfig = field(default_factory=SimilarityConfig)
    maintenance: MaintenanceConfig = field(default_factory=MaintenanceConfig)
    sharing: SharingConfig = field(default_factory=SharingConfig)
    audit: AuditConfig = field(default_factory=AuditConfig)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class MemoryEngine:
    """Facade over the short-term, long-term, graph, sharing and maintenance layers."""

    def __init__(
        self,
        stores: EngineStores,
        *,
        association_repository: AssociationRepository | None = None,
        embedder: Embedder | None = None,
        policy: SharingPolicyTable | None = None,
        audit_logger: AuditLogger | None = None,
        config: EngineConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.stores = stores
        clock = clock or utc_now
        self._redis: Redis | None = None
        self._driver: AsyncDriver | None = None

        self.audit = audit_logger or AuditLogger(self.config.audit)
        self.embedder = embedder or Embedder(
            build_embedding_provider(self.config.embedding), self.config.embedding
        )
        self.associations = association_repository or RecordAssociationRepository(
            stores.associations
        )
        self.short_term = ShortTermStore(
            stores.short_term, stores.sessions, self.config.short_term, clock=clock
        )
        self.long_term = LongTermStore(
            stores.long_term,
            self.associations,
            self.embedder,
            self.config.similarity,
            weak_floor=self.config.maintenance.weak_floor,
            clock=clock,
        )
        self.graph = AssociationGraph(
            self.associations, self.long_term, self.config.similarity, clock=clock
        )
        self.consolidation = ConsolidationPipeline(
            self.short_term,
            self.long_term,
            stores.jobs,
            self.embedder,
            audit_logger=self.audit,
            config=self.config.consolidation,
            clock=clock,
        )
        self.maintenance = MaintenanceEngine(
            self.short_term,
            self.long_term,
            self.associations,
            consolidation=self.consolidation,
            audit_logger=self.audit,
            config=self.config.maintenance,
            clock=clock,
        )
        self.sharing = SharingService(
            self.long_term,
            stores.sharing,
            stores.requests,
            policy,
            audit_logger=self.audit,
            config=self.config.sharing,
            clock=clock,
        )
        self.pools = PoolService(
            stores.pools,
            stores.pool_entries,
            self.long_term,
            self.sharing.policy,
            audit_logger=self.audit,
            clock=clock,
        )
        self.sync = KnowledgeSync(
            self.sharing,
            self.long_term,
            stores.sync_sessions,
            audit_logger=self.audit,
            config=self.config.sharing,
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Construction and lifecycle
    # ------------------------------------------------------------------

    @classmethod
    def in_memory(cls, **kwargs: Any) -> MemoryEngine:
        return cls(EngineStores.in_memory(), **kwargs)

    @classmethod
    async def connect(
        cls,
        storage: StorageConfig | None = None,
        **kwargs: Any,
    ) -> MemoryEngine:
        """Build an engine on Redis, with Neo4j edges when ``neo4j_url`` is set."""
        storage = storage or StorageConfig()
        client = Redis.from_url(storage.redis_url)
        driver: AsyncDriver | None = None
        if storage.neo4j_url is not None:
            driver = AsyncGraphDatabase.driver(storage.neo4j_url)
            await init_schema(driver)
            kwargs.setdefault(
                "association_repository", Neo4jAssociationRepository(driver)
            )
        engine = cls(EngineStores.redis(client, prefix=storage.key_prefix), **kwargs)
        engine._redis = client
        engine._driver = driver
        return engine

    async def close(self) -> None:
        """Close backend clients this engine opened."""
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
        if self._driver is not None:
            await self._driver.close()
            self._driver = None

    async def clear(self) -> None:
        """Remove every record and association; used for test cleanup."""
        for store in self.stores.all():
            await store.clear()
        await self.associations.clear()

    def scheduler(self, interval_seconds: float | None = None) -> MaintenanceScheduler:
        interval = (
            self.config.maintenance.interval_seconds
            if interval_seconds is None
            else interval_seconds
        )
        return MaintenanceScheduler(self.maintenance, interval_seconds=interval)

    # ------------------------------------------------------------------
    # Short-term memory
    # ------------------------------------------------------------------

    async def write_short_term_memory(
        self,
        owner_id: str,
        session_id: str,
        memory_type: MemoryType,
        content: str,
        *,
        importance: Importance = Importance.medium,
        confidence: float = 0.5,
        context: MemoryContext | None = None,
        structured_data: dict[str, Any] | None = None,
        source: MemorySource = MemorySource.conversation,
        source_metadata: dict[str, Any] | None = None,
        should_consolidate: bool = False,
    ) -> str:
        """Record an observation; a repeat of the same content is merged."""
        with measure("engine.write_short_term_memory"):
            entry = ShortTermMemory(
                owner_id=owner_id,
                session_id=session_id,
                memory_type=memory_type,
                content=content,
                importance=importance,
                confidence=confidence,
                context=context or MemoryContext(),
                structured_data=structured_data,
                source=source,
                source_metadata=source_metadata,
                should_consolidate=should_consolidate,
            )
            return await self.short_term.write(entry)

    async def cleanup_expired(self, owner_id: str | None = None) -> int:
        with measure("engine.cleanup_expired"):
            return await self.short_term.cleanup_expired(owner_id)

    async def mark_for_consolidation(self, owner_id: str, memory_ids: list[str]) -> int:
        return await self.short_term.mark_for_consolidation(owner_id, memory_ids)

    # ------------------------------------------------------------------
    # Consolidation
    # ------------------------------------------------------------------

    async def consolidate(
        self,
        owner_id: str,
        *,
        session_id: str | None = None,
    ) -> ConsolidationRunResult:
        with measure("engine.consolidate"):
            return await self.consolidation.consolidate(owner_id, session_id=session_id)

    async def process_job(self, job_id: str) -> ConsolidationRunResult:
        with measure("engine.process_job"):
            return await self.consolidation.process_job(job_id)

    # ------------------------------------------------------------------
    # Long-term memory and similarity
    # ------------------------------------------------------------------

    async def semantic_search(
        self,
        owner_id: str,
        query: str,
        *,
        memory_types: list[MemoryType] | None = None,
        limit: int | None = None,
        min_similarity: float | None = None,
    ) -> list[SearchHit]:
        with measure("engine.semantic_search"):
            return await self.long_term.semantic_search(
                owner_id,
                query,
                memory_types=memory_types,
                limit=limit,
                min_similarity=min_similarity,
            )

    async def keyword_search(
        self,
        owner_id: str,
        query: str,
        *,
        memory_types: list[MemoryType] | None = None,
        limit: int = 20,
    ) -> list[SearchHit]:
        with measure("engine.keyword_search"):
            return await self.long_term.keyword_search(
                owner_id, query, memory_types=memory_types, limit=limit
            )

    async def find_similar(
        self,
        memory_id: str,
        *,
        limit: int | None = None,
        min_similarity: float | None = None,
    ) -> list[SearchHit]:
        with measure("engine.find_similar"):
            return await self.long_term.find_similar(
                memory_id, limit=limit, min_similarity=min_similarity
            )

    async def index_embeddings(self, owner_id: str) -> int:
        with measure("engine.index_embeddings"):
            return await self.long_term.index_embeddings(owner_id)

    async def reinforce_memory(
        self,
        memory_id: str,
        *,
        amount: float = 0.1,
    ) -> LongTermMemory:
        return await self.long_term.reinforce(memory_id, amount=amount)

    async def verify_memory(self, memory_id: str) -> LongTermMemory:
        return await self.long_term.verify(memory_id)

    # ------------------------------------------------------------------
    # Association graph
    # ------------------------------------------------------------------

    async def cluster_memories(
        self,
        owner_id: str,
        *,
        memory_type: MemoryType | None = None,
        threshold: float | None = None,
    ) -> ClusterRunResult:
        with measure("engine.cluster_memories"):
            return await self.graph.cluster_memories(
                owner_id, memory_type=memory_type, threshold=threshold
            )

    async def get_related_memories(
        self,
        memory_id: str,
        *,
        limit: int = 10,
    ) -> list[RelatedMemory]:
        return await self.graph.related(memory_id, limit=limit)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def decay_sweep(self, owner_id: str) -> MaintenanceReport:
        """Age the owner's associations and drop those below the floor."""
        with measure("engine.decay_sweep"):
            return await self.maintenance.decay_sweep(owner_id)

    async def decay_long_term(self, owner_id: str) -> MaintenanceReport:
        with measure("engine.decay_long_term"):
            return await self.maintenance.decay_long_term(owner_id)

    async def archive_idle_sessions(self, owner_id: str) -> MaintenanceReport:
        with measure("engine.archive_idle_sessions"):
            return await self.maintenance.archive_idle_sessions(owner_id)

    async def remove_weak(self, owner_id: str, *, dry_run: bool = False) -> int:
        with measure("engine.remove_weak"):
            return await self.maintenance.remove_weak(owner_id, dry_run=dry_run)

    async def run_maintenance(
        self,
        owner_id: str | None = None,
    ) -> list[MaintenanceReport]:
        """Full sweep for one owner, or consolidation plus sweeps for all."""
        with measure("engine.run_maintenance"):
            if owner_id is not None:
                return [await self.maintenance.run(owner_id)]
            return await self.maintenance.run_all()

    async def analyze_usage(self, owner_id: str) -> dict[str, Any]:
        return await self.maintenance.analyze_usage(owner_id)

    # ------------------------------------------------------------------
    # Sharing
    # ------------------------------------------------------------------

    async def share_memory(
        self,
        memory_id: str,
        from_agent_type: str,
        to_agent_type: str,
        reason: str,
        access_level: AccessLevel,
    ) -> ShareResult:
        with measure("engine.share_memory"):
            return await self.sharing.share_memory(
                memory_id, from_agent_type, to_agent_type, reason, access_level
            )

    async def revoke_sharing(
        self,
        sharing_id: str,
        *,
        revoked_by: str,
    ) -> SharingRecord:
        return await self.sharing.revoke_sharing(sharing_id, revoked_by=revoked_by)

    async def get_shared_memories(
        self,
        agent_type: str,
        *,
        memory_types: list[MemoryType] | None = None,
        min_importance: Importance | None = None,
        limit: int | None = None,
    ) -> list[SharedMemory]:
        with measure("engine.get_shared_memories"):
            return await self.sharing.get_shared_memories(
                agent_type,
                memory_types=memory_types,
                min_importance=min_importance,
                limit=limit,
            )

    async def broadcast_memory(
        self,
        memory_id: str,
        source_agent_type: str,
        policy: BroadcastPolicy = BroadcastPolicy.broadcast,
    ) -> BroadcastResult:
        with measure("engine.broadcast_memory"):
            return await self.sharing.broadcast_memory(
                memory_id, source_agent_type, policy
            )

    async def request_access(
        self,
        requesting_agent_type: str,
        memory_id: str,
        reason: str,
        access_level: AccessLevel,
        *,
        owner_agent_type: str | None = None,
    ) -> AccessRequestResult:
        with measure("engine.request_access"):
            return await self.sharing.request_access(
                requesting_agent_type,
                memory_id,
                reason,
                access_level,
                owner_agent_type=owner_agent_type,
            )

    async def process_access_request(
        self,
        request_id: str,
        *,
        approve: bool,
        processed_by: str,
        reason: str | None = None,
    ) -> AccessRequestResult:
        with measure("engine.process_access_request"):
            return await self.sharing.process_access_request(
                request_id, approve=approve, processed_by=processed_by, reason=reason
            )

    async def sync_agent_knowledge(
        self,
        agent1_type: str,
        agent2_type: str,
        sync_type: SyncType = SyncType.full,
        criteria: SyncCriteria | None = None,
    ) -> SyncSession:
        with measure("engine.sync_agent_knowledge"):
            return await self.sync.sync_agent_knowledge(
                agent1_type, agent2_type, sync_type, criteria
            )

    # ------------------------------------------------------------------
    # Pools
    # ------------------------------------------------------------------

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
        return await self.pools.create_pool(
            name,
            participating_agents,
            memory_types,
            policy=policy,
            description=description,
            created_by=created_by,
        )

    async def add_to_pool(
        self,
        pool_id: str,
        memory_id: str,
        contributing_agent: str,
    ) -> MemoryPoolEntry:
        with measure("engine.add_to_pool"):
            return await self.pools.add_to_pool(pool_id, memory_id, contributing_agent)

    async def review_pool_entry(
        self,
        entry_id: str,
        reviewer: str,
        *,
        approve: bool,
    ) -> MemoryPoolEntry:
        return await self.pools.review_pool_entry(entry_id, reviewer, approve=approve)

    async def get_pool_memories(
        self,
        pool_id: str,
        agent_type: str,
        *,
        limit: int = 100,
    ) -> list[PoolMemory]:
        return await self.pools.get_pool_memories(pool_id, agent_type, limit=limit)
