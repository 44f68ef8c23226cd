"""MnemoSync: FastMCP server exposing the memory engine as MCP tools.

Call ``configure()`` before using the tools. Every tool validates its
arguments with the models in ``mnemosync.models.schemas``, checks scopes
with ``authorize_tool`` and maps engine errors to a result with
``status`` ``rejected`` or ``error`` and the error's ``error_code``.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from time import perf_counter
from typing import Any
from typing import TypeVar

from fastmcp import FastMCP
from fastmcp.server.auth import AccessToken
from fastmcp.server.dependencies import get_access_token
from pydantic import BaseModel
from pydantic import ValidationError

from mnemosync.audit import AuditLogger
from mnemosync.auth import create_mcp_auth
from mnemosync.authz import authorize_tool
from mnemosync.config import StorageConfig
from mnemosync.engine import EngineConfig
from mnemosync.engine import MemoryEngine
from mnemosync.errors import ExternalServiceError
from mnemosync.errors import MemoryEngineError
from mnemosync.memory import SearchHit
from mnemosync.models.enums import BroadcastPolicy
from mnemosync.models.enums import SyncType
from mnemosync.models.schemas import AccessRequestToolResult
from mnemosync.models.schemas import AddToPoolInput
from mnemosync.models.schemas import BroadcastMemoryInput
from mnemosync.models.schemas import BroadcastMemoryResult
from mnemosync.models.schemas import ConsolidateInput
from mnemosync.models.schemas import ConsolidateResult
from mnemosync.models.schemas import CreatePoolInput
from mnemosync.models.schemas import FindSimilarInput
from mnemosync.models.schemas import GetPoolMemoriesInput
from mnemosync.models.schemas import GetSharedMemoriesInput
from mnemosync.models.schemas import MaintenanceResult
from mnemosync.models.schemas import PoolEntryResult
from mnemosync.models.schemas import PoolMemoriesResult
from mnemosync.models.schemas import PoolResult
from mnemosync.models.schemas import ProcessAccessRequestInput
from mnemosync.models.schemas import RequestAccessInput
from mnemosync.models.schemas import RunMaintenanceInput
from mnemosync.models.schemas import SearchHitEntry
from mnemosync.models.schemas import SearchResult
from mnemosync.models.schemas import SemanticSearchInput
from mnemosync.models.schemas import ShareMemoryInput
from mnemosync.models.schemas import ShareMemoryResult
from mnemosync.models.schemas import SharedMemoriesResult
from mnemosync.models.schemas import SyncAgentKnowledgeInput
from mnemosync.models.schemas import SyncAgentKnowledgeResult
from mnemosync.models.schemas import ToolResult
from mnemosync.models.schemas import WriteShortTermMemoryInput
from mnemosync.models.schemas import WriteShortTermMemoryResult
from mnemosync.observability import record_latency
from mnemosync.sharing import load_policy_table
from mnemosync.similarity import Embedder

logger = logging.getLogger(__name__)

mcp = FastMCP("MnemoSync", auth=create_mcp_auth())

# ---------------------------------------------------------------------------
# Engine instance (set via configure())
# ---------------------------------------------------------------------------

_engine: MemoryEngine | None = None


async def configure(
    storage: StorageConfig | None = None,
    *,
    engine_config: EngineConfig | None = None,
    embedder: Embedder | None = None,
    policy_path: str | Path | None = None,
    audit_logger: AuditLogger | None = None,
    clock: Callable[[], datetime] | None = None,
) -> MemoryEngine:
    """Build the engine behind the MCP tools.

    ``storage.backend`` selects ``memory`` (in-process) or ``redis``; with
    Redis, ``storage.neo4j_url`` moves the association graph to Neo4j.
    """
    global _engine
    if _engine is not None:
        await _engine.close()
        _engine = None

    storage = storage or StorageConfig()
    kwargs: dict[str, Any] = {
        "config": engine_config,
        "embedder": embedder,
        "audit_logger": audit_logger,
        "clock": clock,
    }
    if policy_path is not None:
        kwargs["policy"] = load_policy_table(policy_path)

    if storage.backend == "memory":
        _engine = MemoryEngine.in_memory(**kwargs)
    elif storage.backend == "redis":
        _engine = await MemoryEngine.connect(storage, **kwargs)
    else:
        raise ValueError(f"Unsupported storage backend: {storage.backend!r}")
    return _engine


async def shutdown() -> None:
    """Close backend clients and release server resources."""
    global _engine
    if _engine is not None:
        await _engine.close()
        _engine = None


async def _reset_engine() -> None:
    """Clear every store; exposed for test cleanup."""
    if _engine is not None:
        await _engine.clear()


def _get_engine() -> MemoryEngine | None:
    return _engine


# ---------------------------------------------------------------------------
# Tool plumbing
# ---------------------------------------------------------------------------

_I = TypeVar("_I", bound=BaseModel)
_O = TypeVar("_O", bound=ToolResult)


def _current_token() -> AccessToken | None:
    try:
        return get_access_token()
    except RuntimeError:
        return None


def _validation_message(exc: ValidationError) -> str:
    err = exc.errors()[0] if exc.errors() else {}
    loc = ".".join(str(part) for part in err.get("loc", ()))
    msg = str(err.get("msg", "Invalid input"))
    return f"{loc}: {msg}" if loc else msg


def _error_status(exc: MemoryEngineError) -> str:
    if isinstance(exc, ExternalServiceError) or exc.error_code == "internal_error":
        return "error"
    return "rejected"


async def _invoke(
    tool_name: str,
    result_cls: type[_O],
    input_cls: type[_I],
    raw: dict[str, Any],
    action: Callable[[MemoryEngine, _I], Awaitable[_O]],
) -> _O:
    """Authorize, validate and run one tool call, recording its latency."""
    start = perf_counter()
    ok = False
    try:
        decision = authorize_tool(tool_name, _current_token())
        if not decision.allowed:
            return result_cls(
                status="rejected",
                error_code=decision.error_code,
                message=decision.message,
            )

        engine = _get_engine()
        if engine is None:
            return result_cls(
                status="error",
                error_code="engine_not_configured",
                message="Memory engine not configured. Call configure() first.",
            )

        try:
            validated = input_cls.model_validate(raw)
        except ValidationError as exc:
            return result_cls(
                status="rejected",
                error_code="validation_error",
                message=_validation_message(exc),
            )

        try:
            result = await action(engine, validated)
        except MemoryEngineError as exc:
            logger.info("Tool %s failed: %s", tool_name, exc)
            return result_cls(
                status=_error_status(exc),
                error_code=exc.error_code,
                message=str(exc),
            )
        ok = result.status == "ok"
        return result
    finally:
        record_latency(
            operation=f"mcp.{tool_name}",
            duration_ms=(perf_counter() - start) * 1000,
            ok=ok,
        )


def _hit_entry(hit: SearchHit) -> SearchHitEntry:
    memory = hit.memory
    return SearchHitEntry(
        memory_id=memory.id,
        memory_type=memory.memory_type,
        content=memory.content,
        summary=memory.summary,
        keywords=memory.keywords,
        importance=memory.importance,
        strength=memory.strength,
        score=hit.score,
    )


# ---------------------------------------------------------------------------
# Tools: memory
# ---------------------------------------------------------------------------


@mcp.tool
async def write_short_term_memory(
    owner_id: str,
    session_id: str,
    memory_type: str,
    content: str,
    importance: str = "medium",
    confidence: float = 0.5,
    context: dict | None = None,
    structured_data: dict | None = None,
    source: str = "conversation",
    should_consolidate: bool = False,
) -> WriteShortTermMemoryResult:
    """Record a short-term observation for an owner's session.

    Args:
        owner_id: Owning user or tenant.
        session_id: Producer session the observation belongs to.
        memory_type: Kind of knowledge (domain_knowledge, feedback, ...).
        content: The observation as text.
        importance: critical, high, medium, low or temporary.
        confidence: Producer confidence in [0, 1].
        context: Conversation, task, contract, vendor and agent ids.
        structured_data: Optional structured payload.
        source: How the observation was learned.
        should_consolidate: Flag for promotion to long-term memory.
    """

    async def action(
        engine: MemoryEngine, data: WriteShortTermMemoryInput
    ) -> WriteShortTermMemoryResult:
        memory_id = await engine.write_short_term_memory(
            data.owner_id,
            data.session_id,
            data.memory_type,
            data.content,
            importance=data.importance,
            confidence=data.confidence,
            context=data.context,
            structured_data=data.structured_data,
            source=data.source,
            should_consolidate=data.should_consolidate,
        )
        return WriteShortTermMemoryResult(memory_id=memory_id)

    return await _invoke(
        "write_short_term_memory",
        WriteShortTermMemoryResult,
        WriteShortTermMemoryInput,
        {
            "owner_id": owner_id,
            "session_id": session_id,
            "memory_type": memory_type,
            "content": content,
            "importance": importance,
            "confidence": confidence,
            "context": context,
            "structured_data": structured_data,
            "source": source,
            "should_consolidate": should_consolidate,
        },
        action,
    )


@mcp.tool
async def consolidate(
    owner_id: str,
    session_id: str | None = None,
) -> ConsolidateResult:
    """Promote an owner's flagged short-term memories into long-term memory.

    Args:
        owner_id: Owner whose pending entries are consolidated.
        session_id: Optional session restricting the batch.
    """

    async def action(engine: MemoryEngine, data: ConsolidateInput) -> ConsolidateResult:
        run = await engine.consolidate(data.owner_id, session_id=data.session_id)
        return ConsolidateResult(
            job_id=run.job_id,
            job_status=run.status.value if run.status is not None else None,
            memories_processed=run.memories_processed,
            memories_consolidated=run.memories_consolidated,
            memories_reinforced=run.memories_reinforced,
            created_long_term_memory_ids=run.created_long_term_memory_ids,
            job_error=run.error,
        )

    return await _invoke(
        "consolidate",
        ConsolidateResult,
        ConsolidateInput,
        {"owner_id": owner_id, "session_id": session_id},
        action,
    )


@mcp.tool
async def semantic_search(
    owner_id: str,
    query: str,
    memory_types: list[str] | None = None,
    limit: int = 20,
    min_similarity: float | None = None,
) -> SearchResult:
    """Find an owner's long-term memories closest in meaning to a query.

    Args:
        owner_id: Owner whose memories are searched.
        query: Natural language query.
        memory_types: Optional memory type filter.
        limit: Max hits returned.
        min_similarity: Cosine threshold (defaults to 0.7).
    """

    async def action(engine: MemoryEngine, data: SemanticSearchInput) -> SearchResult:
        hits = await engine.semantic_search(
            data.owner_id,
            data.query,
            memory_types=data.memory_types,
            limit=data.limit,
            min_similarity=data.min_similarity,
        )
        return SearchResult(hits=[_hit_entry(hit) for hit in hits])

    return await _invoke(
        "semantic_search",
        SearchResult,
        SemanticSearchInput,
        {
            "owner_id": owner_id,
            "query": query,
            "memory_types": memory_types,
            "limit": limit,
            "min_similarity": min_similarity,
        },
        action,
    )


@mcp.tool
async def find_similar(
    memory_id: str,
    limit: int = 10,
    min_similarity: float | None = None,
) -> SearchResult:
    """Find long-term memories similar to an existing one."""

    async def action(engine: MemoryEngine, data: FindSimilarInput) -> SearchResult:
        hits = await engine.find_similar(
            data.memory_id, limit=data.limit, min_similarity=data.min_similarity
        )
        return SearchResult(hits=[_hit_entry(hit) for hit in hits])

    return await _invoke(
        "find_similar",
        SearchResult,
        FindSimilarInput,
        {"memory_id": memory_id, "limit": limit, "min_similarity": min_similarity},
        action,
    )


# ---------------------------------------------------------------------------
# Tools: sharing
# ---------------------------------------------------------------------------


@mcp.tool
async def share_memory(
    memory_id: str,
    from_agent_type: str,
    to_agent_type: str,
    reason: str = "",
    access_level: str = "read",
) -> ShareMemoryResult:
    """Share a long-term memory with another agent type.

    Args:
        memory_id: Long-term memory to share.
        from_agent_type: Sharing agent.
        to_agent_type: Receiving agent.
        reason: Why the memory is shared.
        access_level: full, read, summary or metadata.
    """

    async def action(engine: MemoryEngine, data: ShareMemoryInput) -> ShareMemoryResult:
        shared = await engine.share_memory(
            data.memory_id,
            data.from_agent_type,
            data.to_agent_type,
            data.reason,
            data.access_level,
        )
        return ShareMemoryResult(
            shared=shared.shared, sharing_id=shared.sharing_id, reason=shared.reason
        )

    return await _invoke(
        "share_memory",
        ShareMemoryResult,
        ShareMemoryInput,
        {
            "memory_id": memory_id,
            "from_agent_type": from_agent_type,
            "to_agent_type": to_agent_type,
            "reason": reason,
            "access_level": access_level,
        },
        action,
    )


@mcp.tool
async def broadcast_memory(
    memory_id: str,
    source_agent_type: str,
    policy: str = BroadcastPolicy.broadcast.value,
) -> BroadcastMemoryResult:
    """Broadcast a critical or high importance memory to relevant agents.

    Args:
        memory_id: Long-term memory to broadcast.
        source_agent_type: Broadcasting agent (never a recipient).
        policy: broadcast, selective or need_to_know.
    """

    async def action(
        engine: MemoryEngine, data: BroadcastMemoryInput
    ) -> BroadcastMemoryResult:
        result = await engine.broadcast_memory(
            data.memory_id, data.source_agent_type, data.policy
        )
        return BroadcastMemoryResult(
            broadcasted=result.broadcasted,
            recipients=result.recipients,
            shared_with=result.shared_with,
            failed=result.failed,
            reason=result.reason,
        )

    return await _invoke(
        "broadcast_memory",
        BroadcastMemoryResult,
        BroadcastMemoryInput,
        {
            "memory_id": memory_id,
            "source_agent_type": source_agent_type,
            "policy": policy,
        },
        action,
    )


@mcp.tool
async def request_access(
    requesting_agent_type: str,
    memory_id: str,
    reason: str,
    access_level: str = "read",
    owner_agent_type: str | None = None,
) -> AccessRequestToolResult:
    """Ask for access to a memory; low-risk requests are approved at once."""

    async def action(
        engine: MemoryEngine, data: RequestAccessInput
    ) -> AccessRequestToolResult:
        result = await engine.request_access(
            data.requesting_agent_type,
            data.memory_id,
            data.reason,
            data.access_level,
            owner_agent_type=data.owner_agent_type,
        )
        return AccessRequestToolResult(
            request_id=result.request_id,
            request_status=result.status.value,
            auto_approved=result.auto_approved,
            sharing_id=result.sharing_id,
        )

    return await _invoke(
        "request_access",
        AccessRequestToolResult,
        RequestAccessInput,
        {
            "requesting_agent_type": requesting_agent_type,
            "memory_id": memory_id,
            "reason": reason,
            "access_level": access_level,
            "owner_agent_type": owner_agent_type,
        },
        action,
    )


@mcp.tool
async def process_access_request(
    request_id: str,
    decision: str,
    processed_by: str,
    reason: str | None = None,
) -> AccessRequestToolResult:
    """Approve or deny a pending access request.

    Args:
        request_id: Pending request to decide.
        decision: approved or denied.
        processed_by: Agent or user making the decision.
        reason: Optional explanation recorded on the request.
    """

    async def action(
        engine: MemoryEngine, data: ProcessAccessRequestInput
    ) -> AccessRequestToolResult:
        result = await engine.process_access_request(
            data.request_id,
            approve=data.decision == "approved",
            processed_by=data.processed_by,
            reason=data.reason,
        )
        return AccessRequestToolResult(
            request_id=result.request_id,
            request_status=result.status.value,
            sharing_id=result.sharing_id,
        )

    return await _invoke(
        "process_access_request",
        AccessRequestToolResult,
        ProcessAccessRequestInput,
        {
            "request_id": request_id,
            "decision": decision,
            "processed_by": processed_by,
            "reason": reason,
        },
        action,
    )


@mcp.tool
async def sync_agent_knowledge(
    agent1_type: str,
    agent2_type: str,
    sync_type: str = SyncType.full.value,
    criteria: dict | None = None,
) -> SyncAgentKnowledgeResult:
    """Exchange what each agent provides and the other needs.

    Args:
        agent1_type: First agent.
        agent2_type: Second agent.
        sync_type: full, differential (last 24h) or selective.
        criteria: Optional memory_types, min_importance, after, owner_id.
    """

    async def action(
        engine: MemoryEngine, data: SyncAgentKnowledgeInput
    ) -> SyncAgentKnowledgeResult:
        session = await engine.sync_agent_knowledge(
            data.agent1_type, data.agent2_type, data.sync_type, data.criteria
        )
        return SyncAgentKnowledgeResult(
            sync_id=session.id,
            sync_status=session.status.value,
            stats=session.stats,
        )

    return await _invoke(
        "sync_agent_knowledge",
        SyncAgentKnowledgeResult,
        SyncAgentKnowledgeInput,
        {
            "agent1_type": agent1_type,
            "agent2_type": agent2_type,
            "sync_type": sync_type,
            "criteria": criteria,
        },
        action,
    )


@mcp.tool
async def get_shared_memories(
    agent_type: str,
    memory_types: list[str] | None = None,
    min_importance: str | None = None,
    limit: int = 50,
) -> SharedMemoriesResult:
    """List memories shared with an agent, projected to its access level."""

    async def action(
        engine: MemoryEngine, data: GetSharedMemoriesInput
    ) -> SharedMemoriesResult:
        shared = await engine.get_shared_memories(
            data.agent_type,
            memory_types=data.memory_types,
            min_importance=data.min_importance,
            limit=data.limit,
        )
        return SharedMemoriesResult(
            memories=[
                {
                    **item.memory,
                    "sharing": {
                        "sharing_id": item.sharing.id,
                        "shared_by": item.sharing.from_agent_type,
                        "access_level": item.sharing.access_level.value,
                        "reason": item.sharing.reason,
                        "shared_at": item.sharing.shared_at.isoformat(),
                    },
                }
                for item in shared
            ]
        )

    return await _invoke(
        "get_shared_memories",
        SharedMemoriesResult,
        GetSharedMemoriesInput,
        {
            "agent_type": agent_type,
            "memory_types": memory_types,
            "min_importance": min_importance,
            "limit": limit,
        },
        action,
    )


# ---------------------------------------------------------------------------
# Tools: pools
# ---------------------------------------------------------------------------


@mcp.tool
async def create_pool(
    name: str,
    participating_agents: list[str],
    memory_types: list[str],
    policy: str = "open",
    description: str = "",
    created_by: str | None = None,
) -> PoolResult:
    """Create a memory pool shared by the participating agents."""

    async def action(engine: MemoryEngine, data: CreatePoolInput) -> PoolResult:
        pool = await engine.create_pool(
            data.name,
            data.participating_agents,
            data.memory_types,
            policy=data.policy,
            description=data.description,
            created_by=data.created_by,
        )
        return PoolResult(pool_id=pool.id, name=pool.name, policy=pool.policy)

    return await _invoke(
        "create_pool",
        PoolResult,
        CreatePoolInput,
        {
            "name": name,
            "participating_agents": participating_agents,
            "memory_types": memory_types,
            "policy": policy,
            "description": description,
            "created_by": created_by,
        },
        action,
    )


@mcp.tool
async def add_to_pool(
    pool_id: str,
    memory_id: str,
    contributing_agent: str,
) -> PoolEntryResult:
    """Contribute a long-term memory to a pool."""

    async def action(engine: MemoryEngine, data: AddToPoolInput) -> PoolEntryResult:
        entry = await engine.add_to_pool(
            data.pool_id, data.memory_id, data.contributing_agent
        )
        return PoolEntryResult(entry_id=entry.id, entry_status=entry.status.value)

    return await _invoke(
        "add_to_pool",
        PoolEntryResult,
        AddToPoolInput,
        {
            "pool_id": pool_id,
            "memory_id": memory_id,
            "contributing_agent": contributing_agent,
        },
        action,
    )


@mcp.tool
async def get_pool_memories(
    pool_id: str,
    agent_type: str,
    limit: int = 100,
) -> PoolMemoriesResult:
    """List a pool's active memories; empty for non-participants."""

    async def action(
        engine: MemoryEngine, data: GetPoolMemoriesInput
    ) -> PoolMemoriesResult:
        items = await engine.get_pool_memories(
            data.pool_id, data.agent_type, limit=data.limit
        )
        return PoolMemoriesResult(
            memories=[
                {
                    **item.memory,
                    "pool": {
                        "pool_name": item.pool_name,
                        "contributed_by": item.entry.contributed_by,
                        "contributed_at": item.entry.contributed_at.isoformat(),
                    },
                }
                for item in items
            ]
        )

    return await _invoke(
        "get_pool_memories",
        PoolMemoriesResult,
        GetPoolMemoriesInput,
        {"pool_id": pool_id, "agent_type": agent_type, "limit": limit},
        action,
    )


# ---------------------------------------------------------------------------
# Tools: maintenance
# ---------------------------------------------------------------------------


@mcp.tool
async def run_maintenance(owner_id: str | None = None) -> MaintenanceResult:
    """Run decay, pruning and archival sweeps.

    Args:
        owner_id: Sweep one owner; omit to consolidate and sweep every owner.
    """

    async def action(
        engine: MemoryEngine, data: RunMaintenanceInput
    ) -> MaintenanceResult:
        reports = await engine.run_maintenance(data.owner_id)
        return MaintenanceResult(reports=[report.as_dict() for report in reports])

    return await _invoke(
        "run_maintenance",
        MaintenanceResult,
        RunMaintenanceInput,
        {"owner_id": owner_id},
        action,
    )
