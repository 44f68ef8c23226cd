"""Pydantic models for the MCP interface.

Input models validate tool arguments; output models shape responses.
Every result carries ``status`` (``ok``, ``rejected`` or ``error``) and,
when not ok, an ``error_code`` and ``message``. FastMCP serializes the
models automatically.
"""

from __future__ import annotations

from typing import Any
from typing import Literal

from pydantic import BaseModel
from pydantic import Field

from mnemosync.models.enums import AccessLevel
from mnemosync.models.enums import BroadcastPolicy
from mnemosync.models.enums import Importance
from mnemosync.models.enums import MemorySource
from mnemosync.models.enums import MemoryType
from mnemosync.models.enums import PoolPolicy
from mnemosync.models.enums import SyncType
from mnemosync.models.memory import MemoryContext
from mnemosync.models.sharing import SyncCriteria
from mnemosync.models.sharing import SyncStats

# ---------------------------------------------------------------------------
# Input models: memory
# ---------------------------------------------------------------------------


class WriteShortTermMemoryInput(BaseModel):
    """Input for write_short_term_memory tool."""

    owner_id: str = Field(min_length=1, description="Owning user or tenant.")
    session_id: str = Field(min_length=1, description="Producer session id.")
    memory_type: MemoryType = Field(description="Kind of knowledge recorded.")
    content: str = Field(min_length=1, description="The observation as text.")
    importance: Importance = Field(
        default=Importance.medium,
        description="Importance tier; drives expiry and consolidation.",
    )
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    context: MemoryContext | None = Field(
        default=None,
        description="Conversation, task and entity ids the observation concerns.",
    )
    structured_data: dict[str, Any] | None = None
    source: MemorySource = MemorySource.conversation
    should_consolidate: bool = Field(
        default=False,
        description="Flag for promotion regardless of importance.",
    )


class ConsolidateInput(BaseModel):
    owner_id: str = Field(min_length=1)
    session_id: str | None = Field(
        default=None,
        description="Restrict the batch to one session.",
    )


class SemanticSearchInput(BaseModel):
    """Input for semantic_search tool."""

    owner_id: str = Field(min_length=1)
    query: str = Field(min_length=1, description="Natural language query.")
    memory_types: list[MemoryType] | None = None
    limit: int = Field(default=20, ge=1, le=100)
    min_similarity: float | None = Field(default=None, ge=0.0, le=1.0)


class FindSimilarInput(BaseModel):
    memory_id: str = Field(min_length=1)
    limit: int = Field(default=10, ge=1, le=100)
    min_similarity: float | None = Field(default=None, ge=0.0, le=1.0)


# ---------------------------------------------------------------------------
# Input models: sharing
# ---------------------------------------------------------------------------


class ShareMemoryInput(BaseModel):
    """Input for share_memory tool."""

    memory_id: str = Field(min_length=1)
    from_agent_type: str = Field(min_length=1)
    to_agent_type: str = Field(min_length=1)
    reason: str = ""
    access_level: AccessLevel = AccessLevel.read


class BroadcastMemoryInput(BaseModel):
    memory_id: str = Field(min_length=1)
    source_agent_type: str = Field(min_length=1)
    policy: BroadcastPolicy = BroadcastPolicy.broadcast


class RequestAccessInput(BaseModel):
    requesting_agent_type: str = Field(min_length=1)
    memory_id: str = Field(min_length=1)
    reason: str = Field(min_length=1, description="Why access is needed.")
    access_level: AccessLevel = AccessLevel.read
    owner_agent_type: str | None = Field(
        default=None,
        description="Agent deciding the request; defaults to the supervisor.",
    )


class ProcessAccessRequestInput(BaseModel):
    request_id: str = Field(min_length=1)
    decision: Literal["approved", "denied"]
    processed_by: str = Field(min_length=1)
    reason: str | None = None


class SyncAgentKnowledgeInput(BaseModel):
    agent1_type: str = Field(min_length=1)
    agent2_type: str = Field(min_length=1)
    sync_type: SyncType = SyncType.full
    criteria: SyncCriteria | None = None


class GetSharedMemoriesInput(BaseModel):
    agent_type: str = Field(min_length=1)
    memory_types: list[MemoryType] | None = None
    min_importance: Importance | None = None
    limit: int = Field(default=50, ge=1, le=200)


class CreatePoolInput(BaseModel):
    """Input for create_pool tool."""

    name: str = Field(min_length=1)
    participating_agents: list[str] = Field(min_length=1)
    memory_types: list[MemoryType] = Field(min_length=1)
    policy: PoolPolicy = PoolPolicy.open
    description: str = ""
    created_by: str | None = None


class AddToPoolInput(BaseModel):
    pool_id: str = Field(min_length=1)
    memory_id: str = Field(min_length=1)
    contributing_agent: str = Field(min_length=1)


class GetPoolMemoriesInput(BaseModel):
    pool_id: str = Field(min_length=1)
    agent_type: str = Field(min_length=1)
    limit: int = Field(default=100, ge=1, le=500)


class RunMaintenanceInput(BaseModel):
    owner_id: str | None = Field(
        default=None,
        description="Sweep one owner; omit to consolidate and sweep everyone.",
    )


# ---------------------------------------------------------------------------
# Output models
# ---------------------------------------------------------------------------


class ToolResult(BaseModel):
    """Common status envelope for every tool response."""

    status: str = Field(
        default="ok",
        description="Outcome status (ok, rejected, error).",
    )
    error_code: str | None = Field(
        default=None,
        description="Machine-readable error code when status is not ok.",
    )
    message: str | None = None


class WriteShortTermMemoryResult(ToolResult):
    memory_id: str = Field(
        default="",
        description="ID of the stored entry, or of the entry it merged into.",
    )


class ConsolidateResult(ToolResult):
    job_id: str | None = Field(
        default=None,
        description="Consolidation job id; null when nothing was pending.",
    )
    job_status: str | None = None
    memories_processed: int = 0
    memories_consolidated: int = 0
    memories_reinforced: int = 0
    created_long_term_memory_ids: list[str] = Field(default_factory=list)
    job_error: str | None = None


class SearchHitEntry(BaseModel):
    """One long-term memory returned by a similarity query."""

    memory_id: str
    memory_type: MemoryType
    content: str
    summary: str | None = None
    keywords: list[str] = Field(default_factory=list)
    importance: Importance
    strength: float
    score: float = Field(description="Cosine similarity to the query.")


class SearchResult(ToolResult):
    hits: list[SearchHitEntry] = Field(default_factory=list)


class ShareMemoryResult(ToolResult):
    shared: bool = False
    sharing_id: str | None = None
    reason: str | None = None


class BroadcastMemoryResult(ToolResult):
    broadcasted: bool = False
    recipients: list[str] = Field(default_factory=list)
    shared_with: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)
    reason: str | None = None


class AccessRequestToolResult(ToolResult):
    request_id: str | None = None
    request_status: str | None = None
    auto_approved: bool = False
    sharing_id: str | None = None


class SyncAgentKnowledgeResult(ToolResult):
    sync_id: str | None = None
    sync_status: str | None = None
    stats: SyncStats = Field(default_factory=SyncStats)


class SharedMemoriesResult(ToolResult):
    memories: list[dict[str, Any]] = Field(
        default_factory=list,
        description="Projected memories, each with a 'sharing' block.",
    )


class PoolResult(ToolResult):
    pool_id: str | None = None
    name: str | None = None
    policy: PoolPolicy | None = None


class PoolEntryResult(ToolResult):
    entry_id: str | None = None
    entry_status: str | None = None


class PoolMemoriesResult(ToolResult):
    memories: list[dict[str, Any]] = Field(
        default_factory=list,
        description="Projected memories, each with a 'pool' block.",
    )


class MaintenanceResult(ToolResult):
    reports: list[dict[str, Any]] = Field(default_factory=list)
