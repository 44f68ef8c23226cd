"""Memory records: short-term entries, long-term entries, associations, sessions."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from typing import ClassVar

from pydantic import BaseModel
from pydantic import Field

from mnemosync.models.base import Record
from mnemosync.models.base import utc_now
from mnemosync.models.enums import AssociationType
from mnemosync.models.enums import Importance
from mnemosync.models.enums import MemorySource
from mnemosync.models.enums import MemoryType
from mnemosync.models.enums import SessionStatus

# ---------------------------------------------------------------------------
# Context blocks
# ---------------------------------------------------------------------------


class MemoryContext(BaseModel):
    """Where a short-term observation came from."""

    conversation_id: str | None = None
    task_id: str | None = None
    contract_id: str | None = None
    vendor_id: str | None = None
    agent_id: str | None = None
    related_entities: list[str] = Field(default_factory=list)


class LongTermContext(BaseModel):
    """Aggregated context for a consolidated memory."""

    domain: str | None = None
    contract_ids: list[str] = Field(default_factory=list)
    vendor_ids: list[str] = Field(default_factory=list)
    agent_ids: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Short-term memory
# ---------------------------------------------------------------------------


class ShortTermMemory(Record):
    """A session-scoped observation awaiting expiry or consolidation."""

    collection: ClassVar[str] = "short_term"
    id_prefix: ClassVar[str] = "stm"
    indexed_fields: ClassVar[tuple[str, ...]] = (
        "owner_id",
        "session_id",
        "memory_type",
        "should_consolidate",
        "is_consolidated",
    )

    owner_id: str = Field(description="Tenant or user that owns the memory.")
    session_id: str = Field(description="Producer session the memory belongs to.")
    memory_type: MemoryType
    content: str = Field(min_length=1)
    structured_data: dict[str, Any] | None = None
    context: MemoryContext = Field(default_factory=MemoryContext)
    importance: Importance = Importance.medium
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    access_count: int = Field(default=1, ge=0)
    last_accessed_at: datetime = Field(default_factory=utc_now)
    created_at: datetime = Field(default_factory=utc_now)
    expires_at: datetime | None = None
    should_consolidate: bool = False
    consolidated_at: datetime | None = None
    source: MemorySource = MemorySource.conversation
    source_metadata: dict[str, Any] | None = None

    @property
    def is_consolidated(self) -> bool:
        return self.consolidated_at is not None


# ---------------------------------------------------------------------------
# Long-term memory
# ---------------------------------------------------------------------------


class LongTermMemory(Record):
    """Durable consolidated knowledge with decaying strength."""

    collection: ClassVar[str] = "long_term"
    id_prefix: ClassVar[str] = "ltm"
    indexed_fields: ClassVar[tuple[str, ...]] = (
        "owner_id",
        "memory_type",
        "importance",
        "is_weak",
    )

    owner_id: str
    memory_type: MemoryType
    content: str
    summary: str | None = None
    keywords: list[str] = Field(default_factory=list)
    embedding: list[float] | None = None
    context: LongTermContext = Field(default_factory=LongTermContext)
    importance: Importance = Importance.medium
    strength: float = Field(default=0.6, ge=0.0, le=1.0)
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    decay_rate: float = Field(default=0.01, ge=0.0)
    reinforcement_count: int = 0
    access_count: int = 0
    last_accessed_at: datetime = Field(default_factory=utc_now)
    last_reinforced_at: datetime = Field(default_factory=utc_now)
    decayed_at: datetime | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    consolidated_from: list[str] = Field(default_factory=list)
    source: MemorySource = MemorySource.conversation
    source_chain: list[str] = Field(default_factory=list)
    is_verified: bool = False
    is_weak: bool = False

    def embedding_text(self) -> str:
        """Text fed to the embedding provider for this memory."""
        parts = [f"{self.memory_type.value}: {self.content}"]
        if self.summary:
            parts.append(self.summary)
        if self.keywords:
            parts.append(" ".join(self.keywords))
        return " ".join(parts)


# ---------------------------------------------------------------------------
# Associations
# ---------------------------------------------------------------------------


class MemoryAssociation(Record):
    """Weighted, decaying edge between two long-term memories."""

    collection: ClassVar[str] = "associations"
    id_prefix: ClassVar[str] = "assoc"
    indexed_fields: ClassVar[tuple[str, ...]] = (
        "owner_id",
        "from_memory_id",
        "to_memory_id",
        "association_type",
    )

    owner_id: str
    from_memory_id: str
    to_memory_id: str
    association_type: AssociationType = AssociationType.similar
    strength: float = Field(default=0.5, ge=0.0, le=1.0)
    confidence: float = Field(default=0.9, ge=0.0, le=1.0)
    created_at: datetime = Field(default_factory=utc_now)
    last_reinforced_at: datetime = Field(default_factory=utc_now)
    decayed_at: datetime | None = None


# ---------------------------------------------------------------------------
# Conversation sessions
# ---------------------------------------------------------------------------


class ConversationSession(Record):
    """Producer session tracked so idle ones can be archived."""

    collection: ClassVar[str] = "sessions"
    id_prefix: ClassVar[str] = "sess"
    indexed_fields: ClassVar[tuple[str, ...]] = ("owner_id", "session_id", "status")
    order_field: ClassVar[str] = "last_activity_at"

    owner_id: str
    session_id: str
    title: str | None = None
    status: SessionStatus = SessionStatus.active
    started_at: datetime = Field(default_factory=utc_now)
    last_activity_at: datetime = Field(default_factory=utc_now)
    memory_count: int = 0
