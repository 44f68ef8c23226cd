"""Sharing, access-request, pool and sync records."""

from __future__ import annotations

from datetime import datetime
from typing import ClassVar

from pydantic import BaseModel
from pydantic import Field

from mnemosync.models.base import Record
from mnemosync.models.base import utc_now
from mnemosync.models.enums import AccessLevel
from mnemosync.models.enums import Importance
from mnemosync.models.enums import MemoryType
from mnemosync.models.enums import PoolEntryStatus
from mnemosync.models.enums import PoolPolicy
from mnemosync.models.enums import RequestStatus
from mnemosync.models.enums import SyncStatus
from mnemosync.models.enums import SyncType


class SharingRecord(Record):
    """Grant of visibility on one memory from one agent type to another."""

    collection: ClassVar[str] = "sharing"
    id_prefix: ClassVar[str] = "share"
    indexed_fields: ClassVar[tuple[str, ...]] = (
        "memory_id",
        "from_agent_type",
        "to_agent_type",
        "is_active",
    )
    order_field: ClassVar[str] = "shared_at"

    memory_id: str
    from_agent_type: str
    to_agent_type: str
    access_level: AccessLevel
    reason: str = ""
    shared_at: datetime = Field(default_factory=utc_now)
    is_active: bool = True
    revoked_at: datetime | None = None


class RequestDecision(BaseModel):
    decided_by: str
    reason: str | None = None


class AccessRequest(Record):
    """An agent's request to see a memory it was not shared."""

    collection: ClassVar[str] = "access_requests"
    id_prefix: ClassVar[str] = "req"
    indexed_fields: ClassVar[tuple[str, ...]] = (
        "memory_id",
        "requesting_agent_type",
        "owner_agent_type",
        "status",
    )
    order_field: ClassVar[str] = "requested_at"

    memory_id: str
    requesting_agent_type: str
    owner_agent_type: str
    reason: str = ""
    requested_access_level: AccessLevel
    status: RequestStatus = RequestStatus.pending
    requested_at: datetime = Field(default_factory=utc_now)
    decided_at: datetime | None = None
    decision: RequestDecision | None = None


class PoolStats(BaseModel):
    memory_count: int = 0
    contributions_by_agent: dict[str, int] = Field(default_factory=dict)
    last_activity_at: datetime | None = None


class MemoryPool(Record):
    """Shared space where participating agents contribute memories."""

    collection: ClassVar[str] = "pools"
    id_prefix: ClassVar[str] = "pool"
    indexed_fields: ClassVar[tuple[str, ...]] = ("name", "is_active")

    name: str = Field(min_length=1)
    description: str = ""
    participating_agents: list[str]
    memory_types: list[MemoryType]
    policy: PoolPolicy = PoolPolicy.open
    is_active: bool = True
    created_at: datetime = Field(default_factory=utc_now)
    stats: PoolStats = Field(default_factory=PoolStats)


class MemoryPoolEntry(Record):
    collection: ClassVar[str] = "pool_entries"
    id_prefix: ClassVar[str] = "poolentry"
    indexed_fields: ClassVar[tuple[str, ...]] = (
        "pool_id",
        "memory_id",
        "status",
    )
    order_field: ClassVar[str] = "contributed_at"

    pool_id: str
    memory_id: str
    contributed_by: str
    contributed_at: datetime = Field(default_factory=utc_now)
    status: PoolEntryStatus = PoolEntryStatus.pending
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None


class SyncCriteria(BaseModel):
    """Optional filters narrowing what a sync exchanges."""

    memory_types: list[MemoryType] | None = None
    min_importance: Importance | None = None
    after: datetime | None = None
    owner_id: str | None = None


class SyncStats(BaseModel):
    agent1_to_agent2: int = 0
    agent2_to_agent1: int = 0
    conflicts: int = 0
    errors: int = 0


class SyncSession(Record):
    collection: ClassVar[str] = "sync_sessions"
    id_prefix: ClassVar[str] = "sync"
    indexed_fields: ClassVar[tuple[str, ...]] = (
        "agent1_type",
        "agent2_type",
        "status",
    )
    order_field: ClassVar[str] = "started_at"

    agent1_type: str
    agent2_type: str
    sync_type: SyncType
    criteria: SyncCriteria | None = None
    status: SyncStatus = SyncStatus.pending
    stats: SyncStats = Field(default_factory=SyncStats)
    error: str | None = None
    started_at: datetime = Field(default_factory=utc_now)
    completed_at: datetime | None = None
