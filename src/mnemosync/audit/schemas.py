"""Audit event types and data models."""

from __future__ import annotations

import time
from enum import Enum
from typing import Any

from pydantic import BaseModel
from pydantic import Field


class AuditEventType(str, Enum):
    """Categories of auditable events."""

    MEMORY_SHARED = "MEMORY_SHARED"
    SHARING_REVOKED = "SHARING_REVOKED"
    MEMORY_BROADCAST = "MEMORY_BROADCAST"
    ACCESS_REQUESTED = "ACCESS_REQUESTED"
    ACCESS_DECIDED = "ACCESS_DECIDED"
    KNOWLEDGE_SYNC = "KNOWLEDGE_SYNC"
    POOL_CREATED = "POOL_CREATED"
    POOL_CONTRIBUTION = "POOL_CONTRIBUTION"
    POOL_REVIEW = "POOL_REVIEW"
    CONSOLIDATION_RUN = "CONSOLIDATION_RUN"
    MAINTENANCE_RUN = "MAINTENANCE_RUN"
    WEAK_MEMORIES_REMOVED = "WEAK_MEMORIES_REMOVED"


class AuditEvent(BaseModel):
    """A single immutable audit log entry."""

    model_config = {"frozen": True}

    timestamp: float = Field(
        default_factory=time.time,
        description="Unix epoch when the event occurred.",
    )
    event_type: AuditEventType = Field(
        description="Category of the audited action.",
    )
    actor: str | None = Field(
        default=None,
        description="Agent type or component that performed the action.",
    )
    payload: dict[str, Any] = Field(
        default_factory=dict,
        description="Event-specific data.",
    )
