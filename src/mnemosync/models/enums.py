"""Enumerations persisted on memory, sharing and job records."""

from __future__ import annotations

from enum import Enum


class MemoryType(str, Enum):
    """Kind of knowledge a memory holds."""

    user_preference = "user_preference"
    interaction_pattern = "interaction_pattern"
    domain_knowledge = "domain_knowledge"
    conversation_context = "conversation_context"
    task_history = "task_history"
    feedback = "feedback"
    entity_relation = "entity_relation"
    process_knowledge = "process_knowledge"


class Importance(str, Enum):
    """Importance tier, ordered from ``critical`` down to ``temporary``."""

    critical = "critical"
    high = "high"
    medium = "medium"
    low = "low"
    temporary = "temporary"

    @property
    def rank(self) -> int:
        """Numeric rank where a larger value means more important."""
        return _IMPORTANCE_RANK[self]

    def at_least(self, other: Importance) -> bool:
        return self.rank >= other.rank

    @classmethod
    def highest(cls, values: list[Importance]) -> Importance:
        return max(values, key=lambda value: value.rank)


_IMPORTANCE_RANK = {
    Importance.critical: 4,
    Importance.high: 3,
    Importance.medium: 2,
    Importance.low: 1,
    Importance.temporary: 0,
}


class MemorySource(str, Enum):
    """How a memory was learned."""

    explicit_feedback = "explicit_feedback"
    implicit_learning = "implicit_learning"
    task_outcome = "task_outcome"
    error_correction = "error_correction"
    conversation = "conversation"
    system_observation = "system_observation"


class AccessLevel(str, Enum):
    """Information lattice, from most revealing to least."""

    full = "full"
    read = "read"
    summary = "summary"
    metadata = "metadata"

    @property
    def rank(self) -> int:
        return _ACCESS_RANK[self]

    def allows(self, requested: AccessLevel) -> bool:
        """Return True when *requested* reveals no more than this level."""
        return requested.rank <= self.rank

    def cap(self, ceiling: AccessLevel) -> AccessLevel:
        return self if self.rank <= ceiling.rank else ceiling


_ACCESS_RANK = {
    AccessLevel.full: 3,
    AccessLevel.read: 2,
    AccessLevel.summary: 1,
    AccessLevel.metadata: 0,
}


class AssociationType(str, Enum):
    similar = "similar"
    related = "related"
    reinforced = "reinforced"


class RequestStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    denied = "denied"


class PoolPolicy(str, Enum):
    open = "open"
    moderated = "moderated"
    curated = "curated"


class PoolEntryStatus(str, Enum):
    pending = "pending"
    active = "active"
    rejected = "rejected"


class JobStatus(str, Enum):
    pending = "pending"
    running = "running"
    completed = "completed"
    failed = "failed"


class SyncStatus(str, Enum):
    pending = "pending"
    in_progress = "in_progress"
    completed = "completed"
    failed = "failed"


class SyncType(str, Enum):
    full = "full"
    differential = "differential"
    selective = "selective"


class BroadcastPolicy(str, Enum):
    broadcast = "broadcast"
    selective = "selective"
    need_to_know = "need_to_know"


class SessionStatus(str, Enum):
    active = "active"
    paused = "paused"
    completed = "completed"
    archived = "archived"
