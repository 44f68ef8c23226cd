"""Cross-agent sharing: direct shares, broadcasts and access requests.

Every grant of visibility is a ``SharingRecord`` from one agent type to
another. Recipients only ever see a memory through ``project`` at the
access level stored on the record.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from dataclasses import field
from datetime import datetime
from typing import Any

from mnemosync.audit import AuditEventType
from mnemosync.audit import AuditLogger
from mnemosync.config import SharingConfig
from mnemosync.errors import InvalidStateError
from mnemosync.errors import MemoryEngineError
from mnemosync.errors import NotFoundError
from mnemosync.errors import UnauthorizedError
from mnemosync.memory.long_term import LongTermStore
from mnemosync.models.base import utc_now
from mnemosync.models.enums import AccessLevel
from mnemosync.models.enums import BroadcastPolicy
from mnemosync.models.enums import Importance
from mnemosync.models.enums import MemoryType
from mnemosync.models.enums import RequestStatus
from mnemosync.models.memory import LongTermMemory
from mnemosync.models.sharing import AccessRequest
from mnemosync.models.sharing import RequestDecision
from mnemosync.models.sharing import SharingRecord
from mnemosync.sharing.profiles import AgentProfile
from mnemosync.sharing.profiles import default_policy_table
from mnemosync.sharing.profiles import SharingPolicyTable
from mnemosync.sharing.projection import project
from mnemosync.storage.base import RecordStore

logger = logging.getLogger(__name__)

_SHARE_KEY = ("memory_id", "from_agent_type", "to_agent_type")
_BROADCAST_TIERS = {Importance.critical, Importance.high}
_AUTO_APPROVE_TIERS = {Importance.low, Importance.temporary}
_MEDIUM_AUTO_LEVELS = {AccessLevel.read, AccessLevel.summary}
_SYSTEM_ACTOR = "system"


# ---------------------------------------------------------------------------
# Result dataclasses
# ---------------------------------------------------------------------------


@dataclass
class ShareResult:
    shared: bool
    sharing_id: str | None = None
    created: bool = False
    reason: str | None = None


@dataclass
class SharedMemory:
    """A memory as its recipient may see it, plus how it was shared."""

    memory: dict[str, Any]
    sharing: SharingRecord


@dataclass
class BroadcastResult:
    broadcasted: bool
    recipients: list[str] = field(default_factory=list)
    shared_with: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    reason: str | None = None

    @property
    def recipient_count(self) -> int:
        return len(self.shared_with)


@dataclass
class AccessRequestResult:
    request_id: str
    status: RequestStatus
    auto_approved: bool = False
    sharing_id: str | None = None


def _refresh_share(existing: SharingRecord, incoming: SharingRecord) -> dict:
    return {
        "access_level": incoming.access_level,
        "reason": incoming.reason,
        "shared_at": incoming.shared_at,
        "is_active": True,
        "revoked_at": None,
    }


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class SharingService:
    """Mediates which agent types may see which long-term memories."""

    def __init__(
        self,
        long_term: LongTermStore,
        sharing: RecordStore[SharingRecord],
        requests: RecordStore[AccessRequest],
        policy: SharingPolicyTable | None = None,
        *,
        audit_logger: AuditLogger | None = None,
        config: SharingConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._long_term = long_term
        self._sharing = sharing
        self._requests = requests
        self.policy = policy or default_policy_table()
        self._audit = audit_logger
        self._config = config or SharingConfig()
        self._clock = clock or utc_now

    # ------------------------------------------------------------------
    # Direct sharing
    # ------------------------------------------------------------------

    async def share_memory(
        self,
        memory_id: str,
        from_agent_type: str,
        to_agent_type: str,
        reason: str,
        access_level: AccessLevel,
    ) -> ShareResult:
        """Grant *to_agent_type* visibility of a memory at *access_level*.

        Returns ``shared=False`` when the recipient does not need the
        memory's type. A repeat share refreshes the existing record.
        """
        memory = await self._long_term.require(memory_id)
        self.policy.require(from_agent_type)
        recipient = self.policy.require(to_agent_type)
        if not recipient.needs_type(memory.memory_type):
            return ShareResult(
                shared=False,
                reason=f"{to_agent_type} does not need {memory.memory_type.value}",
            )

        record, created = await self._sharing.upsert(
            SharingRecord(
                memory_id=memory.id,
                from_agent_type=from_agent_type,
                to_agent_type=to_agent_type,
                access_level=access_level,
                reason=reason,
                shared_at=self._clock(),
            ),
            unique_on=_SHARE_KEY,
            merge=_refresh_share,
        )
        if self._audit is not None:
            await self._audit.record(
                AuditEventType.MEMORY_SHARED,
                actor=from_agent_type,
                sharing_id=record.id,
                memory_id=memory.id,
                to_agent_type=to_agent_type,
                access_level=access_level.value,
                memory_type=memory.memory_type.value,
                importance=memory.importance.value,
                created=created,
            )
        return ShareResult(shared=True, sharing_id=record.id, created=created)

    async def revoke_sharing(
        self,
        sharing_id: str,
        *,
        revoked_by: str,
    ) -> SharingRecord:
        record = await self._sharing.get(sharing_id)
        if record is None:
            raise NotFoundError(f"sharing record {sharing_id} not found")
        revoked = await self._sharing.compare_and_set(
            sharing_id,
            field="is_active",
            expected=True,
            changes={"is_active": False, "revoked_at": self._clock()},
        )
        if self._audit is not None:
            await self._audit.record(
                AuditEventType.SHARING_REVOKED,
                actor=revoked_by,
                sharing_id=sharing_id,
                memory_id=record.memory_id,
            )
        return revoked

    async def get_shared_memories(
        self,
        agent_type: str,
        *,
        memory_types: list[MemoryType] | None = None,
        min_importance: Importance | None = None,
        limit: int | None = None,
    ) -> list[SharedMemory]:
        """Memories shared with *agent_type*, most important then newest first."""
        self.policy.require(agent_type)
        limit = limit or self._config.shared_memories_limit
        records = await self._sharing.find(
            {"to_agent_type": agent_type, "is_active": True},
            limit=self._config.sync_page_size,
            newest_first=True,
        )
        memories = {
            m.id: m
            for m in await self._long_term.get_many([r.memory_id for r in records])
        }
        visible: list[tuple[LongTermMemory, SharingRecord]] = []
        for record in records:
            memory = memories.get(record.memory_id)
            if memory is None:
                continue
            if memory_types and memory.memory_type not in memory_types:
                continue
            if min_importance and not memory.importance.at_least(min_importance):
                continue
            visible.append((memory, record))
        visible.sort(
            key=lambda pair: (pair[0].importance.rank, pair[0].created_at),
            reverse=True,
        )
        return [
            SharedMemory(memory=project(memory, record.access_level), sharing=record)
            for memory, record in visible[:limit]
        ]

    # ------------------------------------------------------------------
    # Broadcast
    # ------------------------------------------------------------------

    def effective_access_level(
        self,
        profile: AgentProfile,
        memory: LongTermMemory,
    ) -> AccessLevel:
        """Recipient's profile level; critical memories cap it at ``read``."""
        level = profile.default_access_level
        if memory.importance == Importance.critical and level != AccessLevel.full:
            return level.cap(AccessLevel.read)
        return level

    def recipients_for(
        self,
        memory: LongTermMemory,
        source_agent_type: str,
        policy: BroadcastPolicy,
    ) -> list[str]:
        recipients: list[str] = []
        if policy == BroadcastPolicy.broadcast:
            recipients = [
                p.agent_type
                for p in self.policy.profiles
                if p.needs_type(memory.memory_type)
            ]
        elif policy == BroadcastPolicy.selective:
            if memory.memory_type == MemoryType.domain_knowledge:
                content = memory.content.lower()
                recipients = [
                    p.agent_type
                    for p in self.policy.profiles
                    if any(k.lower() in content for k in p.routing_keywords)
                ]
            if memory.importance in _BROADCAST_TIERS:
                recipients.append(self.policy.supervisor_agent)
        else:
            referenced: set[str] = set()
            if memory.context.contract_ids:
                referenced.add("contract")
            if memory.context.vendor_ids:
                referenced.add("vendor")
            recipients = [
                p.agent_type
                for p in self.policy.profiles
                if referenced.intersection(p.watched_entities)
                or memory.memory_type in p.watched_types
            ]
        return [a for a in dict.fromkeys(recipients) if a != source_agent_type]

    async def broadcast_memory(
        self,
        memory_id: str,
        source_agent_type: str,
        policy: BroadcastPolicy = BroadcastPolicy.broadcast,
    ) -> BroadcastResult:
        """Share a critical or high memory with every relevant agent."""
        memory = await self._long_term.require(memory_id)
        self.policy.require(source_agent_type)
        if memory.importance not in _BROADCAST_TIERS:
            return BroadcastResult(
                broadcasted=False,
                reason=f"{memory.importance.value} memories are not broadcast",
            )

        result = BroadcastResult(
            broadcasted=True,
            recipients=self.recipients_for(memory, source_agent_type, policy),
        )
        reason = f"broadcast ({policy.value}): {memory.importance.value} importance"
        for agent_type in result.recipients:
            profile = self.policy.require(agent_type)
            try:
                shared = await self.share_memory(
                    memory.id,
                    source_agent_type,
                    agent_type,
                    reason,
                    self.effective_access_level(profile, memory),
                )
            except MemoryEngineError:
                logger.exception("Broadcast of %s to %s failed", memory.id, agent_type)
                result.failed.append(agent_type)
                continue
            if shared.shared:
                result.shared_with.append(agent_type)

        if self._audit is not None:
            await self._audit.record(
                AuditEventType.MEMORY_BROADCAST,
                actor=source_agent_type,
                memory_id=memory.id,
                policy=policy.value,
                recipients=result.recipients,
                shared_with=result.shared_with,
                failed=result.failed,
            )
        return result

    # ------------------------------------------------------------------
    # Access requests
    # ------------------------------------------------------------------

    def should_auto_approve(
        self,
        profile: AgentProfile,
        memory: LongTermMemory,
        level: AccessLevel,
    ) -> bool:
        if not profile.needs_type(memory.memory_type):
            return False
        if not profile.default_access_level.allows(level):
            return False
        if memory.importance in _AUTO_APPROVE_TIERS:
            return True
        return memory.importance == Importance.medium and level in _MEDIUM_AUTO_LEVELS

    async def request_access(
        self,
        requesting_agent_type: str,
        memory_id: str,
        reason: str,
        access_level: AccessLevel,
        *,
        owner_agent_type: str | None = None,
    ) -> AccessRequestResult:
        """File a pending request, approving it at once when policy allows."""
        memory = await self._long_term.require(memory_id)
        profile = self.policy.require(requesting_agent_type)
        owner = owner_agent_type or self.policy.supervisor_agent
        self.policy.require(owner)
        request = await self._requests.insert(
            AccessRequest(
                memory_id=memory.id,
                requesting_agent_type=requesting_agent_type,
                owner_agent_type=owner,
                reason=reason,
                requested_access_level=access_level,
                requested_at=self._clock(),
            )
        )
        if self._audit is not None:
            await self._audit.record(
                AuditEventType.ACCESS_REQUESTED,
                actor=requesting_agent_type,
                request_id=request.id,
                memory_id=memory.id,
                access_level=access_level.value,
            )

        if not self.should_auto_approve(profile, memory, access_level):
            return AccessRequestResult(request_id=request.id, status=request.status)
        decided = await self.process_access_request(
            request.id, approve=True, processed_by=_SYSTEM_ACTOR, reason="auto-approved"
        )
        decided.auto_approved = True
        return decided

    async def process_access_request(
        self,
        request_id: str,
        *,
        approve: bool,
        processed_by: str,
        reason: str | None = None,
    ) -> AccessRequestResult:
        """Decide a pending request exactly once.

        Raises ``InvalidStateError`` if it was already decided and
        ``UnauthorizedError`` when approving beyond the requester's level or
        for a memory type the requester does not need.
        """
        request = await self._requests.get(request_id)
        if request is None:
            raise NotFoundError(f"access request {request_id} not found")
        if request.status != RequestStatus.pending:
            msg = f"access request {request_id} is already {request.status.value}"
            raise InvalidStateError(msg)
        if approve:
            profile = self.policy.require(request.requesting_agent_type)
            if not profile.default_access_level.allows(request.requested_access_level):
                raise UnauthorizedError(
                    f"{request.requesting_agent_type} may not receive "
                    f"{request.requested_access_level.value} access"
                )
            memory = await self._long_term.require(request.memory_id)
            if not profile.needs_type(memory.memory_type):
                raise UnauthorizedError(
                    f"{request.requesting_agent_type} does not need "
                    f"{memory.memory_type.value} memories"
                )

        status = RequestStatus.approved if approve else RequestStatus.denied
        await self._requests.compare_and_set(
            request_id,
            field="status",
            expected=RequestStatus.pending,
            changes={
                "status": status,
                "decided_at": self._clock(),
                "decision": RequestDecision(decided_by=processed_by, reason=reason),
            },
        )
        if self._audit is not None:
            await self._audit.record(
                AuditEventType.ACCESS_DECIDED,
                actor=processed_by,
                request_id=request_id,
                status=status.value,
                reason=reason,
            )

        result = AccessRequestResult(request_id=request_id, status=status)
        if approve:
            shared = await self.share_memory(
                request.memory_id,
                request.owner_agent_type,
                request.requesting_agent_type,
                f"access request approved: {request.reason}",
                request.requested_access_level,
            )
            result.sharing_id = shared.sharing_id
        return result

    async def get_request(self, request_id: str) -> AccessRequest:
        request = await self._requests.get(request_id)
        if request is None:
            raise NotFoundError(f"access request {request_id} not found")
        return request

    async def pending_requests(
        self,
        owner_agent_type: str,
        *,
        limit: int = 50,
    ) -> list[AccessRequest]:
        return await self._requests.find(
            {"owner_agent_type": owner_agent_type, "status": RequestStatus.pending},
            limit=limit,
        )
