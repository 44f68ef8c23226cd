"""Unit tests for agent profiles, projection, sharing, broadcast and requests."""

from __future__ import annotations

import json

import pytest
from pydantic import ValidationError

from mnemosync.audit import AuditEventType
from mnemosync.errors import ExternalServiceError
from mnemosync.errors import InvalidInputError
from mnemosync.errors import InvalidStateError
from mnemosync.errors import NotFoundError
from mnemosync.errors import UnauthorizedError
from mnemosync.models import AccessLevel
from mnemosync.models import BroadcastPolicy
from mnemosync.models import Importance
from mnemosync.models import LongTermContext
from mnemosync.models import MemoryType
from mnemosync.models import RequestStatus
from mnemosync.sharing import default_policy_table
from mnemosync.sharing import load_policy_table
from mnemosync.sharing import project

# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------


class TestPolicyTable:
    def test_default_roles(self):
        table = default_policy_table()
        assert table.supervisor_agent == "manager"
        assert table.agent_types == [
            "manager",
            "financial",
            "legal",
            "secretary",
            "analytics",
            "notifications",
            "vendor",
        ]
        assert table.require("notifications").default_access_level == (
            AccessLevel.summary
        )
        assert not table.require("manager").needs_type(MemoryType.domain_knowledge)

    def test_unknown_agent(self):
        with pytest.raises(InvalidInputError):
            default_policy_table().require("janitor")

    def test_load_from_file(self, tmp_path):
        path = tmp_path / "profiles.json"
        path.write_text(
            json.dumps(
                {
                    "supervisor_agent": "lead",
                    "profiles": [
                        {
                            "agent_type": "lead",
                            "needs": ["feedback"],
                            "default_access_level": "full",
                        },
                        {"agent_type": "helper", "needs": ["user_preference"]},
                    ],
                }
            )
        )
        table = load_policy_table(path)
        assert table.agent_types == ["lead", "helper"]
        assert table.require("helper").default_access_level == AccessLevel.metadata

    def test_supervisor_must_have_profile(self, tmp_path):
        path = tmp_path / "profiles.json"
        path.write_text(
            json.dumps({"supervisor_agent": "ghost", "profiles": [{"agent_type": "a"}]})
        )
        with pytest.raises(ValidationError, match="supervisor"):
            load_policy_table(path)

    def test_agent_types_unique(self, tmp_path):
        path = tmp_path / "profiles.json"
        profiles = [{"agent_type": "a"}, {"agent_type": "a"}]
        path.write_text(json.dumps({"supervisor_agent": "a", "profiles": profiles}))
        with pytest.raises(ValidationError, match="unique"):
            load_policy_table(path)


# ---------------------------------------------------------------------------
# Projection
# ---------------------------------------------------------------------------


class TestProjection:
    async def test_levels_narrow(self, make_memory):
        memory = await make_memory(
            summary="Net 30.", keywords=["payment"], embedding=[1.0, 0.0]
        )

        full = project(memory, AccessLevel.full)
        read = project(memory, AccessLevel.read)
        summary = project(memory, AccessLevel.summary)
        metadata = project(memory, AccessLevel.metadata)

        assert full["embedding"] == [1.0, 0.0]
        assert "embedding" not in read
        assert read["content"] == memory.content
        assert set(summary) == {
            "id",
            "memory_type",
            "summary",
            "keywords",
            "importance",
            "created_at",
        }
        assert summary["summary"] == "Net 30."
        assert set(metadata) == {
            "id",
            "memory_type",
            "importance",
            "strength",
            "created_at",
        }
        assert set(metadata) < set(read) < set(full)

    async def test_summary_falls_back_to_content(self, make_memory):
        memory = await make_memory("x" * 150)
        assert project(memory, AccessLevel.summary)["summary"] == "x" * 100


# ---------------------------------------------------------------------------
# Direct sharing
# ---------------------------------------------------------------------------


class TestShareMemory:
    async def test_creates_active_record(self, engine, make_memory, audit_logger):
        memory = await make_memory()

        result = await engine.share_memory(
            memory.id, "financial", "legal", "contract review", AccessLevel.read
        )

        assert result.shared is True
        assert result.created is True
        record = await engine.stores.sharing.get(result.sharing_id)
        assert record.is_active is True
        assert record.access_level == AccessLevel.read
        events = await audit_logger.read_events(
            event_type=AuditEventType.MEMORY_SHARED
        )
        assert events[0].actor == "financial"
        assert events[0].payload["to_agent_type"] == "legal"

    async def test_recipient_must_need_type(self, engine, make_memory):
        memory = await make_memory()
        result = await engine.share_memory(
            memory.id, "financial", "manager", "fyi", AccessLevel.read
        )
        assert result.shared is False
        assert result.sharing_id is None
        assert "domain_knowledge" in result.reason

    async def test_unknown_agent(self, engine, make_memory):
        memory = await make_memory()
        with pytest.raises(InvalidInputError):
            await engine.share_memory(
                memory.id, "financial", "janitor", "fyi", AccessLevel.read
            )

    async def test_unknown_memory(self, engine):
        with pytest.raises(NotFoundError):
            await engine.share_memory(
                "ltm_missing", "financial", "legal", "fyi", AccessLevel.read
            )

    async def test_repeat_share_refreshes_record(self, engine, make_memory):
        memory = await make_memory()
        first = await engine.share_memory(
            memory.id, "financial", "legal", "first", AccessLevel.read
        )
        second = await engine.share_memory(
            memory.id, "financial", "legal", "second", AccessLevel.full
        )

        assert second.created is False
        assert second.sharing_id == first.sharing_id
        record = await engine.stores.sharing.get(first.sharing_id)
        assert record.access_level == AccessLevel.full
        assert record.reason == "second"

    async def test_revoke_hides_and_reshare_reactivates(self, engine, make_memory):
        memory = await make_memory()
        shared = await engine.share_memory(
            memory.id, "financial", "legal", "fyi", AccessLevel.read
        )

        revoked = await engine.revoke_sharing(shared.sharing_id, revoked_by="manager")

        assert revoked.is_active is False
        assert revoked.revoked_at is not None
        assert await engine.get_shared_memories("legal") == []
        with pytest.raises(InvalidStateError):
            await engine.revoke_sharing(shared.sharing_id, revoked_by="manager")

        again = await engine.share_memory(
            memory.id, "financial", "legal", "fyi", AccessLevel.read
        )
        assert again.sharing_id == shared.sharing_id
        assert len(await engine.get_shared_memories("legal")) == 1

    async def test_revoke_unknown(self, engine):
        with pytest.raises(NotFoundError):
            await engine.revoke_sharing("share_missing", revoked_by="manager")


class TestGetSharedMemories:
    async def test_orders_by_importance_then_recency(self, engine, make_memory, clock):
        older_high = await make_memory("Older high.", importance=Importance.high)
        clock.advance(minutes=1)
        newer_high = await make_memory("Newer high.", importance=Importance.high)
        critical = await make_memory("Critical one.", importance=Importance.critical)
        low = await make_memory("Low one.", importance=Importance.low)
        for memory in (low, older_high, critical, newer_high):
            await engine.share_memory(
                memory.id, "financial", "legal", "fyi", AccessLevel.read
            )

        shared = await engine.get_shared_memories("legal")

        assert [s.memory["id"] for s in shared] == [
            critical.id,
            newer_high.id,
            older_high.id,
            low.id,
        ]

    async def test_filters_and_limit(self, engine, make_memory):
        high = await make_memory("High.", importance=Importance.high)
        medium = await make_memory("Medium.")
        relation = await make_memory(
            "Relation.",
            memory_type=MemoryType.entity_relation,
            importance=Importance.critical,
        )
        for memory in (high, medium, relation):
            await engine.share_memory(
                memory.id, "financial", "legal", "fyi", AccessLevel.read
            )

        by_type = await engine.get_shared_memories(
            "legal", memory_types=[MemoryType.domain_knowledge]
        )
        assert {s.memory["id"] for s in by_type} == {high.id, medium.id}
        important = await engine.get_shared_memories(
            "legal", min_importance=Importance.high
        )
        assert {s.memory["id"] for s in important} == {high.id, relation.id}
        assert len(await engine.get_shared_memories("legal", limit=1)) == 1

    async def test_projects_at_shared_level(self, engine, make_memory):
        memory = await make_memory(summary="Short.")
        await engine.share_memory(
            memory.id, "financial", "analytics", "fyi", AccessLevel.summary
        )

        [shared] = await engine.get_shared_memories("analytics")

        assert "content" not in shared.memory
        assert shared.memory["summary"] == "Short."
        assert shared.sharing.from_agent_type == "financial"

    async def test_unknown_agent(self, engine):
        with pytest.raises(InvalidInputError):
            await engine.get_shared_memories("janitor")


# ---------------------------------------------------------------------------
# Broadcast
# ---------------------------------------------------------------------------


class TestBroadcast:
    async def test_only_high_and_critical_qualify(self, engine, make_memory):
        memory = await make_memory(importance=Importance.medium)
        result = await engine.broadcast_memory(memory.id, "financial")
        assert result.broadcasted is False
        assert result.recipients == []

    async def test_broadcast_reaches_every_agent_needing_type(
        self, engine, make_memory, audit_logger
    ):
        memory = await make_memory(importance=Importance.high)

        result = await engine.broadcast_memory(
            memory.id, "financial", BroadcastPolicy.broadcast
        )

        assert result.broadcasted is True
        assert result.recipients == ["legal", "analytics", "vendor"]
        assert result.shared_with == ["legal", "analytics", "vendor"]
        assert result.recipient_count == 3
        events = await audit_logger.read_events(
            event_type=AuditEventType.MEMORY_BROADCAST
        )
        assert events[0].payload["shared_with"] == ["legal", "analytics", "vendor"]

    async def test_selective_routes_by_keyword_and_adds_supervisor(
        self, engine, make_memory
    ):
        memory = await make_memory(
            "The financial audit flagged the renewal.",
            importance=Importance.critical,
        )

        result = await engine.broadcast_memory(
            memory.id, "legal", BroadcastPolicy.selective
        )

        assert "financial" in result.recipients
        assert "manager" in result.recipients
        assert "legal" not in result.recipients
        # the supervisor does not need domain knowledge
        assert result.shared_with == ["financial"]

    async def test_need_to_know_follows_referenced_entities(self, engine, make_memory):
        memory = await make_memory(
            importance=Importance.high,
            context=LongTermContext(contract_ids=["c-1"]),
        )

        result = await engine.broadcast_memory(
            memory.id, "vendor", BroadcastPolicy.need_to_know
        )

        assert result.recipients == ["financial", "legal"]

    async def test_need_to_know_follows_watched_types(self, engine, make_memory):
        memory = await make_memory(
            "Prefers email.",
            memory_type=MemoryType.user_preference,
            importance=Importance.high,
        )

        result = await engine.broadcast_memory(
            memory.id, "secretary", BroadcastPolicy.need_to_know
        )

        assert result.shared_with == ["notifications"]
        [shared] = await engine.get_shared_memories("notifications")
        assert shared.sharing.access_level == AccessLevel.summary

    async def test_recipient_levels_follow_profiles(self, engine, make_memory):
        memory = await make_memory(importance=Importance.critical)
        await engine.broadcast_memory(memory.id, "financial")

        legal = await engine.get_shared_memories("legal")
        analytics = await engine.get_shared_memories("analytics")
        assert legal[0].sharing.access_level == AccessLevel.full
        assert analytics[0].sharing.access_level == AccessLevel.read

    async def test_critical_level_capped_at_read(self, engine, make_memory):
        memory = await make_memory(importance=Importance.critical)
        policy = engine.sharing.policy
        level_for = engine.sharing.effective_access_level
        assert level_for(policy.require("legal"), memory) == AccessLevel.full
        assert level_for(policy.require("analytics"), memory) == AccessLevel.read
        assert level_for(policy.require("notifications"), memory) == (
            AccessLevel.summary
        )

    async def test_one_failing_recipient_is_isolated(
        self, engine, make_memory, monkeypatch
    ):
        memory = await make_memory(importance=Importance.high)
        original = engine.sharing.share_memory

        async def flaky(memory_id, from_agent, to_agent, reason, level):
            if to_agent == "legal":
                raise ExternalServiceError("store unavailable")
            return await original(memory_id, from_agent, to_agent, reason, level)

        monkeypatch.setattr(engine.sharing, "share_memory", flaky)
        result = await engine.broadcast_memory(memory.id, "financial")

        assert result.failed == ["legal"]
        assert result.shared_with == ["analytics", "vendor"]


# ---------------------------------------------------------------------------
# Access requests
# ---------------------------------------------------------------------------


class TestAccessRequests:
    async def test_low_importance_is_auto_approved(
        self, engine, make_memory, audit_logger
    ):
        memory = await make_memory(importance=Importance.low)

        result = await engine.request_access(
            "analytics", memory.id, "trend report", AccessLevel.read
        )

        assert result.auto_approved is True
        assert result.status == RequestStatus.approved
        assert result.sharing_id is not None
        [shared] = await engine.get_shared_memories("analytics")
        assert shared.sharing.from_agent_type == "manager"
        decided = await audit_logger.read_events(
            event_type=AuditEventType.ACCESS_DECIDED
        )
        assert decided[0].actor == "system"

    @pytest.mark.parametrize(
        ("importance", "level", "auto"),
        [
            (Importance.temporary, AccessLevel.read, True),
            (Importance.medium, AccessLevel.summary, True),
            (Importance.medium, AccessLevel.read, True),
            (Importance.medium, AccessLevel.full, False),
            (Importance.high, AccessLevel.metadata, False),
        ],
    )
    async def test_auto_approval_rules(
        self, engine, make_memory, importance, level, auto
    ):
        memory = await make_memory(importance=importance)
        result = await engine.request_access("legal", memory.id, "review", level)
        assert result.auto_approved is auto

    async def test_level_beyond_profile_stays_pending(self, engine, make_memory):
        memory = await make_memory(importance=Importance.low)
        result = await engine.request_access(
            "analytics", memory.id, "need all", AccessLevel.full
        )
        assert result.status == RequestStatus.pending

    async def test_requester_must_need_type(self, engine, make_memory):
        memory = await make_memory(importance=Importance.low)
        result = await engine.request_access(
            "secretary", memory.id, "curious", AccessLevel.read
        )
        assert result.status == RequestStatus.pending

    async def test_manual_approval_shares_once(self, engine, make_memory):
        memory = await make_memory(importance=Importance.high)
        pending = await engine.request_access(
            "legal", memory.id, "dispute", AccessLevel.read
        )
        assert pending.status == RequestStatus.pending
        queue = await engine.sharing.pending_requests("manager")
        assert [r.id for r in queue] == [pending.request_id]

        approved = await engine.process_access_request(
            pending.request_id, approve=True, processed_by="manager"
        )

        assert approved.status == RequestStatus.approved
        assert approved.sharing_id is not None
        request = await engine.sharing.get_request(pending.request_id)
        assert request.decision.decided_by == "manager"
        with pytest.raises(InvalidStateError):
            await engine.process_access_request(
                pending.request_id, approve=False, processed_by="manager"
            )

    async def test_denial(self, engine, make_memory):
        memory = await make_memory(importance=Importance.high)
        pending = await engine.request_access(
            "legal", memory.id, "dispute", AccessLevel.read
        )

        denied = await engine.process_access_request(
            pending.request_id,
            approve=False,
            processed_by="manager",
            reason="not needed",
        )

        assert denied.status == RequestStatus.denied
        assert denied.sharing_id is None
        assert await engine.get_shared_memories("legal") == []

    async def test_approval_beyond_lattice_is_unauthorized(self, engine, make_memory):
        memory = await make_memory(importance=Importance.high)
        pending = await engine.request_access(
            "analytics", memory.id, "everything", AccessLevel.full
        )
        with pytest.raises(UnauthorizedError):
            await engine.process_access_request(
                pending.request_id, approve=True, processed_by="manager"
            )
        request = await engine.sharing.get_request(pending.request_id)
        assert request.status == RequestStatus.pending

    async def test_approval_of_unneeded_type_is_unauthorized(
        self, engine, make_memory
    ):
        memory = await make_memory(
            "Prefers email digests.",
            memory_type=MemoryType.user_preference,
            importance=Importance.low,
        )
        pending = await engine.request_access(
            "financial", memory.id, "curious", AccessLevel.read
        )
        assert pending.status == RequestStatus.pending

        with pytest.raises(UnauthorizedError):
            await engine.process_access_request(
                pending.request_id, approve=True, processed_by="manager"
            )

        request = await engine.sharing.get_request(pending.request_id)
        assert request.status == RequestStatus.pending
        assert await engine.get_shared_memories("financial") == []

    async def test_unknown_request(self, engine):
        with pytest.raises(NotFoundError):
            await engine.process_access_request(
                "req_missing", approve=True, processed_by="manager"
            )

    async def test_explicit_owner(self, engine, make_memory):
        memory = await make_memory(importance=Importance.high)
        pending = await engine.request_access(
            "legal",
            memory.id,
            "dispute",
            AccessLevel.read,
            owner_agent_type="financial",
        )
        request = await engine.sharing.get_request(pending.request_id)
        assert request.owner_agent_type == "financial"
