"""MCP interface contract tests.

All tests use ``fastmcp.Client`` against the in-process server, so every
call goes through MCP serialization, argument validation and the error
envelope. The engine behind the server runs on in-memory stores.
"""

from __future__ import annotations

import json

import pytest


def _parse(result) -> dict:
    """Extract the JSON payload from a CallToolResult."""
    return json.loads(result.content[0].text)


async def _call(client, tool: str, **arguments) -> dict:
    return _parse(await client.call_tool(tool, arguments))


async def _remember(
    client,
    content: str,
    *,
    memory_type: str = "domain_knowledge",
    importance: str = "medium",
    session_id: str = "s1",
) -> str:
    """Write one flagged observation and consolidate it into long-term memory."""
    await _call(
        client,
        "write_short_term_memory",
        owner_id="user-1",
        session_id=session_id,
        memory_type=memory_type,
        content=content,
        importance=importance,
        should_consolidate=True,
    )
    data = await _call(client, "consolidate", owner_id="user-1")
    [memory_id] = data["created_long_term_memory_ids"]
    return memory_id


# -----------------------------------------------------------------------
# write_short_term_memory
# -----------------------------------------------------------------------


class TestWriteShortTermMemory:
    async def test_returns_memory_id(self, mcp_client):
        data = await _call(
            mcp_client,
            "write_short_term_memory",
            owner_id="user-1",
            session_id="s1",
            memory_type="user_preference",
            content="Prefers email over phone calls.",
        )
        assert data["status"] == "ok"
        assert data["memory_id"].startswith("stm_")

    async def test_repeat_write_merges(self, mcp_client):
        arguments = {
            "owner_id": "user-1",
            "session_id": "s1",
            "memory_type": "user_preference",
            "content": "Prefers email over phone calls.",
        }
        first = await _call(mcp_client, "write_short_term_memory", **arguments)
        second = await _call(mcp_client, "write_short_term_memory", **arguments)
        assert first["memory_id"] == second["memory_id"]

    async def test_accepts_context(self, mcp_client):
        data = await _call(
            mcp_client,
            "write_short_term_memory",
            owner_id="user-1",
            session_id="s1",
            memory_type="entity_relation",
            content="Acme supplies Globex.",
            context={"vendor_id": "v-9", "agent_type": "vendor"},
            importance="high",
        )
        assert data["status"] == "ok"

    async def test_rejects_unknown_memory_type(self, mcp_client):
        data = await _call(
            mcp_client,
            "write_short_term_memory",
            owner_id="user-1",
            session_id="s1",
            memory_type="gossip",
            content="Heard something.",
        )
        assert data["status"] == "rejected"
        assert data["error_code"] == "validation_error"
        assert data["message"].startswith("memory_type")

    async def test_rejects_empty_content(self, mcp_client):
        data = await _call(
            mcp_client,
            "write_short_term_memory",
            owner_id="user-1",
            session_id="s1",
            memory_type="feedback",
            content="",
        )
        assert data["error_code"] == "validation_error"

    async def test_rejects_out_of_range_confidence(self, mcp_client):
        data = await _call(
            mcp_client,
            "write_short_term_memory",
            owner_id="user-1",
            session_id="s1",
            memory_type="feedback",
            content="Too sure.",
            confidence=1.5,
        )
        assert data["error_code"] == "validation_error"

    async def test_rejects_missing_content(self, mcp_client):
        with pytest.raises(Exception):
            await mcp_client.call_tool(
                "write_short_term_memory",
                {"owner_id": "user-1", "session_id": "s1", "memory_type": "feedback"},
            )


# -----------------------------------------------------------------------
# consolidate
# -----------------------------------------------------------------------


class TestConsolidate:
    async def test_nothing_pending(self, mcp_client):
        data = await _call(mcp_client, "consolidate", owner_id="user-1")
        assert data["status"] == "ok"
        assert data["job_id"] is None
        assert data["memories_processed"] == 0

    async def test_creates_long_term_memory(self, mcp_client):
        await _call(
            mcp_client,
            "write_short_term_memory",
            owner_id="user-1",
            session_id="s1",
            memory_type="user_preference",
            content="Prefers email over phone calls.",
            should_consolidate=True,
        )

        data = await _call(mcp_client, "consolidate", owner_id="user-1")

        assert data["job_status"] == "completed"
        assert data["memories_processed"] == 1
        assert data["memories_consolidated"] == 1
        assert data["created_long_term_memory_ids"][0].startswith("ltm_")
        assert data["job_error"] is None

    async def test_session_filter(self, mcp_client):
        await _call(
            mcp_client,
            "write_short_term_memory",
            owner_id="user-1",
            session_id="a",
            memory_type="feedback",
            content="Liked the weekly digest.",
            should_consolidate=True,
        )
        data = await _call(
            mcp_client, "consolidate", owner_id="user-1", session_id="other"
        )
        assert data["job_id"] is None


# -----------------------------------------------------------------------
# semantic_search / find_similar
# -----------------------------------------------------------------------


class TestSearch:
    async def test_semantic_search_finds_memory(self, mcp_client):
        memory_id = await _remember(mcp_client, "Payment terms are net 30.")

        data = await _call(
            mcp_client, "semantic_search", owner_id="user-1", query="payment"
        )

        assert data["status"] == "ok"
        [hit] = data["hits"]
        assert hit["memory_id"] == memory_id
        assert hit["memory_type"] == "domain_knowledge"
        assert hit["score"] == pytest.approx(1.0)

    async def test_semantic_search_type_filter(self, mcp_client):
        await _remember(mcp_client, "Payment terms are net 30.")
        data = await _call(
            mcp_client,
            "semantic_search",
            owner_id="user-1",
            query="payment",
            memory_types=["feedback"],
        )
        assert data["hits"] == []

    async def test_semantic_search_rejects_bad_limit(self, mcp_client):
        data = await _call(
            mcp_client, "semantic_search", owner_id="user-1", query="x", limit=0
        )
        assert data["error_code"] == "validation_error"

    async def test_find_similar(self, mcp_client):
        domain_id = await _remember(mcp_client, "Payment terms are net 30.")
        process_id = await _remember(
            mcp_client,
            "Payment approvals need a manager signature.",
            memory_type="process_knowledge",
        )

        data = await _call(mcp_client, "find_similar", memory_id=domain_id)

        assert [hit["memory_id"] for hit in data["hits"]] == [process_id]

    async def test_find_similar_unknown_memory(self, mcp_client):
        data = await _call(mcp_client, "find_similar", memory_id="ltm_missing")
        assert data["status"] == "rejected"
        assert data["error_code"] == "not_found"


# -----------------------------------------------------------------------
# Sharing tools
# -----------------------------------------------------------------------


class TestShareMemory:
    async def test_share_and_read_back(self, mcp_client):
        memory_id = await _remember(mcp_client, "Payment terms are net 30.")

        shared = await _call(
            mcp_client,
            "share_memory",
            memory_id=memory_id,
            from_agent_type="financial",
            to_agent_type="legal",
            reason="contract review",
        )

        assert shared["shared"] is True
        assert shared["sharing_id"]

        data = await _call(mcp_client, "get_shared_memories", agent_type="legal")
        [memory] = data["memories"]
        assert memory["id"] == memory_id
        assert memory["sharing"]["shared_by"] == "financial"
        assert memory["sharing"]["access_level"] == "read"
        assert memory["sharing"]["reason"] == "contract review"

    async def test_unknown_agent_is_rejected(self, mcp_client):
        memory_id = await _remember(mcp_client, "Payment terms are net 30.")
        data = await _call(
            mcp_client,
            "share_memory",
            memory_id=memory_id,
            from_agent_type="financial",
            to_agent_type="janitor",
        )
        assert data["status"] == "rejected"
        assert data["error_code"] == "validation_error"

    async def test_invalid_access_level(self, mcp_client):
        data = await _call(
            mcp_client,
            "share_memory",
            memory_id="ltm_x",
            from_agent_type="financial",
            to_agent_type="legal",
            access_level="everything",
        )
        assert data["error_code"] == "validation_error"

    async def test_nothing_shared_yet(self, mcp_client):
        data = await _call(mcp_client, "get_shared_memories", agent_type="legal")
        assert data["memories"] == []


class TestBroadcastMemory:
    async def test_high_importance_reaches_others(self, mcp_client):
        memory_id = await _remember(
            mcp_client, "Payment terms are net 30.", importance="high"
        )

        data = await _call(
            mcp_client,
            "broadcast_memory",
            memory_id=memory_id,
            source_agent_type="financial",
        )

        assert data["broadcasted"] is True
        assert "legal" in data["recipients"]
        assert "financial" not in data["recipients"]
        assert sorted(data["shared_with"]) == sorted(data["recipients"])

    async def test_medium_importance_is_not_broadcast(self, mcp_client):
        memory_id = await _remember(mcp_client, "Payment terms are net 30.")
        data = await _call(
            mcp_client,
            "broadcast_memory",
            memory_id=memory_id,
            source_agent_type="financial",
        )
        assert data["status"] == "ok"
        assert data["broadcasted"] is False
        assert data["recipients"] == []

    async def test_unknown_policy(self, mcp_client):
        data = await _call(
            mcp_client,
            "broadcast_memory",
            memory_id="ltm_x",
            source_agent_type="financial",
            policy="everyone",
        )
        assert data["error_code"] == "validation_error"


class TestAccessRequests:
    async def test_low_importance_is_auto_approved(self, mcp_client):
        memory_id = await _remember(
            mcp_client, "Payment terms are net 30.", importance="low"
        )

        data = await _call(
            mcp_client,
            "request_access",
            requesting_agent_type="analytics",
            memory_id=memory_id,
            reason="quarterly report",
        )

        assert data["auto_approved"] is True
        assert data["request_status"] == "approved"
        assert data["sharing_id"]

    async def test_manual_decision_happens_once(self, mcp_client):
        memory_id = await _remember(
            mcp_client, "Payment terms are net 30.", importance="high"
        )
        pending = await _call(
            mcp_client,
            "request_access",
            requesting_agent_type="legal",
            memory_id=memory_id,
            reason="dispute",
        )
        assert pending["request_status"] == "pending"
        assert pending["auto_approved"] is False

        approved = await _call(
            mcp_client,
            "process_access_request",
            request_id=pending["request_id"],
            decision="approved",
            processed_by="manager",
        )
        assert approved["request_status"] == "approved"
        assert approved["sharing_id"]

        again = await _call(
            mcp_client,
            "process_access_request",
            request_id=pending["request_id"],
            decision="denied",
            processed_by="manager",
        )
        assert again["status"] == "rejected"
        assert again["error_code"] == "invalid_state"

    async def test_invalid_decision(self, mcp_client):
        data = await _call(
            mcp_client,
            "process_access_request",
            request_id="req_x",
            decision="maybe",
            processed_by="manager",
        )
        assert data["error_code"] == "validation_error"

    async def test_unknown_request(self, mcp_client):
        data = await _call(
            mcp_client,
            "process_access_request",
            request_id="req_missing",
            decision="denied",
            processed_by="manager",
        )
        assert data["error_code"] == "not_found"

    async def test_reason_is_required(self, mcp_client):
        data = await _call(
            mcp_client,
            "request_access",
            requesting_agent_type="legal",
            memory_id="ltm_x",
            reason="",
        )
        assert data["error_code"] == "validation_error"


class TestSyncAgentKnowledge:
    async def test_full_sync(self, mcp_client):
        await _remember(mcp_client, "Payment terms are net 30.")

        data = await _call(
            mcp_client,
            "sync_agent_knowledge",
            agent1_type="financial",
            agent2_type="legal",
        )

        assert data["sync_id"]
        assert data["sync_status"] == "completed"
        assert data["stats"]["agent1_to_agent2"] == 1
        assert data["stats"]["errors"] == 0

    async def test_selective_criteria(self, mcp_client):
        await _remember(mcp_client, "Payment terms are net 30.")
        data = await _call(
            mcp_client,
            "sync_agent_knowledge",
            agent1_type="financial",
            agent2_type="legal",
            sync_type="selective",
            criteria={"memory_types": ["entity_relation"]},
        )
        assert data["stats"]["agent1_to_agent2"] == 0

    async def test_unknown_sync_type(self, mcp_client):
        data = await _call(
            mcp_client,
            "sync_agent_knowledge",
            agent1_type="financial",
            agent2_type="legal",
            sync_type="partial",
        )
        assert data["error_code"] == "validation_error"


# -----------------------------------------------------------------------
# Pool tools
# -----------------------------------------------------------------------


class TestPools:
    async def _pool(self, client, **overrides) -> dict:
        arguments = {
            "name": "contracts",
            "participating_agents": ["financial", "analytics"],
            "memory_types": ["domain_knowledge"],
            "created_by": "manager",
        }
        arguments.update(overrides)
        return await _call(client, "create_pool", **arguments)

    async def test_open_pool_round_trip(self, mcp_client):
        pool = await self._pool(mcp_client)
        assert pool["pool_id"]
        assert pool["name"] == "contracts"
        assert pool["policy"] == "open"
        memory_id = await _remember(mcp_client, "Payment terms are net 30.")

        entry = await _call(
            mcp_client,
            "add_to_pool",
            pool_id=pool["pool_id"],
            memory_id=memory_id,
            contributing_agent="financial",
        )
        assert entry["entry_status"] == "active"

        data = await _call(
            mcp_client,
            "get_pool_memories",
            pool_id=pool["pool_id"],
            agent_type="analytics",
        )
        [memory] = data["memories"]
        assert memory["id"] == memory_id
        assert memory["pool"]["pool_name"] == "contracts"
        assert memory["pool"]["contributed_by"] == "financial"

    async def test_moderated_entry_is_pending(self, mcp_client):
        pool = await self._pool(mcp_client, policy="moderated")
        memory_id = await _remember(mcp_client, "Payment terms are net 30.")
        entry = await _call(
            mcp_client,
            "add_to_pool",
            pool_id=pool["pool_id"],
            memory_id=memory_id,
            contributing_agent="financial",
        )
        assert entry["entry_status"] == "pending"

    async def test_non_participant_is_forbidden(self, mcp_client):
        pool = await self._pool(mcp_client)
        memory_id = await _remember(mcp_client, "Payment terms are net 30.")

        entry = await _call(
            mcp_client,
            "add_to_pool",
            pool_id=pool["pool_id"],
            memory_id=memory_id,
            contributing_agent="legal",
        )
        assert entry["status"] == "rejected"
        assert entry["error_code"] == "forbidden"

        data = await _call(
            mcp_client,
            "get_pool_memories",
            pool_id=pool["pool_id"],
            agent_type="legal",
        )
        assert data["memories"] == []

    async def test_empty_participants(self, mcp_client):
        data = await self._pool(mcp_client, participating_agents=[])
        assert data["error_code"] == "validation_error"


# -----------------------------------------------------------------------
# run_maintenance
# -----------------------------------------------------------------------


class TestRunMaintenance:
    async def test_single_owner(self, mcp_client):
        await _remember(mcp_client, "Payment terms are net 30.")
        data = await _call(mcp_client, "run_maintenance", owner_id="user-1")
        assert data["status"] == "ok"
        [report] = data["reports"]
        assert report["owner_id"] == "user-1"

    async def test_every_owner(self, mcp_client):
        await _call(
            mcp_client,
            "write_short_term_memory",
            owner_id="user-2",
            session_id="s1",
            memory_type="feedback",
            content="Liked the weekly digest.",
        )
        data = await _call(mcp_client, "run_maintenance")
        assert [r["owner_id"] for r in data["reports"]] == ["user-2"]


# -----------------------------------------------------------------------
# Server plumbing
# -----------------------------------------------------------------------


class TestServerPlumbing:
    async def test_engine_not_configured(self, mcp_client):
        from mnemosync.server import shutdown

        await shutdown()
        data = await _call(mcp_client, "consolidate", owner_id="user-1")
        assert data["status"] == "error"
        assert data["error_code"] == "engine_not_configured"

    async def test_authz_denies_without_scope(self, mcp_client, monkeypatch):
        monkeypatch.setenv("MCP_AUTHZ_ENABLED", "1")
        data = await _call(mcp_client, "run_maintenance", owner_id="user-1")
        assert data["status"] == "rejected"
        assert data["error_code"] == "forbidden"
        assert "mnemosync:maintenance:admin" in data["message"]

    async def test_reset_engine_clears_state(self, mcp_client):
        from mnemosync.server import _reset_engine

        await _remember(mcp_client, "Payment terms are net 30.")
        await _reset_engine()
        data = await _call(
            mcp_client, "semantic_search", owner_id="user-1", query="payment"
        )
        assert data["hits"] == []

    async def test_lists_every_tool(self, mcp_client):
        tools = {tool.name for tool in await mcp_client.list_tools()}
        assert tools == {
            "write_short_term_memory",
            "consolidate",
            "semantic_search",
            "find_similar",
            "share_memory",
            "broadcast_memory",
            "request_access",
            "process_access_request",
            "sync_agent_knowledge",
            "get_shared_memories",
            "create_pool",
            "add_to_pool",
            "get_pool_memories",
            "run_maintenance",
        }
