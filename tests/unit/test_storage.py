"""Unit tests for the in-process record store."""

from __future__ import annotations

import asyncio
from datetime import datetime
from datetime import timedelta
from datetime import UTC

import pytest

from mnemosync.errors import InvalidInputError
from mnemosync.errors import InvalidStateError
from mnemosync.errors import NotFoundError
from mnemosync.models import AccessLevel
from mnemosync.models import ConsolidationJob
from mnemosync.models import JobStatus
from mnemosync.models import MemoryType
from mnemosync.models import SharingRecord
from mnemosync.models import ShortTermMemory
from mnemosync.storage import InMemoryRecordStore
from mnemosync.storage import index_value
from mnemosync.storage import RecordStore

T0 = datetime(2026, 1, 1, tzinfo=UTC)


def _entry(content: str = "likes email", *, owner: str = "u1", minutes: int = 0):
    return ShortTermMemory(
        owner_id=owner,
        session_id="s1",
        memory_type=MemoryType.user_preference,
        content=content,
        created_at=T0 + timedelta(minutes=minutes),
    )


def _share(to_agent: str = "legal") -> SharingRecord:
    return SharingRecord(
        memory_id="ltm_1",
        from_agent_type="financial",
        to_agent_type=to_agent,
        access_level=AccessLevel.read,
    )


def _job() -> ConsolidationJob:
    return ConsolidationJob(owner_id="u1", short_term_memory_ids=[])


class TestIndexValue:
    def test_normalizes_values(self):
        assert index_value(MemoryType.feedback) == "feedback"
        assert index_value(True) == "1"
        assert index_value(False) == "0"
        assert index_value(None) == ""
        assert index_value(3) == "3"


class TestInsertAndRead:
    async def test_satisfies_protocol(self):
        assert isinstance(InMemoryRecordStore(ShortTermMemory), RecordStore)

    async def test_insert_and_get(self):
        store = InMemoryRecordStore(ShortTermMemory)
        entry = await store.insert(_entry())
        fetched = await store.get(entry.id)
        assert fetched == entry

    async def test_duplicate_insert_rejected(self):
        store = InMemoryRecordStore(ShortTermMemory)
        entry = await store.insert(_entry())
        with pytest.raises(InvalidStateError):
            await store.insert(entry)

    async def test_returned_records_are_copies(self):
        store = InMemoryRecordStore(ShortTermMemory)
        entry = await store.insert(_entry())
        entry.content = "mutated"
        fetched = await store.get(entry.id)
        assert fetched is not None
        assert fetched.content == "likes email"

    async def test_get_many_skips_missing(self):
        store = InMemoryRecordStore(ShortTermMemory)
        entry = await store.insert(_entry())
        assert [r.id for r in await store.get_many([entry.id, "nope"])] == [entry.id]


class TestFind:
    async def test_filters_on_indexed_fields(self):
        store = InMemoryRecordStore(ShortTermMemory)
        await store.insert(_entry(owner="u1"))
        await store.insert(_entry(owner="u2"))
        found = await store.find({"owner_id": "u2"})
        assert [r.owner_id for r in found] == ["u2"]

    async def test_filters_on_computed_property(self):
        store = InMemoryRecordStore(ShortTermMemory)
        await store.insert(_entry())
        assert await store.count({"is_consolidated": False}) == 1
        assert await store.count({"is_consolidated": True}) == 0

    async def test_unindexed_field_rejected(self):
        store = InMemoryRecordStore(ShortTermMemory)
        with pytest.raises(InvalidInputError):
            await store.find({"content": "x"})

    async def test_orders_by_order_field(self):
        store = InMemoryRecordStore(ShortTermMemory)
        late = await store.insert(_entry("late", minutes=10))
        early = await store.insert(_entry("early", minutes=1))
        oldest_first = await store.find()
        newest_first = await store.find(newest_first=True)
        assert [r.id for r in oldest_first] == [early.id, late.id]
        assert [r.id for r in newest_first] == [late.id, early.id]

    async def test_limit_and_offset(self):
        store = InMemoryRecordStore(ShortTermMemory)
        for i in range(5):
            await store.insert(_entry(f"entry {i}", minutes=i))
        page = await store.find(limit=2, offset=2)
        assert [r.content for r in page] == ["entry 2", "entry 3"]

    async def test_distinct(self):
        store = InMemoryRecordStore(ShortTermMemory)
        await store.insert(_entry(owner="b"))
        await store.insert(_entry(owner="a"))
        await store.insert(_entry("again", owner="a"))
        assert await store.distinct("owner_id") == ["a", "b"]


class TestMutations:
    async def test_update_validates_changes(self):
        store = InMemoryRecordStore(ShortTermMemory)
        entry = await store.insert(_entry())
        updated = await store.update(entry.id, {"confidence": 0.9})
        assert updated.confidence == 0.9
        with pytest.raises(ValueError):
            await store.update(entry.id, {"confidence": 2.0})

    async def test_update_missing_raises_not_found(self):
        store = InMemoryRecordStore(ShortTermMemory)
        with pytest.raises(NotFoundError):
            await store.update("missing", {"confidence": 0.1})

    async def test_modify_reads_current_state(self):
        store = InMemoryRecordStore(ConsolidationJob)
        job = await store.insert(_job())

        async def bump():
            await asyncio.sleep(0)
            return await store.modify(
                job.id, lambda current: {"error_count": current.error_count + 1}
            )

        await asyncio.gather(*(bump() for _ in range(5)))

        assert (await store.get(job.id)).error_count == 5

    async def test_modify_missing_raises_not_found(self):
        store = InMemoryRecordStore(ConsolidationJob)
        with pytest.raises(NotFoundError):
            await store.modify("missing", lambda current: {})

    async def test_delete(self):
        store = InMemoryRecordStore(ShortTermMemory)
        entry = await store.insert(_entry())
        assert await store.delete(entry.id) is True
        assert await store.delete(entry.id) is False
        assert await store.get(entry.id) is None

    async def test_clear(self):
        store = InMemoryRecordStore(ShortTermMemory)
        await store.insert(_entry())
        await store.clear()
        assert await store.count() == 0


class TestCompareAndSet:
    async def test_transitions_when_expected_matches(self):
        store = InMemoryRecordStore(ConsolidationJob)
        job = await store.insert(_job())
        running = await store.compare_and_set(
            job.id,
            field="status",
            expected=JobStatus.pending,
            changes={"status": JobStatus.running},
        )
        assert running.status == JobStatus.running

    async def test_rejects_stale_expectation(self):
        store = InMemoryRecordStore(ConsolidationJob)
        job = await store.insert(_job())
        await store.update(job.id, {"status": JobStatus.completed})
        with pytest.raises(InvalidStateError):
            await store.compare_and_set(
                job.id,
                field="status",
                expected=JobStatus.pending,
                changes={"status": JobStatus.running},
            )

    async def test_only_one_concurrent_transition_wins(self):
        store = InMemoryRecordStore(ConsolidationJob)
        job = await store.insert(_job())

        async def attempt():
            return await store.compare_and_set(
                job.id,
                field="status",
                expected=JobStatus.pending,
                changes={"status": JobStatus.running},
            )

        results = await asyncio.gather(
            *(attempt() for _ in range(5)), return_exceptions=True
        )
        losers = [r for r in results if isinstance(r, Exception)]
        assert len(losers) == 4
        assert all(isinstance(r, InvalidStateError) for r in losers)


class TestUpsert:
    async def test_inserts_then_merges(self):
        store = InMemoryRecordStore(SharingRecord)
        key = ("memory_id", "from_agent_type", "to_agent_type")

        def merge(existing, incoming):
            return {"access_level": incoming.access_level}

        first, created = await store.upsert(_share(), unique_on=key, merge=merge)
        assert created is True

        again = _share()
        again.access_level = AccessLevel.summary
        second, created = await store.upsert(again, unique_on=key, merge=merge)
        assert created is False
        assert second.id == first.id
        assert second.access_level == AccessLevel.summary
        assert await store.count() == 1

    async def test_distinct_keys_create_separate_records(self):
        store = InMemoryRecordStore(SharingRecord)
        key = ("memory_id", "from_agent_type", "to_agent_type")
        await store.upsert(_share("legal"), unique_on=key, merge=lambda e, i: {})
        await store.upsert(_share("vendor"), unique_on=key, merge=lambda e, i: {})
        assert await store.count() == 2

    async def test_concurrent_upserts_keep_one_record(self):
        store = InMemoryRecordStore(SharingRecord)
        key = ("memory_id", "from_agent_type", "to_agent_type")
        await asyncio.gather(
            *(
                store.upsert(_share(), unique_on=key, merge=lambda e, i: {})
                for _ in range(10)
            )
        )
        assert await store.count() == 1

    async def test_delete_releases_unique_key(self):
        store = InMemoryRecordStore(SharingRecord)
        key = ("memory_id", "from_agent_type", "to_agent_type")
        first, _ = await store.upsert(_share(), unique_on=key, merge=lambda e, i: {})
        await store.delete(first.id)
        second, created = await store.upsert(
            _share(), unique_on=key, merge=lambda e, i: {}
        )
        assert created is True
        assert second.id != first.id
