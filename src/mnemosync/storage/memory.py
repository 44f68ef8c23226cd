"""In-process record store.

Used by tests and single-process deployments. All mutations run under an
``asyncio.Lock`` so read-modify-write sequences are atomic with respect
to other coroutines on the same event loop. Records are copied on the
way in and out so callers never alias stored state.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import Any
from typing import Generic

from mnemosync.errors import InvalidInputError
from mnemosync.errors import InvalidStateError
from mnemosync.errors import NotFoundError
from mnemosync.storage.base import apply_changes
from mnemosync.storage.base import check_where
from mnemosync.storage.base import index_value
from mnemosync.storage.base import matches
from mnemosync.storage.base import MergeFn
from mnemosync.storage.base import ModifyFn
from mnemosync.storage.base import order_score
from mnemosync.storage.base import R
from mnemosync.storage.base import unique_digest


class InMemoryRecordStore(Generic[R]):
    """Dict-backed implementation of ``RecordStore``."""

    def __init__(self, model: type[R]) -> None:
        self.model = model
        self._records: dict[str, R] = {}
        self._unique: dict[tuple[tuple[str, ...], str], str] = {}
        self._lock = asyncio.Lock()

    # -- write --

    async def insert(self, record: R) -> R:
        async with self._lock:
            if record.id in self._records:
                msg = f"{self.model.__name__} {record.id} already exists"
                raise InvalidStateError(msg)
            self._records[record.id] = record.model_copy(deep=True)
            return record.model_copy(deep=True)

    async def update(self, record_id: str, changes: Mapping[str, Any]) -> R:
        async with self._lock:
            current = self._require(record_id)
            updated = apply_changes(current, changes)
            self._records[record_id] = updated
            return updated.model_copy(deep=True)

    async def modify(self, record_id: str, fn: ModifyFn) -> R:
        async with self._lock:
            current = self._require(record_id)
            updated = apply_changes(current, fn(current.model_copy(deep=True)))
            self._records[record_id] = updated
            return updated.model_copy(deep=True)

    async def compare_and_set(
        self,
        record_id: str,
        *,
        field: str,
        expected: object,
        changes: Mapping[str, Any],
    ) -> R:
        async with self._lock:
            current = self._require(record_id)
            actual = getattr(current, field)
            if index_value(actual) != index_value(expected):
                raise InvalidStateError(
                    f"{self.model.__name__} {record_id} has {field}="
                    f"{index_value(actual)!r}, expected {index_value(expected)!r}"
                )
            updated = apply_changes(current, changes)
            self._records[record_id] = updated
            return updated.model_copy(deep=True)

    async def delete(self, record_id: str) -> bool:
        async with self._lock:
            removed = self._records.pop(record_id, None)
            if removed is None:
                return False
            for key, owner in list(self._unique.items()):
                if owner == record_id:
                    del self._unique[key]
            return True

    async def upsert(
        self,
        record: R,
        *,
        unique_on: tuple[str, ...],
        merge: MergeFn,
    ) -> tuple[R, bool]:
        """Insert *record*, or merge into the record sharing ``unique_on`` values."""
        key = (unique_on, unique_digest(record, unique_on))
        async with self._lock:
            existing_id = self._unique.get(key)
            existing = self._records.get(existing_id) if existing_id else None
            if existing is not None:
                updated = apply_changes(existing, merge(existing, record))
                self._records[existing.id] = updated
                return updated.model_copy(deep=True), False
            self._records[record.id] = record.model_copy(deep=True)
            self._unique[key] = record.id
            return record.model_copy(deep=True), True

    async def clear(self) -> None:
        async with self._lock:
            self._records.clear()
            self._unique.clear()

    # -- read --

    async def get(self, record_id: str) -> R | None:
        record = self._records.get(record_id)
        return record.model_copy(deep=True) if record is not None else None

    async def get_many(self, record_ids: list[str]) -> list[R]:
        return [
            self._records[rid].model_copy(deep=True)
            for rid in record_ids
            if rid in self._records
        ]

    async def find(
        self,
        where: Mapping[str, object] | None = None,
        *,
        limit: int = 100,
        offset: int = 0,
        newest_first: bool = False,
    ) -> list[R]:
        if limit < 0 or offset < 0:
            raise InvalidInputError("limit and offset must be >= 0")
        filters = check_where(self.model, where)
        selected = [r for r in self._records.values() if matches(r, filters)]
        selected.sort(key=lambda r: (order_score(r), r.id), reverse=newest_first)
        return [r.model_copy(deep=True) for r in selected[offset : offset + limit]]

    async def count(self, where: Mapping[str, object] | None = None) -> int:
        filters = check_where(self.model, where)
        return sum(1 for r in self._records.values() if matches(r, filters))

    async def distinct(self, field: str) -> list[str]:
        check_where(self.model, {field: ""})
        return sorted({index_value(getattr(r, field)) for r in self._records.values()})

    # -- internal --

    def _require(self, record_id: str) -> R:
        record = self._records.get(record_id)
        if record is None:
            raise NotFoundError(f"{self.model.__name__} {record_id} not found")
        return record
