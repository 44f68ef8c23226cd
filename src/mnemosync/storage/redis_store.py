"""Redis-backed record store.

Each collection lives under ``{prefix}:{collection}``:

- ``:doc:{id}`` holds the record as JSON;
- ``:order`` is a sorted set scored by the record's ``order_field``;
- ``:idx:{field}:{value}`` sets index ids by attribute value;
- ``:vals:{field}`` remembers every value seen for ``distinct()``;
- ``:uniq:{digest}`` maps a uniqueness key to the owning id, and
  ``:uniqof:{id}`` points back so ``delete()`` can release it.

Read-modify-write operations run inside ``WATCH``/``MULTI`` transactions
and retry on ``WatchError``, which gives ``compare_and_set`` and
``upsert`` the same atomicity as the in-process store.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable
from collections.abc import Callable
from collections.abc import Mapping
from typing import Any
from typing import Generic
from typing import TypeVar

from redis.asyncio import Redis  # type: ignore[import-untyped]
from redis.asyncio.client import Pipeline  # type: ignore[import-untyped]
from redis.exceptions import WatchError  # type: ignore[import-untyped]

from mnemosync.errors import InvalidInputError
from mnemosync.errors import InvalidStateError
from mnemosync.errors import NotFoundError
from mnemosync.storage.base import apply_changes
from mnemosync.storage.base import check_where
from mnemosync.storage.base import index_value
from mnemosync.storage.base import MergeFn
from mnemosync.storage.base import ModifyFn
from mnemosync.storage.base import order_score
from mnemosync.storage.base import R
from mnemosync.storage.base import unique_digest

logger = logging.getLogger(__name__)

T = TypeVar("T")

_CLEAR_BATCH_SIZE = 100


def _decode(value: bytes | str) -> str:
    return value.decode() if isinstance(value, bytes) else value


class RedisRecordStore(Generic[R]):
    """``RecordStore`` implementation on top of ``redis.asyncio``."""

    def __init__(
        self,
        redis: Redis,
        model: type[R],
        *,
        prefix: str = "mnemosync",
    ) -> None:
        self._redis = redis
        self.model = model
        self._prefix = f"{prefix}:{model.collection}"

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    def _doc_key(self, record_id: str) -> str:
        return f"{self._prefix}:doc:{record_id}"

    @property
    def _order_key(self) -> str:
        return f"{self._prefix}:order"

    def _idx_key(self, field: str, value: str) -> str:
        return f"{self._prefix}:idx:{field}:{value}"

    def _vals_key(self, field: str) -> str:
        return f"{self._prefix}:vals:{field}"

    def _uniq_key(self, digest: str) -> str:
        return f"{self._prefix}:uniq:{digest}"

    def _uniqof_key(self, record_id: str) -> str:
        return f"{self._prefix}:uniqof:{record_id}"

    # ------------------------------------------------------------------
    # Transaction helpers
    # ------------------------------------------------------------------

    async def _transact(
        self,
        watch_keys: list[str],
        body: Callable[[Pipeline], Awaitable[T]],
    ) -> T:
        """Run *body* under WATCH, retrying when a watched key changes.

        *body* reads in immediate mode, then calls ``pipe.multi()`` and
        queues its writes. Errors raised by *body* abort the transaction.
        """
        async with self._redis.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(*watch_keys)
                    result = await body(pipe)
                    await pipe.execute()
                    return result
                except WatchError:
                    logger.debug(
                        "Retrying %s transaction on %s", self._prefix, watch_keys
                    )
                    continue

    def _queue_write(self, pipe: Pipeline, old: R | None, new: R) -> None:
        pipe.set(self._doc_key(new.id), new.model_dump_json())
        pipe.zadd(self._order_key, {new.id: order_score(new)})
        for name in self.model.indexed_fields:
            value = index_value(getattr(new, name))
            if old is not None:
                previous = index_value(getattr(old, name))
                if previous == value:
                    continue
                pipe.srem(self._idx_key(name, previous), new.id)
            pipe.sadd(self._idx_key(name, value), new.id)
            pipe.sadd(self._vals_key(name), value)

    def _queue_remove(self, pipe: Pipeline, record: R) -> None:
        pipe.delete(self._doc_key(record.id))
        pipe.zrem(self._order_key, record.id)
        for name in self.model.indexed_fields:
            value = index_value(getattr(record, name))
            pipe.srem(self._idx_key(name, value), record.id)

    async def _load(self, pipe: Pipeline, record_id: str) -> R:
        raw = await pipe.get(self._doc_key(record_id))
        if raw is None:
            raise NotFoundError(f"{self.model.__name__} {record_id} not found")
        return self.model.model_validate_json(raw)

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    async def insert(self, record: R) -> R:
        async def body(pipe: Pipeline) -> R:
            if await pipe.exists(self._doc_key(record.id)):
                msg = f"{self.model.__name__} {record.id} already exists"
                raise InvalidStateError(msg)
            pipe.multi()
            self._queue_write(pipe, None, record)
            return record

        return await self._transact([self._doc_key(record.id)], body)

    async def update(self, record_id: str, changes: Mapping[str, Any]) -> R:
        async def body(pipe: Pipeline) -> R:
            current = await self._load(pipe, record_id)
            updated = apply_changes(current, changes)
            pipe.multi()
            self._queue_write(pipe, current, updated)
            return updated

        return await self._transact([self._doc_key(record_id)], body)

    async def modify(self, record_id: str, fn: ModifyFn) -> R:
        async def body(pipe: Pipeline) -> R:
            current = await self._load(pipe, record_id)
            updated = apply_changes(current, fn(current.model_copy(deep=True)))
            pipe.multi()
            self._queue_write(pipe, current, updated)
            return updated

        return await self._transact([self._doc_key(record_id)], body)

    async def compare_and_set(
        self,
        record_id: str,
        *,
        field: str,
        expected: object,
        changes: Mapping[str, Any],
    ) -> R:
        async def body(pipe: Pipeline) -> R:
            current = await self._load(pipe, record_id)
            actual = index_value(getattr(current, field))
            if actual != index_value(expected):
                raise InvalidStateError(
                    f"{self.model.__name__} {record_id} has {field}="
                    f"{actual!r}, expected {index_value(expected)!r}"
                )
            updated = apply_changes(current, changes)
            pipe.multi()
            self._queue_write(pipe, current, updated)
            return updated

        return await self._transact([self._doc_key(record_id)], body)

    async def delete(self, record_id: str) -> bool:
        async def body(pipe: Pipeline) -> bool:
            raw = await pipe.get(self._doc_key(record_id))
            uniq = await pipe.get(self._uniqof_key(record_id))
            pipe.multi()
            if uniq is not None:
                pipe.delete(_decode(uniq))
                pipe.delete(self._uniqof_key(record_id))
            if raw is None:
                return False
            self._queue_remove(pipe, self.model.model_validate_json(raw))
            return True

        return await self._transact([self._doc_key(record_id)], body)

    async def upsert(
        self,
        record: R,
        *,
        unique_on: tuple[str, ...],
        merge: MergeFn,
    ) -> tuple[R, bool]:
        """Insert *record*, or merge into the record sharing ``unique_on`` values."""
        uniq_key = self._uniq_key(unique_digest(record, unique_on))

        async def body(pipe: Pipeline) -> tuple[R, bool]:
            existing_id = await pipe.get(uniq_key)
            if existing_id is not None:
                existing_key = self._doc_key(_decode(existing_id))
                await pipe.watch(existing_key)
                raw = await pipe.get(existing_key)
                if raw is not None:
                    existing = self.model.model_validate_json(raw)
                    updated = apply_changes(existing, merge(existing, record))
                    pipe.multi()
                    self._queue_write(pipe, existing, updated)
                    return updated, False
            pipe.multi()
            self._queue_write(pipe, None, record)
            pipe.set(uniq_key, record.id)
            pipe.set(self._uniqof_key(record.id), uniq_key)
            return record, True

        return await self._transact([uniq_key], body)

    async def clear(self) -> None:
        """Remove every key of this collection, in batches."""
        batch: list = []
        async for key in self._redis.scan_iter(match=f"{self._prefix}:*"):
            batch.append(key)
            if len(batch) >= _CLEAR_BATCH_SIZE:
                await self._redis.delete(*batch)
                batch.clear()
        if batch:
            await self._redis.delete(*batch)

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def get(self, record_id: str) -> R | None:
        raw = await self._redis.get(self._doc_key(record_id))
        if raw is None:
            return None
        return self.model.model_validate_json(raw)

    async def get_many(self, record_ids: list[str]) -> list[R]:
        if not record_ids:
            return []
        pipe = self._redis.pipeline()
        for rid in record_ids:
            pipe.get(self._doc_key(rid))
        raw_results = await pipe.execute()
        return [
            self.model.model_validate_json(raw)
            for raw in raw_results
            if raw is not None
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
        if limit == 0:
            return []
        filters = check_where(self.model, where)

        if not filters:
            end = offset + limit - 1
            if newest_first:
                raw_ids = await self._redis.zrevrange(self._order_key, offset, end)
            else:
                raw_ids = await self._redis.zrange(self._order_key, offset, end)
            return await self._fetch_ordered([_decode(i) for i in raw_ids])

        keys = [self._idx_key(name, value) for name, value in filters.items()]
        raw_ids = await self._redis.sinter(*keys)
        records = await self._fetch_ordered([_decode(i) for i in raw_ids], keys=keys)
        records.sort(key=lambda r: (order_score(r), r.id), reverse=newest_first)
        return records[offset : offset + limit]

    async def count(self, where: Mapping[str, object] | None = None) -> int:
        filters = check_where(self.model, where)
        if not filters:
            return await self._redis.zcard(self._order_key)
        keys = [self._idx_key(name, value) for name, value in filters.items()]
        if len(keys) == 1:
            return await self._redis.scard(keys[0])
        return len(await self._redis.sinter(*keys))

    async def distinct(self, field: str) -> list[str]:
        check_where(self.model, {field: ""})
        raw_values = await self._redis.smembers(self._vals_key(field))
        values = sorted(_decode(v) for v in raw_values)
        if not values:
            return []
        pipe = self._redis.pipeline()
        for value in values:
            pipe.scard(self._idx_key(field, value))
        sizes = await pipe.execute()
        return [value for value, size in zip(values, sizes) if size]

    async def _fetch_ordered(
        self,
        record_ids: list[str],
        *,
        keys: list[str] | None = None,
    ) -> list[R]:
        """Fetch docs for *record_ids*, pruning ids whose doc is gone."""
        if not record_ids:
            return []
        pipe = self._redis.pipeline()
        for rid in record_ids:
            pipe.get(self._doc_key(rid))
        raw_results = await pipe.execute()

        stale_ids: list[str] = []
        records: list[R] = []
        for rid, raw in zip(record_ids, raw_results):
            if raw is None:
                stale_ids.append(rid)
            else:
                records.append(self.model.model_validate_json(raw))

        if stale_ids:
            cleanup = self._redis.pipeline()
            for rid in stale_ids:
                cleanup.zrem(self._order_key, rid)
                for key in keys or []:
                    cleanup.srem(key, rid)
            await cleanup.execute()
        return records
