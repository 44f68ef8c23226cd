"""Repository protocol shared by every record collection.

Queries are equality filters over a model's ``indexed_fields``. Every
mutation is atomic with respect to other callers of the same store, and
``compare_and_set`` is the primitive used for job, sync and request
state transitions.
"""

from __future__ import annotations

import hashlib
from collections.abc import Callable
from collections.abc import Mapping
from datetime import datetime
from enum import Enum
from typing import Any
from typing import Protocol
from typing import runtime_checkable
from typing import TypeVar

from mnemosync.errors import InvalidInputError
from mnemosync.models.base import Record

R = TypeVar("R", bound=Record)

# Merge callback for ``upsert``: (existing, incoming) -> field changes
MergeFn = Callable[[Any, Any], dict[str, Any]]
# Change callback for ``modify``: current record -> field changes
ModifyFn = Callable[[Any], Mapping[str, Any]]


def index_value(value: object) -> str:
    """Normalize an attribute value into its index key form."""
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, bool):
        return "1" if value else "0"
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def order_score(record: Record) -> float:
    """Recency score for a record, taken from its ``order_field``."""
    value = getattr(record, record.order_field, None)
    if isinstance(value, datetime):
        return value.timestamp()
    return 0.0


def unique_digest(record: Record, fields: tuple[str, ...]) -> str:
    """Stable digest of *fields* used as a uniqueness key."""
    joined = "\x1f".join(index_value(getattr(record, name)) for name in fields)
    return hashlib.sha256(joined.encode("utf-8")).hexdigest()


def check_where(
    model: type[Record],
    where: Mapping[str, object] | None,
) -> dict[str, str]:
    """Validate a filter against *model*'s indexes and normalize values."""
    normalized: dict[str, str] = {}
    for name, value in (where or {}).items():
        if name not in model.indexed_fields:
            msg = f"{model.__name__} has no index on {name!r}"
            raise InvalidInputError(msg)
        normalized[name] = index_value(value)
    return normalized


def matches(record: Record, where: Mapping[str, str]) -> bool:
    return all(index_value(getattr(record, k)) == v for k, v in where.items())


def apply_changes(record: R, changes: Mapping[str, Any]) -> R:
    """Return a validated copy of *record* with *changes* applied."""
    data = record.model_dump()
    data.update(changes)
    return type(record).model_validate(data)


@runtime_checkable
class RecordStore(Protocol[R]):
    """Async repository for one record collection."""

    model: type[R]

    async def insert(self, record: R) -> R: ...

    async def get(self, record_id: str) -> R | None: ...

    async def get_many(self, record_ids: list[str]) -> list[R]: ...

    async def update(self, record_id: str, changes: Mapping[str, Any]) -> R: ...

    async def modify(self, record_id: str, fn: ModifyFn) -> R:
        """Apply the changes *fn* derives from the current record, atomically."""
        ...

    async def compare_and_set(
        self,
        record_id: str,
        *,
        field: str,
        expected: object,
        changes: Mapping[str, Any],
    ) -> R: ...

    async def delete(self, record_id: str) -> bool: ...

    async def find(
        self,
        where: Mapping[str, object] | None = None,
        *,
        limit: int = 100,
        offset: int = 0,
        newest_first: bool = False,
    ) -> list[R]: ...

    async def count(self, where: Mapping[str, object] | None = None) -> int: ...

    async def distinct(self, field: str) -> list[str]: ...

    async def upsert(
        self,
        record: R,
        *,
        unique_on: tuple[str, ...],
        merge: MergeFn,
    ) -> tuple[R, bool]: ...

    async def clear(self) -> None: ...
