"""Base record model and helpers shared by all persisted entities."""

from __future__ import annotations

import uuid
from datetime import datetime
from datetime import UTC
from typing import ClassVar

from pydantic import BaseModel
from pydantic import Field


def utc_now() -> datetime:
    """Default clock: timezone-aware UTC now."""
    return datetime.now(tz=UTC)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


class Record(BaseModel):
    """A persisted entity addressed by ``id``.

    Subclasses declare ``indexed_fields`` (attributes usable in equality
    queries) and ``order_field`` (the attribute used for recency ordering).
    Indexed attributes may be plain properties computed from fields.
    """

    collection: ClassVar[str] = "records"
    id_prefix: ClassVar[str] = "rec"
    indexed_fields: ClassVar[tuple[str, ...]] = ()
    order_field: ClassVar[str] = "created_at"

    id: str = Field(default="", description="Unique record identifier.")

    def model_post_init(self, __context: object) -> None:
        if not self.id:
            self.id = new_id(self.id_prefix)
