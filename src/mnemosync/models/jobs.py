"""Consolidation job record."""

from __future__ import annotations

from datetime import datetime
from typing import ClassVar

from pydantic import Field

from mnemosync.models.base import Record
from mnemosync.models.base import utc_now
from mnemosync.models.enums import JobStatus


class ConsolidationJob(Record):
    """Tracks one batch of short-term memories through consolidation.

    Status moves ``pending -> running -> completed | failed``. A failed
    job keeps its error message and can be replayed by creating a new job
    over the same short-term ids.
    """

    collection: ClassVar[str] = "consolidation_jobs"
    id_prefix: ClassVar[str] = "job"
    indexed_fields: ClassVar[tuple[str, ...]] = ("owner_id", "status")

    owner_id: str
    short_term_memory_ids: list[str]
    status: JobStatus = JobStatus.pending
    memories_processed: int = 0
    memories_consolidated: int = 0
    memories_reinforced: int = 0
    error_count: int = 0
    created_long_term_memory_ids: list[str] = Field(default_factory=list)
    error: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    started_at: datetime | None = None
    completed_at: datetime | None = None
