"""Decay and maintenance sweeps over short-term, long-term and graph data.

Every sweep is bounded to one owner and walks records in pages of
``MaintenanceConfig.page_size``. Decay is measured from the previous
decay application, so re-running a sweep with no elapsed time is a no-op.
A failure on one record is logged and counted, never fatal to the sweep.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import Counter
from collections import defaultdict
from collections.abc import Callable
from dataclasses import asdict
from dataclasses import dataclass
from datetime import datetime
from datetime import timedelta
from typing import Any

from mnemosync.audit import AuditEventType
from mnemosync.audit import AuditLogger
from mnemosync.config import MaintenanceConfig
from mnemosync.engine.consolidation import ConsolidationPipeline
from mnemosync.errors import MemoryEngineError
from mnemosync.graph.base import AssociationRepository
from mnemosync.memory.long_term import LongTermStore
from mnemosync.memory.short_term import ShortTermStore
from mnemosync.models.base import utc_now
from mnemosync.models.enums import SessionStatus
from mnemosync.models.memory import ShortTermMemory
from mnemosync.text import rolling_hash

logger = logging.getLogger(__name__)

_SECONDS_PER_DAY = 24 * 60 * 60
_TREND_DAYS = 7
_PENDING_ADVICE = 20
_ACTIVE_SESSION_ADVICE = 10
_SHORT_TERM_RATIO_ADVICE = 0.8
# Decayed strengths are rounded so exact floor hits are not lost to float error.
_STRENGTH_PLACES = 9
_WEAK_ADVICE_STRENGTH = 0.3


def _elapsed_days(since: datetime, now: datetime) -> float:
    return max(0.0, (now - since).total_seconds() / _SECONDS_PER_DAY)


@dataclass
class MaintenanceReport:
    """Counts produced by one maintenance run for one owner."""

    owner_id: str
    expired_short_term_removed: int = 0
    duplicate_short_term_removed: int = 0
    long_term_decayed: int = 0
    long_term_flagged_weak: int = 0
    associations_decayed: int = 0
    associations_removed: int = 0
    orphan_associations_removed: int = 0
    sessions_archived: int = 0
    errors: int = 0

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


class MaintenanceEngine:
    """Ages, prunes and archives one owner's memory at a time."""

    def __init__(
        self,
        short_term: ShortTermStore,
        long_term: LongTermStore,
        associations: AssociationRepository,
        *,
        consolidation: ConsolidationPipeline | None = None,
        audit_logger: AuditLogger | None = None,
        config: MaintenanceConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._short_term = short_term
        self._long_term = long_term
        self._associations = associations
        self._consolidation = consolidation
        self._audit = audit_logger
        self._config = config or MaintenanceConfig()
        self._clock = clock or utc_now

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def run(self, owner_id: str) -> MaintenanceReport:
        """Run every sweep for *owner_id* and return the combined report."""
        report = MaintenanceReport(owner_id=owner_id)
        report.expired_short_term_removed = await self._short_term.cleanup_expired(
            owner_id
        )
        await self.remove_duplicate_short_term(owner_id, report)
        await self.decay_long_term(owner_id, report)
        await self.decay_sweep(owner_id, report)
        await self.cleanup_orphan_associations(owner_id, report)
        await self.archive_idle_sessions(owner_id, report)
        logger.info("Maintenance for %s: %s", owner_id, report.as_dict())
        if self._audit is not None:
            await self._audit.record(
                AuditEventType.MAINTENANCE_RUN, actor="maintenance", **report.as_dict()
            )
        return report

    async def run_all(self) -> list[MaintenanceReport]:
        """Consolidate pending owners, then run every sweep owner by owner."""
        if self._consolidation is not None:
            await self._consolidation.consolidate_pending_owners()
        owners = set(await self._short_term.owners())
        owners.update(await self._long_term.owners())
        owners.update(await self._short_term.session_owners())
        reports = []
        for owner_id in sorted(owners):
            try:
                reports.append(await self.run(owner_id))
            except Exception:
                logger.exception("Maintenance run failed for owner %s", owner_id)
        return reports

    # ------------------------------------------------------------------
    # Long-term decay
    # ------------------------------------------------------------------

    async def decay_long_term(
        self,
        owner_id: str,
        report: MaintenanceReport | None = None,
    ) -> MaintenanceReport:
        """Linear strength decay; memories below the weak floor are flagged."""
        report = report or MaintenanceReport(owner_id=owner_id)
        now = self._clock()
        page_size = self._config.page_size
        offset = 0
        while True:
            page = await self._long_term.list_memories(
                owner_id, limit=page_size, offset=offset, newest_first=False
            )
            for memory in page:
                if memory.is_verified:
                    continue
                anchors = [memory.last_reinforced_at, memory.last_accessed_at]
                if memory.decayed_at is not None:
                    anchors.append(memory.decayed_at)
                days = _elapsed_days(max(anchors), now)
                if days <= 0:
                    continue
                strength = max(
                    0.0,
                    round(memory.strength - memory.decay_rate * days, _STRENGTH_PLACES),
                )
                is_weak = strength < self._config.weak_floor
                try:
                    await self._long_term.update(
                        memory.id,
                        {"strength": strength, "is_weak": is_weak, "decayed_at": now},
                    )
                except MemoryEngineError:
                    logger.exception("Failed to decay long-term memory %s", memory.id)
                    report.errors += 1
                    continue
                report.long_term_decayed += 1
                if is_weak and not memory.is_weak:
                    report.long_term_flagged_weak += 1
            if len(page) < page_size:
                break
            offset += page_size
        return report

    # ------------------------------------------------------------------
    # Associations
    # ------------------------------------------------------------------

    async def decay_sweep(
        self,
        owner_id: str,
        report: MaintenanceReport | None = None,
    ) -> MaintenanceReport:
        """Decay association strength; edges falling below the floor are removed."""
        report = report or MaintenanceReport(owner_id=owner_id)
        now = self._clock()
        rate = self._config.association_decay_rate
        page_size = self._config.page_size
        offset = 0
        while True:
            page = await self._associations.for_owner(
                owner_id, limit=page_size, offset=offset
            )
            removed_here = 0
            for edge in page:
                anchor = edge.last_reinforced_at
                if edge.decayed_at is not None and edge.decayed_at > anchor:
                    anchor = edge.decayed_at
                days = _elapsed_days(anchor, now)
                if days <= 0:
                    continue
                strength = round(edge.strength - rate * days, _STRENGTH_PLACES)
                try:
                    if strength < self._config.association_floor:
                        await self._associations.delete(edge.id)
                        removed_here += 1
                        report.associations_removed += 1
                    else:
                        await self._associations.update(
                            edge.id, {"strength": strength, "decayed_at": now}
                        )
                        report.associations_decayed += 1
                except MemoryEngineError:
                    logger.exception("Failed to decay association %s", edge.id)
                    report.errors += 1
            if len(page) < page_size:
                break
            offset += page_size - removed_here
        return report

    async def cleanup_orphan_associations(
        self,
        owner_id: str,
        report: MaintenanceReport | None = None,
    ) -> MaintenanceReport:
        """Remove edges whose endpoint memory no longer exists."""
        report = report or MaintenanceReport(owner_id=owner_id)
        page_size = self._config.page_size
        offset = 0
        while True:
            page = await self._associations.for_owner(
                owner_id, limit=page_size, offset=offset
            )
            endpoint_ids = {e.from_memory_id for e in page}
            endpoint_ids.update(e.to_memory_id for e in page)
            found = await self._long_term.get_many(list(endpoint_ids))
            existing = {m.id for m in found}
            removed_here = 0
            for edge in page:
                if edge.from_memory_id in existing and edge.to_memory_id in existing:
                    continue
                try:
                    if await self._associations.delete(edge.id):
                        removed_here += 1
                        report.orphan_associations_removed += 1
                except MemoryEngineError:
                    logger.exception("Failed to remove orphan association %s", edge.id)
                    report.errors += 1
            if len(page) < page_size:
                break
            offset += page_size - removed_here
        return report

    # ------------------------------------------------------------------
    # Short-term duplicates and sessions
    # ------------------------------------------------------------------

    async def remove_duplicate_short_term(
        self,
        owner_id: str,
        report: MaintenanceReport | None = None,
    ) -> MaintenanceReport:
        """Keep the newest of each set of identical same-type entries.

        Entries are bucketed by type and rolling content hash; a bucket is
        only a candidate set and members are compared on exact content.
        """
        report = report or MaintenanceReport(owner_id=owner_id)
        buckets: dict[tuple[str, int], list[ShortTermMemory]] = defaultdict(list)
        page_size = self._config.page_size
        offset = 0
        while True:
            page = await self._short_term.list_entries(
                owner_id, limit=page_size, offset=offset
            )
            for entry in page:
                key = (entry.memory_type.value, rolling_hash(entry.content))
                buckets[key].append(entry)
            if len(page) < page_size:
                break
            offset += page_size

        for bucket in buckets.values():
            if len(bucket) < 2:
                continue
            by_content: dict[str, list[ShortTermMemory]] = defaultdict(list)
            for entry in bucket:
                by_content[entry.content].append(entry)
            for same in by_content.values():
                same.sort(key=lambda e: e.created_at, reverse=True)
                for duplicate in same[1:]:
                    try:
                        if await self._short_term.delete(duplicate.id):
                            report.duplicate_short_term_removed += 1
                    except MemoryEngineError:
                        logger.exception(
                            "Failed to remove duplicate short-term memory %s",
                            duplicate.id,
                        )
                        report.errors += 1
        return report

    async def archive_idle_sessions(
        self,
        owner_id: str,
        report: MaintenanceReport | None = None,
    ) -> MaintenanceReport:
        report = report or MaintenanceReport(owner_id=owner_id)
        cutoff = self._clock() - timedelta(days=self._config.session_retention_days)
        idle = await self._short_term.idle_sessions(
            owner_id, cutoff, limit=self._config.page_size
        )
        for session in idle:
            try:
                await self._short_term.set_session_status(
                    owner_id, session.session_id, SessionStatus.archived
                )
            except MemoryEngineError:
                logger.exception("Failed to archive session %s", session.session_id)
                report.errors += 1
                continue
            report.sessions_archived += 1
        return report

    # ------------------------------------------------------------------
    # Weak memories and usage
    # ------------------------------------------------------------------

    async def remove_weak(self, owner_id: str, *, dry_run: bool = False) -> int:
        """Delete the owner's weak long-term memories and their associations.

        With ``dry_run`` the memories are only counted.
        """
        if dry_run:
            return await self._long_term.count(owner_id, weak_only=True)
        removed = 0
        while True:
            weak = await self._long_term.weak(owner_id, limit=self._config.page_size)
            deleted_here = 0
            for memory in weak:
                if await self._long_term.delete(memory.id):
                    deleted_here += 1
            removed += deleted_here
            if deleted_here == 0:
                break
        if self._audit is not None:
            await self._audit.record(
                AuditEventType.WEAK_MEMORIES_REMOVED,
                actor="maintenance",
                owner_id=owner_id,
                removed=removed,
            )
        return removed

    async def analyze_usage(self, owner_id: str) -> dict[str, Any]:
        """Totals, per-type counts, weekly trends and housekeeping advice."""
        now = self._clock()
        recent_cutoff = now - timedelta(days=_TREND_DAYS)
        page_size = self._config.page_size

        short_by_type: Counter[str] = Counter()
        short_recent = 0
        short_total = 0
        offset = 0
        while True:
            page = await self._short_term.list_entries(
                owner_id, limit=page_size, offset=offset
            )
            for entry in page:
                short_total += 1
                short_by_type[entry.memory_type.value] += 1
                if entry.created_at > recent_cutoff:
                    short_recent += 1
            if len(page) < page_size:
                break
            offset += page_size

        long_by_type: Counter[str] = Counter()
        long_recent = 0
        long_total = 0
        low_strength = 0
        offset = 0
        while True:
            page = await self._long_term.list_memories(
                owner_id, limit=page_size, offset=offset, newest_first=False
            )
            for memory in page:
                long_total += 1
                long_by_type[memory.memory_type.value] += 1
                if memory.created_at > recent_cutoff:
                    long_recent += 1
                if memory.strength < _WEAK_ADVICE_STRENGTH:
                    low_strength += 1
            if len(page) < page_size:
                break
            offset += page_size

        sessions = await self._short_term.list_sessions(
            owner_id, include_archived=True, limit=page_size
        )
        active_sessions = sum(1 for s in sessions if s.status == SessionStatus.active)
        pending = await self._short_term.count(owner_id, pending_only=True)

        recommendations: list[str] = []
        if pending > _PENDING_ADVICE:
            recommendations.append(f"Consider consolidating {pending} pending memories")
        if active_sessions > _ACTIVE_SESSION_ADVICE:
            recommendations.append(
                f"Consider archiving some of the {active_sessions} active sessions"
            )
        total = short_total + long_total
        if total and short_total / total > _SHORT_TERM_RATIO_ADVICE:
            recommendations.append(
                "High ratio of short-term memories; consolidate more often"
            )
        if low_strength:
            recommendations.append(
                f"{low_strength} weak long-term memories could be cleaned up"
            )

        return {
            "summary": {
                "short_term_memories": short_total,
                "long_term_memories": long_total,
                "sessions": len(sessions),
                "active_sessions": active_sessions,
                "pending_consolidation": pending,
            },
            "by_type": {
                "short_term": dict(short_by_type),
                "long_term": dict(long_by_type),
            },
            "trends": {
                "recent_short_term_memories": short_recent,
                "recent_long_term_memories": long_recent,
                "avg_memories_per_day": (short_recent + long_recent) / _TREND_DAYS,
            },
            "recommendations": recommendations,
        }


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------


class MaintenanceScheduler:
    """Runs ``MaintenanceEngine.run_all`` periodically on the event loop."""

    def __init__(
        self,
        engine: MaintenanceEngine,
        *,
        interval_seconds: float | None = None,
    ) -> None:
        self._engine = engine
        self._interval = (
            MaintenanceConfig().interval_seconds
            if interval_seconds is None
            else interval_seconds
        )
        self._task: asyncio.Task | None = None
        self.cycles = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="mnemosync-maintenance")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def _loop(self) -> None:
        while True:
            try:
                await self._engine.run_all()
            except Exception:
                logger.exception("Maintenance cycle failed")
            self.cycles += 1
            await asyncio.sleep(self._interval)
