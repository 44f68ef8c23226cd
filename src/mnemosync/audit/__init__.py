"""Audit subsystem: async JSONL log of sharing and lifecycle events."""

from mnemosync.audit.schemas import AuditEvent
from mnemosync.audit.schemas import AuditEventType
from mnemosync.audit.store import AuditLogger

__all__ = [
    "AuditEvent",
    "AuditEventType",
    "AuditLogger",
]
