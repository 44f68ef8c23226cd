"""Access-level projection of long-term memories."""

from __future__ import annotations

from typing import Any

from mnemosync.models.enums import AccessLevel
from mnemosync.models.memory import LongTermMemory

_SUMMARY_FALLBACK_CHARS = 100


def project(memory: LongTermMemory, level: AccessLevel) -> dict[str, Any]:
    """Return the JSON-ready view of *memory* visible at *level*."""
    if level == AccessLevel.full:
        return memory.model_dump(mode="json")
    if level == AccessLevel.read:
        return memory.model_dump(mode="json", exclude={"embedding"})
    if level == AccessLevel.summary:
        return {
            "id": memory.id,
            "memory_type": memory.memory_type.value,
            "summary": memory.summary or memory.content[:_SUMMARY_FALLBACK_CHARS],
            "keywords": list(memory.keywords),
            "importance": memory.importance.value,
            "created_at": memory.created_at.isoformat(),
        }
    return {
        "id": memory.id,
        "memory_type": memory.memory_type.value,
        "importance": memory.importance.value,
        "strength": memory.strength,
        "created_at": memory.created_at.isoformat(),
    }
