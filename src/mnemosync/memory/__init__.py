"""Memory domain: short-term buffer and long-term store."""

from mnemosync.memory.long_term import LongTermStore
from mnemosync.memory.long_term import SearchHit
from mnemosync.memory.short_term import ShortTermStore

__all__ = ["LongTermStore", "SearchHit", "ShortTermStore"]
