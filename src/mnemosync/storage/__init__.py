"""Record repositories: protocol, in-process and Redis implementations."""

from mnemosync.storage.base import index_value
from mnemosync.storage.base import RecordStore
from mnemosync.storage.memory import InMemoryRecordStore
from mnemosync.storage.redis_store import RedisRecordStore

__all__ = [
    "InMemoryRecordStore",
    "RecordStore",
    "RedisRecordStore",
    "index_value",
]
