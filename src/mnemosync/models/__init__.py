"""Record models and enumerations for the memory engine."""

from mnemosync.models.base import new_id
from mnemosync.models.base import Record
from mnemosync.models.base import utc_now
from mnemosync.models.enums import AccessLevel
from mnemosync.models.enums import AssociationType
from mnemosync.models.enums import BroadcastPolicy
from mnemosync.models.enums import Importance
from mnemosync.models.enums import JobStatus
from mnemosync.models.enums import MemorySource
from mnemosync.models.enums import MemoryType
from mnemosync.models.enums import PoolEntryStatus
from mnemosync.models.enums import PoolPolicy
from mnemosync.models.enums import RequestStatus
from mnemosync.models.enums import SessionStatus
from mnemosync.models.enums import SyncStatus
from mnemosync.models.enums import SyncType
from mnemosync.models.jobs import ConsolidationJob
from mnemosync.models.memory import ConversationSession
from mnemosync.models.memory import LongTermContext
from mnemosync.models.memory import LongTermMemory
from mnemosync.models.memory import MemoryAssociation
from mnemosync.models.memory import MemoryContext
from mnemosync.models.memory import ShortTermMemory
from mnemosync.models.sharing import AccessRequest
from mnemosync.models.sharing import MemoryPool
from mnemosync.models.sharing import MemoryPoolEntry
from mnemosync.models.sharing import PoolStats
from mnemosync.models.sharing import RequestDecision
from mnemosync.models.sharing import SharingRecord
from mnemosync.models.sharing import SyncCriteria
from mnemosync.models.sharing import SyncSession
from mnemosync.models.sharing import SyncStats

__all__ = [
    "AccessLevel",
    "AccessRequest",
    "AssociationType",
    "BroadcastPolicy",
    "ConsolidationJob",
    "ConversationSession",
    "Importance",
    "JobStatus",
    "LongTermContext",
    "LongTermMemory",
    "MemoryAssociation",
    "MemoryContext",
    "MemoryPool",
    "MemoryPoolEntry",
    "MemorySource",
    "MemoryType",
    "PoolEntryStatus",
    "PoolPolicy",
    "PoolStats",
    "Record",
    "RequestDecision",
    "RequestStatus",
    "SessionStatus",
    "SharingRecord",
    "ShortTermMemory",
    "SyncCriteria",
    "SyncSession",
    "SyncStats",
    "SyncStatus",
    "SyncType",
    "new_id",
    "utc_now",
]
