"""Sharing layer: agent profiles, projection, sharing workflows, pools, sync."""

from mnemosync.sharing.pools import PoolMemory
from mnemosync.sharing.pools import PoolService
from mnemosync.sharing.profiles import AgentProfile
from mnemosync.sharing.profiles import default_policy_table
from mnemosync.sharing.profiles import load_policy_table
from mnemosync.sharing.profiles import SharingPolicyTable
from mnemosync.sharing.projection import project
from mnemosync.sharing.service import AccessRequestResult
from mnemosync.sharing.service import BroadcastResult
from mnemosync.sharing.service import SharedMemory
from mnemosync.sharing.service import ShareResult
from mnemosync.sharing.service import SharingService
from mnemosync.sharing.sync import KnowledgeSync

__all__ = [
    "AccessRequestResult",
    "AgentProfile",
    "BroadcastResult",
    "KnowledgeSync",
    "PoolMemory",
    "PoolService",
    "ShareResult",
    "SharedMemory",
    "SharingPolicyTable",
    "SharingService",
    "default_policy_table",
    "load_policy_table",
    "project",
]
