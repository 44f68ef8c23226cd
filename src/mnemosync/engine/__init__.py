"""Engine domain: consolidation, maintenance and the ``MemoryEngine`` facade."""

from mnemosync.engine.consolidation import ConsolidationPipeline
from mnemosync.engine.consolidation import ConsolidationRunResult
from mnemosync.engine.facade import EngineConfig
from mnemosync.engine.facade import EngineStores
from mnemosync.engine.facade import MemoryEngine
from mnemosync.engine.maintenance import MaintenanceEngine
from mnemosync.engine.maintenance import MaintenanceReport
from mnemosync.engine.maintenance import MaintenanceScheduler

__all__ = [
    "ConsolidationPipeline",
    "ConsolidationRunResult",
    "EngineConfig",
    "EngineStores",
    "MaintenanceEngine",
    "MaintenanceReport",
    "MaintenanceScheduler",
    "MemoryEngine",
]
