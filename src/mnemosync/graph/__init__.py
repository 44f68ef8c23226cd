"""Association graph: edge repositories, Neo4j schema and graph operations.

Exports are loaded lazily so importing the package does not pull in the
Neo4j driver or the memory stores until they are used.
"""

from __future__ import annotations

from importlib import import_module

__all__ = [
    "AssociationGraph",
    "AssociationRepository",
    "ClusterRunResult",
    "Neo4jAssociationRepository",
    "RecordAssociationRepository",
    "RelatedMemory",
    "association_id",
    "init_schema",
]


_EXPORT_TO_MODULE = {
    "AssociationRepository": "mnemosync.graph.base",
    "association_id": "mnemosync.graph.base",
    "RecordAssociationRepository": "mnemosync.graph.records",
    "init_schema": "mnemosync.graph.schema",
    "AssociationGraph": "mnemosync.graph.service",
    "ClusterRunResult": "mnemosync.graph.service",
    "RelatedMemory": "mnemosync.graph.service",
    "Neo4jAssociationRepository": "mnemosync.graph.store",
}


def __getattr__(name: str):
    module_name = _EXPORT_TO_MODULE.get(name)
    if module_name is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    module = import_module(module_name)
    return getattr(module, name)
