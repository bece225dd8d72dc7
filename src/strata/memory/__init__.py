"""
Memory module - layered memory store.

Layers:
- context: Recent observations (FIFO working set)
- semantic: Concept graph with co-occurrence edges and clusters
- temporal: Event timelines and detected patterns

Engine: fan-out ingest, fused retrieval, consolidation, snapshots
"""

from strata.memory.engine import (
    IngestResult,
    MemoryEngine,
    RankedResult,
    RetrievalResult,
    RetrieveOptions,
)
from strata.memory.snapshot import InMemorySnapshotStore, SQLiteSnapshotStore, SnapshotStore

__all__ = [
    "IngestResult",
    "InMemorySnapshotStore",
    "MemoryEngine",
    "RankedResult",
    "RetrievalResult",
    "RetrieveOptions",
    "SQLiteSnapshotStore",
    "SnapshotStore",
]
