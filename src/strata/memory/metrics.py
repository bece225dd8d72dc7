"""
Engine metrics.

Counters owned by one MemoryEngine instance and persisted with its snapshot.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any


@dataclass
class EngineMetrics:
    """Request counters and timings for one engine."""

    ingests: int = 0
    ingest_failures: int = 0
    partial_ingests: int = 0
    retrievals: int = 0
    retrieval_failures: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
    consolidations: int = 0
    consolidation_failures: int = 0
    snapshot_failures: int = 0
    last_consolidation: datetime | None = None
    total_response_ms: float = 0.0
    timed_requests: int = 0

    def record_response(self, elapsed_ms: float) -> None:
        """Add one request duration to the running average.

        Args:
            elapsed_ms: Wall time of the request in milliseconds
        """
        self.total_response_ms += elapsed_ms
        self.timed_requests += 1

    @property
    def average_response_ms(self) -> float:
        return self.total_response_ms / self.timed_requests if self.timed_requests else 0.0

    @property
    def cache_hit_rate(self) -> float:
        lookups = self.cache_hits + self.cache_misses
        return self.cache_hits / lookups if lookups else 0.0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for status output and snapshots."""
        return {
            "ingests": self.ingests,
            "ingest_failures": self.ingest_failures,
            "partial_ingests": self.partial_ingests,
            "retrievals": self.retrievals,
            "retrieval_failures": self.retrieval_failures,
            "cache_hits": self.cache_hits,
            "cache_misses": self.cache_misses,
            "cache_hit_rate": self.cache_hit_rate,
            "consolidations": self.consolidations,
            "consolidation_failures": self.consolidation_failures,
            "snapshot_failures": self.snapshot_failures,
            "last_consolidation": (
                self.last_consolidation.isoformat() if self.last_consolidation else None
            ),
            "total_response_ms": self.total_response_ms,
            "timed_requests": self.timed_requests,
            "average_response_ms": self.average_response_ms,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EngineMetrics":
        """Restore counters from a snapshot. Derived fields are ignored."""
        last = data.get("last_consolidation")
        return cls(
            ingests=data.get("ingests", 0),
            ingest_failures=data.get("ingest_failures", 0),
            partial_ingests=data.get("partial_ingests", 0),
            retrievals=data.get("retrievals", 0),
            retrieval_failures=data.get("retrieval_failures", 0),
            cache_hits=data.get("cache_hits", 0),
            cache_misses=data.get("cache_misses", 0),
            consolidations=data.get("consolidations", 0),
            consolidation_failures=data.get("consolidation_failures", 0),
            snapshot_failures=data.get("snapshot_failures", 0),
            last_consolidation=datetime.fromisoformat(last) if last else None,
            total_response_ms=data.get("total_response_ms", 0.0),
            timed_requests=data.get("timed_requests", 0),
        )
