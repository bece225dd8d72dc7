"""Context layer - FIFO-bounded working set of recent observations."""

import asyncio
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import uuid4

from strata.core.config import ContextConfig
from strata.core.logging import get_logger
from strata.core.types import Layer, SemanticFeatures
from strata.core.typing import Clock, JSONDict, Metadata
from strata.memory.base import LayerConsolidation, MemoryLayer, chunked, jaccard

logger = get_logger("memory.context")

RELEVANCE_SCALE = 10.0


@dataclass
class Observation:
    """Single working-set record."""

    id: str
    text: str
    features: SemanticFeatures
    created_at: datetime
    metadata: Metadata = field(default_factory=dict)
    access_count: int = 0
    last_accessed: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "features": self.features.to_dict(),
            "metadata": self.metadata,
            "created_at": self.created_at.isoformat(),
            "access_count": self.access_count,
            "last_accessed": self.last_accessed.isoformat() if self.last_accessed else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Observation":
        return cls(
            id=data["id"],
            text=data.get("text", ""),
            features=SemanticFeatures.from_dict(data["features"]),
            metadata=data.get("metadata") or {},
            created_at=datetime.fromisoformat(data["created_at"]),
            access_count=data.get("access_count", 0),
            last_accessed=(
                datetime.fromisoformat(data["last_accessed"]) if data.get("last_accessed") else None
            ),
        )


@dataclass
class ScoredObservation:
    observation: Observation
    similarity: float

    @property
    def relevance(self) -> float:
        return self.similarity * RELEVANCE_SCALE


class ContextIndex(MemoryLayer):
    """Recent observations scored by keyword and concept overlap."""

    layer = Layer.CONTEXT

    def __init__(self, config: ContextConfig | None = None, clock: Clock | None = None):
        super().__init__(clock)
        self.config = config or ContextConfig()
        self._observations: deque[Observation] = deque()

    @property
    def capacity(self) -> int:
        return self.config.max_size

    def size(self) -> int:
        return len(self._observations)

    def get(self, observation_id: str) -> Observation | None:
        for obs in self._observations:
            if obs.id == observation_id:
                return obs
        return None

    def __contains__(self, observation_id: str) -> bool:
        return self.get(observation_id) is not None

    async def add(self, features: SemanticFeatures, metadata: Metadata | None = None) -> Observation:
        """Append an observation, evicting the single oldest one past capacity."""
        async with self._lock:
            return self._add(features, metadata)

    def _add(self, features: SemanticFeatures, metadata: Metadata | None) -> Observation:
        now = self.now()
        observation = Observation(
            id=str(uuid4()),
            text=features.text,
            features=features,
            metadata=dict(metadata or {}),
            created_at=now,
            last_accessed=now,
        )
        self._observations.append(observation)

        if len(self._observations) > self.config.max_size:
            evicted = self._observations.popleft()
            logger.debug(f"Evicted observation {evicted.id} (capacity {self.config.max_size})")

        return observation

    @staticmethod
    def similarity(query: SemanticFeatures, observation: Observation) -> float:
        keyword_overlap = jaccard(query.keyword_set, observation.features.keyword_set)
        concept_overlap = jaccard(query.concept_set, observation.features.concept_set)
        return (keyword_overlap + concept_overlap) / 2

    def search(
        self,
        query: SemanticFeatures,
        threshold: float | None = None,
        limit: int | None = None,
    ) -> list[ScoredObservation]:
        """Observations at or above threshold, best first, newest first on ties.

        Every returned observation counts as accessed.
        """
        threshold = self.config.similarity_threshold if threshold is None else threshold
        results = []
        for obs in self._observations:
            score = self.similarity(query, obs)
            if score >= threshold:
                results.append(ScoredObservation(obs, score))

        results.sort(key=lambda r: (r.similarity, r.observation.created_at), reverse=True)
        if limit is not None:
            results = results[:limit]

        now = self.now()
        for result in results:
            result.observation.access_count += 1
            result.observation.last_accessed = now

        return results

    def _is_stale(self, obs: Observation, cutoff: datetime) -> bool:
        return obs.access_count == 0 and obs.created_at < cutoff

    async def consolidate(self) -> LayerConsolidation:
        """Drop never-accessed observations older than the retention window."""
        before = self.size()
        cutoff = self.now() - self.config.retention
        stale = [obs.id for obs in list(self._observations) if self._is_stale(obs, cutoff)]

        removed = 0
        for batch in chunked(stale, self.config.consolidation_batch_size):
            ids = set(batch)
            async with self._lock:
                # Re-check: an observation may have been read since the scan
                kept = deque(
                    obs for obs in self._observations
                    if obs.id not in ids or not self._is_stale(obs, cutoff)
                )
                removed += len(self._observations) - len(kept)
                self._observations = kept
            await asyncio.sleep(0)

        if removed:
            logger.info(f"Context consolidation removed {removed} stale observations")
        return LayerConsolidation(
            layer=self.layer, items_before=before, removed=removed, retained=self.size()
        )

    def status(self) -> dict[str, Any]:
        created = [obs.created_at for obs in self._observations]
        return {
            "size": self.size(),
            "max_size": self.config.max_size,
            "utilization": self.utilization(),
            "oldest": min(created).isoformat() if created else None,
            "newest": max(created).isoformat() if created else None,
        }

    def export_state(self) -> JSONDict:
        return {"observations": [obs.to_dict() for obs in self._observations]}

    async def import_state(self, state: JSONDict) -> None:
        observations = [Observation.from_dict(o) for o in state.get("observations", [])]
        async with self._lock:
            # Keep the newest entries if the snapshot exceeds the current limit
            self._observations = deque(observations[-self.config.max_size :])
        logger.debug(f"Imported {self.size()} observations")
