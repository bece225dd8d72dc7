"""Semantic layer - concept graph with co-occurrence edges and clusters.

Edges are undirected. The weight table stores each edge once under
``edge_key(a, b)``, the lexicographically sorted pair, and both endpoints
list each other in ``connections``.
"""

import asyncio
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from itertools import combinations
from typing import Any
from uuid import uuid4

from strata.core.config import ConceptConfig
from strata.core.logging import get_logger
from strata.core.types import Layer
from strata.core.typing import Clock, JSONDict
from strata.memory.base import LayerConsolidation, MemoryLayer, chunked

logger = get_logger("memory.concepts")

RELEVANCE_SCALE = 15.0
SNIPPET_CAPACITY = 10
STALE_SNIPPETS_KEPT = 3
STALE_SNIPPET_MAX_FREQUENCY = 5

EdgeKey = tuple[str, str]


def edge_key(a: str, b: str) -> EdgeKey:
    return (a, b) if a <= b else (b, a)


@dataclass
class Concept:
    """A tracked concept node."""

    name: str
    first_seen: datetime
    last_seen: datetime
    frequency: int = 0
    connections: set[str] = field(default_factory=set)
    snippets: deque[str] = field(default_factory=lambda: deque(maxlen=SNIPPET_CAPACITY))

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "frequency": self.frequency,
            "first_seen": self.first_seen.isoformat(),
            "last_seen": self.last_seen.isoformat(),
            "connections": sorted(self.connections),
            "snippets": list(self.snippets),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Concept":
        last_seen = datetime.fromisoformat(data["last_seen"])
        return cls(
            name=data["name"],
            frequency=data.get("frequency", 0),
            first_seen=datetime.fromisoformat(data.get("first_seen") or data["last_seen"]),
            last_seen=last_seen,
            connections=set(data.get("connections", [])),
            snippets=deque(data.get("snippets", []), maxlen=SNIPPET_CAPACITY),
        )


@dataclass
class Cluster:
    id: str
    concepts: list[str]
    strength: float
    created_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "concepts": list(self.concepts),
            "strength": self.strength,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Cluster":
        return cls(
            id=data["id"],
            concepts=list(data["concepts"]),
            strength=data.get("strength", 0.0),
            created_at=datetime.fromisoformat(data["created_at"]),
        )


@dataclass
class ScoredConcept:
    concept: Concept
    similarity: float

    @property
    def relevance(self) -> float:
        return self.similarity * RELEVANCE_SCALE


class ConceptGraph(MemoryLayer):
    """Frequency-tracked concepts, pairwise co-occurrence weights, coarse clusters."""

    layer = Layer.SEMANTIC

    def __init__(self, config: ConceptConfig | None = None, clock: Clock | None = None):
        super().__init__(clock)
        self.config = config or ConceptConfig()
        self._concepts: dict[str, Concept] = {}
        self._edges: dict[EdgeKey, int] = {}
        self._clusters: list[Cluster] = []

    @property
    def capacity(self) -> int:
        return self.config.max_concepts

    def size(self) -> int:
        return len(self._concepts)

    def get(self, name: str) -> Concept | None:
        return self._concepts.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._concepts

    def weight(self, a: str, b: str) -> int:
        """Co-occurrence count of a and b, in either order."""
        return self._edges.get(edge_key(a, b), 0)

    def neighbors(self, name: str) -> set[str]:
        concept = self._concepts.get(name)
        return set(concept.connections) if concept else set()

    @property
    def edge_count(self) -> int:
        return len(self._edges)

    @property
    def clusters(self) -> list[Cluster]:
        return list(self._clusters)

    # Writes

    async def ingest(self, concepts: list[str], source_text: str = "") -> list[str]:
        """Register or update concept nodes; returns the de-duplicated batch."""
        async with self._lock:
            return self._ingest(concepts, source_text)

    async def update_relationships(self, concepts: list[str]) -> None:
        """Increment the edge weight of every pair in one co-occurrence batch."""
        async with self._lock:
            self._update_relationships(concepts)

    async def maybe_cluster(self) -> Cluster | None:
        async with self._lock:
            return self._maybe_cluster()

    async def process(self, concepts: list[str], source_text: str = "") -> list[str]:
        """Ingest, link and cluster one observation's concepts as one update."""
        async with self._lock:
            processed = self._ingest(concepts, source_text)
            self._update_relationships(processed)
            self._maybe_cluster()
            return processed

    def _ingest(self, concepts: list[str], source_text: str) -> list[str]:
        now = self.now()
        batch = list(dict.fromkeys(c for c in concepts if c))

        for name in batch:
            concept = self._concepts.get(name)
            if concept is None:
                concept = Concept(name=name, first_seen=now, last_seen=now)
                self._concepts[name] = concept
            concept.frequency += 1
            concept.last_seen = now
            if source_text:
                concept.snippets.append(source_text)

        if len(self._concepts) > self.config.max_concepts:
            self._evict_lowest_frequency(protected=set(batch))

        return batch

    def _update_relationships(self, concepts: list[str]) -> None:
        present = [c for c in dict.fromkeys(concepts) if c in self._concepts]
        for a, b in combinations(present, 2):
            key = edge_key(a, b)
            self._edges[key] = self._edges.get(key, 0) + 1
            self._concepts[a].connections.add(b)
            self._concepts[b].connections.add(a)

    def _maybe_cluster(self) -> Cluster | None:
        if len(self._concepts) <= self.config.cluster_size:
            return None

        ranked = sorted(
            self._concepts.values(),
            key=lambda c: (len(c.connections), c.frequency),
            reverse=True,
        )
        members = [c.name for c in ranked[: self.config.cluster_size]]
        strength = self._cluster_strength(members)

        latest = self._clusters[-1] if self._clusters else None
        if latest and set(latest.concepts) == set(members):
            latest.strength = strength
            return latest

        cluster = Cluster(id=uuid4().hex[:16], concepts=members, strength=strength, created_at=self.now())
        self._clusters.append(cluster)
        if len(self._clusters) > self.config.max_clusters:
            self._clusters.pop(0)
        logger.debug(f"Built cluster {cluster.id} ({len(members)} concepts, strength {strength:.2f})")
        return cluster

    def _cluster_strength(self, members: list[str]) -> float:
        pairs = list(combinations(members, 2))
        if not pairs:
            return 0.0
        return sum(self.weight(a, b) for a, b in pairs) / len(pairs)

    def _remove_concept(self, name: str) -> int:
        """Delete a node and its edges. Returns edges removed."""
        concept = self._concepts.pop(name, None)
        if concept is None:
            return 0
        removed = 0
        for other in concept.connections:
            if self._edges.pop(edge_key(name, other), None) is not None:
                removed += 1
            neighbor = self._concepts.get(other)
            if neighbor:
                neighbor.connections.discard(name)
        return removed

    def _evict_lowest_frequency(self, protected: set[str]) -> None:
        candidates = sorted(
            (c for c in self._concepts.values() if c.name not in protected),
            key=lambda c: (c.frequency, c.last_seen),
        )
        count = max(1, len(self._concepts) // 10)
        victims = [c.name for c in candidates[:count]]
        for name in victims:
            self._remove_concept(name)
        self._prune_clusters(set(victims))
        logger.info(f"Concept capacity reached, evicted {len(victims)} low-frequency concepts")

    def _prune_clusters(self, removed: set[str]) -> None:
        if not removed:
            return
        for cluster in self._clusters:
            kept = [c for c in cluster.concepts if c not in removed]
            if len(kept) != len(cluster.concepts):
                cluster.concepts = kept
                cluster.strength = self._cluster_strength(kept)
        self._clusters = [c for c in self._clusters if c.concepts]

    # Reads

    def search(
        self,
        query_concepts: list[str],
        threshold: float | None = None,
        limit: int | None = None,
    ) -> list[ScoredConcept]:
        """Score every concept against the query.

        +1.0 for an exact match, +0.5 per query concept it is connected to,
        plus 0.2 x the strongest cluster it shares with the query.
        """
        threshold = self.config.similarity_threshold if threshold is None else threshold
        query = set(query_concepts)
        if not query:
            return []

        query_clusters = [c for c in self._clusters if query.intersection(c.concepts)]

        results = []
        for name, concept in self._concepts.items():
            score = 0.0
            if name in query:
                score += 1.0
            score += 0.5 * len(query & concept.connections)
            shared = [c.strength for c in query_clusters if name in c.concepts]
            if shared:
                score += max(shared) * 0.2
            if score >= threshold:
                results.append(ScoredConcept(concept, score))

        results.sort(key=lambda r: (r.similarity, r.concept.frequency), reverse=True)
        return results[:limit] if limit is not None else results

    # Maintenance

    def _is_stale(self, concept: Concept, cutoff: datetime) -> bool:
        return concept.frequency < self.config.min_frequency and concept.last_seen < cutoff

    async def consolidate(self) -> LayerConsolidation:
        """Drop rare concepts not seen for a while, cascading their edges."""
        before = self.size()
        edges_before = self.edge_count
        now = self.now()
        cutoff = now - self.config.stale_after
        stale = [c.name for c in list(self._concepts.values()) if self._is_stale(c, cutoff)]

        removed_nodes: set[str] = set()
        for batch in chunked(stale, self.config.consolidation_batch_size):
            async with self._lock:
                for name in batch:
                    concept = self._concepts.get(name)
                    if concept and self._is_stale(concept, cutoff):
                        self._remove_concept(name)
                        removed_nodes.add(name)
            await asyncio.sleep(0)

        async with self._lock:
            self._prune_clusters(removed_nodes)
            trimmed = self._compress_stale_snippets(cutoff)

        if removed_nodes:
            logger.info(f"Concept consolidation removed {len(removed_nodes)} concepts")
        return LayerConsolidation(
            layer=self.layer,
            items_before=before,
            removed=len(removed_nodes),
            retained=self.size(),
            details={
                "edges_removed": edges_before - self.edge_count,
                "edges_retained": self.edge_count,
                "snippets_trimmed": trimmed,
            },
        )

    def _compress_stale_snippets(self, cutoff: datetime) -> int:
        trimmed = 0
        for concept in self._concepts.values():
            if (
                concept.last_seen < cutoff
                and concept.frequency < STALE_SNIPPET_MAX_FREQUENCY
                and len(concept.snippets) > STALE_SNIPPETS_KEPT
            ):
                kept = list(concept.snippets)[-STALE_SNIPPETS_KEPT:]
                concept.snippets = deque(kept, maxlen=SNIPPET_CAPACITY)
                trimmed += 1
        return trimmed

    def status(self) -> dict[str, Any]:
        size = self.size()
        return {
            "size": size,
            "max_concepts": self.config.max_concepts,
            "utilization": self.utilization(),
            "relationship_count": self.edge_count,
            "cluster_count": len(self._clusters),
            "average_frequency": (
                sum(c.frequency for c in self._concepts.values()) / size if size else 0.0
            ),
        }

    def export_state(self) -> JSONDict:
        return {
            "concepts": [c.to_dict() for c in self._concepts.values()],
            "relationships": [[a, b, w] for (a, b), w in self._edges.items()],
            "clusters": [c.to_dict() for c in self._clusters],
        }

    async def import_state(self, state: JSONDict) -> None:
        concepts = {c["name"]: Concept.from_dict(c) for c in state.get("concepts", [])}
        for concept in concepts.values():
            concept.connections &= concepts.keys()
        edges: dict[EdgeKey, int] = {}
        for a, b, weight in state.get("relationships", []):
            if a in concepts and b in concepts:
                key = edge_key(a, b)
                edges[key] = edges.get(key, 0) + weight
                concepts[a].connections.add(b)
                concepts[b].connections.add(a)
        clusters = [Cluster.from_dict(c) for c in state.get("clusters", [])]

        async with self._lock:
            self._concepts = concepts
            self._edges = edges
            self._clusters = clusters
        logger.debug(f"Imported {len(concepts)} concepts, {len(edges)} relationships")
