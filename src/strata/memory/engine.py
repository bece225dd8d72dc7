"""
Memory engine.

Fans observations out to the three layers, fuses their search results,
caches responses and runs consolidation with snapshot persistence.
"""

import asyncio
import hashlib
import json
import time
from collections import Counter
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, TypeVar

from strata import __version__
from strata.core.config import EngineConfig
from strata.core.errors import (
    ConsolidationError,
    FeatureExtractionError,
    IngestionError,
    NotInitializedError,
    OperationTimeoutError,
    SnapshotIOError,
)
from strata.core.logging import get_logger
from strata.core.types import Layer, SemanticFeatures
from strata.core.typing import Clock, JSONDict, Metadata
from strata.features.base import FeatureExtractor
from strata.memory.base import LayerConsolidation, MemoryLayer
from strata.memory.cache import ResponseCache
from strata.memory.concepts import ConceptGraph
from strata.memory.context import ContextIndex
from strata.memory.metrics import EngineMetrics
from strata.memory.snapshot import SnapshotStore
from strata.memory.temporal import TemporalIndex, TimeRange

logger = get_logger("memory.engine")

T = TypeVar("T")

LAYER_WEIGHTS = {
    Layer.CONTEXT: 1.0,
    Layer.SEMANTIC: 0.8,
    Layer.TEMPORAL: 0.6,
}
CONFIDENCE_SCALE = 20.0
CACHE_BUCKET = timedelta(minutes=5)
SNAPSHOT_VERSION = 1


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000


def fingerprint(features: SemanticFeatures, timestamp: datetime) -> str:
    """Content hash of an observation, stable within one minute."""
    payload = {
        "text": " ".join(features.text.lower().split()),
        "keywords": sorted(features.keyword_set),
        "concepts": sorted(features.concept_set),
        "timestamp": timestamp.replace(second=0, microsecond=0).isoformat(),
    }
    return hashlib.sha256(json.dumps(payload, sort_keys=True).encode()).hexdigest()


@dataclass
class RetrieveOptions:
    """Per-call retrieval knobs. None means the layer default."""

    limit: int | None = None
    layers: tuple[Layer, ...] = (Layer.CONTEXT, Layer.SEMANTIC, Layer.TEMPORAL)
    context_threshold: float | None = None
    semantic_threshold: float | None = None
    time_range: TimeRange | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "limit": self.limit,
            "layers": [layer.value for layer in self.layers],
            "context_threshold": self.context_threshold,
            "semantic_threshold": self.semantic_threshold,
            "time_range": (
                [self.time_range[0].isoformat(), self.time_range[1].isoformat()]
                if self.time_range
                else None
            ),
        }


@dataclass
class RankedResult:
    """One fused retrieval hit."""

    layer: Layer
    id: str
    content: str
    relevance: float  # layer-scaled
    score: float  # relevance x layer weight
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "layer": self.layer.value,
            "id": self.id,
            "content": self.content,
            "relevance": self.relevance,
            "score": self.score,
            "details": self.details,
        }


@dataclass
class IngestResult:
    fingerprint: str
    layers_updated: list[Layer]
    failed_layers: list[Layer]
    processing_ms: float
    consolidation_scheduled: bool = False

    @property
    def partial(self) -> bool:
        return bool(self.failed_layers)

    def to_dict(self) -> dict[str, Any]:
        return {
            "fingerprint": self.fingerprint,
            "layers_updated": [layer.value for layer in self.layers_updated],
            "failed_layers": [layer.value for layer in self.failed_layers],
            "processing_ms": self.processing_ms,
            "consolidation_scheduled": self.consolidation_scheduled,
        }


@dataclass
class RetrievalResult:
    query: str
    results: list[RankedResult]
    confidence: dict[str, float]
    layer_contributions: dict[str, int]
    degraded_layers: list[Layer] = field(default_factory=list)
    cached: bool = False
    retrieval_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "query": self.query,
            "results": [r.to_dict() for r in self.results],
            "confidence": self.confidence,
            "layer_contributions": self.layer_contributions,
            "degraded_layers": [layer.value for layer in self.degraded_layers],
            "cached": self.cached,
            "retrieval_ms": self.retrieval_ms,
        }


@dataclass
class ConsolidationReport:
    """Per-layer consolidation outcome plus totals."""

    started_at: datetime
    duration_ms: float
    layers: dict[Layer, LayerConsolidation]
    failures: dict[Layer, str]
    persisted: bool

    @property
    def items_before(self) -> int:
        return sum(r.items_before for r in self.layers.values())

    @property
    def removed(self) -> int:
        return sum(r.removed for r in self.layers.values())

    @property
    def compression_ratio(self) -> float:
        return self.removed / self.items_before if self.items_before else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "duration_ms": self.duration_ms,
            "layers": {layer.value: r.to_dict() for layer, r in self.layers.items()},
            "failures": {layer.value: error for layer, error in self.failures.items()},
            "items_before": self.items_before,
            "removed": self.removed,
            "compression_ratio": self.compression_ratio,
            "persisted": self.persisted,
        }


def confidence_summary(results: list[RankedResult]) -> dict[str, float]:
    """Average and best fused score on a 0-1 scale, and how close they are."""
    if not results:
        return {"average": 0.0, "maximum": 0.0, "consistency": 0.0}
    scores = [r.score for r in results]
    average = sum(scores) / len(scores)
    maximum = max(scores)
    return {
        "average": average / CONFIDENCE_SCALE,
        "maximum": maximum / CONFIDENCE_SCALE,
        "consistency": average / maximum if maximum else 0.0,
    }


class MemoryEngine:
    """Three-layer memory with fused retrieval.

    Typical lifecycle::

        engine = MemoryEngine(HeuristicExtractor(), config, snapshots)
        await engine.start()
        await engine.ingest("Deployed the new model", {"timeline": "ops"})
        result = await engine.retrieve("model deployment")
        await engine.stop()
    """

    def __init__(
        self,
        extractor: FeatureExtractor,
        config: EngineConfig | None = None,
        snapshots: SnapshotStore | None = None,
        snapshot_name: str = "main",
        clock: Clock | None = None,
    ):
        self.extractor = extractor
        self.config = config or EngineConfig()
        self.snapshots = snapshots
        self.snapshot_name = snapshot_name
        self._clock: Clock = clock or datetime.now

        self.context: ContextIndex
        self.concepts: ConceptGraph
        self.temporal: TemporalIndex
        self._reset_layers()

        self.cache: ResponseCache | None = (
            ResponseCache(self.config.cache_size, self.config.cache_ttl, clock=self._clock)
            if self.config.cache_enabled
            else None
        )
        self.metrics = EngineMetrics()

        self._semaphore = asyncio.Semaphore(self.config.max_concurrent_requests)
        self._consolidation_lock = asyncio.Lock()
        self._consolidation_task: asyncio.Task | None = None
        # Bumped on every write that invalidates cached responses
        self._generation = 0
        self._initialized = False
        self._started_at: datetime | None = None

    def _reset_layers(self) -> None:
        self.context = ContextIndex(self.config.context, clock=self._clock)
        self.concepts = ConceptGraph(self.config.concepts, clock=self._clock)
        self.temporal = TemporalIndex(self.config.temporal, clock=self._clock)

    @property
    def layers(self) -> dict[Layer, MemoryLayer]:
        return {
            Layer.CONTEXT: self.context,
            Layer.SEMANTIC: self.concepts,
            Layer.TEMPORAL: self.temporal,
        }

    @property
    def initialized(self) -> bool:
        return self._initialized

    def now(self) -> datetime:
        return self._clock()

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            raise NotInitializedError("Memory engine not started. Call start() first.")

    # Lifecycle

    async def start(self) -> None:
        """Restore the last snapshot, if any, and accept requests."""
        if self._initialized:
            return

        if self.snapshots is not None:
            try:
                state = await self.snapshots.load(self.snapshot_name)
            except SnapshotIOError as e:
                self.metrics.snapshot_failures += 1
                logger.error(f"Snapshot load failed, starting empty: {e}")
                state = None

            if state:
                try:
                    await self.import_state(state)
                except (KeyError, TypeError, ValueError) as e:
                    logger.error(f"Snapshot '{self.snapshot_name}' unreadable, starting empty: {e}")
                    self._reset_layers()
                    self.metrics = EngineMetrics()

        self._started_at = self.now()
        self._initialized = True
        logger.info(
            f"Memory engine started (context={self.context.size()}, "
            f"concepts={self.concepts.size()}, events={self.temporal.size()})"
        )

    async def stop(self) -> None:
        """Wait for background consolidation, then persist."""
        if not self._initialized:
            return

        if self._consolidation_task and not self._consolidation_task.done():
            await self._consolidation_task
        self._consolidation_task = None

        await self.persist()
        self._initialized = False
        logger.info("Memory engine stopped")

    async def _with_deadline(self, operation: Awaitable[T], timeout: float | None, name: str) -> T:
        try:
            return await asyncio.wait_for(operation, timeout)
        except asyncio.TimeoutError as e:
            logger.warning(f"{name} timed out after {timeout}s")
            raise OperationTimeoutError(f"{name} exceeded {timeout}s deadline") from e

    async def _extract(self, text: str) -> SemanticFeatures:
        try:
            return await self.extractor.extract(text)
        except Exception as e:
            raise FeatureExtractionError(f"Feature extraction failed: {e}") from e

    # Ingestion

    async def ingest(
        self,
        text: str,
        metadata: Metadata | None = None,
        timeout: float | None = None,
    ) -> IngestResult:
        """Store an observation in every layer.

        Args:
            text: Observation text
            metadata: Free-form metadata; ``timeline`` selects the event timeline
            timeout: Deadline in seconds

        Returns:
            IngestResult with the fingerprint and per-layer outcome

        Raises:
            ValueError: Empty text
            FeatureExtractionError: Extractor failed, nothing was written
            IngestionError: Every layer failed
            OperationTimeoutError: Deadline expired; finished layers stay written
        """
        self._ensure_initialized()
        if not text or not text.strip():
            raise ValueError("Cannot ingest empty text")
        return await self._with_deadline(self._ingest(text, dict(metadata or {})), timeout, "ingest")

    async def _ingest(self, text: str, metadata: Metadata) -> IngestResult:
        async with self._semaphore:
            started = time.perf_counter()
            try:
                features = await self._extract(text)
            except FeatureExtractionError:
                self.metrics.ingest_failures += 1
                raise

            timestamp = self.now()
            writes: list[tuple[Layer, Callable[[], Awaitable[Any]]]] = [
                (Layer.CONTEXT, lambda: self.context.add(features, metadata)),
                (Layer.SEMANTIC, lambda: self.concepts.process(features.concepts, text)),
                (Layer.TEMPORAL, lambda: self.temporal.record(features, metadata, timestamp)),
            ]

            updated: list[Layer] = []
            failed: list[Layer] = []
            for layer, write in writes:
                try:
                    await write()
                    updated.append(layer)
                except Exception as e:
                    failed.append(layer)
                    logger.error(f"Ingest into {layer.value} layer failed: {e}")

            if not updated:
                self.metrics.ingest_failures += 1
                raise IngestionError(
                    "Observation rejected by every layer",
                    failed_layers=[layer.value for layer in failed],
                )

            self._invalidate_cache()

            self.metrics.ingests += 1
            if failed:
                self.metrics.partial_ingests += 1
            processing_ms = _elapsed_ms(started)
            self.metrics.record_response(processing_ms)

            result = IngestResult(
                fingerprint=fingerprint(features, timestamp),
                layers_updated=updated,
                failed_layers=failed,
                processing_ms=processing_ms,
                consolidation_scheduled=self.check_consolidation(),
            )
            logger.debug(f"Ingested {result.fingerprint[:12]} into {len(updated)} layers")
            return result

    def check_consolidation(self) -> bool:
        """Start a background consolidation if any layer is nearly full."""
        if self._consolidation_task and not self._consolidation_task.done():
            return False

        busiest = max(layer.utilization() for layer in self.layers.values())
        if busiest < self.config.consolidation_threshold:
            return False

        logger.info(f"Layer utilization {busiest:.0%}, scheduling consolidation")
        self._consolidation_task = asyncio.create_task(self._background_consolidate())
        return True

    async def _background_consolidate(self) -> None:
        try:
            await self.consolidate()
        except Exception as e:
            logger.error(f"Background consolidation failed: {e}")

    # Retrieval

    def cache_key(self, query: str, options: RetrieveOptions) -> str:
        bucket = int(self.now().timestamp() // CACHE_BUCKET.total_seconds())
        payload = json.dumps(
            {"query": query, "options": options.to_dict(), "bucket": bucket},
            sort_keys=True,
        )
        return hashlib.md5(payload.encode()).hexdigest()

    async def retrieve(
        self,
        query: str,
        options: RetrieveOptions | None = None,
        timeout: float | None = None,
    ) -> RetrievalResult:
        """Search every requested layer and fuse the hits.

        A layer that fails is reported in ``degraded_layers`` and the
        remaining layers still answer.

        Raises:
            ValueError: Empty query
            FeatureExtractionError: Extractor failed
            OperationTimeoutError: Deadline expired
        """
        self._ensure_initialized()
        if not query or not query.strip():
            raise ValueError("Cannot retrieve with an empty query")
        return await self._with_deadline(
            self._retrieve(query, options or RetrieveOptions()), timeout, "retrieve"
        )

    async def _retrieve(self, query: str, options: RetrieveOptions) -> RetrievalResult:
        async with self._semaphore:
            started = time.perf_counter()
            self.metrics.retrievals += 1
            generation = self._generation

            key = None
            if self.cache is not None:
                key = self.cache_key(query, options)
                cached = self.cache.get(key)
                if cached is not None:
                    self.metrics.cache_hits += 1
                    elapsed = _elapsed_ms(started)
                    self.metrics.record_response(elapsed)
                    return replace(cached, cached=True, retrieval_ms=elapsed)
                self.metrics.cache_misses += 1

            try:
                features = await self._extract(query)
            except FeatureExtractionError:
                self.metrics.retrieval_failures += 1
                raise

            layers = list(dict.fromkeys(options.layers))
            outcomes = await asyncio.gather(
                *(self._search_layer(layer, features, options) for layer in layers),
                return_exceptions=True,
            )

            results: list[RankedResult] = []
            degraded: list[Layer] = []
            for layer, outcome in zip(layers, outcomes):
                if isinstance(outcome, Exception):
                    degraded.append(layer)
                    logger.error(f"Search in {layer.value} layer failed: {outcome}")
                elif isinstance(outcome, BaseException):
                    raise outcome
                else:
                    results.extend(outcome)

            results.sort(key=lambda r: r.score, reverse=True)
            if options.limit is not None:
                results = results[: options.limit]

            contributions = Counter(r.layer.value for r in results)
            retrieval_ms = _elapsed_ms(started)
            result = RetrievalResult(
                query=query,
                results=results,
                confidence=confidence_summary(results),
                layer_contributions={layer.value: contributions.get(layer.value, 0) for layer in layers},
                degraded_layers=degraded,
                retrieval_ms=retrieval_ms,
            )

            # A write that finished while this call was searching makes the result stale
            if key is not None and results and not degraded and generation == self._generation:
                self.cache.set(key, result)
            self.metrics.record_response(retrieval_ms)
            logger.debug(f"Retrieved {len(results)} results for {query!r} in {retrieval_ms:.1f}ms")
            return result

    async def _search_layer(
        self, layer: Layer, features: SemanticFeatures, options: RetrieveOptions
    ) -> list[RankedResult]:
        weight = LAYER_WEIGHTS[layer]

        if layer is Layer.CONTEXT:
            return [
                RankedResult(
                    layer=layer,
                    id=hit.observation.id,
                    content=hit.observation.text,
                    relevance=hit.relevance,
                    score=hit.relevance * weight,
                    details={
                        "similarity": hit.similarity,
                        "created_at": hit.observation.created_at.isoformat(),
                        "access_count": hit.observation.access_count,
                        "metadata": hit.observation.metadata,
                    },
                )
                for hit in self.context.search(features, threshold=options.context_threshold)
            ]

        if layer is Layer.SEMANTIC:
            return [
                RankedResult(
                    layer=layer,
                    id=hit.concept.name,
                    content=hit.concept.name,
                    relevance=hit.relevance,
                    score=hit.relevance * weight,
                    details={
                        "similarity": hit.similarity,
                        "frequency": hit.concept.frequency,
                        "connections": sorted(hit.concept.connections),
                        "snippets": list(hit.concept.snippets),
                    },
                )
                for hit in self.concepts.search(features.concepts, threshold=options.semantic_threshold)
            ]

        return [
            RankedResult(
                layer=layer,
                id=hit.event.id,
                content=hit.event.text,
                relevance=hit.relevance,
                score=hit.relevance * weight,
                details={
                    "timestamp": hit.event.timestamp.isoformat(),
                    "timeline": hit.event.timeline,
                    "compressed": hit.event.compressed,
                    "content_similarity": hit.content_similarity,
                    "temporal_relevance": hit.temporal_relevance,
                    "pattern_relevance": hit.pattern_relevance,
                },
            )
            for hit in self.temporal.search(features, time_range=options.time_range)
        ]

    # Maintenance

    async def consolidate(self) -> ConsolidationReport:
        """Consolidate every layer in turn, then persist.

        Runs are serialized. A failing layer is logged and reported and the
        remaining layers still run.
        """
        self._ensure_initialized()
        async with self._consolidation_lock:
            started_at = self.now()
            started = time.perf_counter()
            outcomes: dict[Layer, LayerConsolidation] = {}
            failures: dict[Layer, str] = {}

            for layer, index in self.layers.items():
                try:
                    outcomes[layer] = await index.consolidate()
                except Exception as e:
                    error = ConsolidationError(layer.value, str(e))
                    failures[layer] = str(e)
                    self.metrics.consolidation_failures += 1
                    logger.error(f"Consolidation failed: {error}")

            self._invalidate_cache()
            self.metrics.consolidations += 1
            self.metrics.last_consolidation = started_at

            persisted = await self.persist()
            report = ConsolidationReport(
                started_at=started_at,
                duration_ms=_elapsed_ms(started),
                layers=outcomes,
                failures=failures,
                persisted=persisted,
            )
            logger.info(
                f"Consolidation removed {report.removed}/{report.items_before} items "
                f"({report.compression_ratio:.1%}) in {report.duration_ms:.0f}ms"
            )
            return report

    async def persist(self) -> bool:
        """Save a snapshot. Failures are logged and counted, never raised."""
        if self.snapshots is None:
            return False
        try:
            await self.snapshots.save(self.snapshot_name, self.export_state())
        except SnapshotIOError as e:
            self.metrics.snapshot_failures += 1
            logger.error(f"Snapshot save failed: {e}")
            return False
        return True

    def _invalidate_cache(self) -> None:
        self._generation += 1
        if self.cache is not None:
            self.cache.clear()

    def sweep_cache(self) -> int:
        return self.cache.sweep() if self.cache is not None else 0

    # State

    def export_state(self) -> JSONDict:
        return {
            "version": SNAPSHOT_VERSION,
            "saved_at": self.now().isoformat(),
            "context": self.context.export_state(),
            "concepts": self.concepts.export_state(),
            "temporal": self.temporal.export_state(),
            "metrics": self.metrics.to_dict(),
        }

    async def import_state(self, state: JSONDict) -> None:
        await self.context.import_state(state.get("context") or {})
        await self.concepts.import_state(state.get("concepts") or {})
        await self.temporal.import_state(state.get("temporal") or {})
        if state.get("metrics"):
            self.metrics = EngineMetrics.from_dict(state["metrics"])
        self._invalidate_cache()

    def status(self) -> dict[str, Any]:
        uptime = (self.now() - self._started_at).total_seconds() if self._started_at else 0.0
        return {
            "engine": {
                "initialized": self._initialized,
                "version": __version__,
                "started_at": self._started_at.isoformat() if self._started_at else None,
                "uptime_seconds": uptime,
                "consolidating": bool(
                    self._consolidation_task and not self._consolidation_task.done()
                ),
            },
            "layers": {layer.value: index.status() for layer, index in self.layers.items()},
            "metrics": self.metrics.to_dict(),
            "cache": self.cache.stats() if self.cache is not None else None,
            "limits": {
                "context_max_size": self.config.context.max_size,
                "max_concepts": self.config.concepts.max_concepts,
                "max_events": self.config.temporal.max_events,
                "max_concurrent_requests": self.config.max_concurrent_requests,
                "consolidation_threshold": self.config.consolidation_threshold,
            },
        }
