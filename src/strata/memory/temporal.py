"""Temporal layer - event log, timelines, relationships and pattern mining."""

import asyncio
import math
from collections import Counter
from datetime import datetime, timedelta
from dataclasses import dataclass
from typing import Any
from uuid import uuid4

from strata.core.config import TemporalConfig
from strata.core.logging import get_logger
from strata.core.types import Layer, SemanticFeatures
from strata.core.typing import Clock, JSONDict, Metadata
from strata.memory.base import LayerConsolidation, MemoryLayer, chunked, jaccard
from strata.memory.events import (
    CompressedEvent,
    Event,
    RelationshipKind,
    TemporalRelationship,
    Timeline,
)
from strata.memory.patterns import (
    Pattern,
    PatternType,
    detect_frequency,
    detect_recurring,
    detect_sequential,
)

logger = get_logger("memory.temporal")

RELEVANCE_SCALE = 20.0
SCORE_FLOOR = 0.3
CONTENT_WEIGHT = 0.4
TEMPORAL_WEIGHT = 0.3
PATTERN_WEIGHT = 0.3

TimeRange = tuple[datetime, datetime]


def classify_gap(gap: timedelta) -> RelationshipKind:
    if gap < timedelta(minutes=1):
        return RelationshipKind.CONCURRENT
    if gap < timedelta(minutes=5):
        return RelationshipKind.SEQUENTIAL
    if gap < timedelta(hours=1):
        return RelationshipKind.RELATED
    return RelationshipKind.DISTANT


def temporal_relevance(timestamp: datetime, time_range: TimeRange) -> float:
    """1.0 at the middle of the range, falling to 0.0 at either edge."""
    start, end = time_range
    span = (end - start).total_seconds()
    if span <= 0:
        return 1.0
    position = (timestamp - start).total_seconds() / span
    return max(0.0, 1.0 - abs(position - 0.5) * 2)


@dataclass
class ScoredEvent:
    event: Event
    score: float
    content_similarity: float
    temporal_relevance: float
    pattern_relevance: float

    @property
    def relevance(self) -> float:
        return self.score * RELEVANCE_SCALE


class TemporalIndex(MemoryLayer):
    """Time-ordered events grouped into timelines, with pattern detection."""

    layer = Layer.TEMPORAL

    def __init__(self, config: TemporalConfig | None = None, clock: Clock | None = None):
        super().__init__(clock)
        self.config = config or TemporalConfig()
        self._events: list[Event] = []
        self._by_id: dict[str, Event] = {}
        self._timelines: dict[str, Timeline] = {}
        self._patterns: list[Pattern] = []
        self._next_sequence = 0

    @property
    def capacity(self) -> int:
        return self.config.max_events

    def size(self) -> int:
        return len(self._events)

    def get(self, event_id: str) -> Event | None:
        return self._by_id.get(event_id)

    def __contains__(self, event_id: str) -> bool:
        return event_id in self._by_id

    @property
    def events(self) -> list[Event]:
        return list(self._events)

    def timeline(self, key: str) -> Timeline | None:
        return self._timelines.get(key)

    def timeline_keys(self) -> list[str]:
        return list(self._timelines)

    def patterns(self, pattern_type: PatternType | None = None) -> list[Pattern]:
        if pattern_type is None:
            return list(self._patterns)
        return [p for p in self._patterns if p.type is pattern_type]

    @staticmethod
    def timeline_key(metadata: Metadata, timestamp: datetime) -> str:
        """Explicit ``timeline`` metadata wins, otherwise one timeline per day."""
        if metadata.get("timeline"):
            return str(metadata["timeline"])
        return f"daily-{timestamp:%Y-%m-%d}"

    # Writes

    async def record(
        self,
        features: SemanticFeatures,
        metadata: Metadata | None = None,
        timestamp: datetime | None = None,
    ) -> Event:
        """Append an event, link it to its timeline and run pattern detection."""
        async with self._lock:
            return self._record(features, dict(metadata or {}), timestamp or self.now())

    def _record(self, features: SemanticFeatures, metadata: Metadata, timestamp: datetime) -> Event:
        event = Event(
            id=uuid4().hex,
            text=features.text,
            features=features,
            timestamp=timestamp,
            sequence=self._next_sequence,
            timeline=self.timeline_key(metadata, timestamp),
            metadata=metadata,
        )
        self._next_sequence += 1
        self._events.append(event)
        self._by_id[event.id] = event

        if len(self._events) > self.config.max_events:
            self._archive_oldest()

        timeline = self._timelines.get(event.timeline)
        if timeline is None:
            timeline = self._timelines[event.timeline] = Timeline(key=event.timeline)
        self._link_nearby(event, timeline)
        timeline.add(event)

        self._detect_patterns(event)
        return event

    def _archive_oldest(self) -> None:
        removed = self._events.pop(0)
        self._by_id.pop(removed.id, None)
        timeline = self._timelines.get(removed.timeline)
        if timeline:
            timeline.remove(removed.id)
            if not timeline.events:
                del self._timelines[removed.timeline]
        logger.debug(f"Archived event {removed.id} (capacity {self.config.max_events})")

    def _link_nearby(self, event: Event, timeline: Timeline) -> None:
        for other in timeline.events:
            gap = abs(event.timestamp - other.timestamp)
            if gap >= self.config.relationship_window:
                continue
            event.relationships.append(
                TemporalRelationship(
                    other_id=other.id,
                    kind=classify_gap(gap),
                    strength=self.relationship_strength(event, other),
                )
            )

    def relationship_strength(self, a: Event, b: Event) -> float:
        gap = abs(a.timestamp - b.timestamp)
        strength = max(0.0, 1.0 - gap / self.config.relationship_window)
        strength += 0.5 * jaccard(a.concept_set, b.concept_set)
        strength += 0.3 * jaccard(a.metadata.keys(), b.metadata.keys())
        return min(1.0, strength)

    async def detect_patterns(self, event: Event) -> list[Pattern]:
        async with self._lock:
            return self._detect_patterns(event)

    def _detect_patterns(self, event: Event) -> list[Pattern]:
        now = self.now()
        recent = self._events[-self.config.pattern_window :]

        found: list[Pattern] = []
        recurring = detect_recurring(event, recent, now)
        if recurring:
            found.append(recurring)
        found.extend(detect_sequential(recent, now))
        frequency = detect_frequency(event, self._events, now)
        if frequency:
            found.append(frequency)

        for pattern in found:
            self._store_pattern(pattern)
            logger.debug(f"Detected {pattern.type.value} pattern ({pattern.confidence:.2f})")
        self._cleanup_patterns(now)
        return found

    def _store_pattern(self, pattern: Pattern) -> None:
        # Re-detection replaces the previous entry
        self._patterns = [p for p in self._patterns if p.signature != pattern.signature]
        self._patterns.append(pattern)

    def _cleanup_patterns(self, now: datetime) -> None:
        cutoff = now - self.config.pattern_retention
        self._patterns = [p for p in self._patterns if p.created_at > cutoff]
        if len(self._patterns) > self.config.max_patterns:
            self._patterns = self._patterns[-self.config.max_patterns :]

    # Reads

    def search(
        self,
        query: SemanticFeatures,
        time_range: TimeRange | None = None,
        limit: int | None = None,
    ) -> list[ScoredEvent]:
        """Score events in range by content, position in range and pattern fit.

        Defaults to the configured time window ending now. Scores under 0.3
        are dropped.
        """
        if time_range is None:
            now = self.now()
            time_range = (now - self.config.time_window, now)
        start, end = time_range
        query_concepts = query.concept_set

        membership: dict[str, list[Pattern]] = {}
        for pattern in self._patterns:
            if pattern.type is PatternType.RECURRING:
                for event_id in pattern.event_ids:
                    membership.setdefault(event_id, []).append(pattern)

        results = []
        for event in self._events:
            if not start <= event.timestamp <= end:
                continue
            content = jaccard(query_concepts, event.concept_set)
            position = temporal_relevance(event.timestamp, time_range)
            pattern_fit = max(
                (jaccard(query_concepts, p.concepts) * p.confidence for p in membership.get(event.id, [])),
                default=0.0,
            )
            score = CONTENT_WEIGHT * content + TEMPORAL_WEIGHT * position + PATTERN_WEIGHT * pattern_fit
            if score >= SCORE_FLOOR:
                results.append(ScoredEvent(event, score, content, position, pattern_fit))

        results.sort(key=lambda r: (r.score, r.event.timestamp), reverse=True)
        return results[:limit] if limit is not None else results

    # Maintenance

    async def consolidate(self) -> LayerConsolidation:
        """Replace archival events with one CompressedEvent per batch.

        Archival means older than the time window and not already compressed.
        Batches hold ceil(1 / compression_ratio) events; a trailing batch of
        one event is left as is.
        """
        before = self.size()
        cutoff = self.now() - self.config.time_window
        group_size = math.ceil(1 / self.config.compression_ratio)

        archival = [e for e in list(self._events) if not e.compressed and e.timestamp <= cutoff]
        groups = [list(g) for g in chunked(archival, group_size) if len(g) > 1]
        groups_per_batch = max(1, self.config.consolidation_batch_size // group_size)

        compressed_events = 0
        created = 0
        for batch in chunked(groups, groups_per_batch):
            async with self._lock:
                replaced, made = self._replace_groups(batch)
                if made:
                    self._rebuild_timelines()
            compressed_events += replaced
            created += made
            await asyncio.sleep(0)

        if created:
            logger.info(f"Temporal consolidation compressed {compressed_events} events into {created}")

        return LayerConsolidation(
            layer=self.layer,
            items_before=before,
            removed=compressed_events - created,
            retained=self.size(),
            details={
                "events_compressed": compressed_events,
                "compressed_events_created": created,
                "group_size": group_size,
            },
        )

    def _replace_groups(self, groups: list[list[Event]]) -> tuple[int, int]:
        replacements: dict[str, CompressedEvent] = {}
        doomed: set[str] = set()
        for group in groups:
            # Skip members evicted since the scan
            members = [e for e in group if e.id in self._by_id]
            if len(members) < 2:
                continue
            replacements[members[0].id] = self._compress(members)
            doomed.update(e.id for e in members)

        if not replacements:
            return 0, 0

        events: list[Event] = []
        for event in self._events:
            if event.id in replacements:
                events.append(replacements[event.id])
            if event.id not in doomed:
                events.append(event)
        self._events = events

        for event_id in doomed:
            self._by_id.pop(event_id, None)
        for compressed in replacements.values():
            self._by_id[compressed.id] = compressed
        return len(doomed), len(replacements)

    @staticmethod
    def _compress(members: list[Event]) -> CompressedEvent:
        middle = members[len(members) // 2]
        threshold = math.ceil(len(members) / 2)
        counts = Counter(c for e in members for c in dict.fromkeys(e.concepts))
        common = [concept for concept, count in counts.items() if count >= threshold]
        summary = f"Compressed group of {len(members)} events"

        return CompressedEvent(
            id=f"compressed-{uuid4().hex[:12]}",
            text=summary,
            features=SemanticFeatures(text=summary, concepts=common),
            timestamp=middle.timestamp,
            sequence=middle.sequence,
            timeline=middle.timeline,
            metadata={
                "compressed": True,
                "original_count": len(members),
                "time_range": {
                    "start": min(e.timestamp for e in members).isoformat(),
                    "end": max(e.timestamp for e in members).isoformat(),
                },
                "original_ids": [e.id for e in members],
            },
        )

    def _rebuild_timelines(self) -> None:
        timelines: dict[str, Timeline] = {}
        for event in self._events:
            timeline = timelines.get(event.timeline)
            if timeline is None:
                timeline = timelines[event.timeline] = Timeline(key=event.timeline)
            timeline.add(event)
        self._timelines = timelines

    def status(self) -> dict[str, Any]:
        size = self.size()
        stamps = [e.timestamp for e in self._events]
        average_interval = (
            (self._events[-1].timestamp - self._events[0].timestamp).total_seconds() / (size - 1)
            if size > 1
            else 0.0
        )
        return {
            "size": size,
            "max_events": self.config.max_events,
            "utilization": self.utilization(),
            "timeline_count": len(self._timelines),
            "pattern_count": len(self._patterns),
            "compressed_count": sum(1 for e in self._events if e.compressed),
            "oldest": min(stamps).isoformat() if stamps else None,
            "newest": max(stamps).isoformat() if stamps else None,
            "average_interval_seconds": average_interval,
        }

    def export_state(self) -> JSONDict:
        return {
            "events": [e.to_dict() for e in self._events],
            "patterns": [p.to_dict() for p in self._patterns],
            "next_sequence": self._next_sequence,
        }

    async def import_state(self, state: JSONDict) -> None:
        events = [Event.from_dict(e) for e in state.get("events", [])]
        events = events[-self.config.max_events :]
        patterns = [Pattern.from_dict(p) for p in state.get("patterns", [])]
        next_sequence = max(
            state.get("next_sequence", 0),
            max((e.sequence for e in events), default=-1) + 1,
        )

        async with self._lock:
            self._events = events
            self._by_id = {e.id: e for e in events}
            self._patterns = patterns
            self._next_sequence = next_sequence
            self._rebuild_timelines()
        logger.debug(f"Imported {len(events)} events, {len(patterns)} patterns")
