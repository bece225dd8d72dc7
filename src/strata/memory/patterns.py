"""
Temporal pattern detectors.

Three heuristics run against the event log every time an event is recorded:

- recurring: similar events arriving at a near-constant interval
  (confidence = 1 - coefficient of variation of the intervals)
- sequential: a run of three concept sets that repeats later on
- frequency: the last day's rate of similar events deviating from the
  historical rate by more than 2x either way

All similarities are Jaccard overlaps of concept sets.
"""

import statistics
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from itertools import pairwise
from typing import Any
from uuid import uuid4

from strata.memory.base import jaccard
from strata.memory.events import Event

RECURRING_MIN_SIMILARITY = 0.3
RECURRING_MAX_VARIATION = 0.2

SEQUENCE_LENGTH = 3
SEQUENCE_MIN_SIMILARITY = 0.7

FREQUENCY_MIN_SIMILARITY = 0.4
FREQUENCY_MIN_EVENTS = 3
FREQUENCY_RECENT_WINDOW = timedelta(hours=24)
FREQUENCY_HIGH_RATIO = 2.0
FREQUENCY_LOW_RATIO = 0.5


class PatternType(Enum):
    RECURRING = "recurring"
    SEQUENTIAL = "sequential"
    FREQUENCY = "frequency"


@dataclass
class Pattern:
    """A detected regularity among events."""

    id: str
    type: PatternType
    confidence: float
    concepts: list[str]
    event_ids: list[str]
    created_at: datetime
    signature: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "confidence": self.confidence,
            "concepts": list(self.concepts),
            "event_ids": list(self.event_ids),
            "created_at": self.created_at.isoformat(),
            "signature": self.signature,
            "details": self.details,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Pattern":
        return cls(
            id=data["id"],
            type=PatternType(data["type"]),
            confidence=data.get("confidence", 0.0),
            concepts=list(data.get("concepts", [])),
            event_ids=list(data.get("event_ids", [])),
            created_at=datetime.fromisoformat(data["created_at"]),
            signature=data.get("signature", data["id"]),
            details=data.get("details") or {},
        )


def _new_id() -> str:
    return uuid4().hex[:16]


def content_similarity(a: Event, b: Event) -> float:
    return jaccard(a.concept_set, b.concept_set)


def detect_recurring(new_event: Event, recent: Sequence[Event], now: datetime) -> Pattern | None:
    """Flag similar events whose arrival intervals barely vary."""
    similar = [
        e for e in recent
        if e.id != new_event.id and content_similarity(new_event, e) > RECURRING_MIN_SIMILARITY
    ]
    if len(similar) < 2:
        return None

    occurrences = sorted([*similar, new_event], key=lambda e: (e.timestamp, e.sequence))
    intervals = [(b.timestamp - a.timestamp).total_seconds() for a, b in pairwise(occurrences)]
    mean = statistics.fmean(intervals)
    if mean <= 0:
        return None

    variation = statistics.pstdev(intervals) / mean
    if variation >= RECURRING_MAX_VARIATION:
        return None

    concepts = sorted(new_event.concept_set)
    return Pattern(
        id=_new_id(),
        type=PatternType.RECURRING,
        confidence=1.0 - variation,
        concepts=concepts,
        event_ids=[e.id for e in occurrences],
        created_at=now,
        signature=f"recurring:{'|'.join(concepts)}",
        details={
            "average_interval_seconds": mean,
            "coefficient_of_variation": variation,
            "occurrences": len(occurrences),
        },
    )


def compare_sequences(first: Sequence[set[str]], second: Sequence[set[str]]) -> float:
    """Mean per-position Jaccard similarity of two equal-length concept runs."""
    if len(first) != len(second) or not first:
        return 0.0
    return sum(jaccard(a, b) for a, b in zip(first, second)) / len(first)


def detect_sequential(recent: Sequence[Event], now: datetime) -> list[Pattern]:
    """Compare the run ending at the newest event with every earlier disjoint run.

    Called after each insert, so every pair of runs is reported once, when the
    later run completes.
    """
    n = len(recent)
    if n < 2 * SEQUENCE_LENGTH:
        return []

    latest = recent[-SEQUENCE_LENGTH:]
    latest_sets = [e.concept_set for e in latest]

    patterns = []
    for start in range(0, n - 2 * SEQUENCE_LENGTH + 1):
        earlier = recent[start : start + SEQUENCE_LENGTH]
        similarity = compare_sequences([e.concept_set for e in earlier], latest_sets)
        if similarity <= SEQUENCE_MIN_SIMILARITY:
            continue
        concepts = sorted(set().union(*latest_sets))
        patterns.append(
            Pattern(
                id=_new_id(),
                type=PatternType.SEQUENTIAL,
                confidence=similarity,
                concepts=concepts,
                event_ids=[e.id for e in (*earlier, *latest)],
                created_at=now,
                signature=f"sequential:{earlier[0].id}:{latest[0].id}",
                details={
                    "first_sequence": earlier[0].sequence,
                    "second_sequence": latest[0].sequence,
                    "similarity": similarity,
                },
            )
        )
    return patterns


def detect_frequency(new_event: Event, history: Sequence[Event], now: datetime) -> Pattern | None:
    """Flag a topic whose last-day rate is far from its historical daily rate."""
    similar = [
        e for e in history
        if e.id != new_event.id
        and e.timestamp <= new_event.timestamp
        and content_similarity(new_event, e) > FREQUENCY_MIN_SIMILARITY
    ]
    if len(similar) < FREQUENCY_MIN_EVENTS:
        return None

    recent = [e for e in similar if new_event.timestamp - e.timestamp < FREQUENCY_RECENT_WINDOW]
    historical = [e for e in similar if new_event.timestamp - e.timestamp >= FREQUENCY_RECENT_WINDOW]
    if not historical:
        return None

    oldest = min(e.timestamp for e in historical)
    span_days = (new_event.timestamp - oldest) / timedelta(days=1)
    historical_rate = len(historical) / span_days
    recent_rate = float(len(recent))  # per day
    ratio = recent_rate / historical_rate

    if FREQUENCY_LOW_RATIO <= ratio <= FREQUENCY_HIGH_RATIO:
        return None

    direction = "increase" if ratio > FREQUENCY_HIGH_RATIO else "decrease"
    concepts = sorted(new_event.concept_set)
    return Pattern(
        id=_new_id(),
        type=PatternType.FREQUENCY,
        confidence=1.0 - (min(ratio, 1.0 / ratio) if ratio > 0 else 0.0),
        concepts=concepts,
        event_ids=[e.id for e in similar] + [new_event.id],
        created_at=now,
        signature=f"frequency:{direction}:{'|'.join(concepts)}",
        details={
            "current_rate": recent_rate,
            "historical_rate": historical_rate,
            "ratio": ratio,
            "direction": direction,
        },
    )
