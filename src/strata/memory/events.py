"""Event, compressed event and timeline records for the temporal layer."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from strata.core.types import SemanticFeatures
from strata.core.typing import Metadata


class RelationshipKind(Enum):
    CONCURRENT = "concurrent"  # < 1 minute apart
    SEQUENTIAL = "sequential"  # < 5 minutes
    RELATED = "related"  # < 1 hour
    DISTANT = "distant"


@dataclass
class TemporalRelationship:
    """Link from an event to an earlier event in the same timeline."""

    other_id: str
    kind: RelationshipKind
    strength: float

    def to_dict(self) -> dict[str, Any]:
        return {"other_id": self.other_id, "kind": self.kind.value, "strength": self.strength}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TemporalRelationship":
        return cls(
            other_id=data["other_id"],
            kind=RelationshipKind(data["kind"]),
            strength=data.get("strength", 0.0),
        )


@dataclass(eq=False)
class Event:
    """One recorded observation on the timeline."""

    id: str
    text: str
    features: SemanticFeatures
    timestamp: datetime
    sequence: int
    timeline: str
    metadata: Metadata = field(default_factory=dict)
    relationships: list[TemporalRelationship] = field(default_factory=list)

    compressed = False

    @property
    def concepts(self) -> list[str]:
        return self.features.concepts

    @property
    def concept_set(self) -> set[str]:
        return self.features.concept_set

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "text": self.text,
            "features": self.features.to_dict(),
            "timestamp": self.timestamp.isoformat(),
            "sequence": self.sequence,
            "timeline": self.timeline,
            "metadata": self.metadata,
            "relationships": [r.to_dict() for r in self.relationships],
            "compressed": self.compressed,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Event":
        """Rebuild an event; compressed entries come back as CompressedEvent."""
        event_cls = CompressedEvent if data.get("compressed") else Event
        return event_cls(
            id=data["id"],
            text=data.get("text", ""),
            features=SemanticFeatures.from_dict(data["features"]),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            sequence=data.get("sequence", 0),
            timeline=data.get("timeline", ""),
            metadata=data.get("metadata") or {},
            relationships=[TemporalRelationship.from_dict(r) for r in data.get("relationships", [])],
        )


@dataclass(eq=False)
class CompressedEvent(Event):
    """Summary standing in for a batch of archival events.

    metadata carries ``compressed``, ``original_count``, ``time_range`` and
    ``original_ids`` so the replaced events stay traceable.
    """

    compressed = True

    @property
    def original_count(self) -> int:
        return self.metadata.get("original_count", 0)

    @property
    def original_ids(self) -> list[str]:
        return list(self.metadata.get("original_ids", []))


@dataclass
class Timeline:
    """Events sharing a timeline key, with time bounds."""

    key: str
    events: list[Event] = field(default_factory=list)
    start: datetime | None = None
    end: datetime | None = None

    def add(self, event: Event) -> None:
        self.events.append(event)
        self.start = event.timestamp if self.start is None else min(self.start, event.timestamp)
        self.end = event.timestamp if self.end is None else max(self.end, event.timestamp)

    def remove(self, event_id: str) -> None:
        self.events = [e for e in self.events if e.id != event_id]
        stamps = [e.timestamp for e in self.events]
        self.start = min(stamps) if stamps else None
        self.end = max(stamps) if stamps else None

    def __len__(self) -> int:
        return len(self.events)
