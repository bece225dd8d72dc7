"""
Shared type definitions.

Semantic features handed in by the feature supplier and layer identifiers
used across modules.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Layer(Enum):
    CONTEXT = "context"
    SEMANTIC = "semantic"
    TEMPORAL = "temporal"


class SentimentLabel(Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


@dataclass
class Keyword:
    word: str
    frequency: int = 1


@dataclass
class Entity:
    type: str  # "person" | "email" | "url" | "date" | ...
    value: str


@dataclass
class Sentiment:
    score: float = 0.0
    comparative: float = 0.0
    label: SentimentLabel = SentimentLabel.NEUTRAL


@dataclass
class SemanticFeatures:
    """Annotations for one piece of text, produced by a FeatureExtractor."""

    text: str
    tokens: list[str] = field(default_factory=list)
    keywords: list[Keyword] = field(default_factory=list)
    concepts: list[str] = field(default_factory=list)
    sentiment: Sentiment = field(default_factory=Sentiment)
    entities: list[Entity] = field(default_factory=list)

    @property
    def keyword_set(self) -> set[str]:
        return {k.word for k in self.keywords}

    @property
    def concept_set(self) -> set[str]:
        return set(self.concepts)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for snapshots."""
        return {
            "text": self.text,
            "tokens": list(self.tokens),
            "keywords": [{"word": k.word, "frequency": k.frequency} for k in self.keywords],
            "concepts": list(self.concepts),
            "sentiment": {
                "score": self.sentiment.score,
                "comparative": self.sentiment.comparative,
                "label": self.sentiment.label.value,
            },
            "entities": [{"type": e.type, "value": e.value} for e in self.entities],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SemanticFeatures":
        """Create from dict loaded from a snapshot."""
        sentiment = data.get("sentiment") or {}
        return cls(
            text=data.get("text", ""),
            tokens=list(data.get("tokens", [])),
            keywords=[Keyword(k["word"], k.get("frequency", 1)) for k in data.get("keywords", [])],
            concepts=list(data.get("concepts", [])),
            sentiment=Sentiment(
                score=sentiment.get("score", 0.0),
                comparative=sentiment.get("comparative", 0.0),
                label=SentimentLabel(sentiment.get("label", SentimentLabel.NEUTRAL.value)),
            ),
            entities=[Entity(e["type"], e["value"]) for e in data.get("entities", [])],
        )
