"""Rule-based feature extractor: word lists and regexes, no models."""

import re
from collections import Counter

from strata.core.types import Entity, Keyword, SemanticFeatures, Sentiment, SentimentLabel

STOPWORDS = frozenset(
    """
    a an and are as at be been but by can do does for from had has have he her his
    how i if in into is it its me my no not of on or our she so than that the their
    them then there these they this to too was we were what when where which who why
    will with you your
    """.split()
)

POSITIVE_WORDS = frozenset(
    ["good", "great", "excellent", "amazing", "wonderful", "fantastic", "awesome", "love", "like"]
)
NEGATIVE_WORDS = frozenset(
    ["bad", "terrible", "awful", "horrible", "disgusting", "hate", "worst", "slow", "broken"]
)

# Token -> broader concepts it implies
DEFAULT_CONCEPT_ALIASES: dict[str, list[str]] = {
    "ai": ["artificial intelligence", "machine learning"],
    "computer": ["technology"],
    "computers": ["technology"],
    "learning": ["education"],
    "memory": ["storage", "recall"],
    "data": ["information"],
}

ENTITY_PATTERNS: dict[str, re.Pattern[str]] = {
    "person": re.compile(r"\b[A-Z][a-z]+ [A-Z][a-z]+\b"),
    "email": re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),
    "url": re.compile(r"https?://\S+"),
    "date": re.compile(r"\b\d{1,2}/\d{1,2}/\d{4}\b"),
}

_TOKEN_RE = re.compile(r"[a-z0-9]+")


class HeuristicExtractor:
    """Deterministic extractor used by the CLI and as a default supplier.

    Keywords are the most frequent non-stopword tokens, concepts are those
    tokens plus any configured aliases, sentiment is a word-list score.
    """

    def __init__(
        self,
        max_keywords: int = 10,
        min_token_length: int = 2,
        concept_aliases: dict[str, list[str]] | None = None,
    ):
        self.max_keywords = max_keywords
        self.min_token_length = min_token_length
        self.concept_aliases = (
            DEFAULT_CONCEPT_ALIASES if concept_aliases is None else concept_aliases
        )

    async def extract(self, text: str) -> SemanticFeatures:
        tokens = self.tokenize(text)
        keywords = self.extract_keywords(tokens)
        return SemanticFeatures(
            text=text,
            tokens=tokens,
            keywords=keywords,
            concepts=self.identify_concepts(keywords),
            sentiment=self.analyze_sentiment(tokens),
            entities=self.recognize_entities(text),
        )

    def tokenize(self, text: str) -> list[str]:
        return [
            t for t in _TOKEN_RE.findall(text.lower())
            if len(t) >= self.min_token_length and t not in STOPWORDS
        ]

    def extract_keywords(self, tokens: list[str]) -> list[Keyword]:
        # Counter.most_common keeps first-seen order for ties
        counts = Counter(tokens)
        return [Keyword(word, freq) for word, freq in counts.most_common(self.max_keywords)]

    def identify_concepts(self, keywords: list[Keyword]) -> list[str]:
        concepts: list[str] = []
        for kw in keywords:
            for concept in [kw.word, *self.concept_aliases.get(kw.word, [])]:
                if concept not in concepts:
                    concepts.append(concept)
        return concepts

    def analyze_sentiment(self, tokens: list[str]) -> Sentiment:
        score = sum(1 for t in tokens if t in POSITIVE_WORDS) - sum(
            1 for t in tokens if t in NEGATIVE_WORDS
        )
        comparative = score / len(tokens) if tokens else 0.0
        if score > 0:
            label = SentimentLabel.POSITIVE
        elif score < 0:
            label = SentimentLabel.NEGATIVE
        else:
            label = SentimentLabel.NEUTRAL
        return Sentiment(score=float(score), comparative=comparative, label=label)

    def recognize_entities(self, text: str) -> list[Entity]:
        entities = []
        for entity_type, pattern in ENTITY_PATTERNS.items():
            entities.extend(Entity(entity_type, match) for match in pattern.findall(text))
        return entities
