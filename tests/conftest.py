"""Shared fixtures: deterministic extractors and a controllable clock."""

import re
from collections import Counter
from datetime import datetime, timedelta

import pytest

from strata.core.config import EngineConfig
from strata.core.types import Keyword, SemanticFeatures
from strata.memory.engine import MemoryEngine
from strata.memory.snapshot import InMemorySnapshotStore

STUB_STOPWORDS = frozenset({"i", "the", "is", "a", "an"})

START = datetime(2024, 1, 15, 12, 0, 0)


class StubExtractor:
    """Lowercase words minus a few stopwords; every word is a keyword and a concept."""

    def __init__(self):
        self.calls = 0

    async def extract(self, text: str) -> SemanticFeatures:
        self.calls += 1
        tokens = [t for t in re.findall(r"[a-z]+", text.lower()) if t not in STUB_STOPWORDS]
        counts = Counter(tokens)
        return SemanticFeatures(
            text=text,
            tokens=tokens,
            keywords=[Keyword(word, freq) for word, freq in counts.items()],
            concepts=list(dict.fromkeys(tokens)),
        )


class FailingExtractor:
    async def extract(self, text: str) -> SemanticFeatures:
        raise RuntimeError("extractor offline")


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = START):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, delta: timedelta) -> datetime:
        self.current += delta
        return self.current


async def features(text: str) -> SemanticFeatures:
    return await StubExtractor().extract(text)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def extractor() -> StubExtractor:
    return StubExtractor()


@pytest.fixture
def snapshots() -> InMemorySnapshotStore:
    return InMemorySnapshotStore()


@pytest.fixture
async def engine(extractor, snapshots, clock):
    """Started engine on the stub extractor with an in-memory snapshot store."""
    engine = MemoryEngine(extractor, EngineConfig(), snapshots=snapshots, clock=clock)
    await engine.start()
    yield engine
    await engine.stop()
