"""Tests for the temporal index."""

import asyncio
from datetime import timedelta

import pytest
from conftest import START, features

from strata.core.config import TemporalConfig
from strata.memory.events import CompressedEvent, RelationshipKind
from strata.memory.patterns import PatternType
from strata.memory.temporal import TemporalIndex, classify_gap, temporal_relevance


@pytest.fixture
def index(clock):
    return TemporalIndex(TemporalConfig(), clock=clock)


def test_classify_gap():
    assert classify_gap(timedelta(seconds=30)) is RelationshipKind.CONCURRENT
    assert classify_gap(timedelta(minutes=3)) is RelationshipKind.SEQUENTIAL
    assert classify_gap(timedelta(minutes=30)) is RelationshipKind.RELATED
    assert classify_gap(timedelta(hours=2)) is RelationshipKind.DISTANT


def test_temporal_relevance_peaks_mid_range():
    start, end = START, START + timedelta(hours=2)
    assert temporal_relevance(START + timedelta(hours=1), (start, end)) == 1.0
    assert temporal_relevance(start, (start, end)) == 0.0
    assert temporal_relevance(START + timedelta(minutes=30), (start, end)) == 0.5
    assert temporal_relevance(START, (START, START)) == 1.0


@pytest.mark.asyncio
async def test_record_assigns_sequence_and_timeline(index):
    """Sequences increase, timeline comes from metadata or the day."""
    first = await index.record(await features("morning standup"))
    second = await index.record(await features("deploy"), {"timeline": "ops"})

    assert (first.sequence, second.sequence) == (0, 1)
    assert first.timeline == "daily-2024-01-15"
    assert second.timeline == "ops"
    assert index.timeline("ops").events == [second]
    assert first.timestamp == START


@pytest.mark.asyncio
async def test_relationships_within_timeline(index):
    """New events link to nearby events of the same timeline only."""
    a = await index.record(await features("alpha"), timestamp=START)
    b = await index.record(await features("beta"), timestamp=START + timedelta(seconds=30))
    other = await index.record(
        await features("beta"), {"timeline": "elsewhere"}, timestamp=START + timedelta(seconds=40)
    )
    c = await index.record(await features("gamma"), timestamp=START + timedelta(minutes=10))

    assert a.relationships == []
    assert len(b.relationships) == 1
    link = b.relationships[0]
    assert link.other_id == a.id
    assert link.kind is RelationshipKind.CONCURRENT
    assert link.strength == pytest.approx(1 - 30 / 3600)
    assert other.relationships == []
    assert {r.kind for r in c.relationships} == {RelationshipKind.RELATED}
    assert len(c.relationships) == 2


@pytest.mark.asyncio
async def test_relationship_strength_is_clamped(index):
    """Close, similar events cap at strength 1."""
    await index.record(await features("same topic"), {"k": 1})
    twin = await index.record(await features("same topic"), {"k": 2})
    assert twin.relationships[0].strength == 1.0


@pytest.mark.asyncio
async def test_fifo_eviction(clock):
    """Past max_events the oldest event is dropped."""
    index = TemporalIndex(TemporalConfig(max_events=3), clock=clock)
    events = [await index.record(await features(f"event {n}")) for n in range(5)]

    assert index.size() == 3
    assert events[0].id not in index
    assert events[1].id not in index
    assert [e.id for e in index.events] == [e.id for e in events[2:]]
    assert len(index.timeline("daily-2024-01-15")) == 3


@pytest.mark.asyncio
async def test_recurring_pattern_hourly(index, clock):
    """Five similar events exactly one hour apart form one recurring pattern."""
    clock.advance(timedelta(hours=5))
    for n in range(5):
        await index.record(await features("backup job finished"), timestamp=START + timedelta(hours=n))

    recurring = index.patterns(PatternType.RECURRING)
    assert len(recurring) == 1
    assert recurring[0].confidence == pytest.approx(1.0)
    assert len(recurring[0].event_ids) == 5


@pytest.mark.asyncio
async def test_no_recurring_pattern_for_irregular_spacing(index, clock):
    offsets = [
        timedelta(0),
        timedelta(minutes=10),
        timedelta(hours=3),
        timedelta(hours=3, minutes=20),
        timedelta(hours=8),
    ]
    clock.advance(timedelta(hours=8))
    for offset in offsets:
        await index.record(await features("backup job finished"), timestamp=START + offset)

    assert index.patterns(PatternType.RECURRING) == []


@pytest.mark.asyncio
async def test_patterns_expire(index, clock):
    """Patterns older than the retention window are dropped on the next detection."""
    for n in range(3):
        await index.record(await features("backup job"), timestamp=START + timedelta(hours=n))
    assert index.patterns(PatternType.RECURRING)

    clock.advance(timedelta(days=31))
    await index.record(await features("unrelated note"))
    assert index.patterns(PatternType.RECURRING) == []


@pytest.mark.asyncio
async def test_search_scores_content_and_position(index):
    """An on-topic event in the middle of the range scores content plus position."""
    hit = await index.record(await features("ai model"), timestamp=START - timedelta(days=1))
    await index.record(await features("ai model"), timestamp=START - timedelta(days=5))
    await index.record(await features("garden"), timestamp=START - timedelta(days=1, hours=23))

    results = index.search(
        await features("ai model"),
        time_range=(START - timedelta(days=2), START),
    )
    assert [r.event.id for r in results] == [hit.id]
    assert results[0].score == pytest.approx(0.7)
    assert results[0].relevance == pytest.approx(14.0)


@pytest.mark.asyncio
async def test_search_default_range_and_floor(index, clock):
    """Default range ends now; weak matches fall under the score floor."""
    recent = await index.record(await features("ai model"))
    await index.record(await features("ai chips"))
    await index.record(await features("ai"), timestamp=START - timedelta(days=45))

    results = index.search(await features("ai model"))
    assert [r.event.id for r in results] == [recent.id]
    assert results[0].content_similarity == 1.0
    assert results[0].temporal_relevance == 0.0


@pytest.mark.asyncio
async def test_search_uses_recurring_patterns(index, clock):
    """Members of a matching recurring pattern get pattern relevance."""
    clock.advance(timedelta(hours=3))
    for n in range(3):
        await index.record(await features("backup job"), timestamp=START + timedelta(hours=n))

    results = index.search(
        await features("backup job"),
        time_range=(START, START + timedelta(hours=2)),
    )
    assert len(results) == 3
    assert all(r.pattern_relevance == pytest.approx(1.0) for r in results)
    assert results[0].event.timestamp == START + timedelta(hours=1)


@pytest.mark.asyncio
async def test_consolidate_compresses_archival_batches(index):
    """Twenty archival events at ratio 0.1 become two compressed events."""
    old = START - timedelta(days=40)
    originals = [
        await index.record(await features("nightly build passed"), timestamp=old + timedelta(minutes=n))
        for n in range(20)
    ]
    recent = await index.record(await features("nightly build passed"))

    report = await index.consolidate()
    compressed = [e for e in index.events if e.compressed]

    assert len(compressed) == 2
    assert all(isinstance(e, CompressedEvent) for e in compressed)
    assert sum(e.original_count for e in compressed) == 20
    assert set(compressed[0].original_ids + compressed[1].original_ids) == {e.id for e in originals}
    assert compressed[0].concepts == ["nightly", "build", "passed"]
    assert compressed[0].metadata["time_range"]["start"] == old.isoformat()
    assert index.size() == 3
    assert index.events[-1] is recent
    assert report.removed == 18
    assert index.status()["compressed_count"] == 2


@pytest.mark.asyncio
async def test_consolidate_counts_only_compressed_events(clock):
    """Events recorded between batches do not skew the removed count."""
    index = TemporalIndex(TemporalConfig(consolidation_batch_size=10), clock=clock)
    old = START - timedelta(days=40)
    for n in range(20):
        await index.record(await features("nightly build passed"), timestamp=old + timedelta(minutes=n))

    async def record_fresh():
        for n in range(5):
            await index.record(await features(f"fresh event {n}"))

    report, _ = await asyncio.gather(index.consolidate(), record_fresh())

    assert index.size() == 7
    assert report.removed == 18
    assert report.details["compressed_events_created"] == 2


@pytest.mark.asyncio
async def test_consolidate_keeps_single_leftover(index):
    """A trailing batch of one archival event is left uncompressed."""
    old = START - timedelta(days=40)
    for n in range(21):
        await index.record(await features(f"log line {n}"), timestamp=old + timedelta(minutes=n))

    await index.consolidate()
    assert index.size() == 3
    assert [e.compressed for e in index.events] == [True, True, False]
    assert index.events[0].concepts == ["log", "line"]


@pytest.mark.asyncio
async def test_consolidate_is_idempotent(index):
    """Compressed events are never compressed again."""
    old = START - timedelta(days=40)
    for n in range(20):
        await index.record(await features("heartbeat"), timestamp=old + timedelta(minutes=n))

    await index.consolidate()
    snapshot = [e.id for e in index.events]
    second = await index.consolidate()

    assert second.removed == 0
    assert [e.id for e in index.events] == snapshot


@pytest.mark.asyncio
async def test_consolidate_rebuilds_timelines(index):
    old = START - timedelta(days=40)
    for n in range(10):
        await index.record(await features("tick"), {"timeline": "cron"}, timestamp=old + timedelta(minutes=n))

    await index.consolidate()
    timeline = index.timeline("cron")
    assert len(timeline) == 1
    assert timeline.events[0].compressed


@pytest.mark.asyncio
async def test_export_import_round_trip(index, clock):
    """Restored index keeps events, patterns, sequences and search results."""
    old = START - timedelta(days=40)
    for n in range(10):
        await index.record(await features("archived tick"), timestamp=old + timedelta(minutes=n))
    await index.consolidate()
    for n in range(3):
        await index.record(await features("backup job"), timestamp=START - timedelta(hours=3 - n))

    restored = TemporalIndex(TemporalConfig(), clock=clock)
    await restored.import_state(index.export_state())

    assert [e.id for e in restored.events] == [e.id for e in index.events]
    assert isinstance(restored.events[0], CompressedEvent)
    assert len(restored.patterns()) == len(index.patterns())
    assert restored.timeline_keys() == index.timeline_keys()

    query = await features("backup job")
    expected = [(r.event.id, r.score) for r in index.search(query)]
    assert [(r.event.id, r.score) for r in restored.search(query)] == expected

    later = await restored.record(await features("next"))
    assert later.sequence == 13
