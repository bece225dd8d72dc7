"""Tests for temporal pattern detectors."""

from datetime import timedelta

from conftest import START

from strata.core.types import SemanticFeatures
from strata.memory.events import Event
from strata.memory.patterns import (
    PatternType,
    compare_sequences,
    detect_frequency,
    detect_recurring,
    detect_sequential,
)


def make_event(n: int, concepts: list[str], offset: timedelta = timedelta()) -> Event:
    text = " ".join(concepts)
    return Event(
        id=f"e{n}",
        text=text,
        features=SemanticFeatures(text=text, concepts=concepts),
        timestamp=START + offset,
        sequence=n,
        timeline="test",
    )


def test_recurring_equal_intervals():
    """Similar events at a fixed interval give a full-confidence pattern."""
    recent = [make_event(n, ["backup", "job"], timedelta(hours=n)) for n in range(3)]
    pattern = detect_recurring(recent[-1], recent, START)

    assert pattern is not None
    assert pattern.type is PatternType.RECURRING
    assert pattern.confidence == 1.0
    assert pattern.event_ids == ["e0", "e1", "e2"]
    assert pattern.signature == "recurring:backup|job"
    assert pattern.details["average_interval_seconds"] == 3600


def test_recurring_needs_two_prior_matches():
    recent = [
        make_event(0, ["backup", "job"]),
        make_event(1, ["lunch"], timedelta(hours=1)),
        make_event(2, ["backup", "job"], timedelta(hours=2)),
    ]
    assert detect_recurring(recent[-1], recent, START) is None


def test_recurring_rejects_irregular_intervals():
    offsets = [timedelta(0), timedelta(minutes=10), timedelta(hours=3)]
    recent = [make_event(n, ["backup"], offset) for n, offset in enumerate(offsets)]
    assert detect_recurring(recent[-1], recent, START) is None


def test_compare_sequences():
    """Mean per-position Jaccard, zero for mismatched lengths."""
    assert compare_sequences([{"a"}, {"b"}], [{"a"}, {"b"}]) == 1.0
    assert compare_sequences([{"a"}, {"b"}], [{"a"}, {"c"}]) == 0.5
    assert compare_sequences([{"a"}], [{"a"}, {"b"}]) == 0.0
    assert compare_sequences([], []) == 0.0


def test_sequential_repeat_detected():
    """A three-step run that repeats is reported once when it completes."""
    steps = [["wake"], ["coffee"], ["email"]] * 2
    recent = [make_event(n, c, timedelta(minutes=n)) for n, c in enumerate(steps)]

    patterns = detect_sequential(recent, START)
    assert len(patterns) == 1
    assert patterns[0].type is PatternType.SEQUENTIAL
    assert patterns[0].confidence == 1.0
    assert patterns[0].event_ids == ["e0", "e1", "e2", "e3", "e4", "e5"]
    assert patterns[0].concepts == ["coffee", "email", "wake"]


def test_sequential_needs_two_full_windows():
    steps = [["wake"], ["coffee"], ["email"], ["wake"], ["coffee"]]
    recent = [make_event(n, c) for n, c in enumerate(steps)]
    assert detect_sequential(recent, START) == []


def test_sequential_dissimilar_runs_ignored():
    steps = [["wake"], ["coffee"], ["email"], ["gym"], ["lunch"], ["nap"]]
    recent = [make_event(n, c) for n, c in enumerate(steps)]
    assert detect_sequential(recent, START) == []


def test_frequency_increase():
    """A burst in the last day against a slow history is flagged."""
    base = timedelta(days=10)
    history = [
        make_event(0, ["deploy"]),
        make_event(1, ["deploy"], timedelta(days=5)),
        make_event(2, ["deploy"], base - timedelta(hours=3)),
        make_event(3, ["deploy"], base - timedelta(hours=2)),
        make_event(4, ["deploy"], base - timedelta(hours=1)),
    ]
    new_event = make_event(5, ["deploy"], base)
    history.append(new_event)

    pattern = detect_frequency(new_event, history, START + base)
    assert pattern is not None
    assert pattern.type is PatternType.FREQUENCY
    assert pattern.details["direction"] == "increase"
    assert pattern.details["historical_rate"] == 0.2
    assert pattern.details["current_rate"] == 3.0
    assert 0.0 < pattern.confidence <= 1.0


def test_frequency_steady_rate_not_flagged():
    base = timedelta(days=10)
    history = [make_event(n, ["deploy"], base - timedelta(days=n + 1)) for n in range(10)]
    history.append(make_event(10, ["deploy"], base - timedelta(hours=1)))
    new_event = make_event(11, ["deploy"], base)
    history.append(new_event)

    assert detect_frequency(new_event, history, START + base) is None


def test_frequency_needs_history():
    """Without events older than a day there is no baseline."""
    events = [make_event(n, ["deploy"], timedelta(hours=n)) for n in range(5)]
    assert detect_frequency(events[-1], events, START) is None
