"""Tests for engine metrics."""

from conftest import START

from strata.memory.metrics import EngineMetrics


def test_average_response():
    metrics = EngineMetrics()
    assert metrics.average_response_ms == 0.0

    metrics.record_response(10.0)
    metrics.record_response(30.0)
    assert metrics.average_response_ms == 20.0


def test_cache_hit_rate():
    metrics = EngineMetrics(cache_hits=3, cache_misses=1)
    assert metrics.cache_hit_rate == 0.75
    assert EngineMetrics().cache_hit_rate == 0.0


def test_round_trip():
    """Counters survive a snapshot."""
    metrics = EngineMetrics(ingests=5, retrievals=2, last_consolidation=START)
    metrics.record_response(12.5)

    restored = EngineMetrics.from_dict(metrics.to_dict())
    assert restored == metrics
    assert restored.average_response_ms == 12.5
