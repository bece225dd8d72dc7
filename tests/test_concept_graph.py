"""Tests for the concept graph."""

from datetime import timedelta

import pytest

from strata.core.config import ConceptConfig
from strata.memory.concepts import ConceptGraph, edge_key


@pytest.fixture
def graph(clock):
    return ConceptGraph(ConceptConfig(), clock=clock)


def test_edge_key_is_order_independent():
    """Both orderings map to the same lexicographic key."""
    assert edge_key("model", "ai") == edge_key("ai", "model") == ("ai", "model")


@pytest.mark.asyncio
async def test_frequency_counts_ingestions(graph):
    """Frequency equals the number of ingestions mentioning the concept."""
    await graph.process(["ai", "model"], "first")
    await graph.process(["ai", "ai", "data"], "second")
    await graph.process(["model"], "third")

    assert graph.get("ai").frequency == 2
    assert graph.get("model").frequency == 2
    assert graph.get("data").frequency == 1


@pytest.mark.asyncio
async def test_ingest_deduplicates_in_order(graph):
    """Duplicates and empty names are dropped, first-seen order kept."""
    batch = await graph.ingest(["b", "a", "b", "", "c"])
    assert batch == ["b", "a", "c"]


@pytest.mark.asyncio
async def test_edge_weights_are_symmetric(graph):
    """Weight counts co-occurring ingestions and ignores argument order."""
    await graph.process(["ai", "model", "new"])
    await graph.process(["model", "ai"])
    await graph.process(["ai", "slow"])

    assert graph.weight("ai", "model") == 2
    assert graph.weight("model", "ai") == 2
    assert graph.weight("ai", "slow") == 1
    assert graph.weight("model", "slow") == 0
    assert "model" in graph.neighbors("ai")
    assert "ai" in graph.neighbors("model")


@pytest.mark.asyncio
async def test_snippets_keep_most_recent(graph):
    """Each concept keeps its ten most recent source texts."""
    for n in range(12):
        await graph.process(["topic"], f"text {n}")
    snippets = list(graph.get("topic").snippets)
    assert len(snippets) == 10
    assert snippets[-1] == "text 11"
    assert "text 0" not in snippets


@pytest.mark.asyncio
async def test_search_scores(graph):
    """Exact match plus half a point per connected query concept."""
    await graph.process(["ai", "model"])
    await graph.process(["love", "ai"])

    results = {r.concept.name: r for r in graph.search(["ai", "model"])}
    assert results["ai"].similarity == pytest.approx(1.5)
    assert results["model"].similarity == pytest.approx(1.5)
    assert "love" not in results  # 0.5 is under the default threshold
    assert results["ai"].relevance == pytest.approx(22.5)


@pytest.mark.asyncio
async def test_search_empty_query(graph):
    await graph.process(["ai"])
    assert graph.search([]) == []


@pytest.mark.asyncio
async def test_capacity_evicts_lowest_frequency_outside_batch(clock):
    """Eviction removes rare concepts and cascades their edges, never the new batch."""
    graph = ConceptGraph(ConceptConfig(max_concepts=10), clock=clock)
    for _ in range(3):
        await graph.process([f"common{n}" for n in range(5)])
    for n in range(5):
        clock.advance(timedelta(seconds=1))
        await graph.process([f"rare{n}", "common0"])

    await graph.process(["newcomer", "rare4"])

    assert graph.size() <= 10
    assert "newcomer" in graph
    assert "rare4" in graph
    assert "rare0" not in graph
    assert graph.weight("rare0", "common0") == 0
    assert "rare0" not in graph.neighbors("common0")


@pytest.mark.asyncio
async def test_clusters_form_past_cluster_size(clock):
    """A cluster of the best-connected concepts is built once the graph is large enough."""
    graph = ConceptGraph(ConceptConfig(cluster_size=3), clock=clock)
    await graph.process(["a", "b", "c"])
    assert graph.clusters == []

    await graph.process(["a", "b", "d"])
    clusters = graph.clusters
    assert len(clusters) == 1
    assert set(clusters[0].concepts) == {"a", "b", "c"} or set(clusters[0].concepts) == {"a", "b", "d"}
    assert clusters[0].strength > 0


@pytest.mark.asyncio
async def test_same_membership_refreshes_cluster(clock):
    """Re-clustering with unchanged members updates the newest cluster in place."""
    graph = ConceptGraph(ConceptConfig(cluster_size=2), clock=clock)
    await graph.process(["a", "b", "c"])
    first = graph.clusters
    await graph.process(["a", "b"])
    second = graph.clusters

    assert len(second) == len(first)
    assert second[-1].id == first[-1].id
    assert second[-1].strength == pytest.approx(2.0)


@pytest.mark.asyncio
async def test_consolidate_removes_stale_rare_concepts(graph, clock):
    """Rare concepts unseen for a week go, with their edges and cluster entries."""
    await graph.process(["rare", "popular"])
    await graph.process(["popular"])
    clock.advance(timedelta(days=8))
    await graph.process(["fresh"])

    report = await graph.consolidate()
    assert "rare" not in graph
    assert "popular" in graph
    assert "fresh" in graph
    assert report.removed == 1
    assert report.details["edges_removed"] == 1
    assert graph.neighbors("popular") == set()


@pytest.mark.asyncio
async def test_consolidate_recomputes_pruned_cluster_strength(clock):
    """Dropping a cluster member rescales its strength over the surviving edges."""
    graph = ConceptGraph(ConceptConfig(cluster_size=3), clock=clock)
    await graph.process(["a", "b", "r"])
    await graph.process(["a", "b"])
    await graph.process(["x"])
    assert graph.clusters[-1].concepts == ["a", "b", "r"]

    clock.advance(timedelta(days=8))
    await graph.process(["a", "b"])
    assert graph.clusters[-1].strength == pytest.approx(5 / 3)

    await graph.consolidate()
    cluster = graph.clusters[-1]
    assert cluster.concepts == ["a", "b"]
    assert graph.weight("a", "b") == 3
    assert cluster.strength == pytest.approx(3.0)


@pytest.mark.asyncio
async def test_consolidate_is_idempotent(graph, clock):
    await graph.process(["x", "y"])
    clock.advance(timedelta(days=8))

    first = await graph.consolidate()
    second = await graph.consolidate()
    assert first.removed == 2
    assert second.removed == 0
    assert second.details["edges_removed"] == 0


@pytest.mark.asyncio
async def test_consolidate_trims_stale_snippets(graph, clock):
    """Stale low-frequency concepts keep only their three latest snippets."""
    for n in range(4):
        await graph.process(["quiet"], f"mention {n}")
    clock.advance(timedelta(days=8))

    report = await graph.consolidate()
    assert "quiet" in graph
    assert list(graph.get("quiet").snippets) == ["mention 1", "mention 2", "mention 3"]
    assert report.details["snippets_trimmed"] == 1


@pytest.mark.asyncio
async def test_export_import_round_trip(graph, clock):
    """Restored graph keeps weights, adjacency and search results."""
    await graph.process(["ai", "model"], "one")
    await graph.process(["ai", "model", "data"], "two")

    restored = ConceptGraph(ConceptConfig(), clock=clock)
    await restored.import_state(graph.export_state())

    assert restored.weight("model", "ai") == 2
    assert restored.neighbors("data") == {"ai", "model"}
    assert restored.edge_count == graph.edge_count
    expected = [(r.concept.name, r.similarity) for r in graph.search(["ai"])]
    assert [(r.concept.name, r.similarity) for r in restored.search(["ai"])] == expected
