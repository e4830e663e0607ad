import random
import threading
from collections import defaultdict, deque

import pytest

from conftest import make_edge
from entity_resolution.config import Propagation
from entity_resolution.errors import ConfigurationError, OperationCancelled
from entity_resolution.steps.clustering import ClusteringEngine


def _membership(clusters) -> set[frozenset[str]]:
    return {frozenset(cluster.record_ids) for cluster in clusters}


def test_two_clusters_from_scenario_edges(two_cluster_edges) -> None:
    engine = ClusteringEngine(confidence_threshold=0.8, max_depth=2)

    clusters = engine.cluster(two_cluster_edges)

    assert _membership(clusters) == {frozenset({"A", "B", "C"}), frozenset({"E", "F"})}
    abc = next(cluster for cluster in clusters if "A" in cluster.record_ids)
    assert abc.cluster_id == "cluster_A"
    assert abc.metrics.direct_edges == 2
    assert abc.metrics.transitive_edges == 1
    assert abc.metrics.density == pytest.approx(2 / 3)
    assert abc.confidence == pytest.approx((0.95 + 0.88) / 2)


def test_edges_below_threshold_and_isolated_nodes_are_excluded() -> None:
    engine = ClusteringEngine(confidence_threshold=0.8)
    edges = [make_edge("A", "B", 0.9), make_edge("C", "D", 0.79), make_edge("E", "E", 0.99)]
    assert _membership(engine.cluster(edges)) == {frozenset({"A", "B"})}
    assert engine.cluster([]) == []


def test_clustering_is_idempotent() -> None:
    rng = random.Random(5)
    nodes = [f"n{i}" for i in range(60)]
    edges = [make_edge(rng.choice(nodes), rng.choice(nodes), rng.random()) for _ in range(90)]
    engine = ClusteringEngine(confidence_threshold=0.6)
    assert _membership(engine.cluster(edges)) == _membership(engine.cluster(list(edges)))


def test_connectivity_is_exact() -> None:
    rng = random.Random(9)
    nodes = [f"n{i}" for i in range(80)]
    edges = [make_edge(rng.choice(nodes), rng.choice(nodes), rng.random()) for _ in range(120)]
    threshold = 0.5
    clusters = ClusteringEngine(confidence_threshold=threshold).cluster(edges)

    cluster_of = {node: cluster.cluster_id for cluster in clusters for node in cluster.record_ids}
    assert len(cluster_of) == sum(len(cluster.record_ids) for cluster in clusters)

    adjacency = defaultdict(set)
    for edge in edges:
        if edge.confidence >= threshold and edge.source_id != edge.target_id:
            adjacency[edge.source_id].add(edge.target_id)
            adjacency[edge.target_id].add(edge.source_id)
            assert cluster_of[edge.source_id] == cluster_of[edge.target_id]

    for cluster in clusters:
        start = cluster.record_ids[0]
        reached = {start}
        queue = deque([start])
        while queue:
            for neighbor in adjacency[queue.popleft()]:
                if neighbor not in reached:
                    reached.add(neighbor)
                    queue.append(neighbor)
        assert reached == set(cluster.record_ids)


def test_parallel_partition_matches_sequential() -> None:
    rng = random.Random(21)
    nodes = [f"n{i}" for i in range(100)]
    edges = [make_edge(rng.choice(nodes), rng.choice(nodes), rng.random()) for _ in range(150)]

    sequential = ClusteringEngine(confidence_threshold=0.4).cluster(edges)
    parallel = ClusteringEngine(confidence_threshold=0.4, workers=4).cluster(edges)

    assert [cluster.record_ids for cluster in sequential] == [cluster.record_ids for cluster in parallel]
    assert [cluster.metrics for cluster in sequential] == [cluster.metrics for cluster in parallel]


def test_long_chain_does_not_recurse() -> None:
    edges = [make_edge(f"n{i:05d}", f"n{i + 1:05d}", 0.9) for i in range(5000)]
    for workers in (1, 2):
        clusters = ClusteringEngine(confidence_threshold=0.8, workers=workers).cluster(edges)
        assert len(clusters) == 1
        assert clusters[0].metrics.size == 5001


def test_propagation_uses_weakest_edge_by_default(two_cluster_edges) -> None:
    engine = ClusteringEngine(confidence_threshold=0.8, max_depth=2)

    matches = {(match.source_id, match.target_id): match for match in engine.propagate(two_cluster_edges)}

    assert matches[("A", "C")].confidence == pytest.approx(0.88)
    assert matches[("A", "C")].depth == 2
    assert matches[("A", "C")].path == ("A", "B", "C")
    assert ("C", "A") not in matches
    assert ("A", "E") not in matches
    assert {pair for pair, match in matches.items() if match.depth == 1} == {("A", "B"), ("B", "C"), ("E", "F")}


def test_product_propagation_decays(two_cluster_edges) -> None:
    engine = ClusteringEngine(confidence_threshold=0.8, max_depth=2, propagation=Propagation.PRODUCT)
    matches = {(m.source_id, m.target_id): m.confidence for m in engine.propagate(two_cluster_edges)}
    assert matches[("A", "C")] == pytest.approx(0.95 * 0.88)

    stricter = ClusteringEngine(confidence_threshold=0.85, max_depth=2, propagation="product")
    assert ("A", "C") not in {(m.source_id, m.target_id) for m in stricter.propagate(two_cluster_edges)}


def test_propagation_respects_depth_and_direct_flag(two_cluster_edges) -> None:
    shallow = ClusteringEngine(confidence_threshold=0.8, max_depth=1)
    assert all(match.depth == 1 for match in shallow.propagate(two_cluster_edges))

    transitive_only = ClusteringEngine(confidence_threshold=0.8, max_depth=2, include_direct=False)
    assert [(m.source_id, m.target_id) for m in transitive_only.propagate(two_cluster_edges)] == [("A", "C")]


def test_propagation_on_a_cycle_reports_each_pair_once() -> None:
    edges = [make_edge("A", "B", 0.9), make_edge("B", "C", 0.9), make_edge("C", "A", 0.9)]
    matches = ClusteringEngine(confidence_threshold=0.5, max_depth=3).propagate(edges)
    pairs = [frozenset((m.source_id, m.target_id)) for m in matches]
    assert len(pairs) == len(set(pairs)) == 3
    assert all(len(set(m.path)) == len(m.path) for m in matches)


def test_global_statistics(two_cluster_edges) -> None:
    engine = ClusteringEngine(confidence_threshold=0.8)
    clusters = engine.cluster(two_cluster_edges)

    stats = engine.metrics(clusters, two_cluster_edges)

    assert stats.total_clusters == 2
    assert stats.total_records == 5
    assert stats.average_cluster_size == pytest.approx(2.5)
    assert stats.largest_cluster_size == 3
    assert stats.total_direct_edges == 3
    assert stats.total_transitive_edges == 1
    assert stats.transitivity_score == pytest.approx((2 / 3 + 1.0) / 2)
    assert stats.average_confidence == pytest.approx(((0.95 + 0.88) / 2 + 0.89) / 2)
    assert stats.average_density == pytest.approx((2 / 3 + 1.0) / 2)
    assert stats.size_distribution.counts == {2: 1, 3: 1}
    assert stats.size_distribution.percentages == {2: 50.0, 3: 50.0}


def test_empty_statistics() -> None:
    stats = ClusteringEngine().metrics([], [])
    assert stats.total_clusters == 0
    assert stats.transitivity_score == 0.0


def test_invalid_settings_fail_before_traversal() -> None:
    with pytest.raises(ConfigurationError):
        ClusteringEngine(confidence_threshold=1.5)
    with pytest.raises(ConfigurationError):
        ClusteringEngine(max_depth=0)
    with pytest.raises(ConfigurationError):
        ClusteringEngine(propagation="average")


def test_cancellation_between_cluster_expansions(two_cluster_edges) -> None:
    cancel = threading.Event()
    engine = ClusteringEngine(confidence_threshold=0.8, cancel_event=cancel)
    assert engine.cluster(two_cluster_edges)

    cancel.set()
    with pytest.raises(OperationCancelled):
        engine.cluster(two_cluster_edges)
    with pytest.raises(OperationCancelled):
        engine.propagate(two_cluster_edges)
