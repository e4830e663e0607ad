"""
Clustering over accepted match edges.

Edges with ``confidence >= confidence_threshold`` are accepted and treated as
undirected. ``cluster`` partitions every node touched by an accepted edge into
connected components; ``propagate`` separately derives multi-hop matches up to
``max_depth`` hops. Both traversals use explicit stacks, so long chains never
hit the recursion limit.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter, defaultdict
from collections.abc import Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor

from entity_resolution.config import Propagation, ResolutionConfig, check_depth, check_threshold
from entity_resolution.errors import ConfigurationError, OperationCancelled
from entity_resolution.models import (
    Cluster,
    ClusteringStatistics,
    ClusterMetrics,
    MatchEdge,
    SizeDistribution,
    TransitiveMatch,
)

logger = logging.getLogger(__name__)

# Unordered pair -> highest confidence among the edges joining it.
EdgeIndex = dict[frozenset[str], float]


class ClusteringEngine:
    def __init__(
        self,
        confidence_threshold: float = 0.7,
        max_depth: int = 3,
        propagation: Propagation | str = Propagation.MIN,
        include_direct: bool = True,
        workers: int = 1,
        cancel_event: threading.Event | None = None,
    ) -> None:
        check_threshold(confidence_threshold, "transitiveThreshold")
        check_depth(max_depth)
        try:
            propagation = Propagation(propagation)
        except ValueError:
            raise ConfigurationError(f"Unknown propagation {propagation!r}", config_key="propagation") from None
        if isinstance(workers, bool) or not isinstance(workers, int) or workers < 1:
            raise ConfigurationError("workers must be an integer >= 1", config_key="workers")
        self._threshold = confidence_threshold
        self._max_depth = max_depth
        self._propagation = propagation
        self._include_direct = include_direct
        self._workers = workers
        self._cancel_event = cancel_event

    @classmethod
    def from_config(cls, config: ResolutionConfig, cancel_event: threading.Event | None = None) -> "ClusteringEngine":
        return cls(
            confidence_threshold=config.transitive_threshold,
            max_depth=config.max_transitive_depth,
            propagation=config.propagation,
            workers=config.workers,
            cancel_event=cancel_event,
        )

    @property
    def confidence_threshold(self) -> float:
        return self._threshold

    def cluster(self, edges: Sequence[MatchEdge]) -> list[Cluster]:
        """Connected components over accepted edges, sorted by cluster id.

        Nodes without an accepted edge do not appear in any cluster.
        """
        accepted = self.accepted_edges(edges)
        if not accepted:
            return []

        adjacency = _adjacency(accepted)
        if self._workers > 1:
            components = _UnionFind.partition(accepted)
            with ThreadPoolExecutor(max_workers=self._workers) as pool:
                clusters = list(pool.map(lambda members: self._build_cluster(members, adjacency), components))
        else:
            clusters = [self._build_cluster(members, adjacency) for members in self._components(adjacency)]

        clusters.sort(key=lambda cluster: cluster.cluster_id)
        logger.info(
            f"Built {len(clusters)} clusters from {len(accepted)} accepted edges",
            extra={"stage": "clustering", "count": len(clusters)},
        )
        return clusters

    def accepted_edges(self, edges: Iterable[MatchEdge]) -> EdgeIndex:
        accepted: EdgeIndex = {}
        for edge in edges:
            if edge.confidence < self._threshold or edge.source_id == edge.target_id:
                continue
            key = frozenset((edge.source_id, edge.target_id))
            accepted[key] = max(edge.confidence, accepted.get(key, 0.0))
        return accepted

    def propagate(self, edges: Sequence[MatchEdge]) -> list[TransitiveMatch]:
        """Matches reachable within ``max_depth`` accepted hops.

        A path never revisits one of its own nodes and stops once its composed
        confidence drops below the threshold. Each unordered pair is reported
        once, with the first path found.
        """
        adjacency = _adjacency(self.accepted_edges(edges))
        seen: set[frozenset[str]] = set()
        matches: list[TransitiveMatch] = []

        for start in sorted(adjacency):
            self._check_cancelled()
            stack: list[tuple[str, float | None, tuple[str, ...]]] = [(start, None, (start,))]
            while stack:
                node, confidence, path = stack.pop()
                hops = len(path)
                pending = []
                for neighbor, edge_confidence in adjacency[node].items():
                    if neighbor in path:
                        continue
                    composed = self._compose(confidence, edge_confidence)
                    if composed < self._threshold:
                        continue
                    extended = (*path, neighbor)
                    pair = frozenset((start, neighbor))
                    if pair not in seen:
                        seen.add(pair)
                        matches.append(
                            TransitiveMatch(
                                source_id=start, target_id=neighbor, confidence=composed, depth=hops, path=extended
                            )
                        )
                    if hops < self._max_depth:
                        pending.append((neighbor, composed, extended))
                stack.extend(reversed(pending))

        if not self._include_direct:
            matches = [match for match in matches if match.depth > 1]
        logger.info(
            f"Propagated {len(matches)} matches up to depth {self._max_depth}",
            extra={"stage": "propagation", "count": len(matches)},
        )
        return matches

    def metrics(self, clusters: Sequence[Cluster], edges: Sequence[MatchEdge]) -> ClusteringStatistics:
        """Global statistics, with per-cluster metrics recomputed from ``edges``."""
        adjacency = _adjacency(self.accepted_edges(edges))
        per_cluster = [_cluster_metrics(cluster.record_ids, adjacency) for cluster in clusters]
        total = len(per_cluster)
        if total == 0:
            return ClusteringStatistics(
                total_clusters=0,
                total_records=0,
                average_cluster_size=0.0,
                largest_cluster_size=0,
                average_density=0.0,
                average_confidence=0.0,
                total_direct_edges=0,
                total_transitive_edges=0,
                transitivity_score=0.0,
                size_distribution=SizeDistribution(),
            )

        sizes = [metrics.size for metrics in per_cluster]
        with_edges = [metrics for metrics in per_cluster if metrics.direct_edges > 0]
        transitivity = (
            sum(m.direct_edges / (m.direct_edges + m.transitive_edges) for m in with_edges) / len(with_edges)
            if with_edges
            else 0.0
        )
        counts = dict(sorted(Counter(sizes).items()))
        return ClusteringStatistics(
            total_clusters=total,
            total_records=sum(sizes),
            average_cluster_size=sum(sizes) / total,
            largest_cluster_size=max(sizes),
            average_density=sum(m.density for m in per_cluster) / total,
            average_confidence=sum(m.average_confidence for m in per_cluster) / total,
            total_direct_edges=sum(m.direct_edges for m in per_cluster),
            total_transitive_edges=sum(m.transitive_edges for m in per_cluster),
            transitivity_score=transitivity,
            size_distribution=SizeDistribution(
                counts=counts,
                percentages={size: count / total * 100.0 for size, count in counts.items()},
            ),
        )

    def _components(self, adjacency: dict[str, dict[str, float]]) -> list[list[str]]:
        visited: set[str] = set()
        components: list[list[str]] = []
        for node in adjacency:
            if node in visited:
                continue
            self._check_cancelled()
            visited.add(node)
            stack = [node]
            members: list[str] = []
            while stack:
                current = stack.pop()
                members.append(current)
                for neighbor in adjacency[current]:
                    if neighbor not in visited:
                        visited.add(neighbor)
                        stack.append(neighbor)
            components.append(members)
        return components

    def _build_cluster(self, members: Sequence[str], adjacency: dict[str, dict[str, float]]) -> Cluster:
        self._check_cancelled()
        record_ids = sorted(members)
        return Cluster(
            cluster_id=f"cluster_{record_ids[0]}",
            record_ids=record_ids,
            metrics=_cluster_metrics(record_ids, adjacency),
        )

    def _compose(self, confidence: float | None, edge_confidence: float) -> float:
        if confidence is None:
            return edge_confidence
        if self._propagation is Propagation.PRODUCT:
            return confidence * edge_confidence
        return min(confidence, edge_confidence)

    def _check_cancelled(self) -> None:
        if self._cancel_event is not None and self._cancel_event.is_set():
            raise OperationCancelled("Clustering cancelled")


def _adjacency(accepted: EdgeIndex) -> dict[str, dict[str, float]]:
    adjacency: dict[str, dict[str, float]] = defaultdict(dict)
    for pair, confidence in accepted.items():
        left, right = sorted(pair)
        adjacency[left][right] = confidence
        adjacency[right][left] = confidence
    return {node: dict(sorted(neighbors.items())) for node, neighbors in adjacency.items()}


def _cluster_metrics(members: Sequence[str], adjacency: dict[str, dict[str, float]]) -> ClusterMetrics:
    member_set = set(members)
    size = len(member_set)
    confidences = [
        confidence
        for node in member_set
        for neighbor, confidence in adjacency.get(node, {}).items()
        if node < neighbor and neighbor in member_set
    ]
    direct = len(confidences)
    possible = size * (size - 1) // 2
    return ClusterMetrics(
        size=size,
        density=min(size - 1, possible) / possible if possible else 1.0,
        average_confidence=sum(confidences) / direct if direct else 0.0,
        direct_edges=direct,
        transitive_edges=max(0, possible - direct),
    )


class _UnionFind:
    def __init__(self) -> None:
        self._parent: dict[str, str] = {}

    @classmethod
    def partition(cls, accepted: EdgeIndex) -> list[list[str]]:
        uf = cls()
        for pair in accepted:
            left, right = sorted(pair)
            uf.union(left, right)
        return list(uf.groups().values())

    def find(self, item: str) -> str:
        root = self._parent.setdefault(item, item)
        while self._parent[root] != root:
            root = self._parent[root]
        while self._parent[item] != root:
            self._parent[item], item = root, self._parent[item]
        return root

    def union(self, left: str, right: str) -> None:
        root_left = self.find(left)
        root_right = self.find(right)
        if root_left != root_right:
            self._parent[root_right] = root_left

    def groups(self) -> dict[str, list[str]]:
        grouped: dict[str, list[str]] = defaultdict(list)
        for item in list(self._parent):
            grouped[self.find(item)].append(item)
        return grouped
