from __future__ import annotations

import logging
import threading
import time
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field, replace

from entity_resolution.config import ResolutionConfig
from entity_resolution.errors import DegenerateBlockingError
from entity_resolution.interfaces import RecordCleaner, RecordSource, TextEmbedder
from entity_resolution.models import (
    Cluster,
    ClusteringStatistics,
    MatchEdge,
    MatchQuality,
    Record,
    SkippedRecord,
    TransitiveMatch,
)
from entity_resolution.schema import RecordSchema
from entity_resolution.steps.blocking import BlockingEngine, StrategyTable
from entity_resolution.steps.cleanup import FunctionalCleaner
from entity_resolution.steps.clustering import ClusteringEngine
from entity_resolution.steps.comparators import ComparatorTable
from entity_resolution.steps.scoring import SimilarityEngine, records_by_id

logger = logging.getLogger(__name__)

SOURCE_PREFIX = "source:"
TARGET_PREFIX = "target:"


@dataclass
class ResolutionResult:
    edges: list[MatchEdge]
    clusters: list[Cluster]
    statistics: ClusteringStatistics
    transitive_matches: list[TransitiveMatch]
    quality: MatchQuality
    candidate_count: int = 0
    skipped: list[SkippedRecord] = field(default_factory=list)


class LocalResolutionPipeline:
    """Runs blocking, scoring and clustering in-process over two record populations.

    Engines are built (and their configuration validated) in the constructor,
    so a bad config fails before any record is read.
    """

    def __init__(
        self,
        config: ResolutionConfig,
        source_schema: RecordSchema,
        target_schema: RecordSchema,
        source_cleaner: RecordCleaner | None = None,
        target_cleaner: RecordCleaner | None = None,
        embedder: TextEmbedder | None = None,
        cancel_event: threading.Event | None = None,
        strategy_table: StrategyTable | None = None,
        comparator_table: ComparatorTable | None = None,
    ) -> None:
        self._source_schema = source_schema
        self._target_schema = target_schema
        self._source_cleaner = source_cleaner or FunctionalCleaner(source_schema)
        self._target_cleaner = target_cleaner or FunctionalCleaner(target_schema)
        self._blocking = BlockingEngine(
            config.blocking_strategies,
            table=strategy_table or StrategyTable.default(embedder),
            workers=config.workers,
            max_candidates_per_record=config.max_candidates_per_record,
        )
        self._similarity = SimilarityEngine(config, table=comparator_table)
        self._clustering = ClusteringEngine.from_config(config, cancel_event=cancel_event)
        self._similarity.weights_for(source_schema, target_schema)
        self._blocking.require_blockable(source_schema, target_schema)

    def run(self, source: Sequence[Record], target: Sequence[Record]) -> ResolutionResult:
        return self.run_batches([source], target)

    def run_source(self, source: RecordSource, target: Sequence[Record], batch_size: int = 1000) -> ResolutionResult:
        return self.run_batches(source.batches(batch_size), target)

    def run_batches(self, source_batches: Iterable[Sequence[Record]], target: Sequence[Record]) -> ResolutionResult:
        """Index the target side once, then stream source batches against it."""
        started = time.perf_counter()
        cleaned_target = self._target_cleaner.clean(target)
        index = self._blocking.index_targets(cleaned_target, self._target_schema, self._source_schema)
        if cleaned_target and index.key_count == 0:
            raise DegenerateBlockingError("No blocking keys could be derived for any target record")
        target_lookup = records_by_id(cleaned_target)

        edges: list[MatchEdge] = []
        skipped: list[SkippedRecord] = list(index.skipped)
        candidate_count = 0
        source_count = 0
        source_key_count = 0
        for batch in source_batches:
            cleaned = self._source_cleaner.clean(batch)
            source_count += len(cleaned)
            pairs, batch_skipped, key_count = self._blocking.match_sources(cleaned, self._source_schema, index)
            skipped.extend(batch_skipped)
            source_key_count += key_count
            candidate_count += len(pairs)
            scored = self._similarity.score_candidates(
                pairs, cleaned, target_lookup, self._source_schema, self._target_schema
            )
            edges.extend(scored.edges)
            skipped.extend(scored.skipped)

        if source_count and source_key_count == 0:
            raise DegenerateBlockingError("No blocking keys could be derived for any source record")
        logger.info(
            f"Blocking produced {candidate_count} candidate pairs from {source_count} x {len(cleaned_target)} records",
            extra={"stage": "blocking", "count": candidate_count},
        )

        graph_edges = side_qualified(edges)
        clusters = self._clustering.cluster(graph_edges)
        result = ResolutionResult(
            edges=edges,
            clusters=clusters,
            statistics=self._clustering.metrics(clusters, graph_edges),
            transitive_matches=self._clustering.propagate(graph_edges),
            quality=self._similarity.match_quality(edges),
            candidate_count=candidate_count,
            skipped=skipped,
        )
        duration_ms = round((time.perf_counter() - started) * 1000, 1)
        logger.info(
            f"Resolved {len(edges)} edges into {len(clusters)} clusters "
            f"({len(skipped)} skipped) in {duration_ms} ms",
            extra={"stage": "pipeline", "count": len(clusters), "duration_ms": duration_ms},
        )
        return result


def side_qualified(edges: Sequence[MatchEdge]) -> Sequence[MatchEdge]:
    """Edges whose node ids cannot collide across the two collections.

    Source and target ids live in separate namespaces. When any id appears on
    both sides, every node is prefixed with ``source:`` or ``target:`` so that
    source ``1`` and target ``1`` stay distinct graph nodes.
    """
    source_ids = {edge.source_id for edge in edges}
    if source_ids.isdisjoint(edge.target_id for edge in edges):
        return edges
    logger.info(
        "Source and target ids overlap; cluster members are prefixed with their side",
        extra={"stage": "clustering"},
    )
    return [
        replace(
            edge,
            source_id=f"{SOURCE_PREFIX}{edge.source_id}",
            target_id=f"{TARGET_PREFIX}{edge.target_id}",
        )
        for edge in edges
    ]
