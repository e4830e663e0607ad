"""
Similarity scoring: per-field comparison plus weighted aggregation into a tier.

Only semantic types mapped on both sides take part in a pair's confidence.
Types missing from either mapping are left out of the numerator and the
denominator alike.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any

from entity_resolution.config import ResolutionConfig, Thresholds, check_weight
from entity_resolution.errors import ConfigurationError, InputError
from entity_resolution.models import (
    CandidatePair,
    FieldScore,
    MatchEdge,
    MatchQuality,
    MatchTier,
    Record,
    ScoreResult,
    SkippedRecord,
)
from entity_resolution.schema import RecordSchema, SemanticType, parse_semantic_type
from entity_resolution.steps.comparators import DEFAULT_COMPARATORS, BoundComparator, ComparatorTable

logger = logging.getLogger(__name__)

_FALLBACK_COMPARATOR = DEFAULT_COMPARATORS[SemanticType.FIRST_NAME]


@dataclass
class ScoringResult:
    edges: list[MatchEdge] = field(default_factory=list)
    skipped: list[SkippedRecord] = field(default_factory=list)
    compared: int = 0


class SimilarityEngine:
    def __init__(self, config: ResolutionConfig | None = None, table: ComparatorTable | None = None) -> None:
        self._config = config or ResolutionConfig()
        table = table or ComparatorTable.default()
        self._comparators: dict[SemanticType, BoundComparator] = {}
        for semantic_type in SemanticType:
            spec = self._config.comparators.get(semantic_type) or DEFAULT_COMPARATORS.get(
                semantic_type, _FALLBACK_COMPARATOR
            )
            self._comparators[semantic_type] = table.bind(spec)

    @property
    def thresholds(self) -> Thresholds:
        return self._config.thresholds

    def weights_for(self, source_schema: RecordSchema, target_schema: RecordSchema) -> dict[SemanticType, float]:
        """Weights for every type mapped on both sides. A missing weight is a configuration error."""
        weights: dict[SemanticType, float] = {}
        for semantic_type in source_schema.shared_types(target_schema):
            if semantic_type not in self._config.field_weights:
                raise ConfigurationError(
                    f"No weight configured for shared semantic type {semantic_type.value!r}",
                    config_key=f"fieldWeights.{semantic_type.value}",
                )
            weights[semantic_type] = self._config.field_weights[semantic_type]
        return weights

    def score_field(
        self,
        value1: Any,
        value2: Any,
        semantic_type: SemanticType | str,
        weight: float | None = None,
    ) -> FieldScore:
        semantic_type = parse_semantic_type(semantic_type)
        if weight is None:
            weight = self._config.field_weights.get(semantic_type, 0.0)
        check_weight(weight, f"fieldWeights.{semantic_type.value}")
        score = self._comparators[semantic_type](value1, value2)
        if score is None or not math.isfinite(score):
            raise InputError(f"Comparator for {semantic_type.value} returned {score!r}")
        return FieldScore(semantic_type=semantic_type.value, score=min(1.0, max(0.0, float(score))), weight=weight)

    def score(self, field_scores: Sequence[FieldScore]) -> ScoreResult:
        total_weight = sum(item.weight for item in field_scores)
        if total_weight <= 0:
            confidence = 0.0
        else:
            confidence = sum(item.score * item.weight for item in field_scores) / total_weight
            confidence = min(1.0, max(0.0, confidence))
        return ScoreResult(confidence=confidence, tier=self._config.thresholds.classify(confidence))

    def compare(
        self,
        source: Record,
        target: Record,
        source_schema: RecordSchema,
        target_schema: RecordSchema,
        weights: Mapping[SemanticType, float] | None = None,
    ) -> MatchEdge | None:
        """Score one pair. Returns None when confidence falls below the low threshold."""
        if weights is None:
            weights = self.weights_for(source_schema, target_schema)
        source_values = source_schema.values(source)
        target_values = target_schema.values(target)
        field_scores = [
            self.score_field(source_values[semantic_type], target_values[semantic_type], semantic_type, weight)
            for semantic_type, weight in weights.items()
        ]
        result = self.score(field_scores)
        if result.tier is MatchTier.NO_MATCH:
            return None
        return MatchEdge(
            source_id=source.record_id,
            target_id=target.record_id,
            confidence=result.confidence,
            tier=result.tier,
            field_scores={item.semantic_type: item.score for item in field_scores},
        )

    def score_candidates(
        self,
        pairs: Sequence[CandidatePair],
        source_records: Sequence[Record],
        target_records: Sequence[Record] | Mapping[str, Record],
        source_schema: RecordSchema,
        target_schema: RecordSchema,
    ) -> ScoringResult:
        """Score every candidate pair, skipping pairs whose comparison fails.

        ``target_records`` may be a prebuilt ``records_by_id`` lookup, so a caller
        streaming many source batches against one target side indexes it once.
        """
        weights = self.weights_for(source_schema, target_schema)
        sources = records_by_id(source_records)
        targets = target_records if isinstance(target_records, Mapping) else records_by_id(target_records)

        def _score(pair: CandidatePair) -> MatchEdge | SkippedRecord | None:
            try:
                return self.compare(
                    sources[pair.source_id], targets[pair.target_id], source_schema, target_schema, weights
                )
            except (InputError, KeyError, TypeError, ValueError) as exc:
                pair_id = f"{pair.source_id}->{pair.target_id}"
                logger.warning(f"Skipping pair {pair_id}: {exc}", extra={"record_id": pair_id, "stage": "scoring"})
                return SkippedRecord(record_id=pair_id, stage="scoring", reason=str(exc))

        if self._config.workers > 1 and len(pairs) > 1:
            with ThreadPoolExecutor(max_workers=self._config.workers) as pool:
                outcomes = list(pool.map(_score, pairs))
        else:
            outcomes = [_score(pair) for pair in pairs]

        result = ScoringResult(compared=len(pairs))
        for outcome in outcomes:
            if isinstance(outcome, MatchEdge):
                result.edges.append(outcome)
            elif isinstance(outcome, SkippedRecord):
                result.skipped.append(outcome)
        logger.info(
            f"Scored {len(pairs)} candidate pairs, kept {len(result.edges)} edges",
            extra={"stage": "scoring", "count": len(result.edges)},
        )
        return result

    @staticmethod
    def match_quality(edges: Sequence[MatchEdge]) -> MatchQuality:
        total = len(edges)
        if total == 0:
            return MatchQuality(total_matches=0, high_rate=0.0, medium_rate=0.0, low_rate=0.0, average_confidence=0.0)
        tiers = [edge.tier for edge in edges]
        return MatchQuality(
            total_matches=total,
            high_rate=tiers.count(MatchTier.HIGH) / total,
            medium_rate=tiers.count(MatchTier.MEDIUM) / total,
            low_rate=tiers.count(MatchTier.LOW) / total,
            average_confidence=sum(edge.confidence for edge in edges) / total,
        )


def records_by_id(records: Sequence[Record]) -> dict[str, Record]:
    """First record per id; records without an id are left out."""
    indexed: dict[str, Record] = {}
    for record in records:
        record_id = getattr(record, "record_id", None)
        if record_id and record_id not in indexed:
            indexed[record_id] = record
    return indexed
