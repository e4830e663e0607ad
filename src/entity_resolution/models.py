from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class MatchTier(StrEnum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    NO_MATCH = "NO_MATCH"


@dataclass(slots=True)
class Record:
    """One row from either side of the comparison, keyed by raw column name."""

    record_id: str
    attributes: dict[str, Any]


@dataclass(frozen=True, slots=True)
class StrategySpec:
    """Named algorithm plus its parameters, e.g. ``prefix(length=3)``.

    Used for both blocking strategies and field comparators.
    """

    name: str
    params: tuple[tuple[str, Any], ...] = ()

    @classmethod
    def of(cls, name: str, **params: Any) -> "StrategySpec":
        return cls(name=name, params=tuple(sorted(params.items())))

    @property
    def kwargs(self) -> dict[str, Any]:
        return dict(self.params)

    @property
    def label(self) -> str:
        if not self.params:
            return self.name
        args = ",".join(f"{key}={_format_param(value)}" for key, value in self.params)
        return f"{self.name}({args})"


def _format_param(value: Any) -> str:
    if isinstance(value, StrategySpec):
        return value.label
    if isinstance(value, (tuple, list)):
        return "[" + "+".join(_format_param(item) for item in value) + "]"
    return str(value)


@dataclass(frozen=True, slots=True)
class BlockingKey:
    record_id: str
    semantic_type: str
    strategy: str
    value: str


@dataclass(slots=True)
class CandidatePair:
    """Source/target pair sharing at least one blocking key."""

    source_id: str
    target_id: str
    block_weight: int = 1


@dataclass(frozen=True, slots=True)
class FieldScore:
    semantic_type: str
    score: float
    weight: float = 1.0


@dataclass(frozen=True, slots=True)
class ScoreResult:
    confidence: float
    tier: MatchTier


@dataclass(slots=True)
class MatchEdge:
    """Accepted pairwise match. Directed in storage, undirected for connectivity."""

    source_id: str
    target_id: str
    confidence: float
    tier: MatchTier
    field_scores: dict[str, float] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class TransitiveMatch:
    source_id: str
    target_id: str
    confidence: float
    depth: int
    path: tuple[str, ...]


@dataclass(slots=True)
class ClusterMetrics:
    size: int
    density: float
    average_confidence: float
    direct_edges: int
    transitive_edges: int


@dataclass(slots=True)
class Cluster:
    """A connected group of record ids that likely refer to the same entity."""

    cluster_id: str
    record_ids: list[str]
    metrics: ClusterMetrics

    @property
    def confidence(self) -> float:
        return self.metrics.average_confidence


@dataclass(slots=True)
class SizeDistribution:
    counts: dict[int, int] = field(default_factory=dict)
    percentages: dict[int, float] = field(default_factory=dict)


@dataclass(slots=True)
class ClusteringStatistics:
    total_clusters: int
    total_records: int
    average_cluster_size: float
    largest_cluster_size: int
    average_density: float
    average_confidence: float
    total_direct_edges: int
    total_transitive_edges: int
    transitivity_score: float
    size_distribution: SizeDistribution


@dataclass(slots=True)
class MatchQuality:
    total_matches: int
    high_rate: float
    medium_rate: float
    low_rate: float
    average_confidence: float


@dataclass(frozen=True, slots=True)
class SkippedRecord:
    """Diagnostic for a record or pair dropped by one stage."""

    record_id: str
    stage: str
    reason: str
