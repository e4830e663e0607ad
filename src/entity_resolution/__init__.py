"""Entity resolution: blocking, similarity scoring and transitive clustering."""

from entity_resolution.config import Propagation, ResolutionConfig, Thresholds, load_config
from entity_resolution.errors import (
    ConfigurationError,
    DegenerateBlockingError,
    InputError,
    OperationCancelled,
    ResolutionError,
)
from entity_resolution.models import Cluster, MatchEdge, MatchTier, Record
from entity_resolution.schema import FieldMapping, RecordSchema, SemanticType

__all__ = [
    "Propagation",
    "ResolutionConfig",
    "Thresholds",
    "load_config",
    "ConfigurationError",
    "DegenerateBlockingError",
    "InputError",
    "OperationCancelled",
    "ResolutionError",
    "Cluster",
    "MatchEdge",
    "MatchTier",
    "Record",
    "FieldMapping",
    "RecordSchema",
    "SemanticType",
]
