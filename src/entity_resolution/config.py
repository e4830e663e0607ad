"""
Configuration for entity resolution runs.

Every option has a documented default. Invalid combinations raise
ConfigurationError at construction time, before any record is processed.
"""

from __future__ import annotations

import json
import math
import re
import tomllib
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any, Mapping

from entity_resolution.errors import ConfigurationError, InputError
from entity_resolution.models import MatchTier, StrategySpec
from entity_resolution.schema import SemanticType, parse_semantic_type


class Propagation(StrEnum):
    """How confidence composes along a multi-hop path."""

    MIN = "min"  # weakest edge on the path (default)
    PRODUCT = "product"  # product of edge confidences, decays with length


DEFAULT_BLOCKING_STRATEGIES: dict[SemanticType, tuple[StrategySpec, ...]] = {
    SemanticType.EMAIL: (StrategySpec.of("exact"), StrategySpec.of("email_domain")),
    SemanticType.PHONE: (StrategySpec.of("exact"), StrategySpec.of("last_four_digits")),
    SemanticType.FIRST_NAME: (
        StrategySpec.of("exact"),
        StrategySpec.of("prefix", length=3),
        StrategySpec.of("phonetic"),
    ),
    SemanticType.LAST_NAME: (
        StrategySpec.of("exact"),
        StrategySpec.of("prefix", length=3),
        StrategySpec.of("phonetic"),
    ),
    SemanticType.FULL_NAME: (StrategySpec.of("token"), StrategySpec.of("phonetic")),
    SemanticType.DATE_OF_BIRTH: (StrategySpec.of("exact"), StrategySpec.of("year")),
    SemanticType.ADDRESS: (StrategySpec.of("standardized_address"), StrategySpec.of("token")),
    SemanticType.POSTAL_CODE: (StrategySpec.of("exact"), StrategySpec.of("prefix", length=3)),
    SemanticType.DESCRIPTION: (StrategySpec.of("ngram"),),
    SemanticType.EMBEDDING: (StrategySpec.of("embedding_lsh"),),
}

DEFAULT_FIELD_WEIGHTS: dict[SemanticType, float] = {
    SemanticType.EMAIL: 0.9,
    SemanticType.PHONE: 0.8,
    SemanticType.FIRST_NAME: 0.6,
    SemanticType.LAST_NAME: 0.7,
    SemanticType.FULL_NAME: 0.7,
    SemanticType.ADDRESS: 0.5,
    SemanticType.DATE_OF_BIRTH: 0.8,
    SemanticType.POSTAL_CODE: 0.7,
    SemanticType.CITY: 0.4,
    SemanticType.STATE: 0.3,
    SemanticType.COUNTRY: 0.3,
    SemanticType.GENDER: 0.2,
    SemanticType.COMPANY_NAME: 0.6,
    SemanticType.DESCRIPTION: 0.4,
    SemanticType.TAGS: 0.3,
    SemanticType.DATE: 0.3,
    SemanticType.CUSTOMER_ID: 0.9,
    SemanticType.EMBEDDING: 0.5,
}


@dataclass(frozen=True)
class Thresholds:
    """Tier cut-offs. Must satisfy ``high >= medium >= low``."""

    high: float = 0.9
    medium: float = 0.7
    low: float = 0.5

    def __post_init__(self) -> None:
        for name in ("high", "medium", "low"):
            _check_unit_interval(getattr(self, name), f"thresholds.{name}")
        if not (self.high >= self.medium >= self.low):
            raise ConfigurationError(
                "Thresholds must be ordered high >= medium >= low "
                f"(got high={self.high}, medium={self.medium}, low={self.low})",
                config_key="thresholds",
            )

    def classify(self, confidence: float) -> MatchTier:
        if confidence >= self.high:
            return MatchTier.HIGH
        if confidence >= self.medium:
            return MatchTier.MEDIUM
        if confidence >= self.low:
            return MatchTier.LOW
        return MatchTier.NO_MATCH


@dataclass
class ResolutionConfig:
    blocking_strategies: dict[SemanticType, tuple[StrategySpec, ...]] = field(
        default_factory=lambda: dict(DEFAULT_BLOCKING_STRATEGIES)
    )
    field_weights: dict[SemanticType, float] = field(default_factory=lambda: dict(DEFAULT_FIELD_WEIGHTS))
    comparators: dict[SemanticType, StrategySpec] = field(default_factory=dict)
    thresholds: Thresholds = field(default_factory=Thresholds)
    max_transitive_depth: int = 3
    transitive_threshold: float = 0.7
    propagation: Propagation = Propagation.MIN
    max_candidates_per_record: int | None = None
    workers: int = 1

    def __post_init__(self) -> None:
        for semantic_type, weight in self.field_weights.items():
            check_weight(weight, f"fieldWeights.{semantic_type}")
        for semantic_type, strategies in self.blocking_strategies.items():
            if not strategies:
                raise ConfigurationError(
                    f"Blocking strategies for {semantic_type!s} must be a non-empty list",
                    config_key=f"blockingStrategies.{semantic_type}",
                )
        _check_unit_interval(self.transitive_threshold, "transitiveThreshold")
        check_depth(self.max_transitive_depth)
        if self.max_candidates_per_record is not None and (
            isinstance(self.max_candidates_per_record, bool)
            or not isinstance(self.max_candidates_per_record, int)
            or self.max_candidates_per_record <= 0
        ):
            raise ConfigurationError(
                "maxCandidatesPerRecord must be a positive integer", config_key="maxCandidatesPerRecord"
            )
        if isinstance(self.workers, bool) or not isinstance(self.workers, int) or self.workers < 1:
            raise ConfigurationError("workers must be an integer >= 1", config_key="workers")

    @classmethod
    def from_mapping(cls, options: Mapping[str, Any]) -> "ResolutionConfig":
        """Build a config from camelCase options, merged onto defaults."""
        unknown = set(options) - _KNOWN_OPTIONS
        if unknown:
            raise ConfigurationError(f"Unknown configuration options: {sorted(unknown)}")

        blocking = dict(DEFAULT_BLOCKING_STRATEGIES)
        for key, entries in _section(options, "blockingStrategies").items():
            blocking[_config_type(key, "blockingStrategies")] = tuple(
                parse_strategy(entry, f"blockingStrategies.{key}")
                for entry in _strategy_list(entries, f"blockingStrategies.{key}")
            )

        weights = dict(DEFAULT_FIELD_WEIGHTS)
        for key, weight in _section(options, "fieldWeights").items():
            weights[_config_type(key, "fieldWeights")] = weight

        comparators = {
            _config_type(key, "comparators"): parse_strategy(entry, f"comparators.{key}")
            for key, entry in _section(options, "comparators").items()
        }

        raw_thresholds = _section(options, "thresholds")
        extra = set(raw_thresholds) - {"high", "medium", "low"}
        if extra:
            raise ConfigurationError(f"Unknown threshold tiers: {sorted(extra)}", config_key="thresholds")

        propagation = options.get("propagation", Propagation.MIN.value)
        try:
            propagation = Propagation(propagation)
        except ValueError:
            raise ConfigurationError(
                f"propagation must be 'min' or 'product', got {propagation!r}", config_key="propagation"
            ) from None

        return cls(
            blocking_strategies=blocking,
            field_weights=weights,
            comparators=comparators,
            thresholds=Thresholds(**raw_thresholds),
            max_transitive_depth=options.get("maxTransitiveDepth", 3),
            transitive_threshold=options.get("transitiveThreshold", 0.7),
            propagation=propagation,
            max_candidates_per_record=options.get("maxCandidatesPerRecord"),
            workers=options.get("workers", 1),
        )


_KNOWN_OPTIONS = {
    "blockingStrategies",
    "fieldWeights",
    "comparators",
    "thresholds",
    "maxTransitiveDepth",
    "transitiveThreshold",
    "propagation",
    "maxCandidatesPerRecord",
    "workers",
}


def load_config(path: Path) -> ResolutionConfig:
    """Load a ResolutionConfig from a ``.json`` or ``.toml`` file."""
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Config file not found: {path}")
    suffix = path.suffix.lower()
    try:
        if suffix == ".json":
            with path.open("r", encoding="utf-8") as handle:
                options = json.load(handle)
        elif suffix == ".toml":
            with path.open("rb") as handle:
                options = tomllib.load(handle)
        else:
            raise ConfigurationError(f"Unsupported config format: {path.suffix or '<none>'}")
    except (json.JSONDecodeError, tomllib.TOMLDecodeError) as exc:
        raise ConfigurationError(f"Could not parse {path}: {exc}") from exc
    if not isinstance(options, Mapping):
        raise ConfigurationError(f"Config root in {path} must be a mapping")
    return ResolutionConfig.from_mapping(options)


def parse_strategy(entry: Any, config_key: str) -> StrategySpec:
    """Parse ``"exact"`` or ``{"name": "prefix", "length": 3}`` into a StrategySpec."""
    if isinstance(entry, StrategySpec):
        return entry
    if isinstance(entry, str) and entry.strip():
        return StrategySpec.of(entry.strip())
    if isinstance(entry, Mapping):
        name = entry.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ConfigurationError(f"Strategy entry is missing a name: {entry!r}", config_key=config_key)
        params: dict[str, Any] = {}
        for key, value in entry.items():
            if key == "name":
                continue
            if key == "strategies":
                value = tuple(parse_strategy(item, config_key) for item in _strategy_list(value, config_key))
            params[_snake_case(key)] = value
        return StrategySpec.of(name.strip(), **params)
    raise ConfigurationError(f"Malformed strategy entry: {entry!r}", config_key=config_key)


def check_weight(weight: Any, config_key: str) -> None:
    if isinstance(weight, bool) or not isinstance(weight, (int, float)) or not math.isfinite(weight) or weight < 0:
        raise ConfigurationError(f"Weight must be a finite number >= 0, got {weight!r}", config_key=config_key)


def check_depth(depth: Any) -> None:
    if isinstance(depth, bool) or not isinstance(depth, int) or depth <= 0:
        raise ConfigurationError(f"maxDepth must be a positive integer, got {depth!r}", config_key="maxTransitiveDepth")


def check_threshold(value: Any, config_key: str) -> None:
    _check_unit_interval(value, config_key)


def _check_unit_interval(value: Any, config_key: str) -> None:
    if (
        isinstance(value, bool)
        or not isinstance(value, (int, float))
        or not math.isfinite(value)
        or not 0.0 <= value <= 1.0
    ):
        raise ConfigurationError(f"{config_key} must be a number in [0, 1], got {value!r}", config_key=config_key)


def _section(options: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    section = options.get(key)
    if section is None:
        return {}
    if not isinstance(section, Mapping):
        raise ConfigurationError(f"{key} must be a mapping, got {type(section).__name__}", config_key=key)
    return section


def _strategy_list(entries: Any, config_key: str) -> list[Any]:
    """A single entry or a list of entries, as written in the config file."""
    if isinstance(entries, (str, Mapping, StrategySpec)):
        return [entries]
    if not isinstance(entries, (list, tuple)):
        raise ConfigurationError(f"Expected a strategy or a list of strategies, got {entries!r}", config_key=config_key)
    return list(entries)


def _config_type(key: str, section: str) -> SemanticType:
    try:
        return parse_semantic_type(key)
    except InputError as exc:
        raise ConfigurationError(str(exc), config_key=f"{section}.{key}") from exc


def _snake_case(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()
