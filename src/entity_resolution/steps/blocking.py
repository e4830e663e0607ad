"""
Blocking: derive cheap keys per record so only records sharing a key get scored.

Strategies are plain functions ``fn(value, **params) -> list[str]`` collected
in a StrategyTable. The table is built once and handed to the BlockingEngine,
which binds every configured StrategySpec up front so bad names or parameters
fail before any record is read.

Two records are candidates when, for some semantic type mapped on both sides,
the same strategy yields an equal non-empty key on both. Key matches across
types and strategies are OR-ed together.
"""

from __future__ import annotations

import hashlib
import inspect
import json
import logging
from collections import defaultdict
from collections.abc import Callable, Iterable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from functools import lru_cache, partial
from typing import Any

import jellyfish
import numpy as np

from entity_resolution.errors import ConfigurationError, DegenerateBlockingError, InputError
from entity_resolution.interfaces import TextEmbedder
from entity_resolution.models import BlockingKey, CandidatePair, Record, SkippedRecord, StrategySpec
from entity_resolution.schema import RecordSchema, SemanticType, parse_semantic_type
from entity_resolution.steps.cleanup import standardize_address
from entity_resolution.steps.comparators import parse_date

logger = logging.getLogger(__name__)

KeyFunction = Callable[..., list[str]]
KeyMap = dict[SemanticType, list[BlockingKey]]


def normalize_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple, set, frozenset)):
        value = " ".join(str(item) for item in value)
    return str(value).strip().casefold()


# --- strategies -------------------------------------------------------------


def exact_key(value: Any) -> list[str]:
    text = normalize_text(value)
    return [text] if text else []


def prefix_key(value: Any, length: int = 3) -> list[str]:
    text = normalize_text(value)
    if len(text) < length:
        return []
    return [text[:length]]


def suffix_key(value: Any, length: int = 3) -> list[str]:
    text = normalize_text(value)
    if len(text) < length:
        return []
    return [text[-length:]]


def ngram_keys(value: Any, n: int = 2, min_keys: int = 3, max_keys: int = 10) -> list[str]:
    """Contiguous character n-grams of the space-stripped value.

    Deduplicated, stably sorted by length, padded up to ``min_keys`` and cut to
    ``max_keys``.
    """
    text = "".join(normalize_text(value).split())
    if not text:
        return []
    if len(text) < n:
        grams: tuple[str, ...] = (text,)
    else:
        grams = tuple(dict.fromkeys(text[i : i + n] for i in range(len(text) - n + 1)))
    grams = tuple(sorted(grams, key=len))
    return list(pad_keys(grams, min_keys)[:max_keys])


def pad_keys(keys: tuple[str, ...], minimum: int) -> tuple[str, ...]:
    """Cycle through ``keys`` until there are ``minimum`` of them.

    Padding repeats keys, so it adds no discriminative power; it only keeps the
    key count stable for consumers that expect a fixed minimum.
    """
    if not keys or len(keys) >= minimum:
        return keys
    padded = tuple(keys[i % len(keys)] for i in range(minimum))
    logger.debug(f"Padded {len(keys)} n-gram keys to {minimum}", extra={"stage": "blocking"})
    return padded


def soundex(token: str, width: int = 4) -> str:
    letters = "".join(ch for ch in token if ch.isascii() and ch.isalpha())
    if not letters:
        return ""
    return jellyfish.soundex(letters)[:width].ljust(width, "0")


def phonetic_keys(value: Any, width: int = 4) -> list[str]:
    """Soundex codes of the first and last tokens, tagged with their position."""
    tokens = normalize_text(value).split()
    if not tokens:
        return []
    positions = [("first", tokens[0])]
    if len(tokens) > 1 and tokens[-1] != tokens[0]:
        positions.append(("last", tokens[-1]))
    keys = []
    for position, token in positions:
        code = soundex(token, width)
        if code:
            keys.append(f"{position}:{code}")
    return keys


def token_keys(value: Any, max_tokens: int = 3) -> list[str]:
    if isinstance(value, (list, tuple, set, frozenset)):
        tokens = [normalize_text(item) for item in value]
    else:
        tokens = normalize_text(value).split()
    tokens = [token for token in dict.fromkeys(tokens) if len(token) > 1]
    return tokens[:max_tokens]


def year_key(value: Any) -> list[str]:
    parsed = parse_date(value)
    return [str(parsed.year)] if parsed else []


def email_domain_key(value: Any) -> list[str]:
    parts = normalize_text(value).split("@")
    if len(parts) != 2 or not parts[1]:
        return []
    return [parts[1]]


def last_four_digits_key(value: Any) -> list[str]:
    digits = "".join(ch for ch in str(value) if ch.isdigit()) if value is not None else ""
    if len(digits) < 4:
        return []
    return [digits[-4:]]


def standardized_address_key(value: Any) -> list[str]:
    text = standardize_address(str(value)) if value is not None else ""
    return [text] if text else []


def embedding_lsh_keys(
    value: Any,
    num_planes: int = 3,
    num_buckets: int = 10,
    seed: str = "default",
    embedder: TextEmbedder | None = None,
) -> list[str]:
    """Random-hyperplane LSH buckets, one key per plane.

    Planes come from a numpy PCG64 generator seeded from ``seed``, so the same
    seed and vector always give the same keys.
    """
    if value is None:
        return []
    vector = _as_vector(value, embedder)
    planes = _hyperplanes(str(seed), num_planes, vector.shape[0])
    dots = planes @ vector
    buckets = np.floor((np.arctan(dots) / np.pi + 0.5) * num_buckets).astype(np.int64) % num_buckets
    return [f"lsh_{plane}_{int(bucket)}" for plane, bucket in enumerate(buckets)]


def compound_keys(value: Any, strategies: Sequence["BoundStrategy"], separator: str = "_") -> list[str]:
    """Join sub-strategy keys position by position into composite keys."""
    results = [strategy.keys(value) for strategy in strategies]
    if not results or any(not keys for keys in results):
        return []
    return [separator.join(parts) for parts in zip(*results)]


@lru_cache(maxsize=64)
def _hyperplanes(seed: str, num_planes: int, dimensions: int) -> np.ndarray:
    seed_int = int.from_bytes(hashlib.sha256(seed.encode("utf-8")).digest()[:8], "big")
    planes = np.random.default_rng(seed_int).standard_normal((num_planes, dimensions))
    planes.flags.writeable = False
    return planes


def _as_vector(value: Any, embedder: TextEmbedder | None) -> np.ndarray:
    if isinstance(value, str) and value.lstrip().startswith("["):
        # vectors serialized into a CSV cell
        try:
            value = json.loads(value)
        except json.JSONDecodeError as exc:
            raise InputError(f"Embedding is not a valid JSON array: {exc}") from exc
    if isinstance(value, str):
        if embedder is None:
            raise InputError("Text value given to embedding_lsh without an embedder")
        value = embedder.embed([value])[0]
    try:
        vector = np.asarray(value, dtype=np.float64)
    except (TypeError, ValueError) as exc:
        raise InputError(f"Embedding must be a numeric vector: {exc}") from exc
    if vector.ndim != 1 or vector.size == 0:
        raise InputError(f"Embedding must be a non-empty 1-D vector, got shape {vector.shape}")
    if not np.all(np.isfinite(vector)):
        raise InputError("Embedding contains NaN or Inf values")
    return vector


# --- strategy table ---------------------------------------------------------

_POSITIVE_INT_PARAMS = ("length", "n", "max_keys", "num_planes", "num_buckets", "width", "max_tokens")
_NON_NEGATIVE_INT_PARAMS = ("min_keys",)


@dataclass(frozen=True)
class BoundStrategy:
    spec: StrategySpec
    function: Callable[[Any], list[str]]

    @property
    def label(self) -> str:
        return self.spec.label

    def keys(self, value: Any) -> list[str]:
        return self.function(value)


class StrategyTable:
    """Name -> key function map. Build once at startup and pass it around."""

    def __init__(
        self,
        functions: Mapping[str, KeyFunction],
        bound_defaults: Mapping[str, Mapping[str, Any]] | None = None,
    ) -> None:
        self._functions = dict(functions)
        self._bound_defaults = {name: dict(params) for name, params in (bound_defaults or {}).items()}

    @classmethod
    def default(cls, embedder: TextEmbedder | None = None) -> "StrategyTable":
        return cls(
            functions={
                "exact": exact_key,
                "prefix": prefix_key,
                "suffix": suffix_key,
                "ngram": ngram_keys,
                "phonetic": phonetic_keys,
                "token": token_keys,
                "year": year_key,
                "email_domain": email_domain_key,
                "last_four_digits": last_four_digits_key,
                "standardized_address": standardized_address_key,
                "embedding_lsh": embedding_lsh_keys,
            },
            bound_defaults={"embedding_lsh": {"embedder": embedder}} if embedder is not None else None,
        )

    @property
    def names(self) -> tuple[str, ...]:
        return (*self._functions, "compound")

    def with_strategy(self, name: str, function: KeyFunction) -> "StrategyTable":
        return StrategyTable({**self._functions, name: function}, self._bound_defaults)

    def bind(self, spec: StrategySpec) -> BoundStrategy:
        if spec.name == "compound":
            return self._bind_compound(spec)
        function = self._functions.get(spec.name)
        if function is None:
            raise ConfigurationError(
                f"Unknown blocking strategy {spec.name!r}; available: {sorted(self.names)}",
                config_key="blockingStrategies",
            )
        params = {**self._bound_defaults.get(spec.name, {}), **spec.kwargs}
        _check_params(function, spec, params)
        return BoundStrategy(spec=spec, function=partial(function, **params))

    def _bind_compound(self, spec: StrategySpec) -> BoundStrategy:
        params = spec.kwargs
        unknown = set(params) - {"strategies", "separator"}
        if unknown:
            raise ConfigurationError(f"Unknown parameters for compound: {sorted(unknown)}", "blockingStrategies")
        nested = params.get("strategies") or ()
        if not nested:
            raise ConfigurationError("compound needs at least one sub-strategy", config_key="blockingStrategies")
        separator = params.get("separator", "_")
        if not isinstance(separator, str):
            raise ConfigurationError("compound separator must be a string", config_key="blockingStrategies")
        bound = tuple(self.bind(item) for item in nested)
        return BoundStrategy(spec=spec, function=partial(compound_keys, strategies=bound, separator=separator))


def _check_params(function: KeyFunction, spec: StrategySpec, params: Mapping[str, Any]) -> None:
    try:
        inspect.signature(function).bind(None, **params)
    except TypeError as exc:
        raise ConfigurationError(f"Bad parameters for strategy {spec.label}: {exc}", "blockingStrategies") from exc
    for name, value in params.items():
        if name in _POSITIVE_INT_PARAMS and (isinstance(value, bool) or not isinstance(value, int) or value < 1):
            raise ConfigurationError(f"{spec.name}.{name} must be a positive integer", "blockingStrategies")
        if name in _NON_NEGATIVE_INT_PARAMS and (isinstance(value, bool) or not isinstance(value, int) or value < 0):
            raise ConfigurationError(f"{spec.name}.{name} must be a non-negative integer", "blockingStrategies")


# --- engine -----------------------------------------------------------------


@dataclass
class BlockIndex:
    """Inverted index of one side's keys: (type, strategy, key) -> record ids."""

    semantic_types: tuple[SemanticType, ...]
    postings: dict[tuple[str, str, str], list[str]] = field(default_factory=lambda: defaultdict(list))
    order: dict[str, int] = field(default_factory=dict)
    key_count: int = 0
    skipped: list[SkippedRecord] = field(default_factory=list)


@dataclass
class BlockingResult:
    pairs: list[CandidatePair]
    skipped: list[SkippedRecord]
    source_key_count: int
    target_key_count: int


class BlockingEngine:
    def __init__(
        self,
        strategies: Mapping[SemanticType | str, Sequence[StrategySpec]],
        table: StrategyTable | None = None,
        workers: int = 1,
        max_candidates_per_record: int | None = None,
    ) -> None:
        table = table or StrategyTable.default()
        self._strategies: dict[SemanticType, tuple[BoundStrategy, ...]] = {}
        for semantic_type, specs in strategies.items():
            self._strategies[parse_semantic_type(semantic_type)] = tuple(table.bind(spec) for spec in specs)
        self._workers = workers
        self._max_candidates = max_candidates_per_record

    def blockable_types(self, source_schema: RecordSchema, target_schema: RecordSchema) -> tuple[SemanticType, ...]:
        return tuple(t for t in source_schema.shared_types(target_schema) if self._strategies.get(t))

    def generate_keys(self, record: Record, schema: RecordSchema) -> KeyMap:
        values = schema.values(record)
        keys: KeyMap = {}
        for semantic_type, value in values.items():
            strategies = self._strategies.get(semantic_type)
            if not strategies or value is None:
                continue
            type_keys: list[BlockingKey] = []
            for strategy in strategies:
                try:
                    raw_keys = strategy.keys(value)
                except InputError as exc:
                    raise InputError(
                        f"{semantic_type.value}/{strategy.label}: {exc}", record_id=record.record_id
                    ) from exc
                type_keys.extend(
                    BlockingKey(record.record_id, semantic_type.value, strategy.label, key)
                    for key in dict.fromkeys(raw_keys)
                    if key
                )
            if type_keys:
                keys[semantic_type] = type_keys
        return keys

    def generate_keys_many(
        self, records: Sequence[Record], schema: RecordSchema
    ) -> tuple[dict[str, KeyMap], list[SkippedRecord]]:
        """Keys for every record, keyed by record id in input order.

        Malformed records and duplicate ids are skipped with a diagnostic.
        """

        def _safe(item: tuple[int, Record]) -> tuple[str, KeyMap | None, SkippedRecord | None]:
            index, record = item
            record_id = str(getattr(record, "record_id", None) or f"#{index}")
            try:
                return record_id, self.generate_keys(record, schema), None
            except InputError as exc:
                return record_id, None, SkippedRecord(record_id=record_id, stage="blocking", reason=str(exc))

        if self._workers > 1:
            with ThreadPoolExecutor(max_workers=self._workers) as pool:
                results = list(pool.map(_safe, enumerate(records)))
        else:
            results = [_safe(item) for item in enumerate(records)]

        keyed: dict[str, KeyMap] = {}
        skipped: list[SkippedRecord] = []
        for record_id, keys, problem in results:
            if problem is None and record_id in keyed:
                problem = SkippedRecord(record_id=record_id, stage="blocking", reason="Duplicate record id")
            if problem is not None:
                logger.warning(f"Skipping record {record_id}: {problem.reason}", extra={"record_id": record_id})
                skipped.append(problem)
                continue
            keyed[record_id] = keys
        return keyed, skipped

    def candidate_predicate(
        self, source_schema: RecordSchema, target_schema: RecordSchema
    ) -> Callable[[Record, Record], bool]:
        shared = self.require_blockable(source_schema, target_schema)

        def predicate(source: Record, target: Record) -> bool:
            source_keys = self.generate_keys(source, source_schema)
            target_keys = self.generate_keys(target, target_schema)
            for semantic_type in shared:
                left = {(key.strategy, key.value) for key in source_keys.get(semantic_type, ())}
                if any((key.strategy, key.value) in left for key in target_keys.get(semantic_type, ())):
                    return True
            return False

        return predicate

    def index_targets(
        self, records: Sequence[Record], target_schema: RecordSchema, source_schema: RecordSchema
    ) -> BlockIndex:
        shared = self.require_blockable(source_schema, target_schema)
        keyed, skipped = self.generate_keys_many(records, target_schema)
        index = BlockIndex(semantic_types=shared, skipped=skipped)
        for position, (record_id, keys) in enumerate(keyed.items()):
            index.order[record_id] = position
            for key in _shared_keys(keys, shared):
                index.postings[(key.semantic_type, key.strategy, key.value)].append(record_id)
                index.key_count += 1
        return index

    def match_sources(
        self, records: Sequence[Record], source_schema: RecordSchema, index: BlockIndex
    ) -> tuple[list[CandidatePair], list[SkippedRecord], int]:
        """Probe the target index with one batch of source records."""
        keyed, skipped = self.generate_keys_many(records, source_schema)
        pairs: list[CandidatePair] = []
        key_count = 0
        for source_id, keys in keyed.items():
            weights: dict[str, int] = defaultdict(int)
            for key in _shared_keys(keys, index.semantic_types):
                key_count += 1
                for target_id in index.postings.get((key.semantic_type, key.strategy, key.value), ()):
                    weights[target_id] += 1
            ranked = sorted(weights, key=lambda target_id: index.order[target_id])
            if self._max_candidates is not None:
                ranked = sorted(ranked, key=lambda target_id: -weights[target_id])[: self._max_candidates]
            pairs.extend(CandidatePair(source_id, target_id, weights[target_id]) for target_id in ranked)
        return pairs, skipped, key_count

    def candidate_pairs(
        self,
        source_records: Sequence[Record],
        target_records: Sequence[Record],
        source_schema: RecordSchema,
        target_schema: RecordSchema,
    ) -> BlockingResult:
        index = self.index_targets(target_records, target_schema, source_schema)
        if target_records and index.key_count == 0:
            raise DegenerateBlockingError("No blocking keys could be derived for any target record")
        pairs, skipped, source_key_count = self.match_sources(source_records, source_schema, index)
        if source_records and source_key_count == 0:
            raise DegenerateBlockingError("No blocking keys could be derived for any source record")
        logger.info(
            f"Blocking produced {len(pairs)} candidate pairs from "
            f"{len(source_records)} x {len(target_records)} records",
            extra={"stage": "blocking", "count": len(pairs)},
        )
        return BlockingResult(
            pairs=pairs,
            skipped=index.skipped + skipped,
            source_key_count=source_key_count,
            target_key_count=index.key_count,
        )

    def require_blockable(
        self, source_schema: RecordSchema, target_schema: RecordSchema
    ) -> tuple[SemanticType, ...]:
        shared = self.blockable_types(source_schema, target_schema)
        if not shared:
            raise DegenerateBlockingError(
                "Source and target mappings share no semantic type with a blocking strategy; "
                "refusing to fall back to a full cross join"
            )
        return shared


def _shared_keys(keys: KeyMap, semantic_types: Iterable[SemanticType]) -> Iterable[BlockingKey]:
    for semantic_type in semantic_types:
        yield from keys.get(semantic_type, ())
