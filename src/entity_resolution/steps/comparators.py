"""
Field comparison algorithms.

Every comparator takes two raw field values and returns a score in [0, 1].
Which comparator handles which semantic type is decided by a ComparatorTable
plus a per-type StrategySpec, so callers can swap algorithms or parameters
without touching the scoring engine.
"""

from __future__ import annotations

import inspect
import math
import re
from collections import Counter
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import date, datetime
from functools import lru_cache, partial
from numbers import Real
from typing import Any

import jellyfish
import numpy as np

from entity_resolution.errors import ConfigurationError, InputError
from entity_resolution.models import StrategySpec
from entity_resolution.schema import SemanticType

Comparator = Callable[..., float]

_DATE_FORMATS = ("%Y-%m-%d", "%Y/%m/%d", "%m/%d/%Y", "%d.%m.%Y", "%Y%m%d")

STOPWORDS = frozenset(
    {
        "a", "an", "and", "are", "as", "at", "be", "but", "by", "for", "from", "has", "have",
        "he", "her", "his", "in", "is", "it", "its", "of", "on", "or", "she", "that", "the",
        "their", "they", "this", "to", "was", "were", "will", "with",
    }
)


def parse_date(value: Any) -> date | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


def exact_match(
    value1: Any,
    value2: Any,
    *,
    trim: bool = False,
    case_sensitive: bool = True,
    tolerance: float = 0.0,
    null_equals_null: bool = True,
) -> float:
    """1.0 when the normalized values are equal, else 0.0.

    Two nulls score 1.0 only when ``null_equals_null`` is set; one null always
    scores 0.0. Numbers compare within ``tolerance``.
    """
    if value1 is None and value2 is None:
        return 1.0 if null_equals_null else 0.0
    if value1 is None or value2 is None:
        return 0.0

    if _is_number(value1) and _is_number(value2):
        return 1.0 if abs(value1 - value2) <= tolerance else 0.0

    if isinstance(value1, str) and isinstance(value2, str):
        if trim:
            value1, value2 = value1.strip(), value2.strip()
        if not case_sensitive:
            value1, value2 = value1.casefold(), value2.casefold()

    return 1.0 if value1 == value2 else 0.0


def edit_distance_ratio(value1: Any, value2: Any, *, normalize: bool = True) -> float:
    """``1 - levenshtein(a, b) / max(len(a), len(b))``."""
    if value1 is None or value2 is None:
        return 0.0
    left, right = str(value1), str(value2)
    if normalize:
        left, right = left.strip().casefold(), right.strip().casefold()
    if not left and not right:
        return 1.0
    distance = jellyfish.levenshtein_distance(left, right)
    return 1.0 - distance / max(len(left), len(right))


def jaro_winkler(value1: Any, value2: Any) -> float:
    if value1 is None or value2 is None:
        return 0.0
    left, right = str(value1).strip().casefold(), str(value2).strip().casefold()
    if not left and not right:
        return 1.0
    return jellyfish.jaro_winkler_similarity(left, right)


@lru_cache(maxsize=1)
def _porter_stemmer() -> Callable[[str], str]:
    try:
        from nltk.stem import PorterStemmer
    except ImportError as exc:
        raise ImportError(
            "Stemming requires nltk. Install with: pip install 'entity-resolution[text]'"
        ) from exc
    return PorterStemmer().stem


def tokenize(
    value: Any,
    *,
    lowercase: bool = True,
    stem: bool = False,
    remove_stopwords: bool = False,
    ngram_size: int = 1,
    stemmer: Callable[[str], str] | None = None,
) -> list[str]:
    """Split text (or a token list) into terms.

    With ``ngram_size > 1`` the unigrams are kept and word n-grams of sizes
    2..ngram_size are appended.
    """
    if value is None:
        return []
    if isinstance(value, (list, tuple, set, frozenset)):
        tokens = [str(item) for item in value if item is not None and str(item).strip()]
    else:
        tokens = re.findall(r"\w+", str(value))
    if lowercase:
        tokens = [token.casefold() for token in tokens]
    if remove_stopwords:
        tokens = [token for token in tokens if token.casefold() not in STOPWORDS]
    if stem:
        stem_fn = stemmer or _porter_stemmer()
        tokens = [stem_fn(token) for token in tokens]
    expanded = list(tokens)
    for size in range(2, ngram_size + 1):
        expanded.extend(" ".join(tokens[i : i + size]) for i in range(len(tokens) - size + 1))
    return expanded


def jaccard_similarity(value1: Any, value2: Any, *, weights: Mapping[str, float] | None = None) -> float:
    """``|A ∩ B| / |A ∪ B|`` over case-folded token sets.

    Two empty sets score 1.0, exactly one empty set scores 0.0. With
    ``weights`` both sides of the ratio become weighted sums (unlisted tokens
    weigh 1.0).
    """
    if value1 is None or value2 is None:
        return 0.0
    left, right = set(tokenize(value1)), set(tokenize(value2))
    if not left and not right:
        return 1.0
    if not left or not right:
        return 0.0
    if weights is None:
        return len(left & right) / len(left | right)
    folded = {str(token).casefold(): weight for token, weight in weights.items()}
    intersection = sum(folded.get(token, 1.0) for token in left & right)
    union = sum(folded.get(token, 1.0) for token in left | right)
    if union <= 0:
        return 0.0
    return intersection / union


def cosine_similarity(
    value1: Any,
    value2: Any,
    *,
    stem: bool = False,
    remove_stopwords: bool = False,
    ngram_size: int = 1,
    stemmer: Callable[[str], str] | None = None,
) -> float:
    """Cosine of term-frequency vectors, or of numeric vectors when given numbers.

    Either zero vector scores 0.0. The result is clamped to [0, 1].
    """
    if value1 is None or value2 is None:
        return 0.0

    if _is_numeric_vector(value1) and _is_numeric_vector(value2):
        left = np.asarray(value1, dtype=np.float64)
        right = np.asarray(value2, dtype=np.float64)
        if left.shape != right.shape:
            raise InputError(f"Vectors must have the same length ({left.shape[0]} != {right.shape[0]})")
    else:
        options = dict(stem=stem, remove_stopwords=remove_stopwords, ngram_size=ngram_size, stemmer=stemmer)
        left_terms = Counter(tokenize(value1, **options))
        right_terms = Counter(tokenize(value2, **options))
        vocabulary = sorted(left_terms.keys() | right_terms.keys())
        left = np.array([left_terms[term] for term in vocabulary], dtype=np.float64)
        right = np.array([right_terms[term] for term in vocabulary], dtype=np.float64)

    left_norm = np.linalg.norm(left)
    right_norm = np.linalg.norm(right)
    if left_norm == 0 or right_norm == 0:
        return 0.0
    score = float(np.dot(left, right) / (left_norm * right_norm))
    return min(1.0, max(0.0, score))


def _is_numeric_vector(value: Any) -> bool:
    if isinstance(value, np.ndarray):
        return value.ndim == 1 and np.issubdtype(value.dtype, np.number)
    return isinstance(value, (list, tuple)) and len(value) > 0 and all(_is_number(item) for item in value)


def date_proximity(
    value1: Any,
    value2: Any,
    *,
    same_month_score: float = 0.8,
    same_year_score: float = 0.5,
) -> float:
    left, right = parse_date(value1), parse_date(value2)
    if left is None or right is None:
        return 0.0
    if left == right:
        return 1.0
    if (left.year, left.month) == (right.year, right.month):
        return same_month_score
    if left.year == right.year:
        return same_year_score
    return 0.0


_NORMALIZED_EXACT = StrategySpec.of("exact", trim=True, case_sensitive=False, null_equals_null=False)

DEFAULT_COMPARATORS: dict[SemanticType, StrategySpec] = {
    SemanticType.EMAIL: _NORMALIZED_EXACT,
    SemanticType.PHONE: _NORMALIZED_EXACT,
    SemanticType.POSTAL_CODE: _NORMALIZED_EXACT,
    SemanticType.COUNTRY: _NORMALIZED_EXACT,
    SemanticType.GENDER: _NORMALIZED_EXACT,
    SemanticType.CUSTOMER_ID: _NORMALIZED_EXACT,
    SemanticType.FIRST_NAME: StrategySpec.of("edit_distance"),
    SemanticType.LAST_NAME: StrategySpec.of("edit_distance"),
    SemanticType.FULL_NAME: StrategySpec.of("edit_distance"),
    SemanticType.COMPANY_NAME: StrategySpec.of("edit_distance"),
    SemanticType.CITY: StrategySpec.of("edit_distance"),
    SemanticType.STATE: StrategySpec.of("edit_distance"),
    SemanticType.ADDRESS: StrategySpec.of("jaccard"),
    SemanticType.TAGS: StrategySpec.of("jaccard"),
    SemanticType.DESCRIPTION: StrategySpec.of("cosine"),
    SemanticType.EMBEDDING: StrategySpec.of("cosine"),
    SemanticType.DATE_OF_BIRTH: StrategySpec.of("date_proximity"),
    SemanticType.DATE: StrategySpec.of("date_proximity"),
}


@dataclass(frozen=True)
class BoundComparator:
    spec: StrategySpec
    function: Callable[[Any, Any], float]

    def __call__(self, value1: Any, value2: Any) -> float:
        return self.function(value1, value2)


class ComparatorTable:
    """Name -> comparator function map, built once and shared by reference."""

    def __init__(self, functions: Mapping[str, Comparator]) -> None:
        self._functions = dict(functions)

    @classmethod
    def default(cls) -> "ComparatorTable":
        return cls(
            {
                "exact": exact_match,
                "edit_distance": edit_distance_ratio,
                "jaro_winkler": jaro_winkler,
                "jaccard": jaccard_similarity,
                "cosine": cosine_similarity,
                "date_proximity": date_proximity,
            }
        )

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(self._functions)

    def with_comparator(self, name: str, function: Comparator) -> "ComparatorTable":
        return ComparatorTable({**self._functions, name: function})

    def bind(self, spec: StrategySpec) -> BoundComparator:
        function = self._functions.get(spec.name)
        if function is None:
            raise ConfigurationError(
                f"Unknown comparator {spec.name!r}; available: {sorted(self.names)}", config_key="comparators"
            )
        params = spec.kwargs
        try:
            inspect.signature(function).bind(None, None, **params)
        except TypeError as exc:
            raise ConfigurationError(f"Bad parameters for comparator {spec.label}: {exc}", "comparators") from exc
        for name, value in params.items():
            if name.endswith("_score") and not (_is_number(value) and 0.0 <= value <= 1.0):
                raise ConfigurationError(f"{spec.name}.{name} must be in [0, 1]", config_key="comparators")
            if name == "tolerance" and not (_is_number(value) and math.isfinite(value) and value >= 0):
                raise ConfigurationError(f"{spec.name}.tolerance must be >= 0", config_key="comparators")
            if name == "ngram_size" and (isinstance(value, bool) or not isinstance(value, int) or value < 1):
                raise ConfigurationError(f"{spec.name}.ngram_size must be a positive integer", "comparators")
        if params.get("weights") is not None:
            params["weights"] = dict(params["weights"])
            if any(not _is_number(weight) or weight < 0 for weight in params["weights"].values()):
                raise ConfigurationError(f"{spec.name}.weights must be numbers >= 0", config_key="comparators")
        return BoundComparator(spec=spec, function=partial(function, **params))
