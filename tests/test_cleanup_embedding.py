import numpy as np
import pytest

from entity_resolution.models import Record
from entity_resolution.schema import RecordSchema, SemanticType
from entity_resolution.steps.cleanup import FunctionalCleaner, standardize_address, standardize_phone
from entity_resolution.steps.embedding import HashingTextEmbedder


def test_standardize_address_abbreviates() -> None:
    assert standardize_address("123 North Main Street, Apartment 4") == "123 n main st apt 4"
    assert standardize_address("12 Market St.") == "12 market st"


def test_standardize_phone_keeps_digits() -> None:
    assert standardize_phone("+44 (0)7700 900-123") == "4407700900123"


def test_cleaner_copies_records() -> None:
    schema = RecordSchema.from_mapping({SemanticType.EMAIL: "EMAIL", SemanticType.ADDRESS: "ADDR"})
    original = Record("r1", {"EMAIL": " Jane@Example.COM ", "ADDR": "12 Market Street", "OTHER": 5})

    cleaned = FunctionalCleaner(schema).clean([original, None])

    assert cleaned[0].attributes == {"EMAIL": "jane@example.com", "ADDR": "12 market st", "OTHER": 5}
    assert original.attributes["EMAIL"] == " Jane@Example.COM "
    assert cleaned[1] is None


def test_hashing_embedder_is_deterministic_and_normalized() -> None:
    embedder = HashingTextEmbedder(dimensions=32)
    first, second, empty = embedder.embed(["Jane Smith London", "jane smith london", ""])
    assert first == second
    assert len(first) == 32
    assert np.linalg.norm(first) == pytest.approx(1.0)
    assert not any(empty)


def test_hashing_embedder_rejects_bad_dimensions() -> None:
    with pytest.raises(ValueError):
        HashingTextEmbedder(dimensions=0)


def test_sbert_embedder_normalizes_vectors() -> None:
    pytest.importorskip("sentence_transformers")
    from entity_resolution.steps.embedding import SbertTextEmbedder

    try:
        embedder = SbertTextEmbedder()
    except OSError as exc:
        pytest.skip(f"Model not available offline: {exc}")
    vector = embedder.embed(["12 Market Street"])[0]
    assert np.linalg.norm(vector) == pytest.approx(1.0, abs=1e-4)
