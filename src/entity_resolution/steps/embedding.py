from __future__ import annotations

import hashlib
from collections.abc import Sequence

import numpy as np


class HashingTextEmbedder:
    """Feature-hashing baseline embedder.

    Tokens hash with blake2b rather than ``hash()`` so vectors are identical
    across processes, which LSH blocking relies on.
    """

    def __init__(self, dimensions: int = 64) -> None:
        if dimensions <= 0:
            raise ValueError("dimensions must be positive")
        self._dimensions = dimensions

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        vectors: list[list[float]] = []
        for text in texts:
            vector = np.zeros(self._dimensions, dtype=np.float64)
            for token in str(text).lower().split():
                digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
                vector[int.from_bytes(digest, "big") % self._dimensions] += 1.0
            vectors.append(_l2_normalize(vector).tolist())
        return vectors


class SbertTextEmbedder:
    """Sentence-Transformers embedding adapter (SBERT)."""

    def __init__(self, model_name: str = "all-MiniLM-L6-v2", batch_size: int = 64) -> None:
        self._batch_size = batch_size
        try:
            from sentence_transformers import SentenceTransformer
        except ImportError as exc:
            raise ImportError(
                "SBERT backend requires sentence-transformers. "
                "Install with: pip install 'entity-resolution[sbert]'"
            ) from exc
        self._model = SentenceTransformer(model_name)

    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        vectors = self._model.encode(
            [str(text).lower() for text in texts],
            batch_size=self._batch_size,
            normalize_embeddings=True,
            convert_to_numpy=True,
            show_progress_bar=False,
        )
        return [vector.tolist() for vector in vectors]


def _l2_normalize(vector: np.ndarray) -> np.ndarray:
    norm = np.linalg.norm(vector)
    if norm == 0:
        return vector
    return vector / norm
