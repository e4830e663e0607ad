from __future__ import annotations

from typing import Iterator, Protocol, Sequence

from entity_resolution.models import Record


class RecordCleaner(Protocol):
    """Normalize fields into a canonical representation before blocking."""

    def clean(self, records: Sequence[Record]) -> list[Record]:
        ...


class TextEmbedder(Protocol):
    """Map free text into fixed-length vectors (used by LSH blocking)."""

    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        ...


class RecordSource(Protocol):
    """Store that supplies records in bounded batches. Pagination is its concern."""

    def batches(self, batch_size: int) -> Iterator[list[Record]]:
        ...
