from __future__ import annotations

import csv
import json
import logging
from collections.abc import Iterator, Sequence
from dataclasses import asdict
from pathlib import Path

from entity_resolution.errors import ConfigurationError
from entity_resolution.models import Record
from entity_resolution.schema import RecordSchema

logger = logging.getLogger(__name__)

DEFAULT_ID_COLUMN = "RECORD_ID"


class CsvRecordSource:
    """Streams records from a CSV file in fixed-size batches."""

    def __init__(self, path: Path, id_column: str = DEFAULT_ID_COLUMN) -> None:
        self._path = Path(path)
        self._id_column = id_column

    @property
    def columns(self) -> list[str]:
        with self._path.open("r", newline="", encoding="utf-8") as handle:
            header = next(csv.reader(handle), [])
        return [column for column in header if column != self._id_column]

    def batches(self, batch_size: int) -> Iterator[list[Record]]:
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        batch: list[Record] = []
        with self._path.open("r", newline="", encoding="utf-8") as handle:
            reader = csv.DictReader(handle)
            for line_no, row in enumerate(reader, start=2):
                record_id = row.get(self._id_column)
                if not record_id:
                    logger.warning(f"{self._path}:{line_no} has no {self._id_column}, skipping row")
                    continue
                attrs = {k: v for k, v in row.items() if k != self._id_column}
                batch.append(Record(record_id=record_id, attributes=attrs))
                if len(batch) >= batch_size:
                    yield batch
                    batch = []
        if batch:
            yield batch


def read_records_csv(path: Path, id_column: str = DEFAULT_ID_COLUMN) -> list[Record]:
    source = CsvRecordSource(path, id_column=id_column)
    return [record for batch in source.batches(10_000) for record in batch]


def write_records_csv(
    path: Path, records: Sequence[Record], columns: Sequence[str], id_column: str = DEFAULT_ID_COLUMN
) -> None:
    with path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.DictWriter(handle, fieldnames=[id_column, *columns])
        writer.writeheader()
        for record in records:
            writer.writerow({id_column: record.record_id, **record.attributes})


def read_schema_json(path: Path) -> RecordSchema:
    """Read a ``{"semanticType": "column"}`` mapping file."""
    with Path(path).open("r", encoding="utf-8") as handle:
        try:
            mapping = json.load(handle)
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"Could not parse field mapping {path}: {exc}", "fieldMappings") from exc
    if not isinstance(mapping, dict):
        raise ConfigurationError(f"Field mapping {path} must be a JSON object", config_key="fieldMappings")
    return RecordSchema.from_mapping(mapping)


def write_json(path: Path, payload: object) -> None:
    with path.open("w", encoding="utf-8") as handle:
        json.dump(payload, handle, indent=2, default=str)


def as_payload(items: Sequence[object]) -> list[dict]:
    return [asdict(item) for item in items]
