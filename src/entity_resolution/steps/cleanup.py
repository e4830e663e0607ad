from __future__ import annotations

import re
from collections.abc import Callable, Mapping, Sequence

from entity_resolution.models import Record
from entity_resolution.schema import RecordSchema, SemanticType

_STREET_TYPES = {
    "avenue": "ave",
    "boulevard": "blvd",
    "circle": "cir",
    "court": "ct",
    "drive": "dr",
    "lane": "ln",
    "place": "pl",
    "road": "rd",
    "square": "sq",
    "street": "st",
    "terrace": "ter",
}
_DIRECTIONALS = {
    "north": "n",
    "south": "s",
    "east": "e",
    "west": "w",
    "northeast": "ne",
    "northwest": "nw",
    "southeast": "se",
    "southwest": "sw",
}
_UNIT_TYPES = {
    "apartment": "apt",
    "building": "bldg",
    "department": "dept",
    "floor": "fl",
    "room": "rm",
    "suite": "ste",
}
_ABBREVIATIONS = {**_STREET_TYPES, **_DIRECTIONALS, **_UNIT_TYPES}


def standardize_address(value: str) -> str:
    """Lowercase, strip punctuation and abbreviate street types, directionals and units."""
    text = re.sub(r"[^\w\s]", " ", value.lower())
    return " ".join(_ABBREVIATIONS.get(token, token) for token in text.split())


def standardize_email(value: str) -> str:
    return value.strip().lower()


def standardize_phone(value: str) -> str:
    return re.sub(r"\D", "", value)


def standardize_whitespace(value: str) -> str:
    return " ".join(value.split())


DEFAULT_TYPE_TRANSFORMS: dict[SemanticType, Callable[[str], str]] = {
    SemanticType.ADDRESS: standardize_address,
    SemanticType.EMAIL: standardize_email,
    SemanticType.PHONE: standardize_phone,
    SemanticType.FIRST_NAME: standardize_whitespace,
    SemanticType.LAST_NAME: standardize_whitespace,
    SemanticType.FULL_NAME: standardize_whitespace,
    SemanticType.POSTAL_CODE: lambda value: value.replace(" ", "").upper(),
}


class FunctionalCleaner:
    """Applies per-semantic-type string transforms to one side's records.

    Records are copied, never mutated. Non-string values pass through untouched.
    """

    def __init__(
        self,
        schema: RecordSchema,
        type_transforms: Mapping[SemanticType, Callable[[str], str]] | None = None,
    ) -> None:
        self._schema = schema
        self._type_transforms = dict(DEFAULT_TYPE_TRANSFORMS if type_transforms is None else type_transforms)

    def clean(self, records: Sequence[Record]) -> list[Record]:
        cleaned: list[Record] = []
        for record in records:
            if record is None or not isinstance(getattr(record, "attributes", None), Mapping):
                # Left for the blocking stage to report as a skipped record.
                cleaned.append(record)
                continue
            attrs = dict(record.attributes)
            for semantic_type, transform in self._type_transforms.items():
                column = self._schema.column_for(semantic_type)
                if column is None:
                    continue
                value = attrs.get(column)
                if isinstance(value, str):
                    attrs[column] = transform(value)
            cleaned.append(Record(record_id=record.record_id, attributes=attrs))
        return cleaned
