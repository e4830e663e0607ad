from __future__ import annotations

import re
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Iterable, Mapping

from entity_resolution.errors import ConfigurationError, InputError
from entity_resolution.models import Record


class SemanticType(StrEnum):
    ADDRESS = "address"
    CITY = "city"
    COMPANY_NAME = "companyName"
    COUNTRY = "country"
    CUSTOMER_ID = "customerId"
    DATE = "date"
    DATE_OF_BIRTH = "dateOfBirth"
    DESCRIPTION = "description"
    EMAIL = "email"
    EMBEDDING = "embedding"
    FIRST_NAME = "firstName"
    FULL_NAME = "fullName"
    GENDER = "gender"
    LAST_NAME = "lastName"
    PHONE = "phone"
    POSTAL_CODE = "postalCode"
    STATE = "state"
    TAGS = "tags"


# Normalized column names (lowercase, alphanumerics only) per semantic type.
_COLUMN_ALIASES: dict[SemanticType, tuple[str, ...]] = {
    SemanticType.EMAIL: ("email", "emailaddress", "email_address", "contactemail", "personalemail", "businessemail"),
    SemanticType.FIRST_NAME: ("firstname", "personfirstname", "fname", "givenname", "first"),
    SemanticType.LAST_NAME: ("lastname", "personlastname", "lname", "surname", "last", "familyname"),
    SemanticType.FULL_NAME: ("fullname", "name", "personname", "customername"),
    SemanticType.PHONE: ("phone", "phonenumber", "telephone", "tel", "mobile", "cell", "homephone", "mobilephone"),
    SemanticType.DATE_OF_BIRTH: ("dob", "dateofbirth", "birthdate", "birthday"),
    SemanticType.GENDER: ("gender", "sex"),
    SemanticType.ADDRESS: ("address", "streetaddress", "addr", "street", "addressline1", "mailingaddress"),
    SemanticType.CITY: ("city", "town", "municipality", "locality"),
    SemanticType.STATE: ("state", "province", "region", "stateprovince"),
    SemanticType.POSTAL_CODE: ("zipcode", "zip", "postalcode", "postcode", "postal"),
    SemanticType.COUNTRY: ("country", "nation", "countrycode"),
    SemanticType.COMPANY_NAME: ("companyname", "company", "organization", "businessname", "employer"),
    SemanticType.CUSTOMER_ID: ("customerid", "userid", "accountid"),
    SemanticType.DATE: ("date", "eventdate"),
    SemanticType.DESCRIPTION: ("description", "notes", "comment", "bio"),
    SemanticType.TAGS: ("tags", "labels", "keywords"),
    SemanticType.EMBEDDING: ("embedding", "vector"),
}


def parse_semantic_type(value: SemanticType | str) -> SemanticType:
    if isinstance(value, SemanticType):
        return value
    try:
        return SemanticType(value)
    except ValueError:
        raise InputError(f"Unknown semantic type: {value!r}") from None


@dataclass(frozen=True, slots=True)
class FieldMapping:
    semantic_type: SemanticType
    column: str


@dataclass(frozen=True)
class RecordSchema:
    """Maps one side's raw columns to semantic types.

    Semantic types are unique within a schema.
    """

    mappings: tuple[FieldMapping, ...]

    def __post_init__(self) -> None:
        seen: set[SemanticType] = set()
        for mapping in self.mappings:
            if mapping.semantic_type in seen:
                raise ConfigurationError(
                    f"Semantic type {mapping.semantic_type.value!r} is mapped more than once",
                    config_key="fieldMappings",
                )
            seen.add(mapping.semantic_type)

    @classmethod
    def from_mapping(cls, mapping: Mapping[SemanticType | str, str]) -> "RecordSchema":
        return cls(
            mappings=tuple(
                FieldMapping(semantic_type=parse_semantic_type(semantic_type), column=column)
                for semantic_type, column in mapping.items()
            )
        )

    @classmethod
    def infer(cls, columns: Iterable[str]) -> "RecordSchema":
        """Guess semantic types from column names. First matching column wins."""
        found: dict[SemanticType, str] = {}
        for column in columns:
            semantic_type = infer_semantic_type(column)
            if semantic_type is not None and semantic_type not in found:
                found[semantic_type] = column
        return cls.from_mapping(found)

    @property
    def semantic_types(self) -> tuple[SemanticType, ...]:
        return tuple(mapping.semantic_type for mapping in self.mappings)

    def column_for(self, semantic_type: SemanticType) -> str | None:
        for mapping in self.mappings:
            if mapping.semantic_type == semantic_type:
                return mapping.column
        return None

    def shared_types(self, other: "RecordSchema") -> list[SemanticType]:
        theirs = set(other.semantic_types)
        return [semantic_type for semantic_type in self.semantic_types if semantic_type in theirs]

    def value_for(self, attributes: Mapping[str, Any], semantic_type: SemanticType) -> Any:
        column = self.column_for(semantic_type)
        if column is None:
            return None
        value = attributes.get(column)
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value

    def values(self, record: Record) -> dict[SemanticType, Any]:
        check_record(record)
        return {
            mapping.semantic_type: self.value_for(record.attributes, mapping.semantic_type)
            for mapping in self.mappings
        }


def check_record(record: Any) -> None:
    if record is None:
        raise InputError("Record is null")
    record_id = getattr(record, "record_id", None)
    if not record_id:
        raise InputError("Record has no identifier")
    if not isinstance(getattr(record, "attributes", None), Mapping):
        raise InputError("Record attributes must be a mapping", record_id=str(record_id))


def infer_semantic_type(column: str) -> SemanticType | None:
    normalized = re.sub(r"[^a-z0-9]", "", column.lower())
    for semantic_type, aliases in _COLUMN_ALIASES.items():
        if normalized in {re.sub(r"[^a-z0-9]", "", alias) for alias in aliases}:
            return semantic_type
    return None
