from __future__ import annotations

from entity_resolution.schema import RecordSchema, SemanticType

PEOPLE_COLUMNS = [
    "FIRST_NAME",
    "LAST_NAME",
    "EMAIL",
    "PHONE",
    "DOB",
    "ADDRESS",
    "CITY",
    "POSTAL_CODE",
    "COUNTRY",
]


PEOPLE_SCHEMA = RecordSchema.from_mapping(
    {
        SemanticType.FIRST_NAME: "FIRST_NAME",
        SemanticType.LAST_NAME: "LAST_NAME",
        SemanticType.EMAIL: "EMAIL",
        SemanticType.PHONE: "PHONE",
        SemanticType.DATE_OF_BIRTH: "DOB",
        SemanticType.ADDRESS: "ADDRESS",
        SemanticType.CITY: "CITY",
        SemanticType.POSTAL_CODE: "POSTAL_CODE",
        SemanticType.COUNTRY: "COUNTRY",
    }
)
