from entity_resolution.datasets.profiles import PEOPLE_COLUMNS, PEOPLE_SCHEMA
from entity_resolution.datasets.reference import ReferenceDatasetGenerator, ReferencePair

__all__ = ["PEOPLE_COLUMNS", "PEOPLE_SCHEMA", "ReferenceDatasetGenerator", "ReferencePair"]
