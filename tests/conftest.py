from __future__ import annotations

import pytest

from entity_resolution.models import MatchEdge, MatchTier, Record
from entity_resolution.schema import RecordSchema, SemanticType


@pytest.fixture
def name_email_schema() -> RecordSchema:
    return RecordSchema.from_mapping(
        {
            SemanticType.FIRST_NAME: "FIRSTNAME",
            SemanticType.LAST_NAME: "LASTNAME",
            SemanticType.EMAIL: "EMAIL",
        }
    )


@pytest.fixture
def john_records() -> tuple[Record, Record]:
    source = Record(record_id="s1", attributes={"FIRSTNAME": "John", "LASTNAME": "Smith", "EMAIL": "john@x.com"})
    target = Record(record_id="t1", attributes={"FIRSTNAME": "Johnny", "LASTNAME": "Smith", "EMAIL": "john@x.com"})
    return source, target


def make_edge(source_id: str, target_id: str, confidence: float) -> MatchEdge:
    return MatchEdge(source_id=source_id, target_id=target_id, confidence=confidence, tier=MatchTier.HIGH)


@pytest.fixture
def two_cluster_edges() -> list[MatchEdge]:
    return [make_edge("A", "B", 0.95), make_edge("B", "C", 0.88), make_edge("E", "F", 0.89)]
