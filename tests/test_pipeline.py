import threading

import pytest

from entity_resolution.config import ResolutionConfig
from entity_resolution.datasets import PEOPLE_COLUMNS, PEOPLE_SCHEMA, ReferenceDatasetGenerator
from entity_resolution.errors import DegenerateBlockingError, OperationCancelled
from entity_resolution.io import CsvRecordSource, write_records_csv
from entity_resolution.models import MatchTier, Record
from entity_resolution.runners import LocalResolutionPipeline
from entity_resolution.schema import RecordSchema, SemanticType
from entity_resolution.steps.scoring import SimilarityEngine


@pytest.fixture
def market_schema() -> RecordSchema:
    return RecordSchema.from_mapping(
        {
            SemanticType.FIRST_NAME: "FIRSTNAME",
            SemanticType.LAST_NAME: "LASTNAME",
            SemanticType.ADDRESS: "BILLING_ADDRESS_LINE1",
            SemanticType.EMAIL: "EMAIL",
        }
    )


@pytest.fixture
def market_records() -> tuple[list[Record], list[Record]]:
    source = [
        Record(
            record_id="s1",
            attributes={
                "FIRSTNAME": "Jane",
                "LASTNAME": "Smith",
                "BILLING_ADDRESS_LINE1": "12 Market Street",
                "EMAIL": "jane@example.com",
            },
        ),
        Record(
            record_id="s2",
            attributes={
                "FIRSTNAME": "Alex",
                "LASTNAME": "Doe",
                "BILLING_ADDRESS_LINE1": "44 Pine Road",
                "EMAIL": "alex@example.com",
            },
        ),
    ]
    target = [
        Record(
            record_id="t1",
            attributes={
                "FIRSTNAME": "Jane",
                "LASTNAME": "Smit",
                "BILLING_ADDRESS_LINE1": "12 Market St",
                "EMAIL": "Jane@Example.com",
            },
        ),
        Record(
            record_id="t2",
            attributes={
                "FIRSTNAME": "Maya",
                "LASTNAME": "Brown",
                "BILLING_ADDRESS_LINE1": "9 Elm Lane",
                "EMAIL": "maya@example.com",
            },
        ),
    ]
    return source, target


def test_pipeline_links_near_duplicates(market_schema, market_records) -> None:
    source, target = market_records
    pipeline = LocalResolutionPipeline(ResolutionConfig(), source_schema=market_schema, target_schema=market_schema)

    result = pipeline.run(source, target)

    assert [(edge.source_id, edge.target_id) for edge in result.edges] == [("s1", "t1")]
    assert result.edges[0].tier is MatchTier.HIGH
    assert [cluster.record_ids for cluster in result.clusters] == [["s1", "t1"]]
    assert result.candidate_count == 4
    assert result.statistics.total_clusters == 1
    assert result.quality.high_rate == 1.0
    assert [(m.source_id, m.target_id) for m in result.transitive_matches] == [("s1", "t1")]
    assert result.skipped == []
    assert source[0].attributes["BILLING_ADDRESS_LINE1"] == "12 Market Street"


def test_streamed_batches_match_single_run(market_schema, market_records) -> None:
    source, target = market_records
    pipeline = LocalResolutionPipeline(ResolutionConfig(), source_schema=market_schema, target_schema=market_schema)

    whole = pipeline.run(source, target)
    streamed = pipeline.run_batches([[record] for record in source], target)

    assert streamed.edges == whole.edges
    assert streamed.candidate_count == whole.candidate_count


def test_run_source_reads_csv_batches(tmp_path, market_schema, market_records) -> None:
    source, target = market_records
    path = tmp_path / "source.csv"
    write_records_csv(path, source, ["FIRSTNAME", "LASTNAME", "BILLING_ADDRESS_LINE1", "EMAIL"])
    pipeline = LocalResolutionPipeline(ResolutionConfig(), source_schema=market_schema, target_schema=market_schema)

    result = pipeline.run_source(CsvRecordSource(path), target, batch_size=1)

    assert [(edge.source_id, edge.target_id) for edge in result.edges] == [("s1", "t1")]


def test_malformed_record_is_skipped_not_fatal(market_schema, market_records) -> None:
    source, target = market_records
    pipeline = LocalResolutionPipeline(ResolutionConfig(), source_schema=market_schema, target_schema=market_schema)

    result = pipeline.run([*source, Record("broken", None)], target)

    assert len(result.edges) == 1
    assert [(item.record_id, item.stage) for item in result.skipped] == [("broken", "blocking")]


def test_schemas_without_shared_blockable_type_fail_fast() -> None:
    source_schema = RecordSchema.from_mapping({SemanticType.CITY: "city"})
    target_schema = RecordSchema.from_mapping({SemanticType.CITY: "town"})
    with pytest.raises(DegenerateBlockingError):
        LocalResolutionPipeline(ResolutionConfig(), source_schema=source_schema, target_schema=target_schema)


def test_side_without_keys_fails_before_scoring(market_schema, market_records) -> None:
    source, _ = market_records
    blank = [Record("t1", {"FIRSTNAME": "", "LASTNAME": None, "EMAIL": " "})]
    pipeline = LocalResolutionPipeline(ResolutionConfig(), source_schema=market_schema, target_schema=market_schema)
    with pytest.raises(DegenerateBlockingError):
        pipeline.run(source, blank)


def test_cancellation_stops_clustering(market_schema, market_records) -> None:
    source, target = market_records
    cancel = threading.Event()
    cancel.set()
    pipeline = LocalResolutionPipeline(
        ResolutionConfig(), source_schema=market_schema, target_schema=market_schema, cancel_event=cancel
    )
    with pytest.raises(OperationCancelled):
        pipeline.run(source, target)


def test_reference_dataset_duplicates_are_recovered() -> None:
    reference = ReferenceDatasetGenerator(seed=3).generate_pair(size=60, overlap_rate=0.5)
    assert len(reference.source) == 60
    assert len(reference.target) == 60
    assert len(reference.true_matches) == 30
    assert set(PEOPLE_COLUMNS) == set(reference.target[0].attributes)

    result = LocalResolutionPipeline(
        ResolutionConfig(workers=2), source_schema=PEOPLE_SCHEMA, target_schema=PEOPLE_SCHEMA
    ).run(reference.source, reference.target)

    found = {(edge.source_id, edge.target_id) for edge in result.edges}
    recovered = sum(pair in found for pair in reference.true_matches)
    assert recovered / len(reference.true_matches) >= 0.9


def _with_id(record: Record, record_id: str) -> Record:
    return Record(record_id, dict(record.attributes))


def test_shared_ids_across_collections_stay_distinct_nodes(market_schema, market_records) -> None:
    source, target = market_records
    pipeline = LocalResolutionPipeline(ResolutionConfig(), source_schema=market_schema, target_schema=market_schema)

    result = pipeline.run(
        [_with_id(source[0], "1"), _with_id(source[1], "2")],
        [_with_id(source[0], "1"), _with_id(source[1], "2")],
    )

    assert [(edge.source_id, edge.target_id) for edge in result.edges] == [("1", "1"), ("2", "2")]
    assert [cluster.record_ids for cluster in result.clusters] == [
        ["source:1", "target:1"],
        ["source:2", "target:2"],
    ]
    assert result.statistics.total_records == 4


def test_crossed_shared_ids_do_not_merge_clusters(market_schema, market_records) -> None:
    source, target = market_records
    pipeline = LocalResolutionPipeline(ResolutionConfig(), source_schema=market_schema, target_schema=market_schema)

    result = pipeline.run(
        [_with_id(source[0], "1"), _with_id(source[1], "2")],
        [_with_id(source[1], "1"), _with_id(target[0], "2")],
    )

    assert [cluster.record_ids for cluster in result.clusters] == [
        ["source:1", "target:2"],
        ["source:2", "target:1"],
    ]
    assert all(match.depth == 1 for match in result.transitive_matches)


def test_target_lookup_is_built_once_for_all_batches(market_schema, market_records, monkeypatch) -> None:
    source, target = market_records
    pipeline = LocalResolutionPipeline(ResolutionConfig(), source_schema=market_schema, target_schema=market_schema)
    lookups = []
    score_candidates = SimilarityEngine.score_candidates

    def recording(self, pairs, source_records, target_records, *schemas):
        lookups.append(target_records)
        return score_candidates(self, pairs, source_records, target_records, *schemas)

    monkeypatch.setattr(SimilarityEngine, "score_candidates", recording)
    result = pipeline.run_batches([[record] for record in source], target)

    assert len(lookups) == 2
    assert lookups[0] is lookups[1]
    assert set(lookups[0]) == {"t1", "t2"}
    assert [(edge.source_id, edge.target_id) for edge in result.edges] == [("s1", "t1")]
