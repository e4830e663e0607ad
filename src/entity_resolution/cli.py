from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import os
import sys
from collections.abc import Sequence
from pathlib import Path

from dotenv import load_dotenv

from entity_resolution.config import ResolutionConfig, load_config
from entity_resolution.datasets import PEOPLE_COLUMNS, PEOPLE_SCHEMA, ReferenceDatasetGenerator
from entity_resolution.errors import ResolutionError
from entity_resolution.io import (
    CsvRecordSource,
    as_payload,
    read_records_csv,
    read_schema_json,
    write_json,
    write_records_csv,
)
from entity_resolution.interfaces import TextEmbedder
from entity_resolution.logging import setup_logging
from entity_resolution.runners import LocalResolutionPipeline, ResolutionResult
from entity_resolution.schema import RecordSchema
from entity_resolution.steps.embedding import HashingTextEmbedder, SbertTextEmbedder

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "ENTITY_RESOLUTION_CONFIG"


def main(argv: Sequence[str] | None = None) -> int:
    load_dotenv()
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    setup_logging(
        level=getattr(logging, args.log_level),
        log_dir=args.log_dir,
        json_output=args.json_logs,
        run_name=args.command,
    )
    try:
        config = _resolve_config(args.config, args.workers)
        embedder = _build_embedder(args.embedding_backend, args.sbert_model, args.sbert_batch_size)
        if args.command == "run":
            run(
                source_path=args.source,
                target_path=args.target,
                config=config,
                output_dir=args.output_dir,
                id_column=args.id_column,
                source_mapping=args.source_mapping,
                target_mapping=args.target_mapping,
                batch_size=args.batch_size,
                embedder=embedder,
            )
        elif args.command == "run-test":
            run_test(
                size=args.size,
                overlap_rate=args.overlap_rate,
                seed=args.seed,
                config=config,
                output_dir=args.output_dir,
                embedder=embedder,
            )
    except ResolutionError as exc:
        logger.error(f"{type(exc).__name__}: {exc}")
        return 1
    return 0


def run(
    *,
    source_path: Path,
    target_path: Path,
    config: ResolutionConfig,
    output_dir: Path,
    id_column: str,
    source_mapping: Path | None,
    target_mapping: Path | None,
    batch_size: int,
    embedder: TextEmbedder | None = None,
) -> dict[str, object]:
    source = CsvRecordSource(source_path, id_column=id_column)
    source_schema = read_schema_json(source_mapping) if source_mapping else RecordSchema.infer(source.columns)
    target_columns = CsvRecordSource(target_path, id_column=id_column).columns
    target_schema = read_schema_json(target_mapping) if target_mapping else RecordSchema.infer(target_columns)
    logger.info(f"Source mapping: {_describe(source_schema)}")
    logger.info(f"Target mapping: {_describe(target_schema)}")

    pipeline = LocalResolutionPipeline(
        config, source_schema=source_schema, target_schema=target_schema, embedder=embedder
    )
    target = read_records_csv(target_path, id_column=id_column)
    result = pipeline.run_source(source, target, batch_size=batch_size)
    return _write_outputs(result, output_dir, {"source_path": str(source_path), "target_path": str(target_path)})


def run_test(
    *,
    size: int,
    overlap_rate: float,
    seed: int,
    config: ResolutionConfig,
    output_dir: Path,
    embedder: TextEmbedder | None = None,
) -> dict[str, object]:
    output_dir.mkdir(parents=True, exist_ok=True)
    reference = ReferenceDatasetGenerator(seed=seed).generate_pair(size=size, overlap_rate=overlap_rate)
    source_path = output_dir / "source.csv"
    target_path = output_dir / "target.csv"
    write_records_csv(source_path, reference.source, PEOPLE_COLUMNS)
    write_records_csv(target_path, reference.target, PEOPLE_COLUMNS)

    pipeline = LocalResolutionPipeline(
        config, source_schema=PEOPLE_SCHEMA, target_schema=PEOPLE_SCHEMA, embedder=embedder
    )
    result = pipeline.run(reference.source, reference.target)

    truth = set(reference.true_matches)
    found = {(edge.source_id, edge.target_id) for edge in result.edges}
    true_positives = len(truth & found)
    evaluation = {
        "true_match_count": len(truth),
        "precision": round(true_positives / len(found), 4) if found else 0.0,
        "recall": round(true_positives / len(truth), 4) if truth else 0.0,
    }
    return _write_outputs(
        result,
        output_dir,
        {"source_path": str(source_path), "target_path": str(target_path), **evaluation},
    )


def _write_outputs(result: ResolutionResult, output_dir: Path, extra: dict[str, object]) -> dict[str, object]:
    output_dir.mkdir(parents=True, exist_ok=True)
    edges_path = output_dir / "edges.json"
    clusters_path = output_dir / "clusters.json"
    transitive_path = output_dir / "transitive_matches.json"
    summary_path = output_dir / "summary.json"

    write_json(edges_path, as_payload(result.edges))
    write_json(clusters_path, as_payload(result.clusters))
    write_json(transitive_path, as_payload(result.transitive_matches))
    summary = _build_summary(result)
    summary.update(extra)
    summary.update({"edges_path": str(edges_path), "clusters_path": str(clusters_path)})
    write_json(summary_path, summary)

    print(f"Edges: {edges_path}")
    print(f"Clusters: {clusters_path}")
    print(f"Summary: {summary_path}")
    print("---")
    print(f"candidate_pairs={summary['candidate_pair_count']}")
    print(f"edges={summary['edge_count']}")
    print(f"clusters={summary['cluster_count']}")
    print(f"skipped={summary['skipped_count']}")
    if "recall" in summary:
        print(f"precision={summary['precision']}")
        print(f"recall={summary['recall']}")
    return summary


def _build_summary(result: ResolutionResult) -> dict[str, object]:
    return {
        "candidate_pair_count": result.candidate_count,
        "edge_count": len(result.edges),
        "cluster_count": len(result.clusters),
        "transitive_match_count": len(result.transitive_matches),
        "skipped_count": len(result.skipped),
        "skipped": as_payload(result.skipped[:100]),
        "quality": dataclasses.asdict(result.quality),
        "statistics": dataclasses.asdict(result.statistics),
    }


def _resolve_config(config_path: Path | None, workers: int | None) -> ResolutionConfig:
    if config_path is None and os.getenv(CONFIG_ENV_VAR):
        config_path = Path(os.environ[CONFIG_ENV_VAR])
    config = load_config(config_path) if config_path else ResolutionConfig()
    if workers is not None:
        config = dataclasses.replace(config, workers=workers)
    return config


def _build_embedder(backend: str, sbert_model: str, sbert_batch_size: int) -> TextEmbedder:
    """Embedder for text values in embedding columns, used by LSH blocking."""
    if backend == "sbert":
        return SbertTextEmbedder(model_name=sbert_model, batch_size=sbert_batch_size)
    return HashingTextEmbedder()


def _describe(schema: RecordSchema) -> str:
    return json.dumps({mapping.semantic_type.value: mapping.column for mapping in schema.mappings})


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="entity-resolution", description="Entity resolution CLI")
    parser.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"], default="INFO")
    parser.add_argument("--log-dir", type=Path, default=None)
    parser.add_argument("--json-logs", action="store_true", help="Write the log file as JSON lines")
    subparsers = parser.add_subparsers(dest="command")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", type=Path, default=None, help=f"JSON or TOML config (or ${CONFIG_ENV_VAR})")
    common.add_argument("--output-dir", type=Path, default=Path("data/cli_output"))
    common.add_argument("--workers", type=int, default=None)
    common.add_argument("--embedding-backend", choices=["hashing", "sbert"], default="hashing")
    common.add_argument("--sbert-model", type=str, default="all-MiniLM-L6-v2")
    common.add_argument("--sbert-batch-size", type=int, default=64)

    run_parser = subparsers.add_parser(
        "run", parents=[common], help="Match two CSV files and write edges, clusters and a summary"
    )
    run_parser.add_argument("--source", type=Path, required=True)
    run_parser.add_argument("--target", type=Path, required=True)
    run_parser.add_argument("--id-column", type=str, default="RECORD_ID")
    run_parser.add_argument("--source-mapping", type=Path, default=None, help="JSON {semanticType: column}")
    run_parser.add_argument("--target-mapping", type=Path, default=None, help="JSON {semanticType: column}")
    run_parser.add_argument("--batch-size", type=int, default=1000)

    run_test_parser = subparsers.add_parser(
        "run-test",
        parents=[common],
        help="Generate a synthetic source/target pair, resolve it and report precision/recall",
    )
    run_test_parser.add_argument("--size", type=int, default=1000)
    run_test_parser.add_argument("--overlap-rate", type=float, default=0.3)
    run_test_parser.add_argument("--seed", type=int, default=42)

    return parser


if __name__ == "__main__":
    sys.exit(main())
