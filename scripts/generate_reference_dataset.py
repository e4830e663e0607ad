from __future__ import annotations

import argparse
import csv
from pathlib import Path

from entity_resolution.datasets import PEOPLE_COLUMNS, ReferenceDatasetGenerator
from entity_resolution.io import write_records_csv


def main() -> None:
    parser = argparse.ArgumentParser(description="Generate a synthetic source/target people dataset")
    parser.add_argument("--size", type=int, default=10000)
    parser.add_argument("--seed", type=int, default=42)
    parser.add_argument("--overlap-rate", type=float, default=0.3)
    parser.add_argument("--output-dir", type=Path, default=Path("data/reference_people"))
    args = parser.parse_args()

    reference = ReferenceDatasetGenerator(seed=args.seed).generate_pair(size=args.size, overlap_rate=args.overlap_rate)

    args.output_dir.mkdir(parents=True, exist_ok=True)
    write_records_csv(args.output_dir / "source.csv", reference.source, PEOPLE_COLUMNS)
    write_records_csv(args.output_dir / "target.csv", reference.target, PEOPLE_COLUMNS)
    with (args.output_dir / "true_matches.csv").open("w", newline="", encoding="utf-8") as handle:
        writer = csv.writer(handle)
        writer.writerow(["SOURCE_ID", "TARGET_ID"])
        writer.writerows(reference.true_matches)


if __name__ == "__main__":
    main()
