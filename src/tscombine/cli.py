"""Command-line interface for combining time-series files."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Optional, Sequence

from . import config
from .core.errors import CombineError
from .ingest.detect import describe_source, load_source
from .job import load_job_config
from .pipeline import run_job

logging.basicConfig(
    level=getattr(logging, str(config.LOG_LEVEL).upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Combine irregular time-series files onto one regular time grid.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run a job file
  python -m tscombine.cli --config jobs/plant.yaml

  # Same job, different output file and four worker threads
  python -m tscombine.cli --config jobs/plant.yaml -o out/plant.xlsx --workers 4

  # Inspect the sources of a job without combining
  python -m tscombine.cli --config jobs/plant.yaml --describe

  # Inspect single files
  python -m tscombine.cli --describe data/boiler.csv data/chiller.xlsx
""",
    )
    parser.add_argument(
        "files",
        nargs="*",
        type=Path,
        help="Files to describe (with --describe and no --config)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="YAML job file",
    )
    parser.add_argument(
        "-o", "--output",
        type=Path,
        help="Output file (.csv, .parquet or .xlsx); overrides the job file",
    )
    parser.add_argument(
        "--workers",
        type=int,
        help="Worker threads for column alignment; overrides the job file",
    )
    parser.add_argument(
        "--describe",
        action="store_true",
        help="Print per-source metadata and exit",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    return parser


def main(argv: Optional[Sequence[str]] = None) -> None:
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if args.workers is not None and args.workers < 1:
        parser.error("--workers must be at least 1")

    if args.describe:
        if args.config:
            job = load_job_config(args.config)
            targets = [(s.path, s.name, s.timestamp_col, s.pivot) for s in job.sources]
        elif args.files:
            targets = [(p, None, None, None) for p in args.files]
        else:
            parser.error("--describe needs --config or at least one file")
        for path, name, timestamp_col, pivot in targets:
            dataset = load_source(path, name=name, timestamp_col=timestamp_col, long_format=pivot)
            print(json.dumps(describe_source(dataset), indent=2, default=str))
        return

    if not args.config:
        parser.error("--config is required unless using --describe with files")

    job = load_job_config(args.config)
    logger.info(f"Starting job {args.config}: {len(job.sources)} source(s), {len(job.stacks)} stack(s)")

    try:
        outcome = run_job(job, output=args.output, max_workers=args.workers)
    except CombineError as e:
        logger.error(f"Combine failed: {e}")
        raise SystemExit(1)

    result = outcome.result
    print(f"\n{'='*50}")
    print("Combine Summary")
    print(f"{'='*50}")
    print(f"  Grid points: {len(outcome.grid):,}")
    print(f"  Columns:     {len(result.dataset.columns)}")
    print(f"  Failures:    {len(result.failures)}")
    print(f"  Warnings:    {len(result.warnings)}")
    print(f"  Output:      {outcome.output_path}")

    if result.failures:
        print("\nFailed columns:")
        for issue in result.failures[:10]:
            print(f"  - {issue}")
        if len(result.failures) > 10:
            print(f"  ... and {len(result.failures) - 10} more")


if __name__ == "__main__":
    main()
