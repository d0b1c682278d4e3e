#!/usr/bin/env python
# ruff: noqa: E402
"""
combine_folder.py

Combine every CSV / Excel file in a directory onto one time grid without
writing a job file. Each file's selectable columns are all included with the
same cleanup and alignment policies; the grid spans all files.

Example:
    python scripts/combine_folder.py data/site_a
    python scripts/combine_folder.py data/site_a --interval 15min --alignment average -o out/site_a.xlsx
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from tscombine.config import DEFAULT_INTERVAL, OUTPUT_DIR
from tscombine.core import (
    CombineOptions,
    SourceDescriptor,
    build_time_grid,
    combine,
    default_time_range,
)
from tscombine.export import write_combined
from tscombine.ingest import load_source
from tscombine.ingest.readers import SUPPORTED_EXTENSIONS


def main():
    parser = argparse.ArgumentParser(description="Combine all files in a directory onto one time grid")
    parser.add_argument("directory", help="Directory with CSV / Excel files")
    parser.add_argument(
        "--interval",
        default=DEFAULT_INTERVAL,
        help=f"Grid interval (default: {DEFAULT_INTERVAL})",
    )
    parser.add_argument(
        "--cleanup",
        default="nearest_fill",
        help="Missing-value policy for every column (default: nearest_fill)",
    )
    parser.add_argument(
        "--alignment",
        default="nearest_neighbor",
        help="Alignment policy for every source (default: nearest_neighbor)",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=1,
        help="Worker threads (default: 1)",
    )
    parser.add_argument(
        "-o", "--output",
        default=str(OUTPUT_DIR / "combined.csv"),
        help="Output file (default: $TSCOMBINE_OUTPUT_DIR/combined.csv)",
    )
    args = parser.parse_args()

    directory = Path(args.directory)
    files = sorted(p for p in directory.iterdir() if p.suffix.lower() in SUPPORTED_EXTENSIONS)
    if not files:
        print(f"No CSV or Excel files in {directory}")
        sys.exit(1)

    print("=" * 60)
    print("FOLDER COMBINE")
    print("=" * 60)

    sources = {}
    for path in files:
        dataset = load_source(path)
        print(f"  {path.name}: {len(dataset):,} rows, {len(dataset.selectable)} columns")
        if not dataset.selectable:
            continue
        sources[dataset.name] = SourceDescriptor(
            dataset,
            columns={c: c for c in dataset.selectable},
            default_cleanup=args.cleanup,
            alignment=args.alignment,
        )

    start, end = default_time_range([d.dataset for d in sources.values()])
    grid = build_time_grid(start, end, args.interval)
    print(f"\nGrid: {start} to {end} every {grid.interval} ({len(grid):,} points)")

    result = combine(sources, grid, CombineOptions(max_workers=args.workers))
    output = write_combined(result.dataset, args.output)

    print(f"\nWrote {len(result.dataset.columns)} columns to {output}")
    for issue in result.failures + result.warnings:
        print(f"  - {issue}")


if __name__ == "__main__":
    main()
