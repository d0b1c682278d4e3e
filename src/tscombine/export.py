"""Writers for combined tables."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pandas as pd
import polars as pl

from .core.schemas import CombinedDataset

logger = logging.getLogger(__name__)

DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"

FORMATS = {
    ".csv": "csv",
    ".parquet": "parquet",
    ".xlsx": "xlsx",
}


def _titles_and_units(dataset: CombinedDataset, first: str) -> tuple[list[str], list[str]]:
    return [first, *dataset.columns], ["", *dataset.units]


def write_csv(dataset: CombinedDataset, path: str | Path) -> Path:
    """Header row, then a units row, then one row per grid instant."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    titles, units = _titles_and_units(dataset, dataset.timestamp_col)

    header = pl.DataFrame([pl.Series(t, [u or None], dtype=pl.String) for t, u in zip(titles, units)])
    body = dataset.frame.select(
        pl.col(dataset.timestamp_col).dt.strftime(DATETIME_FORMAT),
        *[pl.col(c).cast(pl.String) for c in dataset.columns],
    )
    body.columns = titles
    pl.concat([header, body], how="vertical").write_csv(path, null_value="")
    return path


def write_parquet(dataset: CombinedDataset, path: str | Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    dataset.frame.write_parquet(path)
    return path


def write_excel(dataset: CombinedDataset, path: str | Path, sheet_name: str = "Combined Data") -> Path:
    """Titles on the first row, units on the second, data below; first column is ``Date``."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    titles, units = _titles_and_units(dataset, "Date")

    body = dataset.frame.to_pandas()
    body.columns = titles
    units_row = pd.DataFrame([units], columns=titles)
    # A units row forces object dtype; blanks stay empty cells.
    table = pd.concat([units_row, body.astype(object).where(body.notna(), None)], ignore_index=True)
    with pd.ExcelWriter(path, engine="openpyxl", datetime_format="yyyy-mm-dd hh:mm:ss") as writer:
        table.to_excel(writer, sheet_name=sheet_name, index=False)
    return path


def write_combined(dataset: CombinedDataset, path: str | Path, fmt: str | None = None) -> Path:
    """Write a combined table, choosing the format from ``fmt`` or the suffix."""
    path = Path(path)
    fmt = (fmt or FORMATS.get(path.suffix.lower(), "")).lower()
    if fmt == "csv":
        written = write_csv(dataset, path)
    elif fmt == "parquet":
        written = write_parquet(dataset, path)
    elif fmt in ("xlsx", "excel"):
        written = write_excel(dataset, path)
    else:
        raise ValueError(f"Unsupported output format for {path.name}: {fmt or path.suffix!r}")
    logger.info(f"Wrote {len(dataset):,} rows x {len(dataset.columns)} columns to {written}")
    return written


def write_json(obj, path: str | Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(obj, f, indent=2, default=str)
    return path
