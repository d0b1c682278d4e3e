"""Readers for CSV and Excel source files."""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass
from datetime import date, datetime, time
from pathlib import Path
from typing import Any, List, Sequence

import pandas as pd
import polars as pl

logger = logging.getLogger(__name__)

# Only the first lines are inspected when looking for the header row.
HEADER_SCAN_LINES = 30

SUPPORTED_EXTENSIONS = {
    ".csv": "csv",
    ".txt": "csv",
    ".xls": "excel",
    ".xlsx": "excel",
}

_NUMBER_PREFIX = re.compile(r"^\s*[-+]?(\d+(\.\d*)?|\.\d+)([eE][-+]?\d+)?")
_SPLIT = re.compile(r"[,\t]")


@dataclass
class RawTable:
    """A table as read from disk, before any timestamp handling."""

    frame: pl.DataFrame
    header_row: int
    path: Path


def looks_numeric(text: Any) -> bool:
    """True when the text starts with a number (``"12.5 kW"`` counts)."""
    return bool(_NUMBER_PREFIX.match(str(text)))


def looks_like_header(cells: Sequence[Any]) -> bool:
    """At least two non-empty cells, at least half of them non-numeric."""
    parts = [str(c).strip().strip("\"'") for c in cells if c is not None and str(c).strip()]
    parts = [p for p in parts if p]
    if len(parts) < 2:
        return False
    non_numeric = sum(1 for p in parts if not looks_numeric(p))
    return non_numeric / len(parts) >= 0.5


def detect_header_row(rows: Sequence[Sequence[Any]]) -> int:
    """Index of the first header-like row within the scan window, else 0."""
    for i, row in enumerate(rows[:HEADER_SCAN_LINES]):
        if row and looks_like_header(row):
            return i
    return 0


def read_csv_table(path: str | Path) -> RawTable:
    """Read a CSV/TXT file, skipping any preamble above the header row."""
    path = Path(path)
    with open(path, "r", encoding="utf-8", errors="replace") as f:
        lines = []
        for line in f:
            lines.append(line.rstrip("\r\n"))
            if len(lines) >= HEADER_SCAN_LINES:
                break

    header_row = detect_header_row([_SPLIT.split(line) if line.strip() else [] for line in lines])
    header = lines[header_row] if lines else ""
    separator = "\t" if "\t" in header and "," not in header else ","
    if header_row > 0:
        logger.info(f"Detected data starting on line {header_row + 1} in {path.name}")

    frame = pl.read_csv(
        path,
        skip_rows=header_row,
        separator=separator,
        infer_schema_length=10000,
        truncate_ragged_lines=True,
        encoding="utf8-lossy",
    )
    return RawTable(frame=frame, header_row=header_row, path=path)


def _cell(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, float) and math.isnan(value):
        return None
    if isinstance(value, pd.Timestamp):
        return None if pd.isna(value) else value.to_pydatetime()
    if value is pd.NaT:
        return None
    return value


def _column_from_cells(name: str, cells: List[Any]) -> pl.Series:
    present = [c for c in cells if c is not None]
    if present and all(isinstance(c, (int, float)) and not isinstance(c, bool) for c in present):
        return pl.Series(name, [None if c is None else float(c) for c in cells], dtype=pl.Float64)
    if present and all(isinstance(c, datetime) for c in present):
        return pl.Series(name, cells, dtype=pl.Datetime("us"))
    if present and all(isinstance(c, date) and not isinstance(c, datetime) for c in present):
        return pl.Series(name, cells, dtype=pl.Date)
    if present and all(isinstance(c, time) for c in present):
        return pl.Series(name, [None if c is None else c.isoformat() for c in cells], dtype=pl.String)
    return pl.Series(name, [None if c is None else str(c) for c in cells], dtype=pl.String)


def read_excel_table(path: str | Path, sheet_name: int | str = 0) -> RawTable:
    """Read the first sheet of an Excel workbook with header detection."""
    path = Path(path)
    raw = pd.read_excel(path, sheet_name=sheet_name, header=None, dtype=object)
    rows = [[_cell(v) for v in row] for row in raw.itertuples(index=False, name=None)]
    if not rows:
        return RawTable(frame=pl.DataFrame(), header_row=0, path=path)

    header_row = detect_header_row(rows)
    if header_row > 0:
        logger.info(f"Detected data starting on row {header_row + 1} in {path.name}")

    header = rows[header_row]
    keep = []
    columns = []
    for idx, cell in enumerate(header):
        name = str(cell).strip() if cell is not None and str(cell).strip() else f"Column {idx + 1}"
        if name in columns:
            name = f"{name}_{idx + 1}"
        keep.append(idx)
        columns.append(name)

    body = [
        row for row in rows[header_row + 1:]
        if any(c is not None for c in row)
    ]
    series = [
        _column_from_cells(name, [row[idx] if idx < len(row) else None for row in body])
        for idx, name in zip(keep, columns)
    ]
    return RawTable(frame=pl.DataFrame(series), header_row=header_row, path=path)


def read_table(path: str | Path) -> RawTable:
    """Read a supported file, dispatching on its extension."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(path)
    kind = SUPPORTED_EXTENSIONS.get(path.suffix.lower())
    if kind == "csv":
        return read_csv_table(path)
    if kind == "excel":
        return read_excel_table(path)
    raise ValueError(f"Unsupported file type: {path.name}")
