"""Column detection helpers and the source loader."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import polars as pl

from ..core.duplicates import has_duplicate_timestamps
from ..core.errors import MissingTimestampColumnError
from ..core.schemas import (
    INSTANT,
    LongFormatColumns,
    SourceDataset,
    is_numeric_dtype,
    to_instants,
)
from .readers import read_table

logger = logging.getLogger(__name__)

SAMPLE_SIZE = 5

_INDEX_LIKE = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"^index$",
        r"^idx$",
        r"^id$",
        r"^row$",
        r"^row_num$",
        r"^row_number$",
        r"^unnamed:\s*\d+$",
        r"^unnamed$",
        r"^column\s*\d+$",
    )
]


@dataclass(frozen=True)
class LongFormatSuggestion:
    """Advisory guess at the tag/value columns of a long-layout source."""

    tag: str
    value: str
    tag_count: int

    def as_columns(self) -> LongFormatColumns:
        return LongFormatColumns(tag=self.tag, value=self.value)


def _mentions_date_or_time(name: str) -> bool:
    lowered = name.lower()
    return "date" in lowered or "time" in lowered


def _sample_parses_as_datetime(series: pl.Series) -> bool:
    sample = series.drop_nulls().head(SAMPLE_SIZE)
    if sample.is_empty():
        return False
    if isinstance(sample.dtype, pl.Datetime) or sample.dtype == pl.Date:
        return True
    if sample.dtype != pl.String:
        return False
    parsed = to_instants(sample)
    hits = sum(
        1
        for raw, value in zip(sample.to_list(), parsed.to_list())
        if value is not None and len(str(raw)) > 5
    )
    return hits >= len(sample) * 0.5


def detect_datetime_columns(frame: pl.DataFrame) -> List[str]:
    """Columns whose name mentions date/time or whose first values parse as datetimes."""
    found = []
    for name in frame.columns:
        if _mentions_date_or_time(name) or _sample_parses_as_datetime(frame[name]):
            found.append(name)
    return found


def detect_separate_date_time(frame: pl.DataFrame) -> Optional[Tuple[str, str]]:
    """Return ``(date_col, time_col)`` when the frame splits day and clock time."""
    date_col = None
    time_col = None
    for name in frame.columns:
        lowered = name.strip().lower()
        if date_col is None and lowered == "date":
            date_col = name
        elif time_col is None and lowered == "time":
            time_col = name
    if date_col is None or time_col is None:
        return None
    return date_col, time_col


def combine_date_time(
    frame: pl.DataFrame,
    date_col: str,
    time_col: str,
    name: str = "DateTime",
) -> pl.DataFrame:
    """Merge a date column and a time column into one timestamp column.

    The new column replaces ``date_col`` in position; ``time_col`` is dropped.
    """
    def as_text(col: str) -> pl.Expr:
        dtype = frame.schema[col]
        if dtype == pl.Date:
            return pl.col(col).dt.strftime("%Y-%m-%d")
        if isinstance(dtype, pl.Datetime):
            return pl.col(col).dt.strftime("%Y-%m-%d")
        return pl.col(col).cast(pl.String).str.strip_chars()

    joined = frame.select(
        pl.concat_str([as_text(date_col), as_text(time_col)], separator=" ").alias(name)
    ).to_series()
    combined = to_instants(joined)

    columns = []
    for col in frame.columns:
        if col == date_col:
            columns.append(combined)
        elif col not in (time_col, name):
            columns.append(frame[col])
    logger.debug(f"Combined {date_col!r} and {time_col!r} into {name!r}")
    return pl.DataFrame(columns)


def is_index_like(name: str) -> bool:
    stripped = name.strip()
    return any(p.match(stripped) for p in _INDEX_LIKE)


def selectable_columns(columns: Sequence[str], datetime_columns: Sequence[str] = ()) -> List[str]:
    """Columns a user may pick: not datetime, not index-like, no date/time in the name."""
    excluded = set(datetime_columns)
    return [
        c for c in columns
        if c not in excluded and not is_index_like(c) and not _mentions_date_or_time(c)
    ]


def date_range(frame: pl.DataFrame, timestamp_col: str) -> Tuple[Optional[datetime], Optional[datetime]]:
    """Earliest and latest parsable instant of a column."""
    if timestamp_col not in frame.columns or frame.is_empty():
        return None, None
    instants = frame[timestamp_col]
    if instants.dtype != INSTANT:
        instants = to_instants(instants)
    return instants.min(), instants.max()


def suggest_long_format(frame: pl.DataFrame, timestamp_col: str) -> Optional[LongFormatSuggestion]:
    """Guess whether a table is in long layout and which columns hold tag and value.

    A suggestion is made only when timestamps repeat, some text column has
    between two and half-the-rows distinct values, and a numeric column exists.
    The result is a hint for the user; pivoting never relies on it.
    """
    if timestamp_col not in frame.columns or frame.height < 2:
        return None
    if not has_duplicate_timestamps(frame, timestamp_col):
        return None

    candidates = [c for c in frame.columns if c != timestamp_col and not is_index_like(c)]
    tag = None
    tag_count = 0
    for name in candidates:
        series = frame[name]
        if series.dtype not in (pl.String, pl.Categorical):
            continue
        distinct = series.drop_nulls().n_unique()
        if 2 <= distinct <= max(frame.height // 2, 2):
            tag = name
            tag_count = distinct
            break
    if tag is None:
        return None

    value = next(
        (c for c in candidates if c != tag and is_numeric_dtype(frame.schema[c])),
        None,
    )
    if value is None:
        return None
    return LongFormatSuggestion(tag=tag, value=value, tag_count=tag_count)


def load_source(
    path: str | Path,
    name: Optional[str] = None,
    timestamp_col: Optional[str] = None,
    long_format: Optional[LongFormatColumns] = None,
) -> SourceDataset:
    """Read a file and turn it into a SourceDataset.

    Separate ``Date`` and ``Time`` columns are merged into ``DateTime``. When
    ``timestamp_col`` is omitted, the first detected datetime column is used.

    Args:
        path: CSV, TXT, XLS or XLSX file
        name: Source name; defaults to the file name
        timestamp_col: Column holding the timestamps
        long_format: Tag/value columns if the file is in long layout

    Returns:
        SourceDataset with normalised timestamps and selectable columns
    """
    path = Path(path)
    name = name or path.name
    table = read_table(path)
    frame = table.frame

    split = detect_separate_date_time(frame)
    if split is not None and timestamp_col in (None, "DateTime"):
        frame = combine_date_time(frame, *split)
        timestamp_col = "DateTime"

    datetime_cols = detect_datetime_columns(frame)
    if timestamp_col is None:
        if not datetime_cols:
            raise MissingTimestampColumnError(f"No date/time column detected in {name!r}")
        timestamp_col = datetime_cols[0]

    selectable = selectable_columns(frame.columns, datetime_cols)
    if long_format is not None:
        selectable = [c for c in selectable if c not in (long_format.tag, long_format.value)]

    dataset = SourceDataset.from_frame(
        frame,
        timestamp_col=timestamp_col,
        name=name,
        selectable=tuple(selectable),
        long_format=long_format,
    )
    logger.info(f"Loaded {name}: {len(dataset):,} rows, {len(selectable)} selectable columns")
    return dataset


def describe_source(dataset: SourceDataset) -> Dict[str, object]:
    """Summary used by ``--describe``."""
    first, last = dataset.date_range()
    suggestion = suggest_long_format(dataset.frame, dataset.timestamp_col)
    return {
        "name": dataset.name,
        "rows": len(dataset),
        "timestamp_column": dataset.timestamp_col,
        "columns": list(dataset.columns),
        "selectable": list(dataset.selectable),
        "start": first.isoformat() if first else None,
        "end": last.isoformat() if last else None,
        "has_duplicates": dataset.has_duplicate_timestamps(),
        "dropped_rows": dataset.dropped_rows,
        "long_format_suggestion": (
            {"tag": suggestion.tag, "value": suggestion.value, "tag_count": suggestion.tag_count}
            if suggestion
            else None
        ),
    }
