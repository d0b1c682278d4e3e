"""Schema definitions shared by every stage of the combine pipeline."""

from __future__ import annotations

import enum
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional, Tuple

import polars as pl

from .errors import MissingTimestampColumnError

logger = logging.getLogger(__name__)

# All instants are held as naive microsecond datetimes (UTC when the input
# carried a timezone).
TIME_UNIT = "us"
INSTANT = pl.Datetime(TIME_UNIT)

# Text formats tried in order when a timestamp column arrives as strings.
TIMESTAMP_FORMATS = [
    "%Y-%m-%d %H:%M:%S%.f",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S%.f",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%dT%H:%M",
    "%Y/%m/%d %H:%M:%S",
    "%Y/%m/%d %H:%M",
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y %H:%M",
    "%m/%d/%y %H:%M",
    "%d.%m.%Y %H:%M:%S",
    "%d.%m.%Y %H:%M",
    "%Y-%m-%d",
    "%m/%d/%Y",
]


def _slug(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", "_", str(text).strip().lower()).strip("_")


def _parse_policy(cls, value, aliases: Dict[str, Any]):
    if isinstance(value, cls):
        return value
    key = _slug(value)
    for member in cls:
        if key in (member.value, _slug(member.name), member.value.replace("_", "")):
            return member
    if key in aliases:
        return aliases[key]
    raise ValueError(f"Unknown {cls.__name__}: {value!r}")


class CleanupPolicy(enum.Enum):
    """How missing entries of one column are treated before alignment."""

    NEAREST_FILL = "nearest_fill"
    LINEAR_INTERPOLATE = "linear_interpolate"
    DROP_ROW = "drop_row"
    ZERO_FILL = "zero_fill"

    @classmethod
    def parse(cls, value) -> "CleanupPolicy":
        return _parse_policy(cls, value, _CLEANUP_ALIASES)


class AlignmentPolicy(enum.Enum):
    """How a cleaned series is resampled onto the target grid."""

    NEAREST_NEIGHBOR = "nearest_neighbor"
    LINEAR_INTERPOLATE = "linear_interpolate"
    WINDOW_AVERAGE = "window_average"

    @classmethod
    def parse(cls, value) -> "AlignmentPolicy":
        return _parse_policy(cls, value, _ALIGNMENT_ALIASES)


class DuplicatePolicy(enum.Enum):
    """How rows sharing one instant are collapsed."""

    AVERAGE = "average"
    MAXIMUM = "maximum"
    MINIMUM = "minimum"
    KEEP_FIRST = "keep_first"
    KEEP_LAST = "keep_last"
    KEEP_ALL = "keep_all"

    @classmethod
    def parse(cls, value) -> "DuplicatePolicy":
        return _parse_policy(cls, value, _DUPLICATE_ALIASES)


# Short names plus the long-form labels from the upload form.
_CLEANUP_ALIASES = {
    _slug(k): v
    for k, v in {
        "nearest": CleanupPolicy.NEAREST_FILL,
        "fill": CleanupPolicy.NEAREST_FILL,
        "linear": CleanupPolicy.LINEAR_INTERPOLATE,
        "interpolate": CleanupPolicy.LINEAR_INTERPOLATE,
        "drop": CleanupPolicy.DROP_ROW,
        "zero": CleanupPolicy.ZERO_FILL,
        "Fill with nearest available value": CleanupPolicy.NEAREST_FILL,
        "Fill with a linear interpolation between the nearest values": CleanupPolicy.LINEAR_INTERPOLATE,
        "Delete the entire row of data": CleanupPolicy.DROP_ROW,
        "Fill with zero": CleanupPolicy.ZERO_FILL,
    }.items()
}

_ALIGNMENT_ALIASES = {
    _slug(k): v
    for k, v in {
        "nearest": AlignmentPolicy.NEAREST_NEIGHBOR,
        "linear": AlignmentPolicy.LINEAR_INTERPOLATE,
        "interpolate": AlignmentPolicy.LINEAR_INTERPOLATE,
        "average": AlignmentPolicy.WINDOW_AVERAGE,
        "window": AlignmentPolicy.WINDOW_AVERAGE,
        "Fill with the nearest value": AlignmentPolicy.NEAREST_NEIGHBOR,
        "Do a linear interpolation from the nearest values": AlignmentPolicy.LINEAR_INTERPOLATE,
        "Take an average of the available values within the interval": AlignmentPolicy.WINDOW_AVERAGE,
    }.items()
}

_DUPLICATE_ALIASES = {
    _slug(k): v
    for k, v in {
        "mean": DuplicatePolicy.AVERAGE,
        "avg": DuplicatePolicy.AVERAGE,
        "max": DuplicatePolicy.MAXIMUM,
        "min": DuplicatePolicy.MINIMUM,
        "first": DuplicatePolicy.KEEP_FIRST,
        "last": DuplicatePolicy.KEEP_LAST,
        "all": DuplicatePolicy.KEEP_ALL,
        "none": DuplicatePolicy.KEEP_ALL,
        "Average values": DuplicatePolicy.AVERAGE,
        "Maximum value": DuplicatePolicy.MAXIMUM,
        "Minimum value": DuplicatePolicy.MINIMUM,
        "Keep first": DuplicatePolicy.KEEP_FIRST,
        "Keep last": DuplicatePolicy.KEEP_LAST,
    }.items()
}


def to_naive_utc(value: datetime) -> datetime:
    """Drop timezone info, converting aware datetimes to UTC first."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def is_numeric_dtype(dtype: pl.DataType) -> bool:
    return dtype.is_numeric() or dtype == pl.Boolean


def numeric_expr(name: str, dtype: pl.DataType) -> pl.Expr:
    """Expression giving the Float64 view of a column; unparsable text becomes null."""
    col = pl.col(name)
    if is_numeric_dtype(dtype):
        return col.cast(pl.Float64)
    if dtype == pl.String:
        return col.str.strip_chars().cast(pl.Float64, strict=False)
    return col.cast(pl.String, strict=False).cast(pl.Float64, strict=False)


def to_numeric(series: pl.Series) -> pl.Series:
    """Float64 view of a series."""
    frame = series.to_frame()
    return frame.select(numeric_expr(series.name, series.dtype).alias(series.name)).to_series()


def _parse_text_instants(series: pl.Series) -> pl.Series:
    text = series.str.strip_chars()
    frame = text.to_frame("raw")
    attempts = [
        pl.col("raw").str.strptime(INSTANT, fmt, strict=False, exact=True)
        for fmt in TIMESTAMP_FORMATS
    ]
    parsed = frame.select(pl.coalesce(attempts).alias(series.name)).to_series()
    if parsed.null_count() > text.null_count():
        # Let polars infer anything the fixed formats missed (e.g. offsets).
        try:
            inferred = text.str.to_datetime(time_unit=TIME_UNIT, strict=False)
        except pl.exceptions.PolarsError:
            return parsed
        if inferred.dtype.time_zone is not None:
            inferred = inferred.dt.convert_time_zone("UTC").dt.replace_time_zone(None)
        parsed = parsed.fill_null(inferred.cast(INSTANT))
    return parsed


def to_instants(series: pl.Series) -> pl.Series:
    """Convert a timestamp column of any supported dtype to naive ``Datetime('us')``."""
    dtype = series.dtype
    if isinstance(dtype, pl.Datetime):
        if dtype.time_zone is not None:
            series = series.dt.convert_time_zone("UTC").dt.replace_time_zone(None)
        return series.cast(INSTANT)
    if dtype == pl.Date:
        return series.cast(INSTANT)
    if dtype == pl.String:
        return _parse_text_instants(series)
    if dtype.is_integer():
        # Integer timestamps are epoch milliseconds.
        return pl.from_epoch(series, time_unit="ms").cast(INSTANT)
    if dtype == pl.Null:
        return series.cast(INSTANT)
    raise ValueError(f"Cannot interpret column {series.name!r} of type {dtype} as timestamps")


def normalize_frame(frame: pl.DataFrame, timestamp_col: str) -> pl.DataFrame:
    """Parse the timestamp column and turn blank text / NaN cells into nulls."""
    exprs = []
    for name, dtype in frame.schema.items():
        if name == timestamp_col:
            continue
        if dtype == pl.String:
            exprs.append(
                pl.when(pl.col(name).str.strip_chars() == "")
                .then(None)
                .otherwise(pl.col(name))
                .alias(name)
            )
        elif dtype in (pl.Float32, pl.Float64):
            exprs.append(pl.col(name).fill_nan(None))
    if exprs:
        frame = frame.with_columns(exprs)
    return frame.with_columns(to_instants(frame[timestamp_col]).alias(timestamp_col))


@dataclass(frozen=True)
class LongFormatColumns:
    """Tag and value columns of a long-layout source."""

    tag: str
    value: str


@dataclass(frozen=True)
class SourceDataset:
    """One read-only input table with a designated timestamp column."""

    name: str
    frame: pl.DataFrame
    timestamp_col: str
    selectable: Tuple[str, ...] = ()
    long_format: Optional[LongFormatColumns] = None
    dropped_rows: int = 0

    @classmethod
    def from_frame(
        cls,
        frame: pl.DataFrame,
        timestamp_col: str,
        name: str = "source",
        selectable: Optional[Tuple[str, ...]] = None,
        long_format: Optional[LongFormatColumns] = None,
    ) -> "SourceDataset":
        """Build a dataset from a raw frame, normalising timestamps and blanks.

        Rows whose timestamp is missing or cannot be parsed are dropped and
        counted in ``dropped_rows``.
        """
        if timestamp_col not in frame.columns:
            raise MissingTimestampColumnError(
                f"Timestamp column {timestamp_col!r} not found in {name!r}; columns: {frame.columns}"
            )
        normalized = normalize_frame(frame, timestamp_col)
        dropped = normalized[timestamp_col].null_count()
        if dropped:
            logger.warning(f"{name}: dropping {dropped} row(s) with missing or unparsable timestamps")
            normalized = normalized.filter(pl.col(timestamp_col).is_not_null())
        if selectable is None:
            selectable = tuple(c for c in frame.columns if c != timestamp_col)
        return cls(
            name=name,
            frame=normalized,
            timestamp_col=timestamp_col,
            selectable=tuple(selectable),
            long_format=long_format,
            dropped_rows=dropped,
        )

    @property
    def columns(self) -> list[str]:
        return self.frame.columns

    @property
    def is_long_format(self) -> bool:
        return self.long_format is not None

    def __len__(self) -> int:
        return self.frame.height

    def date_range(self) -> Tuple[Optional[datetime], Optional[datetime]]:
        if self.timestamp_col not in self.frame.columns or self.frame.is_empty():
            return None, None
        ts = self.frame[self.timestamp_col]
        return ts.min(), ts.max()

    def has_duplicate_timestamps(self) -> bool:
        if self.timestamp_col not in self.frame.columns or self.frame.height < 2:
            return False
        return bool(self.frame[self.timestamp_col].is_duplicated().any())

    def with_frame(self, frame: pl.DataFrame, **changes) -> "SourceDataset":
        """Copy of this dataset holding a different frame."""
        fields = {
            "name": self.name,
            "timestamp_col": self.timestamp_col,
            "selectable": self.selectable,
            "long_format": self.long_format,
            "dropped_rows": self.dropped_rows,
        }
        fields.update(changes)
        return SourceDataset(frame=frame, **fields)


@dataclass(frozen=True)
class CombinedDataset:
    """Grid-indexed output table: timestamp column first, then one column per title."""

    frame: pl.DataFrame
    columns: Tuple[str, ...]
    units: Tuple[str, ...]
    timestamp_col: str = "DateTime"

    def __len__(self) -> int:
        return self.frame.height

    @property
    def timestamps(self) -> pl.Series:
        return self.frame[self.timestamp_col]

    def column(self, title: str) -> pl.Series:
        return self.frame[title]

    def unit_of(self, title: str) -> str:
        return self.units[self.columns.index(title)]

    def rows(self) -> Iterator[tuple]:
        return self.frame.iter_rows()
