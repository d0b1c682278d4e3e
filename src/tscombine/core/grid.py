"""Target time grid generation."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Iterator, Optional, Tuple, Union

import numpy as np
import polars as pl

from .errors import InvalidIntervalError
from .schemas import INSTANT, TIME_UNIT, SourceDataset, to_naive_utc

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = timedelta(minutes=1)

_UNIT_SECONDS = {
    "s": 1,
    "sec": 1,
    "secs": 1,
    "second": 1,
    "seconds": 1,
    "m": 60,
    "min": 60,
    "mins": 60,
    "minute": 60,
    "minutes": 60,
    "h": 3600,
    "hr": 3600,
    "hrs": 3600,
    "hour": 3600,
    "hours": 3600,
    "d": 86400,
    "day": 86400,
    "days": 86400,
}

_INTERVAL_RE = re.compile(r"^\s*(\d+)\s*([A-Za-z]+)\s*$")


@dataclass(frozen=True)
class ParsedInterval:
    """Result of parsing an interval spec; ``fallback_used`` flags the default."""

    duration: timedelta
    raw: object
    fallback_used: bool = False


def _interval_from_text(spec: str) -> Optional[timedelta]:
    match = _INTERVAL_RE.match(spec)
    if not match:
        return None
    seconds = _UNIT_SECONDS.get(match.group(2).lower())
    if seconds is None:
        return None
    return timedelta(seconds=int(match.group(1)) * seconds)


def parse_interval(
    spec: Union[str, timedelta, None],
    default: timedelta = DEFAULT_INTERVAL,
) -> ParsedInterval:
    """Parse an interval such as ``"5min"``, ``"1h"`` or ``"2D"``.

    Unrecognised or non-positive specs fall back to ``default`` with a logged
    warning. Only a non-positive default raises ``InvalidIntervalError``.

    Args:
        spec: Text spec or a ``timedelta``
        default: Interval used when ``spec`` cannot be used

    Returns:
        ParsedInterval holding the duration and whether the fallback was used
    """
    if isinstance(spec, timedelta):
        duration = spec
    elif isinstance(spec, str):
        duration = _interval_from_text(spec)
    else:
        duration = None

    if duration is not None and duration > timedelta(0):
        return ParsedInterval(duration=duration, raw=spec)

    if not isinstance(default, timedelta) or default <= timedelta(0):
        raise InvalidIntervalError(
            f"Interval {spec!r} is not usable and the fallback {default!r} is not a positive duration"
        )
    logger.warning(f"Unrecognised or non-positive interval {spec!r}; falling back to {default}")
    return ParsedInterval(duration=default, raw=spec, fallback_used=True)


def expected_length(start: datetime, end: datetime, interval: timedelta) -> int:
    """Number of grid points between ``start`` and ``end`` inclusive."""
    if start > end:
        return 0
    return (end - start) // interval + 1


@dataclass(frozen=True)
class TimeGrid:
    """Strictly increasing, uniformly spaced instants from start to end."""

    start: datetime
    end: datetime
    interval: timedelta
    instants: pl.Series
    interval_fallback: bool = False

    def __len__(self) -> int:
        return len(self.instants)

    def __iter__(self) -> Iterator[datetime]:
        return iter(self.instants.to_list())

    @property
    def interval_us(self) -> int:
        return self.interval // timedelta(microseconds=1)

    def epoch_us(self) -> np.ndarray:
        """Grid instants as int64 microseconds since the epoch."""
        return self.instants.dt.epoch(time_unit=TIME_UNIT).to_numpy()

    def to_frame(self, name: str = "timestamp") -> pl.DataFrame:
        return pl.DataFrame({name: self.instants})


def build_time_grid(
    start: datetime,
    end: Optional[datetime] = None,
    interval: Union[str, timedelta, None] = "1min",
    duration_days: Optional[float] = None,
    default_interval: timedelta = DEFAULT_INTERVAL,
) -> TimeGrid:
    """Create the regular time grid all sources are resampled onto.

    Args:
        start: First grid instant
        end: Last possible grid instant (inclusive); ``start + duration_days`` if omitted
        interval: Grid spacing, e.g. "30s", "5min", "1h", "1D"
        duration_days: Length of the grid in days when ``end`` is not given
        default_interval: Spacing used if ``interval`` is unusable

    Returns:
        TimeGrid; empty when ``end`` precedes ``start``
    """
    if not isinstance(start, datetime):
        raise InvalidIntervalError(f"Grid start must be a datetime, got {start!r}")
    parsed = parse_interval(interval, default_interval)

    if end is None:
        if duration_days is None:
            raise ValueError("Either end or duration_days is required")
        end = start + timedelta(days=duration_days)
    start = to_naive_utc(start)
    end = to_naive_utc(end)

    if expected_length(start, end, parsed.duration) == 0:
        instants = pl.Series("timestamp", [], dtype=INSTANT)
    else:
        instants = pl.datetime_range(
            start,
            end,
            parsed.duration,
            time_unit=TIME_UNIT,
            eager=True,
        ).alias("timestamp")

    logger.debug(f"Built time grid: {len(instants)} points from {start} to {end} every {parsed.duration}")
    return TimeGrid(
        start=start,
        end=end,
        interval=parsed.duration,
        instants=instants,
        interval_fallback=parsed.fallback_used,
    )


def default_time_range(
    datasets: Iterable[SourceDataset],
    overlap_only: bool = False,
) -> Tuple[datetime, datetime]:
    """Earliest and latest instant across datasets.

    With ``overlap_only`` the range is narrowed to the span every dataset covers.
    """
    starts = []
    ends = []
    for dataset in datasets:
        first, last = dataset.date_range()
        if first is not None:
            starts.append(first)
            ends.append(last)

    if not starts:
        raise ValueError("No dataset has any timestamps")

    if overlap_only:
        return max(starts), min(ends)
    return min(starts), max(ends)
