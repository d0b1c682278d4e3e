"""Shared fixtures for the tscombine tests."""

from datetime import datetime, timedelta

import polars as pl
import pytest

from tscombine.core import SourceDataset


T0 = datetime(2024, 1, 1, 0, 0, 0)


def at(minutes: float) -> datetime:
    """Instant ``minutes`` after midnight on 2024-01-01."""
    return T0 + timedelta(minutes=minutes)


def frame(times, **columns) -> pl.DataFrame:
    """Frame with a ``ts`` column of instants (minutes after T0) plus value columns."""
    data = {"ts": pl.Series("ts", [at(m) for m in times], dtype=pl.Datetime("us"))}
    for name, values in columns.items():
        data[name] = values
    return pl.DataFrame(data)


@pytest.fixture
def boiler() -> SourceDataset:
    """Irregular wide source with a gap in T1."""
    df = frame(
        [0, 3, 7, 12],
        T1=[10.0, None, 30.0, 40.0],
        T2=[1.0, 2.0, 3.0, 4.0],
    )
    return SourceDataset.from_frame(df, timestamp_col="ts", name="boiler")


@pytest.fixture
def chiller() -> SourceDataset:
    """Regular source with text timestamps."""
    df = pl.DataFrame(
        {
            "Time": [
                "2024-01-01 00:00:00",
                "2024-01-01 00:05:00",
                "2024-01-01 00:10:00",
                "2024-01-01 00:15:00",
            ],
            "Flow": ["5", "6", "oops", "8"],
        }
    )
    return SourceDataset.from_frame(df, timestamp_col="Time", name="chiller")
