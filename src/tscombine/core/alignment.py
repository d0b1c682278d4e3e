"""Timestamp alignment: resampling a cleaned series onto the target grid."""

from __future__ import annotations

from datetime import timedelta
from typing import Optional, Union

import numpy as np
import polars as pl

from .grid import TimeGrid
from .schemas import TIME_UNIT, AlignmentPolicy


def _nearest_indices(times: np.ndarray, targets: np.ndarray) -> np.ndarray:
    """Index of the closest source point for each target.

    Equal distances resolve to the earlier point, and among points sharing an
    instant the first one wins, matching an ascending scan that only replaces
    the candidate on a strictly smaller distance.
    """
    n = len(times)
    after = np.searchsorted(times, targets, side="left")
    before = after - 1
    has_before = before >= 0
    has_after = after < n

    before_time = times[np.clip(before, 0, n - 1)]
    after_time = times[np.clip(after, 0, n - 1)]
    before_first = np.searchsorted(times, before_time, side="left")

    dist_before = np.where(has_before, targets - before_time, np.inf)
    dist_after = np.where(has_after, after_time - targets, np.inf)
    return np.where(dist_before <= dist_after, before_first, np.clip(after, 0, n - 1))


def align_nearest(times: np.ndarray, values: np.ndarray, targets: np.ndarray) -> np.ndarray:
    if len(times) == 0:
        return np.full(len(targets), np.nan)
    return values[_nearest_indices(times, targets)]


def align_linear(times: np.ndarray, values: np.ndarray, targets: np.ndarray) -> np.ndarray:
    """Interpolate between the last point at/before and the first at/after each target.

    No extrapolation: outside the series range the edge value is used. When
    either neighbour is missing the earlier neighbour's value is taken.
    """
    n = len(times)
    result = np.full(len(targets), np.nan)
    if n == 0:
        return result

    after = np.searchsorted(times, targets, side="left")
    has_after = after < n
    after_c = np.clip(after, 0, n - 1)
    before = after - 1
    has_before = before >= 0
    before_c = np.clip(before, 0, n - 1)

    exact = has_after & (times[after_c] == targets)
    result[exact] = values[after_c[exact]]

    both = ~exact & has_before & has_after
    if both.any():
        t0 = times[before_c[both]].astype(np.float64)
        t1 = times[after_c[both]].astype(np.float64)
        v0 = values[before_c[both]]
        v1 = values[after_c[both]]
        ratio = (targets[both].astype(np.float64) - t0) / (t1 - t0)
        interp = v0 + ratio * (v1 - v0)
        result[both] = np.where(np.isnan(v0) | np.isnan(v1), v0, interp)

    only_before = ~exact & has_before & ~has_after
    result[only_before] = values[before_c[only_before]]
    only_after = ~exact & ~has_before & has_after
    result[only_after] = values[after_c[only_after]]
    return result


def align_window_average(
    times: np.ndarray,
    values: np.ndarray,
    targets: np.ndarray,
    interval_us: float,
) -> np.ndarray:
    """Mean of valid values in ``[target - interval/2, target + interval/2)``.

    Targets whose window holds no valid value take the nearest-neighbour result.
    """
    if len(times) == 0:
        return np.full(len(targets), np.nan)

    half = interval_us / 2.0
    t = times.astype(np.float64)
    g = targets.astype(np.float64)
    lo = np.searchsorted(t, g - half, side="left")
    hi = np.searchsorted(t, g + half, side="left")

    valid = ~np.isnan(values)
    csum = np.concatenate([[0.0], np.cumsum(np.where(valid, values, 0.0))])
    ccount = np.concatenate([[0], np.cumsum(valid)])
    count = ccount[hi] - ccount[lo]
    total = csum[hi] - csum[lo]

    with np.errstate(divide="ignore", invalid="ignore"):
        mean = total / count
    return np.where(count > 0, mean, align_nearest(times, values, targets))


def align_arrays(
    times: np.ndarray,
    values: np.ndarray,
    targets: np.ndarray,
    policy: Union[AlignmentPolicy, str],
    interval_us: Optional[float] = None,
) -> np.ndarray:
    """Resample ``(times, values)`` onto ``targets``; NaN marks missing output."""
    policy = AlignmentPolicy.parse(policy)
    times = np.asarray(times, dtype=np.int64)
    values = np.asarray(values, dtype=np.float64)
    targets = np.asarray(targets, dtype=np.int64)

    if len(times) > 1 and np.any(times[1:] < times[:-1]):
        order = np.argsort(times, kind="stable")
        times = times[order]
        values = values[order]

    if policy is AlignmentPolicy.NEAREST_NEIGHBOR:
        return align_nearest(times, values, targets)
    if policy is AlignmentPolicy.LINEAR_INTERPOLATE:
        return align_linear(times, values, targets)
    if interval_us is None or interval_us <= 0:
        raise ValueError("Window averaging needs the positive grid interval")
    return align_window_average(times, values, targets, interval_us)


def align_to_grid(
    series: pl.DataFrame,
    grid: TimeGrid,
    policy: Union[AlignmentPolicy, str],
    timestamp_col: str,
    value_col: str,
    interval: Optional[timedelta] = None,
) -> pl.Series:
    """Align one cleaned column onto the grid.

    Args:
        series: Frame holding ``timestamp_col`` and the Float64 ``value_col``
        grid: Target grid
        policy: Alignment policy
        timestamp_col: Name of timestamp column
        value_col: Name of the value column
        interval: Window width for averaging; defaults to the grid interval

    Returns:
        Float64 series with exactly one entry per grid instant
    """
    interval = interval or grid.interval
    times = series[timestamp_col].dt.epoch(time_unit=TIME_UNIT).to_numpy()
    values = series[value_col].cast(pl.Float64).to_numpy()
    aligned = align_arrays(
        times,
        values,
        grid.epoch_us(),
        policy,
        interval_us=interval / timedelta(microseconds=1),
    )
    return pl.Series(value_col, aligned, dtype=pl.Float64, nan_to_null=True)
