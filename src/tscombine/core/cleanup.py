"""Missing-value cleanup for a single column, in time order."""

from __future__ import annotations

from typing import Union

import numpy as np
import polars as pl

from .schemas import TIME_UNIT, CleanupPolicy


def interpolate_by_time(times: np.ndarray, values: np.ndarray) -> np.ndarray:
    """Fill NaN entries by linear interpolation on elapsed time.

    A gap with valid neighbours on both sides at different instants is
    interpolated; a gap with only one valid side takes that side's value; a gap
    between two valid entries at the same instant, or with no valid entry at
    all, stays NaN.
    """
    n = len(values)
    result = values.astype(np.float64, copy=True)
    if n == 0:
        return result

    valid = ~np.isnan(result)
    missing = ~valid
    if not missing.any() or not valid.any():
        return result

    idx = np.arange(n)
    prev_idx = np.maximum.accumulate(np.where(valid, idx, -1))
    next_idx = np.minimum.accumulate(np.where(valid, idx, n)[::-1])[::-1]
    has_prev = prev_idx >= 0
    has_next = next_idx < n

    both = missing & has_prev & has_next
    if both.any():
        p = prev_idx[both]
        q = next_idx[both]
        t0 = times[p].astype(np.float64)
        t1 = times[q].astype(np.float64)
        t = times[both].astype(np.float64)
        span = t1 - t0
        with np.errstate(divide="ignore", invalid="ignore"):
            ratio = (t - t0) / span
        filled = result[p] + ratio * (result[q] - result[p])
        result[both] = np.where(span != 0, filled, np.nan)

    only_prev = missing & has_prev & ~has_next
    result[only_prev] = result[prev_idx[only_prev]]
    only_next = missing & ~has_prev & has_next
    result[only_next] = result[next_idx[only_next]]
    return result


def apply_cleanup(
    frame: pl.DataFrame,
    column: str,
    policy: Union[CleanupPolicy, str],
    timestamp_col: str,
) -> pl.DataFrame:
    """Fill or remove missing entries of ``column``.

    The frame is sorted ascending by timestamp first (stable). ``column`` is
    expected to hold the Float64 view of the source column.

    - NearestFill: forward fill, then backward fill what remains at the start.
      An interior gap always takes the preceding valid value.
    - LinearInterpolate: see ``interpolate_by_time``.
    - DropRow: remove every row where ``column`` is missing.
    - ZeroFill: replace missing entries with 0.

    Returns:
        Sorted frame; only ``column`` (or the row set, for DropRow) changes
    """
    policy = CleanupPolicy.parse(policy)
    ordered = frame.sort(timestamp_col, maintain_order=True)

    if policy is CleanupPolicy.NEAREST_FILL:
        return ordered.with_columns(pl.col(column).forward_fill().backward_fill())

    if policy is CleanupPolicy.ZERO_FILL:
        return ordered.with_columns(pl.col(column).fill_null(0.0))

    if policy is CleanupPolicy.DROP_ROW:
        return ordered.filter(pl.col(column).is_not_null())

    times = ordered[timestamp_col].dt.epoch(time_unit=TIME_UNIT).to_numpy()
    values = ordered[column].cast(pl.Float64).to_numpy()
    filled = interpolate_by_time(times, values)
    return ordered.with_columns(pl.Series(column, filled, dtype=pl.Float64, nan_to_null=True))
