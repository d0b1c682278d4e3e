"""Duplicate-timestamp resolution."""

from __future__ import annotations

import logging
from typing import Union

import polars as pl

from .schemas import DuplicatePolicy, is_numeric_dtype, numeric_expr

logger = logging.getLogger(__name__)

_GROUP_SIZE = "__group_size"


def has_duplicate_timestamps(frame: pl.DataFrame, timestamp_col: str) -> bool:
    """Whether any instant appears on more than one row (nulls are ignored)."""
    if timestamp_col not in frame.columns or frame.height < 2:
        return False
    ts = frame[timestamp_col].drop_nulls()
    return bool(ts.is_duplicated().any())


def _collapse_expr(name: str, dtype: pl.DataType, policy: DuplicatePolicy) -> pl.Expr:
    raw = pl.col(name)
    if policy is DuplicatePolicy.KEEP_FIRST:
        return raw.first().alias(name)
    if policy is DuplicatePolicy.KEEP_LAST:
        return raw.last().alias(name)

    if not (is_numeric_dtype(dtype) or dtype == pl.String):
        # Nothing parses as a number; keep the first record's value.
        return raw.first().alias(name)

    numeric = numeric_expr(name, dtype)
    if policy is DuplicatePolicy.AVERAGE:
        reduced = numeric.mean()
    elif policy is DuplicatePolicy.MAXIMUM:
        reduced = numeric.max()
    else:
        reduced = numeric.min()

    if dtype == pl.String:
        reduced = reduced.cast(pl.String)
    # Groups where no entry parsed fall back to the first raw value.
    return pl.coalesce(reduced, raw.first()).alias(name)


def resolve_duplicates(
    frame: pl.DataFrame,
    timestamp_col: str,
    policy: Union[DuplicatePolicy, str] = DuplicatePolicy.AVERAGE,
) -> pl.DataFrame:
    """Collapse rows sharing an instant into one row per instant.

    Rows are grouped by the parsed instant, so differently formatted text for
    the same moment lands in one group. Instants seen once pass through
    unchanged. For repeated instants each other column is reduced according to
    ``policy``: Average / Maximum / Minimum over the entries that parse as
    numbers (first raw value when none do), KeepFirst / KeepLast take that
    record's raw value. KeepAll leaves every row in place.

    Args:
        frame: Table with a parsed timestamp column
        timestamp_col: Name of the timestamp column
        policy: Aggregation policy

    Returns:
        Frame sorted ascending by timestamp with the input's column order
    """
    policy = DuplicatePolicy.parse(policy)
    ordered = frame.sort(timestamp_col, maintain_order=True)
    if policy is DuplicatePolicy.KEEP_ALL or ordered.height < 2:
        return ordered

    marked = ordered.with_columns(pl.len().over(timestamp_col).alias(_GROUP_SIZE))
    singles = marked.filter(pl.col(_GROUP_SIZE) == 1).drop(_GROUP_SIZE)
    repeated = marked.filter(pl.col(_GROUP_SIZE) > 1).drop(_GROUP_SIZE)
    if repeated.is_empty():
        return ordered

    value_cols = [c for c in frame.columns if c != timestamp_col]
    collapsed = (
        repeated.group_by(timestamp_col, maintain_order=True)
        .agg([_collapse_expr(c, frame.schema[c], policy) for c in value_cols])
        .select(frame.columns)
    )
    logger.debug(
        f"Collapsed {repeated.height} rows into {collapsed.height} instants using {policy.value}"
    )

    return pl.concat([singles, collapsed], how="vertical_relaxed").sort(
        timestamp_col, maintain_order=True
    )
