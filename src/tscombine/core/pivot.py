"""Long-to-wide pivoting of (timestamp, tag, value) tables."""

from __future__ import annotations

import logging
from typing import Optional

import polars as pl

from .errors import PivotAmbiguousError
from .schemas import SourceDataset

logger = logging.getLogger(__name__)


def _check_columns(frame: pl.DataFrame, timestamp_col: str, tag_col, value_col) -> None:
    if not tag_col or not value_col:
        raise PivotAmbiguousError("Both a tag column and a value column are required")
    if tag_col == value_col:
        raise PivotAmbiguousError(f"Tag and value column are the same: {tag_col!r}")
    for role, name in (("timestamp", timestamp_col), ("tag", tag_col), ("value", value_col)):
        if name not in frame.columns:
            raise PivotAmbiguousError(f"{role.capitalize()} column {name!r} not found; columns: {frame.columns}")
    if timestamp_col in (tag_col, value_col):
        raise PivotAmbiguousError(f"Timestamp column {timestamp_col!r} cannot also be the tag or value column")


def pivot_long_to_wide(
    frame: pl.DataFrame,
    timestamp_col: str,
    tag_col: str,
    value_col: str,
) -> pl.DataFrame:
    """Turn one-row-per-(timestamp, tag) data into one row per timestamp.

    Each distinct tag becomes a column holding the value-column entry for that
    instant. When a tag repeats within one instant the last occurrence wins.
    Columns are ordered timestamp first, then tags in first-seen order; rows
    are sorted ascending by instant. Instants whose rows carry no tag still
    produce a row with every tag missing.

    Args:
        frame: Long-layout table with a parsed timestamp column
        timestamp_col: Name of the timestamp column
        tag_col: Column whose values become output column names
        value_col: Column holding the measurements

    Returns:
        Wide DataFrame
    """
    _check_columns(frame, timestamp_col, tag_col, value_col)

    long = frame.select(
        pl.col(timestamp_col),
        pl.col(tag_col).cast(pl.String),
        pl.col(value_col),
    )
    tagged = long.filter(pl.col(tag_col).is_not_null())
    tags = tagged[tag_col].unique(maintain_order=True).to_list()
    if timestamp_col in tags:
        raise PivotAmbiguousError(f"Tag value {timestamp_col!r} collides with the timestamp column")

    instants = long.select(timestamp_col).unique(maintain_order=True)
    if not tags:
        return instants.sort(timestamp_col)

    last_per_tag = tagged.group_by([timestamp_col, tag_col], maintain_order=True).agg(
        pl.col(value_col).last()
    )
    wide = last_per_tag.pivot(
        on=tag_col,
        index=timestamp_col,
        values=value_col,
        aggregate_function=None,
    )

    result = instants.join(wide, on=timestamp_col, how="left").select([timestamp_col, *tags])
    logger.debug(f"Pivoted {frame.height} rows into {result.height} rows x {len(tags)} tags")
    return result.sort(timestamp_col, maintain_order=True)


def pivot_source(
    dataset: SourceDataset,
    tag_col: Optional[str] = None,
    value_col: Optional[str] = None,
) -> SourceDataset:
    """Pivot a long-layout dataset, using its recorded tag/value columns by default."""
    if tag_col is None and value_col is None and dataset.long_format is not None:
        tag_col, value_col = dataset.long_format.tag, dataset.long_format.value
    if tag_col is None or value_col is None:
        raise PivotAmbiguousError(f"{dataset.name}: tag and value columns could not be resolved")

    wide = pivot_long_to_wide(dataset.frame, dataset.timestamp_col, tag_col, value_col)
    tags = tuple(c for c in wide.columns if c != dataset.timestamp_col)
    logger.info(f"{dataset.name}: pivoted to wide format, {wide.height} rows x {len(tags)} columns")
    return dataset.with_frame(wide, selectable=tags, long_format=None)
