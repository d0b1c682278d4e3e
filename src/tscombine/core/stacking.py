"""Stacking several compatible sources into one logical source."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional, Sequence, Tuple, Union

import polars as pl

from .duplicates import resolve_duplicates
from .schemas import DuplicatePolicy, SourceDataset

logger = logging.getLogger(__name__)

_MEMBER = "__member"

# Gaps longer than this between consecutive members are reported.
GAP_REPORT_THRESHOLD = timedelta(hours=1)


@dataclass
class StackReport:
    """Compatibility notes for a proposed stack."""

    common_columns: Tuple[str, ...]
    excluded_columns: Tuple[str, ...]
    total_rows: int
    start: Optional[datetime]
    end: Optional[datetime]
    warnings: List[str] = field(default_factory=list)
    infos: List[str] = field(default_factory=list)


def _order_by_start(datasets: Sequence[SourceDataset]) -> List[SourceDataset]:
    def key(dataset: SourceDataset):
        first, _ = dataset.date_range()
        return (first is None, first or datetime.min)

    return sorted(datasets, key=key)


def common_selectable(datasets: Sequence[SourceDataset]) -> Tuple[str, ...]:
    """Selectable columns present in every dataset, in the first dataset's order."""
    if not datasets:
        return ()
    others = [set(d.selectable) for d in datasets[1:]]
    return tuple(c for c in datasets[0].selectable if all(c in s for s in others))


def stack_report(datasets: Sequence[SourceDataset]) -> StackReport:
    """Describe column mismatches, overlaps and gaps between stack members."""
    ordered = _order_by_start(datasets)
    common = common_selectable(ordered)
    union: List[str] = []
    for dataset in ordered:
        union.extend(c for c in dataset.selectable if c not in union)
    excluded = tuple(c for c in union if c not in common)

    report = StackReport(
        common_columns=common,
        excluded_columns=excluded,
        total_rows=sum(len(d) for d in ordered),
        start=None,
        end=None,
    )
    if excluded:
        report.warnings.append(
            f"Column mismatch: {len(excluded)} column(s) not present in all files will be "
            f"excluded from the stack: {list(excluded)}"
        )

    ranged = [(d.name, *d.date_range()) for d in ordered if d.date_range()[0] is not None]
    for (name, _, cur_end), (next_name, next_start, _) in zip(ranged, ranged[1:]):
        if cur_end > next_start:
            report.warnings.append(
                f"Time overlap detected between {name!r} and {next_name!r}. "
                "Duplicate handling will be applied."
            )
        gap = next_start - cur_end
        if gap > GAP_REPORT_THRESHOLD:
            hours = round(gap / timedelta(hours=1))
            report.infos.append(f"{hours} hour gap between {name!r} and {next_name!r}.")

    if ranged:
        report.start = min(r[1] for r in ranged)
        report.end = max(r[2] for r in ranged)
    report.infos.append(
        f"Stack will contain {report.total_rows:,} rows and {len(common)} columns "
        f"spanning {report.start} to {report.end}"
    )
    return report


def stack_sources(
    datasets: Sequence[SourceDataset],
    name: str,
    overlap: Union[DuplicatePolicy, str] = DuplicatePolicy.KEEP_ALL,
) -> SourceDataset:
    """Concatenate sources into one, resolving only cross-member overlaps.

    Members are ordered by their earliest instant and concatenated; the result
    carries the union of columns and is sorted ascending (stable) by the first
    member's timestamp column. Instants present in two or more members are
    collapsed with ``overlap``; all other rows, including duplicates within a
    single member, are kept untouched. The selectable columns are the
    intersection across members.

    Args:
        datasets: Two or more sources to stack
        name: Name of the stacked source
        overlap: Policy applied to overlapping instants (KeepAll disables it)

    Returns:
        Stacked SourceDataset
    """
    if len(datasets) < 2:
        raise ValueError("A stack needs at least two sources")

    policy = DuplicatePolicy.parse(overlap)
    ordered = _order_by_start(datasets)
    ts = ordered[0].timestamp_col

    frames = []
    for i, dataset in enumerate(ordered):
        frame = dataset.frame
        if dataset.timestamp_col != ts:
            if ts in frame.columns:
                raise ValueError(
                    f"Cannot stack {dataset.name!r}: its column {ts!r} clashes with the stack's "
                    f"timestamp column (its own timestamp column is {dataset.timestamp_col!r})"
                )
            frame = frame.rename({dataset.timestamp_col: ts})
        frames.append(frame.with_columns(pl.lit(i, dtype=pl.UInt32).alias(_MEMBER)))

    stacked = pl.concat(frames, how="diagonal_relaxed").sort(ts, maintain_order=True)

    if policy is DuplicatePolicy.KEEP_ALL:
        stacked = stacked.drop(_MEMBER)
    else:
        shared = pl.col(_MEMBER).n_unique().over(ts) > 1
        overlapping = stacked.filter(shared).drop(_MEMBER)
        untouched = stacked.filter(~shared).drop(_MEMBER)
        if overlapping.is_empty():
            stacked = untouched
        else:
            resolved = resolve_duplicates(overlapping, ts, policy)
            logger.info(
                f"{name}: resolved {overlapping.height} overlapping rows into {resolved.height} "
                f"using {policy.value}"
            )
            stacked = pl.concat([untouched, resolved], how="vertical_relaxed").sort(
                ts, maintain_order=True
            )

    logger.info(f"Created stack {name!r} from {len(ordered)} sources: {stacked.height:,} rows")
    return SourceDataset(
        name=name,
        frame=stacked,
        timestamp_col=ts,
        selectable=common_selectable(ordered),
        dropped_rows=sum(d.dropped_rows for d in ordered),
    )
