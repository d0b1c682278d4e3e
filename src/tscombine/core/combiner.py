"""Combining many sources onto one time grid."""

from __future__ import annotations

import enum
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional, Union

import numpy as np
import polars as pl

from .alignment import align_to_grid
from .cleanup import apply_cleanup
from .duplicates import has_duplicate_timestamps, resolve_duplicates
from .errors import (
    ColumnIssue,
    CombineCancelled,
    CombineError,
    ErrorKind,
    NoSelectableColumnsError,
)
from .grid import TimeGrid
from .pivot import pivot_long_to_wide
from .schemas import (
    AlignmentPolicy,
    CleanupPolicy,
    CombinedDataset,
    DuplicatePolicy,
    LongFormatColumns,
    SourceDataset,
    numeric_expr,
)

logger = logging.getLogger(__name__)


class DropScope(enum.Enum):
    """Which rows a DropRow cleanup removes.

    ISOLATED: only the cleaned column's own series loses rows.
    SHARED: rows are removed from the source's working copy, so columns
    processed later in the same source lose them too (order dependent).
    """

    ISOLATED = "isolated"
    SHARED = "shared"


@dataclass
class SourceDescriptor:
    """One source plus the user's choices for it."""

    dataset: SourceDataset
    columns: Dict[str, str]  # source column -> output title
    cleanup: Dict[str, CleanupPolicy] = field(default_factory=dict)
    units: Dict[str, str] = field(default_factory=dict)
    duplicate_policy: DuplicatePolicy = DuplicatePolicy.AVERAGE
    resolve_duplicates: Optional[bool] = None  # None: resolve when duplicates exist
    alignment: AlignmentPolicy = AlignmentPolicy.NEAREST_NEIGHBOR
    pivot: Optional[LongFormatColumns] = None
    default_cleanup: CleanupPolicy = CleanupPolicy.NEAREST_FILL

    def __post_init__(self) -> None:
        self.cleanup = {c: CleanupPolicy.parse(p) for c, p in self.cleanup.items()}
        self.duplicate_policy = DuplicatePolicy.parse(self.duplicate_policy)
        self.alignment = AlignmentPolicy.parse(self.alignment)
        self.default_cleanup = CleanupPolicy.parse(self.default_cleanup)

    def cleanup_for(self, column: str) -> CleanupPolicy:
        return self.cleanup.get(column, self.default_cleanup)


@dataclass
class CombineOptions:
    """Run-time options for ``combine``."""

    drop_scope: DropScope = DropScope.ISOLATED
    max_workers: int = 1
    progress: Optional[Callable[[float, str], None]] = None
    cancel: Optional[Union[threading.Event, Callable[[], bool]]] = None
    timestamp_title: str = "DateTime"

    def __post_init__(self) -> None:
        self.drop_scope = DropScope(self.drop_scope)
        if self.max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {self.max_workers}")


@dataclass
class CombineResult:
    """Combined table plus the per-column failures and warnings of the run."""

    dataset: CombinedDataset
    failures: List[ColumnIssue] = field(default_factory=list)
    warnings: List[ColumnIssue] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


@dataclass
class _Unit:
    order: int
    source: str
    column: str
    title: str
    unit: str
    cleanup: CleanupPolicy
    alignment: AlignmentPolicy
    timestamp_col: str
    frame: Optional[pl.DataFrame] = None  # None for shared-scope units


class _Progress:
    def __init__(self, options: CombineOptions, total_units: int):
        self._callback = options.progress
        self._cancel = options.cancel
        self._total = max(total_units, 1)
        self._done = 0
        self._lock = threading.Lock()

    def check_cancelled(self) -> None:
        if self._cancel is None:
            return
        cancelled = self._cancel.is_set() if isinstance(self._cancel, threading.Event) else self._cancel()
        if cancelled:
            raise CombineCancelled("Combine cancelled")

    def step(self, message: str) -> None:
        with self._lock:
            self._done += 1
            fraction = min(self._done / self._total, 1.0)
        logger.debug(f"[{fraction:.0%}] {message}")
        if self._callback is not None:
            self._callback(fraction, message)


def _fail_all(name: str, descriptor: SourceDescriptor, kind: ErrorKind, message: str) -> List[ColumnIssue]:
    return [ColumnIssue(kind, message, source=name, column=c) for c in descriptor.columns]


def _prepare_source(
    name: str,
    descriptor: SourceDescriptor,
    failures: List[ColumnIssue],
    warnings: List[ColumnIssue],
) -> Optional[pl.DataFrame]:
    """Pivot and de-duplicate one source; return its working copy."""
    dataset = descriptor.dataset
    ts = dataset.timestamp_col
    frame = dataset.frame

    if ts not in frame.columns:
        failures.extend(
            _fail_all(name, descriptor, ErrorKind.MISSING_TIMESTAMP_COLUMN, f"Timestamp column {ts!r} not found")
        )
        logger.warning(f"{name}: timestamp column {ts!r} not found; skipping its columns")
        return None

    if descriptor.pivot is not None:
        try:
            frame = pivot_long_to_wide(frame, ts, descriptor.pivot.tag, descriptor.pivot.value)
        except CombineError as e:
            failures.extend(_fail_all(name, descriptor, ErrorKind.PIVOT_AMBIGUOUS, str(e)))
            logger.warning(f"{name}: pivot failed: {e}")
            return None

    resolve = descriptor.resolve_duplicates
    if resolve is None:
        resolve = has_duplicate_timestamps(frame, ts)
    if resolve and descriptor.duplicate_policy is not DuplicatePolicy.KEEP_ALL:
        before = frame.height
        frame = resolve_duplicates(frame, ts, descriptor.duplicate_policy)
        logger.info(f"{name}: resolved duplicates ({descriptor.duplicate_policy.value}), {before} -> {frame.height} rows")
    else:
        frame = frame.sort(ts, maintain_order=True)

    numeric = []
    unreadable = []
    for column in descriptor.columns:
        if column == ts:
            failures.append(
                ColumnIssue(ErrorKind.MISSING_COLUMN, "The timestamp column cannot be selected", name, column)
            )
            continue
        if column not in frame.columns:
            failures.append(
                ColumnIssue(ErrorKind.MISSING_COLUMN, f"Column {column!r} not found", name, column)
            )
            logger.warning(f"{name}: column {column!r} not found; skipping")
            continue
        raw = frame[column]
        try:
            parsed = frame.select(numeric_expr(column, raw.dtype).alias(column)).to_series()
        except pl.exceptions.PolarsError as e:
            failures.append(
                ColumnIssue(ErrorKind.UNPARSABLE_NUMERIC, f"Column {column!r} has no numeric view: {e}", name, column)
            )
            logger.warning(f"{name}: column {column!r} of type {raw.dtype} cannot be read as numbers; skipping")
            unreadable.append(column)
            continue
        unparsable = parsed.null_count() - raw.null_count()
        if unparsable > 0:
            warnings.append(
                ColumnIssue(
                    ErrorKind.UNPARSABLE_NUMERIC,
                    f"{unparsable} non-numeric value(s) treated as missing",
                    name,
                    column,
                )
            )
        numeric.append(parsed)

    if unreadable:
        frame = frame.drop(unreadable)
    if numeric:
        frame = frame.with_columns(numeric)
    return frame


def _unique_title(title: str, source: str, used: set, warnings: List[ColumnIssue], column: str) -> str:
    if title not in used:
        return title
    candidate = f"{title} ({source})"
    n = 2
    while candidate in used:
        candidate = f"{title} ({source} {n})"
        n += 1
    warnings.append(
        ColumnIssue(
            ErrorKind.DUPLICATE_TITLE,
            f"Output title {title!r} already used; renamed to {candidate!r}",
            source,
            column,
        )
    )
    return candidate


def _run_unit(unit: _Unit, grid: TimeGrid) -> np.ndarray:
    cleaned = apply_cleanup(unit.frame, unit.column, unit.cleanup, unit.timestamp_col)
    aligned = align_to_grid(cleaned, grid, unit.alignment, unit.timestamp_col, unit.column)
    return aligned.to_numpy()


def combine(
    sources: Mapping[str, SourceDescriptor],
    grid: TimeGrid,
    options: Optional[CombineOptions] = None,
) -> CombineResult:
    """Resample every selected column of every source onto ``grid``.

    For each source: pivot (if long layout), resolve duplicates once (when
    flagged or detected), then for each selected column run the cleanup policy
    over the full sorted series and align the result to the grid. Output
    columns follow first-seen order across sources. Problems in one column are
    recorded in ``failures`` and that column is omitted; only the absence of any
    selected column aborts the run.

    Args:
        sources: Mapping of source name to descriptor
        grid: Shared target grid
        options: Drop scope, worker count, progress / cancel hooks

    Returns:
        CombineResult with the CombinedDataset, failures and warnings
    """
    options = options or CombineOptions()
    selected = {name: d for name, d in sources.items() if d.columns}
    if not selected:
        raise NoSelectableColumnsError("Select at least one column from at least one source")

    failures: List[ColumnIssue] = []
    warnings: List[ColumnIssue] = []
    if grid.interval_fallback:
        warnings.append(
            ColumnIssue(ErrorKind.INVALID_INTERVAL, f"Interval not recognised; using {grid.interval}")
        )

    total = 1 + len(selected) + sum(len(d.columns) for d in selected.values())
    progress = _Progress(options, total)
    logger.info(f"Combining {len(selected)} source(s) onto {len(grid):,} grid points")
    progress.step(f"Grid ready: {len(grid):,} points")

    units: List[_Unit] = []
    shared_frames: Dict[str, pl.DataFrame] = {}
    used_titles = {options.timestamp_title}
    for name, descriptor in selected.items():
        progress.check_cancelled()
        frame = _prepare_source(name, descriptor, failures, warnings)
        progress.step(f"Prepared source {name!r}")
        if frame is None:
            continue
        ts = descriptor.dataset.timestamp_col
        shared_frames[name] = frame
        for column, title in descriptor.columns.items():
            if column == ts or column not in frame.columns:
                continue
            title = _unique_title(title, name, used_titles, warnings, column)
            used_titles.add(title)
            units.append(
                _Unit(
                    order=len(units),
                    source=name,
                    column=column,
                    title=title,
                    unit=descriptor.units.get(column, ""),
                    cleanup=descriptor.cleanup_for(column),
                    alignment=descriptor.alignment,
                    timestamp_col=ts,
                    frame=frame.select(ts, column) if options.drop_scope is DropScope.ISOLATED else None,
                )
            )

    results: Dict[int, np.ndarray] = {}
    if options.drop_scope is DropScope.SHARED:
        for unit in units:
            progress.check_cancelled()
            working = apply_cleanup(shared_frames[unit.source], unit.column, unit.cleanup, unit.timestamp_col)
            shared_frames[unit.source] = working
            aligned = align_to_grid(working, grid, unit.alignment, unit.timestamp_col, unit.column)
            results[unit.order] = aligned.to_numpy()
            progress.step(f"Aligned {unit.source}/{unit.column}")
    elif options.max_workers > 1 and len(units) > 1:
        with ThreadPoolExecutor(max_workers=options.max_workers) as pool:
            futures = {}
            try:
                for unit in units:
                    progress.check_cancelled()
                    futures[unit.order] = (unit, pool.submit(_run_unit, unit, grid))
                for order, (unit, future) in futures.items():
                    results[order] = future.result()
                    progress.step(f"Aligned {unit.source}/{unit.column}")
                    progress.check_cancelled()
            except CombineCancelled:
                pool.shutdown(wait=False, cancel_futures=True)
                raise
    else:
        for unit in units:
            progress.check_cancelled()
            results[unit.order] = _run_unit(unit, grid)
            progress.step(f"Aligned {unit.source}/{unit.column}")

    data = {options.timestamp_title: grid.instants}
    for unit in units:
        data[unit.title] = pl.Series(unit.title, results[unit.order], dtype=pl.Float64, nan_to_null=True)
    frame = pl.DataFrame(data)

    for issue in failures:
        logger.warning(str(issue))
    logger.info(f"Combined {len(units)} column(s); {len(failures)} failure(s), {len(warnings)} warning(s)")

    combined = CombinedDataset(
        frame=frame,
        columns=tuple(u.title for u in units),
        units=tuple(u.unit for u in units),
        timestamp_col=options.timestamp_title,
    )
    return CombineResult(dataset=combined, failures=failures, warnings=warnings)
