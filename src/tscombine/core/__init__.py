"""Core pipeline for merging irregular time series onto one grid.

Stages, in the order the combiner runs them:
- Stacking of compatible sources (optional)
- Long-to-wide pivoting of tag/value sources
- Duplicate-timestamp resolution
- Missing-value cleanup per column
- Alignment of each column onto the shared time grid

Example usage:

    from tscombine.core import (
        SourceDataset,
        SourceDescriptor,
        build_time_grid,
        combine,
    )

    dataset = SourceDataset.from_frame(df, timestamp_col="Time", name="boiler")
    grid = build_time_grid(start, end, "5min")
    result = combine(
        {"boiler": SourceDescriptor(dataset, columns={"T1": "Supply temp"})},
        grid,
    )
    result.dataset.frame
"""

from .errors import (
    ErrorKind,
    ColumnIssue,
    CombineError,
    InvalidIntervalError,
    MissingTimestampColumnError,
    NoSelectableColumnsError,
    PivotAmbiguousError,
    CombineCancelled,
)

from .schemas import (
    CleanupPolicy,
    AlignmentPolicy,
    DuplicatePolicy,
    LongFormatColumns,
    SourceDataset,
    CombinedDataset,
    to_instants,
    to_numeric,
)

from .grid import (
    DEFAULT_INTERVAL,
    ParsedInterval,
    TimeGrid,
    parse_interval,
    build_time_grid,
    default_time_range,
)

from .duplicates import has_duplicate_timestamps, resolve_duplicates
from .pivot import pivot_long_to_wide, pivot_source
from .cleanup import apply_cleanup, interpolate_by_time
from .alignment import align_arrays, align_to_grid
from .stacking import StackReport, stack_report, stack_sources

from .combiner import (
    DropScope,
    SourceDescriptor,
    CombineOptions,
    CombineResult,
    combine,
)

__all__ = [
    # Errors
    "ErrorKind",
    "ColumnIssue",
    "CombineError",
    "InvalidIntervalError",
    "MissingTimestampColumnError",
    "NoSelectableColumnsError",
    "PivotAmbiguousError",
    "CombineCancelled",
    # Schemas
    "CleanupPolicy",
    "AlignmentPolicy",
    "DuplicatePolicy",
    "LongFormatColumns",
    "SourceDataset",
    "CombinedDataset",
    "to_instants",
    "to_numeric",
    # Grid
    "DEFAULT_INTERVAL",
    "ParsedInterval",
    "TimeGrid",
    "parse_interval",
    "build_time_grid",
    "default_time_range",
    # Stages
    "has_duplicate_timestamps",
    "resolve_duplicates",
    "pivot_long_to_wide",
    "pivot_source",
    "apply_cleanup",
    "interpolate_by_time",
    "align_arrays",
    "align_to_grid",
    "StackReport",
    "stack_report",
    "stack_sources",
    # Combiner
    "DropScope",
    "SourceDescriptor",
    "CombineOptions",
    "CombineResult",
    "combine",
]
