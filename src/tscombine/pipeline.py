"""Running a job file end to end: load, stack, combine, write."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .core.combiner import CombineOptions, CombineResult, SourceDescriptor, combine
from .core.grid import TimeGrid, build_time_grid, default_time_range
from .core.pivot import pivot_source
from .core.schemas import SourceDataset
from .core.stacking import stack_report, stack_sources
from .export import write_combined, write_json
from .ingest.detect import load_source
from .job import ColumnConfig, GridConfig, JobConfig, SourceConfig, StackConfig

logger = logging.getLogger(__name__)


@dataclass
class JobOutcome:
    result: CombineResult
    output_path: Path
    issues_path: Optional[Path]
    grid: TimeGrid


def load_sources(job: JobConfig) -> Dict[str, SourceDataset]:
    """Read every source listed in the job, keyed by source name."""
    datasets = {}
    for source in job.sources:
        datasets[source.name] = load_source(
            source.path,
            name=source.name,
            timestamp_col=source.timestamp_col,
            long_format=source.pivot,
        )
    return datasets


def build_stacks(job: JobConfig, datasets: Dict[str, SourceDataset]) -> Dict[str, SourceDataset]:
    """Stack the configured members; members are pivoted first when they are long layout."""
    stacks = {}
    for stack in job.stacks:
        members = []
        for name in stack.members:
            member = datasets[name]
            if member.is_long_format:
                member = pivot_source(member)
            members.append(member)
        report = stack_report(members)
        for message in report.warnings:
            logger.warning(f"{stack.name}: {message}")
        for message in report.infos:
            logger.info(f"{stack.name}: {message}")
        stacked = stack_sources(members, stack.name, stack.overlap)
        if stack.pivot is not None:
            stacked = stacked.with_frame(stacked.frame, long_format=stack.pivot)
        stacks[stack.name] = stacked
    return stacks


def _column_map(columns: List[ColumnConfig], dataset: SourceDataset) -> List[ColumnConfig]:
    if columns:
        return columns
    return [ColumnConfig(name=c) for c in dataset.selectable]


def _descriptor(entry: SourceConfig | StackConfig, dataset: SourceDataset) -> SourceDescriptor:
    pivot = entry.pivot
    if pivot is not None and not entry.columns:
        # Tags are only known after pivoting; do it here to select all of them.
        dataset = pivot_source(dataset, pivot.tag, pivot.value)
        pivot = None
    columns = _column_map(entry.columns, dataset)
    return SourceDescriptor(
        dataset=dataset,
        columns={c.name: c.title for c in columns},
        cleanup={c.name: c.cleanup for c in columns if c.cleanup is not None},
        units={c.name: c.unit for c in columns},
        duplicate_policy=entry.duplicate_policy,
        resolve_duplicates=entry.resolve_duplicates,
        alignment=entry.alignment,
        pivot=pivot,
        default_cleanup=entry.cleanup,
    )


def build_descriptors(
    job: JobConfig,
    datasets: Dict[str, SourceDataset],
    stacks: Dict[str, SourceDataset],
) -> Dict[str, SourceDescriptor]:
    """One descriptor per standalone source and per stack; stack members are not combined on their own."""
    in_stack = {m for s in job.stacks for m in s.members}
    descriptors = {}
    for source in job.sources:
        if source.name in in_stack:
            continue
        descriptors[source.name] = _descriptor(source, datasets[source.name])
    for stack in job.stacks:
        descriptors[stack.name] = _descriptor(stack, stacks[stack.name])
    return descriptors


def build_grid(grid_cfg: GridConfig, datasets: List[SourceDataset]) -> TimeGrid:
    """Grid from the job, filling a missing start / end from the data."""
    start, end = grid_cfg.start, grid_cfg.end
    if start is None or (end is None and grid_cfg.duration_days is None):
        first, last = default_time_range(datasets, overlap_only=grid_cfg.overlap_only)
        start = start or first
        if end is None and grid_cfg.duration_days is None:
            end = last
    return build_time_grid(
        start,
        end,
        grid_cfg.interval,
        duration_days=grid_cfg.duration_days,
    )


def _log_progress(fraction: float, message: str) -> None:
    logger.info(f"[{fraction:6.1%}] {message}")


def run_job(
    job: JobConfig,
    output: Optional[str | Path] = None,
    max_workers: Optional[int] = None,
    progress: Optional[Callable[[float, str], None]] = None,
) -> JobOutcome:
    """Load, stack and combine the job's sources, then write the result.

    Args:
        job: Parsed job configuration
        output: Overrides the job's output path
        max_workers: Overrides the job's worker count
        progress: Callback receiving ``(fraction, message)``; logs by default

    Returns:
        JobOutcome with the combine result and written paths
    """
    datasets = load_sources(job)
    stacks = build_stacks(job, datasets)
    descriptors = build_descriptors(job, datasets, stacks)

    grid = build_grid(job.grid, [d.dataset for d in descriptors.values()])
    logger.info(f"Grid: {grid.start} to {grid.end} every {grid.interval} ({len(grid):,} points)")

    options = CombineOptions(
        drop_scope=job.options.drop_scope,
        max_workers=max_workers or job.options.max_workers,
        progress=progress or _log_progress,
        timestamp_title=job.options.timestamp_title,
    )
    result = combine(descriptors, grid, options)

    output_path = Path(output) if output else job.output.path
    written = write_combined(result.dataset, output_path, job.output.format if output is None else None)

    issues_path = None
    if result.failures or result.warnings:
        issues_path = job.output.issues_path or written.with_suffix(".issues.json")
        write_json(
            {
                "failures": [i.to_dict() for i in result.failures],
                "warnings": [i.to_dict() for i in result.warnings],
            },
            issues_path,
        )
        logger.info(f"Wrote {len(result.failures)} failure(s) and {len(result.warnings)} warning(s) to {issues_path}")

    return JobOutcome(result=result, output_path=written, issues_path=issues_path, grid=grid)
