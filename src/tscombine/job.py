"""YAML job files describing one combine run."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from . import config
from .core.combiner import DropScope
from .core.schemas import (
    AlignmentPolicy,
    CleanupPolicy,
    DuplicatePolicy,
    LongFormatColumns,
)


@dataclass
class ColumnConfig:
    name: str
    title: Optional[str] = None
    unit: str = ""
    cleanup: Optional[CleanupPolicy] = None

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Column entries need a name")
        self.title = self.title or self.name
        if self.cleanup is not None:
            self.cleanup = CleanupPolicy.parse(self.cleanup)


@dataclass
class SourceConfig:
    path: Path
    name: Optional[str] = None
    timestamp_col: Optional[str] = None
    pivot: Optional[LongFormatColumns] = None
    duplicate_policy: DuplicatePolicy = DuplicatePolicy.AVERAGE
    resolve_duplicates: Optional[bool] = None
    alignment: AlignmentPolicy = AlignmentPolicy.NEAREST_NEIGHBOR
    cleanup: CleanupPolicy = CleanupPolicy.NEAREST_FILL
    columns: List[ColumnConfig] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.path = Path(self.path)
        self.name = self.name or self.path.name
        self.duplicate_policy = DuplicatePolicy.parse(self.duplicate_policy)
        self.alignment = AlignmentPolicy.parse(self.alignment)
        self.cleanup = CleanupPolicy.parse(self.cleanup)


@dataclass
class StackConfig:
    name: str
    members: List[str]
    overlap: DuplicatePolicy = DuplicatePolicy.KEEP_ALL
    pivot: Optional[LongFormatColumns] = None
    duplicate_policy: DuplicatePolicy = DuplicatePolicy.AVERAGE
    # Overlaps are settled when stacking; set true to re-resolve in-member duplicates.
    resolve_duplicates: Optional[bool] = False
    alignment: AlignmentPolicy = AlignmentPolicy.NEAREST_NEIGHBOR
    cleanup: CleanupPolicy = CleanupPolicy.NEAREST_FILL
    columns: List[ColumnConfig] = field(default_factory=list)

    def __post_init__(self) -> None:
        if len(self.members) < 2:
            raise ValueError(f"Stack {self.name!r} needs at least two members")
        self.overlap = DuplicatePolicy.parse(self.overlap)
        self.duplicate_policy = DuplicatePolicy.parse(self.duplicate_policy)
        self.alignment = AlignmentPolicy.parse(self.alignment)
        self.cleanup = CleanupPolicy.parse(self.cleanup)


@dataclass
class GridConfig:
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    duration_days: Optional[float] = None
    interval: str = config.DEFAULT_INTERVAL
    overlap_only: bool = False


@dataclass
class OptionsConfig:
    drop_scope: DropScope = DropScope.ISOLATED
    max_workers: int = 1
    timestamp_title: str = "DateTime"

    def __post_init__(self) -> None:
        self.drop_scope = DropScope(str(getattr(self.drop_scope, "value", self.drop_scope)).lower())
        if int(self.max_workers) < 1:
            raise ValueError(f"max_workers must be >= 1, got {self.max_workers}")
        self.max_workers = int(self.max_workers)


@dataclass
class OutputConfig:
    path: Path = field(default_factory=lambda: config.OUTPUT_DIR / "combined.csv")
    format: Optional[str] = None
    issues_path: Optional[Path] = None

    def __post_init__(self) -> None:
        self.path = Path(self.path)
        if self.issues_path is not None:
            self.issues_path = Path(self.issues_path)


@dataclass
class JobConfig:
    sources: List[SourceConfig]
    grid: GridConfig
    stacks: List[StackConfig] = field(default_factory=list)
    options: OptionsConfig = field(default_factory=OptionsConfig)
    output: OutputConfig = field(default_factory=OutputConfig)
    raw: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        names = [s.name for s in self.sources]
        duplicates = {n for n in names if names.count(n) > 1}
        if duplicates:
            raise ValueError(f"Source names must be unique: {sorted(duplicates)}")
        for stack in self.stacks:
            missing = [m for m in stack.members if m not in names]
            if missing:
                raise ValueError(f"Stack {stack.name!r} refers to unknown sources: {missing}")
            if stack.name in names:
                raise ValueError(f"Stack name {stack.name!r} clashes with a source name")


def _as_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    return datetime.fromisoformat(str(value).strip())


def _pivot(entry: Any) -> Optional[LongFormatColumns]:
    if not entry:
        return None
    return LongFormatColumns(tag=entry["tag"], value=entry["value"])


def _columns(entries: Any) -> List[ColumnConfig]:
    columns = []
    for entry in entries or []:
        if isinstance(entry, str):
            columns.append(ColumnConfig(name=entry))
        else:
            columns.append(
                ColumnConfig(
                    name=entry["name"],
                    title=entry.get("title"),
                    unit=entry.get("unit", "") or "",
                    cleanup=entry.get("cleanup"),
                )
            )
    return columns


def _source(cfg: Dict[str, Any]) -> SourceConfig:
    return SourceConfig(
        path=config.resolve_data_path(cfg["path"]),
        name=cfg.get("name"),
        timestamp_col=cfg.get("timestamp_col"),
        pivot=_pivot(cfg.get("pivot")),
        duplicate_policy=cfg.get("duplicate_policy", DuplicatePolicy.AVERAGE),
        resolve_duplicates=cfg.get("resolve_duplicates"),
        alignment=cfg.get("alignment", AlignmentPolicy.NEAREST_NEIGHBOR),
        cleanup=cfg.get("cleanup", CleanupPolicy.NEAREST_FILL),
        columns=_columns(cfg.get("columns")),
    )


def _stack(cfg: Dict[str, Any]) -> StackConfig:
    return StackConfig(
        name=cfg["name"],
        members=list(cfg["members"]),
        overlap=cfg.get("overlap", DuplicatePolicy.KEEP_ALL),
        pivot=_pivot(cfg.get("pivot")),
        duplicate_policy=cfg.get("duplicate_policy", DuplicatePolicy.AVERAGE),
        resolve_duplicates=cfg.get("resolve_duplicates", False),
        alignment=cfg.get("alignment", AlignmentPolicy.NEAREST_NEIGHBOR),
        cleanup=cfg.get("cleanup", CleanupPolicy.NEAREST_FILL),
        columns=_columns(cfg.get("columns")),
    )


def _dict_to_dataclass(cfg: Dict[str, Any]) -> JobConfig:
    if not cfg or not cfg.get("sources"):
        raise ValueError("A job needs at least one entry under 'sources'")
    grid_cfg = cfg.get("grid") or {}
    grid = GridConfig(
        start=_as_datetime(grid_cfg.get("start")),
        end=_as_datetime(grid_cfg.get("end")),
        duration_days=grid_cfg.get("duration_days"),
        interval=str(grid_cfg.get("interval", config.DEFAULT_INTERVAL)),
        overlap_only=bool(grid_cfg.get("overlap_only", False)),
    )
    return JobConfig(
        sources=[_source(s) for s in cfg["sources"]],
        grid=grid,
        stacks=[_stack(s) for s in cfg.get("stacks") or []],
        options=OptionsConfig(**(cfg.get("options") or {})),
        output=OutputConfig(**(cfg.get("output") or {})),
        raw=cfg,
    )


def load_job_config(path: str | Path) -> JobConfig:
    """Load a YAML job file into dataclasses."""
    with open(path, "r", encoding="utf-8") as f:
        cfg = yaml.safe_load(f)
    return _dict_to_dataclass(cfg)
