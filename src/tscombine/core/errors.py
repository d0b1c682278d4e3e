"""Error kinds and exceptions raised by the combine pipeline."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional


class ErrorKind(str, enum.Enum):
    """Category of a problem found while combining sources."""

    INVALID_INTERVAL = "InvalidInterval"
    MISSING_TIMESTAMP_COLUMN = "MissingTimestampColumn"
    MISSING_COLUMN = "MissingColumn"
    NO_SELECTABLE_COLUMNS = "NoSelectableColumns"
    PIVOT_AMBIGUOUS = "PivotAmbiguous"
    UNPARSABLE_NUMERIC = "UnparsableNumeric"
    DUPLICATE_TITLE = "DuplicateTitle"


@dataclass(frozen=True)
class ColumnIssue:
    """A failure or warning scoped to one source column (or the whole run)."""

    kind: ErrorKind
    message: str
    source: Optional[str] = None
    column: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "source": self.source,
            "column": self.column,
            "message": self.message,
        }

    def __str__(self) -> str:
        where = "/".join(p for p in (self.source, self.column) if p)
        prefix = f"[{self.kind.value}]"
        return f"{prefix} {where}: {self.message}" if where else f"{prefix} {self.message}"


class CombineError(ValueError):
    """Base class for errors raised by the combine pipeline."""

    kind: Optional[ErrorKind] = None


class InvalidIntervalError(CombineError):
    kind = ErrorKind.INVALID_INTERVAL


class MissingTimestampColumnError(CombineError):
    kind = ErrorKind.MISSING_TIMESTAMP_COLUMN


class NoSelectableColumnsError(CombineError):
    kind = ErrorKind.NO_SELECTABLE_COLUMNS


class PivotAmbiguousError(CombineError):
    kind = ErrorKind.PIVOT_AMBIGUOUS


class CombineCancelled(Exception):
    """Raised when a combine run is cancelled between units of work."""
