"""Reading source files and guessing their layout."""

from .readers import RawTable, detect_header_row, looks_like_header, read_table
from .detect import (
    LongFormatSuggestion,
    combine_date_time,
    date_range,
    describe_source,
    detect_datetime_columns,
    detect_separate_date_time,
    load_source,
    selectable_columns,
    suggest_long_format,
)

__all__ = [
    "RawTable",
    "detect_header_row",
    "looks_like_header",
    "read_table",
    "LongFormatSuggestion",
    "combine_date_time",
    "date_range",
    "describe_source",
    "detect_datetime_columns",
    "detect_separate_date_time",
    "load_source",
    "selectable_columns",
    "suggest_long_format",
]
