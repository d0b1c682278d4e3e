"""Tests for long-to-wide pivoting."""

import polars as pl
import pytest

from tscombine.core import (
    LongFormatColumns,
    PivotAmbiguousError,
    SourceDataset,
    pivot_long_to_wide,
    pivot_source,
)

from conftest import at, frame


@pytest.fixture
def long_frame() -> pl.DataFrame:
    """Tags A and B at two instants, with B repeated at 00:00."""
    return frame(
        [0, 0, 0, 1, 1],
        tag=["B", "A", "B", "A", "B"],
        value=[1.0, 2.0, 3.0, 4.0, 5.0],
    )


class TestPivotLongToWide:
    """Tests for pivot_long_to_wide."""

    def test_shape_and_order(self, long_frame) -> None:
        """Test that tags become columns in first-seen order, one row per instant."""
        wide = pivot_long_to_wide(long_frame, "ts", "tag", "value")
        assert wide.columns == ["ts", "B", "A"]
        assert wide["ts"].to_list() == [at(0), at(1)]

    def test_last_occurrence_wins(self, long_frame) -> None:
        """Test that a repeated (instant, tag) keeps the last value."""
        wide = pivot_long_to_wide(long_frame, "ts", "tag", "value")
        assert wide["B"].to_list() == [3.0, 5.0]
        assert wide["A"].to_list() == [2.0, 4.0]

    def test_missing_combination_is_null(self) -> None:
        """Test that a tag absent at an instant is missing there."""
        df = frame([0, 1, 2], tag=["A", "B", "A"], value=[1.0, 2.0, 3.0])
        wide = pivot_long_to_wide(df, "ts", "tag", "value")
        assert wide["A"].to_list() == [1.0, None, 3.0]
        assert wide["B"].to_list() == [None, 2.0, None]

    def test_unsorted_input(self) -> None:
        """Test that output rows are sorted by instant."""
        df = frame([2, 0, 1], tag=["A", "A", "A"], value=[3.0, 1.0, 2.0])
        wide = pivot_long_to_wide(df, "ts", "tag", "value")
        assert wide["A"].to_list() == [1.0, 2.0, 3.0]

    def test_numeric_tags_become_text_columns(self) -> None:
        """Test that numeric tag values are used as column names."""
        df = frame([0, 0], tag=[101, 202], value=[1.0, 2.0])
        wide = pivot_long_to_wide(df, "ts", "tag", "value")
        assert wide.columns == ["ts", "101", "202"]

    @pytest.mark.parametrize(
        "tag,value",
        [("nope", "value"), ("tag", "nope"), ("tag", "tag"), ("ts", "value"), (None, "value")],
    )
    def test_ambiguous_columns(self, long_frame, tag, value) -> None:
        """Test that unusable tag/value choices are rejected."""
        with pytest.raises(PivotAmbiguousError):
            pivot_long_to_wide(long_frame, "ts", tag, value)


class TestPivotSource:
    """Tests for pivot_source."""

    def test_uses_recorded_columns(self, long_frame) -> None:
        """Test that a long-format dataset pivots with its own tag/value columns."""
        dataset = SourceDataset.from_frame(
            long_frame, "ts", name="plant", long_format=LongFormatColumns("tag", "value")
        )
        wide = pivot_source(dataset)
        assert wide.selectable == ("B", "A")
        assert not wide.is_long_format
        assert len(wide) == 2

    def test_without_columns(self, long_frame) -> None:
        """Test that a dataset without tag/value information cannot be pivoted."""
        dataset = SourceDataset.from_frame(long_frame, "ts")
        with pytest.raises(PivotAmbiguousError):
            pivot_source(dataset)
