"""Tests for duplicate-timestamp resolution."""

import polars as pl
import pytest

from tscombine.core import (
    DuplicatePolicy,
    SourceDataset,
    has_duplicate_timestamps,
    resolve_duplicates,
)

from conftest import at, frame


@pytest.fixture
def repeated() -> pl.DataFrame:
    """Two readings at 00:00, one at 00:01."""
    return frame([0, 0, 1], v=[4.0, 6.0, 9.0], label=["a", "b", "c"])


class TestHasDuplicateTimestamps:
    """Tests for duplicate detection."""

    def test_detects_repeat(self, repeated) -> None:
        """Test that a repeated instant is found."""
        assert has_duplicate_timestamps(repeated, "ts")

    def test_unique_and_short_frames(self) -> None:
        """Test that unique or single-row frames report no duplicates."""
        assert not has_duplicate_timestamps(frame([0, 1, 2], v=[1.0, 2.0, 3.0]), "ts")
        assert not has_duplicate_timestamps(frame([0], v=[1.0]), "ts")

    def test_missing_column(self, repeated) -> None:
        """Test that an absent timestamp column reports no duplicates."""
        assert not has_duplicate_timestamps(repeated, "nope")


class TestResolveDuplicates:
    """Tests for resolve_duplicates."""

    @pytest.mark.parametrize(
        "policy,expected",
        [
            (DuplicatePolicy.AVERAGE, 5.0),
            (DuplicatePolicy.MAXIMUM, 6.0),
            (DuplicatePolicy.MINIMUM, 4.0),
            (DuplicatePolicy.KEEP_FIRST, 4.0),
            (DuplicatePolicy.KEEP_LAST, 6.0),
        ],
    )
    def test_numeric_policies(self, repeated, policy, expected) -> None:
        """Test that each policy collapses the repeated instant as documented."""
        out = resolve_duplicates(repeated, "ts", policy)
        assert out["ts"].to_list() == [at(0), at(1)]
        assert out["v"].to_list() == [expected, 9.0]

    def test_keep_all_leaves_rows(self, repeated) -> None:
        """Test that KeepAll keeps every row."""
        out = resolve_duplicates(repeated, "ts", DuplicatePolicy.KEEP_ALL)
        assert out.height == 3

    def test_text_without_numbers_keeps_first(self, repeated) -> None:
        """Test that a column with no numeric entries keeps the first raw value."""
        out = resolve_duplicates(repeated, "ts", DuplicatePolicy.AVERAGE)
        assert out["label"].to_list() == ["a", "c"]

    def test_numeric_text_is_aggregated(self) -> None:
        """Test that numeric text is parsed before aggregation."""
        df = frame([0, 0], v=["4", "6"])
        out = resolve_duplicates(df, "ts", "max")
        assert float(out["v"][0]) == 6.0

    def test_singles_unchanged(self) -> None:
        """Test that instants seen once keep their raw value."""
        df = frame([0, 1, 1], v=["12.50", "x", "3"])
        out = resolve_duplicates(df, "ts", DuplicatePolicy.AVERAGE)
        assert out["v"][0] == "12.50"

    def test_output_unique_and_sorted(self) -> None:
        """Test that output instants are strictly increasing."""
        df = frame([5, 1, 5, 3, 1], v=[1.0, 2.0, 3.0, 4.0, 5.0])
        out = resolve_duplicates(df, "ts", DuplicatePolicy.AVERAGE)
        assert out["ts"].to_list() == [at(1), at(3), at(5)]
        assert out["v"].to_list() == [3.5, 4.0, 2.0]
        assert out.columns == df.columns

    def test_grouping_uses_parsed_instant(self) -> None:
        """Test that differently formatted text for one moment is one group."""
        df = pl.DataFrame(
            {
                "Time": ["2024-01-01 00:00:00", "2024-01-01T00:00:00", "2024-01-01 00:01:00"],
                "v": [2.0, 4.0, 7.0],
            }
        )
        dataset = SourceDataset.from_frame(df, "Time")
        assert dataset.has_duplicate_timestamps()
        out = resolve_duplicates(dataset.frame, "Time", DuplicatePolicy.AVERAGE)
        assert out["v"].to_list() == [3.0, 7.0]

    def test_policy_labels(self) -> None:
        """Test that policy names and aliases parse."""
        assert DuplicatePolicy.parse("Average values") is DuplicatePolicy.AVERAGE
        assert DuplicatePolicy.parse("keep_last") is DuplicatePolicy.KEEP_LAST
        assert DuplicatePolicy.parse("KeepFirst") is DuplicatePolicy.KEEP_FIRST
        with pytest.raises(ValueError):
            DuplicatePolicy.parse("median")
