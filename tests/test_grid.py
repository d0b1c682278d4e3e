"""Tests for interval parsing and time grid construction."""

from datetime import datetime, timedelta

import pytest

from tscombine.core import (
    DEFAULT_INTERVAL,
    InvalidIntervalError,
    SourceDataset,
    build_time_grid,
    default_time_range,
    parse_interval,
)
from tscombine.core.grid import expected_length

from conftest import T0, at, frame


class TestParseInterval:
    """Tests for parse_interval."""

    @pytest.mark.parametrize(
        "spec,expected",
        [
            ("30s", timedelta(seconds=30)),
            ("5min", timedelta(minutes=5)),
            ("1h", timedelta(hours=1)),
            ("2D", timedelta(days=2)),
            ("15 minutes", timedelta(minutes=15)),
        ],
    )
    def test_known_units(self, spec, expected) -> None:
        """Test that supported unit spellings parse."""
        parsed = parse_interval(spec)
        assert parsed.duration == expected
        assert not parsed.fallback_used

    def test_timedelta_passthrough(self) -> None:
        """Test that a timedelta is accepted as-is."""
        assert parse_interval(timedelta(seconds=90)).duration == timedelta(seconds=90)

    @pytest.mark.parametrize("spec", ["", "abc", "5 fortnights", "0min", None])
    def test_fallback(self, spec) -> None:
        """Test that unusable specs fall back to the default."""
        parsed = parse_interval(spec)
        assert parsed.duration == DEFAULT_INTERVAL
        assert parsed.fallback_used

    def test_bad_default_raises(self) -> None:
        """Test that a non-positive default cannot be used as fallback."""
        with pytest.raises(InvalidIntervalError):
            parse_interval("nope", default=timedelta(0))


class TestBuildTimeGrid:
    """Tests for build_time_grid."""

    def test_quarter_hour_at_five_minutes(self) -> None:
        """Test that 00:00 to 00:15 every 5 minutes yields four points."""
        grid = build_time_grid(at(0), at(15), "5min")
        assert list(grid) == [at(0), at(5), at(10), at(15)]

    def test_length_formula(self) -> None:
        """Test that length is floor((end - start) / interval) + 1."""
        grid = build_time_grid(at(0), at(17), "5min")
        assert len(grid) == 4
        assert len(grid) == expected_length(at(0), at(17), timedelta(minutes=5))
        assert grid.instants[-1] <= at(17)

    def test_uniform_spacing(self) -> None:
        """Test that consecutive instants are exactly one interval apart."""
        grid = build_time_grid(at(0), at(60), "7min")
        diffs = grid.instants.diff().drop_nulls().unique().to_list()
        assert diffs == [timedelta(minutes=7)]

    def test_start_after_end_is_empty(self) -> None:
        """Test that an inverted range gives an empty grid."""
        grid = build_time_grid(at(10), at(0), "1min")
        assert len(grid) == 0

    def test_single_point(self) -> None:
        """Test that start == end gives one point."""
        assert list(build_time_grid(at(5), at(5), "1h")) == [at(5)]

    def test_duration_days(self) -> None:
        """Test that duration_days sets the end."""
        grid = build_time_grid(T0, interval="1D", duration_days=14)
        assert len(grid) == 15
        assert grid.end == T0 + timedelta(days=14)

    def test_interval_fallback_flagged(self) -> None:
        """Test that the grid records a fallback interval."""
        grid = build_time_grid(at(0), at(3), "garbage")
        assert grid.interval_fallback
        assert len(grid) == 4

    def test_start_must_be_datetime(self) -> None:
        """Test that a non-datetime start is rejected."""
        with pytest.raises(InvalidIntervalError):
            build_time_grid("2024-01-01", at(3), "1min")

    def test_aware_datetimes_become_utc(self) -> None:
        """Test that timezone-aware bounds are converted to naive UTC."""
        from datetime import timezone

        start = datetime(2024, 1, 1, 1, 0, tzinfo=timezone(timedelta(hours=1)))
        grid = build_time_grid(start, start + timedelta(minutes=2), "1min")
        assert grid.start == datetime(2024, 1, 1, 0, 0)


class TestDefaultTimeRange:
    """Tests for default_time_range."""

    def test_union_and_overlap(self) -> None:
        """Test that the range spans all sources, or only their overlap."""
        a = SourceDataset.from_frame(frame([0, 10], v=[1.0, 2.0]), "ts", name="a")
        b = SourceDataset.from_frame(frame([5, 20], v=[1.0, 2.0]), "ts", name="b")
        assert default_time_range([a, b]) == (at(0), at(20))
        assert default_time_range([a, b], overlap_only=True) == (at(5), at(10))

    def test_no_timestamps(self) -> None:
        """Test that empty sources cannot define a range."""
        empty = SourceDataset.from_frame(frame([], v=[]), "ts", name="empty")
        with pytest.raises(ValueError):
            default_time_range([empty])
