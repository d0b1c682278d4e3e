"""Tests for the series combiner."""

import threading

import polars as pl
import pytest

from tscombine.core import (
    AlignmentPolicy,
    CleanupPolicy,
    CombineCancelled,
    CombineOptions,
    DropScope,
    ErrorKind,
    LongFormatColumns,
    NoSelectableColumnsError,
    SourceDataset,
    SourceDescriptor,
    build_time_grid,
    combine,
    to_numeric,
)

from conftest import at, frame


@pytest.fixture
def grid():
    return build_time_grid(at(0), at(15), "5min")


@pytest.fixture
def gappy() -> SourceDataset:
    """Column A has a gap that column B does not."""
    df = frame([0, 1, 2], A=[1.0, None, 3.0], B=[10.0, 20.0, 30.0])
    return SourceDataset.from_frame(df, "ts", name="gappy")


class TestCombine:
    """Tests for combine."""

    def test_two_sources(self, boiler, chiller, grid) -> None:
        """Test that columns from several sources share the grid."""
        result = combine(
            {
                "boiler": SourceDescriptor(boiler, columns={"T1": "Supply"}, units={"T1": "degC"}),
                "chiller": SourceDescriptor(chiller, columns={"Flow": "Flow"}, units={"Flow": "l/s"}),
            },
            grid,
        )
        out = result.dataset
        assert out.frame.columns == ["DateTime", "Supply", "Flow"]
        assert out.timestamps.to_list() == list(grid)
        assert out.column("Supply").to_list() == [10.0, 10.0, 40.0, 40.0]
        assert out.column("Flow").to_list() == [5.0, 6.0, 6.0, 8.0]
        assert out.unit_of("Flow") == "l/s"
        assert result.ok

    def test_unparsable_text_is_warned(self, chiller, grid) -> None:
        """Test that non-numeric text becomes missing and is reported."""
        result = combine({"chiller": SourceDescriptor(chiller, columns={"Flow": "Flow"})}, grid)
        kinds = [w.kind for w in result.warnings]
        assert ErrorKind.UNPARSABLE_NUMERIC in kinds

    def test_datetime_column_does_not_abort(self, boiler, grid) -> None:
        """Test that selecting a second timestamp-typed column only affects that column."""
        ds = boiler.with_frame(boiler.frame.with_columns(pl.col("ts").alias("other")))
        result = combine(
            {"boiler": SourceDescriptor(ds, columns={"other": "Other", "T2": "T2"})},
            grid,
        )
        out = result.dataset
        assert out.frame.columns == ["DateTime", "Other", "T2"]
        assert out.column("Other").to_list() == [None] * 4
        assert out.column("T2").to_list() == [1.0, 2.0, 4.0, 4.0]
        assert [(w.kind, w.column) for w in result.warnings] == [(ErrorKind.UNPARSABLE_NUMERIC, "other")]
        assert result.ok

    def test_numeric_view_keeps_length(self) -> None:
        """Test that non-text, non-numeric series keep their length as numbers."""
        assert to_numeric(pl.Series("x", [None, None, None])).to_list() == [None, None, None]
        dates = pl.Series("d", [at(0), at(5)], dtype=pl.Datetime("us"))
        assert to_numeric(dates).to_list() == [None, None]

    def test_missing_column_is_a_failure(self, boiler, grid) -> None:
        """Test that an absent column is skipped and reported, not fatal."""
        result = combine(
            {"boiler": SourceDescriptor(boiler, columns={"T1": "T1", "T9": "T9"})},
            grid,
        )
        assert result.dataset.columns == ("T1",)
        assert [(f.kind, f.column) for f in result.failures] == [(ErrorKind.MISSING_COLUMN, "T9")]
        assert not result.ok

    def test_missing_timestamp_column_is_a_failure(self, grid) -> None:
        """Test that a source without its timestamp column fails all its columns."""
        broken = SourceDataset(name="broken", frame=pl.DataFrame({"v": [1.0]}), timestamp_col="ts")
        ok = SourceDataset.from_frame(frame([0], v=[1.0]), "ts", name="ok")
        result = combine(
            {
                "broken": SourceDescriptor(broken, columns={"v": "broken v"}),
                "ok": SourceDescriptor(ok, columns={"v": "ok v"}),
            },
            grid,
        )
        assert result.dataset.columns == ("ok v",)
        assert result.failures[0].kind is ErrorKind.MISSING_TIMESTAMP_COLUMN

    def test_nothing_selected(self, boiler, grid) -> None:
        """Test that a run with no selected columns is rejected."""
        with pytest.raises(NoSelectableColumnsError):
            combine({"boiler": SourceDescriptor(boiler, columns={})}, grid)

    def test_duplicate_titles_are_renamed(self, boiler, grid) -> None:
        """Test that clashing output titles are made unique with a warning."""
        result = combine(
            {"boiler": SourceDescriptor(boiler, columns={"T1": "Temp", "T2": "Temp"})},
            grid,
        )
        assert result.dataset.columns == ("Temp", "Temp (boiler)")
        assert any(w.kind is ErrorKind.DUPLICATE_TITLE for w in result.warnings)

    def test_duplicates_resolved_before_alignment(self, grid) -> None:
        """Test that repeated instants are averaged when detected."""
        dataset = SourceDataset.from_frame(frame([0, 0, 10], v=[2.0, 4.0, 8.0]), "ts")
        result = combine({"s": SourceDescriptor(dataset, columns={"v": "v"})}, grid)
        assert result.dataset.column("v").to_list()[0] == 3.0

    def test_long_format_source(self, grid) -> None:
        """Test that a descriptor with pivot columns is pivoted first."""
        df = frame([0, 0, 5, 5], tag=["A", "B", "A", "B"], value=[1.0, 2.0, 3.0, 4.0])
        dataset = SourceDataset.from_frame(df, "ts", name="long")
        descriptor = SourceDescriptor(
            dataset,
            columns={"B": "Tag B"},
            pivot=LongFormatColumns("tag", "value"),
            alignment=AlignmentPolicy.NEAREST_NEIGHBOR,
        )
        result = combine({"long": descriptor}, grid)
        assert result.dataset.column("Tag B").to_list() == [2.0, 4.0, 4.0, 4.0]

    def test_bad_pivot_is_a_failure(self, boiler, grid) -> None:
        """Test that an unusable pivot fails that source's columns."""
        descriptor = SourceDescriptor(
            boiler, columns={"T1": "T1"}, pivot=LongFormatColumns("nope", "T1")
        )
        other = SourceDescriptor(boiler, columns={"T2": "T2"})
        result = combine({"bad": descriptor, "good": other}, grid)
        assert result.failures[0].kind is ErrorKind.PIVOT_AMBIGUOUS
        assert result.dataset.columns == ("T2",)

    def test_interval_fallback_is_warned(self, boiler) -> None:
        """Test that a grid built with a fallback interval is reported."""
        grid = build_time_grid(at(0), at(2), "soon")
        result = combine({"boiler": SourceDescriptor(boiler, columns={"T2": "T2"})}, grid)
        assert any(w.kind is ErrorKind.INVALID_INTERVAL for w in result.warnings)

    def test_empty_grid(self, boiler) -> None:
        """Test that an empty grid yields an empty table with the selected columns."""
        grid = build_time_grid(at(10), at(0), "1min")
        result = combine({"boiler": SourceDescriptor(boiler, columns={"T2": "T2"})}, grid)
        assert len(result.dataset) == 0
        assert result.dataset.columns == ("T2",)


class TestDropScope:
    """DropRow removes rows from one column's series or from the whole source."""

    def _run(self, dataset, scope):
        grid = build_time_grid(at(0), at(2), "1min")
        descriptor = SourceDescriptor(
            dataset,
            columns={"A": "A", "B": "B"},
            cleanup={"A": CleanupPolicy.DROP_ROW, "B": CleanupPolicy.NEAREST_FILL},
        )
        return combine({"gappy": descriptor}, grid, CombineOptions(drop_scope=scope)).dataset

    def test_isolated_keeps_other_columns(self, gappy) -> None:
        """Test that dropping A's missing row leaves B intact."""
        out = self._run(gappy, DropScope.ISOLATED)
        assert out.column("A").to_list() == [1.0, 1.0, 3.0]
        assert out.column("B").to_list() == [10.0, 20.0, 30.0]

    def test_shared_removes_row_for_later_columns(self, gappy) -> None:
        """Test that in shared scope B loses the row A dropped."""
        out = self._run(gappy, DropScope.SHARED)
        assert out.column("A").to_list() == [1.0, 1.0, 3.0]
        assert out.column("B").to_list() == [10.0, 10.0, 30.0]

    def test_scope_parses_from_text(self) -> None:
        """Test that the scope can be given as text."""
        assert CombineOptions(drop_scope="shared").drop_scope is DropScope.SHARED


class TestProgressAndWorkers:
    """Tests for progress reporting, cancellation and worker threads."""

    def test_progress_reaches_one(self, boiler, chiller, grid) -> None:
        """Test that progress is monotonic and ends at 1."""
        seen = []
        options = CombineOptions(progress=lambda fraction, message: seen.append(fraction))
        combine(
            {
                "boiler": SourceDescriptor(boiler, columns={"T1": "T1", "T2": "T2"}),
                "chiller": SourceDescriptor(chiller, columns={"Flow": "Flow"}),
            },
            grid,
            options,
        )
        assert seen == sorted(seen)
        assert seen[-1] == pytest.approx(1.0)

    def test_cancel_event(self, boiler, grid) -> None:
        """Test that a set cancel event stops the run."""
        event = threading.Event()
        event.set()
        with pytest.raises(CombineCancelled):
            combine(
                {"boiler": SourceDescriptor(boiler, columns={"T1": "T1"})},
                grid,
                CombineOptions(cancel=event),
            )

    def test_cancel_callable_mid_run(self, boiler, grid) -> None:
        """Test that cancellation is checked between units of work."""
        calls = []

        def cancel() -> bool:
            calls.append(1)
            return len(calls) > 2

        with pytest.raises(CombineCancelled):
            combine(
                {"boiler": SourceDescriptor(boiler, columns={"T1": "T1", "T2": "T2"})},
                grid,
                CombineOptions(cancel=cancel),
            )

    def test_cancel_while_submitting(self, boiler, grid) -> None:
        """Test that cancelling while work is being handed to threads stops the run."""
        calls = []

        def cancel() -> bool:
            calls.append(1)
            return len(calls) > 2

        with pytest.raises(CombineCancelled):
            combine(
                {"boiler": SourceDescriptor(boiler, columns={"T1": "T1", "T2": "T2"})},
                grid,
                CombineOptions(cancel=cancel, max_workers=2),
            )
        assert len(calls) == 3

    def test_workers_match_serial(self, boiler, chiller, grid) -> None:
        """Test that threaded alignment gives the same table as a serial run."""
        sources = {
            "boiler": SourceDescriptor(
                boiler, columns={"T1": "T1", "T2": "T2"}, alignment="linear"
            ),
            "chiller": SourceDescriptor(chiller, columns={"Flow": "Flow"}, alignment="average"),
        }
        serial = combine(sources, grid).dataset.frame
        threaded = combine(sources, grid, CombineOptions(max_workers=4)).dataset.frame
        assert serial.equals(threaded)

    def test_invalid_worker_count(self) -> None:
        """Test that fewer than one worker is rejected."""
        with pytest.raises(ValueError):
            CombineOptions(max_workers=0)
