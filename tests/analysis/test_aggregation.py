"""
Tests for the x/y aggregation pipeline.

Test name follows: test_unit_scenario_expectedBehavior
"""

from datetime import date, datetime

import pytest

from note_charts.analysis.aggregation import (
    aggregate_records,
    apply_cumulative,
    apply_rolling,
    normalize_x,
    parse_rolling_window,
    sort_rows,
    validate_transforms,
)
from note_charts.core.query_plan import ChartSpec, ResultRow, TransformError


def _spec(**overrides) -> ChartSpec:
    data = {"type": "bar", "encoding": {"x": "status", "y": "cost"}}
    data.update(overrides)
    return ChartSpec.from_dict(data)


def _points(rows):
    return [(row.x, row.y) for row in rows]


@pytest.fixture
def cost_records(make_record):
    return [
        make_record("n1", status="done", cost=10),
        make_record("n2", status="done", cost=20),
        make_record("n3", status="open", cost=5),
    ]


class TestGrouping:
    """Grouping by (series, x) and aggregate modes."""

    def test_sum_groups_by_x_and_keeps_all_notes(self, cost_records):
        # Arrange
        spec = _spec(aggregate={"y": "sum"})

        # Act
        rows = aggregate_records(cost_records, spec)

        # Assert
        assert _points(rows) == [("done", 30.0), ("open", 5.0)]
        assert rows[0].notes == ["n1", "n2"]
        assert rows[1].notes == ["n3"]

    @pytest.mark.parametrize(
        "mode,expected",
        [
            ("avg", [("done", 15.0), ("open", 5.0)]),
            ("min", [("done", 10.0), ("open", 5.0)]),
            ("max", [("done", 20.0), ("open", 5.0)]),
            ("count", [("done", 2.0), ("open", 1.0)]),
        ],
    )
    def test_aggregate_modes(self, cost_records, mode, expected):
        rows = aggregate_records(cost_records, _spec(aggregate={"y": mode}))

        assert _points(rows) == expected

    def test_count_mode_needs_no_y_field(self, cost_records):
        # Arrange
        spec = ChartSpec.from_dict({"type": "bar", "encoding": {"x": "status"}, "aggregate": {"y": "count"}})

        # Act
        rows = aggregate_records(cost_records, spec)

        # Assert
        assert _points(rows) == [("done", 2.0), ("open", 1.0)]

    def test_notes_are_not_deduplicated(self, make_record):
        # Arrange: the same path contributes twice through explosion
        records = [make_record("n1", tags=["a", "a"], cost=1)]
        spec = ChartSpec.from_dict({"type": "pie", "encoding": {"x": "tags"}, "aggregate": {"y": "count"}})

        # Act
        rows = aggregate_records(records, spec, explode=True)

        # Assert
        assert rows[0].notes == ["n1", "n1"]
        assert rows[0].y == 2.0

    def test_without_aggregate_rows_pass_through(self, cost_records):
        rows = aggregate_records(cost_records, _spec())

        assert [row.notes for row in rows] == [["n1"], ["n2"], ["n3"]]
        assert _points(rows) == [("done", 10.0), ("done", 20.0), ("open", 5.0)]

    def test_rows_carry_property_copies(self, cost_records):
        rows = aggregate_records(cost_records, _spec())

        assert rows[0].props == {"status": "done", "cost": 10}
        assert rows[0].props is not cost_records[0].properties

    def test_series_splits_buckets(self, make_record):
        # Arrange
        records = [
            make_record("a", day="2024-01-10", owner="ann", hours=1),
            make_record("b", day="2024-01-10", owner="bob", hours=2),
            make_record("c", day="2024-01-10", owner="ann", hours=3),
        ]
        spec = ChartSpec.from_dict(
            {"type": "stacked-bar", "encoding": {"x": "day", "y": "hours", "series": "owner"}, "aggregate": {"y": "sum"}}
        )

        # Act
        rows = aggregate_records(records, spec)

        # Assert
        assert [(row.series, row.y, row.notes) for row in rows] == [("ann", 4.0, ["a", "c"]), ("bob", 2.0, ["b"])]


class TestRowExtraction:
    """Per-record soft failures and x normalization."""

    def test_missing_x_or_non_numeric_y_is_dropped(self, make_record):
        # Arrange
        records = [
            make_record("ok", status="done", cost="12"),
            make_record("no-x", cost=3),
            make_record("null-x", status=None, cost=3),
            make_record("bad-y", status="done", cost="twelve"),
            make_record("no-y", status="done"),
        ]

        # Act
        rows = aggregate_records(records, _spec())

        # Assert
        assert [row.notes for row in rows] == [["ok"]]
        assert rows[0].y == 12.0

    def test_same_day_timestamps_group_together(self, make_record):
        # Arrange
        records = [
            make_record("a", date="2024-01-10T09:00", cost=1),
            make_record("b", date="2024-01-10T17:30", cost=2),
            make_record("c", date="2024-01-11", cost=4),
        ]
        spec = ChartSpec.from_dict({"type": "line", "encoding": {"x": "date", "y": "cost"}, "aggregate": {"y": "sum"}})

        # Act
        rows = aggregate_records(records, spec)

        # Assert
        assert _points(rows) == [("2024-01-10", 3.0), ("2024-01-11", 4.0)]

    def test_blank_series_means_no_series(self, make_record):
        records = [make_record("a", status="done", cost=1, owner="  ")]
        spec = _spec(encoding={"x": "status", "y": "cost", "series": "owner"})

        rows = aggregate_records(records, spec)

        assert rows[0].series is None

    def test_normalize_x_iso_string_keeps_day_only(self):
        assert normalize_x("2024-01-10T09:00:00Z") == ("2024-01-10", "2024-01-10", True)

    def test_normalize_x_numbers_key_by_text(self):
        assert normalize_x(3.0) == (3.0, "3", False)

    def test_x_bucket_month_relabels_dates(self, make_record):
        # Arrange
        records = [
            make_record("a", date="2024-01-10", cost=1),
            make_record("b", date="2024-01-28", cost=2),
            make_record("c", date="2024-02-03", cost=4),
        ]
        spec = ChartSpec.from_dict(
            {
                "type": "bar",
                "encoding": {"x": "date", "y": "cost"},
                "aggregate": {"y": "sum"},
                "options": {"x_bucket": "month"},
            }
        )

        # Act
        rows = aggregate_records(records, spec)

        # Assert
        assert _points(rows) == [("2024-01", 3.0), ("2024-02", 4.0)]

    def test_x_bucket_week_keeps_week_marker(self, make_record):
        # Arrange: 2024-01-10 and 2024-01-11 fall in the week starting Monday 2024-01-08
        records = [
            make_record("a", date="2024-01-10", cost=1),
            make_record("b", date="2024-01-11T15:00", cost=2),
            make_record("c", date="2024-01-16", cost=4),
        ]
        spec = ChartSpec.from_dict(
            {
                "type": "bar",
                "encoding": {"x": "date", "y": "cost"},
                "aggregate": {"y": "sum"},
                "options": {"x_bucket": "week"},
            }
        )

        # Act
        rows = aggregate_records(records, spec)

        # Assert
        assert _points(rows) == [("2024-01-08 (W)", 3.0), ("2024-01-15 (W)", 4.0)]
        assert rows[0].notes == ["a", "b"]

    def test_x_bucket_leaves_non_dates_alone(self, make_record):
        records = [make_record("a", status="open", cost=1)]
        spec = _spec(options={"x_bucket": "week"})

        rows = aggregate_records(records, spec)

        assert _points(rows) == [("open", 1.0)]

    def test_date_objects_and_iso_strings_sort_chronologically(self, make_record):
        # Arrange
        records = [
            make_record("late", day=date(2024, 3, 1), v=1),
            make_record("early", day="2024-01-05T23:00", v=2),
            make_record("mid", day=datetime(2024, 2, 10, 8, 0), v=3),
        ]
        spec = ChartSpec.from_dict({"type": "line", "encoding": {"x": "day", "y": "v"}})

        # Act
        rows = aggregate_records(records, spec)

        # Assert
        assert [row.x for row in rows] == ["2024-01-05", "2024-02-10", "2024-03-01"]
        assert [row.notes for row in rows] == [["early"], ["mid"], ["late"]]


class TestMultiValueExplosion:
    """Per-value fan-out for exploding chart types."""

    def test_list_value_fans_out_to_one_row_per_element(self, make_record):
        # Arrange
        records = [make_record("n1", tags=["a", "b", "c"])]
        spec = ChartSpec.from_dict({"type": "pie", "encoding": {"x": "tags"}, "aggregate": {"y": "count"}})

        # Act
        rows = aggregate_records(records, spec, explode=True)

        # Assert
        assert _points(rows) == [("a", 1.0), ("b", 1.0), ("c", 1.0)]
        assert all(row.notes == ["n1"] for row in rows)

    def test_whitespace_string_is_split(self, make_record):
        records = [make_record("n1", tags="#work #urgent")]
        spec = ChartSpec.from_dict({"type": "pie", "encoding": {"x": "tags"}, "aggregate": {"y": "count"}})

        rows = aggregate_records(records, spec, explode=True)

        assert _points(rows) == [("#urgent", 1.0), ("#work", 1.0)]

    def test_missing_value_goes_to_missing_bucket(self, make_record):
        # Arrange
        records = [make_record("n1", tags=["a"]), make_record("n2"), make_record("n3", tags=[])]
        spec = ChartSpec.from_dict({"type": "pie", "encoding": {"x": "tags"}, "aggregate": {"y": "count"}})

        # Act
        rows = aggregate_records(records, spec, explode=True, missing_label="(none)")

        # Assert
        assert _points(rows) == [("(none)", 2.0), ("a", 1.0)]
        assert rows[0].notes == ["n2", "n3"]

    def test_without_explode_list_uses_first_element(self, make_record):
        records = [make_record("n1", tags=["a", "b"])]
        spec = ChartSpec.from_dict({"type": "bar", "encoding": {"x": "tags"}, "aggregate": {"y": "count"}})

        rows = aggregate_records(records, spec)

        assert _points(rows) == [("a", 1.0)]


class TestSorting:
    """Sort by x with series as tie breaker."""

    def test_sort_desc_reverses_x_only(self):
        # Arrange
        rows = [
            ResultRow(x="a", y=1.0, notes=[], series="s2"),
            ResultRow(x="b", y=2.0, notes=[], series=None),
            ResultRow(x="a", y=3.0, notes=[], series="s1"),
        ]

        # Act
        result = sort_rows(rows, "desc")

        # Assert
        assert [(row.x, row.series) for row in result] == [("b", None), ("a", "s1"), ("a", "s2")]

    def test_sort_empty_series_first(self):
        rows = [ResultRow(x="a", y=1.0, notes=[], series="z"), ResultRow(x="a", y=2.0, notes=[])]

        result = sort_rows(rows)

        assert [row.series for row in result] == [None, "z"]

    def test_sort_numbers_compare_as_text(self):
        rows = [ResultRow(x=10.0, y=1.0, notes=[]), ResultRow(x=9.0, y=1.0, notes=[])]

        result = sort_rows(rows)

        assert [row.x for row in result] == [10.0, 9.0]


class TestTransforms:
    """Cumulative and rolling transforms, per series, in sorted order."""

    def test_cumulative_is_running_sum_per_series(self, make_record):
        # Arrange
        records = [
            make_record("a1", day="2024-01-01", who="A", v=1),
            make_record("b1", day="2024-01-01", who="B", v=2),
            make_record("a2", day="2024-01-02", who="A", v=3),
            make_record("b2", day="2024-01-02", who="B", v=4),
        ]
        spec = ChartSpec.from_dict(
            {"type": "line", "encoding": {"x": "day", "y": "v", "series": "who"}, "aggregate": {"cumulative": True}}
        )

        # Act
        rows = aggregate_records(records, spec)

        # Assert
        assert [(row.series, row.y) for row in rows] == [("A", 1.0), ("B", 2.0), ("A", 4.0), ("B", 6.0)]

    def test_cumulative_is_monotonic_for_non_negative_values(self, make_record):
        # Arrange
        values = [3, 0, 7, 1, 0, 2]
        records = [make_record(f"n{i}", day=f"2024-01-0{i + 1}", v=v) for i, v in enumerate(values)]
        spec = ChartSpec.from_dict(
            {"type": "area", "encoding": {"x": "day", "y": "v"}, "aggregate": {"y": "sum", "cumulative": True}}
        )

        # Act
        ys = [row.y for row in aggregate_records(records, spec)]

        # Assert
        assert all(a <= b for a, b in zip(ys, ys[1:]))
        assert ys[-1] == sum(values)

    def test_rolling_averages_over_available_samples(self, make_record):
        # Arrange
        values = [1, 3, 5, 7, 9]
        records = [make_record(f"n{i}", day=f"2024-01-0{i + 1}", v=v) for i, v in enumerate(values)]
        spec = ChartSpec.from_dict({"type": "line", "encoding": {"x": "day", "y": "v"}, "aggregate": {"rolling": "3d"}})

        # Act
        ys = [row.y for row in aggregate_records(records, spec)]

        # Assert: rows 1..N average the first k values, later rows the last N
        assert ys == pytest.approx([1.0, 2.0, 3.0, 5.0, 7.0])

    def test_rolling_is_per_series(self):
        rows = [
            ResultRow(x="1", y=2.0, notes=[], series="A"),
            ResultRow(x="1", y=10.0, notes=[], series="B"),
            ResultRow(x="2", y=4.0, notes=[], series="A"),
            ResultRow(x="2", y=20.0, notes=[], series="B"),
        ]

        result = apply_rolling(rows, 2)

        assert [row.y for row in result] == pytest.approx([2.0, 10.0, 3.0, 15.0])

    def test_rolling_window_of_one_is_identity(self):
        rows = [ResultRow(x="1", y=2.0, notes=[]), ResultRow(x="2", y=4.0, notes=[])]

        assert [row.y for row in apply_rolling(rows, 1)] == [2.0, 4.0]

    def test_cumulative_empty_rows(self):
        assert apply_cumulative([]) == []

    def test_transform_on_non_line_chart_raises(self, cost_records):
        with pytest.raises(TransformError, match="only supported for type"):
            aggregate_records(cost_records, _spec(aggregate={"cumulative": True}))

    def test_both_transforms_together_raise(self):
        spec = ChartSpec.from_dict(
            {"type": "line", "encoding": {"x": "d", "y": "v"}, "aggregate": {"cumulative": True, "rolling": 3}}
        )

        with pytest.raises(TransformError, match="cannot be used together"):
            aggregate_records([], spec)

    def test_validate_transforms_respects_configured_types(self):
        spec = _spec(aggregate={"cumulative": True})

        validate_transforms(spec, transform_types=["bar"])

    @pytest.mark.parametrize("value,expected", [(7, 7), ("7d", 7), (" 14 ", 14), (2.9, 2), (0, 0), (-3, 0), (None, 0)])
    def test_parse_rolling_window(self, value, expected):
        assert parse_rolling_window(value) == expected

    def test_parse_rolling_window_invalid_raises(self):
        with pytest.raises(TransformError, match="Invalid aggregate.rolling"):
            parse_rolling_window("weekly")
