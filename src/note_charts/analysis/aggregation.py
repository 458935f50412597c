"""
Aggregation pipeline for x/y charts - Polars-backed grouping and per-series transforms.

Pipeline:
1. Extract (x, y, series) per record; records without x or a numeric y are dropped
2. Group by (series, x) when aggregate.y is set: sum / avg / min / max / count
3. Sort by x (series breaks ties) - this is the final output order
4. Optional per-series cumulative sum or rolling average, in sorted order
"""

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, replace
from datetime import date, datetime
from functools import cmp_to_key
from typing import Any

import polars as pl
import structlog

from note_charts.analysis.categories import MISSING_LABEL, bucket_x, explode_values
from note_charts.core.coercion import looks_like_iso_date, pick_scalar, to_date, to_number, to_text
from note_charts.core.query_plan import ChartSpec, ResultRow, TransformError
from note_charts.storage.note_index import NoteRecord

logger = structlog.get_logger(__name__)

DEFAULT_TRANSFORM_TYPES = ("line", "area")
NO_SERIES = "__no_series__"
ROLLING_WINDOW = re.compile(r"^(\d+)")


@dataclass
class _ExtractedRow:
    """One (x, y) observation before grouping."""

    x: Any
    x_key: str
    y: float
    series: str | None
    path: str
    props: Mapping[str, Any]


def normalize_x(raw: Any) -> tuple[Any, str, bool]:
    """
    Normalize an x value to (display value, grouping key, is_date).

    ISO-like strings and date objects collapse to their YYYY-MM-DD day so that
    same-day notes group together regardless of time of day.
    """
    if looks_like_iso_date(raw):
        day = raw[:10]
        return day, day, True
    if isinstance(raw, (datetime, date)):
        day = to_date(raw).strftime("%Y-%m-%d")  # type: ignore[union-attr]
        return day, day, True
    return raw, to_text(raw), False


def parse_rolling_window(rolling: Any) -> int:
    """
    Window size from a number or a leading-digit string ("7d" -> 7).

    Raises:
        TransformError: If the value cannot be read as a window size
    """
    if rolling is None:
        return 0
    if isinstance(rolling, bool):
        raise TransformError(f"Invalid aggregate.rolling: {rolling}")
    if isinstance(rolling, (int, float)):
        return int(rolling) if rolling > 0 else 0
    if isinstance(rolling, str):
        match = ROLLING_WINDOW.match(rolling.strip())
        if match:
            return int(match.group(1))
    raise TransformError(f"Invalid aggregate.rolling: {rolling}")


def validate_transforms(spec: ChartSpec, transform_types: Iterable[str] = DEFAULT_TRANSFORM_TYPES) -> None:
    """
    Reject transform requests the pipeline cannot honour.

    Raises:
        TransformError: Transform on a non line/area chart, or cumulative + rolling together
    """
    cumulative = spec.aggregate.cumulative
    rolling = bool(spec.aggregate.rolling)
    if not (cumulative or rolling):
        return
    allowed = list(transform_types)
    if spec.type not in allowed:
        raise TransformError(
            f"aggregate.cumulative / aggregate.rolling are only supported for type: {' or '.join(allowed)} "
            f"(got '{spec.type}')"
        )
    if cumulative and rolling:
        raise TransformError("aggregate.cumulative and aggregate.rolling cannot be used together")


def _series_value(props: Mapping[str, Any], field: str | None) -> str | None:
    if not field:
        return None
    raw = pick_scalar(props.get(field))
    if raw is None:
        return None
    text = to_text(raw)
    return text if text.strip() else None


def _extract_rows(
    records: Iterable[NoteRecord],
    spec: ChartSpec,
    explode: bool,
    missing_label: str,
) -> list[_ExtractedRow]:
    x_field = spec.encoding.x
    y_field = spec.encoding.y
    count_mode = spec.aggregate.y == "count"
    bucket = spec.options.x_bucket

    rows: list[_ExtractedRow] = []
    dropped = 0
    for record in records:
        props = record.properties

        if count_mode:
            y = 1.0
        else:
            y_number = to_number(pick_scalar(props.get(y_field))) if y_field else None
            if y_number is None:
                dropped += 1
                continue
            y = y_number

        if explode:
            raw_values: list[Any] = explode_values(props.get(x_field), missing_label)
        else:
            raw_x = pick_scalar(props.get(x_field))
            if raw_x is None:
                dropped += 1
                continue
            raw_values = [raw_x]

        series = _series_value(props, spec.encoding.series)
        for raw_value in raw_values:
            label = bucket_x(raw_value, bucket)
            if label is not raw_value:
                # Bucket labels ("2024-01-08 (W)", "2024-Q1") are final
                x, x_key = label, label
            else:
                x, x_key, _ = normalize_x(raw_value)
            rows.append(_ExtractedRow(x=x, x_key=x_key, y=y, series=series, path=record.path, props=props))

    if dropped:
        logger.debug("aggregation_records_dropped", dropped=dropped, x_field=x_field, y_field=y_field)
    return rows


def _group_rows(rows: list[_ExtractedRow], mode: str) -> list[ResultRow]:
    frame = pl.DataFrame(
        {
            "row_idx": list(range(len(rows))),
            "series_key": [row.series or "" for row in rows],
            "x_key": [row.x_key for row in rows],
            "y": [row.y for row in rows],
            "note": [row.path for row in rows],
        },
        schema={"row_idx": pl.Int64, "series_key": pl.Utf8, "x_key": pl.Utf8, "y": pl.Float64, "note": pl.Utf8},
    )

    grouped = frame.group_by(["series_key", "x_key"], maintain_order=True).agg(
        pl.col("y").sum().alias("sum"),
        pl.len().alias("count"),
        pl.col("y").min().alias("min"),
        pl.col("y").max().alias("max"),
        pl.col("note").alias("notes"),
        pl.col("row_idx").first().alias("first_idx"),
        pl.col("row_idx").last().alias("last_idx"),
    )

    result: list[ResultRow] = []
    for bucket in grouped.iter_rows(named=True):
        if mode == "avg":
            y = bucket["sum"] / bucket["count"]
        elif mode == "min":
            y = bucket["min"]
        elif mode == "max":
            y = bucket["max"]
        elif mode == "count":
            y = float(bucket["count"])
        else:
            y = bucket["sum"]

        first = rows[bucket["first_idx"]]
        result.append(
            ResultRow(
                x=first.x,
                y=y,
                notes=list(bucket["notes"]),
                series=first.series,
                props=dict(rows[bucket["last_idx"]].props),
            )
        )
    return result


def _compare_x(a: Any, b: Any) -> int:
    # Date x values are already YYYY-MM-DD strings, so text order is chronological
    text_a, text_b = to_text(a), to_text(b)
    return (text_a > text_b) - (text_a < text_b)


def sort_rows(rows: list[ResultRow], direction: str = "asc") -> list[ResultRow]:
    """Stable sort by x in the given direction, then by series ascending ("" first)."""
    sign = -1 if direction == "desc" else 1

    def compare(a: ResultRow, b: ResultRow) -> int:
        by_x = _compare_x(a.x, b.x)
        if by_x:
            return sign * by_x
        series_a, series_b = a.series or "", b.series or ""
        return (series_a > series_b) - (series_a < series_b)

    return sorted(rows, key=cmp_to_key(compare))


def _transform_frame(rows: list[ResultRow]) -> pl.DataFrame:
    return pl.DataFrame(
        {"series_key": [row.series or NO_SERIES for row in rows], "y": [row.y for row in rows]},
        schema={"series_key": pl.Utf8, "y": pl.Float64},
    )


def apply_cumulative(rows: list[ResultRow]) -> list[ResultRow]:
    """Running total per series, in the current row order."""
    if not rows:
        return []
    totals = _transform_frame(rows).select(pl.col("y").cum_sum().over("series_key"))["y"].to_list()
    return [replace(row, y=total) for row, total in zip(rows, totals, strict=True)]


def apply_rolling(rows: list[ResultRow], rolling: Any) -> list[ResultRow]:
    """
    Rolling average per series, in the current row order.

    Early points average over the samples seen so far (no zero padding).
    """
    window = parse_rolling_window(rolling)
    if window <= 1 or not rows:
        return list(rows)
    means = (
        _transform_frame(rows)
        .select(pl.col("y").rolling_mean(window_size=window, min_samples=1).over("series_key"))["y"]
        .to_list()
    )
    return [replace(row, y=mean) for row, mean in zip(rows, means, strict=True)]


def aggregate_records(
    records: Iterable[NoteRecord],
    spec: ChartSpec,
    explode: bool = False,
    missing_label: str = MISSING_LABEL,
    transform_types: Iterable[str] = DEFAULT_TRANSFORM_TYPES,
) -> list[ResultRow]:
    """
    Run the x/y pipeline for bar/line/area/pie/scatter style charts.

    Args:
        records: Filtered note records
        spec: Chart specification (encoding.x required)
        explode: Fan multi-valued x out into one row per value
        missing_label: Category used for missing x values when exploding
        transform_types: Chart types allowed to use cumulative/rolling

    Returns:
        Sorted (and optionally transformed) result rows

    Raises:
        TransformError: Invalid cumulative/rolling request
    """
    validate_transforms(spec, transform_types)

    extracted = _extract_rows(records, spec, explode, missing_label)
    if not extracted:
        return []

    mode = spec.aggregate.y
    if mode:
        rows = _group_rows(extracted, mode)
    else:
        rows = [
            ResultRow(x=row.x, y=row.y, notes=[row.path], series=row.series, props=dict(row.props))
            for row in extracted
        ]

    rows = sort_rows(rows, spec.sort.x)

    if spec.aggregate.rolling:
        return apply_rolling(rows, spec.aggregate.rolling)
    if spec.aggregate.cumulative:
        return apply_cumulative(rows)
    return rows
