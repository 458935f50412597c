"""
Metric widget: a single headline number (or date) computed over the filtered notes.

The property type is detected from a sample of values; the requested operation must
be valid for that type, otherwise the type's default operation is used.
"""

from collections.abc import Iterable
from datetime import datetime
from typing import Any, Literal

import structlog

from note_charts.core.coercion import ValueKind, classify_value, pick_scalar
from note_charts.core.query_plan import MetricOperation, ResultRow
from note_charts.storage.note_index import NoteRecord

logger = structlog.get_logger(__name__)

PropertyType = Literal["number", "date", "text"]

TYPE_SAMPLE_SIZE = 20
SECONDS_PER_DAY = 86400

OPERATIONS_BY_TYPE: dict[PropertyType, tuple[MetricOperation, ...]] = {
    "number": ("countAll", "countNonEmpty", "sum", "avg", "min", "max"),
    "date": ("countAll", "countNonEmpty", "oldest", "newest", "dateRange"),
    "text": ("countAll", "countNonEmpty"),
}


def detect_property_type(records: Iterable[NoteRecord], field: str | None) -> PropertyType:
    """
    Guess whether a property holds numbers, dates or text.

    Samples up to TYPE_SAMPLE_SIZE non-missing values; the majority wins and ties
    prefer number over date.
    """
    if not field:
        return "text"

    numbers = dates = samples = 0
    for record in records:
        if samples >= TYPE_SAMPLE_SIZE:
            break
        typed = classify_value(pick_scalar(record.properties.get(field)))
        if typed.kind == ValueKind.MISSING:
            continue
        samples += 1
        if typed.kind == ValueKind.NUMBER:
            numbers += 1
        elif typed.kind == ValueKind.DATE:
            dates += 1

    if numbers == 0 and dates == 0:
        return "text"
    return "number" if numbers >= dates else "date"


def valid_operations(property_type: PropertyType, has_field: bool) -> tuple[MetricOperation, ...]:
    if not has_field:
        return ("countAll",)
    return OPERATIONS_BY_TYPE[property_type]


def default_operation(has_field: bool) -> MetricOperation:
    return "countNonEmpty" if has_field else "countAll"


def _metric_value(operation: MetricOperation, numbers: list[float], dates: list[datetime], non_empty: int) -> Any:
    if operation == "countNonEmpty":
        return non_empty
    if operation in ("sum", "avg", "min", "max"):
        if not numbers:
            return 0.0 if operation == "sum" else None
        if operation == "sum":
            return sum(numbers)
        if operation == "avg":
            return sum(numbers) / len(numbers)
        return min(numbers) if operation == "min" else max(numbers)
    if not dates:
        return None
    if operation == "oldest":
        return min(dates)
    if operation == "newest":
        return max(dates)
    # dateRange, in whole days
    if len(dates) <= 1:
        return 0
    return round((max(dates) - min(dates)).total_seconds() / SECONDS_PER_DAY)


def compute_metric(
    records: Iterable[NoteRecord],
    field: str | None,
    operation: MetricOperation | None = None,
) -> ResultRow:
    """
    Compute the metric widget value.

    Args:
        records: Filtered note records
        field: Property to measure (None = count notes)
        operation: Requested operation (None = default for the property)

    Returns:
        Single ResultRow; x is the operation, y the numeric value (0 for date results),
        props carries metric_value / metric_data_type / metric_operation
    """
    records = list(records)
    has_field = bool(field)
    property_type = detect_property_type(records, field)
    allowed = valid_operations(property_type, has_field)

    effective = operation or default_operation(has_field)
    if effective not in allowed:
        fallback = default_operation(has_field)
        logger.warning(
            "metric_operation_invalid",
            operation=effective,
            property_type=property_type,
            fallback=fallback,
        )
        effective = fallback

    paths = [record.path for record in records]
    if effective == "countAll":
        value: Any = len(records)
    else:
        numbers: list[float] = []
        dates: list[datetime] = []
        non_empty = 0
        for record in records:
            typed = classify_value(pick_scalar(record.properties.get(field)))  # type: ignore[arg-type]
            if typed.kind == ValueKind.MISSING:
                continue
            non_empty += 1
            if typed.kind == ValueKind.NUMBER:
                numbers.append(typed.value)
            elif typed.kind == ValueKind.DATE:
                dates.append(typed.value)
        value = _metric_value(effective, numbers, dates, non_empty)

    y = float(value) if isinstance(value, (int, float)) else 0.0
    return ResultRow(
        x=effective,
        y=y,
        notes=paths,
        props={
            "metric_value": value,
            "metric_data_type": property_type,
            "metric_operation": effective,
        },
    )
