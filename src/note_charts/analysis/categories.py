"""
Category handling for the x channel: multi-value explosion and date bucketing.

Exploding charts (pie by default) slice per value: a note tagged "#a #b #c" counts
fully toward three slices. Bucketing relabels date-like x values by calendar period.
"""

from collections.abc import Iterable
from datetime import date, datetime, timedelta
from typing import Any

import structlog

from note_charts.core.coercion import looks_like_iso_date, to_date, to_text
from note_charts.core.query_plan import ChartSpec, XBucket

logger = structlog.get_logger(__name__)

MISSING_LABEL = "(missing)"
DEFAULT_EXPLODE_TYPES = ("pie",)


def should_explode(spec: ChartSpec, explode_types: Iterable[str] = DEFAULT_EXPLODE_TYPES) -> bool:
    """Explicit options.multi_value wins; otherwise the chart type decides."""
    if spec.options.multi_value is not None:
        return spec.options.multi_value
    return spec.type in set(explode_types)


def _list_items(raw: Any) -> list[Any] | None:
    if isinstance(raw, (list, tuple, set, frozenset)):
        return list(raw)
    for attr in ("tolist", "to_list", "to_array"):
        converter = getattr(raw, attr, None)
        if callable(converter):
            converted = converter()
            return list(converted) if isinstance(converted, (list, tuple)) else None
    return None


def _is_multi_valued(raw: Any) -> bool:
    return isinstance(raw, (list, tuple, set, frozenset)) or any(
        callable(getattr(raw, attr, None)) for attr in ("tolist", "to_list", "to_array")
    )


def _safe_text(value: Any) -> str:
    try:
        return to_text(value).strip()
    except Exception as e:
        logger.debug("category_value_unreadable", value_type=type(value).__name__, error=str(e))
        return ""


def explode_values(raw: Any, missing_label: str = MISSING_LABEL) -> list[str]:
    """
    Split a multi-valued property into its individual category values.

    Handles:
    - lists/tuples/sets (None and blank items skipped)
    - array-likes exposing tolist()/to_list()/to_array()
    - whitespace-separated strings ("#work #urgent")
    - anything else via its string form

    Returns:
        Non-empty list of values ([missing_label] when nothing usable is found)
    """
    values: list[str] = []

    if raw is not None and not isinstance(raw, str) and _is_multi_valued(raw):
        items = _list_items(raw)
        if items is None:
            items = [raw]
        for item in items:
            if item is None:
                continue
            text = _safe_text(item)
            if text:
                values.append(text)
    elif isinstance(raw, str):
        values.extend(raw.split())
    elif raw is not None:
        text = _safe_text(raw)
        if text:
            values.append(text)

    return values or [missing_label]


def bucket_x(value: Any, mode: XBucket) -> Any:
    """
    Relabel a date-like x value by calendar period.

    Modes: none (unchanged), auto/day (YYYY-MM-DD), week (Monday "YYYY-MM-DD (W)"),
    month (YYYY-MM), quarter (YYYY-Qn), year (YYYY). Non-dates pass through.
    """
    if mode == "none":
        return value
    if not isinstance(value, (datetime, date)) and not looks_like_iso_date(value):
        return value
    parsed = to_date(value)
    if parsed is None:
        return value

    if mode in ("auto", "day"):
        return parsed.strftime("%Y-%m-%d")
    if mode == "week":
        monday = parsed - timedelta(days=parsed.weekday())
        return f"{monday.strftime('%Y-%m-%d')} (W)"
    if mode == "month":
        return parsed.strftime("%Y-%m")
    if mode == "quarter":
        return f"{parsed.year}-Q{(parsed.month - 1) // 3 + 1}"
    if mode == "year":
        return str(parsed.year)
    return value
