"""
Gantt rows: derive a (start, end) interval from whatever dates a note carries.

Fallback ladder (first match wins):
1. start + end              -> as given
2. start only               -> end = start + duration (or default block)
3. end only                 -> start = end - duration (or default block)
4. due + duration           -> end = due, start = due - duration
5. due only                 -> start = due, end = due + default block
Intervals with start > end are swapped. Notes with no usable date are skipped.
"""

import math
from collections.abc import Iterable, Mapping
from datetime import datetime, timedelta
from typing import Any

import structlog

from note_charts.core.coercion import pick_scalar, to_date, to_number, to_text
from note_charts.core.query_plan import EncodingSpec, ResultRow
from note_charts.storage.note_index import NoteRecord

logger = structlog.get_logger(__name__)

DEFAULT_BLOCK_MINUTES = 60


def reconstruct_interval(
    start: datetime | None,
    end: datetime | None,
    due: datetime | None,
    duration_minutes: float | None,
    default_block_minutes: float = DEFAULT_BLOCK_MINUTES,
) -> tuple[datetime, datetime] | None:
    """
    Build a valid interval from a partial set of dates.

    Args:
        start: Explicit start (or scheduled)
        end: Explicit end
        due: Deadline
        duration_minutes: Duration; only positive values count
        default_block_minutes: Block length used when no duration is known

    Returns:
        (start, end) with start <= end, or None if nothing can be derived
    """
    has_duration = duration_minutes is not None and math.isfinite(duration_minutes) and duration_minutes > 0
    try:
        block = timedelta(minutes=duration_minutes if has_duration else default_block_minutes)  # type: ignore[arg-type]
        if start is not None and end is None:
            end = start + block
        elif start is None and end is not None:
            start = end - block
        elif start is None and end is None and due is not None:
            if has_duration:
                end = due
                start = due - block
            else:
                start = due
                end = due + block
    except OverflowError:
        return None

    if start is None or end is None:
        return None
    if start > end:
        start, end = end, start
    return start, end


def _date_field(props: Mapping[str, Any], field: str | None) -> datetime | None:
    if not field:
        return None
    return to_date(pick_scalar(props.get(field)))


def _duration_field(props: Mapping[str, Any], field: str | None) -> float | None:
    if not field:
        return None
    raw = pick_scalar(props.get(field))
    if raw is None:
        return None
    return to_number(raw)


def build_gantt_rows(
    records: Iterable[NoteRecord],
    encoding: EncodingSpec,
    default_block_minutes: float = DEFAULT_BLOCK_MINUTES,
) -> list[ResultRow]:
    """
    One row per note with a derivable interval, ordered by start.

    The label comes from encoding.label, then encoding.x, then the note path.
    """
    label_field = encoding.label or encoding.x
    rows: list[ResultRow] = []
    skipped = 0

    for record in records:
        props = record.properties
        start = _date_field(props, encoding.start) or _date_field(props, encoding.scheduled)
        end = _date_field(props, encoding.end)
        due = _date_field(props, encoding.due)
        duration = _duration_field(props, encoding.duration)

        interval = reconstruct_interval(start, end, due, duration, default_block_minutes)
        if interval is None:
            skipped += 1
            continue

        label: Any = record.path
        if label_field:
            raw_label = pick_scalar(props.get(label_field))
            if raw_label is not None and to_text(raw_label) != "":
                label = raw_label

        series = None
        if encoding.series:
            raw_series = pick_scalar(props.get(encoding.series))
            if raw_series is not None:
                series = to_text(raw_series)

        rows.append(
            ResultRow(
                x=label,
                y=0.0,
                notes=[record.path],
                series=series,
                start=interval[0],
                end=interval[1],
                due=due,
                props=dict(props),
            )
        )

    if skipped:
        logger.debug("gantt_records_skipped", skipped=skipped)

    rows.sort(key=lambda row: row.start)  # type: ignore[arg-type, return-value]
    return rows
