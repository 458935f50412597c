"""
Record filtering: path prefixes, tags and WHERE clauses.

A record must pass the path filter AND the tag filter AND every WHERE condition.
WHERE clauses are compiled before any record is read so a malformed clause aborts
the query even when no record would reach it.
"""

from collections.abc import Callable, Iterable, Mapping
from datetime import date, datetime
from typing import Any

import structlog

from note_charts.core.coercion import is_date_field_name
from note_charts.core.predicates import Condition, eval_cond, parse_where
from note_charts.core.query_plan import WhereParseError
from note_charts.storage.note_index import NoteRecord

logger = structlog.get_logger(__name__)


def match_path(path: str, prefixes: list[str]) -> bool:
    """True if path equals or sits under one of the folder prefixes ("." matches all)."""
    if not prefixes:
        return True
    for prefix in prefixes:
        if prefix == ".":
            return True
        folder = prefix.rstrip("/")
        if path == prefix or path == folder or path.startswith(folder + "/"):
            return True
    return False


def _normalize_tag(tag: Any) -> str:
    return str(tag).strip().lstrip("#")


def _record_tags(raw: Any) -> set[str]:
    if raw is None:
        return set()
    if isinstance(raw, (list, tuple, set)):
        values = [item for item in raw if item is not None]
    else:
        values = str(raw).split()
    return {tag for tag in (_normalize_tag(value) for value in values) if tag}


def match_tags(properties: Mapping[str, Any], wanted: list[str]) -> bool:
    """True if the record's `tags` property shares at least one tag with `wanted`."""
    if not wanted:
        return True
    note_tags = _record_tags(properties.get("tags"))
    if not note_tags:
        return False
    return any(_normalize_tag(tag) in note_tags for tag in wanted)


def compile_where(
    clauses: list[str],
    now: datetime | date | None = None,
    is_date_field: Callable[[str], bool] = is_date_field_name,
) -> list[Condition]:
    """
    Parse every WHERE clause up front.

    Raises:
        WhereParseError: Naming the first invalid clause
    """
    conditions: list[Condition] = []
    for clause in clauses:
        try:
            conditions.append(parse_where(clause, now=now, is_date_field=is_date_field))
        except WhereParseError as e:
            logger.warning("where_clause_invalid", clause=clause, error=str(e))
            raise WhereParseError(f"Invalid condition: {clause} ({e})") from e
    return conditions


def filter_records(
    records: Iterable[NoteRecord],
    paths: list[str],
    tags: list[str],
    conditions: list[Condition],
) -> list[NoteRecord]:
    """
    Apply path, tag and WHERE filters, preserving record order.

    Args:
        records: Snapshot of the index
        paths: Folder prefixes (empty = no path restriction)
        tags: Wanted tags (empty = no tag restriction)
        conditions: Compiled WHERE conditions (all must hold)

    Returns:
        Records passing every filter
    """
    filtered: list[NoteRecord] = []
    for record in records:
        if not match_path(record.path, paths):
            continue
        if not match_tags(record.properties, tags):
            continue
        if not all(eval_cond(record.properties, condition) for condition in conditions):
            continue
        filtered.append(record)
    return filtered
