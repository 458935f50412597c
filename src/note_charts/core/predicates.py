"""
WHERE-clause parsing and evaluation.

Two grammars are supported:
- Comparison: <field> (==|!=|>=|<=|>|<) <value>
- Range:      <field> between <value1> and <value2>

The value type (string/number/date) is inferred once at parse time and drives the
comparison semantics for every record the condition is evaluated against.
"""

import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Literal

from note_charts.core.coercion import (
    ValueType,
    is_date_field_name,
    looks_like_iso_date,
    parse_value_token,
    start_of_day,
    to_date,
    to_number,
    to_text,
)
from note_charts.core.query_plan import WhereParseError

Operator = Literal["==", "!=", ">", ">=", "<", "<=", "between"]

BETWEEN_PATTERN = re.compile(r"^([a-zA-Z0-9_.-]+)\s+between\s+(.+)\s+and\s+(.+)$", re.IGNORECASE)
# Two-character operators must come first in the alternation
OPERATOR_PATTERN = re.compile(r"(==|!=|>=|<=|>|<)")


@dataclass(frozen=True)
class Condition:
    """Parsed WHERE clause."""

    field: str
    operator: Operator
    value: Any
    value_type: ValueType
    value2: Any = None  # Upper bound, only for "between"

    def __post_init__(self) -> None:
        if (self.operator == "between") != (self.value2 is not None):
            raise WhereParseError(f"value2 must be set exactly when operator is 'between' (field '{self.field}')")


def parse_where(
    expr: str,
    now: datetime | date | None = None,
    is_date_field: Callable[[str], bool] = is_date_field_name,
) -> Condition:
    """
    Parse a WHERE clause into a Condition.

    Args:
        expr: Clause text, e.g. "priority > 3" or "due between -7d and today"
        now: Reference date for relative date tokens (defaults to now)
        is_date_field: Predicate deciding whether a field name forces date parsing

    Returns:
        Parsed Condition

    Raises:
        WhereParseError: If the clause matches neither grammar
    """
    trimmed = expr.strip()

    between = BETWEEN_PATTERN.match(trimmed)
    if between:
        field_name = between.group(1).strip()
        force_date = is_date_field(field_name)
        value1, type1 = parse_value_token(between.group(2), force_date, now)
        value2, type2 = parse_value_token(between.group(3), force_date, now)
        value_type: ValueType = "date" if "date" in (type1, type2) else type1
        return Condition(field=field_name, operator="between", value=value1, value_type=value_type, value2=value2)

    parts = OPERATOR_PATTERN.split(trimmed)
    if len(parts) != 3:
        raise WhereParseError(f"Invalid WHERE expression: {expr}")

    field_name = parts[0].strip()
    operator = parts[1].strip()
    if not field_name:
        raise WhereParseError(f"Invalid WHERE expression (missing field): {expr}")

    value, value_type = parse_value_token(parts[2], is_date_field(field_name), now)
    return Condition(field=field_name, operator=operator, value=value, value_type=value_type)  # type: ignore[arg-type]


def validate_where(expr: str) -> tuple[bool, str | None]:
    """
    Validate a WHERE clause without raising.

    Returns:
        Tuple of (is_valid, error_message)
    """
    try:
        parse_where(expr)
    except WhereParseError as e:
        return False, str(e)
    return True, None


def _compare(left: Any, operator: Operator, right: Any) -> bool:
    if operator == "==":
        return left == right
    if operator == "!=":
        return left != right
    if operator == ">":
        return left > right
    if operator == ">=":
        return left >= right
    if operator == "<":
        return left < right
    if operator == "<=":
        return left <= right
    return False


def _left_date(raw: Any) -> datetime | None:
    if isinstance(raw, (datetime, date)):
        parsed = to_date(raw)
    elif looks_like_iso_date(raw):
        parsed = to_date(raw)
    else:
        return None
    return start_of_day(parsed) if parsed is not None else None


def eval_cond(properties: Mapping[str, Any], condition: Condition) -> bool:
    """
    Evaluate a condition against a record's properties.

    A missing (or None) field never matches. String conditions do not support
    "between" and always return False for it.
    """
    left_raw = properties.get(condition.field)
    if left_raw is None:
        return False

    if condition.value_type == "date":
        left = _left_date(left_raw)
        if left is None:
            return False
        if not isinstance(condition.value, datetime):
            return False
        right = start_of_day(condition.value)
        if condition.operator == "between":
            if not isinstance(condition.value2, datetime):
                return False
            return right <= left <= start_of_day(condition.value2)
        return _compare(left, condition.operator, right)

    if condition.value_type == "number":
        left_number = to_number(left_raw)
        if left_number is None:
            return False
        right_number = to_number(condition.value)
        if right_number is None:
            return False
        if condition.operator == "between":
            if isinstance(condition.value2, bool) or not isinstance(condition.value2, (int, float)):
                return False
            return right_number <= left_number <= condition.value2
        return _compare(left_number, condition.operator, right_number)

    if condition.operator == "between":
        return False
    return _compare(to_text(left_raw), condition.operator, to_text(condition.value))
