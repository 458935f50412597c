"""
Value coercion and date resolution for note properties.

Property values arrive untyped (whatever the frontmatter parser produced), so every
"is this a date / number / string" heuristic lives here and the rest of the pipeline
works over the closed set of kinds in ValueKind.

Key functions:
- looks_like_iso_date / to_date: date detection and local wall-clock parsing
- resolve_relative_date: "today", "-7d", "+2w", "-1m" tokens
- to_number / to_text: Number()/String()-style scalar coercion
- parse_value_token: typed value for a WHERE-clause token
"""

import math
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Literal

from dateutil import parser as date_parser

ValueType = Literal["string", "number", "date"]

DEFAULT_DATE_FIELD_NAMES = (
    "date",
    "scheduled",
    "due",
    "start",
    "end",
    "created",
    "modified",
    "datecreated",
    "datemodified",
)
DEFAULT_DATE_FIELD_SUFFIXES = ("date", "at", "on")

ISO_DATE_PREFIX = re.compile(r"^\d{4}-\d{2}-\d{2}")
# Trailing Z / offsets are not captured: components are read as local wall-clock time
ISO_DATETIME = re.compile(r"^(\d{4})-(\d{2})-(\d{2})(?:[ T](\d{2}):(\d{2})(?::(\d{2}))?)?")
RELATIVE_TOKEN = re.compile(r"^([+-])(\d+)([dwm]?)$")
DECIMAL_NUMBER = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")
HEX_NUMBER = re.compile(r"^0[xX][0-9a-fA-F]+$")
# Bare numbers are never dates ("10", "2024", "1.5")
FALLBACK_REJECT = re.compile(r"^[+-]?\d+(\.\d+)?$")
PARTIAL_DATE_DEFAULTS = (datetime(2000, 1, 1), datetime(2001, 2, 2))


class ValueKind(str, Enum):
    """Kinds a raw property value is classified into."""

    STRING = "string"
    NUMBER = "number"
    DATE = "date"
    LIST = "list"
    MISSING = "missing"


@dataclass(frozen=True)
class TypedValue:
    """A raw property value tagged with its kind and coerced payload."""

    kind: ValueKind
    value: Any  # str | float | datetime | list[Any] | None
    raw: Any = None


def looks_like_iso_date(value: Any) -> bool:
    """True if value is a string starting with YYYY-MM-DD (ranges are not checked)."""
    return isinstance(value, str) and ISO_DATE_PREFIX.match(value) is not None


def _naive(dt: datetime) -> datetime:
    # Wall-clock time is kept; the offset is dropped
    return dt.replace(tzinfo=None) if dt.tzinfo is not None else dt


def to_date(value: Any) -> datetime | None:
    """
    Convert a value to a naive local datetime.

    Supports:
    - datetime objects (tz-aware ones keep their wall-clock time)
    - date objects (midnight of that day)
    - YYYY-MM-DD, YYYY-MM-DD HH:MM[:SS], YYYY-MM-DDTHH:MM[:SS] (anything after is ignored)
    - other date strings via dateutil

    Returns:
        datetime or None if the value cannot be interpreted as a date
    """
    if isinstance(value, datetime):
        return _naive(value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if not isinstance(value, str):
        return None

    trimmed = value.strip()
    if not trimmed:
        return None

    match = ISO_DATETIME.match(trimmed)
    if match:
        year, month, day, hour, minute, second = (int(part) if part else 0 for part in match.groups())
        try:
            return datetime(year, month, day, hour, minute, second)
        except ValueError:
            return None

    if FALLBACK_REJECT.match(trimmed):
        return None
    try:
        first = date_parser.parse(trimmed, default=PARTIAL_DATE_DEFAULTS[0])
        second = date_parser.parse(trimmed, default=PARTIAL_DATE_DEFAULTS[1])
    except (ValueError, OverflowError):
        return None
    # Tokens missing a year, month or day pick them up from the default; reject those
    if first.date() != second.date():
        return None
    return _naive(first)


def start_of_day(value: datetime) -> datetime:
    """Truncate a datetime to local midnight."""
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def is_date_field_name(
    field: str,
    names: tuple[str, ...] | list[str] = DEFAULT_DATE_FIELD_NAMES,
    suffixes: tuple[str, ...] | list[str] = DEFAULT_DATE_FIELD_SUFFIXES,
) -> bool:
    """
    Check if a field name looks like it holds dates.

    Naming heuristic only: exact matches against `names` or a trailing `suffixes` entry.
    """
    lower = field.lower()
    if lower in names:
        return True
    return any(lower.endswith(suffix) for suffix in suffixes)


def _add_months(base: datetime, months: int) -> datetime:
    # Day overflow rolls into the following month (Jan 31 + 1 month -> Mar 2/3)
    month_index = base.month - 1 + months
    year = base.year + month_index // 12
    month = month_index % 12 + 1
    first = base.replace(year=year, month=month, day=1)
    return first + timedelta(days=base.day - 1)


def resolve_relative_date(token: str, reference: datetime | date | None = None) -> datetime | None:
    """
    Resolve a relative date token to a local midnight datetime.

    Supported tokens (case-insensitive, trimmed):
    - today / yesterday
    - -N, -Nd, -Nw, -Nm (past)
    - +N, +Nd, +Nw, +Nm (future)

    Args:
        token: Relative date token
        reference: Reference date (defaults to now)

    Returns:
        datetime at start of day, or None if token is not a relative date
    """
    base = to_date(reference) if reference is not None else datetime.now()
    base_day = start_of_day(base)
    trimmed = token.strip().lower()

    if trimmed == "today":
        return base_day
    if trimmed == "yesterday":
        return base_day - timedelta(days=1)

    match = RELATIVE_TOKEN.match(trimmed)
    if not match:
        return None

    sign, amount, unit = match.groups()
    step = int(amount) if sign == "+" else -int(amount)

    if unit == "m":
        return start_of_day(_add_months(base_day, step))
    if unit == "w":
        return base_day + timedelta(days=7 * step)
    return base_day + timedelta(days=step)


def to_number(value: Any) -> float | None:
    """
    Coerce a scalar to a number the way the chart notes were authored against.

    Empty strings are 0, booleans are 1/0, hex and +/-Infinity strings are accepted.
    Returns None for anything non-numeric (including NaN).
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        number = float(value)
        return None if math.isnan(number) else number
    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return 0.0
    if DECIMAL_NUMBER.match(text):
        return float(text)
    if HEX_NUMBER.match(text):
        return float(int(text, 16))
    if text in ("Infinity", "+Infinity"):
        return math.inf
    if text == "-Infinity":
        return -math.inf
    return None


def to_text(value: Any) -> str:
    """String form of a property value used for grouping keys and string comparisons."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple)):
        return ",".join("" if item is None else to_text(item) for item in value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def pick_scalar(value: Any) -> Any:
    """First element of a list-valued property, the value itself otherwise."""
    if isinstance(value, (list, tuple)):
        return value[0] if value else None
    return value


def _is_array_like(value: Any) -> bool:
    return any(callable(getattr(value, attr, None)) for attr in ("tolist", "to_list", "to_array"))


def classify_value(value: Any) -> TypedValue:
    """Tag a raw property value with its kind."""
    if value is None:
        return TypedValue(ValueKind.MISSING, None, value)
    if isinstance(value, (list, tuple, set, frozenset)) or (not isinstance(value, str) and _is_array_like(value)):
        return TypedValue(ValueKind.LIST, value, value)
    if isinstance(value, (datetime, date)):
        return TypedValue(ValueKind.DATE, to_date(value), value)
    if isinstance(value, (bool, int, float)):
        number = to_number(value)
        if number is None:
            return TypedValue(ValueKind.MISSING, None, value)
        return TypedValue(ValueKind.NUMBER, number, value)

    text = to_text(value).strip()
    if not text:
        return TypedValue(ValueKind.MISSING, None, value)
    if looks_like_iso_date(text):
        parsed = to_date(text)
        if parsed is not None:
            return TypedValue(ValueKind.DATE, parsed, value)
    number = to_number(text)
    if number is not None and math.isfinite(number):
        return TypedValue(ValueKind.NUMBER, number, value)
    return TypedValue(ValueKind.STRING, text, value)


def parse_value_token(
    token: str,
    force_date: bool,
    now: datetime | date | None = None,
) -> tuple[Any, ValueType]:
    """
    Parse a WHERE-clause value token into a typed value.

    Order:
    1. Quoted -> string literal
    2. Date field: "0"/"today" -> today, relative token -> date
    3. Other fields: tokens starting with +/- (or today/yesterday) still try relative dates
    4. ISO-like -> date
    5. Numeric -> number
    6. Anything else -> verbatim string

    Args:
        token: Raw value token
        force_date: Field name looks like a date field
        now: Reference date for relative tokens (defaults to now)

    Returns:
        Tuple of (value, value_type)
    """
    trimmed = token.strip()

    if len(trimmed) >= 2 and trimmed[0] == trimmed[-1] and trimmed[0] in ("'", '"'):
        return trimmed[1:-1], "string"

    lower = trimmed.lower()
    looks_relative = lower in ("today", "yesterday") or lower.startswith(("-", "+"))

    if force_date:
        if trimmed == "0" or lower == "today":
            base = to_date(now) if now is not None else datetime.now()
            return start_of_day(base), "date"
        relative = resolve_relative_date(trimmed, now)
        if relative is not None:
            return relative, "date"
    elif looks_relative:
        relative = resolve_relative_date(trimmed, now)
        if relative is not None:
            return relative, "date"

    if looks_like_iso_date(trimmed):
        parsed = to_date(trimmed)
        if parsed is not None:
            return parsed, "date"

    number = to_number(trimmed)
    if number is not None:
        return number, "number"

    return trimmed, "string"
