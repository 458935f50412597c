"""
Chart query contract.

Defines the declarative chart specification consumed by ChartQueryEngine and the
row set it produces. A chart code block (YAML) or a JSON object is turned into a
ChartSpec once; the engine never works with ad-hoc dicts.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Literal, get_args

import yaml  # type: ignore

ChartType = Literal[
    "bar",
    "line",
    "area",
    "stacked-area",
    "stacked-bar",
    "pie",
    "scatter",
    "table",
    "gantt",
    "metric",
]
AggregateMode = Literal["sum", "avg", "min", "max", "count"]
MetricOperation = Literal["countAll", "countNonEmpty", "sum", "avg", "min", "max", "oldest", "newest", "dateRange"]
SortDirection = Literal["asc", "desc"]
XBucket = Literal["none", "auto", "day", "week", "month", "quarter", "year"]

CHART_TYPES = set(get_args(ChartType))
AGGREGATE_MODES = set(get_args(AggregateMode))
METRIC_OPERATIONS = set(get_args(MetricOperation))
X_BUCKETS = set(get_args(XBucket))

# Chart types that do not plot an x/y encoding
NON_XY_TYPES = {"table", "gantt", "metric"}


class ChartQueryError(ValueError):
    """Base class for errors that abort a whole chart query."""

    pass


class ChartSpecError(ChartQueryError):
    """Raised when a chart specification is malformed."""

    pass


class EncodingError(ChartSpecError):
    """Raised when a required encoding channel is missing."""

    pass


class WhereParseError(ChartQueryError):
    """Raised when a WHERE clause matches neither supported grammar."""

    pass


class TransformError(ChartQueryError):
    """Raised when cumulative/rolling transforms are misused."""

    pass


def _as_str_list(value: Any, name: str) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value if item is not None]
    raise ChartSpecError(f"{name} must be a string or a list of strings, got {type(value).__name__}")


def _as_mapping(value: Any, name: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ChartSpecError(f"{name} must be a mapping, got {type(value).__name__}")
    return value


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass
class SourceSpec:
    """Which notes feed the chart."""

    paths: list[str] = field(default_factory=list)  # Folder prefixes ("." = everything)
    tags: list[str] = field(default_factory=list)  # Any-of tag match
    where: list[str] = field(default_factory=list)  # Conjunctive WHERE clauses

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "SourceSpec":
        data = _as_mapping(data, "source")
        return cls(
            paths=_as_str_list(data.get("paths"), "source.paths"),
            tags=_as_str_list(data.get("tags"), "source.tags"),
            where=_as_str_list(data.get("where"), "source.where"),
        )


@dataclass
class EncodingSpec:
    """Mapping from chart channels to property names."""

    x: str | None = None
    y: str | None = None
    series: str | None = None
    # Gantt channels
    start: str | None = None
    end: str | None = None
    due: str | None = None
    scheduled: str | None = None
    duration: str | None = None  # Minutes
    group: str | None = None
    label: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "EncodingSpec":
        data = _as_mapping(data, "encoding")
        return cls(
            x=_optional_str(data.get("x")),
            y=_optional_str(data.get("y")),
            series=_optional_str(data.get("series")),
            start=_optional_str(data.get("start")),
            end=_optional_str(data.get("end")),
            due=_optional_str(data.get("due")),
            scheduled=_optional_str(data.get("scheduled")),
            duration=_optional_str(data.get("duration")),
            group=_optional_str(data.get("group")),
            label=_optional_str(data.get("label")),
        )


@dataclass
class AggregateSpec:
    """Aggregation mode and per-series transforms."""

    y: AggregateMode | None = None
    cumulative: bool = False
    rolling: int | str | None = None  # Window size, e.g. 7 or "7d"
    metric: MetricOperation | None = None  # Metric widget operation

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "AggregateSpec":
        data = _as_mapping(data, "aggregate")
        mode = _optional_str(data.get("y"))
        if mode is not None and mode not in AGGREGATE_MODES:
            raise ChartSpecError(f"Invalid aggregate.y '{mode}'. Must be one of {sorted(AGGREGATE_MODES)}")
        metric = _optional_str(data.get("metric"))
        if metric is not None and metric not in METRIC_OPERATIONS:
            raise ChartSpecError(f"Invalid aggregate.metric '{metric}'. Must be one of {sorted(METRIC_OPERATIONS)}")
        rolling = data.get("rolling")
        if isinstance(rolling, bool):
            raise ChartSpecError("aggregate.rolling must be a window size, not a boolean")
        return cls(
            y=mode,  # type: ignore[arg-type]
            cumulative=bool(data.get("cumulative", False)),
            rolling=rolling,
            metric=metric,  # type: ignore[arg-type]
        )


@dataclass
class SortSpec:
    """Ordering of the output rows."""

    x: SortDirection = "asc"

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "SortSpec":
        data = _as_mapping(data, "sort")
        direction = "desc" if str(data.get("x", "asc")).strip().lower() == "desc" else "asc"
        return cls(x=direction)  # type: ignore[arg-type]


@dataclass
class OptionsSpec:
    """Presentation-adjacent options that influence row building."""

    title: str = ""
    multi_value: bool | None = None  # None = decided by chart type
    x_bucket: XBucket = "none"

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "OptionsSpec":
        data = _as_mapping(data, "options")
        bucket = str(data.get("x_bucket", data.get("xBucket", "none"))).strip().lower()
        if bucket not in X_BUCKETS:
            raise ChartSpecError(f"Invalid options.x_bucket '{bucket}'. Must be one of {sorted(X_BUCKETS)}")
        multi = data.get("multi_value", data.get("multiValue"))
        return cls(
            title=str(data.get("title") or ""),
            multi_value=None if multi is None else bool(multi),
            x_bucket=bucket,  # type: ignore[arg-type]
        )


@dataclass
class ChartSpec:
    """Declarative chart query."""

    type: ChartType
    source: SourceSpec = field(default_factory=SourceSpec)
    encoding: EncodingSpec = field(default_factory=EncodingSpec)
    aggregate: AggregateSpec = field(default_factory=AggregateSpec)
    sort: SortSpec = field(default_factory=SortSpec)
    options: OptionsSpec = field(default_factory=OptionsSpec)

    @classmethod
    def from_dict(cls, data: Any) -> "ChartSpec":
        """
        Build a ChartSpec from a JSON/YAML-shaped mapping.

        Raises:
            ChartSpecError: If the mapping is not a valid chart specification
        """
        if not isinstance(data, dict):
            raise ChartSpecError("Chart specification must be a mapping")
        chart_type = _optional_str(data.get("type"))
        if chart_type is None:
            raise ChartSpecError("'type' is required")
        if chart_type not in CHART_TYPES:
            raise ChartSpecError(f"Invalid chart type '{chart_type}'. Must be one of {sorted(CHART_TYPES)}")

        return cls(
            type=chart_type,  # type: ignore[arg-type]
            source=SourceSpec.from_dict(data.get("source")),
            encoding=EncodingSpec.from_dict(data.get("encoding")),
            aggregate=AggregateSpec.from_dict(data.get("aggregate")),
            sort=SortSpec.from_dict(data.get("sort")),
            options=OptionsSpec.from_dict(data.get("options")),
        )

    @classmethod
    def from_yaml(cls, text: str) -> "ChartSpec":
        """Build a ChartSpec from the YAML body of a chart code block."""
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ChartSpecError(f"Invalid chart YAML: {e}") from e
        if not data:
            raise ChartSpecError("Chart block is empty")
        return cls.from_dict(data)

    def validate(self) -> None:
        """
        Check that the encoding has the channels this chart type needs.

        Raises:
            EncodingError: encoding.x missing, or encoding.y missing without count aggregation
        """
        if self.type in NON_XY_TYPES:
            return
        if not self.encoding.x:
            raise EncodingError("encoding.x is required")
        if not self.encoding.y and self.aggregate.y != "count":
            raise EncodingError("encoding.y is required (except when aggregate.y = 'count')")


def _serialize(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {key: _serialize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_serialize(item) for item in value]
    return value


@dataclass
class ResultRow:
    """One point/bar/slice/bar-segment of the chart."""

    x: str | float | datetime
    y: float
    notes: list[str]  # Contributing note paths (drilldown set, not deduplicated)
    series: str | None = None
    start: datetime | None = None
    end: datetime | None = None
    due: datetime | None = None
    props: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary, omitting unset optional fields."""
        result: dict[str, Any] = {"x": _serialize(self.x), "y": self.y, "notes": list(self.notes)}
        for name in ("series", "start", "end", "due", "props"):
            value = getattr(self, name)
            if value is not None:
                result[name] = _serialize(value)
        return result


@dataclass
class QueryResult:
    """Row set handed to the renderer."""

    rows: list[ResultRow] = field(default_factory=list)
    x_field: str | None = None
    y_field: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "rows": [row.to_dict() for row in self.rows],
            "xField": self.x_field,
            "yField": self.y_field,
        }
