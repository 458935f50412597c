"""
Chart Query Engine - turns a declarative chart spec into a normalized row set.

Flow per query:
1. Validate the spec and compile WHERE clauses (fail fast, before any record is read)
2. Take one snapshot of the note index
3. Filter by path, tag and WHERE conditions
4. Dispatch to the handler for the chart type (gantt, table, metric, or x/y aggregation)
"""

from collections.abc import Mapping
from datetime import date, datetime
from functools import partial
from pathlib import Path
from typing import Any

import structlog

from note_charts.analysis.aggregation import aggregate_records
from note_charts.analysis.categories import should_explode
from note_charts.analysis.gantt import build_gantt_rows
from note_charts.analysis.metric import compute_metric
from note_charts.core.coercion import is_date_field_name
from note_charts.core.config_loader import EngineConfigDefaults, load_engine_config
from note_charts.core.filters import compile_where, filter_records
from note_charts.core.query_plan import ChartSpec, QueryResult, ResultRow
from note_charts.logging_config import configure_logging
from note_charts.storage.note_index import NoteIndex, NoteRecord

logger = structlog.get_logger(__name__)


class ChartQueryEngine:
    """
    Answers chart queries against a note index.

    The engine holds no per-query state; each run() works on its own snapshot.
    """

    def __init__(
        self,
        index: NoteIndex,
        default_paths: list[str] | None = None,
        config: Mapping[str, Any] | None = None,
    ):
        """
        Args:
            index: Accessor returning the current note records
            default_paths: Folder prefixes used when a query names none
                (overrides config["default_paths"])
            config: Engine settings as returned by load_engine_config()
        """
        settings = EngineConfigDefaults().to_dict()
        if config:
            settings.update({key: value for key, value in config.items() if key in settings})
        if default_paths is not None:
            settings["default_paths"] = list(default_paths)

        self.index = index
        self.config = settings
        self._is_date_field = partial(
            is_date_field_name,
            names=tuple(name.lower() for name in settings["date_field_names"]),
            suffixes=tuple(suffix.lower() for suffix in settings["date_field_suffixes"]),
        )

    @classmethod
    def from_config(cls, index: NoteIndex, config_path: Path | None = None) -> "ChartQueryEngine":
        """
        Build an engine from the YAML/env configuration and set up logging at its log_level.

        Raises:
            ValueError: If the configuration is invalid
        """
        config = load_engine_config(config_path)
        configure_logging(config["log_level"])
        logger.info("chart_engine_configured", config_path=str(config_path) if config_path else None)
        return cls(index, config=config)

    @property
    def default_paths(self) -> list[str]:
        return self.config["default_paths"]

    def run(self, spec: ChartSpec | Mapping[str, Any], now: datetime | date | None = None) -> QueryResult:
        """
        Execute a chart query.

        Args:
            spec: ChartSpec or a JSON/YAML-shaped mapping
            now: Reference time for relative dates in WHERE clauses (defaults to now)

        Returns:
            QueryResult with rows and the x/y field names

        Raises:
            ChartSpecError: Malformed spec or missing encoding
            WhereParseError: A WHERE clause matches neither grammar
            TransformError: Invalid cumulative/rolling request
        """
        if not isinstance(spec, ChartSpec):
            spec = ChartSpec.from_dict(dict(spec))
        spec.validate()

        paths = spec.source.paths or self.default_paths
        tags = spec.source.tags
        conditions = compile_where(spec.source.where, now=now, is_date_field=self._is_date_field)

        logger.info(
            "chart_query_start",
            chart_type=spec.type,
            paths=paths,
            tags=tags,
            where_count=len(conditions),
        )

        snapshot = self.index.get_all()
        records = filter_records(snapshot, paths, tags, conditions)

        if spec.type == "gantt":
            result = self._run_gantt(records, spec)
        elif spec.type == "table":
            result = self._run_table(records, spec)
        elif spec.type == "metric":
            result = self._run_metric(records, spec)
        else:
            rows = aggregate_records(
                records,
                spec,
                explode=should_explode(spec, self.config["explode_chart_types"]),
                missing_label=self.config["missing_label"],
                transform_types=self.config["transform_chart_types"],
            )
            result = QueryResult(rows=rows, x_field=spec.encoding.x, y_field=spec.encoding.y)

        logger.info(
            "chart_query_complete",
            chart_type=spec.type,
            indexed=len(snapshot),
            matched=len(records),
            rows=len(result.rows),
        )
        return result

    def _run_gantt(self, records: list[NoteRecord], spec: ChartSpec) -> QueryResult:
        rows = build_gantt_rows(records, spec.encoding, self.config["default_block_minutes"])
        encoding = spec.encoding
        return QueryResult(rows=rows, x_field=encoding.label or encoding.x, y_field=encoding.end)

    def _run_table(self, records: list[NoteRecord], spec: ChartSpec) -> QueryResult:
        """One row per note, carrying a copy of its properties."""
        rows = [
            ResultRow(x=record.path, y=0.0, notes=[record.path], props=dict(record.properties))
            for record in records
        ]
        return QueryResult(rows=rows, x_field=spec.encoding.x, y_field=spec.encoding.y)

    def _run_metric(self, records: list[NoteRecord], spec: ChartSpec) -> QueryResult:
        field = spec.encoding.y or spec.encoding.x
        row = compute_metric(records, field, spec.aggregate.metric)
        return QueryResult(rows=[row], x_field=field, y_field=field)


def run_chart_query(
    index: NoteIndex,
    spec: ChartSpec | Mapping[str, Any],
    default_paths: list[str] | None = None,
    now: datetime | date | None = None,
) -> QueryResult:
    """One-shot convenience wrapper around ChartQueryEngine.run()."""
    return ChartQueryEngine(index, default_paths=default_paths).run(spec, now=now)
