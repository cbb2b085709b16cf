"""
Data profiling: per-column statistics, quality issues and duplicate groups.

Everything here is plain aggregate SQL built with the adapter's own
identifier quoting and row limiting, so it runs on every relational
engine. Document and key-value connections are rejected up front.

Usage:
    analyzer = DataAnalyzer(adapter)
    report = await analyzer.analyze_data_quality("users")
    for issue in report.issues:
        print(issue.severity, issue.description)
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import Field

from dbsense.adapters.base import DatabaseAdapter
from dbsense.exceptions import QueryError, UnsupportedOperationError
from dbsense.models import CamelModel, Severity
from dbsense.schema.models import Table

logger = logging.getLogger(__name__)

TOP_VALUES_LIMIT = 10
DUPLICATE_GROUP_LIMIT = 100
DUPLICATE_EXAMPLES = 5

MISSING_THRESHOLD_PCT = 50.0
MISSING_HIGH_PCT = 90.0
NULL_RECOMMENDATION_PCT = 20.0
LOW_DISTINCT_RATIO = 0.1
LOW_DISTINCT_MIN_ROWS = 100

SEVERITY_WEIGHTS: dict[Severity, int] = {
    Severity.LOW: 5,
    Severity.MEDIUM: 15,
    Severity.HIGH: 30,
    Severity.CRITICAL: 50,
}


class DataIssueKind(str, Enum):
    MISSING = "missing"
    DUPLICATE = "duplicate"
    INCONSISTENT = "inconsistent"


class ValueFrequency(CamelModel):
    value: Any
    count: int


class ColumnStats(CamelModel):
    column: str
    null_count: int = 0
    null_percentage: float = 0.0
    distinct_count: int = 0
    distinct_percentage: float = 0.0
    min_value: Any = None
    max_value: Any = None
    top_values: list[ValueFrequency] = Field(default_factory=list)


class TableStats(CamelModel):
    table: str
    namespace: str | None = None
    row_count: int = 0
    size_bytes: int | None = None
    column_count: int = 0
    index_count: int = 0
    column_stats: list[ColumnStats] = Field(default_factory=list)
    analyzed_at: datetime


class DataQualityIssue(CamelModel):
    kind: DataIssueKind
    severity: Severity
    description: str
    affected_rows: int = 0
    affected_columns: list[str] = Field(default_factory=list)
    examples: list[dict[str, Any]] = Field(default_factory=list)


class DataQualityReport(CamelModel):
    table: str
    row_count: int = 0
    overall_score: float = 100.0
    issues: list[DataQualityIssue] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)


class DuplicateGroup(CamelModel):
    values: dict[str, Any]
    count: int


class DuplicateReport(CamelModel):
    """
    Groups of rows sharing the same values in ``columns``.

    ``duplicate_count`` is the number of rows that belong to some group
    (the sum of group counts), not the number of groups.
    """

    table: str
    columns: list[str]
    groups: list[DuplicateGroup] = Field(default_factory=list)
    duplicate_count: int = 0
    total_rows: int = 0


def quality_score(issues: list[DataQualityIssue], total_rows: int) -> float:
    """100 minus each issue's severity weight scaled by the fraction of rows it affects."""
    score = 100.0
    for issue in issues:
        impact = issue.affected_rows / max(total_rows, 1)
        score -= SEVERITY_WEIGHTS[issue.severity] * impact
    return round(max(0.0, min(100.0, score)), 2)


def duplicate_severity(percentage: float) -> Severity:
    if percentage > 10:
        return Severity.HIGH
    if percentage > 5:
        return Severity.MEDIUM
    return Severity.LOW


def _int(value: Any) -> int:
    return int(value) if value is not None else 0


def _pct(part: int, whole: int) -> float:
    return part / whole * 100 if whole else 0.0


class DataAnalyzer:
    """Profile tables on one relational adapter."""

    def __init__(self, adapter: DatabaseAdapter) -> None:
        if not adapter.is_relational:
            raise UnsupportedOperationError("data analysis", adapter.engine.value)
        self.adapter = adapter

    def _quote(self, name: str) -> str:
        return self.adapter.quote_identifier(name)

    async def _scalar_row(self, sql: str) -> dict[str, Any]:
        result = await self.adapter.execute_query(sql)
        return result.rows[0] if result.rows else {}

    async def row_count(self, table: str, namespace: str | None = None) -> int:
        row = await self._scalar_row(
            f"SELECT COUNT(*) AS row_count FROM {self.adapter.qualify(table, namespace)}"
        )
        return _int(row.get("row_count"))

    # ── Statistics ───────────────────────────────────────────────────────

    async def column_stats(
        self, table: str, column: str, total_rows: int, namespace: str | None = None
    ) -> ColumnStats:
        source = self.adapter.qualify(table, namespace)
        col = self._quote(column)
        counts = await self._scalar_row(
            f"SELECT COUNT({col}) AS non_null, COUNT(DISTINCT {col}) AS distinct_count FROM {source}"
        )
        null_count = max(total_rows - _int(counts.get("non_null")), 0)
        distinct_count = _int(counts.get("distinct_count"))

        min_value = max_value = None
        try:
            bounds = await self._scalar_row(
                f"SELECT MIN({col}) AS min_value, MAX({col}) AS max_value FROM {source}"
            )
            min_value, max_value = bounds.get("min_value"), bounds.get("max_value")
        except QueryError as exc:
            logger.debug("No min/max for %s.%s: %s", table, column, exc.message)

        top_values: list[ValueFrequency] = []
        try:
            top_sql = self.adapter.limit_query(
                f"SELECT {col} AS value, COUNT(*) AS frequency FROM {source} "
                f"WHERE {col} IS NOT NULL GROUP BY {col} ORDER BY COUNT(*) DESC",
                TOP_VALUES_LIMIT,
            )
            result = await self.adapter.execute_query(top_sql)
            top_values = [
                ValueFrequency(value=row["value"], count=_int(row["frequency"])) for row in result.rows
            ]
        except QueryError as exc:
            logger.debug("No top values for %s.%s: %s", table, column, exc.message)

        return ColumnStats(
            column=column,
            null_count=null_count,
            null_percentage=_pct(null_count, total_rows),
            distinct_count=distinct_count,
            distinct_percentage=_pct(distinct_count, total_rows),
            min_value=min_value,
            max_value=max_value,
            top_values=top_values,
        )

    async def get_table_stats(self, table: str, namespace: str | None = None) -> TableStats:
        """
        Row count, size and per-column statistics.

        Raises:
            SchemaNotFoundError: The table does not exist.
        """
        meta = await self.adapter.get_table(table, namespace)
        total = await self.row_count(table, namespace)
        stats = [await self.column_stats(table, name, total, namespace) for name in meta.column_names]
        return TableStats(
            table=table,
            namespace=meta.namespace,
            row_count=total,
            size_bytes=meta.size_bytes,
            column_count=len(meta.columns),
            index_count=len(meta.indexes),
            column_stats=stats,
            analyzed_at=datetime.now(timezone.utc),
        )

    # ── Quality ──────────────────────────────────────────────────────────

    async def analyze_data_quality(self, table: str, namespace: str | None = None) -> DataQualityReport:
        stats = await self.get_table_stats(table, namespace)
        rows = stats.row_count
        issues: list[DataQualityIssue] = []
        recommendations: list[str] = []

        for col in stats.column_stats:
            pct = col.null_percentage
            if pct > MISSING_THRESHOLD_PCT:
                issues.append(
                    DataQualityIssue(
                        kind=DataIssueKind.MISSING,
                        severity=Severity.HIGH if pct > MISSING_HIGH_PCT else Severity.MEDIUM,
                        description=f"Column {col.column} has {pct:.1f}% null values",
                        affected_rows=round(rows * pct / 100),
                        affected_columns=[col.column],
                    )
                )
            elif pct > NULL_RECOMMENDATION_PCT:
                recommendations.append(
                    f"Consider investigating why {col.column} has {pct:.1f}% null values"
                )

        duplicates = await self.find_duplicates(table, namespace=namespace)
        if duplicates.duplicate_count > 0:
            pct = _pct(duplicates.duplicate_count, rows)
            issues.append(
                DataQualityIssue(
                    kind=DataIssueKind.DUPLICATE,
                    severity=duplicate_severity(pct),
                    description=f"Found {duplicates.duplicate_count} duplicate rows ({pct:.1f}% of total)",
                    affected_rows=duplicates.duplicate_count,
                    affected_columns=duplicates.columns,
                    examples=[group.values for group in duplicates.groups[:DUPLICATE_EXAMPLES]],
                )
            )

        if rows > LOW_DISTINCT_MIN_ROWS:
            for col in stats.column_stats:
                ratio = col.distinct_count / rows
                if col.distinct_count and ratio < LOW_DISTINCT_RATIO:
                    issues.append(
                        DataQualityIssue(
                            kind=DataIssueKind.INCONSISTENT,
                            severity=Severity.LOW,
                            description=(
                                f"Column {col.column} has low distinct value ratio ({ratio * 100:.1f}%)"
                            ),
                            affected_rows=rows,
                            affected_columns=[col.column],
                        )
                    )

        return DataQualityReport(
            table=table,
            row_count=rows,
            overall_score=quality_score(issues, rows),
            issues=issues,
            recommendations=recommendations,
        )

    # ── Duplicates ───────────────────────────────────────────────────────

    @staticmethod
    def default_duplicate_columns(table: Table) -> list[str]:
        """All non-primary-key columns; every column if the table has only key columns."""
        key = set(table.primary_key or ())
        key.update(column.name for column in table.columns if column.is_primary_key)
        columns = [name for name in table.column_names if name not in key]
        return columns or table.column_names

    async def find_duplicates(
        self,
        table: str,
        columns: list[str] | None = None,
        namespace: str | None = None,
        limit: int = DUPLICATE_GROUP_LIMIT,
    ) -> DuplicateReport:
        meta = await self.adapter.get_table(table, namespace)
        check = list(columns) if columns else self.default_duplicate_columns(meta)
        unknown = [name for name in check if meta.column(name) is None]
        if unknown:
            raise QueryError(f"Unknown column(s) on {table}: {', '.join(unknown)}")

        column_list = ", ".join(self._quote(name) for name in check)
        sql = self.adapter.limit_query(
            f"SELECT {column_list}, COUNT(*) AS group_size "
            f"FROM {self.adapter.qualify(table, namespace)} "
            f"GROUP BY {column_list} HAVING COUNT(*) > 1 ORDER BY COUNT(*) DESC",
            limit,
        )
        result = await self.adapter.execute_query(sql)
        groups = [
            DuplicateGroup(
                values={name: row.get(name) for name in check},
                count=_int(row.get("group_size")),
            )
            for row in result.rows
        ]
        return DuplicateReport(
            table=table,
            columns=check,
            groups=groups,
            duplicate_count=sum(group.count for group in groups),
            total_rows=await self.row_count(table, namespace),
        )

    # ── Sampling ─────────────────────────────────────────────────────────

    async def sample_data(
        self, table: str, limit: int = 10, namespace: str | None = None
    ) -> list[dict[str, Any]]:
        sql = self.adapter.limit_query(f"SELECT * FROM {self.adapter.qualify(table, namespace)}", limit)
        result = await self.adapter.execute_query(sql)
        return result.rows
