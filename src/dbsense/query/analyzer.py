"""
Query Analyzer: execution timing, plan inspection and lexical heuristics.

Consumes only the adapter contract. Static pattern checks come from
``dbsense.query.patterns`` and only run for SQL engines; plan-derived
advice walks the normalized PlanOperation tree, so it works the same for
every engine that supports explain.

Usage:
    analyzer = QueryAnalyzer(adapter)
    analysis = await analyzer.analyze_query("SELECT * FROM users")
    print(analysis.performance_score, analysis.warnings)
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from pydantic import Field, computed_field

from dbsense.adapters.base import DatabaseAdapter, Parameters
from dbsense.exceptions import DBSenseError
from dbsense.models import CamelModel, ExecutionPlan, PlanOperation
from dbsense.query import patterns
from dbsense.query.slow import SlowQuery, SlowQuerySource

logger = logging.getLogger(__name__)

DEFAULT_HIGH_COST_THRESHOLD = 1000.0

# (threshold, penalty), checked in order; the first band exceeded applies
TIME_PENALTIES: tuple[tuple[float, int], ...] = ((5000, 50), (1000, 30), (500, 15), (100, 5))
COST_PENALTIES: tuple[tuple[float, int], ...] = ((10000, 30), (1000, 15), (100, 5))

_FULL_SCAN_TYPES = ("seq scan", "full table scan", "collscan", "table scan", "full index scan")


def _band_penalty(value: float, bands: Iterable[tuple[float, int]]) -> int:
    for threshold, penalty in bands:
        if value > threshold:
            return penalty
    return 0


def compute_performance_score(execution_time_ms: float, plan_cost: float | None = None) -> int:
    """
    Score a query from 100 down, penalized by elapsed time and plan cost bands.

    Non-increasing in both arguments and clamped to [0, 100].
    """
    score = 100 - _band_penalty(execution_time_ms, TIME_PENALTIES)
    if plan_cost is not None:
        score -= _band_penalty(plan_cost, COST_PENALTIES)
    return max(0, min(100, score))


def is_full_scan(operation: PlanOperation) -> bool:
    op_type = operation.type.lower()
    return op_type == "scan" or any(marker in op_type for marker in _FULL_SCAN_TYPES)


class IndexSuggestion(CamelModel):
    """One candidate index for a table, built from predicate columns."""

    table: str
    columns: list[str]
    index_type: str = "btree"
    reason: str = ""

    @computed_field
    @property
    def index_name(self) -> str:
        cols = "_".join(self.columns[:3])
        if len(self.columns) > 3:
            cols += "_etc"
        return f"idx_{self.table}_{cols}"

    @computed_field
    @property
    def sql(self) -> str:
        return f"CREATE INDEX {self.index_name} ON {self.table} ({', '.join(self.columns)})"

    def describe(self) -> str:
        return f"{self.index_type} index on {self.table}({', '.join(self.columns)})"


class QueryAnalysis(CamelModel):
    query: str
    execution_time_ms: float = 0.0
    rows_affected: int = 0
    plan: ExecutionPlan | None = None
    warnings: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    performance_score: int = 100


class OptimizationReport(CamelModel):
    original_query: str
    suggestions: list[str] = Field(default_factory=list)
    index_suggestions: list[IndexSuggestion] = Field(default_factory=list)
    plan: ExecutionPlan | None = None


class QueryAnalyzer:
    """
    Analyze statements against one adapter.

    Args:
        adapter: Connected adapter to run statements on.
        slow_query_source: Optional source for detect_slow_queries.
        high_cost_threshold: Plan operation cost flagged by optimize_query.
    """

    def __init__(
        self,
        adapter: DatabaseAdapter,
        slow_query_source: SlowQuerySource | None = None,
        high_cost_threshold: float = DEFAULT_HIGH_COST_THRESHOLD,
    ) -> None:
        self.adapter = adapter
        self.slow_query_source = slow_query_source
        self.high_cost_threshold = high_cost_threshold

    # ── analyze ──────────────────────────────────────────────────────────

    async def analyze_query(self, query: str, parameters: Parameters = None) -> QueryAnalysis:
        """
        Execute the statement and score it.

        Execution and explain failures are reported as warnings so the
        static findings are still returned.
        """
        warnings = self.validate(query)
        suggestions: list[str] = []
        execution_time_ms = 0.0
        rows_affected = 0

        try:
            result = await self.adapter.execute_query(query, parameters)
            execution_time_ms = result.execution_time_ms
            rows_affected = result.row_count
        except DBSenseError as exc:
            warnings.append(f"Query execution failed: {exc.message}")

        plan = await self._try_explain(query, parameters, warnings)

        if self.adapter.is_relational:
            if patterns.selects_star(query):
                suggestions.append("Avoid SELECT *, specify only the columns you need")
            if patterns.missing_where(query):
                warnings.append("UPDATE/DELETE without WHERE clause will affect all rows")
            if patterns.join_count(query) > patterns.MAX_JOINS:
                suggestions.append(
                    f"Query joins {patterns.join_count(query)} tables; "
                    "consider breaking it up or denormalizing hot paths"
                )
            if patterns.select_count(query) > patterns.MAX_SELECTS:
                suggestions.append("Many nested SELECTs; consider using JOINs instead of subqueries")
            if patterns.missing_limit(query):
                suggestions.append("Consider adding LIMIT to bound the result size")

        score = compute_performance_score(
            execution_time_ms, plan.total_cost if plan is not None else None
        )
        return QueryAnalysis(
            query=query,
            execution_time_ms=execution_time_ms,
            rows_affected=rows_affected,
            plan=plan,
            warnings=warnings,
            suggestions=suggestions,
            performance_score=score,
        )

    def validate(self, query: str) -> list[str]:
        """Warnings about the statement text itself."""
        warnings: list[str] = []
        if not self.adapter.is_relational:
            return warnings
        if patterns.has_comments(query):
            warnings.append("Query contains comments")
        risky = patterns.dangerous_keywords(query)
        if risky:
            warnings.append(f"Query contains potentially dangerous operations: {', '.join(risky)}")
        if len(query) > patterns.MAX_QUERY_LENGTH:
            warnings.append("Query is very long and may be hard to maintain")
        return warnings

    async def _try_explain(
        self, query: str, parameters: Parameters, warnings: list[str]
    ) -> ExecutionPlan | None:
        if not self.adapter.get_capabilities().supports_explain:
            return None
        try:
            return await self.adapter.explain_query(query, parameters)
        except (DBSenseError, ValueError) as exc:
            warnings.append(f"Could not get execution plan: {exc}")
            return None

    # ── explain ──────────────────────────────────────────────────────────

    async def explain_query(self, query: str, parameters: Parameters = None) -> ExecutionPlan | None:
        return await self.adapter.explain_query(query, parameters)

    # ── optimize ─────────────────────────────────────────────────────────

    def plan_suggestions(self, plan: ExecutionPlan) -> list[str]:
        suggestions: list[str] = []
        for op in plan.operations():
            where = f" ({op.description})" if op.description else ""
            if is_full_scan(op):
                suggestions.append(f"Full scan detected{where}; consider adding an index")
            if op.cost > self.high_cost_threshold:
                suggestions.append(f"High-cost operation {op.type} (cost {op.cost:g}){where}")
            if "nested loop" in op.type.lower():
                suggestions.append("Nested loop join detected; make sure the join columns are indexed")
        return suggestions

    @staticmethod
    def pattern_suggestions(query: str) -> list[str]:
        suggestions: list[str] = []
        if patterns.leading_wildcard_like(query):
            suggestions.append("LIKE with a leading wildcard cannot use an index; consider full-text search")
        for func in patterns.function_wrapped_columns(query):
            suggestions.append(
                f"{func.upper()}() wraps a column in WHERE, which prevents index use; "
                "consider an expression index or rewriting the predicate"
            )
        if patterns.or_chain(query):
            suggestions.append("Chain of OR conditions; consider IN or UNION")
        if patterns.correlated_subquery_in_select(query):
            suggestions.append("Subquery in SELECT list runs per row; consider a JOIN")
        return suggestions

    async def optimize_query(self, query: str, parameters: Parameters = None) -> OptimizationReport:
        warnings: list[str] = []
        plan = await self._try_explain(query, parameters, warnings)
        suggestions = list(warnings)
        if plan is not None:
            suggestions.extend(self.plan_suggestions(plan))

        index_suggestions: list[IndexSuggestion] = []
        if self.adapter.is_relational:
            suggestions.extend(self.pattern_suggestions(query))
            index_suggestions = self.suggest_indexes(query)
            suggestions.extend(
                f"Consider adding index: {suggestion.describe()}" for suggestion in index_suggestions
            )

        return OptimizationReport(
            original_query=query,
            suggestions=list(dict.fromkeys(suggestions)),
            index_suggestions=index_suggestions,
            plan=plan,
        )

    # ── indexes ──────────────────────────────────────────────────────────

    @staticmethod
    def suggest_indexes(query: str) -> list[IndexSuggestion]:
        """
        One suggestion per referenced table that has predicate columns.

        Only qualified ``table.column`` predicates are seen; see
        ``dbsense.query.patterns``.
        """
        tables = list(dict.fromkeys(ref.table for ref in patterns.table_references(query)))
        columns = patterns.predicate_columns(query)
        suggestions = []
        for table in tables:
            table_columns = columns.get(table)
            if table_columns:
                suggestions.append(
                    IndexSuggestion(
                        table=table,
                        columns=table_columns,
                        reason=f"Columns used in WHERE/JOIN predicates on {table}",
                    )
                )
        return suggestions

    # ── slow queries ─────────────────────────────────────────────────────

    async def detect_slow_queries(self, threshold_ms: float = 1000.0) -> list[SlowQuery]:
        """Slow queries from the configured source; empty when none is configured or it fails."""
        if self.slow_query_source is None:
            return []
        try:
            return await self.slow_query_source.fetch(threshold_ms)
        except Exception as exc:
            logger.warning("Slow query source failed: %s", exc)
            return []
