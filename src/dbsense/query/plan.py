"""
Plan normalizers: engine-native EXPLAIN payloads -> ExecutionPlan.

Each engine reports plans differently:
- PostgreSQL ``EXPLAIN (FORMAT JSON)``: a nested ``Plan``/``Plans`` tree
- MySQL ``EXPLAIN FORMAT=JSON``: ``query_block`` with nested_loop/table entries
- SQLite ``EXPLAIN QUERY PLAN``: flat rows linked by parent id
- MongoDB ``explain`` (executionStats): a stage tree via inputStage(s)

All of them end up as a single rooted tree of PlanOperation nodes so the
Query Analyzer never looks at engine-specific payloads.

Usage:
    from dbsense.query.plan import normalize_plan

    plan = normalize_plan(DatabaseType.POSTGRESQL, explain_json)
    for op in plan.operations():
        print(op.type, op.cost)
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from typing import Any

from dbsense.models import DatabaseType, ExecutionPlan, PlanOperation

logger = logging.getLogger(__name__)


class PlanNormalizer(ABC):
    """Translate one engine's raw plan payload into an ExecutionPlan."""

    engine: DatabaseType

    @abstractmethod
    def can_handle(self, raw_plan: Any) -> bool:
        """Return True if the payload looks like this engine's format."""

    @abstractmethod
    def build_root(self, raw_plan: Any) -> PlanOperation:
        """Build the root operation of the normalized tree."""

    def normalize(self, raw_plan: Any) -> ExecutionPlan:
        root = self.build_root(raw_plan)
        logger.debug(
            "Normalized %s plan: %d operations, cost %.2f",
            self.engine.value,
            sum(1 for _ in root.iter_depth_first()),
            root.cost,
        )
        return ExecutionPlan(engine=self.engine, root=root, raw=raw_plan)


def _number(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def _synthetic_root(label: str, children: list[PlanOperation]) -> PlanOperation:
    if len(children) == 1:
        return children[0]
    return PlanOperation(
        type=label,
        cost=sum(child.cost for child in children),
        rows=max((child.rows for child in children), default=0.0),
        description=f"{len(children)} plan steps",
        children=children,
    )


# ── PostgreSQL ───────────────────────────────────────────────────────────


class PostgresPlanNormalizer(PlanNormalizer):
    """``EXPLAIN (FORMAT JSON)``: cost is the node's cumulative Total Cost."""

    engine = DatabaseType.POSTGRESQL

    def can_handle(self, raw_plan: Any) -> bool:
        if isinstance(raw_plan, list) and raw_plan:
            return isinstance(raw_plan[0], Mapping) and "Plan" in raw_plan[0]
        return isinstance(raw_plan, Mapping) and "Plan" in raw_plan

    def build_root(self, raw_plan: Any) -> PlanOperation:
        top = raw_plan[0] if isinstance(raw_plan, list) else raw_plan
        return self._translate_node(top.get("Plan", top))

    def _translate_node(self, node: Mapping[str, Any]) -> PlanOperation:
        node_type = node.get("Node Type", "Unknown")
        return PlanOperation(
            type=node_type,
            cost=_number(node.get("Total Cost")),
            rows=_number(node.get("Plan Rows")),
            description=self._describe(node),
            children=[self._translate_node(child) for child in node.get("Plans", [])],
        )

    @staticmethod
    def _describe(node: Mapping[str, Any]) -> str:
        parts = [node.get("Node Type", "Unknown")]
        if node.get("Join Type"):
            parts.insert(0, node["Join Type"])
        if node.get("Relation Name"):
            parts.append(f"on {node['Relation Name']}")
        if node.get("Index Name"):
            parts.append(f"using {node['Index Name']}")
        for key in ("Index Cond", "Hash Cond", "Filter"):
            if node.get(key):
                parts.append(f"{key.lower()}: {node[key]}")
        return " ".join(parts)


# ── MySQL ────────────────────────────────────────────────────────────────

_MYSQL_ACCESS_LABELS: dict[str, str] = {
    "ALL": "Full Table Scan",
    "index": "Full Index Scan",
    "range": "Index Range Scan",
    "ref": "Index Lookup",
    "eq_ref": "Unique Index Lookup",
    "ref_or_null": "Index Lookup Or Null",
    "const": "Const Lookup",
    "system": "System Const",
    "fulltext": "Fulltext Index",
    "index_merge": "Index Merge",
}


class MySQLPlanNormalizer(PlanNormalizer):
    """``EXPLAIN FORMAT=JSON``: query_block -> ordering/grouping -> nested_loop -> table."""

    engine = DatabaseType.MYSQL

    def can_handle(self, raw_plan: Any) -> bool:
        return isinstance(raw_plan, Mapping) and "query_block" in raw_plan

    def build_root(self, raw_plan: Any) -> PlanOperation:
        block = raw_plan.get("query_block", raw_plan)
        cost = _number((block.get("cost_info") or {}).get("query_cost"))
        child = self._translate_block(block)
        children = [child] if child is not None else []
        return PlanOperation(
            type="Query Block",
            cost=cost or sum(c.cost for c in children),
            rows=children[0].rows if children else 0.0,
            description=f"select #{block.get('select_id', 1)}",
            children=children,
        )

    def _translate_block(self, block: Mapping[str, Any]) -> PlanOperation | None:
        for key, label in (("ordering_operation", "Sort"), ("grouping_operation", "Group")):
            inner = block.get(key)
            if inner:
                child = self._translate_block(inner)
                flags = [f for f in ("using_filesort", "using_temporary_table") if inner.get(f)]
                return PlanOperation(
                    type=label,
                    cost=child.cost if child else 0.0,
                    rows=child.rows if child else 0.0,
                    description=", ".join(flags),
                    children=[child] if child else [],
                )

        nested = block.get("nested_loop")
        if isinstance(nested, list) and nested:
            tables = [self._translate_table(item.get("table", {})) for item in nested]
            if len(tables) == 1:
                return tables[0]
            return PlanOperation(
                type="Nested Loop",
                cost=sum(t.cost for t in tables),
                rows=max(t.rows for t in tables),
                description=f"join of {len(tables)} tables",
                children=tables,
            )

        if block.get("table"):
            return self._translate_table(block["table"])
        return None

    def _translate_table(self, table: Mapping[str, Any]) -> PlanOperation:
        access_type = table.get("access_type", "ALL")
        cost_info = table.get("cost_info") or {}
        cost = _number(cost_info.get("prefix_cost")) or (
            _number(cost_info.get("read_cost")) + _number(cost_info.get("eval_cost"))
        )
        description = f"on {table.get('table_name', '?')}"
        if table.get("key"):
            description += f" using {table['key']}"
        if table.get("attached_condition"):
            description += f" filter: {table['attached_condition']}"
        return PlanOperation(
            type=_MYSQL_ACCESS_LABELS.get(access_type, access_type),
            cost=cost,
            rows=_number(table.get("rows_examined_per_scan", table.get("rows"))),
            description=description,
        )


# ── SQLite ───────────────────────────────────────────────────────────────


class SQLitePlanNormalizer(PlanNormalizer):
    """
    ``EXPLAIN QUERY PLAN`` rows: ``(id, parent, notused, detail)``.

    SQLite reports no cost or row estimates, so both stay 0; the operation
    type is the leading verb of ``detail`` (SCAN, SEARCH, USE TEMP B-TREE...).
    """

    engine = DatabaseType.SQLITE

    def can_handle(self, raw_plan: Any) -> bool:
        return (
            isinstance(raw_plan, Sequence)
            and not isinstance(raw_plan, (str, bytes))
            and all(isinstance(row, Mapping) and "detail" in row for row in raw_plan)
        )

    def build_root(self, raw_plan: Any) -> PlanOperation:
        children_of: dict[int, list[Mapping[str, Any]]] = {}
        for row in raw_plan:
            children_of.setdefault(int(row.get("parent", 0)), []).append(row)

        def build(row: Mapping[str, Any]) -> PlanOperation:
            detail = str(row.get("detail", ""))
            return PlanOperation(
                type=self._operation_type(detail),
                description=detail,
                children=[build(child) for child in children_of.get(int(row["id"]), [])],
            )

        roots = [build(row) for row in children_of.get(0, [])]
        return _synthetic_root("QUERY PLAN", roots)

    @staticmethod
    def _operation_type(detail: str) -> str:
        upper = detail.upper()
        for prefix in ("USE TEMP B-TREE", "CORRELATED SCALAR SUBQUERY", "SCALAR SUBQUERY",
                       "COMPOUND QUERY", "MULTI-INDEX OR", "SCAN", "SEARCH"):
            if upper.startswith(prefix):
                return prefix
        return detail.split(" ", 1)[0].upper() if detail else "UNKNOWN"


# ── MongoDB ──────────────────────────────────────────────────────────────


class MongoPlanNormalizer(PlanNormalizer):
    """
    ``explain`` output. Prefers ``executionStats.executionStages`` (actual
    counts and time estimates) and falls back to ``queryPlanner.winningPlan``.
    """

    engine = DatabaseType.MONGODB

    def can_handle(self, raw_plan: Any) -> bool:
        return isinstance(raw_plan, Mapping) and (
            "queryPlanner" in raw_plan or "executionStats" in raw_plan
        )

    def build_root(self, raw_plan: Any) -> PlanOperation:
        stats = raw_plan.get("executionStats") or {}
        stages = stats.get("executionStages")
        if stages is None:
            planner = raw_plan.get("queryPlanner") or {}
            stages = planner.get("winningPlan") or {}
            # SBE plans nest the classic tree under queryPlan
            stages = stages.get("queryPlan", stages)
        root = self._translate_stage(stages)
        if stats:
            root = root.model_copy(
                update={
                    "cost": _number(stats.get("executionTimeMillis")) or root.cost,
                    "rows": _number(stats.get("nReturned")) or root.rows,
                }
            )
        return root

    def _translate_stage(self, stage: Mapping[str, Any]) -> PlanOperation:
        inputs = list(stage.get("inputStages") or [])
        if stage.get("inputStage"):
            inputs.insert(0, stage["inputStage"])
        description = stage.get("indexName") or stage.get("filter") or ""
        return PlanOperation(
            type=stage.get("stage", "UNKNOWN"),
            cost=_number(stage.get("executionTimeMillisEstimate")),
            rows=_number(stage.get("nReturned")),
            description=str(description),
            children=[self._translate_stage(child) for child in inputs],
        )


# ── Registry ─────────────────────────────────────────────────────────────

_NORMALIZERS: dict[DatabaseType, PlanNormalizer] = {
    normalizer.engine: normalizer
    for normalizer in (
        PostgresPlanNormalizer(),
        MySQLPlanNormalizer(),
        SQLitePlanNormalizer(),
        MongoPlanNormalizer(),
    )
}


def get_normalizer(engine: DatabaseType) -> PlanNormalizer | None:
    return _NORMALIZERS.get(engine)


def normalize_plan(engine: DatabaseType, raw_plan: Any) -> ExecutionPlan:
    """
    Normalize a raw plan payload for the given engine.

    Raises:
        ValueError: If the engine has no normalizer or the payload is not
            in the expected format.
    """
    normalizer = get_normalizer(engine)
    if normalizer is None:
        raise ValueError(f"No plan normalizer for {engine.value}")
    if not normalizer.can_handle(raw_plan):
        raise ValueError(f"Unrecognized {engine.value} plan format")
    return normalizer.normalize(raw_plan)
