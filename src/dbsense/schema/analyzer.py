"""
Structural analysis over a canonical Schema.

- Foreign-key integrity: keys without an explicit ON DELETE action
  (medium) and keys that take part in a reference cycle (high).
- ER projection: Mermaid ``erDiagram`` text.

Usage:
    analysis = analyze_foreign_keys(schema)
    for issue in analysis.issues:
        print(issue.severity, issue.description)

    print(render_mermaid(schema))
"""

from __future__ import annotations

import logging
import re
from enum import Enum

from pydantic import Field

from dbsense.models import CamelModel, Severity
from dbsense.schema.models import ForeignKey, Schema

logger = logging.getLogger(__name__)


class ForeignKeyIssueKind(str, Enum):
    MISSING_ON_DELETE = "missing_on_delete"
    CIRCULAR_REFERENCE = "circular_reference"


class ForeignKeyIssue(CamelModel):
    kind: ForeignKeyIssueKind
    severity: Severity
    foreign_key: str
    table: str
    description: str
    recommendation: str
    cycle: list[str] = Field(default_factory=list)


class ForeignKeyAnalysis(CamelModel):
    foreign_keys: list[ForeignKey]
    issues: list[ForeignKeyIssue]


def reference_graph(schema: Schema) -> dict[str, list[str]]:
    """Directed graph with an edge A -> B when a foreign key on A references B."""
    graph: dict[str, list[str]] = {table.name: [] for table in schema.tables}
    for fk in schema.foreign_keys:
        targets = graph.setdefault(fk.table, [])
        if fk.referenced_table not in targets:
            targets.append(fk.referenced_table)
    return graph


def find_cycle_through(graph: dict[str, list[str]], fk: ForeignKey) -> list[str] | None:
    """
    Return a table path closing a cycle through ``fk``, or None.

    Walks depth-first from the referenced table looking for the owning
    table. Each walk keeps its own path, so two keys that merely reach a
    shared table (a diamond) are not mistaken for a cycle.
    """
    origin = fk.table
    if fk.referenced_table == origin:
        return [origin, origin]

    stack: list[tuple[str, list[str]]] = [(fk.referenced_table, [origin, fk.referenced_table])]
    explored: set[str] = set()
    while stack:
        node, path = stack.pop()
        if node in explored:
            continue
        explored.add(node)
        for neighbour in graph.get(node, []):
            if neighbour == origin:
                return [*path, origin]
            if neighbour not in path:
                stack.append((neighbour, [*path, neighbour]))
    return None


def analyze_foreign_keys(schema: Schema) -> ForeignKeyAnalysis:
    """Report every foreign key plus its integrity issues."""
    graph = reference_graph(schema)
    issues: list[ForeignKeyIssue] = []

    for fk in schema.foreign_keys:
        if not fk.has_on_delete_action:
            issues.append(
                ForeignKeyIssue(
                    kind=ForeignKeyIssueKind.MISSING_ON_DELETE,
                    severity=Severity.MEDIUM,
                    foreign_key=fk.name,
                    table=fk.table,
                    description=f"Foreign key {fk.name} has no ON DELETE action",
                    recommendation="Consider adding ON DELETE CASCADE or ON DELETE SET NULL",
                )
            )

        cycle = find_cycle_through(graph, fk)
        if cycle is not None:
            issues.append(
                ForeignKeyIssue(
                    kind=ForeignKeyIssueKind.CIRCULAR_REFERENCE,
                    severity=Severity.HIGH,
                    foreign_key=fk.name,
                    table=fk.table,
                    description=(
                        f"Circular reference detected involving {fk.table}: "
                        + " -> ".join(cycle)
                    ),
                    recommendation="Review the relationship design to avoid circular dependencies",
                    cycle=cycle,
                )
            )

    logger.debug("Foreign key analysis: %d keys, %d issues", len(schema.foreign_keys), len(issues))
    return ForeignKeyAnalysis(foreign_keys=schema.foreign_keys, issues=issues)


# ── ER projection ────────────────────────────────────────────────────────

_NON_WORD = re.compile(r"[^A-Za-z0-9_]+")


def _mermaid_token(value: str) -> str:
    return _NON_WORD.sub("_", value).strip("_") or "unknown"


def render_mermaid(schema: Schema) -> str:
    """
    Render tables and foreign keys as a Mermaid ``erDiagram``.

    Columns carry PK/FK markers and a ``"not null"`` comment; each
    foreign key becomes a many-to-one relationship edge.
    """
    lines = ["erDiagram"]
    for table in schema.tables:
        fk_columns = {column for fk in table.foreign_keys for column in fk.columns}
        pk_columns = set(table.primary_key or [])
        lines.append(f"    {_mermaid_token(table.name)} {{")
        for column in table.columns:
            keys = []
            if column.is_primary_key or column.name in pk_columns:
                keys.append("PK")
            if column.name in fk_columns:
                keys.append("FK")
            line = f"        {_mermaid_token(column.type)} {_mermaid_token(column.name)}"
            if keys:
                line += " " + ", ".join(keys)
            if not column.nullable:
                line += ' "not null"'
            lines.append(line)
        lines.append("    }")

    for fk in schema.foreign_keys:
        lines.append(
            f"    {_mermaid_token(fk.table)} }}o--|| {_mermaid_token(fk.referenced_table)}"
            f' : "{fk.name}"'
        )
    return "\n".join(lines)
