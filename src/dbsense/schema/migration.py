"""
Schema diffing and reversible migration synthesis.

``compute_diff`` compares two Schema snapshots by table and column name.
``MigrationSynthesizer`` renders that diff into forward and reverse
statements for one target engine.

Each change is one step holding its forward and reverse statements.
Forward statements are the steps in discovery order; reverse statements
are the steps in the opposite order, so running ``down`` after ``up``
undoes the changes last-first. Changes that cannot be undone (dropped
data, dropped columns) get comment placeholders in ``down`` and are
listed in ``Migration.irreversible``.

Usage:
    synthesizer = MigrationSynthesizer(DatabaseType.POSTGRESQL)
    migration = synthesizer.generate(source_schema, target_schema, "add_orders")
    print(migration.up_script)
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from graphlib import CycleError, TopologicalSorter

from pydantic import Field

from dbsense.dialects import quote_identifier
from dbsense.models import CamelModel, DatabaseType
from dbsense.schema.models import Column, Constraint, ForeignKey, Schema, Table

logger = logging.getLogger(__name__)

_LENGTH_TYPES = {
    "varchar", "character varying", "char", "character", "nvarchar", "nchar",
    "varbinary", "binary",
}


class ColumnChange(CamelModel):
    table: str
    column: Column


class SchemaDiff(CamelModel):
    """Structural delta turning ``source`` into ``target``."""

    added_tables: list[Table] = Field(default_factory=list)
    dropped_tables: list[Table] = Field(default_factory=list)
    added_columns: list[ColumnChange] = Field(default_factory=list)
    dropped_columns: list[ColumnChange] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (
            self.added_tables or self.dropped_tables or self.added_columns or self.dropped_columns
        )


def compute_diff(source: Schema, target: Schema) -> SchemaDiff:
    """Diff tables, then columns of tables present in both, by name."""
    source_tables = {table.name: table for table in source.tables}
    target_tables = {table.name: table for table in target.tables}

    added_columns: list[ColumnChange] = []
    dropped_columns: list[ColumnChange] = []
    for target_table in target.tables:
        source_table = source_tables.get(target_table.name)
        if source_table is None:
            continue
        source_names = set(source_table.column_names)
        target_names = set(target_table.column_names)
        added_columns.extend(
            ColumnChange(table=target_table.name, column=column)
            for column in target_table.columns
            if column.name not in source_names
        )
        dropped_columns.extend(
            ColumnChange(table=source_table.name, column=column)
            for column in source_table.columns
            if column.name not in target_names
        )

    return SchemaDiff(
        added_tables=[t for t in target.tables if t.name not in source_tables],
        dropped_tables=[t for t in source.tables if t.name not in target_tables],
        added_columns=added_columns,
        dropped_columns=dropped_columns,
    )


class MigrationStep(CamelModel):
    description: str
    forward: list[str]
    reverse: list[str]
    reversible: bool = True


class Migration(CamelModel):
    """A forward/reverse statement pair. Immutable once generated."""

    id: str
    name: str
    description: str
    engine: DatabaseType
    created_at: datetime
    up: list[str]
    down: list[str]
    irreversible: list[str] = Field(default_factory=list)
    steps: list[MigrationStep] = Field(default_factory=list)

    @property
    def up_script(self) -> str:
        return _script(self.up)

    @property
    def down_script(self) -> str:
        return _script(self.down)

    @property
    def executable_down(self) -> list[str]:
        """Reverse statements without the comment-only placeholders."""
        return [statement for statement in self.down if not is_comment(statement)]


def is_comment(statement: str) -> bool:
    return statement.lstrip().startswith("--")


def _script(statements: list[str]) -> str:
    return "\n".join(s if is_comment(s) else f"{s};" for s in statements)


def _slug(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "_", name.lower()).strip("_") or "migration"


def dependency_order(tables: list[Table]) -> list[Table]:
    """
    Order tables so that referenced tables come before referencing ones.

    Only references between the given tables count. Cyclic references
    keep the input order.
    """
    by_name = {table.name: table for table in tables}
    sorter: TopologicalSorter[str] = TopologicalSorter()
    for table in tables:
        sorter.add(
            table.name,
            *(fk.referenced_table for fk in table.foreign_keys
              if fk.referenced_table in by_name and fk.referenced_table != table.name),
        )
    try:
        order = list(sorter.static_order())
    except CycleError:
        logger.debug("Reference cycle among %s, keeping discovery order", list(by_name))
        return list(tables)
    return [by_name[name] for name in order]


class MigrationSynthesizer:
    """Render schema diffs as migrations for one engine's SQL dialect."""

    def __init__(self, engine: DatabaseType = DatabaseType.POSTGRESQL) -> None:
        if not engine.is_relational:
            raise ValueError(f"Migrations are not supported for {engine.value}")
        self.engine = engine

    def quote(self, name: str) -> str:
        return quote_identifier(name, self.engine)

    def _columns(self, names: list[str]) -> str:
        return ", ".join(self.quote(name) for name in names)

    # ── Definitions ──────────────────────────────────────────────────────

    def column_definition(self, column: Column) -> str:
        column_type = column.type
        if (
            column.max_length
            and "(" not in column_type
            and column_type.lower() in _LENGTH_TYPES
        ):
            column_type = f"{column_type}({column.max_length})"
        parts = [self.quote(column.name)]
        if column_type:
            parts.append(column_type)
        if not column.nullable:
            parts.append("NOT NULL")
        if column.default_value is not None:
            parts.append(f"DEFAULT {column.default_value}")
        return " ".join(parts)

    def foreign_key_clause(self, fk: ForeignKey) -> str:
        clause = (
            f"CONSTRAINT {self.quote(fk.name)} FOREIGN KEY ({self._columns(fk.columns)}) "
            f"REFERENCES {self.quote(fk.referenced_table)} ({self._columns(fk.referenced_columns)})"
        )
        if fk.on_delete and fk.on_delete.upper() != "NO ACTION":
            clause += f" ON DELETE {fk.on_delete.upper()}"
        if fk.on_update and fk.on_update.upper() != "NO ACTION":
            clause += f" ON UPDATE {fk.on_update.upper()}"
        return clause

    def constraint_clause(self, constraint: Constraint) -> str | None:
        if constraint.type == "unique" and constraint.columns:
            return f"CONSTRAINT {self.quote(constraint.name)} UNIQUE ({self._columns(constraint.columns)})"
        if constraint.type == "check" and constraint.definition:
            definition = constraint.definition.strip()
            if not definition.upper().startswith("CHECK"):
                if not definition.startswith("("):
                    definition = f"({definition})"
                definition = f"CHECK {definition}"
            return f"CONSTRAINT {self.quote(constraint.name)} {definition}"
        return None

    def create_table_statements(self, table: Table) -> list[str]:
        """CREATE TABLE with keys and constraints inline, followed by its indexes."""
        lines = [self.column_definition(column) for column in table.columns]
        if table.primary_key:
            lines.append(f"PRIMARY KEY ({self._columns(table.primary_key)})")
        lines.extend(
            clause for clause in map(self.constraint_clause, table.constraints) if clause
        )
        lines.extend(self.foreign_key_clause(fk) for fk in table.foreign_keys)

        body = ",\n  ".join(lines)
        statements = [f"CREATE TABLE {self.quote(table.name)} (\n  {body}\n)"]

        implicit = {c.name for c in table.constraints} | {fk.name for fk in table.foreign_keys}
        for index in table.indexes:
            if index.columns == table.primary_key or index.name in implicit:
                continue
            unique = "UNIQUE " if index.unique else ""
            statements.append(
                f"CREATE {unique}INDEX {self.quote(index.name)} "
                f"ON {self.quote(table.name)} ({self._columns(index.columns)})"
            )
        return statements

    def drop_table_statement(self, name: str) -> str:
        return f"DROP TABLE IF EXISTS {self.quote(name)}"

    def add_column_statement(self, table: str, column: Column) -> str:
        keyword = "ADD" if self.engine == DatabaseType.MSSQL else "ADD COLUMN"
        return f"ALTER TABLE {self.quote(table)} {keyword} {self.column_definition(column)}"

    def drop_column_statement(self, table: str, column: str) -> str:
        return f"ALTER TABLE {self.quote(table)} DROP COLUMN {self.quote(column)}"

    # ── Steps ────────────────────────────────────────────────────────────

    def steps(self, diff: SchemaDiff) -> list[MigrationStep]:
        steps: list[MigrationStep] = []
        for table in dependency_order(diff.added_tables):
            steps.append(
                MigrationStep(
                    description=f"Create table {table.name}",
                    forward=self.create_table_statements(table),
                    reverse=[self.drop_table_statement(table.name)],
                )
            )
        for table in reversed(dependency_order(diff.dropped_tables)):
            steps.append(
                MigrationStep(
                    description=f"Drop table {table.name}",
                    forward=[self.drop_table_statement(table.name)],
                    reverse=[
                        *self.create_table_statements(table),
                        f"-- Data in table {table.name} was dropped and cannot be restored",
                    ],
                    reversible=False,
                )
            )
        for change in diff.added_columns:
            steps.append(
                MigrationStep(
                    description=f"Add column {change.table}.{change.column.name}",
                    forward=[self.add_column_statement(change.table, change.column)],
                    reverse=[self.drop_column_statement(change.table, change.column.name)],
                )
            )
        for change in diff.dropped_columns:
            steps.append(
                MigrationStep(
                    description=f"Drop column {change.table}.{change.column.name}",
                    forward=[self.drop_column_statement(change.table, change.column.name)],
                    reverse=[
                        f"-- Cannot restore dropped column {change.table}.{change.column.name} "
                        f"({self.column_definition(change.column)}); its data is lost"
                    ],
                    reversible=False,
                )
            )
        return steps

    def generate(
        self,
        source: Schema,
        target: Schema,
        name: str,
        description: str | None = None,
    ) -> Migration:
        """Build the migration that turns ``source`` into ``target``."""
        diff = compute_diff(source, target)
        steps = self.steps(diff)
        created_at = datetime.now(timezone.utc)
        migration = Migration(
            id=f"{created_at:%Y%m%d%H%M%S}_{_slug(name)}",
            name=name,
            description=description or f"Migration from {source.database} to {target.database}",
            engine=self.engine,
            created_at=created_at,
            up=[statement for step in steps for statement in step.forward],
            down=[statement for step in reversed(steps) for statement in step.reverse],
            irreversible=[step.description for step in steps if not step.reversible],
            steps=steps,
        )
        logger.info(
            "Generated migration %s: %d forward, %d reverse statements",
            migration.id, len(migration.up), len(migration.down),
        )
        return migration
