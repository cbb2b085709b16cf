"""
Canonical, engine-agnostic schema representation.

Every adapter translates its native catalog into these value objects.
They are rebuilt on every introspection call; nothing here is cached or
shared between calls.

Column order within a table, and the order of tables and views within a
schema, is the order the source catalog reported.
"""

from __future__ import annotations

from enum import Enum

from pydantic import Field, model_validator

from dbsense.models import CamelModel


class TableKind(str, Enum):
    TABLE = "table"
    VIEW = "view"
    MATERIALIZED_VIEW = "materialized_view"


class Column(CamelModel):
    name: str
    type: str
    nullable: bool = True
    default_value: str | None = None
    max_length: int | None = None
    precision: int | None = None
    scale: int | None = None
    is_primary_key: bool = False
    is_unique: bool = False
    is_indexed: bool = False
    comment: str | None = None


class Index(CamelModel):
    name: str
    columns: list[str]
    unique: bool = False
    method: str | None = None


class ForeignKey(CamelModel):
    """
    A foreign key constraint.

    ``columns`` and ``referenced_columns`` are aligned position by
    position and always have the same length.
    """

    name: str
    table: str
    columns: list[str]
    referenced_table: str
    referenced_columns: list[str]
    referenced_namespace: str | None = None
    on_delete: str | None = None
    on_update: str | None = None

    @model_validator(mode="after")
    def _check_arity(self) -> "ForeignKey":
        if not self.columns:
            raise ValueError(f"Foreign key {self.name} has no columns")
        if len(self.columns) != len(self.referenced_columns):
            raise ValueError(
                f"Foreign key {self.name} has {len(self.columns)} columns "
                f"but {len(self.referenced_columns)} referenced columns"
            )
        return self

    @property
    def has_on_delete_action(self) -> bool:
        """True when an explicit ON DELETE action other than NO ACTION is set."""
        return bool(self.on_delete) and self.on_delete.upper() != "NO ACTION"


class Constraint(CamelModel):
    """A non-foreign-key constraint (check, unique, exclusion)."""

    name: str
    type: str
    columns: list[str] = Field(default_factory=list)
    definition: str | None = None


class Table(CamelModel):
    name: str
    namespace: str | None = None
    kind: TableKind = TableKind.TABLE
    columns: list[Column] = Field(default_factory=list)
    primary_key: list[str] | None = None
    indexes: list[Index] = Field(default_factory=list)
    foreign_keys: list[ForeignKey] = Field(default_factory=list)
    constraints: list[Constraint] = Field(default_factory=list)
    row_count: int | None = None
    size_bytes: int | None = None

    @property
    def column_names(self) -> list[str]:
        return [column.name for column in self.columns]

    def column(self, name: str) -> Column | None:
        for column in self.columns:
            if column.name == name:
                return column
        return None


class Schema(CamelModel):
    database: str
    tables: list[Table] = Field(default_factory=list)
    views: list[Table] = Field(default_factory=list)

    def table(self, name: str, namespace: str | None = None) -> Table | None:
        """Find a table or view by name, optionally restricted to a namespace."""
        for table in [*self.tables, *self.views]:
            if table.name == name and (namespace is None or table.namespace == namespace):
                return table
        return None

    @property
    def foreign_keys(self) -> list[ForeignKey]:
        return [fk for table in self.tables for fk in table.foreign_keys]
