"""Canonical schema model, foreign-key analysis, ER projection and migrations."""

from dbsense.schema.models import (
    Column,
    Constraint,
    ForeignKey,
    Index,
    Schema,
    Table,
    TableKind,
)

__all__ = [
    "Column",
    "Constraint",
    "ForeignKey",
    "Index",
    "Schema",
    "Table",
    "TableKind",
]
