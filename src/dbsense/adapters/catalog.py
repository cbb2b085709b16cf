"""
Helpers shared by the relational catalog normalizers.

Catalogs report multi-column keys and indexes as one row per column. These
helpers fold those fragments back into single objects, grouped by
constraint/index name and ordered by position, and derive the per-column
flags from the finished key and index lists.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from dbsense.schema.models import Column, Constraint, ForeignKey, Index


def group_foreign_keys(table: str, rows: Iterable[Mapping[str, Any]]) -> list[ForeignKey]:
    """
    Fold per-column FK rows into ForeignKey objects.

    Each row needs ``constraint_name``, ``column_name``, ``referenced_table``
    and ``referenced_column``; optional ``referenced_schema``, ``on_delete``,
    ``on_update``. Rows must already be ordered by key position.
    """
    grouped: dict[str, dict[str, Any]] = {}
    for row in rows:
        name = row["constraint_name"]
        entry = grouped.setdefault(
            name,
            {
                "name": name,
                "table": table,
                "columns": [],
                "referenced_table": row["referenced_table"],
                "referenced_namespace": row.get("referenced_schema"),
                "referenced_columns": [],
                "on_delete": row.get("on_delete"),
                "on_update": row.get("on_update"),
            },
        )
        entry["columns"].append(row["column_name"])
        entry["referenced_columns"].append(row["referenced_column"])
    return [ForeignKey(**entry) for entry in grouped.values()]


def group_indexes(rows: Iterable[Mapping[str, Any]]) -> tuple[list[Index], list[str] | None]:
    """
    Fold per-column index rows into Index objects.

    Each row needs ``index_name``, ``column_name``, ``is_unique``; optional
    ``is_primary`` and ``method``. Returns the indexes and the primary-key
    column list (None when no primary index was reported).
    """
    grouped: dict[str, dict[str, Any]] = {}
    primary_key: list[str] | None = None
    for row in rows:
        name = row["index_name"]
        entry = grouped.setdefault(
            name,
            {
                "name": name,
                "columns": [],
                "unique": bool(row["is_unique"]),
                "method": row.get("method"),
            },
        )
        entry["columns"].append(row["column_name"])
        if row.get("is_primary"):
            primary_key = entry["columns"]
    return [Index(**entry) for entry in grouped.values()], primary_key


def finalize_columns(
    columns: list[Column],
    primary_key: list[str] | None,
    indexes: list[Index],
    constraints: Iterable[Constraint] = (),
) -> list[Column]:
    """Set primary-key/unique/indexed flags from the table's keys, indexes and constraints."""
    pk = set(primary_key or [])
    indexed = {name for index in indexes for name in index.columns}
    unique = {
        index.columns[0] for index in indexes if index.unique and len(index.columns) == 1
    }
    unique |= {
        constraint.columns[0]
        for constraint in constraints
        if constraint.type == "unique" and len(constraint.columns) == 1
    }
    if len(pk) == 1:
        unique |= pk
    return [
        column.model_copy(
            update={
                "is_primary_key": column.is_primary_key or column.name in pk,
                "is_unique": column.is_unique or column.name in unique,
                "is_indexed": column.is_indexed or column.name in indexed or column.name in pk,
            }
        )
        for column in columns
    ]


def to_int(value: Any) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
