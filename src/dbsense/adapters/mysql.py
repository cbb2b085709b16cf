"""
MySQL / MariaDB adapter (``mysql+aiomysql``).

Catalog comes from information_schema filtered by TABLE_SCHEMA; in MySQL a
schema is a database, so the optional get_schema argument selects which
database to introspect (defaulting to the connection's current one).
"""

from __future__ import annotations

import json
import logging
from typing import Any

from dbsense.adapters.base import Parameters
from dbsense.adapters.catalog import finalize_columns, group_foreign_keys, group_indexes, to_int
from dbsense.adapters.sql import SQLAlchemyAdapter
from dbsense.exceptions import QueryError, SchemaNotFoundError
from dbsense.models import Capabilities, DatabaseType, ExecutionPlan
from dbsense.query.plan import normalize_plan
from dbsense.schema.models import Column, Constraint, Schema, Table, TableKind

logger = logging.getLogger(__name__)

_TABLES_SQL = """
SELECT TABLE_NAME AS name, TABLE_TYPE AS table_type,
       DATA_LENGTH + INDEX_LENGTH AS size_bytes
FROM information_schema.TABLES
WHERE TABLE_SCHEMA = :db
ORDER BY TABLE_NAME
"""

_COLUMNS_SQL = """
SELECT COLUMN_NAME AS column_name, COLUMN_TYPE AS column_type,
       IS_NULLABLE AS is_nullable, COLUMN_DEFAULT AS column_default,
       CHARACTER_MAXIMUM_LENGTH AS max_length, NUMERIC_PRECISION AS numeric_precision,
       NUMERIC_SCALE AS numeric_scale, COLUMN_COMMENT AS comment
FROM information_schema.COLUMNS
WHERE TABLE_SCHEMA = :db AND TABLE_NAME = :table
ORDER BY ORDINAL_POSITION
"""

_INDEXES_SQL = """
SELECT INDEX_NAME AS index_name, COLUMN_NAME AS column_name,
       NON_UNIQUE = 0 AS is_unique, INDEX_NAME = 'PRIMARY' AS is_primary,
       INDEX_TYPE AS method
FROM information_schema.STATISTICS
WHERE TABLE_SCHEMA = :db AND TABLE_NAME = :table
ORDER BY INDEX_NAME, SEQ_IN_INDEX
"""

_FOREIGN_KEYS_SQL = """
SELECT k.CONSTRAINT_NAME AS constraint_name, k.COLUMN_NAME AS column_name,
       k.REFERENCED_TABLE_SCHEMA AS referenced_schema,
       k.REFERENCED_TABLE_NAME AS referenced_table,
       k.REFERENCED_COLUMN_NAME AS referenced_column,
       r.DELETE_RULE AS on_delete, r.UPDATE_RULE AS on_update
FROM information_schema.KEY_COLUMN_USAGE k
JOIN information_schema.REFERENTIAL_CONSTRAINTS r
  ON r.CONSTRAINT_SCHEMA = k.CONSTRAINT_SCHEMA
 AND r.CONSTRAINT_NAME = k.CONSTRAINT_NAME
 AND r.TABLE_NAME = k.TABLE_NAME
WHERE k.TABLE_SCHEMA = :db AND k.TABLE_NAME = :table
  AND k.REFERENCED_TABLE_NAME IS NOT NULL
ORDER BY k.CONSTRAINT_NAME, k.ORDINAL_POSITION
"""

_UNIQUE_CONSTRAINTS_SQL = """
SELECT tc.CONSTRAINT_NAME AS name, k.COLUMN_NAME AS column_name
FROM information_schema.TABLE_CONSTRAINTS tc
JOIN information_schema.KEY_COLUMN_USAGE k
  ON k.CONSTRAINT_SCHEMA = tc.CONSTRAINT_SCHEMA
 AND k.CONSTRAINT_NAME = tc.CONSTRAINT_NAME
 AND k.TABLE_NAME = tc.TABLE_NAME
WHERE tc.TABLE_SCHEMA = :db AND tc.TABLE_NAME = :table AND tc.CONSTRAINT_TYPE = 'UNIQUE'
ORDER BY tc.CONSTRAINT_NAME, k.ORDINAL_POSITION
"""

# CHECK_CONSTRAINTS only exists from MySQL 8.0.16 / MariaDB 10.2
_CHECK_CONSTRAINTS_SQL = """
SELECT tc.CONSTRAINT_NAME AS name, cc.CHECK_CLAUSE AS definition
FROM information_schema.TABLE_CONSTRAINTS tc
JOIN information_schema.CHECK_CONSTRAINTS cc
  ON cc.CONSTRAINT_SCHEMA = tc.CONSTRAINT_SCHEMA AND cc.CONSTRAINT_NAME = tc.CONSTRAINT_NAME
WHERE tc.TABLE_SCHEMA = :db AND tc.TABLE_NAME = :table AND tc.CONSTRAINT_TYPE = 'CHECK'
ORDER BY tc.CONSTRAINT_NAME
"""


class MySQLAdapter(SQLAlchemyAdapter):
    engine = DatabaseType.MYSQL
    driver = "mysql+aiomysql"
    capabilities = Capabilities(
        supports_transactions=True,
        supports_schemas=True,
        supports_indexes=True,
        supports_foreign_keys=True,
        supports_views=True,
        supports_functions=True,
        supports_procedures=True,
        supports_explain=True,
        supports_backup=True,
    )

    def engine_options(self) -> dict[str, Any]:
        connect_args: dict[str, Any] = {"connect_timeout": max(1, int(self.timeout_seconds))}
        connect_args.update(self.config.options)
        return {**super().engine_options(), "connect_args": connect_args, "pool_recycle": 3600}

    async def _current_database(self) -> str | None:
        rows = await self._fetch("SELECT DATABASE() AS db")
        return rows[0]["db"] if rows else None

    # ── Schema ───────────────────────────────────────────────────────────

    async def get_schema(self, database: str | None = None) -> Schema:
        db = database or self.config.database or await self._current_database()
        if not db:
            raise SchemaNotFoundError("<no database selected>")
        exists = await self._fetch(
            "SELECT SCHEMA_NAME AS name FROM information_schema.SCHEMATA WHERE SCHEMA_NAME = :db",
            {"db": db},
        )
        if not exists:
            raise SchemaNotFoundError(db)

        tables: list[Table] = []
        views: list[Table] = []
        for row in await self._fetch(_TABLES_SQL, {"db": db}):
            if row["table_type"] == "VIEW":
                views.append(await self._introspect_view(row["name"], db))
            else:
                tables.append(await self._introspect_table(row["name"], db, row["size_bytes"]))

        logger.debug("MySQL schema %s: %d tables, %d views", db, len(tables), len(views))
        return Schema(database=db, tables=tables, views=views)

    async def _columns(self, name: str, db: str) -> list[Column]:
        return [
            Column(
                name=row["column_name"],
                type=row["column_type"],
                nullable=row["is_nullable"] == "YES",
                default_value=None if row["column_default"] is None else str(row["column_default"]),
                max_length=to_int(row["max_length"]),
                precision=to_int(row["numeric_precision"]),
                scale=to_int(row["numeric_scale"]),
                comment=row["comment"] or None,
            )
            for row in await self._fetch(_COLUMNS_SQL, {"db": db, "table": name})
        ]

    async def _introspect_view(self, name: str, db: str) -> Table:
        return Table(name=name, namespace=db, kind=TableKind.VIEW, columns=await self._columns(name, db))

    async def _introspect_table(self, name: str, db: str, size_bytes: Any) -> Table:
        params = {"db": db, "table": name}
        columns = await self._columns(name, db)
        indexes, primary_key = group_indexes(await self._fetch(_INDEXES_SQL, params))

        constraints: list[Constraint] = []
        unique: dict[str, list[str]] = {}
        for row in await self._fetch(_UNIQUE_CONSTRAINTS_SQL, params):
            unique.setdefault(row["name"], []).append(row["column_name"])
        constraints.extend(
            Constraint(name=cname, type="unique", columns=cols) for cname, cols in unique.items()
        )
        try:
            checks = await self._fetch(_CHECK_CONSTRAINTS_SQL, params)
        except QueryError as exc:
            logger.debug("Check constraints unavailable on this server: %s", exc)
            checks = []
        constraints.extend(
            Constraint(name=row["name"], type="check", definition=row["definition"]) for row in checks
        )

        return Table(
            name=name,
            namespace=db,
            columns=finalize_columns(columns, primary_key, indexes, constraints),
            primary_key=primary_key,
            indexes=indexes,
            foreign_keys=group_foreign_keys(name, await self._fetch(_FOREIGN_KEYS_SQL, params)),
            constraints=constraints,
            row_count=await self._count_rows(name, db),
            size_bytes=to_int(size_bytes),
        )

    # ── Explain ──────────────────────────────────────────────────────────

    async def _explain(self, statement: str, parameters: Parameters) -> ExecutionPlan:
        result = await self.execute_query(f"EXPLAIN FORMAT=JSON {statement}", parameters)
        payload = next(iter(result.rows[0].values())) if result.rows else "{}"
        if isinstance(payload, (str, bytes)):
            payload = json.loads(payload)
        return normalize_plan(self.engine, payload)
