"""
Microsoft SQL Server adapter (``mssql+aioodbc``).

Catalog comes from the ``sys.*`` views. SQL Server only exposes plans as
showplan XML through session settings, so explain is not advertised and
explain_query returns None.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from sqlalchemy.engine import URL

from dbsense.adapters.catalog import finalize_columns, group_foreign_keys, group_indexes, to_int
from dbsense.adapters.sql import SQLAlchemyAdapter
from dbsense.models import Capabilities, DatabaseType
from dbsense.schema.models import Column, Constraint, Schema, Table, TableKind

logger = logging.getLogger(__name__)

DEFAULT_ODBC_DRIVER = "ODBC Driver 18 for SQL Server"

_SELECT_HEAD = re.compile(r"^\s*SELECT\s+", re.IGNORECASE)

_OBJECTS_SQL = """
SELECT s.name AS namespace, o.name AS name, o.type AS object_type
FROM sys.objects o
JOIN sys.schemas s ON s.schema_id = o.schema_id
WHERE o.type IN ('U', 'V') AND o.is_ms_shipped = 0
"""

_COLUMNS_SQL = """
SELECT c.name AS column_name, t.name AS data_type, c.is_nullable AS is_nullable,
       dc.definition AS column_default,
       CASE WHEN t.name IN ('varchar', 'char', 'varbinary', 'binary') THEN NULLIF(c.max_length, -1)
            WHEN t.name IN ('nvarchar', 'nchar') THEN NULLIF(c.max_length, -1) / 2
       END AS max_length,
       c.precision AS numeric_precision, c.scale AS numeric_scale,
       CAST(ep.value AS NVARCHAR(4000)) AS comment
FROM sys.columns c
JOIN sys.types t ON t.user_type_id = c.user_type_id
LEFT JOIN sys.default_constraints dc ON dc.object_id = c.default_object_id
LEFT JOIN sys.extended_properties ep
  ON ep.major_id = c.object_id AND ep.minor_id = c.column_id AND ep.name = 'MS_Description'
WHERE c.object_id = OBJECT_ID(:qualified)
ORDER BY c.column_id
"""

_INDEXES_SQL = """
SELECT i.name AS index_name, col.name AS column_name, i.is_unique AS is_unique,
       i.is_primary_key AS is_primary, LOWER(i.type_desc) AS method
FROM sys.indexes i
JOIN sys.index_columns ic ON ic.object_id = i.object_id AND ic.index_id = i.index_id
JOIN sys.columns col ON col.object_id = ic.object_id AND col.column_id = ic.column_id
WHERE i.object_id = OBJECT_ID(:qualified) AND i.name IS NOT NULL AND ic.is_included_column = 0
ORDER BY i.name, ic.key_ordinal
"""

_FOREIGN_KEYS_SQL = """
SELECT fk.name AS constraint_name, pc.name AS column_name,
       rs.name AS referenced_schema, rt.name AS referenced_table, rc.name AS referenced_column,
       REPLACE(fk.delete_referential_action_desc, '_', ' ') AS on_delete,
       REPLACE(fk.update_referential_action_desc, '_', ' ') AS on_update
FROM sys.foreign_keys fk
JOIN sys.foreign_key_columns fkc ON fkc.constraint_object_id = fk.object_id
JOIN sys.columns pc ON pc.object_id = fkc.parent_object_id AND pc.column_id = fkc.parent_column_id
JOIN sys.tables rt ON rt.object_id = fkc.referenced_object_id
JOIN sys.schemas rs ON rs.schema_id = rt.schema_id
JOIN sys.columns rc ON rc.object_id = fkc.referenced_object_id AND rc.column_id = fkc.referenced_column_id
WHERE fk.parent_object_id = OBJECT_ID(:qualified)
ORDER BY fk.name, fkc.constraint_column_id
"""

_CHECKS_SQL = """
SELECT name, definition FROM sys.check_constraints
WHERE parent_object_id = OBJECT_ID(:qualified)
ORDER BY name
"""


class MSSQLAdapter(SQLAlchemyAdapter):
    engine = DatabaseType.MSSQL
    driver = "mssql+aioodbc"
    capabilities = Capabilities(
        supports_transactions=True,
        supports_schemas=True,
        supports_indexes=True,
        supports_foreign_keys=True,
        supports_views=True,
        supports_functions=True,
        supports_procedures=True,
        supports_explain=False,
        supports_backup=True,
    )

    def build_url(self) -> URL:
        url = super().build_url()
        # Remaining options are ODBC connection keywords
        query = {"driver": DEFAULT_ODBC_DRIVER, **dict(url.query)}
        query.update({key: str(value) for key, value in self.config.options.items()})
        if self.config.read_only:
            query["ApplicationIntent"] = "ReadOnly"
        return url.set(query=query)

    def engine_options(self) -> dict[str, Any]:
        return {
            **super().engine_options(),
            "connect_args": {"timeout": max(1, int(self.timeout_seconds))},
        }

    def limit_query(self, select_sql: str, limit: int) -> str:
        limited, count = _SELECT_HEAD.subn(f"SELECT TOP {int(limit)} ", select_sql, count=1)
        if not count:
            raise ValueError("limit_query expects a SELECT statement")
        return limited

    # ── Schema ───────────────────────────────────────────────────────────

    async def get_schema(self, database: str | None = None) -> Schema:
        sql = _OBJECTS_SQL
        params: dict[str, Any] = {}
        if database:
            sql += " AND s.name = :namespace"
            params["namespace"] = database
        sql += " ORDER BY s.name, o.name"

        tables: list[Table] = []
        views: list[Table] = []
        for obj in await self._fetch(sql, params):
            if obj["object_type"].strip() == "V":
                views.append(await self._introspect_view(obj["name"], obj["namespace"]))
            else:
                tables.append(await self._introspect_table(obj["name"], obj["namespace"]))

        logger.debug("SQL Server schema: %d tables, %d views", len(tables), len(views))
        return Schema(
            database=self.config.database or database or "master",
            tables=tables,
            views=views,
        )

    async def _columns(self, qualified: str) -> list[Column]:
        return [
            Column(
                name=row["column_name"],
                type=row["data_type"],
                nullable=bool(row["is_nullable"]),
                default_value=row["column_default"],
                max_length=to_int(row["max_length"]),
                precision=to_int(row["numeric_precision"]) or None,
                scale=to_int(row["numeric_scale"]) or None,
                comment=row["comment"],
            )
            for row in await self._fetch(_COLUMNS_SQL, {"qualified": qualified})
        ]

    async def _introspect_view(self, name: str, namespace: str) -> Table:
        qualified = self.qualify(name, namespace)
        return Table(
            name=name, namespace=namespace, kind=TableKind.VIEW, columns=await self._columns(qualified)
        )

    async def _introspect_table(self, name: str, namespace: str) -> Table:
        qualified = self.qualify(name, namespace)
        params = {"qualified": qualified}
        columns = await self._columns(qualified)
        indexes, primary_key = group_indexes(await self._fetch(_INDEXES_SQL, params))
        constraints = [
            Constraint(name=row["name"], type="check", definition=row["definition"])
            for row in await self._fetch(_CHECKS_SQL, params)
        ]
        return Table(
            name=name,
            namespace=namespace,
            columns=finalize_columns(columns, primary_key, indexes, constraints),
            primary_key=primary_key,
            indexes=indexes,
            foreign_keys=group_foreign_keys(name, await self._fetch(_FOREIGN_KEYS_SQL, params)),
            constraints=constraints,
            row_count=await self._count_rows(name, namespace),
        )
