"""
PostgreSQL adapter (``postgresql+asyncpg``).

Catalog queries read ``pg_catalog`` directly rather than
information_schema: it exposes materialized views, index methods and
multi-column foreign keys with their column positions, none of which
information_schema reports reliably. The optional database argument of
get_schema restricts introspection to one schema namespace.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from sqlalchemy.engine import URL

from dbsense.adapters.base import Parameters
from dbsense.adapters.catalog import finalize_columns, group_foreign_keys, group_indexes, to_int
from dbsense.adapters.sql import SQLAlchemyAdapter
from dbsense.models import Capabilities, DatabaseType, ExecutionPlan
from dbsense.query.plan import normalize_plan
from dbsense.schema.models import Column, Constraint, Schema, Table, TableKind

logger = logging.getLogger(__name__)

_SYSTEM_SCHEMA_FILTER = (
    "n.nspname NOT IN ('pg_catalog', 'information_schema') AND n.nspname NOT LIKE 'pg_toast%'"
)

_RELATIONS_SQL = f"""
SELECT n.nspname AS namespace, c.relname AS name, c.relkind AS relkind,
       pg_total_relation_size(c.oid) AS size_bytes
FROM pg_class c
JOIN pg_namespace n ON n.oid = c.relnamespace
WHERE c.relkind IN ('r', 'p', 'v', 'm') AND {_SYSTEM_SCHEMA_FILTER}
"""

_COLUMNS_SQL = """
SELECT a.attname AS column_name,
       format_type(a.atttypid, a.atttypmod) AS data_type,
       NOT a.attnotnull AS is_nullable,
       pg_get_expr(d.adbin, d.adrelid) AS column_default,
       CASE WHEN a.atttypid IN (1042, 1043) AND a.atttypmod > 4
            THEN a.atttypmod - 4 END AS max_length,
       information_schema._pg_numeric_precision(a.atttypid, a.atttypmod) AS numeric_precision,
       information_schema._pg_numeric_scale(a.atttypid, a.atttypmod) AS numeric_scale,
       col_description(a.attrelid, a.attnum) AS comment
FROM pg_attribute a
JOIN pg_class c ON c.oid = a.attrelid
JOIN pg_namespace n ON n.oid = c.relnamespace
LEFT JOIN pg_attrdef d ON d.adrelid = a.attrelid AND d.adnum = a.attnum
WHERE n.nspname = :namespace AND c.relname = :table
  AND a.attnum > 0 AND NOT a.attisdropped
ORDER BY a.attnum
"""

_INDEXES_SQL = """
SELECT i.relname AS index_name, a.attname AS column_name,
       ix.indisunique AS is_unique, ix.indisprimary AS is_primary,
       am.amname AS method
FROM pg_index ix
JOIN pg_class t ON t.oid = ix.indrelid
JOIN pg_namespace n ON n.oid = t.relnamespace
JOIN pg_class i ON i.oid = ix.indexrelid
JOIN pg_am am ON am.oid = i.relam
JOIN LATERAL unnest(ix.indkey) WITH ORDINALITY AS k(attnum, ord) ON true
JOIN pg_attribute a ON a.attrelid = t.oid AND a.attnum = k.attnum
WHERE n.nspname = :namespace AND t.relname = :table
ORDER BY i.relname, k.ord
"""

_FOREIGN_KEYS_SQL = """
SELECT con.conname AS constraint_name, att.attname AS column_name,
       ref_ns.nspname AS referenced_schema, ref.relname AS referenced_table,
       ref_att.attname AS referenced_column,
       con.confdeltype AS on_delete, con.confupdtype AS on_update
FROM pg_constraint con
JOIN pg_class t ON t.oid = con.conrelid
JOIN pg_namespace n ON n.oid = t.relnamespace
JOIN pg_class ref ON ref.oid = con.confrelid
JOIN pg_namespace ref_ns ON ref_ns.oid = ref.relnamespace
JOIN LATERAL unnest(con.conkey, con.confkey) WITH ORDINALITY AS k(attnum, ref_attnum, ord) ON true
JOIN pg_attribute att ON att.attrelid = con.conrelid AND att.attnum = k.attnum
JOIN pg_attribute ref_att ON ref_att.attrelid = con.confrelid AND ref_att.attnum = k.ref_attnum
WHERE con.contype = 'f' AND n.nspname = :namespace AND t.relname = :table
ORDER BY con.conname, k.ord
"""

_CONSTRAINTS_SQL = """
SELECT con.conname AS name, con.contype AS contype,
       pg_get_constraintdef(con.oid) AS definition,
       ARRAY(SELECT a.attname FROM unnest(con.conkey) WITH ORDINALITY AS k(attnum, ord)
             JOIN pg_attribute a ON a.attrelid = con.conrelid AND a.attnum = k.attnum
             ORDER BY k.ord) AS columns
FROM pg_constraint con
JOIN pg_class t ON t.oid = con.conrelid
JOIN pg_namespace n ON n.oid = t.relnamespace
WHERE con.contype IN ('c', 'u', 'x') AND n.nspname = :namespace AND t.relname = :table
ORDER BY con.conname
"""

# pg_constraint action codes
_FK_ACTIONS = {
    "a": "NO ACTION",
    "r": "RESTRICT",
    "c": "CASCADE",
    "n": "SET NULL",
    "d": "SET DEFAULT",
}

_CONSTRAINT_TYPES = {"c": "check", "u": "unique", "x": "exclusion"}

_RELKINDS = {
    "r": TableKind.TABLE,
    "p": TableKind.TABLE,
    "v": TableKind.VIEW,
    "m": TableKind.MATERIALIZED_VIEW,
}


class PostgreSQLAdapter(SQLAlchemyAdapter):
    engine = DatabaseType.POSTGRESQL
    driver = "postgresql+asyncpg"
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

    def build_url(self) -> URL:
        url = super().build_url()
        # asyncpg takes ``ssl`` as a connect argument, not libpq's sslmode
        if "sslmode" in url.query:
            url = url.difference_update_query(["sslmode"])
        return url

    def engine_options(self) -> dict[str, Any]:
        connect_args: dict[str, Any] = {
            "timeout": self.timeout_seconds,
            "command_timeout": self.timeout_seconds,
        }
        sslmode = None
        if self.config.connection_string:
            sslmode = super().build_url().query.get("sslmode")
        if sslmode and sslmode != "disable":
            connect_args["ssl"] = sslmode
        if self.config.read_only:
            connect_args["server_settings"] = {"default_transaction_read_only": "on"}
        connect_args.update(self.config.options)
        return {**super().engine_options(), "connect_args": connect_args}

    # ── Schema ───────────────────────────────────────────────────────────

    async def get_schema(self, database: str | None = None) -> Schema:
        sql = _RELATIONS_SQL
        params: dict[str, Any] = {}
        if database:
            sql += " AND n.nspname = :namespace"
            params["namespace"] = database
        sql += " ORDER BY n.nspname, c.relname"

        tables: list[Table] = []
        views: list[Table] = []
        for rel in await self._fetch(sql, params):
            kind = _RELKINDS[rel["relkind"]]
            table = await self._introspect(rel["name"], rel["namespace"], kind, rel["size_bytes"])
            (tables if kind == TableKind.TABLE else views).append(table)

        logger.debug("PostgreSQL schema: %d tables, %d views", len(tables), len(views))
        return Schema(
            database=self.config.database or database or "postgres",
            tables=tables,
            views=views,
        )

    async def _introspect(
        self, name: str, namespace: str, kind: TableKind, size_bytes: int | None
    ) -> Table:
        params = {"namespace": namespace, "table": name}
        columns = [
            Column(
                name=row["column_name"],
                type=row["data_type"],
                nullable=bool(row["is_nullable"]),
                default_value=row["column_default"],
                max_length=to_int(row["max_length"]),
                precision=to_int(row["numeric_precision"]),
                scale=to_int(row["numeric_scale"]),
                comment=row["comment"],
            )
            for row in await self._fetch(_COLUMNS_SQL, params)
        ]
        if kind == TableKind.VIEW:
            return Table(name=name, namespace=namespace, kind=kind, columns=columns)

        indexes, primary_key = group_indexes(await self._fetch(_INDEXES_SQL, params))
        fk_rows = [
            {
                **row,
                "on_delete": _FK_ACTIONS.get(row["on_delete"]),
                "on_update": _FK_ACTIONS.get(row["on_update"]),
            }
            for row in await self._fetch(_FOREIGN_KEYS_SQL, params)
        ]
        constraints = [
            Constraint(
                name=row["name"],
                type=_CONSTRAINT_TYPES[row["contype"]],
                columns=list(row["columns"] or []),
                definition=row["definition"],
            )
            for row in await self._fetch(_CONSTRAINTS_SQL, params)
        ]
        return Table(
            name=name,
            namespace=namespace,
            kind=kind,
            columns=finalize_columns(columns, primary_key, indexes, constraints),
            primary_key=primary_key,
            indexes=indexes,
            foreign_keys=group_foreign_keys(name, fk_rows),
            constraints=constraints,
            row_count=await self._count_rows(name, namespace),
            size_bytes=to_int(size_bytes),
        )

    # ── Explain ──────────────────────────────────────────────────────────

    async def _explain(self, statement: str, parameters: Parameters) -> ExecutionPlan:
        result = await self.execute_query(f"EXPLAIN (FORMAT JSON) {statement}", parameters)
        payload = next(iter(result.rows[0].values())) if result.rows else []
        if isinstance(payload, str):
            payload = json.loads(payload)
        return normalize_plan(self.engine, payload)
