"""
SQLite adapter (``sqlite+aiosqlite``).

Catalog comes from ``sqlite_master`` and the table-valued PRAGMAs
(table_info, index_list, index_info, foreign_key_list). The optional
database argument of get_schema names an attached schema (``main`` by
default). In-memory databases share a single connection through
StaticPool so every statement sees the same data.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.engine import URL, make_url
from sqlalchemy.pool import StaticPool

from dbsense.adapters.base import Parameters
from dbsense.adapters.catalog import finalize_columns, group_foreign_keys
from dbsense.adapters.sql import SQLAlchemyAdapter
from dbsense.exceptions import ConnectionError, SchemaNotFoundError
from dbsense.models import Capabilities, DatabaseType, ExecutionPlan
from dbsense.query.plan import normalize_plan
from dbsense.schema.models import Column, Constraint, Index, Schema, Table, TableKind

logger = logging.getLogger(__name__)

MEMORY = ":memory:"


class SQLiteAdapter(SQLAlchemyAdapter):
    engine = DatabaseType.SQLITE
    driver = "sqlite+aiosqlite"
    capabilities = Capabilities(
        supports_transactions=True,
        supports_indexes=True,
        supports_foreign_keys=True,
        supports_views=True,
        supports_explain=True,
        supports_backup=True,
    )

    def validate_config(self) -> None:
        # File databases have no host; a path in ``database`` is enough.
        self._validate_engine_type()
        if not (self.config.connection_string or self.config.host or self.config.database):
            raise ConnectionError(
                "A connection string or database path is required",
                engine=self.engine.value,
            )

    @property
    def database_path(self) -> str:
        """Filesystem path of the database, or ``:memory:``."""
        conn_str = self.config.connection_string
        if conn_str:
            if conn_str.startswith("sqlite"):
                return make_url(conn_str).database or MEMORY
            return conn_str
        return self.config.database or self.config.host or MEMORY

    @property
    def is_memory(self) -> bool:
        return self.database_path in ("", MEMORY)

    def build_url(self) -> URL:
        path = self.database_path
        if self.is_memory:
            return URL.create(self.driver, database=MEMORY)
        if self.config.read_only:
            return URL.create(
                self.driver, database=f"file:{path}", query={"mode": "ro", "uri": "true"}
            )
        return URL.create(self.driver, database=path)

    def engine_options(self) -> dict[str, Any]:
        connect_args: dict[str, Any] = {"timeout": self.timeout_seconds}
        options: dict[str, Any] = {"connect_args": connect_args}
        if self.is_memory:
            connect_args["check_same_thread"] = False
            options["poolclass"] = StaticPool
        return options

    # ── Schema ───────────────────────────────────────────────────────────

    async def get_schema(self, database: str | None = None) -> Schema:
        namespace = database or "main"
        attached = {row["name"] for row in await self._fetch("PRAGMA database_list")}
        if namespace not in attached:
            raise SchemaNotFoundError(namespace)

        qns = self.quote_identifier(namespace)
        objects = await self._fetch(
            f"SELECT name, type FROM {qns}.sqlite_master "
            "WHERE type IN ('table', 'view') AND name NOT LIKE 'sqlite_%' ORDER BY name"
        )
        tables: list[Table] = []
        views: list[Table] = []
        for obj in objects:
            if obj["type"] == "view":
                views.append(await self._introspect_view(obj["name"], namespace))
            else:
                tables.append(await self._introspect_table(obj["name"], namespace))

        logger.debug("SQLite schema %s: %d tables, %d views", namespace, len(tables), len(views))
        return Schema(
            database=database or self.config.database or "main",
            tables=tables,
            views=views,
        )

    async def _table_info(self, name: str, namespace: str) -> list[dict[str, Any]]:
        return await self._fetch(
            f"PRAGMA {self.quote_identifier(namespace)}.table_info({self.quote_identifier(name)})"
        )

    @staticmethod
    def _columns(info: list[dict[str, Any]]) -> list[Column]:
        return [
            Column(
                name=row["name"],
                type=row["type"] or "",
                nullable=not row["notnull"],
                default_value=row["dflt_value"],
            )
            for row in info
        ]

    async def _introspect_view(self, name: str, namespace: str) -> Table:
        info = await self._table_info(name, namespace)
        return Table(name=name, namespace=namespace, kind=TableKind.VIEW, columns=self._columns(info))

    async def _introspect_table(self, name: str, namespace: str) -> Table:
        qns = self.quote_identifier(namespace)
        qname = self.quote_identifier(name)
        info = await self._table_info(name, namespace)
        primary_key = [
            row["name"] for row in sorted((r for r in info if r["pk"]), key=lambda r: r["pk"])
        ] or None

        indexes: list[Index] = []
        constraints: list[Constraint] = []
        for idx in await self._fetch(f"PRAGMA {qns}.index_list({qname})"):
            index_info = await self._fetch(
                f"PRAGMA {qns}.index_info({self.quote_identifier(idx['name'])})"
            )
            columns = [
                row["name"] or "<expression>"
                for row in sorted(index_info, key=lambda r: r["seqno"])
            ]
            origin = idx.get("origin", "c")
            if origin == "pk":
                continue
            if origin == "u":
                constraints.append(
                    Constraint(name=f"{name}_{'_'.join(columns)}_key", type="unique", columns=columns)
                )
                continue
            indexes.append(Index(name=idx["name"], columns=columns, unique=bool(idx["unique"]), method="btree"))

        foreign_keys = group_foreign_keys(name, await self._foreign_key_rows(name, namespace))

        return Table(
            name=name,
            namespace=namespace,
            columns=finalize_columns(self._columns(info), primary_key, indexes, constraints),
            primary_key=primary_key,
            indexes=indexes,
            foreign_keys=foreign_keys,
            constraints=constraints,
            row_count=await self._count_rows(name, namespace),
        )

    async def _foreign_key_rows(self, name: str, namespace: str) -> list[dict[str, Any]]:
        qns = self.quote_identifier(namespace)
        raw = await self._fetch(f"PRAGMA {qns}.foreign_key_list({self.quote_identifier(name)})")
        rows: list[dict[str, Any]] = []
        referenced_pk: dict[str, list[str]] = {}
        for row in sorted(raw, key=lambda r: (r["id"], r["seq"])):
            referenced_column = row["to"]
            if referenced_column is None:
                # REFERENCES parent without a column list targets the parent's primary key
                parent = row["table"]
                if parent not in referenced_pk:
                    parent_info = await self._table_info(parent, namespace)
                    referenced_pk[parent] = [
                        r["name"] for r in sorted((r for r in parent_info if r["pk"]), key=lambda r: r["pk"])
                    ]
                pk_columns = referenced_pk[parent]
                referenced_column = pk_columns[row["seq"]] if row["seq"] < len(pk_columns) else "rowid"
            rows.append(
                {
                    "constraint_name": f"fk_{name}_{row['id']}",
                    "column_name": row["from"],
                    "referenced_table": row["table"],
                    "referenced_column": referenced_column,
                    "on_delete": row["on_delete"],
                    "on_update": row["on_update"],
                }
            )
        return rows

    # ── Explain ──────────────────────────────────────────────────────────

    async def _explain(self, statement: str, parameters: Parameters) -> ExecutionPlan:
        result = await self.execute_query(f"EXPLAIN QUERY PLAN {statement}", parameters)
        return normalize_plan(self.engine, result.rows)
