"""
Execution plumbing shared by the relational adapters.

Connections go through a SQLAlchemy ``AsyncEngine`` using the engine's
async DBAPI driver (asyncpg, aiomysql, aiosqlite, aioodbc). This class
only owns engine lifecycle, statement execution, transactions and error
translation. Catalog queries and EXPLAIN syntax live in each engine's
own adapter module.

Parameters:
    - a sequence is passed positionally to the driver, so statements use
      the driver's native placeholders ($1 for asyncpg, %s for aiomysql,
      ? for aiosqlite/aioodbc)
    - a mapping is bound through ``sqlalchemy.text`` with ``:name`` binds
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, ClassVar, TypeVar

from sqlalchemy import text
from sqlalchemy.engine import URL, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

from dbsense.adapters.base import DatabaseAdapter, Parameters
from dbsense.exceptions import ConnectionError, QueryError
from dbsense.models import ConnectionConfig, QueryResult, ResultColumn

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SQLAlchemyAdapter(DatabaseAdapter):
    """Relational adapter backed by a SQLAlchemy async engine."""

    driver: ClassVar[str]

    def __init__(self, config: ConnectionConfig) -> None:
        super().__init__(config)
        self._engine: AsyncEngine | None = None
        self._tx_conn: AsyncConnection | None = None

    # ── Engine construction ──────────────────────────────────────────────

    def build_url(self) -> URL:
        """SQLAlchemy URL for this config, with the async driver swapped in."""
        if self.config.connection_string:
            return make_url(self.config.connection_string).set(drivername=self.driver)
        return URL.create(
            self.driver,
            username=self.config.username,
            password=self.config.password,
            host=self.config.host,
            port=self.config.port,
            database=self.config.database,
        )

    def engine_options(self) -> dict[str, Any]:
        """Keyword arguments for ``create_async_engine``."""
        return {"pool_size": self.pool_size, "pool_pre_ping": True}

    async def connect(self) -> None:
        self.validate_config()
        engine: AsyncEngine | None = None
        try:
            engine = create_async_engine(self.build_url(), **self.engine_options())
            async with engine.connect() as conn:
                await asyncio.wait_for(
                    conn.execute(text(self.health_check_statement)),
                    timeout=self.timeout_seconds,
                )
        except Exception as exc:
            if engine is not None:
                await engine.dispose()
            raise ConnectionError(
                f"Failed to connect to {self.engine.value}: {exc}",
                engine=self.engine.value,
            ) from exc
        self._engine = engine
        self._connected = True
        logger.info("Connected to %s", self.engine.value)

    async def disconnect(self) -> None:
        try:
            if self._tx_conn is not None:
                conn, self._tx_conn = self._tx_conn, None
                self._in_transaction = False
                try:
                    await conn.rollback()
                except Exception as exc:
                    logger.warning("Rollback on disconnect failed for %s: %s", self.engine.value, exc)
                finally:
                    await conn.close()
        finally:
            self._connected = False
            if self._engine is not None:
                engine, self._engine = self._engine, None
                await engine.dispose()
                logger.info("Disconnected from %s", self.engine.value)

    # ── Execution ────────────────────────────────────────────────────────

    async def execute_query(self, statement: str, parameters: Parameters = None) -> QueryResult:
        self._require_connected()
        start = time.perf_counter()
        rows, row_count, columns = await self._run(
            statement, lambda conn: self._execute_on(conn, statement, parameters)
        )
        return QueryResult(
            rows=rows,
            row_count=row_count,
            columns=columns,
            execution_time_ms=self._elapsed_ms(start),
        )

    async def _fetch(self, sql: str, params: Mapping[str, Any] | None = None) -> list[dict[str, Any]]:
        """Run an internal catalog query with ``:name`` binds and return dict rows."""
        self._require_connected()

        async def run(conn: AsyncConnection) -> list[dict[str, Any]]:
            result = await conn.execute(text(sql), dict(params or {}))
            return [dict(row._mapping) for row in result]

        return await self._run(sql, run)

    async def _count_rows(self, table: str, namespace: str | None = None) -> int | None:
        rows = await self._fetch(f"SELECT COUNT(*) AS row_count FROM {self.qualify(table, namespace)}")
        return int(rows[0]["row_count"]) if rows else None

    async def _run(self, statement: str, work: Callable[[AsyncConnection], Awaitable[T]]) -> T:
        """Run ``work(conn)`` on the open transaction or a fresh one, translating errors."""
        try:
            if self._tx_conn is not None:
                return await asyncio.wait_for(work(self._tx_conn), timeout=self.timeout_seconds)
            async with self._engine.begin() as conn:
                return await asyncio.wait_for(work(conn), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as exc:
            raise QueryError(
                f"Query timed out after {self.timeout_seconds * 1000:.0f}ms",
                statement=statement,
                native_error={"driver_error": "TimeoutError"},
            ) from exc
        except SQLAlchemyError as exc:
            raise QueryError.from_exception(exc, statement) from exc

    @staticmethod
    async def _execute_on(
        conn: AsyncConnection, statement: str, parameters: Parameters
    ) -> tuple[list[dict[str, Any]], int, list[ResultColumn]]:
        if isinstance(parameters, Mapping):
            result = await conn.execute(text(statement), dict(parameters))
        elif parameters:
            result = await conn.exec_driver_sql(statement, tuple(parameters))
        else:
            result = await conn.exec_driver_sql(statement)

        if not result.returns_rows:
            return [], max(result.rowcount, 0), []
        keys = list(result.keys())
        rows = [dict(zip(keys, row)) for row in result.fetchall()]
        return rows, len(rows), [ResultColumn(name=key) for key in keys]

    # ── Transactions ─────────────────────────────────────────────────────

    async def _begin(self) -> None:
        try:
            conn = await self._engine.connect()
            await conn.begin()
        except SQLAlchemyError as exc:
            raise QueryError.from_exception(exc, "BEGIN") from exc
        self._tx_conn = conn

    async def _commit(self) -> None:
        conn, self._tx_conn = self._tx_conn, None
        try:
            await conn.commit()
        except SQLAlchemyError as exc:
            raise QueryError.from_exception(exc, "COMMIT") from exc
        finally:
            await conn.close()

    async def _rollback(self) -> None:
        conn, self._tx_conn = self._tx_conn, None
        try:
            await conn.rollback()
        except SQLAlchemyError as exc:
            raise QueryError.from_exception(exc, "ROLLBACK") from exc
        finally:
            await conn.close()
