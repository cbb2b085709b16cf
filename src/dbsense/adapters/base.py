"""
Database adapter contract.

One concrete adapter per engine implements the same operation set:
connect/disconnect, statement execution, schema introspection, plan
explanation, transaction control and a health probe. Optional operations
are advertised through ``capabilities``; callers check them before use and
gated operations fail with UnsupportedOperationError rather than a generic
error.

Usage:
    adapter = SQLiteAdapter(ConnectionConfig(type="sqlite", connection_string=":memory:"))
    await adapter.connect()
    result = await adapter.execute_query("SELECT 1 AS one")
    plan = await adapter.explain_query("SELECT 1")   # None if unsupported
    await adapter.disconnect()
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from typing import Any, ClassVar

from dbsense.dialects import qualify, quote_identifier
from dbsense.exceptions import (
    ConnectionError,
    SchemaNotFoundError,
    TransactionError,
    UnsupportedOperationError,
)
from dbsense.models import (
    Capabilities,
    ConnectionConfig,
    DatabaseType,
    ExecutionPlan,
    QueryResult,
)
from dbsense.schema.models import Schema, Table

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 30000
DEFAULT_POOL_SIZE = 10

Parameters = Sequence[Any] | Mapping[str, Any] | None


class DatabaseAdapter(ABC):
    """
    Base class for engine adapters.

    Subclasses set ``engine``, ``capabilities`` and ``health_check_statement``
    and implement the abstract coroutines. Transaction hooks (``_begin``,
    ``_commit``, ``_rollback``) and ``_explain`` default to unsupported.
    """

    engine: ClassVar[DatabaseType]
    capabilities: ClassVar[Capabilities]
    health_check_statement: ClassVar[str] = "SELECT 1"

    def __init__(self, config: ConnectionConfig) -> None:
        self.config = config
        self._connected = False
        self._in_transaction = False

    def __repr__(self) -> str:
        state = "connected" if self._connected else "disconnected"
        return f"<{type(self).__name__} {self.engine.value} {state}>"

    # ── State ────────────────────────────────────────────────────────────

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def in_transaction(self) -> bool:
        return self._in_transaction

    @property
    def timeout_seconds(self) -> float:
        return (self.config.timeout or DEFAULT_TIMEOUT_MS) / 1000

    @property
    def pool_size(self) -> int:
        return self.config.pool_size or DEFAULT_POOL_SIZE

    @property
    def is_relational(self) -> bool:
        return self.engine.is_relational

    def get_capabilities(self) -> Capabilities:
        return self.capabilities

    def validate_config(self) -> None:
        """
        Reject configs that cannot possibly connect.

        Raises:
            ConnectionError: Wrong engine type, or neither a connection
                string nor a host was given.
        """
        self._validate_engine_type()
        if not self.config.connection_string and not self.config.host:
            raise ConnectionError(
                "Either a connection string or a host is required",
                engine=self.engine.value,
            )

    def _validate_engine_type(self) -> None:
        if self.config.type != self.engine:
            raise ConnectionError(
                f"{type(self).__name__} cannot connect to {self.config.type.value}",
                engine=self.engine.value,
            )

    def _require_connected(self) -> None:
        if not self._connected:
            raise ConnectionError(
                f"Not connected to {self.engine.value}", engine=self.engine.value
            )

    def _require(self, capability: str, operation: str) -> None:
        if not getattr(self.capabilities, capability):
            raise UnsupportedOperationError(operation, self.engine.value)

    @staticmethod
    def _elapsed_ms(start: float) -> float:
        return round((time.perf_counter() - start) * 1000, 3)

    # ── Lifecycle ────────────────────────────────────────────────────────

    @abstractmethod
    async def connect(self) -> None:
        """Open engine connectivity. Raises ConnectionError on failure."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Release all engine resources. No-op when not connected."""

    # ── Statements ───────────────────────────────────────────────────────

    @abstractmethod
    async def execute_query(self, statement: str, parameters: Parameters = None) -> QueryResult:
        """
        Execute a statement and return its rows.

        Raises:
            QueryError: The engine rejected the statement or it timed out.
        """

    async def explain_query(
        self, statement: str, parameters: Parameters = None
    ) -> ExecutionPlan | None:
        """Return the normalized plan, or None when the adapter has no explain support."""
        if not self.capabilities.supports_explain:
            return None
        self._require_connected()
        return await self._explain(statement, parameters)

    async def _explain(self, statement: str, parameters: Parameters) -> ExecutionPlan:
        raise UnsupportedOperationError("explain_query", self.engine.value)

    # ── Schema ───────────────────────────────────────────────────────────

    @abstractmethod
    async def get_schema(self, database: str | None = None) -> Schema:
        """Introspect the engine catalog into the canonical Schema."""

    async def get_tables(self, namespace: str | None = None) -> list[Table]:
        schema = await self.get_schema(namespace)
        return schema.tables

    async def get_table(self, name: str, namespace: str | None = None) -> Table:
        """
        Look up a single table or view.

        Raises:
            SchemaNotFoundError: No such table in the introspected schema.
        """
        schema = await self.get_schema(namespace)
        table = schema.table(name)
        if table is None:
            raise SchemaNotFoundError(name, namespace)
        return table

    def quote_identifier(self, name: str) -> str:
        return quote_identifier(name, self.engine)

    def qualify(self, name: str, namespace: str | None = None) -> str:
        return qualify(name, namespace, self.engine)

    def limit_query(self, select_sql: str, limit: int) -> str:
        """Bound a ``SELECT ...`` statement to ``limit`` rows."""
        return f"{select_sql} LIMIT {int(limit)}"

    # ── Transactions ─────────────────────────────────────────────────────

    async def begin_transaction(self) -> None:
        """
        Open a transaction. At most one may be open per adapter.

        Raises:
            UnsupportedOperationError: Engine has no transaction support.
            TransactionError: A transaction is already open.
        """
        self._require("supports_transactions", "begin_transaction")
        self._require_connected()
        if self._in_transaction:
            raise TransactionError("A transaction is already open on this connection")
        await self._begin()
        self._in_transaction = True

    async def commit_transaction(self) -> None:
        self._require("supports_transactions", "commit_transaction")
        if not self._in_transaction:
            raise TransactionError("No transaction is open")
        try:
            await self._commit()
        finally:
            self._in_transaction = False

    async def rollback_transaction(self) -> None:
        self._require("supports_transactions", "rollback_transaction")
        if not self._in_transaction:
            raise TransactionError("No transaction is open")
        try:
            await self._rollback()
        finally:
            self._in_transaction = False

    async def _begin(self) -> None:
        raise UnsupportedOperationError("begin_transaction", self.engine.value)

    async def _commit(self) -> None:
        raise UnsupportedOperationError("commit_transaction", self.engine.value)

    async def _rollback(self) -> None:
        raise UnsupportedOperationError("rollback_transaction", self.engine.value)

    # ── Health ───────────────────────────────────────────────────────────

    async def health_check(self) -> bool:
        """Run the engine's trivial probe statement. Never raises."""
        if not self._connected:
            return False
        try:
            await asyncio.wait_for(
                self.execute_query(self.health_check_statement),
                timeout=self.timeout_seconds,
            )
        except Exception as exc:
            logger.warning("Health check failed for %s: %s", self.engine.value, exc)
            return False
        return True
