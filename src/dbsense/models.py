"""
Core value types shared by adapters, the registry and the analyzers.

All models serialize with camelCase keys (``connectionString``,
``rowCount``...) because that is the shape tool callers send and expect,
while Python code uses snake_case attribute names.
"""

from __future__ import annotations

from collections.abc import Iterator
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Frozen base model accepting and emitting camelCase field names."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_json_dict(self) -> dict[str, Any]:
        """Dump with camelCase keys, leaving non-JSON values for the caller's encoder."""
        return self.model_dump(by_alias=True)


class DatabaseType(str, Enum):
    """Supported database engines."""

    POSTGRESQL = "postgresql"
    MYSQL = "mysql"
    SQLITE = "sqlite"
    MSSQL = "mssql"
    MONGODB = "mongodb"
    REDIS = "redis"

    @property
    def is_relational(self) -> bool:
        return self not in (DatabaseType.MONGODB, DatabaseType.REDIS)


class Severity(str, Enum):
    """Severity of a reported issue."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ConnectionStatus(str, Enum):
    """Lifecycle status of a registered connection."""

    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


class ConnectionConfig(CamelModel):
    """
    Everything needed to construct and connect an adapter.

    ``timeout`` is in milliseconds and bounds both connection setup and
    individual statements. ``options`` carries engine-specific driver
    settings (ssl, ODBC keywords, client options).
    """

    type: DatabaseType
    host: str | None = None
    port: int | None = None
    database: str | None = None
    username: str | None = None
    password: str | None = Field(default=None, repr=False)
    connection_string: str | None = Field(default=None, repr=False)
    options: dict[str, Any] = Field(default_factory=dict)
    read_only: bool = False
    timeout: int | None = Field(default=None, gt=0)
    pool_size: int | None = Field(default=None, gt=0)

    def with_defaults(self, timeout: int, pool_size: int) -> "ConnectionConfig":
        """Return a copy with unset timeout/pool size filled in."""
        return self.model_copy(
            update={
                "timeout": self.timeout or timeout,
                "pool_size": self.pool_size or pool_size,
            }
        )


class Capabilities(CamelModel):
    """Optional operations an adapter supports. Callers must check before use."""

    supports_transactions: bool = False
    supports_schemas: bool = False
    supports_indexes: bool = False
    supports_foreign_keys: bool = False
    supports_views: bool = False
    supports_functions: bool = False
    supports_procedures: bool = False
    supports_explain: bool = False
    supports_backup: bool = False


class ResultColumn(CamelModel):
    """Column metadata of a query result."""

    name: str
    type: str | None = None


class QueryResult(CamelModel):
    """
    Rows returned by a statement.

    Rows are plain ``dict`` mappings in result order; their shape is
    decided by the statement at runtime and is not statically typed.
    """

    rows: list[dict[str, Any]] = Field(default_factory=list)
    row_count: int = 0
    columns: list[ResultColumn] = Field(default_factory=list)
    execution_time_ms: float = 0.0


class PlanOperation(CamelModel):
    """One node of a normalized execution plan tree."""

    type: str
    cost: float = 0.0
    rows: float = 0.0
    description: str = ""
    children: list["PlanOperation"] = Field(default_factory=list)

    def iter_depth_first(self) -> Iterator["PlanOperation"]:
        """Yield this operation and all descendants, pre-order."""
        yield self
        for child in self.children:
            yield from child.iter_depth_first()


class ExecutionPlan(CamelModel):
    """Engine-native plan payload plus its normalized operation tree."""

    engine: DatabaseType
    root: PlanOperation
    raw: Any = None

    @property
    def total_cost(self) -> float:
        """
        Plan cost used for scoring: the root operation's cost.

        Engines that report cumulative costs (PostgreSQL ``Total Cost``,
        MySQL ``query_cost``) already include every child in the root, so
        child costs are not added again. Synthetic roots built by the plan
        normalizer carry the sum of their children.
        """
        return self.root.cost

    def operations(self) -> list[PlanOperation]:
        """All operations in the plan, pre-order."""
        return list(self.root.iter_depth_first())
