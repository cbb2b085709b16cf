"""
Tool service: the named operations a host exposes to its callers.

Each tool is a coroutine on ToolService taking keyword arguments.
``call_tool`` is the single entry point for hosts: it validates the
camelCase argument object against the tool's pydantic model, runs the
coroutine, and returns JSON text. Any failure comes back as a ToolError
carrying the original message.

Usage:
    service = ToolService(ConnectionRegistry())
    text = await service.call_tool("connect_database", {"type": "sqlite", "connectionString": ":memory:"})
    connection_id = json.loads(text)["connectionId"]
    print(await service.call_tool("get_schema", {"connectionId": connection_id}))
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from dbsense.adapters.base import DatabaseAdapter
from dbsense.config import Settings
from dbsense.data.analyzer import DataAnalyzer
from dbsense.exceptions import DBSenseError, ToolError
from dbsense.models import ConnectionConfig, DatabaseType
from dbsense.query.analyzer import QueryAnalyzer
from dbsense.query.slow import PgStatStatementsSource
from dbsense.registry import ConnectionRegistry
from dbsense.schema.analyzer import analyze_foreign_keys, render_mermaid
from dbsense.schema.migration import MigrationSynthesizer

logger = logging.getLogger(__name__)


# ── Argument models ──────────────────────────────────────────────────────


class ToolArgs(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class NoArgs(ToolArgs):
    pass


class ConnectArgs(ConnectionConfig):
    id: str | None = Field(default=None, description="Caller-chosen connection id")

    def to_config(self) -> ConnectionConfig:
        return ConnectionConfig.model_validate(self.model_dump(exclude={"id"}))


class ConnectionArgs(ToolArgs):
    connection_id: str = Field(description="Id returned by connect_database")


class SchemaArgs(ConnectionArgs):
    database: str | None = Field(default=None, description="Database or schema to introspect")


class MigrationArgs(ConnectionArgs):
    source_database: str = Field(description="Schema the migration starts from")
    target_database: str = Field(description="Schema the migration should produce")
    name: str = Field(description="Migration name")
    description: str | None = None


class QueryArgs(ConnectionArgs):
    query: str = Field(description="Statement to analyze")
    parameters: list[Any] | dict[str, Any] | None = Field(
        default=None, description="Positional or named statement parameters"
    )


class IndexArgs(ConnectionArgs):
    query: str = Field(description="Statement to derive index candidates from")


class SlowQueryArgs(ConnectionArgs):
    threshold_ms: float | None = Field(default=None, description="Mean execution time threshold")


class TableArgs(ConnectionArgs):
    table_name: str = Field(description="Table to analyze")
    namespace: str | None = Field(default=None, alias="schema", description="Schema of the table")


class DuplicateArgs(TableArgs):
    columns: list[str] | None = Field(default=None, description="Columns to group by")


class SampleArgs(TableArgs):
    limit: int | None = Field(default=None, gt=0, description="Number of rows")


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    args_model: type[BaseModel]


TOOLS: dict[str, ToolSpec] = {
    spec.name: spec
    for spec in (
        ToolSpec("connect_database", "Connect to a database and return a connection id", ConnectArgs),
        ToolSpec("list_connections", "List registered connections", NoArgs),
        ToolSpec("disconnect_database", "Close a connection", ConnectionArgs),
        ToolSpec("test_connection", "Check that a connection config can connect", ConnectionConfig),
        ToolSpec("get_schema", "Introspect tables, views, indexes and keys", SchemaArgs),
        ToolSpec("visualize_schema", "Render the schema as a Mermaid ER diagram", SchemaArgs),
        ToolSpec("analyze_foreign_keys", "List foreign keys and their integrity issues", SchemaArgs),
        ToolSpec("generate_migration", "Generate forward and reverse DDL between two schemas", MigrationArgs),
        ToolSpec("analyze_query", "Execute a statement and score its performance", QueryArgs),
        ToolSpec("explain_query", "Return the normalized execution plan", QueryArgs),
        ToolSpec("optimize_query", "Suggest rewrites and indexes for a statement", QueryArgs),
        ToolSpec("detect_slow_queries", "List queries slower than a threshold", SlowQueryArgs),
        ToolSpec("suggest_indexes", "Suggest indexes from WHERE/JOIN predicates", IndexArgs),
        ToolSpec("get_table_stats", "Row count and per-column statistics", TableArgs),
        ToolSpec("analyze_data_quality", "Report missing, duplicate and low-variety data", TableArgs),
        ToolSpec("find_duplicates", "Find groups of rows with identical values", DuplicateArgs),
        ToolSpec("sample_data", "Return the first rows of a table", SampleArgs),
    )
}


def to_jsonable(value: Any) -> Any:
    """Convert tool results to plain containers with camelCase keys."""
    if isinstance(value, BaseModel):
        return value.model_dump(by_alias=True)
    if isinstance(value, Mapping):
        return {key: to_jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(item) for item in value]
    return value


class ToolService:
    """
    Tool handlers over one connection registry.

    Args:
        registry: Registry owning the connections tools operate on.
        settings: Thresholds and defaults; process settings when omitted.
    """

    def __init__(self, registry: ConnectionRegistry, settings: Settings | None = None) -> None:
        self.registry = registry
        self.settings = settings or registry.settings

    # ── Dispatch ─────────────────────────────────────────────────────────

    @staticmethod
    def list_tools() -> list[dict[str, Any]]:
        return [
            {
                "name": spec.name,
                "description": spec.description,
                "inputSchema": spec.args_model.model_json_schema(by_alias=True),
            }
            for spec in TOOLS.values()
        ]

    async def call_tool(self, name: str, arguments: Mapping[str, Any] | None = None) -> str:
        """
        Validate ``arguments``, run tool ``name`` and return its result as JSON.

        Raises:
            ToolError: Unknown tool, invalid arguments, or the tool failed.
        """
        spec = TOOLS.get(name)
        if spec is None:
            raise ToolError(name, f"Unknown tool: {name}")
        try:
            args = spec.args_model.model_validate(dict(arguments or {}))
        except ValidationError as exc:
            raise ToolError(name, f"Invalid arguments: {exc}", exc) from exc

        handler = getattr(self, name)
        logger.debug("Calling tool %s", name)
        if isinstance(args, ConnectArgs):
            kwargs = {"config": args.to_config(), "connection_id": args.id}
        elif isinstance(args, ConnectionConfig):
            kwargs = {"config": args}
        else:
            kwargs = args.model_dump()
        try:
            result = await handler(**kwargs)
        except DBSenseError as exc:
            raise ToolError(name, exc.message, exc) from exc
        except Exception as exc:
            logger.exception("Tool %s raised an unexpected error", name)
            raise ToolError(name, str(exc) or type(exc).__name__, exc) from exc
        return json.dumps(to_jsonable(result), indent=2, default=str)

    # ── Connections ──────────────────────────────────────────────────────

    async def connect_database(
        self, config: ConnectionConfig, connection_id: str | None = None
    ) -> dict[str, Any]:
        connection_id = await self.registry.create(config, connection_id)
        return {
            "connectionId": connection_id,
            "type": config.type.value,
            "message": f"Connected to {config.type.value} database",
        }

    async def list_connections(self) -> list[Any]:
        return self.registry.list_connections()

    async def disconnect_database(self, connection_id: str) -> dict[str, Any]:
        await self.registry.disconnect(connection_id)
        return {"connectionId": connection_id, "disconnected": True}

    async def test_connection(self, config: ConnectionConfig) -> dict[str, Any]:
        success = await self.registry.test_connection(config)
        return {"type": config.type.value, "success": success}

    # ── Schema ───────────────────────────────────────────────────────────

    async def get_schema(self, connection_id: str, database: str | None = None) -> Any:
        return await self.registry.require(connection_id).get_schema(database)

    async def visualize_schema(self, connection_id: str, database: str | None = None) -> dict[str, Any]:
        schema = await self.registry.require(connection_id).get_schema(database)
        return {"format": "mermaid", "diagram": render_mermaid(schema)}

    async def analyze_foreign_keys(self, connection_id: str, database: str | None = None) -> Any:
        schema = await self.registry.require(connection_id).get_schema(database)
        return analyze_foreign_keys(schema)

    async def generate_migration(
        self,
        connection_id: str,
        source_database: str,
        target_database: str,
        name: str,
        description: str | None = None,
    ) -> Any:
        adapter = self.registry.require(connection_id)
        source = await adapter.get_schema(source_database)
        target = await adapter.get_schema(target_database)
        return MigrationSynthesizer(adapter.engine).generate(source, target, name, description)

    # ── Queries ──────────────────────────────────────────────────────────

    def _query_analyzer(self, adapter: DatabaseAdapter) -> QueryAnalyzer:
        source = PgStatStatementsSource(adapter) if adapter.engine == DatabaseType.POSTGRESQL else None
        return QueryAnalyzer(
            adapter,
            slow_query_source=source,
            high_cost_threshold=self.settings.high_cost_threshold,
        )

    async def analyze_query(
        self, connection_id: str, query: str, parameters: list[Any] | dict[str, Any] | None = None
    ) -> Any:
        analyzer = self._query_analyzer(self.registry.require(connection_id))
        return await analyzer.analyze_query(query, parameters)

    async def explain_query(
        self, connection_id: str, query: str, parameters: list[Any] | dict[str, Any] | None = None
    ) -> dict[str, Any]:
        adapter = self.registry.require(connection_id)
        plan = await self._query_analyzer(adapter).explain_query(query, parameters)
        return {"supported": adapter.get_capabilities().supports_explain, "plan": plan}

    async def optimize_query(
        self, connection_id: str, query: str, parameters: list[Any] | dict[str, Any] | None = None
    ) -> Any:
        analyzer = self._query_analyzer(self.registry.require(connection_id))
        return await analyzer.optimize_query(query, parameters)

    async def detect_slow_queries(self, connection_id: str, threshold_ms: float | None = None) -> list[Any]:
        analyzer = self._query_analyzer(self.registry.require(connection_id))
        threshold = self.settings.slow_query_threshold_ms if threshold_ms is None else threshold_ms
        return await analyzer.detect_slow_queries(threshold)

    async def suggest_indexes(self, connection_id: str, query: str) -> list[Any]:
        self.registry.require(connection_id)
        return QueryAnalyzer.suggest_indexes(query)

    # ── Data ─────────────────────────────────────────────────────────────

    def _data_analyzer(self, connection_id: str) -> DataAnalyzer:
        return DataAnalyzer(self.registry.require(connection_id))

    async def get_table_stats(self, connection_id: str, table_name: str, namespace: str | None = None) -> Any:
        return await self._data_analyzer(connection_id).get_table_stats(table_name, namespace)

    async def analyze_data_quality(
        self, connection_id: str, table_name: str, namespace: str | None = None
    ) -> Any:
        return await self._data_analyzer(connection_id).analyze_data_quality(table_name, namespace)

    async def find_duplicates(
        self,
        connection_id: str,
        table_name: str,
        namespace: str | None = None,
        columns: list[str] | None = None,
    ) -> Any:
        return await self._data_analyzer(connection_id).find_duplicates(table_name, columns, namespace)

    async def sample_data(
        self,
        connection_id: str,
        table_name: str,
        namespace: str | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        limit = limit or self.settings.sample_limit
        return await self._data_analyzer(connection_id).sample_data(table_name, limit, namespace)
