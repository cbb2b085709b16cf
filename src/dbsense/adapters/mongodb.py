"""
MongoDB adapter (pymongo ``AsyncMongoClient``).

Statements are JSON operation descriptors instead of SQL:

    {"collection": "users", "operation": "find",
     "filter": {"age": {"$gt": 30}}, "options": {"limit": 10}}
    {"collection": "orders", "operation": "aggregate", "pipeline": [...]}
    {"collection": "users", "operation": "count", "filter": {}}
    {"operation": "command", "command": {"ping": 1}}

Collections have no declared structure, so get_schema samples a bounded
number of documents per collection and flattens nested objects into
dotted field paths. The first type seen for a path wins and every
inferred field is nullable.
"""

from __future__ import annotations

import inspect
import json
import logging
import time
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any
from urllib.parse import quote_plus

from pymongo import AsyncMongoClient
from pymongo.errors import PyMongoError

from dbsense.adapters.base import DatabaseAdapter, Parameters
from dbsense.exceptions import ConnectionError, QueryError
from dbsense.models import Capabilities, ConnectionConfig, DatabaseType, ExecutionPlan, QueryResult
from dbsense.query.plan import normalize_plan
from dbsense.schema.models import Column, Index, Schema, Table, TableKind

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_SIZE = 10

PING = json.dumps({"operation": "command", "command": {"ping": 1}})


def infer_document_columns(documents: list[Mapping[str, Any]]) -> list[Column]:
    """
    Infer columns from sampled documents.

    Nested objects are flattened to dotted paths (``address.city``); the
    first type observed for a path is kept and all fields are nullable.
    """
    types: dict[str, str] = {}

    def visit(document: Mapping[str, Any], prefix: str) -> None:
        for key, value in document.items():
            path = f"{prefix}{key}"
            if isinstance(value, Mapping) and value:
                visit(value, f"{path}.")
            elif path not in types:
                types[path] = document_type(value)

    for document in documents:
        visit(document, "")
    return [
        Column(name=path, type=type_name, nullable=True, is_primary_key=path == "_id")
        for path, type_name in types.items()
    ]


async def _resolve(value: Any) -> Any:
    """Await session methods that are coroutines in some pymongo releases."""
    if inspect.isawaitable(value):
        return await value
    return value


def document_type(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "array"
    if isinstance(value, datetime):
        return "date"
    if isinstance(value, Mapping):
        return "object"
    if isinstance(value, bytes):
        return "binary"
    return type(value).__name__


class MongoDBAdapter(DatabaseAdapter):
    engine = DatabaseType.MONGODB
    health_check_statement = PING
    capabilities = Capabilities(
        supports_transactions=True,
        supports_schemas=True,
        supports_indexes=True,
        supports_views=True,
        supports_functions=True,
        supports_explain=True,
        supports_backup=True,
    )

    def __init__(
        self,
        config: ConnectionConfig,
        sample_size: int = DEFAULT_SAMPLE_SIZE,
        client_factory: Callable[..., Any] = AsyncMongoClient,
    ) -> None:
        super().__init__(config)
        self.sample_size = sample_size
        self._client_factory = client_factory
        self._client: Any = None
        self._db: Any = None
        self._session: Any = None

    def build_uri(self) -> str:
        if self.config.connection_string:
            return self.config.connection_string
        credentials = ""
        if self.config.username:
            credentials = quote_plus(self.config.username)
            if self.config.password:
                credentials += ":" + quote_plus(self.config.password)
            credentials += "@"
        port = f":{self.config.port}" if self.config.port else ""
        return f"mongodb://{credentials}{self.config.host}{port}/{self.config.database or ''}"

    async def connect(self) -> None:
        self.validate_config()
        timeout_ms = int(self.timeout_seconds * 1000)
        client = self._client_factory(
            self.build_uri(),
            maxPoolSize=self.pool_size,
            connectTimeoutMS=timeout_ms,
            serverSelectionTimeoutMS=timeout_ms,
            **self.config.options,
        )
        try:
            await client.admin.command("ping")
        except PyMongoError as exc:
            await client.close()
            raise ConnectionError(
                f"Failed to connect to mongodb: {exc}", engine=self.engine.value
            ) from exc
        self._client = client
        if self.config.database:
            self._db = client[self.config.database]
        else:
            self._db = client.get_default_database("test")
        self._connected = True
        logger.info("Connected to mongodb database %s", self._db.name)

    async def disconnect(self) -> None:
        try:
            if self._session is not None:
                session, self._session = self._session, None
                self._in_transaction = False
                try:
                    await session.abort_transaction()
                except Exception as exc:
                    logger.warning("Abort on disconnect failed for mongodb: %s", exc)
                finally:
                    await _resolve(session.end_session())
        finally:
            self._connected = False
            if self._client is not None:
                client, self._client = self._client, None
                self._db = None
                await client.close()
                logger.info("Disconnected from mongodb")

    # ── Statements ───────────────────────────────────────────────────────

    @staticmethod
    def parse_statement(statement: str) -> dict[str, Any]:
        try:
            descriptor = json.loads(statement)
        except json.JSONDecodeError as exc:
            raise QueryError(f"Invalid MongoDB operation descriptor: {exc}", statement) from exc
        if not isinstance(descriptor, dict):
            raise QueryError("MongoDB operation descriptor must be a JSON object", statement)
        operation = descriptor.get("operation", "find")
        if operation != "command" and not descriptor.get("collection"):
            raise QueryError(f"Operation '{operation}' requires a collection", statement)
        return descriptor

    async def execute_query(self, statement: str, parameters: Parameters = None) -> QueryResult:
        self._require_connected()
        descriptor = self.parse_statement(statement)
        start = time.perf_counter()
        try:
            rows = await self._dispatch(descriptor, statement)
        except PyMongoError as exc:
            raise QueryError.from_exception(exc, statement) from exc
        return QueryResult(rows=rows, row_count=len(rows), execution_time_ms=self._elapsed_ms(start))

    async def _dispatch(self, descriptor: dict[str, Any], statement: str) -> list[dict[str, Any]]:
        operation = descriptor.get("operation", "find")
        session_kwargs = {"session": self._session} if self._session is not None else {}

        if operation == "command":
            result = await self._db.command(descriptor.get("command", {}), **session_kwargs)
            return [dict(result)]

        collection = self._db[descriptor["collection"]]
        filter_ = descriptor.get("filter") or {}
        if operation == "find":
            options = dict(descriptor.get("options") or {})
            if isinstance(options.get("sort"), Mapping):
                options["sort"] = list(options["sort"].items())
            cursor = collection.find(filter_, **options, **session_kwargs)
            return [dict(doc) for doc in await cursor.to_list(None)]
        if operation == "aggregate":
            cursor = await collection.aggregate(descriptor.get("pipeline") or [], **session_kwargs)
            return [dict(doc) for doc in await cursor.to_list(None)]
        if operation == "count":
            count = await collection.count_documents(filter_, **session_kwargs)
            return [{"count": count}]
        raise QueryError(f"Unsupported MongoDB operation: {operation}", statement)

    async def _explain(self, statement: str, parameters: Parameters) -> ExecutionPlan:
        descriptor = self.parse_statement(statement)
        operation = descriptor.get("operation", "find")
        name = descriptor.get("collection")
        filter_ = descriptor.get("filter") or {}
        if operation == "find":
            target = {"find": name, "filter": filter_}
        elif operation == "aggregate":
            target = {"aggregate": name, "pipeline": descriptor.get("pipeline") or [], "cursor": {}}
        elif operation == "count":
            target = {"count": name, "query": filter_}
        else:
            raise QueryError(f"Cannot explain MongoDB operation: {operation}", statement)
        try:
            raw = await self._db.command({"explain": target, "verbosity": "executionStats"})
        except PyMongoError as exc:
            raise QueryError.from_exception(exc, statement) from exc
        return normalize_plan(self.engine, dict(raw))

    # ── Schema ───────────────────────────────────────────────────────────

    async def get_schema(self, database: str | None = None) -> Schema:
        self._require_connected()
        db = self._client[database] if database else self._db
        try:
            cursor = await db.list_collections()
            infos = await cursor.to_list(None)
            tables: list[Table] = []
            views: list[Table] = []
            for info in sorted(infos, key=lambda i: i["name"]):
                if info["name"].startswith("system."):
                    continue
                if info.get("type") == "view":
                    views.append(await self._introspect_view(db, info["name"]))
                else:
                    tables.append(await self._introspect_collection(db, info["name"]))
        except PyMongoError as exc:
            raise QueryError.from_exception(exc) from exc
        logger.debug("MongoDB schema %s: %d collections, %d views", db.name, len(tables), len(views))
        return Schema(database=db.name, tables=tables, views=views)

    async def _sample(self, collection: Any) -> list[dict[str, Any]]:
        return await collection.find({}, limit=self.sample_size).to_list(None)

    async def _introspect_view(self, db: Any, name: str) -> Table:
        columns = infer_document_columns(await self._sample(db[name]))
        return Table(name=name, namespace=db.name, kind=TableKind.VIEW, columns=columns)

    async def _introspect_collection(self, db: Any, name: str) -> Table:
        collection = db[name]
        columns = infer_document_columns(await self._sample(collection))
        indexes = []
        for index_name, info in (await collection.index_information()).items():
            keys = list(info.get("key", []))
            method = next((direction for _, direction in keys if isinstance(direction, str)), None)
            indexes.append(
                Index(
                    name=index_name,
                    columns=[field for field, _ in keys],
                    unique=bool(info.get("unique")) or index_name == "_id_",
                    method=method,
                )
            )
        indexed = {field for index in indexes for field in index.columns}
        columns = [c.model_copy(update={"is_indexed": c.name in indexed}) for c in columns]
        return Table(
            name=name,
            namespace=db.name,
            columns=columns,
            primary_key=["_id"] if any(c.name == "_id" for c in columns) else None,
            indexes=indexes,
            row_count=await collection.estimated_document_count(),
        )

    # ── Transactions ─────────────────────────────────────────────────────

    async def _begin(self) -> None:
        session = await _resolve(self._client.start_session())
        try:
            await _resolve(session.start_transaction())
        except PyMongoError as exc:
            await _resolve(session.end_session())
            raise QueryError.from_exception(exc, "startTransaction") from exc
        self._session = session

    async def _commit(self) -> None:
        session, self._session = self._session, None
        try:
            await session.commit_transaction()
        except PyMongoError as exc:
            raise QueryError.from_exception(exc, "commitTransaction") from exc
        finally:
            await _resolve(session.end_session())

    async def _rollback(self) -> None:
        session, self._session = self._session, None
        try:
            await session.abort_transaction()
        except PyMongoError as exc:
            raise QueryError.from_exception(exc, "abortTransaction") from exc
        finally:
            await _resolve(session.end_session())
