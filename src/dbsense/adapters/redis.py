"""
Redis adapter (``redis.asyncio``).

Statements are command lines such as ``GET user:1`` or ``HGETALL user:1``,
split with shell quoting rules; positional parameters are appended as
extra arguments. Redis has no catalog, so get_schema groups a bounded
scan of keys by their runtime type into synthetic ``keys_<type>`` tables.
Transactions queue commands in a MULTI/EXEC pipeline.
"""

from __future__ import annotations

import inspect
import logging
import shlex
import time
from collections.abc import Callable, Mapping
from typing import Any
from urllib.parse import quote, urlsplit, urlunsplit

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from dbsense.adapters.base import DatabaseAdapter, Parameters
from dbsense.exceptions import ConnectionError, QueryError, SchemaNotFoundError
from dbsense.models import Capabilities, ConnectionConfig, DatabaseType, QueryResult
from dbsense.schema.models import Column, Schema, Table

logger = logging.getLogger(__name__)

DEFAULT_KEY_SCAN_LIMIT = 1000


def result_rows(result: Any) -> list[dict[str, Any]]:
    """Shape a raw command reply into rows."""
    if result is None:
        return []
    if isinstance(result, Mapping):
        return [dict(result)]
    if isinstance(result, (list, tuple, set)):
        return [{"value": item} for item in result]
    return [{"value": result}]


class RedisAdapter(DatabaseAdapter):
    engine = DatabaseType.REDIS
    health_check_statement = "PING"
    capabilities = Capabilities(supports_transactions=True, supports_backup=True)

    def __init__(
        self,
        config: ConnectionConfig,
        key_scan_limit: int = DEFAULT_KEY_SCAN_LIMIT,
        client_factory: Callable[..., Any] = aioredis.from_url,
    ) -> None:
        super().__init__(config)
        self.key_scan_limit = key_scan_limit
        self._client_factory = client_factory
        self._client: Any = None
        self._pipeline: Any = None

    def build_url(self) -> str:
        if self.config.connection_string:
            return self.config.connection_string
        credentials = ""
        if self.config.password:
            credentials = f"{quote(self.config.username or '', safe='')}:{quote(self.config.password, safe='')}@"
        port = self.config.port or 6379
        return f"redis://{credentials}{self.config.host}:{port}/{self.config.database or 0}"

    @property
    def db_index(self) -> int:
        """Logical database the adapter is connected to."""
        path = urlsplit(self.build_url()).path.lstrip("/")
        return int(path) if path.isdigit() else 0

    def _open_client(self, url: str) -> Any:
        return self._client_factory(
            url,
            decode_responses=True,
            socket_connect_timeout=self.timeout_seconds,
            socket_timeout=self.timeout_seconds,
            max_connections=self.pool_size,
            **self.config.options,
        )

    async def connect(self) -> None:
        self.validate_config()
        client = self._open_client(self.build_url())
        try:
            await client.ping()
        except (RedisError, OSError) as exc:
            await client.aclose()
            raise ConnectionError(
                f"Failed to connect to redis: {exc}", engine=self.engine.value
            ) from exc
        self._client = client
        self._connected = True
        logger.info("Connected to redis")

    async def disconnect(self) -> None:
        try:
            if self._pipeline is not None:
                pipeline, self._pipeline = self._pipeline, None
                self._in_transaction = False
                try:
                    await pipeline.reset()
                except Exception as exc:
                    logger.warning("Pipeline reset on disconnect failed for redis: %s", exc)
        finally:
            self._connected = False
            if self._client is not None:
                client, self._client = self._client, None
                await client.aclose()
                logger.info("Disconnected from redis")

    # ── Statements ───────────────────────────────────────────────────────

    @staticmethod
    def parse_command(statement: str, parameters: Parameters = None) -> list[str]:
        try:
            parts = shlex.split(statement)
        except ValueError as exc:
            raise QueryError(f"Invalid Redis command: {exc}", statement) from exc
        if isinstance(parameters, Mapping):
            raise QueryError("Redis commands take positional parameters only", statement)
        parts.extend(str(p) for p in parameters or [])
        if not parts:
            raise QueryError("Empty Redis command", statement)
        parts[0] = parts[0].upper()
        return parts

    async def execute_query(self, statement: str, parameters: Parameters = None) -> QueryResult:
        self._require_connected()
        parts = self.parse_command(statement, parameters)
        start = time.perf_counter()
        if self._pipeline is not None:
            queued = self._pipeline.execute_command(*parts)
            if inspect.isawaitable(queued):
                await queued
            rows = [{"queued": " ".join(parts)}]
        else:
            try:
                rows = result_rows(await self._client.execute_command(*parts))
            except RedisError as exc:
                raise QueryError.from_exception(exc, statement) from exc
        return QueryResult(rows=rows, row_count=len(rows), execution_time_ms=self._elapsed_ms(start))

    # ── Schema ───────────────────────────────────────────────────────────

    async def get_schema(self, database: str | None = None) -> Schema:
        """
        Group keys of a logical database by type.

        ``database`` is a database index; other indexes are scanned
        through a short-lived client bound to that index.

        Raises:
            SchemaNotFoundError: ``database`` is not a database index.
        """
        self._require_connected()
        index = self.db_index
        if database is not None:
            if not database.isdigit():
                raise SchemaNotFoundError(database)
            index = int(database)

        if index == self.db_index:
            counts = await self._count_key_types(self._client)
        else:
            parts = urlsplit(self.build_url())
            client = self._open_client(urlunsplit(parts._replace(path=f"/{index}")))
            try:
                counts = await self._count_key_types(client)
            finally:
                await client.aclose()

        tables = [
            Table(
                name=f"keys_{key_type}",
                columns=[
                    Column(name="key", type="string", nullable=False, is_primary_key=True, is_unique=True),
                    Column(name="value", type=key_type, nullable=True),
                ],
                primary_key=["key"],
                row_count=count,
            )
            for key_type, count in sorted(counts.items())
        ]
        logger.debug("Redis schema for db %d: %d types", index, len(tables))
        return Schema(database=str(index), tables=tables)

    async def _count_key_types(self, client: Any) -> dict[str, int]:
        counts: dict[str, int] = {}
        scanned = 0
        try:
            async for key in client.scan_iter(count=min(self.key_scan_limit, 1000)):
                if scanned >= self.key_scan_limit:
                    break
                key_type = await client.type(key)
                counts[key_type] = counts.get(key_type, 0) + 1
                scanned += 1
        except RedisError as exc:
            raise QueryError.from_exception(exc, "SCAN") from exc
        return counts

    # ── Transactions ─────────────────────────────────────────────────────

    async def _begin(self) -> None:
        self._pipeline = self._client.pipeline(transaction=True)

    async def _commit(self) -> None:
        pipeline, self._pipeline = self._pipeline, None
        try:
            await pipeline.execute()
        except RedisError as exc:
            raise QueryError.from_exception(exc, "EXEC") from exc

    async def _rollback(self) -> None:
        pipeline, self._pipeline = self._pipeline, None
        await pipeline.reset()
