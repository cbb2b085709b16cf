"""
Connection registry: owns every live adapter, keyed by connection id.

The registry is an ordinary object created and passed around by the
host; there is no module-level instance. It is the only owner of adapter
lifetimes: callers obtain adapters through ``get`` and never disconnect
them directly.

Usage:
    registry = ConnectionRegistry()
    connection_id = await registry.create(ConnectionConfig(type="sqlite", connection_string=":memory:"))
    adapter = registry.get(connection_id)
    ...
    await registry.disconnect_all()
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from urllib.parse import unquote, urlsplit

from dbsense.adapters import create_adapter
from dbsense.adapters.base import DatabaseAdapter
from dbsense.config import Settings, get_settings
from dbsense.exceptions import (
    ConnectionError,
    ConnectionNotFoundError,
    DuplicateConnectionError,
)
from dbsense.models import CamelModel, ConnectionConfig, ConnectionStatus, DatabaseType

logger = logging.getLogger(__name__)

DEFAULT_IDLE_TIMEOUT_SECONDS = 300.0

_SCHEME_MAP: dict[str, DatabaseType] = {
    "postgresql": DatabaseType.POSTGRESQL,
    "postgres": DatabaseType.POSTGRESQL,
    "mysql": DatabaseType.MYSQL,
    "mariadb": DatabaseType.MYSQL,
    "sqlite": DatabaseType.SQLITE,
    "mssql": DatabaseType.MSSQL,
    "sqlserver": DatabaseType.MSSQL,
    "mongodb": DatabaseType.MONGODB,
    "mongodb+srv": DatabaseType.MONGODB,
    "redis": DatabaseType.REDIS,
    "rediss": DatabaseType.REDIS,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def detect_database_type(connection_string: str) -> DatabaseType:
    """
    Map a URL scheme to an engine type.

    Driver suffixes are ignored (``postgresql+asyncpg`` -> postgresql).
    Unrecognized schemes fall back to PostgreSQL; callers should pass an
    explicit type rather than rely on that.
    """
    scheme = connection_string.split(":", 1)[0].lower() if ":" in connection_string else ""
    if scheme in _SCHEME_MAP:
        return _SCHEME_MAP[scheme]
    base = scheme.split("+", 1)[0]
    if base in _SCHEME_MAP:
        return _SCHEME_MAP[base]
    logger.warning("Unrecognized connection scheme %r, assuming postgresql", scheme)
    return DatabaseType.POSTGRESQL


def parse_connection_string(connection_string: str) -> ConnectionConfig:
    """
    Build a ConnectionConfig from a URL-shaped connection string.

    The string itself is kept as ``connection_string``; host, port,
    database and credentials are extracted for display and for adapters
    that build their own URLs.
    """
    engine = detect_database_type(connection_string)
    parts = urlsplit(connection_string)
    path = parts.path.lstrip("/") or None
    if engine == DatabaseType.SQLITE:
        # sqlite:///relative.db and sqlite:////abs/path.db
        path = parts.path[1:] if parts.path.startswith("/") else parts.path
    try:
        port = parts.port
    except ValueError:
        port = None
    return ConnectionConfig(
        type=engine,
        host=parts.hostname,
        port=port,
        database=path or None,
        username=unquote(parts.username) if parts.username else None,
        password=unquote(parts.password) if parts.password else None,
        connection_string=connection_string,
    )


@dataclass
class ConnectionHandle:
    """Registry bookkeeping for one connection id."""

    connection_id: str
    config: ConnectionConfig
    adapter: DatabaseAdapter
    status: ConnectionStatus = ConnectionStatus.CONNECTING
    created_at: datetime = field(default_factory=_utcnow)
    last_used: datetime = field(default_factory=_utcnow)

    def touch(self) -> None:
        now = _utcnow()
        if now > self.last_used:
            self.last_used = now

    def idle_seconds(self, now: datetime | None = None) -> float:
        return ((now or _utcnow()) - self.last_used).total_seconds()


class ConnectionInfo(CamelModel):
    """Public view of a registered connection."""

    id: str
    type: DatabaseType
    status: ConnectionStatus
    database: str | None = None
    host: str | None = None
    created_at: datetime
    last_used: datetime

    @classmethod
    def from_handle(cls, handle: ConnectionHandle) -> "ConnectionInfo":
        return cls(
            id=handle.connection_id,
            type=handle.config.type,
            status=handle.status,
            database=handle.config.database,
            host=handle.config.host,
            created_at=handle.created_at,
            last_used=handle.last_used,
        )


class ConnectionRegistry:
    """
    In-memory map of connection id -> adapter.

    Args:
        idle_timeout_seconds: Idle duration after which
            cleanup_idle_connections disconnects an entry.
        settings: Settings passed to adapters on construction.
        adapter_factory: Builds an unconnected adapter from a config.
    """

    def __init__(
        self,
        idle_timeout_seconds: float | None = None,
        settings: Settings | None = None,
        adapter_factory: Callable[[ConnectionConfig], DatabaseAdapter] | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.idle_timeout_seconds = idle_timeout_seconds or self.settings.idle_timeout_seconds
        self._adapter_factory = adapter_factory or (
            lambda config: create_adapter(config, self.settings)
        )
        self._connections: dict[str, ConnectionHandle] = {}

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._connections

    async def create(self, config: ConnectionConfig, connection_id: str | None = None) -> str:
        """
        Construct and connect an adapter, returning its connection id.

        Raises:
            DuplicateConnectionError: ``connection_id`` is already registered.
            ConnectionError: Invalid config, the engine refused the connection,
                or the id was disconnected before connecting finished.
        """
        connection_id = connection_id or str(uuid.uuid4())
        if connection_id in self._connections:
            raise DuplicateConnectionError(connection_id)

        adapter = self._adapter_factory(config)
        # Reserve the id before suspending so a concurrent create cannot claim it
        handle = ConnectionHandle(connection_id=connection_id, config=config, adapter=adapter)
        self._connections[connection_id] = handle
        try:
            await adapter.connect()
        except ConnectionError:
            del self._connections[connection_id]
            raise
        except Exception as exc:
            del self._connections[connection_id]
            raise ConnectionError(
                f"Failed to connect to {config.type.value}: {exc}", engine=config.type.value
            ) from exc

        if self._connections.get(connection_id) is not handle:
            # Removed by a concurrent disconnect while connecting
            try:
                await adapter.disconnect()
            except Exception as exc:
                logger.warning("Error disconnecting orphaned adapter %s: %s", connection_id, exc)
            raise ConnectionError(
                f"Connection {connection_id} was closed while connecting", engine=config.type.value
            )

        handle.status = ConnectionStatus.CONNECTED
        logger.info("Registered %s connection %s", config.type.value, connection_id)
        return connection_id

    def get(self, connection_id: str) -> DatabaseAdapter | None:
        """Return the connected adapter (or None) and mark the entry as used."""
        handle = self._connections.get(connection_id)
        if handle is None or handle.status != ConnectionStatus.CONNECTED:
            return None
        handle.touch()
        return handle.adapter

    def require(self, connection_id: str) -> DatabaseAdapter:
        """Like get(), but raise ConnectionNotFoundError for unknown ids."""
        adapter = self.get(connection_id)
        if adapter is None:
            raise ConnectionNotFoundError(connection_id)
        return adapter

    def info(self, connection_id: str) -> ConnectionInfo:
        handle = self._connections.get(connection_id)
        if handle is None:
            raise ConnectionNotFoundError(connection_id)
        return ConnectionInfo.from_handle(handle)

    def list_connections(self) -> list[ConnectionInfo]:
        return [ConnectionInfo.from_handle(handle) for handle in self._connections.values()]

    async def disconnect(self, connection_id: str) -> None:
        """
        Disconnect and remove one entry.

        The entry is removed even if the adapter's disconnect fails; the
        failure is then re-raised.

        Raises:
            ConnectionNotFoundError: Unknown connection id.
        """
        handle = self._connections.pop(connection_id, None)
        if handle is None:
            raise ConnectionNotFoundError(connection_id)
        try:
            await handle.adapter.disconnect()
        except Exception:
            handle.status = ConnectionStatus.ERROR
            raise
        handle.status = ConnectionStatus.DISCONNECTED
        logger.info("Disconnected connection %s", connection_id)

    async def disconnect_all(self) -> None:
        """Disconnect every entry concurrently; individual failures are logged, not raised."""
        ids = list(self._connections)
        results = await asyncio.gather(
            *(self.disconnect(connection_id) for connection_id in ids),
            return_exceptions=True,
        )
        for connection_id, result in zip(ids, results):
            if isinstance(result, BaseException):
                logger.warning("Error disconnecting %s: %s", connection_id, result)

    async def cleanup_idle_connections(self, now: datetime | None = None) -> list[str]:
        """
        Disconnect entries idle longer than the configured timeout.

        Returns the ids that were removed. Disconnect errors are logged
        and do not stop the sweep.
        """
        now = now or _utcnow()
        idle = [
            connection_id
            for connection_id, handle in self._connections.items()
            if handle.status == ConnectionStatus.CONNECTED
            and handle.idle_seconds(now) > self.idle_timeout_seconds
        ]
        for connection_id in idle:
            logger.info("Closing idle connection %s", connection_id)
            try:
                await self.disconnect(connection_id)
            except Exception as exc:
                logger.warning("Error closing idle connection %s: %s", connection_id, exc)
        return idle

    async def test_connection(self, config: ConnectionConfig) -> bool:
        """Connect a throwaway adapter, run its health check, and always disconnect it."""
        adapter = self._adapter_factory(config)
        try:
            await adapter.connect()
            return await adapter.health_check()
        except Exception as exc:
            logger.info("Connection test for %s failed: %s", config.type.value, exc)
            return False
        finally:
            try:
                await adapter.disconnect()
            except Exception as exc:
                logger.warning("Error disconnecting test adapter: %s", exc)

