"""
Engine adapters behind one contract.

Usage:
    from dbsense.adapters import create_adapter

    adapter = create_adapter(ConnectionConfig(type="postgresql", host="localhost"))
    await adapter.connect()
"""

from __future__ import annotations

from dbsense.adapters.base import DatabaseAdapter
from dbsense.adapters.mongodb import MongoDBAdapter
from dbsense.adapters.mssql import MSSQLAdapter
from dbsense.adapters.mysql import MySQLAdapter
from dbsense.adapters.postgresql import PostgreSQLAdapter
from dbsense.adapters.redis import RedisAdapter
from dbsense.adapters.sqlite import SQLiteAdapter
from dbsense.config import Settings, get_settings
from dbsense.models import ConnectionConfig, DatabaseType

ADAPTERS: dict[DatabaseType, type[DatabaseAdapter]] = {
    DatabaseType.POSTGRESQL: PostgreSQLAdapter,
    DatabaseType.MYSQL: MySQLAdapter,
    DatabaseType.SQLITE: SQLiteAdapter,
    DatabaseType.MSSQL: MSSQLAdapter,
    DatabaseType.MONGODB: MongoDBAdapter,
    DatabaseType.REDIS: RedisAdapter,
}


def create_adapter(config: ConnectionConfig, settings: Settings | None = None) -> DatabaseAdapter:
    """Construct the adapter for ``config.type``. Does not connect."""
    settings = settings or get_settings()
    config = config.with_defaults(settings.query_timeout_ms, settings.pool_size)
    if config.type == DatabaseType.MONGODB:
        return MongoDBAdapter(config, sample_size=settings.schema_sample_size)
    if config.type == DatabaseType.REDIS:
        return RedisAdapter(config, key_scan_limit=settings.key_scan_limit)
    return ADAPTERS[config.type](config)


__all__ = [
    "ADAPTERS",
    "DatabaseAdapter",
    "MSSQLAdapter",
    "MongoDBAdapter",
    "MySQLAdapter",
    "PostgreSQLAdapter",
    "RedisAdapter",
    "SQLiteAdapter",
    "create_adapter",
]
