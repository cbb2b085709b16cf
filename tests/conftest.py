"""Shared fixtures: a live in-memory SQLite adapter and fake drivers."""

from __future__ import annotations

import asyncio
import os
from typing import Any

import pytest

from dbsense.adapters.base import DatabaseAdapter
from dbsense.adapters.sqlite import SQLiteAdapter
from dbsense.config import Settings, reset_settings
from dbsense.models import Capabilities, ConnectionConfig, DatabaseType, QueryResult
from dbsense.schema.models import Schema


@pytest.fixture(autouse=True)
def clean_settings(monkeypatch):
    """Isolate every test from DBSENSE_* variables of the calling shell."""
    for key in list(os.environ):
        if key.startswith("DBSENSE_"):
            monkeypatch.delenv(key)
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def settings() -> Settings:
    return Settings()


@pytest.fixture
def memory_config() -> ConnectionConfig:
    return ConnectionConfig(type=DatabaseType.SQLITE, connection_string=":memory:")


@pytest.fixture
async def sqlite_adapter(memory_config):
    adapter = SQLiteAdapter(memory_config)
    await adapter.connect()
    yield adapter
    await adapter.disconnect()


async def run_script(adapter: DatabaseAdapter, *statements: str) -> None:
    for statement in statements:
        await adapter.execute_query(statement)


class FakeAdapter(DatabaseAdapter):
    """Adapter double for registry tests. Records lifecycle calls."""

    engine = DatabaseType.POSTGRESQL
    capabilities = Capabilities()

    def __init__(
        self,
        config: ConnectionConfig,
        fail_connect: bool = False,
        fail_disconnect: bool = False,
        connect_gate: asyncio.Event | None = None,
    ) -> None:
        super().__init__(config)
        self.fail_connect = fail_connect
        self.fail_disconnect = fail_disconnect
        self.connect_gate = connect_gate
        self.disconnect_calls = 0

    async def connect(self) -> None:
        if self.connect_gate is not None:
            await self.connect_gate.wait()
        if self.fail_connect:
            raise OSError("connection refused")
        self._connected = True

    async def disconnect(self) -> None:
        self.disconnect_calls += 1
        self._connected = False
        if self.fail_disconnect:
            raise OSError("socket already closed")

    async def execute_query(self, statement: str, parameters: Any = None) -> QueryResult:
        self._require_connected()
        return QueryResult(rows=[{"one": 1}], row_count=1)

    async def get_schema(self, database: str | None = None) -> Schema:
        return Schema(database=database or "fake")
