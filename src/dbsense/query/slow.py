"""
Slow-query sources for detect_slow_queries.

Finding slow queries needs engine-native statistics (a slow log or a
statistics view), so the analyzer depends only on the SlowQuerySource
protocol. A pg_stat_statements source is provided for PostgreSQL.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

from dbsense.models import CamelModel

if TYPE_CHECKING:
    from dbsense.adapters.base import DatabaseAdapter

logger = logging.getLogger(__name__)


class SlowQuery(CamelModel):
    query: str
    calls: int = 0
    mean_time_ms: float = 0.0
    total_time_ms: float = 0.0
    rows: int = 0


class SlowQuerySource(Protocol):
    async def fetch(self, threshold_ms: float, limit: int = 20) -> list[SlowQuery]:
        """Return queries whose mean execution time exceeds ``threshold_ms``."""
        ...


class PgStatStatementsSource:
    """Reads ``pg_stat_statements`` (the extension must be installed)."""

    SQL = """
        SELECT query, calls, mean_exec_time AS mean_time_ms,
               total_exec_time AS total_time_ms, rows
        FROM pg_stat_statements
        WHERE mean_exec_time > :threshold
        ORDER BY mean_exec_time DESC
        LIMIT :limit
    """

    def __init__(self, adapter: DatabaseAdapter) -> None:
        self.adapter = adapter

    async def fetch(self, threshold_ms: float, limit: int = 20) -> list[SlowQuery]:
        params = {"threshold": float(threshold_ms), "limit": int(limit)}
        result = await self.adapter.execute_query(self.SQL, params)
        return [
            SlowQuery(
                query=row["query"],
                calls=int(row["calls"] or 0),
                mean_time_ms=float(row["mean_time_ms"] or 0),
                total_time_ms=float(row["total_time_ms"] or 0),
                rows=int(row["rows"] or 0),
            )
            for row in result.rows
        ]
