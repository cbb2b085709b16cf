"""DBSense - Multi-engine database introspection, migration and query analysis."""

__version__ = "0.3.0"
__license__ = "MIT"

# Exception hierarchy
from dbsense.exceptions import (
    ConfigurationError,
    ConnectionError,
    ConnectionNotFoundError,
    DBSenseError,
    DuplicateConnectionError,
    QueryError,
    SchemaNotFoundError,
    ToolError,
    TransactionError,
    UnsupportedOperationError,
)

from dbsense.config import Settings, get_settings
from dbsense.models import (
    Capabilities,
    ConnectionConfig,
    DatabaseType,
    ExecutionPlan,
    PlanOperation,
    QueryResult,
    Severity,
)
from dbsense.adapters import DatabaseAdapter, create_adapter
from dbsense.registry import ConnectionRegistry, parse_connection_string
from dbsense.schema.models import Column, ForeignKey, Index, Schema, Table
from dbsense.schema.migration import Migration, MigrationSynthesizer, compute_diff
from dbsense.query.analyzer import QueryAnalyzer
from dbsense.data.analyzer import DataAnalyzer
from dbsense.service import ToolService

__all__ = [
    "__version__",
    # Exceptions
    "ConfigurationError",
    "ConnectionError",
    "ConnectionNotFoundError",
    "DBSenseError",
    "DuplicateConnectionError",
    "QueryError",
    "SchemaNotFoundError",
    "ToolError",
    "TransactionError",
    "UnsupportedOperationError",
    # Config
    "Settings",
    "get_settings",
    # Core models
    "Capabilities",
    "ConnectionConfig",
    "DatabaseType",
    "ExecutionPlan",
    "PlanOperation",
    "QueryResult",
    "Severity",
    # Connections
    "ConnectionRegistry",
    "DatabaseAdapter",
    "create_adapter",
    "parse_connection_string",
    # Schema
    "Column",
    "ForeignKey",
    "Index",
    "Migration",
    "MigrationSynthesizer",
    "Schema",
    "Table",
    "compute_diff",
    # Analysis
    "DataAnalyzer",
    "QueryAnalyzer",
    "ToolService",
]
