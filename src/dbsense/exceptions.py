"""
Package-level exception hierarchy for DBSense.

All exceptions inherit from DBSenseError, enabling:
- Catching all DBSense errors with a single except clause
- Context fields for debugging (engine, connection_id, statement, etc.)
- Structured serialization via to_dict() for JSON error responses

Hierarchy:
    DBSenseError
    ├── ConnectionError            – Bad config or refused connection
    │   ├── DuplicateConnectionError – Connection id already registered
    │   └── ConnectionNotFoundError  – Unknown connection id
    ├── QueryError                 – Engine rejected or failed a statement
    ├── TransactionError           – Transaction state misuse
    ├── UnsupportedOperationError  – Capability-gated operation not available
    ├── SchemaNotFoundError        – Referenced table or namespace absent
    ├── ConfigurationError         – Invalid DBSENSE_* settings
    └── ToolError                  – Failure inside a tool handler

``ConnectionError`` deliberately shares its name with the builtin; import
it from this module (``from dbsense.exceptions import ConnectionError``)
or reference it as ``exceptions.ConnectionError``.
"""

from __future__ import annotations

from typing import Any


class DBSenseError(Exception):
    """
    Base exception for all DBSense errors.

    Attributes:
        message: Human-readable error description.
        details: Optional structured context (native diagnostics, etc.).
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON error responses."""
        result: dict[str, Any] = {
            "error_type": type(self).__name__,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


# ── Connection Errors ────────────────────────────────────────────────────


class ConnectionError(DBSenseError):  # noqa: A001
    """
    Invalid connection configuration or engine-level refusal.

    Attributes:
        engine: Engine type the connection was aimed at, when known.
    """

    def __init__(
        self,
        message: str,
        engine: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.engine = engine
        super().__init__(message, details)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.engine:
            result["engine"] = self.engine
        return result


class DuplicateConnectionError(ConnectionError):
    """A caller-supplied connection id is already registered."""

    def __init__(self, connection_id: str) -> None:
        self.connection_id = connection_id
        super().__init__(f"Connection with ID {connection_id} already exists")

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["connection_id"] = self.connection_id
        return result


class ConnectionNotFoundError(ConnectionError):
    """No live connection is registered under the given id."""

    def __init__(self, connection_id: str) -> None:
        self.connection_id = connection_id
        super().__init__(f"Connection {connection_id} not found")

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["connection_id"] = self.connection_id
        return result


# ── Statement Errors ─────────────────────────────────────────────────────


class QueryError(DBSenseError):
    """
    The engine rejected or failed a statement.

    The engine's own message is kept verbatim in ``message``; the native
    diagnostic (error code, SQLSTATE, driver class) goes in ``native_error``.

    Attributes:
        statement: The statement that failed (may be None for internal probes).
        native_error: Driver-specific diagnostic payload.
    """

    def __init__(
        self,
        message: str,
        statement: str | None = None,
        native_error: dict[str, Any] | None = None,
    ) -> None:
        self.statement = statement
        self.native_error = native_error or {}
        super().__init__(message, details=self.native_error)

    @classmethod
    def from_exception(cls, exc: BaseException, statement: str | None = None) -> "QueryError":
        """Build a QueryError that preserves a driver exception's message."""
        native: dict[str, Any] = {"driver_error": type(exc).__name__}
        for attr in ("sqlstate", "pgcode", "code", "errno"):
            value = getattr(exc, attr, None)
            if value is not None:
                native[attr] = value
        orig = getattr(exc, "orig", None)
        if orig is not None:
            native["driver_error"] = type(orig).__name__
            message = str(orig)
        else:
            message = str(exc) or type(exc).__name__
        return cls(message, statement=statement, native_error=native)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.statement:
            result["statement"] = self.statement
        return result


class TransactionError(DBSenseError):
    """Transaction begun twice, or finished when none is open."""
    pass


# ── Capability and Lookup Errors ─────────────────────────────────────────


class UnsupportedOperationError(DBSenseError):
    """
    A capability-gated operation was invoked on an adapter lacking it.

    Attributes:
        operation: Name of the operation that was attempted.
        engine: Engine type of the adapter.
    """

    def __init__(self, operation: str, engine: str | None = None) -> None:
        self.operation = operation
        self.engine = engine
        suffix = f" by {engine}" if engine else ""
        super().__init__(f"Operation '{operation}' is not supported{suffix}")

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["operation"] = self.operation
        if self.engine:
            result["engine"] = self.engine
        return result


class SchemaNotFoundError(DBSenseError):
    """
    A referenced table, collection or namespace does not exist.

    Attributes:
        object_name: The table/schema name that was looked up.
        namespace: Namespace qualifier used in the lookup, if any.
    """

    def __init__(self, object_name: str, namespace: str | None = None) -> None:
        self.object_name = object_name
        self.namespace = namespace
        qualified = f"{namespace}.{object_name}" if namespace else object_name
        super().__init__(f"Table {qualified} not found")


class ConfigurationError(DBSenseError):
    """
    Invalid configuration value.

    Attributes:
        config_key: The setting that failed validation.
    """

    def __init__(self, message: str, config_key: str | None = None) -> None:
        self.config_key = config_key
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.config_key:
            result["config_key"] = self.config_key
        return result


class ToolError(DBSenseError):
    """
    A tool handler failed.

    Wraps the underlying error without losing its message; the original
    exception is available on ``__cause__`` and in ``original_error``.
    """

    def __init__(
        self,
        tool: str,
        message: str,
        original_error: BaseException | None = None,
    ) -> None:
        self.tool = tool
        self.original_error = original_error
        details = None
        if isinstance(original_error, DBSenseError):
            details = original_error.to_dict()
        super().__init__(f"{tool} failed: {message}", details)
