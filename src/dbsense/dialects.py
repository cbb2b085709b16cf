"""
Per-engine identifier quoting.

Relational identifiers are always quoted before being spliced into
generated SQL. Embedded quote characters are doubled.
"""

from __future__ import annotations

from dbsense.models import DatabaseType

# (open, close) quote characters per engine
_QUOTES: dict[DatabaseType, tuple[str, str]] = {
    DatabaseType.POSTGRESQL: ('"', '"'),
    DatabaseType.SQLITE: ('"', '"'),
    DatabaseType.MYSQL: ("`", "`"),
    DatabaseType.MSSQL: ("[", "]"),
}


def quote_identifier(name: str, engine: DatabaseType) -> str:
    """
    Quote a single identifier for the given engine.

    Non-relational engines have no identifier syntax; names pass through.

    >>> quote_identifier('my"table', DatabaseType.POSTGRESQL)
    '"my""table"'
    >>> quote_identifier("order", DatabaseType.MSSQL)
    '[order]'
    """
    quotes = _QUOTES.get(engine)
    if quotes is None:
        return name
    open_char, close_char = quotes
    return f"{open_char}{name.replace(close_char, close_char * 2)}{close_char}"


def qualify(name: str, namespace: str | None, engine: DatabaseType) -> str:
    """Quote ``namespace.name`` (or just ``name`` when no namespace is given)."""
    if namespace:
        return f"{quote_identifier(namespace, engine)}.{quote_identifier(name, engine)}"
    return quote_identifier(name, engine)


def quote_literal(value: str) -> str:
    """Quote a string literal using standard SQL single quotes."""
    return "'" + value.replace("'", "''") + "'"
