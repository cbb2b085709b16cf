"""
Lexical SQL heuristics.

Everything here works on the statement text with sqlparse tokenizing and
regular expressions; there is no full SQL grammar. The Query Analyzer
only talks to this module through the functions below, so it can be
swapped for a real parser later.

Known gap: predicate columns are only recognized when written qualified
(``table.column`` or ``alias.column``). Unqualified predicates such as
``WHERE email = ?`` yield no index candidates.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

import sqlparse

_KEYWORDS = {
    "where", "on", "join", "inner", "left", "right", "full", "outer", "cross",
    "group", "order", "limit", "set", "using", "natural", "as", "union", "having",
    "select", "values", "lateral",
}

_IDENT = r'(?:"[^"]+"|`[^`]+`|\[[^\]]+\]|[A-Za-z_][\w$]*)'
_QUALIFIED = rf"{_IDENT}(?:\s*\.\s*{_IDENT})*"

_TABLE_REF = re.compile(
    rf"\b(?:FROM|JOIN|UPDATE)\s+(?P<table>{_QUALIFIED})(?:\s+(?:AS\s+)?(?P<alias>{_IDENT}))?",
    re.IGNORECASE,
)
_CLAUSE = re.compile(
    r"\b(?:WHERE|ON)\b(?P<body>.*?)(?=\bGROUP\s+BY\b|\bORDER\s+BY\b|\bLIMIT\b|\bHAVING\b"
    r"|\bUNION\b|\b(?:INNER\s+|LEFT\s+|RIGHT\s+|FULL\s+|CROSS\s+)?(?:OUTER\s+)?JOIN\b|\bWHERE\b|$)",
    re.IGNORECASE | re.DOTALL,
)
_COLUMN_REF = rf"(?<![\w$.])(?:{_IDENT}\s*\.\s*)?(?P<qualifier>{_IDENT})\s*\.\s*(?P<column>{_IDENT})"
_COMPARISON = r"(?:=|<>|!=|<=|>=|<|>|\bIN\b|\bLIKE\b|\bBETWEEN\b)"
# column on the left of a comparison, and on the right of one (join keys)
_PREDICATE_LEFT = re.compile(rf"{_COLUMN_REF}\s*{_COMPARISON}", re.IGNORECASE)
_PREDICATE_RIGHT = re.compile(rf"(?:=|<>|!=|<=|>=|<|>)\s*{_COLUMN_REF}", re.IGNORECASE)
_JOIN = re.compile(r"\bJOIN\b", re.IGNORECASE)
_SELECT = re.compile(r"\bSELECT\b", re.IGNORECASE)
_SELECT_STAR = re.compile(r"\bSELECT\s+(?:DISTINCT\s+)?\*", re.IGNORECASE)
_LIMITING = re.compile(r"\bLIMIT\b|\bTOP\s*\(?\s*\d|\bFETCH\s+(?:FIRST|NEXT)\b", re.IGNORECASE)
_LEADING_WILDCARD = re.compile(r"\bLIKE\s+N?'%", re.IGNORECASE)
_FUNCTION_ON_COLUMN = re.compile(
    r"\b(?:WHERE|AND|OR)\s+(?!NOT\b|EXISTS\b)(?P<func>[A-Za-z_]\w*)\s*\(\s*[A-Za-z_\"`\[]",
    re.IGNORECASE,
)
_OR = re.compile(r"\bOR\b", re.IGNORECASE)
_DANGEROUS = re.compile(r"\b(DROP|TRUNCATE|ALTER|GRANT|REVOKE)\b", re.IGNORECASE)
_COMMENT = re.compile(r"--|/\*")

MAX_QUERY_LENGTH = 10000
MAX_JOINS = 5
MAX_SELECTS = 5
OR_CHAIN_LENGTH = 3


@dataclass(frozen=True)
class TableReference:
    table: str
    alias: str | None = None


def unquote(identifier: str) -> str:
    identifier = identifier.strip()
    if identifier[:1] in ('"', "`", "[") and len(identifier) >= 2:
        return identifier[1:-1]
    return identifier


def strip_comments(sql: str) -> str:
    return sqlparse.format(sql, strip_comments=True).strip()


def statement_type(sql: str) -> str:
    """Upper-case statement kind (SELECT, UPDATE, DELETE, INSERT...) or UNKNOWN."""
    statements = sqlparse.parse(sql)
    if not statements:
        return "UNKNOWN"
    return statements[0].get_type()


def table_references(sql: str) -> list[TableReference]:
    """Tables named after FROM, JOIN and UPDATE, with their aliases."""
    refs: list[TableReference] = []
    for match in _TABLE_REF.finditer(strip_comments(sql)):
        raw = match.group("table")
        name = unquote(re.split(r"\s*\.\s*", raw)[-1])
        if name.lower() in _KEYWORDS:
            continue
        alias = match.group("alias")
        if alias and unquote(alias).lower() in _KEYWORDS:
            alias = None
        refs.append(TableReference(table=name, alias=unquote(alias) if alias else None))
    return refs


def predicate_columns(sql: str) -> dict[str, list[str]]:
    """
    Map table -> columns compared in WHERE/ON predicates.

    Qualifiers are resolved through aliases from the FROM/JOIN list;
    unknown qualifiers are taken as table names.
    """
    text = strip_comments(sql)
    aliases: dict[str, str] = {}
    for ref in table_references(text):
        aliases[ref.table.lower()] = ref.table
        if ref.alias:
            aliases[ref.alias.lower()] = ref.table

    columns: dict[str, list[str]] = {}
    for clause in _CLAUSE.finditer(text):
        body = clause.group("body")
        matches = [*_PREDICATE_LEFT.finditer(body), *_PREDICATE_RIGHT.finditer(body)]
        for match in sorted(matches, key=lambda m: m.start("qualifier")):
            qualifier = unquote(match.group("qualifier"))
            table = aliases.get(qualifier.lower(), qualifier)
            column = unquote(match.group("column"))
            bucket = columns.setdefault(table, [])
            if column not in bucket:
                bucket.append(column)
    return columns


def select_list(sql: str) -> str:
    """Text between the first SELECT and its top-level FROM."""
    text = strip_comments(sql)
    match = _SELECT.search(text)
    if not match:
        return ""
    depth = 0
    start = match.end()
    for i in range(start, len(text)):
        char = text[i]
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        elif (
            depth == 0
            and text[i:i + 4].upper() == "FROM"
            and not (text[i - 1].isalnum() or text[i - 1] == "_")
            and not (text[i + 4:i + 5].isalnum() or text[i + 4:i + 5] == "_")
        ):
            return text[start:i]
    return text[start:]


# ── Checks ───────────────────────────────────────────────────────────────


def has_comments(sql: str) -> bool:
    return bool(_COMMENT.search(sql))


def dangerous_keywords(sql: str) -> list[str]:
    return sorted({m.group(1).upper() for m in _DANGEROUS.finditer(strip_comments(sql))})


def selects_star(sql: str) -> bool:
    return bool(_SELECT_STAR.search(strip_comments(sql)))


def missing_where(sql: str) -> bool:
    """UPDATE or DELETE with no WHERE clause affects every row."""
    text = strip_comments(sql)
    return statement_type(text) in ("UPDATE", "DELETE") and not re.search(
        r"\bWHERE\b", text, re.IGNORECASE
    )


def join_count(sql: str) -> int:
    return len(_JOIN.findall(strip_comments(sql)))


def select_count(sql: str) -> int:
    return len(_SELECT.findall(strip_comments(sql)))


def missing_limit(sql: str) -> bool:
    text = strip_comments(sql)
    return statement_type(text) == "SELECT" and not _LIMITING.search(text)


def leading_wildcard_like(sql: str) -> bool:
    return bool(_LEADING_WILDCARD.search(strip_comments(sql)))


def function_wrapped_columns(sql: str) -> list[str]:
    return [m.group("func") for m in _FUNCTION_ON_COLUMN.finditer(strip_comments(sql))]


def or_chain(sql: str) -> bool:
    text = strip_comments(sql)
    where = re.search(r"\bWHERE\b(.*)", text, re.IGNORECASE | re.DOTALL)
    return bool(where) and len(_OR.findall(where.group(1))) >= OR_CHAIN_LENGTH - 1


def correlated_subquery_in_select(sql: str) -> bool:
    return bool(re.search(r"\(\s*SELECT\b", select_list(sql), re.IGNORECASE))
