"""
Tests for data profiling: statistics, quality issues and duplicates.

Profiling runs against a live in-memory SQLite database; the scoring
helpers are checked directly.
"""

import pytest

from conftest import run_script
from dbsense.adapters.mongodb import MongoDBAdapter
from dbsense.data.analyzer import (
    DataAnalyzer,
    DataIssueKind,
    DataQualityIssue,
    duplicate_severity,
    quality_score,
)
from dbsense.exceptions import QueryError, SchemaNotFoundError, UnsupportedOperationError
from dbsense.models import ConnectionConfig, DatabaseType, Severity


def numbers(table, column, count, nulls):
    """INSERT ... SELECT that writes ``count`` rows, the first ``nulls`` of them NULL."""
    return (
        f"WITH RECURSIVE n(i) AS (SELECT 1 UNION ALL SELECT i + 1 FROM n WHERE i < {count}) "
        f"INSERT INTO {table} ({column}) SELECT CASE WHEN i <= {nulls} THEN NULL ELSE i END FROM n"
    )


@pytest.fixture
async def users(sqlite_adapter):
    await run_script(
        sqlite_adapter,
        "CREATE TABLE users (id INTEGER PRIMARY KEY, age INTEGER)",
        "INSERT INTO users (age) VALUES (30), (30), (30), (40)",
    )
    return DataAnalyzer(sqlite_adapter)


class TestScoring:
    def test_no_issues_is_perfect(self):
        assert quality_score([], 100) == 100.0

    def test_weighted_by_affected_fraction(self):
        issues = [
            DataQualityIssue(kind=DataIssueKind.MISSING, severity=Severity.MEDIUM, description="", affected_rows=50),
            DataQualityIssue(kind=DataIssueKind.DUPLICATE, severity=Severity.LOW, description="", affected_rows=10),
        ]
        assert quality_score(issues, 100) == 92.0

    def test_clamped_at_zero(self):
        issues = [
            DataQualityIssue(kind=DataIssueKind.MISSING, severity=Severity.CRITICAL, description="", affected_rows=100)
            for _ in range(3)
        ]
        assert quality_score(issues, 100) == 0.0

    @pytest.mark.parametrize(
        "pct,expected",
        [(0.5, Severity.LOW), (5.0, Severity.LOW), (7.5, Severity.MEDIUM), (10.0, Severity.MEDIUM), (40.0, Severity.HIGH)],
    )
    def test_duplicate_severity(self, pct, expected):
        assert duplicate_severity(pct) == expected


class TestTableStats:
    async def test_stats(self, users):
        stats = await users.get_table_stats("users")
        assert stats.row_count == 4
        assert stats.column_count == 2
        assert stats.namespace == "main"
        age = stats.column_stats[1]
        assert age.column == "age"
        assert (age.null_count, age.distinct_count) == (0, 2)
        assert age.distinct_percentage == 50.0
        assert (age.min_value, age.max_value) == (30, 40)
        assert [(v.value, v.count) for v in age.top_values] == [(30, 3), (40, 1)]

    async def test_missing_table(self, users):
        with pytest.raises(SchemaNotFoundError):
            await users.get_table_stats("accounts")

    async def test_rejects_non_relational(self):
        adapter = MongoDBAdapter(ConnectionConfig(type=DatabaseType.MONGODB, host="mongo"))
        with pytest.raises(UnsupportedOperationError):
            DataAnalyzer(adapter)


class TestDuplicates:
    async def test_default_columns_skip_primary_key(self, users):
        report = await users.find_duplicates("users")
        assert report.columns == ["age"]
        assert [(g.values, g.count) for g in report.groups] == [({"age": 30}, 3)]
        assert report.duplicate_count == 3
        assert report.total_rows == 4

    async def test_explicit_columns(self, users):
        report = await users.find_duplicates("users", ["id"])
        assert report.groups == []
        assert report.duplicate_count == 0

    async def test_unknown_column(self, users):
        with pytest.raises(QueryError, match="Unknown column"):
            await users.find_duplicates("users", ["email"])

    async def test_group_limit(self, sqlite_adapter):
        await run_script(
            sqlite_adapter,
            "CREATE TABLE tags (id INTEGER PRIMARY KEY, name TEXT)",
            "INSERT INTO tags (name) VALUES ('a'), ('a'), ('a'), ('b'), ('b'), ('c')",
        )
        report = await DataAnalyzer(sqlite_adapter).find_duplicates("tags", limit=1)
        assert [(g.values["name"], g.count) for g in report.groups] == [("a", 3)]


class TestDataQuality:
    async def test_duplicates_reported(self, users):
        report = await users.analyze_data_quality("users")
        [issue] = report.issues
        assert issue.kind == DataIssueKind.DUPLICATE
        assert issue.severity == Severity.HIGH
        assert issue.affected_rows == 3
        assert issue.examples == [{"age": 30}]
        assert report.overall_score == 77.5

    async def test_mostly_null_column(self, sqlite_adapter):
        await run_script(
            sqlite_adapter,
            "CREATE TABLE readings (id INTEGER PRIMARY KEY, value INTEGER)",
            numbers("readings", "value", 100, 60),
        )
        report = await DataAnalyzer(sqlite_adapter).analyze_data_quality("readings")
        missing = [i for i in report.issues if i.kind == DataIssueKind.MISSING]
        assert len(missing) == 1
        assert missing[0].severity == Severity.MEDIUM
        assert missing[0].affected_rows == 60
        assert missing[0].affected_columns == ["value"]
        assert "60.0% null values" in missing[0].description

    async def test_nearly_empty_column_is_high(self, sqlite_adapter):
        await run_script(
            sqlite_adapter,
            "CREATE TABLE readings (id INTEGER PRIMARY KEY, value INTEGER)",
            numbers("readings", "value", 100, 95),
        )
        report = await DataAnalyzer(sqlite_adapter).analyze_data_quality("readings")
        [missing] = [i for i in report.issues if i.kind == DataIssueKind.MISSING]
        assert missing.severity == Severity.HIGH

    async def test_partial_nulls_become_recommendation(self, sqlite_adapter):
        await run_script(
            sqlite_adapter,
            "CREATE TABLE notes (id INTEGER PRIMARY KEY, body INTEGER)",
            numbers("notes", "body", 10, 3),
        )
        report = await DataAnalyzer(sqlite_adapter).analyze_data_quality("notes")
        assert not [i for i in report.issues if i.kind == DataIssueKind.MISSING]
        assert report.recommendations == ["Consider investigating why body has 30.0% null values"]

    async def test_low_variety_column(self, sqlite_adapter):
        await run_script(
            sqlite_adapter,
            "CREATE TABLE events (id INTEGER PRIMARY KEY, status TEXT)",
            "WITH RECURSIVE n(i) AS (SELECT 1 UNION ALL SELECT i + 1 FROM n WHERE i < 200) "
            "INSERT INTO events (status) SELECT CASE WHEN i % 2 = 0 THEN 'open' ELSE 'closed' END FROM n",
        )
        report = await DataAnalyzer(sqlite_adapter).analyze_data_quality("events")
        [inconsistent] = [i for i in report.issues if i.kind == DataIssueKind.INCONSISTENT]
        assert inconsistent.affected_columns == ["status"]
        assert inconsistent.severity == Severity.LOW
        assert inconsistent.affected_rows == 200


class TestSampling:
    async def test_sample_data(self, users):
        rows = await users.sample_data("users", limit=2)
        assert len(rows) == 2
        assert set(rows[0]) == {"id", "age"}
