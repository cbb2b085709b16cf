"""
Tests for the dbsense command line.

Commands that need a database run against a SQLite file prepared with
the standard library driver.
"""

import json
import sqlite3

import pytest
from typer.testing import CliRunner

from dbsense import __version__
from dbsense.cli.main import app

runner = CliRunner()


@pytest.fixture
def db_url(tmp_path):
    path = tmp_path / "app.db"
    conn = sqlite3.connect(path)
    conn.executescript(
        """
        CREATE TABLE users (id INTEGER PRIMARY KEY, age INTEGER);
        INSERT INTO users (age) VALUES (30), (30), (40);
        """
    )
    conn.close()
    return f"sqlite:///{path}"


class TestGlobalOptions:
    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert f"DBSense version {__version__}" in result.output

    def test_bad_log_level_env(self, monkeypatch):
        monkeypatch.setenv("DBSENSE_LOG_LEVEL", "chatty")
        result = runner.invoke(app, ["tools"])
        assert result.exit_code == 1
        assert "Unknown log level" in result.output


class TestTools:
    def test_lists_tools(self):
        result = runner.invoke(app, ["tools"])
        assert result.exit_code == 0
        assert "connect_database" in result.output
        assert "find_duplicates" in result.output


class TestCall:
    def test_invalid_json(self):
        result = runner.invoke(app, ["call", "list_connections", "--args", "{oops"])
        assert result.exit_code == 1
        assert "not valid JSON" in result.output

    def test_args_must_be_object(self):
        result = runner.invoke(app, ["call", "list_connections", "--args", "[1, 2]"])
        assert result.exit_code == 1
        assert "must be a JSON object" in result.output

    def test_unknown_tool(self):
        result = runner.invoke(app, ["call", "drop_everything"])
        assert result.exit_code == 1
        assert "Unknown tool" in result.output

    def test_sample_data(self, db_url):
        result = runner.invoke(
            app, ["call", "sample_data", "--url", db_url, "--args", json.dumps({"tableName": "users", "limit": 2})]
        )
        assert result.exit_code == 0, result.output
        rows = json.loads(result.stdout)
        assert rows == [{"id": 1, "age": 30}, {"id": 2, "age": 30}]


class TestDatabaseCommands:
    def test_check(self, db_url):
        result = runner.invoke(app, ["check", db_url])
        assert result.exit_code == 0
        assert "Connected to sqlite" in result.output

    def test_schema_summary(self, db_url):
        result = runner.invoke(app, ["schema", db_url])
        assert result.exit_code == 0, result.output
        assert "users" in result.output

    def test_schema_mermaid(self, db_url):
        result = runner.invoke(app, ["schema", db_url, "--mermaid"])
        assert result.exit_code == 0, result.output
        assert result.output.startswith("erDiagram")

    def test_analyze_json(self, db_url):
        result = runner.invoke(app, ["analyze", db_url, "SELECT * FROM users", "--json"])
        assert result.exit_code == 0, result.output
        analysis = json.loads(result.stdout)
        assert analysis["rowsAffected"] == 3
        assert analysis["plan"]["root"]["type"] == "SCAN"

    def test_analyze_panel(self, db_url):
        result = runner.invoke(app, ["analyze", db_url, "SELECT id FROM users LIMIT 1"])
        assert result.exit_code == 0, result.output
        assert "Score:" in result.output
