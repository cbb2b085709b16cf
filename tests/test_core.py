"""
Tests for exceptions, settings, core models and identifier quoting.
"""

import pytest
from pydantic import ValidationError

from dbsense.config import get_settings, load_settings_from_env, reset_settings
from dbsense.dialects import qualify, quote_identifier, quote_literal
from dbsense.exceptions import (
    ConfigurationError,
    ConnectionError,
    ConnectionNotFoundError,
    DBSenseError,
    DuplicateConnectionError,
    QueryError,
    ToolError,
    UnsupportedOperationError,
)
from dbsense.models import ConnectionConfig, DatabaseType, PlanOperation
from dbsense.schema.models import ForeignKey


class TestExceptions:
    def test_hierarchy(self):
        assert issubclass(DuplicateConnectionError, ConnectionError)
        assert issubclass(ConnectionNotFoundError, ConnectionError)
        assert issubclass(QueryError, DBSenseError)
        assert issubclass(ToolError, DBSenseError)

    def test_connection_error_to_dict(self):
        err = DuplicateConnectionError("main")
        data = err.to_dict()
        assert data["error_type"] == "DuplicateConnectionError"
        assert data["connection_id"] == "main"
        assert "main" in data["message"]

    def test_query_error_keeps_driver_message(self):
        class DriverError(Exception):
            sqlstate = "42P01"

        class Wrapped(Exception):
            orig = DriverError('relation "missing" does not exist')

        err = QueryError.from_exception(Wrapped("wrapped"), "SELECT * FROM missing")
        assert err.message == 'relation "missing" does not exist'
        assert err.native_error["driver_error"] == "DriverError"
        assert err.to_dict()["statement"] == "SELECT * FROM missing"

    def test_unsupported_operation_message(self):
        err = UnsupportedOperationError("explain_query", "redis")
        assert str(err) == "Operation 'explain_query' is not supported by redis"

    def test_tool_error_prefixes_tool_name(self):
        cause = ConnectionNotFoundError("abc")
        err = ToolError("get_schema", cause.message, cause)
        assert err.message == "get_schema failed: Connection abc not found"
        assert err.details["connection_id"] == "abc"


class TestSettings:
    def test_defaults(self):
        settings = load_settings_from_env()
        assert settings.idle_timeout_seconds == 300
        assert settings.query_timeout_ms == 30000
        assert settings.sample_limit == 10
        assert settings.log_level == "WARNING"

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("DBSENSE_POOL_SIZE", "4")
        monkeypatch.setenv("DBSENSE_HIGH_COST_THRESHOLD", "250.5")
        monkeypatch.setenv("DBSENSE_LOG_LEVEL", "debug")
        settings = load_settings_from_env()
        assert settings.pool_size == 4
        assert settings.high_cost_threshold == 250.5
        assert settings.log_level == "DEBUG"

    def test_malformed_number_raises(self, monkeypatch):
        monkeypatch.setenv("DBSENSE_POOL_SIZE", "lots")
        with pytest.raises(ConfigurationError) as exc_info:
            load_settings_from_env()
        assert exc_info.value.config_key == "DBSENSE_POOL_SIZE"

    def test_out_of_range_raises(self, monkeypatch):
        monkeypatch.setenv("DBSENSE_IDLE_TIMEOUT_SECONDS", "0")
        with pytest.raises(ConfigurationError):
            load_settings_from_env()

    def test_unknown_log_level_raises(self, monkeypatch):
        monkeypatch.setenv("DBSENSE_LOG_LEVEL", "LOUD")
        with pytest.raises(ConfigurationError):
            load_settings_from_env()

    def test_get_settings_is_cached_until_reset(self, monkeypatch):
        first = get_settings()
        monkeypatch.setenv("DBSENSE_SAMPLE_LIMIT", "25")
        assert get_settings() is first
        reset_settings()
        assert get_settings().sample_limit == 25


class TestModels:
    def test_connection_config_accepts_camel_case(self):
        config = ConnectionConfig.model_validate(
            {"type": "mysql", "connectionString": "mysql://db/app", "readOnly": True, "poolSize": 3}
        )
        assert config.type == DatabaseType.MYSQL
        assert config.read_only is True
        assert config.pool_size == 3

    def test_connection_config_hides_secrets_in_repr(self):
        config = ConnectionConfig(type="postgresql", host="db", password="hunter2")
        assert "hunter2" not in repr(config)

    def test_connection_config_rejects_non_positive_timeout(self):
        with pytest.raises(ValidationError):
            ConnectionConfig(type="sqlite", timeout=0)

    def test_with_defaults_fills_only_unset_values(self):
        config = ConnectionConfig(type="sqlite", timeout=500)
        filled = config.with_defaults(30000, 10)
        assert filled.timeout == 500
        assert filled.pool_size == 10

    def test_relational_engines(self):
        assert DatabaseType.MSSQL.is_relational
        assert not DatabaseType.MONGODB.is_relational
        assert not DatabaseType.REDIS.is_relational

    def test_plan_iter_depth_first(self):
        leaf_a = PlanOperation(type="Seq Scan")
        leaf_b = PlanOperation(type="Index Scan")
        join = PlanOperation(type="Hash Join", children=[leaf_a, leaf_b])
        assert [op.type for op in join.iter_depth_first()] == ["Hash Join", "Seq Scan", "Index Scan"]

    def test_foreign_key_arity_must_match(self):
        with pytest.raises(ValidationError):
            ForeignKey(
                name="fk_orders_user",
                table="orders",
                columns=["user_id", "tenant_id"],
                referenced_table="users",
                referenced_columns=["id"],
            )

    def test_foreign_key_on_delete_action(self):
        fk = ForeignKey(
            name="fk", table="a", columns=["b_id"], referenced_table="b", referenced_columns=["id"],
            on_delete="NO ACTION",
        )
        assert not fk.has_on_delete_action
        assert fk.model_copy(update={"on_delete": "CASCADE"}).has_on_delete_action


class TestDialects:
    @pytest.mark.parametrize(
        "engine,expected",
        [
            (DatabaseType.POSTGRESQL, '"user""s"'),
            (DatabaseType.SQLITE, '"user""s"'),
            (DatabaseType.MYSQL, '`user"s`'),
            (DatabaseType.MSSQL, '[user"s]'),
        ],
    )
    def test_quote_identifier(self, engine, expected):
        assert quote_identifier('user"s', engine) == expected

    def test_closing_bracket_is_doubled(self):
        assert quote_identifier("a]b", DatabaseType.MSSQL) == "[a]]b]"

    def test_non_relational_passthrough(self):
        assert quote_identifier("users", DatabaseType.MONGODB) == "users"

    def test_qualify(self):
        assert qualify("users", "public", DatabaseType.POSTGRESQL) == '"public"."users"'
        assert qualify("users", None, DatabaseType.MYSQL) == "`users`"

    def test_quote_literal(self):
        assert quote_literal("O'Brien") == "'O''Brien'"
