"""
Tests for plan normalization of captured EXPLAIN payloads.
"""

import pytest

from dbsense.models import DatabaseType
from dbsense.query.plan import normalize_plan


POSTGRES_PLAN = [
    {
        "Plan": {
            "Node Type": "Hash Join",
            "Join Type": "Inner",
            "Total Cost": 1520.5,
            "Plan Rows": 1000,
            "Hash Cond": "(o.user_id = u.id)",
            "Plans": [
                {"Node Type": "Seq Scan", "Relation Name": "orders", "Total Cost": 1200.0, "Plan Rows": 50000},
                {
                    "Node Type": "Hash",
                    "Total Cost": 35.0,
                    "Plan Rows": 100,
                    "Plans": [
                        {
                            "Node Type": "Index Scan",
                            "Relation Name": "users",
                            "Index Name": "users_pkey",
                            "Total Cost": 30.0,
                            "Plan Rows": 100,
                        }
                    ],
                },
            ],
        }
    }
]

MYSQL_PLAN = {
    "query_block": {
        "select_id": 1,
        "cost_info": {"query_cost": "2015.25"},
        "nested_loop": [
            {
                "table": {
                    "table_name": "orders",
                    "access_type": "ALL",
                    "rows_examined_per_scan": 20000,
                    "cost_info": {"prefix_cost": "2010.00"},
                    "attached_condition": "(`orders`.`status` = 'new')",
                }
            },
            {
                "table": {
                    "table_name": "users",
                    "access_type": "eq_ref",
                    "key": "PRIMARY",
                    "rows_examined_per_scan": 1,
                    "cost_info": {"prefix_cost": "5.25"},
                }
            },
        ],
    }
}

SQLITE_PLAN = [
    {"id": 2, "parent": 0, "notused": 0, "detail": "SCAN orders"},
    {"id": 5, "parent": 0, "notused": 0, "detail": "SEARCH users USING INTEGER PRIMARY KEY (rowid=?)"},
    {"id": 9, "parent": 0, "notused": 0, "detail": "USE TEMP B-TREE FOR ORDER BY"},
]

MONGO_PLAN = {
    "queryPlanner": {"winningPlan": {"stage": "FETCH"}},
    "executionStats": {
        "executionTimeMillis": 42,
        "nReturned": 3,
        "executionStages": {
            "stage": "FETCH",
            "nReturned": 3,
            "inputStage": {"stage": "IXSCAN", "indexName": "email_1", "nReturned": 3},
        },
    },
}


class TestPostgresPlan:
    def test_tree_shape(self):
        plan = normalize_plan(DatabaseType.POSTGRESQL, POSTGRES_PLAN)
        assert [op.type for op in plan.operations()] == ["Hash Join", "Seq Scan", "Hash", "Index Scan"]

    def test_cost_is_root_total_cost(self):
        plan = normalize_plan(DatabaseType.POSTGRESQL, POSTGRES_PLAN)
        assert plan.total_cost == 1520.5
        assert sum(op.cost for op in plan.operations()) == 2785.5
        assert plan.root.rows == 1000

    def test_description_mentions_relation_and_index(self):
        plan = normalize_plan(DatabaseType.POSTGRESQL, POSTGRES_PLAN)
        index_scan = plan.operations()[-1]
        assert "on users" in index_scan.description
        assert "using users_pkey" in index_scan.description

    def test_raw_payload_kept(self):
        plan = normalize_plan(DatabaseType.POSTGRESQL, POSTGRES_PLAN)
        assert plan.raw == POSTGRES_PLAN


class TestMySQLPlan:
    def test_query_cost_and_nested_loop(self):
        plan = normalize_plan(DatabaseType.MYSQL, MYSQL_PLAN)
        assert plan.total_cost == 2015.25
        assert plan.root.children[0].type == "Nested Loop"

    def test_access_types_are_labelled(self):
        plan = normalize_plan(DatabaseType.MYSQL, MYSQL_PLAN)
        types = [op.type for op in plan.operations()]
        assert "Full Table Scan" in types
        assert "Unique Index Lookup" in types


class TestSQLitePlan:
    def test_several_steps_get_synthetic_root(self):
        plan = normalize_plan(DatabaseType.SQLITE, SQLITE_PLAN)
        assert plan.root.type == "QUERY PLAN"
        assert [child.type for child in plan.root.children] == ["SCAN", "SEARCH", "USE TEMP B-TREE"]
        assert plan.total_cost == 0

    def test_single_step_is_root(self):
        plan = normalize_plan(DatabaseType.SQLITE, SQLITE_PLAN[:1])
        assert plan.root.type == "SCAN"
        assert plan.root.description == "SCAN orders"

    def test_nested_rows_follow_parent_id(self):
        rows = [
            {"id": 1, "parent": 0, "notused": 0, "detail": "COMPOUND QUERY"},
            {"id": 2, "parent": 1, "notused": 0, "detail": "LEFT-MOST SUBQUERY"},
            {"id": 4, "parent": 2, "notused": 0, "detail": "SCAN a"},
        ]
        plan = normalize_plan(DatabaseType.SQLITE, rows)
        assert [op.type for op in plan.operations()] == ["COMPOUND QUERY", "LEFT-MOST", "SCAN"]


class TestMongoPlan:
    def test_execution_stages(self):
        plan = normalize_plan(DatabaseType.MONGODB, MONGO_PLAN)
        assert [op.type for op in plan.operations()] == ["FETCH", "IXSCAN"]
        assert plan.total_cost == 42
        assert plan.operations()[1].description == "email_1"

    def test_falls_back_to_winning_plan(self):
        raw = {"queryPlanner": {"winningPlan": {"stage": "COLLSCAN", "filter": {"age": {"$gt": 3}}}}}
        plan = normalize_plan(DatabaseType.MONGODB, raw)
        assert plan.root.type == "COLLSCAN"


class TestNormalizeErrors:
    def test_engine_without_normalizer(self):
        with pytest.raises(ValueError):
            normalize_plan(DatabaseType.REDIS, {})

    def test_wrong_payload_shape(self):
        with pytest.raises(ValueError):
            normalize_plan(DatabaseType.MYSQL, POSTGRES_PLAN)
