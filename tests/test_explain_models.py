"""
Tests for the EXPLAIN data model and decoders.
"""

import json

import pytest

from sqlvet.exceptions import ExplainError
from sqlvet.explain import (
    EngineOutput,
    MySQL,
    PostgreSQL,
    decode_mysql,
    decode_postgresql,
)
from sqlvet.explain.postgresql import Plan, PostgreSQLExplain


@pytest.fixture
def pg_explain_json() -> str:
    return json.dumps([
        {
            "Plan": {
                "Node Type": "Limit",
                "Parallel Aware": False,
                "Startup Cost": 0.0,
                "Total Cost": 0.04,
                "Plan Rows": 1,
                "Plan Width": 72,
                "Output": ["id", "name"],
                "Shared Hit Blocks": 3,
                "Plans": [
                    {
                        "Node Type": "Seq Scan",
                        "Parent Relationship": "Outer",
                        "Relation Name": "authors",
                        "Schema": "public",
                        "Alias": "authors",
                        "Total Cost": 22.7,
                        "Plan Rows": 1270,
                        "Plan Width": 72,
                        "Output": ["id", "name"],
                    }
                ],
            },
            "Settings": {"search_path": "app"},
            "Planning": {"Shared Hit Blocks": 12, "Shared Read Blocks": 1},
        }
    ])


@pytest.fixture
def mysql_explain_json() -> str:
    return json.dumps({
        "query_block": {
            "select_id": 1,
            "cost_info": {"query_cost": "1.35"},
            "ordering_operation": {
                "using_filesort": True,
                "table": {
                    "table_name": "authors",
                    "access_type": "ALL",
                    "rows_examined_per_scan": 11,
                    "rows_produced_per_join": 11,
                    "filtered": "100.00",
                    "cost_info": {"read_cost": "0.25", "eval_cost": "1.10"},
                    "used_columns": ["id", "name"],
                },
            },
        }
    })


class TestPostgreSQLDecoding:
    """Tests for decoding EXPLAIN (FORMAT JSON) output."""

    def test_decode_single_element_array(self, pg_explain_json):
        """The first element of the returned array is the document."""
        explain = decode_postgresql(pg_explain_json)

        assert explain.plan.node_type == "Limit"
        assert explain.plan.plan_rows == 1
        assert explain.plan.shared_hit_blocks == 3
        assert explain.settings == {"search_path": "app"}
        assert explain.planning.shared_hit_blocks == 12
        assert explain.planning.shared_read_blocks == 1

    def test_decode_nested_plans(self, pg_explain_json):
        explain = decode_postgresql(pg_explain_json)
        child = explain.plan.plans[0]

        assert child.node_type == "Seq Scan"
        assert child.relation_name == "authors"
        assert child.schema_name == "public"
        assert child.parent_relationship == "Outer"
        assert [n.node_type for n in explain.plan.iter_nodes()] == ["Limit", "Seq Scan"]

    def test_decode_bare_object_and_bytes(self):
        explain = decode_postgresql(b'{"Plan": {"Node Type": "Result"}}')
        assert explain.plan.node_type == "Result"

    def test_missing_fields_have_zero_values(self):
        """Absent keys decode to empty strings, zeros and empty collections."""
        explain = decode_postgresql([{"Plan": {"Node Type": "Result"}}])
        plan = explain.plan

        assert plan.relation_name == ""
        assert plan.total_cost == 0.0
        assert plan.plans == []
        assert plan.sort_key == []
        assert explain.settings == {}

    def test_unknown_keys_are_ignored(self):
        explain = decode_postgresql([{"Plan": {"Node Type": "Result", "JIT": {"Functions": 2}}}])
        assert explain.plan.node_type == "Result"

    def test_invalid_json_raises(self):
        with pytest.raises(ExplainError) as exc_info:
            decode_postgresql("[{not json")
        assert "invalid EXPLAIN JSON" in exc_info.value.message

    def test_empty_array_raises(self):
        with pytest.raises(ExplainError):
            decode_postgresql("[]")

    def test_rule_view_uses_snake_case(self, pg_explain_json):
        """Rules see field names, not the Title Case input keys."""
        dumped = PostgreSQL(explain=decode_postgresql(pg_explain_json)).model_dump(
            mode="json", by_alias=True
        )
        plan = dumped["explain"]["plan"]

        assert plan["node_type"] == "Limit"
        assert plan["plans"][0]["schema_name"] == "public"
        assert "Node Type" not in plan


class TestMySQLDecoding:
    """Tests for decoding EXPLAIN FORMAT=JSON output."""

    def test_decode_ordering_operation(self, mysql_explain_json):
        explain = decode_mysql(mysql_explain_json)
        block = explain.query_block

        assert block.select_id == 1
        assert block.cost_info["query_cost"] == "1.35"
        assert block.ordering_operation.using_filesort is True
        assert block.ordering_operation.table.table_name == "authors"
        assert block.ordering_operation.table.is_full_table_scan

    def test_tables_collects_every_access_path(self):
        explain = decode_mysql({
            "query_block": {
                "nested_loop": [
                    {"table": {"table_name": "books", "access_type": "ALL"}},
                    {"table": {"table_name": "authors", "access_type": "eq_ref"}},
                ]
            }
        })
        assert [t.table_name for t in explain.tables()] == ["books", "authors"]

    def test_message_is_an_error(self):
        """MySQL reports plan failures through query_block.message."""
        with pytest.raises(ExplainError) as exc_info:
            decode_mysql('{"query_block": {"select_id": 1, "message": "no matching row in const table"}}')

        assert exc_info.value.message == "mysql explain: no matching row in const table"
        assert exc_info.value.engine == "mysql"

    def test_non_object_raises(self):
        with pytest.raises(ExplainError):
            decode_mysql("[1, 2]")


class TestEngineOutput:
    """Tests for the tagged explain result."""

    def test_empty_output(self):
        output = EngineOutput()
        assert output.engine is None

    def test_both_sides_rejected(self):
        with pytest.raises(ValueError):
            EngineOutput(postgresql=PostgreSQL(), mysql=MySQL())

    def test_bindings_fill_unexplained_side(self):
        plan = PostgreSQLExplain(plan=Plan(node_type="Seq Scan"))
        output = EngineOutput(postgresql=PostgreSQL(explain=plan))
        bindings = output.bindings()

        assert output.engine == "postgresql"
        assert bindings["postgresql"].explain.plan.node_type == "Seq Scan"
        assert bindings["mysql"] == MySQL()
