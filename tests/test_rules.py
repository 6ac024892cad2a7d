"""
Tests for rule compilation and reference validation.
"""

import pytest

from sqlvet.config import RuleDefinition, SQLGroup
from sqlvet.exceptions import ConfigurationError, RuleCompileError
from sqlvet.rules import RULE_DB_PREPARE, compile_rules, needs_explain, validate_references


def rule(name, expression, msg=""):
    return RuleDefinition(name=name, rule=expression, msg=msg)


class TestCompileRules:
    """Tests for compile_rules()."""

    def test_builtin_rule_is_always_present(self):
        rule_set = compile_rules([])
        builtin = rule_set[RULE_DB_PREPARE]

        assert list(rule_set) == [RULE_DB_PREPARE]
        assert builtin.needs_prepare
        assert not builtin.needs_explain
        assert builtin.program is None
        assert builtin.builtin

    def test_compiles_in_definition_order(self):
        rule_set = compile_rules([
            rule("no-select-star", 'query.sql.contains("*")', "avoid select *"),
            rule("needs-limit", 'query.cmd == ":many" && !query.sql.contains("LIMIT")'),
        ])

        assert list(rule_set) == [RULE_DB_PREPARE, "no-select-star", "needs-limit"]
        compiled = rule_set["no-select-star"]
        assert compiled.message == "avoid select *"
        assert compiled.expression == 'query.sql.contains("*")'
        assert compiled.program is not None
        assert not compiled.needs_prepare

    def test_empty_name(self):
        with pytest.raises(RuleCompileError) as exc_info:
            compile_rules([rule("", "true")])
        assert exc_info.value.message == "rules require a name"

    def test_duplicate_name(self):
        with pytest.raises(RuleCompileError) as exc_info:
            compile_rules([rule("a", "true"), rule("a", "false")])
        assert exc_info.value.message == "type-check error: a rule with the name 'a' already exists"
        assert exc_info.value.rule_name == "a"

    def test_builtin_name_is_reserved(self):
        with pytest.raises(RuleCompileError) as exc_info:
            compile_rules([rule(RULE_DB_PREPARE, "true")])
        assert "already exists" in exc_info.value.message

    def test_empty_expression(self):
        with pytest.raises(RuleCompileError) as exc_info:
            compile_rules([rule("blank", "")])
        assert exc_info.value.message == "type-check error: blank is empty"

    def test_type_check_error(self):
        with pytest.raises(RuleCompileError) as exc_info:
            compile_rules([rule("bad-field", "query.nope == 1")])
        assert exc_info.value.message.startswith("type-check error: bad-field ")
        assert "undefined field 'nope'" in exc_info.value.message

    def test_syntax_error(self):
        with pytest.raises(RuleCompileError) as exc_info:
            compile_rules([rule("broken", "query.sql.contains(")])
        assert exc_info.value.message.startswith("type-check error: broken ")

    def test_compiling_twice_is_equivalent(self):
        definitions = [rule("no-select-star", 'query.sql.contains("*")', "avoid select *")]
        first = compile_rules(definitions)["no-select-star"]
        second = compile_rules(definitions)["no-select-star"]

        assert (first.name, first.expression, first.message) == (
            second.name, second.expression, second.message,
        )
        assert (first.needs_prepare, first.needs_explain) == (
            second.needs_prepare, second.needs_explain,
        )


class TestNeedsExplain:
    """The needs_explain flag is derived from the expression text."""

    def test_postgresql_reference(self):
        rule_set = compile_rules([rule("rows", "postgresql.explain.plan.plan_rows > 1000")])
        assert rule_set["rows"].needs_explain
        assert rule_set["rows"].needs_database

    def test_mysql_reference(self):
        rule_set = compile_rules([
            rule("filesort", "mysql.explain.query_block.ordering_operation.using_filesort"),
        ])
        assert rule_set["filesort"].needs_explain

    def test_no_reference(self):
        rule_set = compile_rules([rule("star", 'query.sql.contains("*")')])
        assert not rule_set["star"].needs_explain
        assert not rule_set["star"].needs_database

    @pytest.mark.parametrize("source,expected", [
        ("postgresql.explain.plan.total_cost > 10.0", True),
        ("mysql.explain.query_block.select_id == 1", True),
        ('config.engine == "postgresql"', False),
    ])
    def test_textual_check(self, source, expected):
        assert needs_explain(source) is expected


class TestValidateReferences:
    """Unknown rule names are rejected before evaluation."""

    def test_known_names(self):
        rule_set = compile_rules([rule("a", "true")])
        groups = [SQLGroup(engine="postgresql", rules=[RULE_DB_PREPARE, "a"])]
        validate_references(rule_set, groups)

    def test_unknown_name(self):
        rule_set = compile_rules([rule("a", "true")])
        groups = [
            SQLGroup(engine="postgresql", rules=["a"]),
            SQLGroup(engine="mysql", rules=["typo"]),
        ]

        with pytest.raises(ConfigurationError) as exc_info:
            validate_references(rule_set, groups)
        assert exc_info.value.message == (
            "type-check error: a rule with the name 'typo' does not exist"
        )
