"""
Rule registry and compiler.

Rules are compiled once, before any query is looked at. Compilation turns
each ``RuleDefinition`` into a ``Rule`` holding an executable program and
two static flags:

- ``needs_prepare``: the query must be prepared against the database
  before the rule runs. Only the built-in ``sqlc/db-prepare`` rule sets it.
- ``needs_explain``: the rule reads EXPLAIN output. Derived from the
  expression text: the flag is set when the source literally contains
  ``postgresql.explain`` or ``mysql.explain``. A rule must spell out one of
  those paths for its explain output to be fetched; an expression that
  reaches the plan some other way will see empty plan structures.

Any compilation problem is fatal for the whole run.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass

from sqlvet.config import RuleDefinition, SQLGroup
from sqlvet.exceptions import ConfigurationError, RuleCompileError
from sqlvet.expr import ExpressionError, Program, RuleEnvironment

logger = logging.getLogger(__name__)

RULE_DB_PREPARE = "sqlc/db-prepare"

_EXPLAIN_REFERENCES = ("postgresql.explain", "mysql.explain")


@dataclass(frozen=True)
class Rule:
    """A compiled rule."""

    name: str
    expression: str = ""
    message: str = ""
    program: Program | None = None
    needs_prepare: bool = False
    needs_explain: bool = False

    @property
    def builtin(self) -> bool:
        """True for rules without an expression (prepare-only)."""
        return self.program is None

    @property
    def needs_database(self) -> bool:
        return self.needs_prepare or self.needs_explain


def needs_explain(expression: str) -> bool:
    """Whether an expression references EXPLAIN output (textual check)."""
    return any(ref in expression for ref in _EXPLAIN_REFERENCES)


class RuleSet(Mapping[str, Rule]):
    """Compiled rules by name, in definition order (built-in first)."""

    def __init__(self, rules: Iterable[Rule]) -> None:
        self._rules: dict[str, Rule] = {rule.name: rule for rule in rules}

    def __getitem__(self, name: str) -> Rule:
        return self._rules[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._rules)

    def __len__(self) -> int:
        return len(self._rules)

    def resolve(self, name: str) -> Rule:
        """
        Look up a rule referenced by a SQL group.

        Raises:
            ConfigurationError: If no rule with that name exists.
        """
        rule = self._rules.get(name)
        if rule is None:
            raise ConfigurationError(
                f"type-check error: a rule with the name '{name}' does not exist",
                config_key="rules",
            )
        return rule


def compile_rules(
    definitions: Iterable[RuleDefinition],
    env: RuleEnvironment | None = None,
) -> RuleSet:
    """
    Compile rule definitions.

    Raises:
        RuleCompileError: On an empty or duplicate name, an empty expression,
            a type-check failure or a program construction failure.
    """
    env = env or RuleEnvironment()
    rules: dict[str, Rule] = {
        RULE_DB_PREPARE: Rule(name=RULE_DB_PREPARE, needs_prepare=True),
    }

    for definition in definitions:
        name = definition.name
        if not name:
            raise RuleCompileError("rules require a name")
        if name in rules:
            raise RuleCompileError(
                f"type-check error: a rule with the name '{name}' already exists",
                rule_name=name,
            )
        if not definition.rule:
            raise RuleCompileError(f"type-check error: {name} is empty", rule_name=name)

        try:
            tree = env.compile(definition.rule)
        except ExpressionError as e:
            raise RuleCompileError(f"type-check error: {name} {e}", rule_name=name) from e

        try:
            program = env.program(tree, definition.rule)
        except Exception as e:
            raise RuleCompileError(
                f"program construction error: {name} {e}", rule_name=name
            ) from e

        rules[name] = Rule(
            name=name,
            expression=definition.rule,
            message=definition.msg,
            program=program,
            needs_explain=needs_explain(definition.rule),
        )
        logger.debug("Compiled rule %s (needs_explain=%s)", name, rules[name].needs_explain)

    return RuleSet(rules.values())


def validate_references(rule_set: RuleSet, groups: Iterable[SQLGroup]) -> None:
    """
    Check that every rule a SQL group references exists.

    Runs before evaluation so that a typo aborts the run with no
    diagnostics emitted.

    Raises:
        ConfigurationError: On the first unknown rule name.
    """
    for group in groups:
        for name in group.rules:
            rule_set.resolve(name)
