"""
Checker - the vetting run orchestrator.

Drives compiled rules over every query of every SQL group, talking to the
database only when a rule needs it. This is the single entry point for a
vetting run; the CLI is a thin adapter around ``vet()``.

Error model:
- Reported failures (a rule tripped, prepare/explain failed, no database
  available) are written as diagnostic lines and evaluation continues.
- Fatal errors (bad request, connection failure or loss, a rule that
  returns a non-bool) abort the run immediately with the matching
  exception.
- A run that reported anything ends with ``FailedChecksError``.

Usage:
    from sqlvet.checker import vet

    await vet(load_vet_file("sqlvet.yaml"), base_dir=Path("."))
"""

from __future__ import annotations

import itertools
import logging
import uuid
from collections.abc import Awaitable, Callable, Sequence
from pathlib import Path
from typing import Protocol

from rich.console import Console

from sqlvet import db
from sqlvet.codegen import CodeGenRequest, Query, Settings, load_request
from sqlvet.config import RunSettings, SQLGroup, VetFile
from sqlvet.db.base import EngineConnection, preparable
from sqlvet.exceptions import (
    ConfigurationError,
    DatabaseConnectionError,
    DatabaseError,
    FailedChecksError,
    RuleEvaluationError,
)
from sqlvet.explain import EngineOutput
from sqlvet.expr import ExpressionError, build_activation, is_bool
from sqlvet.models import VetConfig, VetQuery, vet_config, vet_query
from sqlvet.report import Reporter
from sqlvet.rules import Rule, RuleSet, compile_rules, validate_references
from sqlvet.shfmt import Environment

logger = logging.getLogger(__name__)

RequestLoader = Callable[[SQLGroup], CodeGenRequest]


class Connector(Protocol):
    def __call__(
        self,
        engine: str,
        dsn: str,
        on_explain: Callable[[str, str], None] | None = None,
    ) -> Awaitable[EngineConnection]: ...


class RequestFileLoader:
    """Load each group's CodeGenRequest from its ``request`` path."""

    def __init__(self, base_dir: Path) -> None:
        self.base_dir = base_dir

    def __call__(self, group: SQLGroup) -> CodeGenRequest:
        if not group.request:
            raise ConfigurationError(
                f"sql group {group.label}: no code generation request configured",
                config_key="request",
            )
        path = Path(group.request)
        if not path.is_absolute():
            path = self.base_dir / path
        request = load_request(path)

        # Requests produced without settings inherit them from the group.
        if not request.settings.engine:
            settings = Settings(
                version=request.settings.version or "2",
                engine=group.engine,
                schema=list(group.schema_),
                queries=list(group.queries),
            )
            request = request.model_copy(update={"settings": settings})
        return request


class Checker:
    """
    Runs compiled rules over SQL groups.

    One instance is one run: it owns the environment snapshot used for DSN
    substitution and the statement name sequence.
    """

    def __init__(
        self,
        rules: RuleSet,
        request_loader: RequestLoader,
        reporter: Reporter | None = None,
        *,
        settings: RunSettings | None = None,
        connect: Connector = db.connect,
        environment: Environment | None = None,
        stdout: Console | None = None,
    ) -> None:
        self.rules = rules
        self.request_loader = request_loader
        self.reporter = reporter or Reporter()
        self.settings = settings or RunSettings()
        self.environment = environment or Environment()
        self._connect = connect
        self._stdout = stdout
        self._token = uuid.uuid4().hex[:8]
        self._sequence = itertools.count(1)

    async def run(self, groups: Sequence[SQLGroup]) -> None:
        """
        Vet every group in order.

        Raises:
            FailedChecksError: If any failure was reported.
        """
        for index, group in enumerate(groups):
            await self.check_group(index, group)

        if self.reporter.failed:
            raise FailedChecksError(self.reporter.count)

    async def check_group(self, index: int, group: SQLGroup) -> None:
        """Vet one SQL group. Reported failures go to the reporter."""
        request = self.request_loader(group)
        config = vet_config(request)
        if not config.engine:
            config = config.model_copy(update={"engine": group.engine})
        elif config.engine != group.engine:
            raise ConfigurationError(
                f"sql group {group.label}: request engine '{config.engine}' "
                f"does not match group engine '{group.engine}'",
                config_key="engine",
            )
        rules = [self.rules.resolve(name) for name in group.rules]

        if not self._wants_connection(group, rules):
            await self._check_queries(index, request, config, rules, None)
            return

        dsn = self.environment.expand(group.database.uri)
        on_explain = self._dump_explain if self.settings.dump_explain else None
        conn = await self._connect(group.engine, dsn, on_explain)
        logger.debug("Opened %s connection for group %d", conn.engine, index)
        async with conn:
            await conn.ping()
            await self._check_queries(index, request, config, rules, conn)
        logger.debug("Closed %s connection for group %d", conn.engine, index)

    def _wants_connection(self, group: SQLGroup, rules: list[Rule]) -> bool:
        if group.database is None or not group.database.uri:
            return False
        if self.settings.no_database:
            logger.debug("Database connections disabled, skipping connection for %s", group.label)
            return False
        return any(rule.needs_database for rule in rules)

    async def _check_queries(
        self,
        group_index: int,
        request: CodeGenRequest,
        config: VetConfig,
        rules: list[Rule],
        conn: EngineConnection | None,
    ) -> None:
        for query_index, query in enumerate(request.queries):
            if query.vet_disabled:
                logger.debug("Skipping vet rules for query: %s", query.name)
                continue

            vq = vet_query(query)
            explained: EngineOutput | None = None
            for rule in rules:
                if rule.needs_prepare:
                    name = self._statement_name(group_index, query_index)
                    failure = await self._prepare(conn, config.engine, name, query)
                    if failure:
                        self.reporter.report(query.filename, query.name, rule.name, failure)
                        continue

                if rule.program is None:
                    continue

                if rule.needs_explain and explained is None:
                    try:
                        explained = await self._explain(conn, query)
                    except DatabaseConnectionError:
                        raise
                    except DatabaseError as e:
                        self.reporter.report(
                            query.filename, query.name, rule.name,
                            f"error explaining query: {e.message}",
                        )
                        continue

                if self._evaluate(rule, vq, config, explained):
                    self.reporter.report(query.filename, query.name, rule.name, rule.message)

    async def _prepare(
        self,
        conn: EngineConnection | None,
        engine: str,
        name: str,
        query: Query,
    ) -> str | None:
        """Prepare a query; returns the failure message, if any."""
        preparer = conn.preparer if conn is not None else None
        if preparer is None:
            return "error preparing query: database connection required"
        if not preparable(engine, query.text):
            return "error preparing query: query type is unpreparable"
        try:
            await preparer.prepare(name, query.text)
        except DatabaseConnectionError:
            raise
        except DatabaseError as e:
            return f"error preparing query: {e.message}"
        return None

    async def _explain(self, conn: EngineConnection | None, query: Query) -> EngineOutput:
        explainer = conn.explainer if conn is not None else None
        if explainer is None:
            raise DatabaseError("database connection required")
        logger.debug("Explaining %s", query.name)
        return await explainer.explain(query.text, query.params)

    def _evaluate(
        self,
        rule: Rule,
        query: VetQuery,
        config: VetConfig,
        explained: EngineOutput | None,
    ) -> bool:
        bindings = explained.bindings() if explained is not None else {}
        activation = build_activation(query, config, **bindings)
        try:
            value = rule.program.evaluate(activation)
        except ExpressionError as e:
            raise RuleEvaluationError(f"{rule.name}: {e}", rule.name, query.name) from e
        if not is_bool(value):
            raise RuleEvaluationError(
                f"expression returned non-bool value: {value}", rule.name, query.name
            )
        return bool(value)

    def _statement_name(self, group_index: int, query_index: int) -> str:
        return f"sqlvet_{self._token}_{group_index}_{query_index}_{next(self._sequence)}"

    def _dump_explain(self, statement: str, output: str) -> None:
        console = self._stdout or Console(markup=False, highlight=False, soft_wrap=True)
        console.print(statement, markup=False, highlight=False)
        console.print(output, markup=False, highlight=False)


async def vet(
    vet_file: VetFile,
    base_dir: Path,
    settings: RunSettings | None = None,
    *,
    reporter: Reporter | None = None,
    request_loader: RequestLoader | None = None,
    connect: Connector = db.connect,
    environment: Environment | None = None,
) -> None:
    """
    Compile the vet file's rules and run them over its SQL groups.

    Raises:
        RuleCompileError: If a rule definition is rejected.
        ConfigurationError: If a group references an unknown rule.
        FailedChecksError: If any failure was reported.
        SqlVetError: On any other fatal error.
    """
    rules = compile_rules(vet_file.rules)
    validate_references(rules, vet_file.sql)

    checker = Checker(
        rules,
        request_loader or RequestFileLoader(base_dir),
        reporter,
        settings=settings,
        connect=connect,
        environment=environment,
    )
    await checker.run(vet_file.sql)
