"""
Capability interface for database engines.

Each engine adapter is an ``EngineConnection`` exposing two optional
capabilities:

- ``preparer``: prepares a statement server-side without executing it
- ``explainer``: retrieves the engine's query plan as an ``EngineOutput``

A capability the engine does not offer is ``None``. SQLite, for example,
has no explainer: its EXPLAIN QUERY PLAN output is documented as unstable
and must not be used to build rules on.

All round-trips are coroutines; cancellation of the calling task aborts
them. Driver exceptions are wrapped into ``DatabaseError`` here so the
evaluation loop handles a single error type; a lost connection (socket
error, timeout, server gone) becomes ``DatabaseConnectionError``, which is
fatal.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterator, Sequence
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import sqlparse
from sqlparse import tokens as T
from sqlparse.sql import Parenthesis

from sqlvet.exceptions import DatabaseConnectionError

if TYPE_CHECKING:
    from sqlvet.codegen import Parameter
    from sqlvet.explain import EngineOutput


class Engine:
    """Supported engine names."""

    POSTGRESQL = "postgresql"
    MYSQL = "mysql"
    SQLITE = "sqlite"

    ALL = (POSTGRESQL, MYSQL, SQLITE)


@runtime_checkable
class Preparer(Protocol):
    async def prepare(self, name: str, query: str) -> None:
        """
        Prepare ``query`` as a statement called ``name`` and release it.

        Raises:
            DatabaseError: If the engine rejects the statement.
        """
        ...


@runtime_checkable
class Explainer(Protocol):
    async def explain(self, query: str, params: Sequence[Parameter] = ()) -> EngineOutput:
        """
        Retrieve the plan for ``query`` with every parameter bound to NULL.

        Raises:
            ExplainError: If the engine cannot produce a plan.
        """
        ...


class EngineConnection(ABC):
    """A single open connection to one engine."""

    engine: str = "unknown"

    @property
    def preparer(self) -> Preparer | None:
        return None

    @property
    def explainer(self) -> Explainer | None:
        return None

    @abstractmethod
    async def ping(self) -> None:
        """Verify the connection is usable."""
        ...

    @abstractmethod
    async def close(self) -> None:
        ...

    def _connection_error(self, error: BaseException) -> DatabaseConnectionError:
        """Wrap a lost or unusable connection, which aborts the run."""
        return DatabaseConnectionError(
            f"database: connection error: {str(error) or type(error).__name__}",
            engine=self.engine,
        )

    async def __aenter__(self) -> EngineConnection:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()


# PostgreSQL can only prepare plannable statements; MERGE and VALUES are
# not recognised as such yet.
_POSTGRESQL_PREPARABLE = frozenset({"DELETE", "INSERT", "SELECT", "UPDATE"})


def statement_type(query: str) -> str:
    """
    Statement kind of the first statement in ``query`` (e.g. "SELECT").

    A statement that opens with a parenthesised query, such as
    ``(SELECT 1) UNION (SELECT 2)``, takes the kind of the inner query.
    Returns "UNKNOWN" when sqlparse cannot classify it.
    """
    statements = [s for s in sqlparse.parse(query) if str(s).strip()]
    if not statements:
        return "UNKNOWN"
    statement = statements[0]
    kind = statement.get_type()
    if kind == "UNKNOWN":
        first = statement.token_first(skip_cm=True)
        if isinstance(first, Parenthesis):
            return statement_type(first.value[1:-1])
    return kind


def preparable(engine: str, query: str) -> bool:
    """
    Determine whether a query can be prepared on the given engine.

    Almost every MySQL statement can be prepared
    (https://dev.mysql.com/doc/refman/8.0/en/sql-prepared-statements.html),
    and SQLite compiles anything it can run.
    """
    if engine == Engine.POSTGRESQL:
        return statement_type(query) in _POSTGRESQL_PREPARABLE
    if engine in (Engine.MYSQL, Engine.SQLITE):
        return True
    return False


def _tokens(query: str) -> Iterator[tuple[str, bool]]:
    """
    Flattened token values of ``query``, flagged when they are placeholders.

    sqlparse lexes ``?3`` as a bare ``?`` followed by an integer; the pair
    is yielded as one ``?3`` placeholder.
    """
    for statement in sqlparse.parse(query):
        tokens = list(statement.flatten())
        i = 0
        while i < len(tokens):
            token = tokens[i]
            if token.ttype not in T.Name.Placeholder:
                yield token.value, False
                i += 1
                continue
            value = token.value
            if value == "?" and i + 1 < len(tokens) and tokens[i + 1].ttype in T.Number.Integer:
                value += tokens[i + 1].value
                i += 1
            yield value, True
            i += 1


def replace_placeholders(query: str, replacement: str = "NULL") -> tuple[str, int]:
    """
    Replace positional/named placeholders outside of literals.

    Returns the rewritten query and the number of placeholders replaced.
    """
    parts: list[str] = []
    count = 0
    for value, is_placeholder in _tokens(query):
        if is_placeholder:
            parts.append(replacement)
            count += 1
        else:
            parts.append(value)
    return ("".join(parts) if parts else query), count


def placeholder_count(query: str) -> int:
    """
    Number of bind slots in ``query``.

    ``?NNN`` and ``$NNN`` address slot NNN. A bare ``?`` takes the slot after
    the highest one seen so far, and a named placeholder (``:name``,
    ``$name``, ``%(name)s``) gets a slot the first time it appears and
    reuses it afterwards.
    """
    highest = 0
    named: dict[str, int] = {}
    for value, is_placeholder in _tokens(query):
        if not is_placeholder:
            continue
        suffix = value[1:]
        if value[0] in "?$" and suffix.isdigit():
            highest = max(highest, int(suffix))
        elif value in ("?", "%s"):
            highest += 1
        elif value not in named:
            highest += 1
            named[value] = highest
    return highest


def named_placeholders(query: str) -> list[str]:
    """Names of ``:name`` and ``$name`` placeholders, in order of first use."""
    names: dict[str, None] = {}
    for value, is_placeholder in _tokens(query):
        if is_placeholder and value[0] in ":$" and not value[1:].isdigit():
            names.setdefault(value[1:], None)
    return list(names)
