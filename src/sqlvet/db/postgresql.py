"""PostgreSQL capability provider (asyncpg)."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING, Any

import asyncpg

from sqlvet.db.base import Engine, EngineConnection, Explainer, Preparer
from sqlvet.exceptions import DatabaseConnectionError, DatabaseError, ExplainError
from sqlvet.explain import EngineOutput, PostgreSQL, decode_postgresql

if TYPE_CHECKING:
    from sqlvet.codegen import Parameter

logger = logging.getLogger(__name__)

EXPLAIN_PREFIX = "EXPLAIN (ANALYZE false, VERBOSE, COSTS, SETTINGS, BUFFERS, FORMAT JSON) "

_DRIVER_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError)

# Checked before _DRIVER_ERRORS: PostgresConnectionError is a PostgresError.
_CONNECTION_ERRORS = (asyncpg.PostgresConnectionError, OSError, asyncio.TimeoutError)


class PostgreSQLConnection(EngineConnection):
    """
    Prepare and explain against PostgreSQL.

    Prepared statements are created with explicit names and never executed.
    EXPLAIN runs without ANALYZE, so the statement itself never runs either.
    """

    engine = Engine.POSTGRESQL

    def __init__(
        self,
        conn: asyncpg.Connection,
        on_explain: Callable[[str, str], None] | None = None,
    ) -> None:
        self._conn = conn
        self._on_explain = on_explain

    @classmethod
    async def connect(
        cls,
        dsn: str,
        on_explain: Callable[[str, str], None] | None = None,
    ) -> PostgreSQLConnection:
        try:
            conn = await asyncpg.connect(dsn)
        except (*_CONNECTION_ERRORS, *_DRIVER_ERRORS, ValueError) as e:
            raise DatabaseConnectionError(
                f"database: connection error: {e}", engine=cls.engine
            ) from e
        return cls(conn, on_explain)

    @property
    def preparer(self) -> Preparer:
        return self

    @property
    def explainer(self) -> Explainer:
        return self

    async def ping(self) -> None:
        try:
            await self._conn.execute("SELECT 1")
        except (*_CONNECTION_ERRORS, *_DRIVER_ERRORS) as e:
            raise self._connection_error(e) from e

    async def prepare(self, name: str, query: str) -> None:
        logger.debug("Preparing %s", name)
        try:
            await self._conn.prepare(query, name=name)
        except _CONNECTION_ERRORS as e:
            raise self._connection_error(e) from e
        except _DRIVER_ERRORS as e:
            raise DatabaseError(str(e), engine=self.engine) from e

    async def explain(self, query: str, params: Sequence[Parameter] = ()) -> EngineOutput:
        statement = EXPLAIN_PREFIX + query
        arity = max((p.number for p in params), default=0)
        args: list[Any] = [None] * arity
        try:
            raw = await self._conn.fetchval(statement, *args)
        except _CONNECTION_ERRORS as e:
            raise self._connection_error(e) from e
        except _DRIVER_ERRORS as e:
            raise ExplainError(str(e), engine=self.engine) from e

        if self._on_explain is not None:
            self._on_explain(statement, raw if isinstance(raw, str) else str(raw))

        explain = decode_postgresql(raw)
        return EngineOutput(postgresql=PostgreSQL(explain=explain))

    async def close(self) -> None:
        if not self._conn.is_closed():
            await self._conn.close()
