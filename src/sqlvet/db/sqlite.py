"""SQLite capability provider (aiosqlite)."""

from __future__ import annotations

import logging
import sqlite3
from typing import Any

import aiosqlite

from sqlvet.db.base import Engine, EngineConnection, Preparer, named_placeholders, placeholder_count
from sqlvet.exceptions import DatabaseConnectionError, DatabaseError

logger = logging.getLogger(__name__)


def _null_bindings(query: str) -> Any:
    """NULL for every slot; named placeholders are bound by name."""
    names = named_placeholders(query)
    if names:
        return {name: None for name in names}
    return [None] * placeholder_count(query)


class SQLiteConnection(EngineConnection):
    """
    Prepare-only access to SQLite.

    SQLite compiles a statement when it is prepared; running it under
    ``EXPLAIN`` lists the compiled program instead of executing it, which
    makes it a prepare probe. There is no explainer: EXPLAIN QUERY PLAN
    output is documented as unstable (https://www.sqlite.org/eqp.html).
    """

    engine = Engine.SQLITE

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    @classmethod
    async def connect(cls, dsn: str) -> SQLiteConnection:
        try:
            conn = await aiosqlite.connect(dsn, uri=dsn.startswith("file:"))
        except sqlite3.Error as e:
            raise DatabaseConnectionError(
                f"database: connection error: {e}", engine=cls.engine
            ) from e
        return cls(conn)

    @property
    def preparer(self) -> Preparer:
        return self

    async def ping(self) -> None:
        try:
            await self._conn.execute("SELECT 1")
        except sqlite3.Error as e:
            raise DatabaseConnectionError(
                f"database: connection error: {e}", engine=self.engine
            ) from e

    async def prepare(self, name: str, query: str) -> None:
        logger.debug("Preparing %s", name)
        bindings = _null_bindings(query)
        try:
            cursor = await self._conn.execute("EXPLAIN " + query, bindings)
            await cursor.close()
        except sqlite3.Error as e:
            raise DatabaseError(str(e), engine=self.engine) from e

    async def close(self) -> None:
        await self._conn.close()
