"""
Database capability providers.

Usage:
    from sqlvet.db import connect

    conn = await connect("postgresql", "postgresql://localhost/app")
    async with conn:
        await conn.ping()
        if conn.preparer is not None:
            await conn.preparer.prepare("stmt_1", "SELECT 1")
"""

from __future__ import annotations

from collections.abc import Callable

from sqlvet.db.base import (
    Engine,
    EngineConnection,
    Explainer,
    Preparer,
    named_placeholders,
    placeholder_count,
    preparable,
    replace_placeholders,
    statement_type,
)
from sqlvet.exceptions import ConfigurationError


async def connect(
    engine: str,
    dsn: str,
    on_explain: Callable[[str, str], None] | None = None,
) -> EngineConnection:
    """
    Open a connection for the given engine.

    Drivers are imported lazily so that only the engines in use need to be
    importable.

    Raises:
        ConfigurationError: If the engine is not supported.
        DatabaseConnectionError: If the connection cannot be established.
    """
    if engine == Engine.POSTGRESQL:
        from sqlvet.db.postgresql import PostgreSQLConnection

        return await PostgreSQLConnection.connect(dsn, on_explain)
    if engine == Engine.MYSQL:
        from sqlvet.db.mysql import MySQLConnection

        return await MySQLConnection.connect(dsn, on_explain)
    if engine == Engine.SQLITE:
        from sqlvet.db.sqlite import SQLiteConnection

        return await SQLiteConnection.connect(dsn)
    raise ConfigurationError(f"unsupported database uri: {engine}", config_key="engine")


__all__ = [
    "Engine",
    "EngineConnection",
    "Explainer",
    "Preparer",
    "connect",
    "named_placeholders",
    "placeholder_count",
    "preparable",
    "replace_placeholders",
    "statement_type",
]
