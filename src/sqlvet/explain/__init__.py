"""
EXPLAIN data model and decoders.

``EngineOutput`` is the tagged result of an explain call: exactly one of
``postgresql`` / ``mysql`` is populated, depending on the engine that ran
it. The evaluation environment always binds both rule variables; the side
that did not run is an empty structure.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from sqlvet.exceptions import ExplainError
from sqlvet.explain.mysql import MySQL, MySQLExplain
from sqlvet.explain.postgresql import Plan, PostgreSQL, PostgreSQLExplain


@dataclass(frozen=True)
class EngineOutput:
    """Explain result for one query: zero or one side populated, never both."""

    postgresql: PostgreSQL | None = None
    mysql: MySQL | None = None

    def __post_init__(self) -> None:
        if self.postgresql is not None and self.mysql is not None:
            raise ValueError("EngineOutput carries either a PostgreSQL or a MySQL plan, not both")

    @property
    def engine(self) -> str | None:
        if self.postgresql is not None:
            return "postgresql"
        if self.mysql is not None:
            return "mysql"
        return None

    def bindings(self) -> dict[str, PostgreSQL | MySQL]:
        """Values for the ``postgresql`` and ``mysql`` rule variables."""
        return {
            "postgresql": self.postgresql or PostgreSQL(),
            "mysql": self.mysql or MySQL(),
        }


def _load(raw: str | bytes | Any, engine: str) -> Any:
    if isinstance(raw, (str, bytes, bytearray)):
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise ExplainError(
                f"invalid EXPLAIN JSON at line {e.lineno}, column {e.colno}: {e.msg}",
                engine=engine,
            ) from e
    return raw


def decode_postgresql(raw: str | bytes | list[Any] | dict[str, Any]) -> PostgreSQLExplain:
    """
    Decode EXPLAIN (FORMAT JSON) output into ``PostgreSQLExplain``.

    PostgreSQL returns a single-element array; a bare object is accepted too.
    """
    data = _load(raw, "postgresql")
    if isinstance(data, list):
        if not data:
            raise ExplainError("empty EXPLAIN output", engine="postgresql")
        data = data[0]
    if not isinstance(data, dict):
        raise ExplainError(
            f"expected EXPLAIN JSON object, got {type(data).__name__}",
            engine="postgresql",
        )
    try:
        return PostgreSQLExplain.model_validate(data)
    except ValidationError as e:
        raise ExplainError(f"invalid EXPLAIN structure: {e}", engine="postgresql") from e


def decode_mysql(raw: str | bytes | dict[str, Any]) -> MySQLExplain:
    """
    Decode EXPLAIN FORMAT=JSON output into ``MySQLExplain``.

    A non-empty ``query_block.message`` is MySQL reporting an error through
    a success-shaped result and raises ``ExplainError``.
    """
    data = _load(raw, "mysql")
    if not isinstance(data, dict):
        raise ExplainError(
            f"expected EXPLAIN JSON object, got {type(data).__name__}",
            engine="mysql",
        )
    try:
        explain = MySQLExplain.model_validate(data)
    except ValidationError as e:
        raise ExplainError(f"invalid EXPLAIN structure: {e}", engine="mysql") from e
    if explain.query_block.message:
        raise ExplainError(f"mysql explain: {explain.query_block.message}", engine="mysql")
    return explain


__all__ = [
    "EngineOutput",
    "MySQL",
    "MySQLExplain",
    "Plan",
    "PostgreSQL",
    "PostgreSQLExplain",
    "decode_mysql",
    "decode_postgresql",
]
