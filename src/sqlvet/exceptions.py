"""
Package-level exception hierarchy for sqlvet.

All exceptions inherit from SqlVetError, enabling:
- Catching all sqlvet errors with a single except clause
- Context fields for debugging (rule_name, config_key, engine, etc.)
- Structured serialization via to_dict() for JSON error output

Errors fall into two classes. Fatal errors abort the whole vetting run;
reported errors become a diagnostic line and evaluation continues.

Hierarchy:
    SqlVetError
    ├── ConfigurationError        – Invalid vet file / unknown rule reference (fatal)
    ├── RequestError              – CodeGenRequest cannot be loaded (fatal)
    ├── RuleCompileError          – A rule definition was rejected (fatal)
    ├── RuleEvaluationError       – A rule produced a non-bool or failed to run (fatal)
    ├── DatabaseError             – Prepare failed against the database (reported)
    │   ├── ExplainError          – EXPLAIN failed or returned an error message (reported)
    │   └── DatabaseConnectionError – Connect / ping failure (fatal)
    └── FailedChecksError         – At least one rule reported a failure
"""

from __future__ import annotations

from typing import Any


class SqlVetError(Exception):
    """
    Base exception for all sqlvet errors.

    Attributes:
        message: Human-readable error description.
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON error output."""
        return {
            "error_type": type(self).__name__,
            "message": self.message,
        }


# ── Configuration Errors ─────────────────────────────────────────────────


class ConfigurationError(SqlVetError):
    """
    Error in the vet configuration.

    Attributes:
        config_key: The configuration key that caused the error (if known).
    """

    def __init__(self, message: str, config_key: str | None = None) -> None:
        self.config_key = config_key
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["config_key"] = self.config_key
        return result


class RequestError(SqlVetError):
    """
    Failed to load a CodeGenRequest payload.

    Attributes:
        source: Description of the input source (file path, "string", etc.).
    """

    def __init__(self, message: str, source: str | None = None) -> None:
        self.source = source
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["source"] = self.source
        return result


# ── Rule Errors ──────────────────────────────────────────────────────────


class RuleCompileError(SqlVetError):
    """
    A rule definition could not be compiled.

    Raised for empty or duplicate names, empty expressions, type-check
    failures and program construction failures. Always fatal: a broken
    rule must never silently skip queries.

    Attributes:
        rule_name: Name of the offending rule (empty if the name was missing).
    """

    def __init__(self, message: str, rule_name: str = "") -> None:
        self.rule_name = rule_name
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["rule_name"] = self.rule_name
        return result


class RuleEvaluationError(SqlVetError):
    """
    A compiled rule failed at evaluation time.

    Attributes:
        rule_name: The rule being evaluated.
        query_name: The query it was evaluated against.
    """

    def __init__(self, message: str, rule_name: str, query_name: str) -> None:
        self.rule_name = rule_name
        self.query_name = query_name
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["rule_name"] = self.rule_name
        result["query_name"] = self.query_name
        return result


# ── Database Errors ──────────────────────────────────────────────────────


class DatabaseError(SqlVetError):
    """
    A database round-trip failed.

    Driver exceptions are wrapped into this type at the adapter boundary,
    so the evaluation loop only deals with one error type.

    Attributes:
        engine: The engine that raised the error ("postgresql", "mysql", "sqlite").
    """

    def __init__(self, message: str, engine: str | None = None) -> None:
        self.engine = engine
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["engine"] = self.engine
        return result


class ExplainError(DatabaseError):
    """EXPLAIN failed, or the engine reported an error instead of a plan."""
    pass


class DatabaseConnectionError(DatabaseError):
    """Connection establishment or ping failed."""
    pass


# ── Aggregated Result ────────────────────────────────────────────────────


class FailedChecksError(SqlVetError):
    """
    At least one rule reported a failure.

    Diagnostics have already been written when this is raised; callers
    should exit non-zero without printing anything else.

    Attributes:
        count: Number of reported failures.
    """

    def __init__(self, count: int) -> None:
        self.count = count
        super().__init__("failed checks")

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result["count"] = self.count
        return result
