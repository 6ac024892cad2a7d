"""sqlvet - Rule-based vetting of compiled SQL queries."""

__version__ = "0.3.0"
__license__ = "MIT"

# Exception hierarchy (import first so other modules can use it)
from sqlvet.exceptions import (
    SqlVetError,
    ConfigurationError,
    RequestError,
    RuleCompileError,
    RuleEvaluationError,
    DatabaseError,
    ExplainError,
    DatabaseConnectionError,
    FailedChecksError,
)

# Public API exports
from sqlvet.checker import Checker, RequestFileLoader, vet
from sqlvet.codegen import CodeGenRequest, Query, load_request
from sqlvet.config import (
    RuleDefinition,
    RunSettings,
    SQLGroup,
    VetFile,
    get_settings,
    load_vet_file,
)
from sqlvet.explain import EngineOutput, MySQL, PostgreSQL
from sqlvet.models import VetConfig, VetQuery
from sqlvet.report import Reporter, Violation
from sqlvet.rules import RULE_DB_PREPARE, Rule, RuleSet, compile_rules, validate_references

__all__ = [
    # Version
    "__version__",
    # Exceptions
    "SqlVetError",
    "ConfigurationError",
    "RequestError",
    "RuleCompileError",
    "RuleEvaluationError",
    "DatabaseError",
    "ExplainError",
    "DatabaseConnectionError",
    "FailedChecksError",
    # Orchestration
    "Checker",
    "RequestFileLoader",
    "vet",
    # Input
    "CodeGenRequest",
    "Query",
    "load_request",
    # Configuration
    "RuleDefinition",
    "RunSettings",
    "SQLGroup",
    "VetFile",
    "get_settings",
    "load_vet_file",
    # Rule environment
    "EngineOutput",
    "MySQL",
    "PostgreSQL",
    "VetConfig",
    "VetQuery",
    # Rules and reporting
    "RULE_DB_PREPARE",
    "Rule",
    "RuleSet",
    "compile_rules",
    "validate_references",
    "Reporter",
    "Violation",
]
