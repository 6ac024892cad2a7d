"""
Configuration for sqlvet.

Two layers:
- The vet file (``sqlvet.yaml`` / ``sqlvet.json``): rule definitions and
  the SQL groups to vet. Committed to the repository and reviewed in PRs.
- Run settings: per-invocation switches read from environment variables,
  overridable from the command line.

Vet file format:
    version: "2"
    rules:
      - name: no-select-star
        rule: 'query.sql.contains("*")'
        msg: avoid select *
    sql:
      - engine: postgresql
        schema: [schema.sql]
        queries: [query.sql]
        request: build/request.json
        database:
          uri: postgresql://${PGUSER}@localhost/app
        rules: [sqlc/db-prepare, no-select-star]

Environment variables:
    SQLVET_NO_DATABASE=true     Never open database connections
    SQLVET_DUMP_EXPLAIN=true    Print every EXPLAIN statement and its JSON
    SQLVET_LOG_LEVEL=DEBUG      Logging level for the CLI
"""

from __future__ import annotations

import json
import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from sqlvet.db.base import Engine
from sqlvet.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILES = ("sqlvet.yaml", "sqlvet.yml", "sqlvet.json")


class RuleDefinition(BaseModel):
    """A named rule as written in the vet file."""

    model_config = ConfigDict(frozen=True)

    name: str = ""
    rule: str = Field(default="", description="CEL expression; true means the rule tripped")
    msg: str = Field(default="", description="Message printed with each violation")


class DatabaseConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    uri: str = Field(default="", description="Connection string; $VAR / ${VAR} are expanded")


class SQLGroup(BaseModel):
    """One group of schema and query files vetted together."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    engine: str
    schema_: list[str] = Field(default_factory=list, alias="schema")
    queries: list[str] = Field(default_factory=list)
    request: str | None = Field(
        default=None,
        description="Path of the CodeGenRequest JSON produced for this group",
    )
    database: DatabaseConfig | None = None
    rules: list[str] = Field(default_factory=list)

    @field_validator("schema_", "queries", mode="before")
    @classmethod
    def _single_path(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [value]
        return value

    @field_validator("engine")
    @classmethod
    def _known_engine(cls, value: str) -> str:
        if value not in Engine.ALL:
            raise ValueError(f"unknown engine '{value}', expected one of {', '.join(Engine.ALL)}")
        return value

    @property
    def label(self) -> str:
        """Short human description used in log lines."""
        return ", ".join(self.queries) or self.engine


class VetFile(BaseModel):
    """Parsed vet file."""

    model_config = ConfigDict(frozen=True)

    version: str = "2"
    rules: list[RuleDefinition] = Field(default_factory=list)
    sql: list[SQLGroup] = Field(default_factory=list)


def load_vet_file(path: str | Path) -> VetFile:
    """
    Load a vet file from YAML or JSON.

    Raises:
        ConfigurationError: If the file is missing, unreadable or invalid.
    """
    config_path = Path(path)
    try:
        raw = config_path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"error reading {config_path.name}: {e}") from e

    try:
        if config_path.suffix in (".yaml", ".yml"):
            data = yaml.safe_load(raw)
        else:
            data = json.loads(raw)
    except (yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"error parsing {config_path.name}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"error parsing {config_path.name}: expected a mapping at the top level")

    try:
        vet_file = VetFile.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"error validating {config_path.name}: {e}") from e

    logger.debug(
        "Loaded %s: %d rule(s), %d sql group(s)",
        config_path.name, len(vet_file.rules), len(vet_file.sql),
    )
    return vet_file


def find_vet_file(directory: Path) -> Path:
    """Locate the default vet file in ``directory``."""
    for name in DEFAULT_CONFIG_FILES:
        candidate = directory / name
        if candidate.exists():
            return candidate
    raise ConfigurationError(
        f"no vet file found in {directory} (looked for {', '.join(DEFAULT_CONFIG_FILES)})"
    )


# ── Run settings ─────────────────────────────────────────────────────────


class RunSettings(BaseModel):
    """Per-invocation switches."""

    model_config = ConfigDict(frozen=True)

    no_database: bool = Field(
        default=False,
        description="Disable database connections; rules needing one are reported",
    )
    dump_explain: bool = Field(
        default=False,
        description="Print each EXPLAIN statement and its raw JSON to stdout",
    )
    log_level: str = Field(default="WARNING", description="Logging level name")


def _parse_env_bool(value: str | None, default: bool = False) -> bool:
    """Parse boolean from environment variable."""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def load_settings_from_env() -> RunSettings:
    return RunSettings(
        no_database=_parse_env_bool(os.environ.get("SQLVET_NO_DATABASE")),
        dump_explain=_parse_env_bool(os.environ.get("SQLVET_DUMP_EXPLAIN")),
        log_level=os.environ.get("SQLVET_LOG_LEVEL", "WARNING").upper(),
    )


@lru_cache(maxsize=1)
def get_settings() -> RunSettings:
    """Run settings from the environment, cached for the process."""
    return load_settings_from_env()


def reset_settings() -> None:
    """Reset the cached settings (mainly for testing)."""
    get_settings.cache_clear()
