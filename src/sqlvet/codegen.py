"""
CodeGenRequest input models and loader.

The upstream SQL analyzer turns schema and query files into a
``CodeGenRequest``: the settings of one SQL group, the resolved catalog
and the ordered list of parsed queries with their parameters. sqlvet
consumes that payload read-only, as JSON.

Only the parts the vetting engine reads are modelled in detail; unknown
keys (code-generation options, plugin payloads) are discarded.

Error handling philosophy: fail fast with a clear message. A request that
cannot be loaded is a fatal error for the run.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from sqlvet.exceptions import RequestError

logger = logging.getLogger(__name__)

# Query flag that opts a query out of vetting.
QUERY_FLAG_VET_DISABLE = "@sqlc-vet-disable"


class _Message(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)


class Identifier(_Message):
    catalog: str = ""
    schema_: str = Field(default="", alias="schema")
    name: str = ""


class Column(_Message):
    name: str = ""
    not_null: bool = False
    is_array: bool = False
    comment: str = ""
    length: int = 0
    is_named_param: bool = False
    is_func_call: bool = False
    scope: str = ""
    table: Identifier | None = None
    table_alias: str = ""
    type: Identifier | None = None
    is_sqlc_slice: bool = False
    embed_table: Identifier | None = None
    original_name: str = ""
    unsigned: bool = False


class Parameter(_Message):
    number: int = Field(default=0, description="1-based position of the parameter")
    column: Column | None = None


class Query(_Message):
    """A single parsed query as produced by the upstream analyzer."""

    text: str = ""
    name: str = ""
    cmd: str = Field(default="", description="Command kind, e.g. ':one', ':many', ':exec'")
    columns: list[Column] = Field(default_factory=list)
    params: list[Parameter] = Field(
        default_factory=list,
        validation_alias=AliasChoices("parameters", "params"),
    )
    comments: list[str] = Field(default_factory=list)
    filename: str = ""
    insert_into_table: Identifier | None = None
    flags: list[str] = Field(
        default_factory=list,
        description="Query flags (e.g. '@sqlc-vet-disable') reported by the analyzer",
    )

    def has_flag(self, flag: str) -> bool:
        """
        Check for a query flag.

        Flags come either from ``flags`` or from the leading comment lines,
        where a flag is any whitespace-separated token (``-- @flag``).
        """
        if flag in self.flags:
            return True
        for comment in self.comments:
            tokens = comment.strip().lstrip("-").split()
            if flag in tokens:
                return True
        return False

    @property
    def vet_disabled(self) -> bool:
        return self.has_flag(QUERY_FLAG_VET_DISABLE)


class Enum(_Message):
    name: str = ""
    vals: list[str] = Field(default_factory=list)
    comment: str = ""


class Table(_Message):
    rel: Identifier | None = None
    columns: list[Column] = Field(default_factory=list)
    comment: str = ""


class CatalogSchema(_Message):
    comment: str = ""
    name: str = ""
    tables: list[Table] = Field(default_factory=list)
    enums: list[Enum] = Field(default_factory=list)


class Catalog(_Message):
    comment: str = ""
    default_schema: str = ""
    name: str = ""
    schemas: list[CatalogSchema] = Field(default_factory=list)


class Settings(_Message):
    version: str = ""
    engine: str = ""
    schema_: list[str] = Field(default_factory=list, alias="schema")
    queries: list[str] = Field(default_factory=list)


class CodeGenRequest(_Message):
    """The analyzed representation of one SQL group."""

    settings: Settings = Field(default_factory=Settings)
    catalog: Catalog = Field(default_factory=Catalog)
    queries: list[Query] = Field(default_factory=list)
    sqlc_version: str = ""


def load_request(source: str | Path | dict[str, Any]) -> CodeGenRequest:
    """
    Load a CodeGenRequest.

    Accepts:
    - File path (Path, or str naming an existing file)
    - JSON string
    - Dict (already decoded)

    Raises:
        RequestError: If the input cannot be read, decoded or validated.
    """
    label = "dict"
    if isinstance(source, dict):
        data: Any = source
    else:
        text, label = _read_source(source)
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise RequestError(
                f"invalid JSON in code generation request at line {e.lineno}, "
                f"column {e.colno}: {e.msg}",
                source=label,
            ) from e

    if not isinstance(data, dict):
        raise RequestError(
            f"expected a JSON object, got {type(data).__name__}",
            source=label,
        )

    try:
        request = CodeGenRequest.model_validate(data)
    except ValidationError as e:
        raise RequestError(f"invalid code generation request: {e}", source=label) from e

    logger.debug("Loaded request from %s with %d queries", label, len(request.queries))
    return request


def _read_source(source: str | Path) -> tuple[str, str]:
    if isinstance(source, Path):
        path = source
    elif source.lstrip().startswith("{"):
        return source, "string"
    else:
        path = Path(source)

    try:
        return path.read_text(encoding="utf-8"), str(path)
    except OSError as e:
        raise RequestError(f"cannot read code generation request: {e}", source=str(path)) from e
