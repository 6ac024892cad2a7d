"""
Rule-facing projections of the analyzed input.

Rule expressions never see the full CodeGenRequest. They see:
- ``query``: a ``VetQuery``, the engine-agnostic view of one query
- ``config``: a ``VetConfig``, the global settings of the SQL group

Both are derived once (per query and per group respectively) and are
read-only for the rest of the evaluation.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from sqlvet.codegen import CodeGenRequest, Query


class VetParameter(BaseModel):
    model_config = ConfigDict(frozen=True)

    number: int = Field(default=0, description="1-based position of the parameter")


class VetQuery(BaseModel):
    """Value of the ``query`` rule variable."""

    model_config = ConfigDict(frozen=True)

    sql: str = ""
    name: str = ""
    cmd: str = Field(default="", description="Command kind including the colon, e.g. ':many'")
    params: list[VetParameter] = Field(default_factory=list)


class VetConfig(BaseModel):
    """Value of the ``config`` rule variable."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    version: str = ""
    engine: str = ""
    schema_: list[str] = Field(default_factory=list, alias="schema")
    queries: list[str] = Field(default_factory=list)


def vet_query(query: Query) -> VetQuery:
    return VetQuery(
        sql=query.text,
        name=query.name,
        cmd=query.cmd,
        params=[VetParameter(number=p.number) for p in query.params],
    )


def vet_config(request: CodeGenRequest) -> VetConfig:
    settings = request.settings
    return VetConfig(
        version=settings.version,
        engine=settings.engine,
        schema=list(settings.schema_),
        queries=list(settings.queries),
    )
