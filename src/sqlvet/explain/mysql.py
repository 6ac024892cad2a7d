"""
Pydantic models for MySQL EXPLAIN FORMAT=JSON output.

MySQL reports a ``query_block`` object. A simple query carries its access
path in ``table``; joins nest tables under ``nested_loop``; ORDER BY adds
an ``ordering_operation`` wrapper. Cost figures come back as strings in
``cost_info`` maps (e.g. ``{"query_cost": "1.00"}``).

When MySQL cannot produce a plan it still answers with a document, but
puts the reason into ``query_block.message``.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class Table(BaseModel):
    """Access path for a single table."""

    model_config = ConfigDict(extra="ignore")

    table_name: str = ""
    access_type: str = Field(
        default="",
        description="ALL, index, range, ref, eq_ref, const, system",
    )
    rows_examined_per_scan: int = 0
    rows_produced_per_join: int = 0
    filtered: str = ""
    cost_info: dict[str, str] = Field(default_factory=dict)
    used_columns: list[str] = Field(default_factory=list)
    insert: bool = False
    possible_keys: list[str] = Field(default_factory=list)
    key: str = ""
    used_key_parts: list[str] = Field(default_factory=list)
    key_length: str = ""
    ref: list[str] = Field(default_factory=list)

    @property
    def is_full_table_scan(self) -> bool:
        """Check if this is a full table scan (access_type='ALL')."""
        return self.access_type == "ALL"


class NestedLoopObj(BaseModel):
    """One step of a nested-loop join."""

    model_config = ConfigDict(extra="ignore")

    table: Table = Field(default_factory=Table)


class OrderingOperation(BaseModel):
    """ORDER BY handling, wrapping the ordered access path."""

    model_config = ConfigDict(extra="ignore")

    using_filesort: bool = False
    cost_info: dict[str, str] = Field(default_factory=dict)
    table: Table = Field(default_factory=Table)
    nested_loop: list[NestedLoopObj] = Field(default_factory=list)


class QueryBlock(BaseModel):
    """Root of the MySQL plan."""

    model_config = ConfigDict(extra="ignore")

    select_id: int = 0
    message: str = ""
    cost_info: dict[str, str] = Field(default_factory=dict)
    table: Table = Field(default_factory=Table)
    ordering_operation: OrderingOperation = Field(default_factory=OrderingOperation)
    nested_loop: list[NestedLoopObj] = Field(default_factory=list)


class MySQLExplain(BaseModel):
    """Top-level EXPLAIN FORMAT=JSON document."""

    model_config = ConfigDict(extra="ignore")

    query_block: QueryBlock = Field(default_factory=QueryBlock)

    def tables(self) -> list[Table]:
        """Every table access in the plan, in plan order."""
        block = self.query_block
        found: list[Table] = []
        for candidate in (block.table, block.ordering_operation.table):
            if candidate.table_name:
                found.append(candidate)
        for step in (*block.nested_loop, *block.ordering_operation.nested_loop):
            if step.table.table_name:
                found.append(step.table)
        return found


class MySQL(BaseModel):
    """Value of the ``mysql`` rule variable."""

    model_config = ConfigDict(extra="ignore")

    explain: MySQLExplain = Field(default_factory=MySQLExplain)
