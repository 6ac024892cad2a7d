"""
Pydantic models for PostgreSQL EXPLAIN (FORMAT JSON) output.

The structure is:
- PostgreSQL: Wrapper bound to the ``postgresql`` rule variable
- PostgreSQLExplain: The single plan document returned by EXPLAIN
- Plan: Recursive structure representing each node in the plan tree
- Planning: Buffer usage of the planning phase

PostgreSQL EXPLAIN JSON uses "Title Case" keys. They are accepted on input
via validation aliases; rule expressions see the snake_case field names.

Every field has a zero value (empty string, 0, false, empty list/map,
empty sub-plan) so that expressions never have to guard against nulls.
Unknown keys are discarded.

Reference: https://www.postgresql.org/docs/current/using-explain.html
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class _BufferCounters(BaseModel):
    """Buffer usage counters reported with the BUFFERS option."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    shared_hit_blocks: int = Field(default=0, validation_alias="Shared Hit Blocks")
    shared_read_blocks: int = Field(default=0, validation_alias="Shared Read Blocks")
    shared_dirtied_blocks: int = Field(default=0, validation_alias="Shared Dirtied Blocks")
    shared_written_blocks: int = Field(default=0, validation_alias="Shared Written Blocks")
    local_hit_blocks: int = Field(default=0, validation_alias="Local Hit Blocks")
    local_read_blocks: int = Field(default=0, validation_alias="Local Read Blocks")
    local_dirtied_blocks: int = Field(default=0, validation_alias="Local Dirtied Blocks")
    local_written_blocks: int = Field(default=0, validation_alias="Local Written Blocks")
    temp_read_blocks: int = Field(default=0, validation_alias="Temp Read Blocks")
    temp_written_blocks: int = Field(default=0, validation_alias="Temp Written Blocks")


class Plan(_BufferCounters):
    """
    A single node in the PostgreSQL query execution plan.

    This is a recursive structure - each node may contain child nodes in
    ``plans``. Fields are divided into:
    - Universal fields: present on all nodes
    - Buffer counters: inherited from ``_BufferCounters``
    - Node-specific fields: Sort, Hash Join and Index Scan details
    """

    # =========================================================================
    # Universal fields
    # =========================================================================

    node_type: str = Field(
        default="",
        validation_alias="Node Type",
        description="The type of plan node (e.g., 'Seq Scan', 'Index Scan')",
    )
    parent_relationship: str = Field(default="", validation_alias="Parent Relationship")
    relation_name: str = Field(
        default="",
        validation_alias="Relation Name",
        description="Table name for scan nodes",
    )
    schema_name: str = Field(
        default="",
        validation_alias="Schema",
        description="Schema name for the relation",
    )
    alias: str = Field(default="", validation_alias="Alias")
    parallel_aware: bool = Field(default=False, validation_alias="Parallel Aware")
    async_capable: bool = Field(default=False, validation_alias="Async Capable")
    startup_cost: float = Field(
        default=0.0,
        validation_alias="Startup Cost",
        description="Estimated cost to return the first row",
    )
    total_cost: float = Field(
        default=0.0,
        validation_alias="Total Cost",
        description="Estimated cost to return all rows",
    )
    plan_rows: int = Field(
        default=0,
        validation_alias="Plan Rows",
        description="Estimated number of rows to be returned",
    )
    plan_width: int = Field(
        default=0,
        validation_alias="Plan Width",
        description="Estimated average width of rows in bytes",
    )
    output: list[str] = Field(default_factory=list, validation_alias="Output")

    # =========================================================================
    # Child nodes
    # =========================================================================

    plans: list[Plan] = Field(
        default_factory=list,
        validation_alias="Plans",
        description="Child plan nodes",
    )

    # "Node Type": "Sort"
    sort_key: list[str] = Field(default_factory=list, validation_alias="Sort Key")

    # "Node Type": "Hash Join"
    join_type: str = Field(default="", validation_alias="Join Type")
    inner_unique: bool = Field(default=False, validation_alias="Inner Unique")
    hash_cond: str = Field(default="", validation_alias="Hash Cond")

    # "Node Type": "Index Scan"
    index_name: str = Field(default="", validation_alias="Index Name")
    scan_direction: str = Field(default="", validation_alias="Scan Direction")
    index_cond: str = Field(default="", validation_alias="Index Cond")

    def iter_nodes(self) -> list[Plan]:
        """All nodes in the plan tree, depth-first."""
        nodes = [self]
        for child in self.plans:
            nodes.extend(child.iter_nodes())
        return nodes


class Planning(_BufferCounters):
    """Buffer usage of the planning phase."""


class PostgreSQLExplain(BaseModel):
    """
    Top-level EXPLAIN (FORMAT JSON) document.

    PostgreSQL returns the output as a single-element array; this model
    represents the inner object.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    plan: Plan = Field(default_factory=Plan, validation_alias="Plan")
    settings: dict[str, str] = Field(
        default_factory=dict,
        validation_alias="Settings",
        description="Non-default planner settings (SETTINGS option)",
    )
    planning: Planning = Field(default_factory=Planning, validation_alias="Planning")


class PostgreSQL(BaseModel):
    """Value of the ``postgresql`` rule variable."""

    model_config = ConfigDict(extra="ignore")

    explain: PostgreSQLExplain = Field(default_factory=PostgreSQLExplain)
