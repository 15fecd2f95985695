"""Core model domain types.

This module defines the declared transformation units ("models") and the
external sources they may read from. These types are immutable once loaded
and intentionally free of warehouse SDK types and CLI concerns, so the same
definitions can be consumed by the planner, the materializer and tests.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class Materialization(str, Enum):
    """
    Physical strategy used to realize a model.

    Values:
        VIEW: Create-or-replace view over the compiled query.
        TABLE: Full rebuild into a staging table, then swap into place.
        INCREMENTAL: Merge the compiled query's output into an existing table.
    """

    VIEW = "view"
    TABLE = "table"
    INCREMENTAL = "incremental"


class IncrementalStrategy(str, Enum):
    """
    How an incremental batch is applied to an existing target.

    Values:
        MERGE: Upsert by merge key(s).
        APPEND: Insert every incoming row.
        INSERT_OVERWRITE: Replace the partitions present in the batch.
    """

    MERGE = "merge"
    APPEND = "append"
    INSERT_OVERWRITE = "insert_overwrite"


@dataclass(frozen=True)
class Column:
    """A declared output column of a model."""

    name: str
    type: str | None = None
    description: str = ""


@dataclass(frozen=True)
class Source:
    """
    An external relation owned outside the engine.

    Sources are valid upstream references; the engine never builds them and
    treats them as always materialized.
    """

    name: str
    relation: str | None = None

    @property
    def target(self) -> str:
        """Return the relation name the source resolves to."""
        return self.relation or self.name


@dataclass(frozen=True)
class ModelDefinition:
    """
    A single declared transformation producing a persisted relation.

    Attributes:
        name: Unique identity of the model; used by references and selection.
        schema: Target schema the relation is created in.
        materialization: Physical strategy (view, table, incremental).
        sql: Compiled query producing the model's rows.
        tags: Tags used by `tag:<name>` selection.
        upstream: Ordered references to upstream models or sources.
        partition_key: Optional partition column (must be a typed column).
        cluster_keys: Optional clustering columns.
        merge_keys: Key column(s) identifying a row for incremental merges.
        incremental_strategy: How incremental batches are applied.
        columns: Declared output columns.
        description: Free-form documentation.
    """

    name: str
    schema: str
    materialization: Materialization
    sql: str
    tags: frozenset[str] = field(default_factory=frozenset)
    upstream: tuple[str, ...] = ()
    partition_key: str | None = None
    cluster_keys: tuple[str, ...] = ()
    merge_keys: tuple[str, ...] = ()
    incremental_strategy: IncrementalStrategy = IncrementalStrategy.MERGE
    columns: tuple[Column, ...] = ()
    description: str = ""

    @property
    def relation(self) -> str:
        """Fully qualified target relation (`schema.name`)."""
        return f"{self.schema}.{self.name}"

    def column(self, name: str) -> Column | None:
        """Return the declared column called `name`, if any."""
        for col in self.columns:
            if col.name == name:
                return col
        return None
