"""Warehouse collaborator interface.

The engine never talks to a warehouse SDK directly. Everything it needs is
expressed by the Warehouse protocol below; adapters (see
`modelops.core.adapters`) implement it for a concrete warehouse. Each method
is assumed to be atomic at the statement level: the materializer composes
them, it does not implement them.
"""

from __future__ import annotations

from typing import Any, Protocol, Sequence

STAGING_SUFFIX = "__modelops_staging"
BACKUP_SUFFIX = "__modelops_backup"

RELATION_VIEW = "view"
RELATION_TABLE = "table"


class Warehouse(Protocol):
    """Interface for the DDL/DML primitives used by the materializer."""

    def execute_ddl(self, statement: str) -> None:
        """Execute an arbitrary DDL/DML statement."""
        ...

    def execute_query(self, sql: str) -> list[dict[str, Any]]:
        """Execute a query and return its rows."""
        ...

    def execute_merge(
        self,
        target: str,
        source: str,
        keys: Sequence[str],
        *,
        partition_key: str | None = None,
    ) -> int | None:
        """
        Upsert the rows of `source` into `target` by `keys`.

        Rows of `source` sharing a key are collapsed first: the last row in
        source order wins. When `partition_key` is given the merge is scoped
        to the target partitions present in `source`.

        Returns the number of rows affected when the warehouse reports it.
        """
        ...

    def create_or_replace_view(self, name: str, sql: str) -> None:
        """Create or atomically replace a view."""
        ...

    def create_table_as(
        self,
        name: str,
        sql: str,
        *,
        partition_key: str | None = None,
        cluster_keys: Sequence[str] = (),
    ) -> None:
        """Create a new table from a query. Fails if `name` exists."""
        ...

    def insert_into(self, target: str, source: str) -> int | None:
        """Append every row of `source` to `target`."""
        ...

    def replace_partitions(
        self, target: str, source: str, partition_key: str
    ) -> int | None:
        """Replace the partitions of `target` that appear in `source`."""
        ...

    def rename_relation(self, from_name: str, to_name: str) -> None:
        """Rename a relation (both names fully qualified)."""
        ...

    def drop_relation(self, name: str) -> None:
        """Drop a table if it exists."""
        ...

    def relation_exists(self, name: str) -> bool:
        """Return True if a relation called `name` exists."""
        ...

    def drop_view(self, name: str) -> None:
        """Drop a view if it exists."""
        ...

    def relation_kind(self, name: str) -> str | None:
        """Return RELATION_VIEW or RELATION_TABLE for an existing relation, else None."""
        ...

    def count_rows(self, name: str) -> int | None:
        """Return the row count of a relation, if cheaply available."""
        ...

    def ensure_schema(self, schema: str) -> None:
        """Create a schema if it does not exist."""
        ...


def staging_name(relation: str) -> str:
    """Name of the staging relation used while building `relation`."""
    return f"{relation}{STAGING_SUFFIX}"


def backup_name(relation: str) -> str:
    """Name the previous version of `relation` is parked under during a swap."""
    return f"{relation}{BACKUP_SUFFIX}"
