"""Databricks SQL warehouse adapter.

Statements go through the SQL Statement Execution API of databricks-sdk.
Long statements are submitted asynchronously and polled, so an external
cancellation can cancel them server-side.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Sequence

from databricks.sdk import WorkspaceClient
from databricks.sdk.errors import (
    Aborted,
    DatabricksError,
    DeadlineExceeded,
    ResourceExhausted,
    TemporarilyUnavailable,
    TooManyRequests,
)
from databricks.sdk.service.sql import (
    ExecuteStatementRequestOnWaitTimeout,
    StatementResponse,
    StatementState,
)

from modelops.core.errors import CancellationError, ExecutionError
from modelops.core.runs import CancelToken
from modelops.core.warehouse import RELATION_TABLE, RELATION_VIEW

logger = logging.getLogger(__name__)

_TRANSIENT_SDK_ERRORS = (
    Aborted,
    DeadlineExceeded,
    ResourceExhausted,
    TemporarilyUnavailable,
    TooManyRequests,
)

_TRANSIENT_STATEMENT_CODES = {
    "ABORTED",
    "DEADLINE_EXCEEDED",
    "IO_ERROR",
    "RESOURCE_EXHAUSTED",
    "SERVICE_UNDER_MAINTENANCE",
    "TEMPORARILY_UNAVAILABLE",
    "WORKSPACE_TEMPORARILY_UNAVAILABLE",
}

_TERMINAL_STATES = {
    StatementState.SUCCEEDED,
    StatementState.FAILED,
    StatementState.CANCELED,
    StatementState.CLOSED,
}

# Above this many distinct partition values a merge is not scoped by partition.
_MAX_PARTITION_LITERALS = 1000

_SEQ_COL = "__modelops_seq"
_RANK_COL = "__modelops_rank"


def quote_ident(name: str) -> str:
    """Quote a (possibly dotted) identifier with backticks, part by part."""
    return ".".join(f"`{part.replace('`', '``')}`" for part in name.split("."))


def _literal(value: Any) -> str:
    return "'" + str(value).replace("\\", "\\\\").replace("'", "\\'") + "'"


def _code_of(error: Any) -> str:
    code = getattr(error, "error_code", None)
    return str(getattr(code, "value", code) or "")


class DatabricksSqlWarehouse:
    """Warehouse adapter over the Databricks SQL Statement Execution API."""

    def __init__(
        self,
        client: WorkspaceClient,
        warehouse_id: str,
        *,
        catalog: str | None = None,
        wait_timeout: str = "30s",
        poll_interval: float = 2.0,
        cancel_token: CancelToken | None = None,
    ):
        """Create an adapter bound to one SQL warehouse."""
        if not warehouse_id:
            raise ValueError("warehouse_id is required for the Databricks SQL warehouse")
        self.client = client
        self.warehouse_id = warehouse_id
        self.catalog = catalog
        self.wait_timeout = wait_timeout
        self.poll_interval = poll_interval
        self.cancel_token = cancel_token

    # ------------------------------------------------------------------
    # statement execution
    # ------------------------------------------------------------------

    def _submit(self, statement: str) -> StatementResponse:
        logger.debug("SQL> %s", statement)
        try:
            response = self.client.statement_execution.execute_statement(
                statement=statement,
                warehouse_id=self.warehouse_id,
                catalog=self.catalog,
                wait_timeout=self.wait_timeout,
                on_wait_timeout=ExecuteStatementRequestOnWaitTimeout.CONTINUE,
            )
        except _TRANSIENT_SDK_ERRORS as exc:
            raise ExecutionError(str(exc), transient=True, statement=statement) from exc
        except DatabricksError as exc:
            raise ExecutionError(str(exc), statement=statement) from exc
        return self._wait(response, statement)

    def _wait(self, response: StatementResponse, statement: str) -> StatementResponse:
        """Poll a statement until it reaches a terminal state."""
        while response.status is None or response.status.state not in _TERMINAL_STATES:
            if self.cancel_token is not None and self.cancel_token.cancelled:
                self.client.statement_execution.cancel_execution(response.statement_id)
                raise CancellationError(f"statement {response.statement_id} cancelled")
            time.sleep(self.poll_interval)
            try:
                response = self.client.statement_execution.get_statement(
                    response.statement_id
                )
            except _TRANSIENT_SDK_ERRORS as exc:
                raise ExecutionError(str(exc), transient=True, statement=statement) from exc
            except DatabricksError as exc:
                raise ExecutionError(str(exc), statement=statement) from exc

        state = response.status.state
        if state == StatementState.SUCCEEDED:
            return response
        if state == StatementState.CANCELED:
            raise CancellationError(f"statement {response.statement_id} was cancelled")

        error = response.status.error
        message = getattr(error, "message", None) or f"statement ended in state {state.value}"
        raise ExecutionError(
            message,
            transient=_code_of(error) in _TRANSIENT_STATEMENT_CODES,
            statement=statement,
        )

    @staticmethod
    def _rows(response: StatementResponse) -> list[dict[str, Any]]:
        manifest = response.manifest
        columns = []
        if manifest is not None and manifest.schema is not None:
            columns = [c.name for c in (manifest.schema.columns or [])]
        data = (response.result.data_array if response.result else None) or []
        return [dict(zip(columns, row)) for row in data]

    @classmethod
    def _affected(cls, response: StatementResponse) -> int | None:
        rows = cls._rows(response)
        if not rows:
            return None
        value = rows[0].get("num_affected_rows")
        try:
            return int(value) if value is not None else None
        except (TypeError, ValueError):
            return None

    # ------------------------------------------------------------------
    # Warehouse protocol
    # ------------------------------------------------------------------

    def execute_ddl(self, statement: str) -> None:
        self._submit(statement)

    def execute_query(self, sql: str) -> list[dict[str, Any]]:
        return self._rows(self._submit(sql))

    def create_or_replace_view(self, name: str, sql: str) -> None:
        self._submit(f"CREATE OR REPLACE VIEW {quote_ident(name)} AS\n{sql}")

    def create_table_as(
        self,
        name: str,
        sql: str,
        *,
        partition_key: str | None = None,
        cluster_keys: Sequence[str] = (),
    ) -> None:
        layout = ""
        if partition_key:
            # Delta does not allow partitioning and liquid clustering together.
            layout = f"\nPARTITIONED BY ({quote_ident(partition_key)})"
        elif cluster_keys:
            layout = f"\nCLUSTER BY ({', '.join(quote_ident(k) for k in cluster_keys)})"
        self._submit(f"CREATE TABLE {quote_ident(name)}{layout}\nAS\n{sql}")

    def _partition_values(self, source: str, partition_key: str) -> list[Any] | None:
        rows = self.execute_query(
            f"SELECT DISTINCT {quote_ident(partition_key)} AS v FROM {quote_ident(source)} "
            f"LIMIT {_MAX_PARTITION_LITERALS + 1}"
        )
        if len(rows) > _MAX_PARTITION_LITERALS:
            return None
        return [r["v"] for r in rows]

    def execute_merge(
        self,
        target: str,
        source: str,
        keys: Sequence[str],
        *,
        partition_key: str | None = None,
    ) -> int | None:
        if not keys:
            raise ExecutionError(f"merge into {target} needs at least one key")

        key_list = ", ".join(quote_ident(k) for k in keys)
        on = " AND ".join(f"t.{quote_ident(k)} = s.{quote_ident(k)}" for k in keys)

        if partition_key:
            values = self._partition_values(source, partition_key)
            if values is not None:
                present = [v for v in values if v is not None]
                clauses = []
                if present:
                    clauses.append(
                        f"t.{quote_ident(partition_key)} IN ({', '.join(_literal(v) for v in present)})"
                    )
                if len(present) != len(values):
                    clauses.append(f"t.{quote_ident(partition_key)} IS NULL")
                if clauses:
                    on = f"{on} AND ({' OR '.join(clauses)})"

        # Collapse duplicate keys in the batch: the last row in source order wins.
        deduped = (
            f"SELECT * EXCEPT ({_SEQ_COL}, {_RANK_COL}) FROM (\n"
            f"  SELECT *, ROW_NUMBER() OVER (PARTITION BY {key_list} "
            f"ORDER BY {_SEQ_COL} DESC) AS {_RANK_COL}\n"
            f"  FROM (SELECT *, monotonically_increasing_id() AS {_SEQ_COL} "
            f"FROM {quote_ident(source)})\n"
            f") WHERE {_RANK_COL} = 1"
        )
        statement = (
            f"MERGE INTO {quote_ident(target)} AS t\n"
            f"USING (\n{deduped}\n) AS s\n"
            f"ON {on}\n"
            "WHEN MATCHED THEN UPDATE SET *\n"
            "WHEN NOT MATCHED THEN INSERT *"
        )
        return self._affected(self._submit(statement))

    def insert_into(self, target: str, source: str) -> int | None:
        return self._affected(
            self._submit(f"INSERT INTO {quote_ident(target)} SELECT * FROM {quote_ident(source)}")
        )

    def replace_partitions(self, target: str, source: str, partition_key: str) -> int | None:
        values = self._partition_values(source, partition_key)
        column = quote_ident(partition_key)
        if values is None:
            raise ExecutionError(
                f"too many partitions in {source} to overwrite {target} "
                f"(limit {_MAX_PARTITION_LITERALS})"
            )
        if not values:
            return 0
        present = [v for v in values if v is not None]
        clauses = []
        if present:
            clauses.append(f"{column} IN ({', '.join(_literal(v) for v in present)})")
        if len(present) != len(values):
            clauses.append(f"{column} IS NULL")
        statement = (
            f"INSERT INTO {quote_ident(target)} REPLACE WHERE {' OR '.join(clauses)}\n"
            f"SELECT * FROM {quote_ident(source)}"
        )
        return self._affected(self._submit(statement))

    def rename_relation(self, from_name: str, to_name: str) -> None:
        self._submit(f"ALTER TABLE {quote_ident(from_name)} RENAME TO {quote_ident(to_name)}")

    def drop_relation(self, name: str) -> None:
        self._submit(f"DROP TABLE IF EXISTS {quote_ident(name)}")

    def relation_exists(self, name: str) -> bool:
        schema, _, table = name.rpartition(".")
        scope = f" IN {quote_ident(schema)}" if schema else ""
        rows = self.execute_query(f"SHOW TABLES{scope} LIKE {_literal(table)}")
        return any(str(r.get("tableName", "")).lower() == table.lower() for r in rows)

    def drop_view(self, name: str) -> None:
        self._submit(f"DROP VIEW IF EXISTS {quote_ident(name)}")

    def relation_kind(self, name: str) -> str | None:
        if not self.relation_exists(name):
            return None
        # SHOW TABLES lists views too; SHOW VIEWS tells them apart
        schema, _, table = name.rpartition(".")
        scope = f" IN {quote_ident(schema)}" if schema else ""
        rows = self.execute_query(f"SHOW VIEWS{scope} LIKE {_literal(table)}")
        if any(str(r.get("viewName", "")).lower() == table.lower() for r in rows):
            return RELATION_VIEW
        return RELATION_TABLE

    def count_rows(self, name: str) -> int | None:
        rows = self.execute_query(f"SELECT COUNT(*) AS n FROM {quote_ident(name)}")
        if not rows or rows[0].get("n") is None:
            return None
        return int(rows[0]["n"])

    def ensure_schema(self, schema: str) -> None:
        self._submit(f"CREATE SCHEMA IF NOT EXISTS {quote_ident(schema)}")
