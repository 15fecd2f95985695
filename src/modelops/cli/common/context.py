"""Application context management for the CLI."""

from __future__ import annotations

import signal
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator

from modelops.cli.common.exits import EXIT_INVALID, EXIT_RUN_FAILED, die, exit_from_exc
from modelops.cli.common.output import out
from modelops.core.adapters.databricks_sql import DatabricksSqlWarehouse
from modelops.core.auth import AuthError, get_client
from modelops.core.catalog import Catalog
from modelops.core.errors import ModelOpsError
from modelops.core.graph import DependencyGraph
from modelops.core.runs import CancelToken
from modelops.core.settings import Settings


@dataclass
class ProjectContext:
    """Resolved settings plus the freshly loaded model graph."""

    settings: Settings
    graph: DependencyGraph


def build_project_context(settings: Settings) -> ProjectContext:
    """Load the catalog for a project, exiting with code 2 on invalid definitions."""
    catalog = Catalog(settings.models_path, default_schema=settings.default_schema)
    try:
        graph = catalog.load()
    except ModelOpsError as exc:
        exit_from_exc(exc, message=f"Invalid model definitions: {exc}", code=EXIT_INVALID)
    return ProjectContext(settings=settings, graph=graph)


def build_warehouse(settings: Settings, cancel_token: CancelToken) -> DatabricksSqlWarehouse:
    """Build the Databricks SQL warehouse adapter for this invocation."""
    wh = settings.warehouse
    if not wh.warehouse_id:
        die(
            "No SQL warehouse configured. Use --warehouse-id or MODELOPS_WAREHOUSE_ID.",
            code=EXIT_INVALID,
        )
    try:
        client = get_client(wh.profile)
    except AuthError as exc:
        exit_from_exc(exc, message=str(exc), code=EXIT_RUN_FAILED)
    return DatabricksSqlWarehouse(
        client,
        wh.warehouse_id,
        catalog=wh.catalog,
        wait_timeout=wh.wait_timeout,
        poll_interval=wh.poll_interval,
        cancel_token=cancel_token,
    )


@contextmanager
def cancel_on_signals(token: CancelToken) -> Iterator[CancelToken]:
    """
    Route SIGINT/SIGTERM to `token` for the duration of a run.

    Models that have not started are skipped; in-flight statements are
    cancelled by the warehouse adapter.
    """

    def _handler(signum, _frame):
        out.warn(f"Received {signal.Signals(signum).name}; cancelling run...")
        token.cancel()

    previous = {
        sig: signal.signal(sig, _handler) for sig in (signal.SIGINT, signal.SIGTERM)
    }
    try:
        yield token
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)
