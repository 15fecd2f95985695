"""The `run` command: select, plan and materialize models."""

from __future__ import annotations

import typer

from modelops.cli.common.context import (
    build_project_context,
    build_warehouse,
    cancel_on_signals,
)
from modelops.cli.common.exits import (
    EXIT_INVALID,
    EXIT_RUN_FAILED,
    exit_from_exc,
    ok_exit,
    warn_exit,
)
from modelops.cli.common.options import (
    ConcurrencyOpt,
    ConfirmOpt,
    DryRunOpt,
    FailFastOpt,
    ProfileOpt,
    ProjectDirOpt,
    ReportPathOpt,
    RetriesOpt,
    SelectOpt,
    VerboseOpt,
    WarehouseIdOpt,
)
from modelops.cli.common.output import console, out
from modelops.cli.common.progress import RunProgress
from modelops.core.errors import ExecutionError, ModelOpsError
from modelops.core.logs import configure_logging
from modelops.core.planner import plan as plan_execution
from modelops.core.retry import RetryPolicy
from modelops.core.runs import CancelToken, RunCoordinator, RunReport, RunRequest
from modelops.core.selector_builder import select as select_models
from modelops.core.settings import Settings, load_settings


def run(
    select: list[str] = SelectOpt,
    project_dir: str = ProjectDirOpt,
    concurrency: int | None = ConcurrencyOpt,
    fail_fast: bool = FailFastOpt,
    dry_run: bool = DryRunOpt,
    retries: int | None = RetriesOpt,
    report_path: str | None = ReportPathOpt,
    profile: str | None = ProfileOpt,
    warehouse_id: str | None = WarehouseIdOpt,
    confirm: bool = ConfirmOpt,
    verbose: bool = VerboseOpt,
):
    """
    Run the selected models against the warehouse.
    """
    configure_logging(verbose, console=console)
    expression = " ".join(select)

    try:
        settings = load_settings(
            project_dir,
            concurrency=concurrency,
            retries=retries,
            report_path=report_path,
            profile=profile,
            warehouse_id=warehouse_id,
        )
        appctx = build_project_context(settings)
        selected = select_models(appctx.graph, expression)
    except ModelOpsError as exc:
        exit_from_exc(exc, message=str(exc), code=EXIT_INVALID)

    if dry_run:
        try:
            execution_plan = plan_execution(appctx.graph, selected)
        except ModelOpsError as exc:
            exit_from_exc(exc, message=str(exc), code=EXIT_INVALID)
        out.plan_table(execution_plan, appctx.graph, title="Execution plan (dry-run)")
        warn_exit("Dry-run enabled: nothing was executed", code=0)

    request = RunRequest(
        selection=expression,
        concurrency=settings.concurrency,
        fail_fast=fail_fast,
        retry=RetryPolicy(
            max_retries=settings.retries,
            backoff_seconds=settings.retry_backoff_seconds,
        ),
    )

    if not selected:
        # nothing to build: still a run, with an empty report
        out.warn(f"No models match '{expression}'; nothing to run")
        _finish_run(RunReport(request.run_id, selection=expression).finalize(), settings)
        return

    token = CancelToken()
    warehouse = build_warehouse(settings, token)

    try:
        with out.status("Checking upstream relations..."):
            execution_plan = plan_execution(
                appctx.graph,
                selected,
                is_materialized=lambda m: warehouse.relation_exists(m.relation),
            )
    except ExecutionError as exc:
        exit_from_exc(exc, message=f"Warehouse check failed: {exc}", code=EXIT_RUN_FAILED)
    except ModelOpsError as exc:
        exit_from_exc(exc, message=str(exc), code=EXIT_INVALID)

    out.plan_table(execution_plan, appctx.graph)

    if confirm and not out.confirm(f"Run {len(execution_plan.models)} model(s)?"):
        ok_exit("Cancelled")

    with cancel_on_signals(token), RunProgress(execution_plan, console=console) as progress:
        coordinator = RunCoordinator(
            appctx.graph, warehouse, listener=progress, cancel_token=token
        )
        report = coordinator.run(execution_plan, request)

    _finish_run(report, settings)


def _finish_run(report: RunReport, settings: Settings) -> None:
    """Print and persist the report; exit 1 unless every selected model succeeded."""
    out.report_table(report)
    path = report.write_json(settings.report_file)
    out.info(f"Report written to {path}")

    if not report.success:
        out.error(
            f"Run finished with failures: {len(report.failed)} failed, "
            f"{len(report.skipped)} skipped"
        )
        raise typer.Exit(EXIT_RUN_FAILED)

    if report.records:
        out.success(f"All {len(report.succeeded)} selected model(s) succeeded")


def register(app: typer.Typer) -> None:
    app.command(
        help=(
            "Select models, plan them into waves and materialize them."
            "\n\nExample:\n  modelops run --select tag:daily --concurrency 8"
        )
    )(run)
