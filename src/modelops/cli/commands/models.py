"""Read-only commands: list models and show execution plans."""

from __future__ import annotations

import typer

from modelops.cli.common.context import build_project_context
from modelops.cli.common.exits import EXIT_INVALID, exit_from_exc, warn_exit
from modelops.cli.common.options import ProjectDirOpt, SelectOpt
from modelops.cli.common.output import out
from modelops.core.errors import ModelOpsError
from modelops.core.planner import plan as plan_execution
from modelops.core.selector_builder import select as select_models
from modelops.core.settings import load_settings


def _selection(project_dir: str, select: list[str]):
    expression = " ".join(select) or "*"
    try:
        appctx = build_project_context(load_settings(project_dir))
        selected = select_models(appctx.graph, expression)
    except ModelOpsError as exc:
        exit_from_exc(exc, message=str(exc), code=EXIT_INVALID)
    if not selected:
        warn_exit(f"No models match '{expression}'", code=0)
    return appctx, selected


def ls(
    select: list[str] = SelectOpt,
    project_dir: str = ProjectDirOpt,
):
    """
    List models (all of them when no selection is given).
    """
    appctx, selected = _selection(project_dir, select)
    graph = appctx.graph
    out.models_table(
        [graph.get(name) for name in graph.topological_order() if name in selected],
        title="Selected models",
    )


def plan(
    select: list[str] = SelectOpt,
    project_dir: str = ProjectDirOpt,
):
    """
    Show the execution waves for a selection without touching the warehouse.
    """
    appctx, selected = _selection(project_dir, select)
    try:
        execution_plan = plan_execution(appctx.graph, selected)
    except ModelOpsError as exc:
        exit_from_exc(exc, message=str(exc), code=EXIT_INVALID)
    out.plan_table(execution_plan, appctx.graph)


def register(app: typer.Typer) -> None:
    app.command("ls")(ls)
    app.command("plan")(plan)
