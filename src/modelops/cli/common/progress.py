"""Progress formatting utilities for the CLI."""

from __future__ import annotations

from rich.console import Console, Group
from rich.live import Live
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskID,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)

from modelops.core.planner import ExecutionPlan
from modelops.core.runs import ModelState, RunRecord

_MAX_MODEL_NAME_WIDTH = 56


def _truncate(text: str, max_len: int) -> str:
    """Return text capped at max_len characters using an ASCII ellipsis."""
    if max_len <= 3 or len(text) <= max_len:
        return text[:max_len]
    return f"{text[: max_len - 3]}..."


def _display_model_label(name: str, wave: int | None, *, name_width: int) -> str:
    """
    Render a model label for the live progress list.

    `<name>  (wave: <n>)` with an aligned wave column; just the name when the
    wave is unknown.
    """
    short_name = _truncate(name, _MAX_MODEL_NAME_WIDTH)
    if wave is None:
        return short_name
    return f"{short_name.ljust(name_width)}  (wave: {wave})"


def _style_for(state: ModelState) -> str:
    if state == ModelState.SUCCEEDED:
        return "green"
    if state == ModelState.FAILED:
        return "red"
    if state in (ModelState.RUNNING, ModelState.PENDING):
        return "yellow"
    return "dim"


class RunProgress:
    """
    Live progress display fed by RunCoordinator listener hooks.

    Shows:
      - an overall progress bar (x/y resolved + failures)
      - per-model spinner rows with elapsed timers, frozen when resolved
    """

    def __init__(self, plan: ExecutionPlan, console: Console | None = None):
        self.console = console or Console()
        self.failures = 0
        self._wave_of = {
            name: index for index, wave in enumerate(plan, start=1) for name in wave
        }
        self._name_width = max(
            (len(_truncate(n, _MAX_MODEL_NAME_WIDTH)) for n in self._wave_of), default=0
        )
        self._overall = Progress(
            TextColumn("[bold]Overall[/]"),
            BarColumn(),
            TaskProgressColumn(),
            TextColumn("failures=[bold red]{task.fields[failures]}[/]"),
            TimeElapsedColumn(),
            console=self.console,
        )
        self._per_model = Progress(
            SpinnerColumn(),
            TextColumn("[bold]{task.fields[model]}[/]"),
            TextColumn(
                "status=[{task.fields[style]}]{task.fields[status]}[/{task.fields[style]}]"
            ),
            TimeElapsedColumn(),
            console=self.console,
        )
        self._overall_task = self._overall.add_task(
            "overall", total=max(len(self._wave_of), 1), failures=0
        )
        self._tasks: dict[str, TaskID] = {}
        self._live = Live(
            Group(self._overall, self._per_model),
            console=self.console,
            refresh_per_second=10,
            transient=True,
        )

    def __enter__(self) -> RunProgress:
        self._live.__enter__()
        return self

    def __exit__(self, *exc_info) -> None:
        self._live.__exit__(*exc_info)

    def _task_for(self, name: str) -> TaskID:
        if name not in self._tasks:
            self._tasks[name] = self._per_model.add_task(
                "",
                total=1,
                model=_display_model_label(
                    name, self._wave_of.get(name), name_width=self._name_width
                ),
                status=ModelState.PENDING.value,
                style=_style_for(ModelState.PENDING),
            )
        return self._tasks[name]

    def on_model_start(self, model: str, attempt: int) -> None:
        status = ModelState.RUNNING.value
        if attempt > 1:
            status = f"{status} (attempt {attempt})"
        self._per_model.update(
            self._task_for(model), status=status, style=_style_for(ModelState.RUNNING)
        )

    def on_model_finish(self, record: RunRecord) -> None:
        if record.outcome == ModelState.FAILED:
            self.failures += 1
            self._overall.update(self._overall_task, failures=self.failures)
        if record.outcome != ModelState.SKIPPED_CANCELLED or record.started_at:
            self._per_model.update(
                self._task_for(record.model),
                status="DONE" if record.outcome == ModelState.SUCCEEDED else record.outcome.value,
                style=_style_for(record.outcome),
                completed=1,
            )
        self._overall.advance(self._overall_task, 1)
