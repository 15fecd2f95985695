"""Output formatting utilities for the CLI."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

import questionary
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.theme import Theme

from modelops.cli.common.tui_style import QUESTIONARY_STYLE_CONFIRM

_THEME = Theme(
    {
        "ok": "bold green",
        "warn": "yellow",
        "err": "bold red",
        "title": "bold cyan",
        "meta": "dim",
    }
)

console = Console(theme=_THEME)

_OUTCOME_STYLE = {
    "succeeded": "ok",
    "failed": "err",
    "skipped-upstream-failed": "warn",
    "skipped-cancelled": "warn",
}


def _fmt_duration(seconds: float) -> str:
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes, secs = divmod(int(seconds), 60)
    return f"{minutes}m{secs:02d}s"


@dataclass(frozen=True)
class Out:
    """Output formatter for CLI messages and tables."""

    def info(self, msg: str) -> None:
        """Print an info message."""
        console.print(f"[title]›[/] {msg}")

    @contextmanager
    def status(self, msg: str):
        """Show a transient status spinner while work is in progress."""
        with console.status(msg, spinner="dots"):
            yield

    def success(self, msg: str) -> None:
        """Print a success message."""
        console.print(f"[ok]✓[/] {msg}")

    def warn(self, msg: str) -> None:
        """Print a warning message."""
        console.print(f"[warn]⚠[/] {msg}")

    def error(self, msg: str) -> None:
        """Print an error message."""
        console.print(f"[err]✗[/] {escape(msg)}")

    def header(self, title: str) -> None:
        """Print a header message."""
        console.print(f"[title]{title}[/]")

    def kv(self, items: Mapping[str, Any]) -> None:
        """Print key-value pairs."""
        for k, v in items.items():
            console.print(f"[meta]{k}[/]: {v}")

    def confirm(self, message: str, *, default: bool = False) -> bool:
        """Ask the user for confirmation using a standardized Questionary prompt."""
        console.print("[meta]Use y/n then Enter[/]")
        prompt = questionary.confirm(
            f"[modelops] {message}",
            default=default,
            style=QUESTIONARY_STYLE_CONFIRM,
            qmark="✦",
            auto_enter=False,
        )
        return bool(prompt.ask())

    def models_table(self, models: Iterable[Any], title: str = "Models") -> None:
        """
        Expects objects with .name .relation .materialization .tags .upstream
        (like modelops.core.models.ModelDefinition)
        """
        t = Table(title=title, show_lines=False)
        t.add_column("Model", style="ok", no_wrap=True)
        t.add_column("Relation")
        t.add_column("Materialization")
        t.add_column("Tags", style="meta")
        t.add_column("Upstream", style="meta")

        for m in models:
            kind = m.materialization.value
            if kind == "incremental":
                kind = f"{kind} ({m.incremental_strategy.value})"
            t.add_row(
                m.name,
                m.relation,
                kind,
                ", ".join(sorted(m.tags)),
                ", ".join(m.upstream),
            )

        console.print(t)

    def plan_table(self, plan: Any, graph: Any, title: str = "Execution plan") -> None:
        """Render an ExecutionPlan wave by wave."""
        t = Table(title=title, show_lines=False)
        t.add_column("Wave", style="title", no_wrap=True)
        t.add_column("Model", style="ok")
        t.add_column("Materialization")
        t.add_column("Relation", style="meta")

        for index, wave in enumerate(plan, start=1):
            for position, name in enumerate(wave):
                model = graph.get(name)
                t.add_row(
                    str(index) if position == 0 else "",
                    name,
                    model.materialization.value,
                    model.relation,
                )

        console.print(t)

    def report_table(self, report: Any, title: str = "Run report") -> None:
        """Render per-model outcomes and the run summary of a RunReport."""
        t = Table(title=title, show_lines=False)
        t.add_column("Model", style="ok", no_wrap=True)
        t.add_column("Outcome")
        t.add_column("Duration", justify="right")
        t.add_column("Rows", justify="right", style="meta")
        t.add_column("Error", style="err")

        for r in report.records:
            outcome = r.outcome.value
            style = _OUTCOME_STYLE.get(outcome, "meta")
            t.add_row(
                r.model,
                f"[{style}]{outcome}[/{style}]",
                _fmt_duration(r.duration_s),
                "" if r.rows is None else str(r.rows),
                escape(r.error or ""),
            )

        console.print(t)
        summary = report.summary()
        self.kv(
            {
                "run": summary["run_id"],
                "started": summary["started"],
                "ended": summary["ended"],
                "succeeded": summary["succeeded"],
                "failed": summary["failed"],
                "skipped": summary["skipped"],
            }
        )


out = Out()
