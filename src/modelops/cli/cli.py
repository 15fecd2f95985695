"""CLI application for the modelops execution engine."""

import typer

from modelops.cli.commands import models, run

app = typer.Typer(
    help="modelops - scheduled model execution for Databricks SQL warehouses",
    no_args_is_help=True,
)

run.register(app)
models.register(app)


if __name__ == "__main__":
    app()
