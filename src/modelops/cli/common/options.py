"""Common CLI options for the CLI."""

import typer

SelectOpt = typer.Option(
    [],
    "--select",
    "-s",
    help="Selection expression: name, tag:<tag>, +name, name+ (space/comma separated). Repeatable.",
    show_default=False,
)

ProjectDirOpt = typer.Option(
    ".",
    "--project-dir",
    help="Project root containing modelops.yml and the models directory",
)

ProfileOpt = typer.Option(
    None,
    "--profile",
    "-p",
    help="Databricks CLI profile (from ~/.databrickscfg)",
)

WarehouseIdOpt = typer.Option(
    None,
    "--warehouse-id",
    help="Databricks SQL warehouse id (or MODELOPS_WAREHOUSE_ID)",
)

ConcurrencyOpt = typer.Option(
    None,
    "--concurrency",
    "-n",
    min=1,
    help="Maximum number of models materialized in parallel",
)

RetriesOpt = typer.Option(
    None,
    "--retries",
    min=0,
    help="Retries per model for transient warehouse errors",
)

FailFastOpt = typer.Option(
    False,
    "--fail-fast",
    help="Cancel remaining work after the first model failure",
)

DryRunOpt = typer.Option(
    False,
    "--dry-run",
    help="Print the execution plan without touching the warehouse",
)

ConfirmOpt = typer.Option(
    False,
    "--confirm/--no-confirm",
    help="Ask for confirmation before running (off for scheduled runs)",
)

ReportPathOpt = typer.Option(
    None,
    "--report-path",
    help="Where to write the JSON run report",
)

VerboseOpt = typer.Option(
    False,
    "--verbose",
    "-v",
    help="Log every statement sent to the warehouse",
)
