"""Exit handling utilities for the CLI.

Exit codes: 0 when every selected model succeeded (or nothing had to run),
1 when at least one model failed or the warehouse could not be reached,
2 when definitions, selection or planning are invalid.
"""

from typing import NoReturn

import typer

from modelops.cli.common.output import out

EXIT_OK = 0
EXIT_RUN_FAILED = 1
EXIT_INVALID = 2


def ok_exit(msg: str | None = None) -> NoReturn:
    """Exit successfully with an optional informational message."""
    if msg:
        out.info(msg)
    raise typer.Exit(EXIT_OK)


def die(msg: str, code: int = EXIT_RUN_FAILED) -> NoReturn:
    """Exit with an error message and optional exit code."""
    out.error(msg)
    raise typer.Exit(code)


def warn_exit(msg: str, code: int = EXIT_OK) -> NoReturn:
    """Exit with a warning message and optional exit code."""
    out.warn(msg)
    raise typer.Exit(code)


def exit_from_exc(exc: Exception, *, message: str, code: int = EXIT_RUN_FAILED) -> NoReturn:
    """
    Print an error message and exit with a given code, chaining `exc`.

    Exists to satisfy pylint W0707 and to standardize error exits.
    """
    out.error(message)
    raise typer.Exit(code) from exc
