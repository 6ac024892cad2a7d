"""
sqlvet CLI - rule-based vetting of compiled SQL queries.

Usage:
    sqlvet vet
    sqlvet vet --file ci/sqlvet.yaml --no-database
    sqlvet rules

Exit codes:
    0  no rule reported a failure
    1  at least one failure was reported (diagnostics on stderr)
    2  fatal error (one "error: <message>" line on stderr)
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.table import Table

from sqlvet import __version__
from sqlvet.checker import vet as run_vet
from sqlvet.config import RunSettings, find_vet_file, get_settings, load_vet_file
from sqlvet.exceptions import FailedChecksError, SqlVetError
from sqlvet.rules import compile_rules

EXIT_FAILED_CHECKS = 1
EXIT_FATAL = 2

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="sqlvet",
    help="Vet compiled SQL queries against CEL rules",
    no_args_is_help=True,
)

console = Console()
error_console = Console(stderr=True, highlight=False, soft_wrap=True)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"sqlvet version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """sqlvet - Vet compiled SQL queries against CEL rules."""
    pass


def _resolve_vet_file(file: Path | None) -> Path:
    if file is not None:
        return file
    return find_vet_file(Path.cwd())


def _fatal(message: str) -> typer.Exit:
    error_console.print(f"error: {message}", markup=False)
    return typer.Exit(code=EXIT_FATAL)


@app.command()
def vet(
    file: Annotated[
        Optional[Path],
        typer.Option(
            "--file",
            "-f",
            help="Path to the vet file (default: sqlvet.yaml in the current directory)",
        ),
    ] = None,
    no_database: Annotated[
        bool,
        typer.Option(
            "--no-database",
            help="Never connect to a database; rules that need one are reported",
        ),
    ] = False,
    dump_explain: Annotated[
        bool,
        typer.Option(
            "--dump-explain",
            help="Print each EXPLAIN statement and its JSON output",
        ),
    ] = False,
    log_level: Annotated[
        Optional[str],
        typer.Option("--log-level", help="Logging level (DEBUG, INFO, WARNING, ...)"),
    ] = None,
) -> None:
    """
    Run the configured rules over every query of every SQL group.

    Examples:

        $ sqlvet vet
        $ SQLVET_NO_DATABASE=true sqlvet vet --file ci/sqlvet.yaml
    """
    env_settings = get_settings()
    settings = RunSettings(
        no_database=no_database or env_settings.no_database,
        dump_explain=dump_explain or env_settings.dump_explain,
        log_level=(log_level or env_settings.log_level).upper(),
    )
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.WARNING),
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        path = _resolve_vet_file(file)
        vet_file = load_vet_file(path)
        asyncio.run(run_vet(vet_file, path.resolve().parent, settings))
    except FailedChecksError:
        raise typer.Exit(code=EXIT_FAILED_CHECKS)
    except SqlVetError as e:
        raise _fatal(e.message)
    except (KeyboardInterrupt, asyncio.CancelledError):
        raise _fatal("interrupted")
    except SystemExit:
        raise
    except Exception as e:
        logger.debug("Vetting run aborted", exc_info=True)
        raise _fatal(str(e) or type(e).__name__)


@app.command()
def rules(
    file: Annotated[
        Optional[Path],
        typer.Option("--file", "-f", help="Path to the vet file"),
    ] = None,
) -> None:
    """
    List the compiled rules.

    Compiles every rule in the vet file, so this also works as a syntax and
    type check for rule expressions.
    """
    try:
        vet_file = load_vet_file(_resolve_vet_file(file))
        rule_set = compile_rules(vet_file.rules)
    except SqlVetError as e:
        raise _fatal(e.message)

    table = Table(title="Rules")
    table.add_column("Name", style="cyan")
    table.add_column("Prepare", justify="center")
    table.add_column("Explain", justify="center")
    table.add_column("Message")

    for rule in rule_set.values():
        table.add_row(
            rule.name,
            "yes" if rule.needs_prepare else "",
            "yes" if rule.needs_explain else "",
            rule.message,
        )

    console.print(table)
    console.print(f"\n[dim]Total: {len(rule_set)} rule(s)[/dim]")


if __name__ == "__main__":
    app()
