"""Protean CLI - Main entry point."""

import logging
import sys
from typing import Annotated

import typer

import protean
from protean.cli.context import DEFAULT_PROJECT, CLIContext
from protean.core.config import get_database_url

# Create main Typer app
app = typer.Typer(
    name="protean",
    help="Protean CLI - runtime entity definitions and their data",
    no_args_is_help=True,
)


@app.callback()
def main_callback(
    ctx: typer.Context,
    database: Annotated[
        str | None,
        typer.Option(
            "--database",
            "-d",
            envvar="PROTEAN_URL",
            help="Database URL (PostgreSQL or SQLite)",
        ),
    ] = None,
    project: Annotated[
        str,
        typer.Option(
            "--project",
            "-p",
            envvar="PROTEAN_PROJECT",
            help="Project that definitions and instances belong to",
        ),
    ] = DEFAULT_PROJECT,
    echo: Annotated[
        bool,
        typer.Option(
            "--echo",
            "-e",
            help="Echo SQL statements to console",
        ),
    ] = False,
    json_output: Annotated[
        bool,
        typer.Option(
            "--json",
            "-j",
            help="Output as JSON (machine-readable)",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Log debug output to stderr"),
    ] = False,
) -> None:
    """Initialize CLI context with global options."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        stream=sys.stderr,
        format="%(levelname)s %(name)s: %(message)s",
    )

    ctx.obj = CLIContext(
        database_url=get_database_url(database),
        project_id=project,
        echo=echo,
        json_output=json_output,
    )


@app.command()
def version() -> None:
    """Show version information."""
    typer.echo(f"Protean v{protean.__version__}")


# Register command groups
from protean.cli.commands import data, schema  # noqa: E402

app.add_typer(schema.app, name="schema")
app.add_typer(data.app, name="data")


def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
