"""Rulecheck CLI entry point."""

from __future__ import annotations

import importlib.metadata
from typing import Annotated

import typer

from rulecheck.cli.examples import examples_app
from rulecheck.cli.ingest import ingest_cmd
from rulecheck.cli.init import init_cmd
from rulecheck.cli.reembed import reembed_cmd
from rulecheck.cli.search import search_cmd
from rulecheck.cli.stats import stats_cmd
from rulecheck.cli.validate import improve_cmd, validate_cmd


def _installed_version() -> str:
    try:
        return importlib.metadata.version("rulecheck")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"rulecheck {_installed_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="rulecheck",
    help=(
        "Rulecheck — RAG-assisted validation of Python detection rules.\n\n"
        "  rulecheck ingest    Build the knowledge base from Markdown guides.\n"
        "  rulecheck validate  Evaluate a rule against the guidelines."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
) -> None:
    """Rulecheck — RAG-assisted validation of Python detection rules."""


app.command("init")(init_cmd)
app.command("ingest")(ingest_cmd)
app.command("search")(search_cmd)
app.command("stats")(stats_cmd)
app.command("validate")(validate_cmd)
app.command("improve")(improve_cmd)
app.command("reembed")(reembed_cmd)
app.add_typer(examples_app, name="examples")


@app.command("version")
def version_cmd() -> None:
    """Show the installed rulecheck version."""
    typer.echo(f"rulecheck {_installed_version()}")


if __name__ == "__main__":
    app()
