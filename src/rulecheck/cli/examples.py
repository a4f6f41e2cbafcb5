"""rulecheck examples CLI commands.

Commands:
  rulecheck examples add --file rule.py --title T --quality 90   — embed + store an example
  rulecheck examples list [--category C]                         — show stored examples
  rulecheck examples remove <id>                                 — delete an example
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from rulecheck.cli.common import DEFAULT_DB, load_config_or_exit, open_db
from rulecheck.cli.errors import err_file_not_found, err_not_found, err_retrieval
from rulecheck.db.repository import Repository
from rulecheck.exceptions import EmbeddingFailure
from rulecheck.ingest.writer import KnowledgeWriter
from rulecheck.rag.embedder import EmbeddingClient

console = Console()

examples_app = typer.Typer(
    name="examples",
    help="Manage scored code examples (add, list, remove).",
    add_completion=False,
)


@examples_app.command("add")
def examples_add_cmd(
    file: Annotated[
        Path,
        typer.Option("--file", "-f", help="Python file holding the example rule."),
    ],
    title: Annotated[
        str,
        typer.Option("--title", help="Short example title."),
    ],
    quality: Annotated[
        int,
        typer.Option("--quality", "-q", min=0, max=100, help="Quality score 0–100."),
    ],
    category: Annotated[
        str | None,
        typer.Option("--category", "-c", help="Category label (e.g. aws, okta)."),
    ] = None,
    description: Annotated[
        str | None,
        typer.Option("--description", help="What the example demonstrates."),
    ] = None,
    tag: Annotated[
        list[str] | None,
        typer.Option("--tag", help="Tag (repeatable)."),
    ] = None,
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .rulecheck.db."),
    ] = DEFAULT_DB,
) -> None:
    """Embed and store a scored code example."""
    if not file.exists():
        console.print(err_file_not_found(str(file)))
        raise typer.Exit(1)

    cfg = load_config_or_exit(console)
    conn = open_db(db, cfg, console)
    try:
        writer = KnowledgeWriter(Repository(conn), EmbeddingClient(cfg.embedding), cfg.ingest)
        example = writer.add_example(
            title=title,
            code_content=file.read_text(encoding="utf-8"),
            quality_score=quality,
            category=category,
            description=description,
            tags=tag or None,
        )
    except EmbeddingFailure as exc:
        console.print(err_retrieval(exc))
        raise typer.Exit(1)
    except ValueError as exc:
        console.print(f"[red]Error:[/] {escape(str(exc))}")
        raise typer.Exit(1)
    finally:
        conn.close()

    console.print(f"[green]✓[/] Example stored: [bold]{escape(example.title)}[/] ({example.id})")


@examples_app.command("list")
def examples_list_cmd(
    category: Annotated[
        str | None,
        typer.Option("--category", "-c", help="Only show this category."),
    ] = None,
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .rulecheck.db."),
    ] = DEFAULT_DB,
) -> None:
    """List stored code examples."""
    cfg = load_config_or_exit(console)
    conn = open_db(db, cfg, console)
    try:
        examples = Repository(conn).list_examples(category=category)
    finally:
        conn.close()

    if not examples:
        console.print("[yellow]No code examples stored.[/]")
        raise typer.Exit(0)

    examples.sort(key=lambda e: e.quality_score, reverse=True)
    table = Table(title="Code Examples", show_header=True, header_style="bold")
    table.add_column("ID", style="dim")
    table.add_column("Title", style="bold")
    table.add_column("Quality", justify="right")
    table.add_column("Category")
    table.add_column("Tags")
    for ex in examples:
        table.add_row(
            ex.id,
            escape(ex.title),
            str(ex.quality_score),
            escape(ex.category or ""),
            escape(", ".join(ex.tags or [])),
        )
    console.print(table)


@examples_app.command("remove")
def examples_remove_cmd(
    example_id: Annotated[
        str,
        typer.Argument(help="Example id (see 'rulecheck examples list')."),
    ],
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .rulecheck.db."),
    ] = DEFAULT_DB,
) -> None:
    """Delete a code example and its embedding."""
    cfg = load_config_or_exit(console)
    conn = open_db(db, cfg, console)
    try:
        removed = Repository(conn).delete_example(example_id)
    finally:
        conn.close()

    if not removed:
        console.print(err_not_found("Example", example_id, "rulecheck examples list"))
        raise typer.Exit(1)
    console.print(f"[green]✓[/] Removed example {escape(example_id)}")
