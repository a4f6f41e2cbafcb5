"""rulecheck stats — knowledge base overview.

Shows document/example totals, embedding coverage, and the per-type and
per-category breakdowns from RetrievalEngine.get_search_stats().
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from rulecheck.cli.common import DEFAULT_DB, build_engine, load_config_or_exit
from rulecheck.cli.errors import err_retrieval
from rulecheck.db.connection import Database
from rulecheck.exceptions import RetrievalFailure
from rulecheck.rag.retriever import SearchStats

console = Console()


def stats_cmd(
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .rulecheck.db."),
    ] = DEFAULT_DB,
) -> None:
    """Show knowledge base statistics."""
    cfg = load_config_or_exit(console)

    if not db.exists():
        console.print(
            Panel(
                "[yellow]No database found.[/]\n"
                "  Run:  rulecheck init",
                title="[bold]Knowledge Base[/]",
                expand=False,
            )
        )
        raise typer.Exit(0)

    conn = Database(db).connect()
    try:
        stats = build_engine(conn, cfg).get_search_stats()
    except RetrievalFailure as exc:
        console.print(err_retrieval(exc))
        raise typer.Exit(1)
    finally:
        conn.close()

    _show_overview(db, stats)
    _show_breakdown("Document Types", "Type", stats.document_types)
    _show_breakdown("Example Categories", "Category", stats.example_categories)


def _show_overview(db: Path, stats: SearchStats) -> None:
    size_mb = db.stat().st_size / (1024 * 1024)
    lines = [
        f"Database:   {escape(str(db))} ({size_mb:.1f} MB)",
        f"Documents:  [bold]{stats.total_documents}[/]  "
        f"(embedded: {stats.embedded_documents})",
        f"Examples:   [bold]{stats.total_examples}[/]  "
        f"(embedded: {stats.embedded_examples})",
        f"Updated:    {stats.last_updated or '—'}",
    ]
    missing = (stats.total_documents - stats.embedded_documents) + (
        stats.total_examples - stats.embedded_examples
    )
    if missing > 0:
        lines.append(
            f"[yellow]⚠ {missing} record(s) without embedding — run: rulecheck reembed[/]"
        )
    console.print(Panel("\n".join(lines), title="[bold]Knowledge Base[/]", expand=False))


def _show_breakdown(title: str, label: str, counts: dict[str, int]) -> None:
    if not counts:
        return
    table = Table(title=title, show_header=True, header_style="bold")
    table.add_column(label)
    table.add_column("Count", justify="right")
    for key, count in counts.items():
        table.add_row(escape(key), str(count))
    console.print(table)
