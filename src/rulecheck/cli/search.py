"""rulecheck search — query the knowledge base from the command line.

Modes:
  default       authority-weighted document search
  --raw         plain cosine-similarity document search
  --examples    code example search (query is treated as code)
  --category C  documents whose metadata.category is C (no vector ranking)
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from rulecheck.cli.common import DEFAULT_DB, build_engine, load_config_or_exit, open_db
from rulecheck.cli.errors import err_retrieval
from rulecheck.exceptions import RetrievalFailure
from rulecheck.rag.ranking import ExampleSearchResult, SearchResult

console = Console()


def search_cmd(
    query: Annotated[
        str,
        typer.Argument(help="Search text (or code, with --examples)."),
    ],
    examples: Annotated[
        bool,
        typer.Option("--examples", "-e", help="Search code examples instead of documents."),
    ] = False,
    raw: Annotated[
        bool,
        typer.Option("--raw", help="Rank by raw cosine similarity (no authority weighting)."),
    ] = False,
    category: Annotated[
        str | None,
        typer.Option("--category", "-c", help="Exact metadata category match."),
    ] = None,
    top_k: Annotated[
        int | None,
        typer.Option("--top-k", "-k", min=1, help="Maximum number of results."),
    ] = None,
    min_similarity: Annotated[
        float | None,
        typer.Option("--min-similarity", min=0.0, max=1.0, help="Cosine similarity floor."),
    ] = None,
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .rulecheck.db."),
    ] = DEFAULT_DB,
) -> None:
    """Search reference documents or code examples."""
    cfg = load_config_or_exit(console)
    conn = open_db(db, cfg, console)
    engine = build_engine(conn, cfg)
    try:
        if examples:
            example_results = engine.search_examples(query, top_k, min_similarity)
            _print_examples(example_results)
            return
        if category is not None:
            results = engine.search_by_category(category, top_k or 10)
        elif raw:
            results = engine.search_documents(query, top_k, min_similarity)
        else:
            results = engine.search_documents_weighted(query, top_k, min_similarity)
        _print_documents(results, weighted=not raw and category is None)
    except RetrievalFailure as exc:
        console.print(err_retrieval(exc))
        raise typer.Exit(1)
    except ValueError as exc:
        console.print(f"[red]Error:[/] {escape(str(exc))}")
        raise typer.Exit(1)
    finally:
        conn.close()


def _print_documents(results: list[SearchResult], weighted: bool) -> None:
    if not results:
        console.print("[yellow]No matching documents.[/]")
        return
    table = Table(title="Documents", show_header=True, header_style="bold")
    table.add_column("#", justify="right")
    table.add_column("Title", style="bold")
    table.add_column("Section")
    table.add_column("Type")
    table.add_column("Score", justify="right")
    if weighted:
        table.add_column("Cosine", justify="right")
    for i, r in enumerate(results, start=1):
        row = [
            str(i),
            escape(r.title),
            escape(r.section or ""),
            r.document_type,
            f"{r.similarity:.3f}",
        ]
        if weighted:
            row.append(f"{r.raw_similarity:.3f}")
        table.add_row(*row)
    console.print(table)


def _print_examples(results: list[ExampleSearchResult]) -> None:
    if not results:
        console.print("[yellow]No matching examples.[/]")
        return
    table = Table(title="Code Examples", show_header=True, header_style="bold")
    table.add_column("#", justify="right")
    table.add_column("Title", style="bold")
    table.add_column("Quality", justify="right")
    table.add_column("Category")
    table.add_column("Similarity", justify="right")
    for i, r in enumerate(results, start=1):
        table.add_row(
            str(i),
            escape(r.title),
            str(r.quality_score),
            escape(r.category or ""),
            f"{r.similarity:.3f}",
        )
    console.print(table)
