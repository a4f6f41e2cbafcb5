"""rulecheck ingest — chunk Markdown guides and store them as knowledge documents.

Each file is split on headings (see rulecheck.ingest.markdown), every chunk
is embedded and written sequentially with ``ingest.delay_seconds`` between
calls. Chunks whose embedding fails are skipped and reported.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape

from rulecheck.cli.common import DEFAULT_DB, load_config_or_exit, open_db
from rulecheck.cli.errors import err_file_not_found
from rulecheck.db.models import DOCUMENT_TYPES
from rulecheck.db.repository import Repository
from rulecheck.ingest.markdown import MarkdownSectionChunker
from rulecheck.ingest.writer import KnowledgeWriter
from rulecheck.rag.embedder import EmbeddingClient

console = Console()

_MD_EXTS = {".md", ".markdown"}


def ingest_cmd(
    source: Annotated[
        list[Path] | None,
        typer.Option("--source", "-s", help="Markdown file or directory (repeatable)."),
    ] = None,
    document_type: Annotated[
        str,
        typer.Option("--type", "-t", help="Document type: rule, best-practice or example."),
    ] = "rule",
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .rulecheck.db."),
    ] = DEFAULT_DB,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", help="Show the chunks that would be stored without embedding."),
    ] = False,
) -> None:
    """Ingest Markdown reference documents into the knowledge base."""
    if not source:
        console.print("[red]Error:[/] No --source specified. Use --source PATH.")
        raise typer.Exit(1)
    if document_type not in DOCUMENT_TYPES:
        console.print(
            f"[red]Error:[/] Unknown document type '{escape(document_type)}'.\n"
            f"  Use one of: {', '.join(DOCUMENT_TYPES)}"
        )
        raise typer.Exit(1)

    files = _expand(source)
    if not files:
        console.print("[yellow]No Markdown files found to ingest.[/]")
        raise typer.Exit(0)

    cfg = load_config_or_exit(console)
    chunker = MarkdownSectionChunker(cfg.ingest.max_chunk_chars, cfg.ingest.min_chunk_chars)

    if dry_run:
        for path in files:
            chunks = chunker.chunk(path.read_text(encoding="utf-8"), document_type)
            console.print(f"\n[bold]→ {escape(str(path))}[/]  {len(chunks)} chunk(s)")
            for chunk in chunks:
                console.print(
                    f"  [dim]{escape(chunk.section or '-')}[/]  {escape(chunk.title)} "
                    f"({len(chunk.content)} chars)"
                )
        return

    conn = open_db(db, cfg, console)
    writer = KnowledgeWriter(Repository(conn), EmbeddingClient(cfg.embedding), cfg.ingest)
    total = 0
    try:
        for path in files:
            chunks = chunker.chunk(path.read_text(encoding="utf-8"), document_type)
            console.print(f"\n[bold]→ {escape(str(path))}[/]")
            stored = writer.store_documents(chunks)
            total += len(stored)
            skipped = len(chunks) - len(stored)
            line = f"  [green]✓[/] {len(stored)} chunk(s) stored"
            if skipped:
                line += f"  [yellow]({skipped} skipped — see log)[/]"
            console.print(line)
    finally:
        conn.close()

    console.print(f"\n[bold green]✓ {total} document(s) added.[/]")


def _expand(sources: list[Path]) -> list[Path]:
    """Expand directories to their Markdown files; report missing paths."""
    files: list[Path] = []
    for src in sources:
        if src.is_dir():
            files.extend(sorted(p for p in src.rglob("*") if p.suffix.lower() in _MD_EXTS))
        elif src.exists():
            files.append(src)
        else:
            console.print(err_file_not_found(str(src)))
    return files
