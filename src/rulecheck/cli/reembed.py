"""rulecheck reembed — regenerate embeddings with the configured model.

Run after changing embedding.model, or to fill in records whose embedding
failed during ingest. Items that fail again are logged and skipped.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from rulecheck.cli.common import DEFAULT_DB, load_config_or_exit, open_db
from rulecheck.db.repository import Repository
from rulecheck.ingest.writer import KnowledgeWriter
from rulecheck.rag.embedder import EmbeddingClient

console = Console()


def reembed_cmd(
    document_id: Annotated[
        list[str] | None,
        typer.Option("--id", help="Only re-embed this document id (repeatable)."),
    ] = None,
    examples: Annotated[
        bool,
        typer.Option("--examples/--no-examples", help="Also re-embed all code examples."),
    ] = False,
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .rulecheck.db."),
    ] = DEFAULT_DB,
) -> None:
    """Regenerate document (and optionally example) embeddings."""
    cfg = load_config_or_exit(console)
    conn = open_db(db, cfg, console)
    writer = KnowledgeWriter(Repository(conn), EmbeddingClient(cfg.embedding), cfg.ingest)
    try:
        docs_done = writer.reembed_documents(document_id or None)
        console.print(f"  [green]✓[/] {docs_done} document(s) re-embedded")
        if examples:
            examples_done = writer.reembed_examples()
            console.print(f"  [green]✓[/] {examples_done} example(s) re-embedded")
    finally:
        conn.close()
