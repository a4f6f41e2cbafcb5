"""rulecheck init — create the knowledge base and project config.

Creates:
  .rulecheck.db            — empty knowledge base (documents, examples, validations)
  rulecheck.yaml           — project config template (skipped if present)
  ~/.rulecheck/config.yaml — global model config (created once, mode 0o600)
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape

from rulecheck.cli.common import DEFAULT_DB, load_config_or_exit
from rulecheck.cli.errors import err_dimension_mismatch
from rulecheck.config import ensure_global_config
from rulecheck.db.connection import Database
from rulecheck.db.schema import initialize

console = Console()

_PROJECT_TEMPLATE = """\
# rulecheck project configuration
embedding:
  model: {embedding_model}
  dimensions: {dimensions}

generation:
  model: {generation_model}
  response_language: {response_language}

retrieval:
  authoritative_rule_sections:
    - Panther Detection Rules
    - Writing Python Detections
  authoritative_guide_sections:
    - Detection Writing Guide
    - Python Rule Guide
"""


def init_cmd(
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to the knowledge base to create."),
    ] = DEFAULT_DB,
    skip_global: Annotated[
        bool,
        typer.Option("--skip-global", hidden=True, help="Do not touch ~/.rulecheck (testing)."),
    ] = False,
) -> None:
    """Initialize a rulecheck knowledge base in the current directory."""
    cfg = load_config_or_exit(console)

    existed = db.exists()
    db.parent.mkdir(parents=True, exist_ok=True)
    with Database(db) as conn:
        try:
            initialize(conn, cfg.embedding.dimensions)
        except RuntimeError as exc:
            console.print(err_dimension_mismatch(str(exc), cfg.embedding.dimensions))
            raise typer.Exit(1)

    if existed:
        console.print(f"  [green]✓[/] {escape(str(db))} (existing data preserved)")
    else:
        console.print(
            f"  [green]✓[/] {escape(str(db))} "
            f"({cfg.embedding.dimensions}-dimensional embeddings)"
        )

    project_cfg = Path("rulecheck.yaml")
    if project_cfg.exists():
        console.print(f"  [dim]↷ {escape(str(project_cfg))} already exists[/]")
    else:
        project_cfg.write_text(
            _PROJECT_TEMPLATE.format(
                embedding_model=cfg.embedding.model,
                dimensions=cfg.embedding.dimensions,
                generation_model=cfg.generation.model,
                response_language=cfg.generation.response_language,
            ),
            encoding="utf-8",
        )
        console.print(f"  [green]✓[/] {escape(str(project_cfg))}")

    if not skip_global:
        cfg_path = ensure_global_config()
        console.print(f"  [green]✓[/] {escape(str(cfg_path))} (global config)")

    console.print("\nNext steps:")
    console.print("  1. rulecheck ingest --source <guide.md>        (reference documents)")
    console.print("  2. rulecheck examples add --file <rule.py> …   (scored code examples)")
    console.print("  3. rulecheck validate <rule.py>                (RAG-assisted validation)")
