"""rulecheck validate / improve — RAG-assisted evaluation of a detection rule.

validate: builds the retrieval context from the knowledge base (when one
exists), asks the generation model for the JSON verdict, and stores it with
its document/example references unless --no-save is given.

improve: validates first (never stored), then asks the model for an
improved rule and prints or writes it.
"""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

from rulecheck.cli.common import DEFAULT_DB, build_engine, load_config_or_exit, open_db
from rulecheck.cli.errors import (
    err_file_not_found,
    err_no_api_key,
    err_validation_failed,
    warn_rag_disabled,
)
from rulecheck.config import RulecheckConfig
from rulecheck.db.repository import Repository
from rulecheck.exceptions import LLMInvocationFailure
from rulecheck.rag.evaluator import ErrorPayload, ValidationOutcome, improve_code, validate_code
from rulecheck.rag.llm_client import validate_api_key
from rulecheck.rag.schemas import EnhancedValidationResult

console = Console()


def _read_code(file: Path) -> str:
    if not file.exists():
        console.print(err_file_not_found(str(file)))
        raise typer.Exit(1)
    code = file.read_text(encoding="utf-8")
    if not code.strip():
        console.print(f"[red]Error:[/] '{escape(str(file))}' is empty.")
        raise typer.Exit(1)
    return code


def _check_key(cfg: RulecheckConfig) -> None:
    try:
        validate_api_key(cfg.generation.model)
    except EnvironmentError as exc:
        console.print(err_no_api_key(str(exc)))
        raise typer.Exit(1)


def _run(
    code: str,
    cfg: RulecheckConfig,
    db: Path,
    *,
    rag: bool,
    include_examples: bool,
    max_documents: int,
    max_examples: int,
    save: bool,
    quiet: bool,
) -> ValidationOutcome:
    conn: sqlite3.Connection | None = None
    if db.exists():
        conn = open_db(db, cfg, console)
    elif rag and not quiet:
        console.print(warn_rag_disabled())

    def progress(step: str, message: str) -> None:
        if not quiet:
            console.print(f"[dim]… {escape(message)}[/]")

    try:
        return validate_code(
            code,
            engine=build_engine(conn, cfg) if conn is not None and rag else None,
            repo=Repository(conn) if conn is not None and save else None,
            config=cfg,
            rag_enabled=rag,
            include_examples=include_examples,
            max_documents=max_documents,
            max_examples=max_examples,
            on_progress=progress,
        )
    finally:
        if conn is not None:
            conn.close()


def validate_cmd(
    file: Annotated[
        Path,
        typer.Argument(help="Python detection rule to validate."),
    ],
    rag: Annotated[
        bool,
        typer.Option("--rag/--no-rag", help="Use the knowledge base to enrich the prompt."),
    ] = True,
    include_examples: Annotated[
        bool,
        typer.Option("--examples/--no-examples", help="Include similar code examples."),
    ] = True,
    max_documents: Annotated[
        int,
        typer.Option("--max-documents", min=1, max=10, help="Reference document cap."),
    ] = 5,
    max_examples: Annotated[
        int,
        typer.Option("--max-examples", min=1, max=5, help="Code example cap."),
    ] = 3,
    save: Annotated[
        bool,
        typer.Option("--save/--no-save", help="Store the verdict with its references."),
    ] = True,
    as_json: Annotated[
        bool,
        typer.Option("--json", help="Print the verdict as JSON."),
    ] = False,
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .rulecheck.db."),
    ] = DEFAULT_DB,
) -> None:
    """Validate a detection rule against the Panther guidelines."""
    code = _read_code(file)
    cfg = load_config_or_exit(console)
    _check_key(cfg)

    outcome = _run(
        code,
        cfg,
        db,
        rag=rag,
        include_examples=include_examples,
        max_documents=max_documents,
        max_examples=max_examples,
        save=save,
        quiet=as_json,
    )

    if outcome.error is not None:
        if as_json:
            typer.echo(json.dumps(_error_payload(outcome.error), ensure_ascii=False))
        else:
            _show_error(outcome.error)
        raise typer.Exit(1)

    result = outcome.result
    if as_json:
        payload = {
            "type": "complete",
            "result": result.model_dump(by_alias=True),
            "recordId": outcome.record_id,
            "duration": outcome.duration_ms,
        }
        typer.echo(json.dumps(payload, ensure_ascii=False, indent=2))
        return

    _show_result(result)
    if outcome.record_id:
        console.print(f"\n[dim]Stored as validation {outcome.record_id}[/]")


def improve_cmd(
    file: Annotated[
        Path,
        typer.Argument(help="Python detection rule to improve."),
    ],
    output: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="Write the improved rule here instead of stdout."),
    ] = None,
    rag: Annotated[
        bool,
        typer.Option("--rag/--no-rag", help="Use the knowledge base during validation."),
    ] = True,
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to .rulecheck.db."),
    ] = DEFAULT_DB,
) -> None:
    """Validate a rule, then generate an improved version from the feedback."""
    code = _read_code(file)
    cfg = load_config_or_exit(console)
    _check_key(cfg)

    outcome = _run(
        code,
        cfg,
        db,
        rag=rag,
        include_examples=True,
        max_documents=5,
        max_examples=3,
        save=False,
        quiet=output is None,
    )
    if outcome.error is not None:
        _show_error(outcome.error)
        raise typer.Exit(1)

    try:
        improved = improve_code(code, outcome.result, cfg)
    except LLMInvocationFailure as exc:
        console.print(err_validation_failed(str(exc), "improve"))
        raise typer.Exit(1)

    if output is None:
        typer.echo(improved)
        return
    output.write_text(improved + "\n", encoding="utf-8")
    console.print(f"[green]✓[/] Improved rule written to {escape(str(output))}")


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def _error_payload(error: ErrorPayload) -> dict:
    payload = {"type": "error", "error": error.error, "step": error.step}
    if error.raw_text is not None:
        payload["rawText"] = error.raw_text
    return payload


def _show_error(error: ErrorPayload) -> None:
    console.print(err_validation_failed(error.error, error.step))
    if error.raw_text:
        console.print(Panel(escape(error.raw_text), title="[bold]Model response[/]", expand=False))


def _score_style(score: float) -> str:
    if score >= 80:
        return "green"
    if score >= 60:
        return "yellow"
    return "red"


def _show_result(result: EnhancedValidationResult) -> None:
    syntax = result.syntax_check
    syntax_line = "[green]✓ valid[/]" if syntax.is_valid else "[red]✗ invalid[/]"
    lines = [f"Syntax:          {syntax_line}"]
    lines.extend(f"  [red]•[/] {escape(err)}" for err in syntax.errors)

    rc = result.rule_compliance
    cq = result.code_quality
    lines.append(f"Rule compliance: [{_score_style(rc.score)}]{rc.score:.0f}/100[/]")
    lines.append(f"Code quality:    [{_score_style(cq.score)}]{cq.score:.0f}/100[/]")
    console.print(Panel("\n".join(lines), title="[bold]Validation[/]", expand=False))

    if rc.findings:
        console.print("\n[bold]Findings[/]")
        for finding in rc.findings:
            console.print(f"  • {escape(finding)}")
    if rc.suggestions:
        console.print("\n[bold]Suggestions[/]")
        for suggestion in rc.suggestions:
            console.print(f"  • {escape(suggestion)}")

    console.print("\n[bold]Code quality feedback[/]")
    console.print(Markdown(cq.feedback))
    console.print("\n[bold]Detailed analysis[/]")
    console.print(Markdown(result.detailed_analysis))

    if result.document_references:
        table = Table(title="Reference Documents", show_header=True, header_style="bold")
        table.add_column("Title", style="bold")
        table.add_column("Section")
        table.add_column("Relevance", justify="right")
        for ref in result.document_references:
            table.add_row(
                escape(ref.title), escape(ref.section or ""), f"{ref.relevance_score:.3f}"
            )
        console.print(table)

    if result.similar_examples:
        table = Table(title="Similar Examples", show_header=True, header_style="bold")
        table.add_column("Title", style="bold")
        table.add_column("Quality", justify="right")
        table.add_column("Similarity", justify="right")
        table.add_column("Look at")
        for ex in result.similar_examples:
            table.add_row(
                escape(ex.title),
                str(ex.quality_score),
                f"{ex.similarity:.3f}",
                escape("; ".join(ex.improvements)),
            )
        console.print(table)

    meta = result.rag_metadata
    if meta.rag_enabled:
        console.print(
            f"\n[dim]RAG: {meta.documents_found} document(s), {meta.examples_found} example(s) "
            f"in {meta.query_processing_time_ms}ms[/]"
        )
