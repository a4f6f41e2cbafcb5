"""Rulecheck rich error messages — actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from rulecheck.cli.errors import err_no_db
    console.print(err_no_db(".rulecheck.db"))
    raise typer.Exit(1)
"""

from __future__ import annotations

from rich.markup import escape

from rulecheck.exceptions import EmbeddingFailure, RetrievalFailure

_EMBEDDING_HINTS: dict[str, str] = {
    "auth": "Check your provider credentials (for Bedrock: AWS_ACCESS_KEY_ID / AWS profile).",
    "network": "Check network access and the provider region (AWS_REGION for Bedrock).",
    "rate_limit": "The provider is throttling requests. Wait a moment and try again.",
    "dimension": "Set embedding.dimensions in rulecheck.yaml to the model's vector size.",
    "provider": "Check embedding.model in rulecheck.yaml and the provider status.",
}


def err_no_db(db_path: str = ".rulecheck.db") -> str:
    """No database at *db_path*."""
    return (
        f"[red]Error:[/] No database found at '{escape(db_path)}'.\n"
        "  Run:  rulecheck init"
    )


def err_config(message: str) -> str:
    """Config file is invalid."""
    return (
        f"[red]Error:[/] Invalid configuration.\n"
        f"  {escape(message)}\n"
        "  Fix rulecheck.yaml or ~/.rulecheck/config.yaml and retry."
    )


def err_no_api_key(message: str) -> str:
    """Provider API key missing from the environment."""
    return f"[red]Error:[/] {escape(message)}"


def err_dimension_mismatch(message: str, configured: int) -> str:
    """Existing vec tables were created with a different embedding size."""
    return (
        f"[red]Error:[/] Embedding dimensionality mismatch ({configured} configured).\n"
        f"  {escape(message)}\n"
        "  Vectors are never padded. Re-create the database with 'rulecheck init' "
        "or match embedding.dimensions to the database."
    )


def err_retrieval(exc: RetrievalFailure) -> str:
    """A search or embedding call failed."""
    if isinstance(exc, EmbeddingFailure):
        hint = _EMBEDDING_HINTS.get(exc.kind, _EMBEDDING_HINTS["provider"])
        return (
            f"[red]Error:[/] Embedding failed ({exc.kind}).\n"
            f"  {escape(str(exc))}\n"
            f"  {hint}"
        )
    return (
        f"[red]Error:[/] Search failed.\n"
        f"  {escape(str(exc))}\n"
        "  Check that the database is readable; run 'rulecheck stats' to inspect it."
    )


def err_file_not_found(path: str) -> str:
    """Input file does not exist."""
    return (
        f"[red]Error:[/] File not found: '{escape(path)}'\n"
        "  Check the path and try again."
    )


def err_not_found(kind: str, record_id: str, list_cmd: str) -> str:
    """A document or example id is not in the knowledge base."""
    return (
        f"[yellow]{kind} not found:[/] '{escape(record_id)}' is not in the knowledge base.\n"
        f"  Run:  {list_cmd}  to see stored ids."
    )


def err_validation_failed(error: str, step: str) -> str:
    """Validation ended with an error payload."""
    hints = {
        "analysis": "Check generation.model, provider credentials and network access.",
        "parse": "The model did not return JSON. Retry, or try a different generation.model.",
        "schema": "The model returned JSON in an unexpected shape. Retry the validation.",
        "persist": "Check that the database is writable, or pass --no-save.",
    }
    hint = hints.get(step, "Retry the validation.")
    return (
        f"[red]Error:[/] Validation failed during '{escape(step)}'.\n"
        f"  {escape(error)}\n"
        f"  {hint}"
    )


def warn_rag_disabled() -> str:
    """No database, so validation runs with the static guideline prompt."""
    return (
        "[yellow]⚠[/] No knowledge base found — validating without reference documents.\n"
        "  Run:  rulecheck init  and  rulecheck ingest --source <file.md>"
    )
