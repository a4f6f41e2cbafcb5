"""Shared CLI plumbing: config loading, database opening, service wiring."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import typer
from rich.console import Console

from rulecheck.cli.errors import err_config, err_dimension_mismatch, err_no_db
from rulecheck.config import ConfigError, RulecheckConfig, load_config
from rulecheck.db.connection import Database
from rulecheck.db.repository import Repository
from rulecheck.db.schema import initialize
from rulecheck.logging_config import setup_logging
from rulecheck.rag.embedder import EmbeddingClient
from rulecheck.rag.retriever import RetrievalEngine

DEFAULT_DB = Path(".rulecheck.db")


def load_config_or_exit(console: Console) -> RulecheckConfig:
    """Load the layered config and install logging at its level; exit 1 on a bad config."""
    try:
        cfg = load_config()
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1)
    setup_logging(cfg.logging.level)
    return cfg


def open_db(db_path: Path, cfg: RulecheckConfig, console: Console) -> sqlite3.Connection:
    """Open an existing project database; exit 1 if it is missing or mis-sized."""
    if not db_path.exists():
        console.print(err_no_db(str(db_path)))
        raise typer.Exit(1)
    conn = Database(db_path).connect()
    try:
        initialize(conn, cfg.embedding.dimensions)
    except RuntimeError as exc:
        conn.close()
        console.print(err_dimension_mismatch(str(exc), cfg.embedding.dimensions))
        raise typer.Exit(1)
    return conn


def build_engine(conn: sqlite3.Connection, cfg: RulecheckConfig) -> RetrievalEngine:
    return RetrievalEngine(
        Repository(conn),
        EmbeddingClient(cfg.embedding),
        cfg.retrieval,
        cfg.prompt,
    )
