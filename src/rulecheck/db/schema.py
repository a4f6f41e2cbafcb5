"""Database schema initialization."""

from __future__ import annotations

import sqlite3

from rulecheck.db.migrations import MIGRATIONS, run_migrations
from rulecheck.db.vectors import ensure_vec_tables

CURRENT_VERSION = MIGRATIONS[-1][0]


def initialize(conn: sqlite3.Connection, dimensions: int = 1024) -> None:
    """Run migrations and create the vec tables (idempotent).

    Raises:
        RuntimeError: If the vec tables already exist with a different size.
    """
    run_migrations(conn)
    ensure_vec_tables(conn, dimensions)
