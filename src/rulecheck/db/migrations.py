"""Forward-only migration runner for the rulecheck database schema.

Vec tables (vec_documents, vec_examples) are NOT migration-managed — their
size depends on the configured embedding dimensions; use ensure_vec_tables().
"""

from __future__ import annotations

import sqlite3

# schema_version is the bootstrap table, created before migrations run.
_CREATE_SCHEMA_VERSION = """
CREATE TABLE IF NOT EXISTS schema_version (
    version     INTEGER NOT NULL,
    applied_at  DATETIME NOT NULL DEFAULT (datetime('now'))
)
"""

_V1_SQL = """
CREATE TABLE IF NOT EXISTS knowledge_documents (
    id              TEXT PRIMARY KEY,
    title           TEXT NOT NULL,
    content         TEXT NOT NULL,
    section         TEXT,
    document_type   TEXT NOT NULL
                    CHECK (document_type IN ('rule', 'best-practice', 'example')),
    metadata        TEXT NOT NULL DEFAULT '{}',
    created_at      DATETIME NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS code_examples (
    id              TEXT PRIMARY KEY,
    title           TEXT NOT NULL,
    code_content    TEXT NOT NULL,
    quality_score   INTEGER NOT NULL CHECK (quality_score >= 0 AND quality_score <= 100),
    category        TEXT,
    description     TEXT,
    tags            TEXT,
    created_at      DATETIME NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS code_validations (
    id                      TEXT PRIMARY KEY,
    code_content            TEXT NOT NULL,
    syntax_is_valid         INTEGER NOT NULL,
    syntax_errors           TEXT NOT NULL DEFAULT '[]',
    rule_compliance_score   INTEGER NOT NULL,
    rule_findings           TEXT NOT NULL DEFAULT '[]',
    rule_suggestions        TEXT NOT NULL DEFAULT '[]',
    code_quality_score      INTEGER NOT NULL,
    code_quality_feedback   TEXT NOT NULL,
    detailed_analysis       TEXT NOT NULL,
    total_duration_ms       INTEGER NOT NULL,
    model_used              TEXT NOT NULL,
    created_at              DATETIME NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS validation_document_references (
    validation_id   TEXT NOT NULL REFERENCES code_validations(id) ON DELETE CASCADE,
    document_id     TEXT NOT NULL REFERENCES knowledge_documents(id) ON DELETE CASCADE,
    relevance_score REAL NOT NULL,
    usage_context   TEXT
);

CREATE TABLE IF NOT EXISTS validation_example_references (
    validation_id    TEXT NOT NULL REFERENCES code_validations(id) ON DELETE CASCADE,
    example_id       TEXT NOT NULL REFERENCES code_examples(id) ON DELETE CASCADE,
    similarity_score REAL NOT NULL,
    improvements     TEXT NOT NULL DEFAULT '[]'
);

CREATE INDEX IF NOT EXISTS idx_documents_type ON knowledge_documents(document_type);
CREATE INDEX IF NOT EXISTS idx_examples_category ON code_examples(category);
"""

# Append-only. Each entry: (version: int, sql: str).
# executescript() issues an implicit COMMIT before running.
MIGRATIONS: list[tuple[int, str]] = [
    (1, _V1_SQL),
]


def run_migrations(conn: sqlite3.Connection) -> None:
    """Apply all pending migrations in ascending version order.

    Idempotent: safe to call on a database at any version.
    """
    conn.execute(_CREATE_SCHEMA_VERSION)
    conn.commit()

    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    current = row[0] if row[0] is not None else 0

    for version, sql in MIGRATIONS:
        if version > current:
            conn.executescript(sql)
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (version,)
            )
            conn.commit()


def current_version(conn: sqlite3.Connection) -> int:
    """Return the highest applied migration version (0 for a fresh database)."""
    conn.execute(_CREATE_SCHEMA_VERSION)
    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    return row[0] if row[0] is not None else 0
