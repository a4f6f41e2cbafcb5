"""Rulecheck database layer — knowledge documents, code examples, validations."""

from rulecheck.db.connection import Database
from rulecheck.db.migrations import MIGRATIONS, run_migrations
from rulecheck.db.repository import Repository
from rulecheck.db.schema import initialize
from rulecheck.db.vectors import DOCUMENT_VEC_TABLE, EXAMPLE_VEC_TABLE, ensure_vec_table

__all__ = [
    "Database",
    "Repository",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
    "ensure_vec_table",
    "DOCUMENT_VEC_TABLE",
    "EXAMPLE_VEC_TABLE",
]
