"""sqlite-vec virtual tables for document and example embeddings.

One embedding dimensionality is used end-to-end. Vectors of any other size
are rejected, never padded or truncated: zero-padding silently changes
cosine similarity compared with a native embedding of the larger size.
"""

from __future__ import annotations

import re
import sqlite3

import sqlite_vec

DOCUMENT_VEC_TABLE = "vec_documents"
EXAMPLE_VEC_TABLE = "vec_examples"
VEC_TABLES = (DOCUMENT_VEC_TABLE, EXAMPLE_VEC_TABLE)

_DIMS_RE = re.compile(r"float\[(\d+)\]")


def vector_dimensions(conn: sqlite3.Connection, table: str) -> int | None:
    """Return the declared size of *table*'s embedding column, or None if missing."""
    row = conn.execute(
        "SELECT sql FROM sqlite_master WHERE type='table' AND name=?", (table,)
    ).fetchone()
    if row is None:
        return None
    match = _DIMS_RE.search(row[0] or "")
    return int(match.group(1)) if match else None


def ensure_vec_table(conn: sqlite3.Connection, table: str, dimensions: int) -> str:
    """Create *table* as a cosine-distance vec0 table if it doesn't already exist.

    Args:
        conn: Active database connection (sqlite-vec must be loaded).
        table: One of VEC_TABLES.
        dimensions: Embedding vector size (e.g. 1024 for Titan v2).

    Returns:
        The table name.

    Raises:
        ValueError: On an unknown table name or non-positive dimensions.
        RuntimeError: If the table exists with a different dimensionality.
    """
    if table not in VEC_TABLES:
        raise ValueError(f"Unknown vec table '{table}' — expected one of {VEC_TABLES}.")
    if dimensions < 1:
        raise ValueError(f"dimensions must be >= 1, got {dimensions}")

    existing = vector_dimensions(conn, table)
    if existing is None:
        conn.execute(
            f"CREATE VIRTUAL TABLE IF NOT EXISTS {table} "
            f"USING vec0(embedding float[{dimensions}] distance_metric=cosine)"
        )
        conn.commit()
    elif existing != dimensions:
        raise RuntimeError(
            f"Vec table '{table}' stores {existing}-dimensional embeddings but the "
            f"configured dimensionality is {dimensions}. Re-create the database or "
            f"set embedding.dimensions: {existing}."
        )
    return table


def ensure_vec_tables(conn: sqlite3.Connection, dimensions: int) -> None:
    """Create both vec tables with *dimensions* (idempotent)."""
    for table in VEC_TABLES:
        ensure_vec_table(conn, table, dimensions)


def serialize_embedding(embedding: list[float], dimensions: int) -> bytes:
    """Pack *embedding* as float32 bytes after checking its size.

    Raises:
        ValueError: If ``len(embedding) != dimensions``.
    """
    if len(embedding) != dimensions:
        raise ValueError(
            f"Embedding has {len(embedding)} dimensions, expected {dimensions}."
        )
    return sqlite_vec.serialize_float32([float(v) for v in embedding])
