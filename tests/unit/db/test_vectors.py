"""Tests for the document/example sqlite-vec tables."""

from __future__ import annotations

import pytest

from rulecheck.db.connection import Database
from rulecheck.db.vectors import (
    DOCUMENT_VEC_TABLE,
    EXAMPLE_VEC_TABLE,
    ensure_vec_table,
    serialize_embedding,
    vector_dimensions,
)


@pytest.fixture
def bare_conn(tmp_path):
    conn = Database(tmp_path / "bare.db").connect()
    yield conn
    conn.close()


# --- ensure_vec_table ---

def test_ensure_vec_table_creates_table(bare_conn):
    table = ensure_vec_table(bare_conn, DOCUMENT_VEC_TABLE, dimensions=8)
    assert table == "vec_documents"
    assert vector_dimensions(bare_conn, table) == 8


def test_ensure_vec_table_idempotent(bare_conn):
    ensure_vec_table(bare_conn, EXAMPLE_VEC_TABLE, dimensions=8)
    ensure_vec_table(bare_conn, EXAMPLE_VEC_TABLE, dimensions=8)
    assert vector_dimensions(bare_conn, EXAMPLE_VEC_TABLE) == 8


def test_ensure_vec_table_dimension_mismatch_raises(bare_conn):
    ensure_vec_table(bare_conn, DOCUMENT_VEC_TABLE, dimensions=8)
    with pytest.raises(RuntimeError, match="8-dimensional"):
        ensure_vec_table(bare_conn, DOCUMENT_VEC_TABLE, dimensions=16)


def test_ensure_vec_table_unknown_name_raises(bare_conn):
    with pytest.raises(ValueError, match="Unknown vec table"):
        ensure_vec_table(bare_conn, "vec_chunks", dimensions=8)


def test_ensure_vec_table_rejects_zero_dimensions(bare_conn):
    with pytest.raises(ValueError):
        ensure_vec_table(bare_conn, DOCUMENT_VEC_TABLE, dimensions=0)


def test_vector_dimensions_missing_table(bare_conn):
    assert vector_dimensions(bare_conn, DOCUMENT_VEC_TABLE) is None


def test_vec_table_uses_cosine_distance(bare_conn):
    ensure_vec_table(bare_conn, DOCUMENT_VEC_TABLE, dimensions=2)
    bare_conn.execute(
        f"INSERT INTO {DOCUMENT_VEC_TABLE}(rowid, embedding) VALUES (1, ?)",
        (serialize_embedding([3.0, 0.0], 2),),
    )
    row = bare_conn.execute(
        f"SELECT rowid, distance FROM {DOCUMENT_VEC_TABLE} WHERE embedding MATCH ? AND k = 1",
        (serialize_embedding([1.0, 0.0], 2),),
    ).fetchone()
    # Same direction, different magnitude: cosine distance is zero.
    assert row["rowid"] == 1
    assert row["distance"] == pytest.approx(0.0, abs=1e-6)


# --- serialize_embedding ---

def test_serialize_embedding_float32_bytes():
    blob = serialize_embedding([0.1, 0.2, 0.3], 3)
    assert len(blob) == 12


def test_serialize_embedding_wrong_length_raises():
    with pytest.raises(ValueError, match="expected 4"):
        serialize_embedding([0.1, 0.2], 4)
