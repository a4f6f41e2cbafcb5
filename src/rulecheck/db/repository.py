"""Repository pattern for all rulecheck database operations.

Single interface for: knowledge documents, code examples, their embeddings,
nearest-neighbour search, aggregate statistics, and stored validations with
their provenance references.
"""

from __future__ import annotations

import functools
import json
import sqlite3
import threading
from collections.abc import Callable, Sequence
from typing import Any, TypeVar

from rulecheck.db.models import (
    DOCUMENT_TYPES,
    CodeExample,
    DocumentReference,
    ExampleReference,
    KnowledgeDocument,
    ValidationRecord,
)
from rulecheck.db.query import (
    DOCUMENTS,
    EXAMPLES,
    FilterQuery,
    MetadataEquals,
    NearestQuery,
    Predicate,
    SimilarityAtLeast,
)
from rulecheck.db.vectors import (
    DOCUMENT_VEC_TABLE,
    EXAMPLE_VEC_TABLE,
    serialize_embedding,
    vector_dimensions,
)

_F = TypeVar("_F", bound=Callable[..., Any])


def _synchronized(method: _F) -> _F:
    """Run *method* while holding the repository lock."""

    @functools.wraps(method)
    def wrapper(self: Repository, *args: Any, **kwargs: Any) -> Any:
        with self._lock:
            return method(self, *args, **kwargs)

    return wrapper  # type: ignore[return-value]


class Repository:
    """Data access layer for all rulecheck database entities.

    Wraps an open sqlite3.Connection. The connection is owned by the caller
    and must be closed after use. Every public method holds an internal lock,
    so one Repository can be shared by the worker threads of a single
    retrieval call.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with sqlite-vec loaded and schema
                initialised (see rulecheck.db.schema.initialize).
        """
        self._conn = conn
        self._lock = threading.RLock()
        self._dims: dict[str, int] = {}

    # ------------------------------------------------------------------
    # Knowledge documents
    # ------------------------------------------------------------------

    @_synchronized
    def add_document(
        self, doc: KnowledgeDocument, embedding: list[float] | None = None
    ) -> int:
        """Insert a document (and its embedding, if given). Returns the new rowid."""
        _check_document_type(doc.document_type)
        blob = self._serialize(DOCUMENT_VEC_TABLE, embedding) if embedding is not None else None
        cur = self._conn.execute(
            """
            INSERT INTO knowledge_documents (id, title, content, section, document_type, metadata)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (doc.id, doc.title, doc.content, doc.section, doc.document_type, doc.metadata),
        )
        rowid = cur.lastrowid
        if blob is not None:
            self._conn.execute(
                f"INSERT INTO {DOCUMENT_VEC_TABLE}(rowid, embedding) VALUES (?, ?)",
                (rowid, blob),
            )
        self._conn.commit()
        doc.rowid = rowid
        return rowid

    @_synchronized
    def get_document(self, document_id: str) -> KnowledgeDocument | None:
        """Return a document by ID, or None if not found."""
        row = self._conn.execute(
            f"SELECT rowid, {', '.join(DOCUMENTS.columns)} FROM knowledge_documents WHERE id = ?",
            (document_id,),
        ).fetchone()
        return _row_to_document(row) if row else None

    @_synchronized
    def list_documents(
        self, document_type: str | None = None, limit: int | None = None
    ) -> list[KnowledgeDocument]:
        """Return documents, oldest first, optionally filtered by type."""
        sql = f"SELECT rowid, {', '.join(DOCUMENTS.columns)} FROM knowledge_documents"
        params: list[Any] = []
        if document_type is not None:
            sql += " WHERE document_type = ?"
            params.append(document_type)
        sql += " ORDER BY created_at, rowid"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))
        return [_row_to_document(r) for r in self._conn.execute(sql, params).fetchall()]

    @_synchronized
    def update_document(self, doc: KnowledgeDocument) -> None:
        """Overwrite title, content, section, type and metadata of an existing document.

        The embedding is left untouched; callers that change content must
        re-embed via set_document_embedding().
        """
        _check_document_type(doc.document_type)
        cur = self._conn.execute(
            """
            UPDATE knowledge_documents
            SET title = ?, content = ?, section = ?, document_type = ?, metadata = ?
            WHERE id = ?
            """,
            (doc.title, doc.content, doc.section, doc.document_type, doc.metadata, doc.id),
        )
        if cur.rowcount == 0:
            raise KeyError(f"Document not found: {doc.id}")
        self._conn.commit()

    @_synchronized
    def set_document_embedding(self, document_id: str, embedding: list[float]) -> None:
        """Insert or replace the embedding of *document_id*."""
        rowid = self._rowid("knowledge_documents", document_id)
        self._replace_embedding(DOCUMENT_VEC_TABLE, rowid, embedding)

    @_synchronized
    def delete_document(self, document_id: str) -> bool:
        """Delete a document and its embedding. Returns False if it did not exist."""
        row = self._conn.execute(
            "SELECT rowid FROM knowledge_documents WHERE id = ?", (document_id,)
        ).fetchone()
        if row is None:
            return False
        self._conn.execute(f"DELETE FROM {DOCUMENT_VEC_TABLE} WHERE rowid = ?", (row[0],))
        self._conn.execute("DELETE FROM knowledge_documents WHERE id = ?", (document_id,))
        self._conn.commit()
        return True

    # ------------------------------------------------------------------
    # Code examples
    # ------------------------------------------------------------------

    @_synchronized
    def add_example(self, example: CodeExample, embedding: list[float] | None = None) -> int:
        """Insert a code example (and its embedding, if given). Returns the new rowid.

        Raises:
            ValueError: If quality_score is outside 0–100.
        """
        _check_quality_score(example.quality_score)
        blob = self._serialize(EXAMPLE_VEC_TABLE, embedding) if embedding is not None else None
        cur = self._conn.execute(
            """
            INSERT INTO code_examples
                (id, title, code_content, quality_score, category, description, tags)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                example.id,
                example.title,
                example.code_content,
                example.quality_score,
                example.category,
                example.description,
                json.dumps(example.tags) if example.tags is not None else None,
            ),
        )
        rowid = cur.lastrowid
        if blob is not None:
            self._conn.execute(
                f"INSERT INTO {EXAMPLE_VEC_TABLE}(rowid, embedding) VALUES (?, ?)",
                (rowid, blob),
            )
        self._conn.commit()
        example.rowid = rowid
        return rowid

    @_synchronized
    def get_example(self, example_id: str) -> CodeExample | None:
        """Return a code example by ID, or None if not found."""
        row = self._conn.execute(
            f"SELECT rowid, {', '.join(EXAMPLES.columns)} FROM code_examples WHERE id = ?",
            (example_id,),
        ).fetchone()
        return _row_to_example(row) if row else None

    @_synchronized
    def list_examples(
        self, category: str | None = None, limit: int | None = None
    ) -> list[CodeExample]:
        """Return code examples, oldest first, optionally filtered by category."""
        sql = f"SELECT rowid, {', '.join(EXAMPLES.columns)} FROM code_examples"
        params: list[Any] = []
        if category is not None:
            sql += " WHERE category = ?"
            params.append(category)
        sql += " ORDER BY created_at, rowid"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))
        return [_row_to_example(r) for r in self._conn.execute(sql, params).fetchall()]

    @_synchronized
    def update_example(self, example: CodeExample) -> None:
        """Overwrite the stored fields of an existing example (embedding untouched)."""
        _check_quality_score(example.quality_score)
        cur = self._conn.execute(
            """
            UPDATE code_examples
            SET title = ?, code_content = ?, quality_score = ?, category = ?,
                description = ?, tags = ?
            WHERE id = ?
            """,
            (
                example.title,
                example.code_content,
                example.quality_score,
                example.category,
                example.description,
                json.dumps(example.tags) if example.tags is not None else None,
                example.id,
            ),
        )
        if cur.rowcount == 0:
            raise KeyError(f"Example not found: {example.id}")
        self._conn.commit()

    @_synchronized
    def set_example_embedding(self, example_id: str, embedding: list[float]) -> None:
        """Insert or replace the embedding of *example_id*."""
        rowid = self._rowid("code_examples", example_id)
        self._replace_embedding(EXAMPLE_VEC_TABLE, rowid, embedding)

    @_synchronized
    def delete_example(self, example_id: str) -> bool:
        """Delete an example and its embedding. Returns False if it did not exist."""
        row = self._conn.execute(
            "SELECT rowid FROM code_examples WHERE id = ?", (example_id,)
        ).fetchone()
        if row is None:
            return False
        self._conn.execute(f"DELETE FROM {EXAMPLE_VEC_TABLE} WHERE rowid = ?", (row[0],))
        self._conn.execute("DELETE FROM code_examples WHERE id = ?", (example_id,))
        self._conn.commit()
        return True

    # ------------------------------------------------------------------
    # Nearest-neighbour search
    # ------------------------------------------------------------------

    @_synchronized
    def nearest_documents(
        self,
        embedding: list[float],
        min_similarity: float,
        limit: int,
        filters: Sequence[Predicate] = (),
    ) -> list[tuple[KnowledgeDocument, float]]:
        """Return (document, cosine distance) pairs, nearest first.

        Only documents with distance < 1 - min_similarity are returned.
        """
        query = NearestQuery(
            collection=DOCUMENTS,
            embedding=self._serialize(DOCUMENT_VEC_TABLE, embedding),
            threshold=SimilarityAtLeast(min_similarity),
            limit=limit,
            filters=tuple(filters),
        )
        sql, params = query.compile()
        rows = self._conn.execute(sql, params).fetchall()
        return [(_row_to_document(r), float(r["distance"])) for r in rows]

    @_synchronized
    def nearest_examples(
        self,
        embedding: list[float],
        min_similarity: float,
        limit: int,
        filters: Sequence[Predicate] = (),
    ) -> list[tuple[CodeExample, float]]:
        """Return (example, cosine distance) pairs, nearest first."""
        query = NearestQuery(
            collection=EXAMPLES,
            embedding=self._serialize(EXAMPLE_VEC_TABLE, embedding),
            threshold=SimilarityAtLeast(min_similarity),
            limit=limit,
            filters=tuple(filters),
        )
        sql, params = query.compile()
        rows = self._conn.execute(sql, params).fetchall()
        return [(_row_to_example(r), float(r["distance"])) for r in rows]

    @_synchronized
    def documents_by_metadata(self, key: str, value: str, limit: int) -> list[KnowledgeDocument]:
        """Return documents whose metadata[*key*] equals *value* (no vector ranking)."""
        query = FilterQuery(DOCUMENTS, (MetadataEquals(key, value),), limit)
        sql, params = query.compile()
        rows = self._conn.execute(sql, params).fetchall()
        return [_row_to_document(r) for r in rows]

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    @_synchronized
    def count_documents(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM knowledge_documents").fetchone()[0]

    @_synchronized
    def count_examples(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM code_examples").fetchone()[0]

    @_synchronized
    def count_embedded(self, table: str) -> int:
        """Return the number of stored vectors in *table* (a vec table name)."""
        if table not in (DOCUMENT_VEC_TABLE, EXAMPLE_VEC_TABLE):
            raise ValueError(f"Unknown vec table '{table}'")
        return self._conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]

    @_synchronized
    def document_type_counts(self) -> dict[str, int]:
        rows = self._conn.execute(
            "SELECT document_type, COUNT(*) AS n FROM knowledge_documents "
            "GROUP BY document_type ORDER BY document_type"
        ).fetchall()
        return {r["document_type"]: r["n"] for r in rows}

    @_synchronized
    def example_category_counts(self) -> dict[str, int]:
        """Category → count; uncategorised examples are not included."""
        rows = self._conn.execute(
            "SELECT category, COUNT(*) AS n FROM code_examples "
            "WHERE category IS NOT NULL GROUP BY category ORDER BY category"
        ).fetchall()
        return {r["category"]: r["n"] for r in rows}

    @_synchronized
    def last_created_at(self) -> str | None:
        """Most recent created_at across documents and examples, or None if empty."""
        row = self._conn.execute(
            """
            SELECT MAX(ts) FROM (
                SELECT MAX(created_at) AS ts FROM knowledge_documents
                UNION ALL
                SELECT MAX(created_at) AS ts FROM code_examples
            )
            """
        ).fetchone()
        return row[0]

    # ------------------------------------------------------------------
    # Stored validations
    # ------------------------------------------------------------------

    @_synchronized
    def add_validation(
        self,
        record: ValidationRecord,
        document_refs: Sequence[DocumentReference] = (),
        example_refs: Sequence[ExampleReference] = (),
    ) -> str:
        """Persist a validation result with its document/example provenance links.

        All rows are written in one transaction. Returns the validation id.
        """
        try:
            self._conn.execute(
                """
                INSERT INTO code_validations (
                    id, code_content, syntax_is_valid, syntax_errors,
                    rule_compliance_score, rule_findings, rule_suggestions,
                    code_quality_score, code_quality_feedback, detailed_analysis,
                    total_duration_ms, model_used
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.id,
                    record.code_content,
                    int(record.syntax_is_valid),
                    json.dumps(record.syntax_errors),
                    record.rule_compliance_score,
                    json.dumps(record.rule_findings),
                    json.dumps(record.rule_suggestions),
                    record.code_quality_score,
                    record.code_quality_feedback,
                    record.detailed_analysis,
                    record.total_duration_ms,
                    record.model_used,
                ),
            )
            self._conn.executemany(
                """
                INSERT INTO validation_document_references
                    (validation_id, document_id, relevance_score, usage_context)
                VALUES (?, ?, ?, ?)
                """,
                [
                    (record.id, ref.document_id, ref.relevance_score, ref.usage_context)
                    for ref in document_refs
                ],
            )
            self._conn.executemany(
                """
                INSERT INTO validation_example_references
                    (validation_id, example_id, similarity_score, improvements)
                VALUES (?, ?, ?, ?)
                """,
                [
                    (record.id, ref.example_id, ref.similarity_score, json.dumps(ref.improvements))
                    for ref in example_refs
                ],
            )
            self._conn.commit()
        except sqlite3.Error:
            self._conn.rollback()
            raise
        return record.id

    @_synchronized
    def get_validation(self, validation_id: str) -> ValidationRecord | None:
        row = self._conn.execute(
            "SELECT * FROM code_validations WHERE id = ?", (validation_id,)
        ).fetchone()
        return _row_to_validation(row) if row else None

    @_synchronized
    def list_document_references(self, validation_id: str) -> list[DocumentReference]:
        rows = self._conn.execute(
            "SELECT document_id, relevance_score, usage_context "
            "FROM validation_document_references WHERE validation_id = ? ORDER BY rowid",
            (validation_id,),
        ).fetchall()
        return [
            DocumentReference(
                document_id=r["document_id"],
                relevance_score=r["relevance_score"],
                usage_context=r["usage_context"],
            )
            for r in rows
        ]

    @_synchronized
    def list_example_references(self, validation_id: str) -> list[ExampleReference]:
        rows = self._conn.execute(
            "SELECT example_id, similarity_score, improvements "
            "FROM validation_example_references WHERE validation_id = ? ORDER BY rowid",
            (validation_id,),
        ).fetchall()
        return [
            ExampleReference(
                example_id=r["example_id"],
                similarity_score=r["similarity_score"],
                improvements=json.loads(r["improvements"]),
            )
            for r in rows
        ]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _dimensions(self, table: str) -> int:
        if table not in self._dims:
            dims = vector_dimensions(self._conn, table)
            if dims is None:
                raise RuntimeError(
                    f"Vec table '{table}' does not exist. Run 'rulecheck init' first."
                )
            self._dims[table] = dims
        return self._dims[table]

    def _serialize(self, table: str, embedding: list[float]) -> bytes:
        return serialize_embedding(embedding, self._dimensions(table))

    def _rowid(self, table: str, record_id: str) -> int:
        row = self._conn.execute(f"SELECT rowid FROM {table} WHERE id = ?", (record_id,)).fetchone()
        if row is None:
            raise KeyError(f"Not found in {table}: {record_id}")
        return row[0]

    def _replace_embedding(self, table: str, rowid: int, embedding: list[float]) -> None:
        # vec0 has no upsert; delete then insert.
        blob = self._serialize(table, embedding)
        self._conn.execute(f"DELETE FROM {table} WHERE rowid = ?", (rowid,))
        self._conn.execute(f"INSERT INTO {table}(rowid, embedding) VALUES (?, ?)", (rowid, blob))
        self._conn.commit()


# ------------------------------------------------------------------
# Validation + row → model helpers
# ------------------------------------------------------------------


def _check_document_type(document_type: str) -> None:
    if document_type not in DOCUMENT_TYPES:
        raise ValueError(
            f"document_type must be one of {DOCUMENT_TYPES}, got '{document_type}'"
        )


def _check_quality_score(score: int) -> None:
    if isinstance(score, bool) or not isinstance(score, int) or not 0 <= score <= 100:
        raise ValueError(f"quality_score must be an integer in 0–100, got {score!r}")


def _row_to_document(row: sqlite3.Row) -> KnowledgeDocument:
    return KnowledgeDocument(
        rowid=row["rowid"],
        id=row["id"],
        title=row["title"],
        content=row["content"],
        section=row["section"],
        document_type=row["document_type"],
        metadata=row["metadata"] or "{}",
        created_at=row["created_at"],
    )


def _row_to_example(row: sqlite3.Row) -> CodeExample:
    return CodeExample(
        rowid=row["rowid"],
        id=row["id"],
        title=row["title"],
        code_content=row["code_content"],
        quality_score=row["quality_score"],
        category=row["category"],
        description=row["description"],
        tags=json.loads(row["tags"]) if row["tags"] else None,
        created_at=row["created_at"],
    )


def _row_to_validation(row: sqlite3.Row) -> ValidationRecord:
    return ValidationRecord(
        id=row["id"],
        code_content=row["code_content"],
        syntax_is_valid=bool(row["syntax_is_valid"]),
        syntax_errors=json.loads(row["syntax_errors"]),
        rule_compliance_score=row["rule_compliance_score"],
        rule_findings=json.loads(row["rule_findings"]),
        rule_suggestions=json.loads(row["rule_suggestions"]),
        code_quality_score=row["code_quality_score"],
        code_quality_feedback=row["code_quality_feedback"],
        detailed_analysis=row["detailed_analysis"],
        total_duration_ms=row["total_duration_ms"],
        model_used=row["model_used"],
        created_at=row["created_at"],
    )
