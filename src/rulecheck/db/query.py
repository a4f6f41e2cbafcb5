"""Typed query builder over the searchable tables and their vec tables.

A NearestQuery names a collection, a query vector, a similarity threshold
and zero or more row predicates. Without row predicates it compiles to a
sqlite-vec KNN query (``embedding MATCH ? AND k = ?``); with predicates the
candidate set is restricted first and ranked with ``vec_distance_cosine()``,
so filtered searches never lose matches that fall outside a global top-k.

A FilterQuery applies the same predicates without a vector, for exact
lookups such as a metadata category.

Cosine distance in sqlite-vec is ``1 - cosine_similarity``; the similarity
threshold becomes the predicate ``distance < 1 - min_similarity``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from rulecheck.db.vectors import DOCUMENT_VEC_TABLE, EXAMPLE_VEC_TABLE

# sqlite-vec rejects k above this value.
_MAX_KNN_K = 4096


@dataclass(frozen=True)
class Collection:
    """A searchable table plus its vec table."""

    table: str
    vec_table: str
    columns: tuple[str, ...]
    text_column: str


DOCUMENTS = Collection(
    table="knowledge_documents",
    vec_table=DOCUMENT_VEC_TABLE,
    columns=("id", "title", "content", "section", "document_type", "metadata", "created_at"),
    text_column="content",
)

EXAMPLES = Collection(
    table="code_examples",
    vec_table=EXAMPLE_VEC_TABLE,
    columns=(
        "id",
        "title",
        "code_content",
        "quality_score",
        "category",
        "description",
        "tags",
        "created_at",
    ),
    text_column="code_content",
)


class Predicate(Protocol):
    """A row filter that renders itself against table alias *alias*."""

    def to_sql(self, alias: str, collection: Collection) -> tuple[str, list[Any]]:
        ...


@dataclass(frozen=True)
class SimilarityAtLeast:
    """Keep rows whose cosine similarity to the query is >= ``min_similarity``."""

    min_similarity: float

    def __post_init__(self) -> None:
        if not 0.0 <= self.min_similarity <= 1.0:
            raise ValueError(f"min_similarity must be in [0, 1], got {self.min_similarity}")

    @property
    def max_distance(self) -> float:
        return 1.0 - self.min_similarity


@dataclass(frozen=True)
class CategoryEquals:
    """Exact match on a plain category column (code_examples.category)."""

    category: str
    column: str = "category"

    def to_sql(self, alias: str, collection: Collection) -> tuple[str, list[Any]]:
        if self.column not in collection.columns:
            raise ValueError(f"{collection.table} has no column '{self.column}'")
        return f"{alias}.{self.column} = ?", [self.category]


@dataclass(frozen=True)
class MetadataEquals:
    """Exact match on a key of the JSON ``metadata`` column."""

    key: str
    value: str

    def to_sql(self, alias: str, collection: Collection) -> tuple[str, list[Any]]:
        if "metadata" not in collection.columns:
            raise ValueError(f"{collection.table} has no metadata column")
        return f"json_extract({alias}.metadata, ?) = ?", [f"$.{self.key}", self.value]


@dataclass(frozen=True)
class ContainsAny:
    """Keep rows whose text column contains at least one keyword (case-insensitive)."""

    keywords: tuple[str, ...]

    def to_sql(self, alias: str, collection: Collection) -> tuple[str, list[Any]]:
        words = [k.lower() for k in self.keywords if k]
        if not words:
            return "0", []
        column = f"lower({alias}.{collection.text_column})"
        clause = " OR ".join(f"instr({column}, ?) > 0" for _ in words)
        return f"({clause})", words


@dataclass(frozen=True)
class NearestQuery:
    collection: Collection
    embedding: bytes
    threshold: SimilarityAtLeast
    limit: int
    filters: tuple[Predicate, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if self.limit < 1:
            raise ValueError(f"limit must be >= 1, got {self.limit}")

    def compile(self) -> tuple[str, list[Any]]:
        """Return ``(sql, params)``; rows carry the collection columns plus ``distance``."""
        if self.filters:
            return self._compile_filtered()
        return self._compile_knn()

    def _select_list(self, alias: str) -> str:
        return ", ".join(f"{alias}.{c} AS {c}" for c in self.collection.columns)

    def _compile_knn(self) -> tuple[str, list[Any]]:
        c = self.collection
        sql = (
            f"WITH knn AS ("
            f" SELECT rowid, distance FROM {c.vec_table}"
            f" WHERE embedding MATCH ? AND k = ?"
            f") "
            f"SELECT t.rowid AS rowid, {self._select_list('t')}, knn.distance AS distance "
            f"FROM knn JOIN {c.table} AS t ON t.rowid = knn.rowid "
            f"WHERE knn.distance < ? "
            f"ORDER BY knn.distance, t.rowid "
            f"LIMIT ?"
        )
        k = min(self.limit, _MAX_KNN_K)
        return sql, [self.embedding, k, self.threshold.max_distance, self.limit]

    def _compile_filtered(self) -> tuple[str, list[Any]]:
        c = self.collection
        clauses: list[str] = []
        params: list[Any] = [self.embedding]
        for predicate in self.filters:
            clause, clause_params = predicate.to_sql("t", c)
            clauses.append(clause)
            params.extend(clause_params)
        where = " AND ".join(clauses)
        sql = (
            f"SELECT * FROM ("
            f" SELECT t.rowid AS rowid, {self._select_list('t')},"
            f" vec_distance_cosine(v.embedding, ?) AS distance"
            f" FROM {c.table} AS t JOIN {c.vec_table} AS v ON v.rowid = t.rowid"
            f" WHERE {where}"
            f") WHERE distance < ? "
            f"ORDER BY distance, rowid "
            f"LIMIT ?"
        )
        params.extend([self.threshold.max_distance, self.limit])
        return sql, params


@dataclass(frozen=True)
class FilterQuery:
    """Predicate-only lookup: no vector ranking, oldest rows first."""

    collection: Collection
    filters: tuple[Predicate, ...]
    limit: int

    def __post_init__(self) -> None:
        if self.limit < 1:
            raise ValueError(f"limit must be >= 1, got {self.limit}")
        if not self.filters:
            raise ValueError("FilterQuery needs at least one predicate")

    def compile(self) -> tuple[str, list[Any]]:
        """Return ``(sql, params)``; rows carry ``rowid`` plus the collection columns."""
        c = self.collection
        clauses: list[str] = []
        params: list[Any] = []
        for predicate in self.filters:
            clause, clause_params = predicate.to_sql("t", c)
            clauses.append(clause)
            params.extend(clause_params)
        select_list = ", ".join(f"t.{col} AS {col}" for col in c.columns)
        sql = (
            f"SELECT t.rowid AS rowid, {select_list} "
            f"FROM {c.table} AS t "
            f"WHERE {' AND '.join(clauses)} "
            f"ORDER BY t.created_at, t.rowid "
            f"LIMIT ?"
        )
        params.append(self.limit)
        return sql, params
