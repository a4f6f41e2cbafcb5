"""Retrieval engine: similarity search, authority re-ranking, enhanced context.

Every search embeds its query through the EmbeddingClient and asks the
Repository for rows whose cosine distance is below ``1 - min_similarity``:

  similarity = 1 - cosine_distance

Weighted search multiplies each similarity by the authority weight of the
document (see rulecheck.rag.ranking) over a candidate pool of
``top_k * candidate_multiplier`` rows, so a strongly weighted document just
outside the raw top-k can still rise into it.

build_enhanced_context() runs three independent searches on a thread pool:
  weighted documents   context_top_k / context_min_similarity
  keyword-gated docs   keyword_top_k / keyword_min_similarity
  similar examples     context_example_top_k / context_example_min_similarity
and fails fast: the first exception from a primary search is re-raised.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from collections.abc import Callable
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import TypeVar

from rulecheck.config import PromptCfg, RetrievalCfg
from rulecheck.db.models import CodeExample, KnowledgeDocument
from rulecheck.db.query import CategoryEquals, ContainsAny
from rulecheck.db.repository import Repository
from rulecheck.db.vectors import DOCUMENT_VEC_TABLE, EXAMPLE_VEC_TABLE
from rulecheck.exceptions import RetrievalFailure
from rulecheck.rag.assembler import build_prompt
from rulecheck.rag.compliance import ComplianceContext, estimate_compliance
from rulecheck.rag.embedder import EmbeddingClient
from rulecheck.rag.ranking import (
    ExampleSearchResult,
    SearchResult,
    merge_unique,
    rerank_by_authority,
)

logger = logging.getLogger(__name__)

_T = TypeVar("_T")


@dataclass
class SearchMetadata:
    documents_found: int = 0
    examples_found: int = 0
    query_processing_time_ms: int = 0


@dataclass
class RetrievalContext:
    relevant_documents: list[SearchResult] = field(default_factory=list)
    similar_examples: list[ExampleSearchResult] = field(default_factory=list)
    enhanced_prompt: str = ""
    search_metadata: SearchMetadata = field(default_factory=SearchMetadata)
    compliance: ComplianceContext | None = None


@dataclass
class SearchStats:
    total_documents: int = 0
    total_examples: int = 0
    document_types: dict[str, int] = field(default_factory=dict)
    example_categories: dict[str, int] = field(default_factory=dict)
    embedded_documents: int = 0
    embedded_examples: int = 0
    last_updated: str | None = None


def _check_search_args(top_k: int, min_similarity: float) -> None:
    if top_k < 1:
        raise ValueError(f"top_k must be >= 1, got {top_k}")
    if not 0.0 <= min_similarity <= 1.0:
        raise ValueError(f"min_similarity must be in [0, 1], got {min_similarity}")


def _document_result(doc: KnowledgeDocument, distance: float) -> SearchResult:
    similarity = 1.0 - distance
    return SearchResult(
        id=doc.id,
        title=doc.title,
        content=doc.content,
        section=doc.section,
        document_type=doc.document_type,
        similarity=similarity,
        raw_similarity=similarity,
        metadata=doc.metadata_dict or None,
    )


def _example_result(example: CodeExample, distance: float) -> ExampleSearchResult:
    return ExampleSearchResult(
        id=example.id,
        title=example.title,
        code_content=example.code_content,
        quality_score=example.quality_score,
        category=example.category,
        description=example.description,
        similarity=1.0 - distance,
        tags=example.tags,
    )


class RetrievalEngine:
    """Similarity search over knowledge documents and code examples.

    Args:
        repo: Open Repository; its connection must allow use from worker threads.
        embedder: Embedding client producing vectors of the store's dimensionality.
        config: Retrieval thresholds, top-k values and authority labels.
        prompt_config: Truncation budgets for the enhanced prompt.
    """

    def __init__(
        self,
        repo: Repository,
        embedder: EmbeddingClient,
        config: RetrievalCfg | None = None,
        prompt_config: PromptCfg | None = None,
    ) -> None:
        self._repo = repo
        self._embedder = embedder
        self._config = config or RetrievalCfg()
        self._prompt_config = prompt_config or PromptCfg()

    @property
    def config(self) -> RetrievalCfg:
        return self._config

    # ------------------------------------------------------------------
    # Store access
    # ------------------------------------------------------------------

    def _store(self, call: Callable[[], _T]) -> _T:
        """Run a repository call, re-raising store errors as RetrievalFailure."""
        try:
            return call()
        except sqlite3.Error as exc:
            raise RetrievalFailure(f"Vector store query failed: {exc}") from exc
        except RuntimeError as exc:
            raise RetrievalFailure(str(exc)) from exc

    # ------------------------------------------------------------------
    # Document search
    # ------------------------------------------------------------------

    def search_documents(
        self, query: str, top_k: int | None = None, min_similarity: float | None = None
    ) -> list[SearchResult]:
        """Return up to *top_k* documents with similarity >= *min_similarity*, best first.

        Raises:
            ValueError: On an out-of-range argument or an empty query.
            RetrievalFailure: If embedding or the store query fails
                (EmbeddingFailure for the former).
        """
        top_k = self._config.top_k if top_k is None else top_k
        min_similarity = self._config.min_similarity if min_similarity is None else min_similarity
        _check_search_args(top_k, min_similarity)

        started = time.perf_counter()
        vector = self._embedder.embed(query)
        rows = self._store(lambda: self._repo.nearest_documents(vector, min_similarity, top_k))
        results = [_document_result(doc, distance) for doc, distance in rows]
        logger.debug(
            "Document search: %d result(s) in %.0fms",
            len(results),
            (time.perf_counter() - started) * 1000,
        )
        return results

    search_relevant_rules = search_documents

    def search_documents_weighted(
        self, query: str, top_k: int | None = None, min_similarity: float | None = None
    ) -> list[SearchResult]:
        """Like search_documents(), ranked by authority-weighted similarity.

        The returned ``similarity`` is the weighted score and may exceed 1.0;
        ``raw_similarity`` keeps the cosine similarity.
        """
        top_k = self._config.top_k if top_k is None else top_k
        min_similarity = self._config.min_similarity if min_similarity is None else min_similarity
        _check_search_args(top_k, min_similarity)

        pool_size = top_k * self._config.candidate_multiplier
        candidates = self.search_documents(query, pool_size, min_similarity)
        ranked = rerank_by_authority(
            candidates,
            self._config.authoritative_rule_sections,
            self._config.authoritative_guide_sections,
        )
        return ranked[:top_k]

    def search_by_keyword_and_vector(
        self, query: str, top_k: int | None = None
    ) -> list[SearchResult]:
        """Vector search restricted to documents containing a configured keyword.

        Best-effort: failures are logged and yield [].
        """
        top_k = self._config.keyword_top_k if top_k is None else top_k
        floor = self._config.keyword_min_similarity
        _check_search_args(top_k, floor)
        gate = ContainsAny(tuple(self._config.keywords))
        try:
            vector = self._embedder.embed(query)
            rows = self._store(
                lambda: self._repo.nearest_documents(vector, floor, top_k, filters=[gate])
            )
        except RetrievalFailure as exc:
            logger.warning("Keyword search failed, continuing without it: %s", exc)
            return []
        return [_document_result(doc, distance) for doc, distance in rows]

    def search_by_category(self, category: str, top_k: int = 10) -> list[SearchResult]:
        """Documents whose ``metadata.category`` equals *category*; similarity fixed at 1.0.

        Best-effort: failures are logged and yield [].
        """
        try:
            docs = self._store(lambda: self._repo.documents_by_metadata("category", category, top_k))
        except RetrievalFailure as exc:
            logger.warning("Category search for '%s' failed: %s", category, exc)
            return []
        return [_document_result(doc, 0.0) for doc in docs]

    # ------------------------------------------------------------------
    # Example search
    # ------------------------------------------------------------------

    def search_examples(
        self, code: str, top_k: int | None = None, min_similarity: float | None = None
    ) -> list[ExampleSearchResult]:
        """Return up to *top_k* code examples similar to *code*, best first."""
        top_k = self._config.example_top_k if top_k is None else top_k
        min_similarity = (
            self._config.example_min_similarity if min_similarity is None else min_similarity
        )
        _check_search_args(top_k, min_similarity)

        vector = self._embedder.embed(code)
        rows = self._store(lambda: self._repo.nearest_examples(vector, min_similarity, top_k))
        logger.debug("Example search: %d result(s)", len(rows))
        return [_example_result(example, distance) for example, distance in rows]

    search_similar_examples = search_examples

    def search_examples_by_category(
        self,
        code: str,
        category: str,
        top_k: int | None = None,
        min_similarity: float | None = None,
    ) -> list[ExampleSearchResult]:
        """Examples in *category* ranked by similarity to *code*.

        Best-effort: failures are logged and yield [].
        """
        top_k = self._config.example_top_k if top_k is None else top_k
        min_similarity = (
            self._config.example_min_similarity if min_similarity is None else min_similarity
        )
        _check_search_args(top_k, min_similarity)
        try:
            vector = self._embedder.embed(code)
            rows = self._store(
                lambda: self._repo.nearest_examples(
                    vector, min_similarity, top_k, filters=[CategoryEquals(category)]
                )
            )
        except RetrievalFailure as exc:
            logger.warning("Example search in category '%s' failed: %s", category, exc)
            return []
        return [_example_result(example, distance) for example, distance in rows]

    # ------------------------------------------------------------------
    # Enhanced context
    # ------------------------------------------------------------------

    def build_enhanced_context(
        self,
        code: str,
        *,
        max_documents: int | None = None,
        max_examples: int | None = None,
        include_examples: bool = True,
        response_language: str = "English",
    ) -> RetrievalContext:
        """Search documents and examples for *code* and assemble the evaluator prompt.

        Args:
            code: The rule code under evaluation; it is also the search key.
            max_documents: Cap on merged documents (default max_context_documents).
            max_examples: Cap on examples (default context_example_top_k).
            include_examples: Skip the example search entirely when False.
            response_language: Language the evaluator is told to answer in.

        Raises:
            RetrievalFailure: The first failure of the weighted or example search.
        """
        cfg = self._config
        cap = cfg.max_context_documents if max_documents is None else max_documents
        example_k = cfg.context_example_top_k if max_examples is None else max_examples
        if cap < 1:
            raise ValueError(f"max_documents must be >= 1, got {cap}")

        started = time.perf_counter()
        # Failures in the order they happened; a finished future carries no timestamp.
        failures: list[Exception] = []
        lock = threading.Lock()

        def recorded(fn: Callable[..., _T], *args) -> _T:
            try:
                return fn(*args)
            except Exception as exc:
                with lock:
                    failures.append(exc)
                raise

        with ThreadPoolExecutor(max_workers=3, thread_name_prefix="rulecheck-search") as pool:
            weighted_f = pool.submit(
                recorded,
                self.search_documents_weighted,
                code,
                cfg.context_top_k,
                cfg.context_min_similarity,
            )
            keyword_f = pool.submit(
                recorded, self.search_by_keyword_and_vector, code, cfg.keyword_top_k
            )
            futures = [weighted_f, keyword_f]
            examples_f = None
            if include_examples:
                examples_f = pool.submit(
                    recorded,
                    self.search_examples,
                    code,
                    example_k,
                    cfg.context_example_min_similarity,
                )
                futures.append(examples_f)

            wait(futures, return_when=FIRST_EXCEPTION)
            with lock:
                first_failure = failures[0] if failures else None
            if first_failure is not None:
                raise first_failure

            weighted = weighted_f.result()
            keyword = keyword_f.result()
            examples = examples_f.result() if examples_f is not None else []

        documents = merge_unique(weighted, keyword, cap=cap)
        compliance = estimate_compliance(code, documents)
        prompt = build_prompt(
            documents,
            examples,
            compliance,
            self._prompt_config,
            cfg,
            response_language=response_language,
        )
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        logger.debug(
            "Enhanced context: %d document(s), %d example(s) in %dms",
            len(documents),
            len(examples),
            elapsed_ms,
        )
        return RetrievalContext(
            relevant_documents=documents,
            similar_examples=examples,
            enhanced_prompt=prompt,
            search_metadata=SearchMetadata(
                documents_found=len(documents),
                examples_found=len(examples),
                query_processing_time_ms=elapsed_ms,
            ),
            compliance=compliance,
        )

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def get_search_stats(self) -> SearchStats:
        """Aggregate counts over both collections.

        Raises:
            RetrievalFailure: If any store query fails.
        """
        repo = self._repo
        return self._store(
            lambda: SearchStats(
                total_documents=repo.count_documents(),
                total_examples=repo.count_examples(),
                document_types=repo.document_type_counts(),
                example_categories=repo.example_category_counts(),
                embedded_documents=repo.count_embedded(DOCUMENT_VEC_TABLE),
                embedded_examples=repo.count_embedded(EXAMPLE_VEC_TABLE),
                last_updated=repo.last_created_at(),
            )
        )
