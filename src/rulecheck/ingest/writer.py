"""Knowledge writer: embed and persist documents and code examples.

Bulk writes are sequential with ``ingest.delay_seconds`` between embedding
calls to stay under provider rate limits. In bulk paths a single item's
embedding failure is logged and skipped; single-item writes raise.

Any content change re-embeds before the row is updated, so a failed
embedding leaves the stored record untouched.
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from collections.abc import Callable, Sequence

from rulecheck.config import IngestCfg
from rulecheck.db.models import CodeExample, KnowledgeDocument
from rulecheck.db.repository import Repository
from rulecheck.exceptions import EmbeddingFailure
from rulecheck.ingest.markdown import DocumentChunk
from rulecheck.rag.embedder import EmbeddingClient

logger = logging.getLogger(__name__)

_UNSET = object()


class KnowledgeWriter:
    """Write knowledge documents and code examples with their embeddings.

    Args:
        repo: Open Repository instance.
        embedder: Embedding client; its dimensionality must match the vec tables.
        config: Ingest settings (inter-call delay).
        sleep: Sleep function used between bulk calls (injectable for tests).
    """

    def __init__(
        self,
        repo: Repository,
        embedder: EmbeddingClient,
        config: IngestCfg | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._repo = repo
        self._embedder = embedder
        self._config = config or IngestCfg()
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def store_documents(self, chunks: Sequence[DocumentChunk]) -> list[str]:
        """Embed and insert *chunks*. Returns the ids of the stored documents.

        Chunks whose embedding fails are logged and skipped.
        """
        stored: list[str] = []
        for i, chunk in enumerate(chunks):
            if i > 0:
                self._pause()
            try:
                embedding = self._embedder.embed(chunk.content)
            except (EmbeddingFailure, ValueError) as exc:
                logger.warning("Skipping chunk '%s': %s", chunk.title, exc)
                continue
            doc = KnowledgeDocument(
                id=str(uuid.uuid4()),
                title=chunk.title,
                content=chunk.content,
                section=chunk.section,
                document_type=chunk.document_type,
                metadata=json.dumps(chunk.metadata),
            )
            self._repo.add_document(doc, embedding)
            stored.append(doc.id)
        logger.info("Stored %d of %d chunk(s)", len(stored), len(chunks))
        return stored

    def update_document(
        self,
        document_id: str,
        *,
        title: str | None = None,
        content: str | None = None,
        section: object = _UNSET,
        document_type: str | None = None,
        metadata: dict | None = None,
    ) -> KnowledgeDocument:
        """Change fields of a stored document; a content change re-embeds it.

        Pass ``section=None`` to clear the section.

        Raises:
            KeyError: If the document does not exist.
            EmbeddingFailure: If re-embedding fails (nothing is changed).
        """
        doc = self._repo.get_document(document_id)
        if doc is None:
            raise KeyError(f"Document not found: {document_id}")

        embedding = None
        if content is not None and content != doc.content:
            embedding = self._embedder.embed(content)
            doc.content = content
        if title is not None:
            doc.title = title
        if section is not _UNSET:
            doc.section = section  # type: ignore[assignment]
        if document_type is not None:
            doc.document_type = document_type
        if metadata is not None:
            doc.metadata = json.dumps(metadata)

        self._repo.update_document(doc)
        if embedding is not None:
            self._repo.set_document_embedding(doc.id, embedding)
        return doc

    def reembed_documents(self, ids: Sequence[str] | None = None) -> int:
        """Regenerate embeddings for *ids* (all documents when None). Returns the count done."""
        if ids is None:
            docs = self._repo.list_documents()
        else:
            docs = [d for d in (self._repo.get_document(i) for i in ids) if d is not None]
        done = 0
        for i, doc in enumerate(docs):
            if i > 0:
                self._pause()
            try:
                embedding = self._embedder.embed(doc.content)
            except (EmbeddingFailure, ValueError) as exc:
                logger.warning("Could not re-embed document %s: %s", doc.id, exc)
                continue
            self._repo.set_document_embedding(doc.id, embedding)
            done += 1
        return done

    # ------------------------------------------------------------------
    # Code examples
    # ------------------------------------------------------------------

    def add_example(
        self,
        title: str,
        code_content: str,
        quality_score: int,
        category: str | None = None,
        description: str | None = None,
        tags: list[str] | None = None,
    ) -> CodeExample:
        """Embed and insert a code example.

        Raises:
            ValueError: If title or code is empty, or quality_score is outside 0–100.
            EmbeddingFailure: If the embedding call fails.
        """
        if not title.strip() or not code_content.strip():
            raise ValueError("title and code_content are required")
        if isinstance(quality_score, bool) or not 0 <= quality_score <= 100:
            raise ValueError(f"quality_score must be in 0–100, got {quality_score}")

        embedding = self._embedder.embed(code_content)
        example = CodeExample(
            id=str(uuid.uuid4()),
            title=title,
            code_content=code_content,
            quality_score=quality_score,
            category=category or None,
            description=description or None,
            tags=tags or None,
        )
        self._repo.add_example(example, embedding)
        return example

    def update_example(
        self,
        example_id: str,
        *,
        title: str | None = None,
        code_content: str | None = None,
        quality_score: int | None = None,
        category: object = _UNSET,
        description: object = _UNSET,
        tags: object = _UNSET,
    ) -> CodeExample:
        """Change fields of a stored example; a code change re-embeds it.

        Raises:
            KeyError: If the example does not exist.
            ValueError: If quality_score is outside 0–100.
            EmbeddingFailure: If re-embedding fails (nothing is changed).
        """
        example = self._repo.get_example(example_id)
        if example is None:
            raise KeyError(f"Example not found: {example_id}")

        embedding = None
        if code_content is not None and code_content != example.code_content:
            embedding = self._embedder.embed(code_content)
            example.code_content = code_content
        if title is not None:
            example.title = title
        if quality_score is not None:
            example.quality_score = quality_score
        if category is not _UNSET:
            example.category = category  # type: ignore[assignment]
        if description is not _UNSET:
            example.description = description  # type: ignore[assignment]
        if tags is not _UNSET:
            example.tags = tags  # type: ignore[assignment]

        self._repo.update_example(example)
        if embedding is not None:
            self._repo.set_example_embedding(example.id, embedding)
        return example

    def reembed_examples(self, ids: Sequence[str] | None = None) -> int:
        """Regenerate embeddings for *ids* (all examples when None). Returns the count done."""
        if ids is None:
            examples = self._repo.list_examples()
        else:
            examples = [e for e in (self._repo.get_example(i) for i in ids) if e is not None]
        done = 0
        for i, example in enumerate(examples):
            if i > 0:
                self._pause()
            try:
                embedding = self._embedder.embed(example.code_content)
            except (EmbeddingFailure, ValueError) as exc:
                logger.warning("Could not re-embed example %s: %s", example.id, exc)
                continue
            self._repo.set_example_embedding(example.id, embedding)
            done += 1
        return done

    def _pause(self) -> None:
        if self._config.delay_seconds > 0:
            self._sleep(self._config.delay_seconds)
