"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from rulecheck.config import EmbeddingCfg
from rulecheck.db.connection import Database
from rulecheck.db.repository import Repository
from rulecheck.db.schema import initialize
from rulecheck.rag.embedder import EmbeddingClient

TEST_DIMS = 4


class FakeEmbedder(EmbeddingClient):
    """Deterministic embedder: looks texts up in ``vectors``, else returns ``default``.

    Set ``error`` to make every embed() call raise it.
    """

    def __init__(self) -> None:
        super().__init__(EmbeddingCfg(model="fake/embedder", dimensions=TEST_DIMS))
        self.vectors: dict[str, list[float]] = {}
        self.default = [0.0, 0.0, 0.0, 1.0]
        self.error: Exception | None = None
        self.calls: list[str] = []

    def embed(self, text: str) -> list[float]:
        cleaned = self.preprocess(text)
        if not cleaned:
            raise ValueError("Cannot embed empty text")
        self.calls.append(cleaned)
        if self.error is not None:
            raise self.error
        return list(self.vectors.get(cleaned, self.default))


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized (4-dim vectors), closed after test."""
    db = Database(tmp_path / ".rulecheck.db")
    conn = db.connect()
    initialize(conn, TEST_DIMS)
    yield conn
    conn.close()


@pytest.fixture
def repo(tmp_db):
    return Repository(tmp_db)


@pytest.fixture
def fake_embedder():
    return FakeEmbedder()
