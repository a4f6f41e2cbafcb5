"""CLI fixtures: an isolated project directory and a patched embedding provider."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

PROJECT_CONFIG = """\
embedding:
  model: openai/text-embedding-3-small
  dimensions: 4
ingest:
  delay_seconds: 0
"""


@pytest.fixture
def project(tmp_path, monkeypatch):
    """chdir into tmp_path with a 4-dim rulecheck.yaml and a private global config path."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr("rulecheck.config._GLOBAL_CONFIG_PATH", tmp_path / "home" / "config.yaml")
    for var in ("RULECHECK_GENERATION_MODEL", "RULECHECK_EMBEDDING_MODEL", "RULECHECK_LOG_LEVEL"):
        monkeypatch.delenv(var, raising=False)
    (tmp_path / "rulecheck.yaml").write_text(PROJECT_CONFIG, encoding="utf-8")
    return tmp_path


@pytest.fixture
def mock_embedding():
    """Every litellm.embedding() call returns the same unit vector."""
    response = MagicMock()
    response.data = [{"embedding": [1.0, 0.0, 0.0, 0.0]}]
    with patch("rulecheck.rag.embedder.litellm.embedding", return_value=response) as mock_e:
        yield mock_e
