"""Tests for rulecheck stats."""

from __future__ import annotations

from typer.testing import CliRunner

from rulecheck.cli.main import app
from rulecheck.db.connection import Database
from rulecheck.db.models import CodeExample, KnowledgeDocument
from rulecheck.db.repository import Repository

runner = CliRunner()


def test_stats_without_database(project):
    result = runner.invoke(app, ["stats"])
    assert result.exit_code == 0
    assert "No database found" in result.output


def test_stats_empty_database(project):
    runner.invoke(app, ["init", "--skip-global"])
    result = runner.invoke(app, ["stats"])
    assert result.exit_code == 0, result.output
    assert "Knowledge Base" in result.output
    assert "Documents:  0" in result.output
    assert "Document Types" not in result.output


def test_stats_counts_and_breakdowns(project):
    runner.invoke(app, ["init", "--skip-global"])
    with Database(project / ".rulecheck.db") as conn:
        repo = Repository(conn)
        repo.add_document(KnowledgeDocument(id="d1", title="A", content="a"), [1.0, 0.0, 0.0, 0.0])
        repo.add_document(
            KnowledgeDocument(id="d2", title="B", content="b", document_type="best-practice")
        )
        repo.add_example(
            CodeExample(id="e1", title="E", code_content="x", quality_score=70, category="aws"),
            [0.0, 1.0, 0.0, 0.0],
        )

    result = runner.invoke(app, ["stats"])

    assert result.exit_code == 0, result.output
    assert "Documents:  2" in result.output
    assert "(embedded: 1)" in result.output
    assert "Examples:   1" in result.output
    assert "rulecheck reembed" in result.output
    assert "Document Types" in result.output
    assert "best-practice" in result.output
    assert "Example Categories" in result.output
    assert "aws" in result.output
