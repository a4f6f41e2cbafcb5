"""Tests for rulecheck examples add / list / remove."""

from __future__ import annotations

from unittest.mock import patch

from typer.testing import CliRunner

from rulecheck.cli.main import app
from rulecheck.db.connection import Database
from rulecheck.db.repository import Repository

runner = CliRunner()

RULE = "def rule(event):\n    return event.get('outcome') == 'FAILURE'\n"


def _init(project):
    result = runner.invoke(app, ["init", "--skip-global"])
    assert result.exit_code == 0, result.output
    (project / "rule.py").write_text(RULE, encoding="utf-8")


def _stored(project):
    with Database(project / ".rulecheck.db") as conn:
        return Repository(conn).list_examples()


def test_examples_add(project, mock_embedding):
    _init(project)
    result = runner.invoke(
        app,
        [
            "examples", "add",
            "--file", "rule.py",
            "--title", "Okta failures",
            "--quality", "85",
            "--category", "okta",
            "--tag", "auth",
            "--tag", "login",
        ],
    )
    assert result.exit_code == 0, result.output
    assert "Example stored" in result.output
    [example] = _stored(project)
    assert example.title == "Okta failures"
    assert example.quality_score == 85
    assert example.tags == ["auth", "login"]
    assert example.code_content == RULE


def test_examples_add_quality_out_of_range(project, mock_embedding):
    _init(project)
    result = runner.invoke(
        app, ["examples", "add", "-f", "rule.py", "--title", "t", "--quality", "150"]
    )
    assert result.exit_code != 0
    assert _stored(project) == []


def test_examples_add_missing_file(project):
    _init(project)
    result = runner.invoke(
        app, ["examples", "add", "-f", "missing.py", "--title", "t", "--quality", "50"]
    )
    assert result.exit_code == 1
    assert "File not found" in result.output


def test_examples_add_embedding_failure(project):
    _init(project)
    with patch(
        "rulecheck.rag.embedder.litellm.embedding",
        side_effect=RuntimeError("UnrecognizedClientException: bad token"),
    ):
        result = runner.invoke(
            app, ["examples", "add", "-f", "rule.py", "--title", "t", "--quality", "50"]
        )
    assert result.exit_code == 1
    assert "Embedding failed (auth)" in result.output
    assert _stored(project) == []


def test_examples_list_sorted_by_quality(project, mock_embedding):
    _init(project)
    runner.invoke(app, ["examples", "add", "-f", "rule.py", "--title", "Low", "-q", "40"])
    runner.invoke(app, ["examples", "add", "-f", "rule.py", "--title", "High", "-q", "95"])

    result = runner.invoke(app, ["examples", "list"])

    assert result.exit_code == 0, result.output
    assert result.output.index("High") < result.output.index("Low")


def test_examples_list_empty(project):
    _init(project)
    result = runner.invoke(app, ["examples", "list"])
    assert result.exit_code == 0
    assert "No code examples stored" in result.output


def test_examples_remove(project, mock_embedding):
    _init(project)
    runner.invoke(app, ["examples", "add", "-f", "rule.py", "--title", "t", "-q", "50"])
    [example] = _stored(project)

    result = runner.invoke(app, ["examples", "remove", example.id])

    assert result.exit_code == 0, result.output
    assert _stored(project) == []


def test_examples_remove_unknown_id(project):
    _init(project)
    result = runner.invoke(app, ["examples", "remove", "ghost"])
    assert result.exit_code == 1
    assert "not found" in result.output
