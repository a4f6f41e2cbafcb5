"""Tests for rulecheck validate and rulecheck improve."""

from __future__ import annotations

import json
from unittest.mock import patch

from typer.testing import CliRunner

from rulecheck.cli.main import app
from rulecheck.db.connection import Database
from rulecheck.db.repository import Repository
from rulecheck.exceptions import LLMInvocationFailure

runner = CliRunner()

RULE = "def rule(event):\n    return event.get('outcome') == 'FAILURE'\n"
IMPROVED = "def rule(event):\n    return event.deep_get('outcome') == 'FAILURE'"

VERDICT = json.dumps(
    {
        "syntaxCheck": {"isValid": True, "errors": []},
        "ruleCompliance": {
            "score": 60,
            "findings": ["No severity() function"],
            "suggestions": ["Add severity()"],
        },
        "codeQuality": {"score": 72, "feedback": "Readable."},
        "detailedAnalysis": "Works, but incomplete.",
    }
)


def _write_rule(project):
    (project / "rule.py").write_text(RULE, encoding="utf-8")


def test_validate_without_database(project):
    _write_rule(project)
    with patch("rulecheck.rag.evaluator.complete", return_value=VERDICT):
        result = runner.invoke(app, ["validate", "rule.py"])
    assert result.exit_code == 0, result.output
    assert "No knowledge base found" in result.output
    assert "60/100" in result.output
    assert "72/100" in result.output
    assert "Stored as validation" not in result.output


def test_validate_json_without_database(project):
    _write_rule(project)
    with patch("rulecheck.rag.evaluator.complete", return_value=VERDICT):
        result = runner.invoke(app, ["validate", "rule.py", "--json"])
    assert result.exit_code == 0, result.output
    payload = json.loads(result.stdout)
    assert payload["type"] == "complete"
    assert payload["recordId"] is None
    assert payload["result"]["ruleCompliance"]["score"] == 60
    assert payload["result"]["ragMetadata"]["ragEnabled"] is False


def test_validate_stores_verdict(project, mock_embedding):
    runner.invoke(app, ["init", "--skip-global"])
    _write_rule(project)
    with patch("rulecheck.rag.evaluator.complete", return_value=VERDICT):
        result = runner.invoke(app, ["validate", "rule.py", "--json"])
    assert result.exit_code == 0, result.output
    payload = json.loads(result.stdout)
    assert payload["result"]["ragMetadata"]["ragEnabled"] is True

    with Database(project / ".rulecheck.db") as conn:
        record = Repository(conn).get_validation(payload["recordId"])
    assert record is not None
    assert record.rule_compliance_score == 60
    assert record.code_content == RULE


def test_validate_text_output_mentions_record(project, mock_embedding):
    runner.invoke(app, ["init", "--skip-global"])
    _write_rule(project)
    with patch("rulecheck.rag.evaluator.complete", return_value=VERDICT):
        result = runner.invoke(app, ["validate", "rule.py"])
    assert result.exit_code == 0, result.output
    assert "Stored as validation" in result.output


def test_validate_no_save(project, mock_embedding):
    runner.invoke(app, ["init", "--skip-global"])
    _write_rule(project)
    with patch("rulecheck.rag.evaluator.complete", return_value=VERDICT):
        result = runner.invoke(app, ["validate", "rule.py", "--no-save", "--json"])
    assert result.exit_code == 0, result.output
    assert json.loads(result.stdout)["recordId"] is None


def test_validate_unparseable_reply_json(project):
    _write_rule(project)
    with patch("rulecheck.rag.evaluator.complete", return_value="Looks fine to me."):
        result = runner.invoke(app, ["validate", "rule.py", "--json"])
    assert result.exit_code == 1
    payload = json.loads(result.stdout)
    assert payload["type"] == "error"
    assert payload["step"] == "parse"


def test_validate_llm_failure(project):
    _write_rule(project)
    with patch(
        "rulecheck.rag.evaluator.complete", side_effect=LLMInvocationFailure("request timed out")
    ):
        result = runner.invoke(app, ["validate", "rule.py", "--no-rag"])
    assert result.exit_code == 1
    assert "Validation failed" in result.output
    assert "analysis" in result.output


def test_validate_missing_file(project):
    result = runner.invoke(app, ["validate", "missing.py"])
    assert result.exit_code == 1
    assert "File not found" in result.output


def test_validate_empty_file(project):
    (project / "rule.py").write_text("   \n", encoding="utf-8")
    result = runner.invoke(app, ["validate", "rule.py"])
    assert result.exit_code == 1
    assert "is empty" in result.output


def test_validate_missing_api_key(project, monkeypatch):
    _write_rule(project)
    monkeypatch.setenv("RULECHECK_GENERATION_MODEL", "openai/gpt-4o")
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    result = runner.invoke(app, ["validate", "rule.py"])
    assert result.exit_code == 1
    assert "OPENAI_API_KEY" in result.output


def test_improve_prints_code(project):
    _write_rule(project)
    replies = [VERDICT, f"Here you go:\n```python\n{IMPROVED}\n```"]
    with patch("rulecheck.rag.evaluator.complete", side_effect=replies) as mock_c:
        result = runner.invoke(app, ["improve", "rule.py"])
    assert result.exit_code == 0, result.output
    assert mock_c.call_count == 2
    assert IMPROVED in result.stdout
    assert "Here you go" not in result.stdout


def test_improve_writes_output_file(project):
    _write_rule(project)
    replies = [VERDICT, f"```python\n{IMPROVED}\n```"]
    with patch("rulecheck.rag.evaluator.complete", side_effect=replies):
        result = runner.invoke(app, ["improve", "rule.py", "-o", "better.py"])
    assert result.exit_code == 0, result.output
    assert "Improved rule written to" in result.output
    assert (project / "better.py").read_text(encoding="utf-8") == IMPROVED + "\n"


def test_improve_generation_failure(project):
    _write_rule(project)
    replies = [VERDICT, LLMInvocationFailure("rate limited")]
    with patch("rulecheck.rag.evaluator.complete", side_effect=replies):
        result = runner.invoke(app, ["improve", "rule.py"])
    assert result.exit_code == 1
    assert "Validation failed" in result.output


def test_validate_prints_bracketed_model_text_literally(project):
    _write_rule(project)
    verdict = json.dumps(
        {
            "syntaxCheck": {"isValid": False, "errors": ["bad index [/0]"]},
            "ruleCompliance": {
                "score": 40,
                "findings": ["reads [/etc/passwd] path"],
                "suggestions": ["use [bold]deep_get[/bold]"],
            },
            "codeQuality": {"score": 50, "feedback": "Needs work."},
            "detailedAnalysis": "See findings.",
        }
    )
    with patch("rulecheck.rag.evaluator.complete", return_value=verdict):
        result = runner.invoke(app, ["validate", "rule.py", "--no-save"])
    assert result.exit_code == 0, result.output
    assert "bad index [/0]" in result.output
    assert "reads [/etc/passwd] path" in result.output
    assert "[bold]deep_get[/bold]" in result.output


def test_validate_unparseable_reply_shows_model_text(project):
    _write_rule(project)
    reply = "Looks fine, but check [/0] indexing."
    with patch("rulecheck.rag.evaluator.complete", return_value=reply):
        result = runner.invoke(app, ["validate", "rule.py", "--no-rag"])
    assert result.exit_code == 1
    assert "Model response" in result.output
    assert "[/0]" in result.output


def test_validate_unparseable_reply_json_carries_raw_text(project):
    _write_rule(project)
    with patch("rulecheck.rag.evaluator.complete", return_value="Looks fine to me."):
        result = runner.invoke(app, ["validate", "rule.py", "--json"])
    assert result.exit_code == 1
    assert json.loads(result.stdout)["rawText"] == "Looks fine to me."


def test_validate_reply_with_braces_after_verdict(project):
    _write_rule(project)
    reply = f"Here is the result:\n{VERDICT}\nNote: fields use {{camelCase}} keys."
    with patch("rulecheck.rag.evaluator.complete", return_value=reply):
        result = runner.invoke(app, ["validate", "rule.py", "--json"])
    assert result.exit_code == 0, result.output
    assert json.loads(result.stdout)["result"]["ruleCompliance"]["score"] == 60
