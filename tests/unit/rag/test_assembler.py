"""Tests for evaluator prompt assembly."""

from __future__ import annotations

import pytest

from rulecheck.config import PromptCfg, RetrievalCfg
from rulecheck.rag.assembler import (
    AUTHORITATIVE_HEADING,
    CODE_MARKER,
    CRITERIA_HEADING,
    DOCUMENT_MARKER,
    EXAMPLES_HEADING,
    ROLE_STATEMENT,
    SUPPLEMENTARY_HEADING,
    build_prompt,
    truncate,
)
from rulecheck.rag.compliance import ComplianceContext
from rulecheck.rag.ranking import ExampleSearchResult, SearchResult


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def _doc(id, content="Rules must return a boolean.", section=None, similarity=0.8):
    return SearchResult(
        id=id,
        title=f"Doc {id}",
        content=content,
        document_type="rule",
        similarity=similarity,
        raw_similarity=similarity,
        section=section,
    )


def _example(id="e1", code="def rule(event):\n    return True", **kw):
    return ExampleSearchResult(
        id=id, title=f"Example {id}", code_content=code, quality_score=90, similarity=0.7, **kw
    )


def _build(documents=(), examples=(), compliance=None, prompt_cfg=None, language="English"):
    return build_prompt(
        list(documents),
        list(examples),
        compliance,
        prompt_cfg or PromptCfg(),
        RetrievalCfg(),
        response_language=language,
    )


# ------------------------------------------------------------------
# truncate
# ------------------------------------------------------------------


def test_truncate_short_text_unchanged():
    assert truncate("abc", 3, "...") == "abc"


@pytest.mark.parametrize("length,budget", [(10, 3), (801, 800), (5, 0)])
def test_truncate_long_text(length, budget):
    text = "x" * length
    result = truncate(text, budget, DOCUMENT_MARKER)
    assert result == text[:budget] + DOCUMENT_MARKER
    assert len(result) == budget + len(DOCUMENT_MARKER)


# ------------------------------------------------------------------
# build_prompt
# ------------------------------------------------------------------


def test_empty_context_has_only_role_and_criteria():
    prompt = _build()
    assert prompt.startswith(ROLE_STATEMENT)
    assert AUTHORITATIVE_HEADING not in prompt
    assert SUPPLEMENTARY_HEADING not in prompt
    assert EXAMPLES_HEADING not in prompt
    assert CRITERIA_HEADING in prompt
    assert "Heuristic pre-check" not in prompt


def test_sections_split_by_authority_in_fixed_order():
    docs = [
        _doc("plain", section="Misc"),
        _doc("auth", section="Panther Detection Rules"),
    ]
    prompt = _build(docs, [_example()])

    auth_at = prompt.index(AUTHORITATIVE_HEADING)
    supp_at = prompt.index(SUPPLEMENTARY_HEADING)
    ex_at = prompt.index(EXAMPLES_HEADING)
    crit_at = prompt.index(CRITERIA_HEADING)
    assert auth_at < supp_at < ex_at < crit_at
    assert auth_at < prompt.index("Doc auth") < supp_at
    assert supp_at < prompt.index("Doc plain") < ex_at


def test_document_block_shows_section_and_relevance():
    prompt = _build([_doc("a", section="Misc", similarity=0.8123)])
    assert "### 1. Doc a - Misc (relevance: 81.2%)" in prompt


def test_authoritative_budget_larger_than_supplementary():
    long = "y" * 900
    prompt = _build([_doc("auth", content=long, section="Panther Detection Rules")])
    assert long in prompt

    prompt = _build([_doc("plain", content=long, section="Misc")])
    assert ("y" * 800 + DOCUMENT_MARKER) in prompt
    assert long not in prompt


def test_example_code_truncated_with_comment_marker():
    prompt = _build(examples=[_example(code="z" * 700)], prompt_cfg=PromptCfg(example_chars=600))
    assert ("z" * 600 + CODE_MARKER) in prompt


def test_example_block_includes_description_and_category():
    prompt = _build(examples=[_example(description="Flags failed logins", category="okta")])
    assert "**Description**: Flags failed logins" in prompt
    assert "**Category**: okta" in prompt
    assert "```python" in prompt


def test_compliance_hints_only_with_documents():
    compliance = ComplianceContext(
        missing_requirements=["rule function missing"],
        compliance_score=70,
        suggestions=["Rules must return a boolean."],
    )
    without = _build(examples=[_example()], compliance=compliance)
    assert "Heuristic pre-check" not in without

    with_docs = _build([_doc("a")], compliance=compliance)
    assert "Heuristic pre-check score: 70/100" in with_docs
    assert "- Possibly missing: rule function missing" in with_docs
    assert "- Rules must return a boolean." in with_docs


def test_response_language_in_closing_line():
    prompt = _build(language="Korean")
    assert prompt.rstrip().endswith("Write every response in Korean and return JSON only.")


def test_build_prompt_is_deterministic():
    docs = [_doc("a", section="Panther Detection Rules"), _doc("b")]
    assert _build(docs, [_example()]) == _build(docs, [_example()])
