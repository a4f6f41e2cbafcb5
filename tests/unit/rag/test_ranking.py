"""Tests for authority weighting, re-ranking and merging."""

from __future__ import annotations

import pytest

from rulecheck.rag.ranking import (
    SearchResult,
    authority_weight,
    is_authoritative,
    merge_unique,
    rerank_by_authority,
    section_matches,
)

RULE_LABELS = ["Panther Detection Rules", "Writing Python Detections"]
GUIDE_LABELS = ["Detection Writing Guide"]


def _result(id, similarity, document_type="rule", section=None):
    return SearchResult(
        id=id,
        title=id,
        content="text",
        document_type=document_type,
        similarity=similarity,
        raw_similarity=similarity,
        section=section,
    )


# ------------------------------------------------------------------
# authority_weight
# ------------------------------------------------------------------


@pytest.mark.parametrize(
    "section,document_type,expected",
    [
        ("Panther Detection Rules", "rule", 1.3),
        ("panther detection rules: severity", "rule", 1.3),
        ("Panther Detection Rules", "best-practice", 1.0),
        ("Detection Writing Guide", "best-practice", 1.2),
        ("Detection Writing Guide", "rule", 1.2),
        ("Other", "rule", 1.1),
        (None, "rule", 1.1),
        ("Other", "example", 1.0),
    ],
)
def test_authority_weight_tiers(section, document_type, expected):
    assert authority_weight(section, document_type, RULE_LABELS, GUIDE_LABELS) == expected


def test_section_matches_is_case_insensitive_substring():
    assert section_matches("Intro to WRITING PYTHON DETECTIONS", RULE_LABELS)
    assert not section_matches("", RULE_LABELS)
    assert not section_matches("Anything", [""])


def test_is_authoritative():
    assert is_authoritative(_result("a", 0.5, section="Detection Writing Guide"), RULE_LABELS, GUIDE_LABELS)
    assert not is_authoritative(_result("b", 0.5, section="Misc"), RULE_LABELS, GUIDE_LABELS)


# ------------------------------------------------------------------
# rerank_by_authority
# ------------------------------------------------------------------


def test_authoritative_rule_outranks_closer_best_practice():
    best_practice = _result("bp", 0.75, document_type="best-practice", section="Tips")
    rule = _result("rule", 0.72, section="Panther Detection Rules")

    ranked = rerank_by_authority([best_practice, rule], RULE_LABELS, GUIDE_LABELS)

    assert [r.id for r in ranked] == ["rule", "bp"]
    assert ranked[0].similarity == pytest.approx(0.936)
    assert ranked[0].raw_similarity == 0.72
    assert ranked[1].similarity == pytest.approx(0.75)


def test_rerank_ties_broken_by_raw_similarity():
    # 0.5 * 1.3 == 0.65
    authoritative = _result("auth", 0.5, section="Panther Detection Rules")
    plain = _result("plain", 0.65, document_type="best-practice", section="Misc")

    ranked = rerank_by_authority([authoritative, plain], RULE_LABELS, GUIDE_LABELS)

    assert ranked[0].similarity == ranked[1].similarity
    assert [r.id for r in ranked] == ["plain", "auth"]


def test_rerank_full_tie_keeps_input_order():
    a = _result("a", 0.8)
    b = _result("b", 0.8)
    assert [r.id for r in rerank_by_authority([a, b], RULE_LABELS, GUIDE_LABELS)] == ["a", "b"]
    assert [r.id for r in rerank_by_authority([b, a], RULE_LABELS, GUIDE_LABELS)] == ["b", "a"]


def test_rerank_empty():
    assert rerank_by_authority([], RULE_LABELS, GUIDE_LABELS) == []


# ------------------------------------------------------------------
# merge_unique
# ------------------------------------------------------------------


def test_merge_unique_first_seen_wins():
    first = [_result("a", 0.9), _result("b", 0.8)]
    second = [_result("b", 0.99), _result("c", 0.7)]
    merged = merge_unique(first, second, cap=10)
    assert [r.id for r in merged] == ["a", "b", "c"]
    assert merged[1].similarity == 0.8


def test_merge_unique_respects_cap():
    merged = merge_unique([_result("a", 0.9), _result("b", 0.8)], [_result("c", 0.7)], cap=2)
    assert [r.id for r in merged] == ["a", "b"]


def test_merge_unique_no_duplicate_ids():
    groups = [[_result(i, 0.5) for i in "abc"], [_result(i, 0.5) for i in "cba"], [_result("d", 0.5)]]
    merged = merge_unique(*groups, cap=10)
    ids = [r.id for r in merged]
    assert len(ids) == len(set(ids)) == 4
