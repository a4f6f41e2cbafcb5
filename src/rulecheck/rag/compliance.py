"""Rule-based compliance pre-score for detection-rule code.

Pattern presence only: no parsing, no network. The score and hints bias the
evaluator prompt; they never gate the result.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass, field

from rulecheck.rag.ranking import SearchResult

RULE_FUNCTION_MISSING = "rule function missing"
ACCESSOR_MISSING = "unsafe/missing accessor usage"
BOOLEAN_RETURN_MISSING = "explicit boolean return missing"

_PENALTIES: tuple[tuple[re.Pattern[str], int, str], ...] = (
    (re.compile(r"\bdef\s+rule\s*\("), 30, RULE_FUNCTION_MISSING),
    (re.compile(r"\.get\(|\bdeep_get\(|\bdeep_walk\("), 15, ACCESSOR_MISSING),
    (re.compile(r"\breturn\s+(?:True|False)\b"), 20, BOOLEAN_RETURN_MISSING),
)

_OBLIGATION_RE = re.compile(r"\b(?:should|must|recommended)\b", re.IGNORECASE)
_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+|\n+")

MAX_SUGGESTIONS = 5


@dataclass
class ComplianceContext:
    missing_requirements: list[str] = field(default_factory=list)
    compliance_score: int = 100
    suggestions: list[str] = field(default_factory=list)


def extract_suggestions(
    documents: Sequence[SearchResult], limit: int = MAX_SUGGESTIONS
) -> list[str]:
    """Return up to *limit* distinct obligation sentences, in document order."""
    seen: set[str] = set()
    found: list[str] = []
    for doc in documents:
        for sentence in _SENTENCE_SPLIT_RE.split(doc.content):
            sentence = sentence.strip()
            if not sentence or sentence in seen or not _OBLIGATION_RE.search(sentence):
                continue
            seen.add(sentence)
            found.append(sentence)
            if len(found) >= limit:
                return found
    return found


def estimate_compliance(code: str, documents: Sequence[SearchResult]) -> ComplianceContext:
    """Score *code* from 100 down by fixed penalties; attach suggestions from *documents*."""
    score = 100
    missing: list[str] = []
    for pattern, penalty, requirement in _PENALTIES:
        if not pattern.search(code):
            score -= penalty
            missing.append(requirement)

    return ComplianceContext(
        missing_requirements=missing,
        compliance_score=max(0, min(100, score)),
        suggestions=extract_suggestions(documents),
    )
