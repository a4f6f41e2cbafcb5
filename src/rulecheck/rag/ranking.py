"""Authority weighting, re-ranking and merge helpers for search results."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, replace

AUTHORITATIVE_RULE_WEIGHT = 1.3
AUTHORITATIVE_GUIDE_WEIGHT = 1.2
RULE_WEIGHT = 1.1
DEFAULT_WEIGHT = 1.0


@dataclass(frozen=True)
class SearchResult:
    """A knowledge document matched by a search.

    ``similarity`` is the score results are ranked by: the cosine similarity,
    multiplied by the authority weight when the search was weighted.
    ``raw_similarity`` always holds the unweighted cosine similarity.
    """

    id: str
    title: str
    content: str
    document_type: str
    similarity: float
    raw_similarity: float
    section: str | None = None
    metadata: dict | None = None


@dataclass(frozen=True)
class ExampleSearchResult:
    id: str
    title: str
    code_content: str
    quality_score: int
    similarity: float
    category: str | None = None
    description: str | None = None
    tags: list[str] | None = None


def section_matches(section: str | None, labels: Iterable[str]) -> bool:
    """True if any label occurs in *section* (case-insensitive substring)."""
    if not section:
        return False
    lowered = section.lower()
    return any(label and label.lower() in lowered for label in labels)


def authority_weight(
    section: str | None,
    document_type: str,
    rule_labels: Sequence[str],
    guide_labels: Sequence[str],
) -> float:
    """Return the multiplier applied to a document's cosine similarity.

    The first matching tier wins:
      authoritative-rule section and type ``rule``  → 1.3
      authoritative-guide section                    → 1.2
      type ``rule``                                  → 1.1
      anything else                                  → 1.0
    """
    if document_type == "rule" and section_matches(section, rule_labels):
        return AUTHORITATIVE_RULE_WEIGHT
    if section_matches(section, guide_labels):
        return AUTHORITATIVE_GUIDE_WEIGHT
    if document_type == "rule":
        return RULE_WEIGHT
    return DEFAULT_WEIGHT


def is_authoritative(
    result: SearchResult, rule_labels: Sequence[str], guide_labels: Sequence[str]
) -> bool:
    """True if *result* sits in an authoritative-rule or authoritative-guide section."""
    return section_matches(result.section, rule_labels) or section_matches(
        result.section, guide_labels
    )


def rerank_by_authority(
    results: Sequence[SearchResult],
    rule_labels: Sequence[str],
    guide_labels: Sequence[str],
) -> list[SearchResult]:
    """Weight every result and sort by weighted score, then raw similarity.

    The sort is stable, so full ties keep their input (distance) order.
    """
    weighted = [
        replace(
            r,
            similarity=r.raw_similarity
            * authority_weight(r.section, r.document_type, rule_labels, guide_labels),
        )
        for r in results
    ]
    return sorted(weighted, key=lambda r: (-r.similarity, -r.raw_similarity))


def merge_unique(*groups: Iterable[SearchResult], cap: int) -> list[SearchResult]:
    """Concatenate *groups* in order, dropping repeated ids (first seen wins)."""
    seen: set[str] = set()
    merged: list[SearchResult] = []
    for group in groups:
        for result in group:
            if result.id in seen:
                continue
            seen.add(result.id)
            merged.append(result)
            if len(merged) >= cap:
                return merged
    return merged
