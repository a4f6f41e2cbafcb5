"""Domain models for the rulecheck database layer."""

from __future__ import annotations

import json
from dataclasses import dataclass, field

DOCUMENT_TYPES = ("rule", "best-practice", "example")


@dataclass
class KnowledgeDocument:
    id: str
    title: str
    content: str
    document_type: str = "rule"
    section: str | None = None
    metadata: str = field(default_factory=lambda: "{}")
    created_at: str | None = None
    rowid: int | None = None  # set after insert; vec_documents is keyed on it

    @property
    def metadata_dict(self) -> dict:
        return json.loads(self.metadata or "{}")


@dataclass
class CodeExample:
    id: str
    title: str
    code_content: str
    quality_score: int
    category: str | None = None
    description: str | None = None
    tags: list[str] | None = None
    created_at: str | None = None
    rowid: int | None = None


@dataclass
class DocumentReference:
    """Provenance link from a stored validation to a knowledge document."""

    document_id: str
    relevance_score: float
    usage_context: str | None = None


@dataclass
class ExampleReference:
    """Provenance link from a stored validation to a code example."""

    example_id: str
    similarity_score: float
    improvements: list[str] = field(default_factory=list)


@dataclass
class ValidationRecord:
    id: str
    code_content: str
    syntax_is_valid: bool
    rule_compliance_score: int
    code_quality_score: int
    code_quality_feedback: str
    detailed_analysis: str
    total_duration_ms: int
    model_used: str
    syntax_errors: list[str] = field(default_factory=list)
    rule_findings: list[str] = field(default_factory=list)
    rule_suggestions: list[str] = field(default_factory=list)
    created_at: str | None = None
