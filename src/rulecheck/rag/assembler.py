"""Prompt assembly: turn retrieved documents and examples into the evaluator prompt.

Section order is fixed:
  1. Role statement.
  2. Authoritative reference documents (content cut to authoritative_document_chars).
  3. Supplementary reference documents (content cut to document_chars).
  4. Similar code examples (code cut to example_chars).
  5. Evaluation criteria, plus pre-check hints when references matched.
  6. Output format and response language.

Sections 2–4 are omitted when empty. The function is pure: the same inputs
always produce the same prompt.
"""

from __future__ import annotations

from collections.abc import Sequence

from rulecheck.config import PromptCfg, RetrievalCfg
from rulecheck.rag.compliance import ComplianceContext
from rulecheck.rag.ranking import ExampleSearchResult, SearchResult, is_authoritative

DOCUMENT_MARKER = "..."
CODE_MARKER = "\n# ... (truncated)"

ROLE_STATEMENT = "You are a Python code validator specialising in Panther detection rules."

AUTHORITATIVE_HEADING = "## Authoritative Panther rule references"
SUPPLEMENTARY_HEADING = "## Supplementary references"
EXAMPLES_HEADING = "## Similar code examples"
CRITERIA_HEADING = "## Evaluation criteria"

EVALUATION_CRITERIA = (
    "- **Rule compliance**: adherence to the Panther guidelines in the references",
    "- **Code quality**: quality relative to the similar examples",
    "- **Security practice**: soundness of the rule from a detection standpoint",
    "- **Performance**: execution time and resource use",
    "- **Readability and maintainability**: clarity and documentation",
)


def truncate(text: str, budget: int, marker: str) -> str:
    """Return *text* cut to *budget* characters plus *marker*, or unchanged if it fits."""
    if len(text) <= budget:
        return text
    return text[:budget] + marker


def _document_block(index: int, doc: SearchResult, budget: int) -> str:
    heading = f"### {index}. {doc.title}"
    if doc.section:
        heading += f" - {doc.section}"
    heading += f" (relevance: {doc.similarity * 100:.1f}%)"
    return f"{heading}\n{truncate(doc.content, budget, DOCUMENT_MARKER)}\n"


def _example_block(index: int, example: ExampleSearchResult, budget: int) -> str:
    lines = [
        f"### Example {index}: {example.title} "
        f"(quality: {example.quality_score}/100, similarity: {example.similarity * 100:.1f}%)"
    ]
    if example.description:
        lines.append(f"**Description**: {example.description}")
    if example.category:
        lines.append(f"**Category**: {example.category}")
    lines.append("**Code**:")
    lines.append(f"```python\n{truncate(example.code_content, budget, CODE_MARKER)}\n```")
    return "\n".join(lines) + "\n"


def _compliance_hints(compliance: ComplianceContext) -> list[str]:
    lines = [f"Heuristic pre-check score: {compliance.compliance_score}/100"]
    lines.extend(f"- Possibly missing: {req}" for req in compliance.missing_requirements)
    if compliance.suggestions:
        lines.append("Guidance from the references:")
        lines.extend(f"- {s}" for s in compliance.suggestions)
    return lines


def build_prompt(
    documents: Sequence[SearchResult],
    examples: Sequence[ExampleSearchResult],
    compliance: ComplianceContext | None,
    prompt_cfg: PromptCfg,
    retrieval_cfg: RetrievalCfg,
    response_language: str = "English",
) -> str:
    """Assemble the evaluator system prompt.

    Args:
        documents: Merged reference documents, in ranking order.
        examples: Similar code examples, in ranking order.
        compliance: Heuristic pre-score; its hints are only added when at
            least one reference document matched.
        prompt_cfg: Truncation budgets.
        retrieval_cfg: Authority labels used to split the document sections.
        response_language: Language the model must answer in.
    """
    rule_labels = retrieval_cfg.authoritative_rule_sections
    guide_labels = retrieval_cfg.authoritative_guide_sections
    authoritative = [d for d in documents if is_authoritative(d, rule_labels, guide_labels)]
    supplementary = [d for d in documents if not is_authoritative(d, rule_labels, guide_labels)]

    parts: list[str] = [ROLE_STATEMENT + "\n"]

    if authoritative:
        parts.append(AUTHORITATIVE_HEADING + "\n")
        parts.extend(
            _document_block(i, d, prompt_cfg.authoritative_document_chars)
            for i, d in enumerate(authoritative, start=1)
        )

    if supplementary:
        parts.append(SUPPLEMENTARY_HEADING + "\n")
        parts.extend(
            _document_block(i, d, prompt_cfg.document_chars)
            for i, d in enumerate(supplementary, start=1)
        )

    if examples:
        parts.append(EXAMPLES_HEADING + "\n")
        parts.extend(
            _example_block(i, e, prompt_cfg.example_chars) for i, e in enumerate(examples, start=1)
        )

    criteria = [CRITERIA_HEADING]
    if documents or examples:
        criteria.append("Evaluate the code against the references and examples above:")
    criteria.extend(EVALUATION_CRITERIA)
    if compliance is not None and documents:
        criteria.append("")
        criteria.extend(_compliance_hints(compliance))
    parts.append("\n".join(criteria) + "\n")

    parts.append(
        "**Important**: give concrete, practical improvement suggestions grounded in the "
        "references and examples.\n"
        f"Write every response in {response_language} and return JSON only."
    )
    return "\n".join(parts)
