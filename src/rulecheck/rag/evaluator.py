"""LLM evaluator: RAG-enhanced validation of detection-rule code.

Pipeline for validate_code():
  1. Build the retrieval context (or fall back to the static guideline prompt).
  2. Ask the model for the JSON verdict.
  3. Extract and decode the JSON (tagged variants, see rulecheck.rag.schemas).
  4. Enrich with document/example references and RAG metadata.
  5. Persist with provenance links when a repository is given.

Any failure in steps 2–5 ends the run with an ErrorPayload naming the step;
a partial result is never returned.
"""

from __future__ import annotations

import logging
import sqlite3
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, replace

from rulecheck.config import RulecheckConfig
from rulecheck.db.models import DocumentReference, ExampleReference, ValidationRecord
from rulecheck.db.repository import Repository
from rulecheck.exceptions import (
    LLMInvocationFailure,
    ResponseParseFailure,
    RetrievalFailure,
    SchemaValidationFailure,
)
from rulecheck.rag.llm_client import complete, extract_json, extract_python_block
from rulecheck.rag.ranking import ExampleSearchResult
from rulecheck.rag.retriever import RetrievalContext, RetrievalEngine
from rulecheck.rag.schemas import (
    DocumentReferenceOut,
    EnhancedValidationResult,
    ExampleReferenceOut,
    RagMetadata,
    ValidationResult,
    decode_validation_result,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str, str], None]

REFERENCE_CONTENT_CHARS = 500
EXAMPLE_SNIPPET_CHARS = 300
MAX_DOCUMENTS_RANGE = (1, 10)
MAX_EXAMPLES_RANGE = (1, 5)
LOW_COMPLIANCE_THRESHOLD = 70
IMPROVE_TEMPERATURE = 0.5
RAG_USAGE_CONTEXT = "rag-enhanced-validation"

PANTHER_GUIDELINES = """\
## Panther detection rule guidelines:
1. A rule(event) function must exist and return True for suspicious activity
2. Optional alert functions: severity(), title(), dedup(), runbook()
3. Use the built-in event accessors: get(), deep_get(), deep_walk()
4. No external API requests inside a detection
5. Execution must finish within 15 seconds
6. Use Unified Data Model (UDM) fields where possible
7. Handle nested and complex event structures safely
8. Include comprehensive unit tests
9. Give clear, actionable context in alerts"""

_STATIC_CRITERIA = """\
## Evaluation criteria:
- Correctness and targeting of the detection logic
- Performance and efficiency
- Readability and maintainability
- Appropriate error handling
- Documentation and comments
- Security best practices"""


def static_system_prompt(response_language: str = "English") -> str:
    """System prompt used when RAG is disabled or its context build failed."""
    return (
        "You are a Python code validator specialising in Panther detection rules.\n\n"
        "Evaluate the code against the following:\n\n"
        f"{PANTHER_GUIDELINES}\n\n{_STATIC_CRITERIA}\n\n"
        f"Write every response in {response_language} and return JSON only."
    )


def user_prompt(code: str, response_language: str = "English") -> str:
    return f"""\
Analyse the following Python detection rule and return the result as JSON.

Respond with exactly this JSON structure (all text in {response_language}):

{{
  "syntaxCheck": {{
    "isValid": boolean,
    "errors": ["syntax error messages"]
  }},
  "ruleCompliance": {{
    "score": number (0-100),
    "findings": ["problems found"],
    "suggestions": ["improvement suggestions"]
  }},
  "codeQuality": {{
    "score": number (0-100),
    "feedback": "detailed feedback (markdown)"
  }},
  "detailedAnalysis": "comprehensive analysis (markdown)"
}}

Code to analyse:
```python
{code}
```

Return only the JSON object and no other text."""


@dataclass
class ErrorPayload:
    """User-visible failure: what went wrong and in which step.

    For a ``parse`` failure ``raw_text`` holds the model reply, which callers
    can show as a plain-text explanation in place of a result.
    """

    error: str
    step: str
    raw_text: str | None = None


@dataclass
class ValidationOutcome:
    result: EnhancedValidationResult | None = None
    error: ErrorPayload | None = None
    record_id: str | None = None
    duration_ms: int = 0
    decoded_as: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def generate_improvements(result: ValidationResult, example: ExampleSearchResult) -> list[str]:
    """Compare *result* scores with a similar example and list what to look at."""
    improvements: list[str] = []
    if result.rule_compliance.score < example.quality_score:
        improvements.append("Rule compliance improvement needed")
    if result.code_quality.score < example.quality_score:
        improvements.append("Code quality improvement needed")
    if example.category:
        improvements.append(f"See {example.category} category best practices")
    return improvements or ["See overall structure for reference"]


def _check_request(code: str, max_documents: int, max_examples: int) -> None:
    if not code or not code.strip():
        raise ValueError("code must not be empty")
    lo, hi = MAX_DOCUMENTS_RANGE
    if not lo <= max_documents <= hi:
        raise ValueError(f"max_documents must be in {lo}–{hi}, got {max_documents}")
    lo, hi = MAX_EXAMPLES_RANGE
    if not lo <= max_examples <= hi:
        raise ValueError(f"max_examples must be in {lo}–{hi}, got {max_examples}")


def _clamp(value: float, upper: float | None = None) -> float:
    value = max(0.0, value)
    return min(upper, value) if upper is not None else value


def _enrich(
    result: ValidationResult, context: RetrievalContext | None
) -> EnhancedValidationResult:
    documents = context.relevant_documents if context else []
    examples = context.similar_examples if context else []
    return EnhancedValidationResult(
        **result.model_dump(by_alias=True),
        document_references=[
            DocumentReferenceOut(
                id=doc.id,
                title=doc.title,
                section=doc.section,
                relevance_score=_clamp(doc.similarity),
                content=doc.content[:REFERENCE_CONTENT_CHARS],
                document_type=doc.document_type,
            )
            for doc in documents
        ],
        similar_examples=[
            ExampleReferenceOut(
                id=ex.id,
                title=ex.title,
                similarity=_clamp(ex.similarity, 1.0),
                quality_score=ex.quality_score,
                category=ex.category,
                improvements=generate_improvements(result, ex),
                code_snippet=ex.code_content[:EXAMPLE_SNIPPET_CHARS],
            )
            for ex in examples
        ],
        rag_metadata=RagMetadata(
            documents_found=len(documents),
            examples_found=len(examples),
            query_processing_time_ms=context.search_metadata.query_processing_time_ms
            if context
            else 0,
            rag_enabled=context is not None,
        ),
    )


def _persist(
    repo: Repository,
    code: str,
    result: EnhancedValidationResult,
    duration_ms: int,
    model: str,
) -> str:
    record = ValidationRecord(
        id=str(uuid.uuid4()),
        code_content=code,
        syntax_is_valid=result.syntax_check.is_valid,
        syntax_errors=list(result.syntax_check.errors),
        rule_compliance_score=round(result.rule_compliance.score),
        rule_findings=list(result.rule_compliance.findings),
        rule_suggestions=list(result.rule_compliance.suggestions),
        code_quality_score=round(result.code_quality.score),
        code_quality_feedback=result.code_quality.feedback,
        detailed_analysis=result.detailed_analysis,
        total_duration_ms=duration_ms,
        model_used=model,
    )
    doc_refs = [
        DocumentReference(
            document_id=ref.id,
            relevance_score=ref.relevance_score,
            usage_context=RAG_USAGE_CONTEXT,
        )
        for ref in result.document_references
    ]
    example_refs = [
        ExampleReference(
            example_id=ref.id,
            similarity_score=ref.similarity,
            improvements=list(ref.improvements),
        )
        for ref in result.similar_examples
    ]
    return repo.add_validation(record, doc_refs, example_refs)


def validate_code(
    code: str,
    *,
    engine: RetrievalEngine | None = None,
    repo: Repository | None = None,
    config: RulecheckConfig,
    rag_enabled: bool = True,
    include_examples: bool = True,
    max_documents: int = 5,
    max_examples: int = 3,
    on_progress: ProgressCallback | None = None,
) -> ValidationOutcome:
    """Evaluate *code* with the configured model, optionally RAG-enhanced.

    Args:
        code: Detection rule source.
        engine: Retrieval engine; RAG is skipped when None.
        repo: When given, the verdict is stored with its provenance links.
        config: Loaded configuration (generation settings are used).
        rag_enabled: Build the retrieval context for the system prompt.
        include_examples: Search similar code examples as part of the context.
        max_documents: Reference document cap (1–10).
        max_examples: Code example cap (1–5).
        on_progress: Called as ``on_progress(step, message)`` between steps.

    Raises:
        ValueError: For an empty *code* or an out-of-range cap.
    """
    _check_request(code, max_documents, max_examples)
    gen = config.generation
    progress = on_progress or (lambda step, message: None)
    started = time.perf_counter()

    context: RetrievalContext | None = None
    if rag_enabled and engine is not None:
        progress("rag", "Building retrieval context")
        try:
            context = engine.build_enhanced_context(
                code,
                max_documents=max_documents,
                max_examples=max_examples,
                include_examples=include_examples,
                response_language=gen.response_language,
            )
        except RetrievalFailure as exc:
            logger.warning("Retrieval failed, validating without references: %s", exc)
    if context is not None:
        progress("documents", f"Found {len(context.relevant_documents)} reference document(s)")
        if include_examples:
            progress("examples", f"Found {len(context.similar_examples)} similar example(s)")
        if (
            context.compliance is not None
            and context.compliance.compliance_score < LOW_COMPLIANCE_THRESHOLD
        ):
            progress(
                "compliance",
                f"Checking rule compliance (estimated score: {context.compliance.compliance_score})",
            )
        system = context.enhanced_prompt
    else:
        system = static_system_prompt(gen.response_language)

    progress("analysis", f"Evaluating with {gen.model}")
    try:
        raw = complete(
            [{"role": "user", "content": user_prompt(code, gen.response_language)}],
            gen,
            system=system,
        )
    except LLMInvocationFailure as exc:
        return _failed(str(exc), "analysis", started)

    payload = extract_json(raw)
    if payload is None:
        failure = ResponseParseFailure("No JSON object found in the model response", raw_text=raw)
        logger.warning("%s", failure)
        return _failed(str(failure), "parse", started, raw_text=failure.raw_text)

    try:
        decoded, variant = decode_validation_result(payload)
    except SchemaValidationFailure as exc:
        logger.warning("%s: %s", exc, "; ".join(exc.errors))
        return _failed(str(exc), "schema", started)

    result = _enrich(decoded, context)
    duration_ms = int((time.perf_counter() - started) * 1000)

    record_id = None
    if repo is not None:
        try:
            record_id = _persist(repo, code, result, duration_ms, gen.model)
        except sqlite3.Error as exc:
            return _failed(f"Failed to store validation: {exc}", "persist", started)

    logger.debug("Validation finished in %dms (decoded as %s)", duration_ms, variant)
    return ValidationOutcome(
        result=result,
        record_id=record_id,
        duration_ms=duration_ms,
        decoded_as=variant,
    )


def _failed(
    message: str, step: str, started: float, raw_text: str | None = None
) -> ValidationOutcome:
    return ValidationOutcome(
        error=ErrorPayload(error=message, step=step, raw_text=raw_text),
        duration_ms=int((time.perf_counter() - started) * 1000),
    )


def improve_code(code: str, result: ValidationResult, config: RulecheckConfig) -> str:
    """Ask the model for an improved version of *code* given its verdict.

    Returns the body of the ```python block in the reply, or the whole reply.

    Raises:
        LLMInvocationFailure: If the model call fails.
    """
    language = config.generation.response_language
    prompt = f"""\
Based on the following feedback, generate an improved version of this Python detection rule:

Original Code:
```python
{code}
```

Feedback:
- Findings: {", ".join(result.rule_compliance.findings)}
- Suggestions: {", ".join(result.rule_compliance.suggestions)}

Generate only the improved code without any explanation. \
Write any code comments in {language}."""
    raw = complete(
        [{"role": "user", "content": prompt}],
        replace(config.generation, temperature=IMPROVE_TEMPERATURE),
        system=static_system_prompt(language),
    )
    return extract_python_block(raw)
