"""Pydantic models for the evaluator verdict, plus the tagged-variant decoder.

The model is asked for camelCase JSON (``syntaxCheck``, ``ruleCompliance``,
``codeQuality``, ``detailedAnalysis``). decode_validation_result() tries a
strict decode of that shape first, then a fixed list of named alternatives:

  wrapped     the verdict nested under a top-level ``result`` key
  snake_case  the same fields spelled ``syntax_check``, ``is_valid``, ...
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from rulecheck.exceptions import SchemaValidationFailure


class SyntaxCheck(BaseModel):
    is_valid: bool = Field(alias="isValid")
    errors: list[str] = Field(default_factory=list)


class RuleCompliance(BaseModel):
    score: float = Field(ge=0, le=100)
    findings: list[str]
    suggestions: list[str]


class CodeQuality(BaseModel):
    score: float = Field(ge=0, le=100)
    feedback: str


class ValidationResult(BaseModel):
    syntax_check: SyntaxCheck = Field(alias="syntaxCheck")
    rule_compliance: RuleCompliance = Field(alias="ruleCompliance")
    code_quality: CodeQuality = Field(alias="codeQuality")
    detailed_analysis: str = Field(alias="detailedAnalysis")


class DocumentReferenceOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    title: str
    section: str | None = None
    # Authority-weighted, so it can exceed 1.0.
    relevance_score: float = Field(alias="relevanceScore", ge=0)
    content: str
    document_type: str = Field(alias="documentType")


class ExampleReferenceOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    title: str
    similarity: float = Field(ge=0, le=1)
    quality_score: int = Field(alias="qualityScore", ge=0, le=100)
    category: str | None = None
    improvements: list[str]
    code_snippet: str | None = Field(default=None, alias="codeSnippet")


class RagMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    documents_found: int = Field(alias="documentsFound")
    examples_found: int = Field(alias="examplesFound")
    query_processing_time_ms: int = Field(alias="queryProcessingTime")
    rag_enabled: bool = Field(alias="ragEnabled")


class EnhancedValidationResult(ValidationResult):
    """A decoded verdict enriched with the references that informed it."""

    model_config = ConfigDict(populate_by_name=True)

    document_references: list[DocumentReferenceOut] = Field(
        default_factory=list, alias="documentReferences"
    )
    similar_examples: list[ExampleReferenceOut] = Field(
        default_factory=list, alias="similarExamples"
    )
    rag_metadata: RagMetadata = Field(alias="ragMetadata")


# ---------------------------------------------------------------------------
# Tagged-variant decoding
# ---------------------------------------------------------------------------

_SNAKE_TO_CAMEL: dict[str, str] = {
    "syntax_check": "syntaxCheck",
    "is_valid": "isValid",
    "rule_compliance": "ruleCompliance",
    "code_quality": "codeQuality",
    "detailed_analysis": "detailedAnalysis",
}


def _camelize(value: Any) -> Any:
    if isinstance(value, dict):
        return {_SNAKE_TO_CAMEL.get(k, k): _camelize(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_camelize(v) for v in value]
    return value


def _strict(payload: dict) -> dict | None:
    return payload


def _wrapped(payload: dict) -> dict | None:
    inner = payload.get("result")
    return inner if isinstance(inner, dict) else None


def _snake_case(payload: dict) -> dict | None:
    if "syntax_check" not in payload:
        return None
    return _camelize(payload)


_VARIANTS = (
    ("strict", _strict),
    ("wrapped", _wrapped),
    ("snake_case", _snake_case),
)


def decode_validation_result(payload: dict) -> tuple[ValidationResult, str]:
    """Decode *payload* into a ValidationResult.

    Returns:
        ``(result, variant)`` where *variant* names the shape that matched.

    Raises:
        SchemaValidationFailure: If no variant decodes. ``errors`` lists one
            line per attempted variant.
    """
    errors: list[str] = []
    for name, unwrap in _VARIANTS:
        candidate = unwrap(payload)
        if candidate is None:
            continue
        try:
            return ValidationResult.model_validate(candidate), name
        except ValidationError as exc:
            errors.append(f"{name}: {exc.error_count()} error(s), first: {exc.errors()[0]['msg']}")
    raise SchemaValidationFailure(
        "LLM response does not match the validation result schema", errors=errors
    )
