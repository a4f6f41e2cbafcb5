"""Error kinds raised by the retrieval and evaluation layers.

Hierarchy:
  RulecheckError
    RetrievalFailure            vector-store query failed (never retried here)
      EmbeddingFailure          embedding provider failed; ``kind`` tells why
    EvaluationFailure
      ResponseParseFailure      no JSON object could be extracted from the LLM
      SchemaValidationFailure   JSON found, but no known result shape decoded
    LLMInvocationFailure        the model call itself failed after retries

An embedding failure is a retrieval failure: a similarity search that cannot
embed its query fails the same way as one whose vector query errors out, and
callers that only care about "retrieval broke" can catch the base class.
"""

from __future__ import annotations

EMBEDDING_FAILURE_KINDS = frozenset(["auth", "network", "rate_limit", "dimension", "provider"])


class RulecheckError(Exception):
    """Base class for all rulecheck errors."""


class RetrievalFailure(RulecheckError):
    """A similarity search or store query failed."""


class EmbeddingFailure(RetrievalFailure):
    """The embedding provider failed to return a usable vector.

    Attributes:
        kind: One of ``auth``, ``network``, ``rate_limit``, ``dimension``, ``provider``.
    """

    def __init__(self, message: str, kind: str = "provider") -> None:
        if kind not in EMBEDDING_FAILURE_KINDS:
            raise ValueError(f"Unknown embedding failure kind: {kind!r}")
        super().__init__(message)
        self.kind = kind

    @property
    def retryable(self) -> bool:
        """Only rate-limit failures are worth retrying."""
        return self.kind == "rate_limit"


class EvaluationFailure(RulecheckError):
    """The LLM verdict could not be turned into a ValidationResult."""


class ResponseParseFailure(EvaluationFailure):
    """The LLM output contains no extractable JSON object.

    ``raw_text`` keeps the model output so callers can show it as an
    explanation instead of a result.
    """

    def __init__(self, message: str, raw_text: str = "") -> None:
        super().__init__(message)
        self.raw_text = raw_text


class SchemaValidationFailure(EvaluationFailure):
    """The LLM returned JSON that matches none of the accepted result shapes."""

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []


class LLMInvocationFailure(RulecheckError):
    """The completion call failed (after rate-limit retries, if any)."""

    def __init__(self, message: str, rate_limited: bool = False) -> None:
        super().__init__(message)
        self.rate_limited = rate_limited
