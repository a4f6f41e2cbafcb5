"""Embedding client: text preprocessing + LiteLLM embeddings.

Every vector that enters or queries the store comes from here, so the
dimensionality check lives here too: a provider response whose length
differs from the configured ``dimensions`` raises instead of being padded.
"""

from __future__ import annotations

import logging
import re
import time

import litellm

from rulecheck.config import EmbeddingCfg
from rulecheck.exceptions import EmbeddingFailure

logger = logging.getLogger(__name__)

litellm.suppress_debug_info = True

_WHITESPACE_RE = re.compile(r"\s+")

# Substrings in provider error text that identify the failure kind when the
# exception type alone is not specific enough.
_NETWORK_MARKERS = ("ENOTFOUND", "Name or service not known", "Connection refused")
_AUTH_MARKERS = ("UnrecognizedClientException", "security token", "AccessDenied")
_RATE_LIMIT_MARKERS = ("ThrottlingException", "throttling", "Too many requests")


def _classify(exc: Exception) -> str:
    """Map a provider exception to an EmbeddingFailure kind."""
    if isinstance(exc, litellm.AuthenticationError):
        return "auth"
    if isinstance(exc, litellm.RateLimitError):
        return "rate_limit"
    if isinstance(exc, (litellm.APIConnectionError, litellm.Timeout)):
        return "network"
    message = str(exc)
    if any(m in message for m in _AUTH_MARKERS):
        return "auth"
    if any(m in message for m in _RATE_LIMIT_MARKERS):
        return "rate_limit"
    if any(m in message for m in _NETWORK_MARKERS):
        return "network"
    return "provider"


class EmbeddingClient:
    """Turn text into fixed-length vectors via ``litellm.embedding()``.

    Args:
        config: Embedding model, vector size and input character limit.
    """

    def __init__(self, config: EmbeddingCfg | None = None) -> None:
        self._config = config or EmbeddingCfg()

    @property
    def model(self) -> str:
        return self._config.model

    @property
    def dimensions(self) -> int:
        return self._config.dimensions

    def preprocess(self, text: str) -> str:
        """Collapse whitespace runs, strip, and cut to ``max_input_chars``.

        Idempotent: ``preprocess(preprocess(x)) == preprocess(x)``.
        """
        collapsed = _WHITESPACE_RE.sub(" ", text).strip()
        return collapsed[: self._config.max_input_chars].strip()

    def embed(self, text: str) -> list[float]:
        """Preprocess *text* and return its embedding.

        Raises:
            ValueError: If *text* is empty after preprocessing.
            EmbeddingFailure: On any provider error, or when the returned
                vector does not have exactly ``dimensions`` entries.
        """
        cleaned = self.preprocess(text)
        if not cleaned:
            raise ValueError("Cannot embed empty text")

        try:
            response = litellm.embedding(
                model=self._config.model,
                input=[cleaned],
                dimensions=self._config.dimensions,
            )
        except Exception as exc:
            kind = _classify(exc)
            raise EmbeddingFailure(
                f"Embedding request to '{self._config.model}' failed ({kind}): {exc}", kind=kind
            ) from exc

        try:
            vector = list(response.data[0]["embedding"])
        except (AttributeError, IndexError, KeyError, TypeError) as exc:
            raise EmbeddingFailure(
                f"Invalid embedding response format from '{self._config.model}'"
            ) from exc

        if len(vector) != self._config.dimensions:
            raise EmbeddingFailure(
                f"Embedding model '{self._config.model}' returned {len(vector)} dimensions, "
                f"expected {self._config.dimensions}",
                kind="dimension",
            )
        return vector

    def embed_bulk(self, texts: list[str], delay_seconds: float = 0.1) -> list[list[float] | None]:
        """Embed *texts* one at a time, sleeping *delay_seconds* between calls.

        A failed item yields ``None`` in its position (logged, not raised) so
        callers can skip it and retry later.
        """
        vectors: list[list[float] | None] = []
        for i, text in enumerate(texts):
            try:
                vectors.append(self.embed(text))
            except (EmbeddingFailure, ValueError) as exc:
                logger.warning("Embedding failed for item %d: %s", i, exc)
                vectors.append(None)
            if i < len(texts) - 1 and delay_seconds > 0:
                time.sleep(delay_seconds)
        return vectors
