"""LiteLLM completion wrapper with rate-limit backoff and API key validation.

All evaluator calls route through this module. Only rate-limit failures are
retried (exponential backoff 1s, 2s, 4s … capped at 10s); every other error
is raised immediately as LLMInvocationFailure. Each request carries a timeout.
"""

from __future__ import annotations

import json
import logging
import os
import re
import time

import litellm

from rulecheck.config import GenerationCfg
from rulecheck.exceptions import LLMInvocationFailure

logger = logging.getLogger(__name__)

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True
litellm.set_verbose = False  # type: ignore[assignment]

_BACKOFF_BASE_SECONDS = 1.0
_BACKOFF_CAP_SECONDS = 10.0


# ------------------------------------------------------------------
# Provider → env var mapping for API key validation
# ------------------------------------------------------------------

_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "groq": "GROQ_API_KEY",
    "bedrock": None,  # boto3 credential chain (env, profile, IRSA)
    "ollama": None,  # Local, no key required
    "ollama_chat": None,
}


def validate_api_key(model: str) -> None:
    """Check that the required API key env var is set for *model*.

    Args:
        model: LiteLLM model string in 'provider/model' format.

    Raises:
        EnvironmentError: If the required key is missing from environment.
    """
    provider = model.split("/")[0].lower() if "/" in model else "openai"
    env_var = _PROVIDER_ENV.get(provider)

    if env_var is None:
        return

    if not os.getenv(env_var):
        raise EnvironmentError(
            f"API key not found for provider '{provider}'. "
            f"Set the {env_var} environment variable."
        )


def backoff_delay(attempt: int) -> float:
    """Seconds to wait before retry number *attempt* (0-based)."""
    return min(_BACKOFF_BASE_SECONDS * (2**attempt), _BACKOFF_CAP_SECONDS)


def complete(
    messages: list[dict],
    config: GenerationCfg,
    system: str | None = None,
    sleep=time.sleep,
) -> str:
    """Call litellm.completion(); returns the content string.

    Args:
        messages: OpenAI-style message list (user/assistant turns).
        config: Model, sampling, timeout and retry settings.
        system: Optional system prompt, sent as the first message.
        sleep: Sleep function used between retries (injectable for tests).

    Raises:
        LLMInvocationFailure: On a non-rate-limit error, or when rate-limit
            retries are exhausted (``rate_limited`` is then True).
    """
    full_messages = ([{"role": "system", "content": system}] if system else []) + messages

    attempt = 0
    while True:
        try:
            response = litellm.completion(
                model=config.model,
                messages=full_messages,
                max_tokens=config.max_tokens,
                temperature=config.temperature,
                timeout=config.timeout,
            )
            return response.choices[0].message.content or ""
        except litellm.RateLimitError as exc:
            if attempt >= config.max_retries:
                raise LLMInvocationFailure(
                    f"Rate limit exceeded for '{config.model}' after {attempt} retries: {exc}",
                    rate_limited=True,
                ) from exc
            delay = backoff_delay(attempt)
            logger.warning(
                "Rate limited by '%s'; retry %d/%d in %.1fs",
                config.model,
                attempt + 1,
                config.max_retries,
                delay,
            )
            sleep(delay)
            attempt += 1
        except Exception as exc:
            raise LLMInvocationFailure(f"Failed to invoke '{config.model}': {exc}") from exc


_FENCED_JSON_RE = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)
_DECODER = json.JSONDecoder()


def extract_json(text: str) -> dict | None:
    """Return the first JSON object found in *text*, or None.

    A fenced ```json block wins; otherwise each '{' is tried in turn and the
    first one that decodes to an object is returned. Prose before or after
    the object, braces included, is ignored.
    """
    match = _FENCED_JSON_RE.search(text)
    if match:
        try:
            value = json.loads(match.group(1))
        except json.JSONDecodeError:
            value = None
        if isinstance(value, dict):
            return value

    start = text.find("{")
    while start != -1:
        try:
            value, _ = _DECODER.raw_decode(text, start)
        except json.JSONDecodeError:
            value = None
        if isinstance(value, dict):
            return value
        start = text.find("{", start + 1)
    return None


_PYTHON_BLOCK_RE = re.compile(r"```python\s*\n(.*?)```", re.DOTALL)


def extract_python_block(text: str) -> str:
    """Return the body of the first ```python block, or *text* stripped."""
    match = _PYTHON_BLOCK_RE.search(text)
    if match:
        return match.group(1).strip()
    return text.strip()
