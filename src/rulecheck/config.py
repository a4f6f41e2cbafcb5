"""rulecheck configuration loader.

Layers, highest precedence first:
  1. Command-line options  (applied by each CLI command, not here)
  2. Environment variables  (RULECHECK_GENERATION_MODEL, RULECHECK_EMBEDDING_MODEL,
                             RULECHECK_LOG_LEVEL)
  3. Per-project rulecheck.yaml  (current directory)
  4. Global ~/.rulecheck/config.yaml  (model defaults only, no API keys)
  5. Dataclass defaults

Credentials come from the environment (or the AWS credential chain for
Bedrock); a global config holding an API-key-like field is rejected.
YAML is read with yaml.safe_load() only.
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".rulecheck"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "rulecheck.yaml"

# Fields that suggest an API key; forbidden in global config.
# Does NOT match legitimate config keys like max_tokens.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"  # api_key, api-key, api_secret, apikey
    r"|_token$"                  # session_token, access_token (suffix)
    r"|^token$"                  # exactly "token" (standalone)
    r"|_secret$"                 # aws_secret, client_secret (suffix)
    r"|^secret$"                 # exactly "secret" (standalone)
    r"|passw(?:ord|d)"           # password, passwd
    r"|credential",              # credential, credentials
    re.IGNORECASE,
)

_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["embedding", "generation", "retrieval", "prompt", "ingest", "logging"]
)

_LOG_LEVELS: frozenset[str] = frozenset(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class EmbeddingCfg:
    """Embedding model configuration (rulecheck.yaml: embedding:).

    ``dimensions`` is fixed system-wide: vec tables are created with it and
    every vector written or queried must match it exactly.
    """

    model: str = "bedrock/amazon.titan-embed-text-v2:0"
    dimensions: int = 1024
    max_input_chars: int = 8_000


@dataclass
class GenerationCfg:
    """LLM evaluator configuration (rulecheck.yaml: generation:)."""

    model: str = "bedrock/anthropic.claude-3-sonnet-20240229-v1:0"
    temperature: float = 0.3
    max_tokens: int = 8_192
    timeout: float = 120.0
    max_retries: int = 3
    response_language: str = "English"


@dataclass
class RetrievalCfg:
    """Retrieval + re-ranking configuration (rulecheck.yaml: retrieval:)."""

    # Generic search defaults
    top_k: int = 5
    min_similarity: float = 0.7
    example_top_k: int = 3
    example_min_similarity: float = 0.65

    # Enhanced-context searches (seed the LLM prompt, so stricter)
    context_top_k: int = 3
    context_min_similarity: float = 0.75
    keyword_top_k: int = 2
    context_example_top_k: int = 3
    context_example_min_similarity: float = 0.6
    max_context_documents: int = 5

    # Weighted search fetches a larger raw pool before re-ranking
    candidate_multiplier: int = 3

    authoritative_rule_sections: list[str] = field(
        default_factory=lambda: ["Panther Detection Rules", "Writing Python Detections"]
    )
    authoritative_guide_sections: list[str] = field(
        default_factory=lambda: ["Detection Writing Guide", "Python Rule Guide"]
    )
    keywords: list[str] = field(
        default_factory=lambda: [
            "def rule",
            "severity(",
            "title(",
            "dedup(",
            "runbook(",
            "deep_get",
            "deep_walk",
            "event.get",
        ]
    )
    keyword_min_similarity: float = 0.5


@dataclass
class PromptCfg:
    """Prompt-assembly truncation budgets, in characters (rulecheck.yaml: prompt:)."""

    document_chars: int = 800
    authoritative_document_chars: int = 1_000
    example_chars: int = 600


@dataclass
class IngestCfg:
    """Knowledge ingestion configuration (rulecheck.yaml: ingest:)."""

    delay_seconds: float = 0.2
    max_chunk_chars: int = 2_000
    min_chunk_chars: int = 50


@dataclass
class LoggingCfg:
    """Logging configuration (rulecheck.yaml: logging:)."""

    level: str = "WARNING"


@dataclass
class RulecheckConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    generation: GenerationCfg = field(default_factory=GenerationCfg)
    retrieval: RetrievalCfg = field(default_factory=RetrievalCfg)
    prompt: PromptCfg = field(default_factory=PromptCfg)
    ingest: IngestCfg = field(default_factory=IngestCfg)
    logging: LoggingCfg = field(default_factory=LoggingCfg)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any API-key-like key names."""

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _API_KEY_RE.search(str(k)):
                    raise ConfigError(
                        f"'{full}' is not allowed in the global config '{source}'.\n"
                        f"  Provider credentials are read from the environment only.\n"
                        f"  Delete the key from {source.name} and set instead:\n"
                        f"    export {str(k).upper().replace('-', '_')}=<value>"
                    )
                _scan(v, full)

    _scan(data, "")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}' (not a rulecheck section, skipped).",
                UserWarning,
                stacklevel=4,
            )


def _validate(cfg: RulecheckConfig) -> None:
    """Raise ConfigError for values the retrieval layer cannot work with."""
    if cfg.embedding.dimensions < 1:
        raise ConfigError(f"embedding.dimensions must be >= 1, got {cfg.embedding.dimensions}")
    if cfg.embedding.max_input_chars < 1:
        raise ConfigError("embedding.max_input_chars must be >= 1")

    r = cfg.retrieval
    for name in (
        "min_similarity",
        "example_min_similarity",
        "context_min_similarity",
        "context_example_min_similarity",
        "keyword_min_similarity",
    ):
        value = getattr(r, name)
        if not 0.0 <= value <= 1.0:
            raise ConfigError(f"retrieval.{name} must be in [0, 1], got {value}")
    for name in (
        "top_k",
        "example_top_k",
        "context_top_k",
        "keyword_top_k",
        "context_example_top_k",
        "max_context_documents",
        "candidate_multiplier",
    ):
        value = getattr(r, name)
        if value < 1:
            raise ConfigError(f"retrieval.{name} must be >= 1, got {value}")

    for name in ("document_chars", "authoritative_document_chars", "example_chars"):
        if getattr(cfg.prompt, name) < 1:
            raise ConfigError(f"prompt.{name} must be >= 1")

    if cfg.ingest.delay_seconds < 0:
        raise ConfigError("ingest.delay_seconds must be >= 0")

    if cfg.logging.level.upper() not in _LOG_LEVELS:
        raise ConfigError(
            f"logging.level must be one of {sorted(_LOG_LEVELS)}, got '{cfg.logging.level}'"
        )


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _str_list(raw: Any, default: list[str]) -> list[str]:
    if raw is None:
        return list(default)
    if isinstance(raw, str):
        return [raw]
    return [str(v) for v in raw]


def _cfg_from_dict(data: dict[str, Any]) -> RulecheckConfig:
    """Build a *RulecheckConfig* from a merged raw YAML dict."""
    cfg = RulecheckConfig()

    if "embedding" in data:
        e = data["embedding"] or {}
        cfg.embedding = EmbeddingCfg(
            model=str(e.get("model", cfg.embedding.model)),
            dimensions=int(e.get("dimensions", cfg.embedding.dimensions)),
            max_input_chars=int(e.get("max_input_chars", cfg.embedding.max_input_chars)),
        )

    if "generation" in data:
        g = data["generation"] or {}
        d = cfg.generation
        cfg.generation = GenerationCfg(
            model=str(g.get("model", d.model)),
            temperature=float(g.get("temperature", d.temperature)),
            max_tokens=int(g.get("max_tokens", d.max_tokens)),
            timeout=float(g.get("timeout", d.timeout)),
            max_retries=int(g.get("max_retries", d.max_retries)),
            response_language=str(g.get("response_language", d.response_language)),
        )

    if "retrieval" in data:
        r = data["retrieval"] or {}
        d = cfg.retrieval
        cfg.retrieval = RetrievalCfg(
            top_k=int(r.get("top_k", d.top_k)),
            min_similarity=float(r.get("min_similarity", d.min_similarity)),
            example_top_k=int(r.get("example_top_k", d.example_top_k)),
            example_min_similarity=float(
                r.get("example_min_similarity", d.example_min_similarity)
            ),
            context_top_k=int(r.get("context_top_k", d.context_top_k)),
            context_min_similarity=float(
                r.get("context_min_similarity", d.context_min_similarity)
            ),
            keyword_top_k=int(r.get("keyword_top_k", d.keyword_top_k)),
            context_example_top_k=int(r.get("context_example_top_k", d.context_example_top_k)),
            context_example_min_similarity=float(
                r.get("context_example_min_similarity", d.context_example_min_similarity)
            ),
            max_context_documents=int(r.get("max_context_documents", d.max_context_documents)),
            candidate_multiplier=int(r.get("candidate_multiplier", d.candidate_multiplier)),
            authoritative_rule_sections=_str_list(
                r.get("authoritative_rule_sections"), d.authoritative_rule_sections
            ),
            authoritative_guide_sections=_str_list(
                r.get("authoritative_guide_sections"), d.authoritative_guide_sections
            ),
            keywords=_str_list(r.get("keywords"), d.keywords),
            keyword_min_similarity=float(
                r.get("keyword_min_similarity", d.keyword_min_similarity)
            ),
        )

    if "prompt" in data:
        p = data["prompt"] or {}
        d = cfg.prompt
        cfg.prompt = PromptCfg(
            document_chars=int(p.get("document_chars", d.document_chars)),
            authoritative_document_chars=int(
                p.get("authoritative_document_chars", d.authoritative_document_chars)
            ),
            example_chars=int(p.get("example_chars", d.example_chars)),
        )

    if "ingest" in data:
        i = data["ingest"] or {}
        d = cfg.ingest
        cfg.ingest = IngestCfg(
            delay_seconds=float(i.get("delay_seconds", d.delay_seconds)),
            max_chunk_chars=int(i.get("max_chunk_chars", d.max_chunk_chars)),
            min_chunk_chars=int(i.get("min_chunk_chars", d.min_chunk_chars)),
        )

    if "logging" in data:
        lg = data["logging"] or {}
        cfg.logging = LoggingCfg(level=str(lg.get("level", cfg.logging.level)).upper())

    return cfg


def _apply_env_overrides(cfg: RulecheckConfig) -> RulecheckConfig:
    """Apply RULECHECK_* environment variable overrides."""
    if model := os.environ.get("RULECHECK_GENERATION_MODEL"):
        cfg.generation.model = model
    if model := os.environ.get("RULECHECK_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if level := os.environ.get("RULECHECK_LOG_LEVEL"):
        cfg.logging.level = level.upper()
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> RulecheckConfig:
    """Load and return a merged *RulecheckConfig*.

    Merges the global file, then rulecheck.yaml, then RULECHECK_* variables,
    and validates the result. Command-line options are not applied here.

    Args:
        project_dir: Directory to search for *rulecheck.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Raises:
        ConfigError: If global config contains API-key-like fields, or if any
            value is out of range.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    if global_path.exists():
        raw_global = yaml.safe_load(global_path.read_text(encoding="utf-8")) or {}
        _check_no_api_keys(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = yaml.safe_load(project_cfg_path.read_text(encoding="utf-8")) or {}
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _cfg_from_dict(merged)
    cfg = _apply_env_overrides(cfg)
    _validate(cfg)
    return cfg


def ensure_global_config(
    global_config_path: Path | None = None,
) -> Path:
    """Create ``~/.rulecheck/config.yaml`` with defaults if it does not exist.

    The directory is created 0o700 and the file 0o600 so only the owner
    can read the model settings.
    """
    target = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    target.parent.mkdir(mode=0o700, parents=True, exist_ok=True)

    if not target.exists():
        content = (
            "# rulecheck global configuration: model defaults only.\n"
            "# Credentials do not belong here. Export them instead:\n"
            "#   export AWS_ACCESS_KEY_ID=...\n"
            "#   export OPENAI_API_KEY=sk-...\n"
            "\n"
            "embedding:\n"
            "  model: bedrock/amazon.titan-embed-text-v2:0\n"
            "  dimensions: 1024\n"
            "\n"
            "generation:\n"
            "  model: bedrock/anthropic.claude-3-sonnet-20240229-v1:0\n"
        )
        target.write_text(content, encoding="utf-8")
        target.chmod(0o600)

    return target
