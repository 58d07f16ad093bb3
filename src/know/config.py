"""Invocation-wide configuration for know.

Configuration is read once per command from the environment (a ``.env`` file
is honoured) and then frozen. CLI flags are applied as overrides on top of the
environment, so the precedence is: flag → environment → default.
"""

import os
from dataclasses import dataclass, field, fields, replace

from dotenv import load_dotenv

from know.constants import (
    BACKEND_KINDS,
    DEFAULT_CHUNK_OVERLAP,
    DEFAULT_CHUNK_SIZE,
    DEFAULT_COLLECTION,
    DEFAULT_DOCLING_URL,
    DEFAULT_EMBED_BATCH_SIZE,
    DEFAULT_EMBED_CONCURRENCY,
    DEFAULT_MAX_CONTEXT_CHARS,
    DEFAULT_MAX_RETRIES,
    DEFAULT_MIN_SCORE,
    DEFAULT_PROBE_TIMEOUT,
    DEFAULT_TIMEOUT,
    DEFAULT_TOP_K,
    NO_CONTEXT_FAIL,
    NO_CONTEXT_POLICIES,
)
from know.service.database.config import RavenDBConfig
from know.service.database.utils import validate_collection_name

# Load environment variables
load_dotenv()


def _env_str(name: str) -> str | None:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def _env_int(name: str, default: int) -> int:
    value = _env_str(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {value!r}") from e


def _env_float(name: str, default: float) -> float:
    value = _env_str(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {value!r}") from e


@dataclass(frozen=True)
class KnowConfig:
    """Immutable settings for a single know invocation.

    Attributes:
        backend: Explicit backend kind (docker, ollama, openai) or None to auto-detect
        base_url: Override for the LLM backend base URL
        model: Override for the generation model name
        embed_model: Override for the embedding model name
        openai_api_key: API key for the OpenAI-compatible backend
        ravendb_url: Vector engine URL
        ravendb_database: Vector engine database name
        docling_url: Parsing engine URL
        collection: Default collection name
        top_k: Number of chunks retrieved per question
        min_score: Relevance floor below which retrieved chunks are ignored
        max_context_chars: Budget for the assembled context
        no_context_policy: "fail" or "answer" when nothing relevant is retrieved
        chunk_size: Maximum chunk length in characters
        chunk_overlap: Characters shared between neighbouring chunks
        embed_batch_size: Texts per embedding request
        embed_concurrency: Embedding requests in flight during ingestion
        timeout: Per-call network timeout in seconds
        probe_timeout: Timeout for liveness/readiness probes in seconds
        max_retries: Retries for transient network failures
        compose_file: Explicit docker compose file for the backing services
    """

    backend: str | None = None
    base_url: str | None = None
    model: str | None = None
    embed_model: str | None = None
    openai_api_key: str | None = field(default=None, repr=False)
    ravendb_url: str = field(default_factory=RavenDBConfig.get_url)
    ravendb_database: str = field(default_factory=RavenDBConfig.get_database_name)
    docling_url: str = DEFAULT_DOCLING_URL
    collection: str = DEFAULT_COLLECTION
    top_k: int = DEFAULT_TOP_K
    min_score: float = DEFAULT_MIN_SCORE
    max_context_chars: int = DEFAULT_MAX_CONTEXT_CHARS
    no_context_policy: str = NO_CONTEXT_FAIL
    chunk_size: int = DEFAULT_CHUNK_SIZE
    chunk_overlap: int = DEFAULT_CHUNK_OVERLAP
    embed_batch_size: int = DEFAULT_EMBED_BATCH_SIZE
    embed_concurrency: int = DEFAULT_EMBED_CONCURRENCY
    timeout: float = DEFAULT_TIMEOUT
    probe_timeout: float = DEFAULT_PROBE_TIMEOUT
    max_retries: int = DEFAULT_MAX_RETRIES
    compose_file: str | None = None

    def __post_init__(self) -> None:
        validate_collection_name(self.collection)
        if self.backend is not None and self.backend not in BACKEND_KINDS:
            raise ValueError(
                f"Unsupported backend '{self.backend}' (expected one of {', '.join(BACKEND_KINDS)})"
            )
        if self.no_context_policy not in NO_CONTEXT_POLICIES:
            raise ValueError(
                f"Unsupported no-context policy '{self.no_context_policy}' "
                f"(expected one of {', '.join(NO_CONTEXT_POLICIES)})"
            )
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if not 0 <= self.chunk_overlap < self.chunk_size:
            raise ValueError("chunk_overlap must be >= 0 and smaller than chunk_size")
        if self.top_k <= 0:
            raise ValueError("top_k must be positive")
        if self.embed_batch_size <= 0 or self.embed_concurrency <= 0:
            raise ValueError("embedding batch size and concurrency must be positive")
        if self.max_retries < 0:
            raise ValueError("max_retries must not be negative")

    @classmethod
    def from_env(cls, **overrides) -> "KnowConfig":
        """Build the configuration from environment variables.

        Args:
            **overrides: Explicit values (typically CLI flags). ``None`` values are
                ignored so an unset flag falls back to the environment.

        Returns:
            KnowConfig: The frozen configuration.
        """
        backend = _env_str("KNOW_BACKEND")
        values = {
            "backend": backend.lower() if backend else None,
            "base_url": _env_str("KNOW_BASE_URL"),
            "model": _env_str("KNOW_MODEL"),
            "embed_model": _env_str("KNOW_EMBED_MODEL"),
            "openai_api_key": _env_str("OPENAI_API_KEY"),
            "ravendb_url": RavenDBConfig.get_url(),
            "ravendb_database": RavenDBConfig.get_database_name(),
            "docling_url": _env_str("KNOW_DOCLING_URL") or DEFAULT_DOCLING_URL,
            "collection": _env_str("KNOW_COLLECTION") or DEFAULT_COLLECTION,
            "top_k": _env_int("KNOW_TOP_K", DEFAULT_TOP_K),
            "min_score": _env_float("KNOW_MIN_SCORE", DEFAULT_MIN_SCORE),
            "max_context_chars": _env_int("KNOW_MAX_CONTEXT_CHARS", DEFAULT_MAX_CONTEXT_CHARS),
            "no_context_policy": (_env_str("KNOW_NO_CONTEXT_POLICY") or NO_CONTEXT_FAIL).lower(),
            "chunk_size": _env_int("KNOW_CHUNK_SIZE", DEFAULT_CHUNK_SIZE),
            "chunk_overlap": _env_int("KNOW_CHUNK_OVERLAP", DEFAULT_CHUNK_OVERLAP),
            "embed_batch_size": _env_int("KNOW_EMBED_BATCH_SIZE", DEFAULT_EMBED_BATCH_SIZE),
            "embed_concurrency": _env_int("KNOW_EMBED_CONCURRENCY", DEFAULT_EMBED_CONCURRENCY),
            "timeout": _env_float("KNOW_TIMEOUT", DEFAULT_TIMEOUT),
            "probe_timeout": _env_float("KNOW_PROBE_TIMEOUT", DEFAULT_PROBE_TIMEOUT),
            "max_retries": _env_int("KNOW_MAX_RETRIES", DEFAULT_MAX_RETRIES),
            "compose_file": _env_str("KNOW_COMPOSE_FILE"),
        }
        known = {f.name for f in fields(cls)}
        for key, value in overrides.items():
            if key not in known:
                raise TypeError(f"Unknown configuration key: {key}")
            if value is not None:
                values[key] = value
        return cls(**values)

    def with_overrides(self, **overrides) -> "KnowConfig":
        """Return a copy with the given non-None values replaced."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})
