"""LLM backend resolution.

Resolution order:
1. An explicit backend (``--backend`` / ``KNOW_BACKEND``), validated with one probe.
2. The first live local model runner: Docker Model Runner, then Ollama.
3. The OpenAI backend when ``OPENAI_API_KEY`` is set.
"""

import logging
from collections.abc import Callable

import requests

from know.config import KnowConfig
from know.constants import (
    BACKEND_DEFAULTS,
    BACKEND_DOCKER,
    BACKEND_OLLAMA,
    BACKEND_OPENAI,
    DEFAULT_EMBED_PROBE_TIMEOUT,
    LOCAL_BACKENDS,
)
from know.exceptions import BackendUnavailable
from know.llm.base import BackendConfig
from know.service.http import probe_url

logger = logging.getLogger(__name__)

# Liveness endpoint per backend kind, relative to its base URL
PROBE_PATHS = {
    BACKEND_DOCKER: "/models",
    BACKEND_OLLAMA: "/api/tags",
    BACKEND_OPENAI: "/models",
}

# Embedding endpoint per backend kind, used to check the embedding model is pulled
EMBED_PATHS = {
    BACKEND_DOCKER: "/embeddings",
    BACKEND_OLLAMA: "/api/embed",
    BACKEND_OPENAI: "/embeddings",
}

ProbeFunc = Callable[[BackendConfig, float], "str | None"]


def build_backend_config(kind: str, config: KnowConfig, base_url: str | None = None) -> BackendConfig:
    """Fill a backend configuration from overrides and the backend's defaults.

    Args:
        kind: Backend kind
        config: Invocation configuration (model overrides, API key)
        base_url: Explicit base URL; the backend default is used when None

    Returns:
        BackendConfig: The configuration for ``kind``
    """
    defaults = BACKEND_DEFAULTS[kind]
    return BackendConfig(
        kind=kind,
        base_url=(base_url or defaults["base_url"]).rstrip("/"),
        model=config.model or defaults["model"],
        embed_model=config.embed_model or defaults["embed_model"],
        api_key=config.openai_api_key if kind == BACKEND_OPENAI else None,
    )


def probe_embedding(
    backend: BackendConfig,
    headers: dict[str, str] | None = None,
    timeout: float = DEFAULT_EMBED_PROBE_TIMEOUT,
) -> str | None:
    """Embed one word with the backend's embedding model.

    A runner can be up without the embedding model pulled; every ingest would
    then fail, so such a backend does not count as available.

    Returns:
        None if an embedding came back, otherwise the reason it did not.
    """
    url = f"{backend.base_url}{EMBED_PATHS[backend.kind]}"
    payload = {"model": backend.embed_model, "input": "test"}
    try:
        response = requests.post(url, json=payload, timeout=timeout, headers=headers)
    except requests.Timeout:
        return f"{url}: no embedding within {timeout:g}s"
    except requests.RequestException as e:
        return f"{url}: unreachable ({type(e).__name__})"

    if not response.ok:
        return (
            f"{url}: embedding model '{backend.embed_model}' failed with HTTP "
            f"{response.status_code}: {response.text[:200]}"
        )
    try:
        data = response.json()
        if backend.kind == BACKEND_OLLAMA:
            vector = data["embeddings"][0]
        else:
            vector = data["data"][0]["embedding"]
    except (ValueError, KeyError, IndexError, TypeError):
        return f"{url}: unexpected embedding response for model '{backend.embed_model}'"
    if not vector:
        return f"{url}: empty embedding from model '{backend.embed_model}'"
    return None


def probe_backend(backend: BackendConfig, timeout: float) -> str | None:
    """Check that a backend is live and can embed with its embedding model.

    Args:
        backend: Backend to probe
        timeout: Liveness probe timeout in seconds

    Returns:
        None if the backend is usable, otherwise the reason it is not.
    """
    headers = None
    if backend.kind == BACKEND_OPENAI:
        if not backend.api_key:
            return "OPENAI_API_KEY is not set"
        headers = {"Authorization": f"Bearer {backend.api_key}"}
    url = f"{backend.base_url}{PROBE_PATHS[backend.kind]}"
    reason = probe_url(url, timeout, headers=headers)
    if reason:
        return f"{url}: {reason}"
    return probe_embedding(backend, headers, max(timeout, DEFAULT_EMBED_PROBE_TIMEOUT))


def remediation_hints(config: KnowConfig) -> str:
    """Instructions printed when no backend could be found."""
    docker = BACKEND_DEFAULTS[BACKEND_DOCKER]
    ollama = BACKEND_DEFAULTS[BACKEND_OLLAMA]
    embed_model = config.embed_model or ollama["embed_model"]
    gen_model = config.model or ollama["model"]
    return (
        "Please either:\n"
        "1. Enable Docker Model Runner TCP and pull models:\n"
        f"   docker model pull {config.embed_model or docker['embed_model']}\n"
        f"   docker model pull {config.model or docker['model']}\n"
        "2. Start Ollama and pull models:\n"
        f"   ollama pull {embed_model}\n"
        f"   ollama pull {gen_model}\n"
        "3. Set the OPENAI_API_KEY environment variable\n"
        "Or select a backend explicitly with --backend and --base-url"
    )


def resolve_backend(config: KnowConfig, probe: ProbeFunc = probe_backend) -> BackendConfig:
    """Determine which LLM backend to use for this invocation.

    Args:
        config: Invocation configuration
        probe: Liveness check, injectable for tests

    Returns:
        BackendConfig: The selected backend

    Raises:
        BackendUnavailable: If the explicit backend is unreachable, or no
            backend could be auto-detected.
    """
    if config.backend:
        backend = build_backend_config(config.backend, config, config.base_url)
        reason = probe(backend, config.probe_timeout)
        if reason:
            raise BackendUnavailable(
                f"Requested backend '{backend.display_name}' is not available",
                {backend.kind: reason},
            )
        logger.info(f"🔌 Using {backend.display_name} backend at {backend.base_url}")
        return backend

    attempts: dict[str, str] = {}
    for kind in LOCAL_BACKENDS:
        backend = build_backend_config(kind, config)
        reason = probe(backend, config.probe_timeout)
        if reason is None:
            logger.info(f"🔌 Using {backend.display_name} backend at {backend.base_url}")
            return backend
        logger.debug(f"Backend {kind} not available: {reason}")
        attempts[kind] = reason

    if config.openai_api_key:
        backend = build_backend_config(BACKEND_OPENAI, config, config.base_url)
        logger.info(f"🔌 Using {backend.display_name} backend at {backend.base_url}")
        return backend
    attempts[BACKEND_OPENAI] = "OPENAI_API_KEY is not set"

    raise BackendUnavailable(
        f"No LLM backend available.\n\n{remediation_hints(config)}", attempts
    )
