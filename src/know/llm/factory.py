"""Factory function for creating LLM service instances."""

import logging

from know.config import KnowConfig
from know.constants import BACKEND_DOCKER, BACKEND_OLLAMA, BACKEND_OPENAI
from know.llm.base import BackendConfig, LLMService
from know.llm.ollama import OllamaService
from know.llm.openai import OpenAICompatibleService

logger = logging.getLogger(__name__)


def get_llm_service(backend: BackendConfig, config: KnowConfig | None = None) -> LLMService:
    """Factory function to create an LLM service instance.

    Args:
        backend: Resolved backend configuration (see ``resolve_backend``)
        config: Invocation configuration supplying timeouts and retry counts.
                If None, it is read from the environment.

    Returns:
        LLMService: An instance implementing the LLMService protocol.
    """
    if config is None:
        config = KnowConfig.from_env()

    if backend.kind == BACKEND_OLLAMA:
        return OllamaService(
            host=backend.base_url,
            model=backend.model,
            embed_model=backend.embed_model,
            timeout=config.timeout,
            max_retries=config.max_retries,
        )

    if backend.kind in (BACKEND_DOCKER, BACKEND_OPENAI):
        return OpenAICompatibleService(
            base_url=backend.base_url,
            model=backend.model,
            embed_model=backend.embed_model,
            api_key=backend.api_key,
            name=backend.kind,
            timeout=config.timeout,
            max_retries=config.max_retries,
        )

    raise ValueError(f"Unsupported service type: {backend.kind}")
