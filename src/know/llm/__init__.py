"""LLM service abstraction layer for know.

This package provides a unified interface for multiple LLM backends:
- OllamaService: Local models via Ollama
- OpenAICompatibleService: Docker Model Runner and OpenAI-style APIs

All services implement the LLMService protocol (embeddings + chat).

Usage:
    from know.llm import get_llm_service, resolve_backend

    backend = resolve_backend(config)
    service = get_llm_service(backend, config)
"""

from know.llm.base import BackendConfig, LLMService
from know.llm.factory import get_llm_service
from know.llm.ollama import OllamaService
from know.llm.openai import OpenAICompatibleService
from know.llm.resolver import probe_backend, resolve_backend

__all__ = [
    "BackendConfig",
    "LLMService",
    "OllamaService",
    "OpenAICompatibleService",
    "get_llm_service",
    "probe_backend",
    "resolve_backend",
]
