"""Shared configuration for route modules."""

from dataclasses import dataclass
from typing import Any

from know.config import KnowConfig


@dataclass
class RouteConfig:
    """Configuration container for Flask route dependencies.

    Set once at startup and only read by request handlers.
    """

    llm_service: Any = None
    store: Any = None
    config: KnowConfig | None = None
    backend_name: str | None = None


# Single shared config instance
_config = RouteConfig()


def get_config() -> RouteConfig:
    """Get the shared route configuration.

    Returns:
        RouteConfig instance with current settings
    """
    return _config


def init_config(
    llm_service: Any = None,
    store: Any = None,
    config: KnowConfig | None = None,
    backend_name: str | None = None,
) -> None:
    """Initialize the shared route configuration.

    Args:
        llm_service: LLM service instance
        store: Vector store instance
        config: Invocation configuration
        backend_name: Kind of the resolved LLM backend
    """
    if llm_service is not None:
        _config.llm_service = llm_service
    if store is not None:
        _config.store = store
    if config is not None:
        _config.config = config
    if backend_name is not None:
        _config.backend_name = backend_name
