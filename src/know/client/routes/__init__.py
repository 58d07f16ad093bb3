"""Flask route blueprints for the know API server."""

from know.client.routes.chat import chat_bp
from know.client.routes.config import get_config, init_config
from know.client.routes.health import health_bp

__all__ = [
    "chat_bp",
    "health_bp",
    "init_config",
    "get_config",
]
