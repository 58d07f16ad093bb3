"""Health check route."""

from flask import Blueprint, jsonify

from know.client.routes.config import get_config

health_bp = Blueprint("health", __name__)


@health_bp.route("/health", methods=["GET"])
def health():
    """Health check endpoint.

    Returns:
        JSON with service status, LLM backend and default collection
    """
    route_config = get_config()
    return jsonify(
        {
            "status": "healthy" if route_config.llm_service else "not initialized",
            "backend": route_config.backend_name,
            "collection": route_config.config.collection if route_config.config else None,
        }
    )
