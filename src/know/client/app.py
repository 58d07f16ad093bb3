"""Flask application serving an OpenAI-compatible RAG endpoint.

Any OpenAI client can point its base URL at this server and get answers
grounded in a know collection:

    POST /v1/chat/completions
    GET  /health
"""

import logging
import os

from dotenv import load_dotenv
from flask import Flask

from know.client.routes import chat_bp, health_bp, init_config
from know.config import KnowConfig
from know.constants import SERVED_MODEL_NAME
from know.llm import get_llm_service, resolve_backend
from know.service.helpers import create_store

logger = logging.getLogger(__name__)

# Load environment variables
load_dotenv()

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8080


def add_cors_headers(response):
    """Allow browser clients from any origin."""
    response.headers["Access-Control-Allow-Origin"] = "*"
    response.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
    response.headers["Access-Control-Allow-Headers"] = "Content-Type, Authorization"
    return response


def initialize_services(config: KnowConfig):
    """Resolve the LLM backend and connect to the vector store.

    Returns:
        tuple: (llm_service, store, backend_kind)
    """
    logger.info("🔧 Initializing services...")
    backend = resolve_backend(config)
    llm_service = get_llm_service(backend, config)
    logger.info(f"✅ LLM service initialized: {backend.display_name} ({backend.model})")
    store = create_store(config)
    logger.info(f"✅ Vector store connected: {config.ravendb_url}/{config.ravendb_database}")
    return llm_service, store, backend.kind


def create_app(
    config: KnowConfig | None = None,
    llm_service=None,
    store=None,
    backend_name: str | None = None,
) -> Flask:
    """Factory function for creating the Flask application.

    Services that are not passed in are created from the configuration. This
    function is also usable by WSGI servers like gunicorn.

    Args:
        config: Invocation configuration (default: from environment)
        llm_service: LLM service to answer with
        store: Vector store to retrieve from
        backend_name: Kind of the LLM backend, reported by /health

    Returns:
        Flask: The configured Flask application instance
    """
    config = config or KnowConfig.from_env()
    if llm_service is None or store is None:
        resolved_llm, resolved_store, resolved_kind = initialize_services(config)
        llm_service = llm_service or resolved_llm
        store = store or resolved_store
        backend_name = backend_name or resolved_kind

    app = Flask(__name__)
    app.register_blueprint(chat_bp)
    app.register_blueprint(health_bp)
    app.after_request(add_cors_headers)

    init_config(
        llm_service=llm_service,
        store=store,
        config=config,
        backend_name=backend_name or getattr(llm_service, "name", None),
    )
    return app


def serve(app: Flask, host: str = DEFAULT_HOST, port: int = DEFAULT_PORT) -> None:
    """Run the application on the threaded development server."""
    print(f"🌐 OpenAI-compatible endpoint: http://localhost:{port}/v1/chat/completions")
    print(f"🩺 Health check: http://localhost:{port}/health")
    print(f"🤖 Model name for clients: {SERVED_MODEL_NAME}")
    print("📝 Press CTRL+C to quit")
    app.run(host=host, port=port, threaded=True)


def main() -> None:
    """Entry point for running the API server directly."""
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    print("🚀 Starting know API server...")
    app = create_app()
    host = os.getenv("KNOW_HOST", DEFAULT_HOST)
    port = int(os.getenv("KNOW_PORT", str(DEFAULT_PORT)))
    serve(app, host, port)


if __name__ == "__main__":
    main()
