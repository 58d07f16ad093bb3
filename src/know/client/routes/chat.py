"""OpenAI-compatible chat completions backed by the RAG pipeline."""

import logging
import time
import uuid

from flask import Blueprint, jsonify, request

from know.client.routes.config import get_config
from know.constants import SERVED_MODEL_NAME
from know.exceptions import EmbedError, GenerationFailed, RetrievalFailed, StoreError
from know.service.database import validate_collection_name
from know.service.helpers import run_async
from know.service.rag import answer

logger = logging.getLogger(__name__)

chat_bp = Blueprint("chat", __name__)


class InvalidRequest(ValueError):
    """Raised for a malformed chat completion request."""


def error_response(message: str, error_type: str, status: int):
    return jsonify({"error": {"message": message, "type": error_type}}), status


def parse_chat_request(data) -> tuple[str, int | None, str | None]:
    """Extract (question, top_k, collection) from a request body.

    Raises:
        InvalidRequest: If the body is not a valid chat completion request
    """
    if not isinstance(data, dict):
        raise InvalidRequest("Request body must be a JSON object")
    messages = data.get("messages")
    if not isinstance(messages, list) or not messages:
        raise InvalidRequest("'messages' must be a non-empty list")

    question = None
    for message in reversed(messages):
        if isinstance(message, dict) and message.get("role") == "user":
            question = message.get("content")
            break
    if not isinstance(question, str) or not question.strip():
        raise InvalidRequest("No user message with text content found in 'messages'")

    top_k = data.get("top_k")
    if top_k is not None and (not isinstance(top_k, int) or isinstance(top_k, bool) or top_k <= 0):
        raise InvalidRequest("'top_k' must be a positive integer")
    collection = data.get("collection")
    if collection is not None:
        try:
            validate_collection_name(collection)
        except ValueError as e:
            raise InvalidRequest(str(e)) from e
    return question, top_k, collection


def completion_body(text: str, sources: list[str]) -> dict:
    """Build an OpenAI ``chat.completion`` object with a ``sources`` extension."""
    return {
        "id": f"chatcmpl-{uuid.uuid4()}",
        "object": "chat.completion",
        "created": int(time.time()),
        "model": SERVED_MODEL_NAME,
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": text},
                "finish_reason": "stop",
            }
        ],
        "usage": {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0},
        "sources": sources,
    }


def retrieval_status(error: RetrievalFailed) -> int:
    """HTTP status for a retrieval failure, based on what caused it.

    Nothing relevant found is 404. An unreachable vector store is 503 and a
    failed question embedding is 502, since both are upstream outages.
    """
    cause = error.__cause__
    if isinstance(cause, StoreError):
        return 503 if cause.kind == StoreError.UNAVAILABLE else 404
    if isinstance(cause, EmbedError):
        return 502
    return 404


@chat_bp.route("/v1/chat/completions", methods=["POST"])
def chat_completions():
    """Answer the last user message using the RAG pipeline.

    Request:
        {
            "messages": [{"role": "user", "content": "How long do refunds take?"}],
            "model": "know-rag",  # Optional, ignored
            "top_k": 5,  # Optional
            "collection": "know"  # Optional
        }

    Response:
        An OpenAI chat.completion object plus a "sources" list of file paths.
    """
    route_config = get_config()
    logger.info("📨 Received chat completion request")
    try:
        question, top_k, collection = parse_chat_request(request.get_json(silent=True))
    except InvalidRequest as e:
        logger.warning(f"❌ Invalid request: {e}")
        return error_response(str(e), "invalid_request_error", 400)

    collection = collection or route_config.config.collection
    logger.info(f"🔍 Query: '{question[:100]}' (collection: {collection})")

    try:
        result = run_async(
            answer(
                question,
                collection,
                llm=route_config.llm_service,
                store=route_config.store,
                config=route_config.config,
                top_k=top_k,
            )
        )
    except RetrievalFailed as e:
        return error_response(str(e), "retrieval_failed", retrieval_status(e))
    except StoreError as e:
        status = 409 if e.structural else 503
        return error_response(str(e), "store_error", status)
    except GenerationFailed as e:
        return error_response(str(e), "generation_failed", 502)
    except Exception as e:
        logger.error(f"❌ Error processing chat request: {e}", exc_info=True)
        return error_response("Internal server error", "server_error", 500)

    logger.info(f"✅ Answered with {len(result.chunks)} chunks from {len(result.sources)} sources")
    return jsonify(completion_body(result.text, result.sources))
