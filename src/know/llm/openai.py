"""OpenAI-compatible LLM service implementation.

Serves both Docker Model Runner (llama.cpp engine, OpenAI wire shape) and
OpenAI-style API endpoints over plain HTTP.
"""

import asyncio
import logging

import requests

from know.constants import BACKEND_OPENAI, DEFAULT_MAX_RETRIES, DEFAULT_TIMEOUT
from know.exceptions import EmbedError, GenerationFailed
from know.llm.base import check_embeddings
from know.service.http import build_session

logger = logging.getLogger(__name__)


def _error_detail(response: requests.Response) -> str:
    """Extract a readable error message from an OpenAI-style error response."""
    detail = f"HTTP {response.status_code}"
    try:
        data = response.json()
    except ValueError:
        return f"{detail}: {response.text[:200]}"
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and error.get("message"):
            return f"{detail}: {error['message']}"
        if error:
            return f"{detail}: {error}"
    return detail


class OpenAICompatibleService:
    """LLM service speaking the OpenAI ``/embeddings`` and ``/chat/completions`` API."""

    def __init__(
        self,
        base_url: str,
        model: str,
        embed_model: str,
        api_key: str | None = None,
        name: str = BACKEND_OPENAI,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ) -> None:
        """Initialize the service.

        Args:
            base_url: API root including the version segment (e.g. "https://api.openai.com/v1")
            model: Chat model name
            embed_model: Embedding model name
            api_key: Optional bearer token
            name: Backend kind reported by this service ("docker" or "openai")
            timeout: Per-request timeout in seconds
            max_retries: Retries for connection errors and 5xx responses
        """
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.embed_model = embed_model
        self.name = name
        self.timeout = timeout
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self.session = build_session(max_retries=max_retries, headers=headers)
        logger.info(f"🤖 Initializing OpenAICompatibleService: url={self.base_url}, model={model}")

    def _post(self, path: str, payload: dict) -> dict:
        response = self.session.post(f"{self.base_url}{path}", json=payload, timeout=self.timeout)
        if response.status_code != 200:
            raise requests.HTTPError(_error_detail(response), response=response)
        return response.json()

    async def generate_response(self, messages: list[dict]) -> str:
        """Generate a chat completion.

        Args:
            messages: List of message dictionaries with 'role' and 'content' keys.

        Returns:
            str: The generated response content from the model.

        Raises:
            GenerationFailed: If the request fails or the response is malformed.
        """
        logger.info(f"🗣️  Generating response with {self.model}")
        payload = {"model": self.model, "messages": messages}
        try:
            data = await asyncio.to_thread(self._post, "/chat/completions", payload)
            content = data["choices"][0]["message"]["content"] or ""
        except requests.RequestException as e:
            raise GenerationFailed(f"{self.name} chat with '{self.model}' failed: {e}") from e
        except (KeyError, IndexError, TypeError) as e:
            raise GenerationFailed(f"Malformed chat response from {self.base_url}: {e}") from e

        logger.info(f"✅ Response generated: {len(content)} characters")
        return content

    def generate_embeddings(self, texts: list[str], model: str | None = None) -> list[list[float]]:
        """Generate embeddings for a list of texts in one request.

        Args:
            texts: List of text strings to embed
            model: Optional embedding model name. If None, uses ``embed_model``.

        Returns:
            list[list[float]]: List of embedding vectors, in input order
        """
        if not texts:
            return []
        embedding_model = model or self.embed_model
        try:
            data = self._post("/embeddings", {"model": embedding_model, "input": texts})
            items = sorted(data["data"], key=lambda item: item.get("index", 0))
            embeddings = [item["embedding"] for item in items]
        except requests.RequestException as e:
            raise EmbedError(f"{self.name} embedding with '{embedding_model}' failed: {e}") from e
        except (KeyError, TypeError) as e:
            raise EmbedError(f"Malformed embedding response from {self.base_url}: {e}") from e

        embeddings = check_embeddings(texts, embeddings)
        logger.debug(f"Generated {len(embeddings)} embeddings with {embedding_model}")
        return embeddings
