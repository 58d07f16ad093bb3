"""Ollama LLM service implementation."""

import asyncio
import logging

import ollama

from know.constants import DEFAULT_MAX_RETRIES, DEFAULT_TIMEOUT
from know.exceptions import EmbedError, GenerationFailed
from know.llm.base import check_embeddings
from know.service.http import retry_transient

logger = logging.getLogger(__name__)


class OllamaService:
    """Ollama LLM service implementation.

    This service uses the Ollama API to generate responses and embeddings from
    local models. Transient failures (connection errors, 5xx) are retried.
    """

    name = "ollama"

    def __init__(
        self,
        host: str,
        model: str,
        embed_model: str,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ) -> None:
        """Initialize the Ollama service.

        Args:
            host: The Ollama server host URL (e.g., "http://localhost:11434")
            model: The model name to use (e.g., "llama3.2")
            embed_model: The embedding model name (e.g., "nomic-embed-text")
            timeout: Per-request timeout in seconds
            max_retries: Retries for transient failures
        """
        self.host = host
        self.model = model
        self.embed_model = embed_model
        self.max_retries = max_retries
        logger.info(f"🤖 Initializing OllamaService: host={host}, model={model}")
        # Configure the Ollama client with the specified host
        self.client = ollama.Client(host=host, timeout=timeout)

    async def generate_response(self, messages: list[dict]) -> str:
        """Generate a response using Ollama.

        Args:
            messages: List of message dictionaries with 'role' and 'content' keys.

        Returns:
            str: The generated response content from the model.

        Raises:
            GenerationFailed: If the chat call fails after retries.
        """
        logger.info(f"🗣️  Generating response with {self.model}")
        logger.debug(f"Messages: {len(messages)} messages")
        for i, msg in enumerate(messages):
            role = msg.get("role", "unknown")
            content_preview = msg.get("content", "")[:100]
            logger.debug(f"  Message {i + 1} ({role}): {content_preview}...")

        try:
            response = await asyncio.to_thread(
                retry_transient,
                self.client.chat,
                attempts=self.max_retries + 1,
                model=self.model,
                messages=messages,
            )
        except Exception as e:
            logger.error(f"❌ Ollama API error: {e}")
            raise GenerationFailed(f"Ollama chat with '{self.model}' failed: {e}") from e

        content = response.message.content or ""
        logger.info(f"✅ Response generated: {len(content)} characters")
        return content

    def generate_embeddings(self, texts: list[str], model: str | None = None) -> list[list[float]]:
        """Generate embeddings for a list of texts using Ollama.

        The whole list is sent in one ``embed`` request.

        Args:
            texts: List of text strings to embed
            model: Optional embedding model name. If None, uses ``embed_model``.

        Returns:
            list[list[float]]: List of embedding vectors
        """
        if not texts:
            return []
        embedding_model = model or self.embed_model

        try:
            response = retry_transient(
                self.client.embed,
                attempts=self.max_retries + 1,
                model=embedding_model,
                input=texts,
            )
        except Exception as e:
            raise EmbedError(f"Ollama embedding with '{embedding_model}' failed: {e}") from e

        embeddings = check_embeddings(texts, response["embeddings"])
        logger.debug(f"Generated {len(embeddings)} embeddings with {embedding_model}")
        return embeddings
