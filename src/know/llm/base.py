"""Base classes and protocols for LLM services."""

from dataclasses import dataclass, field
from typing import Protocol

from know.constants import BACKEND_DISPLAY_NAMES
from know.exceptions import EmbedError


@dataclass(frozen=True)
class BackendConfig:
    """Resolved LLM backend configuration.

    Attributes:
        kind: Backend kind ("docker", "ollama" or "openai")
        base_url: Endpoint root for the backend API
        model: Generation model name
        embed_model: Embedding model name
        api_key: Bearer token for OpenAI-style endpoints, if any
    """

    kind: str
    base_url: str
    model: str
    embed_model: str
    api_key: str | None = field(default=None, repr=False)

    @property
    def display_name(self) -> str:
        return BACKEND_DISPLAY_NAMES.get(self.kind, self.kind)


class LLMService(Protocol):
    """Protocol defining the interface for LLM services.

    This protocol ensures type safety and allows for multiple LLM provider
    implementations while maintaining a consistent interface.
    """

    name: str
    model: str
    embed_model: str

    async def generate_response(self, messages: list[dict]) -> str:
        """Generate a response from the LLM based on the provided messages.

        Args:
            messages: List of message dictionaries with 'role' and 'content' keys.
                     Example: [{"role": "user", "content": "Hello"}]

        Returns:
            str: The generated response content from the LLM.

        Raises:
            GenerationFailed: If the backend call fails after retries.
        """
        ...

    def generate_embeddings(self, texts: list[str], model: str | None = None) -> list[list[float]]:
        """Generate embeddings for a list of texts.

        Args:
            texts: List of text strings to embed
            model: Optional embedding model name. If None, uses the service's embed_model.

        Returns:
            list[list[float]]: One embedding vector per input text, in order

        Raises:
            EmbedError: If the backend call fails or returns unusable vectors.
        """
        ...


def check_embeddings(texts: list[str], embeddings: list[list[float]]) -> list[list[float]]:
    """Validate a batch of embeddings returned by a backend.

    Raises:
        EmbedError: On a count mismatch, an empty vector or inconsistent lengths.
    """
    if len(embeddings) != len(texts):
        raise EmbedError(f"Backend returned {len(embeddings)} embeddings for {len(texts)} texts")
    lengths = {len(vector) for vector in embeddings}
    if 0 in lengths:
        raise EmbedError("Backend returned an empty embedding vector")
    if len(lengths) > 1:
        raise EmbedError(f"Backend returned vectors of differing lengths: {sorted(lengths)}")
    return [list(map(float, vector)) for vector in embeddings]
