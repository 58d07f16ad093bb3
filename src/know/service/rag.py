"""Retrieval-augmented generation: retrieve context, then answer.

The pipeline for one question:

1. Embed the question with the collection's embedding model.
2. Search the collection for the top-k most similar chunks.
3. Assemble the chunks into a context block within the character budget.
4. Ask the LLM to answer from that context.
"""

import asyncio
import logging
from dataclasses import dataclass, field, replace

from know.config import KnowConfig
from know.constants import NO_CONTEXT_ANSWER, NO_CONTEXT_SYSTEM_PROMPT, SYSTEM_PROMPT
from know.exceptions import EmbedError, GenerationFailed, KnowError, RetrievalFailed, StoreError
from know.llm.base import LLMService
from know.service.database import VectorStore

logger = logging.getLogger(__name__)

CHUNK_SEPARATOR = "\n---\n"


@dataclass(frozen=True)
class RetrievedChunk:
    """A chunk returned by similarity search."""

    source: str
    text: str
    score: float
    chunk_index: int = 0


@dataclass
class Answer:
    """The result of answering one question.

    Attributes:
        text: The generated answer
        sources: Distinct source paths of the chunks used, most similar first
        chunks: The chunks that made it into the context
        context_used: False when the answer was generated without any context
    """

    text: str
    sources: list[str] = field(default_factory=list)
    chunks: list[RetrievedChunk] = field(default_factory=list)
    context_used: bool = True


def format_chunk(chunk: RetrievedChunk) -> str:
    return f"[Source: {chunk.source}]\n{chunk.text}"


def assemble_context(
    chunks: list[RetrievedChunk], max_chars: int
) -> tuple[str, list[RetrievedChunk]]:
    """Build the context block from retrieved chunks.

    Chunks are ordered by descending similarity. While the joined context is
    longer than ``max_chars`` the least similar chunk is dropped; a single
    remaining chunk that is still too long is truncated.

    Args:
        chunks: Retrieved chunks in any order
        max_chars: Character budget for the context

    Returns:
        tuple: (context string, chunks actually included)
    """
    kept = sorted(chunks, key=lambda chunk: chunk.score, reverse=True)

    def render(items: list[RetrievedChunk]) -> str:
        return CHUNK_SEPARATOR.join(format_chunk(chunk) for chunk in items)

    context = render(kept)
    while len(context) > max_chars and len(kept) > 1:
        dropped = kept.pop()
        logger.debug(f"Context over budget, dropping chunk from {dropped.source} ({dropped.score:.3f})")
        context = render(kept)

    if kept and len(context) > max_chars:
        header_length = len(format_chunk(replace(kept[0], text="")))
        kept[0] = replace(kept[0], text=kept[0].text[: max(max_chars - header_length, 0)])
        context = render(kept)[:max_chars]

    return context, kept


def build_messages(question: str, context: str | None) -> list[dict]:
    """Build the chat messages for a question, with or without context."""
    if context is None:
        system = NO_CONTEXT_SYSTEM_PROMPT
    else:
        system = f"{SYSTEM_PROMPT}\n\nContext:\n{context}"
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": question},
    ]


def unique_sources(chunks: list[RetrievedChunk]) -> list[str]:
    seen: dict[str, None] = {}
    for chunk in chunks:
        seen.setdefault(chunk.source, None)
    return list(seen)


async def retrieve(
    question: str,
    collection: str,
    *,
    llm: LLMService,
    store: VectorStore,
    config: KnowConfig,
    top_k: int | None = None,
) -> list[RetrievedChunk]:
    """Find the chunks most similar to a question.

    Returns:
        list[RetrievedChunk]: Hits at or above the relevance floor, most similar
        first. Empty when the collection is missing or empty.

    Raises:
        RetrievalFailed: If the question cannot be embedded or the store cannot
            be reached
        StoreError: On a dimension or embedding model mismatch
    """
    try:
        info = await asyncio.to_thread(store.get_collection, collection)
    except StoreError as e:
        if e.structural:
            raise
        raise RetrievalFailed(f"Could not search the vector store: {e}") from e
    if info is None or info.points_count == 0:
        logger.info(f"📭 Collection '{collection}' is missing or empty")
        return []

    try:
        vectors = await asyncio.to_thread(llm.generate_embeddings, [question], info.embed_model)
    except EmbedError as e:
        raise RetrievalFailed(f"Could not embed the question: {e}") from e
    vector = vectors[0]

    if len(vector) != info.dimension:
        raise StoreError(
            StoreError.DIMENSION_MISMATCH,
            f"Question embedding has {len(vector)} dimensions but collection '{collection}' "
            f"stores {info.dimension}. Was it built with a different embedding model?",
        )

    try:
        hits = await asyncio.to_thread(store.search, collection, vector, top_k or config.top_k)
    except StoreError as e:
        if e.structural:
            raise
        raise RetrievalFailed(f"Could not search the vector store: {e}") from e
    chunks = [
        RetrievedChunk(
            source=hit.payload.source,
            text=hit.payload.text,
            score=hit.score,
            chunk_index=hit.payload.chunk_index,
        )
        for hit in hits
        if hit.score >= config.min_score
    ]
    logger.info(f"🔍 Retrieved {len(chunks)} of {len(hits)} chunks above score {config.min_score}")
    return chunks


async def answer(
    question: str,
    collection: str,
    *,
    llm: LLMService,
    store: VectorStore,
    config: KnowConfig,
    top_k: int | None = None,
) -> Answer:
    """Answer a question from the documents in a collection.

    Args:
        question: Natural-language question
        collection: Collection to search
        llm: LLM service for embeddings and generation
        store: Vector store holding the collection
        config: Retrieval settings (top_k, min_score, budget, no-context policy)
        top_k: Per-call override of ``config.top_k``

    Returns:
        Answer: The generated answer and the context it was based on

    Raises:
        RetrievalFailed: If nothing relevant was found and the policy is "fail",
            the question could not be embedded, or the store is unreachable
        GenerationFailed: If the LLM call failed
        StoreError: On a dimension or embedding model mismatch
    """
    if not question or not question.strip():
        raise ValueError("question must not be empty")

    chunks = await retrieve(
        question, collection, llm=llm, store=store, config=config, top_k=top_k
    )

    if chunks:
        context, used = assemble_context(chunks, config.max_context_chars)
        messages = build_messages(question, context)
    elif config.no_context_policy == NO_CONTEXT_ANSWER:
        logger.warning(f"⚠️ No relevant context in '{collection}', answering without it")
        used = []
        messages = build_messages(question, None)
    else:
        raise RetrievalFailed(
            f"No relevant documents found in collection '{collection}'. "
            f"Ingest documents first with 'know ingest <path>'."
        )

    try:
        text = await llm.generate_response(messages)
    except KnowError:
        raise
    except Exception as e:
        raise GenerationFailed(f"{type(e).__name__}: {e}") from e

    return Answer(text=text, sources=unique_sources(used), chunks=used, context_used=bool(used))
