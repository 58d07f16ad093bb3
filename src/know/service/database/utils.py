"""Utility functions for vector store operations."""

import hashlib
import math
import re


def cosine_similarity(vec_a: list[float], vec_b: list[float]) -> float:
    """Compute cosine similarity between two vectors.

    Args:
        vec_a: First embedding vector
        vec_b: Second embedding vector

    Returns:
        float: Cosine similarity score between -1 and 1 (0.0 for empty, zero
        or differently sized vectors)
    """
    if not vec_a or not vec_b or len(vec_a) != len(vec_b):
        return 0.0

    dot_product = sum(a * b for a, b in zip(vec_a, vec_b))
    magnitude_a = math.sqrt(sum(a * a for a in vec_a))
    magnitude_b = math.sqrt(sum(b * b for b in vec_b))

    if magnitude_a == 0 or magnitude_b == 0:
        return 0.0

    return dot_product / (magnitude_a * magnitude_b)


def document_id(source: str) -> str:
    """Stable identifier for a source document.

    Args:
        source: Absolute POSIX path of the source file

    Returns:
        str: SHA-256 hex digest of the path
    """
    return hashlib.sha256(source.encode("utf-8")).hexdigest()


def point_id(collection: str, doc_id: str, chunk_index: int) -> str:
    """Deterministic vector point id for one chunk of one document.

    The same collection, document and chunk index always yield the same id,
    so re-ingesting a file overwrites its points instead of duplicating them.
    The collection prefix keeps ids distinct across collections sharing one
    database.

    Args:
        collection: Collection name
        doc_id: Document id from ``document_id``
        chunk_index: Zero-based chunk sequence index

    Returns:
        str: Point id of the form ``<collection>/<doc_id>/<chunk_index>``
    """
    if chunk_index < 0:
        raise ValueError("chunk_index must not be negative")
    return f"{collection}/{doc_id}/{chunk_index}"


COLLECTION_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


def validate_collection_name(name: str) -> str:
    """Check a collection name is safe to embed in RQL and point ids.

    Args:
        name: Collection name

    Returns:
        str: The name, unchanged

    Raises:
        ValueError: If the name is empty or has characters outside ``[A-Za-z0-9_.-]``
    """
    if not isinstance(name, str) or not COLLECTION_NAME_PATTERN.match(name):
        raise ValueError(
            f"Invalid collection name {name!r}: use letters, digits, '_', '-' and '.' only"
        )
    return name
