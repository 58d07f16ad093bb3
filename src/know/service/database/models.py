"""Data models for vector points and collections."""

from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass
class PointPayload:
    """Metadata stored alongside each vector.

    Attributes:
        collection: Collection the point belongs to
        source: Absolute POSIX path of the source document
        doc_id: Stable document id derived from ``source``
        content_hash: SHA-256 of the source file bytes at ingestion time
        chunk_index: Zero-based position of this chunk within the document
        chunk_count: Number of chunks the document had when this point was written
        start: Character offset of the chunk in the normalized text
        end: End offset (exclusive) of the chunk in the normalized text
        text: The chunk text
        embed_model: Embedding model that produced the vector
    """

    collection: str
    source: str
    doc_id: str
    content_hash: str
    chunk_index: int
    chunk_count: int
    start: int
    end: int
    text: str
    embed_model: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PointPayload":
        return cls(
            collection=data.get("collection", ""),
            source=data.get("source", "Unknown"),
            doc_id=data.get("doc_id", ""),
            content_hash=data.get("content_hash", ""),
            chunk_index=int(data.get("chunk_index", 0)),
            chunk_count=int(data.get("chunk_count", 0)),
            start=int(data.get("start", 0)),
            end=int(data.get("end", 0)),
            text=data.get("text", ""),
            embed_model=data.get("embed_model", ""),
        )


@dataclass
class VectorPoint:
    """The persisted unit in the vector engine."""

    id: str
    vector: list[float]
    payload: PointPayload


@dataclass(frozen=True)
class ScoredPoint:
    """A search hit: point id, similarity score and payload (no vector)."""

    id: str
    score: float
    payload: PointPayload


@dataclass(frozen=True)
class CollectionInfo:
    """Collection metadata.

    Attributes:
        name: Collection name
        dimension: Embedding dimension fixed at creation
        embed_model: Embedding model that created the collection
        points_count: Number of stored points
    """

    name: str
    dimension: int
    embed_model: str
    points_count: int = 0


@dataclass(eq=False)
class DocumentChunk:
    """A vector point as stored in RavenDB.

    Note: eq=False ensures each instance is unique and hashable by identity,
    which is required for RavenDB's session entity tracking.
    """

    Id: str | None = None
    point_id: str = ""
    collection: str = ""
    source: str = ""
    doc_id: str = ""
    content_hash: str = ""
    chunk_index: int = 0
    chunk_count: int = 0
    start: int = 0
    end: int = 0
    text: str = ""
    embed_model: str = ""
    embedding: list[float] = field(default_factory=list)

    def __hash__(self) -> int:
        """Hash by object identity for RavenDB session tracking."""
        return id(self)

    @classmethod
    def from_point(cls, point: VectorPoint) -> "DocumentChunk":
        return cls(
            Id=point.id,
            point_id=point.id,
            embedding=list(point.vector),
            **point.payload.to_dict(),
        )

    @staticmethod
    def to_point(doc: dict[str, Any]) -> VectorPoint:
        """Convert a loaded RavenDB document (as dict) back into a VectorPoint."""
        metadata = doc.get("@metadata", {})
        return VectorPoint(
            id=doc.get("point_id") or metadata.get("@id", ""),
            vector=list(doc.get("embedding") or []),
            payload=PointPayload.from_dict(doc),
        )


@dataclass(eq=False)
class CollectionRecord:
    """Collection metadata as stored in RavenDB."""

    Id: str | None = None
    name: str = ""
    dimension: int = 0
    embed_model: str = ""

    def __hash__(self) -> int:
        """Hash by object identity for RavenDB session tracking."""
        return id(self)
