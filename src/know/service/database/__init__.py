"""Vector storage on RavenDB.

This package provides the vector engine used by ingestion and retrieval:
- Configuration management (RavenDBConfig)
- Point and collection models
- The VectorStore protocol and its RavenDB implementation
- Deterministic point ids and cosine similarity

Usage:
    from know.service.database import RavenDBVectorStore, point_id

    store = RavenDBVectorStore()
    store.ensure_database()
    hits = store.search("know", vector, top_k=5)
"""

# Re-export public API
from know.service.database.config import RavenDBConfig
from know.service.database.models import (
    CollectionInfo,
    PointPayload,
    ScoredPoint,
    VectorPoint,
)
from know.service.database.store import RavenDBVectorStore, VectorStore
from know.service.database.utils import (
    cosine_similarity,
    document_id,
    point_id,
    validate_collection_name,
)

__all__ = [
    # Config
    "RavenDBConfig",
    # Models
    "CollectionInfo",
    "PointPayload",
    "ScoredPoint",
    "VectorPoint",
    # Store
    "VectorStore",
    "RavenDBVectorStore",
    # Utils
    "cosine_similarity",
    "document_id",
    "point_id",
    "validate_collection_name",
]
