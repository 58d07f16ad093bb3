"""Vector store capability and its RavenDB implementation.

Collections are RavenDB collections of ``DocumentChunk`` documents. Each
collection also has a ``KnowCollections/<name>`` record fixing its embedding
dimension and model; RavenDB itself does not enforce a per-collection
dimension, so the store checks every write and query against that record.
"""

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import replace
from typing import Protocol

import requests
from ravendb import DocumentStore

from know.constants import COLLECTION_RECORDS, DEFAULT_PROBE_TIMEOUT, DEFAULT_TIMEOUT
from know.exceptions import StoreError
from know.service.database.config import RavenDBConfig
from know.service.database.models import (
    CollectionInfo,
    CollectionRecord,
    DocumentChunk,
    ScoredPoint,
    VectorPoint,
)
from know.service.database.utils import cosine_similarity, validate_collection_name
from know.service.http import build_session, probe_url

logger = logging.getLogger(__name__)


class VectorStore(Protocol):
    """Protocol for the vector engine used by the pipelines.

    Implementations raise ``StoreError`` for every failure.
    """

    def is_available(self) -> bool: ...

    def ensure_database(self) -> None: ...

    def create_collection(self, name: str, dimension: int, embed_model: str) -> CollectionInfo:
        """Create a collection, or validate an existing one has the same dimension and model."""
        ...

    def get_collection(self, name: str) -> CollectionInfo | None: ...

    def list_collections(self) -> list[str]: ...

    def upsert(self, collection: str, points: list[VectorPoint]) -> None: ...

    def get(self, collection: str, ids: list[str]) -> list[VectorPoint]:
        """Load points by id; missing ids are omitted from the result."""
        ...

    def search(self, collection: str, vector: list[float], top_k: int) -> list[ScoredPoint]:
        """Top-k nearest points ordered by descending similarity."""
        ...

    def delete(self, collection: str, ids: list[str]) -> None: ...

    def scroll(self, collection: str) -> Iterator[VectorPoint]: ...

    def drop_collection(self, name: str) -> bool:
        """Delete a collection and its record. Returns False if it did not exist."""
        ...


def record_id(name: str) -> str:
    """RavenDB document id of a collection's metadata record."""
    return f"{COLLECTION_RECORDS}/{name}"


class RavenDBVectorStore:
    """``VectorStore`` backed by RavenDB vector search."""

    def __init__(
        self,
        url: str | None = None,
        database: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = 2,
    ) -> None:
        """Initialize the store.

        Args:
            url: RavenDB server URL (defaults to value from RavenDBConfig.get_url())
            database: Database name (defaults to value from RavenDBConfig.get_database_name())
            timeout: Timeout for REST calls in seconds
            max_retries: Retries for transient REST failures
        """
        self.url = (url or RavenDBConfig.get_url()).rstrip("/")
        self.database = database or RavenDBConfig.get_database_name()
        self.timeout = timeout
        self.http = build_session(max_retries=max_retries)
        self._store: DocumentStore | None = None
        self._store_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Connection management
    # ------------------------------------------------------------------

    def _document_store(self) -> DocumentStore:
        # Served requests run on several threads; initialize exactly once
        with self._store_lock:
            if self._store is None:
                store = DocumentStore([self.url], self.database)
                store.initialize()
                self._store = store
            return self._store

    @contextmanager
    def _session(self):
        """Open a session, translating client failures into StoreError."""
        try:
            with self._document_store().open_session() as session:
                yield session
        except StoreError:
            raise
        except Exception as e:
            raise StoreError(
                StoreError.UNAVAILABLE,
                f"RavenDB operation failed at {self.url}/{self.database}: {type(e).__name__}: {e}",
            ) from e

    def close(self) -> None:
        with self._store_lock:
            if self._store is not None:
                self._store.close()
                self._store = None
        self.http.close()

    def is_available(self, timeout: float = DEFAULT_PROBE_TIMEOUT) -> bool:
        """Check whether the RavenDB server answers (401 counts as up)."""
        return probe_url(f"{self.url}/databases", timeout, accept_status=(200, 401)) is None

    def database_exists(self) -> bool:
        try:
            response = self.http.get(f"{self.url}/databases", timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise StoreError(StoreError.UNAVAILABLE, f"Cannot list databases: {e}") from e
        names = [db.get("Name") for db in response.json().get("Databases", [])]
        return self.database in names

    def ensure_database(self) -> None:
        """Create the RavenDB database if it does not exist yet."""
        if self.database_exists():
            return
        logger.info(f"🗄️  Creating RavenDB database '{self.database}'")
        payload = {"DatabaseName": self.database, "Settings": {}, "Disabled": False}
        try:
            response = self.http.put(
                f"{self.url}/admin/databases", json=payload, timeout=self.timeout
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise StoreError(
                StoreError.UNAVAILABLE, f"Cannot create database '{self.database}': {e}"
            ) from e

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------

    def _load_record(self, session, name: str) -> dict | None:
        return session.load(record_id(name), dict)

    def _load_info(self, name: str) -> CollectionInfo | None:
        """Read a collection's record only, without counting its points."""
        validate_collection_name(name)
        with self._session() as session:
            record = self._load_record(session, name)
        if record is None:
            return None
        return CollectionInfo(
            name=name,
            dimension=int(record.get("dimension", 0)),
            embed_model=record.get("embed_model", ""),
        )

    def count_points(self, name: str) -> int:
        """Number of points in a collection, from RavenDB's collection statistics."""
        try:
            response = self.http.get(
                f"{self.url}/databases/{self.database}/collections/stats", timeout=self.timeout
            )
            response.raise_for_status()
        except requests.RequestException as e:
            raise StoreError(StoreError.UNAVAILABLE, f"Cannot read collection statistics: {e}") from e
        return int(response.json().get("Collections", {}).get(name, 0))

    def get_collection(self, name: str) -> CollectionInfo | None:
        info = self._load_info(name)
        if info is None:
            return None
        return replace(info, points_count=self.count_points(name))

    def _require_collection(self, name: str) -> CollectionInfo:
        info = self._load_info(name)
        if info is None:
            raise StoreError(StoreError.NOT_FOUND, f"Collection '{name}' does not exist")
        return info

    def create_collection(self, name: str, dimension: int, embed_model: str) -> CollectionInfo:
        if dimension <= 0:
            raise StoreError(StoreError.DIMENSION_MISMATCH, "Embedding dimension must be positive")
        existing = self._load_info(name)
        if existing is not None:
            check_compatible(existing, dimension, embed_model)
            return existing

        with self._session() as session:
            record = CollectionRecord(
                Id=record_id(name), name=name, dimension=dimension, embed_model=embed_model
            )
            session.store(record, record.Id)
            session.advanced.get_metadata_for(record)["@collection"] = COLLECTION_RECORDS
            session.save_changes()
        logger.info(f"📁 Created collection '{name}' (dim={dimension}, model={embed_model})")
        return CollectionInfo(name=name, dimension=dimension, embed_model=embed_model)

    def list_collections(self) -> list[str]:
        with self._session() as session:
            records = session.advanced.raw_query(f"from {COLLECTION_RECORDS}", object_type=dict)
            return sorted(record.get("name", "") for record in records)

    def drop_collection(self, name: str) -> bool:
        validate_collection_name(name)
        with self._session() as session:
            if self._load_record(session, name) is None:
                return False
            docs = list(session.advanced.raw_query(f"from '{name}'", object_type=dict))
            for doc in docs:
                session.delete(DocumentChunk.to_point(doc).id)
            session.delete(record_id(name))
            session.save_changes()
        logger.info(f"🗑️  Dropped collection '{name}' ({len(docs)} points)")
        return True

    # ------------------------------------------------------------------
    # Points
    # ------------------------------------------------------------------

    def upsert(self, collection: str, points: list[VectorPoint]) -> None:
        """Store points, replacing any existing points with the same ids.

        All points are written in one session, which RavenDB commits as a
        single transaction.
        """
        if not points:
            return
        info = self._require_collection(collection)
        for point in points:
            check_dimension(info, point.vector)

        with self._session() as session:
            for point in points:
                doc = DocumentChunk.from_point(point)
                session.store(doc, point.id)
                session.advanced.get_metadata_for(doc)["@collection"] = collection
            session.save_changes()
        logger.debug(f"Upserted {len(points)} points into '{collection}'")

    def get(self, collection: str, ids: list[str]) -> list[VectorPoint]:
        points = []
        with self._session() as session:
            for point_id in ids:
                doc = session.load(point_id, dict)
                if doc is not None and doc.get("collection") == collection:
                    points.append(DocumentChunk.to_point(doc))
        return points

    def delete(self, collection: str, ids: list[str]) -> None:
        if not ids:
            return
        with self._session() as session:
            for point_id in ids:
                session.delete(point_id)
            session.save_changes()
        logger.debug(f"Deleted {len(ids)} points from '{collection}'")

    def scroll(self, collection: str) -> Iterator[VectorPoint]:
        self._require_collection(collection)
        with self._session() as session:
            docs = list(session.advanced.raw_query(f"from '{collection}'", object_type=dict))
        for doc in docs:
            yield DocumentChunk.to_point(doc)

    def search(self, collection: str, vector: list[float], top_k: int) -> list[ScoredPoint]:
        info = self._require_collection(collection)
        check_dimension(info, vector)

        with self._session() as session:
            query = session.query_collection(collection, object_type=dict)
            results = list(query.vector_search("embedding", vector).order_by_score().take(top_k))

        def get_score(result: dict) -> float:
            metadata = result.get("@metadata", {})
            index_score = metadata.get("@index-score")
            if index_score is not None:
                return float(index_score)
            return cosine_similarity(vector, result.get("embedding", []))

        hits = []
        for result in results:
            point = DocumentChunk.to_point(result)
            hits.append(ScoredPoint(id=point.id, score=get_score(result), payload=point.payload))
        hits.sort(key=lambda hit: hit.score, reverse=True)
        return hits[:top_k]


def check_compatible(info: CollectionInfo, dimension: int, embed_model: str) -> None:
    """Reject writing vectors of another dimension or model into a collection."""
    if info.dimension != dimension:
        raise StoreError(
            StoreError.DIMENSION_MISMATCH,
            f"Collection '{info.name}' stores {info.dimension}-dim vectors, got {dimension}",
        )
    if info.embed_model and embed_model and info.embed_model != embed_model:
        raise StoreError(
            StoreError.MODEL_MISMATCH,
            f"Collection '{info.name}' was built with '{info.embed_model}', not '{embed_model}'. "
            f"Run 'know clean {info.name}' and re-ingest to switch models.",
        )


def check_dimension(info: CollectionInfo, vector: list[float]) -> None:
    if len(vector) != info.dimension:
        raise StoreError(
            StoreError.DIMENSION_MISMATCH,
            f"Vector has {len(vector)} dimensions, collection '{info.name}' expects {info.dimension}",
        )
