"""Ingestion pipeline: find files, parse, chunk, embed and store them.

Re-ingestion is incremental. Each file's points have deterministic ids, and
the first point of a file records the file's content hash and chunk count:

- an unchanged file (same hash, same embedding model) is skipped
- a changed file is re-chunked, its new points overwrite the old ones, and
  old points beyond the new chunk count are deleted afterwards
"""

import asyncio
import hashlib
import logging
from dataclasses import dataclass, field
from pathlib import Path

from know.config import KnowConfig
from know.constants import DEFAULT_CHUNK_OVERLAP, DEFAULT_CHUNK_SIZE, DEFAULT_EXTENSIONS
from know.exceptions import EmbedError, ParseError, StoreError
from know.llm.base import LLMService
from know.service.database import PointPayload, VectorPoint, VectorStore, document_id, point_id
from know.service.parsing import DocumentParser

logger = logging.getLogger(__name__)

DIMENSION_PROBE_TEXT = "dimension probe"


@dataclass(frozen=True)
class DocumentReference:
    """Identity of a source file at ingestion time.

    Attributes:
        path: Resolved path of the file
        source: Absolute POSIX form of the path, stored with each point
        content_hash: SHA-256 hex digest of the file bytes
        modified: Last modification time (seconds since the epoch)
    """

    path: Path
    source: str
    content_hash: str
    modified: float

    @property
    def doc_id(self) -> str:
        return document_id(self.source)

    @classmethod
    def from_path(cls, path: Path) -> "DocumentReference":
        resolved = Path(path).resolve()
        digest = hashlib.sha256()
        try:
            with open(resolved, "rb") as fh:
                for block in iter(lambda: fh.read(1 << 16), b""):
                    digest.update(block)
            modified = resolved.stat().st_mtime
        except OSError as e:
            raise ParseError(str(path), f"cannot read file: {e}") from e
        return cls(
            path=resolved,
            source=resolved.as_posix(),
            content_hash=digest.hexdigest(),
            modified=modified,
        )


@dataclass(frozen=True)
class Chunk:
    """A segment of normalized document text with its offsets."""

    index: int
    text: str
    start: int
    end: int


def normalize_text(text: str) -> str:
    """Unify line endings and trim surrounding whitespace."""
    return text.replace("\r\n", "\n").replace("\r", "\n").strip()


def chunk_text(
    text: str, chunk_size: int = DEFAULT_CHUNK_SIZE, overlap: int = DEFAULT_CHUNK_OVERLAP
) -> list[Chunk]:
    """Split text into overlapping character chunks.

    A chunk ends at the last whitespace inside the size limit when there is
    one, so words are not split unless a single word exceeds the limit. Each
    chunk after the first starts ``overlap`` characters before the previous
    chunk's end.

    Args:
        text: The text to chunk
        chunk_size: Maximum characters per chunk (default: 512)
        overlap: Characters shared between neighbouring chunks (default: 64)

    Returns:
        list[Chunk]: Chunks in order; empty for empty text

    Raises:
        ValueError: If chunk_size is not positive or overlap is outside [0, chunk_size)
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    if not 0 <= overlap < chunk_size:
        raise ValueError("overlap must be >= 0 and smaller than chunk_size")

    chunks: list[Chunk] = []
    length = len(text)
    start = 0
    while start < length:
        end = min(start + chunk_size, length)
        if end < length:
            # Back off to a word boundary, keeping end beyond start + overlap
            for position in range(end - 1, start + overlap, -1):
                if text[position].isspace():
                    end = position + 1
                    break
        chunks.append(Chunk(index=len(chunks), text=text[start:end], start=start, end=end))
        if end >= length:
            break
        start = end - overlap

    return chunks


def parse_extensions(extensions: str | None) -> set[str]:
    """Parse a comma-separated extension list into lowercase names without dots."""
    raw = extensions if extensions is not None else DEFAULT_EXTENSIONS
    parsed = {ext.strip().lower().lstrip(".") for ext in raw.split(",")}
    parsed.discard("")
    if not parsed:
        raise ValueError("No file extensions given")
    return parsed


def find_files(path: Path, extensions: str | None = None) -> list[Path]:
    """Collect the files to ingest.

    Args:
        path: A file (taken as-is) or a directory (walked recursively)
        extensions: Comma-separated extensions to include (case-insensitive)

    Returns:
        list[Path]: Matching files in sorted order

    Raises:
        FileNotFoundError: If ``path`` does not exist
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Path not found: {path}")
    if path.is_file():
        return [path]

    allowed = parse_extensions(extensions)
    return sorted(
        candidate
        for candidate in path.rglob("*")
        if candidate.is_file() and candidate.suffix.lower().lstrip(".") in allowed
    )


@dataclass
class FileFailure:
    """A file that could not be ingested."""

    path: str
    category: str
    reason: str


@dataclass
class IngestReport:
    """Summary of one ingestion run."""

    collection: str = ""
    files_processed: int = 0
    chunks_written: int = 0
    files_skipped: int = 0
    stale_chunks_deleted: int = 0
    failures: list[FileFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


class Ingestor:
    """Runs the ingestion pipeline against one LLM service and vector store."""

    def __init__(
        self,
        llm: LLMService,
        store: VectorStore,
        parser: DocumentParser,
        config: KnowConfig,
    ) -> None:
        self.llm = llm
        self.store = store
        self.parser = parser
        self.config = config

    async def embed_texts(self, texts: list[str]) -> list[list[float]]:
        """Embed texts in batches, with a bounded number of batches in flight.

        Returns:
            list[list[float]]: One vector per text, in input order
        """
        batch_size = self.config.embed_batch_size
        semaphore = asyncio.Semaphore(self.config.embed_concurrency)

        async def embed_batch(batch: list[str]) -> list[list[float]]:
            async with semaphore:
                return await asyncio.to_thread(
                    self.llm.generate_embeddings, batch, self.llm.embed_model
                )

        batches = [texts[i : i + batch_size] for i in range(0, len(texts), batch_size)]
        results = await asyncio.gather(*(embed_batch(batch) for batch in batches))
        vectors = [vector for batch in results for vector in batch]
        if len(vectors) != len(texts):
            raise EmbedError(f"Expected {len(texts)} embeddings, got {len(vectors)}")
        return vectors

    async def prepare_collection(self, collection: str) -> int:
        """Probe the embedding dimension and create or validate the collection.

        Returns:
            int: The embedding dimension
        """
        probe = await self.embed_texts([DIMENSION_PROBE_TEXT])
        dimension = len(probe[0])
        await asyncio.to_thread(
            self.store.create_collection, collection, dimension, self.llm.embed_model
        )
        return dimension

    async def ingest_file(self, path: Path, collection: str, report: IngestReport) -> None:
        """Ingest one file, replacing any points from a previous version of it."""
        ref = DocumentReference.from_path(path)
        embed_model = self.llm.embed_model

        first_id = point_id(collection, ref.doc_id, 0)
        existing = await asyncio.to_thread(self.store.get, collection, [first_id])
        old_count = existing[0].payload.chunk_count if existing else 0
        if existing:
            payload = existing[0].payload
            if payload.content_hash == ref.content_hash and payload.embed_model == embed_model:
                logger.info(f"  ⏭️  {path.name} unchanged, skipping")
                report.files_skipped += 1
                return

        text = normalize_text(await asyncio.to_thread(self.parser.parse, ref.path))
        chunks = chunk_text(text, self.config.chunk_size, self.config.chunk_overlap)

        vectors = await self.embed_texts([chunk.text for chunk in chunks]) if chunks else []
        points = [
            VectorPoint(
                id=point_id(collection, ref.doc_id, chunk.index),
                vector=vector,
                payload=PointPayload(
                    collection=collection,
                    source=ref.source,
                    doc_id=ref.doc_id,
                    content_hash=ref.content_hash,
                    chunk_index=chunk.index,
                    chunk_count=len(chunks),
                    start=chunk.start,
                    end=chunk.end,
                    text=chunk.text,
                    embed_model=embed_model,
                ),
            )
            for chunk, vector in zip(chunks, vectors)
        ]
        await asyncio.to_thread(self.store.upsert, collection, points)

        # Only after every new chunk is stored
        stale = [point_id(collection, ref.doc_id, i) for i in range(len(chunks), old_count)]
        await asyncio.to_thread(self.store.delete, collection, stale)
        report.stale_chunks_deleted += len(stale)

        if not chunks:
            logger.warning(f"  ⚠️ {path.name} contains no text, skipping")
            report.files_skipped += 1
            return

        report.files_processed += 1
        report.chunks_written += len(points)
        logger.info(f"  ✓ {path.name}: {len(points)} chunks ({len(stale)} stale removed)")

    async def ingest(
        self,
        path: Path,
        extensions: str | None = None,
        collection: str | None = None,
    ) -> IngestReport:
        """Ingest a file or directory tree into a collection.

        Args:
            path: File or directory to ingest
            extensions: Comma-separated extensions (default: md,txt,pdf,docx,html)
            collection: Target collection (default: the configured collection)

        Returns:
            IngestReport: Counts plus one entry per failed file

        Raises:
            EmbedError: If the embedding dimension cannot be probed
            StoreError: If the collection cannot be created or is incompatible
        """
        collection = collection or self.config.collection
        report = IngestReport(collection=collection)
        files = find_files(Path(path), extensions)
        if not files:
            logger.warning(f"⚠️ No matching files found in {path}")
            return report

        logger.info(f"📚 Ingesting {len(files)} files into '{collection}'")
        dimension = await self.prepare_collection(collection)
        logger.debug(f"Embedding dimension: {dimension}")

        for file_path in files:
            try:
                await self.ingest_file(file_path, collection, report)
            except (ParseError, EmbedError, StoreError) as e:
                self._record_failure(report, file_path, e)

        logger.info(
            f"✅ Ingested {report.chunks_written} chunks from {report.files_processed} files "
            f"({report.files_skipped} skipped, {len(report.failures)} failed)"
        )
        return report

    @staticmethod
    def _record_failure(report: IngestReport, path: Path, error) -> None:
        logger.warning(f"  ⚠️ {path}: {error}")
        report.failures.append(FileFailure(path=str(path), category=error.category, reason=str(error)))
