"""Collection transfer: export/import archives and push/pull through a registry.

An archive is a gzip tarball with two members:

- ``manifest.json``: format, version, collection, dimension, embed_model,
  point_count and creation time
- ``points.jsonl``: one ``{"id", "vector", "payload"}`` object per line
"""

import io
import json
import logging
import re
import tarfile
import tempfile
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from know.constants import ARCHIVE_FORMAT, ARCHIVE_NAME, ARCHIVE_VERSION
from know.exceptions import TransferError
from know.service.database import (
    PointPayload,
    VectorPoint,
    VectorStore,
    document_id,
    point_id,
)
from know.service.registry import Registry

logger = logging.getLogger(__name__)

MANIFEST_NAME = "manifest.json"
POINTS_NAME = "points.jsonl"
UPSERT_BATCH_SIZE = 256

IMAGE_REF_PATTERN = re.compile(
    r"^[a-z0-9]+(?:[._-][a-z0-9]+)*(?::[0-9]+)?"  # registry host or namespace
    r"(?:/[a-z0-9]+(?:[._-][a-z0-9]+)*)+"  # repository path
    r"(?::[A-Za-z0-9_][A-Za-z0-9_.-]{0,127})?$"  # tag
)


def validate_image_ref(ref: str) -> str:
    """Check that an image reference names a repository (``user/name[:tag]``).

    Raises:
        TransferError: If the reference is malformed
    """
    ref = ref.strip()
    if "/" not in ref or not IMAGE_REF_PATTERN.match(ref):
        raise TransferError(
            f"Invalid image reference '{ref}'. Expected the form user/name[:tag]"
        )
    return ref


def _add_bytes(tar: tarfile.TarFile, name: str, data: bytes) -> None:
    info = tarfile.TarInfo(name)
    info.size = len(data)
    info.mtime = int(datetime.now(timezone.utc).timestamp())
    tar.addfile(info, io.BytesIO(data))


def export_collection(store: VectorStore, collection: str, archive: Path) -> dict[str, Any]:
    """Write every point of a collection to an archive.

    Args:
        store: Vector store holding the collection
        collection: Collection to export
        archive: Destination ``.tar.gz`` path

    Returns:
        dict: The manifest written to the archive

    Raises:
        TransferError: If the collection does not exist
    """
    info = store.get_collection(collection)
    if info is None:
        raise TransferError(f"Collection '{collection}' does not exist")

    lines = []
    for point in store.scroll(collection):
        lines.append(
            json.dumps({"id": point.id, "vector": point.vector, "payload": point.payload.to_dict()})
        )

    manifest = {
        "format": ARCHIVE_FORMAT,
        "version": ARCHIVE_VERSION,
        "collection": collection,
        "dimension": info.dimension,
        "embed_model": info.embed_model,
        "point_count": len(lines),
        "created": datetime.now(timezone.utc).isoformat(),
    }
    points_data = ("\n".join(lines) + "\n").encode("utf-8") if lines else b""
    with tarfile.open(archive, "w:gz") as tar:
        _add_bytes(tar, MANIFEST_NAME, json.dumps(manifest, indent=2).encode("utf-8"))
        _add_bytes(tar, POINTS_NAME, points_data)

    logger.info(f"📦 Exported {len(lines)} points from '{collection}'")
    return manifest


def read_archive(archive: Path) -> tuple[dict[str, Any], list[VectorPoint]]:
    """Read and validate an archive.

    Returns:
        tuple: (manifest, points) with points exactly as stored

    Raises:
        TransferError: If the archive is unreadable, of another format or
            version, or holds vectors of the wrong dimension
    """
    try:
        with tarfile.open(archive, "r:gz") as tar:
            manifest_file = tar.extractfile(MANIFEST_NAME)
            points_file = tar.extractfile(POINTS_NAME)
            if manifest_file is None or points_file is None:
                raise TransferError(f"{archive} is missing archive members")
            manifest = json.loads(manifest_file.read().decode("utf-8"))
            raw_lines = points_file.read().decode("utf-8").splitlines()
    except (tarfile.TarError, KeyError, OSError, ValueError) as e:
        raise TransferError(f"Cannot read collection archive {archive}: {e}") from e

    if manifest.get("format") != ARCHIVE_FORMAT:
        raise TransferError(f"Not a know collection archive (format={manifest.get('format')!r})")
    if manifest.get("version") != ARCHIVE_VERSION:
        raise TransferError(
            f"Unsupported archive version {manifest.get('version')!r} (expected {ARCHIVE_VERSION})"
        )
    dimension = manifest.get("dimension")
    if not isinstance(dimension, int) or dimension <= 0:
        raise TransferError(f"Invalid dimension in manifest: {dimension!r}")

    points = []
    for line_number, line in enumerate(raw_lines, start=1):
        if not line.strip():
            continue
        try:
            data = json.loads(line)
            point = VectorPoint(
                id=data["id"],
                vector=[float(v) for v in data["vector"]],
                payload=PointPayload.from_dict(data["payload"]),
            )
        except (ValueError, KeyError, TypeError) as e:
            raise TransferError(f"Malformed point on line {line_number}: {e}") from e
        if len(point.vector) != dimension:
            raise TransferError(
                f"Point {point.id} has {len(point.vector)} dimensions, manifest says {dimension}"
            )
        points.append(point)

    if manifest.get("point_count") not in (None, len(points)):
        raise TransferError(
            f"Archive holds {len(points)} points, manifest says {manifest['point_count']}"
        )
    return manifest, points


def import_archive(store: VectorStore, archive: Path, collection: str | None = None) -> int:
    """Load an archive into a collection, merging with existing points.

    Point ids are re-derived for the target collection, so importing under a
    new name never collides with the source collection's ids.

    Args:
        store: Target vector store
        archive: Archive path
        collection: Target collection (default: the archived collection's name)

    Returns:
        int: Number of points written
    """
    manifest, points = read_archive(archive)
    target = collection or manifest["collection"]
    store.create_collection(target, manifest["dimension"], manifest.get("embed_model", ""))

    rewritten = []
    for point in points:
        doc_id = point.payload.doc_id or document_id(point.payload.source)
        payload = replace(point.payload, collection=target, doc_id=doc_id)
        rewritten.append(
            VectorPoint(
                id=point_id(target, doc_id, payload.chunk_index),
                vector=point.vector,
                payload=payload,
            )
        )

    for start in range(0, len(rewritten), UPSERT_BATCH_SIZE):
        store.upsert(target, rewritten[start : start + UPSERT_BATCH_SIZE])

    logger.info(f"📥 Imported {len(rewritten)} points into '{target}'")
    return len(rewritten)


def push(collection: str, image_ref: str, *, store: VectorStore, registry: Registry) -> dict[str, Any]:
    """Publish a collection to a registry.

    Returns:
        dict: The manifest of the pushed archive
    """
    image_ref = validate_image_ref(image_ref)
    with tempfile.TemporaryDirectory(prefix="know-export-") as tmp:
        archive = Path(tmp) / ARCHIVE_NAME
        manifest = export_collection(store, collection, archive)
        registry.push(archive, image_ref)
    logger.info(f"✅ Pushed '{collection}' to {image_ref}")
    return manifest


def pull(image_ref: str, collection: str | None, *, store: VectorStore, registry: Registry) -> int:
    """Fetch a collection from a registry and merge it into the store.

    Returns:
        int: Number of points written
    """
    image_ref = validate_image_ref(image_ref)
    with tempfile.TemporaryDirectory(prefix="know-import-") as tmp:
        archive = registry.pull(image_ref, Path(tmp))
        count = import_archive(store, archive, collection)
    logger.info(f"✅ Pulled {image_ref} ({count} points)")
    return count
