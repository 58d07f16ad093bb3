"""Artifact registry access for collection archives.

Archives travel as single-layer ``FROM scratch`` images, so any Docker
registry (Docker Hub, GHCR, a private registry) can host a knowledge base.
"""

import logging
import shutil
import tempfile
import uuid
from pathlib import Path
from typing import Protocol

from know.constants import ARCHIVE_FORMAT, ARCHIVE_NAME, ARCHIVE_VERSION
from know.exceptions import ContainerRuntimeError, TransferError
from know.service.docker import run_docker

logger = logging.getLogger(__name__)

DOCKERFILE = f"""FROM scratch
COPY {ARCHIVE_NAME} /{ARCHIVE_NAME}
LABEL org.opencontainers.image.title="know knowledge base"
LABEL org.opencontainers.image.description="know collection archive"
LABEL io.know.format="{ARCHIVE_FORMAT}"
LABEL io.know.version="{ARCHIVE_VERSION}"
"""


class Registry(Protocol):
    """Moves collection archives to and from a remote registry."""

    def push(self, archive: Path, ref: str) -> None: ...

    def pull(self, ref: str, dest_dir: Path) -> Path:
        """Fetch the archive for ``ref`` into ``dest_dir`` and return its path."""
        ...


class DockerRegistry:
    """``Registry`` implemented with the docker CLI."""

    def __init__(self, timeout: float | None = 600.0) -> None:
        self.timeout = timeout

    def push(self, archive: Path, ref: str) -> None:
        """Build an image holding ``archive`` and push it as ``ref``.

        Raises:
            TransferError: If the build or push fails
        """
        with tempfile.TemporaryDirectory(prefix="know-push-") as tmp:
            context = Path(tmp)
            shutil.copyfile(archive, context / ARCHIVE_NAME)
            (context / "Dockerfile").write_text(DOCKERFILE)
            try:
                logger.info(f"📦 Building image {ref}")
                run_docker(["build", "-t", ref, str(context)], timeout=self.timeout)
                logger.info(f"⬆️  Pushing {ref}")
                run_docker(["push", ref], timeout=self.timeout)
            except ContainerRuntimeError as e:
                raise TransferError(
                    f"Failed to push {ref}. Make sure you're logged in with 'docker login'. {e}"
                ) from e

    def pull(self, ref: str, dest_dir: Path) -> Path:
        """Pull ``ref`` and copy its archive out of a temporary container.

        Raises:
            TransferError: If the pull or extraction fails
        """
        container = f"know-extract-{uuid.uuid4().hex[:12]}"
        target = Path(dest_dir) / ARCHIVE_NAME
        try:
            logger.info(f"⬇️  Pulling {ref}")
            run_docker(["pull", ref], timeout=self.timeout)
            # Scratch images have no entrypoint; the container is never started
            run_docker(["create", "--name", container, ref, "/know"])
        except ContainerRuntimeError as e:
            raise TransferError(f"Failed to pull {ref}: {e}") from e

        try:
            run_docker(["cp", f"{container}:/{ARCHIVE_NAME}", str(target)])
        except ContainerRuntimeError as e:
            raise TransferError(f"Image {ref} does not contain a know collection archive: {e}") from e
        finally:
            try:
                run_docker(["rm", container])
            except ContainerRuntimeError as e:
                logger.warning(f"⚠️ Could not remove temporary container {container}: {e}")
        return target
