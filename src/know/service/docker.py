"""Container runtime access through the docker CLI."""

import logging
import subprocess
import tempfile
from importlib import resources
from pathlib import Path
from typing import Protocol

from know.exceptions import ContainerRuntimeError

logger = logging.getLogger(__name__)

COMPOSE_FILENAME = "docker-compose.yml"


class ContainerRuntime(Protocol):
    """Starts and stops the backing services."""

    def up(self, services: list[str]) -> None: ...

    def down(self) -> None: ...

    def ps(self) -> str: ...


def run_docker(args: list[str], timeout: float | None = None) -> subprocess.CompletedProcess:
    """Run a docker CLI command and capture its output.

    Args:
        args: Arguments after ``docker``
        timeout: Optional timeout in seconds

    Returns:
        subprocess.CompletedProcess: The finished process (exit code 0)

    Raises:
        ContainerRuntimeError: If docker is missing, times out or exits non-zero
    """
    command = ["docker", *args]
    logger.debug(f"Running: {' '.join(command)}")
    try:
        result = subprocess.run(command, capture_output=True, text=True, timeout=timeout)
    except FileNotFoundError as e:
        raise ContainerRuntimeError("docker CLI not found. Is Docker installed?") from e
    except subprocess.TimeoutExpired as e:
        raise ContainerRuntimeError(f"'docker {args[0]}' timed out after {timeout}s") from e

    if result.returncode != 0:
        detail = (result.stderr or result.stdout).strip()
        raise ContainerRuntimeError(
            f"'{' '.join(command[:4])}' failed with exit code {result.returncode}: {detail}"
        )
    return result


def find_compose_file(explicit: str | None = None) -> Path:
    """Locate the compose file describing the backing services.

    Order: explicit path, ``./docker-compose.yml``, then the packaged copy
    written to a temporary directory.
    """
    if explicit:
        path = Path(explicit)
        if not path.is_file():
            raise ContainerRuntimeError(f"Compose file not found: {explicit}")
        return path

    local = Path.cwd() / COMPOSE_FILENAME
    if local.is_file():
        return local

    content = resources.files("know.resources").joinpath(COMPOSE_FILENAME).read_text()
    target = Path(tempfile.gettempdir()) / "know" / COMPOSE_FILENAME
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(content)
    return target


class DockerCompose:
    """``ContainerRuntime`` implemented with ``docker compose``."""

    def __init__(self, compose_file: str | None = None, timeout: float | None = 300.0) -> None:
        self.compose_file = compose_file
        self.timeout = timeout

    def _compose(self, *args: str) -> subprocess.CompletedProcess:
        path = find_compose_file(self.compose_file)
        return run_docker(["compose", "-f", str(path), *args], timeout=self.timeout)

    def up(self, services: list[str]) -> None:
        logger.info(f"🐳 Starting services: {', '.join(services)}")
        self._compose("up", "-d", *services)

    def down(self) -> None:
        logger.info("🐳 Stopping services")
        self._compose("down")

    def ps(self) -> str:
        return self._compose("ps", "--format", "table").stdout
