"""Helper functions for CLI commands."""

import functools
import logging
import os
import sys
from dataclasses import dataclass

import click

from know.client.ingest import IngestReport
from know.config import KnowConfig
from know.constants import CONTENT_PREVIEW_LENGTH, SERVICE_DOCLING, SERVICE_RAVENDB
from know.exceptions import KnowError
from know.llm import BackendConfig, LLMService, get_llm_service, resolve_backend
from know.service.database import VectorStore
from know.service.docker import ContainerRuntime, DockerCompose
from know.service.helpers import create_store
from know.service.parsing import DoclingClient, DocumentParser
from know.service.rag import Answer
from know.service.registry import DockerRegistry, Registry
from know.service.supervisor import ServiceState, ServiceSupervisor, default_endpoints

EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130


def setup_logging(default: str = "WARNING") -> None:
    """Configure logging from LOG_LEVEL (the CLI is quiet by default)."""
    log_level = os.getenv("LOG_LEVEL", default).upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.WARNING),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


@dataclass
class CliContext:
    """Per-invocation state shared by the commands.

    Collaborators are created on first use. Tests pass pre-built fakes
    through ``CliRunner.invoke(..., obj=CliContext(...))``.
    """

    config: KnowConfig | None = None
    runtime: ContainerRuntime | None = None
    supervisor: ServiceSupervisor | None = None
    store: VectorStore | None = None
    llm_service: LLMService | None = None
    backend: BackendConfig | None = None
    registry: Registry | None = None
    parser: DocumentParser | None = None

    def get_runtime(self) -> ContainerRuntime:
        if self.runtime is None:
            self.runtime = DockerCompose(self.config.compose_file)
        return self.runtime

    def get_supervisor(self) -> ServiceSupervisor:
        if self.supervisor is None:
            self.supervisor = ServiceSupervisor(
                default_endpoints(self.config),
                self.get_runtime(),
                probe_timeout=self.config.probe_timeout,
            )
        return self.supervisor

    def get_store(self) -> VectorStore:
        """The vector store, starting the vector engine if needed."""
        if self.store is None:
            self.get_supervisor().ensure_running(SERVICE_RAVENDB)
            self.store = create_store(self.config)
        return self.store

    def get_llm(self) -> LLMService:
        if self.llm_service is None:
            self.backend = resolve_backend(self.config)
            click.echo(f"Using {self.backend.display_name} backend", err=True)
            self.llm_service = get_llm_service(self.backend, self.config)
        return self.llm_service

    def get_parser(self) -> DocumentParser:
        """A document parser, using docling when it can be started."""
        if self.parser is None:
            states = self.get_supervisor().ensure_all([SERVICE_DOCLING])
            docling = None
            if states.get(SERVICE_DOCLING) == ServiceState.HEALTHY:
                docling = DoclingClient(
                    self.config.docling_url,
                    timeout=self.config.timeout,
                    max_retries=self.config.max_retries,
                )
            else:
                click.echo(
                    "Warning: docling is not available, only text and PDF files will be parsed",
                    err=True,
                )
            self.parser = DocumentParser(docling)
        return self.parser

    def get_registry(self) -> Registry:
        if self.registry is None:
            self.registry = DockerRegistry()
        return self.registry


def echo_error(error: BaseException) -> None:
    """Print an error as ``✗ <Category>: <message>`` on stderr."""
    category = error.category if isinstance(error, KnowError) else "Error"
    click.echo(f"✗ {category}: {error}", err=True)


def handle_errors(func):
    """Turn know errors into exit code 1 and Ctrl-C into exit code 130."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except KeyboardInterrupt:
            click.echo("\nInterrupted", err=True)
            sys.exit(EXIT_INTERRUPTED)
        except (KnowError, FileNotFoundError, ValueError) as e:
            echo_error(e)
            sys.exit(EXIT_FAILURE)

    return wrapper


def format_answer(result: Answer) -> str:
    """Format an answer and its sources for display."""
    lines = [result.text, ""]
    if not result.context_used:
        lines.append("(No matching documents were found; answered without context.)")
    elif result.sources:
        lines.append("Sources:")
        lines.extend(f"  - {source}" for source in result.sources)
    return "\n".join(lines)


def format_search_result(index: int, source: str, chunk_index: int, score: float, text: str,
                         max_length: int = CONTENT_PREVIEW_LENGTH) -> str:
    """Format a retrieved chunk for display.

    Args:
        index: Result number (1-based)
        source: Source path of the chunk
        chunk_index: Position of the chunk in its document
        score: Similarity score
        text: Chunk text
        max_length: Maximum content length before truncation

    Returns:
        Formatted string for display
    """
    display_content = text[:max_length] + "..." if len(text) > max_length else text
    lines = [
        f"{index}. [{source} - chunk #{chunk_index}] (score: {score:.4f})",
        f"   {display_content}",
        "",
    ]
    return "\n".join(lines)


def format_report(report: IngestReport) -> str:
    """Summarize an ingestion report."""
    lines = [
        f"Ingested {report.chunks_written} chunks from {report.files_processed} file(s) "
        f"into collection '{report.collection}'",
    ]
    if report.files_skipped:
        lines.append(f"Skipped {report.files_skipped} unchanged or empty file(s)")
    if report.stale_chunks_deleted:
        lines.append(f"Removed {report.stale_chunks_deleted} stale chunk(s)")
    if report.failures:
        lines.append(f"{len(report.failures)} file(s) failed:")
        lines.extend(
            f"  ✗ {failure.path}: {failure.category}: {failure.reason}" for failure in report.failures
        )
    return "\n".join(lines)
