"""Command-line interface for know using Click."""

import asyncio
from pathlib import Path

import click
from dotenv import load_dotenv

from know import __version__
from know.client.app import DEFAULT_HOST, DEFAULT_PORT, create_app, serve as run_server
from know.client.cli_helpers import (
    EXIT_FAILURE,
    CliContext,
    echo_error,
    format_answer,
    format_report,
    format_search_result,
    handle_errors,
    setup_logging,
)
from know.client.ingest import Ingestor
from know.config import KnowConfig
from know.constants import BACKEND_KINDS, SERVICE_RAVENDB
from know.exceptions import ContainerRuntimeError
from know.service import transfer
from know.service.rag import answer
from know.service.supervisor import ServiceState

# Load environment variables
load_dotenv()


@click.group()
@click.version_option(__version__, prog_name="know")
@click.option(
    "--backend",
    type=click.Choice(BACKEND_KINDS, case_sensitive=False),
    default=None,
    help="LLM backend (default: from KNOW_BACKEND or auto-detect)",
)
@click.option("--base-url", type=str, default=None, help="Base URL of the LLM backend API")
@click.option("--model", type=str, default=None, help="Generation model name")
@click.option("--embed-model", type=str, default=None, help="Embedding model name")
@click.option(
    "--collection",
    type=str,
    default=None,
    help="Collection to use (default: from KNOW_COLLECTION or 'know')",
)
@click.pass_context
def main(
    ctx: click.Context,
    backend: str | None,
    base_url: str | None,
    model: str | None,
    embed_model: str | None,
    collection: str | None,
) -> None:
    """know: a personal knowledge base with retrieval-augmented answers.

    Example:
        know ingest ./docs
        know run "How long do refunds take?"
        know serve --port 8080
    """
    setup_logging()
    obj = ctx.ensure_object(CliContext)
    overrides = {
        "backend": backend.lower() if backend else None,
        "base_url": base_url,
        "model": model,
        "embed_model": embed_model,
        "collection": collection,
    }
    try:
        if obj.config is None:
            obj.config = KnowConfig.from_env(**overrides)
        else:
            obj.config = obj.config.with_overrides(**overrides)
    except ValueError as e:
        echo_error(e)
        ctx.exit(EXIT_FAILURE)


@main.command()
@click.argument("question", nargs=-1, required=True)
@click.option("--top-k", type=click.IntRange(min=1), default=None, help="Number of chunks to retrieve")
@click.option("--show-context", is_flag=True, default=False, help="Print the retrieved chunks")
@click.pass_obj
@handle_errors
def run(obj: CliContext, question: tuple[str, ...], top_k: int | None, show_context: bool) -> None:
    """Answer QUESTION from the documents in the collection.

    Example:
        know run "How long do refunds take?"
        know --collection policies run What is the shipping policy
    """
    text = " ".join(question)
    store = obj.get_store()
    llm = obj.get_llm()
    result = asyncio.run(
        answer(text, obj.config.collection, llm=llm, store=store, config=obj.config, top_k=top_k)
    )

    if show_context:
        for i, chunk in enumerate(result.chunks, 1):
            click.echo(format_search_result(i, chunk.source, chunk.chunk_index, chunk.score, chunk.text))
    click.echo(format_answer(result))


@main.command()
@click.argument("path", type=click.Path(exists=True, path_type=Path))
@click.option(
    "--extensions",
    type=str,
    default=None,
    help="Comma-separated file extensions to ingest (default: md,txt,pdf,docx,html)",
)
@click.option("--collection", type=str, default=None, help="Collection to ingest into")
@click.pass_obj
@handle_errors
def ingest(obj: CliContext, path: Path, extensions: str | None, collection: str | None) -> None:
    """Ingest a file or a directory tree at PATH into the knowledge base.

    Unchanged files are skipped; changed files replace their previous chunks.

    Example:
        know ingest ./docs
        know ingest ./docs --extensions md,pdf --collection handbook
    """
    collection = collection or obj.config.collection
    store = obj.get_store()
    parser = obj.get_parser()
    llm = obj.get_llm()

    ingestor = Ingestor(llm, store, parser, obj.config)
    report = asyncio.run(ingestor.ingest(path, extensions, collection))

    click.echo(format_report(report))
    if not report.ok:
        raise SystemExit(EXIT_FAILURE)


@main.command()
@click.option("--host", type=str, default=DEFAULT_HOST, help="Interface to bind (default: 0.0.0.0)")
@click.option("--port", type=int, default=DEFAULT_PORT, help="Port to listen on (default: 8080)")
@click.pass_obj
@handle_errors
def serve(obj: CliContext, host: str, port: int) -> None:
    """Serve an OpenAI-compatible chat completions API over the knowledge base.

    Example:
        know serve --port 8080
    """
    store = obj.get_store()
    llm = obj.get_llm()
    app = create_app(
        obj.config,
        llm_service=llm,
        store=store,
        backend_name=obj.backend.kind if obj.backend else None,
    )
    click.echo(f"🚀 Serving collection '{obj.config.collection}'")
    run_server(app, host, port)


@main.command()
@click.argument("image")
@click.option("--collection", type=str, default=None, help="Collection to publish")
@click.pass_obj
@handle_errors
def push(obj: CliContext, image: str, collection: str | None) -> None:
    """Publish the collection to a registry as IMAGE (user/name[:tag]).

    Example:
        know push myuser/handbook:v1
    """
    collection = collection or obj.config.collection
    manifest = transfer.push(
        collection, image, store=obj.get_store(), registry=obj.get_registry()
    )
    click.echo(f"✓ Pushed {manifest['point_count']} points from '{collection}' to {image}")


@main.command()
@click.argument("image")
@click.option("--collection", type=str, default=None, help="Collection to merge into")
@click.pass_obj
@handle_errors
def pull(obj: CliContext, image: str, collection: str | None) -> None:
    """Fetch a collection published as IMAGE and merge it into the store.

    Example:
        know pull myuser/handbook:v1
        know pull myuser/handbook:v1 --collection handbook-copy
    """
    count = transfer.pull(
        image, collection or obj.config.collection, store=obj.get_store(), registry=obj.get_registry()
    )
    click.echo(f"✓ Pulled {count} points from {image}")


@main.command()
@click.pass_obj
@handle_errors
def down(obj: CliContext) -> None:
    """Stop the backing services."""
    obj.get_supervisor().down()
    click.echo("✓ Services stopped")


@main.command()
@click.argument("collection", required=False)
@click.option("--yes", "-y", is_flag=True, default=False, help="Skip confirmation prompt")
@click.pass_obj
@handle_errors
def clean(obj: CliContext, collection: str | None, yes: bool) -> None:
    """Delete a COLLECTION and all its points (default: the configured collection).

    Example:
        know clean           # Will prompt for confirmation
        know clean handbook --yes
    """
    collection = collection or obj.config.collection
    store = obj.get_store()
    info = store.get_collection(collection)
    if info is None:
        click.echo(f"✓ Collection '{collection}' does not exist")
        return

    if not yes:
        click.echo(f"⚠️  WARNING: You are about to delete collection '{collection}'")
        click.echo(f"📊 It contains {info.points_count} chunk(s)\n")
        if not click.confirm("Are you sure you want to proceed?", default=False):
            click.echo("Deletion cancelled.")
            return

    store.drop_collection(collection)
    click.echo(f"✓ Collection '{collection}' deleted")


@main.command()
@click.pass_obj
@handle_errors
def status(obj: CliContext) -> None:
    """Show the state of the backing services and collections."""
    supervisor = obj.get_supervisor()
    try:
        click.echo(obj.get_runtime().ps())
    except ContainerRuntimeError as e:
        click.echo(f"Containers: unavailable ({e})")

    states = supervisor.status()
    for name, state in states.items():
        marker = "✓" if state == ServiceState.HEALTHY else "✗"
        click.echo(f"{marker} {name}: {state.value}")

    if states.get(SERVICE_RAVENDB) == ServiceState.HEALTHY:
        store = obj.get_store()
        names = store.list_collections()
        if not names:
            click.echo("No collections")
        for name in names:
            info = store.get_collection(name)
            if info is not None:
                click.echo(
                    f"  📁 {name}: {info.points_count} chunks "
                    f"(dim={info.dimension}, model={info.embed_model})"
                )


if __name__ == "__main__":
    main()
