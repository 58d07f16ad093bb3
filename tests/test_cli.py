"""Tests for the CLI module."""

from unittest.mock import patch

import pytest
from click.testing import CliRunner

from know.client.cli import main
from know.client.cli_helpers import CliContext
from know.exceptions import BackendUnavailable
from know.service.parsing import DocumentParser
from know.service.supervisor import ServiceSupervisor, default_endpoints


@pytest.fixture
def supervisor(config, fake_runtime):
    fake_runtime.healthy.update({"ravendb", "docling"})
    return ServiceSupervisor(
        default_endpoints(config), fake_runtime, probe=fake_runtime.probe, sleep=lambda _: None
    )


@pytest.fixture
def make_context(config, fake_llm, fake_store, fake_runtime, fake_registry, supervisor):
    """Build a CliContext wired to the in-memory fakes."""

    def make(**overrides):
        values = dict(
            config=config,
            runtime=fake_runtime,
            supervisor=supervisor,
            store=fake_store,
            llm_service=fake_llm,
            registry=fake_registry,
            parser=DocumentParser(),
        )
        values.update(overrides)
        return CliContext(**values)

    return make


class TestCLI:
    """Shared setup for CLI tests."""

    def setup_method(self):
        """Set up test fixtures."""
        self.runner = CliRunner()

    def invoke(self, context, *args, **kwargs):
        return self.runner.invoke(main, list(args), obj=context, **kwargs)


class TestIngestCLI(TestCLI):
    """Tests for the ingest CLI command."""

    def test_ingest_directory(self, make_context, fake_store, docs_dir):
        result = self.invoke(make_context(), "ingest", str(docs_dir))

        assert result.exit_code == 0, result.output
        assert "Ingested 2 chunks from 2 file(s) into collection 'know'" in result.output
        assert fake_store.get_collection("know").points_count == 2

    def test_ingest_twice_skips_unchanged(self, make_context, docs_dir):
        context = make_context()
        self.invoke(context, "ingest", str(docs_dir))

        result = self.invoke(context, "ingest", str(docs_dir))

        assert result.exit_code == 0
        assert "Ingested 0 chunks" in result.output
        assert "Skipped 2 unchanged or empty file(s)" in result.output

    def test_ingest_custom_collection_and_extensions(self, make_context, fake_store, docs_dir):
        (docs_dir / "faq.md").write_text("# FAQ\n\nRefunds go back to the original payment method.")

        result = self.invoke(
            make_context(), "ingest", str(docs_dir), "--extensions", "md", "--collection", "faq"
        )

        assert result.exit_code == 0
        assert fake_store.get_collection("faq").points_count == 1
        assert fake_store.get_collection("know") is None

    def test_ingest_failure_exits_nonzero(self, make_context, fake_llm, docs_dir):
        fake_llm.fail_embed_on = "Shipping"

        result = self.invoke(make_context(), "ingest", str(docs_dir))

        assert result.exit_code == 1
        assert "1 file(s) failed" in result.output
        assert "EmbedError" in result.output

    def test_ingest_nonexistent_directory(self, make_context):
        result = self.invoke(make_context(), "ingest", "/nonexistent/path")

        assert result.exit_code != 0
        assert "does not exist" in result.output.lower()

    def test_ingest_missing_argument(self, make_context):
        result = self.invoke(make_context(), "ingest")
        assert result.exit_code != 0
        assert "Missing argument" in result.output


class TestRunCLI(TestCLI):
    """Tests for the run CLI command."""

    def test_run_answers_with_sources(self, make_context, docs_dir):
        context = make_context()
        self.invoke(context, "ingest", str(docs_dir))

        result = self.invoke(context, "run", "How", "long", "do", "refunds", "take?")

        assert result.exit_code == 0, result.output
        assert "14 days" in result.output
        assert "Sources:" in result.output
        assert (docs_dir / "a.txt").resolve().as_posix() in result.output

    def test_run_show_context(self, make_context, docs_dir):
        context = make_context()
        self.invoke(context, "ingest", str(docs_dir))

        result = self.invoke(context, "run", "refunds", "--show-context", "--top-k", "1")

        assert result.exit_code == 0
        assert "1. [" in result.output
        assert "2. [" not in result.output

    def test_run_empty_collection_fails(self, make_context):
        result = self.invoke(make_context(), "run", "anything")

        assert result.exit_code == 1
        assert "✗ RetrievalFailed:" in result.output

    def test_run_without_context_when_allowed(self, make_context, config):
        context = make_context(config=config.with_overrides(no_context_policy="answer"))

        result = self.invoke(context, "run", "anything")

        assert result.exit_code == 0
        assert "answered without context" in result.output

    def test_collection_flag(self, make_context, docs_dir):
        context = make_context()
        self.invoke(context, "ingest", str(docs_dir), "--collection", "handbook")

        result = self.invoke(context, "--collection", "handbook", "run", "refunds")

        assert result.exit_code == 0
        assert "14 days" in result.output

    def test_run_requires_question(self, make_context):
        result = self.invoke(make_context(), "run")
        assert result.exit_code != 0

    @patch("know.client.cli_helpers.resolve_backend")
    def test_no_backend(self, mock_resolve, make_context):
        mock_resolve.side_effect = BackendUnavailable(
            "No LLM backend available.", {"ollama": "connection refused"}
        )

        result = self.invoke(make_context(llm_service=None), "run", "anything")

        assert result.exit_code == 1
        assert "✗ BackendUnavailable: No LLM backend available." in result.output
        assert "ollama: connection refused" in result.output

    @patch("know.client.cli.asyncio.run")
    def test_interrupt_exits_130(self, mock_async_run, make_context):
        mock_async_run.side_effect = KeyboardInterrupt

        result = self.invoke(make_context(), "run", "anything")

        assert result.exit_code == 130

    def test_vector_engine_cannot_start(self, make_context, config, make_runtime):
        runtime = make_runtime(start_works=False)
        supervisor = ServiceSupervisor(
            default_endpoints(config),
            runtime,
            max_attempts=2,
            ready_timeout=0,
            probe=runtime.probe,
            sleep=lambda _: None,
        )

        result = self.invoke(
            make_context(store=None, runtime=runtime, supervisor=supervisor), "run", "anything"
        )

        assert result.exit_code == 1
        assert "✗ ServiceStartFailed: Service 'ravendb' not healthy after 2" in result.output
        assert len(runtime.up_calls) == 2

    def test_invalid_backend_choice(self, make_context):
        result = self.invoke(make_context(), "--backend", "gemini", "run", "anything")
        assert result.exit_code == 2


class TestCleanCLI(TestCLI):
    """Tests for the clean CLI command."""

    def test_clean_with_yes(self, make_context, fake_store, docs_dir):
        context = make_context()
        self.invoke(context, "ingest", str(docs_dir))

        result = self.invoke(context, "clean", "--yes")

        assert result.exit_code == 0
        assert "✓ Collection 'know' deleted" in result.output
        assert fake_store.get_collection("know") is None

    def test_clean_prompt_cancelled(self, make_context, fake_store, docs_dir):
        context = make_context()
        self.invoke(context, "ingest", str(docs_dir))

        result = self.invoke(context, "clean", "know", input="n\n")

        assert result.exit_code == 0
        assert "It contains 2 chunk(s)" in result.output
        assert "Deletion cancelled." in result.output
        assert fake_store.get_collection("know") is not None

    def test_clean_missing_collection(self, make_context):
        result = self.invoke(make_context(), "clean", "nope", "-y")
        assert result.exit_code == 0
        assert "does not exist" in result.output


class TestServiceCLI(TestCLI):
    """Tests for status and down."""

    def test_status(self, make_context, docs_dir):
        context = make_context()
        self.invoke(context, "ingest", str(docs_dir))

        result = self.invoke(context, "status")

        assert result.exit_code == 0
        assert "✓ ravendb: healthy" in result.output
        assert "✓ docling: healthy" in result.output
        assert "know: 2 chunks" in result.output

    def test_status_with_services_down(self, make_context, fake_runtime):
        fake_runtime.healthy.clear()

        result = self.invoke(make_context(), "status")

        assert result.exit_code == 0
        assert "✗ ravendb: stopped" in result.output
        assert "chunks" not in result.output

    def test_down(self, make_context, fake_runtime):
        result = self.invoke(make_context(), "down")

        assert result.exit_code == 0
        assert fake_runtime.down_calls == 1
        assert "Services stopped" in result.output


class TestTransferCLI(TestCLI):
    """Tests for push and pull."""

    def test_push_and_pull(self, make_context, fake_store, fake_registry, docs_dir):
        context = make_context()
        self.invoke(context, "ingest", str(docs_dir))

        pushed = self.invoke(context, "push", "me/handbook:v1")
        pulled = self.invoke(context, "pull", "me/handbook:v1", "--collection", "copy")

        assert pushed.exit_code == 0, pushed.output
        assert "Pushed 2 points from 'know' to me/handbook:v1" in pushed.output
        assert pulled.exit_code == 0, pulled.output
        assert "Pulled 2 points" in pulled.output
        assert fake_store.get_collection("copy").points_count == 2

    def test_push_invalid_reference(self, make_context):
        result = self.invoke(make_context(), "push", "not-a-ref")
        assert result.exit_code == 1
        assert "✗ TransferError:" in result.output

    def test_pull_unknown_image(self, make_context):
        result = self.invoke(make_context(), "pull", "me/missing:v1")
        assert result.exit_code == 1
        assert "not found" in result.output


class TestVersion(TestCLI):
    def test_version(self, make_context):
        result = self.invoke(make_context(), "--version")
        assert result.exit_code == 0
        assert "0.1.0" in result.output
