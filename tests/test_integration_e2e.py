"""End-to-end tests for the complete RAG pipeline."""

import pytest

from know.client.ingest import Ingestor
from know.config import KnowConfig
from know.service import transfer
from know.service.parsing import DocumentParser
from know.service.rag import answer


class TestRAGPipeline:
    """End-to-end tests for the complete RAG workflow against in-memory services."""

    @pytest.mark.asyncio
    async def test_ingest_then_ask(self, fake_llm, fake_store, config, docs_dir):
        """Documents → chunks → embeddings → storage → search → answer."""
        ingestor = Ingestor(fake_llm, fake_store, DocumentParser(), config)
        report = await ingestor.ingest(docs_dir, None, "handbook")
        assert report.ok

        refunds = await answer(
            "How long do refunds take?", "handbook", llm=fake_llm, store=fake_store, config=config
        )
        shipping = await answer(
            "How many days does shipping take?", "handbook", llm=fake_llm, store=fake_store, config=config
        )

        assert "14 days" in refunds.text
        assert refunds.sources[0] == (docs_dir / "a.txt").resolve().as_posix()
        assert "3 to 5 business days" in shipping.text
        assert shipping.sources[0] == (docs_dir / "b.txt").resolve().as_posix()

    @pytest.mark.asyncio
    async def test_edited_document_replaces_answer(self, fake_llm, fake_store, config, docs_dir):
        ingestor = Ingestor(fake_llm, fake_store, DocumentParser(), config)
        await ingestor.ingest(docs_dir, "txt", "handbook")

        (docs_dir / "a.txt").write_text("Refunds are now processed within 30 days.")
        report = await ingestor.ingest(docs_dir, "txt", "handbook")

        assert report.files_processed == 1
        assert report.files_skipped == 1
        result = await answer("refunds", "handbook", llm=fake_llm, store=fake_store, config=config)
        assert "30 days" in result.text
        assert fake_store.get_collection("handbook").points_count == 2

    @pytest.mark.asyncio
    async def test_published_collection_answers_the_same(
        self, fake_llm, fake_store, fake_registry, config, docs_dir
    ):
        await Ingestor(fake_llm, fake_store, DocumentParser(), config).ingest(docs_dir, "txt", "handbook")
        transfer.push("handbook", "me/handbook:v1", store=fake_store, registry=fake_registry)
        transfer.pull("me/handbook:v1", "mirror", store=fake_store, registry=fake_registry)

        original = await answer("refunds", "handbook", llm=fake_llm, store=fake_store, config=config)
        mirrored = await answer("refunds", "mirror", llm=fake_llm, store=fake_store, config=config)

        assert mirrored.text == original.text
        assert mirrored.sources == original.sources


class TestRAGPipelineIntegration:
    """End-to-end tests against live Ollama and RavenDB servers."""

    @pytest.mark.integration
    @pytest.mark.requires_ollama
    @pytest.mark.requires_ravendb
    @pytest.mark.slow
    @pytest.mark.asyncio
    async def test_full_rag_pipeline(self, ollama_service, ravendb_store, docs_dir):
        config = KnowConfig(chunk_size=200, chunk_overlap=20)
        report = await Ingestor(ollama_service, ravendb_store, DocumentParser(), config).ingest(
            docs_dir, "txt", "e2e"
        )
        assert report.ok
        assert ravendb_store.get_collection("e2e").points_count == 2

        result = await answer(
            "How long do refunds take?", "e2e", llm=ollama_service, store=ravendb_store, config=config
        )

        assert result.sources[0] == (docs_dir / "a.txt").resolve().as_posix()
        assert result.text
        ravendb_store.drop_collection("e2e")
