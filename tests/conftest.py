"""Pytest configuration and shared fixtures for the test suite."""

import re
import shutil
from pathlib import Path

import pytest
import requests

from know.config import KnowConfig
from know.exceptions import EmbedError, GenerationFailed, StoreError, TransferError
from know.service.database import CollectionInfo, ScoredPoint, VectorPoint, cosine_similarity
from know.service.database.store import check_compatible, check_dimension
from know.service.rag import CHUNK_SEPARATOR

OLLAMA_URL = "http://localhost:11434"
RAVENDB_URL = "http://localhost:8081"

# Words the fake embedding model knows; everything else only moves the
# constant out-of-vocabulary component.
VOCABULARY = [
    "refund", "refunds", "returned", "item", "processed", "money", "back",
    "shipping", "ship", "delivery", "business", "days", "weeks", "order",
    "policy", "price", "warranty", "support", "account", "password",
]


# Service availability checks
def ollama_available() -> bool:
    """Check if Ollama server is running and accessible.

    Returns:
        True if Ollama is available, False otherwise
    """
    try:
        response = requests.get(f"{OLLAMA_URL}/api/tags", timeout=2)
        return response.status_code == 200
    except requests.RequestException:
        return False


def ravendb_available() -> bool:
    """Check if RavenDB server is running and accessible.

    Returns:
        True if RavenDB is available, False otherwise
    """
    try:
        response = requests.get(f"{RAVENDB_URL}/databases", timeout=2)
        return response.status_code in (200, 401)  # Auth required is OK
    except requests.RequestException:
        return False


def bag_of_words(text: str) -> list[float]:
    """Deterministic embedding: vocabulary word counts plus a constant component."""
    vector = [0.0] * (len(VOCABULARY) + 1)
    for word in re.findall(r"[a-z0-9]+", text.lower()):
        if word in VOCABULARY:
            vector[VOCABULARY.index(word)] += 1.0
    vector[-1] = 0.1
    return vector


class FakeLLM:
    """In-memory LLM service.

    Embeddings are bag-of-words vectors over ``VOCABULARY``. Responses echo
    the text of the first context chunk, so tests can check what the model saw.
    """

    name = "fake"

    def __init__(self, model: str = "fake-chat", embed_model: str = "fake-embed", dimension=None):
        self.model = model
        self.embed_model = embed_model
        self.dimension = dimension
        self.embed_calls: list[list[str]] = []
        self.embed_models: list[str | None] = []
        self.messages: list[list[dict]] = []
        self.fail_embed_on: str | None = None
        self.fail_generate = False

    def generate_embeddings(self, texts: list[str], model: str | None = None) -> list[list[float]]:
        self.embed_calls.append(list(texts))
        self.embed_models.append(model)
        if self.fail_embed_on and any(self.fail_embed_on in text for text in texts):
            raise EmbedError(f"cannot embed text containing {self.fail_embed_on!r}")
        vectors = [bag_of_words(text) for text in texts]
        if self.dimension is not None:
            vectors = [(vector + [0.0] * self.dimension)[: self.dimension] for vector in vectors]
        return vectors

    async def generate_response(self, messages: list[dict]) -> str:
        self.messages.append(messages)
        if self.fail_generate:
            raise GenerationFailed("fake model is down")
        system = messages[0]["content"]
        if "Context:\n" not in system:
            return "I could not find anything about that."
        context = system.split("Context:\n", 1)[1]
        first_chunk = context.split(CHUNK_SEPARATOR)[0]
        return first_chunk.split("\n", 1)[1] if "\n" in first_chunk else first_chunk

    @property
    def total_embedded(self) -> int:
        return sum(len(batch) for batch in self.embed_calls)


class FakeVectorStore:
    """In-memory ``VectorStore`` with the same validation as the RavenDB store."""

    def __init__(self):
        self.collections: dict[str, CollectionInfo] = {}
        self.points: dict[str, dict[str, VectorPoint]] = {}
        self.upserted: list[str] = []
        self.deleted: list[str] = []
        self.available = True

    def _check_available(self):
        if not self.available:
            raise StoreError(StoreError.UNAVAILABLE, "fake store is down")

    def _require(self, name: str) -> CollectionInfo:
        self._check_available()
        if name not in self.collections:
            raise StoreError(StoreError.NOT_FOUND, f"Collection '{name}' does not exist")
        return self.get_collection(name)

    def is_available(self) -> bool:
        return self.available

    def ensure_database(self) -> None:
        self._check_available()

    def create_collection(self, name, dimension, embed_model):
        self._check_available()
        if name in self.collections:
            existing = self.get_collection(name)
            check_compatible(existing, dimension, embed_model)
            return existing
        self.collections[name] = CollectionInfo(name, dimension, embed_model)
        self.points[name] = {}
        return self.collections[name]

    def get_collection(self, name):
        self._check_available()
        info = self.collections.get(name)
        if info is None:
            return None
        return CollectionInfo(info.name, info.dimension, info.embed_model, len(self.points[name]))

    def list_collections(self):
        return sorted(self.collections)

    def upsert(self, collection, points):
        info = self._require(collection)
        for point in points:
            check_dimension(info, point.vector)
        for point in points:
            self.points[collection][point.id] = point
            self.upserted.append(point.id)

    def get(self, collection, ids):
        self._check_available()
        stored = self.points.get(collection, {})
        return [stored[point_id] for point_id in ids if point_id in stored]

    def delete(self, collection, ids):
        self._check_available()
        for point_id in ids:
            if self.points.get(collection, {}).pop(point_id, None) is not None:
                self.deleted.append(point_id)

    def scroll(self, collection):
        self._require(collection)
        return iter(list(self.points[collection].values()))

    def search(self, collection, vector, top_k):
        info = self._require(collection)
        check_dimension(info, vector)
        hits = [
            ScoredPoint(point.id, cosine_similarity(vector, point.vector), point.payload)
            for point in self.points[collection].values()
        ]
        hits.sort(key=lambda hit: hit.score, reverse=True)
        return hits[:top_k]

    def drop_collection(self, name):
        if name not in self.collections:
            return False
        del self.collections[name]
        del self.points[name]
        return True


class FakeRuntime:
    """Container runtime that records calls and marks started services healthy."""

    def __init__(self, healthy: set[str] | None = None, start_works: bool = True):
        self.healthy = set(healthy or ())
        self.start_works = start_works
        self.up_calls: list[list[str]] = []
        self.down_calls = 0

    def up(self, services):
        self.up_calls.append(list(services))
        if self.start_works:
            self.healthy.update(services)

    def down(self):
        self.down_calls += 1
        self.healthy.clear()

    def ps(self):
        return "NAME      STATUS\n" + "\n".join(f"{name}   running" for name in sorted(self.healthy))

    def probe(self, endpoint):
        return None if endpoint.name in self.healthy else "connection refused"


class FakeRegistry:
    """Registry keeping pushed archives in a local directory."""

    def __init__(self, root: Path):
        self.root = root
        self.root.mkdir(parents=True, exist_ok=True)
        self.pushed: list[str] = []

    def _path(self, ref: str) -> Path:
        return self.root / (ref.replace("/", "__").replace(":", "--") + ".tar.gz")

    def push(self, archive, ref):
        shutil.copyfile(archive, self._path(ref))
        self.pushed.append(ref)

    def pull(self, ref, dest_dir):
        source = self._path(ref)
        if not source.exists():
            raise TransferError(f"manifest for {ref} not found")
        target = Path(dest_dir) / "collection.tar.gz"
        shutil.copyfile(source, target)
        return target


# Fixtures
@pytest.fixture
def config() -> KnowConfig:
    """Configuration with small chunks and no environment dependence."""
    return KnowConfig(
        ravendb_url=RAVENDB_URL,
        ravendb_database="know-test",
        chunk_size=200,
        chunk_overlap=20,
        embed_batch_size=2,
        embed_concurrency=2,
    )


@pytest.fixture
def fake_llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def fake_store() -> FakeVectorStore:
    return FakeVectorStore()


@pytest.fixture
def fake_runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture
def fake_registry(tmp_path) -> FakeRegistry:
    return FakeRegistry(tmp_path / "registry")


@pytest.fixture
def docs_dir(tmp_path) -> Path:
    """A small document tree: refunds and shipping policies plus an ignored file."""
    root = tmp_path / "docs"
    root.mkdir()
    (root / "a.txt").write_text(
        "Refunds are processed within 14 days of receiving the returned item."
    )
    (root / "b.txt").write_text(
        "Shipping takes 3 to 5 business days for every order within the country."
    )
    (root / "notes.log").write_text("This file should not be ingested.")
    return root


# Service fixtures with skip markers
@pytest.fixture
def ollama_service():
    """Provide OllamaService instance, skip if Ollama not available.

    Raises:
        pytest.skip: If Ollama server is not running
    """
    if not ollama_available():
        pytest.skip(f"Ollama server not running on {OLLAMA_URL}")

    from know.llm import OllamaService

    return OllamaService(host=OLLAMA_URL, model="llama3.2", embed_model="nomic-embed-text")


@pytest.fixture
def ravendb_store(tmp_path):
    """Provide a RavenDBVectorStore on a throwaway database, skip if RavenDB not available.

    Raises:
        pytest.skip: If RavenDB server is not running
    """
    if not ravendb_available():
        pytest.skip(f"RavenDB server not running on {RAVENDB_URL}")

    from know.service.database import RavenDBVectorStore

    store = RavenDBVectorStore(url=RAVENDB_URL, database=f"know-test-{tmp_path.name}")
    store.ensure_database()
    yield store
    store.close()


@pytest.fixture
def make_llm():
    """Factory for fake LLM services with custom model names or dimensions."""
    return FakeLLM


@pytest.fixture
def make_runtime():
    """Factory for fake container runtimes with custom behaviour."""
    return FakeRuntime
