"""Application-wide constants and defaults for know.

This module provides a single source of truth for configuration defaults,
magic numbers, and other constants used throughout the application.
"""

# =============================================================================
# Backend Kinds and Defaults
# =============================================================================
BACKEND_DOCKER = "docker"
BACKEND_OLLAMA = "ollama"
BACKEND_OPENAI = "openai"
BACKEND_KINDS = (BACKEND_DOCKER, BACKEND_OLLAMA, BACKEND_OPENAI)

# Local model runners are probed in this order during auto-detection
LOCAL_BACKENDS = (BACKEND_DOCKER, BACKEND_OLLAMA)

BACKEND_DEFAULTS = {
    BACKEND_DOCKER: {
        "base_url": "http://localhost:12434/engines/llama.cpp/v1",
        "model": "ai/llama3.2:3B-Q8_0",
        "embed_model": "ai/mxbai-embed-large:335M-F16",
    },
    BACKEND_OLLAMA: {
        "base_url": "http://localhost:11434",
        "model": "llama3.2",
        "embed_model": "nomic-embed-text",
    },
    BACKEND_OPENAI: {
        "base_url": "https://api.openai.com/v1",
        "model": "gpt-4o",
        "embed_model": "text-embedding-3-small",
    },
}

BACKEND_DISPLAY_NAMES = {
    BACKEND_DOCKER: "Docker Model Runner",
    BACKEND_OLLAMA: "Ollama",
    BACKEND_OPENAI: "OpenAI",
}

# =============================================================================
# Default URLs and Names
# =============================================================================
DEFAULT_RAVENDB_URL = "http://localhost:8081"  # 8080 is the API server default
DEFAULT_RAVENDB_DATABASE = "know"
DEFAULT_DOCLING_URL = "http://localhost:5001"
DEFAULT_COLLECTION = "know"
COLLECTION_RECORDS = "KnowCollections"  # RavenDB collection holding collection metadata

# =============================================================================
# Ingestion Settings
# =============================================================================
DEFAULT_EXTENSIONS = "md,txt,pdf,docx,html"
DEFAULT_CHUNK_SIZE = 512  # characters
DEFAULT_CHUNK_OVERLAP = 64  # characters
DEFAULT_EMBED_BATCH_SIZE = 16
DEFAULT_EMBED_CONCURRENCY = 4

# Formats read directly from disk; everything else goes through docling
PLAIN_TEXT_EXTENSIONS = {"md", "markdown", "txt", "text", "rst", "csv", "json", "yaml", "yml"}
RICH_EXTENSIONS = {"pdf", "docx", "pptx", "xlsx", "html", "htm"}

# =============================================================================
# Retrieval Settings
# =============================================================================
DEFAULT_TOP_K = 5
DEFAULT_MIN_SCORE = 0.0
DEFAULT_MAX_CONTEXT_CHARS = 6000
NO_CONTEXT_FAIL = "fail"
NO_CONTEXT_ANSWER = "answer"
NO_CONTEXT_POLICIES = (NO_CONTEXT_FAIL, NO_CONTEXT_ANSWER)
SERVED_MODEL_NAME = "know-rag"

SYSTEM_PROMPT = (
    "You are a helpful assistant. Answer the user's question using only the context "
    "provided below. If the context doesn't contain relevant information, say so."
)
NO_CONTEXT_SYSTEM_PROMPT = (
    "You are a helpful assistant. No documents from the knowledge base matched the "
    "user's question. Answer from general knowledge and say that no sources were found."
)

# =============================================================================
# Network Settings
# =============================================================================
DEFAULT_TIMEOUT = 120.0  # seconds, per network call
DEFAULT_PROBE_TIMEOUT = 3.0  # seconds, liveness/readiness probes
DEFAULT_EMBED_PROBE_TIMEOUT = 30.0  # seconds, test embedding during backend detection
DEFAULT_MAX_RETRIES = 2  # retries for transient failures (connection, 5xx)
DEFAULT_RETRY_BACKOFF = 0.5  # seconds, base for exponential backoff
RETRY_STATUS_CODES = (500, 502, 503, 504)

# =============================================================================
# Service Supervision
# =============================================================================
SERVICE_RAVENDB = "ravendb"
SERVICE_DOCLING = "docling"
DEFAULT_START_ATTEMPTS = 3
DEFAULT_READY_TIMEOUT = 30.0  # seconds to wait for a started service
DEFAULT_POLL_INTERVAL = 1.0  # seconds between readiness probes

# =============================================================================
# Collection Transfer
# =============================================================================
ARCHIVE_FORMAT = "know-collection"
ARCHIVE_VERSION = 1
ARCHIVE_NAME = "collection.tar.gz"

# =============================================================================
# Display Settings
# =============================================================================
CONTENT_PREVIEW_LENGTH = 200  # Characters to show in content previews
