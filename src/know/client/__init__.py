"""User-facing entry points: the ``know`` CLI, ingestion and the API server."""
