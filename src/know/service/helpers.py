"""Helpers shared by the command line and the HTTP server."""

import asyncio
import logging
from typing import Any

from know.config import KnowConfig
from know.service.database import RavenDBVectorStore

logger = logging.getLogger(__name__)


def run_async(coro: Any) -> Any:
    """Run a coroutine to completion on a fresh event loop.

    Flask request handlers are synchronous and may run on any server thread,
    so each call gets its own loop, closed afterwards.

    Args:
        coro: An awaitable coroutine to execute

    Returns:
        The result of the coroutine

    Note:
        For CLI commands, prefer using asyncio.run() directly.
    """
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        asyncio.set_event_loop(None)
        loop.close()


def create_store(config: KnowConfig) -> RavenDBVectorStore:
    """Create the vector store for a configuration and make sure its database exists."""
    store = RavenDBVectorStore(
        url=config.ravendb_url,
        database=config.ravendb_database,
        timeout=config.timeout,
        max_retries=config.max_retries,
    )
    store.ensure_database()
    logger.debug(f"Connected to RavenDB at {config.ravendb_url}/{config.ravendb_database}")
    return store
