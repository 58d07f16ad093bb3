"""Shared HTTP plumbing: retrying sessions, probes and transient-error retries.

Every network call know makes goes through one of two paths:

- ``requests`` sessions built by ``build_session``, which retry connection
  errors and 5xx responses through urllib3's ``Retry`` and never retry 4xx.
- ``retry_transient`` for clients that own their own transport (the
  ``ollama`` library), applying the same policy by hand.
"""

import logging
import time
from collections.abc import Callable
from typing import Any, TypeVar

import httpx
import ollama
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from know.constants import DEFAULT_MAX_RETRIES, DEFAULT_RETRY_BACKOFF, RETRY_STATUS_CODES

logger = logging.getLogger(__name__)

T = TypeVar("T")


def build_session(
    max_retries: int = DEFAULT_MAX_RETRIES,
    backoff_factor: float = DEFAULT_RETRY_BACKOFF,
    headers: dict[str, str] | None = None,
) -> requests.Session:
    """Create a ``requests`` session that retries transient failures.

    Args:
        max_retries: Retries for connection errors and 5xx responses
        backoff_factor: urllib3 exponential backoff factor in seconds
        headers: Default headers for every request

    Returns:
        requests.Session: Configured session. After the last retry the final
        response is returned so callers can inspect the status.
    """
    retry = Retry(
        total=max_retries,
        connect=max_retries,
        read=max_retries,
        status=max_retries,
        status_forcelist=RETRY_STATUS_CODES,
        allowed_methods=None,  # POST is safe to retry: every write is an idempotent upsert
        backoff_factor=backoff_factor,
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry)
    session = requests.Session()
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    if headers:
        session.headers.update(headers)
    return session


def probe_url(
    url: str,
    timeout: float,
    accept_status: tuple[int, ...] = (200,),
    headers: dict[str, str] | None = None,
) -> str | None:
    """Issue a single GET used as a liveness/readiness probe.

    Args:
        url: URL to probe
        timeout: Timeout in seconds
        accept_status: Status codes that count as alive
        headers: Optional request headers

    Returns:
        None if the endpoint is alive, otherwise a short reason string.
    """
    try:
        response = requests.get(url, timeout=timeout, headers=headers)
    except requests.Timeout:
        return f"no response within {timeout:g}s"
    except requests.RequestException as e:
        return f"unreachable ({type(e).__name__})"
    if response.status_code not in accept_status:
        return f"HTTP {response.status_code}"
    return None


def is_transient(exc: BaseException) -> bool:
    """Whether an exception is worth retrying (connection, timeout, 5xx)."""
    if isinstance(exc, ollama.ResponseError):
        return exc.status_code >= 500
    if isinstance(exc, requests.HTTPError):
        return exc.response is not None and exc.response.status_code >= 500
    return isinstance(
        exc,
        (
            ConnectionError,
            TimeoutError,
            httpx.TransportError,
            requests.ConnectionError,
            requests.Timeout,
        ),
    )


def retry_transient(
    func: Callable[..., T],
    *args: Any,
    attempts: int = DEFAULT_MAX_RETRIES + 1,
    backoff: float = DEFAULT_RETRY_BACKOFF,
    sleep: Callable[[float], None] = time.sleep,
    **kwargs: Any,
) -> T:
    """Call ``func`` and retry it on transient failures.

    Args:
        func: Callable to invoke
        *args: Positional arguments for ``func``
        attempts: Total attempts including the first call
        backoff: Base delay; attempt ``n`` waits ``backoff * 2**(n-1)`` seconds
        sleep: Sleep function (injectable for tests)
        **kwargs: Keyword arguments for ``func``

    Returns:
        Whatever ``func`` returns.

    Raises:
        The last exception when attempts are exhausted or the error is not transient.
    """
    attempt = 1
    while True:
        try:
            return func(*args, **kwargs)
        except Exception as e:
            if attempt >= attempts or not is_transient(e):
                raise
            delay = backoff * (2 ** (attempt - 1))
            logger.warning(
                f"⚠️ Transient error ({type(e).__name__}: {e}), "
                f"retrying in {delay:.1f}s ({attempt}/{attempts - 1})"
            )
            sleep(delay)
            attempt += 1
