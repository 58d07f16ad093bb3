"""Custom exceptions for know.

Every failure the orchestration engine reports is a ``KnowError``. The
``category`` attribute is the name the CLI prints and the server maps to an
error type.
"""

from __future__ import annotations


class KnowError(Exception):
    """Base exception for all know errors."""

    @property
    def category(self) -> str:
        return type(self).__name__


class BackendUnavailable(KnowError):
    """Raised when no usable LLM backend could be resolved.

    Attributes:
        attempts: Mapping of backend kind to the reason it was rejected.
    """

    def __init__(self, message: str, attempts: dict[str, str] | None = None) -> None:
        self.attempts = dict(attempts or {})
        if self.attempts:
            tried = "\n".join(f"  - {kind}: {reason}" for kind, reason in self.attempts.items())
            message = f"{message}\n\nTried:\n{tried}"
        super().__init__(message)


class ServiceStartFailed(KnowError):
    """Raised when a backing service could not be brought healthy.

    Attributes:
        service: Name of the service.
        attempts: Number of start attempts made.
        reason: The last failure observed.
    """

    def __init__(self, service: str, attempts: int, reason: str) -> None:
        self.service = service
        self.attempts = attempts
        self.reason = reason
        super().__init__(
            f"Service '{service}' not healthy after {attempts} start attempt(s): {reason}"
        )


class ParseError(KnowError):
    """Raised when a single file cannot be converted to text."""

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to parse {path}: {reason}")


class EmbedError(KnowError):
    """Raised when an embedding call fails or returns unusable vectors."""


class StoreError(KnowError):
    """Raised when the vector engine rejects or fails an operation.

    Attributes:
        kind: One of ``not-found``, ``dimension-mismatch``, ``model-mismatch``
            or ``unavailable``.
    """

    NOT_FOUND = "not-found"
    DIMENSION_MISMATCH = "dimension-mismatch"
    MODEL_MISMATCH = "model-mismatch"
    UNAVAILABLE = "unavailable"

    def __init__(self, kind: str, message: str) -> None:
        self.kind = kind
        super().__init__(f"[{kind}] {message}")

    @property
    def structural(self) -> bool:
        """True for errors that retrying cannot fix."""
        return self.kind in (self.DIMENSION_MISMATCH, self.MODEL_MISMATCH)


class RetrievalFailed(KnowError):
    """Raised when no usable context was retrieved and the policy forbids answering."""


class GenerationFailed(KnowError):
    """Raised when the LLM call failed after retries."""


class ContainerRuntimeError(KnowError):
    """Raised when a docker / docker compose invocation fails."""


class TransferError(KnowError):
    """Raised when a collection archive cannot be built, validated or restored."""
