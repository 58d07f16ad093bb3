"""Lifecycle supervision for the backing services (vector engine, parser).

Each service moves through a small state machine::

    UNKNOWN -> PROBING -> HEALTHY
                       -> STARTING -> PROBING -> HEALTHY
                                              -> STARTING ... -> FAILED

Every transition is logged and kept in a per-service history. Starts are
serialized per service so concurrent callers never launch the same
container twice.
"""

import logging
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum

from know.config import KnowConfig
from know.constants import (
    DEFAULT_POLL_INTERVAL,
    DEFAULT_PROBE_TIMEOUT,
    DEFAULT_READY_TIMEOUT,
    DEFAULT_RETRY_BACKOFF,
    DEFAULT_START_ATTEMPTS,
    SERVICE_DOCLING,
    SERVICE_RAVENDB,
)
from know.exceptions import ContainerRuntimeError, ServiceStartFailed
from know.service.docker import ContainerRuntime
from know.service.http import probe_url

logger = logging.getLogger(__name__)


class ServiceState(str, Enum):
    UNKNOWN = "unknown"
    PROBING = "probing"
    STARTING = "starting"
    HEALTHY = "healthy"
    FAILED = "failed"
    STOPPED = "stopped"


@dataclass(frozen=True)
class ServiceEndpoint:
    """A backing service the supervisor can probe and start.

    Attributes:
        name: Service name, also the compose service name
        url: Base URL of the service
        health_path: Path answering 200 when the service is ready
        required: Whether commands must abort when the service cannot start
    """

    name: str
    url: str
    health_path: str
    required: bool = True

    @property
    def health_url(self) -> str:
        return f"{self.url.rstrip('/')}{self.health_path}"


def default_endpoints(config: KnowConfig) -> list[ServiceEndpoint]:
    """The vector engine (required) and the parsing engine (optional)."""
    return [
        ServiceEndpoint(SERVICE_RAVENDB, config.ravendb_url, "/databases", required=True),
        ServiceEndpoint(SERVICE_DOCLING, config.docling_url, "/health", required=False),
    ]


class ServiceSupervisor:
    """Ensures backing services are running and healthy."""

    def __init__(
        self,
        endpoints: Iterable[ServiceEndpoint],
        runtime: ContainerRuntime,
        max_attempts: int = DEFAULT_START_ATTEMPTS,
        ready_timeout: float = DEFAULT_READY_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        backoff: float = DEFAULT_RETRY_BACKOFF,
        probe_timeout: float = DEFAULT_PROBE_TIMEOUT,
        probe: Callable[[ServiceEndpoint], "str | None"] | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the supervisor.

        Args:
            endpoints: Services under supervision
            runtime: Container runtime used to start and stop them
            max_attempts: Start attempts before a service is FAILED
            ready_timeout: Seconds to wait for a started service to become healthy
            poll_interval: Seconds between readiness probes
            backoff: Base delay between start attempts, doubled each attempt
            probe_timeout: Timeout of a single health probe
            probe: Health check returning None when healthy or a reason string
            sleep: Sleep function (injectable for tests)
            clock: Monotonic clock (injectable for tests)
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.endpoints = {endpoint.name: endpoint for endpoint in endpoints}
        self.runtime = runtime
        self.max_attempts = max_attempts
        self.ready_timeout = ready_timeout
        self.poll_interval = poll_interval
        self.backoff = backoff
        self.probe_timeout = probe_timeout
        self._probe = probe or self._http_probe
        self._sleep = sleep
        self._clock = clock
        self._states = {name: ServiceState.UNKNOWN for name in self.endpoints}
        self._locks = {name: threading.Lock() for name in self.endpoints}
        self.history: dict[str, list[ServiceState]] = {
            name: [ServiceState.UNKNOWN] for name in self.endpoints
        }

    def _http_probe(self, endpoint: ServiceEndpoint) -> str | None:
        return probe_url(endpoint.health_url, self.probe_timeout)

    def _endpoint(self, name: str) -> ServiceEndpoint:
        try:
            return self.endpoints[name]
        except KeyError:
            raise ValueError(f"Unknown service: {name}") from None

    def _transition(self, name: str, state: ServiceState) -> None:
        previous = self._states[name]
        self._states[name] = state
        self.history[name].append(state)
        logger.debug(f"Service {name}: {previous.value} -> {state.value}")

    def state(self, name: str) -> ServiceState:
        self._endpoint(name)
        return self._states[name]

    def _wait_ready(self, endpoint: ServiceEndpoint) -> str | None:
        """Poll until healthy or ``ready_timeout`` expires. Returns the last failure."""
        deadline = self._clock() + self.ready_timeout
        while True:
            reason = self._probe(endpoint)
            if reason is None:
                return None
            if self._clock() >= deadline:
                return f"not ready after {self.ready_timeout:g}s ({reason})"
            self._sleep(self.poll_interval)

    def ensure_running(self, name: str) -> ServiceState:
        """Make sure a service is healthy, starting it if necessary.

        Args:
            name: Service name

        Returns:
            ServiceState: Always ``ServiceState.HEALTHY``

        Raises:
            ServiceStartFailed: If the service is not healthy after all start attempts
        """
        endpoint = self._endpoint(name)
        with self._locks[name]:
            if self._states[name] == ServiceState.HEALTHY:
                return ServiceState.HEALTHY

            self._transition(name, ServiceState.PROBING)
            reason = self._probe(endpoint)
            if reason is None:
                self._transition(name, ServiceState.HEALTHY)
                return ServiceState.HEALTHY

            for attempt in range(1, self.max_attempts + 1):
                self._transition(name, ServiceState.STARTING)
                logger.info(f"🚀 Starting {name} (attempt {attempt}/{self.max_attempts})")
                try:
                    self.runtime.up([name])
                except ContainerRuntimeError as e:
                    reason = str(e)
                    logger.warning(f"⚠️ Failed to start {name}: {reason}")
                else:
                    self._transition(name, ServiceState.PROBING)
                    reason = self._wait_ready(endpoint)
                    if reason is None:
                        self._transition(name, ServiceState.HEALTHY)
                        logger.info(f"✅ {name} is healthy")
                        return ServiceState.HEALTHY
                    logger.warning(f"⚠️ {name} {reason}")

                if attempt < self.max_attempts:
                    self._sleep(self.backoff * (2 ** (attempt - 1)))

            self._transition(name, ServiceState.FAILED)
            logger.error(f"❌ {name} failed to start: {reason}")
            raise ServiceStartFailed(name, self.max_attempts, reason or "unknown error")

    def ensure_all(self, names: Iterable[str] | None = None) -> dict[str, ServiceState]:
        """Ensure several services; failures of optional ones are only logged.

        Args:
            names: Services to ensure (default: all registered)

        Returns:
            dict[str, ServiceState]: Final state per service

        Raises:
            ServiceStartFailed: If a required service cannot be started
        """
        states = {}
        for name in names or list(self.endpoints):
            try:
                states[name] = self.ensure_running(name)
            except ServiceStartFailed as e:
                if self._endpoint(name).required:
                    raise
                logger.warning(f"⚠️ Optional service {name} unavailable: {e.reason}")
                states[name] = ServiceState.FAILED
        return states

    def down(self) -> None:
        """Stop all services through the runtime."""
        self.runtime.down()
        for name in self.endpoints:
            with self._locks[name]:
                self._transition(name, ServiceState.STOPPED)

    def status(self) -> dict[str, ServiceState]:
        """Probe every service without starting anything."""
        states = {}
        for name, endpoint in self.endpoints.items():
            with self._locks[name]:
                alive = self._probe(endpoint) is None
                new_state = ServiceState.HEALTHY if alive else ServiceState.STOPPED
                if self._states[name] != new_state:
                    self._transition(name, new_state)
                states[name] = new_state
        return states
