"""Tests for backing service supervision."""

import itertools
import threading
from unittest.mock import MagicMock

import pytest

from know.config import KnowConfig
from know.exceptions import ContainerRuntimeError, ServiceStartFailed
from know.service.supervisor import (
    ServiceEndpoint,
    ServiceState,
    ServiceSupervisor,
    default_endpoints,
)

S = ServiceState

ENDPOINTS = [
    ServiceEndpoint("ravendb", "http://localhost:8081", "/databases", required=True),
    ServiceEndpoint("docling", "http://localhost:5001/", "/health", required=False),
]


def make_supervisor(runtime, **kwargs):
    """Supervisor with a fake clock advancing 10s per reading and a recording sleep."""
    sleeps = []
    ticks = itertools.count(step=10)
    options = dict(
        max_attempts=3,
        ready_timeout=5,
        poll_interval=1,
        backoff=0.5,
        probe=runtime.probe,
        sleep=sleeps.append,
        clock=lambda: next(ticks),
    )
    options.update(kwargs)
    supervisor = ServiceSupervisor(ENDPOINTS, runtime, **options)
    return supervisor, sleeps


class TestEnsureRunning:
    """Tests for the start-and-wait state machine."""

    def test_already_running_service(self, fake_runtime):
        fake_runtime.healthy.add("ravendb")
        supervisor, _ = make_supervisor(fake_runtime)

        assert supervisor.ensure_running("ravendb") == S.HEALTHY
        assert supervisor.history["ravendb"] == [S.UNKNOWN, S.PROBING, S.HEALTHY]
        assert fake_runtime.up_calls == []

    def test_starts_stopped_service(self, fake_runtime):
        supervisor, sleeps = make_supervisor(fake_runtime)

        assert supervisor.ensure_running("ravendb") == S.HEALTHY

        assert supervisor.history["ravendb"] == [
            S.UNKNOWN, S.PROBING, S.STARTING, S.PROBING, S.HEALTHY,
        ]
        assert fake_runtime.up_calls == [["ravendb"]]
        assert sleeps == []

    def test_healthy_state_is_cached(self, fake_runtime):
        supervisor, _ = make_supervisor(fake_runtime)
        supervisor.ensure_running("ravendb")
        transitions = len(supervisor.history["ravendb"])

        assert supervisor.ensure_running("ravendb") == S.HEALTHY
        assert len(supervisor.history["ravendb"]) == transitions
        assert len(fake_runtime.up_calls) == 1

    def test_gives_up_after_max_attempts(self, make_runtime):
        runtime = make_runtime(start_works=False)
        supervisor, sleeps = make_supervisor(runtime)

        with pytest.raises(ServiceStartFailed) as exc_info:
            supervisor.ensure_running("ravendb")

        error = exc_info.value
        assert error.service == "ravendb"
        assert error.attempts == 3
        assert "connection refused" in error.reason
        assert supervisor.state("ravendb") == S.FAILED
        assert supervisor.history["ravendb"] == [
            S.UNKNOWN, S.PROBING,
            S.STARTING, S.PROBING,
            S.STARTING, S.PROBING,
            S.STARTING, S.PROBING,
            S.FAILED,
        ]
        assert len(runtime.up_calls) == 3
        # Exponential backoff between attempts only
        assert sleeps == [0.5, 1.0]

    def test_runtime_error_counts_as_failed_attempt(self, fake_runtime):
        runtime = MagicMock()
        runtime.up.side_effect = ContainerRuntimeError("docker: command not found")
        supervisor, _ = make_supervisor(runtime, probe=fake_runtime.probe, max_attempts=2)

        with pytest.raises(ServiceStartFailed, match="command not found"):
            supervisor.ensure_running("ravendb")

        assert supervisor.history["ravendb"] == [
            S.UNKNOWN, S.PROBING, S.STARTING, S.STARTING, S.FAILED,
        ]

    def test_polls_until_ready(self):
        """A slow service is polled every poll_interval until the deadline."""
        runtime = MagicMock()
        results = iter(["down", "starting", "starting", None])
        ticks = itertools.count()
        sleeps = []
        supervisor = ServiceSupervisor(
            ENDPOINTS,
            runtime,
            ready_timeout=30,
            poll_interval=2,
            probe=lambda endpoint: next(results),
            sleep=sleeps.append,
            clock=lambda: next(ticks),
        )

        assert supervisor.ensure_running("ravendb") == S.HEALTHY
        assert sleeps == [2, 2]
        runtime.up.assert_called_once_with(["ravendb"])

    def test_unknown_service(self, fake_runtime):
        supervisor, _ = make_supervisor(fake_runtime)
        with pytest.raises(ValueError):
            supervisor.ensure_running("redis")
        with pytest.raises(ValueError):
            supervisor.state("redis")

    def test_concurrent_callers_start_once(self, fake_runtime):
        supervisor, _ = make_supervisor(fake_runtime)
        threads = [threading.Thread(target=supervisor.ensure_running, args=("ravendb",)) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert fake_runtime.up_calls == [["ravendb"]]

    def test_invalid_attempts(self, fake_runtime):
        with pytest.raises(ValueError):
            ServiceSupervisor(ENDPOINTS, fake_runtime, max_attempts=0)


class TestEnsureAll:
    def test_optional_failure_is_tolerated(self, make_runtime):
        runtime = make_runtime(start_works=False)
        runtime.healthy.add("ravendb")
        supervisor, _ = make_supervisor(runtime)

        states = supervisor.ensure_all()

        assert states == {"ravendb": S.HEALTHY, "docling": S.FAILED}

    def test_required_failure_raises(self, make_runtime):
        supervisor, _ = make_supervisor(make_runtime(start_works=False))
        with pytest.raises(ServiceStartFailed):
            supervisor.ensure_all(["ravendb"])


class TestDownAndStatus:
    def test_down_stops_everything(self, fake_runtime):
        supervisor, _ = make_supervisor(fake_runtime)
        supervisor.ensure_running("ravendb")

        supervisor.down()

        assert fake_runtime.down_calls == 1
        assert supervisor.state("ravendb") == S.STOPPED
        assert supervisor.state("docling") == S.STOPPED

    def test_status_probes_without_starting(self, fake_runtime):
        fake_runtime.healthy.add("docling")
        supervisor, _ = make_supervisor(fake_runtime)

        assert supervisor.status() == {"ravendb": S.STOPPED, "docling": S.HEALTHY}
        assert fake_runtime.up_calls == []


class TestEndpoints:
    def test_health_url(self):
        assert ENDPOINTS[1].health_url == "http://localhost:5001/health"

    def test_default_endpoints(self):
        config = KnowConfig(ravendb_url="http://db:8081", docling_url="http://parse:5001")
        endpoints = {endpoint.name: endpoint for endpoint in default_endpoints(config)}
        assert endpoints["ravendb"].health_url == "http://db:8081/databases"
        assert endpoints["ravendb"].required
        assert not endpoints["docling"].required
