"""
Pytest fixtures for the workflow test suite.

Provides:
- Structured logging configured once per session, with a captured_logs
  fixture that returns parsed JSON records
- A file-backed SQLite database per test (tables created, immutability
  listeners registered)
- DeterministicClock
- A scripted transport that records every outbound request
- Notifier, orchestrator and transition factories

Each test gets its own database file under tmp_path.  SQLite here takes the
write lock at BEGIN, so a test must not keep a transaction open on one
session while code under test writes through another.
"""

import json
import logging
import threading
from io import StringIO
from uuid import uuid4

import pytest

from workflow_config.schema import IntegrationConfig, RetryPolicy
from workflow_dispatch.notifier import WorkflowNotifier
from workflow_dispatch.transport import TransportErrorKind, TransportResponse
from workflow_kernel.db.engine import build_engine, create_tables, session_scope
from workflow_kernel.db.immutability import register_immutability_listeners
from workflow_kernel.domain.clock import DeterministicClock
from workflow_kernel.domain.statuses import ActorRole, ProjectStatus
from workflow_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from workflow_kernel.selectors.status_selector import StatusSelector
from workflow_services.transition_orchestrator import (
    TransitionOrchestrator,
    TransitionRequest,
)
from sqlalchemy.orm import sessionmaker

TEST_ACTOR_ID = "user-test"

CONFIGURED_INTEGRATION = IntegrationConfig(
    endpoint_url="https://automation.example.test/webhook/status",
    api_key="test-api-key",
    signing_secret="test-signing-secret",
    request_timeout_seconds=2.0,
)

UNCONFIGURED_INTEGRATION = IntegrationConfig()

FAST_RETRY = RetryPolicy(
    max_attempts=3, base_delay_seconds=0.5, multiplier=2.0, max_delay_seconds=30.0,
)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture workflow_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, orchestrator):
            orchestrator.request_transition(...)
            logs = captured_logs()
            assert any(r["message"] == "status_transition_accepted" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("workflow_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def engine(tmp_path):
    """File-backed SQLite engine with all tables created."""
    eng = build_engine(f"sqlite:///{tmp_path / 'workflow_test.db'}")
    register_immutability_listeners()
    create_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def session(session_factory):
    """A single session; rolled back and closed at teardown."""
    sess = session_factory()
    yield sess
    sess.rollback()
    sess.close()


@pytest.fixture
def read(session_factory):
    """Run a StatusSelector query in its own short transaction.

    Usage::

        attempts = read(lambda s: s.attempts(transition_id))
    """

    def _read(query):
        with session_scope(session_factory) as sess:
            return query(StatusSelector(sess))

    return _read


# =============================================================================
# Clock
# =============================================================================


@pytest.fixture
def deterministic_clock():
    return DeterministicClock()


# =============================================================================
# Transport
# =============================================================================


class ScriptedTransport:
    """
    Transport that answers from a script and records every request.

    The last scripted response repeats once the script runs out.
    """

    def __init__(self, *responses: TransportResponse):
        self._responses = list(responses) or [TransportResponse(status_code=200)]
        self._lock = threading.Lock()
        self.requests = []
        self.timeouts = []

    def send(self, request, timeout):
        with self._lock:
            self.requests.append(request)
            self.timeouts.append(timeout)
            if len(self._responses) > 1:
                return self._responses.pop(0)
            return self._responses[0]

    @property
    def call_count(self) -> int:
        return len(self.requests)


def ok(status_code: int = 200) -> TransportResponse:
    return TransportResponse(status_code=status_code, body="ok")


def http_error(status_code: int, body: str = "error") -> TransportResponse:
    return TransportResponse(status_code=status_code, body=body)


def network_error(kind: TransportErrorKind = TransportErrorKind.NETWORK) -> TransportResponse:
    return TransportResponse(error_kind=kind, error="connection refused")


class RecordingWait:
    """Backoff wait that never sleeps; reports a stop after ``stop_after`` waits."""

    def __init__(self, stop_after: int | None = None):
        self.delays: list[float] = []
        self._stop_after = stop_after

    def __call__(self, seconds: float) -> bool:
        self.delays.append(seconds)
        return self._stop_after is not None and len(self.delays) >= self._stop_after


@pytest.fixture
def recording_wait():
    return RecordingWait()


@pytest.fixture
def make_notifier(session_factory, deterministic_clock):
    """Factory for WorkflowNotifier with test defaults."""

    def _make(
        transport=None,
        integration=CONFIGURED_INTEGRATION,
        retry=FAST_RETRY,
        wait=None,
    ):
        return WorkflowNotifier(
            session_factory,
            integration,
            retry,
            transport=transport or ScriptedTransport(),
            clock=deterministic_clock,
            wait=wait or RecordingWait(),
        )

    return _make


# =============================================================================
# Projects and transitions
# =============================================================================


@pytest.fixture
def orchestrator(session_factory, deterministic_clock):
    """Orchestrator without a dispatcher (deliveries stay pending)."""
    return TransitionOrchestrator(session_factory, clock=deterministic_clock)


@pytest.fixture
def registered_project(orchestrator):
    """A project registered at ``onboarding``; returns its entity id."""
    entity_id = f"proj-{uuid4().hex[:8]}"
    orchestrator.register_project(
        entity_id, "Website relaunch", TEST_ACTOR_ID, ProjectStatus.ONBOARDING,
    )
    return entity_id


@pytest.fixture
def committed_transition(orchestrator, registered_project):
    """A committed onboarding -> active transition with a pending delivery."""
    result = orchestrator.request_transition(
        TransitionRequest(
            entity_id=registered_project,
            requested_status=ProjectStatus.ACTIVE,
            actor_id=TEST_ACTOR_ID,
            actor_role=ActorRole.MANAGER,
            idempotency_key=f"key-{uuid4()}",
            expected_status=ProjectStatus.ONBOARDING,
        )
    )
    assert result.accepted
    return result.transition
