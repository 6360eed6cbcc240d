"""
End-to-end tests for WorkflowRuntime: wiring from configuration, startup
recovery, request -> commit -> notify, and configuration reload.
"""

import threading

import pytest
import yaml

from workflow_config import get_active_config, reset_active_config
from workflow_config.schema import IntegrationConfig, RetryPolicy, WorkflowConfig
from workflow_kernel.domain.dtos import NotificationOutcome
from workflow_kernel.domain.statuses import ActorRole, ProjectStatus
from workflow_kernel.exceptions import ConfigurationError
from workflow_services import RequestState, TransitionRequest, WorkflowRuntime

from tests.conftest import CONFIGURED_INTEGRATION, TEST_ACTOR_ID, ScriptedTransport, ok


class CollectingSink:
    def __init__(self):
        self.results = []
        self._lock = threading.Lock()

    def __call__(self, result):
        with self._lock:
            self.results.append(result)


@pytest.fixture(autouse=True)
def _reset_active():
    reset_active_config()
    yield
    reset_active_config()


@pytest.fixture
def database_url(engine):
    return str(engine.url)


@pytest.fixture
def build_runtime(engine, database_url, deterministic_clock):
    created = []

    def _build(integration=CONFIGURED_INTEGRATION, transport=None, sink=None, **overrides):
        config = WorkflowConfig(
            integration=integration,
            retry=RetryPolicy(max_attempts=2, base_delay_seconds=0.0),
            database_url=database_url,
            **overrides,
        )
        runtime = WorkflowRuntime(
            config,
            transport=transport or ScriptedTransport(ok()),
            clock=deterministic_clock,
            outcome_sink=sink,
            engine=engine,
        )
        created.append(runtime)
        return runtime

    yield _build

    for runtime in created:
        if runtime.dispatcher.is_running:
            runtime.stop(timeout=5.0)


def _request(entity_id, key="key-1"):
    return TransitionRequest(
        entity_id=entity_id,
        requested_status=ProjectStatus.ACTIVE,
        actor_id=TEST_ACTOR_ID,
        actor_role=ActorRole.MANAGER,
        idempotency_key=key,
        expected_status=ProjectStatus.ONBOARDING,
    )


class TestEndToEnd:

    def test_request_is_committed_then_notified(self, build_runtime):
        transport = ScriptedTransport(ok())
        sink = CollectingSink()
        runtime = build_runtime(transport=transport, sink=sink)
        runtime.orchestrator.register_project("proj-1", "Website relaunch", TEST_ACTOR_ID)

        with runtime:
            result = runtime.orchestrator.request_transition(_request("proj-1"))
            assert result.state is RequestState.NOTIFYING
            assert runtime.dispatcher.join(timeout=10.0)

        assert not runtime.dispatcher.is_running
        assert runtime.orchestrator.notification_state(result.transition_id) is (
            RequestState.NOTIFY_SUCCEEDED
        )
        assert [r.outcome for r in sink.results] == [NotificationOutcome.SUCCESS]
        assert transport.call_count == 1
        assert transport.requests[0].url == CONFIGURED_INTEGRATION.endpoint_url

    def test_unconfigured_integration_skips(self, build_runtime):
        transport = ScriptedTransport(ok())
        runtime = build_runtime(integration=IntegrationConfig(), transport=transport)
        runtime.orchestrator.register_project("proj-1", "Website relaunch", TEST_ACTOR_ID)

        with runtime:
            result = runtime.orchestrator.request_transition(_request("proj-1"))
            assert runtime.dispatcher.join(timeout=10.0)

        assert result.accepted
        assert runtime.orchestrator.latest_status("proj-1") is ProjectStatus.ACTIVE
        assert runtime.orchestrator.notification_state(result.transition_id) is (
            RequestState.NOTIFY_SKIPPED
        )
        assert transport.call_count == 0

    def test_startup_recovers_pending(self, build_runtime, committed_transition):
        sink = CollectingSink()
        runtime = build_runtime(sink=sink)

        recovered = runtime.start()
        assert recovered == [committed_transition.transition_id]
        assert runtime.dispatcher.join(timeout=10.0)
        runtime.stop(timeout=5.0)

        assert [r.transition_id for r in sink.results] == [committed_transition.transition_id]

    def test_from_active_config(self, engine, database_url, tmp_path):
        path = tmp_path / "active.yaml"
        path.write_text(yaml.safe_dump({"database_url": database_url, "worker_count": 3}))
        active = get_active_config(path, environ={})

        runtime = WorkflowRuntime.from_active_config(
            transport=ScriptedTransport(ok()), engine=engine,
        )

        assert runtime.config is active
        assert runtime.config.worker_count == 3
        assert not runtime.dispatcher.is_running

    def test_built_event_logged(self, build_runtime, captured_logs):
        build_runtime(worker_count=3)
        built = [r for r in captured_logs() if r["message"] == "workflow_runtime_built"]
        assert built[0]["dialect"] == "sqlite"
        assert built[0]["worker_count"] == 3


class TestReload:

    def test_reload_rewires(self, build_runtime, database_url, tmp_path):
        runtime = build_runtime()
        old_dispatcher = runtime.dispatcher
        path = tmp_path / "reload.yaml"
        path.write_text(yaml.safe_dump({"database_url": database_url, "worker_count": 4}))

        runtime.start()
        config = runtime.reload(path, environ={}, timeout=5.0)

        assert config.worker_count == 4
        assert runtime.config is config
        assert runtime.dispatcher is not old_dispatcher
        assert runtime.dispatcher.is_running
        assert not old_dispatcher.is_running
        assert not runtime.config.integration.is_configured

    def test_database_change_rejected(self, build_runtime, tmp_path):
        runtime = build_runtime()
        original = runtime.config
        path = tmp_path / "moved.yaml"
        path.write_text(yaml.safe_dump({"database_url": "sqlite:///elsewhere.db"}))

        with pytest.raises(ConfigurationError) as exc_info:
            runtime.reload(path, environ={})

        assert exc_info.value.field == "database_url"
        assert runtime.config is original
