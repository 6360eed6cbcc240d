"""
Tests for DeliveryRecovery: startup reconciliation of deliveries and
attempts left behind by a shutdown or crash.
"""

from workflow_dispatch.recovery import DeliveryRecovery
from workflow_kernel.db.engine import session_scope
from workflow_kernel.domain.dtos import DeliveryStatus, NotificationOutcome
from workflow_kernel.services.delivery_recorder import INTERRUPTED_DETAIL, DeliveryRecorder

from tests.conftest import ScriptedTransport, ok


class TestReconcile:

    def test_nothing_to_do(self, session_factory, deterministic_clock):
        assert DeliveryRecovery(session_factory, deterministic_clock).reconcile() == []

    def test_pending_returned(self, session_factory, deterministic_clock, committed_transition):
        pending = DeliveryRecovery(session_factory, deterministic_clock).reconcile()
        assert pending == [committed_transition.transition_id]

    def test_crash_mid_attempt(
        self, session_factory, deterministic_clock, committed_transition, read,
    ):
        tid = committed_transition.transition_id
        # Worker claimed and started an attempt, then the process died
        with session_scope(session_factory) as session:
            recorder = DeliveryRecorder(session, deterministic_clock)
            recorder.claim(tid)
            recorder.start_attempt(tid)

        pending = DeliveryRecovery(session_factory, deterministic_clock).reconcile()

        assert pending == [tid]
        attempts = read(lambda s: s.attempts(tid))
        assert attempts[0].outcome is NotificationOutcome.SKIPPED
        assert attempts[0].response_detail == INTERRUPTED_DETAIL
        assert read(lambda s: s.delivery(tid)).status is DeliveryStatus.PENDING

    def test_abandoned_requeued_and_delivered(
        self, session_factory, deterministic_clock, committed_transition, make_notifier,
    ):
        tid = committed_transition.transition_id
        with session_scope(session_factory) as session:
            recorder = DeliveryRecorder(session, deterministic_clock)
            recorder.claim(tid)
            recorder.abandon(tid, "stopped during backoff")

        assert DeliveryRecovery(session_factory, deterministic_clock).reconcile() == [tid]

        result = make_notifier(ScriptedTransport(ok())).notify(committed_transition)
        assert result.outcome is NotificationOutcome.SUCCESS

    def test_terminal_deliveries_left_alone(
        self, session_factory, deterministic_clock, committed_transition, make_notifier, read,
    ):
        make_notifier(ScriptedTransport(ok())).notify(committed_transition)

        assert DeliveryRecovery(session_factory, deterministic_clock).reconcile() == []
        delivery = read(lambda s: s.delivery(committed_transition.transition_id))
        assert delivery.status is DeliveryStatus.SUCCEEDED

    def test_summary_logged(
        self, session_factory, deterministic_clock, committed_transition, captured_logs,
    ):
        DeliveryRecovery(session_factory, deterministic_clock).reconcile()
        summary = [r for r in captured_logs() if r["message"] == "delivery_recovery_completed"]
        assert summary[0]["pending_deliveries"] == 1
        assert summary[0]["requeued_deliveries"] == 0
        assert summary[0]["interrupted_attempts"] == 0
