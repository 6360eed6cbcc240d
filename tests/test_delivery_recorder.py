"""
Tests for DeliveryRecorder: the delivery lifecycle and the attempt trail.
"""

from uuid import uuid4

import pytest

from workflow_kernel.domain.dtos import DeliveryStatus, NotificationOutcome, TransitionDraft
from workflow_kernel.domain.statuses import ActorRole, ProjectStatus
from workflow_kernel.exceptions import (
    DeliveryNotFoundError,
    ImmutabilityViolationError,
    InvalidDeliveryTransitionError,
)
from workflow_kernel.services.delivery_recorder import INTERRUPTED_DETAIL, DeliveryRecorder
from workflow_kernel.services.status_ledger import StatusLedger
from workflow_kernel.selectors.status_selector import StatusSelector


@pytest.fixture
def recorder(session, deterministic_clock):
    return DeliveryRecorder(session, deterministic_clock)


@pytest.fixture
def transition_id(session, deterministic_clock):
    ledger = StatusLedger(session, deterministic_clock)
    ledger.register_project("proj-1", "Website relaunch", "user-1", ProjectStatus.ONBOARDING)
    result = ledger.append(
        TransitionDraft(
            entity_id="proj-1",
            from_status=ProjectStatus.ONBOARDING,
            to_status=ProjectStatus.ACTIVE,
            changed_by="user-1",
            actor_role=ActorRole.ADMIN,
            idempotency_key="key-1",
            occurred_at=deterministic_clock.now(),
        ),
        expected_version=0,
    )
    return result.transition_id


class TestClaim:

    def test_first_claim_wins(self, recorder, transition_id):
        assert recorder.claim(transition_id) is True
        assert recorder.claim(transition_id) is False
        assert recorder.delivery(transition_id).status is DeliveryStatus.IN_FLIGHT

    def test_finished_delivery_cannot_be_claimed(self, recorder, transition_id):
        recorder.claim(transition_id)
        recorder.finalize(transition_id, NotificationOutcome.SUCCESS)
        assert recorder.claim(transition_id) is False

    def test_unknown_transition(self, recorder):
        assert recorder.claim(uuid4()) is False
        with pytest.raises(DeliveryNotFoundError):
            recorder.delivery(uuid4())


class TestAttempts:

    def test_attempt_numbers_are_consecutive(self, recorder, session, transition_id):
        recorder.claim(transition_id)
        first = recorder.start_attempt(transition_id)
        recorder.finish_attempt(
            transition_id, first.attempt_number,
            NotificationOutcome.TRANSIENT_FAILURE, 503, "HTTP 503",
        )
        second = recorder.start_attempt(transition_id)

        assert (first.attempt_number, second.attempt_number) == (1, 2)
        assert first.outcome is None
        assert recorder.delivery(transition_id).attempt_count == 2

        trail = StatusSelector(session).attempts(transition_id)
        assert [a.attempt_number for a in trail] == [1, 2]
        assert trail[0].outcome is NotificationOutcome.TRANSIENT_FAILURE
        assert trail[0].response_status_code == 503
        assert trail[0].completed_at is not None
        assert trail[1].outcome is None

    def test_outcome_written_once(self, recorder, transition_id):
        recorder.claim(transition_id)
        attempt = recorder.start_attempt(transition_id)
        recorder.finish_attempt(transition_id, attempt.attempt_number, NotificationOutcome.SUCCESS)

        with pytest.raises(ImmutabilityViolationError):
            recorder.finish_attempt(
                transition_id, attempt.attempt_number, NotificationOutcome.PERMANENT_FAILURE,
            )


class TestFinalize:

    @pytest.mark.parametrize(
        ("outcome", "status"),
        [
            (NotificationOutcome.SUCCESS, DeliveryStatus.SUCCEEDED),
            (NotificationOutcome.PERMANENT_FAILURE, DeliveryStatus.FAILED),
            (NotificationOutcome.SKIPPED, DeliveryStatus.SKIPPED),
        ],
    )
    def test_final_status_for_outcome(self, recorder, transition_id, outcome, status):
        recorder.claim(transition_id)
        record = recorder.finalize(transition_id, outcome, "detail")
        assert record.status is status
        assert record.final_outcome is outcome
        assert record.last_error == "detail"
        assert record.status.is_terminal

    def test_transient_is_never_final(self, recorder, transition_id):
        recorder.claim(transition_id)
        with pytest.raises(ValueError):
            recorder.finalize(transition_id, NotificationOutcome.TRANSIENT_FAILURE)

    def test_requires_claim(self, recorder, transition_id):
        with pytest.raises(InvalidDeliveryTransitionError) as exc_info:
            recorder.finalize(transition_id, NotificationOutcome.SUCCESS)
        assert exc_info.value.from_status == "pending"
        assert exc_info.value.to_status == "succeeded"

    def test_terminal_stays_terminal(self, recorder, transition_id):
        recorder.claim(transition_id)
        recorder.finalize(transition_id, NotificationOutcome.SUCCESS)
        with pytest.raises(InvalidDeliveryTransitionError):
            recorder.finalize(transition_id, NotificationOutcome.PERMANENT_FAILURE)
        with pytest.raises(InvalidDeliveryTransitionError):
            recorder.requeue(transition_id)


class TestAbandonAndRecovery:

    def test_abandon_then_requeue(self, recorder, transition_id):
        recorder.claim(transition_id)
        abandoned = recorder.abandon(transition_id, "stopping")
        assert abandoned.status is DeliveryStatus.ABANDONED
        assert abandoned.last_error == "stopping"

        assert recorder.requeue(transition_id).status is DeliveryStatus.PENDING
        assert recorder.claim(transition_id) is True

    def test_pending_cannot_be_requeued(self, recorder, transition_id):
        with pytest.raises(InvalidDeliveryTransitionError):
            recorder.requeue(transition_id)

    def test_interrupted_attempts_finalized(self, recorder, session, transition_id):
        recorder.claim(transition_id)
        recorder.start_attempt(transition_id)

        closed = recorder.finalize_interrupted_attempts()

        assert len(closed) == 1
        assert closed[0].outcome is NotificationOutcome.SKIPPED
        assert closed[0].response_detail == INTERRUPTED_DETAIL
        assert recorder.finalize_interrupted_attempts() == []

    def test_stranded_deliveries(self, recorder, transition_id):
        assert recorder.stranded_transition_ids() == []
        recorder.claim(transition_id)
        assert recorder.stranded_transition_ids() == [transition_id]
        recorder.abandon(transition_id)
        assert recorder.stranded_transition_ids() == [transition_id]
        recorder.requeue(transition_id)
        assert recorder.stranded_transition_ids() == []
