"""
ORM immutability listeners: the status history, the attempt trail and the
delivery lifecycle cannot be rewritten through the session.
"""

import pytest
from sqlalchemy import select

from workflow_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from workflow_kernel.domain.dtos import DeliveryStatus, NotificationOutcome, TransitionDraft
from workflow_kernel.domain.statuses import ActorRole, ProjectStatus
from workflow_kernel.exceptions import (
    ImmutabilityViolationError,
    InvalidDeliveryTransitionError,
)
from workflow_kernel.models.notification import (
    NotificationAttemptModel,
    NotificationDeliveryModel,
)
from workflow_kernel.models.project_record import ProjectStatusRecord
from workflow_kernel.models.status_transition import StatusTransitionModel
from workflow_kernel.services.delivery_recorder import DeliveryRecorder
from workflow_kernel.services.status_ledger import StatusLedger


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
            actor_role=ActorRole.MANAGER,
            idempotency_key="key-1",
            occurred_at=deterministic_clock.now(),
        ),
        expected_version=0,
    )
    return result.transition_id


def _one(session, model, **criteria):
    return session.execute(select(model).filter_by(**criteria)).scalar_one()


def _attempt(session, transition_id, attempt_number):
    return _one(
        session,
        NotificationAttemptModel,
        transition_id=transition_id,
        attempt_number=attempt_number,
    )


@pytest.fixture
def listeners_disabled():
    unregister_immutability_listeners()
    yield
    register_immutability_listeners()


class TestStatusTransitionImmutability:

    def test_update_blocked(self, session, transition_id):
        model = _one(session, StatusTransitionModel, id=transition_id)
        model.notes = "rewritten"

        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        assert exc_info.value.entity_type == "StatusTransition"

    def test_delete_blocked(self, session, transition_id):
        session.delete(_one(session, StatusTransitionModel, id=transition_id))

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_violation_logged(self, session, transition_id, captured_logs):
        _one(session, StatusTransitionModel, id=transition_id).to_status = "closed"

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

        blocked = [r for r in captured_logs() if r["message"] == "immutability_violation_blocked"]
        assert blocked[0]["entity_id"] == str(transition_id)
        assert blocked[0]["operation"] == "UPDATE"


class TestAttemptImmutability:

    def test_open_attempt_may_be_finished(self, session, transition_id, deterministic_clock):
        recorder = DeliveryRecorder(session, deterministic_clock)
        recorder.claim(transition_id)
        attempt = recorder.start_attempt(transition_id)

        finished = recorder.finish_attempt(
            transition_id, attempt.attempt_number, NotificationOutcome.SUCCESS,
            response_status_code=200,
        )
        assert finished.outcome is NotificationOutcome.SUCCESS

    def test_recorded_outcome_blocked(self, session, transition_id, deterministic_clock):
        recorder = DeliveryRecorder(session, deterministic_clock)
        recorder.claim(transition_id)
        attempt = recorder.start_attempt(transition_id)
        recorder.finish_attempt(
            transition_id, attempt.attempt_number, NotificationOutcome.TRANSIENT_FAILURE,
        )

        model = _attempt(session, transition_id, attempt.attempt_number)
        model.outcome = NotificationOutcome.SUCCESS.value

        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_delete_blocked(self, session, transition_id, deterministic_clock):
        recorder = DeliveryRecorder(session, deterministic_clock)
        recorder.claim(transition_id)
        attempt = recorder.start_attempt(transition_id)

        session.delete(_attempt(session, transition_id, attempt.attempt_number))
        with pytest.raises(ImmutabilityViolationError):
            session.flush()


class TestDeliveryLifecycle:

    def test_terminal_delivery_cannot_reopen(self, session, transition_id, deterministic_clock):
        recorder = DeliveryRecorder(session, deterministic_clock)
        recorder.claim(transition_id)
        recorder.finalize(transition_id, NotificationOutcome.SUCCESS)

        model = _one(session, NotificationDeliveryModel, transition_id=transition_id)
        session.refresh(model)
        model.status = DeliveryStatus.PENDING.value

        with pytest.raises(InvalidDeliveryTransitionError) as exc_info:
            session.flush()
        assert exc_info.value.from_status == "succeeded"
        assert exc_info.value.to_status == "pending"

    def test_allowed_move_passes(self, session, transition_id):
        model = _one(session, NotificationDeliveryModel, transition_id=transition_id)
        model.status = DeliveryStatus.IN_FLIGHT.value
        session.flush()

    def test_delivery_delete_blocked(self, session, transition_id):
        session.delete(_one(session, NotificationDeliveryModel, transition_id=transition_id))
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_project_record_delete_blocked(self, session, transition_id):
        session.delete(_one(session, ProjectStatusRecord, entity_id="proj-1"))
        with pytest.raises(ImmutabilityViolationError):
            session.flush()


class TestListenerRegistration:

    def test_unregistered_listeners_allow_updates(
        self, session, transition_id, listeners_disabled,
    ):
        _one(session, StatusTransitionModel, id=transition_id).notes = "allowed"
        session.flush()

    def test_registration_is_idempotent(self, session, transition_id, captured_logs):
        register_immutability_listeners()
        register_immutability_listeners()

        _one(session, StatusTransitionModel, id=transition_id).notes = "blocked once"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

        blocked = [r for r in captured_logs() if r["message"] == "immutability_violation_blocked"]
        assert len(blocked) == 1
