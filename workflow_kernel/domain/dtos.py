"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Defines the immutable data structures that flow through the transition
    pipeline: TransitionDraft (orchestrator -> ledger), StatusTransition and
    ProjectSnapshot (ledger read side), AppendResult, and the notification
    records (NotificationAttemptRecord, DeliveryRecord, DeliveryResult).

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    from_model() class methods exist as boundary converters but are only
    invoked from the service and selector layers.

Invariants enforced:
    - Frozen dataclasses: a StatusTransition handed to the notifier cannot
      be altered on its way to the external endpoint.
    - DeliveryStatus changes follow VALID_DELIVERY_TRANSITIONS.

Data flow:
    TransitionDraft -> StatusTransition -> NotificationAttemptRecord* -> DeliveryResult
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from workflow_kernel.domain.statuses import ActorRole, ProjectStatus

if TYPE_CHECKING:
    from workflow_kernel.models.notification import (
        NotificationAttemptModel,
        NotificationDeliveryModel,
    )
    from workflow_kernel.models.project_record import ProjectStatusRecord
    from workflow_kernel.models.status_transition import StatusTransitionModel


class NotificationOutcome(str, Enum):
    """Outcome of a single notification attempt, and of a whole delivery."""

    SUCCESS = "success"
    TRANSIENT_FAILURE = "transient_failure"
    PERMANENT_FAILURE = "permanent_failure"
    SKIPPED = "skipped"


class DeliveryStatus(str, Enum):
    """
    Lifecycle of the notification delivery for one transition.

    State machine:
        PENDING -> IN_FLIGHT | ABANDONED
        IN_FLIGHT -> SUCCEEDED | FAILED | SKIPPED | ABANDONED
        ABANDONED -> PENDING (startup recovery)
        SUCCEEDED, FAILED, SKIPPED: terminal
    """

    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    ABANDONED = "abandoned"

    @property
    def is_terminal(self) -> bool:
        return not VALID_DELIVERY_TRANSITIONS[self]


VALID_DELIVERY_TRANSITIONS: dict[DeliveryStatus, frozenset[DeliveryStatus]] = {
    DeliveryStatus.PENDING: frozenset({
        DeliveryStatus.IN_FLIGHT, DeliveryStatus.ABANDONED,
    }),
    DeliveryStatus.IN_FLIGHT: frozenset({
        DeliveryStatus.SUCCEEDED,
        DeliveryStatus.FAILED,
        DeliveryStatus.SKIPPED,
        DeliveryStatus.ABANDONED,
        # Startup recovery of a delivery whose worker died mid-flight
        DeliveryStatus.PENDING,
    }),
    DeliveryStatus.ABANDONED: frozenset({DeliveryStatus.PENDING}),
    # Terminal states
    DeliveryStatus.SUCCEEDED: frozenset(),
    DeliveryStatus.FAILED: frozenset(),
    DeliveryStatus.SKIPPED: frozenset(),
}

# Final delivery status for each final attempt outcome
DELIVERY_STATUS_FOR_OUTCOME: dict[NotificationOutcome, DeliveryStatus] = {
    NotificationOutcome.SUCCESS: DeliveryStatus.SUCCEEDED,
    NotificationOutcome.PERMANENT_FAILURE: DeliveryStatus.FAILED,
    NotificationOutcome.SKIPPED: DeliveryStatus.SKIPPED,
}


@dataclass(frozen=True)
class TransitionDraft:
    """
    A validated transition, not yet persisted.

    Contract:
        Built by the orchestrator only after the validator approved
        ``from_status -> to_status`` for ``actor_role``.  The ledger assigns
        transition_id, sequence, entity_name and the time-in-status.
    """

    entity_id: str
    from_status: ProjectStatus
    to_status: ProjectStatus
    changed_by: str
    actor_role: ActorRole
    idempotency_key: str
    occurred_at: datetime
    notes: str | None = None


@dataclass(frozen=True)
class StatusTransition:
    """
    One accepted status change.

    Guarantees:
        - Immutable (frozen dataclass, and the backing row is append-only).
        - sequence is 1-based per entity and equals the entity version after
          the change.
    """

    transition_id: UUID
    entity_id: str
    entity_name: str
    from_status: ProjectStatus
    to_status: ProjectStatus
    changed_by: str
    actor_role: ActorRole
    occurred_at: datetime
    sequence: int
    idempotency_key: str
    notes: str | None = None
    seconds_in_previous_status: int | None = None

    @classmethod
    def from_model(cls, model: StatusTransitionModel) -> StatusTransition:
        return cls(
            transition_id=model.id,
            entity_id=model.entity_id,
            entity_name=model.entity_name,
            from_status=ProjectStatus(model.from_status),
            to_status=ProjectStatus(model.to_status),
            changed_by=model.changed_by,
            actor_role=ActorRole(model.actor_role),
            occurred_at=model.occurred_at,
            sequence=model.sequence,
            idempotency_key=model.idempotency_key,
            notes=model.notes,
            seconds_in_previous_status=model.seconds_in_previous_status,
        )


@dataclass(frozen=True)
class ProjectSnapshot:
    """Current status of record for one project, with its version."""

    entity_id: str
    entity_name: str
    current_status: ProjectStatus
    version: int
    status_since: datetime

    @classmethod
    def from_model(cls, model: ProjectStatusRecord) -> ProjectSnapshot:
        return cls(
            entity_id=model.entity_id,
            entity_name=model.entity_name,
            current_status=ProjectStatus(model.current_status),
            version=model.version,
            status_since=model.status_since,
        )


@dataclass(frozen=True)
class AppendResult:
    """
    Result of StatusLedger.append().

    ``replayed`` is True when an earlier append with the same
    (entity, from, to, idempotency key) was found and returned instead.
    """

    transition: StatusTransition
    replayed: bool = False

    @property
    def transition_id(self) -> UUID:
        return self.transition.transition_id


@dataclass(frozen=True)
class NotificationAttemptRecord:
    """One recorded delivery try.  ``outcome`` is None while in flight."""

    transition_id: UUID
    attempt_number: int
    sent_at: datetime
    outcome: NotificationOutcome | None = None
    completed_at: datetime | None = None
    response_status_code: int | None = None
    response_detail: str | None = None

    @classmethod
    def from_model(cls, model: NotificationAttemptModel) -> NotificationAttemptRecord:
        return cls(
            transition_id=model.transition_id,
            attempt_number=model.attempt_number,
            sent_at=model.sent_at,
            outcome=(
                NotificationOutcome(model.outcome)
                if model.outcome is not None
                else None
            ),
            completed_at=model.completed_at,
            response_status_code=model.response_status_code,
            response_detail=model.response_detail,
        )


@dataclass(frozen=True)
class DeliveryRecord:
    """Read-side view of a transition's delivery row."""

    transition_id: UUID
    status: DeliveryStatus
    attempt_count: int
    final_outcome: NotificationOutcome | None = None
    last_error: str | None = None

    @classmethod
    def from_model(cls, model: NotificationDeliveryModel) -> DeliveryRecord:
        return cls(
            transition_id=model.transition_id,
            status=DeliveryStatus(model.status),
            attempt_count=model.attempt_count,
            final_outcome=(
                NotificationOutcome(model.final_outcome)
                if model.final_outcome is not None
                else None
            ),
            last_error=model.last_error,
        )


@dataclass(frozen=True)
class DeliveryResult:
    """
    Result of WorkflowNotifier.notify().

    Contract:
        ``claimed`` is False when the delivery was not pending (another
        worker holds it, or it already finished); nothing was sent and
        ``outcome`` is None.  ``outcome`` is also None when the delivery was
        abandoned by a stop signal before a final outcome was reached.
    """

    transition_id: UUID
    status: DeliveryStatus
    outcome: NotificationOutcome | None
    attempts: tuple[NotificationAttemptRecord, ...] = field(default_factory=tuple)
    claimed: bool = True

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)

    @property
    def degraded(self) -> bool:
        """True when delivery ended without reaching the endpoint successfully."""
        return self.outcome is NotificationOutcome.PERMANENT_FAILURE

    @property
    def last_detail(self) -> str | None:
        if not self.attempts:
            return None
        return self.attempts[-1].response_detail
