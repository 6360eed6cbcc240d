"""
DeliveryRecorder -- notification delivery and attempt bookkeeping.

Responsibility:
    Moves a transition's NotificationDelivery through its lifecycle and
    records every NotificationAttempt: claim, start attempt, finish attempt,
    finalize, abandon, requeue, and the startup sweep of interrupted
    attempts.

Architecture position:
    Kernel > Services -- imperative shell.
    Called by WorkflowNotifier (one short transaction per step) and by
    DeliveryRecovery at startup.

Invariants enforced:
    - Every status change is a conditional UPDATE whose WHERE clause lists
      the source states allowed by VALID_DELIVERY_TRANSITIONS.  Two workers
      racing to claim the same delivery: exactly one update matches.
    - Attempt numbers are consecutive from 1 (attempt_count on the delivery
      row, UNIQUE (transition_id, attempt_number) as backstop).
    - An attempt's outcome is written once (ORM listener in
      db/immutability.py).

Failure modes:
    - DeliveryNotFoundError: no delivery row for the transition.
    - InvalidDeliveryTransitionError: the delivery is not in a state that
      allows the requested move.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select, update

from workflow_kernel.domain.dtos import (
    DELIVERY_STATUS_FOR_OUTCOME,
    VALID_DELIVERY_TRANSITIONS,
    DeliveryRecord,
    DeliveryStatus,
    NotificationAttemptRecord,
    NotificationOutcome,
)
from workflow_kernel.exceptions import (
    DeliveryNotFoundError,
    InvalidDeliveryTransitionError,
)
from workflow_kernel.logging_config import get_logger
from workflow_kernel.models.notification import (
    NotificationAttemptModel,
    NotificationDeliveryModel,
)
from workflow_kernel.services.base import BaseService

logger = get_logger("services.delivery_recorder")

INTERRUPTED_DETAIL = "interrupted"


def _sources_for(target: DeliveryStatus) -> list[str]:
    return [
        source.value
        for source, targets in VALID_DELIVERY_TRANSITIONS.items()
        if target in targets
    ]


class DeliveryRecorder(BaseService[NotificationDeliveryModel]):
    """Delivery lifecycle and attempt trail for outbound notifications."""

    def claim(self, transition_id: UUID) -> bool:
        """
        Take ownership of a pending delivery (``pending -> in_flight``).

        Returns:
            True if this caller now owns the delivery, False if it was not
            pending (claimed by another worker, or already finished).
        """
        result = self.session.execute(
            update(NotificationDeliveryModel)
            .where(
                NotificationDeliveryModel.transition_id == transition_id,
                NotificationDeliveryModel.status == DeliveryStatus.PENDING.value,
            )
            .values(status=DeliveryStatus.IN_FLIGHT.value, updated_at=self._clock.now())
            .execution_options(synchronize_session=False)
        )
        claimed = result.rowcount == 1
        logger.debug(
            "delivery_claim",
            extra={"transition_id": str(transition_id), "claimed": claimed},
        )
        return claimed

    def start_attempt(self, transition_id: UUID) -> NotificationAttemptRecord:
        """Insert the next attempt with no outcome yet."""
        delivery = self._get_delivery(transition_id)
        attempt_number = delivery.attempt_count + 1
        now = self._clock.now()

        attempt = NotificationAttemptModel(
            transition_id=transition_id,
            attempt_number=attempt_number,
            sent_at=now,
        )
        self.session.add(attempt)
        delivery.attempt_count = attempt_number
        delivery.updated_at = now
        self.session.flush()
        return NotificationAttemptRecord.from_model(attempt)

    def finish_attempt(
        self,
        transition_id: UUID,
        attempt_number: int,
        outcome: NotificationOutcome,
        response_status_code: int | None = None,
        response_detail: str | None = None,
    ) -> NotificationAttemptRecord:
        """Record the outcome of an attempt started with start_attempt()."""
        attempt = self.session.execute(
            select(NotificationAttemptModel)
            .where(
                NotificationAttemptModel.transition_id == transition_id,
                NotificationAttemptModel.attempt_number == attempt_number,
            )
            .execution_options(populate_existing=True)
        ).scalar_one()

        attempt.outcome = outcome.value
        attempt.completed_at = self._clock.now()
        attempt.response_status_code = response_status_code
        attempt.response_detail = response_detail
        self.session.flush()
        return NotificationAttemptRecord.from_model(attempt)

    def finalize(
        self,
        transition_id: UUID,
        outcome: NotificationOutcome,
        last_error: str | None = None,
    ) -> DeliveryRecord:
        """
        Close an in-flight delivery with its final outcome.

        ``outcome`` must be success, permanent_failure or skipped; a
        transient failure is never final.
        """
        if outcome not in DELIVERY_STATUS_FOR_OUTCOME:
            raise ValueError(f"{outcome.value} is not a final delivery outcome")
        target = DELIVERY_STATUS_FOR_OUTCOME[outcome]
        self._move(
            transition_id,
            target,
            allowed_from=[DeliveryStatus.IN_FLIGHT.value],
            final_outcome=outcome.value,
            last_error=last_error,
        )
        logger.info(
            "delivery_finalized",
            extra={
                "transition_id": str(transition_id),
                "status": target.value,
                "final_outcome": outcome.value,
            },
        )
        return self.delivery(transition_id)

    def abandon(self, transition_id: UUID, detail: str | None = None) -> DeliveryRecord:
        """Give up on a pending or in-flight delivery (shutdown)."""
        self._move(
            transition_id,
            DeliveryStatus.ABANDONED,
            allowed_from=_sources_for(DeliveryStatus.ABANDONED),
            last_error=detail,
        )
        logger.warning(
            "delivery_abandoned",
            extra={"transition_id": str(transition_id), "detail": detail},
        )
        return self.delivery(transition_id)

    def requeue(self, transition_id: UUID) -> DeliveryRecord:
        """Return an abandoned or stranded in-flight delivery to pending."""
        self._move(
            transition_id,
            DeliveryStatus.PENDING,
            allowed_from=_sources_for(DeliveryStatus.PENDING),
        )
        logger.info("delivery_requeued", extra={"transition_id": str(transition_id)})
        return self.delivery(transition_id)

    def finalize_interrupted_attempts(self) -> list[NotificationAttemptRecord]:
        """
        Close every attempt still without an outcome as skipped/interrupted.

        Only safe when no worker is running (startup).
        """
        rows = list(
            self.session.execute(
                select(NotificationAttemptModel)
                .where(NotificationAttemptModel.outcome.is_(None))
                .order_by(
                    NotificationAttemptModel.transition_id,
                    NotificationAttemptModel.attempt_number,
                )
                .execution_options(populate_existing=True)
            ).scalars()
        )
        now = self._clock.now()
        for attempt in rows:
            attempt.outcome = NotificationOutcome.SKIPPED.value
            attempt.completed_at = now
            attempt.response_detail = INTERRUPTED_DETAIL
        self.session.flush()
        return [NotificationAttemptRecord.from_model(a) for a in rows]

    def stranded_transition_ids(self) -> list[UUID]:
        """Deliveries left in_flight or abandoned."""
        return list(
            self.session.execute(
                select(NotificationDeliveryModel.transition_id)
                .where(
                    NotificationDeliveryModel.status.in_(
                        [DeliveryStatus.IN_FLIGHT.value, DeliveryStatus.ABANDONED.value]
                    )
                )
                .order_by(NotificationDeliveryModel.created_at)
            ).scalars()
        )

    def delivery(self, transition_id: UUID) -> DeliveryRecord:
        return DeliveryRecord.from_model(self._get_delivery(transition_id))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _move(
        self,
        transition_id: UUID,
        target: DeliveryStatus,
        allowed_from: list[str],
        **values,
    ) -> None:
        result = self.session.execute(
            update(NotificationDeliveryModel)
            .where(
                NotificationDeliveryModel.transition_id == transition_id,
                NotificationDeliveryModel.status.in_(allowed_from),
            )
            .values(status=target.value, updated_at=self._clock.now(), **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            return

        current = self._get_delivery(transition_id)
        raise InvalidDeliveryTransitionError(
            transition_id=str(transition_id),
            from_status=current.status,
            to_status=target.value,
        )

    def _get_delivery(self, transition_id: UUID) -> NotificationDeliveryModel:
        delivery = self.session.execute(
            select(NotificationDeliveryModel)
            .where(NotificationDeliveryModel.transition_id == transition_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if delivery is None:
            raise DeliveryNotFoundError(str(transition_id))
        return delivery
