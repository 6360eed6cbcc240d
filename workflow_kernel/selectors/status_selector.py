"""
StatusSelector -- read-only queries over status history and deliveries.

Responsibility:
    The canonical read path for ``history``, ``latest_status``, the attempt
    trail of a transition, its delivery row, and the list of deliveries
    still owed.

Guarantees:
    - history() is in append order (sequence ascending).
    - latest_status() reads the projection that StatusLedger maintains in
      the same transaction as every append, so it always equals the
      ``to_status`` of the last entry of history() (or the registration
      status when history is empty).
"""

from uuid import UUID

from sqlalchemy import select

from workflow_kernel.domain.dtos import (
    DeliveryRecord,
    DeliveryStatus,
    NotificationAttemptRecord,
    ProjectSnapshot,
    StatusTransition,
)
from workflow_kernel.domain.statuses import ProjectStatus
from workflow_kernel.exceptions import ProjectNotFoundError
from workflow_kernel.models.notification import (
    NotificationAttemptModel,
    NotificationDeliveryModel,
)
from workflow_kernel.models.project_record import ProjectStatusRecord
from workflow_kernel.models.status_transition import StatusTransitionModel
from workflow_kernel.selectors.base import BaseSelector


class StatusSelector(BaseSelector[StatusTransitionModel]):
    """Read-only queries for project status and notification bookkeeping."""

    def snapshot(self, entity_id: str) -> ProjectSnapshot:
        """
        Current status of record and version.

        Raises:
            ProjectNotFoundError: If the project was never registered.
        """
        record = self.session.execute(
            select(ProjectStatusRecord)
            .where(ProjectStatusRecord.entity_id == entity_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if record is None:
            raise ProjectNotFoundError(entity_id)
        return ProjectSnapshot.from_model(record)

    def latest_status(self, entity_id: str) -> ProjectStatus:
        return self.snapshot(entity_id).current_status

    def history(self, entity_id: str) -> list[StatusTransition]:
        rows = self.session.execute(
            select(StatusTransitionModel)
            .where(StatusTransitionModel.entity_id == entity_id)
            .order_by(StatusTransitionModel.sequence)
        ).scalars()
        return [StatusTransition.from_model(row) for row in rows]

    def transition(self, transition_id: UUID) -> StatusTransition | None:
        row = self.session.get(StatusTransitionModel, transition_id)
        return StatusTransition.from_model(row) if row is not None else None

    def attempts(self, transition_id: UUID) -> list[NotificationAttemptRecord]:
        """Attempt trail for one transition, in attempt order."""
        rows = self.session.execute(
            select(NotificationAttemptModel)
            .where(NotificationAttemptModel.transition_id == transition_id)
            .order_by(NotificationAttemptModel.attempt_number)
            .execution_options(populate_existing=True)
        ).scalars()
        return [NotificationAttemptRecord.from_model(row) for row in rows]

    def delivery(self, transition_id: UUID) -> DeliveryRecord | None:
        row = self.session.execute(
            select(NotificationDeliveryModel)
            .where(NotificationDeliveryModel.transition_id == transition_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        return DeliveryRecord.from_model(row) if row is not None else None

    def pending_deliveries(self, limit: int | None = None) -> list[UUID]:
        """Transition ids whose delivery is pending, oldest first."""
        stmt = (
            select(NotificationDeliveryModel.transition_id)
            .where(NotificationDeliveryModel.status == DeliveryStatus.PENDING.value)
            .order_by(NotificationDeliveryModel.created_at)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.session.execute(stmt).scalars())
