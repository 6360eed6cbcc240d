"""
Module: workflow_kernel.models.notification
Responsibility: ORM persistence for outbound notification bookkeeping:
    one NotificationDelivery per transition (the outbox row) and one
    NotificationAttempt per delivery try.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/dtos.py (status enums).

Invariants enforced:
    - No delivery or attempt without its persisted transition (foreign keys;
      the delivery row is inserted in the transition's own transaction).
    - One delivery per transition (UNIQUE transition_id).
    - Attempt numbers are unique per transition.
    - An attempt is immutable once its outcome is set; deliveries move only
      along VALID_DELIVERY_TRANSITIONS (db/immutability.py).

Audit relevance:
    Attempts form the complete delivery trail for a transition, including
    tries interrupted by a shutdown (finalized on restart as skipped with
    detail ``interrupted``).
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from workflow_kernel.db.base import Base, UUIDString
from workflow_kernel.domain.dtos import DeliveryStatus


class NotificationDeliveryModel(Base):
    """
    Outbox row: the notification owed for one transition.

    Contract:
        Created as ``pending`` by StatusLedger.append().  A worker claims it
        with a conditional ``pending -> in_flight`` update; only the claimant
        may record attempts.
    """

    __tablename__ = "notification_deliveries"

    __table_args__ = (
        Index("idx_delivery_status", "status"),
    )

    transition_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("status_transitions.id"),
        nullable=False,
        unique=True,
    )

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=DeliveryStatus.PENDING.value,
    )

    attempt_count: Mapped[int] = mapped_column(
        nullable=False,
        default=0,
        server_default="0",
    )

    # Set once the delivery reaches a terminal status
    final_outcome: Mapped[str | None] = mapped_column(String(20), nullable=True)

    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False)

    updated_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<NotificationDelivery {self.transition_id} {self.status}>"


class NotificationAttemptModel(Base):
    """
    One delivery try.

    Contract:
        Inserted (and committed) with ``outcome`` NULL before the request is
        sent, then finalized with the outcome.  NULL outcome after a restart
        means the process died mid-request.
    """

    __tablename__ = "notification_attempts"

    __table_args__ = (
        UniqueConstraint(
            "transition_id", "attempt_number", name="uq_attempt_transition_number"
        ),
        Index("idx_attempt_outcome", "outcome"),
    )

    transition_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("status_transitions.id"),
        nullable=False,
    )

    attempt_number: Mapped[int] = mapped_column(nullable=False)

    sent_at: Mapped[datetime] = mapped_column(nullable=False)

    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # NULL while in flight
    outcome: Mapped[str | None] = mapped_column(String(20), nullable=True)

    response_status_code: Mapped[int | None] = mapped_column(nullable=True)

    response_detail: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<NotificationAttempt {self.transition_id}#{self.attempt_number} "
            f"{self.outcome}>"
        )
