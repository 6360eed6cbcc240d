"""
Module: workflow_kernel.models.status_transition
Responsibility: ORM persistence for accepted status transitions -- the
    append-only status history of every project.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Append-only: rows are never updated or deleted (ORM listeners in
      db/immutability.py).
    - UNIQUE (entity_id, sequence): two writers can never both record the
      n-th transition of a project.
    - UNIQUE (entity_id, from_status, to_status, idempotency_key): a retried
      request can never create a second row.

Failure modes:
    - IntegrityError on either unique constraint (translated by StatusLedger
      into a replay or a PersistenceConflictError).
    - ImmutabilityViolationError on UPDATE or DELETE.

Audit relevance:
    This table IS the audit trail: who moved which project from what to what,
    when, in which role, and with which notes.
"""

from datetime import datetime

from sqlalchemy import ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from workflow_kernel.db.base import Base


class StatusTransitionModel(Base):
    """
    One accepted status change.

    Guarantees:
        - ``id`` is the transition id used as the notification
          Idempotency-Key.
        - ``sequence`` is 1-based per entity, gap-free.
    """

    __tablename__ = "status_transitions"

    __table_args__ = (
        UniqueConstraint("entity_id", "sequence", name="uq_transition_entity_sequence"),
        UniqueConstraint(
            "entity_id",
            "from_status",
            "to_status",
            "idempotency_key",
            name="uq_transition_idempotency",
        ),
        Index("idx_transition_occurred", "occurred_at"),
    )

    entity_id: Mapped[str] = mapped_column(
        String(100),
        ForeignKey("project_status_records.entity_id"),
        nullable=False,
    )

    entity_name: Mapped[str] = mapped_column(String(255), nullable=False)

    from_status: Mapped[str] = mapped_column(String(20), nullable=False)

    to_status: Mapped[str] = mapped_column(String(20), nullable=False)

    changed_by: Mapped[str] = mapped_column(String(100), nullable=False)

    actor_role: Mapped[str] = mapped_column(String(20), nullable=False)

    occurred_at: Mapped[datetime] = mapped_column(nullable=False)

    sequence: Mapped[int] = mapped_column(nullable=False)

    idempotency_key: Mapped[str] = mapped_column(String(200), nullable=False)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Whole seconds the project spent in from_status
    seconds_in_previous_status: Mapped[int | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return (
            f"<StatusTransition {self.entity_id}#{self.sequence} "
            f"{self.from_status}->{self.to_status}>"
        )
