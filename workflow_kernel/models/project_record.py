"""
Module: workflow_kernel.models.project_record
Responsibility: ORM persistence for the current-status projection of each
    project.  One row per project; ``version`` counts accepted transitions.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - One record per entity (UNIQUE entity_id).
    - ``current_status`` always equals the ``to_status`` of the transition
      whose ``sequence`` equals ``version``.  StatusLedger updates the record
      and inserts the transition in the same database transaction, guarded
      by ``WHERE version = :expected AND current_status = :from``.

Failure modes:
    - IntegrityError on duplicate entity_id (translated by StatusLedger into
      ProjectAlreadyRegisteredError).
    - ImmutabilityViolationError on DELETE (history would be orphaned).
"""

from datetime import datetime

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column

from workflow_kernel.db.base import TrackedBase


class ProjectStatusRecord(TrackedBase):
    """
    Current status of record for one project.

    Contract:
        Written only by StatusLedger.  ``version`` starts at 0 when the
        project is registered and increases by exactly 1 per accepted
        transition.
    """

    __tablename__ = "project_status_records"

    __table_args__ = (
        Index("idx_project_status_current", "current_status"),
    )

    entity_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        unique=True,
    )

    # Denormalized display name, copied into every transition payload
    entity_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    current_status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
    )

    version: Mapped[int] = mapped_column(
        nullable=False,
        default=0,
        server_default="0",
    )

    # When current_status was entered
    status_since: Mapped[datetime] = mapped_column(
        nullable=False,
    )

    def __repr__(self) -> str:
        return (
            f"<ProjectStatusRecord {self.entity_id} "
            f"{self.current_status} v{self.version}>"
        )
