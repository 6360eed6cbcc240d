"""
StatusLedger -- append-only status history with optimistic concurrency.

Responsibility:
    Registers projects, records accepted transitions, and maintains the
    current-status projection.  The single writer of
    ``status_transitions``, ``project_status_records`` and the initial
    ``notification_deliveries`` row of each transition.

Architecture position:
    Kernel > Services -- imperative shell.
    Called by TransitionOrchestrator after TransitionValidator approval.

Invariants enforced:
    - Per-entity serialization by version, not by lock: the projection is
      updated with ``WHERE version = :expected AND current_status = :from``.
      Zero rows means another writer got there first.
    - Idempotency: (entity_id, from_status, to_status, idempotency_key)
      identifies one logical request.  A repeat returns the original
      transition (``replayed=True``) and writes nothing.
    - Transition, projection update and pending delivery are written in one
      savepoint: all three land or none does.

Failure modes:
    - ProjectNotFoundError: entity never registered.
    - ProjectAlreadyRegisteredError: register_project() on a known entity.
    - PersistenceConflictError: version superseded, unique constraint hit,
      or the database reported a lock conflict.  Retryable.
    - OperationalError from a lock wait that ran past the transaction's
      lock timeout is re-raised unchanged for the caller to map.

Audit relevance:
    Every append is logged with entity, from/to, sequence and the
    idempotency key; replays and conflicts are logged separately.
"""

from __future__ import annotations

from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, OperationalError

from workflow_kernel.db.engine import is_lock_timeout
from workflow_kernel.domain.dtos import (
    AppendResult,
    DeliveryStatus,
    ProjectSnapshot,
    StatusTransition,
    TransitionDraft,
)
from workflow_kernel.domain.statuses import INITIAL_STATUS, ProjectStatus
from workflow_kernel.exceptions import (
    PersistenceConflictError,
    ProjectAlreadyRegisteredError,
    ProjectNotFoundError,
)
from workflow_kernel.logging_config import get_logger
from workflow_kernel.models.notification import NotificationDeliveryModel
from workflow_kernel.models.project_record import ProjectStatusRecord
from workflow_kernel.models.status_transition import StatusTransitionModel
from workflow_kernel.selectors.status_selector import StatusSelector
from workflow_kernel.services.base import BaseService

logger = get_logger("services.status_ledger")


class StatusLedger(BaseService[StatusTransitionModel]):
    """
    Append-only status history.

    Contract:
        Flushes within the caller's transaction.  The caller commits; until
        then nothing appended here is visible to other sessions.
    """

    def register_project(
        self,
        entity_id: str,
        entity_name: str,
        actor_id: str,
        initial_status: ProjectStatus = INITIAL_STATUS,
    ) -> ProjectSnapshot:
        """
        Create the status record for a new project at version 0.

        Raises:
            ProjectAlreadyRegisteredError: If a record already exists.
        """
        existing = self._get_record(entity_id)
        if existing is not None:
            raise ProjectAlreadyRegisteredError(entity_id, existing.current_status)

        record = ProjectStatusRecord(
            entity_id=entity_id,
            entity_name=entity_name,
            current_status=initial_status.value,
            version=0,
            status_since=self._clock.now(),
            created_by=actor_id,
        )
        try:
            with self.session.begin_nested():
                self.session.add(record)
                self.session.flush()
        except IntegrityError:
            # Registered concurrently
            winner = self._get_record(entity_id)
            raise ProjectAlreadyRegisteredError(
                entity_id,
                winner.current_status if winner is not None else "unknown",
            ) from None

        logger.info(
            "project_registered",
            extra={
                "entity_id": entity_id,
                "initial_status": initial_status.value,
                "actor_id": actor_id,
            },
        )
        return ProjectSnapshot.from_model(record)

    def snapshot(self, entity_id: str) -> ProjectSnapshot:
        """
        Current status and version, read fresh from the database.

        Raises:
            ProjectNotFoundError: If the project was never registered.
        """
        return StatusSelector(self.session).snapshot(entity_id)

    def latest_status(self, entity_id: str) -> ProjectStatus:
        return self.snapshot(entity_id).current_status

    def history(self, entity_id: str) -> list[StatusTransition]:
        return StatusSelector(self.session).history(entity_id)

    def find_transition(
        self,
        entity_id: str,
        to_status: ProjectStatus,
        idempotency_key: str,
        from_status: ProjectStatus | None = None,
    ) -> StatusTransition | None:
        """
        Find a transition previously recorded for the same logical request.

        Without ``from_status`` the most recent match on
        (entity, to_status, key) is returned.
        """
        stmt = select(StatusTransitionModel).where(
            StatusTransitionModel.entity_id == entity_id,
            StatusTransitionModel.to_status == to_status.value,
            StatusTransitionModel.idempotency_key == idempotency_key,
        )
        if from_status is not None:
            stmt = stmt.where(StatusTransitionModel.from_status == from_status.value)
        row = self.session.execute(
            stmt.order_by(StatusTransitionModel.sequence.desc()).limit(1)
        ).scalar_one_or_none()
        return StatusTransition.from_model(row) if row is not None else None

    def append(self, draft: TransitionDraft, expected_version: int) -> AppendResult:
        """
        Record an accepted transition.

        Preconditions:
            ``draft`` was approved by the validator against a snapshot whose
            version is ``expected_version``.

        Postconditions:
            On a fresh append: one new StatusTransition with
            ``sequence == expected_version + 1``, the projection moved to
            ``draft.to_status`` at that version, and a pending delivery.

        Raises:
            ProjectNotFoundError: entity never registered.
            PersistenceConflictError: a concurrent writer moved the entity.
        """
        replay = self._find_replay(draft)
        if replay is not None:
            logger.info(
                "transition_replayed",
                extra={
                    "entity_id": draft.entity_id,
                    "transition_id": str(replay.transition_id),
                    "idempotency_key": draft.idempotency_key,
                },
            )
            return AppendResult(transition=replay, replayed=True)

        try:
            with self.session.begin_nested():
                model = self._append_in_savepoint(draft, expected_version)
        except PersistenceConflictError:
            return self._replay_or_raise(draft, expected_version, "version superseded")
        except (IntegrityError, OperationalError) as exc:
            if isinstance(exc, OperationalError) and is_lock_timeout(exc):
                raise
            return self._replay_or_raise(
                draft, expected_version, f"{type(exc).__name__}: {exc.orig}"
            )

        transition = StatusTransition.from_model(model)
        logger.info(
            "transition_appended",
            extra={
                "entity_id": transition.entity_id,
                "transition_id": str(transition.transition_id),
                "from_status": transition.from_status.value,
                "to_status": transition.to_status.value,
                "sequence": transition.sequence,
                "idempotency_key": transition.idempotency_key,
            },
        )
        return AppendResult(transition=transition, replayed=False)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _append_in_savepoint(
        self, draft: TransitionDraft, expected_version: int,
    ) -> StatusTransitionModel:
        record = self._get_record(draft.entity_id)
        if record is None:
            raise ProjectNotFoundError(draft.entity_id)

        new_version = expected_version + 1
        seconds_in_previous = max(
            0, int((draft.occurred_at - record.status_since).total_seconds())
        )

        result = self.session.execute(
            update(ProjectStatusRecord)
            .where(
                ProjectStatusRecord.entity_id == draft.entity_id,
                ProjectStatusRecord.version == expected_version,
                ProjectStatusRecord.current_status == draft.from_status.value,
            )
            .values(
                current_status=draft.to_status.value,
                version=new_version,
                status_since=draft.occurred_at,
                updated_by=draft.changed_by,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise PersistenceConflictError(draft.entity_id, expected_version)

        model = StatusTransitionModel(
            id=uuid4(),
            entity_id=draft.entity_id,
            entity_name=record.entity_name,
            from_status=draft.from_status.value,
            to_status=draft.to_status.value,
            changed_by=draft.changed_by,
            actor_role=draft.actor_role.value,
            occurred_at=draft.occurred_at,
            sequence=new_version,
            idempotency_key=draft.idempotency_key,
            notes=draft.notes,
            seconds_in_previous_status=seconds_in_previous,
        )
        self.session.add(model)
        self.session.flush()

        now = self._clock.now()
        self.session.add(
            NotificationDeliveryModel(
                transition_id=model.id,
                status=DeliveryStatus.PENDING.value,
                attempt_count=0,
                created_at=now,
                updated_at=now,
            )
        )
        self.session.flush()
        return model

    def _replay_or_raise(
        self, draft: TransitionDraft, expected_version: int, detail: str,
    ) -> AppendResult:
        replay = self._find_replay(draft)
        if replay is not None:
            logger.info(
                "transition_replayed_after_conflict",
                extra={
                    "entity_id": draft.entity_id,
                    "transition_id": str(replay.transition_id),
                },
            )
            return AppendResult(transition=replay, replayed=True)

        logger.warning(
            "transition_persistence_conflict",
            extra={
                "entity_id": draft.entity_id,
                "expected_version": expected_version,
                "from_status": draft.from_status.value,
                "to_status": draft.to_status.value,
                "detail": detail,
            },
        )
        raise PersistenceConflictError(draft.entity_id, expected_version, detail)

    def _find_replay(self, draft: TransitionDraft) -> StatusTransition | None:
        return self.find_transition(
            draft.entity_id,
            draft.to_status,
            draft.idempotency_key,
            from_status=draft.from_status,
        )

    def _get_record(self, entity_id: str) -> ProjectStatusRecord | None:
        return self.session.execute(
            select(ProjectStatusRecord)
            .where(ProjectStatusRecord.entity_id == entity_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
