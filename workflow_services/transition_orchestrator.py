"""
TransitionOrchestrator -- validate, persist, then hand off notification.

Responsibility:
    The single entry point for status changes.  Reads the status of record,
    asks the validator, appends to the ledger and commits, and only then
    enqueues the transition for notification.

Architecture position:
    Services layer.  Owns the request transaction; the kernel services it
    calls only flush.

Request state machine:
    requested -> validating -> (rejected | validated) -> persisting ->
    persisted -> notifying -> (notify_succeeded | notify_degraded |
    notify_skipped)

    The call returns at ``rejected``, at ``persisted`` (replays, or no
    dispatcher) or at ``notifying``.  The notify_* states are read later
    through ``notification_state()``.

Invariants enforced:
    - A rejected request has no ledger or notifier side effects.
    - Success is returned only after commit.
    - Notification never blocks the caller and never changes the result.
    - Cancellation and the request deadline are checked before validating,
      before persisting and before commit; hitting either rolls back.
    - Database lock waits inside the request transaction are bounded by
      the time left before the deadline.
    - Without expected_status a matching transition is a replay only while
      it is still the latest one for the entity.

Failure modes:
    - UnknownStatusError / UnknownRoleError for values outside the enums.
    - ProjectNotFoundError for an unregistered entity.
    - PersistenceConflictError (retryable) when a concurrent writer won.
    - TransitionCancelledError / TransitionTimeoutError.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol
from uuid import UUID, uuid4

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from workflow_kernel.db.engine import LOCK_TIMEOUT_OPTION, is_lock_timeout, session_scope
from workflow_kernel.domain.clock import Clock, SystemClock
from workflow_kernel.domain.dtos import (
    DeliveryStatus,
    ProjectSnapshot,
    StatusTransition,
    TransitionDraft,
)
from workflow_kernel.domain.statuses import (
    INITIAL_STATUS,
    ActorRole,
    ProjectStatus,
    parse_role,
    parse_status,
)
from workflow_kernel.domain.transition_validator import (
    Rejection,
    RejectionReason,
    ValidationOutcome,
    allowed_next_statuses,
    validate_transition,
)
from workflow_kernel.exceptions import TransitionCancelledError, TransitionTimeoutError
from workflow_kernel.logging_config import LogContext, get_logger
from workflow_kernel.observability import (
    log_transition_accepted,
    log_transition_rejected,
)
from workflow_kernel.selectors.status_selector import StatusSelector
from workflow_kernel.services.status_ledger import StatusLedger
from workflow_kernel.utils.idempotency import normalize_idempotency_key

logger = get_logger("services.transition_orchestrator")


class RequestState(str, Enum):
    """Per-request orchestration state."""

    REQUESTED = "requested"
    VALIDATING = "validating"
    REJECTED = "rejected"
    VALIDATED = "validated"
    PERSISTING = "persisting"
    PERSISTED = "persisted"
    NOTIFYING = "notifying"
    NOTIFY_SUCCEEDED = "notify_succeeded"
    NOTIFY_DEGRADED = "notify_degraded"
    NOTIFY_SKIPPED = "notify_skipped"


_NOTIFY_STATE_FOR_DELIVERY: dict[DeliveryStatus, RequestState] = {
    DeliveryStatus.SUCCEEDED: RequestState.NOTIFY_SUCCEEDED,
    DeliveryStatus.FAILED: RequestState.NOTIFY_DEGRADED,
    DeliveryStatus.SKIPPED: RequestState.NOTIFY_SKIPPED,
}


@dataclass(frozen=True)
class TransitionRequest:
    """
    Inbound request for a status change.

    ``expected_status`` is the status the caller saw; without it the
    persisted status is used (no stale-state protection beyond the version
    check).  ``expected_version`` additionally pins the version the caller
    saw.
    """

    entity_id: str
    requested_status: ProjectStatus | str
    actor_id: str
    actor_role: ActorRole | str
    idempotency_key: str
    expected_status: ProjectStatus | str | None = None
    expected_version: int | None = None
    notes: str | None = None


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of request_transition()."""

    state: RequestState
    entity_id: str
    transition: StatusTransition | None = None
    rejection: Rejection | None = None
    replayed: bool = False
    states: tuple[RequestState, ...] = field(default_factory=tuple)

    @property
    def accepted(self) -> bool:
        return self.transition is not None

    @property
    def rejected(self) -> bool:
        return self.state is RequestState.REJECTED

    @property
    def transition_id(self) -> UUID | None:
        return self.transition.transition_id if self.transition else None


class CancellationToken:
    """Caller-held handle for cancelling an in-flight request."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class Enqueuer(Protocol):
    def enqueue(self, transition_id: UUID) -> None:
        ...


class TransitionOrchestrator:
    """
    Coordinates validator, ledger and dispatcher for status changes.

    Args:
        session_factory: One session (and transaction) per request.
        dispatcher: Receives committed transition ids.  Optional: without
            it deliveries stay pending for the next recovery run.
        clock: Defaults to SystemClock.
        request_timeout_seconds: Deadline for validate + persist.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        dispatcher: Enqueuer | None = None,
        clock: Clock | None = None,
        request_timeout_seconds: float = 5.0,
    ):
        self._session_factory = session_factory
        self._dispatcher = dispatcher
        self._clock = clock or SystemClock()
        self._timeout = request_timeout_seconds

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def register_project(
        self,
        entity_id: str,
        entity_name: str,
        actor_id: str,
        initial_status: ProjectStatus | str = INITIAL_STATUS,
    ) -> ProjectSnapshot:
        """Start tracking a project's status (version 0)."""
        status = parse_status(initial_status)
        with session_scope(self._session_factory) as session:
            return StatusLedger(session, self._clock).register_project(
                entity_id, entity_name, actor_id, status,
            )

    def request_transition(
        self,
        request: TransitionRequest,
        cancel_token: CancellationToken | None = None,
    ) -> TransitionResult:
        """
        Validate and persist one status change, then enqueue notification.

        Returns:
            TransitionResult in state ``rejected``, ``persisted`` or
            ``notifying``.

        Raises:
            PersistenceConflictError: re-read the status and request again.
            TransitionCancelledError, TransitionTimeoutError: nothing was
                persisted.
        """
        requested = parse_status(request.requested_status)
        role = parse_role(request.actor_role)
        expected_status = (
            parse_status(request.expected_status)
            if request.expected_status is not None
            else None
        )
        key = normalize_idempotency_key(request.idempotency_key)
        deadline = self._clock.monotonic() + self._timeout
        states = [RequestState.REQUESTED]

        with LogContext.bind(
            correlation_id=str(uuid4()),
            actor_id=request.actor_id,
            entity_id=request.entity_id,
        ):
            t0 = self._clock.monotonic()
            session = self._session_factory()
            stage = "validating"
            try:
                states.append(RequestState.VALIDATING)
                remaining = self._checkpoint(request.entity_id, cancel_token, deadline, stage)
                session.connection(execution_options={LOCK_TIMEOUT_OPTION: remaining})
                ledger = StatusLedger(session, self._clock)
                snapshot = ledger.snapshot(request.entity_id)

                replay = self._find_replay(
                    ledger, request, snapshot, requested, key, expected_status,
                )
                if replay is not None:
                    session.rollback()
                    states.append(RequestState.PERSISTED)
                    self._log_accepted(replay, request.actor_id, True, t0)
                    return TransitionResult(
                        state=RequestState.PERSISTED,
                        entity_id=request.entity_id,
                        transition=replay,
                        replayed=True,
                        states=tuple(states),
                    )

                outcome = self._validate(request, snapshot, expected_status, requested, role)
                if not outcome.ok:
                    session.rollback()
                    states.append(RequestState.REJECTED)
                    rejection = outcome.rejection
                    log_transition_rejected(
                        entity_id=request.entity_id,
                        reason=rejection.code,
                        from_status=rejection.from_status.value,
                        to_status=rejection.to_status.value,
                        actor_role=role.value,
                        persisted_status=snapshot.current_status.value,
                    )
                    return TransitionResult(
                        state=RequestState.REJECTED,
                        entity_id=request.entity_id,
                        rejection=rejection,
                        states=tuple(states),
                    )
                states.append(RequestState.VALIDATED)

                draft = TransitionDraft(
                    entity_id=request.entity_id,
                    from_status=snapshot.current_status,
                    to_status=requested,
                    changed_by=request.actor_id,
                    actor_role=role,
                    idempotency_key=key,
                    occurred_at=self._clock.now(),
                    notes=request.notes,
                )
                states.append(RequestState.PERSISTING)
                stage = "persisting"
                self._checkpoint(request.entity_id, cancel_token, deadline, stage)
                appended = ledger.append(draft, expected_version=snapshot.version)
                stage = "committing"
                self._checkpoint(request.entity_id, cancel_token, deadline, stage)
                session.commit()
                states.append(RequestState.PERSISTED)
            except OperationalError as exc:
                session.rollback()
                if not is_lock_timeout(exc):
                    raise
                logger.warning(
                    "transition_timed_out",
                    extra={
                        "stage": stage,
                        "timeout_seconds": self._timeout,
                        "detail": str(exc.orig),
                    },
                )
                raise TransitionTimeoutError(request.entity_id, stage, self._timeout) from exc
            except BaseException:
                session.rollback()
                raise
            finally:
                session.close()

            transition = appended.transition
            self._log_accepted(transition, request.actor_id, appended.replayed, t0)

            state = RequestState.PERSISTED
            if not appended.replayed and self._dispatcher is not None:
                self._dispatcher.enqueue(transition.transition_id)
                state = RequestState.NOTIFYING
                states.append(state)

            return TransitionResult(
                state=state,
                entity_id=request.entity_id,
                transition=transition,
                replayed=appended.replayed,
                states=tuple(states),
            )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def allowed_next_statuses(
        self, entity_id: str, role: ActorRole | str | None = None,
    ) -> tuple[ProjectStatus, ...]:
        """Statuses the project can move to now (optionally for ``role``)."""
        parsed_role = parse_role(role) if role is not None else None
        with session_scope(self._session_factory) as session:
            current = StatusSelector(session).latest_status(entity_id)
        return allowed_next_statuses(current, parsed_role)

    def latest_status(self, entity_id: str) -> ProjectStatus:
        with session_scope(self._session_factory) as session:
            return StatusSelector(session).latest_status(entity_id)

    def history(self, entity_id: str) -> list[StatusTransition]:
        with session_scope(self._session_factory) as session:
            return StatusSelector(session).history(entity_id)

    def notification_state(self, transition_id: UUID) -> RequestState:
        """Where the notification for a committed transition stands."""
        with session_scope(self._session_factory) as session:
            delivery = StatusSelector(session).delivery(transition_id)
        if delivery is None:
            return RequestState.PERSISTED
        return _NOTIFY_STATE_FOR_DELIVERY.get(delivery.status, RequestState.NOTIFYING)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _validate(
        self,
        request: TransitionRequest,
        snapshot: ProjectSnapshot,
        expected_status: ProjectStatus | None,
        requested: ProjectStatus,
        role: ActorRole,
    ) -> ValidationOutcome:
        current = expected_status or snapshot.current_status
        if (
            request.expected_version is not None
            and request.expected_version != snapshot.version
        ):
            return ValidationOutcome.rejected(
                Rejection(
                    reason=RejectionReason.STALE_STATE,
                    message=(
                        f"Project {request.entity_id} is at version "
                        f"{snapshot.version}, not {request.expected_version}; "
                        f"re-read and retry"
                    ),
                    entity_id=request.entity_id,
                    from_status=current,
                    to_status=requested,
                    actor_role=role,
                )
            )
        return validate_transition(
            request.entity_id, current, requested, role, snapshot.current_status,
        )

    def _find_replay(
        self,
        ledger: StatusLedger,
        request: TransitionRequest,
        snapshot: ProjectSnapshot,
        requested: ProjectStatus,
        key: str,
        expected_status: ProjectStatus | None,
    ) -> StatusTransition | None:
        replay = ledger.find_transition(
            request.entity_id, requested, key, from_status=expected_status,
        )
        if replay is None:
            return None
        if expected_status is None and replay.sequence != snapshot.version:
            # Superseded: from the current status the key names a new request
            logger.info(
                "transition_key_reused",
                extra={
                    "transition_id": str(replay.transition_id),
                    "replay_sequence": replay.sequence,
                    "current_version": snapshot.version,
                },
            )
            return None
        if replay.changed_by != request.actor_id:
            logger.warning(
                "transition_replay_actor_mismatch",
                extra={
                    "transition_id": str(replay.transition_id),
                    "recorded_actor_id": replay.changed_by,
                },
            )
        return replay

    def _checkpoint(
        self,
        entity_id: str,
        cancel_token: CancellationToken | None,
        deadline: float,
        stage: str,
    ) -> float:
        """Raise if cancelled or past the deadline, else return seconds left."""
        if cancel_token is not None and cancel_token.cancelled:
            logger.info("transition_cancelled", extra={"stage": stage})
            raise TransitionCancelledError(entity_id, stage)
        now = self._clock.monotonic()
        if now > deadline:
            logger.warning(
                "transition_timed_out",
                extra={"stage": stage, "timeout_seconds": self._timeout},
            )
            raise TransitionTimeoutError(entity_id, stage, self._timeout)
        return deadline - now

    def _log_accepted(
        self, transition: StatusTransition, actor_id: str, replayed: bool, t0: float,
    ) -> None:
        log_transition_accepted(
            entity_id=transition.entity_id,
            transition_id=str(transition.transition_id),
            from_status=transition.from_status.value,
            to_status=transition.to_status.value,
            actor_id=actor_id,
            sequence=transition.sequence,
            replayed=replayed,
            duration_ms=(self._clock.monotonic() - t0) * 1000,
        )
