"""
TransitionValidator -- Pure decision on whether a status change is legal.

Responsibility:
    Decide whether ``current_status -> requested_status`` may be performed
    by ``actor_role`` on an entity whose persisted status is
    ``persisted_status``, and say exactly why not when it may not.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    The caller (TransitionOrchestrator) reads the persisted status; this
    module never touches the database.

Invariants enforced:
    - Checks run in a fixed order: stale state, then legality, then role.
      A stale snapshot is reported as STALE_STATE even if the requested
      pair would also be illegal.
    - Deterministic: the same inputs always give the same outcome.

Failure modes:
    - Never raises for a rejected transition; rejection is a value.
    - UnknownStatusError / UnknownRoleError only from parse_status /
      parse_role, at the boundary.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from workflow_kernel.domain.statuses import (
    ALLOWED_TRANSITIONS,
    STATUS_ORDER,
    ActorRole,
    ProjectStatus,
    parse_role,
    parse_status,
    roles_for,
)
from workflow_kernel.exceptions import TransitionRejectedError

__all__ = [
    "RejectionReason",
    "Rejection",
    "ValidationOutcome",
    "validate_transition",
    "allowed_next_statuses",
    "parse_status",
    "parse_role",
]


class RejectionReason(str, Enum):
    """Machine-readable reason a transition was rejected."""

    STALE_STATE = "STALE_STATE"
    ILLEGAL_TRANSITION = "ILLEGAL_TRANSITION"
    FORBIDDEN_FOR_ROLE = "FORBIDDEN_FOR_ROLE"


@dataclass(frozen=True)
class Rejection:
    """Why a requested transition was refused."""

    reason: RejectionReason
    message: str
    entity_id: str
    from_status: ProjectStatus
    to_status: ProjectStatus
    actor_role: ActorRole

    @property
    def code(self) -> str:
        return self.reason.value

    def to_error(self) -> TransitionRejectedError:
        """Exception form, for callers that prefer raising."""
        return TransitionRejectedError(
            entity_id=self.entity_id,
            reason_code=self.reason.value,
            from_status=self.from_status.value,
            to_status=self.to_status.value,
            message=self.message,
        )


@dataclass(frozen=True)
class ValidationOutcome:
    """
    Result of validate_transition().

    Guarantees:
        - ``ok`` is True exactly when ``rejection`` is None.
        - bool(outcome) == outcome.ok
    """

    ok: bool
    rejection: Rejection | None = None

    @classmethod
    def accepted(cls) -> ValidationOutcome:
        return cls(ok=True)

    @classmethod
    def rejected(cls, rejection: Rejection) -> ValidationOutcome:
        return cls(ok=False, rejection=rejection)

    @property
    def reason(self) -> RejectionReason | None:
        return self.rejection.reason if self.rejection else None

    def __bool__(self) -> bool:
        return self.ok


def validate_transition(
    entity_id: str,
    current_status: ProjectStatus,
    requested_status: ProjectStatus,
    actor_role: ActorRole,
    persisted_status: ProjectStatus,
) -> ValidationOutcome:
    """
    Validate a requested status change.

    Args:
        entity_id: Project the change is for (carried into the rejection).
        current_status: The caller's view of the current status.
        requested_status: Status the caller wants to move to.
        actor_role: Role of the requesting actor.
        persisted_status: Last status of record, read from the ledger.

    Returns:
        ValidationOutcome -- accepted, or rejected with a RejectionReason.
    """

    def _reject(reason: RejectionReason, message: str) -> ValidationOutcome:
        return ValidationOutcome.rejected(
            Rejection(
                reason=reason,
                message=message,
                entity_id=entity_id,
                from_status=current_status,
                to_status=requested_status,
                actor_role=actor_role,
            )
        )

    if current_status is not persisted_status:
        return _reject(
            RejectionReason.STALE_STATE,
            f"Project {entity_id} is {persisted_status.value}, "
            f"not {current_status.value}; re-read and retry",
        )

    if requested_status not in ALLOWED_TRANSITIONS[current_status]:
        return _reject(
            RejectionReason.ILLEGAL_TRANSITION,
            f"Cannot move project {entity_id} from "
            f"{current_status.value} to {requested_status.value}",
        )

    if actor_role not in roles_for(current_status, requested_status):
        return _reject(
            RejectionReason.FORBIDDEN_FOR_ROLE,
            f"Role {actor_role.value} may not move project {entity_id} "
            f"from {current_status.value} to {requested_status.value}",
        )

    return ValidationOutcome.accepted()


def allowed_next_statuses(
    status: ProjectStatus,
    role: ActorRole | None = None,
) -> tuple[ProjectStatus, ...]:
    """
    Statuses reachable from ``status`` in lifecycle order.

    With ``role``, only the targets that role may perform are returned.
    """
    targets = ALLOWED_TRANSITIONS[status]
    if role is not None:
        targets = frozenset(t for t in targets if role in roles_for(status, t))
    return tuple(s for s in STATUS_ORDER if s in targets)
