"""
ORM-Level Immutability Enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

The status history is the audit trail of every project.  A transition that
was accepted must stay exactly as it was recorded, and the delivery trail
for its notification must not be rewritten after the fact.

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
We register listeners that intercept these events and check our invariants:

    session.flush()
         |
         v
    [before_update event] --> _check_*_immutability() --> ImmutabilityViolationError
         |                                                        ^
         v                                                        |
    [before_delete event] --> _check_*_delete() -----------------+
         |
         v
    SQL sent to database (only if checks pass)

Core ``update()`` statements bypass these listeners.  The only Core updates
in the kernel are the ledger's conditional projection update and the
delivery recorder's conditional status updates, both of which encode their
allowed source states in the WHERE clause.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity                  | When Immutable               | Why
------------------------|------------------------------|---------------------------------
StatusTransition        | ALWAYS (from creation)       | Audit trail of status changes
NotificationAttempt     | After outcome is set         | Delivery trail; no deletes ever
NotificationDelivery    | Status per lifecycle map     | Terminal deliveries stay terminal
ProjectStatusRecord     | Never deleted                | History would be orphaned

===============================================================================
USAGE
===============================================================================

Called automatically during application startup:

    from workflow_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()

To temporarily disable (TESTS ONLY):

    from workflow_kernel.db.immutability import unregister_immutability_listeners
    unregister_immutability_listeners()
"""

from sqlalchemy import event
from sqlalchemy.orm.attributes import get_history

from workflow_kernel.exceptions import (
    ImmutabilityViolationError,
    InvalidDeliveryTransitionError,
)
from workflow_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _blocked(entity_type: str, entity_id, operation: str, reason: str):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            "reason": reason,
        },
    )
    return ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _check_status_transition_immutability(mapper, connection, target):
    """Status transitions are never updated."""
    raise _blocked(
        "StatusTransition",
        target.id,
        "UPDATE",
        "Status transitions are append-only",
    )


def _check_status_transition_delete(mapper, connection, target):
    """Status transitions are never deleted."""
    raise _blocked(
        "StatusTransition",
        target.id,
        "DELETE",
        "Status transitions are append-only",
    )


def _check_attempt_immutability(mapper, connection, target):
    """
    Prevent updates to a finalized NotificationAttempt.

    The single allowed update is the finalization itself: outcome moving
    from NULL to a value.  Once the flushed row carries an outcome, nothing
    about it may change.
    """
    outcome_history = get_history(target, "outcome")

    if outcome_history.deleted:
        previous = outcome_history.deleted[0]
    elif outcome_history.unchanged:
        previous = outcome_history.unchanged[0]
    else:
        previous = None

    if previous is not None:
        raise _blocked(
            "NotificationAttempt",
            target.id,
            "UPDATE",
            f"Attempt outcome already recorded as {previous}",
        )


def _check_attempt_delete(mapper, connection, target):
    raise _blocked(
        "NotificationAttempt",
        target.id,
        "DELETE",
        "Notification attempts are part of the delivery trail",
    )


def _check_delivery_status_change(mapper, connection, target):
    """Deliveries may only move along VALID_DELIVERY_TRANSITIONS."""
    from workflow_kernel.domain.dtos import VALID_DELIVERY_TRANSITIONS, DeliveryStatus

    status_history = get_history(target, "status")
    if not status_history.deleted or not status_history.added:
        return

    old = DeliveryStatus(status_history.deleted[0])
    new = DeliveryStatus(status_history.added[0])
    if new is old:
        return
    if new not in VALID_DELIVERY_TRANSITIONS[old]:
        logger.error(
            "invalid_delivery_transition_blocked",
            extra={
                "transition_id": str(target.transition_id),
                "from_status": old.value,
                "to_status": new.value,
            },
        )
        raise InvalidDeliveryTransitionError(
            transition_id=str(target.transition_id),
            from_status=old.value,
            to_status=new.value,
        )


def _check_delivery_delete(mapper, connection, target):
    raise _blocked(
        "NotificationDelivery",
        target.transition_id,
        "DELETE",
        "Deliveries are kept for every transition",
    )


def _check_project_record_delete(mapper, connection, target):
    raise _blocked(
        "ProjectStatusRecord",
        target.entity_id,
        "DELETE",
        "Project status records anchor the status history",
    )


def _listener_table():
    from workflow_kernel.models.notification import (
        NotificationAttemptModel,
        NotificationDeliveryModel,
    )
    from workflow_kernel.models.project_record import ProjectStatusRecord
    from workflow_kernel.models.status_transition import StatusTransitionModel

    return (
        (StatusTransitionModel, "before_update", _check_status_transition_immutability),
        (StatusTransitionModel, "before_delete", _check_status_transition_delete),
        (NotificationAttemptModel, "before_update", _check_attempt_immutability),
        (NotificationAttemptModel, "before_delete", _check_attempt_delete),
        (NotificationDeliveryModel, "before_update", _check_delivery_status_change),
        (NotificationDeliveryModel, "before_delete", _check_delivery_delete),
        (ProjectStatusRecord, "before_delete", _check_project_record_delete),
    )


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Idempotent: listeners already registered are not added twice.
    """
    for target, event_name, listener_fn in _listener_table():
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def _safe_remove_listener(target, event_name, listener_fn):
    """Safely remove an event listener, ignoring if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests where you need to intentionally
    violate immutability rules to verify detection.
    """
    for target, event_name, listener_fn in _listener_table():
        _safe_remove_listener(target, event_name, listener_fn)
