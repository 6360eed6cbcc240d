"""
Pure domain layer.

This module contains the status lifecycle, the transition validator and
the data transfer objects, with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- Network I/O

All domain objects are immutable and deterministic.
"""

from workflow_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from workflow_kernel.domain.dtos import (
    DELIVERY_STATUS_FOR_OUTCOME,
    VALID_DELIVERY_TRANSITIONS,
    AppendResult,
    DeliveryRecord,
    DeliveryResult,
    DeliveryStatus,
    NotificationAttemptRecord,
    NotificationOutcome,
    ProjectSnapshot,
    StatusTransition,
    TransitionDraft,
)
from workflow_kernel.domain.statuses import (
    ALLOWED_TRANSITIONS,
    INITIAL_STATUS,
    STATUS_ORDER,
    TRANSITION_TABLE,
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

__all__ = [
    # Clock
    "Clock",
    "SystemClock",
    "DeterministicClock",
    # Statuses
    "ProjectStatus",
    "ActorRole",
    "STATUS_ORDER",
    "INITIAL_STATUS",
    "TRANSITION_TABLE",
    "ALLOWED_TRANSITIONS",
    "parse_status",
    "parse_role",
    # Validator
    "RejectionReason",
    "Rejection",
    "ValidationOutcome",
    "validate_transition",
    "allowed_next_statuses",
    # DTOs
    "TransitionDraft",
    "StatusTransition",
    "ProjectSnapshot",
    "AppendResult",
    "NotificationOutcome",
    "DeliveryStatus",
    "VALID_DELIVERY_TRANSITIONS",
    "DELIVERY_STATUS_FOR_OUTCOME",
    "NotificationAttemptRecord",
    "DeliveryRecord",
    "DeliveryResult",
]
