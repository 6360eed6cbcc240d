"""
Typed exception hierarchy for the workflow kernel.

Every error has a TYPED exception class (catch by type, not message), a
``code`` class attribute (machine-readable, API-safe) and structured
attributes (not just a message string).

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    WorkflowKernelError (base)
    |
    +-- TransitionError
    |   +-- TransitionRejectedError
    |   +-- UnknownStatusError
    |   +-- UnknownRoleError
    |   +-- TransitionCancelledError
    |   +-- TransitionTimeoutError
    |
    +-- ProjectError
    |   +-- ProjectNotFoundError
    |   +-- ProjectAlreadyRegisteredError
    |
    +-- ConcurrencyError
    |   +-- PersistenceConflictError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- NotificationError
    |   +-- InvalidDeliveryTransitionError
    |   +-- DeliveryNotFoundError
    |
    +-- ConfigurationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                          | When Raised
----------------|-------------------------------|---------------------------------------
Transition      | ILLEGAL_TRANSITION            | Pair not in the transition table
                | FORBIDDEN_FOR_ROLE            | Actor role may not perform the pair
                | STALE_STATE                   | Caller snapshot != persisted status
                | UNKNOWN_STATUS                | Status string outside the enum
                | UNKNOWN_ROLE                  | Role string outside the enum
                | TRANSITION_CANCELLED          | Caller cancelled before commit
                | TRANSITION_TIMEOUT            | Request deadline passed before commit
----------------|-------------------------------|---------------------------------------
Project         | PROJECT_NOT_FOUND             | No status record for entity
                | PROJECT_ALREADY_REGISTERED    | Status record already exists
----------------|-------------------------------|---------------------------------------
Concurrency     | PERSISTENCE_CONFLICT          | Concurrent writer won (retryable)
----------------|-------------------------------|---------------------------------------
Immutability    | IMMUTABILITY_VIOLATION        | Modifying an append-only record
----------------|-------------------------------|---------------------------------------
Notification    | INVALID_DELIVERY_TRANSITION   | Delivery status change not allowed
                | DELIVERY_NOT_FOUND            | No delivery row for transition
----------------|-------------------------------|---------------------------------------
Configuration   | CONFIGURATION_ERROR           | Invalid configuration value

===============================================================================
HANDLING PATTERNS
===============================================================================

    try:
        result = orchestrator.request_transition(request)
    except PersistenceConflictError:
        # Another writer moved the entity first.  Re-read and re-request.
        ...

    if result.rejected:
        return {"error": result.rejection.code, "message": result.rejection.message}

Notification failures are never raised to the caller of a status change.
They are recorded as NotificationAttempt rows and structured log events.
"""


class WorkflowKernelError(Exception):
    """
    Base exception for all workflow kernel errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    identification.
    """

    code: str = "WORKFLOW_KERNEL_ERROR"


# Transition-related exceptions


class TransitionError(WorkflowKernelError):
    """Base exception for status transition errors."""

    code: str = "TRANSITION_ERROR"


class TransitionRejectedError(TransitionError):
    """A requested transition was rejected by the validator.

    The ``code`` attribute is overridden per instance with the rejection
    reason code (``ILLEGAL_TRANSITION``, ``FORBIDDEN_FOR_ROLE``,
    ``STALE_STATE``).
    """

    code: str = "TRANSITION_REJECTED"

    def __init__(
        self,
        entity_id: str,
        reason_code: str,
        from_status: str,
        to_status: str,
        message: str,
    ):
        self.entity_id = entity_id
        self.reason_code = reason_code
        self.from_status = from_status
        self.to_status = to_status
        self.code = reason_code
        super().__init__(message)


class UnknownStatusError(TransitionError):
    """A status value outside the enumerated ProjectStatus set."""

    code: str = "UNKNOWN_STATUS"

    def __init__(self, value: str):
        self.value = value
        super().__init__(f"Unknown project status: {value!r}")


class UnknownRoleError(TransitionError):
    """An actor role outside the enumerated ActorRole set."""

    code: str = "UNKNOWN_ROLE"

    def __init__(self, value: str):
        self.value = value
        super().__init__(f"Unknown actor role: {value!r}")


class TransitionCancelledError(TransitionError):
    """The caller cancelled the request before it was persisted."""

    code: str = "TRANSITION_CANCELLED"

    def __init__(self, entity_id: str, stage: str):
        self.entity_id = entity_id
        self.stage = stage
        super().__init__(
            f"Transition for {entity_id} cancelled during {stage}"
        )


class TransitionTimeoutError(TransitionError):
    """The request-scoped deadline passed before the transition was persisted."""

    code: str = "TRANSITION_TIMEOUT"

    def __init__(self, entity_id: str, stage: str, timeout_seconds: float):
        self.entity_id = entity_id
        self.stage = stage
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Transition for {entity_id} exceeded {timeout_seconds}s "
            f"during {stage}"
        )


# Project-related exceptions


class ProjectError(WorkflowKernelError):
    """Base exception for project status record errors."""

    code: str = "PROJECT_ERROR"


class ProjectNotFoundError(ProjectError):
    """No status record exists for the entity."""

    code: str = "PROJECT_NOT_FOUND"

    def __init__(self, entity_id: str):
        self.entity_id = entity_id
        super().__init__(f"Project status record not found: {entity_id}")


class ProjectAlreadyRegisteredError(ProjectError):
    """A status record already exists for the entity."""

    code: str = "PROJECT_ALREADY_REGISTERED"

    def __init__(self, entity_id: str, current_status: str):
        self.entity_id = entity_id
        self.current_status = current_status
        super().__init__(
            f"Project {entity_id} already registered "
            f"(current status {current_status})"
        )


# Concurrency-related exceptions


class ConcurrencyError(WorkflowKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class PersistenceConflictError(ConcurrencyError):
    """
    Optimistic concurrency conflict on an entity's status record.

    Retryable: the caller should re-read the current status and
    re-request the transition.
    """

    code: str = "PERSISTENCE_CONFLICT"
    retryable: bool = True

    def __init__(self, entity_id: str, expected_version: int, detail: str = ""):
        self.entity_id = entity_id
        self.expected_version = expected_version
        self.detail = detail
        message = (
            f"Persistence conflict on project {entity_id}: "
            f"expected version {expected_version} was superseded"
        )
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


# Immutability-related exceptions


class ImmutabilityError(WorkflowKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    StatusTransition rows are immutable from creation.  NotificationAttempt
    rows are immutable once their outcome is recorded.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Notification-related exceptions


class NotificationError(WorkflowKernelError):
    """Base exception for notification bookkeeping errors."""

    code: str = "NOTIFICATION_ERROR"


class InvalidDeliveryTransitionError(NotificationError):
    """A delivery status change not permitted by the delivery lifecycle."""

    code: str = "INVALID_DELIVERY_TRANSITION"

    def __init__(self, transition_id: str, from_status: str, to_status: str):
        self.transition_id = transition_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Delivery for transition {transition_id} cannot move "
            f"{from_status} -> {to_status}"
        )


class DeliveryNotFoundError(NotificationError):
    """No delivery row exists for the transition."""

    code: str = "DELIVERY_NOT_FOUND"

    def __init__(self, transition_id: str):
        self.transition_id = transition_id
        super().__init__(f"No delivery found for transition {transition_id}")


# Configuration


class ConfigurationError(WorkflowKernelError):
    """Invalid configuration value."""

    code: str = "CONFIGURATION_ERROR"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid configuration for {field}: {reason}")
