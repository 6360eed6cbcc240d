"""
Observability hooks for status transitions and notification delivery.

Emits structured log events for metrics and dashboards:
- Accepted / rejected transitions (rejection reason for aggregation).
- Every notification attempt with its outcome.
- Final delivery outcome per transition; degraded delivery at WARNING.

All events use a consistent ``observability_event`` field and stable extra
fields so log aggregators can parse them and build metrics.

Usage:
    from workflow_kernel.observability import log_transition_rejected
    log_transition_rejected(entity_id="proj-1", reason="STALE_STATE",
                            from_status="onboarding", to_status="active",
                            actor_role="manager")
"""

from __future__ import annotations

import logging
from typing import Any

from workflow_kernel.logging_config import get_logger

logger = get_logger("observability")

# Standard event names for filtering in log pipelines
EVENT_TRANSITION_ACCEPTED = "transition_accepted"
EVENT_TRANSITION_REJECTED = "transition_rejected"
EVENT_NOTIFICATION_ATTEMPT = "notification_attempt"
EVENT_NOTIFICATION_OUTCOME = "notification_outcome"


def log_transition_accepted(
    *,
    entity_id: str,
    transition_id: str,
    from_status: str,
    to_status: str,
    actor_id: str,
    sequence: int,
    replayed: bool = False,
    duration_ms: float | None = None,
    **extra: Any,
) -> None:
    """Log a transition that is durably recorded (fresh or replayed)."""
    payload: dict[str, Any] = {
        "observability_event": EVENT_TRANSITION_ACCEPTED,
        "entity_id": entity_id,
        "transition_id": transition_id,
        "from_status": from_status,
        "to_status": to_status,
        "actor_id": actor_id,
        "sequence": sequence,
        "replayed": replayed,
        **extra,
    }
    if duration_ms is not None:
        payload["duration_ms"] = round(duration_ms, 2)
    logger.info("status_transition_accepted", extra=payload)


def log_transition_rejected(
    *,
    entity_id: str,
    reason: str,
    from_status: str,
    to_status: str,
    actor_role: str,
    **extra: Any,
) -> None:
    """Log a transition refused by the validator."""
    payload: dict[str, Any] = {
        "observability_event": EVENT_TRANSITION_REJECTED,
        "entity_id": entity_id,
        "reason": reason,
        "from_status": from_status,
        "to_status": to_status,
        "actor_role": actor_role,
        **extra,
    }
    logger.info("status_transition_rejected", extra=payload)


def log_notification_attempt(
    *,
    transition_id: str,
    attempt_number: int,
    outcome: str,
    status_code: int | None = None,
    detail: str | None = None,
    duration_ms: float | None = None,
    **extra: Any,
) -> None:
    """Log one delivery try and how it ended."""
    payload: dict[str, Any] = {
        "observability_event": EVENT_NOTIFICATION_ATTEMPT,
        "transition_id": transition_id,
        "attempt_number": attempt_number,
        "outcome": outcome,
        **extra,
    }
    if status_code is not None:
        payload["status_code"] = status_code
    if detail is not None:
        payload["detail"] = detail
    if duration_ms is not None:
        payload["duration_ms"] = round(duration_ms, 2)
    logger.info("notification_attempt_completed", extra=payload)


def log_notification_outcome(
    *,
    transition_id: str,
    outcome: str,
    attempt_count: int,
    detail: str | None = None,
    degraded: bool = False,
    **extra: Any,
) -> None:
    """
    Log the final outcome of a delivery.

    A degraded delivery (permanent failure) is logged at WARNING; the status
    change it belongs to is unaffected.
    """
    payload: dict[str, Any] = {
        "observability_event": EVENT_NOTIFICATION_OUTCOME,
        "transition_id": transition_id,
        "outcome": outcome,
        "attempt_count": attempt_count,
        "degraded": degraded,
        **extra,
    }
    if detail is not None:
        payload["detail"] = detail
    level = logging.WARNING if degraded else logging.INFO
    logger.log(level, "notification_delivery_finished", extra=payload)
