"""
DeliveryRecovery -- startup reconciliation of notification bookkeeping.

Run once at startup, before the dispatcher starts:

1. Attempts left without an outcome (the process died mid-request) are
   finalized as ``skipped`` with detail ``interrupted``.
2. Deliveries left ``in_flight`` or ``abandoned`` go back to ``pending``.
3. Every ``pending`` transition id is returned for re-enqueueing.

The receiver deduplicates on the transition id, so re-sending a
notification whose first request did arrive is harmless.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from workflow_kernel.db.engine import session_scope
from workflow_kernel.domain.clock import Clock
from workflow_kernel.logging_config import get_logger
from workflow_kernel.selectors.status_selector import StatusSelector
from workflow_kernel.services.delivery_recorder import DeliveryRecorder

logger = get_logger("dispatch.recovery")


class DeliveryRecovery:
    """Reconciles deliveries interrupted by a shutdown or crash."""

    def __init__(self, session_factory: sessionmaker[Session], clock: Clock | None = None):
        self._session_factory = session_factory
        self._clock = clock

    def reconcile(self) -> list[UUID]:
        """
        Returns:
            Transition ids whose delivery is pending, oldest first.
        """
        with session_scope(self._session_factory) as session:
            recorder = DeliveryRecorder(session, self._clock)
            interrupted = recorder.finalize_interrupted_attempts()
            stranded = recorder.stranded_transition_ids()
            for transition_id in stranded:
                recorder.requeue(transition_id)
            pending = StatusSelector(session).pending_deliveries()

        logger.info(
            "delivery_recovery_completed",
            extra={
                "interrupted_attempts": len(interrupted),
                "requeued_deliveries": len(stranded),
                "pending_deliveries": len(pending),
            },
        )
        return pending
