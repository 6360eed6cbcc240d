"""
WorkflowNotifier -- at-least-once delivery of one transition to the
external automation endpoint.

Responsibility:
    Claims the transition's delivery, sends the notification with bounded
    exponential backoff, records every attempt, and finalizes the delivery.

Architecture position:
    Dispatch layer.  Runs on dispatcher worker threads, never on the
    request path.  Opens its own short transactions through the session
    factory; an attempt row is committed before its request is sent so a
    crash mid-request leaves a visible trace for startup recovery.

Invariants enforced:
    - Strictly downstream of durability: only transitions with a committed
      delivery row can be claimed.
    - At most one in-flight attempt sequence per transition (delivery claim);
      retries are sequential.
    - Unconfigured integration: exactly one attempt, recorded as skipped,
      with no delay and no retry.
    - Exhausted transient retries end as permanent_failure with the last
      error detail.

Failure modes:
    - Delivery problems are outcomes, never exceptions.
    - Database errors propagate to the dispatcher worker, which logs them;
      the delivery stays in_flight and is requeued by startup recovery.
"""

from __future__ import annotations

import threading
from typing import Callable
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from workflow_config.schema import IntegrationConfig, RetryPolicy
from workflow_dispatch.payload import build_request
from workflow_dispatch.transport import (
    HttpTransport,
    Transport,
    TransportErrorKind,
    TransportResponse,
)
from workflow_kernel.db.engine import session_scope
from workflow_kernel.domain.clock import Clock, SystemClock
from workflow_kernel.domain.dtos import (
    DeliveryResult,
    DeliveryStatus,
    NotificationOutcome,
    StatusTransition,
)
from workflow_kernel.logging_config import LogContext, get_logger
from workflow_kernel.observability import (
    log_notification_attempt,
    log_notification_outcome,
)
from workflow_kernel.selectors.status_selector import StatusSelector
from workflow_kernel.services.delivery_recorder import DeliveryRecorder

logger = get_logger("dispatch.notifier")

UNCONFIGURED_DETAIL = "integration not configured"
STOPPED_DETAIL = "stopped during backoff"

# Status codes worth retrying besides 5xx
_TRANSIENT_STATUS_CODES = frozenset({408, 425, 429})


def classify_response(response: TransportResponse) -> NotificationOutcome:
    """
    Map a transport response to an attempt outcome.

    - 2xx                                   -> success
    - timeout, network error, 408/425/429, 5xx -> transient_failure
    - malformed request, other 3xx/4xx      -> permanent_failure
    """
    if response.error_kind is not None:
        if response.error_kind is TransportErrorKind.INVALID_REQUEST:
            return NotificationOutcome.PERMANENT_FAILURE
        return NotificationOutcome.TRANSIENT_FAILURE

    code = response.status_code
    if code is None:
        return NotificationOutcome.TRANSIENT_FAILURE
    if 200 <= code < 300:
        return NotificationOutcome.SUCCESS
    if code >= 500 or code in _TRANSIENT_STATUS_CODES:
        return NotificationOutcome.TRANSIENT_FAILURE
    return NotificationOutcome.PERMANENT_FAILURE


class WorkflowNotifier:
    """
    Sends transition notifications with bounded retry.

    Contract:
        ``notify`` is safe to call from several threads for different
        transitions, and for the same transition (only one caller wins the
        claim).

    Args:
        session_factory: Creates one session per bookkeeping step.
        integration: Endpoint configuration (read-only).
        retry: Retry policy.
        transport: Defaults to HttpTransport.
        clock: Defaults to SystemClock.
        stop_event: Set on shutdown; interrupts backoff waits.
        wait: ``wait(seconds) -> stopped``.  Defaults to
            ``stop_event.wait``.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        integration: IntegrationConfig,
        retry: RetryPolicy,
        transport: Transport | None = None,
        clock: Clock | None = None,
        stop_event: threading.Event | None = None,
        wait: Callable[[float], bool] | None = None,
    ):
        self._session_factory = session_factory
        self._integration = integration
        self._retry = retry
        self._transport = transport or HttpTransport()
        self._clock = clock or SystemClock()
        self.stop_event = stop_event or threading.Event()
        self._wait = wait or self.stop_event.wait

    @property
    def integration_configured(self) -> bool:
        return self._integration.is_configured

    def notify(self, transition: StatusTransition) -> DeliveryResult:
        """Deliver one transition.  Never raises for delivery problems."""
        tid = transition.transition_id
        with LogContext.bind(
            transition_id=str(tid), entity_id=transition.entity_id,
        ):
            with session_scope(self._session_factory) as session:
                claimed = DeliveryRecorder(session, self._clock).claim(tid)
            if not claimed:
                logger.info("notification_not_claimed")
                return self._result(tid, claimed=False)

            if not self._integration.is_configured:
                return self._skip(tid)
            return self._deliver(transition)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _skip(self, tid: UUID) -> DeliveryResult:
        attempt_number = self._start_attempt(tid)
        self._finish_attempt(
            tid, attempt_number, NotificationOutcome.SKIPPED, None, UNCONFIGURED_DETAIL,
        )
        log_notification_attempt(
            transition_id=str(tid),
            attempt_number=attempt_number,
            outcome=NotificationOutcome.SKIPPED.value,
            detail=UNCONFIGURED_DETAIL,
        )
        return self._finalize(tid, NotificationOutcome.SKIPPED, UNCONFIGURED_DETAIL)

    def _deliver(self, transition: StatusTransition) -> DeliveryResult:
        tid = transition.transition_id
        request = build_request(transition, self._integration)
        max_attempts = self._retry.max_attempts

        # Budget counts this claim only; a requeued delivery keeps its
        # earlier attempts and numbers on from them.
        for tries in range(1, max_attempts + 1):
            attempt_number = self._start_attempt(tid)
            t0 = self._clock.monotonic()
            response = self._transport.send(
                request, timeout=self._integration.request_timeout_seconds,
            )
            duration_ms = (self._clock.monotonic() - t0) * 1000
            outcome = classify_response(response)
            detail = response.detail
            self._finish_attempt(tid, attempt_number, outcome, response.status_code, detail)
            log_notification_attempt(
                transition_id=str(tid),
                attempt_number=attempt_number,
                outcome=outcome.value,
                status_code=response.status_code,
                detail=detail,
                duration_ms=duration_ms,
            )

            if outcome is NotificationOutcome.SUCCESS:
                return self._finalize(tid, outcome, None)
            if outcome is NotificationOutcome.PERMANENT_FAILURE:
                return self._finalize(tid, outcome, detail)
            if tries == max_attempts:
                return self._finalize(
                    tid,
                    NotificationOutcome.PERMANENT_FAILURE,
                    f"retries exhausted after {tries} attempts: {detail}",
                )

            delay = self._retry.delay_after(tries)
            logger.info(
                "notification_retry_scheduled",
                extra={"attempt_number": attempt_number, "delay_seconds": delay},
            )
            if self._wait(delay):
                return self._abandon(tid)

        # max_attempts >= 1, so the loop always returns
        raise AssertionError("unreachable")

    def _start_attempt(self, tid: UUID) -> int:
        with session_scope(self._session_factory) as session:
            attempt = DeliveryRecorder(session, self._clock).start_attempt(tid)
        return attempt.attempt_number

    def _finish_attempt(
        self,
        tid: UUID,
        attempt_number: int,
        outcome: NotificationOutcome,
        status_code: int | None,
        detail: str | None,
    ) -> None:
        with session_scope(self._session_factory) as session:
            DeliveryRecorder(session, self._clock).finish_attempt(
                tid, attempt_number, outcome, status_code, detail,
            )

    def _finalize(
        self, tid: UUID, outcome: NotificationOutcome, last_error: str | None,
    ) -> DeliveryResult:
        with session_scope(self._session_factory) as session:
            DeliveryRecorder(session, self._clock).finalize(tid, outcome, last_error)
        result = self._result(tid, claimed=True)
        log_notification_outcome(
            transition_id=str(tid),
            outcome=outcome.value,
            attempt_count=result.attempt_count,
            detail=last_error,
            degraded=outcome is NotificationOutcome.PERMANENT_FAILURE,
        )
        return result

    def _abandon(self, tid: UUID) -> DeliveryResult:
        with session_scope(self._session_factory) as session:
            DeliveryRecorder(session, self._clock).abandon(tid, STOPPED_DETAIL)
        return self._result(tid, claimed=True)

    def _result(self, tid: UUID, claimed: bool) -> DeliveryResult:
        with session_scope(self._session_factory) as session:
            selector = StatusSelector(session)
            delivery = selector.delivery(tid)
            attempts = tuple(selector.attempts(tid))
        status = delivery.status if delivery is not None else DeliveryStatus.PENDING
        outcome = delivery.final_outcome if delivery is not None else None
        return DeliveryResult(
            transition_id=tid,
            status=status,
            outcome=outcome if claimed else None,
            attempts=attempts,
            claimed=claimed,
        )
