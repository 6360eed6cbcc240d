"""
NotificationDispatcher -- background queue between the request path and
the notifier.

Responsibility:
    Accepts transition ids from the orchestrator after commit and hands
    them to WorkflowNotifier on a fixed pool of worker threads.

Architecture position:
    Dispatch layer.  The orchestrator only calls ``enqueue`` (non-blocking);
    everything network-bound happens here.

Invariants enforced:
    - enqueue never blocks the caller and never raises for a full pool.
    - Worker exceptions are logged, never propagated; the worker keeps
      running.
    - Graceful shutdown: ``stop`` signals the notifier (backoff waits end,
      the delivery is abandoned) and waits for workers to finish their
      current item.  Ids still queued stay ``pending`` in the database and
      are picked up by startup recovery.
"""

from __future__ import annotations

import queue
import threading
import time
from typing import Callable
from uuid import UUID

from sqlalchemy.orm import Session, sessionmaker

from workflow_dispatch.notifier import WorkflowNotifier
from workflow_kernel.db.engine import session_scope
from workflow_kernel.domain.dtos import DeliveryResult
from workflow_kernel.logging_config import LogContext, get_logger
from workflow_kernel.selectors.status_selector import StatusSelector

logger = get_logger("dispatch.dispatcher")

OutcomeSink = Callable[[DeliveryResult], None]

_STOP = object()


class NotificationDispatcher:
    """
    Queue plus worker threads feeding WorkflowNotifier.

    Args:
        notifier: Shared notifier; its ``stop_event`` is the shutdown signal.
        session_factory: Used to load the transition for each queued id.
        worker_count: Number of worker threads.
        outcome_sink: Optional callback receiving every DeliveryResult.
    """

    def __init__(
        self,
        notifier: WorkflowNotifier,
        session_factory: sessionmaker[Session],
        worker_count: int = 2,
        outcome_sink: OutcomeSink | None = None,
    ):
        if worker_count < 1:
            raise ValueError("worker_count must be at least 1")
        self._notifier = notifier
        self._session_factory = session_factory
        self._worker_count = worker_count
        self._outcome_sink = outcome_sink
        self._queue: queue.Queue = queue.Queue()
        self._threads: list[threading.Thread] = []

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the worker threads."""
        if self.is_running:
            logger.warning("dispatcher_already_running")
            return
        self._notifier.stop_event.clear()
        self._threads = [
            threading.Thread(
                target=self._run_worker,
                name=f"notification-worker-{i}",
                daemon=True,
            )
            for i in range(self._worker_count)
        ]
        for thread in self._threads:
            thread.start()
        logger.info("dispatcher_started", extra={"worker_count": self._worker_count})

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for workers to finish their current item.

        Args:
            timeout: Max seconds to wait for all workers.
        """
        self._notifier.stop_event.set()
        for _ in self._threads:
            self._queue.put(_STOP)
        deadline = time.monotonic() + timeout
        for thread in self._threads:
            thread.join(timeout=max(0.0, deadline - time.monotonic()))
        still_running = [t.name for t in self._threads if t.is_alive()]
        self._threads = []
        self._drain()
        logger.info("dispatcher_stopped", extra={"still_running": still_running})

    @property
    def is_running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    # ------------------------------------------------------------------
    # Queue
    # ------------------------------------------------------------------

    def enqueue(self, transition_id: UUID) -> None:
        """Queue a committed transition for notification."""
        self._queue.put(transition_id)
        logger.debug(
            "notification_enqueued",
            extra={"transition_id": str(transition_id), "running": self.is_running},
        )

    def join(self, timeout: float | None = None) -> bool:
        """Wait until every queued id has been processed.

        Returns:
            True if the queue drained, False if ``timeout`` passed first.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._queue.all_tasks_done:
            while self._queue.unfinished_tasks:
                if deadline is None:
                    self._queue.all_tasks_done.wait()
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._queue.all_tasks_done.wait(remaining)
        return True

    @property
    def pending_count(self) -> int:
        return self._queue.qsize()

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    def _run_worker(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                if self._notifier.stop_event.is_set():
                    # Left pending in the database for recovery
                    continue
                self._process(item)
            finally:
                self._queue.task_done()

    def _process(self, transition_id: UUID) -> None:
        LogContext.clear()
        try:
            with session_scope(self._session_factory) as session:
                transition = StatusSelector(session).transition(transition_id)
            if transition is None:
                logger.error(
                    "notification_transition_missing",
                    extra={"transition_id": str(transition_id)},
                )
                return
            result = self._notifier.notify(transition)
        except Exception:
            logger.exception(
                "notification_worker_failed",
                extra={"transition_id": str(transition_id)},
            )
            return

        if self._outcome_sink is not None:
            try:
                self._outcome_sink(result)
            except Exception:
                logger.exception(
                    "notification_outcome_sink_failed",
                    extra={"transition_id": str(transition_id)},
                )

    def _drain(self) -> None:
        """Discard ids left in the queue after stop (still pending in the DB)."""
        dropped = 0
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                break
            self._queue.task_done()
            if item is not _STOP:
                dropped += 1
        if dropped:
            logger.info("dispatcher_queue_discarded", extra={"count": dropped})
