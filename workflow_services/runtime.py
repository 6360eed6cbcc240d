"""
WorkflowRuntime -- DI container for the status workflow.

Contract:
    Composes engine, session factory, notifier, dispatcher and orchestrator
    from one WorkflowConfig.  ``start()`` runs delivery recovery and starts
    the dispatcher; ``stop()`` shuts the dispatcher down gracefully.

Non-goals:
    - Does NOT start anything from the constructor; the caller decides.
    - Does NOT own the request transactions; the orchestrator does.
"""

from __future__ import annotations

from pathlib import Path
from typing import Mapping
from uuid import UUID

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from workflow_config import get_active_config, reload_config
from workflow_config.schema import WorkflowConfig
from workflow_dispatch.dispatcher import NotificationDispatcher, OutcomeSink
from workflow_dispatch.notifier import WorkflowNotifier
from workflow_dispatch.recovery import DeliveryRecovery
from workflow_dispatch.transport import Transport
from workflow_kernel.db.engine import build_engine, create_tables
from workflow_kernel.db.immutability import register_immutability_listeners
from workflow_kernel.domain.clock import Clock, SystemClock
from workflow_kernel.exceptions import ConfigurationError
from workflow_kernel.logging_config import configure_logging, get_logger
from workflow_services.transition_orchestrator import TransitionOrchestrator

logger = get_logger("services.runtime")


class WorkflowRuntime:
    """
    Fully wired workflow service.

    Args:
        config: Immutable configuration value.
        transport: Override the HTTP transport (tests).
        clock: Shared by every component.
        outcome_sink: Receives every DeliveryResult from the dispatcher.
        engine: Reuse an existing engine instead of building one from
            ``config.database_url``.
        create_schema: Create missing tables on construction.
    """

    def __init__(
        self,
        config: WorkflowConfig,
        transport: Transport | None = None,
        clock: Clock | None = None,
        outcome_sink: OutcomeSink | None = None,
        engine: Engine | None = None,
        create_schema: bool = True,
    ) -> None:
        configure_logging()
        self._config = config
        self._transport = transport
        self._clock = clock or SystemClock()
        self._outcome_sink = outcome_sink

        self.engine = engine or build_engine(config.database_url)
        self.session_factory: sessionmaker[Session] = sessionmaker(
            bind=self.engine, expire_on_commit=False,
        )
        register_immutability_listeners()
        if create_schema:
            create_tables(self.engine)

        self._wire(config)
        logger.info(
            "workflow_runtime_built",
            extra={
                "dialect": self.engine.dialect.name,
                "integration_configured": config.integration.is_configured,
                "worker_count": config.worker_count,
            },
        )

    @classmethod
    def from_active_config(cls, **kwargs) -> WorkflowRuntime:
        """Build from ``workflow_config.get_active_config()``."""
        return cls(get_active_config(), **kwargs)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> list[UUID]:
        """
        Reconcile interrupted deliveries, start workers, re-enqueue pending.

        Returns:
            The transition ids re-enqueued by recovery.
        """
        recovered = DeliveryRecovery(self.session_factory, self._clock).reconcile()
        self.dispatcher.start()
        for transition_id in recovered:
            self.dispatcher.enqueue(transition_id)
        return recovered

    def stop(self, timeout: float = 30.0) -> None:
        self.dispatcher.stop(timeout=timeout)

    def reload(
        self,
        path: Path | str | None = None,
        environ: Mapping[str, str] | None = None,
        timeout: float = 30.0,
    ) -> WorkflowConfig:
        """
        Re-read configuration and rebuild the dispatch side with it.

        In-flight deliveries finish (or are abandoned during backoff) under
        the old configuration; recovery hands them to the new dispatcher.

        Raises:
            ConfigurationError: If the new configuration changes
                ``database_url``.
        """
        new_config = reload_config(path, environ)
        if new_config.database_url != self._config.database_url:
            raise ConfigurationError(
                "database_url", "cannot change while the runtime is built",
            )
        was_running = self.dispatcher.is_running
        if was_running:
            self.stop(timeout=timeout)
        self._config = new_config
        self._wire(new_config)
        if was_running:
            self.start()
        logger.info("workflow_runtime_reloaded")
        return new_config

    @property
    def config(self) -> WorkflowConfig:
        return self._config

    def __enter__(self) -> WorkflowRuntime:
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    def _wire(self, config: WorkflowConfig) -> None:
        self.notifier = WorkflowNotifier(
            self.session_factory,
            config.integration,
            config.retry,
            transport=self._transport,
            clock=self._clock,
        )
        self.dispatcher = NotificationDispatcher(
            self.notifier,
            self.session_factory,
            worker_count=config.worker_count,
            outcome_sink=self._outcome_sink,
        )
        self.orchestrator = TransitionOrchestrator(
            self.session_factory,
            dispatcher=self.dispatcher,
            clock=self._clock,
            request_timeout_seconds=config.request_timeout_seconds,
        )
