"""
workflow_config -- single public entrypoint for dispatcher configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration files
    or environment variables directly.

Architecture position:
    Configuration -- sits above ``workflow_kernel`` and below
    ``workflow_dispatch`` / ``workflow_services``.  The kernel MUST NEVER
    import from ``workflow_config``.

Invariants enforced:
    - Single entrypoint: all runtime config flows through ``get_active_config()``.
    - Immutable value: the first call loads and caches a frozen
      ``WorkflowConfig``; later calls return the same object.  Re-reading
      the file and environment happens only through ``reload_config()``.
    - Secrets never reach the logs: the trace and the fingerprint use the
      redacted form.

Audit relevance:
    Every load emits a ``WORKFLOW_CONFIG_TRACE`` log entry with the config
    source, fingerprint, whether the integration is configured, and the
    retry policy.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Mapping

from workflow_config.loader import compute_checksum, load_config, resolve_config_path
from workflow_config.schema import IntegrationConfig, RetryPolicy, WorkflowConfig

_logger = logging.getLogger("workflow_kernel.config")

_active: WorkflowConfig | None = None
_lock = threading.Lock()

__all__ = [
    "IntegrationConfig",
    "RetryPolicy",
    "WorkflowConfig",
    "load_config",
    "get_active_config",
    "reload_config",
    "reset_active_config",
    "config_fingerprint",
]


def get_active_config(
    path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> WorkflowConfig:
    """The ONLY public configuration entrypoint.

    The first call loads the configuration; every later call returns the
    cached value and ignores its arguments.

    Raises:
        FileNotFoundError: If the configuration file does not exist.
        ConfigurationError: If a value is invalid.
    """
    global _active
    with _lock:
        if _active is None:
            _active = _load_and_trace(path, environ)
        return _active


def reload_config(
    path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> WorkflowConfig:
    """Explicitly re-read the configuration and replace the cached value.

    Components that already hold the previous WorkflowConfig keep it; the
    runtime decides when to rebuild them.
    """
    global _active
    with _lock:
        _active = _load_and_trace(path, environ)
        return _active


def reset_active_config() -> None:
    """Drop the cached configuration. FOR TESTING ONLY."""
    global _active
    with _lock:
        _active = None


def config_fingerprint(config: WorkflowConfig) -> str:
    """SHA-256 of the redacted configuration."""
    return compute_checksum(config.redacted())


def _load_and_trace(
    path: Path | str | None,
    environ: Mapping[str, str] | None,
) -> WorkflowConfig:
    source = resolve_config_path(path, environ)
    config = load_config(source, environ)
    _logger.info(
        "WORKFLOW_CONFIG_TRACE",
        extra={
            "trace_type": "WORKFLOW_CONFIG_TRACE",
            "config_source": str(source),
            "fingerprint": config_fingerprint(config),
            "integration_configured": config.integration.is_configured,
            "signing_enabled": bool(config.integration.signing_secret),
            "max_attempts": config.retry.max_attempts,
            "worker_count": config.worker_count,
        },
    )
    return config
