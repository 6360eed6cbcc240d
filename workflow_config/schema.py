"""
Workflow configuration schema.

Frozen dataclasses for the runtime configuration: the outbound integration
(endpoint, credential, signing secret), the notification retry policy, and
the service settings.  A WorkflowConfig is an immutable value handed to
the runtime at startup; changing configuration means building a new one
(``workflow_config.reload_config()``), never mutating this one.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from workflow_kernel.exceptions import ConfigurationError
from workflow_kernel.logging_config import REDACTED

# ---------------------------------------------------------------------------
# Integration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class IntegrationConfig:
    """
    Outbound automation endpoint.

    The integration is configured only when both ``endpoint_url`` and
    ``api_key`` are set; otherwise every notification is recorded as
    skipped.
    """

    endpoint_url: str | None = None
    api_key: str | None = None
    signing_secret: str | None = None
    request_timeout_seconds: float = 10.0

    def __post_init__(self) -> None:
        if self.request_timeout_seconds <= 0:
            raise ConfigurationError(
                "integration.request_timeout_seconds", "must be positive"
            )
        if self.endpoint_url and not self.endpoint_url.startswith(("http://", "https://")):
            raise ConfigurationError(
                "integration.endpoint_url", "must be an http(s) URL"
            )

    @property
    def is_configured(self) -> bool:
        return bool(self.endpoint_url) and bool(self.api_key)

    def redacted(self) -> dict[str, Any]:
        return {
            "endpoint_url": self.endpoint_url,
            "api_key": REDACTED if self.api_key else None,
            "signing_secret": REDACTED if self.signing_secret else None,
            "request_timeout_seconds": self.request_timeout_seconds,
        }


# ---------------------------------------------------------------------------
# Retry policy
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff for notification delivery."""

    max_attempts: int = 3
    base_delay_seconds: float = 0.5
    multiplier: float = 2.0
    max_delay_seconds: float = 30.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ConfigurationError("retry.max_attempts", "must be at least 1")
        if self.base_delay_seconds < 0:
            raise ConfigurationError("retry.base_delay_seconds", "must not be negative")
        if self.multiplier < 1:
            raise ConfigurationError("retry.multiplier", "must be at least 1")
        if self.max_delay_seconds < 0:
            raise ConfigurationError("retry.max_delay_seconds", "must not be negative")

    def delay_after(self, attempt_number: int) -> float:
        """Seconds to wait after attempt ``attempt_number`` (1-based) failed."""
        if self.base_delay_seconds == 0:
            return 0.0
        try:
            delay = self.base_delay_seconds * self.multiplier ** (attempt_number - 1)
        except OverflowError:
            return self.max_delay_seconds
        return min(delay, self.max_delay_seconds)

    def as_dict(self) -> dict[str, Any]:
        return {
            "max_attempts": self.max_attempts,
            "base_delay_seconds": self.base_delay_seconds,
            "multiplier": self.multiplier,
            "max_delay_seconds": self.max_delay_seconds,
        }


# ---------------------------------------------------------------------------
# Top level
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WorkflowConfig:
    """Complete runtime configuration of the workflow dispatcher."""

    integration: IntegrationConfig = field(default_factory=IntegrationConfig)
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    database_url: str = "sqlite:///workflow.db"
    # Caller-facing deadline for validate + persist
    request_timeout_seconds: float = 5.0
    worker_count: int = 2

    def __post_init__(self) -> None:
        if not self.database_url:
            raise ConfigurationError("database_url", "must not be empty")
        if self.request_timeout_seconds <= 0:
            raise ConfigurationError("request_timeout_seconds", "must be positive")
        if self.worker_count < 1:
            raise ConfigurationError("worker_count", "must be at least 1")

    def redacted(self) -> dict[str, Any]:
        """Plain dict of the configuration with secrets masked."""
        return {
            "integration": self.integration.redacted(),
            "retry": self.retry.as_dict(),
            "database_url": _redact_url_password(self.database_url),
            "request_timeout_seconds": self.request_timeout_seconds,
            "worker_count": self.worker_count,
        }


def _redact_url_password(url: str) -> str:
    scheme, sep, rest = url.partition("://")
    if not sep or "@" not in rest:
        return url
    credentials, _, host = rest.rpartition("@")
    if ":" not in credentials:
        return url
    user = credentials.split(":", 1)[0]
    return f"{scheme}://{user}:{REDACTED}@{host}"
