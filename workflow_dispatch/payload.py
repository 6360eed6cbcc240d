"""
Notification payload and outbound request.

The payload is the stable contract with the external automation engine:
it is built from the StatusTransition DTO only, never from ORM rows, so
storage changes cannot leak into it.

    {
        "entityId": "proj-42",
        "entityName": "Website relaunch",
        "fromStatus": "onboarding",
        "toStatus": "active",
        "changedAt": "2024-01-01T12:00:00+00:00",
        "changedBy": "user-7"
    }
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC
from types import MappingProxyType
from typing import Any, Mapping

from workflow_config.schema import IntegrationConfig
from workflow_kernel.domain.dtos import StatusTransition
from workflow_kernel.utils.hashing import canonicalize_json, sign_body

SIGNATURE_HEADER = "X-Signature-256"
IDEMPOTENCY_HEADER = "Idempotency-Key"


def build_payload(transition: StatusTransition) -> dict[str, Any]:
    """Normalized event for one transition."""
    return {
        "entityId": transition.entity_id,
        "entityName": transition.entity_name,
        "fromStatus": transition.from_status.value,
        "toStatus": transition.to_status.value,
        "changedAt": transition.occurred_at.astimezone(UTC).isoformat(),
        "changedBy": transition.changed_by,
    }


@dataclass(frozen=True)
class OutboundRequest:
    """Everything the transport needs to send one notification."""

    url: str
    body: str
    headers: Mapping[str, str]


def build_request(
    transition: StatusTransition, integration: IntegrationConfig,
) -> OutboundRequest:
    """
    Serialize and sign the payload for a configured integration.

    The receiver deduplicates on Idempotency-Key (the transition id), which
    makes at-least-once delivery safe to retry.
    """
    if not integration.is_configured:
        raise ValueError("Integration is not configured")

    body = canonicalize_json(build_payload(transition))
    headers = {
        "Content-Type": "application/json",
        "Authorization": f"Bearer {integration.api_key}",
        IDEMPOTENCY_HEADER: str(transition.transition_id),
    }
    if integration.signing_secret:
        headers[SIGNATURE_HEADER] = sign_body(body, integration.signing_secret)

    return OutboundRequest(
        url=integration.endpoint_url,
        body=body,
        headers=MappingProxyType(headers),
    )
