"""
Tests for the notification payload and outbound request construction.
"""

import json
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from workflow_config.schema import IntegrationConfig
from workflow_dispatch.payload import (
    IDEMPOTENCY_HEADER,
    SIGNATURE_HEADER,
    build_payload,
    build_request,
)
from workflow_kernel.domain.dtos import StatusTransition
from workflow_kernel.domain.statuses import ActorRole, ProjectStatus
from workflow_kernel.utils.hashing import sign_body, verify_signature


@pytest.fixture
def transition():
    return StatusTransition(
        transition_id=uuid4(),
        entity_id="proj-42",
        entity_name="Website relaunch",
        from_status=ProjectStatus.ONBOARDING,
        to_status=ProjectStatus.ACTIVE,
        changed_by="user-7",
        actor_role=ActorRole.MANAGER,
        occurred_at=datetime(2024, 3, 1, 9, 30, tzinfo=timezone.utc),
        sequence=1,
        idempotency_key="key-1",
    )


class TestBuildPayload:

    def test_payload_fields(self, transition):
        assert build_payload(transition) == {
            "entityId": "proj-42",
            "entityName": "Website relaunch",
            "fromStatus": "onboarding",
            "toStatus": "active",
            "changedAt": "2024-03-01T09:30:00+00:00",
            "changedBy": "user-7",
        }

    def test_changed_at_normalized_to_utc(self, transition):
        local = timezone(timedelta(hours=2))
        shifted = replace(transition, occurred_at=datetime(2024, 3, 1, 11, 30, tzinfo=local))
        assert build_payload(shifted)["changedAt"] == "2024-03-01T09:30:00+00:00"

    def test_internal_fields_not_sent(self, transition):
        payload = build_payload(transition)
        assert "idempotency_key" not in payload
        assert "actor_role" not in payload


class TestBuildRequest:

    def test_headers(self, transition):
        integration = IntegrationConfig(
            endpoint_url="https://hooks.example.test/status", api_key="k-123",
        )
        request = build_request(transition, integration)

        assert request.url == "https://hooks.example.test/status"
        assert request.headers["Content-Type"] == "application/json"
        assert request.headers["Authorization"] == "Bearer k-123"
        assert request.headers[IDEMPOTENCY_HEADER] == str(transition.transition_id)
        assert SIGNATURE_HEADER not in request.headers
        assert json.loads(request.body) == build_payload(transition)

    def test_signed_when_secret_configured(self, transition):
        integration = IntegrationConfig(
            endpoint_url="https://hooks.example.test/status",
            api_key="k-123",
            signing_secret="s3cret",
        )
        request = build_request(transition, integration)

        signature = request.headers[SIGNATURE_HEADER]
        assert signature.startswith("sha256=")
        assert signature == sign_body(request.body, "s3cret")
        assert verify_signature(request.body, "s3cret", signature)
        assert not verify_signature(request.body, "other", signature)

    def test_body_is_canonical(self, transition):
        integration = IntegrationConfig(endpoint_url="https://h.example.test", api_key="k")
        body = build_request(transition, integration).body
        assert " " not in body.replace("Website relaunch", "")
        assert body.index('"changedAt"') < body.index('"toStatus"')

    def test_headers_read_only(self, transition):
        integration = IntegrationConfig(endpoint_url="https://h.example.test", api_key="k")
        request = build_request(transition, integration)
        with pytest.raises(TypeError):
            request.headers["Authorization"] = "x"  # type: ignore[index]

    def test_unconfigured_integration_refused(self, transition):
        with pytest.raises(ValueError):
            build_request(transition, IntegrationConfig(endpoint_url="https://h.example.test"))
