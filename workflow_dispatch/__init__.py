"""Outbound notification: payload, transport, notifier, dispatcher, recovery."""

from workflow_dispatch.dispatcher import NotificationDispatcher
from workflow_dispatch.notifier import WorkflowNotifier, classify_response
from workflow_dispatch.payload import OutboundRequest, build_payload, build_request
from workflow_dispatch.recovery import DeliveryRecovery
from workflow_dispatch.transport import (
    HttpTransport,
    Transport,
    TransportErrorKind,
    TransportResponse,
)

__all__ = [
    "NotificationDispatcher",
    "WorkflowNotifier",
    "classify_response",
    "OutboundRequest",
    "build_payload",
    "build_request",
    "DeliveryRecovery",
    "HttpTransport",
    "Transport",
    "TransportErrorKind",
    "TransportResponse",
]
