"""
HTTP transport for outbound notifications.

``HttpTransport.send`` never raises for delivery problems: timeouts,
connection errors and malformed requests come back as a TransportResponse
with ``error_kind`` set, so the notifier can classify every outcome the
same way.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Protocol

import requests

from workflow_dispatch.payload import OutboundRequest
from workflow_kernel.logging_config import get_logger

logger = get_logger("dispatch.transport")

_MAX_BODY_CHARS = 500


class TransportErrorKind(str, Enum):
    TIMEOUT = "timeout"
    NETWORK = "network"
    INVALID_REQUEST = "invalid_request"


@dataclass(frozen=True)
class TransportResponse:
    """HTTP status and body, or the error that prevented a response."""

    status_code: int | None = None
    body: str | None = None
    error_kind: TransportErrorKind | None = None
    error: str | None = None

    @property
    def detail(self) -> str:
        if self.error_kind is not None:
            return f"{self.error_kind.value}: {self.error}"
        text = (self.body or "").strip()
        if len(text) > _MAX_BODY_CHARS:
            text = text[:_MAX_BODY_CHARS] + "..."
        return f"HTTP {self.status_code}" + (f": {text}" if text else "")


class Transport(Protocol):
    def send(self, request: OutboundRequest, timeout: float) -> TransportResponse:
        ...


class HttpTransport:
    """requests-based transport with a pooled Session."""

    def __init__(self, session: requests.Session | None = None):
        self._session = session or requests.Session()

    def send(self, request: OutboundRequest, timeout: float) -> TransportResponse:
        try:
            response = self._session.post(
                request.url,
                data=request.body.encode("utf-8"),
                headers=dict(request.headers),
                timeout=timeout,
                allow_redirects=False,
            )
        except requests.exceptions.Timeout as exc:
            return TransportResponse(error_kind=TransportErrorKind.TIMEOUT, error=str(exc))
        except (
            requests.exceptions.InvalidURL,
            requests.exceptions.MissingSchema,
            requests.exceptions.InvalidSchema,
            requests.exceptions.InvalidHeader,
        ) as exc:
            return TransportResponse(
                error_kind=TransportErrorKind.INVALID_REQUEST, error=str(exc)
            )
        except requests.exceptions.RequestException as exc:
            return TransportResponse(error_kind=TransportErrorKind.NETWORK, error=str(exc))

        logger.debug(
            "transport_response",
            extra={"status_code": response.status_code, "url": request.url},
        )
        return TransportResponse(status_code=response.status_code, body=response.text)

    def close(self) -> None:
        self._session.close()
