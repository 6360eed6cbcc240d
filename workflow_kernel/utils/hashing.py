"""
Deterministic hashing and signing utilities.

All hashing in the workflow kernel must be deterministic and reproducible.
The notification body is serialized with canonicalize_json() and signed
over exactly those bytes, so a receiver can verify it byte for byte.
"""

import hashlib
import hmac
import json
from datetime import date, datetime
from enum import Enum
from typing import Any
from uuid import UUID

SIGNATURE_PREFIX = "sha256="


def _json_serializer(obj: Any) -> Any:
    """
    Custom JSON serializer for types not natively supported.

    Raises:
        TypeError: If object type is not supported.
    """
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, date):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, bytes):
        return obj.hex()

    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: dict | list | Any) -> str:
    """
    Convert data to canonical JSON string.

    Produces a deterministic JSON representation:
    - Keys are sorted alphabetically
    - No whitespace
    - Consistent handling of special types (Enum, datetime, UUID)
    """
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_serializer,
    )


def sign_body(body: str | bytes, secret: str) -> str:
    """
    HMAC-SHA256 signature of a request body, as sent in X-Signature-256.

    Returns:
        ``"sha256=<hex digest>"``
    """
    if isinstance(body, str):
        body = body.encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(body: str | bytes, secret: str, signature: str) -> bool:
    """Constant-time check of a signature produced by sign_body()."""
    return hmac.compare_digest(sign_body(body, secret), signature)
