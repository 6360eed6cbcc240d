"""Utility modules for the workflow kernel."""

from workflow_kernel.utils.hashing import canonicalize_json, sign_body, verify_signature
from workflow_kernel.utils.idempotency import normalize_idempotency_key

__all__ = [
    "canonicalize_json",
    "sign_body",
    "verify_signature",
    "normalize_idempotency_key",
]
