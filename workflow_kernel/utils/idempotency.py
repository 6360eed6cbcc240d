"""
Idempotency key utilities.

A transition request carries a caller-supplied idempotency key.  Together
with (entity_id, from_status, to_status) it identifies one logical request:
retrying with the same key returns the original transition instead of
recording a second one.
"""

MAX_IDEMPOTENCY_KEY_LENGTH = 200


def normalize_idempotency_key(key: str) -> str:
    """
    Strip and check a caller-supplied key.

    Raises:
        ValueError: If the key is empty or longer than the column allows.
    """
    if not isinstance(key, str):
        raise ValueError(f"Idempotency key must be a string, got {type(key).__name__}")
    normalized = key.strip()
    if not normalized:
        raise ValueError("Idempotency key must not be empty")
    if len(normalized) > MAX_IDEMPOTENCY_KEY_LENGTH:
        raise ValueError(
            f"Idempotency key longer than {MAX_IDEMPOTENCY_KEY_LENGTH} characters"
        )
    return normalized
