"""
Workflow Kernel

Durable project status transitions with:
- Pure transition validation (status table + role gates)
- Append-only status history with optimistic concurrency
- Idempotent replays keyed by caller-supplied idempotency keys
- Transactional outbox for downstream workflow notifications
"""

__version__ = "0.1.0"
