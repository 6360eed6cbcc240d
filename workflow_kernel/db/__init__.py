"""Database layer - engine, base classes, types, and immutability."""

from workflow_kernel.db.base import Base, TrackedBase, UTCDateTime, UUIDString
from workflow_kernel.db.engine import (
    LOCK_TIMEOUT_OPTION,
    build_engine,
    create_tables,
    is_lock_timeout,
    session_scope,
)

__all__ = [
    "build_engine",
    "session_scope",
    "create_tables",
    "is_lock_timeout",
    "LOCK_TIMEOUT_OPTION",
    "Base",
    "TrackedBase",
    "UTCDateTime",
    "UUIDString",
]
