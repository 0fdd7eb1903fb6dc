"""Database layer - engine, base classes, types, and append-only enforcement."""

from lifecycle_kernel.db.base import UUID, Base, TrackedBase, UTCDateTime, UUIDString
from lifecycle_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from lifecycle_kernel.db.types import Hours, Money, Quantity

__all__ = [
    "get_engine",
    "get_session",
    "get_session_factory",
    "init_engine_from_url",
    "create_tables",
    "drop_tables",
    "reset_engine",
    "Base",
    "TrackedBase",
    "UTCDateTime",
    "UUIDString",
    "UUID",
    "Hours",
    "Money",
    "Quantity",
]
