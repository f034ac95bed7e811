"""Database layer - engine, base classes, types."""

from procurement_kernel.db.base import UUID, Base, TrackedBase, UTCDateTime, UUIDString
from procurement_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_engine,
    get_session,
    init_engine_from_url,
    reset_engine,
    session_scope,
)
from procurement_kernel.db.types import Money, Percent, round_money, to_decimal

__all__ = [
    "init_engine_from_url",
    "get_engine",
    "get_session",
    "session_scope",
    "create_tables",
    "drop_tables",
    "reset_engine",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UTCDateTime",
    "UUID",
    "Money",
    "Percent",
    "round_money",
    "to_decimal",
]
