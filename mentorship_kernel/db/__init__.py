"""Database layer - engine, declarative base and column types."""

from mentorship_kernel.db.base import UUID, Base, UTCDateTime, UUIDString
from mentorship_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
    session_scope,
)
from mentorship_kernel.db.types import Currency, LongText, MediumText, Money

__all__ = [
    "Base",
    "Currency",
    "LongText",
    "MediumText",
    "Money",
    "UUID",
    "UTCDateTime",
    "UUIDString",
    "create_tables",
    "drop_tables",
    "get_engine",
    "get_session",
    "get_session_factory",
    "init_engine_from_url",
    "reset_engine",
    "session_scope",
]
