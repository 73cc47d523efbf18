"""
Module: mentorship_kernel.db.base
Responsibility: Declarative base for all SQLAlchemy ORM models.  Provides the
    UUID primary key convention and the type annotation map that keeps money,
    timestamps and identifiers consistent across every table.
Architecture position: Kernel > DB.  Lowest-level import target within the
    kernel; MUST NOT import from models/, services/ or domain/.

Invariants enforced:
    - UUID primary keys, stored as String(36) for SQLite/PostgreSQL parity.
    - Decimal maps to Numeric(18, 2): fees are stored to the cent.
    - datetime maps to DateTime(timezone=True).
"""

from datetime import UTC, datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, DateTime, Numeric, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """
    UUID stored as its 36-character string form.

    Converts UUID -> str on bind and str -> UUID on load.
    """

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            return str(value)
        return None

    def process_result_value(self, value, dialect):
        if value is not None:
            return PyUUID(value)
        return None


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware timestamp.

    SQLite drops tzinfo on the way back; values are re-tagged as UTC on
    load so domain comparisons stay aware-to-aware.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value


class Base(DeclarativeBase):
    """
    Declarative base for all models.

    Every model gets a uuid4 ``id`` primary key unless it maps its own
    domain identifier onto ``id`` explicitly.
    """

    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(18, 2),
        datetime: UTCDateTime(),
        PyUUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )


# Re-export UUID for convenience
UUID = PyUUID
