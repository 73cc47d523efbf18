"""
SequenceService -- monotonic project numbers via locked counter rows.

Responsibility:
    Allocates the daily running number used in human-readable project
    numbers (``MP-20260105-0001``).  One counter row per (prefix, day),
    locked with ``SELECT ... FOR UPDATE`` so concurrent project creation
    never hands out the same number twice.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.  Used by the
    SQLAlchemy workflow repository when a new project is inserted.

Invariants enforced:
    SQ-1 -- Numbers are strictly increasing per counter; the locked row is
            the only source of the next value, never MAX()+1 over projects.
    SQ-2 -- Transactional: a rolled-back project creation returns its number.

Failure modes:
    - IntegrityError on a concurrent first use of a counter, handled by a
      savepoint rollback and re-read.
"""

from datetime import datetime

from sqlalchemy import BigInteger, String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from mentorship_kernel.db.base import Base
from mentorship_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    """
    Named counter row.

    Row-level locking keeps allocation monotonic under concurrency.
    """

    __tablename__ = "sequence_counters"

    # e.g. "project_number:MP:20260105"
    name: Mapped[str] = mapped_column(String(80), nullable=False, unique=True)

    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


def project_sequence_name(prefix: str, day: datetime) -> str:
    return f"project_number:{prefix}:{day:%Y%m%d}"


def format_project_number(prefix: str, day: datetime, value: int) -> str:
    """``MP-YYYYMMDD-NNNN``; widens past four digits rather than wrapping."""
    return f"{prefix}-{day:%Y%m%d}-{value:04d}"


class SequenceService:
    """
    Transactional sequence allocation.

    Does NOT commit; the caller's transaction decides whether the value is
    consumed.

    Usage:
        with session_scope() as session:
            number = SequenceService(session).next_project_number("MP", now)
    """

    def __init__(self, session: Session):
        self._session = session

    def next_project_number(self, prefix: str, day: datetime) -> str:
        value = self.next_value(project_sequence_name(prefix, day))
        return format_project_number(prefix, day, value)

    def next_value(self, sequence_name: str) -> int:
        """Lock (or create) the counter row, increment it, return the new value."""
        counter = self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

        if counter is None:
            # First use; another transaction may be creating the same row
            savepoint = self._session.begin_nested()
            try:
                self._session.add(SequenceCounter(name=sequence_name, current_value=1))
                self._session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={"sequence_name": sequence_name, "value": 1},
                )
                return 1
            except IntegrityError:
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"sequence_name": sequence_name},
                )
                savepoint.rollback()
                counter = self._session.execute(
                    select(SequenceCounter)
                    .where(SequenceCounter.name == sequence_name)
                    .with_for_update()
                    .execution_options(populate_existing=True)
                ).scalar_one()

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, sequence_name: str) -> int | None:
        counter = self._session.execute(
            select(SequenceCounter).where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()
        return counter.current_value if counter else None
