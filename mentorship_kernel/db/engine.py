"""
Module: mentorship_kernel.db.engine
Responsibility: SQLAlchemy engine initialization, session factory management
    and transactional scope.  Single point of database connection
    configuration.
Architecture position: Kernel > DB.  May import from db/base.py;
    create_tables/drop_tables import the models package.

Invariants enforced:
    - PostgreSQL in production (READ COMMITTED plus row locks where needed).
    - SQLite for tests: one shared in-memory connection (StaticPool) and
      explicit BEGIN so SAVEPOINT works with the pysqlite driver.

Failure modes:
    - RuntimeError if get_engine/get_session/get_session_factory is called
      before init_engine_from_url().
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from mentorship_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 10,
    max_overflow: int = 5,
    pool_pre_ping: bool = True,
) -> Engine:
    """
    Initialize the engine and session factory from a database URL.

    Postconditions: all subsequent get_engine/get_session calls use the
    new engine.  A second call replaces the first.
    """
    global _engine, _SessionFactory

    if database_url.startswith("sqlite"):
        _engine = create_engine(
            database_url,
            echo=echo,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
        _enable_sqlite_savepoints(_engine)
    else:
        _engine = create_engine(
            database_url,
            echo=echo,
            poolclass=QueuePool,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=pool_pre_ping,
            isolation_level="READ COMMITTED",
        )

    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={"dialect": _engine.dialect.name, "echo": echo},
    )
    return _engine


def _enable_sqlite_savepoints(engine: Engine) -> None:
    # pysqlite manages transactions itself; hand BEGIN over to SQLAlchemy
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_session() -> Session:
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory()


def get_session_factory() -> sessionmaker[Session]:
    """Session factory, for callers that open one session per unit of work."""
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory


@contextmanager
def session_scope(
    factory: sessionmaker[Session] | None = None,
) -> Generator[Session, None, None]:
    """
    Transactional scope: commit on normal exit, rollback and re-raise on error.

    Usage:
        with session_scope() as session:
            session.add(entity)
    """
    session = factory() if factory is not None else get_session()
    logger.debug("transaction_started")
    try:
        yield session
        session.commit()
        logger.debug("transaction_committed")
    except Exception:
        session.rollback()
        logger.debug("transaction_rolled_back")
        raise
    finally:
        session.close()


def create_tables() -> None:
    """Create all tables registered on Base.metadata."""
    from mentorship_kernel.db.base import Base
    import mentorship_kernel.models  # noqa: F401  (registers tables)
    import mentorship_kernel.services.sequence_service  # noqa: F401

    Base.metadata.create_all(get_engine())


def drop_tables() -> None:
    """Drop all tables. Tests only."""
    from mentorship_kernel.db.base import Base

    Base.metadata.drop_all(get_engine())


def reset_engine() -> None:
    """Dispose the engine and forget the session factory (test cleanup)."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
        _engine = None
    _SessionFactory = None
