"""
Module: amana_kernel.db.engine
Responsibility: SQLAlchemy engine initialization, session factory management,
    and transactional scope utilities.  The single point of database
    connection configuration.
Architecture position: Kernel > DB.  May import from db/base.py and
    db/immutability.py.  MUST NOT import from services/ or outer layers
    (create_tables imports models to populate the metadata).

PostgreSQL is the production backend (READ COMMITTED plus explicit
SELECT ... FOR UPDATE row locks).  SQLite is accepted for single-process
tests: FOR UPDATE compiles to nothing there, and the pysqlite driver is
switched to explicit BEGIN so SAVEPOINTs behave.
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from amana_kernel.exceptions import AmanaError
from amana_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None


def _install_sqlite_transaction_handling(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # Hand transaction control to SQLAlchemy; enforce foreign keys.
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
) -> Engine:
    """
    Initialize the SQLAlchemy engine.

    A second call overwrites the first; call reset_engine() in between to
    release pooled connections.

    Args:
        database_url: postgresql:// URL in production, sqlite:// in tests.
        echo: If True, log all SQL statements.
        pool_size: Number of connections to keep in the pool (PostgreSQL).
        max_overflow: Max connections beyond pool_size (PostgreSQL).
        pool_pre_ping: Test connections before use.
        pool_timeout: Seconds to wait for a pooled connection.
        pool_recycle: Seconds after which a connection is recycled.
    """
    global _engine, _SessionFactory

    if database_url.startswith("sqlite"):
        _engine = create_engine(
            database_url,
            echo=echo,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
        _install_sqlite_transaction_handling(_engine)
        dialect = "sqlite"
    else:
        _engine = create_engine(
            database_url,
            echo=echo,
            poolclass=QueuePool,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=pool_pre_ping,
            pool_timeout=pool_timeout,
            pool_recycle=pool_recycle,
            isolation_level="READ COMMITTED",
        )
        dialect = _engine.dialect.name

    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={"dialect": dialect, "echo": echo},
    )

    return _engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_session() -> Session:
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory()


def get_session_factory() -> sessionmaker[Session]:
    """
    Get the session factory.

    Useful for multi-threaded callers (the sweep scheduler, concurrency
    tests) where each thread needs its own session.
    """
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """
    Provide a transactional scope around a series of operations.

    Commits on normal exit and rolls back on exception.  An AmanaError
    flagged ``commit_on_raise`` (an AAP forced to ``expired``, a withdrawal
    marked rejected) is committed first and then re-raised.

    Usage:
        with session_scope() as session:
            OrderService(session, clock).confirm_ready(principal, order_id)
    """
    session = get_session()
    logger.debug("transaction_started")
    try:
        yield session
        session.commit()
        logger.debug("transaction_committed")
    except AmanaError as exc:
        if exc.commit_on_raise:
            session.commit()
            logger.info(
                "transaction_committed_on_rejection",
                extra={"error_code": exc.code},
            )
        else:
            session.rollback()
            logger.warning("transaction_rolled_back", extra={"error_code": exc.code})
        raise
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables() -> None:
    """
    Create all tables and register the ledger immutability listeners.

    Idempotent: existing tables are left alone.
    """
    from amana_kernel.db.base import Base
    from amana_kernel.db.immutability import register_immutability_listeners
    import amana_kernel.models  # noqa: F401  populate Base.metadata

    Base.metadata.create_all(get_engine())
    register_immutability_listeners()


def drop_tables() -> None:
    """Drop all tables. Use with caution - primarily for testing."""
    from amana_kernel.db.base import Base

    Base.metadata.drop_all(get_engine())


def reset_engine() -> None:
    """Dispose the engine and forget the session factory."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
        _engine = None

    _SessionFactory = None
