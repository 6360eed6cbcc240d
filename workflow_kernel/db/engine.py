"""
Module: workflow_kernel.db.engine
Responsibility: SQLAlchemy engine construction, schema creation and the
    transactional scope utility.  This is the single point of database
    connection configuration for the entire system.
Architecture position: Kernel > DB.  May import from db/base.py and
    db/immutability.py.  MUST NOT import from services/, selectors/, domain/,
    or outer layers (except create_tables, which imports models so that
    Base.metadata knows every table).

Invariants enforced:
    - PostgreSQL runs at READ COMMITTED with a pre-pinged QueuePool; the
      ledger's conditional UPDATE re-evaluates its WHERE clause after a
      competing writer commits, which is what surfaces conflicts.
    - SQLite (development and tests) uses a busy timeout so a second
      writer waits for the first instead of failing instantly where SQLite
      allows it.
    - A connection carrying the LOCK_TIMEOUT_OPTION execution option bounds
      its lock waits by that many seconds: the busy timeout on SQLite,
      ``SET LOCAL lock_timeout`` and ``statement_timeout`` on PostgreSQL.

Failure modes:
    - Connection pool exhaustion if pool_size + max_overflow is exceeded.

Audit relevance:
    All database transactions flow through sessions created by this module.
    session_scope() gives atomic commit-or-rollback semantics.
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from workflow_kernel.logging_config import get_logger

logger = get_logger("db.engine")

# Execution option (seconds) that bounds lock waits for one transaction
LOCK_TIMEOUT_OPTION = "workflow_lock_timeout"

# lock_not_available, query_canceled
_PG_TIMEOUT_CODES = frozenset({"55P03", "57014"})


def build_engine(
    database_url: str,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
    sqlite_busy_timeout: float = 30.0,
) -> Engine:
    """
    Create an Engine for ``database_url`` without touching module state.

    SQLite URLs get ``check_same_thread=False`` (sessions are handed to
    worker threads) and a busy timeout.  In-memory SQLite shares a single
    connection through StaticPool so every session sees the same database.
    """
    if database_url.startswith("sqlite"):
        connect_args = {
            "check_same_thread": False,
            "timeout": sqlite_busy_timeout,
        }
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite:///"):
            engine = create_engine(
                database_url,
                echo=echo,
                connect_args=connect_args,
                poolclass=StaticPool,
            )
        else:
            engine = create_engine(
                database_url, echo=echo, connect_args=connect_args,
            )
        _install_sqlite_transaction_hooks(engine, sqlite_busy_timeout)
        return engine

    engine = create_engine(
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
    if engine.dialect.name == "postgresql":
        _install_postgres_timeout_hook(engine)
    return engine


def _lock_timeout_ms(conn: Connection) -> int | None:
    seconds = conn.get_execution_options().get(LOCK_TIMEOUT_OPTION)
    if seconds is None:
        return None
    return max(1, int(seconds * 1000))


def _install_sqlite_transaction_hooks(engine: Engine, busy_timeout: float) -> None:
    """
    Take over transaction control from the pysqlite driver.

    pysqlite defers BEGIN until the first DML statement, which breaks
    SAVEPOINT and lets two transactions read the same status version.
    Emitting ``BEGIN IMMEDIATE`` ourselves takes the write lock at the start
    of every transaction, so writers on SQLite are serialized and the second
    one reads the first one's committed status.  The busy timeout is set
    before every BEGIN since pooled connections keep the last value.
    """
    default_ms = int(busy_timeout * 1000)

    @event.listens_for(engine, "connect")
    def _disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        timeout_ms = _lock_timeout_ms(conn)
        conn.exec_driver_sql(
            f"PRAGMA busy_timeout = {timeout_ms if timeout_ms is not None else default_ms}"
        ).close()
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def _install_postgres_timeout_hook(engine: Engine) -> None:
    @event.listens_for(engine, "begin")
    def _set_local_timeouts(conn):
        timeout_ms = _lock_timeout_ms(conn)
        if timeout_ms is not None:
            conn.exec_driver_sql(f"SET LOCAL lock_timeout = {timeout_ms}")
            conn.exec_driver_sql(f"SET LOCAL statement_timeout = {timeout_ms}")


def is_lock_timeout(exc: OperationalError) -> bool:
    """True when ``exc`` is a lock or statement wait that ran out of time."""
    orig = exc.orig
    if getattr(orig, "pgcode", None) in _PG_TIMEOUT_CODES:
        return True
    return "database is locked" in str(orig)


@contextmanager
def session_scope(
    factory: sessionmaker[Session],
) -> Generator[Session, None, None]:
    """
    Provide a transactional scope around a series of operations.

    Postconditions: On normal exit, session is committed and closed.
        On exception, session is rolled back and closed.  The exception
        is re-raised to the caller.

    Usage:
        with session_scope(session_factory) as session:
            session.add(entity)
            # Commits on successful exit, rolls back on exception
    """
    session = factory()
    logger.debug("transaction_started")
    try:
        yield session
        session.commit()
        logger.debug("transaction_committed")
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables(engine: Engine) -> None:
    """
    Create all tables defined in the models.

    Postconditions: All tables exist in the database.  Existing tables are
    left untouched.
    """
    from workflow_kernel.db.base import Base
    import workflow_kernel.models  # noqa: F401

    Base.metadata.create_all(engine)


