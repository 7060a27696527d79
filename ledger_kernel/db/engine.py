"""
Module: ledger_kernel.db.engine
Responsibility: Engine initialization, session factory management and the
    transactional scope every ledger operation runs in.
Architecture position: Kernel > DB.  May import from db/ and the exception
    and logging modules.  Models are imported lazily by create_tables().

Invariants enforced:
    - PostgreSQL sessions run at READ COMMITTED; stronger guarantees come
      from explicit row locks (SELECT ... FOR UPDATE).
    - SQLite sessions open every transaction with BEGIN IMMEDIATE, which
      serializes writers the way the row lock does on PostgreSQL.
    - session_scope() commits everything or nothing.  Infrastructure
      failures are rolled back and surfaced as TransientError subclasses.
    - A deadline, when given, is enforced by the server on PostgreSQL
      (statement_timeout) and checked before commit on every backend.

Failure modes:
    - RuntimeError if the session factory is used before init_engine_from_url().
    - StorageUnavailableError on OperationalError / InterfaceError.
    - ConcurrentWriteConflictError on IntegrityError (a lost uniqueness race).
    - OperationTimeoutError when the deadline expires.
"""

import atexit
import time
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from ledger_kernel.exceptions import (
    ConcurrentWriteConflictError,
    ImmutabilityViolationError,
    LedgerKernelError,
    OperationTimeoutError,
    StorageUnavailableError,
)
from ledger_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

# PostgreSQL SQLSTATE for a statement cancelled by statement_timeout
_QUERY_CANCELED = "57014"

# Prefix of every exception raised by the db/sql triggers
_TRIGGER_VIOLATION = "IMMUTABILITY_VIOLATION"

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None


def _configure_sqlite(engine: Engine) -> None:
    """Let SQLAlchemy emit BEGIN itself so writers take the lock up front."""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 10,
    max_overflow: int = 20,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
) -> Engine:
    """
    Initialize the engine and session factory.

    PostgreSQL URLs get a QueuePool at READ COMMITTED.  SQLite URLs get a
    30 second busy timeout and BEGIN IMMEDIATE transactions; in-memory
    SQLite shares one connection.

    Also registers the ORM listeners (tenancy, immutability, single
    writer).  Calling it again replaces the previous engine.
    """
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()

    if database_url.startswith("sqlite"):
        kwargs: dict = {
            "echo": echo,
            "connect_args": {"check_same_thread": False, "timeout": 30},
        }
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite:///"):
            kwargs["poolclass"] = StaticPool
        _engine = create_engine(database_url, **kwargs)
        _configure_sqlite(_engine)
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

    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    from ledger_kernel.db.immutability import register_immutability_listeners
    from ledger_kernel.db.tenancy import register_tenancy_listeners

    register_tenancy_listeners()
    register_immutability_listeners()

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={
            "dialect": _engine.dialect.name,
            "pool_size": pool_size,
            "max_overflow": max_overflow,
            "echo": echo,
        },
    )

    return _engine


def init_engine_from_config(config=None) -> Engine:
    """Initialize the engine from a ``LedgerConfig`` (the active one by default)."""
    from ledger_kernel.config import get_active_config

    config = config or get_active_config()
    return init_engine_from_url(
        config.database_url,
        echo=config.echo,
        pool_size=config.pool_size,
        max_overflow=config.max_overflow,
        pool_timeout=config.pool_timeout,
    )


def get_engine() -> Engine:
    """
    Get the current engine instance.

    Raises:
        RuntimeError: If engine has not been initialized.
    """
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_session() -> Session:
    """New session from the module factory."""
    return get_session_factory()()


def get_session_factory() -> sessionmaker[Session]:
    """
    Get the session factory for creating sessions.

    Each thread needs its own session; share the factory, not a session.

    Raises:
        RuntimeError: If engine has not been initialized.
    """
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory


def _is_postgres_session(session: Session) -> bool:
    bind = session.get_bind()
    return bind.dialect.name == "postgresql"


def translate_db_error(
    exc: Exception,
    timeout: float | None = None,
) -> LedgerKernelError | None:
    """
    Map a SQLAlchemy infrastructure error to the kernel's transient family.

    Returns None for anything that is not an infrastructure failure.
    """
    if isinstance(exc, DBAPIError) and _TRIGGER_VIOLATION in str(exc.orig):
        return ImmutabilityViolationError("database", "-", str(exc.orig).strip())
    if isinstance(exc, OperationalError):
        if getattr(exc.orig, "pgcode", None) == _QUERY_CANCELED and timeout:
            return OperationTimeoutError(timeout)
        return StorageUnavailableError(str(exc.orig))
    if isinstance(exc, InterfaceError):
        return StorageUnavailableError(str(exc.orig))
    if isinstance(exc, IntegrityError):
        return ConcurrentWriteConflictError(str(exc.orig))
    return None


@contextmanager
def session_scope(
    timeout: float | None = None,
    session_factory: sessionmaker[Session] | None = None,
) -> Generator[Session, None, None]:
    """
    Provide a transactional scope around a series of operations.

    Postconditions: On normal exit the session is committed and closed.
        On exception it is rolled back and closed, and the exception is
        re-raised (translated to a TransientError when it came from the
        database driver).

    Usage:
        with session_scope(timeout=5) as session:
            session.add(entity)
    """
    factory = session_factory or get_session_factory()
    session = factory()
    deadline = time.monotonic() + timeout if timeout else None
    logger.debug("transaction_started")
    try:
        if timeout and _is_postgres_session(session):
            session.execute(
                text(f"SET LOCAL statement_timeout = {int(timeout * 1000)}")
            )
        yield session
        if deadline is not None and time.monotonic() > deadline:
            raise OperationTimeoutError(timeout)
        session.commit()
        logger.debug("transaction_committed")
    except Exception as exc:
        session.rollback()
        logger.warning(
            "transaction_rolled_back",
            extra={"error_type": type(exc).__name__},
        )
        translated = translate_db_error(exc, timeout)
        if translated is not None:
            raise translated from exc
        raise
    finally:
        session.close()


def create_tables(install_triggers: bool = True) -> None:
    """
    Create all tables; on PostgreSQL also install the journal triggers.

    Preconditions: Engine must be initialized via init_engine_from_url().
    """
    from ledger_kernel.db.base import Base
    from ledger_kernel.models import import_all_models

    engine = get_engine()
    import_all_models()
    Base.metadata.create_all(engine)

    if install_triggers and engine.dialect.name == "postgresql":
        from ledger_kernel.db.triggers import install_immutability_triggers

        install_immutability_triggers(engine)


def drop_tables() -> None:
    """
    Drop all tables. Use with caution - primarily for testing.
    """
    from ledger_kernel.db.base import Base
    from ledger_kernel.models import import_all_models

    engine = get_engine()
    import_all_models()
    if engine.dialect.name == "postgresql":
        from ledger_kernel.db.triggers import uninstall_immutability_triggers

        uninstall_immutability_triggers(engine)
    Base.metadata.drop_all(engine)


def reset_engine() -> None:
    """
    Reset the engine and session factory.

    Useful for test cleanup.
    """
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
        _engine = None

    _SessionFactory = None


def _atexit_dispose():
    """Dispose the engine on process exit to release all pooled connections."""
    if _engine is not None:
        _engine.dispose()


atexit.register(_atexit_dispose)
