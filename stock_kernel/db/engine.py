"""
Module: stock_kernel.db.engine
Responsibility: SQLAlchemy engine initialization, session factory management,
    and transactional scope utilities.  Single point of database connection
    configuration for the kernel.
Architecture position: Kernel > DB.  May import from db/ only (plus models/
    inside create_tables so Base.metadata is populated).

Invariants enforced:
    - PostgreSQL runs at READ COMMITTED with explicit row locks
      (SELECT ... FOR UPDATE) on every StockLevel write, and a
      per-connection lock_timeout so lock waits surface as retryable
      conflicts instead of hanging.
    - SQLite opens every transaction with BEGIN IMMEDIATE, which serializes
      writers at the database level; foreign keys are switched on.

Failure modes:
    - RuntimeError if get_engine/get_session_factory are called before
      init_engine_from_url().
    - OperationalError if the database is unreachable (translated to
      StorageUnavailableError by StockLedger).
"""

import atexit
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from stock_kernel.logging_config import configure_logging, get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None


def _is_sqlite_memory(database_url: str) -> bool:
    return database_url in ("sqlite://", "sqlite:///:memory:") or ":memory:" in database_url


def build_engine(
    database_url: str,
    *,
    echo: bool = False,
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_timeout: int = 30,
    lock_timeout_ms: int = 5000,
) -> Engine:
    """
    Create an engine configured for the ledger's locking discipline.

    Args:
        database_url: PostgreSQL or SQLite URL.
        echo: If True, log all SQL statements.
        pool_size: Connections kept in the pool (PostgreSQL only).
        max_overflow: Connections beyond pool_size (PostgreSQL only).
        pool_timeout: Seconds to wait for a pooled connection.
        lock_timeout_ms: PostgreSQL lock_timeout / SQLite busy timeout.
    """
    if database_url.startswith("sqlite"):
        kwargs: dict = {
            "echo": echo,
            "connect_args": {
                "check_same_thread": False,
                "timeout": max(lock_timeout_ms, 1000) / 1000,
            },
        }
        if _is_sqlite_memory(database_url):
            kwargs["poolclass"] = StaticPool
        engine = create_engine(database_url, **kwargs)
        _install_sqlite_hooks(engine)
        return engine

    connect_args = {}
    if database_url.startswith("postgresql") and lock_timeout_ms:
        connect_args["options"] = f"-c lock_timeout={int(lock_timeout_ms)}"

    return create_engine(
        database_url,
        echo=echo,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=True,
        pool_timeout=pool_timeout,
        pool_recycle=1800,
        isolation_level="READ COMMITTED",
        connect_args=connect_args,
    )


def _install_sqlite_hooks(engine: Engine) -> None:
    # pysqlite's implicit transaction handling breaks SAVEPOINT and delays
    # locking; take over BEGIN so each transaction holds the write lock.

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
    pool_size: int = 20,
    max_overflow: int = 10,
    pool_timeout: int = 30,
    lock_timeout_ms: int = 5000,
) -> Engine:
    """
    Initialize the module-level engine and session factory.

    A second call replaces the first.  All subsequent get_engine /
    get_session_factory calls use this engine.
    """
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()

    _engine = build_engine(
        database_url,
        echo=echo,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_timeout=pool_timeout,
        lock_timeout_ms=lock_timeout_ms,
    )
    _SessionFactory = sessionmaker(bind=_engine, expire_on_commit=False)

    configure_logging()
    logger.info(
        "engine_initialized",
        extra={
            "dialect": _engine.dialect.name,
            "pool_size": pool_size,
            "echo": echo,
            "lock_timeout_ms": lock_timeout_ms,
        },
    )
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """
    Get the session factory.  Each thread should create its own session.

    Raises:
        RuntimeError: If engine has not been initialized.
    """
    if _SessionFactory is None:
        raise RuntimeError("Engine not initialized. Call init_engine_from_url() first.")
    return _SessionFactory


def get_session() -> Session:
    return get_session_factory()()


@contextmanager
def session_scope(
    factory: sessionmaker[Session] | None = None,
) -> Generator[Session, None, None]:
    """
    Provide a transactional scope around a series of operations.

    Commits on normal exit; rolls back and re-raises on exception.
    """
    session = (factory or get_session_factory())()
    logger.debug("transaction_started")
    try:
        yield session
        session.commit()
        logger.debug("transaction_committed")
    except Exception:
        session.rollback()
        logger.debug("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


@contextmanager
def read_only_scope(
    factory: sessionmaker[Session] | None = None,
) -> Generator[Session, None, None]:
    """
    Scope for query-facade reads.  Always rolls back; any flush of pending
    changes raises ReadOnlySessionError (see db/immutability.py).
    """
    session = (factory or get_session_factory())()
    session.info["read_only"] = True
    try:
        yield session
    finally:
        session.rollback()
        session.close()


def create_tables(engine: Engine | None = None, install_triggers: bool = True) -> None:
    """
    Create all ledger tables and, on PostgreSQL, the database triggers.

    Idempotent: existing tables are left alone.
    """
    from stock_kernel.db.base import Base
    from stock_kernel.db.triggers import install_ledger_triggers
    import stock_kernel.models  # noqa: F401  (populates Base.metadata)

    engine = engine or get_engine()
    Base.metadata.create_all(engine)
    if install_triggers and engine.dialect.name == "postgresql":
        install_ledger_triggers(engine)
    logger.info(
        "tables_created",
        extra={"tables": sorted(Base.metadata.tables), "dialect": engine.dialect.name},
    )


def drop_tables(engine: Engine | None = None) -> None:
    """Drop all tables. Use with caution - primarily for testing."""
    from stock_kernel.db.base import Base
    from stock_kernel.db.triggers import uninstall_ledger_triggers
    import stock_kernel.models  # noqa: F401

    engine = engine or get_engine()
    if engine.dialect.name == "postgresql":
        uninstall_ledger_triggers(engine)
    Base.metadata.drop_all(engine)


def reset_engine() -> None:
    """Dispose the engine and forget the session factory. Used by tests."""
    global _engine, _SessionFactory

    if _engine is not None:
        _engine.dispose()
        _engine = None
    _SessionFactory = None


def is_postgres(engine: Engine | None = None) -> bool:
    target = engine or _engine
    return target is not None and target.dialect.name == "postgresql"


atexit.register(reset_engine)
