"""Database engine, session management, and FastAPI dependency."""

import logging
from collections.abc import Generator
from pathlib import Path

from sqlalchemy import create_engine, event, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from config import get_settings
from db.models import Base

logger = logging.getLogger(__name__)

_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None

REQUIRED_TABLES = (
    "royalty_entries",
    "payee_accounts",
    "payout_batches",
    "payout_records",
    "scheduled_jobs",
    "notifications",
)


def get_resolved_sqlite_path() -> Path | None:
    """Return absolute path to SQLite file if using SQLite, else None."""
    db = get_settings().database
    if db._use_postgres():
        return None
    return db._resolved_sqlite_path()


def get_engine() -> Engine:
    """Get or create the shared database engine."""
    global _engine

    if _engine is None:
        settings = get_settings()
        url = settings.database.url
        opts: dict = {"echo": settings.debug}

        if settings.database._use_postgres():
            opts.update(
                pool_size=settings.database.pool_size,
                pool_timeout=settings.database.pool_timeout,
                pool_recycle=settings.database.pool_recycle,
                pool_pre_ping=True,
            )

        _engine = create_engine(url, **opts)

        if not settings.database._use_postgres():

            @event.listens_for(_engine, "connect")
            def _set_sqlite_pragma(dbapi_conn, connection_record):
                cur = dbapi_conn.cursor()
                cur.execute("PRAGMA foreign_keys=ON")
                cur.execute("PRAGMA journal_mode=WAL")
                cur.execute("PRAGMA busy_timeout=30000")
                cur.execute("PRAGMA synchronous=NORMAL")
                cur.close()

            enable_sqlite_savepoints(_engine)

    return _engine


def enable_sqlite_savepoints(engine: Engine) -> Engine:
    """
    Let SQLAlchemy own BEGIN on pysqlite connections.

    The driver's implicit transaction handling releases the outermost
    SAVEPOINT as a commit; Session.begin_nested() needs the explicit form.
    """

    @event.listens_for(engine, "connect")
    def _disable_driver_transactions(dbapi_conn, connection_record):
        dbapi_conn.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


def get_session_factory() -> sessionmaker[Session]:
    """Get or create the session factory."""
    global _session_factory

    if _session_factory is None:
        _session_factory = sessionmaker(
            bind=get_engine(),
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
        )
    return _session_factory


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency that yields a DB session."""
    session = get_session_factory()()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def verify_required_tables(engine: Engine | None = None) -> list[str]:
    """Return list of required tables that are missing."""
    if engine is None:
        engine = get_engine()
    existing = set(inspect(engine).get_table_names())
    return [t for t in REQUIRED_TABLES if t not in existing]


def init_database(engine: Engine | None = None) -> None:
    """Create all tables. Idempotent."""
    if engine is None:
        engine = get_engine()
    missing_before = verify_required_tables(engine)

    Base.metadata.create_all(engine)
    still_missing = verify_required_tables(engine)

    created = [t for t in missing_before if t not in still_missing]
    if created:
        logger.info("Schema init: created tables %s", created)
    elif not still_missing:
        logger.info("Schema init: all tables present")
    if still_missing:
        db_path = get_resolved_sqlite_path()
        hint = f" (file: {db_path})" if db_path else ""
        raise RuntimeError(
            f"Schema init failed: missing tables {still_missing}{hint}. "
            "Delete the sqlite file and restart, or run: royalties init-db"
        )
