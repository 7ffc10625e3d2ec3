"""Database engine, session management, and initialization."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Generator

import structlog
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from job_tracker.config import AppConfig
from job_tracker.models import Base

logger = structlog.get_logger(__name__)

# Module-level engine and session factory (initialized by init_db)
_engine: Engine | None = None
_SessionLocal: sessionmaker[Session] | None = None


def _enable_sqlite_wal(dbapi_conn: object, _connection_record: object) -> None:
    """Enable WAL mode and hand transaction control to SQLAlchemy.

    pysqlite otherwise opens transactions lazily on its own, which breaks
    SAVEPOINT handling; with ``isolation_level = None`` the BEGIN is emitted
    by :func:`_emit_begin` instead.
    """
    dbapi_conn.isolation_level = None  # type: ignore[attr-defined]
    cursor = dbapi_conn.cursor()  # type: ignore[union-attr]
    # In-memory databases silently ignore the WAL request
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _emit_begin(conn: object) -> None:
    conn.exec_driver_sql("BEGIN")  # type: ignore[attr-defined]


def create_db_engine(database_url: str, **kwargs: object) -> Engine:
    """Create an engine, applying SQLite connection settings when relevant."""
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False

    engine = create_engine(
        database_url,
        connect_args=connect_args,
        echo=False,
        **kwargs,
    )

    if database_url.startswith("sqlite"):
        event.listen(engine, "connect", _enable_sqlite_wal)
        event.listen(engine, "begin", _emit_begin)
    return engine


def init_db(config: AppConfig) -> Engine:
    """Create the database engine, tables, and return the engine."""
    global _engine, _SessionLocal

    db_path = config.database_path
    if db_path is not None and db_path.name != ":memory:":
        db_path.parent.mkdir(parents=True, exist_ok=True)

    _engine = create_db_engine(config.database_url, pool_pre_ping=True)

    Base.metadata.create_all(bind=_engine)
    logger.info("database_initialized", url=config.database_url)

    _SessionLocal = sessionmaker(bind=_engine, autocommit=False, autoflush=False)
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """Return the session factory. Raises if init_db() has not been called."""
    if _SessionLocal is None:
        raise RuntimeError("Database not initialized; call init_db() first")
    return _SessionLocal


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    """Yield a session from *factory* with commit on success, rollback on error."""
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
