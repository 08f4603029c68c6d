# backoffice/database.py
import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .config import get_settings

logger = logging.getLogger(__name__)

# SQLSTATE for "could not serialize access due to concurrent update"
SERIALIZATION_FAILURE_SQLSTATE = "40001"
SQLITE_LOCK_MESSAGES = ("database is locked", "database table is locked", "database is busy")


def build_engine(database_url: str) -> Engine:
    connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
    return create_engine(
        database_url,
        pool_pre_ping=True,
        echo=False,
        connect_args=connect_args,
    )


# Create engine
engine = build_engine(get_settings().database_url)

# Session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Base class for models
Base = declarative_base()


# Dependency to get database session
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_tables(bind: Engine = None):
    """Create all database tables - models must be imported first."""
    from . import models  # noqa: F401 registers the tables on Base.metadata

    Base.metadata.create_all(bind=bind or engine)
    logger.info("Database tables created")


def is_serialization_failure(exc: BaseException) -> bool:
    """True when storage aborted a transaction because a concurrent one won.

    PostgreSQL reports SQLSTATE 40001; SQLite reports a lock/busy error when two
    writers race for the same database.
    """
    if not isinstance(exc, DBAPIError):
        return False
    orig = exc.orig
    sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if sqlstate == SERIALIZATION_FAILURE_SQLSTATE:
        return True
    message = str(orig).lower()
    return any(fragment in message for fragment in SQLITE_LOCK_MESSAGES)


@contextmanager
def serializable_session(db: Session) -> Iterator[Session]:
    """Open a SERIALIZABLE transaction on the same engine as ``db``.

    Commits on clean exit, rolls back on any error. Storage serialization
    failures propagate as the original ``DBAPIError``; callers decide what
    they mean. Nothing is retried here.

    SQLite has no SERIALIZABLE level to ask for, and pysqlite only opens a
    transaction before the first write. The transaction is started with
    ``BEGIN IMMEDIATE`` instead, so the write lock is held from the conflict
    read to the commit and a second writer waits (or fails with "database is
    locked") rather than reading a stale calendar.
    """
    bind = db.get_bind()
    is_sqlite = bind.dialect.name == "sqlite"
    if not is_sqlite:
        bind = bind.execution_options(isolation_level="SERIALIZABLE")
    tx = Session(bind=bind, autoflush=False, expire_on_commit=False)
    try:
        if is_sqlite:
            tx.execute(text("BEGIN IMMEDIATE"))
        yield tx
        tx.commit()
    except Exception:
        tx.rollback()
        raise
    finally:
        tx.close()
