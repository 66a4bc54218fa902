"""
Engine and session plumbing for the schedule store.

The daily refresh rewrites every schedule table inside one transaction
while /plan, /stops and /health keep reading.  On SQLite the engine is
therefore switched to WAL journalling with a busy timeout, so readers see
the previous snapshot instead of failing with "database is locked".
"""

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session

from config import DATABASE_URL
from db.models import Base

logger = logging.getLogger(__name__)

SQLITE_BUSY_TIMEOUT_MS = 5000


def make_engine(url: str = DATABASE_URL, **kwargs) -> Engine:
    """create_engine() with the SQLite pragmas the refresh job relies on."""
    if not url.startswith("sqlite"):
        return create_engine(url, **kwargs)

    connect_args = {"check_same_thread": False, **kwargs.pop("connect_args", {})}
    sqlite_engine = create_engine(url, connect_args=connect_args, **kwargs)

    @event.listens_for(sqlite_engine, "connect")
    def _set_sqlite_pragmas(dbapi_connection, connection_record) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")  # in-memory databases answer "memory"
        cursor.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS}")
        cursor.close()

    return sqlite_engine


engine = make_engine()

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind: Engine | None = None) -> None:
    """Create the schedule tables if they don't exist."""
    target = bind if bind is not None else engine
    Base.metadata.create_all(bind=target)
    logger.info("Schedule tables ready: %s", ", ".join(sorted(Base.metadata.tables)))


@contextmanager
def session_scope() -> Iterator[Session]:
    """
    Session for work outside a request: the startup graph build and the
    scheduled refresh.  Always closed, never committed here.
    """
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def get_session() -> Iterator[Session]:
    """Dependency-injectable session factory for FastAPI routes."""
    with session_scope() as session:
        yield session
