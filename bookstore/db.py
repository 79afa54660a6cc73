"""Engine and session construction.

The engine is built once by the application factory and handed to every
repository as a ``sessionmaker``; nothing in the package keeps a global
engine. PostgreSQL (via psycopg) is the deployment target, SQLite is
supported for local runs and tests.
"""

import time
from contextlib import contextmanager

from sqlalchemy import Engine, create_engine, event, text
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from . import settings


class Base(DeclarativeBase):
    pass


def make_engine(url: str | None = None) -> Engine:
    """Create an engine for ``url`` (defaults to ``settings.DATABASE_URL``).

    For SQLite the busy timeout is raised so concurrent writers queue up
    instead of failing immediately, and foreign keys are switched on so
    ``ON DELETE SET NULL`` behaves as it does on PostgreSQL.
    """
    url = url or settings.DATABASE_URL
    if url.startswith("sqlite"):
        engine = create_engine(
            url,
            connect_args={"timeout": settings.DB_BUSY_TIMEOUT_SECS, "check_same_thread": False},
        )

        @event.listens_for(engine, "connect")
        def _sqlite_pragmas(dbapi_conn, _record):
            cur = dbapi_conn.cursor()
            cur.execute("PRAGMA foreign_keys=ON")
            cur.close()

        return engine
    return create_engine(url, pool_pre_ping=True)


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, expire_on_commit=False)


@contextmanager
def get_session(session_factory: sessionmaker):
    """Context manager that yields a session from ``session_factory``.

    The session is closed on exit; committing is up to the caller.

    Yields:
        Session: Active SQLAlchemy session.
    """
    with session_factory() as s:
        yield s


def wait_for_db(engine: Engine, timeout: float | None = None) -> None:
    """Block until the database answers ``select 1`` or ``timeout`` expires."""
    deadline = time.monotonic() + (settings.DB_CONNECT_TIMEOUT_SECS if timeout is None else timeout)
    while True:
        try:
            with engine.connect() as conn:
                conn.execute(text("select 1"))
            return
        except Exception:
            if time.monotonic() > deadline:
                raise
            time.sleep(1)


def init_db(engine: Engine) -> None:
    # models register themselves on Base.metadata on import
    from .orders import models  # noqa: F401

    Base.metadata.create_all(engine)


__all__ = ["Base", "Session", "get_session", "init_db", "make_engine", "make_session_factory", "wait_for_db"]
