import logging
from typing import Iterator

from fastapi import Request
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

Base = declarative_base()


def create_db_engine(database_url: str) -> Engine:
    """Build the engine for ``database_url``.

    SQLite gets cross-thread access, a generous busy timeout so concurrent
    claimants wait on the write lock instead of failing, and foreign keys
    switched on (ON DELETE CASCADE is a no-op without the pragma).
    In-memory SQLite shares a single connection so every session sees the
    same database.
    """
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False, "timeout": 30}}
        if ":memory:" in database_url or database_url in ("sqlite://", "sqlite:///"):
            kwargs["poolclass"] = StaticPool
        engine = create_engine(database_url, **kwargs)

        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    return create_engine(database_url, pool_size=10, max_overflow=10, pool_pre_ping=True)


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)


def init_schema(engine: Engine) -> None:
    """Create missing tables. PostgreSQL deployments use the Alembic migrations."""
    # Import for side effect: registers every model on Base.metadata
    from flight_tracker import models  # noqa: F401

    if engine.dialect.name == "sqlite":
        logger.info("SQLite detected - creating tables if needed")
        Base.metadata.create_all(bind=engine)


def get_db(request: Request) -> Iterator[Session]:
    db = request.app.state.container.session_factory()
    try:
        yield db
    finally:
        db.close()
