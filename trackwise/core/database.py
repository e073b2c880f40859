"""Database configuration and session management."""

import logging
import time
from typing import Generator
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import StaticPool

from .config import settings

logger = logging.getLogger(__name__)


def build_engine(database_url: str, debug: bool = False) -> Engine:
    """Create an engine with per-backend options."""
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            # In-memory databases only exist on a single shared connection
            return create_engine(
                database_url,
                connect_args=connect_args,
                poolclass=StaticPool,
                echo=debug,
            )
        return create_engine(database_url, connect_args=connect_args, echo=debug)

    return create_engine(
        database_url,
        pool_pre_ping=True,
        pool_recycle=300,
        echo=debug,
    )


# Database engine configuration
engine = build_engine(settings.DATABASE_URL, settings.DEBUG)

# Session factory
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
    bind=engine
)

# Base class for models
Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """Database dependency for FastAPI endpoints."""
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


# Database event handlers
@event.listens_for(Engine, "connect")
def set_sqlite_pragma(dbapi_connection, connection_record):
    """Enable foreign key support for SQLite."""
    if type(dbapi_connection).__module__.startswith("sqlite3"):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


@event.listens_for(Engine, "before_cursor_execute")
def before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    """Record query start time in debug mode."""
    if settings.DEBUG:
        conn.info.setdefault("query_start_time", []).append(time.perf_counter())


@event.listens_for(Engine, "after_cursor_execute")
def after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    """Log query execution time in debug mode."""
    if settings.DEBUG and conn.info.get("query_start_time"):
        total = time.perf_counter() - conn.info["query_start_time"].pop()
        logger.debug(f"Query executed in {total:.4f}s: {statement[:100]}...")


def init_db(bind: Engine = None) -> None:
    """Initialize database tables."""
    # Models must be imported so their tables are registered on Base
    from .. import models  # noqa: F401
    Base.metadata.create_all(bind=bind or engine)


def close_db() -> None:
    """Close database connections."""
    engine.dispose()
