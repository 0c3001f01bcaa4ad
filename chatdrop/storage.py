"""
Database wiring: engine and session factory construction, schema creation
and health checks.

Nothing here is global state. Callers build an engine and a session factory
and pass the factory to the repository, so separate repositories (per test,
per database) never share hidden state.
"""

import logging

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

# Base class for SQLAlchemy models
Base = declarative_base()

TABLE_NAME = "chat_drop_messages"


def _is_memory_url(url: str) -> bool:
    return url in ("sqlite://", "sqlite:///:memory:") or "mode=memory" in url


def build_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create a SQLAlchemy engine for the given URL.

    SQLite engines are created with check_same_thread=False so the FastAPI
    thread pool can share them. In-memory SQLite uses a StaticPool, otherwise
    every connection would see its own empty database.
    """
    logger.debug(f"Creating engine for URL: {database_url}")
    if not database_url.startswith("sqlite"):
        return create_engine(database_url, echo=echo, pool_pre_ping=True)

    kwargs = {"connect_args": {"check_same_thread": False}, "echo": echo}
    if _is_memory_url(database_url):
        kwargs["poolclass"] = StaticPool
    return create_engine(database_url, **kwargs)


def build_session_factory(engine: Engine) -> sessionmaker:
    """Create a session factory bound to ``engine``."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(engine: Engine) -> None:
    """
    Initialize the database by creating all tables.
    Called during application startup and by test fixtures.
    """
    logger.debug(f"Initializing database on {engine.url}")
    try:
        # Import models to register them with Base.metadata
        from chatdrop.models import ChatDropMessageRow  # noqa: F401

        Base.metadata.create_all(bind=engine)
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


def check_db_health(engine: Engine) -> bool:
    """
    Check if the database is reachable and schema is applied.

    Returns:
        True if DB is healthy and schema exists, False otherwise.
    """
    logger.debug("Checking database health...")
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
            if not inspect(conn).has_table(TABLE_NAME):
                logger.error(f"Database schema not applied: '{TABLE_NAME}' table not found")
                return False
        logger.debug("Database health check passed")
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False
