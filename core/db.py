# core/db.py
"""
Database management for the purchase engine.
Single database, URL taken from Settings.
"""
import logging
from contextlib import contextmanager
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from models.base import Base
from purchase_system.config.settings import Settings

logger = logging.getLogger(__name__)

# Database engines
_engine = None
_SessionFactory = None


def _engine_options(database_url: str) -> dict:
    """SQLite connections get used from store worker threads."""
    if not database_url.startswith("sqlite"):
        return {}
    options = {"connect_args": {"check_same_thread": False}}
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        # One shared connection, otherwise each thread sees its own empty database
        options["poolclass"] = StaticPool
    return options


def get_engine(database_url: Optional[str] = None) -> Engine:
    """
    Get or create database engine.

    Args:
        database_url: Explicit URL (default: Settings.from_env().database_url)
    """
    global _engine
    if _engine is None:
        if database_url is None:
            database_url = Settings.from_env().database_url
        _engine = create_engine(database_url, echo=False, pool_pre_ping=True, **_engine_options(database_url))
        logger.info(f"Database engine created: {database_url}")
    return _engine


def get_session_factory():
    """Get or create session factory."""
    global _SessionFactory
    if _SessionFactory is None:
        engine = get_engine()
        _SessionFactory = sessionmaker(bind=engine)
        logger.info("Session factory created")
    return _SessionFactory


def get_session() -> Session:
    """
    Get a new database session.

    Returns:
        Session instance
    """
    factory = get_session_factory()
    return factory()


def reset_engine() -> None:
    """Dispose engine and forget the session factory."""
    global _engine, _SessionFactory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionFactory = None


@contextmanager
def get_db_session_ctx():
    """
    Context manager for database sessions.

    Usage:
        with get_db_session_ctx() as session:
            member = session.query(Member).first()
    """
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception as e:
        session.rollback()
        logger.error(f"Database error: {e}")
        raise
    finally:
        session.close()


def setup_database(engine: Optional[Engine] = None):
    """Initialize database - create all tables."""
    logger.info("Setting up database...")
    Base.metadata.create_all(engine or get_engine())
    logger.info("Database setup completed")


def drop_all_tables(engine: Optional[Engine] = None):
    """Drop all tables - USE WITH CAUTION!"""
    logger.warning("Dropping all tables...")
    Base.metadata.drop_all(engine or get_engine())
    logger.info("All tables dropped")
