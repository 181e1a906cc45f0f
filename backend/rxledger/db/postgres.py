"""
Relational index connection via SQLAlchemy.

PostgreSQL (psycopg3) in deployment, SQLite when DATABASE_URL points at one.
The index is a mirror of ledger state, never its system of record.
"""

import logging

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, scoped_session, declarative_base

from rxledger.config import config

logger = logging.getLogger("db.postgres")

# SQLAlchemy base for model declarations
Base = declarative_base()

# Engine and session factory (initialized lazily)
_engine = None
_session_factory = None


def checkout_listener(dbapi_conn, connection_record, connection_proxy):
    """Ensure connection is in clean state when checked out."""
    try:
        cursor = dbapi_conn.cursor()
        cursor.execute("ROLLBACK")
        cursor.close()
    except Exception as e:
        # Connection might already be clean; pool_pre_ping handles dead ones
        logger.debug(f"Checkout rollback skipped: {e}")


def get_engine():
    """Get or create the SQLAlchemy engine."""
    global _engine
    if _engine is None:
        db_url = config.get_database_url()
        if db_url.startswith("sqlite"):
            _engine = create_engine(
                db_url,
                echo=config.DEBUG,
                connect_args={"check_same_thread": False},
            )
            return _engine

        _engine = create_engine(
            db_url,
            echo=config.DEBUG,  # Log SQL in debug mode
            pool_pre_ping=True,  # Verify connections before use
            pool_recycle=300,  # Recycle connections every 5 minutes
            pool_reset_on_return="rollback",
        )

        event.listen(_engine, "checkout", checkout_listener)

    return _engine


def get_db_session():
    """Get a scoped database session.

    Returns the thread-local session from the scoped session factory.
    The session is cleaned up at the end of each request via close_db_session().
    """
    global _session_factory
    if _session_factory is None:
        _session_factory = scoped_session(
            sessionmaker(bind=get_engine(), autocommit=False, autoflush=False)
        )

    return _session_factory()


def init_db():
    """Initialize database tables (for development/testing)."""
    # Import models so they register with Base.metadata
    from rxledger import models  # noqa: F401

    Base.metadata.create_all(bind=get_engine())


def close_db_session(exception=None):
    """Remove the current session (call at end of request).

    Always rollback to ensure clean state for next request,
    then remove the session from the registry.
    """
    if _session_factory is not None:
        try:
            _session_factory.rollback()
        finally:
            _session_factory.remove()


def rollback_session():
    """Explicitly rollback the current session.

    Call this at the start of a request to ensure clean state,
    especially after a previous request may have left the session dirty.
    """
    if _session_factory is not None:
        session = _session_factory()
        if session.is_active:
            session.rollback()


# Alias for convenience
db = Base
