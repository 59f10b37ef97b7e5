"""
Database session management.
"""
import logging
from typing import Generator
from sqlalchemy.orm import sessionmaker, Session
from contextlib import contextmanager

from app.database.engine import engine

logger = logging.getLogger("app.database")

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_session() -> Generator[Session, None, None]:
    """
    FastAPI dependency yielding a database session.

    Yields:
        Database session
    """
    session = SessionLocal()
    try:
        yield session
    except Exception as e:
        logger.error(f"Database session error: {e}")
        session.rollback()
        raise
    finally:
        session.close()


@contextmanager
def get_db_session() -> Generator[Session, None, None]:
    """
    Session scope for worker tasks: commits on success, rolls back on error.
    """
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception as e:
        logger.error(f"Rolling back worker session: {e}")
        session.rollback()
        raise
    finally:
        session.close()
