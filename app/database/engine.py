"""
Database engine configuration.
"""
import os
import logging
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

logger = logging.getLogger("app.database")


def create_database_engine() -> Engine:
    """
    Create and configure SQLAlchemy engine.

    SQLite is used when DB_URL is not set; any other URL gets a connection pool.

    Returns:
        Configured SQLAlchemy engine
    """
    database_url = os.getenv("DB_URL", "sqlite:///./behaviour.db")
    echo = os.getenv("DB_ECHO", "false").lower() == "true"

    logger.info(f"Creating database engine for: {database_url.split('@')[1] if '@' in database_url else database_url}")

    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            echo=echo,
        )

    engine = create_engine(
        database_url,
        # Connection pool settings
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,
        pool_recycle=3600,
        echo=echo,
    )

    return engine


# Global engine instance
engine = create_database_engine()
