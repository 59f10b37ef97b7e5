"""
Database initialization script.
"""
import logging

from sqlmodel import SQLModel

from app.database.engine import engine

logger = logging.getLogger("app.database")


def import_models() -> None:
    """Import every table module so SQLModel metadata knows about them."""
    from app.models import centroid, cluster, course, graph, ml_metrics  # noqa: F401


def init_database() -> None:
    """
    Create all tables.
    """
    logger.info("Initializing database...")

    import_models()
    SQLModel.metadata.create_all(engine)
    logger.info("Database tables created")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    init_database()
