#!/usr/bin/env python3
"""
Database initialization script for behaviour clustering.
Creates the schema on first start and applies Alembic migrations afterwards.
"""

import logging
import os
import sys
from pathlib import Path

# Add the project root to the Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from sqlalchemy import inspect

from app.database.engine import engine
from app.database.init_db import init_database

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


def alembic_config() -> Config:
    alembic_cfg = Config()
    alembic_cfg.set_main_option("script_location", str(project_root / "migrations"))
    alembic_cfg.set_main_option("sqlalchemy.url", os.getenv("DB_URL", "sqlite:///./behaviour.db"))
    return alembic_cfg


def check_database_exists() -> bool:
    """Check whether the clustering tables are already present."""
    try:
        return inspect(engine).has_table("cluster_records")
    except Exception as e:
        logger.info(f"Database not found or unavailable: {e}")
        return False


def run_migrations(fresh: bool) -> bool:
    """
    Bring the schema to the Alembic head.

    A freshly created schema is only stamped.
    """
    try:
        alembic_cfg = alembic_config()
        head_rev = ScriptDirectory.from_config(alembic_cfg).get_current_head()

        if fresh:
            command.stamp(alembic_cfg, "head")
            logger.info(f"Stamped new database at {head_rev}")
            return True

        with engine.connect() as conn:
            current_rev = MigrationContext.configure(conn).get_current_revision()

        if current_rev != head_rev:
            logger.info(f"Applying migrations: {current_rev} -> {head_rev}")
            command.upgrade(alembic_cfg, "head")
        else:
            logger.info("Database is up to date")
        return True
    except Exception as e:
        logger.error(f"Error applying migrations: {e}")
        return False


def main():
    logger.info("Starting database initialization")

    if check_database_exists():
        logger.info("Database already initialized")
        if not run_migrations(fresh=False):
            sys.exit(1)
    else:
        logger.info("Initializing new database")
        try:
            init_database()
        except Exception as e:
            logger.error(f"Error creating tables: {e}")
            sys.exit(1)
        if not run_migrations(fresh=True):
            sys.exit(1)

    logger.info("Database initialization completed")


if __name__ == "__main__":
    main()
