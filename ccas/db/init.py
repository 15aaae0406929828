"""
Database initialization for the Construction Cost Allocation System.

This module provides functions for initializing the database schema and
creating the necessary tables.
"""

import os
import logging
from typing import Optional, Dict, Any

from ccas.db.models import Base
from ccas.db.session import get_engine, init_db
from ccas.config import get_config


logger = logging.getLogger(__name__)


def init_database(engine=None) -> None:
    """Initialize the database schema.

    Args:
        engine: SQLAlchemy engine (defaults to the global engine if None)
    """
    if engine is None:
        engine = get_engine()

    logger.info("Creating database tables")
    Base.metadata.create_all(engine)
    logger.info("Database tables created successfully")


def drop_database(engine=None) -> None:
    """Drop every table of the schema.

    Args:
        engine: SQLAlchemy engine (defaults to the global engine if None)
    """
    if engine is None:
        engine = get_engine()

    logger.warning("Dropping all database tables")
    Base.metadata.drop_all(engine)


def ensure_directory_exists(path: str) -> None:
    """Ensure that the directory for the database file exists.

    Args:
        path: Path to the database file
    """
    directory = os.path.dirname(path)
    if directory and not os.path.exists(directory):
        os.makedirs(directory, exist_ok=True)
        logger.info(f"Created directory: {directory}")


def initialize(force: bool = False, db_config: Optional[Dict[str, Any]] = None) -> bool:
    """Create the schema for the configured database.

    Args:
        force: Drop and recreate the tables when the SQLite file already exists
        db_config: Database configuration section (defaults to the global one)

    Returns:
        True if the schema was created, False if it was left untouched
    """
    if db_config is None:
        db_config = get_config().get("database", {})

    exists = False
    if db_config.get("db_type", "sqlite") == "sqlite":
        db_path = db_config.get("db_path", "ccas.db")
        if db_path != ":memory:":
            exists = os.path.exists(db_path)
            if exists and not force:
                logger.warning(f"Database file already exists: {db_path}")
                logger.warning("Use --force to reinitialize")
                return False
            ensure_directory_exists(db_path)

    logger.info(f"Initializing {db_config.get('db_type', 'sqlite')} database")
    init_db(db_config)
    if exists and force:
        drop_database()
    init_database()

    logger.info("Database initialization complete")
    return True
