"""Database factory functions for creating database instances."""

import os
from typing import Optional

from stmtflow.config import default_home
from stmtflow.database.sqlalchemy_db import SQLAlchemyDatabase


def create_sqlite_database(database_path: Optional[str] = None) -> SQLAlchemyDatabase:
    """Create a SQLite database instance.

    Args:
        database_path: Path to SQLite database file. If None, checks STMTFLOW_DB_PATH
            environment variable, then defaults to ~/.stmtflow/stmtflow.db

    Returns:
        SQLAlchemyDatabase instance configured for SQLite
    """
    if database_path is None:
        database_path = os.environ.get("STMTFLOW_DB_PATH")

    if database_path is None:
        db_dir = default_home()
        db_dir.mkdir(parents=True, exist_ok=True)
        database_path = str(db_dir / "stmtflow.db")

    database_url = f"sqlite:///{database_path}"
    return SQLAlchemyDatabase(database_url)
