"""Database layer for stmtflow application."""

from stmtflow.database.base import Database
from stmtflow.database.factories import create_sqlite_database

__all__ = ["Database", "create_sqlite_database"]

