"""SQLite implementation of the primary table store."""

from huntstore.db.sqlite.connection import Database
from huntstore.db.sqlite.table_store import SQLiteTableStore

__all__ = [
    "Database",
    "SQLiteTableStore",
]
